"""
Local tools the assistant can call during a run
"""
import asyncio
import inspect
import json
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from models.assistant_run import ToolCall

logger = logging.getLogger(__name__)

PLACEHOLDER_OUTPUT = "Tool function executed successfully with dummy output."

ToolFunc = Callable[[dict], Union[Any, Awaitable[Any]]]


def get_current_weather(arguments: dict) -> dict:
    return {"temperature": 22, "unit": "celsius", "description": "Sunny"}


def get_time(arguments: dict) -> str:
    return datetime.now().strftime("%H:%M:%S")


def _as_output(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value)


class ToolDispatcher:
    """
    Registry of named tools.

    Unknown tool names get a fixed placeholder output instead of failing the
    turn, which also hides a missing integration; each substitution is logged.
    """

    def __init__(self, tools: Optional[Dict[str, ToolFunc]] = None):
        self._tools: Dict[str, ToolFunc] = dict(tools or {})

    @classmethod
    def with_builtin_tools(cls) -> "ToolDispatcher":
        return cls({
            "get_current_weather": get_current_weather,
            "get_time": get_time,
        })

    def register(self, name: str, func: ToolFunc) -> None:
        self._tools[name] = func

    async def dispatch(self, call: ToolCall) -> dict:
        """Run one tool call and return its submission entry."""
        logger.info(f"Executing tool: {call.tool_name} with arguments: {call.arguments_payload}")
        func = self._tools.get(call.tool_name)
        if func is None:
            logger.warning(f"Unknown tool {call.tool_name!r} requested; returning placeholder output")
            return {"tool_call_id": call.call_id, "output": PLACEHOLDER_OUTPUT}

        try:
            arguments = json.loads(call.arguments_payload) if call.arguments_payload else {}
        except json.JSONDecodeError:
            logger.warning(f"Malformed arguments for tool {call.tool_name!r}; returning placeholder output")
            return {"tool_call_id": call.call_id, "output": PLACEHOLDER_OUTPUT}

        try:
            if inspect.iscoroutinefunction(func):
                result = await func(arguments)
            else:
                # Blocking tools run in a worker thread
                result = await asyncio.to_thread(func, arguments)
        except Exception as e:
            logger.error(f"Tool {call.tool_name!r} raised: {e}", exc_info=True)
            return {"tool_call_id": call.call_id, "output": f"Tool {call.tool_name} failed: {e}"}

        return {"tool_call_id": call.call_id, "output": _as_output(result)}

    async def dispatch_all(self, calls: List[ToolCall]) -> List[dict]:
        """Resolve every call of one pause concurrently; order matches `calls`."""
        return list(await asyncio.gather(*(self.dispatch(call) for call in calls)))
