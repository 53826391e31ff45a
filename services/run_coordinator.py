"""
Run coordinator - drives one conversation turn through the assistant service.

A turn appends the user's message, starts a run and polls it until it leaves
queued/in_progress. Tool-call pauses are resolved locally and submitted as one
batch, after which polling resumes. Completed runs yield the newest assistant
text message produced by that run.
"""
import asyncio
import logging
import time
from typing import Awaitable, Callable, List, Optional

from config.settings import settings
from backend.utils.errors import (
    AssistantRunFailed,
    MessageAppendFailed,
    RunTimedOut,
    UpstreamUnavailable,
)
from models.assistant_run import (
    AssistantRun,
    RunStatus,
    TERMINAL_FAILURE_STATUSES,
)
from services.assistant_client import AssistantClient
from services.tool_dispatcher import ToolDispatcher

logger = logging.getLogger(__name__)

FALLBACK_REPLY = (
    "No response found from assistant for this request "
    "(it might still be processing or generated non-text output)."
)


def _parse_run(payload: dict) -> AssistantRun:
    try:
        return AssistantRun.from_api(payload)
    except (KeyError, TypeError, ValueError) as e:
        raise UpstreamUnavailable(f"Unexpected run payload from assistant service: {e}")


def select_reply(messages: List[dict], run_id: str) -> Optional[str]:
    """Text of the newest assistant message written by `run_id`, if any."""
    newest_first = sorted(messages, key=lambda m: m.get("created_at") or 0, reverse=True)
    for message in newest_first:
        if message.get("role") != "assistant" or message.get("run_id") != run_id:
            continue
        content = message.get("content") or []
        if content and content[0].get("type") == "text":
            return (content[0].get("text") or {}).get("value")
    return None


class RunCoordinator:
    """Executes conversation turns against the assistant service."""

    def __init__(
        self,
        client: AssistantClient,
        dispatcher: Optional[ToolDispatcher] = None,
        poll_interval: Optional[float] = None,
        deadline_seconds: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.dispatcher = dispatcher or ToolDispatcher.with_builtin_tools()
        self.poll_interval = poll_interval if poll_interval is not None else settings.run_poll_interval_seconds
        self.deadline_seconds = deadline_seconds if deadline_seconds is not None else settings.run_deadline_seconds
        self.sleep = sleep
        self.clock = clock

    async def start_thread(self) -> str:
        return await self.client.create_thread()

    async def execute(self, thread_ref: str, message_text: str) -> str:
        """
        Run one turn and return the assistant's reply text.

        Raises:
            MessageAppendFailed: The user's message could not be added
            AssistantRunFailed: The run ended in a failure state
            RunTimedOut: The run did not finish before the deadline
            UpstreamUnavailable: Any other assistant service failure
        """
        try:
            await self.client.append_message(thread_ref, message_text)
        except UpstreamUnavailable as e:
            raise MessageAppendFailed(e.detail)
        logger.info(f"Message added to thread {thread_ref}")

        run = _parse_run(await self.client.create_run(thread_ref))
        logger.info(f"Run created with ID: {run.id}, status: {run.status.value}, thread: {run.thread_ref or thread_ref}")
        deadline = self.clock() + self.deadline_seconds

        run = await self._drive(run, thread_ref, deadline)

        if run.status in TERMINAL_FAILURE_STATUSES:
            code = run.last_error_code
            if run.status != RunStatus.FAILED:
                code = code or run.status.value
            logger.error(f"Assistant run {run.id} ended as {run.status.value}: {code} - {run.last_error_message}")
            raise AssistantRunFailed(code, run.last_error_message)

        reply = select_reply(await self.client.list_messages(run.thread_ref or thread_ref), run.id)
        if reply is None:
            logger.warning(f"No assistant text message found for run {run.id}; returning fallback reply")
            return FALLBACK_REPLY
        return reply

    async def _drive(self, run: AssistantRun, thread_ref: str, deadline: float) -> AssistantRun:
        """Advance the run until it completes or fails."""
        thread_ref = run.thread_ref or thread_ref
        while True:
            if run.status == RunStatus.COMPLETED or run.status in TERMINAL_FAILURE_STATUSES:
                return run

            if run.status == RunStatus.REQUIRES_ACTION and run.pending_tool_calls:
                self._check_deadline(run, deadline)
                logger.info(f"Run {run.id} requires action ({len(run.pending_tool_calls)} tool call(s))")
                outputs = await self.dispatcher.dispatch_all(run.pending_tool_calls)
                run = _parse_run(await self.client.submit_tool_outputs(thread_ref, run.id, outputs))
                logger.info(f"Tool outputs submitted. Run {run.id} status after submission: {run.status.value}")
                continue

            self._check_deadline(run, deadline)
            await self.sleep(self.poll_interval)
            run = _parse_run(await self.client.get_run(thread_ref, run.id))
            logger.info(f"Run {run.id} status: {run.status.value}")

    def _check_deadline(self, run: AssistantRun, deadline: float) -> None:
        if self.clock() >= deadline:
            logger.error(f"Run {run.id} still {run.status.value} after {self.deadline_seconds}s; giving up")
            raise RunTimedOut(f"Run {run.id} did not finish within {self.deadline_seconds} seconds")
