"""
Assistant run state as reported by the assistant service
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


class RunStatus(str, Enum):
    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    REQUIRES_ACTION = "requires_action"
    COMPLETED = "completed"
    FAILED = "failed"
    # Service-side states outside the normal turn lifecycle
    CANCELLING = "cancelling"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    INCOMPLETE = "incomplete"


# Statuses that end the turn without a reply
TERMINAL_FAILURE_STATUSES = {RunStatus.FAILED, RunStatus.CANCELLED, RunStatus.EXPIRED, RunStatus.INCOMPLETE}


@dataclass(frozen=True)
class ToolCall:
    call_id: str
    tool_name: str
    arguments_payload: str


@dataclass(frozen=True)
class AssistantRun:
    id: str
    thread_ref: str
    status: RunStatus
    pending_tool_calls: List[ToolCall] = field(default_factory=list)
    last_error_code: Optional[str] = None
    last_error_message: Optional[str] = None

    @classmethod
    def from_api(cls, payload: dict) -> "AssistantRun":
        """Build a run from the assistant service's JSON run object."""
        status_value = payload.get("status")
        try:
            status = RunStatus(status_value)
        except ValueError:
            raise ValueError(f"Unrecognized run status: {status_value!r}")

        tool_calls: List[ToolCall] = []
        if status == RunStatus.REQUIRES_ACTION:
            required = payload.get("required_action") or {}
            for call in (required.get("submit_tool_outputs") or {}).get("tool_calls") or []:
                function = call.get("function") or {}
                tool_calls.append(ToolCall(
                    call_id=call.get("id", ""),
                    tool_name=function.get("name", ""),
                    arguments_payload=function.get("arguments") or "",
                ))

        last_error = payload.get("last_error") or {}
        return cls(
            id=payload["id"],
            thread_ref=payload.get("thread_id", ""),
            status=status,
            pending_tool_calls=tool_calls,
            last_error_code=last_error.get("code"),
            last_error_message=last_error.get("message"),
        )
