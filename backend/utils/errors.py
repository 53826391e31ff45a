"""
Classified failures surfaced by the chat gateway, and their HTTP mapping
"""
import logging
from typing import Optional

from fastapi import Request
from fastapi.exceptions import RequestValidationError

from backend.utils.responses import error_response

logger = logging.getLogger(__name__)

GENERIC_FAILURE_MESSAGE = "Failed to get assistant response"


class ChatGatewayError(Exception):
    code = "internal_error"
    status_code = 500
    message = "An error occurred"

    def __init__(self, detail: Optional[str] = None, *, message: Optional[str] = None):
        super().__init__(detail or message or self.message)
        self.detail = detail
        if message:
            self.message = message

    def response_data(self) -> dict:
        return {"detail": self.detail} if self.detail else {}


class AuthRequired(ChatGatewayError):
    code = "unauthorized"
    status_code = 401
    message = "Invalid or missing token."


class MissingFields(ChatGatewayError):
    code = "missing_fields"
    status_code = 400
    message = "threadId and message are required"


class EntitlementDenied(ChatGatewayError):
    code = "entitlement_denied"
    status_code = 403

    def __init__(self, reason: str, plan_status: str = "expired"):
        super().__init__(message=reason)
        self.reason = reason
        self.plan_status = plan_status

    def response_data(self) -> dict:
        return {"reason": self.reason, "plan_status": self.plan_status}


class DataIntegrityFault(EntitlementDenied):
    """A stored record holds a plan value no writer should produce. Denies."""
    code = "data_integrity_fault"

    def __init__(self, reason: str = "unknown plan state"):
        super().__init__(reason, plan_status="unknown")


class UpstreamUnavailable(ChatGatewayError):
    code = "upstream_unavailable"
    status_code = 500
    message = GENERIC_FAILURE_MESSAGE


class MessageAppendFailed(UpstreamUnavailable):
    code = "message_append_failed"


class AssistantRunFailed(ChatGatewayError):
    code = "assistant_run_failed"
    status_code = 500
    message = "Assistant processing failed."

    def __init__(self, run_code: Optional[str], run_message: Optional[str]):
        self.run_code = run_code or "UNKNOWN_FAILURE"
        self.run_message = run_message or "Unknown failure"
        super().__init__(self.run_message)

    def response_data(self) -> dict:
        return {"detail": self.run_message, "code": self.run_code}


class RunTimedOut(ChatGatewayError):
    code = "run_timed_out"
    status_code = 500
    message = "Assistant did not finish in time."


class BillingUnavailable(ChatGatewayError):
    code = "billing_disabled"
    status_code = 503
    message = "Billing is not configured."


async def chat_gateway_error_handler(request: Request, exc: ChatGatewayError):
    """Render any classified failure in the normalized envelope."""
    if exc.status_code >= 500:
        logger.error(f"{request.url.path} failed: {exc.code} - {exc}")
    else:
        logger.info(f"{request.url.path} rejected: {exc.code} - {exc}")
    return error_response(
        exc.code,
        status=exc.status_code,
        message=exc.message,
        data=exc.response_data(),
    )


async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    """Unparseable or mistyped request bodies render as a 400 in the envelope."""
    problems = [
        {"loc": [str(part) for part in error.get("loc", ())], "msg": error.get("msg", "")}
        for error in exc.errors()
    ]
    logger.info(f"{request.url.path} rejected: invalid_request - {problems}")
    return error_response(
        "invalid_request",
        status=400,
        message="Request body is missing or malformed",
        data={"detail": problems},
    )
