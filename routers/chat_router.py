"""
Chat Router - thread creation and conversation turns (entitlement gated)
"""
from typing import Optional

from fastapi import APIRouter, Depends

from auth import Identity, require_entitlement
from backend.utils.errors import MissingFields
from backend.utils.responses import success_response
from models.chat_models import ChatRequest
from services.assistant_client import AssistantClient
from services.run_coordinator import RunCoordinator
from utils.shared_utils import log_endpoint_event

# Create router
chat_router = APIRouter(prefix="/api", tags=["chat"])


def get_run_coordinator() -> RunCoordinator:
    return RunCoordinator(AssistantClient())


@chat_router.post("/new-thread")
async def new_thread(
    identity: Identity = Depends(require_entitlement),
    coordinator: RunCoordinator = Depends(get_run_coordinator),
):
    """Start a conversation: returns a fresh assistant thread reference"""
    thread_ref = await coordinator.start_thread()
    log_endpoint_event("/api/new-thread", identity=identity.subject, details={"thread_id": thread_ref})
    return success_response({"thread_id": thread_ref})


@chat_router.post("/chat")
async def chat(
    request: Optional[ChatRequest] = None,
    identity: Identity = Depends(require_entitlement),
    coordinator: RunCoordinator = Depends(get_run_coordinator),
):
    """Execute one turn on an existing thread and return the assistant's reply"""
    thread_ref = (request.thread_id or "").strip() if request else ""
    message = (request.message or "").strip() if request else ""
    if not thread_ref or not message:
        raise MissingFields()

    try:
        reply = await coordinator.execute(thread_ref, message)
    except Exception as e:
        log_endpoint_event("/api/chat", identity=identity.subject, result="error", details={"thread_id": thread_ref, "error": str(e)})
        raise

    log_endpoint_event("/api/chat", identity=identity.subject, details={"thread_id": thread_ref})
    return success_response({"response": reply})
