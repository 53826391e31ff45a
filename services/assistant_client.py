"""
Assistant Service client - Azure OpenAI Assistants (v2) over REST
"""
import logging
from typing import List, Optional

import httpx

from config.settings import settings
from backend.utils.errors import UpstreamUnavailable

logger = logging.getLogger(__name__)


def _error_message(response: httpx.Response) -> str:
    """Pull a human readable message out of an upstream error body."""
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return error["message"]
        if body.get("message"):
            return body["message"]
    return str(body)


class AssistantClient:
    """
    Thin async client for the thread/run/message endpoints.
    Every failure is raised as UpstreamUnavailable.
    """

    def __init__(
        self,
        endpoint: Optional[str] = None,
        api_key: Optional[str] = None,
        assistant_id: Optional[str] = None,
        api_version: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.endpoint = (endpoint or settings.azure_openai_endpoint or "").rstrip("/")
        self.api_key = api_key or settings.azure_openai_api_key
        self.assistant_id = assistant_id or settings.azure_openai_assistant_id
        self.api_version = api_version or settings.azure_openai_api_version
        self.timeout = timeout if timeout is not None else settings.assistant_http_timeout_seconds
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=f"{self.endpoint}/openai",
            headers={
                "api-key": self.api_key or "",
                "OpenAI-Beta": "assistants=v2",
            },
            params={"api-version": self.api_version},
            timeout=self.timeout,
            transport=self.transport,
        )

    async def _request(self, action: str, method: str, path: str, **kwargs) -> dict:
        if not self.endpoint or not self.api_key:
            raise UpstreamUnavailable(f"Failed to {action}: assistant service is not configured")
        try:
            async with self._client() as client:
                response = await client.request(method, path, **kwargs)
        except httpx.RequestError as e:
            logger.error(f"Assistant service unreachable while trying to {action}: {e}")
            raise UpstreamUnavailable(f"Failed to {action}: {e}")

        if response.is_error:
            message = _error_message(response)
            logger.error(f"Failed to {action}: {response.status_code} {response.reason_phrase} - {message}")
            raise UpstreamUnavailable(
                f"Failed to {action}: {response.status_code} {response.reason_phrase} - {message}"
            )
        try:
            return response.json()
        except ValueError:
            raise UpstreamUnavailable(f"Failed to {action}: response was not JSON")

    async def create_thread(self) -> str:
        thread = await self._request("create thread", "POST", "/threads", json={})
        logger.info(f"New thread created: {thread['id']}")
        return thread["id"]

    async def append_message(self, thread_ref: str, text: str) -> dict:
        return await self._request(
            "add message", "POST", f"/threads/{thread_ref}/messages",
            json={"role": "user", "content": text},
        )

    async def create_run(self, thread_ref: str) -> dict:
        return await self._request(
            "create run", "POST", f"/threads/{thread_ref}/runs",
            json={"assistant_id": self.assistant_id},
        )

    async def get_run(self, thread_ref: str, run_id: str) -> dict:
        return await self._request("retrieve run", "GET", f"/threads/{thread_ref}/runs/{run_id}")

    async def submit_tool_outputs(self, thread_ref: str, run_id: str, tool_outputs: List[dict]) -> dict:
        return await self._request(
            "submit tool outputs", "POST",
            f"/threads/{thread_ref}/runs/{run_id}/submit_tool_outputs",
            json={"tool_outputs": tool_outputs},
        )

    async def list_messages(self, thread_ref: str) -> List[dict]:
        """Thread messages, newest first."""
        page = await self._request(
            "retrieve messages", "GET", f"/threads/{thread_ref}/messages",
            params={"order": "desc"},
        )
        return page.get("data") or []
