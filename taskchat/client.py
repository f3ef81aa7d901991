"""Async client for the chat endpoint."""

from __future__ import annotations

import logging
import uuid
from typing import Any, Callable

import httpx

from taskchat.errors import ChatServiceError, QuotaExceededError, RateLimitedError, UpstreamError
from taskchat.streaming import StreamConsumer

LOGGER = logging.getLogger(__name__)


class TaskChatClient:
    """Keeps the visible transcript of one conversation and streams replies into it."""

    def __init__(
        self,
        base_url: str,
        user_id: str,
        conversation_id: str | None = None,
        timeout_seconds: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
        on_tasks_changed: Callable[[], None] | None = None,
    ) -> None:
        self._base_url = base_url
        self._timeout = httpx.Timeout(timeout_seconds)
        self._transport = transport
        self._on_tasks_changed = on_tasks_changed
        self.user_id = user_id
        self.conversation_id = conversation_id or str(uuid.uuid4())
        self.messages: list[dict[str, str]] = []

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self._base_url, timeout=self._timeout, transport=self._transport)

    async def send(self, text: str) -> str:
        """Send ``text`` and return the assistant reply once the stream ends."""

        self.messages.append({"role": "user", "content": text})
        body = {
            "messages": list(self.messages),
            "userId": self.user_id,
            "conversationId": self.conversation_id,
        }
        consumer = StreamConsumer(self.messages, on_tool_activity=self._tasks_changed)

        async with self._client() as client:
            async with client.stream("POST", "/chat", json=body) as response:
                if response.status_code != 200:
                    await response.aread()
                    raise _error_for(response)
                async for chunk in response.aiter_bytes():
                    consumer.feed(chunk)
                    if consumer.done:
                        break
        consumer.close()

        if consumer.content:
            self._tasks_changed()
        return consumer.content

    async def load_history(self) -> list[dict[str, str]]:
        """Replace the local transcript with the persisted one."""

        async with self._client() as client:
            response = await client.get(
                f"/conversations/{self.conversation_id}/messages",
                params={"userId": self.user_id},
            )
        if response.status_code != 200:
            raise _error_for(response)
        self.messages = response.json()
        return self.messages

    async def list_tasks(self, completed: bool | None = None) -> list[dict[str, Any]]:
        params: dict[str, Any] = {"userId": self.user_id}
        if completed is not None:
            params["completed"] = str(completed).lower()
        async with self._client() as client:
            response = await client.get("/tasks", params=params)
        if response.status_code != 200:
            raise _error_for(response)
        return response.json()

    async def toggle_task(self, task_id: str) -> dict[str, Any]:
        async with self._client() as client:
            response = await client.patch(f"/tasks/{task_id}", params={"userId": self.user_id})
        if response.status_code != 200:
            raise _error_for(response)
        self._tasks_changed()
        return response.json()

    async def delete_task(self, task_id: str) -> None:
        async with self._client() as client:
            response = await client.delete(f"/tasks/{task_id}", params={"userId": self.user_id})
        if response.status_code != 200:
            raise _error_for(response)
        self._tasks_changed()

    async def clear_history(self) -> None:
        """Forget the persisted transcript of this conversation."""

        async with self._client() as client:
            response = await client.delete(
                f"/conversations/{self.conversation_id}/messages",
                params={"userId": self.user_id},
            )
        if response.status_code != 200:
            raise _error_for(response)
        self.messages = []

    def _tasks_changed(self) -> None:
        if self._on_tasks_changed is not None:
            self._on_tasks_changed()


def _error_for(response: httpx.Response) -> ChatServiceError:
    try:
        payload = response.json()
    except ValueError:
        payload = None
    message = (payload.get("error") if isinstance(payload, dict) else None) or response.text
    LOGGER.warning("Chat request failed: status=%s error=%r", response.status_code, message)
    if response.status_code == 429:
        return RateLimitedError(message or "Rate limited")
    if response.status_code == 402:
        return QuotaExceededError(message or "Payment required")
    if response.status_code in (400, 404):
        return ChatServiceError(message, status_code=response.status_code)
    return UpstreamError(message or "Failed to start stream", status_code=response.status_code)
