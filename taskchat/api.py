"""FastAPI application exposing the chat endpoint."""

from __future__ import annotations

import logging
from typing import Literal

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from taskchat.config import Settings, load_settings
from taskchat.db import Database
from taskchat.errors import ChatServiceError
from taskchat.llm.base import LLMProvider
from taskchat.llm.gateway import ChatGatewayProvider
from taskchat.orchestrator import Orchestrator
from taskchat.streaming import encode_settled_answer
from taskchat.tools.registry import build_task_registry

LOGGER = logging.getLogger(__name__)


class ChatMessageIn(BaseModel):
    """One visible message of the conversation supplied by the client."""

    role: Literal["system", "user", "assistant"]
    content: str


class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    messages: list[ChatMessageIn] = Field(default_factory=list)
    user_id: str | None = Field(default=None, alias="userId")
    conversation_id: str | None = Field(default=None, alias="conversationId")


def create_app(
    settings: Settings | None = None,
    llm: LLMProvider | None = None,
    db: Database | None = None,
) -> FastAPI:
    """Wire the store, tools, model client and orchestrator into an app."""

    settings = settings or load_settings()
    if db is None:
        db = Database(settings.database_path)
        db.initialize()
    orchestrator = Orchestrator(
        llm=llm or ChatGatewayProvider(settings),
        tool_registry=build_task_registry(db),
        request_timeout_seconds=settings.request_timeout_seconds,
        max_tool_rounds=settings.max_tool_rounds,
    )

    app = FastAPI(title="taskchat")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def invalid_request(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = exc.errors()
        detail = errors[0]["msg"] if errors else "malformed body"
        return _error(400, f"Invalid request: {detail}")

    @app.exception_handler(ChatServiceError)
    async def chat_service_error(request: Request, exc: ChatServiceError) -> JSONResponse:
        return _error(exc.status_code, exc.message)

    @app.exception_handler(Exception)
    async def unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        LOGGER.exception("taskchat request failed")
        return _error(500, str(exc) or "Unknown error")

    @app.post("/chat")
    async def chat(body: ChatRequest) -> StreamingResponse:
        if not body.user_id:
            raise ChatServiceError("userId is required", status_code=400)

        history = [m.model_dump() for m in body.messages]
        if body.conversation_id:
            latest_user = next((m for m in reversed(history) if m["role"] == "user"), None)
            if latest_user is not None:
                db.add_chat_message(body.user_id, body.conversation_id, "user", latest_user["content"])

        result = await orchestrator.run(history, body.user_id)
        reply = result.content.encode("utf-8", errors="replace").decode("utf-8")

        if body.conversation_id:
            db.add_chat_message(body.user_id, body.conversation_id, "assistant", reply)
        # Encoded up front so nothing can fail once the 200 headers are out.
        events = list(encode_settled_answer(reply))
        return StreamingResponse(iter(events), media_type="text/event-stream")

    @app.get("/conversations/{conversation_id}/messages")
    def conversation_messages(conversation_id: str, userId: str) -> list[dict[str, str]]:  # noqa: N803
        return db.get_chat_messages(userId, conversation_id)

    @app.delete("/conversations/{conversation_id}/messages")
    def clear_conversation(conversation_id: str, userId: str) -> dict[str, bool]:  # noqa: N803
        db.clear_conversation(userId, conversation_id)
        return {"cleared": True}

    @app.get("/tasks")
    def tasks(userId: str, completed: bool | None = None) -> list[dict]:  # noqa: N803
        return [task.to_dict() for task in db.list_tasks(userId, completed=completed)]

    @app.patch("/tasks/{task_id}")
    def toggle_task(task_id: str, userId: str) -> dict:  # noqa: N803
        task = db.get_task(userId, task_id)
        if task is None:
            raise ChatServiceError("Task not found", status_code=404)
        db.set_task_completed(userId, task.id, not task.completed)
        return db.get_task(userId, task.id).to_dict()

    @app.delete("/tasks/{task_id}")
    def delete_task(task_id: str, userId: str) -> dict[str, bool]:  # noqa: N803
        if db.get_task(userId, task_id) is None:
            raise ChatServiceError("Task not found", status_code=404)
        db.delete_task(userId, task_id)
        return {"deleted": True}

    @app.get("/health")
    def health() -> dict[str, bool]:
        return {"ok": True}

    return app


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)
