"""Tool-calling orchestration loop."""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any, Callable

from taskchat.errors import ChatServiceError, UpstreamError
from taskchat.llm.base import LLMProvider
from taskchat.models import LLMResponse, OrchestrationResult
from taskchat.tools.registry import ToolRegistry

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_TOOL_ROUNDS = 5
FALLBACK_REPLY = "Done!"


class Orchestrator:
    """Alternates model calls and tool execution until an answer settles.

    The loop settles when the model stops asking for tools, when
    ``max_tool_rounds`` rounds have run, or when a follow-up model call
    fails. Only the first model call may fail the request.
    """

    def __init__(
        self,
        llm: LLMProvider,
        tool_registry: ToolRegistry,
        request_timeout_seconds: float,
        max_tool_rounds: int = DEFAULT_MAX_TOOL_ROUNDS,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._llm = llm
        self._tool_registry = tool_registry
        self._request_timeout_seconds = request_timeout_seconds
        self._max_tool_rounds = max_tool_rounds
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def run(self, history: list[dict[str, str]], user_id: str) -> OrchestrationResult:
        """Answer ``history`` on behalf of ``user_id``."""

        transcript: list[dict[str, Any]] = [
            {"role": "system", "content": build_system_prompt(self._clock())},
            *({"role": m["role"], "content": m["content"]} for m in history),
        ]
        tools = self._tool_registry.list_tool_specs()

        try:
            response = await self._generate(transcript, tools)
        except TimeoutError as exc:
            LOGGER.error("Model call timed out after %ss", self._request_timeout_seconds)
            raise UpstreamError("AI gateway timed out") from exc

        rounds = 0
        executed = 0
        content = response.content
        while response.tool_calls and rounds < self._max_tool_rounds:
            rounds += 1
            transcript.append(_assistant_tool_message(response))
            # Sequential on purpose: later calls may depend on earlier mutations.
            for tool_call in response.tool_calls:
                result = await self._tool_registry.execute(tool_call.name, tool_call.arguments, user_id)
                executed += 1
                transcript.append({"role": "tool", "tool_call_id": tool_call.call_id, "content": result})

            try:
                response = await self._generate(transcript, tools)
            except (ChatServiceError, TimeoutError) as exc:
                LOGGER.error("Model follow-up failed in round %d: %r", rounds, exc)
                break
            content = response.content or content

        if response.tool_calls and rounds >= self._max_tool_rounds:
            LOGGER.warning("Tool round cap (%d) reached; settling on best-effort content", rounds)

        reply = content.strip() or FALLBACK_REPLY
        LOGGER.info("Settled after %d round(s), %d tool call(s)", rounds, executed)
        return OrchestrationResult(content=reply, rounds=rounds, tool_calls=executed)

    async def _generate(self, transcript: list[dict[str, Any]], tools: list[dict[str, Any]]) -> LLMResponse:
        return await asyncio.wait_for(
            self._llm.generate(list(transcript), tools=tools),
            timeout=self._request_timeout_seconds,
        )


def build_system_prompt(now: datetime) -> str:
    """System prompt carrying the current time so relative dates resolve."""

    return (
        "You are a friendly and concise AI task manager called todo.ai. "
        "You help users manage their tasks through conversation.\n"
        f"Current date/time: {now.isoformat()}.\n\n"
        "When users ask to add, list, complete, delete, or update tasks, use the available tools.\n"
        "When a user mentions a deadline or due date, parse it into ISO 8601 and pass it as due_at.\n"
        "When listing tasks, format them nicely and mention due dates. Be brief and helpful.\n"
        "If a user's request is ambiguous, ask for clarification.\n"
        "Always confirm actions you've taken."
    )


def _assistant_tool_message(response: LLMResponse) -> dict[str, Any]:
    return {
        "role": "assistant",
        "content": response.content,
        "tool_calls": [
            {
                "id": tc.call_id,
                "type": "function",
                "function": {"name": tc.name, "arguments": json.dumps(tc.arguments)},
            }
            for tc in response.tool_calls
        ],
    }
