"""OpenAI-compatible chat completions gateway implementation of LLMProvider."""

from __future__ import annotations

import json
import logging
from typing import Any

import httpx

from taskchat.config import Settings
from taskchat.errors import QuotaExceededError, RateLimitedError, UpstreamError
from taskchat.llm.base import LLMProvider
from taskchat.models import LLMResponse, LLMToolCall

_LOGGER = logging.getLogger(__name__)


class ChatGatewayProvider(LLMProvider):
    """LLM provider posting non-streamed requests to ``/chat/completions``.

    Rate limits are not retried here; they are surfaced so the end user can
    decide when to try again.
    """

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    async def generate(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
    ) -> LLMResponse:
        payload: dict[str, Any] = {
            "model": self._settings.gateway_model,
            "messages": messages,
            "stream": False,
        }
        if tools:
            payload["tools"] = tools

        timeout = httpx.Timeout(self._settings.request_timeout_seconds)
        async with httpx.AsyncClient(base_url=self._settings.gateway_base_url, timeout=timeout) as client:
            try:
                response = await client.post(
                    "/chat/completions",
                    headers={
                        "Authorization": f"Bearer {self._settings.gateway_api_key}",
                        "Content-Type": "application/json",
                    },
                    json=payload,
                )
            except httpx.HTTPError as exc:
                _LOGGER.error("AI gateway request failed: %s", exc)
                raise UpstreamError("AI gateway error") from exc

        if response.status_code == 429:
            _LOGGER.warning("AI gateway rate limited (429)")
            raise RateLimitedError("Rate limited")
        if response.status_code == 402:
            _LOGGER.warning("AI gateway reports payment required (402)")
            raise QuotaExceededError("Payment required")
        if not 200 <= response.status_code < 300:
            _LOGGER.error("AI gateway error: status=%s body=%s", response.status_code, response.text)
            raise UpstreamError("AI gateway error")

        try:
            data = response.json()
            finish_reason = data["choices"][0].get("finish_reason")
            choice = data["choices"][0]["message"]
            content = choice.get("content") or ""
            if not isinstance(content, str):
                raise TypeError(f"content is {type(content).__name__}")
            parsed_tool_calls = _parse_tool_calls(choice.get("tool_calls") or [])
        except (ValueError, KeyError, IndexError, TypeError, AttributeError) as exc:
            _LOGGER.error("AI gateway returned an unexpected body: %s", response.text)
            raise UpstreamError("AI gateway error") from exc

        _LOGGER.info(
            "LLM response: finish_reason=%r content=%r tool_calls=%r",
            finish_reason,
            content[:200],
            choice.get("tool_calls"),
        )
        return LLMResponse(content=content, tool_calls=parsed_tool_calls, raw=data)


def _parse_tool_calls(raw_calls: list[dict[str, Any]]) -> list[LLMToolCall]:
    parsed: list[LLMToolCall] = []
    for index, tool_call in enumerate(raw_calls):
        function_data = tool_call.get("function")
        if not isinstance(function_data, dict):
            raise TypeError(f"tool call {index} has no function object")
        parsed.append(
            LLMToolCall(
                name=function_data.get("name") or "",
                arguments=_safe_json_loads(function_data.get("arguments") or "{}"),
                call_id=tool_call.get("id") or f"call_{index}",
            )
        )
    return parsed


def _safe_json_loads(raw: str | dict[str, Any]) -> dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return {}
    return parsed if isinstance(parsed, dict) else {}
