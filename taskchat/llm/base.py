"""LLM provider interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from taskchat.models import LLMResponse


class LLMProvider(ABC):
    """Abstract model provider used by the orchestrator.

    Implementations raise ``RateLimitedError``, ``QuotaExceededError`` or
    ``UpstreamError`` from ``taskchat.errors`` when the completion fails.
    """

    @abstractmethod
    async def generate(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
    ) -> LLMResponse:
        """Generate a model response."""
