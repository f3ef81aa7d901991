"""Request-level errors surfaced to chat callers."""

from __future__ import annotations


class ChatServiceError(Exception):
    """Base error carrying the HTTP status the API answers with."""

    status_code = 500

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class RateLimitedError(ChatServiceError):
    """Upstream model rate limit. The caller should back off, not retry."""

    status_code = 429


class QuotaExceededError(ChatServiceError):
    """Upstream credits exhausted. Terminal until an operator tops up."""

    status_code = 402


class UpstreamError(ChatServiceError):
    """Any other upstream or transport failure."""

    status_code = 500
