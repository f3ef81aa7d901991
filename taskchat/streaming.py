"""Server-sent event framing for chat replies.

The server side emits the settled answer as a single ``data:`` event
followed by ``data: [DONE]``. The client side parses the same framing
incrementally, so a future encoder that emits many partial deltas needs no
change on the consumer.
"""

from __future__ import annotations

import codecs
import json
import logging
from typing import Any, Callable, Iterator

LOGGER = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"
DATA_PREFIX = "data: "


def format_event(payload: str) -> bytes:
    # Lone surrogates from upstream text are sent as "?" instead of failing mid-stream.
    return f"{DATA_PREFIX}{payload}\n\n".encode("utf-8", errors="replace")


def encode_settled_answer(content: str) -> Iterator[bytes]:
    """Yield the event stream for one settled answer."""

    delta = {"choices": [{"delta": {"content": content}}]}
    yield format_event(json.dumps(delta, ensure_ascii=False, separators=(",", ":")))
    yield format_event(DONE_SENTINEL)


class StreamConsumer:
    """Incremental parser for the chat event stream.

    Feed raw byte chunks as they arrive. Text deltas are appended to a single
    in-progress assistant message in ``transcript``; any delta carrying
    ``tool_calls`` fires ``on_tool_activity``. Text already appended stays in
    the transcript if the caller abandons the stream.
    """

    def __init__(
        self,
        transcript: list[dict[str, str]] | None = None,
        on_tool_activity: Callable[[], None] | None = None,
    ) -> None:
        self.transcript = transcript if transcript is not None else []
        self.content = ""
        self.done = False
        self._on_tool_activity = on_tool_activity
        self._decoder = codecs.getincrementaldecoder("utf-8")()
        self._buffer = ""
        self._assistant_index: int | None = None

    def feed(self, chunk: bytes) -> None:
        if self.done:
            return
        self._buffer += self._decoder.decode(chunk)

        while (newline := self._buffer.find("\n")) != -1:
            line = self._buffer[:newline]
            self._buffer = self._buffer[newline + 1 :]

            payload = _data_payload(line)
            if payload is None:
                continue
            if payload == DONE_SENTINEL:
                self.done = True
                break

            try:
                parsed = json.loads(payload)
            except json.JSONDecodeError:
                # Retry on the next read; the rest of the line may still be in flight.
                self._buffer = line + "\n" + self._buffer
                break
            self._apply(parsed)

    def close(self) -> None:
        """Flush whatever is left once the byte stream has ended."""

        self._buffer += self._decoder.decode(b"", final=True)
        remainder, self._buffer = self._buffer, ""
        if self.done or not remainder.strip():
            self.done = True
            return
        for line in remainder.split("\n"):
            payload = _data_payload(line)
            if payload is None or payload == DONE_SENTINEL:
                continue
            try:
                parsed = json.loads(payload)
            except json.JSONDecodeError:
                LOGGER.debug("Dropping unparseable trailing event: %r", payload[:200])
                continue
            self._apply(parsed)
        self.done = True

    def _apply(self, parsed: Any) -> None:
        delta = _first_delta(parsed)
        text = delta.get("content")
        if isinstance(text, str) and text:
            self._append(text)
        if delta.get("tool_calls") and self._on_tool_activity is not None:
            self._on_tool_activity()

    def _append(self, text: str) -> None:
        self.content += text
        if self._assistant_index is None:
            self.transcript.append({"role": "assistant", "content": ""})
            self._assistant_index = len(self.transcript) - 1
        self.transcript[self._assistant_index]["content"] = self.content


def _data_payload(line: str) -> str | None:
    if line.endswith("\r"):
        line = line[:-1]
    if line.startswith(":") or not line.strip():
        return None
    if not line.startswith(DATA_PREFIX):
        return None
    return line[len(DATA_PREFIX) :].strip()


def _first_delta(parsed: Any) -> dict[str, Any]:
    if not isinstance(parsed, dict):
        return {}
    choices = parsed.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return {}
    delta = choices[0].get("delta")
    return delta if isinstance(delta, dict) else {}
