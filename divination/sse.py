"""Incremental decoding of chunked generation streams.

Three wire dialects share one decoder and one accumulator:

    "proxy"         SSE from the self-hosted proxy's text stream.
                    data: {"content": "..."}   additive delta
                    data: {"done": true}       completion
                    data: {"error": "..."}     abort
                    data: [DONE]               completion
    "proxy-vision"  SSE from the proxy's vision stream.
                    {"text": "..."} additive, {"finalText": "..."} terminal
                    correction, {"finishReason": ...} / {"status": "completed"}
                    completion, {"error": ...} abort
    "provider"      newline-delimited JSON from streamGenerateContent.
                    candidates[0].content.parts[0].text is the cumulative
                    text so far (replace, not append); finishReason completes.

Bytes are decoded incrementally, so a UTF-8 sequence or a line split across
chunk boundaries decodes exactly as if it had arrived whole. Malformed
records are skipped.
"""

from __future__ import annotations

import codecs
import json
import logging
from collections.abc import AsyncIterable, Callable
from dataclasses import dataclass
from typing import Any, Literal

from divination.errors import ErrorKind, GenerationError

logger = logging.getLogger(__name__)

Dialect = Literal["proxy", "proxy-vision", "provider"]
Sink = Callable[[str], None]

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"


@dataclass(frozen=True)
class StreamEvent:
    """One decoded application-level event.

    op: "append" (delta), "replace" (cumulative text), "final" (terminal
    correction, appended unless already present), or "done".
    """

    op: Literal["append", "replace", "final", "done"]
    text: str = ""


# ---------------------------------------------------------------------------
# Per-dialect record adapters
# ---------------------------------------------------------------------------

def _stream_error(error: Any) -> GenerationError:
    if isinstance(error, str):
        return GenerationError(ErrorKind.SERVER_FAULT, f"后端服务器错误: {error}")
    if isinstance(error, dict):
        message = error.get("message") or "未知错误"
        return GenerationError(ErrorKind.SERVER_FAULT, f"后端服务器错误: {message}")
    return GenerationError(ErrorKind.MALFORMED_RESPONSE, "流式响应包含无法识别的错误信息")


def _proxy_events(record: dict) -> list[StreamEvent]:
    if record.get("error"):
        raise _stream_error(record["error"])
    if record.get("done") is True:
        return [StreamEvent("done")]
    content = record.get("content")
    if isinstance(content, str) and content:
        return [StreamEvent("append", content)]
    return []


def _vision_events(record: dict) -> list[StreamEvent]:
    if record.get("error"):
        raise _stream_error(record["error"])
    events: list[StreamEvent] = []
    text = record.get("text")
    if isinstance(text, str) and text:
        events.append(StreamEvent("append", text))
    final_text = record.get("finalText")
    if isinstance(final_text, str) and final_text:
        events.append(StreamEvent("final", final_text))
    if record.get("finishReason") or record.get("status") == "completed":
        events.append(StreamEvent("done"))
    return events


def _provider_events(record: dict) -> list[StreamEvent]:
    if record.get("error"):
        raise _stream_error(record["error"])
    candidates = record.get("candidates")
    if not isinstance(candidates, list) or not candidates or not isinstance(candidates[0], dict):
        return []
    candidate = candidates[0]
    events: list[StreamEvent] = []
    try:
        text = candidate["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError):
        text = None
    if isinstance(text, str) and text:
        events.append(StreamEvent("replace", text))
    if candidate.get("finishReason"):
        events.append(StreamEvent("done"))
    return events


_ADAPTERS: dict[str, Callable[[dict], list[StreamEvent]]] = {
    "proxy": _proxy_events,
    "proxy-vision": _vision_events,
    "provider": _provider_events,
}


# ---------------------------------------------------------------------------
# Decoder
# ---------------------------------------------------------------------------

class StreamDecoder:
    """Turns raw byte chunks into StreamEvents, carrying partial lines over."""

    def __init__(self, dialect: Dialect) -> None:
        if dialect not in _ADAPTERS:
            raise ValueError(f"Unknown stream dialect: {dialect!r}")
        self.dialect = dialect
        self.finished = False
        self._adapter = _ADAPTERS[dialect]
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    def feed(self, chunk: bytes) -> list[StreamEvent]:
        """Decode one chunk; returns the events completed by it."""
        if self.finished:
            return []
        self._buffer += self._utf8.decode(chunk)
        *lines, self._buffer = self._buffer.split("\n")
        return self._decode_lines(lines)

    def close(self) -> list[StreamEvent]:
        """Flush the final unterminated line at end of input."""
        if self.finished:
            return []
        tail = self._buffer + self._utf8.decode(b"", final=True)
        self._buffer = ""
        return self._decode_lines([tail])

    def _decode_lines(self, lines: list[str]) -> list[StreamEvent]:
        events: list[StreamEvent] = []
        for line in lines:
            try:
                decoded = self._decode_line(line.strip())
            except GenerationError:
                self.finished = True
                raise
            for event in decoded:
                events.append(event)
                if event.op == "done":
                    self.finished = True
                    return events
        return events

    def _decode_line(self, line: str) -> list[StreamEvent]:
        if not line:
            return []

        if line.startswith(DATA_PREFIX):
            line = line[len(DATA_PREFIX):].strip()
            if line == DONE_SENTINEL:
                return [StreamEvent("done")]
        elif self.dialect != "provider":
            # Comments, event: / id: fields, keep-alives.
            return []

        try:
            record = json.loads(line)
        except json.JSONDecodeError:
            logger.debug("Skipping malformed %s record: %.80r", self.dialect, line)
            return []
        if not isinstance(record, dict):
            logger.debug("Skipping non-object %s record: %.80r", self.dialect, line)
            return []
        return self._adapter(record)


# ---------------------------------------------------------------------------
# Accumulation
# ---------------------------------------------------------------------------

class StreamAccumulator:
    """Applies StreamEvents to the running text. The one "apply delta" step."""

    def __init__(self) -> None:
        self.text = ""

    def apply(self, event: StreamEvent) -> bool:
        """Apply an event; returns True when the text changed."""
        before = self.text
        if event.op == "append":
            self.text += event.text
        elif event.op == "replace":
            self.text = event.text
        elif event.op == "final":
            if event.text not in self.text:
                self.text += event.text
        return self.text != before


async def read_stream(
    chunks: AsyncIterable[bytes],
    dialect: Dialect,
    sink: Sink | None = None,
) -> str:
    """Decode a whole stream, surfacing each change of the running text to `sink`.

    Returns whatever accumulated, possibly "". An empty stream is the
    caller's EMPTY_RESULT to raise. Error records raise GenerationError.
    """
    decoder = StreamDecoder(dialect)
    accumulator = StreamAccumulator()

    def _apply(events: list[StreamEvent]) -> None:
        for event in events:
            if accumulator.apply(event) and sink is not None:
                sink(accumulator.text)

    async for chunk in chunks:
        _apply(decoder.feed(chunk))
        if decoder.finished:
            break
    else:
        _apply(decoder.close())

    return accumulator.text
