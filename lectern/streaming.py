"""
Streaming wire formats for chat completions.

Each provider streams differently:

- OpenAI:    SSE ``data: {json}`` lines, delta at ``choices[0].delta.content``,
             terminated by ``data: [DONE]``
- Anthropic: SSE typed events, ``content_block_delta`` carries ``delta.text``,
             terminated by a ``message_stop`` event
- Gemini:    SSE where every event holds the cumulative text so far at
             ``candidates[0].content.parts[0].text``; we emit only the new suffix
- Ollama:    newline-delimited JSON, ``message.content`` plus ``done: true``

The relay loop buffers raw bytes until a full line is available, hands the
line to a decoder, and emits events. Lines a decoder does not understand
are skipped; one bad line never aborts an otherwise good stream.
"""

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator, Optional, Protocol

from .cancellation import CancellationRegistry
from .events import ChunkEvent, DoneEvent, EventSink


logger = logging.getLogger(__name__)


class StreamState(str, Enum):
    """Lifecycle of a single streamed answer."""

    CONNECTING = "connecting"
    STREAMING = "streaming"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass
class LineResult:
    """What a decoder made of one line."""
    text: Optional[str] = None
    done: bool = False


class LineDecoder(Protocol):
    def decode(self, line: str) -> Optional[LineResult]:
        ...


# ============ Helpers ============

def _dig(value: Any, *path: Any) -> Any:
    """Walk nested dicts/lists, returning None on any missing step."""
    for key in path:
        if isinstance(key, int):
            if not isinstance(value, list) or len(value) <= key:
                return None
        elif not isinstance(value, dict):
            return None
        value = value[key] if isinstance(key, int) else value.get(key)
    return value


def _parse_json(data: str) -> Optional[Any]:
    try:
        return json.loads(data)
    except ValueError:
        return None


def sse_data(line: str) -> Optional[str]:
    """Payload of an SSE ``data:`` line, or None for any other line."""
    if not line.startswith("data:"):
        return None
    return line[5:].strip()


# ============ Decoders ============

class OpenAIStreamDecoder:
    def decode(self, line: str) -> Optional[LineResult]:
        data = sse_data(line)
        if data is None:
            return None
        if data == "[DONE]":
            return LineResult(done=True)
        content = _dig(_parse_json(data), "choices", 0, "delta", "content")
        if isinstance(content, str) and content:
            return LineResult(text=content)
        return None


class AnthropicStreamDecoder:
    def decode(self, line: str) -> Optional[LineResult]:
        data = sse_data(line)
        if data is None:
            return None
        payload = _parse_json(data)
        event_type = _dig(payload, "type")
        if event_type == "content_block_delta":
            text = _dig(payload, "delta", "text")
            if isinstance(text, str) and text:
                return LineResult(text=text)
        elif event_type == "message_stop":
            return LineResult(done=True)
        return None


class GeminiStreamDecoder:
    """Turns Gemini's cumulative text into incremental deltas."""

    def __init__(self):
        self.emitted = ""

    def delta(self, text: str) -> str:
        # Falls back to the whole text when it does not extend what we sent
        if text.startswith(self.emitted):
            return text[len(self.emitted):]
        return text

    def decode(self, line: str) -> Optional[LineResult]:
        data = sse_data(line)
        if data is None:
            return None
        if data == "[DONE]":
            return LineResult(done=True)
        text = _dig(_parse_json(data), "candidates", 0, "content", "parts", 0, "text")
        if not isinstance(text, str):
            return None
        delta = self.delta(text)
        if not delta:
            return None
        self.emitted += delta
        return LineResult(text=delta)


class OllamaStreamDecoder:
    def decode(self, line: str) -> Optional[LineResult]:
        payload = _parse_json(line)
        if not isinstance(payload, dict):
            return None
        content = _dig(payload, "message", "content")
        return LineResult(
            text=content if isinstance(content, str) and content else None,
            done=payload.get("done") is True,
        )


# ============ Relay loop ============

async def relay_stream(
    chunks: AsyncIterator[bytes],
    decoder: LineDecoder,
    request_id: str,
    sink: EventSink,
    registry: CancellationRegistry,
) -> StreamState:
    """
    Relay a provider byte stream to ``sink`` as chunk and done events.

    Cancellation is polled after every processed line and after every
    network read. On cancellation a ``done(cancelled=True)`` event is
    emitted and anything still buffered is dropped. A stream that closes
    without a terminal signal still gets a ``done(cancelled=False)``.

    Returns:
        StreamState.COMPLETED or StreamState.CANCELLED
    """
    buffer = bytearray()

    def handle(raw: bytes) -> bool:
        line = raw.decode("utf-8", errors="replace").strip()
        if not line:
            return False
        result = decoder.decode(line)
        if result is None:
            return False
        if result.text:
            sink.emit(ChunkEvent(request_id=request_id, content=result.text))
        return result.done

    def finish(cancelled: bool) -> StreamState:
        sink.emit(DoneEvent(request_id=request_id, cancelled=cancelled))
        state = StreamState.CANCELLED if cancelled else StreamState.COMPLETED
        logger.debug("Stream %s finished: %s", request_id, state.value)
        return state

    async for data in chunks:
        buffer.extend(data)
        while True:
            line_end = buffer.find(b"\n")
            if line_end < 0:
                break
            raw = bytes(buffer[:line_end])
            del buffer[:line_end + 1]
            if handle(raw):
                return finish(cancelled=False)
            if registry.is_cancelled(request_id):
                return finish(cancelled=True)

        if registry.is_cancelled(request_id):
            return finish(cancelled=True)

    # Connection closed; a final unterminated line may still hold content
    if buffer:
        handle(bytes(buffer))
    return finish(cancelled=False)
