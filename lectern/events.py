"""
Answer lifecycle events and the sinks that receive them.

Every event is addressed by request id. For one request the order is:
sources, zero or more chunks, then exactly one of done or error.
"""

import asyncio
from typing import Callable, ClassVar, List, Optional, Protocol, Union

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from .models import SourceReference


class _Event(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    name: ClassVar[str]
    request_id: str

    def payload(self) -> dict:
        """JSON-ready payload with camelCase keys."""
        return self.model_dump(mode="json", by_alias=True)


class SourceItem(BaseModel):
    """Serialisable form of a SourceReference."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    chunk_id: int
    document_id: int
    doc_slug: str
    doc_title: str
    heading_context: str
    excerpt: str

    @classmethod
    def from_reference(cls, ref: SourceReference) -> "SourceItem":
        return cls(
            chunk_id=ref.chunk_id,
            document_id=ref.document_id,
            doc_slug=ref.doc_slug,
            doc_title=ref.doc_title,
            heading_context=ref.heading_context,
            excerpt=ref.excerpt,
        )


class SourcesEvent(_Event):
    name: ClassVar[str] = "ai-response-sources"
    sources: List[SourceItem]


class ChunkEvent(_Event):
    name: ClassVar[str] = "ai-response-chunk"
    content: str


class DoneEvent(_Event):
    name: ClassVar[str] = "ai-response-done"
    cancelled: bool = False


class ErrorEvent(_Event):
    name: ClassVar[str] = "ai-response-error"
    message: str


AnswerEvent = Union[SourcesEvent, ChunkEvent, DoneEvent, ErrorEvent]


def is_terminal(event: AnswerEvent) -> bool:
    """Done and error events end a request's event sequence."""
    return isinstance(event, (DoneEvent, ErrorEvent))


class EventSink(Protocol):
    """Receives answer events. Implementations must not block for long."""

    def emit(self, event: AnswerEvent) -> None:
        ...


class CallbackEventSink:
    """Forward every event to a plain callable."""

    def __init__(self, callback: Callable[[AnswerEvent], None]):
        self._callback = callback

    def emit(self, event: AnswerEvent) -> None:
        self._callback(event)


class QueueEventSink:
    """
    Buffer events on an asyncio queue for a consumer task.

    Optionally scoped to one request id; events for other requests are
    dropped.
    """

    def __init__(self, request_id: Optional[str] = None):
        self.request_id = request_id
        self.queue: "asyncio.Queue[AnswerEvent]" = asyncio.Queue()

    def emit(self, event: AnswerEvent) -> None:
        if self.request_id is not None and event.request_id != self.request_id:
            return
        self.queue.put_nowait(event)

    async def events(self):
        """Yield events until (and including) the terminal one."""
        while True:
            event = await self.queue.get()
            yield event
            if is_terminal(event):
                return
