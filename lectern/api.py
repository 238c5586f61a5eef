"""FastAPI REST API wrapper for the Lectern RAG core."""

import asyncio
import json
import logging
import uuid
from contextlib import asynccontextmanager
from typing import List, Optional, Set

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field

from .errors import ConfigurationError, LecternError, TransportError
from .events import CallbackEventSink, QueueEventSink, is_terminal
from .lectern import Lectern, create_lectern


logger = logging.getLogger(__name__)


# ============ Request/Response Models ============

class AskRequest(BaseModel):
    """Request body for question answering."""
    question: str = Field(..., min_length=1, description="Question to answer")
    provider: Optional[str] = Field(default=None, description="Override the chat provider")
    request_id: Optional[str] = Field(default=None, description="Client-chosen request id")


class SearchRequest(BaseModel):
    """Request body for search."""
    query: str = Field(..., description="Search query")
    limit: int = Field(default=10, ge=1, le=100, description="Number of results")
    mode: str = Field(default="hybrid", description="Search mode: 'hybrid' or 'keyword'")
    provider: Optional[str] = Field(default=None, description="Embedding provider for hybrid mode")


class SearchResultItem(BaseModel):
    """Single search result."""
    id: int
    document_id: int
    chunk_index: int
    content_text: str
    heading_context: str
    score: float


class SearchResponse(BaseModel):
    """Response from search."""
    results: List[SearchResultItem]
    query: str
    mode: str
    count: int


class EmbeddingRequest(BaseModel):
    """Request body for embedding generation."""
    text: str = Field(..., description="Text to embed")
    provider: Optional[str] = Field(default=None, description="Embedding provider")


class EmbeddingResponse(BaseModel):
    """Generated embedding."""
    embedding: List[float]
    dimensions: int


class ConnectionTestResponse(BaseModel):
    """Result of a provider connection test."""
    provider: str
    message: str


def format_sse(name: str, payload: dict) -> str:
    """Serialise one event as a Server-Sent Events frame."""
    return f"event: {name}\ndata: {json.dumps(payload)}\n\n"


# ============ App Factory ============

def create_app(lectern: Optional[Lectern] = None, db_path: str = "lectern.db") -> FastAPI:
    """
    Create a FastAPI app wrapping a Lectern instance.

    Args:
        lectern: Existing instance to serve; created from ``db_path`` if omitted
        db_path: Project database used when no instance is given

    Returns:
        FastAPI app instance
    """

    instance: Optional[Lectern] = lectern
    background: Set[asyncio.Task] = set()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        nonlocal instance
        owned = instance is None
        if owned:
            instance = create_lectern(
                db_path, CallbackEventSink(lambda e: logger.debug("Unrouted event %s", e.name))
            )
        yield
        if owned and instance:
            await instance.aclose()

    app = FastAPI(
        title="Lectern RAG API",
        description="Question answering over an engineering handbook",
        version="0.1.0",
        lifespan=lifespan,
    )

    def get_lectern() -> Lectern:
        if instance is None:
            raise HTTPException(status_code=503, detail="Lectern not initialized")
        return instance

    @app.exception_handler(LecternError)
    async def lectern_error_handler(request: Request, exc: LecternError):
        if isinstance(exc, ConfigurationError):
            status = 400
        elif isinstance(exc, TransportError):
            status = 502
        else:
            status = 500
        return JSONResponse(status_code=status, content={"detail": str(exc), **exc.details})

    # ============ Endpoints ============

    @app.post("/ask", tags=["Answers"])
    async def ask(request: AskRequest):
        """
        Answer a question as a stream of Server-Sent Events.

        Events arrive in order: `ai-response-sources`, any number of
        `ai-response-chunk`, then one `ai-response-done` or `ai-response-error`.
        """
        lectern = get_lectern()
        request_id = request.request_id or uuid.uuid4().hex
        sink = QueueEventSink(request_id)
        task = asyncio.create_task(
            lectern.ask_question(request_id, request.question, request.provider, sink)
        )
        background.add(task)
        task.add_done_callback(background.discard)

        async def event_stream():
            finished = False
            try:
                async for event in sink.events():
                    finished = is_terminal(event)
                    yield format_sse(event.name, event.payload())
            finally:
                # Client went away before the answer finished
                if not finished and not task.done():
                    lectern.cancel_request(request_id)

        return StreamingResponse(
            event_stream(),
            media_type="text/event-stream",
            headers={"X-Request-Id": request_id},
        )

    @app.post("/cancel/{request_id}", tags=["Answers"])
    async def cancel(request_id: str):
        """Cancel an in-flight answer. Unknown ids are accepted silently."""
        get_lectern().cancel_request(request_id)
        return {"cancelled": True, "request_id": request_id}

    @app.post("/search", response_model=SearchResponse, tags=["Search"])
    async def search(request: SearchRequest):
        """
        Search the active project.

        - **hybrid**: embeds the query and fuses vector and keyword results
        - **keyword**: FTS5 (or LIKE when the project has no index)
        """
        lectern = get_lectern()

        if request.mode not in ("hybrid", "keyword"):
            raise HTTPException(
                status_code=400,
                detail=f"Invalid mode: {request.mode}. Must be 'hybrid' or 'keyword'"
            )

        if request.mode == "hybrid":
            embedding = await lectern.generate_embedding(request.query, request.provider)
            results = lectern.hybrid_search(embedding, request.query, request.limit)
        else:
            results = lectern.keyword_search(request.query, request.limit)

        return SearchResponse(
            results=[SearchResultItem(**r.to_dict()) for r in results],
            query=request.query,
            mode=request.mode,
            count=len(results),
        )

    @app.post("/embedding", response_model=EmbeddingResponse, tags=["Search"])
    async def embedding(request: EmbeddingRequest):
        """Generate an embedding for arbitrary text."""
        vector = await get_lectern().generate_embedding(request.text, request.provider)
        return EmbeddingResponse(embedding=vector, dimensions=len(vector))

    @app.get("/providers/{provider}/test", response_model=ConnectionTestResponse, tags=["Providers"])
    async def test_provider(provider: str):
        """Check a provider's credentials or reachability."""
        message = await get_lectern().test_provider_connection(provider)
        return ConnectionTestResponse(provider=provider, message=message)

    @app.get("/cache/stats", tags=["Cache"])
    async def cache_stats():
        """Embedding cache statistics."""
        return get_lectern().embeddings.cache.stats()

    @app.post("/cache/clear", tags=["Cache"])
    async def clear_cache():
        """Clear the embedding cache."""
        cache = get_lectern().embeddings.cache
        stats_before = cache.stats()
        cache.clear()
        return {"cleared": True, "entries_cleared": stats_before["size"]}

    @app.get("/health", tags=["Health"])
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "service": "lectern"}

    return app
