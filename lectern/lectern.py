"""Main Lectern RAG orchestrator."""

import logging
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Union

import httpx

from .cancellation import CancellationRegistry
from .config import LecternConfig, Settings
from .embeddings import EmbeddingCache, EmbeddingService, OllamaProbe
from .errors import LecternError
from .events import ErrorEvent, EventSink, SourceItem, SourcesEvent
from .models import AiProvider, ChatMessage, ScoredChunk
from .prompt import build_rag_prompt
from .providers import create_provider_client
from .search import SearchEngine
from .storage import ChunkStore
from .streaming import StreamState


logger = logging.getLogger(__name__)

ProviderArg = Union[str, AiProvider, None]


class Lectern:
    """
    Retrieval-augmented question answering over a project database.

    Settings and the active project store are read through the given
    callables on every call, so the host can switch projects or edit
    settings between questions. Each question runs in its own asyncio task;
    questions do not serialise against each other.

    Example:
        >>> lectern = create_lectern("handbook.db", sink=my_sink)
        >>> await lectern.ask_question("req-1", "How do I deploy?")
    """

    def __init__(
        self,
        settings_source: Callable[[], Settings],
        store_source: Callable[[], ChunkStore],
        sink: EventSink,
        *,
        config: Optional[LecternConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        registry: Optional[CancellationRegistry] = None,
        probe: Optional[OllamaProbe] = None,
        cache: Optional[EmbeddingCache] = None,
    ):
        self.config = config or LecternConfig()
        self.settings_source = settings_source
        self.store_source = store_source
        self.sink = sink
        self.registry = registry or CancellationRegistry()
        self._owns_http = http_client is None
        self.http = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(self.config.read_timeout, connect=self.config.connect_timeout)
        )
        self.embeddings = EmbeddingService(self.http, self.config, probe=probe, cache=cache)

    # ============ Search ============

    def vector_search(self, query_embedding: Sequence[float], limit: int = 10) -> List[ScoredChunk]:
        """Chunks most similar to ``query_embedding``, best first."""
        store = self.store_source()
        with store.lock:
            return SearchEngine(store, self.config).vector_search(query_embedding, limit)

    def keyword_search(self, query: str, limit: int = 10) -> List[ScoredChunk]:
        """Keyword search (FTS5, or LIKE when the project has no index)."""
        store = self.store_source()
        with store.lock:
            return SearchEngine(store, self.config).keyword_search(query, limit)

    def hybrid_search(
        self,
        query_embedding: Sequence[float],
        query_text: str,
        limit: int = 10,
    ) -> List[ScoredChunk]:
        """Fused vector + keyword search."""
        store = self.store_source()
        with store.lock:
            return SearchEngine(store, self.config).hybrid_search(query_embedding, query_text, limit)

    # ============ Providers ============

    async def generate_embedding(self, text: str, provider: ProviderArg = None) -> List[float]:
        """
        Embed ``text``.

        Without an explicit provider OpenAI is used when keyed, else Ollama.
        """
        settings = self.settings_source()
        target = settings.resolve_embedding_provider(provider)
        return await self.embeddings.embed(settings, target, text)

    async def test_provider_connection(self, provider: Union[str, AiProvider]) -> str:
        """Validate a provider's credentials or reachability with a minimal live call."""
        settings = self.settings_source()
        client = create_provider_client(
            settings.resolve_provider(provider), settings, self.http, self.config
        )
        return await client.test_connection()

    async def stream_chat(
        self,
        provider: Union[str, AiProvider],
        messages: Sequence[ChatMessage],
        request_id: str,
        sink: Optional[EventSink] = None,
    ) -> StreamState:
        """
        Stream a chat completion for ``request_id`` to the sink.

        The request's cancellation flag is cleared on every outcome.
        """
        settings = self.settings_source()
        client = create_provider_client(
            settings.resolve_provider(provider), settings, self.http, self.config
        )
        try:
            return await client.stream_chat(messages, request_id, sink or self.sink, self.registry)
        finally:
            self.registry.clear(request_id)

    # ============ Question answering ============

    def cancel_request(self, request_id: str) -> None:
        """Ask the stream for ``request_id`` to stop at its next check point."""
        logger.info("Cancellation requested for %s", request_id)
        self.registry.cancel(request_id)

    async def answer(
        self,
        request_id: str,
        question: str,
        provider: ProviderArg = None,
        sink: Optional[EventSink] = None,
    ) -> StreamState:
        """
        Run the full RAG pipeline, raising on configuration or transport errors.

        Steps: embed the question (tolerating failure), search the active
        project under its lock, emit sources, build the prompt and stream
        the answer. The store lock is released before any network call.
        """
        sink = sink or self.sink
        self.registry.clear(request_id)
        try:
            settings = self.settings_source()
            target = settings.resolve_provider(provider)
            logger.info("Answering %s with %s", request_id, target.display_name)

            query_embedding: Optional[List[float]] = None
            try:
                query_embedding = await self.embeddings.embed(settings, target, question)
            except LecternError as e:
                logger.warning("Query embedding failed, using keyword search only: %s", e)

            store = self.store_source()
            with store.lock:
                engine = SearchEngine(store, self.config)
                limit = self.config.answer_chunk_limit
                if query_embedding:
                    chunks = engine.hybrid_search(query_embedding, question, limit)
                else:
                    chunks = engine.keyword_search(question, limit)
                sources = engine.source_references(chunks, self.config.source_limit)

            logger.debug("Retrieved %d chunks for %s", len(chunks), request_id)
            sink.emit(SourcesEvent(
                request_id=request_id,
                sources=[SourceItem.from_reference(s) for s in sources],
            ))

            messages = build_rag_prompt(chunks, question)
            client = create_provider_client(target, settings, self.http, self.config)
            return await client.stream_chat(messages, request_id, sink, self.registry)
        finally:
            self.registry.clear(request_id)

    async def ask_question(
        self,
        request_id: str,
        question: str,
        provider: ProviderArg = None,
        sink: Optional[EventSink] = None,
    ) -> None:
        """
        Answer a question, reporting everything through events.

        Never raises for pipeline failures: configuration, transport and
        unexpected errors become a single error event for ``request_id``.
        """
        sink = sink or self.sink
        try:
            await self.answer(request_id, question, provider, sink)
        except LecternError as e:
            logger.warning("Question %s failed: %s", request_id, e)
            sink.emit(ErrorEvent(request_id=request_id, message=str(e)))
        except Exception as e:
            logger.exception("Unexpected failure answering %s", request_id)
            sink.emit(ErrorEvent(request_id=request_id, message=str(e) or type(e).__name__))

    # ============ Lifecycle ============

    async def aclose(self) -> None:
        """Close the HTTP client if Lectern created it."""
        if self._owns_http:
            await self.http.aclose()

    async def __aenter__(self) -> "Lectern":
        return self

    async def __aexit__(self, *args) -> None:
        await self.aclose()


def create_lectern(
    db_path: Union[str, Path],
    sink: EventSink,
    *,
    settings: Optional[Settings] = None,
    config: Optional[LecternConfig] = None,
) -> Lectern:
    """
    Create a Lectern over a single project database with sensible defaults.

    Settings default to a snapshot read from the environment on every call.

    Example:
        >>> lectern = create_lectern("handbook.db", sink=CallbackEventSink(print))
        >>> await lectern.ask_question("req-1", "What is on the deployment checklist?")
    """
    store = ChunkStore(db_path)
    settings_source = (lambda: settings) if settings is not None else Settings.from_env
    return Lectern(settings_source, lambda: store, sink, config=config)
