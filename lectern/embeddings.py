"""Query embedding generation with provider fallback, caching and liveness probing."""

import hashlib
import logging
import threading
import time
from collections import OrderedDict
from typing import Callable, Dict, List, Optional, Tuple

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from .config import LecternConfig, Settings
from .errors import ConfigurationError, TransportError
from .models import AiProvider
from .providers import ANTHROPIC_NO_EMBEDDINGS, create_provider_client


logger = logging.getLogger(__name__)


class EmbeddingCache:
    """LRU cache for query embeddings to avoid redundant API calls."""

    def __init__(self, maxsize: int = 256):
        self._cache: "OrderedDict[str, List[float]]" = OrderedDict()
        self._maxsize = maxsize
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def _hash_text(self, text: str, model: str) -> str:
        """Create a hash key for text + model combination."""
        return hashlib.sha256(f"{model}:{text}".encode()).hexdigest()[:16]

    def get(self, text: str, model: str) -> Optional[List[float]]:
        """Get cached embedding if exists."""
        key = self._hash_text(text, model)
        with self._lock:
            if key in self._cache:
                self._hits += 1
                self._cache.move_to_end(key)
                return self._cache[key]
            self._misses += 1
            return None

    def set(self, text: str, model: str, embedding: List[float]) -> None:
        """Cache an embedding, evicting the least recently used entry when full."""
        if self._maxsize <= 0:
            return
        key = self._hash_text(text, model)
        with self._lock:
            self._cache[key] = embedding
            self._cache.move_to_end(key)
            while len(self._cache) > self._maxsize:
                self._cache.popitem(last=False)

    def stats(self) -> Dict[str, float]:
        """Return cache statistics."""
        with self._lock:
            total = self._hits + self._misses
            return {
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": self._hits / total if total > 0 else 0,
                "size": len(self._cache),
                "maxsize": self._maxsize,
            }

    def clear(self) -> None:
        """Clear the cache."""
        with self._lock:
            self._cache.clear()
            self._hits = 0
            self._misses = 0


class OllamaProbe:
    """
    Cached answer to "is Ollama reachable?".

    A single slot is enough because the Ollama base URL is effectively a
    singleton setting. Any HTTP response counts as reachable.
    """

    def __init__(
        self,
        ttl: float = 30.0,
        timeout: float = 2.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl = ttl
        self.timeout = timeout
        self._clock = clock
        self._lock = threading.Lock()
        self._cached: Optional[Tuple[bool, float]] = None

    def cached(self) -> Optional[bool]:
        """The cached result if it is still fresh, else None."""
        with self._lock:
            if self._cached is None:
                return None
            available, checked_at = self._cached
            if self._clock() - checked_at < self.ttl:
                return available
            return None

    async def is_available(self, http: httpx.AsyncClient, base_url: str) -> bool:
        fresh = self.cached()
        if fresh is not None:
            return fresh

        try:
            await http.get(base_url, timeout=self.timeout)
            available = True
        except httpx.HTTPError as e:
            logger.debug("Ollama probe at %s failed: %s", base_url, e)
            available = False

        with self._lock:
            self._cached = (available, self._clock())
        return available

    def invalidate(self) -> None:
        with self._lock:
            self._cached = None


class EmbeddingService:
    """
    Generates query embeddings through the provider clients.

    Anthropic has no embedding endpoint, so requests for it fall back to
    Ollama (if reachable), then OpenAI, then Gemini (if keyed).
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        config: Optional[LecternConfig] = None,
        probe: Optional[OllamaProbe] = None,
        cache: Optional[EmbeddingCache] = None,
    ):
        self.http = http
        self.config = config or LecternConfig()
        self.probe = probe or OllamaProbe(
            ttl=self.config.ollama_probe_ttl, timeout=self.config.ollama_probe_timeout
        )
        self.cache = cache if cache is not None else EmbeddingCache(self.config.embedding_cache_size)

    async def resolve_provider(self, settings: Settings, provider: AiProvider) -> AiProvider:
        """The provider that will actually produce embeddings for ``provider``."""
        if provider is not AiProvider.ANTHROPIC:
            return provider
        if settings.ollama_base_url and await self.probe.is_available(
            self.http, settings.require_ollama_url()
        ):
            return AiProvider.OLLAMA
        if settings.openai_api_key:
            return AiProvider.OPENAI
        if settings.gemini_api_key:
            return AiProvider.GEMINI
        raise ConfigurationError(ANTHROPIC_NO_EMBEDDINGS)

    async def embed(self, settings: Settings, provider: AiProvider, text: str) -> List[float]:
        """
        Embed ``text`` with ``provider`` (or its fallback).

        Raises:
            ConfigurationError: No embedding-capable provider is configured
            TransportError: The provider call failed
        """
        provider = AiProvider.parse(provider)
        target = await self.resolve_provider(settings, provider)
        if target is not provider:
            logger.info("%s has no embeddings, using %s", provider.display_name, target.display_name)

        client = create_provider_client(target, settings, self.http, self.config)
        cache_model = f"{target.value}:{client.embedding_model}"
        cached = self.cache.get(text, cache_model)
        if cached is not None:
            return cached

        embedding: List[float] = []
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(max(1, self.config.embedding_max_attempts)),
            wait=wait_exponential(multiplier=1, min=2, max=10),
            retry=retry_if_exception_type(TransportError),
            reraise=True,
        ):
            with attempt:
                embedding = await client.embed(text)

        self.cache.set(text, cache_model, embedding)
        return embedding
