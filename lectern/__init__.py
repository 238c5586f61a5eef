"""
Lectern: Retrieval-Augmented Question Answering over an Engineering Handbook

Answers natural-language questions about a project's documentation:
- Vector search over stored chunk embeddings (cosine similarity)
- SQLite FTS5 keyword search, with a LIKE fallback for unindexed projects
- Hybrid fusion that rewards chunks both signals agree on
- Streaming answers from OpenAI, Anthropic, Gemini or a local Ollama
- Source citations for every answer
- Cooperative cancellation of in-flight answers

Key Features:
- Provider auto-detection with a user-preferred override
- Embedding fallback for providers without an embedding endpoint
- LRU cache for query embeddings
- Event-based delivery (sources, chunks, done/error) keyed by request id
- REST API (FastAPI) with Server-Sent Events
"""

from .config import LecternConfig, Settings
from .models import AiProvider, ChatMessage, ScoredChunk, SourceReference
from .errors import ConfigurationError, LecternError, SourceResolutionError, TransportError
from .text import extract_keywords, sanitize_fts_query
from .storage import ChunkStore
from .search import SearchEngine, cosine_similarity, fuse
from .embeddings import EmbeddingCache, EmbeddingService, OllamaProbe
from .events import (
    CallbackEventSink,
    ChunkEvent,
    DoneEvent,
    ErrorEvent,
    EventSink,
    QueueEventSink,
    SourcesEvent,
)
from .cancellation import CancellationRegistry
from .prompt import build_rag_prompt
from .providers import create_provider_client
from .streaming import StreamState
from .lectern import Lectern, create_lectern

__version__ = "0.1.0"
__all__ = [
    # Core
    "Lectern",
    "create_lectern",
    "LecternConfig",
    "Settings",
    "AiProvider",
    "ChatMessage",
    "ScoredChunk",
    "SourceReference",
    # Errors
    "LecternError",
    "ConfigurationError",
    "SourceResolutionError",
    "TransportError",
    # Retrieval
    "ChunkStore",
    "SearchEngine",
    "cosine_similarity",
    "fuse",
    "sanitize_fts_query",
    "extract_keywords",
    # Providers
    "EmbeddingCache",
    "EmbeddingService",
    "OllamaProbe",
    "create_provider_client",
    "build_rag_prompt",
    "StreamState",
    # Events
    "EventSink",
    "CallbackEventSink",
    "QueueEventSink",
    "SourcesEvent",
    "ChunkEvent",
    "DoneEvent",
    "ErrorEvent",
    "CancellationRegistry",
]
