"""
Pytest configuration for the Lectern test suite.

Provides:
- Temporary project databases (with or without embeddings / FTS5 index)
- A recording event sink
- httpx MockTransport helpers standing in for provider APIs
"""

import json
import sqlite3
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Sequence

import httpx
import numpy as np
import pytest

from lectern.events import AnswerEvent
from lectern.storage import ChunkStore


DOCUMENTS = [
    (1, "deploy-guide", "Deployment Guide"),
    (2, "oncall", "On-call Handbook"),
]

CHUNKS = [
    (1, 1, 0, "Deploy the service with the release pipeline after tests pass.", "Deploying"),
    (2, 1, 1, "Rollback uses the previous release tag.", "Rollback"),
    (3, 2, 0, "Pager rotation changes every Monday.", None),
]

EMBEDDINGS = {
    1: [1.0, 0.0, 0.0],
    2: [0.6, 0.8, 0.0],
    3: [0.0, 0.0, 1.0],
}


def embedding_blob(vector: Sequence[float]) -> bytes:
    return np.asarray(vector, dtype="<f4").tobytes()


def build_project_db(
    path: Path,
    *,
    documents: Iterable[tuple] = DOCUMENTS,
    chunks: Iterable[tuple] = CHUNKS,
    embeddings: Optional[Dict[int, Sequence[float]]] = None,
    fts: bool = True,
) -> Path:
    """Write a project database the way the offline pipeline lays it out."""
    conn = sqlite3.connect(path)
    conn.executescript("""
        CREATE TABLE documents (id INTEGER PRIMARY KEY, slug TEXT, title TEXT);
        CREATE TABLE chunks (
            id INTEGER PRIMARY KEY,
            document_id INTEGER,
            chunk_index INTEGER,
            content_text TEXT,
            heading_context TEXT
        );
    """)
    conn.executemany("INSERT INTO documents VALUES (?, ?, ?)", list(documents))
    chunk_rows = list(chunks)
    conn.executemany("INSERT INTO chunks VALUES (?, ?, ?, ?, ?)", chunk_rows)

    if embeddings is not None:
        conn.execute("CREATE TABLE chunk_embeddings (chunk_id INTEGER PRIMARY KEY, embedding BLOB)")
        conn.executemany(
            "INSERT INTO chunk_embeddings VALUES (?, ?)",
            [(chunk_id, embedding_blob(v)) for chunk_id, v in embeddings.items()],
        )

    if fts:
        conn.execute("CREATE VIRTUAL TABLE chunks_fts USING fts5(content_text)")
        conn.executemany(
            "INSERT INTO chunks_fts (rowid, content_text) VALUES (?, ?)",
            [(row[0], row[3]) for row in chunk_rows],
        )

    conn.commit()
    conn.close()
    return path


@pytest.fixture
def make_store(tmp_path):
    """Factory for read-only ChunkStores over fresh temporary databases."""
    stores: List[ChunkStore] = []

    def factory(name: str = "project.db", **kwargs) -> ChunkStore:
        store = ChunkStore(build_project_db(tmp_path / name, **kwargs))
        stores.append(store)
        return store

    yield factory
    for store in stores:
        store.close()


@pytest.fixture
def store(make_store) -> ChunkStore:
    """Fully indexed project: embeddings plus FTS5."""
    return make_store(embeddings=EMBEDDINGS)


class RecordingSink:
    """Collects emitted events; optionally reacts to each one."""

    def __init__(self, on_emit: Optional[Callable[[AnswerEvent], None]] = None):
        self.events: List[AnswerEvent] = []
        self.on_emit = on_emit

    def emit(self, event: AnswerEvent) -> None:
        self.events.append(event)
        if self.on_emit is not None:
            self.on_emit(event)

    def names(self) -> List[str]:
        return [e.name for e in self.events]

    def text(self) -> str:
        return "".join(getattr(e, "content", "") for e in self.events)


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


def ndjson(*objects: dict) -> bytes:
    return b"".join(json.dumps(o, ensure_ascii=False).encode() + b"\n" for o in objects)


def sse(*payloads) -> bytes:
    lines = []
    for payload in payloads:
        data = payload if isinstance(payload, str) else json.dumps(payload)
        lines.append(f"data: {data}\n\n")
    return "".join(lines).encode()


def respond(status_code: int = 200, *, json=None, content: bytes = b""):
    """Handler returning a fresh response on every call."""
    def handler(request: httpx.Request) -> httpx.Response:
        if json is not None:
            return httpx.Response(status_code, json=json)
        return httpx.Response(status_code, content=content)
    return handler


def fail_with(exc_type=httpx.ConnectError, message: str = "connection refused"):
    """Handler that raises a transport error."""
    def handler(request: httpx.Request) -> httpx.Response:
        raise exc_type(message, request=request)
    return handler


def mock_client(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class Router:
    """
    Minimal request router for MockTransport.

    Routes are keyed by (method, path). Every request is recorded.
    """

    def __init__(self):
        self.routes: Dict[tuple, Callable[[httpx.Request], httpx.Response]] = {}
        self.requests: List[httpx.Request] = []

    def add(self, method: str, path: str, handler: Callable[[httpx.Request], httpx.Response]) -> "Router":
        self.routes[(method, path)] = handler
        return self

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes.get((request.method, request.url.path))
        if handler is None:
            return httpx.Response(404, text=f"no route for {request.method} {request.url.path}")
        return handler(request)

    def calls(self, path: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]

    def client(self) -> httpx.AsyncClient:
        return mock_client(self)


@pytest.fixture
def router() -> Router:
    return Router()
