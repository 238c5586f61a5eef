"""Read-only SQLite access to a project's chunks, embeddings and FTS5 index."""

import logging
import sqlite3
import threading
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence, Tuple, Union

from .models import ScoredChunk


logger = logging.getLogger(__name__)

CHUNK_COLUMNS = "c.id, c.document_id, c.chunk_index, c.content_text, c.heading_context"


def _row_to_chunk(row: sqlite3.Row, score: float) -> ScoredChunk:
    return ScoredChunk(
        id=row["id"],
        document_id=row["document_id"],
        chunk_index=row["chunk_index"],
        content_text=row["content_text"],
        heading_context=row["heading_context"] or "",
        score=score,
    )


class ChunkStore:
    """
    Read-only handle on a project database built by the offline pipeline.

    The schema of a read-only database cannot change underneath us, so
    table existence is looked up once and cached for the lifetime of the
    handle.

    All statements must run while holding ``lock``. The lock is shared with
    every other consumer of the same store and must never be held across a
    network call.
    """

    def __init__(
        self,
        db_path: Union[str, Path, None] = None,
        *,
        connection: Optional[sqlite3.Connection] = None,
        lock: Optional[threading.RLock] = None,
    ):
        if connection is None:
            if db_path is None:
                raise ValueError("ChunkStore needs a db_path or a connection")
            self.db_path: Optional[Path] = Path(db_path)
            uri = f"{self.db_path.resolve().as_uri()}?mode=ro"
            connection = sqlite3.connect(uri, uri=True, check_same_thread=False)
        else:
            self.db_path = Path(db_path) if db_path else None
        connection.row_factory = sqlite3.Row
        self.conn = connection
        self.lock = lock or threading.RLock()
        self._table_cache: Dict[str, bool] = {}

    # ============ Schema probing ============

    def table_exists(self, name: str) -> bool:
        """Whether a table (or virtual table) exists; cached per handle."""
        cached = self._table_cache.get(name)
        if cached is not None:
            return cached
        try:
            row = self.conn.execute(
                "SELECT EXISTS(SELECT 1 FROM sqlite_master WHERE type='table' AND name=?)",
                (name,),
            ).fetchone()
            exists = bool(row[0])
        except sqlite3.Error as e:
            logger.warning("Could not probe for table %s: %s", name, e)
            exists = False
        self._table_cache[name] = exists
        return exists

    @property
    def has_embeddings(self) -> bool:
        return self.table_exists("chunk_embeddings")

    @property
    def has_fts(self) -> bool:
        return self.table_exists("chunks_fts")

    # ============ Queries ============

    def iter_embeddings(self) -> Iterator[Tuple[sqlite3.Row, bytes]]:
        """Yield (chunk row, embedding blob) for every embedded chunk."""
        cursor = self.conn.execute(f"""
            SELECT {CHUNK_COLUMNS}, ce.embedding
            FROM chunk_embeddings ce
            JOIN chunks c ON c.id = ce.chunk_id
        """)
        for row in cursor:
            blob = row["embedding"]
            if blob is None:
                blob = b""
            elif not isinstance(blob, (bytes, memoryview)):
                logger.debug("Skipping chunk %s: embedding is %s, not a blob", row["id"], type(blob).__name__)
                continue
            yield row, bytes(blob)

    def search_fts(self, match_query: str, limit: int, score: float) -> List[ScoredChunk]:
        """FTS5 MATCH over chunk content, in the engine's rank order."""
        rows = self.conn.execute(f"""
            SELECT {CHUNK_COLUMNS}
            FROM chunks_fts
            JOIN chunks c ON c.id = chunks_fts.rowid
            WHERE chunks_fts MATCH ?
            ORDER BY rank
            LIMIT ?
        """, (match_query, limit)).fetchall()
        return [_row_to_chunk(row, score) for row in rows]

    def search_like(self, keywords: Sequence[str], limit: int, score: float) -> List[ScoredChunk]:
        """Substring match of any keyword against raw chunk content."""
        if not keywords:
            return []
        where = " OR ".join("c.content_text LIKE ?" for _ in keywords)
        params: List[object] = [f"%{k}%" for k in keywords]
        params.append(limit)
        rows = self.conn.execute(f"""
            SELECT {CHUNK_COLUMNS}
            FROM chunks c
            WHERE {where}
            LIMIT ?
        """, params).fetchall()
        return [_row_to_chunk(row, score) for row in rows]

    def get_document_meta(self, document_id: int) -> Optional[Tuple[str, str]]:
        """Return (slug, title) for a document, or None if it does not exist."""
        row = self.conn.execute(
            "SELECT slug, title FROM documents WHERE id = ? LIMIT 1", (document_id,)
        ).fetchone()
        return (row["slug"], row["title"]) if row else None

    def close(self) -> None:
        """Close the database connection."""
        with self.lock:
            self.conn.close()
