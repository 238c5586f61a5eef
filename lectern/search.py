"""Search engine implementation (vector, keyword, hybrid)."""

import logging
import math
from typing import Dict, List, Optional, Sequence

import numpy as np

from .config import LecternConfig
from .errors import SourceResolutionError
from .models import ScoredChunk, SourceReference
from .storage import ChunkStore
from .text import excerpt, extract_keywords, sanitize_fts_query


logger = logging.getLogger(__name__)


def decode_embedding_blob(blob: bytes) -> np.ndarray:
    """
    Decode a little-endian float32 blob into a float64 vector.

    Trailing bytes that do not form a whole float are ignored.
    """
    usable = len(blob) - (len(blob) % 4)
    return np.frombuffer(blob[:usable], dtype="<f4").astype(np.float64)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> Optional[float]:
    """
    Cosine similarity computed in float64.

    Returns None when the vectors differ in length, are empty, or either
    has zero magnitude: there is no meaningful similarity in those cases.
    """
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape or va.size == 0:
        return None
    denom = float(np.linalg.norm(va)) * float(np.linalg.norm(vb))
    if denom == 0.0:
        return None
    return float(np.dot(va, vb) / denom)


def fuse(
    vector_results: Sequence[ScoredChunk],
    keyword_results: Sequence[ScoredChunk],
    limit: int,
    agreement_bonus: float = 0.35,
) -> List[ScoredChunk]:
    """
    Merge vector and keyword hits by chunk id.

    A chunk found by both searches keeps its vector score plus
    ``agreement_bonus``. A keyword-only chunk is lifted to at least
    ``agreement_bonus`` so exact keyword matches are not drowned out by
    weak vector scores. The sort is stable, so ties keep vector order first
    and then the keyword engine's rank order.
    """
    if limit <= 0:
        return []

    merged: Dict[int, ScoredChunk] = {}
    for chunk in vector_results:
        merged[chunk.id] = ScoredChunk(**chunk.to_dict())
    for chunk in keyword_results:
        existing = merged.get(chunk.id)
        if existing is not None:
            existing.score += agreement_bonus
        else:
            fused = ScoredChunk(**chunk.to_dict())
            fused.score = max(fused.score, agreement_bonus)
            merged[chunk.id] = fused

    combined = sorted(merged.values(), key=lambda c: c.score, reverse=True)
    return combined[:limit]


class SearchEngine:
    """Handles vector, keyword, and hybrid search over a ChunkStore.

    Callers are expected to hold ``store.lock`` for the duration of a search.
    """

    def __init__(self, store: ChunkStore, config: Optional[LecternConfig] = None):
        self.store = store
        self.config = config or LecternConfig()

    def vector_search(self, query_embedding: Sequence[float], limit: int) -> List[ScoredChunk]:
        """
        Brute-force cosine similarity over stored chunk embeddings.

        Returns an empty list when the embeddings table is missing, the
        query embedding is empty, or ``limit`` is 0. Rows whose similarity
        is undefined, non-finite or not positive are skipped.
        """
        if limit <= 0 or len(query_embedding) == 0:
            return []
        if not self.store.has_embeddings:
            return []

        query = np.asarray(query_embedding, dtype=np.float64)
        results = []
        for row, blob in self.store.iter_embeddings():
            score = cosine_similarity(query, decode_embedding_blob(blob))
            if score is None or not math.isfinite(score) or score <= 0.0:
                continue
            results.append(ScoredChunk(
                id=row["id"],
                document_id=row["document_id"],
                chunk_index=row["chunk_index"],
                content_text=row["content_text"],
                heading_context=row["heading_context"] or "",
                score=score,
            ))

        results.sort(key=lambda c: c.score, reverse=True)
        return results[:limit]

    def keyword_search(self, query: str, limit: int) -> List[ScoredChunk]:
        """
        Keyword search using FTS5, or LIKE matching when there is no index.

        FTS5 hits all score ``config.fts_score`` (engine rank order is kept);
        LIKE hits score the lower ``config.like_score``.
        """
        keywords = extract_keywords(query)
        if not keywords or limit <= 0:
            return []

        if self.store.has_fts:
            # Keywords are alphanumeric, so this yields the plain quoted OR form
            match_query = sanitize_fts_query(" ".join(keywords))
            return self.store.search_fts(match_query, limit, self.config.fts_score)

        logger.debug("No FTS5 index, falling back to LIKE search for %s", keywords)
        return self.store.search_like(keywords, limit, self.config.like_score)

    def hybrid_search(
        self,
        query_embedding: Sequence[float],
        query_text: str,
        limit: int,
    ) -> List[ScoredChunk]:
        """
        Combine vector and keyword results into one ranking.

        Each sub-search fetches ``config.fusion_candidates`` hits regardless
        of ``limit``. A failing vector search degrades to keyword-only.
        """
        if limit <= 0:
            return []

        candidates = self.config.fusion_candidates
        try:
            vector_results = self.vector_search(query_embedding, candidates)
        except Exception as e:
            logger.warning("Vector search failed, falling back to text search only: %s", e)
            vector_results = []

        keyword_results = self.keyword_search(query_text, candidates)
        return fuse(vector_results, keyword_results, limit, self.config.agreement_bonus)

    def source_references(self, chunks: Sequence[ScoredChunk], limit: int) -> List[SourceReference]:
        """
        Resolve citations for the top ``limit`` chunks.

        Document slug/title lookups are cached for the duration of the call.

        Raises:
            SourceResolutionError: If a chunk's document is missing
        """
        if not chunks or limit <= 0:
            return []

        doc_meta: Dict[int, tuple] = {}
        sources = []
        for chunk in chunks[:limit]:
            meta = doc_meta.get(chunk.document_id)
            if meta is None:
                meta = self.store.get_document_meta(chunk.document_id)
                if meta is None:
                    raise SourceResolutionError(
                        f"Failed to resolve source document {chunk.document_id} "
                        f"for chunk {chunk.id}",
                        {"document_id": chunk.document_id, "chunk_id": chunk.id},
                    )
                doc_meta[chunk.document_id] = meta

            slug, title = meta
            sources.append(SourceReference(
                chunk_id=chunk.id,
                document_id=chunk.document_id,
                doc_slug=slug,
                doc_title=title,
                heading_context=chunk.heading_context,
                excerpt=excerpt(chunk.content_text, self.config.excerpt_words),
            ))
        return sources
