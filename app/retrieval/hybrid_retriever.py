"""
Hybrid retrieval: vector similarity and full-text search fused with
Reciprocal Rank Fusion (RRF).

Each source contributes 1 / (k + rank + 1) for a document at 0-based `rank`
in its own list; a document found by both sources sums its contributions.
Vector hits are collapsed to one entry per document (its best-ranked chunk)
before fusion.
"""

from __future__ import annotations

import asyncio
from typing import Hashable, Iterable, Optional, Sequence

from app.exceptions import RetrievalError
from app.infra.logging_config import get_logger
from app.retrieval.embeddings import Embedder
from app.retrieval.search_backend import SearchBackend, TextHit, VectorHit
from app.schemas.rag import RetrievedDocument

logger = get_logger("retrieval")

DEFAULT_RRF_K = 60
TEXT_ONLY_CHUNK_CHARS = 500


def reciprocal_rank_fusion(
    rankings: Iterable[Sequence[Hashable]], k: int = DEFAULT_RRF_K
) -> list[tuple[Hashable, float]]:
    """
    Fuse ranked id lists into one (id, score) list, best first.

    Ties keep first-seen order, so the result is deterministic for the same
    inputs.
    """
    scores: dict[Hashable, float] = {}
    for ranking in rankings:
        for rank, item in enumerate(ranking):
            scores[item] = scores.get(item, 0.0) + 1.0 / (k + rank + 1)
    return sorted(scores.items(), key=lambda pair: pair[1], reverse=True)


def _dedupe_by_document(hits: Iterable[VectorHit]) -> list[VectorHit]:
    seen: dict[str, VectorHit] = {}
    for hit in hits:
        seen.setdefault(hit.document_id, hit)
    return list(seen.values())


def _from_vector(hit: VectorHit) -> RetrievedDocument:
    return RetrievedDocument(
        id=hit.chunk_id,
        document_id=hit.document_id,
        title=hit.title,
        chunk_text=hit.chunk_text,
        similarity=hit.similarity,
        category=hit.category,
        tags=hit.tags,
    )


def _from_text(hit: TextHit) -> RetrievedDocument:
    return RetrievedDocument(
        id=hit.document_id,
        document_id=hit.document_id,
        title=hit.title,
        chunk_text=hit.content[:TEXT_ONLY_CHUNK_CHARS],
        similarity=0.0,
    )


class HybridRetriever:
    def __init__(
        self,
        embedder: Embedder,
        backend: SearchBackend,
        rrf_k: int = DEFAULT_RRF_K,
        top_k: int = 5,
        similarity_threshold: float = 0.65,
    ) -> None:
        self._embedder = embedder
        self._backend = backend
        self._rrf_k = rrf_k
        self._top_k = top_k
        self._threshold = similarity_threshold

    async def _vector_hits(
        self, tenant_id: str, query: str, threshold: float, limit: int
    ) -> list[VectorHit]:
        vector = await self._embedder.embed(query)
        return await self._backend.vector_search(tenant_id, vector, threshold, limit)

    async def vector_documents(
        self,
        tenant_id: str,
        query: str,
        top_k: Optional[int] = None,
        threshold: Optional[float] = None,
    ) -> list[RetrievedDocument]:
        """Vector-only retrieval, used where lexical recall is not needed."""
        top_k = top_k or self._top_k
        hits = await self._vector_hits(
            tenant_id, query, self._threshold if threshold is None else threshold, top_k * 2
        )
        return [_from_vector(hit) for hit in _dedupe_by_document(hits)[:top_k]]

    async def search(
        self,
        tenant_id: str,
        query: str,
        top_k: Optional[int] = None,
        threshold: Optional[float] = None,
    ) -> list[RetrievedDocument]:
        """
        Top-K documents for `query`, fused from both searches.

        The two searches run concurrently. If one fails the other's results
        are still used; if both fail RetrievalError is raised.
        """
        top_k = top_k or self._top_k
        threshold = self._threshold if threshold is None else threshold
        limit = top_k * 2

        vector_result, text_result = await asyncio.gather(
            self._vector_hits(tenant_id, query, threshold, limit),
            self._backend.full_text_search(tenant_id, query, limit),
            return_exceptions=True,
        )
        for result in (vector_result, text_result):
            if isinstance(result, BaseException) and not isinstance(result, Exception):
                raise result

        vector_failed = isinstance(vector_result, Exception)
        text_failed = isinstance(text_result, Exception)
        if vector_failed and text_failed:
            raise RetrievalError(
                f"Both searches failed: vector={vector_result!r} text={text_result!r}"
            ) from vector_result
        if vector_failed:
            logger.warning("Vector search failed for tenant %s: %s", tenant_id, vector_result)
            vector_result = []
        if text_failed:
            logger.warning("Full-text search failed for tenant %s: %s", tenant_id, text_result)
            text_result = []

        by_document: dict[str, RetrievedDocument] = {}
        vector_ids: list[str] = []
        for hit in _dedupe_by_document(vector_result):
            by_document[hit.document_id] = _from_vector(hit)
            vector_ids.append(hit.document_id)
        text_ids: list[str] = []
        for hit in text_result:
            if hit.document_id in text_ids:
                continue
            text_ids.append(hit.document_id)
            by_document.setdefault(hit.document_id, _from_text(hit))

        fused = reciprocal_rank_fusion([vector_ids, text_ids], k=self._rrf_k)
        return [by_document[str(document_id)] for document_id, _ in fused[:top_k]]
