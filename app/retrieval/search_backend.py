"""
Vector and full-text search over the knowledge base (PostgreSQL + pgvector).

Queries run in a worker thread so the event loop is never blocked by the
synchronous SQLAlchemy engine. Both searches order deterministically so the
same query against an unchanged corpus returns the same ranking.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Optional, Protocol

from sqlalchemy import text

from app.db import DatabaseManager, db_manager


@dataclass(frozen=True)
class VectorHit:
    chunk_id: str
    document_id: str
    chunk_text: str
    similarity: float
    title: str = ""
    category: Optional[str] = None
    tags: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class TextHit:
    document_id: str
    title: str
    content: str


class SearchBackend(Protocol):
    async def vector_search(
        self, tenant_id: str, vector: list[float], threshold: float, top_k: int
    ) -> list[VectorHit]: ...

    async def full_text_search(
        self, tenant_id: str, query: str, limit: int
    ) -> list[TextHit]: ...


def vector_literal(vector: list[float]) -> str:
    """pgvector text form: '[0.1,0.2,...]'."""
    return "[" + ",".join(repr(float(v)) for v in vector) + "]"


class SqlSearchBackend:
    VECTOR_QUERY = text(
        "SELECT kc.id AS chunk_id, kc.document_id, kc.chunk_text, "
        "1 - (kc.embedding <=> CAST(:embedding AS vector)) AS similarity, "
        "kd.title, kd.category, kd.tags "
        "FROM knowledge_chunks kc "
        "JOIN knowledge_documents kd ON kd.id = kc.document_id "
        "WHERE kd.tenant_id = :tenant_id AND kd.is_active "
        "AND 1 - (kc.embedding <=> CAST(:embedding AS vector)) >= :threshold "
        "ORDER BY kc.embedding <=> CAST(:embedding AS vector), kc.id "
        "LIMIT :limit"
    )
    TEXT_QUERY = text(
        "SELECT id, title, content FROM knowledge_documents "
        "WHERE tenant_id = :tenant_id AND is_active "
        "AND to_tsvector(CAST(:config AS regconfig), content) "
        "@@ websearch_to_tsquery(CAST(:config AS regconfig), :query) "
        "ORDER BY ts_rank(to_tsvector(CAST(:config AS regconfig), content), "
        "websearch_to_tsquery(CAST(:config AS regconfig), :query)) DESC, id "
        "LIMIT :limit"
    )

    def __init__(
        self,
        manager: DatabaseManager = db_manager,
        text_search_config: str = "simple",
    ) -> None:
        self._manager = manager
        self._config = text_search_config

    def _vector_sync(
        self, tenant_id: str, vector: list[float], threshold: float, top_k: int
    ) -> list[VectorHit]:
        with self._manager.db_session() as db:
            rows = db.execute(
                self.VECTOR_QUERY,
                {
                    "embedding": vector_literal(vector),
                    "tenant_id": tenant_id,
                    "threshold": threshold,
                    "limit": top_k,
                },
            ).all()
        return [
            VectorHit(
                chunk_id=str(row.chunk_id),
                document_id=str(row.document_id),
                chunk_text=row.chunk_text or "",
                similarity=min(1.0, max(0.0, float(row.similarity))),
                title=row.title or "",
                category=row.category,
                tags=list(row.tags or []),
            )
            for row in rows
        ]

    def _text_sync(self, tenant_id: str, query: str, limit: int) -> list[TextHit]:
        with self._manager.db_session() as db:
            rows = db.execute(
                self.TEXT_QUERY,
                {
                    "tenant_id": tenant_id,
                    "config": self._config,
                    "query": query,
                    "limit": limit,
                },
            ).all()
        return [
            TextHit(document_id=str(row.id), title=row.title or "", content=row.content or "")
            for row in rows
        ]

    async def vector_search(
        self, tenant_id: str, vector: list[float], threshold: float, top_k: int
    ) -> list[VectorHit]:
        return await asyncio.to_thread(self._vector_sync, tenant_id, vector, threshold, top_k)

    async def full_text_search(
        self, tenant_id: str, query: str, limit: int
    ) -> list[TextHit]:
        return await asyncio.to_thread(self._text_sync, tenant_id, query, limit)
