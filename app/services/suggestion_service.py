"""Reply suggestions for human agents working an escalated conversation."""

from __future__ import annotations

import hashlib
import logging
from typing import Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError

from app.exceptions import RetrievalError
from app.infra.cache import SUGGESTION_TTL_SECONDS, Cache, InMemoryCache, suggestion_key
from app.retrieval.hybrid_retriever import HybridRetriever
from app.schemas.rag import HistoryTurn, RetrievedDocument
from app.workers.llm import GenerationClient, build_context

logger = logging.getLogger(__name__)

SUGGESTION_TOP_K = 3
SUGGESTION_HISTORY_TURNS = 6
SUGGESTION_MAX_TOKENS = 500

SUGGESTION_SYSTEM_PROMPT = (
    "당신은 병원 고객 상담사를 돕는 어시스턴트입니다. "
    "참고 자료에 근거해서만 답변을 제안하세요."
)


def suggestion_digest(tenant_id: str, query: str) -> str:
    return hashlib.md5(f"suggestion:{tenant_id}:{query[:50]}".encode()).hexdigest()


def build_suggestion_prompt(
    query: str,
    documents: Sequence[RetrievedDocument],
    history: Sequence[HistoryTurn],
) -> str:
    history_text = "\n".join(
        f"{'고객' if turn.role == 'user' else '상담사'}: {turn.content}"
        for turn in list(history)[-SUGGESTION_HISTORY_TURNS:]
    )
    return (
        "다음 대화 맥락과 고객의 마지막 메시지를 보고, 상담사가 사용할 수 있는 답변을 제안해주세요.\n\n"
        f"## 대화 기록\n{history_text}\n\n"
        f"## 고객 메시지\n{query}\n\n"
        f"## 참고 자료\n{build_context(documents)}\n\n"
        "상담사가 바로 사용할 수 있는 자연스러운 답변을 한국어로 작성해주세요:"
    )


class SuggestionService:
    def __init__(
        self,
        retriever: HybridRetriever,
        generator: GenerationClient,
        model: str,
        cache: Optional[Cache] = None,
    ) -> None:
        self.retriever = retriever
        self.generator = generator
        self.model = model
        self.cache = cache if cache is not None else InMemoryCache()

    async def suggest(
        self,
        tenant_id: str,
        query: str,
        history: Sequence[HistoryTurn] = (),
    ) -> str:
        """
        Suggest a reply the agent can send as-is.

        Suggestions are cached per tenant and query prefix for 30 minutes.
        Raises GenerationError when the model call fails.
        """
        key = suggestion_key(suggestion_digest(tenant_id, query))
        cached = await self.cache.get(key)
        if cached:
            return cached

        try:
            documents = await self.retriever.vector_documents(
                tenant_id, query, top_k=SUGGESTION_TOP_K
            )
        except (RetrievalError, SQLAlchemyError, ValueError) as e:
            logger.warning("Suggestion retrieval failed for tenant %s: %s", tenant_id, e)
            documents = []

        result = await self.generator.generate(
            SUGGESTION_SYSTEM_PROMPT,
            build_suggestion_prompt(query, documents, history),
            self.model,
            max_tokens=SUGGESTION_MAX_TOKENS,
        )
        await self.cache.set(key, result.text, SUGGESTION_TTL_SECONDS)
        return result.text
