"""
Response orchestration: turn one customer query into an auto-reply or an
escalation.

    received -> [urgent escalated]
    received -> translated -> retrieved -> generated -> decided -> [answered | escalated]

Policy problems (unknown tenant, AI disabled) and generation failures end in
an escalation, never in an error. Retrieval and translation failures degrade:
the pipeline carries on with zero documents or the untranslated text.
"""

from __future__ import annotations

import logging
import time
from typing import List, Optional, Sequence

from app.config import Settings, get_settings
from app.core.tenants import TenantDirectory
from app.escalation.engine import ConfidencePolicy, EscalationEngine
from app.exceptions import GenerationError, RetrievalError, TranslationError
from app.retrieval.hybrid_retriever import HybridRetriever
from app.schemas.messages import Channel
from app.schemas.rag import (
    EscalationDecision,
    ExchangeRecord,
    HistoryTurn,
    Priority,
    RAGInput,
    RAGOutput,
    RAGSource,
    RetrievedDocument,
)
from app.schemas.tenant import TenantAIPolicy
from app.services.exchange_log_service import ExchangeLogger
from app.services.translation_service import TranslationService
from app.workers.llm import GenerationClient, build_system_prompt, select_model

logger = logging.getLogger(__name__)

AI_DISABLED_REASON = "AI 자동응대 비활성화됨"
TENANT_NOT_FOUND_REASON = "거래처 정보를 찾을 수 없음"
GENERATION_FAILED_REASON = "generation failed"
NO_MODEL = "none"


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


def build_sources(
    policy: TenantAIPolicy,
    model: str,
    threshold: float,
    documents: Sequence[RetrievedDocument],
    history: Sequence[HistoryTurn],
) -> List[RAGSource]:
    """Provenance shown next to the reply in the agent inbox."""
    sources = [
        RAGSource(
            type="system_prompt",
            name="시스템 프롬프트",
            description=f"{policy.organization_name or '기본'} 맞춤 AI 설정",
        ),
        RAGSource(
            type="tenant_config",
            name="거래처 설정",
            description=f"모델: {model}, 신뢰도 임계값: {threshold}",
        ),
    ]
    for index, doc in enumerate(documents, start=1):
        sources.append(
            RAGSource(
                type="knowledge_base",
                name=doc.title or f"문서 #{index}",
                description=doc.category,
                relevance_score=doc.similarity,
            )
        )
    if history:
        sources.append(
            RAGSource(
                type="conversation_history",
                name="대화 기록",
                description=f"{len(history)}개 이전 메시지",
            )
        )
    return sources


class ResponseOrchestrator:
    """
    Runs the response pipeline for one inbound query.

    Collaborators are injected; nothing here holds per-request state, so one
    instance serves concurrent requests.
    """

    def __init__(
        self,
        tenants: TenantDirectory,
        retriever: HybridRetriever,
        generator: GenerationClient,
        exchange_logger: ExchangeLogger,
        translator: Optional[TranslationService] = None,
        escalation: Optional[EscalationEngine] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.tenants = tenants
        self.retriever = retriever
        self.generator = generator
        self.exchange_logger = exchange_logger
        self.translator = translator
        self.escalation = escalation or EscalationEngine(
            ConfidencePolicy.from_settings(self.settings)
        )

    @property
    def canonical_language(self) -> str:
        return self.settings.canonical_language.upper()

    def _needs_translation(self, language: Optional[str]) -> bool:
        return bool(language) and language.upper() != self.canonical_language

    async def _translate(
        self, text: str, target_lang: str, source_lang: Optional[str]
    ) -> Optional[str]:
        if self.translator is None:
            return None
        try:
            result = await self.translator.translate(text, target_lang, source_lang)
        except TranslationError as e:
            logger.warning("Translation to %s failed: %s", target_lang, e)
            return None
        return result.text

    async def _retrieve(self, tenant_id: str, query: str) -> List[RetrievedDocument]:
        try:
            return await self.retriever.search(
                tenant_id,
                query,
                top_k=self.settings.retrieval_top_k,
                threshold=self.settings.retrieval_similarity_threshold,
            )
        except RetrievalError as e:
            logger.warning("Retrieval failed for tenant %s: %s", tenant_id, e)
            return []

    async def _escalated(
        self,
        rag_input: RAGInput,
        decision: EscalationDecision,
        started: float,
        channel: Optional[Channel],
        model: str = NO_MODEL,
        documents: Sequence[RetrievedDocument] = (),
        sources: Sequence[RAGSource] = (),
    ) -> RAGOutput:
        output = RAGOutput(
            response="",
            confidence=0.0,
            model=model,
            retrieved_documents=list(documents),
            sources=list(sources),
            should_escalate=True,
            escalation_reason=decision.reason,
            escalation_priority=decision.priority,
            processing_time_ms=_elapsed_ms(started),
        )
        await self._log(rag_input, output, channel)
        return output

    async def _log(
        self, rag_input: RAGInput, output: RAGOutput, channel: Optional[Channel]
    ) -> None:
        if output.should_escalate:
            priority = output.escalation_priority or Priority.MEDIUM
            logger.log(
                logging.WARNING if priority.rank >= Priority.HIGH.rank else logging.INFO,
                "Escalating tenant=%s conversation=%s priority=%s reason=%s",
                rag_input.tenant_id,
                rag_input.conversation_id,
                priority.value,
                output.escalation_reason,
            )
        await self.exchange_logger.log_exchange(
            ExchangeRecord(
                tenant_id=rag_input.tenant_id,
                conversation_id=rag_input.conversation_id,
                message_id=rag_input.message_id,
                channel=channel,
                query=rag_input.query,
                response=output.response,
                model=output.model,
                confidence=output.confidence,
                retrieved_docs=[
                    {"id": doc.id, "title": doc.title, "similarity": doc.similarity}
                    for doc in output.retrieved_documents
                ],
                escalated=output.should_escalate,
                escalation_reason=output.escalation_reason,
                processing_time_ms=output.processing_time_ms,
            )
        )

    async def process(
        self, rag_input: RAGInput, channel: Optional[Channel] = None
    ) -> RAGOutput:
        """
        Run the full pipeline for `rag_input`.

        Args:
            rag_input: The customer's query and its tenant/conversation context.
            channel: Channel the query arrived on, recorded in the exchange log.

        Returns:
            RAGOutput: The reply (with translation when the customer's
                language is not canonical) and the escalation verdict.
        """
        started = time.perf_counter()

        policy = await self.tenants.get_policy(rag_input.tenant_id)
        if policy is None:
            return await self._escalated(
                rag_input,
                EscalationDecision.escalate(TENANT_NOT_FOUND_REASON, Priority.MEDIUM),
                started,
                channel,
            )
        if not policy.enabled:
            return await self._escalated(
                rag_input,
                EscalationDecision.escalate(AI_DISABLED_REASON, Priority.LOW),
                started,
                channel,
            )

        urgent = self.escalation.check_urgent(rag_input.query)
        if urgent is not None:
            return await self._escalated(rag_input, urgent, started, channel)

        language = rag_input.customer_language
        search_query = rag_input.query
        if self._needs_translation(language):
            search_query = (
                await self._translate(rag_input.query, self.canonical_language, language)
                or rag_input.query
            )

        documents = await self._retrieve(rag_input.tenant_id, search_query)

        model = select_model(search_query, len(documents), policy, self.settings)
        threshold = self.escalation.confidence_policy.threshold_for(policy)
        sources = build_sources(
            policy, model, threshold, documents, rag_input.conversation_history
        )
        try:
            generation = await self.generator.generate(
                build_system_prompt(policy, documents),
                search_query,
                model,
                history=rag_input.conversation_history,
            )
        except GenerationError as e:
            logger.error("Generation failed for tenant %s: %s", rag_input.tenant_id, e)
            return await self._escalated(
                rag_input,
                EscalationDecision.escalate(GENERATION_FAILED_REASON, Priority.HIGH),
                started,
                channel,
                model=model,
                documents=documents,
                sources=sources,
            )

        confidence = self.escalation.confidence_policy.compute(documents, generation.text)
        decision = self.escalation.decide(rag_input.query, policy, confidence)

        translated = None
        if self._needs_translation(language) and generation.text:
            translated = await self._translate(
                generation.text, language.upper(), self.canonical_language
            )

        output = RAGOutput(
            response=generation.text,
            translated_response=translated,
            confidence=confidence,
            model=generation.model,
            retrieved_documents=documents,
            sources=sources,
            should_escalate=decision.should_escalate,
            escalation_reason=decision.reason,
            escalation_priority=decision.priority if decision.should_escalate else None,
            processing_time_ms=_elapsed_ms(started),
        )
        await self._log(rag_input, output, channel)
        return output
