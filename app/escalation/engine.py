"""
Escalation decisions: an ordered chain of independent rules.

Each rule looks at the query, the tenant policy and (after generation) the
confidence score, and returns either None or an EscalationDecision. The first
decision wins. Rule order:

1. urgent patterns (also checked before any generation happens)
2. tenant escalation keywords
3. confidence below the tenant threshold
4. sensitive topics
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from app.config import Settings, get_settings
from app.schemas.rag import EscalationDecision, Priority, RetrievedDocument
from app.schemas.tenant import TenantAIPolicy

URGENT_REASON = "긴급 키워드 감지"

URGENT_PATTERNS = (
    re.compile(r"응급|긴급|급하게|지금 당장"),
    re.compile(r"통증.*심하|심한.*통증"),
    re.compile(r"출혈|피가 나|bleeding", re.IGNORECASE),
    re.compile(r"complaint|complain|불만|화가|짜증", re.IGNORECASE),
    re.compile(r"소송|법적|변호사|lawyer", re.IGNORECASE),
)

SENSITIVE_PATTERNS = (
    (re.compile(r"가격.*할인|할인.*가격|discount|pricing", re.IGNORECASE), "가격 협상"),
    (re.compile(r"환불|refund|취소.*돈", re.IGNORECASE), "환불 요청"),
    (re.compile(r"부작용|side effect|합병증", re.IGNORECASE), "의료적 우려사항"),
    (re.compile(r"실패|잘못|mistake|wrong", re.IGNORECASE), "불만 가능성"),
)

HEDGING_PHRASES = (
    "확실하지 않",
    "정확히 모르",
    "담당자에게 확인",
    "확인이 필요",
    "잘 모르겠",
    "not certain",
    "need to confirm",
    "not sure",
    "i don't know",
)


@dataclass(frozen=True)
class ConfidencePolicy:
    """
    confidence = base + similarity_weight * mean(similarity)
                 - hedging_penalty (if the reply hedges)
                 - no_context_penalty (if nothing was retrieved)
    clamped to [0, 1].
    """

    base: float = 0.4
    similarity_weight: float = 0.6
    hedging_penalty: float = 0.15
    no_context_penalty: float = 0.3
    default_threshold: float = 0.75

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "ConfidencePolicy":
        settings = settings or get_settings()
        return cls(
            base=settings.confidence_base,
            similarity_weight=settings.confidence_similarity_weight,
            hedging_penalty=settings.confidence_hedging_penalty,
            no_context_penalty=settings.confidence_no_context_penalty,
            default_threshold=settings.default_confidence_threshold,
        )

    def threshold_for(self, policy: Optional[TenantAIPolicy]) -> float:
        if policy is not None and policy.confidence_threshold:
            return policy.confidence_threshold
        return self.default_threshold

    def compute(self, documents: Sequence[RetrievedDocument], response_text: str) -> float:
        avg_similarity = (
            sum(doc.similarity for doc in documents) / len(documents) if documents else 0.0
        )
        confidence = self.base + self.similarity_weight * avg_similarity
        if contains_hedging(response_text):
            confidence -= self.hedging_penalty
        if not documents:
            confidence -= self.no_context_penalty
        return max(0.0, min(1.0, confidence))


def contains_hedging(text: str) -> bool:
    lowered = (text or "").lower()
    return any(phrase in lowered for phrase in HEDGING_PHRASES)


@dataclass(frozen=True)
class EscalationContext:
    query: str
    policy: Optional[TenantAIPolicy] = None
    confidence: Optional[float] = None
    threshold: float = 0.75


EscalationRule = Callable[[EscalationContext], Optional[EscalationDecision]]


def urgent_rule(ctx: EscalationContext) -> Optional[EscalationDecision]:
    for pattern in URGENT_PATTERNS:
        if pattern.search(ctx.query):
            return EscalationDecision.escalate(URGENT_REASON, Priority.URGENT)
    return None


def keyword_rule(ctx: EscalationContext) -> Optional[EscalationDecision]:
    if ctx.policy is None:
        return None
    lowered = ctx.query.lower()
    for keyword in ctx.policy.escalation_keywords:
        if keyword and keyword.lower() in lowered:
            return EscalationDecision.escalate(f"키워드 감지: {keyword}", Priority.HIGH)
    return None


def confidence_rule(ctx: EscalationContext) -> Optional[EscalationDecision]:
    if ctx.confidence is None or ctx.confidence >= ctx.threshold:
        return None
    priority = Priority.HIGH if ctx.confidence < 0.5 else Priority.MEDIUM
    return EscalationDecision.escalate(
        f"신뢰도 미달: {ctx.confidence * 100:.1f}% (기준: {ctx.threshold * 100:.1f}%)",
        priority,
    )


def sensitive_topic_rule(ctx: EscalationContext) -> Optional[EscalationDecision]:
    for pattern, reason in SENSITIVE_PATTERNS:
        if pattern.search(ctx.query):
            return EscalationDecision.escalate(reason, Priority.MEDIUM)
    return None


DEFAULT_RULES: tuple[EscalationRule, ...] = (
    urgent_rule,
    keyword_rule,
    confidence_rule,
    sensitive_topic_rule,
)


class EscalationEngine:
    def __init__(
        self,
        confidence_policy: Optional[ConfidencePolicy] = None,
        rules: Sequence[EscalationRule] = DEFAULT_RULES,
    ) -> None:
        self.confidence_policy = confidence_policy or ConfidencePolicy()
        self._rules = tuple(rules)

    def check_urgent(self, query: str) -> Optional[EscalationDecision]:
        """Run before retrieval/generation; an urgent match ends the pipeline."""
        return urgent_rule(EscalationContext(query=query))

    def decide(
        self,
        query: str,
        policy: Optional[TenantAIPolicy] = None,
        confidence: Optional[float] = None,
    ) -> EscalationDecision:
        ctx = EscalationContext(
            query=query,
            policy=policy,
            confidence=confidence,
            threshold=self.confidence_policy.threshold_for(policy),
        )
        for rule in self._rules:
            decision = rule(ctx)
            if decision is not None:
                return decision
        return EscalationDecision.none()
