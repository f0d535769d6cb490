"""Tests for the escalation rule chain and confidence scoring."""

import pytest

from app.escalation.engine import (
    URGENT_REASON,
    ConfidencePolicy,
    EscalationEngine,
    contains_hedging,
)
from app.schemas.rag import Priority, RetrievedDocument
from app.schemas.tenant import TenantAIPolicy


def doc(similarity, doc_id="d1"):
    return RetrievedDocument(
        id=doc_id, document_id=doc_id, title="FAQ", chunk_text="...", similarity=similarity
    )


@pytest.fixture
def engine():
    return EscalationEngine(ConfidencePolicy())


def test_urgent_beats_keyword(engine):
    policy = TenantAIPolicy(enabled=True, escalation_keywords=["피"])
    decision = engine.decide("응급 상황입니다, 피가 나요", policy, confidence=0.99)
    assert decision.should_escalate
    assert decision.priority == Priority.URGENT
    assert decision.reason == URGENT_REASON


def test_check_urgent_matches_only_urgent_patterns(engine):
    assert engine.check_urgent("변호사와 상담하겠습니다").priority == Priority.URGENT
    assert engine.check_urgent("I want to file a COMPLAINT") is not None
    assert engine.check_urgent("영업시간이 어떻게 되나요?") is None


def test_keyword_rule_is_case_insensitive(engine):
    policy = TenantAIPolicy(enabled=True, escalation_keywords=["VIP"])
    decision = engine.decide("vip 예약 가능한가요", policy, confidence=0.99)
    assert decision.priority == Priority.HIGH
    assert "VIP" in decision.reason


def test_low_confidence_priorities(engine):
    policy = TenantAIPolicy(enabled=True)
    assert engine.decide("영업시간?", policy, confidence=0.3).priority == Priority.HIGH
    medium = engine.decide("영업시간?", policy, confidence=0.6)
    assert medium.priority == Priority.MEDIUM
    assert "60.0%" in medium.reason
    assert "75.0%" in medium.reason
    assert engine.decide("영업시간?", policy, confidence=0.8).should_escalate is False


def test_tenant_threshold_overrides_default(engine):
    policy = TenantAIPolicy(enabled=True, confidence_threshold=0.9)
    assert engine.decide("영업시간?", policy, confidence=0.85).should_escalate is True


def test_sensitive_topic_after_confidence(engine):
    decision = engine.decide("환불 받을 수 있나요?", TenantAIPolicy(enabled=True), confidence=0.95)
    assert decision.reason == "환불 요청"
    assert decision.priority == Priority.MEDIUM


def test_confidence_is_clamped_with_no_documents():
    policy = ConfidencePolicy()
    value = policy.compute([], "잘 모르겠습니다")
    assert 0.0 <= value <= 1.0
    assert value == pytest.approx(0.0)
    assert policy.compute([], "안내드립니다") == pytest.approx(0.1)


def test_high_similarity_yields_high_confidence():
    value = ConfidencePolicy().compute([doc(0.92)], "영업시간은 오전 10시부터입니다.")
    assert value >= 0.65
    assert value == pytest.approx(0.4 + 0.6 * 0.92)


def test_hedging_penalty():
    policy = ConfidencePolicy()
    plain = policy.compute([doc(0.8)], "네, 가능합니다.")
    hedged = policy.compute([doc(0.8)], "정확히 모르지만 가능할 것 같습니다.")
    assert plain - hedged == pytest.approx(0.15)
    assert contains_hedging("I'm NOT SURE about that")


def test_confidence_policy_from_settings(settings):
    policy = ConfidencePolicy.from_settings(settings)
    assert policy.default_threshold == 0.75
    assert policy.threshold_for(None) == 0.75


def test_priority_ordering():
    ordered = sorted(Priority, key=lambda p: p.rank)
    assert ordered == [Priority.LOW, Priority.MEDIUM, Priority.HIGH, Priority.URGENT]
