"""Schemas for retrieval, escalation verdicts and the response pipeline."""

from __future__ import annotations

from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.schemas.messages import Channel


class RetrievedDocument(BaseModel):
    """
    One knowledge chunk returned by retrieval.

    `similarity` is the vector cosine similarity; a document found only by
    full-text search has similarity 0.0.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    document_id: str
    title: str
    chunk_text: str
    similarity: float = Field(ge=0.0, le=1.0)
    category: Optional[str] = None
    tags: list[str] = Field(default_factory=list)


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    Priority.LOW: 0,
    Priority.MEDIUM: 1,
    Priority.HIGH: 2,
    Priority.URGENT: 3,
}


class EscalationDecision(BaseModel):
    model_config = ConfigDict(frozen=True)

    should_escalate: bool
    reason: Optional[str] = None
    priority: Priority = Priority.LOW

    @classmethod
    def escalate(cls, reason: str, priority: Priority) -> "EscalationDecision":
        return cls(should_escalate=True, reason=reason, priority=priority)

    @classmethod
    def none(cls) -> "EscalationDecision":
        return cls(should_escalate=False)


SourceType = Literal[
    "system_prompt",
    "knowledge_base",
    "tenant_config",
    "conversation_history",
    "feedback_db",
]


class RAGSource(BaseModel):
    """Human-readable provenance entry shown next to an AI reply."""

    model_config = ConfigDict(frozen=True)

    type: SourceType
    name: str
    description: Optional[str] = None
    relevance_score: Optional[float] = None


class HistoryTurn(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class RAGInput(BaseModel):
    query: str
    tenant_id: str
    conversation_id: Optional[str] = None
    message_id: Optional[str] = None
    customer_language: Optional[str] = None
    conversation_history: list[HistoryTurn] = Field(default_factory=list)


class RAGOutput(BaseModel):
    model_config = ConfigDict(frozen=True)

    response: str
    translated_response: Optional[str] = None
    confidence: float = Field(ge=0.0, le=1.0)
    model: str
    retrieved_documents: list[RetrievedDocument] = Field(default_factory=list)
    sources: list[RAGSource] = Field(default_factory=list)
    should_escalate: bool
    escalation_reason: Optional[str] = None
    escalation_priority: Optional[Priority] = None
    processing_time_ms: int

    @property
    def reply_text(self) -> str:
        """Text to send to the customer: the translation when there is one."""
        return self.translated_response or self.response


class ExchangeRecord(BaseModel):
    """Row written to the exchange log for later learning."""

    tenant_id: str
    conversation_id: Optional[str] = None
    message_id: Optional[str] = None
    channel: Optional[Channel] = None
    query: str
    response: str
    model: str
    confidence: float
    retrieved_docs: list[dict] = Field(default_factory=list)
    escalated: bool
    escalation_reason: Optional[str] = None
    processing_time_ms: int


class SuggestionRequest(BaseModel):
    tenant_id: str
    query: str = Field(min_length=1)
    history: list[HistoryTurn] = Field(default_factory=list)
