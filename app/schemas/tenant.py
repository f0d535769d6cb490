"""Pydantic schemas for tenant AI settings and channel accounts."""

from __future__ import annotations

from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class TenantAIPolicy(BaseModel):
    """
    Per-tenant AI settings, read-only to the response pipeline.

    Built from the tenant's `ai_config` document; unknown keys are ignored.
    """

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    enabled: bool = False
    confidence_threshold: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    escalation_keywords: list[str] = Field(default_factory=list)
    model: Optional[str] = None
    organization_name: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("organization_name", "hospital_name"),
    )
    specialty: Optional[str] = None
    system_prompt: Optional[str] = None


class ChannelAccount(BaseModel):
    """The tenant that owns one connected channel account."""

    model_config = ConfigDict(frozen=True)

    tenant_id: str
    default_language: Optional[str] = None
