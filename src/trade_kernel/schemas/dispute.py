"""Pydantic schemas for the Dispute API."""

from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from trade_kernel.domain.enums import AdminOutcome


class JudgeRequest(BaseModel):
    """Request body for the judge endpoint."""

    dispute_id: uuid.UUID


class ResolveDisputeRequest(BaseModel):
    """Request body for an admin resolving an escalated dispute."""

    outcome: AdminOutcome


class VerdictBody(BaseModel):
    verdict: str
    confidence: float
    reasoning: str
    recommended_action: str
    missing_evidence: list[str] | None = None


class JudgeResponse(BaseModel):
    """`{success, policy_triggered, verdict}` plus the resulting dispute status."""

    success: bool = True
    policy_triggered: bool
    verdict: VerdictBody | None
    status: str
    message: str | None = None


class DisputeResponse(BaseModel):
    """Response schema for a dispute."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    trade_id: uuid.UUID
    raised_by_company_id: uuid.UUID | None
    reason: str
    evidence: list = Field(default_factory=list)
    status: str
    ai_verdict: dict | None
    ai_judged_at: datetime | None
    policy_triggered: bool | None
    resolution: str | None
    resolved_at: datetime | None
    created_at: datetime
