"""Dispute REST API routes.

Routes:
    POST   /api/v1/disputes/judge           Compute (or re-read) a dispute verdict
    POST   /api/v1/disputes/{id}/resolve    Admin enacts an escalated dispute's outcome
    GET    /api/v1/disputes/{id}            Get dispute details
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends

from trade_kernel.api.auth import get_current_actor
from trade_kernel.api.deps import get_dispute_service, get_judge_rate_limiter
from trade_kernel.domain.actor import Actor
from trade_kernel.infrastructure.redis_client import RateLimiter
from trade_kernel.logging_config import get_logger
from trade_kernel.schemas.dispute import (
    DisputeResponse,
    JudgeRequest,
    JudgeResponse,
    ResolveDisputeRequest,
    VerdictBody,
)
from trade_kernel.services.dispute_service import DisputeService

router = APIRouter(prefix="/api/v1/disputes", tags=["Disputes"])
logger = get_logger(__name__)


@router.post(
    "/judge",
    response_model=JudgeResponse,
    summary="Judge a dispute",
    description=(
        "Idempotent: a dispute that is no longer judgeable returns its stored verdict. "
        "400 if the dispute does not exist, 403 if the caller is not a party, "
        "429 when over the per-user rate limit."
    ),
)
async def judge_dispute(
    request: JudgeRequest,
    actor: Actor = Depends(get_current_actor),
    limiter: RateLimiter = Depends(get_judge_rate_limiter),
    disputes: DisputeService = Depends(get_dispute_service),
) -> JudgeResponse:
    await limiter.hit(actor.audit_id)
    result = await disputes.judge(request.dispute_id, actor)
    return JudgeResponse(
        success=result.success,
        policy_triggered=result.policy_triggered,
        verdict=VerdictBody(**result.verdict.to_dict()) if result.verdict else None,
        status=result.status,
        message=result.message,
    )


@router.post(
    "/{dispute_id}/resolve",
    response_model=DisputeResponse,
    summary="Resolve an escalated dispute (admin)",
)
async def resolve_dispute(
    dispute_id: uuid.UUID,
    request: ResolveDisputeRequest,
    actor: Actor = Depends(get_current_actor),
    disputes: DisputeService = Depends(get_dispute_service),
) -> DisputeResponse:
    dispute = await disputes.resolve_escalated(dispute_id, actor, request.outcome)
    return DisputeResponse.model_validate(dispute)


@router.get("/{dispute_id}", response_model=DisputeResponse, summary="Get dispute details")
async def get_dispute(
    dispute_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    disputes: DisputeService = Depends(get_dispute_service),
) -> DisputeResponse:
    return DisputeResponse.model_validate(await disputes.get_dispute(dispute_id, actor))
