"""Trade REST API routes.

Routes:
    POST   /api/v1/trades                                  Create a trade (RFQ)
    GET    /api/v1/trades/{id}                             Get trade details
    GET    /api/v1/trades/{id}/status                      Status + allowed next states
    GET    /api/v1/trades/{id}/events                      Audit trail
    GET    /api/v1/trades/{id}/escrow                      Escrow payment
    GET    /api/v1/trades/{id}/quotes                      Quotes on the RFQ
    POST   /api/v1/trades/{id}/quotes                      Supplier submits a quote
    POST   /api/v1/trades/{id}/quotes/{quote_id}/accept    Buyer accepts a quote
    POST   /api/v1/trades/{id}/transition                  Request a lifecycle transition
    POST   /api/v1/trades/{id}/confirm-delivery            Buyer confirms delivery
    POST   /api/v1/trades/{id}/report-issue                Open a dispute
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends

from trade_kernel.api.auth import get_current_actor
from trade_kernel.api.deps import get_escrow_service, get_trade_service
from trade_kernel.domain.actor import Actor
from trade_kernel.logging_config import get_logger
from trade_kernel.schemas.dispute import DisputeResponse
from trade_kernel.schemas.trade import (
    ConfirmDeliveryRequest,
    CreateTradeRequest,
    EscrowResponse,
    QuoteResponse,
    ReportIssueRequest,
    SubmitQuoteRequest,
    TradeEventResponse,
    TradeResponse,
    TradeStatusResponse,
    TransitionRequest,
)
from trade_kernel.services.escrow_service import EscrowService
from trade_kernel.services.trade_service import TradeService

router = APIRouter(prefix="/api/v1/trades", tags=["Trades"])
logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Create / read
# ---------------------------------------------------------------------------


@router.post(
    "",
    response_model=TradeResponse,
    status_code=201,
    summary="Create a trade",
)
async def create_trade(
    request: CreateTradeRequest,
    actor: Actor = Depends(get_current_actor),
    trades: TradeService = Depends(get_trade_service),
) -> TradeResponse:
    """Create a trade owned by the caller's company, opening the RFQ by default."""
    trade = await trades.create_trade(
        actor,
        title=request.title,
        currency=request.currency,
        description=request.description,
        quantity=request.quantity,
        unit=request.unit,
        target_value=request.target_value,
        is_assisted=request.is_assisted,
        open_rfq=request.open_rfq,
    )
    return TradeResponse.model_validate(trade)


@router.get("/{trade_id}", response_model=TradeResponse, summary="Get trade details")
async def get_trade(
    trade_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    trades: TradeService = Depends(get_trade_service),
) -> TradeResponse:
    trade = await trades.get_trade(trade_id, actor)
    return TradeResponse.model_validate(trade)


@router.get(
    "/{trade_id}/status",
    response_model=TradeStatusResponse,
    summary="Get trade status and allowed next states",
)
async def get_trade_status(
    trade_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    trades: TradeService = Depends(get_trade_service),
) -> TradeStatusResponse:
    return TradeStatusResponse(**await trades.get_status(trade_id, actor))


@router.get(
    "/{trade_id}/events",
    response_model=list[TradeEventResponse],
    summary="Get the trade's audit trail",
)
async def get_trade_events(
    trade_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    trades: TradeService = Depends(get_trade_service),
) -> list[TradeEventResponse]:
    events = await trades.get_events(trade_id, actor)
    return [TradeEventResponse.model_validate(e) for e in events]


@router.get("/{trade_id}/escrow", response_model=EscrowResponse, summary="Get the trade's escrow")
async def get_trade_escrow(
    trade_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    escrow: EscrowService = Depends(get_escrow_service),
) -> EscrowResponse:
    await escrow.trades.get_trade(trade_id, actor)
    return EscrowResponse.model_validate(await escrow.get_escrow(trade_id))


# ---------------------------------------------------------------------------
# Quotes
# ---------------------------------------------------------------------------


@router.get("/{trade_id}/quotes", response_model=list[QuoteResponse], summary="List quotes")
async def list_quotes(
    trade_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    trades: TradeService = Depends(get_trade_service),
) -> list[QuoteResponse]:
    await trades.get_trade(trade_id, actor)
    return [QuoteResponse.model_validate(q) for q in await trades.get_quotes(trade_id)]


@router.post(
    "/{trade_id}/quotes",
    response_model=QuoteResponse,
    status_code=201,
    summary="Submit a quote",
)
async def submit_quote(
    trade_id: uuid.UUID,
    request: SubmitQuoteRequest,
    actor: Actor = Depends(get_current_actor),
    trades: TradeService = Depends(get_trade_service),
) -> QuoteResponse:
    quote = await trades.submit_quote(
        trade_id,
        actor,
        unit_price=request.unit_price,
        total_price=request.total_price,
        currency=request.currency,
        lead_time_days=request.lead_time_days,
        incoterms=request.incoterms,
        payment_terms=request.payment_terms,
    )
    return QuoteResponse.model_validate(quote)


@router.post(
    "/{trade_id}/quotes/{quote_id}/accept",
    response_model=TradeResponse,
    summary="Accept a quote",
    description="Exactly one acceptance wins per trade; a concurrent second acceptance gets 409.",
)
async def accept_quote(
    trade_id: uuid.UUID,
    quote_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    trades: TradeService = Depends(get_trade_service),
) -> TradeResponse:
    trade = await trades.accept_quote(trade_id, quote_id, actor)
    return TradeResponse.model_validate(trade)


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


@router.post(
    "/{trade_id}/transition",
    response_model=TradeResponse,
    summary="Request a lifecycle transition",
)
async def transition_trade(
    trade_id: uuid.UUID,
    request: TransitionRequest,
    actor: Actor = Depends(get_current_actor),
    trades: TradeService = Depends(get_trade_service),
) -> TradeResponse:
    trade = await trades.request_transition(trade_id, request.target_state, actor, request.metadata)
    return TradeResponse.model_validate(trade)


@router.post(
    "/{trade_id}/confirm-delivery",
    response_model=TradeResponse,
    summary="Confirm delivery and release escrow",
)
async def confirm_delivery(
    trade_id: uuid.UUID,
    request: ConfirmDeliveryRequest,
    actor: Actor = Depends(get_current_actor),
    trades: TradeService = Depends(get_trade_service),
) -> TradeResponse:
    """Buyer-only. Both consent flags must be true; the trade ends `settled`."""
    trade = await trades.confirm_delivery(
        trade_id,
        actor,
        goods_received=request.goods_received,
        escrow_release_understood=request.escrow_release_understood,
    )
    return TradeResponse.model_validate(trade)


@router.post(
    "/{trade_id}/report-issue",
    response_model=DisputeResponse,
    status_code=201,
    summary="Report an issue (open a dispute)",
)
async def report_issue(
    trade_id: uuid.UUID,
    request: ReportIssueRequest,
    actor: Actor = Depends(get_current_actor),
    trades: TradeService = Depends(get_trade_service),
) -> DisputeResponse:
    dispute = await trades.report_issue(trade_id, actor, request.reason, request.evidence)
    logger.info("api.issue_reported", trade_id=str(trade_id), dispute_id=str(dispute.id))
    return DisputeResponse.model_validate(dispute)
