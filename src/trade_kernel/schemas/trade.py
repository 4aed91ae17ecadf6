"""Pydantic schemas for the Trade API.

These schemas define the request/response shapes for the REST API. They are
separate from the ORM models to keep the API and database layers apart.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from trade_kernel.domain.enums import TradeStatus

# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class CreateTradeRequest(BaseModel):
    """Request body for creating a trade (an RFQ from the buyer's company)."""

    title: str = Field(..., min_length=3, max_length=200, examples=["500 t cocoa beans, grade 1"])
    description: str | None = Field(default=None, max_length=5000)
    quantity: Decimal | None = Field(default=None, gt=0)
    unit: str | None = Field(default=None, max_length=32, examples=["t"])
    target_value: Decimal | None = Field(
        default=None,
        gt=0,
        description="Buyer's budget; replaced by the accepted quote's total",
    )
    currency: str = Field(default="USD", min_length=3, max_length=3)
    is_assisted: bool = Field(
        default=False,
        description="Deal brokered with platform assistance (assisted commission rate)",
    )
    open_rfq: bool = Field(default=True, description="Publish the RFQ immediately")


class SubmitQuoteRequest(BaseModel):
    """Request body for a supplier quoting on an open RFQ."""

    unit_price: Decimal = Field(..., gt=0)
    total_price: Decimal = Field(..., gt=0)
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    lead_time_days: int | None = Field(default=None, ge=0, le=365)
    incoterms: str | None = Field(default=None, max_length=16, examples=["FOB"])
    payment_terms: str | None = Field(default=None, max_length=200)


class TransitionRequest(BaseModel):
    """Request body for a caller-requested lifecycle transition."""

    target_state: TradeStatus
    metadata: dict = Field(default_factory=dict, description="Merged into the trade metadata")


class ConfirmDeliveryRequest(BaseModel):
    """Buyer's explicit two-part consent to release escrow."""

    goods_received: bool = False
    escrow_release_understood: bool = False


class ReportIssueRequest(BaseModel):
    """Request body for raising a dispute on a funded trade."""

    reason: str = Field(..., min_length=1, max_length=2000)
    evidence: list[str] = Field(
        default_factory=list,
        max_length=20,
        description="Evidence references (document ids or URLs)",
    )


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class TradeResponse(BaseModel):
    """Response schema for a trade."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    buyer_company_id: uuid.UUID
    seller_company_id: uuid.UUID | None
    title: str
    description: str | None
    quantity: Decimal | None
    unit: str | None
    total_value: Decimal | None
    currency: str
    is_assisted: bool
    accepted_quote_id: uuid.UUID | None
    status: str
    previous_state: str | None
    transition_hash: str | None
    metadata: dict | None = Field(default=None, validation_alias="metadata_json")
    created_at: datetime
    updated_at: datetime


class QuoteResponse(BaseModel):
    """Response schema for a supplier quote."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    trade_id: uuid.UUID
    supplier_company_id: uuid.UUID
    unit_price: Decimal
    total_price: Decimal
    currency: str
    lead_time_days: int | None
    incoterms: str | None
    payment_terms: str | None
    status: str
    created_at: datetime


class TradeEventResponse(BaseModel):
    """Response schema for an audit event."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    trade_id: uuid.UUID
    event_type: str
    from_state: str | None
    to_state: str
    actor_id: str
    actor_role: str
    transition_hash: str | None
    metadata: dict | None = Field(default=None, validation_alias="metadata_json")
    created_at: datetime


class TradeStatusResponse(BaseModel):
    """Lightweight status check response."""

    trade_id: uuid.UUID
    status: str
    previous_state: str | None
    transition_hash: str | None
    allowed_next_states: list[str] = Field(
        description="States reachable in one step from the current status"
    )


class EscrowResponse(BaseModel):
    """Response schema for a trade's escrow payment."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    trade_id: uuid.UUID
    amount: Decimal
    currency: str
    commission_rate: Decimal
    commission_amount: Decimal
    seller_payout: Decimal
    status: str
    provider_ref: str | None
    created_at: datetime
    updated_at: datetime
