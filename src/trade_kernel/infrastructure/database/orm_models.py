"""SQLAlchemy 2.0 ORM models for the trade kernel.

Tables:
    1. trades                    One buyer/seller deal and its lifecycle status.
    2. quotes                    Supplier responses to a trade's RFQ.
    3. trade_events              Append-only audit log of trade transitions.
    4. escrow_payments           Funds held against a trade (one row per trade).
    5. escrow_events             Append-only audit log of escrow movements.
    6. disputes                  Claims opened against a trade, with the stored verdict.
    7. shipments                 Read-only policy input: estimated delivery.
    8. shipment_tracking_events  Read-only policy input: movement history.
    9. notifications             Messages to buyer and seller companies.

Design decisions:
    - UUIDs as primary keys; companies and users are external and referenced by id only.
    - Decimal for money (no floating point rounding errors).
    - JSON columns (JSONB on PostgreSQL) for metadata, evidence and verdicts.
    - CHECK constraints on status columns to reject unknown values at DB level.
    - Status changes go through conditional UPDATEs in the repositories, never
      through attribute assignment on a loaded row.
    - Audit tables are append-only: no UPDATE or DELETE at the application level.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from decimal import Decimal  # noqa: TC003 - needed at runtime by SQLAlchemy Mapped[]

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _status_check(column: str, values: list[str], name: str) -> CheckConstraint:
    quoted = ", ".join(f"'{v}'" for v in values)
    return CheckConstraint(f"{column} IN ({quoted})", name=name)


# ---------------------------------------------------------------------------
# 1. trades
# ---------------------------------------------------------------------------
class Trade(Base):
    """One buyer/seller deal moving through the trade lifecycle."""

    __tablename__ = "trades"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # --- Participants ---
    buyer_company_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    seller_company_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        nullable=True,
        default=None,
        comment="Set when a quote is accepted (or at creation for direct deals)",
    )
    created_by: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)

    # --- Deal ---
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    quantity: Mapped[Decimal | None] = mapped_column(Numeric(18, 4), nullable=True)
    unit: Mapped[str | None] = mapped_column(String(32), nullable=True)
    total_value: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    is_assisted: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        comment="Platform-assisted deals pay the assisted commission rate",
    )
    accepted_quote_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    # --- Lifecycle ---
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="draft",
        comment="Current lifecycle state (guarded by TradeStateMachine)",
    )
    previous_state: Mapped[str | None] = mapped_column(String(20), nullable=True)
    transition_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    metadata_json: Mapped[dict] = mapped_column(
        "metadata",
        JSONType,
        nullable=False,
        default=dict,
        comment="Milestone flags, accepted quote pricing, delivery timestamps",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        _status_check(
            "status",
            [
                "draft", "rfq_open", "quoted", "quote_accepted", "escrow_pending",
                "escrow_funded", "production", "pickup_scheduled", "in_transit",
                "delivered", "accepted", "settled", "disputed", "refunded", "closed",
            ],
            "ck_trade_valid_status",
        ),
        CheckConstraint("total_value IS NULL OR total_value > 0", name="ck_trade_positive_value"),
        Index("idx_trade_status", "status"),
        Index("idx_trade_buyer", "buyer_company_id"),
        Index("idx_trade_seller", "seller_company_id"),
    )

    def __repr__(self) -> str:
        return f"<Trade id={self.id} status={self.status} value={self.total_value} {self.currency}>"


# ---------------------------------------------------------------------------
# 2. quotes
# ---------------------------------------------------------------------------
class Quote(Base):
    """A supplier's priced response to a trade's RFQ."""

    __tablename__ = "quotes"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    trade_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("trades.id", ondelete="CASCADE"), nullable=False
    )
    supplier_company_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)

    unit_price: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    total_price: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    lead_time_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    incoterms: Mapped[str | None] = mapped_column(String(16), nullable=True)
    payment_terms: Mapped[str | None] = mapped_column(String(200), nullable=True)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="submitted")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        _status_check("status", ["submitted", "accepted", "superseded"], "ck_quote_valid_status"),
        CheckConstraint("total_price > 0", name="ck_quote_positive_total"),
        Index("idx_quote_trade", "trade_id"),
        # At most one accepted quote per trade.
        Index(
            "uq_quote_one_accepted_per_trade",
            "trade_id",
            unique=True,
            postgresql_where=text("status = 'accepted'"),
            sqlite_where=text("status = 'accepted'"),
        ),
    )

    def __repr__(self) -> str:
        return f"<Quote id={self.id} trade={self.trade_id} status={self.status}>"


# ---------------------------------------------------------------------------
# 3. trade_events (Append-Only Audit Log)
# ---------------------------------------------------------------------------
class TradeEvent(Base):
    """Immutable audit record of a trade transition or trade-level action."""

    __tablename__ = "trade_events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    trade_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("trades.id", ondelete="CASCADE"), nullable=False
    )
    event_type: Mapped[str] = mapped_column(String(40), nullable=False)
    from_state: Mapped[str | None] = mapped_column(String(20), nullable=True)
    to_state: Mapped[str] = mapped_column(String(20), nullable=False)
    actor_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        default="SYSTEM",
        comment="User id of the actor, or SYSTEM",
    )
    actor_role: Mapped[str] = mapped_column(String(16), nullable=False, default="system")
    transition_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    metadata_json: Mapped[dict | None] = mapped_column(
        "metadata", JSONType, nullable=True, default=None
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        Index("idx_trade_event_trade", "trade_id"),
        Index("idx_trade_event_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<TradeEvent id={self.id} {self.from_state}->{self.to_state}>"


# ---------------------------------------------------------------------------
# 4. escrow_payments
# ---------------------------------------------------------------------------
class EscrowPayment(Base):
    """Funds held against a trade. One row per trade."""

    __tablename__ = "escrow_payments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    trade_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("trades.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    buyer_company_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    seller_company_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)

    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    commission_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    commission_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    seller_payout: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="pending",
        comment="pending -> held -> released|refunded (guarded by EscrowStateMachine)",
    )
    provider_ref: Mapped[str | None] = mapped_column(
        String(128),
        nullable=True,
        default=None,
        comment="Payment provider transaction reference that funded this escrow",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        _status_check(
            "status", ["pending", "held", "released", "refunded"], "ck_escrow_valid_status"
        ),
        CheckConstraint("amount > 0", name="ck_escrow_positive_amount"),
        Index("idx_escrow_status", "status"),
        Index("idx_escrow_provider_ref", "provider_ref"),
    )

    def __repr__(self) -> str:
        return (
            f"<EscrowPayment id={self.id} trade={self.trade_id} "
            f"status={self.status} amount={self.amount} {self.currency}>"
        )


# ---------------------------------------------------------------------------
# 5. escrow_events (Append-Only Audit Log)
# ---------------------------------------------------------------------------
class EscrowEvent(Base):
    """Immutable audit record of one escrow movement.

    This table is APPEND-ONLY. The unique constraint on
    (escrow_id, event_type, provider_ref) makes a replayed movement fail
    instead of producing a second row.
    """

    __tablename__ = "escrow_events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    escrow_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("escrow_payments.id", ondelete="CASCADE"), nullable=False
    )
    event_type: Mapped[str] = mapped_column(String(40), nullable=False)
    old_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    new_status: Mapped[str] = mapped_column(String(20), nullable=False)
    provider_ref: Mapped[str] = mapped_column(
        String(128),
        nullable=False,
        default="",
        comment="Provider reference, empty for movements with none",
    )
    actor: Mapped[str] = mapped_column(String(64), nullable=False, default="SYSTEM")
    metadata_json: Mapped[dict | None] = mapped_column(
        "metadata", JSONType, nullable=True, default=None
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        UniqueConstraint(
            "escrow_id", "event_type", "provider_ref", name="uq_escrow_event_movement"
        ),
        Index("idx_escrow_event_escrow", "escrow_id"),
        Index("idx_escrow_event_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<EscrowEvent id={self.id} type={self.event_type} "
            f"{self.old_status}->{self.new_status}>"
        )


# ---------------------------------------------------------------------------
# 6. disputes
# ---------------------------------------------------------------------------
class Dispute(Base):
    """A claim opened against a trade, with the engine's stored verdict."""

    __tablename__ = "disputes"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    trade_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("trades.id", ondelete="CASCADE"), nullable=False
    )
    raised_by_company_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    raised_by_user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    evidence: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)

    status: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        default="open",
        comment="Guarded by DisputeStateMachine",
    )
    ai_verdict: Mapped[dict | None] = mapped_column(JSONType, nullable=True, default=None)
    ai_judged_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    policy_triggered: Mapped[bool | None] = mapped_column(Boolean, nullable=True)

    resolution: Mapped[str | None] = mapped_column(
        String(30),
        nullable=True,
        comment="Outcome enacted by an admin on an escalated dispute",
    )
    resolved_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        _status_check(
            "status",
            [
                "open", "pending_info", "in_review", "resolved_refund_pending",
                "escalated_to_admin", "resolved",
            ],
            "ck_dispute_valid_status",
        ),
        Index("idx_dispute_trade", "trade_id"),
        Index("idx_dispute_status", "status"),
    )

    def __repr__(self) -> str:
        return f"<Dispute id={self.id} trade={self.trade_id} status={self.status}>"


# ---------------------------------------------------------------------------
# 7. shipments / 8. shipment_tracking_events
# ---------------------------------------------------------------------------
class Shipment(Base):
    """A shipment of a trade's goods. Read-only input to the dispute policy."""

    __tablename__ = "shipments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    trade_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("trades.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="pending")
    carrier: Mapped[str | None] = mapped_column(String(100), nullable=True)
    tracking_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    estimated_delivery_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (Index("idx_shipment_trade", "trade_id"),)


class ShipmentTrackingEvent(Base):
    """One time-stamped movement event on a shipment."""

    __tablename__ = "shipment_tracking_events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    shipment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("shipments.id", ondelete="CASCADE"), nullable=False
    )
    event_type: Mapped[str] = mapped_column(String(40), nullable=False)
    event_timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    location: Mapped[str | None] = mapped_column(String(200), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("idx_tracking_shipment_time", "shipment_id", "event_timestamp"),
    )


# ---------------------------------------------------------------------------
# 9. notifications
# ---------------------------------------------------------------------------
class Notification(Base):
    """A message addressed to a company (buyer or seller side of a trade)."""

    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    company_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    trade_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("trades.id", ondelete="CASCADE"), nullable=True
    )
    type: Mapped[str] = mapped_column(String(40), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (Index("idx_notification_company", "company_id", "read"),)
