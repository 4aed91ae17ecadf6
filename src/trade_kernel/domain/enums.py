"""Domain enumerations for the trade kernel.

These enums define the canonical states and types used throughout the system.
They are framework-agnostic (no SQLAlchemy, no FastAPI imports).
"""

import enum


class TradeStatus(enum.StrEnum):
    """Lifecycle states of a trade.

    State transitions are enforced by TradeStateMachine.
    See domain/state_machine.py for the transition table.
    """

    DRAFT = "draft"
    RFQ_OPEN = "rfq_open"
    QUOTED = "quoted"
    QUOTE_ACCEPTED = "quote_accepted"
    ESCROW_PENDING = "escrow_pending"
    ESCROW_FUNDED = "escrow_funded"
    PRODUCTION = "production"
    PICKUP_SCHEDULED = "pickup_scheduled"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    ACCEPTED = "accepted"
    SETTLED = "settled"
    DISPUTED = "disputed"
    REFUNDED = "refunded"
    CLOSED = "closed"


# States in which funds are held against the trade and an issue may be raised.
FUNDED_TRADE_STATES = frozenset(
    {
        TradeStatus.ESCROW_FUNDED,
        TradeStatus.PRODUCTION,
        TradeStatus.PICKUP_SCHEDULED,
        TradeStatus.IN_TRANSIT,
        TradeStatus.DELIVERED,
        TradeStatus.ACCEPTED,
    }
)


class QuoteStatus(enum.StrEnum):
    SUBMITTED = "submitted"
    ACCEPTED = "accepted"
    SUPERSEDED = "superseded"


class EscrowStatus(enum.StrEnum):
    """Lifecycle states of an escrow payment: pending -> held -> released|refunded."""

    PENDING = "pending"
    HELD = "held"
    RELEASED = "released"
    REFUNDED = "refunded"


class EscrowEventType(enum.StrEnum):
    """Types of audit events recorded in the escrow_events table.

    Every escrow movement MUST produce exactly one event.
    """

    ESCROW_CREATED = "ESCROW_CREATED"
    PAYMENT_CONFIRMED = "PAYMENT_CONFIRMED"
    FUNDS_RELEASED = "FUNDS_RELEASED"
    FUNDS_REFUNDED = "FUNDS_REFUNDED"
    PAYOUT_CONFIRMED = "PAYOUT_CONFIRMED"
    REFUND_CONFIRMED = "REFUND_CONFIRMED"


class DisputeStatus(enum.StrEnum):
    OPEN = "open"
    PENDING_INFO = "pending_info"
    IN_REVIEW = "in_review"
    RESOLVED_REFUND_PENDING = "resolved_refund_pending"
    ESCALATED_TO_ADMIN = "escalated_to_admin"
    RESOLVED = "resolved"


# A verdict may only be computed while the dispute is in one of these states.
JUDGEABLE_DISPUTE_STATES = frozenset(
    {DisputeStatus.OPEN, DisputeStatus.PENDING_INFO, DisputeStatus.IN_REVIEW}
)


class Verdict(enum.StrEnum):
    """Closed set of verdicts the dispute engine may return."""

    REFUND_BUYER = "REFUND_BUYER"
    WAIT_FOR_SELLER = "WAIT_FOR_SELLER"
    MANUAL_REVIEW = "MANUAL_REVIEW"


class AdminOutcome(enum.StrEnum):
    """Outcomes an admin may enact on an escalated dispute."""

    REFUND_BUYER = "REFUND_BUYER"
    RELEASE_TO_SELLER = "RELEASE_TO_SELLER"


class TrackingEventType(enum.StrEnum):
    PICKED_UP = "picked_up"
    IN_TRANSIT = "in_transit"
    ARRIVED_AT_FACILITY = "arrived_at_facility"
    DEPARTED_FACILITY = "departed_facility"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    EXCEPTION = "exception"


# Tracking event types that count as physical movement of the goods.
MOVEMENT_EVENT_TYPES = frozenset(
    {
        TrackingEventType.PICKED_UP,
        TrackingEventType.IN_TRANSIT,
        TrackingEventType.ARRIVED_AT_FACILITY,
        TrackingEventType.DEPARTED_FACILITY,
    }
)


class ActorRole(enum.StrEnum):
    """The capacity in which an actor touches a trade."""

    BUYER = "buyer"
    SELLER = "seller"
    ADMIN = "admin"
    SYSTEM = "system"


class ErrorKind(enum.StrEnum):
    """Tag that lets callers tell business rejections from true faults."""

    EXPECTED = "expected"
    FATAL = "fatal"
    EXTERNAL = "external"
