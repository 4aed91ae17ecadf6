"""Trade, escrow and dispute state machine guards.

Uses python-statemachine to enforce legal state transitions at the domain
level. No matter what the API or a webhook asks for, an illegal transition
(e.g. rfq_open -> settled) is rejected before any row is touched.

A machine is instantiated per record at the record's current status and is
only used to validate; persistence happens afterwards through a conditional
update in the repository layer.

Trade transition table:
    draft             -> rfq_open | closed
    rfq_open          -> quoted | closed
    quoted            -> quote_accepted | closed
    quote_accepted    -> escrow_pending | closed
    escrow_pending    -> escrow_funded | closed
    escrow_funded     -> production | in_transit | disputed
    production        -> pickup_scheduled | in_transit | disputed
    pickup_scheduled  -> in_transit | disputed
    in_transit        -> delivered | disputed
    delivered         -> accepted | disputed
    accepted          -> settled | disputed
    settled           -> closed
    disputed          -> accepted | refunded | closed
    refunded          -> closed

Escrow transition table:
    pending -> held -> released | refunded

Dispute transition table:
    open                     -> pending_info | in_review
    pending_info             -> open | in_review
    open | pending_info | in_review -> resolved_refund_pending | escalated_to_admin
    resolved_refund_pending  -> resolved
    escalated_to_admin       -> resolved
"""

from __future__ import annotations

import hashlib
import json
from typing import TYPE_CHECKING

from statemachine import State, StateMachine
from statemachine.exceptions import TransitionNotAllowed

from trade_kernel.domain.enums import ActorRole, TradeStatus
from trade_kernel.domain.exceptions import InvalidStateError

if TYPE_CHECKING:
    from datetime import datetime


class _GuardMachine(StateMachine):
    """Shared construction and inspection helpers for the guard machines."""

    def __init__(self, current_status: str) -> None:
        valid_values = {s.value for s in self.states}
        if current_status not in valid_values:
            valid = ", ".join(sorted(valid_values))
            raise ValueError(f"Unknown status '{current_status}'. Valid states: {valid}")
        # start_value expects the string value, not the State object
        super().__init__(start_value=current_status)

    @property
    def status(self) -> str:
        """Return the current state value as a string."""
        return str(self.current_state.value)

    def allowed_targets(self) -> list[str]:
        """Return the status values reachable in one step, sorted."""
        return sorted({t.target.value for t in self.current_state.transitions})

    def can_reach(self, target: str) -> bool:
        return target in self.allowed_targets()


class TradeStateMachine(_GuardMachine):
    """Guards the trade lifecycle.

    Usage:
        sm = TradeStateMachine("delivered")
        sm.accept_delivery()
        sm.status  # "accepted"
    """

    # --- States ---
    DRAFT = State("Draft", value="draft", initial=True)
    RFQ_OPEN = State("RFQ open", value="rfq_open")
    QUOTED = State("Quoted", value="quoted")
    QUOTE_ACCEPTED = State("Quote accepted", value="quote_accepted")
    ESCROW_PENDING = State("Escrow pending", value="escrow_pending")
    ESCROW_FUNDED = State("Escrow funded", value="escrow_funded")
    PRODUCTION = State("Production", value="production")
    PICKUP_SCHEDULED = State("Pickup scheduled", value="pickup_scheduled")
    IN_TRANSIT = State("In transit", value="in_transit")
    DELIVERED = State("Delivered", value="delivered")
    ACCEPTED = State("Accepted", value="accepted")
    SETTLED = State("Settled", value="settled")
    DISPUTED = State("Disputed", value="disputed")
    REFUNDED = State("Refunded", value="refunded")
    CLOSED = State("Closed", value="closed", final=True)

    # --- Sourcing ---
    open_rfq = DRAFT.to(RFQ_OPEN)
    receive_quote = RFQ_OPEN.to(QUOTED)
    accept_quote = QUOTED.to(QUOTE_ACCEPTED)
    require_escrow = QUOTE_ACCEPTED.to(ESCROW_PENDING)

    # --- Funding ---
    fund_escrow = ESCROW_PENDING.to(ESCROW_FUNDED)

    # --- Fulfilment ---
    start_production = ESCROW_FUNDED.to(PRODUCTION)
    schedule_pickup = PRODUCTION.to(PICKUP_SCHEDULED)
    ship = ESCROW_FUNDED.to(IN_TRANSIT) | PRODUCTION.to(IN_TRANSIT) | PICKUP_SCHEDULED.to(IN_TRANSIT)
    deliver = IN_TRANSIT.to(DELIVERED)

    # --- Settlement ---
    accept_delivery = DELIVERED.to(ACCEPTED)
    settle = ACCEPTED.to(SETTLED)

    # --- Disputes ---
    raise_dispute = (
        ESCROW_FUNDED.to(DISPUTED)
        | PRODUCTION.to(DISPUTED)
        | PICKUP_SCHEDULED.to(DISPUTED)
        | IN_TRANSIT.to(DISPUTED)
        | DELIVERED.to(DISPUTED)
        | ACCEPTED.to(DISPUTED)
    )
    release_after_dispute = DISPUTED.to(ACCEPTED)
    refund = DISPUTED.to(REFUNDED)

    # --- Termination ---
    close = (
        DRAFT.to(CLOSED)
        | RFQ_OPEN.to(CLOSED)
        | QUOTED.to(CLOSED)
        | QUOTE_ACCEPTED.to(CLOSED)
        | ESCROW_PENDING.to(CLOSED)
        | SETTLED.to(CLOSED)
        | DISPUTED.to(CLOSED)
        | REFUNDED.to(CLOSED)
    )

    def __init__(self, current_status: str = "draft") -> None:
        super().__init__(current_status)


class EscrowStateMachine(_GuardMachine):
    """Guards escrow movements. No backward edge exists (released -> held is illegal)."""

    PENDING = State("Pending", value="pending", initial=True)
    HELD = State("Held", value="held")
    RELEASED = State("Released", value="released", final=True)
    REFUNDED = State("Refunded", value="refunded", final=True)

    confirm_payment = PENDING.to(HELD)
    release = HELD.to(RELEASED)
    refund = HELD.to(REFUNDED)

    def __init__(self, current_status: str = "pending") -> None:
        super().__init__(current_status)


class DisputeStateMachine(_GuardMachine):
    """Guards the dispute lifecycle."""

    OPEN = State("Open", value="open", initial=True)
    PENDING_INFO = State("Pending info", value="pending_info")
    IN_REVIEW = State("In review", value="in_review")
    RESOLVED_REFUND_PENDING = State("Resolved, refund pending", value="resolved_refund_pending")
    ESCALATED_TO_ADMIN = State("Escalated to admin", value="escalated_to_admin")
    RESOLVED = State("Resolved", value="resolved", final=True)

    request_info = OPEN.to(PENDING_INFO)
    info_received = PENDING_INFO.to(OPEN)
    start_review = OPEN.to(IN_REVIEW) | PENDING_INFO.to(IN_REVIEW)
    resolve_refund = (
        OPEN.to(RESOLVED_REFUND_PENDING)
        | PENDING_INFO.to(RESOLVED_REFUND_PENDING)
        | IN_REVIEW.to(RESOLVED_REFUND_PENDING)
    )
    escalate = (
        OPEN.to(ESCALATED_TO_ADMIN)
        | PENDING_INFO.to(ESCALATED_TO_ADMIN)
        | IN_REVIEW.to(ESCALATED_TO_ADMIN)
    )
    refund_settled = RESOLVED_REFUND_PENDING.to(RESOLVED)
    admin_resolves = ESCALATED_TO_ADMIN.to(RESOLVED)

    def __init__(self, current_status: str = "open") -> None:
        super().__init__(current_status)


def fire_event(sm: _GuardMachine, event_name: str) -> str:
    """Fire a named event on a guard machine and return the new status.

    Raises:
        InvalidStateError: If the event is unknown or illegal from the current state.
    """
    current = sm.status
    event_method = getattr(sm, event_name, None)
    if event_method is None or not callable(event_method):
        raise InvalidStateError(current, event_name)
    try:
        event_method()
    except TransitionNotAllowed as err:
        raise InvalidStateError(current, event_name) from err
    return sm.status


def validate_trade_transition(current_status: str, target_status: str) -> None:
    """Check that the trade graph has an edge current -> target.

    Raises:
        InvalidStateError: If no such edge exists.
    """
    sm = TradeStateMachine(current_status)
    if not sm.can_reach(target_status):
        raise InvalidStateError(
            current_status,
            target_status,
            message=(
                f"Cannot move trade from {current_status} to {target_status}. "
                f"Allowed: {', '.join(sm.allowed_targets()) or 'none'}"
            ),
        )


# ---------------------------------------------------------------------------
# Role guards
# ---------------------------------------------------------------------------

_BUYER_SIDE = frozenset({ActorRole.BUYER, ActorRole.ADMIN})
_SELLER_SIDE = frozenset({ActorRole.SELLER, ActorRole.ADMIN})
_ANY_PARTY = frozenset({ActorRole.BUYER, ActorRole.SELLER, ActorRole.ADMIN})
_SYSTEM_ONLY: frozenset[ActorRole] = frozenset()

TARGET_ROLE_GUARDS: dict[TradeStatus, frozenset[ActorRole]] = {
    TradeStatus.RFQ_OPEN: _BUYER_SIDE,
    TradeStatus.QUOTED: _ANY_PARTY,
    TradeStatus.QUOTE_ACCEPTED: _BUYER_SIDE,
    TradeStatus.ESCROW_PENDING: _BUYER_SIDE,
    TradeStatus.ESCROW_FUNDED: _SYSTEM_ONLY,
    TradeStatus.PRODUCTION: _SELLER_SIDE,
    TradeStatus.PICKUP_SCHEDULED: _SELLER_SIDE,
    TradeStatus.IN_TRANSIT: _SELLER_SIDE,
    TradeStatus.DELIVERED: _SELLER_SIDE,
    TradeStatus.ACCEPTED: _BUYER_SIDE,
    TradeStatus.SETTLED: _BUYER_SIDE,
    TradeStatus.DISPUTED: _ANY_PARTY,
    TradeStatus.REFUNDED: _SYSTEM_ONLY,
    TradeStatus.CLOSED: _ANY_PARTY,
}


def role_may_enter(role: ActorRole, target: TradeStatus) -> bool:
    """Return True if an actor acting as `role` may move a trade into `target`.

    The system actor (webhooks, dispute engine) passes every guard.
    """
    if role is ActorRole.SYSTEM:
        return True
    return role in TARGET_ROLE_GUARDS.get(target, _SYSTEM_ONLY)


def compute_transition_hash(
    trade_id: str,
    from_state: str,
    to_state: str,
    actor: str,
    metadata_patch: dict,
    at: datetime,
) -> str:
    """SHA-256 fingerprint of one transition, stored on the trade and its audit row."""
    canonical = json.dumps(
        {
            "trade_id": trade_id,
            "from": from_state,
            "to": to_state,
            "actor": actor,
            "patch": metadata_patch,
            "at": at.isoformat(),
        },
        sort_keys=True,
        default=str,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
