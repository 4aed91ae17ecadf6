"""Deterministic dispute policy.

The single rule that decides refunds without a human:

    refund  <=>  days_overdue > 14  AND  no movement event in the last 7 days

Everything here is pure: callers pass in shipment and tracking snapshots and
the current time, nothing touches the database or the network. The narrative
advisor's verdict is only consulted when this rule does not trigger.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from trade_kernel.domain.enums import MOVEMENT_EVENT_TYPES, Verdict

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from trade_kernel.domain.advisor_protocol import AdvisorVerdict

POLICY_PREFIX = "[POLICY TRIGGERED] "

DEFAULT_OVERDUE_THRESHOLD_DAYS = 14
DEFAULT_MOVEMENT_WINDOW_DAYS = 7


@dataclass(frozen=True)
class ShipmentSnapshot:
    id: str
    estimated_delivery_date: datetime | None
    updated_at: datetime
    is_active: bool = False


@dataclass(frozen=True)
class TrackingSnapshot:
    event_type: str
    event_timestamp: datetime


@dataclass(frozen=True)
class PolicyFacts:
    """Facts computed for one judgment and the rule's outcome."""

    days_overdue: int
    has_recent_movement: bool
    policy_refund: bool
    shipment_id: str | None = None


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; they are stored as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def select_shipment(shipments: Sequence[ShipmentSnapshot]) -> ShipmentSnapshot | None:
    """Pick the shipment the policy should look at.

    Prefers the one explicitly marked active, else the most recently updated.
    """
    if not shipments:
        return None
    for shipment in shipments:
        if shipment.is_active:
            return shipment
    return max(shipments, key=lambda s: _as_utc(s.updated_at))


def compute_days_overdue(estimated_delivery: datetime | None, now: datetime) -> int:
    """Whole days past the estimated delivery date, never negative."""
    if estimated_delivery is None:
        return 0
    delta = _as_utc(now) - _as_utc(estimated_delivery)
    return max(0, delta // timedelta(days=1))


def has_recent_movement(
    events: Iterable[TrackingSnapshot],
    now: datetime,
    window_days: int = DEFAULT_MOVEMENT_WINDOW_DAYS,
) -> bool:
    """True if any movement-type tracking event falls inside the window."""
    cutoff = _as_utc(now) - timedelta(days=window_days)
    return any(
        e.event_type in MOVEMENT_EVENT_TYPES and _as_utc(e.event_timestamp) >= cutoff
        for e in events
    )


def evaluate_policy(
    shipment: ShipmentSnapshot | None,
    events: Iterable[TrackingSnapshot],
    now: datetime,
    overdue_threshold_days: int = DEFAULT_OVERDUE_THRESHOLD_DAYS,
    movement_window_days: int = DEFAULT_MOVEMENT_WINDOW_DAYS,
) -> PolicyFacts:
    """Compute the policy facts for a trade's selected shipment.

    With no shipment the trade is treated as not overdue with no movement,
    so the rule cannot trigger and the advisor's verdict stands.
    """
    if shipment is None:
        return PolicyFacts(days_overdue=0, has_recent_movement=False, policy_refund=False)

    overdue = compute_days_overdue(shipment.estimated_delivery_date, now)
    moved = has_recent_movement(events, now, movement_window_days)
    return PolicyFacts(
        days_overdue=overdue,
        has_recent_movement=moved,
        policy_refund=overdue > overdue_threshold_days and not moved,
        shipment_id=shipment.id,
    )


def apply_policy_override(facts: PolicyFacts, advice: AdvisorVerdict) -> AdvisorVerdict:
    """Final verdict: the policy wins whenever it triggers."""
    if not facts.policy_refund:
        return advice
    return replace(
        advice,
        verdict=Verdict.REFUND_BUYER,
        reasoning=f"{POLICY_PREFIX}{advice.reasoning}",
    )
