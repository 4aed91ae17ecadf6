"""Tests for the trade, escrow and dispute guard machines.

The state machines are the core safety guarantee of the kernel.
These tests verify:
    - Valid transitions succeed
    - Invalid transitions raise InvalidStateError
    - Role guards per target state
    - Transition hashes are deterministic
"""

from datetime import UTC, datetime

import pytest

from trade_kernel.domain.enums import ActorRole, TradeStatus
from trade_kernel.domain.exceptions import InvalidStateError
from trade_kernel.domain.state_machine import (
    DisputeStateMachine,
    EscrowStateMachine,
    TradeStateMachine,
    compute_transition_hash,
    fire_event,
    role_may_enter,
    validate_trade_transition,
)


class TestTradeHappyPath:
    """Test the full happy path: draft -> ... -> closed."""

    def test_full_lifecycle(self) -> None:
        sm = TradeStateMachine("draft")
        for event, expected in [
            ("open_rfq", "rfq_open"),
            ("receive_quote", "quoted"),
            ("accept_quote", "quote_accepted"),
            ("require_escrow", "escrow_pending"),
            ("fund_escrow", "escrow_funded"),
            ("start_production", "production"),
            ("schedule_pickup", "pickup_scheduled"),
            ("ship", "in_transit"),
            ("deliver", "delivered"),
            ("accept_delivery", "accepted"),
            ("settle", "settled"),
            ("close", "closed"),
        ]:
            assert fire_event(sm, event) == expected

    def test_ship_straight_from_funded(self) -> None:
        sm = TradeStateMachine("escrow_funded")
        assert fire_event(sm, "ship") == "in_transit"

    def test_dispute_then_refund(self) -> None:
        sm = TradeStateMachine("in_transit")
        assert fire_event(sm, "raise_dispute") == "disputed"
        assert fire_event(sm, "refund") == "refunded"
        assert fire_event(sm, "close") == "closed"


class TestTradeInvalidTransitions:
    def test_cannot_skip_to_settled(self) -> None:
        with pytest.raises(InvalidStateError) as exc_info:
            validate_trade_transition("rfq_open", "settled")
        assert exc_info.value.current_state == "rfq_open"
        assert exc_info.value.attempted_state == "settled"

    def test_cannot_fund_before_escrow_is_pending(self) -> None:
        with pytest.raises(InvalidStateError):
            fire_event(TradeStateMachine("quote_accepted"), "fund_escrow")

    def test_cannot_dispute_before_funding(self) -> None:
        with pytest.raises(InvalidStateError):
            validate_trade_transition("escrow_pending", "disputed")

    def test_cannot_close_while_goods_are_moving(self) -> None:
        with pytest.raises(InvalidStateError):
            validate_trade_transition("in_transit", "closed")

    def test_closed_is_terminal(self) -> None:
        sm = TradeStateMachine("closed")
        assert sm.allowed_targets() == []

    def test_unknown_event_rejected(self) -> None:
        with pytest.raises(InvalidStateError):
            fire_event(TradeStateMachine("draft"), "teleport")

    def test_unknown_status_rejected(self) -> None:
        with pytest.raises(ValueError, match="Unknown status"):
            TradeStateMachine("nonexistent")


class TestTradeAllowedTargets:
    def test_funded_targets(self) -> None:
        assert TradeStateMachine("escrow_funded").allowed_targets() == [
            "disputed",
            "in_transit",
            "production",
        ]

    def test_disputed_targets(self) -> None:
        assert TradeStateMachine("disputed").allowed_targets() == [
            "accepted",
            "closed",
            "refunded",
        ]

    def test_every_status_has_a_state(self) -> None:
        for status in TradeStatus:
            assert TradeStateMachine(status.value).status == status.value


class TestEscrowStateMachine:
    def test_pending_held_released(self) -> None:
        sm = EscrowStateMachine("pending")
        assert fire_event(sm, "confirm_payment") == "held"
        assert fire_event(sm, "release") == "released"

    def test_refund_from_held(self) -> None:
        assert fire_event(EscrowStateMachine("held"), "refund") == "refunded"

    def test_no_backward_edge(self) -> None:
        with pytest.raises(InvalidStateError):
            fire_event(EscrowStateMachine("released"), "confirm_payment")

    def test_cannot_refund_released_funds(self) -> None:
        with pytest.raises(InvalidStateError):
            fire_event(EscrowStateMachine("released"), "refund")

    def test_cannot_release_unfunded(self) -> None:
        with pytest.raises(InvalidStateError):
            fire_event(EscrowStateMachine("pending"), "release")


class TestDisputeStateMachine:
    @pytest.mark.parametrize("start", ["open", "pending_info", "in_review"])
    def test_judgeable_states_resolve_or_escalate(self, start: str) -> None:
        assert fire_event(DisputeStateMachine(start), "resolve_refund") == "resolved_refund_pending"
        assert fire_event(DisputeStateMachine(start), "escalate") == "escalated_to_admin"

    def test_refund_settled(self) -> None:
        sm = DisputeStateMachine("resolved_refund_pending")
        assert fire_event(sm, "refund_settled") == "resolved"

    def test_admin_resolves_only_escalated(self) -> None:
        assert fire_event(DisputeStateMachine("escalated_to_admin"), "admin_resolves") == "resolved"
        with pytest.raises(InvalidStateError):
            fire_event(DisputeStateMachine("open"), "admin_resolves")

    def test_resolved_cannot_be_rejudged(self) -> None:
        with pytest.raises(InvalidStateError):
            fire_event(DisputeStateMachine("resolved"), "escalate")


class TestRoleGuards:
    @pytest.mark.parametrize(
        ("role", "target", "allowed"),
        [
            (ActorRole.BUYER, TradeStatus.ESCROW_PENDING, True),
            (ActorRole.SELLER, TradeStatus.ESCROW_PENDING, False),
            (ActorRole.SELLER, TradeStatus.IN_TRANSIT, True),
            (ActorRole.BUYER, TradeStatus.IN_TRANSIT, False),
            (ActorRole.BUYER, TradeStatus.ACCEPTED, True),
            (ActorRole.SELLER, TradeStatus.ACCEPTED, False),
            (ActorRole.SELLER, TradeStatus.DISPUTED, True),
            (ActorRole.ADMIN, TradeStatus.DELIVERED, True),
            (ActorRole.ADMIN, TradeStatus.ESCROW_FUNDED, False),
            (ActorRole.BUYER, TradeStatus.REFUNDED, False),
            (ActorRole.SYSTEM, TradeStatus.ESCROW_FUNDED, True),
            (ActorRole.SYSTEM, TradeStatus.REFUNDED, True),
        ],
    )
    def test_role_may_enter(self, role: ActorRole, target: TradeStatus, allowed: bool) -> None:
        assert role_may_enter(role, target) is allowed


class TestTransitionHash:
    AT = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)

    def test_deterministic(self) -> None:
        first = compute_transition_hash("t1", "delivered", "accepted", "u1", {"a": 1}, self.AT)
        second = compute_transition_hash("t1", "delivered", "accepted", "u1", {"a": 1}, self.AT)
        assert first == second
        assert len(first) == 64

    def test_patch_order_does_not_matter(self) -> None:
        a = compute_transition_hash("t1", "x", "y", "u1", {"a": 1, "b": 2}, self.AT)
        b = compute_transition_hash("t1", "x", "y", "u1", {"b": 2, "a": 1}, self.AT)
        assert a == b

    def test_actor_changes_hash(self) -> None:
        a = compute_transition_hash("t1", "x", "y", "u1", {}, self.AT)
        b = compute_transition_hash("t1", "x", "y", "SYSTEM", {}, self.AT)
        assert a != b
