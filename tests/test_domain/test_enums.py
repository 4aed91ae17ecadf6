"""Tests for domain enumerations, the actor model and error kinds."""

from __future__ import annotations

import uuid

from trade_kernel.domain.actor import SYSTEM_ACTOR_ID, Actor, resolve_role
from trade_kernel.domain.enums import (
    FUNDED_TRADE_STATES,
    JUDGEABLE_DISPUTE_STATES,
    MOVEMENT_EVENT_TYPES,
    ActorRole,
    EscrowStatus,
    ErrorKind,
    TradeStatus,
    Verdict,
)
from trade_kernel.domain.exceptions import (
    DisputeNotFoundError,
    ExternalServiceError,
    IntegrityError,
    InvalidStateError,
    PreconditionNotMetError,
)


class TestTradeStatus:
    def test_all_statuses_exist(self) -> None:
        assert len(TradeStatus) == 15

    def test_status_is_str_enum(self) -> None:
        assert isinstance(TradeStatus.ESCROW_FUNDED, str)
        assert TradeStatus.ESCROW_FUNDED == "escrow_funded"

    def test_funded_states_exclude_pre_funding(self) -> None:
        assert TradeStatus.ESCROW_PENDING not in FUNDED_TRADE_STATES
        assert TradeStatus.IN_TRANSIT in FUNDED_TRADE_STATES


class TestEscrowStatus:
    def test_all_statuses_exist(self) -> None:
        assert {s.value for s in EscrowStatus} == {"pending", "held", "released", "refunded"}


class TestVerdict:
    def test_closed_set(self) -> None:
        assert {v.value for v in Verdict} == {"REFUND_BUYER", "WAIT_FOR_SELLER", "MANUAL_REVIEW"}

    def test_judgeable_states(self) -> None:
        assert {s.value for s in JUDGEABLE_DISPUTE_STATES} == {"open", "pending_info", "in_review"}

    def test_exception_is_not_movement(self) -> None:
        assert "exception" not in MOVEMENT_EVENT_TYPES
        assert "picked_up" in MOVEMENT_EVENT_TYPES


class TestActor:
    def test_system_actor(self) -> None:
        actor = Actor.system()
        assert actor.audit_id == SYSTEM_ACTOR_ID
        assert resolve_role(actor, uuid.uuid4(), uuid.uuid4()) is ActorRole.SYSTEM

    def test_roles_from_company(self) -> None:
        buyer_co, seller_co = uuid.uuid4(), uuid.uuid4()
        buyer = Actor(user_id=uuid.uuid4(), company_id=buyer_co)
        seller = Actor(user_id=uuid.uuid4(), company_id=seller_co)
        assert resolve_role(buyer, buyer_co, seller_co) is ActorRole.BUYER
        assert resolve_role(seller, buyer_co, seller_co) is ActorRole.SELLER
        assert buyer.audit_id == str(buyer.user_id)

    def test_admin_without_company(self) -> None:
        admin = Actor(user_id=uuid.uuid4(), is_admin=True)
        assert resolve_role(admin, uuid.uuid4(), None) is ActorRole.ADMIN

    def test_unrelated_user(self) -> None:
        outsider = Actor(user_id=uuid.uuid4(), company_id=uuid.uuid4())
        assert resolve_role(outsider, uuid.uuid4(), None) is None

    def test_no_seller_yet(self) -> None:
        user = Actor(user_id=uuid.uuid4(), company_id=None)
        assert resolve_role(user, uuid.uuid4(), None) is None


class TestErrorKinds:
    def test_business_rejections_are_expected(self) -> None:
        assert InvalidStateError("a", "b").kind is ErrorKind.EXPECTED
        assert DisputeNotFoundError("x").kind is ErrorKind.EXPECTED

    def test_integrity_is_fatal(self) -> None:
        assert IntegrityError("missing escrow").kind is ErrorKind.FATAL

    def test_dependency_failure_is_external(self) -> None:
        err = ExternalServiceError("payment provider", "timeout")
        assert err.kind is ErrorKind.EXTERNAL
        assert err.message == "payment provider unavailable: timeout"

    def test_precondition_lists_missing(self) -> None:
        err = PreconditionNotMetError(["goods_received"])
        assert err.missing == ["goods_received"]
        assert err.code == "PRECONDITION_NOT_MET"

    def test_not_found_codes(self) -> None:
        err = DisputeNotFoundError("abc")
        assert err.code == "DISPUTE_NOT_FOUND"
        assert err.message == "Dispute not found: abc"
