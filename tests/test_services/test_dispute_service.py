"""Tests for DisputeService: judgment, policy override, admin resolution."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta

import pytest

from trade_kernel.advisors import StaticNarrativeAdvisor
from trade_kernel.domain.advisor_protocol import FALLBACK_REASONING, AdvisorVerdict, CaseFacts
from trade_kernel.domain.dispute_policy import POLICY_PREFIX
from trade_kernel.domain.enums import (
    AdminOutcome,
    DisputeStatus,
    EscrowStatus,
    TrackingEventType,
    TradeStatus,
    Verdict,
)
from trade_kernel.domain.exceptions import (
    DisputeNotFoundError,
    InvalidStateError,
    PermissionDeniedError,
)
from trade_kernel.services.dispute_service import ALREADY_RESOLVED_MESSAGE, DisputeService

NOW = datetime.now(UTC)


class _BrokenAdvisor:
    async def advise(self, facts: CaseFacts) -> AdvisorVerdict:
        raise RuntimeError("advisor exploded")


class _RecordingAdvisor:
    def __init__(self) -> None:
        self.calls: list[CaseFacts] = []

    async def advise(self, facts: CaseFacts) -> AdvisorVerdict:
        self.calls.append(facts)
        return AdvisorVerdict(verdict=Verdict.WAIT_FOR_SELLER, confidence=0.6, reasoning="Wait.")


async def _overdue_and_stalled(driver, trade_id: uuid.UUID) -> None:  # noqa: ANN001
    await driver.add_shipment(
        trade_id,
        eta=NOW - timedelta(days=20),
        movements=[(TrackingEventType.IN_TRANSIT, NOW - timedelta(days=10))],
    )


class TestPolicyOverride:
    @pytest.mark.asyncio
    async def test_overdue_without_movement_refunds(self, kernel, driver, parties) -> None:
        trade_id, dispute_id = await driver.disputed()
        await _overdue_and_stalled(driver, trade_id)

        result = await kernel.disputes.judge(dispute_id, parties.buyer, now=NOW)

        assert result.policy_triggered is True
        assert result.verdict.verdict == Verdict.REFUND_BUYER
        assert result.verdict.reasoning.startswith(POLICY_PREFIX)
        assert result.status == DisputeStatus.RESOLVED_REFUND_PENDING
        assert (await kernel.escrow.get_escrow(trade_id)).status == EscrowStatus.REFUNDED
        assert (await kernel.trades.get_trade(trade_id)).status == TradeStatus.REFUNDED

        dispute = await kernel.disputes.get_dispute(dispute_id)
        assert dispute.policy_triggered is True
        assert dispute.ai_verdict["verdict"] == "REFUND_BUYER"
        assert dispute.ai_judged_at is not None

    @pytest.mark.asyncio
    async def test_recent_movement_defers_to_advisor(self, kernel, driver, parties) -> None:
        trade_id, dispute_id = await driver.disputed()
        await driver.add_shipment(
            trade_id,
            eta=NOW - timedelta(days=20),
            movements=[(TrackingEventType.ARRIVED_AT_FACILITY, NOW - timedelta(days=2))],
        )

        result = await kernel.disputes.judge(dispute_id, parties.buyer, now=NOW)

        assert result.policy_triggered is False
        assert result.verdict.verdict == Verdict.WAIT_FOR_SELLER
        assert result.status == DisputeStatus.ESCALATED_TO_ADMIN
        assert (await kernel.escrow.get_escrow(trade_id)).status == EscrowStatus.HELD
        assert (await kernel.trades.get_trade(trade_id)).status == TradeStatus.DISPUTED

    @pytest.mark.asyncio
    async def test_exception_events_are_not_movement(self, kernel, driver, parties) -> None:
        trade_id, dispute_id = await driver.disputed()
        await driver.add_shipment(
            trade_id,
            eta=NOW - timedelta(days=16),
            movements=[(TrackingEventType.EXCEPTION, NOW - timedelta(days=1))],
        )

        result = await kernel.disputes.judge(dispute_id, parties.seller, now=NOW)

        assert result.policy_triggered is True

    @pytest.mark.asyncio
    async def test_no_shipment_uses_advisor(self, kernel, driver, parties) -> None:
        _, dispute_id = await driver.disputed()
        result = await kernel.disputes.judge(dispute_id, parties.buyer, now=NOW)
        assert result.policy_triggered is False
        assert result.verdict.verdict == Verdict.WAIT_FOR_SELLER

    @pytest.mark.asyncio
    async def test_active_shipment_selected(self, kernel, driver, parties) -> None:
        trade_id, dispute_id = await driver.disputed()
        await driver.add_shipment(
            trade_id, eta=NOW + timedelta(days=3), is_active=False, updated_at=NOW
        )
        await driver.add_shipment(
            trade_id, eta=NOW - timedelta(days=30), is_active=True, updated_at=NOW - timedelta(days=5)
        )

        result = await kernel.disputes.judge(dispute_id, parties.buyer, now=NOW)

        assert result.policy_triggered is True

    @pytest.mark.asyncio
    async def test_advisor_receives_computed_facts(self, kernel, driver, parties) -> None:
        trade_id, dispute_id = await driver.disputed("Container lost")
        await driver.add_shipment(trade_id, eta=NOW - timedelta(days=5))
        advisor = _RecordingAdvisor()
        disputes = DisputeService(kernel.session, kernel.trades, kernel.escrow, advisor)

        await disputes.judge(dispute_id, parties.buyer, now=NOW)

        facts = advisor.calls[0]
        assert facts.days_overdue == 5
        assert facts.has_recent_movement is False
        assert facts.reason == "Container lost"
        assert facts.trade_id == str(trade_id)


class TestAdvisorFailure:
    @pytest.mark.asyncio
    async def test_failure_falls_back_to_manual_review(self, kernel, driver, parties) -> None:
        _, dispute_id = await driver.disputed()
        disputes = DisputeService(kernel.session, kernel.trades, kernel.escrow, _BrokenAdvisor())

        result = await disputes.judge(dispute_id, parties.buyer, now=NOW)

        assert result.verdict.verdict == Verdict.MANUAL_REVIEW
        assert result.verdict.reasoning == FALLBACK_REASONING
        assert result.status == DisputeStatus.ESCALATED_TO_ADMIN

    @pytest.mark.asyncio
    async def test_policy_still_refunds_without_advisor(self, kernel, driver, parties) -> None:
        trade_id, dispute_id = await driver.disputed()
        await _overdue_and_stalled(driver, trade_id)
        disputes = DisputeService(kernel.session, kernel.trades, kernel.escrow, _BrokenAdvisor())

        result = await disputes.judge(dispute_id, parties.buyer, now=NOW)

        assert result.verdict.verdict == Verdict.REFUND_BUYER
        assert result.verdict.reasoning == f"{POLICY_PREFIX}{FALLBACK_REASONING}"


class TestJudgeIdempotency:
    @pytest.mark.asyncio
    async def test_second_judgment_returns_stored_verdict(self, kernel, driver, parties) -> None:
        trade_id, dispute_id = await driver.disputed()
        await _overdue_and_stalled(driver, trade_id)

        first = await kernel.disputes.judge(dispute_id, parties.buyer, now=NOW)
        second = await kernel.disputes.judge(dispute_id, parties.seller, now=NOW)

        assert second.message == ALREADY_RESOLVED_MESSAGE
        assert second.verdict == first.verdict
        assert second.policy_triggered is True
        assert second.status == DisputeStatus.RESOLVED_REFUND_PENDING
        refunds = [
            e for e in await kernel.escrow.get_events(trade_id) if e.event_type == "FUNDS_REFUNDED"
        ]
        assert len(refunds) == 1

    @pytest.mark.asyncio
    async def test_escalated_dispute_not_rejudged(self, kernel, driver, parties) -> None:
        trade_id, dispute_id = await driver.disputed()
        await kernel.disputes.judge(dispute_id, parties.buyer, now=NOW)
        # Even if the shipment now looks stalled, the stored verdict stands.
        await _overdue_and_stalled(driver, trade_id)

        again = await kernel.disputes.judge(dispute_id, parties.buyer, now=NOW)

        assert again.status == DisputeStatus.ESCALATED_TO_ADMIN
        assert again.verdict.verdict == Verdict.WAIT_FOR_SELLER
        assert again.message == ALREADY_RESOLVED_MESSAGE


class TestJudgeAuthorization:
    @pytest.mark.asyncio
    async def test_unknown_dispute(self, kernel, parties) -> None:
        with pytest.raises(DisputeNotFoundError):
            await kernel.disputes.judge(uuid.uuid4(), parties.buyer)

    @pytest.mark.asyncio
    async def test_outsider_rejected(self, kernel, driver, parties) -> None:
        _, dispute_id = await driver.disputed()
        with pytest.raises(PermissionDeniedError, match="not a party to this dispute"):
            await kernel.disputes.judge(dispute_id, parties.outsider)
        assert (await kernel.disputes.get_dispute(dispute_id)).status == DisputeStatus.OPEN

    @pytest.mark.asyncio
    async def test_admin_may_judge(self, kernel, driver, parties) -> None:
        _, dispute_id = await driver.disputed()
        result = await kernel.disputes.judge(dispute_id, parties.admin, now=NOW)
        assert result.success is True

    @pytest.mark.asyncio
    async def test_advisor_refund_enacted_when_policy_silent(self, kernel, driver, parties) -> None:
        trade_id, dispute_id = await driver.disputed()
        advisor = StaticNarrativeAdvisor(verdict=Verdict.REFUND_BUYER)
        disputes = DisputeService(kernel.session, kernel.trades, kernel.escrow, advisor)

        result = await disputes.judge(dispute_id, parties.buyer, now=NOW)

        assert result.policy_triggered is False
        assert result.status == DisputeStatus.RESOLVED_REFUND_PENDING
        assert (await kernel.escrow.get_escrow(trade_id)).status == EscrowStatus.REFUNDED


class TestAdminResolution:
    @pytest.mark.asyncio
    async def test_admin_refund(self, kernel, driver, parties) -> None:
        trade_id, dispute_id = await driver.disputed()
        await kernel.disputes.judge(dispute_id, parties.buyer, now=NOW)

        dispute = await kernel.disputes.resolve_escalated(
            dispute_id, parties.admin, AdminOutcome.REFUND_BUYER
        )

        assert dispute.status == DisputeStatus.RESOLVED
        assert dispute.resolution == "REFUND_BUYER"
        assert dispute.resolved_by == parties.admin.user_id
        assert (await kernel.escrow.get_escrow(trade_id)).status == EscrowStatus.REFUNDED
        assert (await kernel.trades.get_trade(trade_id)).status == TradeStatus.REFUNDED

    @pytest.mark.asyncio
    async def test_admin_release(self, kernel, driver, parties) -> None:
        trade_id, dispute_id = await driver.disputed()
        await kernel.disputes.judge(dispute_id, parties.buyer, now=NOW)

        await kernel.disputes.resolve_escalated(
            dispute_id, parties.admin, AdminOutcome.RELEASE_TO_SELLER
        )

        assert (await kernel.escrow.get_escrow(trade_id)).status == EscrowStatus.RELEASED
        trade = await kernel.trades.get_trade(trade_id)
        assert trade.status == TradeStatus.SETTLED
        assert trade.metadata_json["dispute_resolution"] == "RELEASE_TO_SELLER"

    @pytest.mark.asyncio
    async def test_only_admin(self, kernel, driver, parties) -> None:
        _, dispute_id = await driver.disputed()
        await kernel.disputes.judge(dispute_id, parties.buyer, now=NOW)
        with pytest.raises(PermissionDeniedError):
            await kernel.disputes.resolve_escalated(
                dispute_id, parties.buyer, AdminOutcome.REFUND_BUYER
            )

    @pytest.mark.asyncio
    async def test_only_escalated_disputes(self, kernel, driver, parties) -> None:
        _, dispute_id = await driver.disputed()
        with pytest.raises(InvalidStateError):
            await kernel.disputes.resolve_escalated(
                dispute_id, parties.admin, AdminOutcome.RELEASE_TO_SELLER
            )


class TestRefundSettled:
    @pytest.mark.asyncio
    async def test_refund_pending_becomes_resolved(self, kernel, driver, parties) -> None:
        trade_id, dispute_id = await driver.disputed()
        await _overdue_and_stalled(driver, trade_id)
        await kernel.disputes.judge(dispute_id, parties.buyer, now=NOW)

        dispute = await kernel.disputes.mark_refund_settled(trade_id)

        assert dispute.id == dispute_id
        assert dispute.status == DisputeStatus.RESOLVED
        assert dispute.resolution == "REFUND_BUYER"

    @pytest.mark.asyncio
    async def test_ignored_without_pending_refund(self, kernel, driver) -> None:
        trade_id, _ = await driver.disputed()
        assert await kernel.disputes.mark_refund_settled(trade_id) is None
