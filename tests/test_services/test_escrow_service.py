"""Tests for EscrowService: creation, funding, release, refund, provider confirmations."""

from __future__ import annotations

import uuid
from decimal import Decimal

import pytest

from trade_kernel.domain.enums import EscrowEventType, EscrowStatus, TradeStatus, Verdict
from trade_kernel.domain.exceptions import (
    EscrowNotFoundError,
    IntegrityError,
    InvalidStateError,
    PaymentVerificationError,
)
from trade_kernel.services.notification_service import NotificationService


async def _event_types(kernel, trade_id: uuid.UUID) -> list[str]:  # noqa: ANN001
    return [e.event_type for e in await kernel.escrow.get_events(trade_id)]


class TestCreateEscrow:
    @pytest.mark.asyncio
    async def test_commission_fixed_at_creation(self, kernel, driver) -> None:
        trade_id = await driver.escrow_pending()

        escrow = await kernel.escrow.get_escrow(trade_id)
        assert escrow.status == EscrowStatus.PENDING
        assert escrow.commission_rate == Decimal("8")
        assert escrow.commission_amount == Decimal("800.00")
        assert escrow.seller_payout == Decimal("9200.00")
        assert escrow.currency == "USD"
        assert await _event_types(kernel, trade_id) == [EscrowEventType.ESCROW_CREATED]

    @pytest.mark.asyncio
    async def test_assisted_rate(self, kernel, driver) -> None:
        trade_id = await driver.escrow_pending(assisted=True)
        escrow = await kernel.escrow.get_escrow(trade_id)
        assert escrow.commission_amount == Decimal("1200.00")

    @pytest.mark.asyncio
    async def test_one_escrow_per_trade(self, kernel, driver) -> None:
        trade_id = await driver.escrow_pending()
        trade = await kernel.trades.get_trade(trade_id)
        with pytest.raises(IntegrityError):
            await kernel.escrow.create_escrow(trade)

    @pytest.mark.asyncio
    async def test_no_escrow_before_pending(self, kernel, driver) -> None:
        trade_id, _ = await driver.quoted()
        with pytest.raises(EscrowNotFoundError):
            await kernel.escrow.get_escrow(trade_id)


class TestPaymentConfirmed:
    @pytest.mark.asyncio
    async def test_funds_escrow_and_trade(self, kernel, driver, parties) -> None:
        trade_id = await driver.escrow_pending()
        data = driver.charge_payload(trade_id)["data"]

        escrow = await kernel.escrow.on_payment_confirmed(
            trade_id, provider_ref=data["tx_ref"], transaction_id=data["id"]
        )

        assert escrow.status == EscrowStatus.HELD
        assert escrow.provider_ref == data["tx_ref"]
        trade = await kernel.trades.get_trade(trade_id)
        assert trade.status == TradeStatus.ESCROW_FUNDED
        assert trade.metadata_json["payment_reference"] == data["tx_ref"]
        last = (await kernel.trades.get_events(trade_id))[-1]
        assert last.actor_id == "SYSTEM"
        assert await _event_types(kernel, trade_id) == [
            EscrowEventType.ESCROW_CREATED,
            EscrowEventType.PAYMENT_CONFIRMED,
        ]

    @pytest.mark.asyncio
    async def test_both_parties_notified(self, kernel, driver, parties) -> None:
        await driver.funded()
        notifications = NotificationService(kernel.session)
        for company in (parties.buyer.company_id, parties.seller.company_id):
            types = [n.type for n in await notifications.get_for_company(company)]
            assert "escrow_funded" in types

    @pytest.mark.asyncio
    async def test_repeat_confirmation_is_noop(self, kernel, driver) -> None:
        trade_id = await driver.escrow_pending()
        data = driver.charge_payload(trade_id)["data"]

        for _ in range(2):
            escrow = await kernel.escrow.on_payment_confirmed(
                trade_id, provider_ref=data["tx_ref"], transaction_id=data["id"]
            )

        assert escrow.status == EscrowStatus.HELD
        types = await _event_types(kernel, trade_id)
        assert types.count(EscrowEventType.PAYMENT_CONFIRMED) == 1

    @pytest.mark.asyncio
    async def test_second_payment_reference_rejected(self, kernel, driver) -> None:
        trade_id = await driver.funded()
        other = driver.charge_payload(trade_id)["data"]
        with pytest.raises(InvalidStateError):
            await kernel.escrow.on_payment_confirmed(
                trade_id, provider_ref=other["tx_ref"], transaction_id=other["id"]
            )

    @pytest.mark.asyncio
    async def test_unknown_transaction(self, kernel, driver) -> None:
        trade_id = await driver.escrow_pending()
        with pytest.raises(PaymentVerificationError):
            await kernel.escrow.on_payment_confirmed(
                trade_id, provider_ref="TK-FORGED", transaction_id="999"
            )
        assert (await kernel.escrow.get_escrow(trade_id)).status == EscrowStatus.PENDING

    @pytest.mark.asyncio
    async def test_failed_charge(self, kernel, driver) -> None:
        trade_id = await driver.escrow_pending()
        data = driver.charge_payload(trade_id, successful=False)["data"]
        with pytest.raises(PaymentVerificationError):
            await kernel.escrow.on_payment_confirmed(
                trade_id, provider_ref=data["tx_ref"], transaction_id=data["id"]
            )

    @pytest.mark.asyncio
    async def test_underpayment(self, kernel, driver) -> None:
        trade_id = await driver.escrow_pending()
        data = driver.charge_payload(trade_id, amount=Decimal("9999.99"))["data"]
        with pytest.raises(PaymentVerificationError, match="does not cover"):
            await kernel.escrow.on_payment_confirmed(
                trade_id, provider_ref=data["tx_ref"], transaction_id=data["id"]
            )

    @pytest.mark.asyncio
    async def test_currency_mismatch(self, kernel, driver, payments) -> None:
        trade_id = await driver.escrow_pending()
        data = payments.simulate_charge(trade_id, Decimal("10000.00"), "EUR")
        with pytest.raises(PaymentVerificationError, match="currency"):
            await kernel.escrow.on_payment_confirmed(
                trade_id, provider_ref=data["tx_ref"], transaction_id=data["id"]
            )

    @pytest.mark.asyncio
    async def test_reference_must_match_provider_record(self, kernel, driver) -> None:
        trade_id = await driver.escrow_pending()
        data = driver.charge_payload(trade_id)["data"]
        with pytest.raises(PaymentVerificationError, match="reference mismatch"):
            await kernel.escrow.on_payment_confirmed(
                trade_id, provider_ref="TK-SOMEONE-ELSE", transaction_id=data["id"]
            )

    @pytest.mark.asyncio
    async def test_webhook_amount_only_logged(self, kernel, driver) -> None:
        trade_id = await driver.escrow_pending()
        data = driver.charge_payload(trade_id)["data"]
        escrow = await kernel.escrow.on_payment_confirmed(
            trade_id,
            provider_ref=data["tx_ref"],
            transaction_id=data["id"],
            amount=Decimal("1.00"),
            currency="USD",
        )
        assert escrow.status == EscrowStatus.HELD


class TestReleaseAndRefund:
    @pytest.mark.asyncio
    async def test_release_on_acceptance(self, kernel, driver, parties) -> None:
        trade_id = await driver.delivered()
        await kernel.trades.confirm_delivery(
            trade_id, parties.buyer, goods_received=True, escrow_release_understood=True
        )

        escrow = await kernel.escrow.get_escrow(trade_id)
        assert escrow.status == EscrowStatus.RELEASED
        assert (await _event_types(kernel, trade_id))[-1] == EscrowEventType.FUNDS_RELEASED

    @pytest.mark.asyncio
    async def test_released_funds_cannot_be_refunded(self, kernel, driver, parties) -> None:
        trade_id = await driver.delivered()
        await kernel.trades.confirm_delivery(
            trade_id, parties.buyer, goods_received=True, escrow_release_understood=True
        )
        with pytest.raises(InvalidStateError):
            await kernel.escrow.refund_buyer(trade_id)

    @pytest.mark.asyncio
    async def test_release_without_escrow_is_fatal(self, kernel) -> None:
        with pytest.raises(IntegrityError):
            await kernel.escrow.on_delivery_accepted(uuid.uuid4())

    @pytest.mark.asyncio
    async def test_refund_moves_trade(self, kernel, driver) -> None:
        trade_id, dispute_id = await driver.disputed()

        escrow = await kernel.escrow.refund_buyer(trade_id, dispute_id=dispute_id)

        assert escrow.status == EscrowStatus.REFUNDED
        trade = await kernel.trades.get_trade(trade_id)
        assert trade.status == TradeStatus.REFUNDED
        assert trade.metadata_json["refund_dispute_id"] == str(dispute_id)

    @pytest.mark.asyncio
    async def test_non_refund_verdict_keeps_funds_held(self, kernel, driver) -> None:
        trade_id, dispute_id = await driver.disputed()

        result = await kernel.escrow.on_dispute_verdict(
            trade_id, Verdict.MANUAL_REVIEW, dispute_id=dispute_id
        )

        assert result is None
        assert (await kernel.escrow.get_escrow(trade_id)).status == EscrowStatus.HELD

    @pytest.mark.asyncio
    async def test_refund_verdict_refunds(self, kernel, driver) -> None:
        trade_id, dispute_id = await driver.disputed()
        escrow = await kernel.escrow.on_dispute_verdict(trade_id, Verdict.REFUND_BUYER, dispute_id)
        assert escrow.status == EscrowStatus.REFUNDED


class TestProviderConfirmations:
    @pytest.mark.asyncio
    async def test_payout_recorded_once(self, kernel, driver, parties) -> None:
        trade_id = await driver.delivered()
        await kernel.trades.confirm_delivery(
            trade_id, parties.buyer, goods_received=True, escrow_release_understood=True
        )

        assert await kernel.escrow.record_payout_confirmed(trade_id, "TRF-1") is True
        assert await kernel.escrow.record_payout_confirmed(trade_id, "TRF-1") is False
        types = await _event_types(kernel, trade_id)
        assert types.count(EscrowEventType.PAYOUT_CONFIRMED) == 1

    @pytest.mark.asyncio
    async def test_payout_requires_release(self, kernel, driver) -> None:
        trade_id = await driver.funded()
        with pytest.raises(InvalidStateError):
            await kernel.escrow.record_payout_confirmed(trade_id, "TRF-1")

    @pytest.mark.asyncio
    async def test_refund_confirmation(self, kernel, driver) -> None:
        trade_id, dispute_id = await driver.disputed()
        await kernel.escrow.refund_buyer(trade_id, dispute_id)
        assert await kernel.escrow.record_refund_confirmed(trade_id, "RFD-1") is True
