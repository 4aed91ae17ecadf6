"""Escrow Service: coordinates escrow movements with the trade lifecycle.

Translates trade transitions and payment-provider confirmations into escrow
status changes:

    escrow_pending entered   -> escrow row created (pending), commission fixed
    charge confirmed         -> pending -> held, trade -> escrow_funded
    accepted entered         -> held -> released
    REFUND_BUYER verdict     -> held -> refunded, trade -> refunded

Each movement is guarded by EscrowStateMachine, persisted with a conditional
update, and appends exactly one escrow_events row. Both parties are notified
on funding, release and refund.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

from trade_kernel.config import get_settings
from trade_kernel.domain.actor import Actor
from trade_kernel.domain.commission import CommissionRates, calculate_commission
from trade_kernel.domain.enums import EscrowEventType, EscrowStatus, TradeStatus, Verdict
from trade_kernel.domain.exceptions import (
    EscrowNotFoundError,
    IntegrityError,
    InvalidStateError,
    PaymentVerificationError,
)
from trade_kernel.domain.state_machine import EscrowStateMachine, fire_event
from trade_kernel.infrastructure.database.orm_models import EscrowPayment
from trade_kernel.infrastructure.database.repositories import (
    EscrowEventRepository,
    EscrowRepository,
)
from trade_kernel.logging_config import get_logger
from trade_kernel.services.notification_service import NotificationService

if TYPE_CHECKING:
    import uuid
    from decimal import Decimal

    from sqlalchemy.ext.asyncio import AsyncSession

    from trade_kernel.infrastructure.database.orm_models import EscrowEvent, Trade
    from trade_kernel.services.payment_service import PaymentService
    from trade_kernel.services.trade_service import TradeService, TradeTransition

logger = get_logger(__name__)


class EscrowService:
    """Manages escrow payments for trades."""

    def __init__(
        self,
        session: AsyncSession,
        trades: TradeService,
        payments: PaymentService | None = None,
        notifications: NotificationService | None = None,
        rates: CommissionRates | None = None,
    ) -> None:
        self._session = session
        self._trades = trades
        self._payments = payments
        self._notifications = notifications or NotificationService(session)
        self._rates = rates or _rates_from_settings()
        self._escrow_repo = EscrowRepository(session)
        self._event_repo = EscrowEventRepository(session)
        trades.subscribe(self.on_trade_transition)

    @property
    def trades(self) -> TradeService:
        return self._trades

    # ------------------------------------------------------------------
    # Trade transition listener
    # ------------------------------------------------------------------

    async def on_trade_transition(self, transition: TradeTransition) -> None:
        if transition.to_state == TradeStatus.ESCROW_PENDING:
            await self.create_escrow(transition.trade)
        elif transition.to_state == TradeStatus.ACCEPTED:
            await self.on_delivery_accepted(transition.trade.id)

    async def create_escrow(self, trade: Trade) -> EscrowPayment:
        """Create the trade's single escrow row in `pending`, fixing the commission."""
        if await self._escrow_repo.get_by_trade(trade.id) is not None:
            logger.critical("escrow.duplicate_for_trade", trade_id=str(trade.id))
            raise IntegrityError(f"Trade {trade.id} already has an escrow record")
        if trade.total_value is None or trade.seller_company_id is None:
            logger.critical("escrow.trade_incomplete", trade_id=str(trade.id))
            raise IntegrityError(f"Trade {trade.id} has no accepted price or seller")

        breakdown = calculate_commission(trade.total_value, trade.is_assisted, self._rates)
        escrow = await self._escrow_repo.create(
            EscrowPayment(
                trade_id=trade.id,
                buyer_company_id=trade.buyer_company_id,
                seller_company_id=trade.seller_company_id,
                amount=trade.total_value,
                currency=trade.currency,
                commission_rate=breakdown.rate,
                commission_amount=breakdown.commission_amount,
                seller_payout=breakdown.seller_payout,
                status=EscrowStatus.PENDING.value,
            )
        )
        await self._event_repo.record(
            escrow_id=escrow.id,
            event_type=EscrowEventType.ESCROW_CREATED,
            old_status=None,
            new_status=EscrowStatus.PENDING,
            metadata={
                "amount": str(escrow.amount),
                "currency": escrow.currency,
                "commission_rate": str(breakdown.rate),
                "commission_amount": str(breakdown.commission_amount),
            },
        )
        logger.info(
            "escrow.created",
            trade_id=str(trade.id),
            escrow_id=str(escrow.id),
            amount=str(escrow.amount),
            commission=str(breakdown.commission_amount),
        )
        return escrow

    # ------------------------------------------------------------------
    # Funding
    # ------------------------------------------------------------------

    async def on_payment_confirmed(
        self,
        trade_id: uuid.UUID,
        provider_ref: str,
        transaction_id: str,
        amount: Decimal | None = None,
        currency: str | None = None,
    ) -> EscrowPayment:
        """Verify a charge with the provider, then move escrow pending -> held.

        Idempotent: a repeat for the provider reference that already funded
        the escrow is a no-op. `amount`/`currency` from the webhook body are
        only logged; the provider's verified figures decide.

        Raises:
            EscrowNotFoundError: No escrow for the trade.
            InvalidStateError: Escrow not pending (or funded by another reference).
            ExternalServiceError: Provider unreachable.
            PaymentVerificationError: Charge not successful or does not cover the escrow.
        """
        escrow = await self._get_escrow_or_raise(trade_id)

        if self._already_funded_by(escrow, provider_ref):
            logger.info(
                "escrow.payment_duplicate_ignored",
                trade_id=str(trade_id),
                provider_ref=provider_ref,
            )
            return escrow
        if escrow.status != EscrowStatus.PENDING:
            raise InvalidStateError(
                escrow.status,
                EscrowStatus.HELD.value,
                message=f"Escrow for trade {trade_id} is {escrow.status}, not awaiting payment",
            )

        if self._payments is None:
            raise RuntimeError("EscrowService needs a PaymentService to confirm payments")
        verified = await self._payments.verify_transaction(transaction_id)

        if verified.tx_ref and verified.tx_ref != provider_ref:
            raise PaymentVerificationError(provider_ref, "transaction reference mismatch")
        if verified.currency != escrow.currency.upper():
            raise PaymentVerificationError(
                provider_ref, f"currency {verified.currency} does not match {escrow.currency}"
            )
        if verified.amount < escrow.amount:
            raise PaymentVerificationError(
                provider_ref, f"amount {verified.amount} does not cover {escrow.amount}"
            )
        if amount is not None and amount != verified.amount:
            logger.warning(
                "escrow.webhook_amount_mismatch",
                trade_id=str(trade_id),
                webhook_amount=str(amount),
                verified_amount=str(verified.amount),
                webhook_currency=currency,
            )

        won = await self._move(escrow, "confirm_payment", provider_ref=provider_ref)
        if not won:
            current = await self._get_escrow_or_raise(trade_id)
            if self._already_funded_by(current, provider_ref):
                return current
            raise InvalidStateError(
                current.status, EscrowStatus.HELD.value, message="Escrow changed concurrently"
            )

        await self._event_repo.record(
            escrow_id=escrow.id,
            event_type=EscrowEventType.PAYMENT_CONFIRMED,
            old_status=EscrowStatus.PENDING,
            new_status=EscrowStatus.HELD,
            provider_ref=provider_ref,
            metadata={
                "transaction_id": verified.transaction_id,
                "flw_ref": verified.flw_ref,
                "amount": str(verified.amount),
                "currency": verified.currency,
            },
        )

        await self._trades.transition_trade(
            trade_id,
            TradeStatus.ESCROW_FUNDED,
            Actor.system(),
            {
                "payment_reference": provider_ref,
                "escrow_funded_at": datetime.now(UTC).isoformat(),
                "funded_amount": str(verified.amount),
            },
        )

        await self._notifications.notify_parties(
            trade_id,
            escrow.buyer_company_id,
            escrow.seller_company_id,
            "escrow_funded",
            "Escrow Funded",
            f"Payment of {verified.currency} {verified.amount:,.2f} is secured in escrow.",
        )
        logger.info(
            "escrow.funded",
            trade_id=str(trade_id),
            escrow_id=str(escrow.id),
            provider_ref=provider_ref,
        )
        return await self._get_escrow_or_raise(trade_id)

    # ------------------------------------------------------------------
    # Release / refund
    # ------------------------------------------------------------------

    async def on_delivery_accepted(self, trade_id: uuid.UUID) -> EscrowPayment:
        """Release held funds to the seller.

        Raises:
            IntegrityError: No escrow row exists for the trade. Not retried.
        """
        escrow = await self._escrow_repo.get_by_trade(trade_id)
        if escrow is None:
            logger.critical("escrow.missing_on_release", trade_id=str(trade_id))
            raise IntegrityError(f"No escrow record for accepted trade {trade_id}")

        if not await self._move(escrow, "release"):
            raise InvalidStateError(escrow.status, EscrowStatus.RELEASED.value)

        await self._event_repo.record(
            escrow_id=escrow.id,
            event_type=EscrowEventType.FUNDS_RELEASED,
            old_status=EscrowStatus.HELD,
            new_status=EscrowStatus.RELEASED,
            metadata={"seller_payout": str(escrow.seller_payout)},
        )
        await self._notifications.notify_parties(
            trade_id,
            escrow.buyer_company_id,
            escrow.seller_company_id,
            "escrow_released",
            "Escrow Released",
            f"{escrow.currency} {escrow.seller_payout:,.2f} has been released to the seller.",
        )
        logger.info("escrow.released", trade_id=str(trade_id), escrow_id=str(escrow.id))
        return await self._get_escrow_or_raise(trade_id)

    async def on_dispute_verdict(
        self,
        trade_id: uuid.UUID,
        verdict: Verdict,
        dispute_id: uuid.UUID | None = None,
    ) -> EscrowPayment | None:
        """Enact a verdict. Only REFUND_BUYER moves money; anything else keeps escrow held."""
        if verdict != Verdict.REFUND_BUYER:
            logger.info(
                "escrow.held_pending_review",
                trade_id=str(trade_id),
                verdict=verdict.value,
            )
            return None
        return await self.refund_buyer(trade_id, dispute_id=dispute_id)

    async def refund_buyer(
        self,
        trade_id: uuid.UUID,
        dispute_id: uuid.UUID | None = None,
    ) -> EscrowPayment:
        """Move escrow held -> refunded and the trade disputed -> refunded."""
        escrow = await self._get_escrow_or_raise(trade_id)

        if not await self._move(escrow, "refund"):
            raise InvalidStateError(escrow.status, EscrowStatus.REFUNDED.value)

        await self._event_repo.record(
            escrow_id=escrow.id,
            event_type=EscrowEventType.FUNDS_REFUNDED,
            old_status=EscrowStatus.HELD,
            new_status=EscrowStatus.REFUNDED,
            metadata={"dispute_id": str(dispute_id) if dispute_id else None},
        )
        await self._trades.transition_trade(
            trade_id,
            TradeStatus.REFUNDED,
            Actor.system(),
            {
                "refunded_at": datetime.now(UTC).isoformat(),
                "refund_dispute_id": str(dispute_id) if dispute_id else None,
            },
        )
        await self._notifications.notify_parties(
            trade_id,
            escrow.buyer_company_id,
            escrow.seller_company_id,
            "escrow_refunded",
            "Escrow Refunded",
            f"{escrow.currency} {escrow.amount:,.2f} is being refunded to the buyer.",
        )
        logger.info("escrow.refunded", trade_id=str(trade_id), escrow_id=str(escrow.id))
        return await self._get_escrow_or_raise(trade_id)

    # ------------------------------------------------------------------
    # Provider settlement confirmations
    # ------------------------------------------------------------------

    async def record_payout_confirmed(self, trade_id: uuid.UUID, provider_ref: str) -> bool:
        """Record that the provider paid out a released escrow. Returns False on a repeat."""
        return await self._record_confirmation(
            trade_id, provider_ref, EscrowStatus.RELEASED, EscrowEventType.PAYOUT_CONFIRMED
        )

    async def record_refund_confirmed(self, trade_id: uuid.UUID, provider_ref: str) -> bool:
        """Record that the provider refunded the buyer. Returns False on a repeat."""
        return await self._record_confirmation(
            trade_id, provider_ref, EscrowStatus.REFUNDED, EscrowEventType.REFUND_CONFIRMED
        )

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    async def get_escrow(self, trade_id: uuid.UUID) -> EscrowPayment:
        return await self._get_escrow_or_raise(trade_id)

    async def get_events(self, trade_id: uuid.UUID) -> list[EscrowEvent]:
        escrow = await self._get_escrow_or_raise(trade_id)
        return await self._event_repo.get_by_escrow(escrow.id)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _get_escrow_or_raise(self, trade_id: uuid.UUID) -> EscrowPayment:
        escrow = await self._escrow_repo.get_by_trade(trade_id)
        if escrow is None:
            raise EscrowNotFoundError(str(trade_id))
        return escrow

    @staticmethod
    def _already_funded_by(escrow: EscrowPayment, provider_ref: str) -> bool:
        return escrow.status == EscrowStatus.HELD and escrow.provider_ref == provider_ref

    async def _move(self, escrow: EscrowPayment, event_name: str, **values: object) -> bool:
        """Guard an escrow event, then persist it with a conditional update."""
        current = escrow.status
        new_status = fire_event(EscrowStateMachine(current), event_name)
        return await self._escrow_repo.transition_status(escrow.id, current, new_status, **values)

    async def _record_confirmation(
        self,
        trade_id: uuid.UUID,
        provider_ref: str,
        required: EscrowStatus,
        event_type: EscrowEventType,
    ) -> bool:
        escrow = await self._get_escrow_or_raise(trade_id)
        if escrow.status != required:
            raise InvalidStateError(
                escrow.status,
                required.value,
                message=f"Escrow for trade {trade_id} is {escrow.status}, expected {required.value}",
            )
        if await self._event_repo.exists(escrow.id, event_type, provider_ref):
            logger.info(
                "escrow.confirmation_duplicate_ignored",
                trade_id=str(trade_id),
                event_type=event_type.value,
                provider_ref=provider_ref,
            )
            return False
        await self._event_repo.record(
            escrow_id=escrow.id,
            event_type=event_type,
            old_status=required,
            new_status=required,
            provider_ref=provider_ref,
        )
        logger.info(
            "escrow.provider_confirmation",
            trade_id=str(trade_id),
            event_type=event_type.value,
            provider_ref=provider_ref,
        )
        return True


def _rates_from_settings() -> CommissionRates:
    settings = get_settings()
    return CommissionRates(
        standard=settings.commission_standard_rate,
        assisted=settings.commission_assisted_rate,
        high_value=settings.commission_high_value_rate,
        high_value_threshold=settings.commission_high_value_threshold,
        minimum=settings.commission_minimum,
    )
