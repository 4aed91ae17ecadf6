"""Webhook Service: payment provider callbacks into escrow movements.

Handles:
    - charge.completed   -> verify with the provider, fund the escrow
    - transfer.completed -> record the seller payout on a released escrow
    - refund.completed   -> record the buyer refund, settle the dispute
    - anything else      -> acknowledged and ignored

Providers retry delivery, so every event is safe to receive twice. A Redis
key per (event, reference) short-circuits obvious repeats; the database
checks in EscrowService remain the authority.
"""

from __future__ import annotations

import hmac
import uuid
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any

from trade_kernel.domain.exceptions import PaymentVerificationError, WebhookSignatureError
from trade_kernel.logging_config import get_logger

if TYPE_CHECKING:
    from trade_kernel.infrastructure.redis_client import IdempotencyStore
    from trade_kernel.services.dispute_service import DisputeService
    from trade_kernel.services.escrow_service import EscrowService

logger = get_logger(__name__)

CHARGE_COMPLETED = "charge.completed"
TRANSFER_COMPLETED = "transfer.completed"
REFUND_COMPLETED = "refund.completed"


class WebhookService:
    """Verifies and dispatches payment provider webhooks."""

    def __init__(
        self,
        escrow: EscrowService,
        disputes: DisputeService,
        idempotency: IdempotencyStore,
        secret_hash: str = "",
        allow_unsigned: bool = False,
    ) -> None:
        self._escrow = escrow
        self._disputes = disputes
        self._idempotency = idempotency
        self._secret_hash = secret_hash
        self._allow_unsigned = allow_unsigned

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    def verify_signature(self, header_value: str | None) -> None:
        """Compare the shared-secret header in constant time.

        With no secret configured, requests are only accepted when unsigned
        webhooks are explicitly allowed (simulation mode).

        Raises:
            WebhookSignatureError: Header missing or wrong.
        """
        if not self._secret_hash:
            if self._allow_unsigned:
                return
            logger.error("webhook.secret_not_configured")
            raise WebhookSignatureError()

        if not header_value or not hmac.compare_digest(
            header_value.encode("utf-8"), self._secret_hash.encode("utf-8")
        ):
            logger.warning("webhook.invalid_signature")
            raise WebhookSignatureError()

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def handle(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Process one webhook payload and return the acknowledgement body.

        Raises:
            ExternalServiceError: Provider unreachable during verification.
            PaymentVerificationError: Provider did not confirm the charge.
        """
        event = str(payload.get("event") or "")
        data = payload.get("data") or {}
        reference = self.reference_of(data)
        log = logger.bind(webhook_event=event, reference=reference)

        if await self._idempotency.seen(self.idempotency_key(payload)):
            log.info("webhook.duplicate_ignored")
            return {"success": True, "message": "Duplicate webhook ignored"}

        if event not in (CHARGE_COMPLETED, TRANSFER_COMPLETED, REFUND_COMPLETED):
            log.info("webhook.event_ignored")
            return {"success": True, "message": f"Event {event or '<none>'} ignored"}

        trade_id = self._trade_id_of(data)
        if trade_id is None:
            log.warning("webhook.no_trade_reference", meta=data.get("meta"))
            return {"success": True, "message": "No trade reference; event ignored"}

        if event == CHARGE_COMPLETED:
            transaction_id = data.get("id")
            if transaction_id is None:
                raise PaymentVerificationError(reference, "missing transaction id")
            escrow = await self._escrow.on_payment_confirmed(
                trade_id,
                provider_ref=reference,
                transaction_id=str(transaction_id),
                amount=_to_decimal(data.get("amount")),
                currency=data.get("currency"),
            )
            log.info("webhook.charge_processed", trade_id=str(trade_id), escrow_status=escrow.status)
            return {"success": True, "message": "Payment confirmed", "escrow_status": escrow.status}

        if event == TRANSFER_COMPLETED:
            recorded = await self._escrow.record_payout_confirmed(trade_id, reference)
            log.info("webhook.transfer_processed", trade_id=str(trade_id), recorded=recorded)
            return {"success": True, "message": "Payout recorded" if recorded else "Payout already recorded"}

        recorded = await self._escrow.record_refund_confirmed(trade_id, reference)
        dispute = await self._disputes.mark_refund_settled(trade_id)
        log.info(
            "webhook.refund_processed",
            trade_id=str(trade_id),
            recorded=recorded,
            dispute_id=str(dispute.id) if dispute else None,
        )
        return {"success": True, "message": "Refund recorded" if recorded else "Refund already recorded"}

    async def mark_processed(self, payload: dict[str, Any]) -> None:
        """Remember a payload as processed. Call only after the database commit."""
        await self._idempotency.mark(self.idempotency_key(payload))

    # ------------------------------------------------------------------
    # Payload helpers
    # ------------------------------------------------------------------

    @staticmethod
    def reference_of(data: dict[str, Any]) -> str:
        ref = data.get("tx_ref") or data.get("reference") or data.get("flw_ref") or data.get("id")
        return str(ref) if ref is not None else ""

    @classmethod
    def idempotency_key(cls, payload: dict[str, Any]) -> str:
        data = payload.get("data") or {}
        return f"webhook:{payload.get('event')}:{cls.reference_of(data)}"

    @staticmethod
    def _trade_id_of(data: dict[str, Any]) -> uuid.UUID | None:
        meta = data.get("meta") or {}
        raw = meta.get("trade_id") or meta.get("order_id")
        if not raw:
            return None
        try:
            return uuid.UUID(str(raw))
        except ValueError:
            return None


def _to_decimal(value: Any) -> Decimal | None:
    if value is None:
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None
