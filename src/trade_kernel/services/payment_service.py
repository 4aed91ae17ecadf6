"""Payment Service: verifies transactions with the payment provider.

The webhook body is never trusted on its own: every charge is re-fetched
from the provider by transaction id (Flutterwave-style
`GET /transactions/{id}/verify` with the secret key as bearer token).

Provides both a real HTTP integration (httpx) and a simulated mode for local
runs without a provider account. In simulation mode the service keeps an
in-process ledger of the charges it created, so verification still checks
the provider's own record rather than the webhook payload.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation

import httpx

from trade_kernel.config import get_settings
from trade_kernel.domain.exceptions import ExternalServiceError, PaymentVerificationError
from trade_kernel.logging_config import get_logger

logger = get_logger(__name__)

PROVIDER_NAME = "payment provider"


@dataclass(frozen=True)
class VerifiedTransaction:
    """A transaction as reported by the provider's verify endpoint."""

    transaction_id: str
    tx_ref: str
    flw_ref: str | None
    amount: Decimal
    currency: str
    status: str
    meta: dict = field(default_factory=dict)

    @property
    def successful(self) -> bool:
        return self.status == "successful"


class PaymentService:
    """Client for the payment provider's transaction verification API."""

    def __init__(
        self,
        simulate: bool | None = None,
        base_url: str | None = None,
        secret_key: str | None = None,
        timeout_seconds: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize payment service.

        Args:
            simulate: If True, verify against the in-process ledger instead of
                     the provider API. Defaults to the `payment_simulate` setting.
            transport: Optional httpx transport (tests use httpx.MockTransport).
        """
        settings = get_settings()
        self._simulate = settings.payment_simulate if simulate is None else simulate
        self._base_url = (base_url or settings.payment_api_base_url).rstrip("/")
        self._secret_key = secret_key if secret_key is not None else settings.payment_secret_key
        self._timeout = timeout_seconds or settings.payment_http_timeout_seconds
        self._transport = transport
        self._ledger: dict[str, dict] = {}

    @property
    def simulated(self) -> bool:
        return self._simulate

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    async def verify_transaction(self, transaction_id: str) -> VerifiedTransaction:
        """Re-fetch a transaction from the provider and require it to be successful.

        Raises:
            ExternalServiceError: Provider unreachable or answered with a server error.
            PaymentVerificationError: Provider answered, but the charge is not successful.
        """
        if self._simulate:
            body = self._ledger.get(str(transaction_id))
            if body is None:
                body = {"status": "error", "message": "No transaction was found for this id"}
        else:
            body = await self._fetch_verification(transaction_id)

        data = body.get("data") or {}
        if body.get("status") != "success" or data.get("status") != "successful":
            logger.warning(
                "payment.verification_failed",
                transaction_id=str(transaction_id),
                provider_message=body.get("message"),
            )
            raise PaymentVerificationError(
                str(transaction_id), body.get("message") or "transaction not successful"
            )

        try:
            amount = Decimal(str(data["amount"]))
        except (KeyError, InvalidOperation) as exc:
            raise PaymentVerificationError(str(transaction_id), "missing amount") from exc

        verified = VerifiedTransaction(
            transaction_id=str(data.get("id", transaction_id)),
            tx_ref=str(data.get("tx_ref", "")),
            flw_ref=data.get("flw_ref"),
            amount=amount,
            currency=str(data.get("currency", "")).upper(),
            status=str(data["status"]),
            meta=data.get("meta") or {},
        )
        logger.info(
            "payment.verified",
            transaction_id=verified.transaction_id,
            tx_ref=verified.tx_ref,
            amount=str(verified.amount),
            currency=verified.currency,
            simulated=self._simulate,
        )
        return verified

    async def _fetch_verification(self, transaction_id: str) -> dict:
        url = f"{self._base_url}/transactions/{transaction_id}/verify"
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.get(
                    url, headers={"Authorization": f"Bearer {self._secret_key}"}
                )
        except httpx.HTTPError as exc:
            logger.error("payment.provider_unreachable", url=url, error=str(exc))
            raise ExternalServiceError(PROVIDER_NAME, str(exc)) from exc

        if response.status_code >= 500:
            logger.error("payment.provider_error", status_code=response.status_code)
            raise ExternalServiceError(PROVIDER_NAME, f"HTTP {response.status_code}")

        try:
            return response.json()
        except ValueError as exc:
            raise ExternalServiceError(PROVIDER_NAME, "non-JSON response") from exc

    # ------------------------------------------------------------------
    # Simulation
    # ------------------------------------------------------------------

    def simulate_charge(
        self,
        trade_id: uuid.UUID,
        amount: Decimal,
        currency: str,
        user_id: uuid.UUID | None = None,
        successful: bool = True,
    ) -> dict:
        """Record a simulated charge and return the matching webhook `data` block.

        Only available in simulation mode.
        """
        if not self._simulate:
            raise RuntimeError("simulate_charge requires simulation mode")

        transaction_id = str(len(self._ledger) + 100000)
        tx_ref = f"TK-{uuid.uuid4().hex[:12].upper()}"
        data = {
            "id": transaction_id,
            "tx_ref": tx_ref,
            "flw_ref": f"FLW-SIM-{uuid.uuid4().hex[:10].upper()}",
            "amount": str(amount),
            "currency": currency,
            "status": "successful" if successful else "failed",
            "meta": {"trade_id": str(trade_id), "user_id": str(user_id) if user_id else None},
        }
        self._ledger[transaction_id] = {"status": "success", "message": "Transaction fetched", "data": data}
        logger.info(
            "payment.charge_simulated",
            transaction_id=transaction_id,
            tx_ref=tx_ref,
            amount=str(amount),
            trade_id=str(trade_id),
        )
        return data
