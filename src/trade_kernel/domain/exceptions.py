"""Domain exceptions for the trade kernel.

These exceptions are framework-agnostic and represent business rule violations
or faults. Each carries an ErrorKind so callers can distinguish an expected,
user-facing rejection from a data-integrity fault or a dependency outage.
They are caught and translated to HTTP responses by the API layer's middleware.
"""

from __future__ import annotations

from trade_kernel.domain.enums import ErrorKind


class TradeKernelError(Exception):
    """Base exception for all domain errors."""

    kind: ErrorKind = ErrorKind.EXPECTED

    def __init__(self, message: str, code: str = "TRADE_KERNEL_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(self.message)


# --- Expected business rejections ---


class InvalidStateError(TradeKernelError):
    """Raised when an attempted transition is not legal from the current state.

    Also raised when a conditional update loses a race: the row's status
    changed between the read and the write.
    """

    def __init__(
        self,
        current_state: str,
        attempted_state: str,
        message: str | None = None,
    ) -> None:
        super().__init__(
            message=message or f"Invalid state transition: {current_state} -> {attempted_state}",
            code="INVALID_STATE",
        )
        self.current_state = current_state
        self.attempted_state = attempted_state


class PermissionDeniedError(TradeKernelError):
    """Raised when an actor is not authorized for an action."""

    def __init__(self, message: str = "You are not permitted to perform this action") -> None:
        super().__init__(message=message, code="PERMISSION_DENIED")


class PreconditionNotMetError(TradeKernelError):
    """Raised when required consent or data is missing.

    Example: confirm-delivery without the escrow-release acknowledgement.
    """

    def __init__(self, missing: list[str], message: str | None = None) -> None:
        super().__init__(
            message=message or f"Precondition not met: missing {', '.join(missing)}",
            code="PRECONDITION_NOT_MET",
        )
        self.missing = missing


class UnauthorizedError(TradeKernelError):
    """Raised when a request carries no valid credentials."""

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(message=message, code="UNAUTHORIZED")


class WebhookSignatureError(TradeKernelError):
    """Raised when a payment webhook's shared-secret header does not match."""

    def __init__(self) -> None:
        super().__init__(message="Invalid webhook signature", code="INVALID_SIGNATURE")


class RateLimitExceededError(TradeKernelError):
    """Raised when a caller exceeds the per-window request budget."""

    def __init__(self, retry_after: int) -> None:
        super().__init__(
            message=f"Rate limit exceeded. Retry after {retry_after} seconds",
            code="RATE_LIMIT_EXCEEDED",
        )
        self.retry_after = retry_after


# --- Not found ---


class NotFoundError(TradeKernelError):
    """Base for missing-row errors."""

    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(
            message=f"{entity.capitalize()} not found: {entity_id}",
            code=f"{entity.upper()}_NOT_FOUND",
        )
        self.entity_id = entity_id


class TradeNotFoundError(NotFoundError):
    def __init__(self, trade_id: str) -> None:
        super().__init__("trade", trade_id)


class QuoteNotFoundError(NotFoundError):
    def __init__(self, quote_id: str) -> None:
        super().__init__("quote", quote_id)


class DisputeNotFoundError(NotFoundError):
    def __init__(self, dispute_id: str) -> None:
        super().__init__("dispute", dispute_id)


class EscrowNotFoundError(NotFoundError):
    def __init__(self, trade_id: str) -> None:
        super().__init__("escrow", trade_id)


# --- Faults ---


class IntegrityError(TradeKernelError):
    """Raised when an expected related row is missing or inconsistent.

    Indicates a data integrity problem upstream. Logged as fatal, surfaced
    as a generic failure, never retried.
    """

    kind = ErrorKind.FATAL

    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="INTEGRITY_ERROR")


# --- External dependencies ---


class ExternalServiceError(TradeKernelError):
    """Raised when the generative-text service or payment provider call fails."""

    kind = ErrorKind.EXTERNAL

    def __init__(self, service: str, message: str) -> None:
        super().__init__(message=f"{service} unavailable: {message}", code="EXTERNAL_SERVICE_ERROR")
        self.service = service


class PaymentVerificationError(TradeKernelError):
    """Raised when the payment provider does not confirm a transaction.

    The provider answered, but the transaction is not successful or does not
    cover the escrow (wrong amount or currency).
    """

    def __init__(self, provider_ref: str, reason: str) -> None:
        super().__init__(
            message=f"Payment {provider_ref} could not be verified: {reason}",
            code="PAYMENT_VERIFICATION_FAILED",
        )
        self.provider_ref = provider_ref
        self.reason = reason
