"""Application services: use case orchestration."""

from trade_kernel.services.dispute_service import DisputeService, JudgmentResult
from trade_kernel.services.escrow_service import EscrowService
from trade_kernel.services.notification_service import NotificationService
from trade_kernel.services.payment_service import PaymentService, VerifiedTransaction
from trade_kernel.services.trade_service import TradeService, TradeTransition
from trade_kernel.services.webhook_service import WebhookService

__all__ = [
    "DisputeService",
    "EscrowService",
    "JudgmentResult",
    "NotificationService",
    "PaymentService",
    "TradeService",
    "TradeTransition",
    "VerifiedTransaction",
    "WebhookService",
]
