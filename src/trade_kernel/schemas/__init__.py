"""Pydantic API schemas."""

from trade_kernel.schemas.common import ErrorResponse, HealthResponse, WebhookAck
from trade_kernel.schemas.dispute import (
    DisputeResponse,
    JudgeRequest,
    JudgeResponse,
    ResolveDisputeRequest,
    VerdictBody,
)
from trade_kernel.schemas.trade import (
    ConfirmDeliveryRequest,
    CreateTradeRequest,
    EscrowResponse,
    QuoteResponse,
    ReportIssueRequest,
    SubmitQuoteRequest,
    TradeEventResponse,
    TradeResponse,
    TradeStatusResponse,
    TransitionRequest,
)

__all__ = [
    "ConfirmDeliveryRequest",
    "CreateTradeRequest",
    "DisputeResponse",
    "ErrorResponse",
    "EscrowResponse",
    "HealthResponse",
    "JudgeRequest",
    "JudgeResponse",
    "QuoteResponse",
    "ReportIssueRequest",
    "ResolveDisputeRequest",
    "SubmitQuoteRequest",
    "TradeEventResponse",
    "TradeResponse",
    "TradeStatusResponse",
    "TransitionRequest",
    "VerdictBody",
    "WebhookAck",
]
