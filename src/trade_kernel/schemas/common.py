"""Schemas shared across routers."""

from __future__ import annotations

from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Body of every error returned by the error-handler middleware."""

    error: str
    message: str
    request_id: str | None = None
    missing: list[str] | None = None


class WebhookAck(BaseModel):
    """Acknowledgement returned to the payment provider."""

    success: bool = True
    message: str
    escrow_status: str | None = None


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    version: str = "0.1.0"
    database: str = "unknown"
    redis: str = "unknown"
    payments: str = "live"
    advisor: str = "llm"
