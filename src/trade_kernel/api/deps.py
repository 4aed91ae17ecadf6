"""FastAPI dependency injection providers.

These are used with Depends() in route handlers to inject database sessions,
services, Redis-backed helpers, and configuration. FastAPI caches a
dependency per request, so every service in one request shares the same
session and the same TradeService (with the escrow coordinator subscribed).
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from functools import lru_cache

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from trade_kernel.advisors import AdvisorFactory
from trade_kernel.config import Settings, get_settings
from trade_kernel.domain.advisor_protocol import NarrativeAdvisor
from trade_kernel.infrastructure.database.engine import get_async_session
from trade_kernel.infrastructure.redis_client import (
    IdempotencyStore,
    RateLimiter,
    get_redis_or_none,
)
from trade_kernel.services.dispute_service import DisputeService
from trade_kernel.services.escrow_service import EscrowService
from trade_kernel.services.payment_service import PaymentService
from trade_kernel.services.trade_service import TradeService
from trade_kernel.services.webhook_service import WebhookService


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session for a request."""
    async for session in get_async_session():
        yield session


def get_app_settings() -> Settings:
    """Provide the application settings."""
    return get_settings()


@lru_cache(maxsize=1)
def get_payment_service() -> PaymentService:
    """Process-wide payment client (the simulated ledger must outlive a request)."""
    return PaymentService()


@lru_cache(maxsize=1)
def get_advisor() -> NarrativeAdvisor:
    """The narrative advisor selected by the `advisor_mode` setting."""
    return AdvisorFactory.create(get_settings().advisor_mode)


async def get_escrow_service(
    session: AsyncSession = Depends(get_db_session),
    payments: PaymentService = Depends(get_payment_service),
) -> EscrowService:
    return EscrowService(session, TradeService(session), payments)


async def get_trade_service(
    escrow: EscrowService = Depends(get_escrow_service),
) -> TradeService:
    """Provide a TradeService whose transitions drive the escrow coordinator."""
    return escrow.trades


async def get_dispute_service(
    session: AsyncSession = Depends(get_db_session),
    escrow: EscrowService = Depends(get_escrow_service),
    advisor: NarrativeAdvisor = Depends(get_advisor),
) -> DisputeService:
    return DisputeService(session, escrow.trades, escrow, advisor)


def get_idempotency_store(settings: Settings = Depends(get_app_settings)) -> IdempotencyStore:
    return IdempotencyStore(get_redis_or_none(), ttl_seconds=settings.redis_idempotency_ttl_seconds)


def get_judge_rate_limiter(settings: Settings = Depends(get_app_settings)) -> RateLimiter:
    return RateLimiter(
        get_redis_or_none(),
        scope="dispute_judge",
        max_requests=settings.rate_limit_max_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )


async def get_webhook_service(
    escrow: EscrowService = Depends(get_escrow_service),
    disputes: DisputeService = Depends(get_dispute_service),
    idempotency: IdempotencyStore = Depends(get_idempotency_store),
    settings: Settings = Depends(get_app_settings),
) -> WebhookService:
    return WebhookService(
        escrow,
        disputes,
        idempotency,
        secret_hash=settings.payment_webhook_secret_hash,
        allow_unsigned=settings.payment_simulate,
    )
