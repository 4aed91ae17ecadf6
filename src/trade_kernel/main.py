"""FastAPI application entry point for the trade kernel.

Startup configures logging, opens the database (creating tables in
development) and connects Redis when it is reachable. Without Redis the
service still runs: webhook deduplication falls back to the database checks
and the judge endpoint is not rate limited.

Run with:
    uvicorn trade_kernel.main:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI
from redis.exceptions import RedisError

from trade_kernel.config import Settings, get_settings
from trade_kernel.infrastructure.database.engine import close_db, init_db
from trade_kernel.infrastructure.redis_client import close_redis, init_redis
from trade_kernel.logging_config import get_logger, setup_logging

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from structlog.stdlib import BoundLogger


def _log_operating_mode(settings: Settings, logger: BoundLogger) -> None:
    logger.info(
        "app.starting",
        env=settings.app_env,
        advisor_mode=settings.advisor_mode,
        payment_simulate=settings.payment_simulate,
        overdue_threshold_days=settings.dispute_overdue_threshold_days,
        movement_window_days=settings.dispute_movement_window_days,
    )
    if not settings.payment_webhook_secret_hash and not settings.payment_simulate:
        # Every webhook will be answered 401 until the secret is configured.
        logger.warning("app.webhook_secret_missing")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    settings = get_settings()
    setup_logging(log_level=settings.app_log_level, json_logs=not settings.is_development)
    logger = get_logger(__name__)
    _log_operating_mode(settings, logger)

    await init_db()
    try:
        await init_redis()
    except (RedisError, OSError) as exc:
        logger.warning("app.redis_unavailable", error=str(exc))
        await close_redis()

    logger.info("app.started", host=settings.app_host, port=settings.app_port)
    try:
        yield
    finally:
        await close_db()
        await close_redis()
        logger.info("app.stopped")


def create_app() -> FastAPI:
    """Build the app: middleware first, then the health, trade, dispute and webhook routers."""
    settings = get_settings()

    app = FastAPI(
        title="Trade Kernel",
        description=(
            "Trade lifecycle, escrow coordination and dispute resolution "
            "for a B2B trade marketplace."
        ),
        version="0.1.0",
        lifespan=lifespan,
        debug=settings.app_debug,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )

    from trade_kernel.api.middleware import setup_middleware
    from trade_kernel.api.routes import disputes, health, trades, webhooks

    setup_middleware(app)
    for module in (health, trades, disputes, webhooks):
        app.include_router(module.router)

    return app


app = create_app()
