"""GET /health: database and Redis probes plus the service's operating mode."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from trade_kernel.api.deps import get_app_settings
from trade_kernel.config import Settings
from trade_kernel.infrastructure.database.engine import _get_engine
from trade_kernel.infrastructure.redis_client import get_redis_or_none
from trade_kernel.logging_config import get_logger
from trade_kernel.schemas.common import HealthResponse

router = APIRouter(tags=["Health"])
logger = get_logger(__name__)

HEALTHY = "healthy"


async def _database_status() -> str:
    try:
        async with _get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as exc:
        logger.error("health.db_check_failed", error=str(exc))
        return f"unhealthy: {exc}"
    return HEALTHY


async def _redis_status() -> str:
    redis = get_redis_or_none()
    if redis is None:
        return "not configured"
    try:
        await redis.ping()
    except (RedisError, OSError) as exc:
        logger.error("health.redis_check_failed", error=str(exc))
        return f"unhealthy: {exc}"
    return HEALTHY


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health_check(settings: Settings = Depends(get_app_settings)) -> HealthResponse:
    database = await _database_status()
    redis = await _redis_status()
    return HealthResponse(
        status="ok" if database == HEALTHY and redis == HEALTHY else "degraded",
        database=database,
        redis=redis,
        payments="simulated" if settings.payment_simulate else "live",
        advisor=settings.advisor_mode,
    )
