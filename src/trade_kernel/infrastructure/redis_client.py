"""Redis client for webhook idempotency keys and judge rate limiting.

Redis is an accelerator, never the source of truth: the database checks
(conditional updates, unique escrow event rows) stay authoritative. When
Redis is unavailable both helpers degrade to "let the request through" and
log a warning.

Usage:
    store = IdempotencyStore(get_redis_or_none(), ttl_seconds=86400)
    if not await store.seen(key):
        ...  # process, commit
        await store.mark(key)
"""

from __future__ import annotations

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from trade_kernel.config import get_settings
from trade_kernel.domain.exceptions import RateLimitExceededError
from trade_kernel.logging_config import get_logger

logger = get_logger(__name__)

_redis_client: aioredis.Redis | None = None


async def init_redis() -> aioredis.Redis:
    """Initialize and return the Redis client. Called during app startup."""
    global _redis_client
    settings = get_settings()
    _redis_client = aioredis.from_url(
        settings.redis_url,
        decode_responses=True,
    )
    # Verify connectivity
    await _redis_client.ping()
    logger.info("redis.connected", url=settings.redis_url)
    return _redis_client


def get_redis_or_none() -> aioredis.Redis | None:
    """The connected client, or None when Redis was never reached."""
    return _redis_client


async def close_redis() -> None:
    """Close the Redis connection. Called during app shutdown."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        logger.info("redis.disconnected")
        _redis_client = None


# ---------------------------------------------------------------------------
# Idempotency
# ---------------------------------------------------------------------------


class IdempotencyStore:
    """Remembers processed keys (e.g. webhook event + provider tx_ref) for a TTL."""

    def __init__(self, redis: aioredis.Redis | None, ttl_seconds: int = 86400) -> None:
        self._redis = redis
        self._ttl = ttl_seconds

    @staticmethod
    def _key(key: str) -> str:
        return f"idempotency:{key}"

    async def seen(self, key: str) -> bool:
        """Return True if the key has already been recorded."""
        if self._redis is None:
            return False
        try:
            return bool(await self._redis.exists(self._key(key)))
        except RedisError as exc:
            logger.warning("idempotency.check_failed", key=key, error=str(exc))
            return False

    async def mark(self, key: str, value: str = "1") -> None:
        """Record a key as processed with the configured TTL."""
        if self._redis is None:
            return
        try:
            await self._redis.set(self._key(key), value, ex=self._ttl)
        except RedisError as exc:
            logger.warning("idempotency.mark_failed", key=key, error=str(exc))


# ---------------------------------------------------------------------------
# Rate limiting
# ---------------------------------------------------------------------------


class RateLimiter:
    """Fixed-window request counter per subject.

    The window key expires with the window, which is the reset policy:
    a subject gets a fresh budget of `max_requests` every `window_seconds`.
    """

    def __init__(
        self,
        redis: aioredis.Redis | None,
        scope: str,
        max_requests: int = 20,
        window_seconds: int = 60,
    ) -> None:
        self._redis = redis
        self._scope = scope
        self._max = max_requests
        self._window = window_seconds

    async def hit(self, subject: str) -> int:
        """Count one request for `subject` and return the count in the window.

        Raises:
            RateLimitExceededError: If the subject is over budget.
        """
        if self._redis is None:
            return 0

        key = f"ratelimit:{self._scope}:{subject}"
        try:
            count = await self._redis.incr(key)
            if count == 1:
                await self._redis.expire(key, self._window)
            if count <= self._max:
                return count
            ttl = await self._redis.ttl(key)
        except RedisError as exc:
            logger.warning("rate_limit.check_failed", scope=self._scope, error=str(exc))
            return 0

        retry_after = ttl if ttl and ttl > 0 else self._window
        logger.info(
            "rate_limit.exceeded",
            scope=self._scope,
            subject=subject,
            count=count,
            retry_after=retry_after,
        )
        raise RateLimitExceededError(retry_after=retry_after)
