"""JWT bearer authentication for FastAPI routes.

Validates the token from the Authorization header and turns its claims into
an Actor:

    sub         -> user id (UUID, required)
    company_id  -> company the user acts for (UUID, optional)
    is_admin    -> platform admin flag (optional, default False)
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from trade_kernel.config import get_settings
from trade_kernel.domain.actor import Actor
from trade_kernel.domain.exceptions import UnauthorizedError
from trade_kernel.logging_config import bind_actor, get_logger

logger = get_logger(__name__)

_bearer_scheme = HTTPBearer(auto_error=False)


def decode_token(token: str) -> dict:
    """Decode and validate a JWT. Raises UnauthorizedError on failure."""
    settings = get_settings()
    try:
        return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError as exc:
        logger.warning("auth.invalid_token", error=str(exc))
        raise UnauthorizedError("Invalid or expired token") from exc


def actor_from_claims(claims: dict) -> Actor:
    try:
        company_id = claims.get("company_id")
        return Actor(
            user_id=uuid.UUID(str(claims["sub"])),
            company_id=uuid.UUID(str(company_id)) if company_id else None,
            is_admin=bool(claims.get("is_admin", False)),
        )
    except (KeyError, ValueError) as exc:
        raise UnauthorizedError("Token is missing required claims") from exc


def issue_token(
    user_id: uuid.UUID,
    company_id: uuid.UUID | None = None,
    is_admin: bool = False,
    expires_in: timedelta = timedelta(hours=1),
) -> str:
    """Mint a token with the claims `get_current_actor` expects (simulation and tests)."""
    settings = get_settings()
    claims = {
        "sub": str(user_id),
        "is_admin": is_admin,
        "exp": datetime.now(UTC) + expires_in,
    }
    if company_id is not None:
        claims["company_id"] = str(company_id)
    return jwt.encode(claims, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


async def get_current_actor(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> Actor:
    """FastAPI dependency that authenticates the caller."""
    if credentials is None:
        raise UnauthorizedError()
    actor = actor_from_claims(decode_token(credentials.credentials))
    bind_actor(actor.audit_id)
    return actor
