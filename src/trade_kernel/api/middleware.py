"""FastAPI middleware for request tracing, error handling, and CORS.

Middleware stack (applied bottom-up):
    1. RequestIDMiddleware: injects X-Request-ID into every request/response
    2. ErrorHandlerMiddleware: catches domain exceptions -> structured JSON errors
    3. CORSMiddleware: handles the browser frontend
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

import structlog
from fastapi.exception_handlers import request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from trade_kernel.domain.enums import ErrorKind
from trade_kernel.domain.exceptions import (
    DisputeNotFoundError,
    InvalidStateError,
    NotFoundError,
    PaymentVerificationError,
    PermissionDeniedError,
    PreconditionNotMetError,
    RateLimitExceededError,
    TradeKernelError,
    UnauthorizedError,
    WebhookSignatureError,
)
from trade_kernel.logging_config import bind_request

if TYPE_CHECKING:
    from fastapi import FastAPI, Request, Response

logger = structlog.get_logger(__name__)

# Routes where a missing, malformed or unknown dispute id is a bad request
# rather than a missing resource or a validation failure.
BAD_REQUEST_ON_UNKNOWN_DISPUTE = ("/api/v1/disputes/judge",)


# ---------------------------------------------------------------------------
# 1. Request ID Middleware
# ---------------------------------------------------------------------------
class RequestIDMiddleware(BaseHTTPMiddleware):
    """Inject a unique X-Request-ID into every request for log correlation."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        # Use client-provided ID or generate one
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))

        bind_request(request_id)

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


# ---------------------------------------------------------------------------
# 2. Error Handler Middleware
# ---------------------------------------------------------------------------
def _error(status_code: int, exc: TradeKernelError, **extra: object) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": exc.code, "message": exc.message, **extra},
    )


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Catch domain exceptions and return structured JSON error responses."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        try:
            return await call_next(request)
        except InvalidStateError as exc:
            logger.warning(
                "state_machine.invalid_transition",
                current=exc.current_state,
                attempted=exc.attempted_state,
            )
            return _error(409, exc)
        except PermissionDeniedError as exc:
            logger.warning("auth.permission_denied", error=exc.message)
            return _error(403, exc)
        except PreconditionNotMetError as exc:
            logger.info("precondition.not_met", missing=exc.missing)
            return _error(422, exc, missing=exc.missing)
        except DisputeNotFoundError as exc:
            status_code = 400 if request.url.path in BAD_REQUEST_ON_UNKNOWN_DISPUTE else 404
            logger.warning("dispute.not_found", error=exc.message)
            return _error(status_code, exc)
        except NotFoundError as exc:
            logger.warning("entity.not_found", error=exc.message)
            return _error(404, exc)
        except (UnauthorizedError, WebhookSignatureError) as exc:
            return _error(401, exc)
        except RateLimitExceededError as exc:
            response = _error(429, exc)
            response.headers["Retry-After"] = str(exc.retry_after)
            return response
        except PaymentVerificationError as exc:
            logger.warning("payment.rejected", error=exc.message)
            return _error(400, exc)
        except TradeKernelError as exc:
            if exc.kind == ErrorKind.EXTERNAL:
                logger.error("external.unavailable", error=exc.message, code=exc.code)
                return _error(502, exc)
            if exc.kind == ErrorKind.FATAL:
                logger.critical("integrity.violation", error=exc.message, code=exc.code)
                return JSONResponse(
                    status_code=500,
                    content={
                        "error": "INTERNAL_ERROR",
                        "message": "An unexpected error occurred",
                    },
                )
            logger.error("domain.error", error=exc.message, code=exc.code)
            return _error(400, exc)
        except Exception as exc:
            logger.exception("unhandled.error", error=str(exc))
            return JSONResponse(
                status_code=500,
                content={
                    "error": "INTERNAL_ERROR",
                    "message": "An unexpected error occurred",
                },
            )


async def _validation_error(request: Request, exc: RequestValidationError) -> Response:
    if request.url.path in BAD_REQUEST_ON_UNKNOWN_DISPUTE:
        fields = [".".join(map(str, err["loc"])) for err in exc.errors()]
        logger.info("request.invalid_dispute_id", fields=fields)
        return JSONResponse(
            status_code=400,
            content={
                "error": "INVALID_REQUEST",
                "message": "dispute_id is required and must be a UUID",
            },
        )
    return await request_validation_exception_handler(request, exc)


# ---------------------------------------------------------------------------
# Setup function
# ---------------------------------------------------------------------------
def setup_middleware(app: FastAPI) -> None:
    """Register all middleware on the FastAPI application.

    Middleware is applied bottom-up, so the last added middleware runs first.
    """
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(RequestValidationError, _validation_error)
    app.add_middleware(ErrorHandlerMiddleware)

    # Request ID (runs last = outermost)
    app.add_middleware(RequestIDMiddleware)
