"""structlog setup for the trade kernel.

Development gets a colored console; every other environment gets one JSON
object per line. Request-scoped context (request id, acting user) lives in
structlog contextvars, so a trade transition logged deep inside a service
still carries the request that caused it.

Usage:
    from trade_kernel.logging_config import setup_logging, get_logger
    setup_logging(log_level="INFO", json_logs=True)
    logger = get_logger(__name__)
    logger.info("escrow.released", trade_id=str(trade.id), amount=escrow.amount)
"""

from __future__ import annotations

import enum
import logging
import sys
import uuid
from decimal import Decimal

import structlog

# Third-party loggers that drown out domain events below WARNING.
QUIET_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "httpx", "httpcore", "LiteLLM")


def _stringify_domain_values(
    _logger: object, _method: str, event_dict: structlog.types.EventDict
) -> structlog.types.EventDict:
    """Money, ids and status enums render as plain strings (JSONRenderer can't encode Decimal)."""
    for key, value in event_dict.items():
        if isinstance(value, Decimal | uuid.UUID):
            event_dict[key] = str(value)
        elif isinstance(value, enum.Enum):
            event_dict[key] = value.value
    return event_dict


def setup_logging(log_level: str = "INFO", json_logs: bool = False) -> None:
    """Route structlog and the stdlib root logger through one formatter.

    Args:
        log_level: Standard level name; unknown names fall back to INFO.
        json_logs: JSON lines when True, colored console otherwise.
    """
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        _stringify_domain_values,
    ]

    if json_logs:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
        shared_processors.append(structlog.processors.format_exc_info)
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def bind_request(request_id: str) -> None:
    """Start a fresh log context for one HTTP request."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id)


def bind_actor(audit_id: str) -> None:
    structlog.contextvars.bind_contextvars(actor=audit_id)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
