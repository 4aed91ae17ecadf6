"""Database infrastructure: engine, ORM models, and repositories."""

from trade_kernel.infrastructure.database.engine import (
    close_db,
    create_engine_for_url,
    create_session_factory,
    create_tables,
    get_async_session,
    init_db,
    session_scope,
)
from trade_kernel.infrastructure.database.orm_models import (
    Base,
    Dispute,
    EscrowEvent,
    EscrowPayment,
    Notification,
    Quote,
    Shipment,
    ShipmentTrackingEvent,
    Trade,
    TradeEvent,
)
from trade_kernel.infrastructure.database.repositories import (
    DisputeRepository,
    EscrowEventRepository,
    EscrowRepository,
    NotificationRepository,
    QuoteRepository,
    ShipmentRepository,
    TradeEventRepository,
    TradeRepository,
)

__all__ = [
    "Base",
    "Dispute",
    "EscrowEvent",
    "EscrowPayment",
    "Notification",
    "Quote",
    "Shipment",
    "ShipmentTrackingEvent",
    "Trade",
    "TradeEvent",
    "DisputeRepository",
    "EscrowEventRepository",
    "EscrowRepository",
    "NotificationRepository",
    "QuoteRepository",
    "ShipmentRepository",
    "TradeEventRepository",
    "TradeRepository",
    "close_db",
    "create_engine_for_url",
    "create_session_factory",
    "create_tables",
    "get_async_session",
    "init_db",
    "session_scope",
]
