"""Shared test fixtures for the trade kernel test suite.

Provides:
    - A file-backed SQLite database per test (aiosqlite), so concurrent
      sessions really contend for the same rows
    - Actors for both sides of a trade, an outsider and an admin
    - A wired set of services (the way the API wires them per request)
    - A TradeDriver that walks a trade through the lifecycle
    - Async test support via pytest-asyncio
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession

from trade_kernel.advisors import StaticNarrativeAdvisor
from trade_kernel.domain.actor import Actor
from trade_kernel.domain.enums import TrackingEventType, TradeStatus, Verdict
from trade_kernel.infrastructure.database.engine import (
    create_engine_for_url,
    create_session_factory,
    create_tables,
)
from trade_kernel.infrastructure.database.orm_models import Shipment, ShipmentTrackingEvent
from trade_kernel.infrastructure.database.repositories import ShipmentRepository
from trade_kernel.infrastructure.redis_client import IdempotencyStore
from trade_kernel.services.dispute_service import DisputeService
from trade_kernel.services.escrow_service import EscrowService
from trade_kernel.services.payment_service import PaymentService
from trade_kernel.services.trade_service import TradeService
from trade_kernel.services.webhook_service import WebhookService

# ---------------------------------------------------------------------------
# Actors
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Parties:
    buyer: Actor
    seller: Actor
    rival_seller: Actor
    outsider: Actor
    admin: Actor


def _company_user() -> Actor:
    return Actor(user_id=uuid.uuid4(), company_id=uuid.uuid4())


@pytest.fixture
def parties() -> Parties:
    return Parties(
        buyer=_company_user(),
        seller=_company_user(),
        rival_seller=_company_user(),
        outsider=_company_user(),
        admin=Actor(user_id=uuid.uuid4(), is_admin=True),
    )


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def engine(tmp_path):  # noqa: ANN001, ANN201
    """A fresh SQLite database file with the full schema."""
    engine = create_engine_for_url(f"sqlite+aiosqlite:///{tmp_path / 'trade_kernel.db'}")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):  # noqa: ANN001, ANN201
    return create_session_factory(engine)


@pytest_asyncio.fixture
async def session(session_factory):  # noqa: ANN001, ANN201
    """One session for single-writer tests. Do not mix with a second writer."""
    async with session_factory() as session:
        yield session
        await session.rollback()


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------


@dataclass
class Kernel:
    """Services sharing one session, wired like a single API request."""

    session: AsyncSession
    trades: TradeService
    escrow: EscrowService
    disputes: DisputeService
    webhooks: WebhookService


@pytest.fixture
def payments() -> PaymentService:
    return PaymentService(simulate=True)


@pytest.fixture
def advisor() -> StaticNarrativeAdvisor:
    return StaticNarrativeAdvisor(verdict=Verdict.WAIT_FOR_SELLER, confidence=0.7)


@pytest.fixture
def build_kernel(payments, advisor):  # noqa: ANN001, ANN201
    def _build(session: AsyncSession, idempotency: IdempotencyStore | None = None) -> Kernel:
        trades = TradeService(session)
        escrow = EscrowService(session, trades, payments)
        disputes = DisputeService(session, trades, escrow, advisor)
        webhooks = WebhookService(
            escrow,
            disputes,
            idempotency or IdempotencyStore(None),
            secret_hash="test-secret-hash",
        )
        return Kernel(session, trades, escrow, disputes, webhooks)

    return _build


@pytest.fixture
def kernel(session, build_kernel) -> Kernel:  # noqa: ANN001
    return build_kernel(session)


# ---------------------------------------------------------------------------
# Lifecycle driver
# ---------------------------------------------------------------------------

TRADE_VALUE = Decimal("10000.00")


class TradeDriver:
    """Walks a trade through the lifecycle with the real services."""

    def __init__(self, kernel: Kernel, parties: Parties, payments: PaymentService) -> None:
        self.kernel = kernel
        self.parties = parties
        self.payments = payments

    async def quoted(self, total: Decimal = TRADE_VALUE, assisted: bool = False) -> tuple[uuid.UUID, uuid.UUID]:
        trade = await self.kernel.trades.create_trade(
            self.parties.buyer, title="200 t sesame seeds", is_assisted=assisted
        )
        quote = await self.kernel.trades.submit_quote(
            trade.id, self.parties.seller, unit_price=total / 200, total_price=total
        )
        return trade.id, quote.id

    async def escrow_pending(self, total: Decimal = TRADE_VALUE, assisted: bool = False) -> uuid.UUID:
        trade_id, quote_id = await self.quoted(total, assisted)
        await self.kernel.trades.accept_quote(trade_id, quote_id, self.parties.buyer)
        await self.kernel.trades.request_transition(
            trade_id, TradeStatus.ESCROW_PENDING, self.parties.buyer
        )
        return trade_id

    def charge_payload(self, trade_id: uuid.UUID, amount: Decimal = TRADE_VALUE, **kwargs) -> dict:  # noqa: ANN003
        data = self.payments.simulate_charge(trade_id, amount, "USD", **kwargs)
        return {"event": "charge.completed", "data": data}

    async def funded(self, total: Decimal = TRADE_VALUE) -> uuid.UUID:
        trade_id = await self.escrow_pending(total)
        data = self.charge_payload(trade_id, total)["data"]
        await self.kernel.escrow.on_payment_confirmed(
            trade_id, provider_ref=data["tx_ref"], transaction_id=data["id"]
        )
        return trade_id

    async def delivered(self) -> uuid.UUID:
        trade_id = await self.funded()
        for target in (TradeStatus.IN_TRANSIT, TradeStatus.DELIVERED):
            await self.kernel.trades.request_transition(trade_id, target, self.parties.seller)
        return trade_id

    async def disputed(self, reason: str = "Goods not received") -> tuple[uuid.UUID, uuid.UUID]:
        trade_id = await self.funded()
        await self.kernel.trades.request_transition(
            trade_id, TradeStatus.IN_TRANSIT, self.parties.seller
        )
        dispute = await self.kernel.trades.report_issue(trade_id, self.parties.buyer, reason)
        return trade_id, dispute.id

    async def add_shipment(
        self,
        trade_id: uuid.UUID,
        eta: datetime | None,
        movements: list[tuple[TrackingEventType, datetime]] = (),
        is_active: bool = True,
        updated_at: datetime | None = None,
    ) -> Shipment:
        repo = ShipmentRepository(self.kernel.session)
        shipment = Shipment(trade_id=trade_id, estimated_delivery_date=eta, is_active=is_active)
        if updated_at is not None:
            shipment.updated_at = updated_at
        await repo.create(shipment)
        for event_type, at in movements:
            await repo.add_tracking_event(
                ShipmentTrackingEvent(
                    shipment_id=shipment.id, event_type=event_type.value, event_timestamp=at
                )
            )
        return shipment


@pytest.fixture
def driver(kernel, parties, payments) -> TradeDriver:  # noqa: ANN001
    return TradeDriver(kernel, parties, payments)
