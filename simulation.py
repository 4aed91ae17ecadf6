#!/usr/bin/env python3
"""Trade Kernel: End-to-End Simulation.

Simulates three scenarios with BuyerBot, SellerBot and a simulated payment
provider:

    Scenario 1: Happy Path
        - Buyer opens an RFQ, seller quotes, buyer accepts
        - Provider confirms the charge -> escrow held, trade escrow_funded
        - Seller ships, buyer confirms delivery -> escrow released, trade settled
        - Provider confirms the payout

    Scenario 2: Overdue Dispute
        - Funded trade in transit, shipment 20 days overdue, no movement for 10 days
        - Buyer reports the issue and asks for a judgment
        - Policy forces REFUND_BUYER -> escrow refunded, trade refunded
        - Provider confirms the refund -> dispute resolved

    Scenario 3: Duplicate Webhook
        - Provider delivers the same charge.completed three times
        - Exactly one PAYMENT_CONFIRMED escrow event is recorded

Usage:
    # SQLite in-memory, static advisor, simulated provider (no network):
    python simulation.py --sqlite

    # Narrative from the configured LLM instead of the static advisor:
    python simulation.py --sqlite --advisor llm

    # Run a specific scenario:
    python simulation.py --sqlite --scenario 2
"""

from __future__ import annotations

import argparse
import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING

# ---------------------------------------------------------------------------
# Configure structured logging BEFORE importing app modules
# ---------------------------------------------------------------------------
from trade_kernel.logging_config import get_logger, setup_logging

setup_logging(log_level="INFO", json_logs=False)
logger = get_logger("simulation")

from trade_kernel.advisors import AdvisorFactory  # noqa: E402
from trade_kernel.domain.actor import Actor  # noqa: E402
from trade_kernel.domain.enums import TrackingEventType, TradeStatus  # noqa: E402
from trade_kernel.infrastructure.database.engine import (  # noqa: E402
    _get_session_factory,
    close_db,
    create_engine_for_url,
    create_session_factory,
    create_tables,
    init_db,
    session_scope,
)
from trade_kernel.infrastructure.database.orm_models import (  # noqa: E402
    Shipment,
    ShipmentTrackingEvent,
)
from trade_kernel.infrastructure.database.repositories import ShipmentRepository  # noqa: E402
from trade_kernel.infrastructure.redis_client import IdempotencyStore  # noqa: E402
from trade_kernel.services.dispute_service import DisputeService  # noqa: E402
from trade_kernel.services.escrow_service import EscrowService  # noqa: E402
from trade_kernel.services.notification_service import NotificationService  # noqa: E402
from trade_kernel.services.payment_service import PaymentService  # noqa: E402
from trade_kernel.services.trade_service import TradeService  # noqa: E402
from trade_kernel.services.webhook_service import WebhookService  # noqa: E402

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

    from trade_kernel.domain.advisor_protocol import NarrativeAdvisor

# Module-level state
_sqlite_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None
_advisor: NarrativeAdvisor | None = None
_payments = PaymentService(simulate=True)


# ---------------------------------------------------------------------------
# Database lifecycle helpers
# ---------------------------------------------------------------------------
async def init_database(use_sqlite: bool = False) -> None:
    """Initialize database engine and create tables."""
    global _sqlite_engine, _session_factory

    if use_sqlite:
        _sqlite_engine = create_engine_for_url("sqlite+aiosqlite:///:memory:")
        _session_factory = create_session_factory(_sqlite_engine)
        await create_tables(_sqlite_engine)
        logger.info("database.sqlite_initialized")
    else:
        await init_db()
        _session_factory = _get_session_factory()


async def shutdown_database() -> None:
    """Close database connections."""
    global _sqlite_engine, _session_factory

    if _sqlite_engine is not None:
        await _sqlite_engine.dispose()
        _sqlite_engine = None
    else:
        await close_db()
    _session_factory = None


def unit_of_work():  # noqa: ANN201
    """One request-sized transaction: commit on success, roll back on error."""
    return session_scope(_session_factory)


@dataclass
class Services:
    """The services one request would get, wired the way the API wires them."""

    trades: TradeService
    escrow: EscrowService
    disputes: DisputeService
    webhooks: WebhookService
    notifications: NotificationService

    @classmethod
    def build(cls, session: AsyncSession) -> Services:
        trades = TradeService(session)
        escrow = EscrowService(session, trades, _payments)
        disputes = DisputeService(session, trades, escrow, _advisor)
        webhooks = WebhookService(escrow, disputes, IdempotencyStore(None), allow_unsigned=True)
        return cls(trades, escrow, disputes, webhooks, NotificationService(session))


# ---------------------------------------------------------------------------
# Bots
# ---------------------------------------------------------------------------
@dataclass
class CompanyBot:
    """A user acting for a company."""

    name: str
    company_id: uuid.UUID = field(default_factory=uuid.uuid4)
    user_id: uuid.UUID = field(default_factory=uuid.uuid4)

    @property
    def actor(self) -> Actor:
        return Actor(user_id=self.user_id, company_id=self.company_id)


@dataclass
class BuyerBot(CompanyBot):
    name: str = "Accra Cocoa Buyers Ltd"

    async def open_rfq(self, title: str, quantity: Decimal, unit: str) -> uuid.UUID:
        async with unit_of_work() as session:
            trade = await Services.build(session).trades.create_trade(
                self.actor, title=title, quantity=quantity, unit=unit, currency="USD"
            )
        logger.info("BUYER: RFQ opened", trade_id=str(trade.id), status=trade.status)
        return trade.id

    async def accept_quote(self, trade_id: uuid.UUID, quote_id: uuid.UUID) -> None:
        async with unit_of_work() as session:
            svc = Services.build(session)
            trade = await svc.trades.accept_quote(trade_id, quote_id, self.actor)
            trade = await svc.trades.request_transition(
                trade_id, TradeStatus.ESCROW_PENDING, self.actor
            )
        logger.info("BUYER: Quote accepted, escrow requested", status=trade.status)

    async def confirm_delivery(self, trade_id: uuid.UUID) -> None:
        async with unit_of_work() as session:
            trade = await Services.build(session).trades.confirm_delivery(
                trade_id, self.actor, goods_received=True, escrow_release_understood=True
            )
        logger.info("BUYER: Delivery confirmed", status=trade.status)

    async def report_issue(self, trade_id: uuid.UUID, reason: str) -> uuid.UUID:
        async with unit_of_work() as session:
            dispute = await Services.build(session).trades.report_issue(
                trade_id, self.actor, reason, evidence=["tracking-screenshot.png"]
            )
        logger.info("BUYER: Issue reported", dispute_id=str(dispute.id))
        return dispute.id

    async def judge(self, dispute_id: uuid.UUID) -> None:
        async with unit_of_work() as session:
            result = await Services.build(session).disputes.judge(dispute_id, self.actor)
        verdict = result.verdict
        print(f"\n  Verdict:          {verdict.verdict.value if verdict else '-'}")
        print(f"  Policy triggered: {result.policy_triggered}")
        print(f"  Dispute status:   {result.status}")
        if verdict:
            print(f"  Reasoning:        {verdict.reasoning}")


@dataclass
class SellerBot(CompanyBot):
    name: str = "Kumasi Export Co"

    async def quote(self, trade_id: uuid.UUID, unit_price: Decimal, total: Decimal) -> uuid.UUID:
        async with unit_of_work() as session:
            quote = await Services.build(session).trades.submit_quote(
                trade_id, self.actor, unit_price=unit_price, total_price=total,
                lead_time_days=21, incoterms="FOB",
            )
        logger.info("SELLER: Quote submitted", quote_id=str(quote.id), total=str(total))
        return quote.id

    async def advance(self, trade_id: uuid.UUID, *targets: TradeStatus) -> None:
        async with unit_of_work() as session:
            trades = Services.build(session).trades
            for target in targets:
                trade = await trades.request_transition(trade_id, target, self.actor)
                logger.info("SELLER: Trade advanced", status=trade.status)

    async def add_shipment(
        self,
        trade_id: uuid.UUID,
        eta: datetime,
        movements: list[tuple[TrackingEventType, datetime]],
    ) -> None:
        async with unit_of_work() as session:
            repo = ShipmentRepository(session)
            shipment = await repo.create(
                Shipment(
                    trade_id=trade_id,
                    status="in_transit",
                    carrier="Maersk",
                    tracking_number=f"MSK{uuid.uuid4().hex[:8].upper()}",
                    estimated_delivery_date=eta,
                    is_active=True,
                )
            )
            for event_type, at in movements:
                await repo.add_tracking_event(
                    ShipmentTrackingEvent(
                        shipment_id=shipment.id, event_type=event_type.value, event_timestamp=at
                    )
                )
        logger.info("SELLER: Shipment registered", eta=eta.date().isoformat())


class ProviderBot:
    """The payment provider: creates charges and delivers webhooks."""

    def charge(self, trade_id: uuid.UUID, amount: Decimal) -> dict:
        return {"event": "charge.completed", "data": _payments.simulate_charge(trade_id, amount, "USD")}

    @staticmethod
    def settlement(event: str, trade_id: uuid.UUID, reference: str) -> dict:
        return {"event": event, "data": {"reference": reference, "meta": {"trade_id": str(trade_id)}}}

    async def deliver(self, payload: dict) -> dict:
        async with unit_of_work() as session:
            result = await Services.build(session).webhooks.handle(payload)
        logger.info("PROVIDER: Webhook delivered", webhook_event=payload["event"], result=result["message"])
        return result


# ---------------------------------------------------------------------------
# Display helpers
# ---------------------------------------------------------------------------
def section(title: str) -> None:
    print("\n" + "-" * 70)
    print(f"  {title}")
    print("-" * 70)


async def print_audit_trail(trade_id: uuid.UUID, companies: list[CompanyBot]) -> None:
    async with unit_of_work() as session:
        svc = Services.build(session)
        trade = await svc.trades.get_trade(trade_id)
        events = await svc.trades.get_events(trade_id)
        escrow = await svc.escrow.get_escrow(trade_id)
        escrow_events = await svc.escrow.get_events(trade_id)
        notifications = {c.name: await svc.notifications.get_for_company(c.company_id) for c in companies}

    section("Audit Trail")
    for e in events:
        print(f"  [{e.event_type:<16}] {e.from_state or '-':>16} -> {e.to_state:<16} by {e.actor_role}")
    print(f"\n  Escrow: {escrow.currency} {escrow.amount} ({escrow.status}), "
          f"commission {escrow.commission_amount} at {escrow.commission_rate}%, "
          f"seller payout {escrow.seller_payout}")
    for e in escrow_events:
        print(f"  [{e.event_type:<18}] {e.old_status or '-':>8} -> {e.new_status:<8} ref={e.provider_ref or '-'}")
    for name, items in notifications.items():
        print(f"\n  Notifications for {name}: {', '.join(n.title for n in reversed(items)) or 'none'}")
    print(f"\n  Trade final status: {trade.status}")


# ===========================================================================
# Scenarios
# ===========================================================================
async def _funded_trade(buyer: BuyerBot, seller: SellerBot, provider: ProviderBot) -> tuple[uuid.UUID, dict]:
    trade_id = await buyer.open_rfq("500 t cocoa beans, grade 1", Decimal("500"), "t")
    quote_id = await seller.quote(trade_id, Decimal("2400"), Decimal("1200000"))
    await buyer.accept_quote(trade_id, quote_id)
    charge = provider.charge(trade_id, Decimal("1200000"))
    await provider.deliver(charge)
    return trade_id, charge


async def scenario_1_happy_path() -> None:
    section("Scenario 1: Happy Path")
    buyer, seller, provider = BuyerBot(), SellerBot(), ProviderBot()

    trade_id, _ = await _funded_trade(buyer, seller, provider)
    await seller.advance(
        trade_id,
        TradeStatus.PRODUCTION,
        TradeStatus.IN_TRANSIT,
        TradeStatus.DELIVERED,
    )
    await buyer.confirm_delivery(trade_id)
    await provider.deliver(provider.settlement("transfer.completed", trade_id, f"TRF-{trade_id.hex[:8]}"))

    await print_audit_trail(trade_id, [buyer, seller])


async def scenario_2_overdue_dispute() -> None:
    section("Scenario 2: Overdue Dispute")
    buyer, seller, provider = BuyerBot(), SellerBot(), ProviderBot()
    now = datetime.now(UTC)

    trade_id, _ = await _funded_trade(buyer, seller, provider)
    await seller.advance(trade_id, TradeStatus.IN_TRANSIT)
    await seller.add_shipment(
        trade_id,
        eta=now - timedelta(days=20),
        movements=[
            (TrackingEventType.PICKED_UP, now - timedelta(days=30)),
            (TrackingEventType.IN_TRANSIT, now - timedelta(days=10)),
        ],
    )

    dispute_id = await buyer.report_issue(trade_id, "Goods are three weeks late and tracking is frozen")
    await buyer.judge(dispute_id)
    # Judging again returns the stored verdict.
    await buyer.judge(dispute_id)
    await provider.deliver(provider.settlement("refund.completed", trade_id, f"RFD-{trade_id.hex[:8]}"))

    await print_audit_trail(trade_id, [buyer, seller])


async def scenario_3_duplicate_webhook() -> None:
    section("Scenario 3: Duplicate Webhook")
    buyer, seller, provider = BuyerBot(), SellerBot(), ProviderBot()

    trade_id, charge = await _funded_trade(buyer, seller, provider)
    for _ in range(2):
        await provider.deliver(charge)

    await print_audit_trail(trade_id, [buyer, seller])


# ===========================================================================
# Main
# ===========================================================================
SCENARIOS = {
    1: scenario_1_happy_path,
    2: scenario_2_overdue_dispute,
    3: scenario_3_duplicate_webhook,
}


async def run(scenario: int = 0, use_sqlite: bool = False, advisor_mode: str = "static") -> None:
    """Run one scenario, or all of them when `scenario` is 0."""
    global _advisor
    _advisor = AdvisorFactory.create(advisor_mode)
    await init_database(use_sqlite=use_sqlite)

    try:
        print("\n" + "=" * 70)
        print("  TRADE KERNEL SIMULATION")
        print(f"  Database: {'SQLite (in-memory)' if use_sqlite else 'configured database'}")
        print(f"  Advisor:  {advisor_mode}")
        print("=" * 70)

        if scenario == 0:
            for fn in SCENARIOS.values():
                await fn()
        elif scenario in SCENARIOS:
            await SCENARIOS[scenario]()
        else:
            print(f"Unknown scenario {scenario}. Available: {', '.join(map(str, SCENARIOS))}")
            return

        print("\n" + "=" * 70)
        print("  ALL SCENARIOS COMPLETED")
        print("=" * 70 + "\n")
    finally:
        await shutdown_database()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Trade Kernel Simulation")
    parser.add_argument(
        "--scenario",
        type=int,
        default=0,
        help="Run a specific scenario (1, 2, or 3). Default: run all.",
    )
    parser.add_argument(
        "--sqlite",
        action="store_true",
        help="Use SQLite in-memory instead of the configured database.",
    )
    parser.add_argument(
        "--advisor",
        choices=AdvisorFactory.get_supported_modes(),
        default="static",
        help="Narrative advisor: 'static' (no network) or 'llm' (LiteLLM).",
    )
    args = parser.parse_args()

    asyncio.run(run(args.scenario, use_sqlite=args.sqlite, advisor_mode=args.advisor))
