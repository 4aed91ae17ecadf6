"""Repository classes for database access.

Repositories encapsulate all SQL queries and provide a clean interface
to the service layer. They accept an AsyncSession and never manage
their own transactions (that's the caller's responsibility).

Status changes are conditional updates: `UPDATE ... WHERE id = :id AND
status = :expected`. The affected-row count tells the caller whether it won;
zero rows means another writer moved the row first.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import select, update

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

if TYPE_CHECKING:
    import uuid
    from collections.abc import Collection

    from sqlalchemy.ext.asyncio import AsyncSession


async def _conditional_update(
    session: AsyncSession,
    model: type[Base],
    row_id: uuid.UUID,
    expected_statuses: Collection[str],
    values: dict[str, Any],
) -> bool:
    """Apply `values` only if the row's status is still one of `expected_statuses`."""
    result = await session.execute(
        update(model)
        .where(model.id == row_id, model.status.in_(list(expected_statuses)))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def _get_fresh(session: AsyncSession, model: type[Base], row_id: uuid.UUID):  # noqa: ANN202
    """Fetch a row, overwriting any stale copy in the identity map."""
    result = await session.execute(
        select(model).where(model.id == row_id).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


class TradeRepository:
    """Data access for trades."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, trade: Trade) -> Trade:
        """Insert a new trade."""
        self._session.add(trade)
        await self._session.flush()
        return trade

    async def get_by_id(self, trade_id: uuid.UUID) -> Trade | None:
        """Fetch a trade by its UUID (always re-read from the database)."""
        return await _get_fresh(self._session, Trade, trade_id)

    async def transition_status(
        self,
        trade_id: uuid.UUID,
        expected_status: str,
        new_status: str,
        **values: Any,
    ) -> bool:
        """Conditionally move a trade from `expected_status` to `new_status`."""
        return await _conditional_update(
            self._session,
            Trade,
            trade_id,
            [expected_status],
            {"status": new_status, "updated_at": datetime.now(UTC), **values},
        )


class QuoteRepository:
    """Data access for quotes."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, quote: Quote) -> Quote:
        """Insert a new quote."""
        self._session.add(quote)
        await self._session.flush()
        return quote

    async def get_by_id(self, quote_id: uuid.UUID) -> Quote | None:
        return await _get_fresh(self._session, Quote, quote_id)

    async def get_by_trade(self, trade_id: uuid.UUID) -> list[Quote]:
        """Fetch all quotes for a trade, oldest first."""
        result = await self._session.execute(
            select(Quote)
            .where(Quote.trade_id == trade_id)
            .order_by(Quote.created_at.asc())
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def mark_accepted(self, quote_id: uuid.UUID) -> bool:
        """Conditionally move a submitted quote to accepted."""
        return await _conditional_update(
            self._session, Quote, quote_id, ["submitted"], {"status": "accepted"}
        )

    async def supersede_others(self, trade_id: uuid.UUID, accepted_quote_id: uuid.UUID) -> int:
        """Mark every other submitted quote on the trade as superseded."""
        result = await self._session.execute(
            update(Quote)
            .where(
                Quote.trade_id == trade_id,
                Quote.id != accepted_quote_id,
                Quote.status == "submitted",
            )
            .values(status="superseded")
            .execution_options(synchronize_session=False)
        )
        return result.rowcount


class TradeEventRepository:
    """Data access for the append-only trade audit log."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def record(
        self,
        trade_id: uuid.UUID,
        event_type: str,
        from_state: str | None,
        to_state: str,
        actor_id: str = "SYSTEM",
        actor_role: str = "system",
        transition_hash: str | None = None,
        metadata: dict | None = None,
    ) -> TradeEvent:
        """Append a new audit event. This is the ONLY write operation allowed."""
        evt = TradeEvent(
            trade_id=trade_id,
            event_type=event_type,
            from_state=from_state,
            to_state=to_state,
            actor_id=actor_id,
            actor_role=actor_role,
            transition_hash=transition_hash,
            metadata_json=metadata,
        )
        self._session.add(evt)
        await self._session.flush()
        return evt

    async def get_by_trade(self, trade_id: uuid.UUID) -> list[TradeEvent]:
        """Fetch all events for a trade in chronological order."""
        result = await self._session.execute(
            select(TradeEvent)
            .where(TradeEvent.trade_id == trade_id)
            .order_by(TradeEvent.created_at.asc())
        )
        return list(result.scalars().all())


class EscrowRepository:
    """Data access for escrow payments."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, escrow: EscrowPayment) -> EscrowPayment:
        self._session.add(escrow)
        await self._session.flush()
        return escrow

    async def get_by_trade(self, trade_id: uuid.UUID) -> EscrowPayment | None:
        """Fetch the escrow row for a trade (always re-read from the database)."""
        result = await self._session.execute(
            select(EscrowPayment)
            .where(EscrowPayment.trade_id == trade_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def transition_status(
        self,
        escrow_id: uuid.UUID,
        expected_status: str,
        new_status: str,
        **values: Any,
    ) -> bool:
        """Conditionally move an escrow from `expected_status` to `new_status`."""
        return await _conditional_update(
            self._session,
            EscrowPayment,
            escrow_id,
            [expected_status],
            {"status": new_status, "updated_at": datetime.now(UTC), **values},
        )


class EscrowEventRepository:
    """Data access for the append-only escrow audit log."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def record(
        self,
        escrow_id: uuid.UUID,
        event_type: str,
        old_status: str | None,
        new_status: str,
        provider_ref: str | None = None,
        actor: str = "SYSTEM",
        metadata: dict | None = None,
    ) -> EscrowEvent:
        """Append a new audit event. This is the ONLY write operation allowed."""
        evt = EscrowEvent(
            escrow_id=escrow_id,
            event_type=event_type,
            old_status=old_status,
            new_status=new_status,
            provider_ref=provider_ref or "",
            actor=actor,
            metadata_json=metadata,
        )
        self._session.add(evt)
        await self._session.flush()
        return evt

    async def exists(self, escrow_id: uuid.UUID, event_type: str, provider_ref: str) -> bool:
        result = await self._session.execute(
            select(EscrowEvent.id).where(
                EscrowEvent.escrow_id == escrow_id,
                EscrowEvent.event_type == event_type,
                EscrowEvent.provider_ref == provider_ref,
            )
        )
        return result.first() is not None

    async def get_by_escrow(self, escrow_id: uuid.UUID) -> list[EscrowEvent]:
        """Fetch all events for an escrow in chronological order."""
        result = await self._session.execute(
            select(EscrowEvent)
            .where(EscrowEvent.escrow_id == escrow_id)
            .order_by(EscrowEvent.created_at.asc())
        )
        return list(result.scalars().all())


class DisputeRepository:
    """Data access for disputes."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, dispute: Dispute) -> Dispute:
        self._session.add(dispute)
        await self._session.flush()
        return dispute

    async def get_by_id(self, dispute_id: uuid.UUID) -> Dispute | None:
        return await _get_fresh(self._session, Dispute, dispute_id)

    async def get_latest_for_trade(self, trade_id: uuid.UUID) -> Dispute | None:
        """Fetch the most recently opened dispute on a trade."""
        result = await self._session.execute(
            select(Dispute)
            .where(Dispute.trade_id == trade_id)
            .order_by(Dispute.created_at.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def transition_status(
        self,
        dispute_id: uuid.UUID,
        expected_statuses: Collection[str],
        new_status: str,
        **values: Any,
    ) -> bool:
        """Conditionally move a dispute out of any of `expected_statuses`."""
        return await _conditional_update(
            self._session,
            Dispute,
            dispute_id,
            expected_statuses,
            {"status": new_status, "updated_at": datetime.now(UTC), **values},
        )


class ShipmentRepository:
    """Read access to shipments and their tracking history."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, shipment: Shipment) -> Shipment:
        self._session.add(shipment)
        await self._session.flush()
        return shipment

    async def add_tracking_event(self, event: ShipmentTrackingEvent) -> ShipmentTrackingEvent:
        self._session.add(event)
        await self._session.flush()
        return event

    async def get_by_trade(self, trade_id: uuid.UUID) -> list[Shipment]:
        result = await self._session.execute(
            select(Shipment)
            .where(Shipment.trade_id == trade_id)
            .order_by(Shipment.updated_at.desc())
        )
        return list(result.scalars().all())

    async def get_tracking_events(
        self,
        shipment_id: uuid.UUID,
        since: datetime | None = None,
    ) -> list[ShipmentTrackingEvent]:
        """Fetch a shipment's tracking events in time order, optionally from `since`."""
        stmt = select(ShipmentTrackingEvent).where(
            ShipmentTrackingEvent.shipment_id == shipment_id
        )
        if since is not None:
            stmt = stmt.where(ShipmentTrackingEvent.event_timestamp >= since)
        result = await self._session.execute(
            stmt.order_by(ShipmentTrackingEvent.event_timestamp.asc())
        )
        return list(result.scalars().all())


class NotificationRepository:
    """Data access for company notifications."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, notification: Notification) -> Notification:
        self._session.add(notification)
        await self._session.flush()
        return notification

    async def get_by_company(self, company_id: uuid.UUID) -> list[Notification]:
        """Fetch a company's notifications, newest first."""
        result = await self._session.execute(
            select(Notification)
            .where(Notification.company_id == company_id)
            .order_by(Notification.created_at.desc())
        )
        return list(result.scalars().all())
