"""Notification Service: writes messages for the buyer and seller companies."""

from __future__ import annotations

from typing import TYPE_CHECKING

from trade_kernel.infrastructure.database.orm_models import Notification
from trade_kernel.infrastructure.database.repositories import NotificationRepository
from trade_kernel.logging_config import get_logger

if TYPE_CHECKING:
    import uuid

    from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


class NotificationService:
    def __init__(self, session: AsyncSession) -> None:
        self._repo = NotificationRepository(session)

    async def notify(
        self,
        company_id: uuid.UUID,
        type_: str,
        title: str,
        message: str,
        trade_id: uuid.UUID | None = None,
    ) -> Notification:
        notification = await self._repo.create(
            Notification(
                company_id=company_id,
                trade_id=trade_id,
                type=type_,
                title=title,
                message=message,
            )
        )
        logger.debug(
            "notification.created",
            company_id=str(company_id),
            type=type_,
            trade_id=str(trade_id) if trade_id else None,
        )
        return notification

    async def notify_parties(
        self,
        trade_id: uuid.UUID,
        buyer_company_id: uuid.UUID,
        seller_company_id: uuid.UUID | None,
        type_: str,
        title: str,
        message: str,
    ) -> list[Notification]:
        """Notify both sides of a trade (the seller only once one is known)."""
        recipients = [buyer_company_id]
        if seller_company_id is not None and seller_company_id != buyer_company_id:
            recipients.append(seller_company_id)
        return [
            await self.notify(company_id, type_, title, message, trade_id=trade_id)
            for company_id in recipients
        ]

    async def get_for_company(self, company_id: uuid.UUID) -> list[Notification]:
        return await self._repo.get_by_company(company_id)
