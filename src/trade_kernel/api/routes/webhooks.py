"""Payment provider webhook route.

POST /api/v1/webhooks/payments

The provider signs every call with the shared secret in the `verif-hash`
header. Response codes tell the provider whether to retry:
    200  processed, duplicate, or ignored event
    400  provider did not confirm the charge (no retry helps)
    401  bad signature
    502  provider unreachable while verifying (retry later)
"""

from __future__ import annotations

from fastapi import APIRouter, Body, Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from trade_kernel.api.deps import get_db_session, get_webhook_service
from trade_kernel.logging_config import get_logger
from trade_kernel.schemas.common import WebhookAck
from trade_kernel.services.webhook_service import WebhookService

router = APIRouter(prefix="/api/v1/webhooks", tags=["Webhooks"])
logger = get_logger(__name__)


@router.post("/payments", response_model=WebhookAck, summary="Payment provider webhook")
async def payment_webhook(
    payload: dict = Body(...),
    verif_hash: str | None = Header(default=None, alias="verif-hash"),
    session: AsyncSession = Depends(get_db_session),
    webhooks: WebhookService = Depends(get_webhook_service),
) -> WebhookAck:
    webhooks.verify_signature(verif_hash)
    logger.info("webhook.received", webhook_event=payload.get("event"))

    result = await webhooks.handle(payload)

    # The idempotency key may only exist once the effects are durable.
    await session.commit()
    await webhooks.mark_processed(payload)
    return WebhookAck(**result)
