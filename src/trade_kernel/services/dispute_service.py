"""Dispute Service: computes, persists and enacts dispute verdicts.

Judgment flow:
    1. Authorize the requester (buyer, seller or admin on the trade).
    2. Return the stored verdict if the dispute is no longer judgeable.
    3. Compute the policy facts from the trade's selected shipment.
    4. Ask the narrative advisor for an explanation of the same facts.
    5. Apply the deterministic override (policy refund beats the advisor).
    6. Persist verdict, judged-at time and new status in one conditional update.
    7. Hand the verdict to the escrow coordinator (REFUND_BUYER refunds now).

The advisor is the only external dependency in the flow, and its failure
degrades the narrative only: the policy facts are always computed and the
fallback verdict is MANUAL_REVIEW.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING

from trade_kernel.config import get_settings
from trade_kernel.domain.actor import resolve_role
from trade_kernel.domain.advisor_protocol import AdvisorVerdict, CaseFacts
from trade_kernel.domain.dispute_policy import (
    ShipmentSnapshot,
    TrackingSnapshot,
    apply_policy_override,
    evaluate_policy,
    select_shipment,
)
from trade_kernel.domain.enums import (
    JUDGEABLE_DISPUTE_STATES,
    AdminOutcome,
    DisputeStatus,
    TradeStatus,
    Verdict,
)
from trade_kernel.domain.exceptions import (
    DisputeNotFoundError,
    InvalidStateError,
    PermissionDeniedError,
)
from trade_kernel.domain.state_machine import DisputeStateMachine, fire_event
from trade_kernel.infrastructure.database.repositories import (
    DisputeRepository,
    ShipmentRepository,
)
from trade_kernel.logging_config import get_logger

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from trade_kernel.domain.actor import Actor
    from trade_kernel.domain.advisor_protocol import NarrativeAdvisor
    from trade_kernel.domain.dispute_policy import PolicyFacts
    from trade_kernel.infrastructure.database.orm_models import Dispute, Trade
    from trade_kernel.services.escrow_service import EscrowService
    from trade_kernel.services.trade_service import TradeService

logger = get_logger(__name__)

ALREADY_RESOLVED_MESSAGE = "Dispute already resolved or in final state"


@dataclass(frozen=True)
class JudgmentResult:
    """What `judge` returns: the verdict and whether the policy forced it."""

    dispute_id: uuid.UUID
    status: str
    policy_triggered: bool
    verdict: AdvisorVerdict | None
    message: str | None = None
    success: bool = True


class DisputeService:
    """Judges disputes and enacts admin resolutions."""

    def __init__(
        self,
        session: AsyncSession,
        trades: TradeService,
        escrow: EscrowService,
        advisor: NarrativeAdvisor,
        overdue_threshold_days: int | None = None,
        movement_window_days: int | None = None,
    ) -> None:
        settings = get_settings()
        self._session = session
        self._trades = trades
        self._escrow = escrow
        self._advisor = advisor
        self._threshold = (
            overdue_threshold_days
            if overdue_threshold_days is not None
            else settings.dispute_overdue_threshold_days
        )
        self._window = (
            movement_window_days
            if movement_window_days is not None
            else settings.dispute_movement_window_days
        )
        self._dispute_repo = DisputeRepository(session)
        self._shipment_repo = ShipmentRepository(session)

    # ------------------------------------------------------------------
    # Judgment
    # ------------------------------------------------------------------

    async def judge(
        self,
        dispute_id: uuid.UUID,
        actor: Actor,
        now: datetime | None = None,
    ) -> JudgmentResult:
        """Compute (or return the stored) verdict for a dispute.

        Raises:
            DisputeNotFoundError: No such dispute.
            PermissionDeniedError: Requester is not buyer, seller or admin on the trade.
        """
        dispute = await self._get_dispute_or_raise(dispute_id)
        trade = await self._trades.get_trade(dispute.trade_id)
        if resolve_role(actor, trade.buyer_company_id, trade.seller_company_id) is None:
            raise PermissionDeniedError("You are not a party to this dispute")

        if dispute.status not in JUDGEABLE_DISPUTE_STATES:
            logger.info(
                "dispute.already_judged",
                dispute_id=str(dispute.id),
                status=dispute.status,
            )
            return self._stored_result(dispute)

        now = now or datetime.now(UTC)
        facts = await self._compute_policy_facts(trade, now)

        advice = await self._ask_advisor(
            CaseFacts(
                dispute_id=str(dispute.id),
                trade_id=str(trade.id),
                days_overdue=facts.days_overdue,
                has_recent_movement=facts.has_recent_movement,
                amount=trade.total_value or Decimal(0),
                currency=trade.currency,
                buyer=str(trade.buyer_company_id),
                seller=str(trade.seller_company_id),
                reason=dispute.reason,
                evidence=tuple(dispute.evidence or ()),
            )
        )
        final = apply_policy_override(facts, advice)

        event_name = "resolve_refund" if final.verdict == Verdict.REFUND_BUYER else "escalate"
        new_status = fire_event(DisputeStateMachine(dispute.status), event_name)

        won = await self._dispute_repo.transition_status(
            dispute.id,
            [s.value for s in JUDGEABLE_DISPUTE_STATES],
            new_status,
            ai_verdict=final.to_dict(),
            ai_judged_at=now,
            policy_triggered=facts.policy_refund,
        )
        if not won:
            logger.info("dispute.judge_lost_race", dispute_id=str(dispute.id))
            return self._stored_result(await self._get_dispute_or_raise(dispute.id))

        logger.info(
            "dispute.judged",
            dispute_id=str(dispute.id),
            trade_id=str(trade.id),
            verdict=final.verdict.value,
            policy_triggered=facts.policy_refund,
            days_overdue=facts.days_overdue,
            has_recent_movement=facts.has_recent_movement,
            status=new_status,
        )

        await self._escrow.on_dispute_verdict(trade.id, final.verdict, dispute_id=dispute.id)

        return JudgmentResult(
            dispute_id=dispute.id,
            status=new_status,
            policy_triggered=facts.policy_refund,
            verdict=final,
        )

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    async def resolve_escalated(
        self,
        dispute_id: uuid.UUID,
        actor: Actor,
        outcome: AdminOutcome,
    ) -> Dispute:
        """An admin enacts the outcome of an escalated dispute.

        REFUND_BUYER refunds the escrow (trade -> refunded). RELEASE_TO_SELLER
        moves the trade disputed -> accepted, which releases the escrow, and
        then settles it.

        Raises:
            PermissionDeniedError: Actor is not an admin.
            InvalidStateError: Dispute is not escalated to an admin.
        """
        if not actor.is_admin:
            raise PermissionDeniedError("Only an admin can resolve an escalated dispute")

        dispute = await self._get_dispute_or_raise(dispute_id)
        new_status = fire_event(DisputeStateMachine(dispute.status), "admin_resolves")

        won = await self._dispute_repo.transition_status(
            dispute.id,
            [DisputeStatus.ESCALATED_TO_ADMIN.value],
            new_status,
            resolution=outcome.value,
            resolved_by=actor.user_id,
            resolved_at=datetime.now(UTC),
        )
        if not won:
            raise InvalidStateError(
                DisputeStatus.ESCALATED_TO_ADMIN.value,
                new_status,
                message="Dispute was resolved concurrently",
            )

        if outcome == AdminOutcome.REFUND_BUYER:
            await self._escrow.refund_buyer(dispute.trade_id, dispute_id=dispute.id)
        else:
            patch = {"dispute_id": str(dispute.id), "dispute_resolution": outcome.value}
            await self._trades.transition_trade(
                dispute.trade_id, TradeStatus.ACCEPTED, actor, patch
            )
            await self._trades.transition_trade(
                dispute.trade_id,
                TradeStatus.SETTLED,
                actor,
                {"settled_at": datetime.now(UTC).isoformat()},
            )

        logger.info(
            "dispute.resolved_by_admin",
            dispute_id=str(dispute.id),
            trade_id=str(dispute.trade_id),
            outcome=outcome.value,
            admin=actor.audit_id,
        )
        return await self._get_dispute_or_raise(dispute.id)

    async def mark_refund_settled(self, trade_id: uuid.UUID) -> Dispute | None:
        """The provider confirmed the refund: resolved_refund_pending -> resolved.

        Returns None when the trade has no dispute waiting on a refund.
        """
        dispute = await self._dispute_repo.get_latest_for_trade(trade_id)
        if dispute is None or dispute.status != DisputeStatus.RESOLVED_REFUND_PENDING:
            logger.info(
                "dispute.refund_settled_ignored",
                trade_id=str(trade_id),
                status=dispute.status if dispute else None,
            )
            return None

        new_status = fire_event(DisputeStateMachine(dispute.status), "refund_settled")
        won = await self._dispute_repo.transition_status(
            dispute.id,
            [DisputeStatus.RESOLVED_REFUND_PENDING.value],
            new_status,
            resolution=AdminOutcome.REFUND_BUYER.value,
            resolved_at=datetime.now(UTC),
        )
        if not won:
            return None

        logger.info("dispute.refund_settled", dispute_id=str(dispute.id), trade_id=str(trade_id))
        return await self._get_dispute_or_raise(dispute.id)

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    async def get_dispute(self, dispute_id: uuid.UUID, actor: Actor | None = None) -> Dispute:
        dispute = await self._get_dispute_or_raise(dispute_id)
        if actor is not None:
            trade = await self._trades.get_trade(dispute.trade_id)
            if resolve_role(actor, trade.buyer_company_id, trade.seller_company_id) is None:
                raise PermissionDeniedError("You are not a party to this dispute")
        return dispute

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _get_dispute_or_raise(self, dispute_id: uuid.UUID) -> Dispute:
        dispute = await self._dispute_repo.get_by_id(dispute_id)
        if dispute is None:
            raise DisputeNotFoundError(str(dispute_id))
        return dispute

    async def _compute_policy_facts(self, trade: Trade, now: datetime) -> PolicyFacts:
        shipments = await self._shipment_repo.get_by_trade(trade.id)
        selected = select_shipment(
            [
                ShipmentSnapshot(
                    id=str(s.id),
                    estimated_delivery_date=s.estimated_delivery_date,
                    updated_at=s.updated_at,
                    is_active=s.is_active,
                )
                for s in shipments
            ]
        )

        events: list[TrackingSnapshot] = []
        if selected is not None:
            since = now - timedelta(days=self._window)
            rows = await self._shipment_repo.get_tracking_events(
                uuid.UUID(selected.id), since=since
            )
            events = [TrackingSnapshot(e.event_type, e.event_timestamp) for e in rows]

        return evaluate_policy(
            selected,
            events,
            now,
            overdue_threshold_days=self._threshold,
            movement_window_days=self._window,
        )

    async def _ask_advisor(self, facts: CaseFacts) -> AdvisorVerdict:
        try:
            return await self._advisor.advise(facts)
        except Exception as exc:
            logger.warning(
                "dispute.advisor_failed",
                dispute_id=facts.dispute_id,
                error=str(exc),
            )
            return AdvisorVerdict.fallback()

    @staticmethod
    def _stored_result(dispute: Dispute) -> JudgmentResult:
        verdict = AdvisorVerdict.from_dict(dispute.ai_verdict) if dispute.ai_verdict else None
        return JudgmentResult(
            dispute_id=dispute.id,
            status=dispute.status,
            policy_triggered=bool(dispute.policy_triggered),
            verdict=verdict,
            message=ALREADY_RESOLVED_MESSAGE,
        )
