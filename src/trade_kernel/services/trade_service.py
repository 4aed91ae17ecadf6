"""Trade Service: the trade lifecycle state machine applied to stored trades.

This is the application layer that coordinates between:
    - Domain state machine and role guards (transition validation)
    - Repositories (conditional updates, data access)
    - The trade event log (audit trail)
    - Transition listeners (escrow coordination)

Every operation funnels into `transition_trade`, the one primitive that
validates the edge, checks the actor and the escrow entry condition, and
persists with a conditional update. Listeners run inside the same session,
so a transition and all of its side effects commit together or not at all.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from trade_kernel.domain.actor import Actor, resolve_role
from trade_kernel.domain.enums import (
    JUDGEABLE_DISPUTE_STATES,
    ActorRole,
    DisputeStatus,
    EscrowStatus,
    QuoteStatus,
    TradeStatus,
)
from trade_kernel.domain.exceptions import (
    IntegrityError,
    InvalidStateError,
    PermissionDeniedError,
    PreconditionNotMetError,
    QuoteNotFoundError,
    TradeNotFoundError,
)
from trade_kernel.domain.state_machine import (
    TradeStateMachine,
    compute_transition_hash,
    role_may_enter,
    validate_trade_transition,
)
from trade_kernel.infrastructure.database.orm_models import Dispute, Quote, Trade
from trade_kernel.infrastructure.database.repositories import (
    DisputeRepository,
    EscrowRepository,
    QuoteRepository,
    TradeEventRepository,
    TradeRepository,
)
from trade_kernel.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from sqlalchemy.ext.asyncio import AsyncSession

    from trade_kernel.infrastructure.database.orm_models import TradeEvent

logger = get_logger(__name__)

# Escrow status a trade's escrow must have before the trade may enter the state.
ESCROW_ENTRY_CONDITIONS: dict[TradeStatus, EscrowStatus] = {
    TradeStatus.ACCEPTED: EscrowStatus.HELD,
    TradeStatus.SETTLED: EscrowStatus.RELEASED,
    TradeStatus.REFUNDED: EscrowStatus.REFUNDED,
}

# Disputes that still have to be judged or enacted; a trade cannot close over them.
UNSETTLED_DISPUTE_STATES = JUDGEABLE_DISPUTE_STATES | {DisputeStatus.ESCALATED_TO_ADMIN}

# Targets reachable only through their dedicated operation, never through
# a raw transition request.
DEDICATED_TARGETS: dict[TradeStatus, str] = {
    TradeStatus.QUOTED: "submit a quote",
    TradeStatus.QUOTE_ACCEPTED: "accept a quote",
    TradeStatus.ESCROW_FUNDED: "fund the escrow through the payment provider",
    TradeStatus.ACCEPTED: "confirm delivery",
    TradeStatus.SETTLED: "confirm delivery",
    TradeStatus.DISPUTED: "report an issue",
    TradeStatus.REFUNDED: "resolve the dispute",
}


@dataclass(frozen=True)
class TradeTransition:
    """Published to listeners after a transition is persisted."""

    trade: Trade
    from_state: TradeStatus
    to_state: TradeStatus
    actor: Actor
    transition_hash: str
    metadata_patch: dict = field(default_factory=dict)


class TradeService:
    """Manages the trade lifecycle."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self._trade_repo = TradeRepository(session)
        self._quote_repo = QuoteRepository(session)
        self._event_repo = TradeEventRepository(session)
        self._escrow_repo = EscrowRepository(session)
        self._dispute_repo = DisputeRepository(session)
        self._listeners: list[Callable[[TradeTransition], Awaitable[None]]] = []

    def subscribe(self, listener: Callable[[TradeTransition], Awaitable[None]]) -> None:
        """Register a coroutine called after every persisted transition."""
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Creation and quotes
    # ------------------------------------------------------------------

    async def create_trade(
        self,
        actor: Actor,
        title: str,
        currency: str = "USD",
        description: str | None = None,
        quantity: Decimal | None = None,
        unit: str | None = None,
        target_value: Decimal | None = None,
        is_assisted: bool = False,
        open_rfq: bool = True,
    ) -> Trade:
        """Create a trade owned by the actor's company, optionally opening the RFQ."""
        if actor.company_id is None:
            raise PermissionDeniedError("A company account is required to create a trade")

        trade = await self._trade_repo.create(
            Trade(
                buyer_company_id=actor.company_id,
                created_by=actor.user_id,
                title=title,
                description=description,
                quantity=quantity,
                unit=unit,
                total_value=target_value,
                currency=currency.upper(),
                is_assisted=is_assisted,
                status=TradeStatus.DRAFT.value,
                metadata_json={},
            )
        )
        await self._event_repo.record(
            trade_id=trade.id,
            event_type="TRADE_CREATED",
            from_state=None,
            to_state=TradeStatus.DRAFT.value,
            actor_id=actor.audit_id,
            actor_role=ActorRole.BUYER.value,
            metadata={"title": title},
        )
        logger.info("trade.created", trade_id=str(trade.id), buyer=str(actor.company_id))

        if open_rfq:
            trade = await self.transition_trade(trade.id, TradeStatus.RFQ_OPEN, actor)
        return trade

    async def submit_quote(
        self,
        trade_id: uuid.UUID,
        actor: Actor,
        unit_price: Decimal,
        total_price: Decimal,
        currency: str | None = None,
        lead_time_days: int | None = None,
        incoterms: str | None = None,
        payment_terms: str | None = None,
    ) -> Quote:
        """A supplier quotes on an open RFQ. The first quote moves rfq_open -> quoted."""
        trade = await self._get_trade_or_raise(trade_id)

        if actor.company_id is None:
            raise PermissionDeniedError("A company account is required to submit a quote")
        if actor.company_id == trade.buyer_company_id:
            raise PermissionDeniedError("A buyer cannot quote on its own trade")
        if trade.status not in (TradeStatus.RFQ_OPEN, TradeStatus.QUOTED):
            raise InvalidStateError(
                trade.status,
                TradeStatus.QUOTED.value,
                message=f"Trade is not accepting quotes (status: {trade.status})",
            )

        quote = await self._quote_repo.create(
            Quote(
                trade_id=trade.id,
                supplier_company_id=actor.company_id,
                unit_price=unit_price,
                total_price=total_price,
                currency=(currency or trade.currency).upper(),
                lead_time_days=lead_time_days,
                incoterms=incoterms,
                payment_terms=payment_terms,
                status=QuoteStatus.SUBMITTED.value,
            )
        )
        logger.info("trade.quote_submitted", trade_id=str(trade.id), quote_id=str(quote.id))

        if trade.status == TradeStatus.RFQ_OPEN:
            try:
                await self._apply_transition(
                    trade,
                    TradeStatus.QUOTED,
                    actor,
                    ActorRole.SELLER,
                    {"first_quote_id": str(quote.id)},
                )
            except InvalidStateError:
                # Another supplier's quote moved the trade first.
                current = await self._get_trade_or_raise(trade.id)
                if current.status != TradeStatus.QUOTED:
                    raise
        else:
            await self._event_repo.record(
                trade_id=trade.id,
                event_type="QUOTE_SUBMITTED",
                from_state=trade.status,
                to_state=trade.status,
                actor_id=actor.audit_id,
                actor_role=ActorRole.SELLER.value,
                metadata={"quote_id": str(quote.id)},
            )
        return quote

    async def accept_quote(self, trade_id: uuid.UUID, quote_id: uuid.UUID, actor: Actor) -> Trade:
        """Accept one quote: exactly one acceptance can ever win per trade.

        Raises:
            InvalidStateError: Trade not in `quoted`, or another quote won first.
        """
        trade = await self._get_trade_or_raise(trade_id)
        role = self._require_role(actor, trade, TradeStatus.QUOTE_ACCEPTED)

        quote = await self._quote_repo.get_by_id(quote_id)
        if quote is None or quote.trade_id != trade.id:
            raise QuoteNotFoundError(str(quote_id))

        if trade.accepted_quote_id is not None or quote.status != QuoteStatus.SUBMITTED:
            raise InvalidStateError(
                trade.status,
                TradeStatus.QUOTE_ACCEPTED.value,
                message="Another quote was already accepted for this trade",
            )

        trade = await self._apply_transition(
            trade,
            TradeStatus.QUOTE_ACCEPTED,
            actor,
            role,
            {
                "accepted_quote_id": str(quote.id),
                "unit_price": str(quote.unit_price),
                "total_price": str(quote.total_price),
                "lead_time_days": quote.lead_time_days,
                "incoterms": quote.incoterms,
            },
            seller_company_id=quote.supplier_company_id,
            accepted_quote_id=quote.id,
            total_value=quote.total_price,
            currency=quote.currency,
            race_message="Another quote was already accepted for this trade",
        )

        if not await self._quote_repo.mark_accepted(quote.id):
            raise InvalidStateError(
                quote.status,
                QuoteStatus.ACCEPTED.value,
                message="Quote is no longer open for acceptance",
            )
        superseded = await self._quote_repo.supersede_others(trade.id, quote.id)

        logger.info(
            "trade.quote_accepted",
            trade_id=str(trade.id),
            quote_id=str(quote.id),
            superseded=superseded,
        )
        return trade

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def transition_trade(
        self,
        trade_id: uuid.UUID,
        target: TradeStatus,
        actor: Actor,
        metadata_patch: dict | None = None,
    ) -> Trade:
        """Move a trade along one edge of the lifecycle graph.

        Validates the edge, the actor's role for the target state and the
        escrow entry condition, then persists with a conditional update.

        Raises:
            InvalidStateError: Edge not in the graph, or the trade moved concurrently.
            PermissionDeniedError: Actor may not move the trade into `target`.
            PreconditionNotMetError: Escrow is not in the status `target` requires.
            IntegrityError: `target` requires an escrow row and none exists.
        """
        trade = await self._get_trade_or_raise(trade_id)
        role = self._require_role(actor, trade, target)
        return await self._apply_transition(trade, target, actor, role, metadata_patch or {})

    async def request_transition(
        self,
        trade_id: uuid.UUID,
        target: TradeStatus,
        actor: Actor,
        metadata_patch: dict | None = None,
    ) -> Trade:
        """A caller-requested transition; refuses targets owned by a dedicated operation."""
        if target in DEDICATED_TARGETS:
            trade = await self._get_trade_or_raise(trade_id)
            raise InvalidStateError(
                trade.status,
                target.value,
                message=f"To move a trade to {target.value}, {DEDICATED_TARGETS[target]}",
            )
        return await self.transition_trade(trade_id, target, actor, metadata_patch)

    async def confirm_delivery(
        self,
        trade_id: uuid.UUID,
        actor: Actor,
        goods_received: bool,
        escrow_release_understood: bool,
    ) -> Trade:
        """Buyer confirms delivery: delivered -> accepted (escrow released) -> settled.

        Both steps run in the caller's single transaction; if the escrow
        release or the settlement fails, nothing is persisted.
        """
        trade = await self._get_trade_or_raise(trade_id)

        if actor.is_system or actor.company_id is None or actor.company_id != trade.buyer_company_id:
            raise PermissionDeniedError("Only the trade's buyer can confirm delivery")
        if trade.status != TradeStatus.DELIVERED:
            # disputed -> accepted belongs to the admin resolving the dispute.
            raise InvalidStateError(
                trade.status,
                TradeStatus.ACCEPTED.value,
                message=f"Delivery can only be confirmed on a delivered trade, not {trade.status}",
            )

        missing = []
        if not goods_received:
            missing.append("goods_received")
        if not escrow_release_understood:
            missing.append("escrow_release_understood")
        if missing:
            raise PreconditionNotMetError(
                missing,
                message=f"Delivery confirmation requires explicit consent: {', '.join(missing)}",
            )

        now = datetime.now(UTC).isoformat()
        trade = await self._apply_transition(
            trade,
            TradeStatus.ACCEPTED,
            actor,
            ActorRole.BUYER,
            {
                "delivery_confirmed_at": now,
                "goods_received_confirmed": True,
                "escrow_release_acknowledged": True,
            },
        )
        trade = await self._apply_transition(
            trade, TradeStatus.SETTLED, actor, ActorRole.BUYER, {"settled_at": now}
        )
        logger.info("trade.delivery_confirmed", trade_id=str(trade.id))
        return trade

    async def report_issue(
        self,
        trade_id: uuid.UUID,
        actor: Actor,
        reason: str,
        evidence: list[str] | None = None,
    ) -> Dispute:
        """Move a funded trade to `disputed` and open a dispute. Escrow stays held."""
        if not reason or not reason.strip():
            raise PreconditionNotMetError(["reason"])

        trade = await self._get_trade_or_raise(trade_id)
        role = self._require_role(actor, trade, TradeStatus.DISPUTED)

        dispute_id = uuid.uuid4()
        await self._apply_transition(
            trade,
            TradeStatus.DISPUTED,
            actor,
            role,
            {"dispute_id": str(dispute_id), "dispute_reason": reason.strip()},
        )
        dispute = await self._dispute_repo.create(
            Dispute(
                id=dispute_id,
                trade_id=trade.id,
                raised_by_company_id=actor.company_id,
                raised_by_user_id=actor.user_id,
                reason=reason.strip(),
                evidence=list(evidence or []),
                status=DisputeStatus.OPEN.value,
            )
        )
        logger.info(
            "trade.issue_reported",
            trade_id=str(trade.id),
            dispute_id=str(dispute.id),
            by=actor.audit_id,
        )
        return dispute

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    async def get_trade(self, trade_id: uuid.UUID, actor: Actor | None = None) -> Trade:
        """Get a trade or raise. With an actor, also require them to be a party."""
        trade = await self._get_trade_or_raise(trade_id)
        if actor is not None:
            self._require_party(actor, trade)
        return trade

    async def get_status(self, trade_id: uuid.UUID, actor: Actor | None = None) -> dict:
        """Get trade status with the states reachable in one step."""
        trade = await self.get_trade(trade_id, actor)
        sm = TradeStateMachine(trade.status)
        return {
            "trade_id": trade.id,
            "status": trade.status,
            "previous_state": trade.previous_state,
            "transition_hash": trade.transition_hash,
            "allowed_next_states": sm.allowed_targets(),
        }

    async def get_events(self, trade_id: uuid.UUID, actor: Actor | None = None) -> list[TradeEvent]:
        """Get audit trail."""
        await self.get_trade(trade_id, actor)
        return await self._event_repo.get_by_trade(trade_id)

    async def get_quotes(self, trade_id: uuid.UUID) -> list[Quote]:
        return await self._quote_repo.get_by_trade(trade_id)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _get_trade_or_raise(self, trade_id: uuid.UUID) -> Trade:
        trade = await self._trade_repo.get_by_id(trade_id)
        if trade is None:
            raise TradeNotFoundError(str(trade_id))
        return trade

    def _require_party(self, actor: Actor, trade: Trade) -> ActorRole:
        role = resolve_role(actor, trade.buyer_company_id, trade.seller_company_id)
        if role is None:
            raise PermissionDeniedError("You are not a party to this trade")
        return role

    def _require_role(self, actor: Actor, trade: Trade, target: TradeStatus) -> ActorRole:
        role = self._require_party(actor, trade)
        if not role_may_enter(role, target):
            raise PermissionDeniedError(
                f"A {role.value} cannot move a trade to {target.value}"
            )
        return role

    async def _check_escrow_entry(self, trade: Trade, target: TradeStatus) -> None:
        required = ESCROW_ENTRY_CONDITIONS.get(target)
        if required is None:
            return
        escrow = await self._escrow_repo.get_by_trade(trade.id)
        if escrow is None:
            logger.critical(
                "trade.escrow_missing",
                trade_id=str(trade.id),
                target=target.value,
            )
            raise IntegrityError(f"Trade {trade.id} has no escrow record")
        if escrow.status != required:
            raise PreconditionNotMetError(
                [f"escrow_{required.value}"],
                message=(
                    f"Trade cannot move to {target.value} while escrow is {escrow.status} "
                    f"(requires {required.value})"
                ),
            )

    async def _check_close(self, trade: Trade) -> None:
        """Held funds and live disputes must be settled before a trade closes."""
        escrow = await self._escrow_repo.get_by_trade(trade.id)
        if escrow is not None and escrow.status == EscrowStatus.HELD:
            raise PreconditionNotMetError(
                ["escrow_released_or_refunded"],
                message="Trade cannot close while its escrow holds funds",
            )
        dispute = await self._dispute_repo.get_latest_for_trade(trade.id)
        if dispute is not None and dispute.status in UNSETTLED_DISPUTE_STATES:
            raise PreconditionNotMetError(
                ["dispute_resolved"],
                message=f"Trade cannot close while dispute {dispute.id} is {dispute.status}",
            )

    async def _apply_transition(
        self,
        trade: Trade,
        target: TradeStatus,
        actor: Actor,
        role: ActorRole | None,
        metadata_patch: dict,
        race_message: str | None = None,
        **values: object,
    ) -> Trade:
        current = TradeStatus(trade.status)
        validate_trade_transition(current.value, target.value)
        await self._check_escrow_entry(trade, target)
        if target == TradeStatus.CLOSED:
            await self._check_close(trade)

        now = datetime.now(UTC)
        transition_hash = compute_transition_hash(
            str(trade.id), current.value, target.value, actor.audit_id, metadata_patch, now
        )
        merged = {**(trade.metadata_json or {}), **metadata_patch}

        won = await self._trade_repo.transition_status(
            trade.id,
            current.value,
            target.value,
            previous_state=current.value,
            transition_hash=transition_hash,
            metadata_json=merged,
            **values,
        )
        if not won:
            logger.info(
                "trade.transition_lost_race",
                trade_id=str(trade.id),
                expected=current.value,
                target=target.value,
            )
            raise InvalidStateError(
                current.value,
                target.value,
                message=race_message or (
                    f"Trade {trade.id} is no longer in {current.value}; reload and retry"
                ),
            )

        await self._event_repo.record(
            trade_id=trade.id,
            event_type="STATE_TRANSITION",
            from_state=current.value,
            to_state=target.value,
            actor_id=actor.audit_id,
            actor_role=(role or ActorRole.SYSTEM).value,
            transition_hash=transition_hash,
            metadata=metadata_patch or None,
        )

        updated = await self._get_trade_or_raise(trade.id)
        logger.info(
            "trade.transitioned",
            trade_id=str(trade.id),
            from_state=current.value,
            to_state=target.value,
            actor=actor.audit_id,
            transition_hash=transition_hash,
        )

        event = TradeTransition(
            trade=updated,
            from_state=current,
            to_state=target,
            actor=actor,
            transition_hash=transition_hash,
            metadata_patch=metadata_patch,
        )
        for listener in self._listeners:
            await listener(event)

        return await self._get_trade_or_raise(trade.id)
