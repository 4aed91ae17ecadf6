"""Who is acting on a trade, and in what capacity."""

from __future__ import annotations

import uuid
from dataclasses import dataclass

from trade_kernel.domain.enums import ActorRole

SYSTEM_ACTOR_ID = "SYSTEM"


@dataclass(frozen=True)
class Actor:
    """An authenticated user (from JWT claims) or the system itself.

    Attributes:
        user_id: The user's id; None for the system actor.
        company_id: The company the user acts for, if any.
        is_admin: Platform admin flag.
        is_system: True for webhooks and engine-driven transitions.
    """

    user_id: uuid.UUID | None
    company_id: uuid.UUID | None = None
    is_admin: bool = False
    is_system: bool = False

    @classmethod
    def system(cls) -> Actor:
        return cls(user_id=None, is_system=True)

    @property
    def audit_id(self) -> str:
        """Identifier written to audit rows."""
        if self.is_system or self.user_id is None:
            return SYSTEM_ACTOR_ID
        return str(self.user_id)


def resolve_role(
    actor: Actor,
    buyer_company_id: uuid.UUID | None,
    seller_company_id: uuid.UUID | None,
) -> ActorRole | None:
    """Return the capacity in which `actor` touches a trade, or None if unrelated."""
    if actor.is_system:
        return ActorRole.SYSTEM
    if actor.is_admin:
        return ActorRole.ADMIN
    if actor.company_id is not None:
        if actor.company_id == buyer_company_id:
            return ActorRole.BUYER
        if actor.company_id == seller_company_id:
            return ActorRole.SELLER
    return None
