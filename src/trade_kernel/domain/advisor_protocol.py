"""Narrative Advisor Protocol.

Defines the interface that dispute narrative advisors must implement.
This is a Protocol (structural subtyping) so concrete advisors don't need
to inherit from a base class, they just need to match the shape.

The domain layer has ZERO imports from LiteLLM or any external service.
An advisor's output is untrusted advisory text: the dispute engine validates
it against the closed Verdict enum and the deterministic policy always has
the last word on refunds.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Protocol, runtime_checkable

from trade_kernel.domain.enums import Verdict

FALLBACK_REASONING = "AI analysis unavailable. Policy engine fallback used."
FALLBACK_ACTION = "Escalate to human support for manual verification."


@dataclass(frozen=True)
class CaseFacts:
    """Input to an advisor: the facts the policy was computed from.

    Attributes:
        dispute_id: UUID of the dispute being judged.
        trade_id: UUID of the underlying trade.
        days_overdue: Whole days past the shipment's estimated delivery date.
        has_recent_movement: Whether a movement event exists inside the window.
        amount: Trade value.
        currency: ISO currency code of the trade.
        buyer: Display reference for the buying company.
        seller: Display reference for the selling company.
        reason: Free-text reason given when the issue was reported.
        evidence: Evidence references attached to the dispute.
    """

    dispute_id: str
    trade_id: str
    days_overdue: int
    has_recent_movement: bool
    amount: Decimal
    currency: str
    buyer: str
    seller: str
    reason: str = ""
    evidence: tuple[str, ...] = ()


@dataclass(frozen=True)
class AdvisorVerdict:
    """Structured verdict, either from an advisor or after the policy override.

    Attributes:
        verdict: One of the closed Verdict values.
        confidence: 0.0 - 1.0.
        reasoning: Human-readable narrative.
        recommended_action: Concrete next step.
        missing_evidence: Information that would help a human reviewer.
    """

    verdict: Verdict
    confidence: float = 0.0
    reasoning: str = ""
    recommended_action: str = ""
    missing_evidence: tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict:
        """Serialize for storage in the disputes.ai_verdict JSON column."""
        data = {
            "verdict": self.verdict.value,
            "confidence": self.confidence,
            "reasoning": self.reasoning,
            "recommended_action": self.recommended_action,
        }
        if self.missing_evidence:
            data["missing_evidence"] = list(self.missing_evidence)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> AdvisorVerdict:
        return cls(
            verdict=Verdict(data["verdict"]),
            confidence=float(data.get("confidence", 0.0)),
            reasoning=data.get("reasoning", ""),
            recommended_action=data.get("recommended_action", ""),
            missing_evidence=tuple(data.get("missing_evidence") or ()),
        )

    @classmethod
    def fallback(cls) -> AdvisorVerdict:
        """The verdict used when the generative-text service is unavailable."""
        return cls(
            verdict=Verdict.MANUAL_REVIEW,
            confidence=0.0,
            reasoning=FALLBACK_REASONING,
            recommended_action=FALLBACK_ACTION,
        )


@runtime_checkable
class NarrativeAdvisor(Protocol):
    """Protocol that all narrative advisors must satisfy.

    Concrete implementations:
        - advisors/llm_advisor.py  (LiteLLM)
        - advisors/__init__.py     (StaticNarrativeAdvisor, dry runs)

    Implementations must never raise: on any failure they return
    AdvisorVerdict.fallback().
    """

    async def advise(self, facts: CaseFacts) -> AdvisorVerdict:
        """Produce a narrative verdict for the case facts."""
        ...
