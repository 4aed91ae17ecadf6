"""Narrative advisor implementations and factory.

Two advisors:
    - LLMNarrativeAdvisor:     Generative-text narrative via LiteLLM
    - StaticNarrativeAdvisor:  Instant configurable verdict for dry runs

The AdvisorFactory creates the advisor named by the `advisor_mode` setting.
"""

from __future__ import annotations

from trade_kernel.advisors.llm_advisor import LLMNarrativeAdvisor
from trade_kernel.domain.advisor_protocol import (
    AdvisorVerdict,
    CaseFacts,
    NarrativeAdvisor,
)
from trade_kernel.domain.enums import Verdict


class StaticNarrativeAdvisor:
    """Instant advisor for dry-run simulations and tests.

    Returns the configured verdict with zero network calls. The default is
    MANUAL_REVIEW, so without the deterministic policy nothing is refunded.
    """

    def __init__(
        self,
        verdict: Verdict = Verdict.MANUAL_REVIEW,
        confidence: float = 0.5,
        reasoning: str | None = None,
    ) -> None:
        self._verdict = verdict
        self._confidence = confidence
        self._reasoning = reasoning

    async def advise(self, facts: CaseFacts) -> AdvisorVerdict:
        reasoning = self._reasoning or (
            f"Static advisor (dry-run): shipment is {facts.days_overdue} days overdue, "
            f"{'with' if facts.has_recent_movement else 'without'} recent tracking movement."
        )
        return AdvisorVerdict(
            verdict=self._verdict,
            confidence=self._confidence,
            reasoning=reasoning,
            recommended_action="Review the case file.",
        )


class AdvisorFactory:
    """Factory that creates the advisor for a mode string.

    Usage:
        advisor = AdvisorFactory.create("llm")
        verdict = await advisor.advise(facts)
    """

    _registry: dict[str, type] = {
        "llm": LLMNarrativeAdvisor,
        "static": StaticNarrativeAdvisor,
    }

    @classmethod
    def create(cls, mode: str) -> NarrativeAdvisor:
        """Create an advisor instance for `mode`.

        Raises:
            ValueError: If the mode is unknown.
        """
        advisor_class = cls._registry.get(mode)
        if advisor_class is None:
            raise ValueError(
                f"Unknown advisor mode: '{mode}'. Valid modes: {list(cls._registry.keys())}"
            )
        return advisor_class()

    @classmethod
    def get_supported_modes(cls) -> list[str]:
        return list(cls._registry.keys())


__all__ = [
    "AdvisorFactory",
    "LLMNarrativeAdvisor",
    "StaticNarrativeAdvisor",
]
