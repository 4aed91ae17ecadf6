"""LLMNarrativeAdvisor: asks a generative-text model to explain a dispute.

The model writes the narrative (reasoning, recommended action, missing
evidence) and proposes a verdict. The proposal is untrusted: wrapping text
is stripped before parsing, the verdict must be a member of the Verdict
enum, and the deterministic policy overrides it whenever that rule triggers.

Advice flow:
    1. Build a structured prompt from the computed case facts.
    2. Call the LLM via LiteLLM (temperature 0, JSON-only answer).
    3. Strip code fences and surrounding prose, extract the JSON object.
    4. Validate with pydantic; an unknown verdict becomes MANUAL_REVIEW.

Any failure (timeout, network, empty or unparseable output) yields the
MANUAL_REVIEW fallback verdict. The advisor never raises.
"""

from __future__ import annotations

import asyncio
import json
import re

import litellm
from pydantic import BaseModel, Field, ValidationError, field_validator
from tenacity import retry, stop_after_attempt, wait_exponential

from trade_kernel.config import get_settings
from trade_kernel.domain.advisor_protocol import AdvisorVerdict, CaseFacts
from trade_kernel.domain.enums import Verdict
from trade_kernel.logging_config import get_logger

logger = get_logger(__name__)

# --- Advisor System Prompt ---
ADVISOR_SYSTEM_PROMPT = """You are an impartial dispute advisor for a B2B trade marketplace.

Analyze the trade dispute and provide a narrative reasoning.

POLICY RULE: If shipment is > 14 days overdue AND no tracking updates for > 7 days, it is a REFUND.

You MUST respond with a single JSON object and nothing else:
{
    "verdict": "REFUND_BUYER" | "WAIT_FOR_SELLER" | "MANUAL_REVIEW",
    "confidence": number between 0.0 and 1.0,
    "reasoning": "Legal-style narrative explanation",
    "recommended_action": "Specific next steps",
    "missing_evidence": ["what information would help?"]
}
"""

ADVISOR_USER_TEMPLATE = """## Case Details
- Overdue: {days_overdue} days
- Last tracking update: {movement}
- Trade value: {currency} {amount}
- Parties: {buyer} (Buyer) vs {seller} (Seller)

## Reported Issue
{reason}

## Evidence
{evidence}"""

_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)


class _AdvisorPayload(BaseModel):
    """Shape the model is asked to produce. Unknown verdicts are coerced."""

    verdict: Verdict = Verdict.MANUAL_REVIEW
    confidence: float = 0.0
    reasoning: str = ""
    recommended_action: str = ""
    missing_evidence: list[str] = Field(default_factory=list)

    @field_validator("verdict", mode="before")
    @classmethod
    def _coerce_verdict(cls, value: object) -> object:
        if isinstance(value, str) and value.strip().upper() in Verdict.__members__:
            return value.strip().upper()
        return Verdict.MANUAL_REVIEW

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value: object) -> float:
        try:
            number = float(value)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return 0.0
        return max(0.0, min(1.0, number))

    @field_validator("missing_evidence", mode="before")
    @classmethod
    def _listify(cls, value: object) -> list:
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return list(value)  # type: ignore[call-overload]


def extract_json_object(text: str) -> dict:
    """Strip code fences and prose around the first {...} block and parse it.

    Raises:
        ValueError: If no JSON object can be found or decoded.
    """
    cleaned = _FENCE_RE.sub("", text).strip()
    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start == -1 or end <= start:
        raise ValueError("No JSON object in advisor output")
    data = json.loads(cleaned[start : end + 1])
    if not isinstance(data, dict):
        raise ValueError("Advisor output is not a JSON object")
    return data


def parse_advisor_output(text: str) -> AdvisorVerdict:
    """Turn raw model output into a validated AdvisorVerdict.

    Raises:
        ValueError: If the output holds no usable JSON object.
    """
    try:
        payload = _AdvisorPayload.model_validate(extract_json_object(text))
    except ValidationError as exc:
        raise ValueError(f"Advisor output failed validation: {exc}") from exc
    return AdvisorVerdict(
        verdict=payload.verdict,
        confidence=payload.confidence,
        reasoning=payload.reasoning,
        recommended_action=payload.recommended_action,
        missing_evidence=tuple(payload.missing_evidence),
    )


class LLMNarrativeAdvisor:
    """Narrative advisor backed by LiteLLM (Gemini, GPT-4o, Llama, ...)."""

    def __init__(
        self,
        model: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
        timeout_seconds: float | None = None,
    ) -> None:
        """Initialize with optional overrides (defaults come from config)."""
        self._model = model
        self._max_tokens = max_tokens
        self._temperature = temperature
        self._timeout_seconds = timeout_seconds

    def _get_model_config(self) -> dict:
        """Resolve model configuration from overrides or settings."""
        settings = get_settings()
        return {
            "model": self._model or settings.litellm_model,
            "fallback_models": settings.litellm_fallback_model_list,
            "max_tokens": self._max_tokens or settings.litellm_max_tokens,
            "temperature": (
                self._temperature if self._temperature is not None else settings.litellm_temperature
            ),
            "timeout": self._timeout_seconds or settings.advisor_timeout_seconds,
        }

    async def advise(self, facts: CaseFacts) -> AdvisorVerdict:
        """Ask the model for a narrative verdict on the case facts.

        Returns:
            The validated verdict, or AdvisorVerdict.fallback() on any failure.
        """
        config = self._get_model_config()
        logger.info(
            "advisor.llm.start",
            dispute_id=facts.dispute_id,
            model=config["model"],
            days_overdue=facts.days_overdue,
        )

        try:
            raw = await asyncio.wait_for(self._call_llm(facts), timeout=config["timeout"])
            advice = parse_advisor_output(raw)
        except TimeoutError:
            logger.warning(
                "advisor.llm.timeout",
                dispute_id=facts.dispute_id,
                timeout=config["timeout"],
            )
            return AdvisorVerdict.fallback()
        except Exception as exc:
            logger.warning(
                "advisor.llm.error",
                dispute_id=facts.dispute_id,
                error=str(exc),
            )
            return AdvisorVerdict.fallback()

        logger.info(
            "advisor.llm.result",
            dispute_id=facts.dispute_id,
            verdict=advice.verdict.value,
            confidence=advice.confidence,
        )
        return advice

    @retry(
        stop=stop_after_attempt(2),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=2),
        reraise=True,
    )
    async def _call_llm(self, facts: CaseFacts) -> str:
        """Call the LLM via LiteLLM with retry logic.

        Uses tenacity for backoff on transient failures; the caller's timeout
        bounds the whole retry loop.
        """
        config = self._get_model_config()

        user_message = ADVISOR_USER_TEMPLATE.format(
            days_overdue=facts.days_overdue,
            movement="Recent" if facts.has_recent_movement else "None in 7 days",
            currency=facts.currency,
            amount=facts.amount,
            buyer=facts.buyer,
            seller=facts.seller,
            reason=facts.reason or "(not provided)",
            evidence="\n".join(f"- {e}" for e in facts.evidence) or "(none)",
        )

        response = await litellm.acompletion(
            model=config["model"],
            messages=[
                {"role": "system", "content": ADVISOR_SYSTEM_PROMPT},
                {"role": "user", "content": user_message},
            ],
            max_tokens=config["max_tokens"],
            temperature=config["temperature"],
            fallbacks=config["fallback_models"] or None,
        )

        content = response.choices[0].message.content
        if not content:
            raise ValueError("LLM returned empty response")

        return content.strip()
