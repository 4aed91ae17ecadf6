"""Unit tests for the LLMNarrativeAdvisor.

Uses mocked LiteLLM responses to test parsing and edge cases
without hitting a real LLM API.
"""

from __future__ import annotations

import asyncio
import json
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from trade_kernel.advisors.llm_advisor import (
    LLMNarrativeAdvisor,
    extract_json_object,
    parse_advisor_output,
)
from trade_kernel.domain.advisor_protocol import FALLBACK_REASONING, CaseFacts
from trade_kernel.domain.enums import Verdict


def _make_facts(days_overdue: int = 16, moved: bool = False) -> CaseFacts:
    return CaseFacts(
        dispute_id="dispute-001",
        trade_id="trade-001",
        days_overdue=days_overdue,
        has_recent_movement=moved,
        amount=Decimal("10000.00"),
        currency="USD",
        buyer="Acme Foods",
        seller="Kano Agro",
        reason="Container never arrived",
        evidence=("bill_of_lading.pdf",),
    )


def _mock_llm_response(content: str | None) -> MagicMock:
    """Create a mock LiteLLM completion response."""
    mock_resp = MagicMock()
    mock_resp.choices = [MagicMock()]
    mock_resp.choices[0].message.content = content
    return mock_resp


_GOOD_ANSWER = json.dumps(
    {
        "verdict": "WAIT_FOR_SELLER",
        "confidence": 0.72,
        "reasoning": "The carrier reports the vessel is delayed at transshipment.",
        "recommended_action": "Ask the seller for an updated ETA.",
        "missing_evidence": ["carrier delay notice"],
    }
)


class TestOutputParsing:
    def test_plain_json(self) -> None:
        advice = parse_advisor_output(_GOOD_ANSWER)
        assert advice.verdict == Verdict.WAIT_FOR_SELLER
        assert advice.confidence == 0.72
        assert advice.missing_evidence == ("carrier delay notice",)

    def test_code_fences_and_prose_stripped(self) -> None:
        text = f"Here is my analysis:\n```json\n{_GOOD_ANSWER}\n```\nHope this helps."
        assert parse_advisor_output(text).verdict == Verdict.WAIT_FOR_SELLER

    def test_unknown_verdict_becomes_manual_review(self) -> None:
        advice = parse_advisor_output('{"verdict": "SPLIT_THE_DIFFERENCE", "confidence": 0.9}')
        assert advice.verdict == Verdict.MANUAL_REVIEW

    def test_lowercase_verdict_accepted(self) -> None:
        assert parse_advisor_output('{"verdict": "refund_buyer"}').verdict == Verdict.REFUND_BUYER

    def test_confidence_clamped(self) -> None:
        assert parse_advisor_output('{"verdict": "REFUND_BUYER", "confidence": 1.7}').confidence == 1.0
        assert parse_advisor_output('{"verdict": "REFUND_BUYER", "confidence": -2}').confidence == 0.0
        assert parse_advisor_output('{"verdict": "REFUND_BUYER", "confidence": "high"}').confidence == 0.0

    def test_missing_evidence_string_listified(self) -> None:
        advice = parse_advisor_output('{"verdict": "MANUAL_REVIEW", "missing_evidence": "invoice"}')
        assert advice.missing_evidence == ("invoice",)

    def test_no_json_raises(self) -> None:
        with pytest.raises(ValueError, match="No JSON object"):
            extract_json_object("I cannot decide this case.")

    def test_json_array_rejected(self) -> None:
        with pytest.raises(ValueError):
            extract_json_object("[1, 2, 3]")


class TestLLMNarrativeAdvisor:
    @pytest.mark.asyncio
    async def test_verdict_parsed(self) -> None:
        advisor = LLMNarrativeAdvisor(model="test/model")

        with patch("trade_kernel.advisors.llm_advisor.litellm") as mock_litellm:
            mock_litellm.acompletion = AsyncMock(return_value=_mock_llm_response(_GOOD_ANSWER))
            advice = await advisor.advise(_make_facts())

        assert advice.verdict == Verdict.WAIT_FOR_SELLER
        assert "transshipment" in advice.reasoning

    @pytest.mark.asyncio
    async def test_prompt_carries_case_facts(self) -> None:
        advisor = LLMNarrativeAdvisor(model="test/model", temperature=0.0)

        with patch("trade_kernel.advisors.llm_advisor.litellm") as mock_litellm:
            mock_litellm.acompletion = AsyncMock(return_value=_mock_llm_response(_GOOD_ANSWER))
            await advisor.advise(_make_facts(days_overdue=21))

        kwargs = mock_litellm.acompletion.call_args.kwargs
        assert kwargs["model"] == "test/model"
        assert kwargs["temperature"] == 0.0
        user_message = kwargs["messages"][1]["content"]
        assert "Overdue: 21 days" in user_message
        assert "None in 7 days" in user_message
        assert "Container never arrived" in user_message
        assert "- bill_of_lading.pdf" in user_message

    @pytest.mark.asyncio
    async def test_error_returns_fallback(self) -> None:
        advisor = LLMNarrativeAdvisor(model="test/model")

        with patch("trade_kernel.advisors.llm_advisor.litellm") as mock_litellm:
            mock_litellm.acompletion = AsyncMock(side_effect=RuntimeError("API down"))
            advice = await advisor.advise(_make_facts())

        assert advice.verdict == Verdict.MANUAL_REVIEW
        assert advice.confidence == 0.0
        assert advice.reasoning == FALLBACK_REASONING
        # One retry before giving up
        assert mock_litellm.acompletion.call_count == 2

    @pytest.mark.asyncio
    async def test_empty_response_returns_fallback(self) -> None:
        advisor = LLMNarrativeAdvisor(model="test/model")

        with patch("trade_kernel.advisors.llm_advisor.litellm") as mock_litellm:
            mock_litellm.acompletion = AsyncMock(return_value=_mock_llm_response(""))
            advice = await advisor.advise(_make_facts())

        assert advice.verdict == Verdict.MANUAL_REVIEW

    @pytest.mark.asyncio
    async def test_garbage_returns_fallback(self) -> None:
        advisor = LLMNarrativeAdvisor(model="test/model")

        with patch("trade_kernel.advisors.llm_advisor.litellm") as mock_litellm:
            mock_litellm.acompletion = AsyncMock(
                return_value=_mock_llm_response("The buyer is clearly right.")
            )
            advice = await advisor.advise(_make_facts())

        assert advice.reasoning == FALLBACK_REASONING

    @pytest.mark.asyncio
    async def test_timeout_returns_fallback(self) -> None:
        advisor = LLMNarrativeAdvisor(model="test/model", timeout_seconds=0.05)

        async def _hang(**kwargs: object) -> MagicMock:
            await asyncio.sleep(5)
            return _mock_llm_response(_GOOD_ANSWER)

        with patch("trade_kernel.advisors.llm_advisor.litellm") as mock_litellm:
            mock_litellm.acompletion = _hang
            advice = await advisor.advise(_make_facts())

        assert advice.verdict == Verdict.MANUAL_REVIEW
        assert advice.reasoning == FALLBACK_REASONING
