"""Commission calculation for escrowed trades.

The platform earns only on completed deals. Rates are percentages:
assisted deals pay the assisted rate; otherwise deals at or above the
high-value threshold pay the high-value rate; everything else pays the
standard rate. A minimum fee applies, capped at the deal value.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

_CENT = Decimal("0.01")


@dataclass(frozen=True)
class CommissionRates:
    standard: Decimal = Decimal("8")
    assisted: Decimal = Decimal("12")
    high_value: Decimal = Decimal("5")
    high_value_threshold: Decimal = Decimal("50000")
    minimum: Decimal = Decimal("50")


@dataclass(frozen=True)
class CommissionBreakdown:
    deal_value: Decimal
    rate: Decimal
    commission_amount: Decimal
    seller_payout: Decimal
    minimum_applied: bool


def calculate_commission(
    deal_value: Decimal,
    assisted: bool = False,
    rates: CommissionRates | None = None,
) -> CommissionBreakdown:
    """Compute the platform fee and the seller's net payout for a deal."""
    rates = rates or CommissionRates()

    if assisted:
        rate = rates.assisted
    elif deal_value >= rates.high_value_threshold:
        rate = rates.high_value
    else:
        rate = rates.standard

    raw = (deal_value * rate / Decimal(100)).quantize(_CENT, rounding=ROUND_HALF_UP)
    commission = min(max(raw, rates.minimum), deal_value)

    return CommissionBreakdown(
        deal_value=deal_value,
        rate=rate,
        commission_amount=commission,
        seller_payout=deal_value - commission,
        minimum_applied=commission != raw,
    )
