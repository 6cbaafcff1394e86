"""
Profitability and risk analysis of a computed quote.

Rules:
- Margin >= 20%: profitability Good, otherwise suggest raising markup
- Margin < 15%: High risk, and a risk factor is recorded
- More than 10 lines: verify stock availability
- Grand total > 50,000: review payment terms
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import List

from .money import ZERO, quantize
from .quote_builder import ComputedQuote

GOOD_MARGIN_PERCENT = Decimal("20")
LOW_MARGIN_PERCENT = Decimal("15")
LARGE_ORDER_LINES = 10
HIGH_VALUE_TOTAL = Decimal("50000")


class RiskLevel(Enum):
    """Commercial risk of a quote."""
    LOW = "low"
    HIGH = "high"


@dataclass(frozen=True)
class QuoteAnalysis:
    """Summary of how healthy a quote looks commercially."""
    gross_margin_percent: Decimal
    profitability: str
    risk_level: RiskLevel
    average_percent: Decimal
    order_value: Decimal
    customer_tier: str
    service_recommendation: str
    risk_factors: List[str] = field(default_factory=list)


def analyze_quote(quote: ComputedQuote, customer_tier: str = "standard") -> QuoteAnalysis:
    """Analyze a computed quote.

    Args:
        quote: The computed quote
        customer_tier: Tier of the customer the quote is for

    Returns:
        QuoteAnalysis with recommendations and risk factors
    """
    margin = quote.totals.gross_margin_percent
    lines = quote.line_items

    if lines:
        average = quantize(sum((line.percent_used for line in lines), ZERO) / len(lines), 2)
    else:
        average = quantize(ZERO, 2)

    risk_factors = []
    if margin < LOW_MARGIN_PERCENT:
        risk_factors.append("Low margin - consider price adjustment")
    if len(lines) > LARGE_ORDER_LINES:
        risk_factors.append("Large order - verify stock availability")
    if quote.totals.grand_total > HIGH_VALUE_TOTAL:
        risk_factors.append("High value order - consider payment terms")

    return QuoteAnalysis(
        gross_margin_percent=margin,
        profitability="Good" if margin >= GOOD_MARGIN_PERCENT else "Consider increasing markup",
        risk_level=RiskLevel.HIGH if margin < LOW_MARGIN_PERCENT else RiskLevel.LOW,
        average_percent=average,
        order_value=quote.totals.grand_total,
        customer_tier=customer_tier,
        service_recommendation=(
            "Consider additional services" if customer_tier == "premium" else "Standard service level"
        ),
        risk_factors=risk_factors,
    )
