"""
Approval thresholds for computed quotes.

Decides whether a quote can be sent as-is or needs a manager's approval.

Check Order:
1. Gross margin below the minimum
2. Order discount above the maximum share of the subtotal
3. Grand total above the approval limit
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum, auto
from typing import List, Optional

from .money import HUNDRED, quantize
from .quote_builder import ComputedQuote


class ApprovalReason(Enum):
    """Why a quote needs approval."""
    LOW_MARGIN = auto()
    EXCESSIVE_DISCOUNT = auto()
    HIGH_VALUE = auto()


@dataclass(frozen=True)
class ApprovalThresholds:
    """Limits above or below which a quote needs manager approval.

    A threshold set to None is not checked.
    """
    min_margin_percent: Optional[Decimal] = Decimal("15")
    max_discount_percent: Optional[Decimal] = Decimal("20")
    require_approval_above: Optional[Decimal] = Decimal("10000")

    def __post_init__(self):
        """Validate threshold values."""
        if self.max_discount_percent is not None and not 0 <= self.max_discount_percent <= HUNDRED:
            raise ValueError("max_discount_percent must be between 0 and 100")
        if self.require_approval_above is not None and self.require_approval_above < 0:
            raise ValueError("require_approval_above cannot be negative")


@dataclass
class ApprovalCheck:
    """Result of checking a quote against approval thresholds."""
    reasons: List[ApprovalReason] = field(default_factory=list)
    messages: List[str] = field(default_factory=list)

    @property
    def requires_approval(self) -> bool:
        return bool(self.reasons)


def check_approval_requirements(quote: ComputedQuote, thresholds: ApprovalThresholds) -> ApprovalCheck:
    """Check a computed quote against approval thresholds.

    Args:
        quote: The computed quote
        thresholds: Approval thresholds in effect

    Returns:
        ApprovalCheck listing every threshold that was crossed
    """
    check = ApprovalCheck()
    totals = quote.totals

    # 1. Margin floor
    if (thresholds.min_margin_percent is not None and
            totals.gross_margin_percent < thresholds.min_margin_percent):
        check.reasons.append(ApprovalReason.LOW_MARGIN)
        check.messages.append(
            f"Gross margin {totals.gross_margin_percent}% is below the "
            f"minimum of {thresholds.min_margin_percent}%"
        )

    # 2. Discount ceiling, as a share of the subtotal
    if thresholds.max_discount_percent is not None and totals.discount > 0:
        discount_percent = quantize(totals.discount / max(totals.subtotal, Decimal(1)) * HUNDRED, 2)
        if discount_percent > thresholds.max_discount_percent:
            check.reasons.append(ApprovalReason.EXCESSIVE_DISCOUNT)
            check.messages.append(
                f"Discount {discount_percent}% of subtotal exceeds the "
                f"maximum of {thresholds.max_discount_percent}%"
            )

    # 3. Order value ceiling
    if (thresholds.require_approval_above is not None and
            totals.grand_total > thresholds.require_approval_above):
        check.reasons.append(ApprovalReason.HIGH_VALUE)
        check.messages.append(
            f"Grand total {totals.grand_total} {quote.currency} is above the "
            f"approval limit of {thresholds.require_approval_above}"
        )

    return check
