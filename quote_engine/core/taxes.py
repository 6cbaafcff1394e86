"""
Two-tier tax cascade.

Tier ``subtotal`` rules are charged on the subtotal with charges and build
up the levy total. Tier ``levyTotal`` rules are then charged on that levy
total, which models levies that sit inside the base of a value-added tax.
Rules are data; nothing here knows any tax by name.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from .money import HUNDRED, ZERO, quantize, to_decimal

logger = logging.getLogger(__name__)


class TaxTier(Enum):
    """Base a tax rule is charged on."""
    SUBTOTAL = "subtotal"
    LEVY_TOTAL = "levyTotal"


@dataclass(frozen=True)
class TaxRule:
    """A single configurable tax or levy."""
    id: str
    name: str
    rate: Decimal
    applies_to: TaxTier
    enabled: bool = True

    def __post_init__(self):
        """Validate rule values."""
        if not self.id or not self.id.strip():
            raise ValueError("tax rule id is required")
        if self.rate < 0 or self.rate > HUNDRED:
            raise ValueError(f"rate for tax rule '{self.id}' must be between 0 and 100")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TaxRule":
        allowed = {"id", "name", "rate", "applies_to", "enabled"}
        unknown = set(data.keys()) - allowed
        if unknown:
            raise ValueError(f"Unknown tax rule keys: {unknown}")
        for key in ("id", "rate", "applies_to"):
            if key not in data:
                raise ValueError(f"Missing required '{key}' in tax rule")
        try:
            tier = TaxTier(data["applies_to"])
        except ValueError:
            valid = [tier.value for tier in TaxTier]
            raise ValueError(f"'applies_to' for tax rule '{data['id']}' must be one of: {valid}")
        enabled = data.get("enabled", True)
        if not isinstance(enabled, bool):
            raise ValueError(f"'enabled' for tax rule '{data['id']}' must be true or false")
        return cls(
            id=str(data["id"]),
            name=str(data.get("name") or data["id"]),
            rate=to_decimal(data["rate"], "rate"),
            applies_to=tier,
            enabled=enabled,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "rate": str(self.rate),
            "applies_to": self.applies_to.value,
            "enabled": self.enabled,
        }


@dataclass(frozen=True)
class TaxConfiguration:
    """A versioned, timestamped tax-rule set.

    Each change to tax settings creates a new version; older versions stay
    readable so records can point at the version they were priced with.
    """
    version: int
    rules: Tuple[TaxRule, ...]
    created_at: datetime
    created_by: str = "system"

    def __post_init__(self):
        if self.version < 1:
            raise ValueError("version must be >= 1")
        validate_unique_ids(self.rules)


@dataclass(frozen=True)
class TaxCascadeResult:
    """Output of the tax cascade."""
    amounts: Dict[str, Decimal] = field(default_factory=dict)
    levy_total: Decimal = ZERO
    grand_total: Decimal = ZERO


# Ghana indirect-tax defaults: levies on the subtotal, VAT on the levy total
DEFAULT_TAX_RULES: Tuple[TaxRule, ...] = (
    TaxRule(id="nhil", name="NHIL", rate=Decimal("7.5"), applies_to=TaxTier.SUBTOTAL),
    TaxRule(id="getfund", name="GETFund Levy", rate=Decimal("2.5"), applies_to=TaxTier.SUBTOTAL),
    TaxRule(id="covid", name="COVID-19 HRL", rate=Decimal("1.0"), applies_to=TaxTier.SUBTOTAL),
    TaxRule(id="vat", name="VAT", rate=Decimal("15.0"), applies_to=TaxTier.LEVY_TOTAL),
    TaxRule(id="import_duty", name="Import Duty", rate=Decimal("20.0"),
            applies_to=TaxTier.SUBTOTAL, enabled=False),
)


def validate_unique_ids(rules: Sequence[TaxRule]) -> None:
    """Raise ValueError if two rules share an id."""
    seen = set()
    for rule in rules:
        if rule.id in seen:
            raise ValueError(f"Duplicate tax rule id: {rule.id}")
        seen.add(rule.id)


def rules_from_dicts(data: Optional[Sequence[Mapping[str, Any]]]) -> Tuple[TaxRule, ...]:
    """Rebuild a rule tuple from its serialized form (e.g. a frozen snapshot)."""
    rules = tuple(TaxRule.from_dict(item) for item in (data or []))
    validate_unique_ids(rules)
    return rules


def rules_to_dicts(rules: Sequence[TaxRule]) -> List[Dict[str, Any]]:
    return [rule.to_dict() for rule in rules]


def apply_taxes(
    subtotal_with_charges: Decimal,
    tax_rules: Optional[Sequence[TaxRule]],
    decimals: int = 2,
) -> TaxCascadeResult:
    """Run the two-tier tax cascade.

    Args:
        subtotal_with_charges: Subtotal plus shipping and handling, less discount
        tax_rules: Ordered rule set; disabled rules are skipped
        decimals: Rounding precision for each tax amount

    Returns:
        TaxCascadeResult with per-rule amounts, levy total and grand total
    """
    base = quantize(subtotal_with_charges, decimals)
    rules = list(tax_rules or [])
    validate_unique_ids(rules)

    enabled = [rule for rule in rules if rule.enabled]
    if not enabled:
        logger.warning("No enabled tax rules configured, applying zero tax")
        return TaxCascadeResult(amounts={}, levy_total=base, grand_total=base)

    amounts: Dict[str, Decimal] = {}

    # Pass 1: levies on the subtotal with charges
    levy_total = base
    for rule in enabled:
        if rule.applies_to == TaxTier.SUBTOTAL:
            amount = quantize(base * rule.rate / HUNDRED, decimals)
            amounts[rule.id] = amount
            levy_total += amount

    # Pass 2: taxes on the accumulated levy total
    grand_total = levy_total
    for rule in enabled:
        if rule.applies_to == TaxTier.LEVY_TOTAL:
            amount = quantize(levy_total * rule.rate / HUNDRED, decimals)
            amounts[rule.id] = amount
            grand_total += amount

    return TaxCascadeResult(amounts=amounts, levy_total=levy_total, grand_total=grand_total)
