"""
Catalog lookup and line-item resolution.

Merges a draft's requested SKUs and quantities with the catalog snapshot to
produce fully specified line items. Pure lookup and merge, no pricing.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .errors import InvalidQuantityError, UnknownSkuError
from .money import ZERO, to_decimal


@dataclass(frozen=True)
class CostComponents:
    """Itemized per-unit landed-cost components."""
    inbound_freight: Decimal = ZERO
    duty: Decimal = ZERO
    insurance: Decimal = ZERO
    packaging: Decimal = ZERO
    other: Decimal = ZERO

    def __post_init__(self):
        for name in ("inbound_freight", "duty", "insurance", "packaging", "other"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} cannot be negative")

    @property
    def total(self) -> Decimal:
        return self.inbound_freight + self.duty + self.insurance + self.packaging + self.other

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "CostComponents":
        if not data:
            return cls()
        allowed = {"inbound_freight", "duty", "insurance", "packaging", "other"}
        unknown = set(data.keys()) - allowed
        if unknown:
            raise ValueError(f"Unknown cost component keys: {unknown}")
        return cls(**{key: to_decimal(data.get(key), key) for key in allowed})

    def to_dict(self) -> Dict[str, str]:
        return {
            "inbound_freight": str(self.inbound_freight),
            "duty": str(self.duty),
            "insurance": str(self.insurance),
            "packaging": str(self.packaging),
            "other": str(self.other),
        }


@dataclass(frozen=True)
class CatalogItem:
    """Catalog entry as fetched from the item store."""
    sku: str
    description: str
    unit_cost: Decimal
    weight_kg: Optional[Decimal] = None
    cost_components: CostComponents = field(default_factory=CostComponents)
    markup_override_percent: Optional[Decimal] = None
    pricing_tier: str = "standard"
    stock: int = 0

    def __post_init__(self):
        if not self.sku or not self.sku.strip():
            raise ValueError("sku is required and cannot be empty")
        if self.unit_cost < 0:
            raise ValueError(f"unit_cost for {self.sku} cannot be negative")
        if self.weight_kg is not None and self.weight_kg < 0:
            raise ValueError(f"weight_kg for {self.sku} cannot be negative")


@dataclass(frozen=True)
class DraftLine:
    """One requested line on a quote draft."""
    sku: str
    quantity: Any
    markup_override_percent: Optional[Decimal] = None


@dataclass(frozen=True)
class LineItem:
    """Line item with everything the pricing stages need."""
    sku: str
    description: str
    quantity: int
    unit_cost: Decimal
    cost_components: CostComponents = field(default_factory=CostComponents)
    weight_kg: Optional[Decimal] = None
    markup_override_percent: Optional[Decimal] = None
    pricing_tier: str = "standard"


def coerce_quantity(value: Any, sku: Optional[str] = None, index: Optional[int] = None) -> int:
    """Return the quantity as a non-negative int.

    Integral floats, Decimals and digit strings are accepted.

    Raises:
        InvalidQuantityError: If the value is negative, fractional or not numeric
    """
    where = f"line {index} ({sku})" if index is not None else f"{sku}"
    if isinstance(value, bool) or value is None:
        raise InvalidQuantityError(f"Quantity for {where} must be an integer, got {value!r}", sku, index)
    if isinstance(value, int):
        quantity = value
    else:
        try:
            number = to_decimal(value, "quantity")
        except ValueError:
            raise InvalidQuantityError(
                f"Quantity for {where} must be an integer, got {value!r}", sku, index
            )
        if number != number.to_integral_value():
            raise InvalidQuantityError(
                f"Quantity for {where} must be a whole number, got {value!r}", sku, index
            )
        quantity = int(number)
    if quantity < 0:
        raise InvalidQuantityError(f"Quantity for {where} cannot be negative: {quantity}", sku, index)
    return quantity


def resolve_line_items(
    draft_lines: Sequence[DraftLine],
    catalog: Mapping[str, CatalogItem],
) -> List[LineItem]:
    """Merge draft lines with catalog data.

    A per-line override on the draft takes precedence over the catalog
    item's own override.

    Args:
        draft_lines: Ordered lines from the quote draft
        catalog: Catalog snapshot keyed by SKU

    Returns:
        Line items in draft order

    Raises:
        UnknownSkuError: If a SKU is missing from the catalog
        InvalidQuantityError: If a quantity is negative or not an integer
    """
    resolved = []
    for index, line in enumerate(draft_lines):
        item = catalog.get(line.sku)
        if item is None:
            raise UnknownSkuError(f"SKU not found in catalog: {line.sku} (line {index})", line.sku, index)

        quantity = coerce_quantity(line.quantity, line.sku, index)
        override = line.markup_override_percent
        if override is None:
            override = item.markup_override_percent

        resolved.append(LineItem(
            sku=item.sku,
            description=item.description,
            quantity=quantity,
            unit_cost=item.unit_cost,
            cost_components=item.cost_components,
            weight_kg=item.weight_kg,
            markup_override_percent=override,
            pricing_tier=item.pricing_tier,
        ))
    return resolved
