"""
Order-level charge allocation.

Only shipping is spread across line items; handling and discount stay at
order level.

Remainder policy: each share is rounded half-up to the quote's rounding
precision and whatever the rounded shares miss (or overshoot) is added to
the first line with a non-zero key (the first line when every key is zero),
so the allocations always sum to the shipping charge.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from .catalog import LineItem
from .money import ZERO, quantize, to_decimal

logger = logging.getLogger(__name__)


class AllocationMethod(Enum):
    """How shipping is weighted across line items."""
    WEIGHT = "weight"
    VALUE = "value"
    EQUAL = "equal"


@dataclass(frozen=True)
class OrderLevelCharges:
    """Charges that belong to the order rather than a single line."""
    shipping: Decimal = ZERO
    handling: Decimal = ZERO
    discount: Decimal = ZERO

    def __post_init__(self):
        for name in ("shipping", "handling", "discount"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} cannot be negative")

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "OrderLevelCharges":
        if not data:
            return cls()
        allowed = {"shipping", "handling", "discount"}
        unknown = set(data.keys()) - allowed
        if unknown:
            raise ValueError(f"Unknown order charge keys: {unknown}")
        return cls(**{key: to_decimal(data.get(key), key) for key in allowed})


def resolve_allocation_method(method: Union[AllocationMethod, str, None]) -> AllocationMethod:
    """Map a configured method to an AllocationMethod, falling back to EQUAL."""
    if isinstance(method, AllocationMethod):
        return method
    if isinstance(method, str):
        try:
            return AllocationMethod(method.strip().lower())
        except ValueError:
            pass
    logger.warning("Unrecognized allocation method %r, falling back to 'equal'", method)
    return AllocationMethod.EQUAL


def _allocation_key(item: LineItem, method: AllocationMethod) -> Decimal:
    quantity = Decimal(item.quantity)
    if method == AllocationMethod.WEIGHT:
        # A missing or zero weight means "not set" and counts as 1 kg
        weight = item.weight_kg if item.weight_kg else Decimal(1)
        return quantity * weight
    if method == AllocationMethod.VALUE:
        return quantity * item.unit_cost
    return quantity


def allocate_shipping(
    line_items: Sequence[LineItem],
    charges: Optional[OrderLevelCharges],
    method: Union[AllocationMethod, str, None],
    decimals: int = 2,
) -> List[Decimal]:
    """Split the shipping charge across line items.

    Args:
        line_items: Resolved line items in quote order
        charges: Order-level charges (None means no charges)
        method: Allocation key; unknown values fall back to equal
        decimals: Rounding precision of the quote

    Returns:
        One allocated amount per line item, in the same order
    """
    if not line_items:
        return []

    shipping = charges.shipping if charges is not None else ZERO
    if shipping <= 0:
        return [ZERO for _ in line_items]

    shipping = quantize(shipping, decimals)
    resolved_method = resolve_allocation_method(method)
    keys = [_allocation_key(item, resolved_method) for item in line_items]
    total_key = sum(keys, ZERO)

    if total_key > 0:
        shares = [quantize(key / total_key * shipping, decimals) for key in keys]
    else:
        # Every key is zero: split by line count, not by quantity units
        even_share = shipping / Decimal(len(line_items))
        shares = [quantize(even_share, decimals) for _ in line_items]

    remainder = shipping - sum(shares, ZERO)
    if remainder != 0:
        target = next((index for index, key in enumerate(keys) if key > 0), 0)
        shares[target] += remainder
    return shares


def allocate(
    line_items: Sequence[LineItem],
    charges: Optional[OrderLevelCharges],
    method: Union[AllocationMethod, str, None],
    decimals: int = 2,
) -> Dict[str, Decimal]:
    """Allocate shipping and key the result by SKU.

    Lines that share a SKU have their amounts summed.
    """
    allocations: Dict[str, Decimal] = {}
    shares = allocate_shipping(line_items, charges, method, decimals)
    for item, share in zip(line_items, shares):
        allocations[item.sku] = allocations.get(item.sku, ZERO) + share
    return allocations
