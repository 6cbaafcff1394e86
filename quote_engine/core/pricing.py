"""
Line pricing: landed cost and markup/margin price derivation.

Rounding is applied stage by stage (landed cost, then unit price, then line
total) so every consumer of the engine gets the same cents.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Union

from .allocation import AllocationMethod
from .catalog import CostComponents, LineItem
from .errors import InvalidPercentError, InvalidQuantityError, MissingSettingError
from .money import HUNDRED, quantize, to_decimal


class PricingMode(Enum):
    """Price derivation mode. Exactly one applies per computation."""
    MARKUP = "markup"
    MARGIN = "margin"


@dataclass(frozen=True)
class PricingSettings:
    """Process-wide pricing configuration, read at computation time."""
    default_markup_percent: Optional[Decimal] = Decimal("32")
    default_margin_percent: Optional[Decimal] = None
    pricing_mode: PricingMode = PricingMode.MARKUP
    allocation_method: Union[AllocationMethod, str] = AllocationMethod.WEIGHT
    rounding_decimals: int = 2
    default_incoterm: str = "FOB"
    default_currency: str = "GHS"
    quote_expiry_days: int = 30

    def __post_init__(self):
        """Validate settings values."""
        if not isinstance(self.pricing_mode, PricingMode):
            raise ValueError(f"pricing_mode must be a PricingMode, got {self.pricing_mode!r}")
        if isinstance(self.rounding_decimals, bool) or not isinstance(self.rounding_decimals, int):
            raise ValueError("rounding_decimals must be an integer")
        if not 0 <= self.rounding_decimals <= 6:
            raise ValueError("rounding_decimals must be between 0 and 6")
        if self.quote_expiry_days <= 0:
            raise ValueError("quote_expiry_days must be > 0")

    def default_percent(self) -> Optional[Decimal]:
        """Default percent for the active pricing mode."""
        if self.pricing_mode == PricingMode.MARGIN:
            return self.default_margin_percent
        return self.default_markup_percent

    def to_dict(self) -> Dict[str, Any]:
        method = self.allocation_method
        return {
            "default_markup_percent": _str_or_none(self.default_markup_percent),
            "default_margin_percent": _str_or_none(self.default_margin_percent),
            "pricing_mode": self.pricing_mode.value,
            "allocation_method": method.value if isinstance(method, AllocationMethod) else method,
            "rounding_decimals": self.rounding_decimals,
            "default_incoterm": self.default_incoterm,
            "default_currency": self.default_currency,
            "quote_expiry_days": self.quote_expiry_days,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PricingSettings":
        """Rebuild settings from ``to_dict`` output (e.g. a frozen record)."""
        # Unrecognized methods stay strings and fall back at allocation time
        method = data.get("allocation_method", AllocationMethod.WEIGHT.value)
        known = {member.value: member for member in AllocationMethod}
        return cls(
            default_markup_percent=_decimal_or_none(data.get("default_markup_percent")),
            default_margin_percent=_decimal_or_none(data.get("default_margin_percent")),
            pricing_mode=PricingMode(data["pricing_mode"]),
            allocation_method=known.get(method, method),
            rounding_decimals=int(data.get("rounding_decimals", 2)),
            default_incoterm=data.get("default_incoterm", "FOB"),
            default_currency=data.get("default_currency", "GHS"),
            quote_expiry_days=int(data.get("quote_expiry_days", 30)),
        )


def _str_or_none(value: Optional[Decimal]) -> Optional[str]:
    return None if value is None else str(value)


def _decimal_or_none(value: Any) -> Optional[Decimal]:
    return None if value is None else to_decimal(value)


@dataclass(frozen=True)
class ComputedLineItem:
    """A priced line. Recomputation produces a new instance."""
    sku: str
    description: str
    quantity: int
    unit_cost: Decimal
    cost_components: CostComponents
    weight_kg: Optional[Decimal]
    pricing_tier: str
    markup_override_percent: Optional[Decimal]
    allocated_shipping: Decimal
    unit_landed_cost: Decimal
    percent_used: Decimal
    pricing_mode: PricingMode
    unit_price: Decimal
    line_total: Decimal


def resolve_percent(line_item: LineItem, settings: PricingSettings, index: Optional[int] = None) -> Decimal:
    """Pick the markup/margin percent for a line and validate it.

    Raises:
        MissingSettingError: If there is no override and no default for the mode
        InvalidPercentError: If the percent is negative, or margin is >= 100
    """
    percent = line_item.markup_override_percent
    if percent is None:
        percent = settings.default_percent()
    if percent is None:
        raise MissingSettingError(
            f"No default {settings.pricing_mode.value} percent configured and no override "
            f"for {line_item.sku}",
            line_item.sku,
            index,
        )
    if percent < 0:
        raise InvalidPercentError(
            f"{settings.pricing_mode.value.capitalize()} percent for {line_item.sku} "
            f"cannot be negative: {percent}",
            line_item.sku,
            index,
        )
    if settings.pricing_mode == PricingMode.MARGIN and percent >= HUNDRED:
        raise InvalidPercentError(
            f"Margin percent for {line_item.sku} must be below 100, got {percent}",
            line_item.sku,
            index,
        )
    return percent


def price_line_item(
    line_item: LineItem,
    allocated_shipping: Decimal,
    settings: PricingSettings,
    index: Optional[int] = None,
) -> ComputedLineItem:
    """Price a single line item.

    Args:
        line_item: Resolved line item
        allocated_shipping: This line's share of order shipping
        settings: Pricing settings in effect
        index: Position of the line in the quote, used in error messages

    Returns:
        ComputedLineItem with landed cost, unit price and line total

    Raises:
        InvalidQuantityError: If quantity is negative
        MissingSettingError: If no percent can be resolved
        InvalidPercentError: If the percent is out of range
    """
    if line_item.quantity < 0:
        raise InvalidQuantityError(
            f"Quantity for {line_item.sku} cannot be negative: {line_item.quantity}",
            line_item.sku,
            index,
        )

    decimals = settings.rounding_decimals
    percent = resolve_percent(line_item, settings, index)

    shipping_per_unit = allocated_shipping / Decimal(max(line_item.quantity, 1))
    landed = quantize(line_item.unit_cost + line_item.cost_components.total + shipping_per_unit, decimals)

    if settings.pricing_mode == PricingMode.MARGIN:
        unit_price = quantize(landed / (1 - percent / HUNDRED), decimals)
    else:
        unit_price = quantize(landed * (1 + percent / HUNDRED), decimals)

    line_total = quantize(unit_price * line_item.quantity, decimals)

    return ComputedLineItem(
        sku=line_item.sku,
        description=line_item.description,
        quantity=line_item.quantity,
        unit_cost=line_item.unit_cost,
        cost_components=line_item.cost_components,
        weight_kg=line_item.weight_kg,
        pricing_tier=line_item.pricing_tier,
        markup_override_percent=line_item.markup_override_percent,
        allocated_shipping=allocated_shipping,
        unit_landed_cost=landed,
        percent_used=percent,
        pricing_mode=settings.pricing_mode,
        unit_price=unit_price,
        line_total=line_total,
    )
