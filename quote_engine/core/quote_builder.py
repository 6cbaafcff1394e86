"""
Quote assembly: totals aggregation and audit metadata.

``compute_quote`` is the single entry point every layer uses to price a
draft. It is a pure function of its arguments; the computation timestamp is
taken from the caller when given so identical inputs give identical output.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from .allocation import OrderLevelCharges, allocate_shipping
from .catalog import CatalogItem, DraftLine, resolve_line_items
from .money import HUNDRED, ZERO, quantize, to_decimal
from .pricing import ComputedLineItem, PricingSettings, price_line_item
from .taxes import TaxRule, apply_taxes

ENGINE_VERSION = "quote-engine/2.0"


@dataclass(frozen=True)
class QuoteDraft:
    """Unpriced quote as authored by a salesperson."""
    lines: Tuple[DraftLine, ...]
    charges: OrderLevelCharges = field(default_factory=OrderLevelCharges)
    customer_id: Optional[str] = None
    customer_name: Optional[str] = None
    incoterm: Optional[str] = None
    currency: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "QuoteDraft":
        """Build a draft from plain data (YAML, JSON or a stored record)."""
        allowed = {"lines", "charges", "customer_id", "customer_name", "incoterm", "currency"}
        unknown = set(data.keys()) - allowed
        if unknown:
            raise ValueError(f"Unknown draft keys: {unknown}")
        raw_lines = data.get("lines") or []
        if not isinstance(raw_lines, list):
            raise ValueError("'lines' must be a list")

        lines = []
        for index, raw in enumerate(raw_lines):
            if not isinstance(raw, dict) or "sku" not in raw:
                raise ValueError(f"Line {index} must be a mapping with a 'sku'")
            override = raw.get("markup_override_percent")
            lines.append(DraftLine(
                sku=str(raw["sku"]),
                quantity=raw.get("quantity"),
                markup_override_percent=None if override is None else to_decimal(override, "markup_override_percent"),
            ))
        return cls(
            lines=tuple(lines),
            charges=OrderLevelCharges.from_dict(data.get("charges")),
            customer_id=data.get("customer_id"),
            customer_name=data.get("customer_name"),
            incoterm=data.get("incoterm"),
            currency=data.get("currency"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lines": [
                {
                    "sku": line.sku,
                    "quantity": (
                        line.quantity if line.quantity is None or isinstance(line.quantity, int)
                        else str(line.quantity)
                    ),
                    "markup_override_percent": (
                        None if line.markup_override_percent is None else str(line.markup_override_percent)
                    ),
                }
                for line in self.lines
            ],
            "charges": {
                "shipping": str(self.charges.shipping),
                "handling": str(self.charges.handling),
                "discount": str(self.charges.discount),
            },
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "incoterm": self.incoterm,
            "currency": self.currency,
        }


@dataclass(frozen=True)
class ComputedTotals:
    """Order-level totals of a priced quote."""
    subtotal: Decimal
    shipping: Decimal
    handling: Decimal
    discount: Decimal
    subtotal_with_charges: Decimal
    tax_amounts: Dict[str, Decimal]
    levy_total: Decimal
    grand_total: Decimal
    total_landed_cost: Decimal
    gross_margin_percent: Decimal


@dataclass(frozen=True)
class AuditMetadata:
    """Who computed a quote, when, and with which engine and tax version."""
    engine_version: str
    computed_at: datetime
    computed_by: str
    tax_configuration_version: Optional[int] = None


@dataclass(frozen=True)
class ComputedQuote:
    """Fully priced quote or invoice."""
    line_items: Tuple[ComputedLineItem, ...]
    totals: ComputedTotals
    tax_rules: Tuple[TaxRule, ...]
    incoterm: str
    currency: str
    audit: AuditMetadata


def build_quote(
    computed_lines: Sequence[ComputedLineItem],
    charges: Optional[OrderLevelCharges],
    tax_rules: Optional[Sequence[TaxRule]],
    settings: PricingSettings,
    actor: str,
    computed_at: Optional[datetime] = None,
    tax_configuration_version: Optional[int] = None,
    incoterm: Optional[str] = None,
    currency: Optional[str] = None,
) -> ComputedQuote:
    """Aggregate priced lines into a quote with taxes and audit metadata.

    Gross margin uses ``max(subtotal, 1)`` as denominator, so a zero
    subtotal reports a margin of ``-total_landed_cost * 100`` rather than
    failing. This is a known approximation for degenerate quotes.

    Raises:
        ValueError: If actor is empty
    """
    if not actor or not actor.strip():
        raise ValueError("actor is required to compute a quote")

    decimals = settings.rounding_decimals
    charges = charges or OrderLevelCharges()

    subtotal = quantize(sum((line.line_total for line in computed_lines), ZERO), decimals)
    shipping = quantize(charges.shipping, decimals)
    handling = quantize(charges.handling, decimals)
    discount = quantize(charges.discount, decimals)
    subtotal_with_charges = subtotal + shipping + handling - discount

    cascade = apply_taxes(subtotal_with_charges, tax_rules, decimals)

    total_landed_cost = quantize(
        sum((line.unit_landed_cost * line.quantity for line in computed_lines), ZERO),
        decimals,
    )
    gross_margin = quantize((subtotal - total_landed_cost) / max(subtotal, Decimal(1)) * HUNDRED, 2)

    totals = ComputedTotals(
        subtotal=subtotal,
        shipping=shipping,
        handling=handling,
        discount=discount,
        subtotal_with_charges=subtotal_with_charges,
        tax_amounts=dict(cascade.amounts),
        levy_total=cascade.levy_total,
        grand_total=cascade.grand_total,
        total_landed_cost=total_landed_cost,
        gross_margin_percent=gross_margin,
    )
    audit = AuditMetadata(
        engine_version=ENGINE_VERSION,
        computed_at=computed_at or datetime.now(timezone.utc),
        computed_by=actor,
        tax_configuration_version=tax_configuration_version,
    )
    return ComputedQuote(
        line_items=tuple(computed_lines),
        totals=totals,
        tax_rules=tuple(tax_rules or ()),
        incoterm=incoterm or settings.default_incoterm,
        currency=currency or settings.default_currency,
        audit=audit,
    )


def compute_quote(
    draft: QuoteDraft,
    catalog: Mapping[str, CatalogItem],
    settings: PricingSettings,
    tax_rules: Optional[Sequence[TaxRule]],
    actor: str,
    computed_at: Optional[datetime] = None,
    tax_configuration_version: Optional[int] = None,
) -> ComputedQuote:
    """Price a draft end to end.

    Resolve -> allocate shipping -> price each line -> aggregate -> tax.

    Args:
        draft: Quote draft to price
        catalog: Catalog snapshot keyed by SKU, fetched at one point in time
        settings: Pricing settings in effect
        tax_rules: Live rules, or the frozen snapshot of an approved record
        actor: Identity of whoever triggered the computation
        computed_at: Timestamp to record (defaults to now, UTC)
        tax_configuration_version: Version the rules came from, if any

    Returns:
        ComputedQuote

    Raises:
        UnknownSkuError, InvalidQuantityError, InvalidPercentError,
        MissingSettingError: On invalid input, identifying the line
    """
    line_items = resolve_line_items(draft.lines, catalog)
    shares = allocate_shipping(line_items, draft.charges, settings.allocation_method, settings.rounding_decimals)

    computed_lines: List[ComputedLineItem] = [
        price_line_item(item, share, settings, index)
        for index, (item, share) in enumerate(zip(line_items, shares))
    ]

    return build_quote(
        computed_lines,
        draft.charges,
        tax_rules,
        settings,
        actor,
        computed_at=computed_at,
        tax_configuration_version=tax_configuration_version,
        incoterm=draft.incoterm,
        currency=draft.currency,
    )


def _line_to_dict(line: ComputedLineItem) -> Dict[str, Any]:
    return {
        "sku": line.sku,
        "description": line.description,
        "quantity": line.quantity,
        "unit_cost": str(line.unit_cost),
        "cost_components": line.cost_components.to_dict(),
        "weight_kg": None if line.weight_kg is None else str(line.weight_kg),
        "pricing_tier": line.pricing_tier,
        "markup_override_percent": (
            None if line.markup_override_percent is None else str(line.markup_override_percent)
        ),
        "allocated_shipping": str(line.allocated_shipping),
        "unit_landed_cost": str(line.unit_landed_cost),
        "percent_used": str(line.percent_used),
        "pricing_mode": line.pricing_mode.value,
        "unit_price": str(line.unit_price),
        "line_total": str(line.line_total),
    }


def quote_to_dict(quote: ComputedQuote) -> Dict[str, Any]:
    """JSON-safe representation of a computed quote. Decimals become strings."""
    totals = quote.totals
    return {
        "line_items": [_line_to_dict(line) for line in quote.line_items],
        "totals": {
            "subtotal": str(totals.subtotal),
            "shipping": str(totals.shipping),
            "handling": str(totals.handling),
            "discount": str(totals.discount),
            "subtotal_with_charges": str(totals.subtotal_with_charges),
            "tax_amounts": {rule_id: str(amount) for rule_id, amount in totals.tax_amounts.items()},
            "levy_total": str(totals.levy_total),
            "grand_total": str(totals.grand_total),
            "total_landed_cost": str(totals.total_landed_cost),
            "gross_margin_percent": str(totals.gross_margin_percent),
        },
        "tax_rules": [rule.to_dict() for rule in quote.tax_rules],
        "incoterm": quote.incoterm,
        "currency": quote.currency,
        "audit": {
            "engine_version": quote.audit.engine_version,
            "computed_at": quote.audit.computed_at.isoformat(),
            "computed_by": quote.audit.computed_by,
            "tax_configuration_version": quote.audit.tax_configuration_version,
        },
    }
