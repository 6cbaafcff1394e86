"""
Quote workflow on top of the pricing engine and the repository.

Fetches the inputs for a computation at one logical point in time (catalog
snapshot, tax configuration), runs the pure engine, and drives the
lifecycle transitions that need a fresh computation.

Approved records differ from drafts in one way: they are re-priced from
what was frozen onto them at approval (tax rules, pricing settings and the
per-line catalog data), never from live configuration.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional, Tuple

from .approval import ApprovalCheck, ApprovalThresholds, check_approval_requirements
from .catalog import CatalogItem, CostComponents
from .errors import InvalidTransitionError
from .lifecycle import QuoteStatus, is_frozen
from .pricing import PricingSettings
from .quote_builder import ComputedQuote, QuoteDraft, compute_quote
from .taxes import TaxConfiguration
from quote_engine.storage.models import QuoteRecord
from quote_engine.storage.repository import QuoteRepository

logger = logging.getLogger(__name__)


def _live_tax_configuration(repository: QuoteRepository) -> Optional[TaxConfiguration]:
    config = repository.current_tax_configuration()
    if config is None:
        logger.warning("No tax configuration saved, pricing without tax")
    return config


def price_draft(
    draft: QuoteDraft,
    repository: QuoteRepository,
    settings: PricingSettings,
    actor: str,
    computed_at: Optional[datetime] = None,
) -> ComputedQuote:
    """Price a draft against the live catalog and tax configuration.

    Args:
        draft: Quote draft
        repository: Source of catalog data and tax configuration
        settings: Current pricing settings
        actor: Who asked for the computation

    Returns:
        ComputedQuote
    """
    catalog = repository.fetch_catalog_items([line.sku for line in draft.lines])
    tax_config = _live_tax_configuration(repository)
    return compute_quote(
        draft,
        catalog,
        settings,
        tax_config.rules if tax_config else (),
        actor,
        computed_at=computed_at,
        tax_configuration_version=tax_config.version if tax_config else None,
    )


def catalog_from_computed(
    computed: Mapping[str, Any],
    draft: Optional[QuoteDraft] = None,
) -> Dict[str, CatalogItem]:
    """Rebuild the catalog data a stored computation was priced with.

    Each computed line carries the unit cost, cost components, weight and
    resolved override it used, so an approved record can be re-priced
    without consulting the (possibly changed) live catalog. Overrides that
    came from the draft itself are not attributed to the catalog item.
    """
    catalog: Dict[str, CatalogItem] = {}
    for index, line in enumerate(computed.get("line_items", [])):
        weight = line.get("weight_kg")
        override = line.get("markup_override_percent")
        from_draft = (
            draft is not None and index < len(draft.lines)
            and draft.lines[index].markup_override_percent is not None
        )
        if from_draft:
            existing = catalog.get(line["sku"])
            override = None if existing is None else existing.markup_override_percent
        elif override is not None:
            override = Decimal(override)
        catalog[line["sku"]] = CatalogItem(
            sku=line["sku"],
            description=line["description"],
            unit_cost=Decimal(line["unit_cost"]),
            weight_kg=None if weight is None else Decimal(weight),
            cost_components=CostComponents.from_dict(line.get("cost_components")),
            markup_override_percent=override,
            pricing_tier=line.get("pricing_tier", "standard"),
        )
    return catalog


def recompute_record(
    record: QuoteRecord,
    repository: QuoteRepository,
    settings: PricingSettings,
    actor: str,
    computed_at: Optional[datetime] = None,
) -> ComputedQuote:
    """Re-price a stored record.

    Approved records use their frozen tax rules, settings and line data;
    ``settings`` and the live tax configuration are ignored for them.
    Everything else is priced like a fresh draft.
    """
    if not is_frozen(record.status):
        return price_draft(record.draft, repository, settings, actor, computed_at=computed_at)

    if record.frozen_tax_rules is None or record.frozen_settings is None or record.computed is None:
        raise ValueError(f"Approved quote {record.id} has no frozen snapshot")

    return compute_quote(
        record.draft,
        catalog_from_computed(record.computed, record.draft),
        record.frozen_settings,
        record.frozen_tax_rules,
        actor,
        computed_at=computed_at,
        tax_configuration_version=record.tax_configuration_version,
    )


def submit_quote(
    quote_id: str,
    repository: QuoteRepository,
    settings: PricingSettings,
    thresholds: ApprovalThresholds,
    actor: str,
) -> Tuple[QuoteRecord, ApprovalCheck]:
    """Re-price a draft, store the result and move it to pending approval.

    Returns:
        The updated record and the approval threshold check for it
    """
    record = repository.get_quote(quote_id)
    if record.status != QuoteStatus.DRAFT:
        raise InvalidTransitionError(record.status.value, QuoteStatus.PENDING_APPROVAL.value)

    computed = price_draft(record.draft, repository, settings, actor)
    repository.save_draft(quote_id, record.draft, actor, computed)
    check = check_approval_requirements(computed, thresholds)
    for message in check.messages:
        logger.info("Quote %s needs approval: %s", quote_id, message)
    return repository.submit_for_approval(quote_id), check


def approve_quote(
    quote_id: str,
    repository: QuoteRepository,
    settings: PricingSettings,
    actor: str,
    approved_at: Optional[datetime] = None,
) -> QuoteRecord:
    """Price a pending quote with the current configuration and approve it.

    The same tax configuration object is used for the computation and for
    the snapshot, so the frozen rules always match the stored totals.

    Raises:
        InvalidTransitionError: If the quote is not pending approval
        InsufficientStockError: If stock cannot cover the quote
    """
    record = repository.get_quote(quote_id)
    if record.status != QuoteStatus.PENDING_APPROVAL:
        raise InvalidTransitionError(record.status.value, QuoteStatus.APPROVED.value)

    catalog = repository.fetch_catalog_items([line.sku for line in record.draft.lines])
    tax_config = _live_tax_configuration(repository)
    computed = compute_quote(
        record.draft,
        catalog,
        settings,
        tax_config.rules if tax_config else (),
        actor,
        computed_at=approved_at,
        tax_configuration_version=tax_config.version if tax_config else None,
    )
    return repository.approve(quote_id, computed, settings, tax_config, actor, approved_at=approved_at)
