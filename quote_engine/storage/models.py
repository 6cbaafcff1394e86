"""
Data models for storage layer.

Defines stored quote records.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from quote_engine.core.lifecycle import QuoteStatus
from quote_engine.core.pricing import PricingSettings
from quote_engine.core.quote_builder import QuoteDraft
from quote_engine.core.taxes import TaxRule


@dataclass(frozen=True)
class QuoteRecord:
    """A stored quote or invoice.

    ``frozen_tax_rules`` and ``frozen_settings`` are set once, at approval,
    and never change afterwards. Approved records are always re-priced
    from them.
    """
    id: str
    status: QuoteStatus
    draft: QuoteDraft
    created_by: str
    created_at: datetime
    updated_at: datetime
    computed: Optional[Dict[str, Any]] = None
    tax_configuration_version: Optional[int] = None
    frozen_tax_rules: Optional[Tuple[TaxRule, ...]] = None
    frozen_settings: Optional[PricingSettings] = None
    invoice_number: Optional[str] = None
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
