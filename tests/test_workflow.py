"""
Integration tests for the quote workflow.

Covers pricing against live configuration, submission, approval and the
guarantee that approved invoices never change after the fact.
"""

import dataclasses
import logging
import os
import tempfile
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from quote_engine.core.allocation import OrderLevelCharges
from quote_engine.core.approval import ApprovalReason, ApprovalThresholds
from quote_engine.core.catalog import CatalogItem, CostComponents, DraftLine
from quote_engine.core.errors import InvalidTransitionError
from quote_engine.core.lifecycle import QuoteStatus
from quote_engine.core.pricing import PricingMode, PricingSettings
from quote_engine.core.quote_builder import QuoteDraft
from quote_engine.core.taxes import DEFAULT_TAX_RULES, TaxRule, TaxTier
from quote_engine.core.workflow import (
    approve_quote,
    catalog_from_computed,
    price_draft,
    recompute_record,
    submit_quote,
)
from quote_engine.storage.repository import QuoteRepository, initialize_schema

APPROVED_AT = datetime(2025, 1, 28, 13, 14, tzinfo=timezone.utc)
LATER = datetime(2025, 6, 1, 9, 0, tzinfo=timezone.utc)


def _printer(unit_cost="400.00", override=None):
    return CatalogItem(
        sku="PRN-100",
        description="Laser Printer",
        unit_cost=Decimal(unit_cost),
        weight_kg=Decimal("12"),
        cost_components=CostComponents(
            inbound_freight=Decimal("20.00"),
            duty=Decimal("10.00"),
            insurance=Decimal("1.50"),
            packaging=Decimal("3.00"),
            other=Decimal("21.00"),
        ),
        markup_override_percent=override,
        stock=15,
    )


class TestWorkflow:
    """Test the workflow on top of a real repository."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "test.db")
        initialize_schema(self.db_path)
        self.repository = QuoteRepository(self.db_path)
        self.repository.upsert_catalog_items([
            _printer(),
            CatalogItem(sku="TNR-200", description="Toner", unit_cost=Decimal("45"), stock=100,
                        markup_override_percent=Decimal("45")),
        ])
        self.settings = PricingSettings()
        self.draft = QuoteDraft(
            lines=(DraftLine("PRN-100", 2), DraftLine("TNR-200", 4, Decimal("50"))),
            charges=OrderLevelCharges(shipping=Decimal("30"), discount=Decimal("10")),
        )

    def teardown_method(self):
        """Clean up test environment."""
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _approved(self):
        self.repository.save_tax_configuration(DEFAULT_TAX_RULES, "admin")
        self.repository.save_draft("Q1", self.draft, "alice")
        submit_quote("Q1", self.repository, self.settings, ApprovalThresholds(), "alice")
        return approve_quote("Q1", self.repository, self.settings, "bob", approved_at=APPROVED_AT)

    def test_price_draft_uses_live_tax_configuration(self):
        config = self.repository.save_tax_configuration(DEFAULT_TAX_RULES, "admin")
        quote = price_draft(self.draft, self.repository, self.settings, "alice", computed_at=APPROVED_AT)

        assert quote.audit.tax_configuration_version == config.version
        assert set(quote.totals.tax_amounts) == {"nhil", "getfund", "covid", "vat"}

    def test_price_draft_without_tax_configuration(self, caplog):
        with caplog.at_level(logging.WARNING):
            quote = price_draft(self.draft, self.repository, self.settings, "alice")
        assert quote.totals.grand_total == quote.totals.subtotal_with_charges
        assert quote.audit.tax_configuration_version is None
        assert "No tax configuration saved" in caplog.text

    def test_submit_reports_thresholds(self):
        self.repository.save_draft("Q1", self.draft, "alice")
        record, check = submit_quote(
            "Q1", self.repository, self.settings, ApprovalThresholds(require_approval_above=Decimal("100")), "alice"
        )
        assert record.status == QuoteStatus.PENDING_APPROVAL
        assert record.computed is not None
        assert check.reasons == [ApprovalReason.HIGH_VALUE]

    def test_submit_requires_draft(self):
        self.repository.save_draft("Q1", self.draft, "alice")
        self.repository.submit_for_approval("Q1")
        with pytest.raises(InvalidTransitionError):
            submit_quote("Q1", self.repository, self.settings, ApprovalThresholds(), "alice")

    def test_approve_requires_pending(self):
        self.repository.save_draft("Q1", self.draft, "alice")
        with pytest.raises(InvalidTransitionError):
            approve_quote("Q1", self.repository, self.settings, "bob")

    def test_approve_snapshots_live_configuration(self):
        record = self._approved()

        assert record.status == QuoteStatus.APPROVED
        assert record.frozen_tax_rules == DEFAULT_TAX_RULES
        assert record.frozen_settings == self.settings
        assert record.computed["audit"]["computed_by"] == "bob"
        assert record.computed["audit"]["tax_configuration_version"] == 1

    def test_approved_invoice_is_frozen(self):
        """Tax, settings and catalog changes after approval do not move the totals."""
        record = self._approved()
        before = recompute_record(record, self.repository, self.settings, "bob", computed_at=LATER)

        self.repository.save_tax_configuration(
            (TaxRule("vat", "VAT", Decimal("20"), TaxTier.SUBTOTAL),), "admin"
        )
        self.repository.upsert_catalog_items([_printer(unit_cost="999.00", override=Decimal("80"))])
        changed_settings = PricingSettings(pricing_mode=PricingMode.MARGIN, default_margin_percent=Decimal("40"))

        record = self.repository.get_quote("Q1")
        after = recompute_record(record, self.repository, changed_settings, "carol", computed_at=LATER)

        assert after.totals == before.totals
        assert after.line_items == before.line_items
        assert after.tax_rules == DEFAULT_TAX_RULES
        assert str(after.totals.grand_total) == record.computed["totals"]["grand_total"]

    def test_drafts_follow_live_configuration(self):
        self.repository.save_draft("Q1", self.draft, "alice")
        record = self.repository.get_quote("Q1")
        before = recompute_record(record, self.repository, self.settings, "alice")

        self.repository.save_tax_configuration(DEFAULT_TAX_RULES, "admin")
        after = recompute_record(record, self.repository, self.settings, "alice")

        assert after.totals.grand_total > before.totals.grand_total

    def test_catalog_from_computed_keeps_catalog_overrides_only(self):
        record = self._approved()
        catalog = catalog_from_computed(record.computed, record.draft)

        assert catalog["PRN-100"].unit_cost == Decimal("400.00")
        assert catalog["PRN-100"].cost_components.total == Decimal("55.50")
        # TNR-200 was overridden on the draft, not in the catalog
        assert catalog["TNR-200"].markup_override_percent is None

    def test_approved_record_without_snapshot(self):
        record = self._approved()
        broken = dataclasses.replace(record, frozen_settings=None)
        with pytest.raises(ValueError, match="no frozen snapshot"):
            recompute_record(broken, self.repository, self.settings, "bob")
