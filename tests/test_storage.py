"""
Unit tests for storage layer.

Tests schema creation, catalog and tax persistence, quote lifecycle
transitions and the atomic approval transaction.
"""

import os
import tempfile
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from quote_engine.core.catalog import CatalogItem, CostComponents, DraftLine
from quote_engine.core.errors import (
    InsufficientStockError,
    InvalidTransitionError,
    QuoteNotFoundError,
)
from quote_engine.core.lifecycle import QuoteStatus, can_transition, format_invoice_number
from quote_engine.core.pricing import PricingSettings
from quote_engine.core.quote_builder import QuoteDraft, compute_quote
from quote_engine.core.taxes import DEFAULT_TAX_RULES
from quote_engine.storage.db import get_connection
from quote_engine.storage.repository import QuoteRepository, get_repository, initialize_schema

APPROVED_AT = datetime(2025, 1, 28, 13, 14, tzinfo=timezone.utc)

PRINTER = CatalogItem(
    sku="PRN-100",
    description="Laser Printer",
    unit_cost=Decimal("400.00"),
    weight_kg=Decimal("12"),
    cost_components=CostComponents(inbound_freight=Decimal("20.00"), other=Decimal("35.50")),
    stock=15,
)


class TestStorageSchema:
    """Test database schema creation and structure."""

    def test_schema_creation(self):
        """Verify tables are created."""
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = os.path.join(temp_dir, "test.db")
            initialize_schema(db_path)

            conn = get_connection(db_path)
            try:
                cursor = conn.execute("SELECT name FROM sqlite_master WHERE type='table' ORDER BY name")
                tables = [row[0] for row in cursor.fetchall()]
            finally:
                conn.close()
            assert tables == ["catalog_item", "invoice_counter", "quote_record", "tax_configuration"]

    def test_schema_creation_is_idempotent(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = os.path.join(temp_dir, "test.db")
            initialize_schema(db_path)
            initialize_schema(db_path)


class TestRepository:
    """Test catalog, tax configuration and quote persistence."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "test.db")
        initialize_schema(self.db_path)
        self.repository = QuoteRepository(self.db_path)
        self.repository.upsert_catalog_items([PRINTER])
        self.draft = QuoteDraft(lines=(DraftLine("PRN-100", 2),))

    def teardown_method(self):
        """Clean up test environment."""
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _pending(self, quote_id="Q1", draft=None):
        self.repository.save_draft(quote_id, draft or self.draft, "alice")
        return self.repository.submit_for_approval(quote_id)

    def _computed(self, draft=None):
        catalog = self.repository.fetch_catalog_items()
        return compute_quote(draft or self.draft, catalog, PricingSettings(), DEFAULT_TAX_RULES, "bob",
                             computed_at=APPROVED_AT)

    def _stock(self):
        return self.repository.fetch_catalog_items(["PRN-100"])["PRN-100"].stock

    def test_catalog_round_trip(self):
        fetched = self.repository.fetch_catalog_items(["PRN-100", "MISSING"])
        assert list(fetched) == ["PRN-100"]
        assert fetched["PRN-100"] == PRINTER

    def test_catalog_upsert_replaces(self):
        updated = CatalogItem(sku="PRN-100", description="Laser Printer v2", unit_cost=Decimal("380"))
        assert self.repository.upsert_catalog_items([updated]) == 1
        assert self.repository.fetch_catalog_items()["PRN-100"].description == "Laser Printer v2"

    def test_tax_configuration_versions(self):
        assert self.repository.current_tax_configuration() is None

        first = self.repository.save_tax_configuration(DEFAULT_TAX_RULES, "admin")
        second = self.repository.save_tax_configuration(DEFAULT_TAX_RULES[:1], "admin")

        assert (first.version, second.version) == (1, 2)
        assert self.repository.current_tax_configuration().rules == DEFAULT_TAX_RULES[:1]
        assert self.repository.get_tax_configuration(1).rules == DEFAULT_TAX_RULES

    def test_save_and_get_draft(self):
        record = self.repository.save_draft("Q1", self.draft, "alice")
        assert record.status == QuoteStatus.DRAFT
        assert record.draft == self.draft
        assert record.created_by == "alice"
        assert record.computed is None

    def test_get_missing_quote(self):
        with pytest.raises(QuoteNotFoundError):
            self.repository.get_quote("nope")

    def test_pending_draft_cannot_be_overwritten(self):
        self._pending()
        with pytest.raises(InvalidTransitionError):
            self.repository.save_draft("Q1", self.draft, "alice")

    def test_redraft_then_edit(self):
        self._pending()
        self.repository.redraft("Q1")
        edited = QuoteDraft(lines=(DraftLine("PRN-100", 5),))
        assert self.repository.save_draft("Q1", edited, "alice").draft == edited

    def test_reject_is_terminal(self):
        self._pending()
        record = self.repository.reject("Q1", "price too high")
        assert record.status == QuoteStatus.REJECTED
        assert record.rejection_reason == "price too high"
        with pytest.raises(InvalidTransitionError):
            self.repository.submit_for_approval("Q1")

    def test_list_quotes_by_status(self):
        self.repository.save_draft("Q1", self.draft, "alice")
        self._pending("Q2")
        pending = self.repository.list_quotes(QuoteStatus.PENDING_APPROVAL)
        assert [record.id for record in pending] == ["Q2"]
        assert len(self.repository.list_quotes()) == 2

    def test_approve(self):
        self._pending()
        config = self.repository.save_tax_configuration(DEFAULT_TAX_RULES, "admin")
        record = self.repository.approve(
            "Q1", self._computed(), PricingSettings(), config, "bob", approved_at=APPROVED_AT
        )

        assert record.status == QuoteStatus.APPROVED
        assert record.invoice_number == "INV-001-2025-28-1314"
        assert record.approved_by == "bob"
        assert record.approved_at == APPROVED_AT
        assert record.frozen_tax_rules == DEFAULT_TAX_RULES
        assert record.frozen_settings == PricingSettings()
        assert record.tax_configuration_version == 1
        assert record.computed["totals"]["subtotal"] == "1202.52"
        assert self._stock() == 13

    def test_invoice_numbers_increase(self):
        self._pending("Q1")
        self._pending("Q2")
        first = self.repository.approve("Q1", self._computed(), PricingSettings(), None, "bob",
                                        approved_at=APPROVED_AT)
        second = self.repository.approve("Q2", self._computed(), PricingSettings(), None, "bob",
                                         approved_at=APPROVED_AT)
        assert first.invoice_number.startswith("INV-001-")
        assert second.invoice_number.startswith("INV-002-")
        assert second.frozen_tax_rules == ()

    def test_insufficient_stock_rolls_back(self):
        big = QuoteDraft(lines=(DraftLine("PRN-100", 16),))
        self._pending("Q1", big)

        with pytest.raises(InsufficientStockError) as exc_info:
            self.repository.approve("Q1", self._computed(big), PricingSettings(), None, "bob")
        assert exc_info.value.available == 15
        assert exc_info.value.requested == 16

        record = self.repository.get_quote("Q1")
        assert record.status == QuoteStatus.PENDING_APPROVAL
        assert record.invoice_number is None
        assert record.frozen_tax_rules is None
        assert self._stock() == 15

        # The failed attempt did not consume an invoice number
        self._pending("Q2")
        approved = self.repository.approve("Q2", self._computed(), PricingSettings(), None, "bob")
        assert approved.invoice_number.startswith("INV-001-")

    def test_approve_requires_pending(self):
        self.repository.save_draft("Q1", self.draft, "alice")
        with pytest.raises(InvalidTransitionError, match="'draft' to 'approved'"):
            self.repository.approve("Q1", self._computed(), PricingSettings(), None, "bob")
        assert self._stock() == 15

    def test_get_repository_follows_path(self):
        repository = get_repository(self.db_path)
        assert repository is get_repository(self.db_path)
        assert get_repository(os.path.join(self.temp_dir, "other.db")) is not repository


class TestLifecycle:
    """Test lifecycle rules and invoice numbering."""

    def test_allowed_transitions(self):
        assert can_transition(QuoteStatus.DRAFT, QuoteStatus.PENDING_APPROVAL)
        assert can_transition(QuoteStatus.PENDING_APPROVAL, QuoteStatus.DRAFT)
        assert not can_transition(QuoteStatus.DRAFT, QuoteStatus.APPROVED)
        assert not can_transition(QuoteStatus.APPROVED, QuoteStatus.DRAFT)
        assert not can_transition(QuoteStatus.REJECTED, QuoteStatus.PENDING_APPROVAL)

    def test_invoice_number_format(self):
        assert format_invoice_number(1, datetime(2025, 1, 28, 13, 14)) == "INV-001-2025-28-1314"
        assert format_invoice_number(1234, datetime(2025, 3, 5, 9, 7)) == "INV-1234-2025-05-0907"

    def test_invoice_sequence_starts_at_one(self):
        with pytest.raises(ValueError):
            format_invoice_number(0, datetime(2025, 1, 1))
