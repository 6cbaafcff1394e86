"""
Unit tests for the two-tier tax cascade.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from quote_engine.core.taxes import (
    DEFAULT_TAX_RULES,
    TaxConfiguration,
    TaxRule,
    TaxTier,
    apply_taxes,
    rules_from_dicts,
    rules_to_dicts,
)


class TestTaxCascade:
    """Test tax amounts, levy total and grand total."""

    def test_default_rules(self):
        result = apply_taxes(Decimal("1000.00"), DEFAULT_TAX_RULES)

        assert result.amounts == {
            "nhil": Decimal("75.00"),
            "getfund": Decimal("25.00"),
            "covid": Decimal("10.00"),
            "vat": Decimal("166.50"),
        }
        assert result.levy_total == Decimal("1110.00")
        assert result.grand_total == Decimal("1276.50")

    def test_disabled_rules_skipped(self):
        result = apply_taxes(Decimal("1000.00"), DEFAULT_TAX_RULES)
        assert "import_duty" not in result.amounts

    def test_no_rules_is_identity(self, caplog):
        with caplog.at_level(logging.WARNING):
            result = apply_taxes(Decimal("501.26"), [])
        assert result.amounts == {}
        assert result.levy_total == Decimal("501.26")
        assert result.grand_total == Decimal("501.26")
        assert "No enabled tax rules" in caplog.text

    def test_all_disabled_is_identity(self):
        rules = [TaxRule("vat", "VAT", Decimal("15"), TaxTier.LEVY_TOTAL, enabled=False)]
        result = apply_taxes(Decimal("100"), rules)
        assert result.grand_total == Decimal("100.00")

    def test_each_amount_rounded(self):
        rules = [TaxRule("levy", "Levy", Decimal("12"), TaxTier.SUBTOTAL)]
        result = apply_taxes(Decimal("501.26"), rules)
        # 60.1512 rounds to 60.15; totals sum the rounded amounts
        assert result.amounts["levy"] == Decimal("60.15")
        assert result.grand_total == Decimal("561.41")

    def test_rule_order_does_not_change_tiers(self):
        """A levyTotal rule listed first still sees the full levy total."""
        rules = [
            TaxRule("vat", "VAT", Decimal("10"), TaxTier.LEVY_TOTAL),
            TaxRule("levy", "Levy", Decimal("10"), TaxTier.SUBTOTAL),
        ]
        result = apply_taxes(Decimal("100"), rules)
        assert result.levy_total == Decimal("110.00")
        assert result.amounts["vat"] == Decimal("11.00")
        assert result.grand_total == Decimal("121.00")

    def test_duplicate_ids_rejected(self):
        rules = [
            TaxRule("vat", "VAT", Decimal("15"), TaxTier.LEVY_TOTAL),
            TaxRule("vat", "VAT again", Decimal("5"), TaxTier.SUBTOTAL),
        ]
        with pytest.raises(ValueError, match="Duplicate tax rule id"):
            apply_taxes(Decimal("100"), rules)


class TestTaxRules:
    """Test tax rule validation and serialization."""

    @pytest.mark.parametrize("rate", ["-1", "100.01"])
    def test_rate_out_of_range(self, rate):
        with pytest.raises(ValueError, match="between 0 and 100"):
            TaxRule("x", "X", Decimal(rate), TaxTier.SUBTOTAL)

    def test_unknown_tier_rejected(self):
        with pytest.raises(ValueError, match="applies_to"):
            TaxRule.from_dict({"id": "x", "rate": 5, "applies_to": "grandTotal"})

    def test_missing_rate_rejected(self):
        with pytest.raises(ValueError, match="Missing required 'rate'"):
            TaxRule.from_dict({"id": "x", "applies_to": "subtotal"})

    def test_name_defaults_to_id(self):
        rule = TaxRule.from_dict({"id": "nhil", "rate": 7.5, "applies_to": "subtotal"})
        assert rule.name == "nhil"
        assert rule.rate == Decimal("7.5")

    def test_rules_survive_serialization(self):
        assert rules_from_dicts(rules_to_dicts(DEFAULT_TAX_RULES)) == DEFAULT_TAX_RULES

    def test_configuration_version_starts_at_one(self):
        with pytest.raises(ValueError, match="version must be >= 1"):
            TaxConfiguration(version=0, rules=(), created_at=datetime.now(timezone.utc))
