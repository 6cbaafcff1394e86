"""
Unit tests for SDK layer.

Tests the OpenAI-backed quote assistant with a mocked client.
"""

from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import Mock, patch

import pytest

from quote_engine.core.catalog import CatalogItem, DraftLine
from quote_engine.core.pricing import PricingSettings
from quote_engine.core.quote_builder import QuoteDraft, compute_quote
from quote_engine.core.taxes import DEFAULT_TAX_RULES
from quote_engine.sdk.quote_assistant import SYSTEM_PROMPT, QuoteAssistant


def _quote(lines=(DraftLine("PRN-100", 2),)):
    catalog = {"PRN-100": CatalogItem(sku="PRN-100", description="Laser Printer", unit_cost=Decimal("400"))}
    return compute_quote(
        QuoteDraft(lines=tuple(lines)), catalog, PricingSettings(), DEFAULT_TAX_RULES, "alice",
        computed_at=datetime(2025, 1, 28, tzinfo=timezone.utc),
    )


def _response(content):
    response = Mock()
    response.choices = [Mock()]
    response.choices[0].message.content = content
    return response


class TestQuoteAssistant:
    """Test QuoteAssistant client wrapper."""

    @patch('quote_engine.sdk.quote_assistant.OpenAI')
    def test_init_default_client(self, mock_openai_class):
        """Test initialization creates an OpenAI client."""
        mock_openai_class.return_value = Mock()

        assistant = QuoteAssistant(model="gpt-4o-mini")

        assert assistant.model == "gpt-4o-mini"
        assert assistant.client is mock_openai_class.return_value

    def test_init_missing_model(self):
        """Test initialization fails with missing model."""
        with pytest.raises(ValueError, match="model is required"):
            QuoteAssistant(model="", client=Mock())

    def test_messages_carry_engine_figures(self):
        messages = QuoteAssistant("gpt-4o-mini", client=Mock()).build_messages(
            _quote(), customer_name="Accra Office Supplies"
        )

        assert messages[0] == {"role": "system", "content": SYSTEM_PROMPT}
        content = messages[1]["content"]
        assert "Accra Office Supplies" in content
        assert "2 x 528.00 = 1056.00 GHS" in content
        assert "VAT:" in content
        assert "Grand total: 1347.98 GHS" in content

    def test_summarize(self):
        client = Mock()
        client.chat.completions.create.return_value = _response("  Two printers for GHS 1347.98.  ")
        assistant = QuoteAssistant("gpt-4o-mini", client=client)

        summary = assistant.summarize(_quote(), temperature=0.2)

        assert summary == "Two printers for GHS 1347.98."
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["temperature"] == 0.2
        assert len(kwargs["messages"]) == 2

    def test_temperature_omitted_when_unset(self):
        client = Mock()
        client.chat.completions.create.return_value = _response("ok")
        QuoteAssistant("gpt-4o-mini", client=client).summarize(_quote())
        assert "temperature" not in client.chat.completions.create.call_args.kwargs

    def test_summarize_empty_quote(self):
        client = Mock()
        with pytest.raises(ValueError, match="no line items"):
            QuoteAssistant("gpt-4o-mini", client=client).summarize(_quote(lines=()))
        client.chat.completions.create.assert_not_called()

    def test_empty_response(self):
        client = Mock()
        client.chat.completions.create.return_value = _response("")
        with pytest.raises(ValueError, match="empty message"):
            QuoteAssistant("gpt-4o-mini", client=client).summarize(_quote())

    def test_api_error_propagates(self):
        client = Mock()
        client.chat.completions.create.side_effect = RuntimeError("API Error")
        with pytest.raises(RuntimeError, match="API Error"):
            QuoteAssistant("gpt-4o-mini", client=client).summarize(_quote())
