"""
Quote assistant backed by an OpenAI chat model.

Writes customer-facing summaries of computed quotes. Every figure in the
prompt comes from the pricing engine; the model only phrases them.
"""

from typing import Any, Dict, List, Optional

from openai import OpenAI

from ..core.analysis import analyze_quote
from ..core.quote_builder import ComputedQuote

SYSTEM_PROMPT = (
    "You are a sales assistant for a trading company. Summarize the quote "
    "for the customer using only the figures provided. Never change, round "
    "or recompute any amount."
)


class QuoteAssistant:
    """OpenAI client wrapper that explains computed quotes.

    Failures are loud: API errors propagate unchanged.
    """

    def __init__(self, model: str, client: Optional[OpenAI] = None):
        """Initialize the assistant.

        Args:
            model: OpenAI model name (required)
            client: Preconfigured OpenAI client (defaults to OpenAI())

        Raises:
            ValueError: If model is missing/empty
        """
        if not model or not model.strip():
            raise ValueError("model is required and cannot be empty")

        self.model = model
        self.client = client or OpenAI()

    def build_messages(self, quote: ComputedQuote, customer_name: Optional[str] = None,
                       customer_tier: str = "standard") -> List[Dict[str, str]]:
        """Build the chat messages describing a quote."""
        totals = quote.totals
        analysis = analyze_quote(quote, customer_tier)
        tax_names = {rule.id: rule.name for rule in quote.tax_rules}

        lines = [
            f"- {line.description} ({line.sku}): {line.quantity} x "
            f"{line.unit_price} = {line.line_total} {quote.currency}"
            for line in quote.line_items
        ]
        taxes = [
            f"- {tax_names.get(rule_id, rule_id)}: {amount} {quote.currency}"
            for rule_id, amount in totals.tax_amounts.items()
        ]
        parts = [
            f"Customer: {customer_name or 'valued customer'} ({customer_tier})",
            f"Incoterm: {quote.incoterm}",
            "Lines:",
            *lines,
            f"Subtotal: {totals.subtotal} {quote.currency}",
            f"Shipping: {totals.shipping}, Handling: {totals.handling}, Discount: {totals.discount}",
            "Taxes:",
            *(taxes or ["- none"]),
            f"Grand total: {totals.grand_total} {quote.currency}",
            f"Service note: {analysis.service_recommendation}",
        ]
        return [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": "\n".join(parts)},
        ]

    def summarize(
        self,
        quote: ComputedQuote,
        customer_name: Optional[str] = None,
        customer_tier: str = "standard",
        temperature: Optional[float] = None,
        **kwargs: Any
    ) -> str:
        """Ask the model for a customer-facing summary of a quote.

        Returns:
            The summary text

        Raises:
            ValueError: If the quote has no lines or the response is empty
            OpenAI API errors: Propagated without modification
        """
        if not quote.line_items:
            raise ValueError("quote has no line items to summarize")

        if temperature is not None:
            kwargs["temperature"] = temperature

        response = self.client.chat.completions.create(
            model=self.model,
            messages=self.build_messages(quote, customer_name, customer_tier),
            **kwargs
        )

        if not response.choices:
            raise ValueError("OpenAI response contained no choices")
        content = response.choices[0].message.content
        if not content:
            raise ValueError("OpenAI response contained an empty message")
        return content.strip()
