"""
SDK for Quote Engine.

Provides programmatic access to the quote assistant.
"""

from .quote_assistant import QuoteAssistant

__all__ = ["QuoteAssistant"]
