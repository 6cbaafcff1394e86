"""
Error types raised by the pricing engine and quote lifecycle.

Validation errors identify the offending line (SKU and position) so callers
can point at it without the engine knowing about any UI.
"""

from typing import Optional


class QuoteValidationError(ValueError):
    """Raised when a draft or its settings cannot be priced."""

    def __init__(self, message: str, sku: Optional[str] = None, index: Optional[int] = None):
        super().__init__(message)
        self.sku = sku
        self.index = index


class UnknownSkuError(QuoteValidationError):
    """SKU is not present in the catalog snapshot."""


class InvalidQuantityError(QuoteValidationError):
    """Quantity is negative or not an integer."""


class InvalidPercentError(QuoteValidationError):
    """Markup or margin percent cannot produce a finite positive price."""


class MissingSettingError(QuoteValidationError):
    """A required pricing setting is absent and no override applies."""


class InvalidTransitionError(Exception):
    """Raised when a quote lifecycle transition is not permitted."""

    def __init__(self, current: str, target: str):
        super().__init__(f"Cannot move quote from '{current}' to '{target}'")
        self.current = current
        self.target = target


class QuoteNotFoundError(LookupError):
    """Raised when a stored quote record does not exist."""


class InsufficientStockError(Exception):
    """Raised when approval would take catalog stock below zero."""

    def __init__(self, sku: str, available: int, requested: int):
        super().__init__(
            f"Insufficient stock for {sku}: {available} available, {requested} requested"
        )
        self.sku = sku
        self.available = available
        self.requested = requested
