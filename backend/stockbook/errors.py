from __future__ import annotations


class StockbookError(Exception):
    """Raised for business-rule failures; details carry context for the caller's message."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class ParseError(StockbookError, ValueError):
    """Malformed carton/line quantity string."""


class ConfigurationError(StockbookError):
    """Invalid product divisor or costing configuration."""


class PaymentValidationError(StockbookError):
    """payment_type / amount_paid / total do not agree."""


class InsufficientStockError(StockbookError):
    """Requested quantity exceeds available stock or FIFO-coverable receipts."""

    def __init__(
        self,
        message: str,
        *,
        product_id: int | None = None,
        product_name: str | None = None,
        available: int | None = None,
        requested: int | None = None,
        details: dict | None = None,
    ):
        merged = {
            "product_id": product_id,
            "product_name": product_name,
            "available": available,
            "requested": requested,
        }
        merged.update(details or {})
        super().__init__(message, details=merged)
        self.product_id = product_id
        self.product_name = product_name
        self.available = available
        self.requested = requested
