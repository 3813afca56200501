"""Error taxonomy shared by the ledger, fulfillment and planning services."""
from typing import Dict, Optional


class StockflowError(Exception):
    """Base exception for inventory engine errors."""
    def __init__(self, message: str, details: Optional[Dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(StockflowError):
    """Malformed or out-of-range request, rejected before any mutation."""


class InsufficientStock(StockflowError):
    """Movement or reservation would take a quantity below zero."""


class InvalidState(StockflowError):
    """Order or purchase order is not in an eligible lifecycle state."""


class NotFound(StockflowError):
    """Missing product, inventory record, order or price entry."""


class ConcurrencyConflict(StockflowError):
    """Row contention persisted after the bounded number of retries."""
