# products/services/exceptions.py

"""
INVENTORY SERVICE ERRORS

Centralized domain errors for the inventory core.

Validation failures use django.core.exceptions.ValidationError directly
(re-exported here so callers have one import surface).
"""

from django.core.exceptions import ValidationError


class InventoryError(Exception):
    """Base exception for all inventory service failures."""


class NotFoundError(InventoryError):
    """Raised when a product, warehouse, batch or purchase order does not exist."""

    def __init__(self, entity: str, identifier=None):
        self.entity = entity
        self.identifier = identifier
        message = f"{entity} not found"
        if identifier is not None:
            message = f"{entity} not found: {identifier}"
        super().__init__(message)


class InsufficientStockError(InventoryError):
    """Raised before any batch is touched when a deduction cannot be covered."""

    def __init__(self, product_name: str, available, requested):
        self.product_name = product_name
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient stock for {product_name}. "
            f"Available: {available}, Requested: {requested}"
        )


class SequenceAllocationError(InventoryError):
    """Raised when a date-scoped number could not be allocated within the retry budget."""


__all__ = [
    "ValidationError",
    "InventoryError",
    "NotFoundError",
    "InsufficientStockError",
    "SequenceAllocationError",
]
