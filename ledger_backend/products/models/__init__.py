"""
PATH: products/models/__init__.py

Products models export surface.
"""

from .product import Product, ProductUOM
from .inventory_batch import InventoryBatch
from .stock_movement import StockMovement

__all__ = [
    "Product",
    "ProductUOM",
    "InventoryBatch",
    "StockMovement",
]
