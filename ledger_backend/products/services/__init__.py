from .batches import (
    get_active_batches,
    get_batch_by_id,
    get_expired_batches,
    get_expiring_batches,
    list_batches,
    list_movements,
    mark_expired_batches,
)
from .costing import (
    calculate_weighted_average_cost,
    get_cost_details,
    per_warehouse_average,
    product_running_average,
)
from .exceptions import (
    InsufficientStockError,
    InventoryError,
    NotFoundError,
    SequenceAllocationError,
)
from .inventory import (
    add_stock,
    adjust_stock,
    deduct_stock,
    get_current_stock_level,
    get_stock_levels,
    get_total_stock_for_product,
    has_sufficient_stock,
    transfer_stock,
)
from .uom import convert_to_base, get_conversion_factor, get_uom_selling_price

__all__ = [
    "add_stock",
    "adjust_stock",
    "deduct_stock",
    "transfer_stock",
    "get_current_stock_level",
    "get_stock_levels",
    "get_total_stock_for_product",
    "has_sufficient_stock",
    "get_active_batches",
    "get_batch_by_id",
    "get_expired_batches",
    "get_expiring_batches",
    "list_batches",
    "list_movements",
    "mark_expired_batches",
    "calculate_weighted_average_cost",
    "get_cost_details",
    "per_warehouse_average",
    "product_running_average",
    "convert_to_base",
    "get_conversion_factor",
    "get_uom_selling_price",
    "InventoryError",
    "InsufficientStockError",
    "NotFoundError",
    "SequenceAllocationError",
]
