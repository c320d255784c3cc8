# products/services/costing.py

"""
COST ENGINE

Two named operations, two different scopes:

per_warehouse_average(product, warehouse)
  Weighted-average cost of the ACTIVE batches of one (product, warehouse).
  Recomputed on every call (never cached) so it always reflects concurrent
  deductions. Zero when there is no stock.

product_running_average(old_average, old_quantity, new_cost, new_quantity)
  Product-level running average across ALL warehouses, cached on
  Product.average_cost_price. Updated incrementally, and only from the
  purchase receiving transaction (apply_receipt_to_product_average).
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from django.db import transaction
from django.db.models import Sum

from products.models import InventoryBatch, Product
from products.services.batches import get_active_batches

ZERO = Decimal("0")
COST_PLACES = Decimal("0.0001")


def quantize_cost(value: Decimal) -> Decimal:
    return value.quantize(COST_PLACES, rounding=ROUND_HALF_UP)


def weighted_average(batches) -> Decimal:
    """
    Σ(quantity × unit_cost) / Σ(quantity); 0 when Σ(quantity) == 0.
    """
    total_cost = ZERO
    total_quantity = ZERO
    for batch in batches:
        qty = Decimal(str(batch.quantity))
        total_cost += qty * Decimal(str(batch.unit_cost))
        total_quantity += qty

    if total_quantity == 0:
        return ZERO
    return total_cost / total_quantity


def per_warehouse_average(*, product, warehouse) -> Decimal:
    return weighted_average(get_active_batches(product=product, warehouse=warehouse))


# Name kept for existing callers.
calculate_weighted_average_cost = per_warehouse_average


@dataclass(frozen=True)
class CostDetails:
    product_id: str
    warehouse_id: str
    average_cost: Decimal
    total_quantity: Decimal
    total_value: Decimal


def get_cost_details(*, product, warehouse) -> CostDetails:
    batches = get_active_batches(product=product, warehouse=warehouse)
    total_quantity = sum((b.quantity for b in batches), ZERO)
    total_value = sum((b.quantity * b.unit_cost for b in batches), ZERO)
    return CostDetails(
        product_id=str(getattr(product, "id", product)),
        warehouse_id=str(getattr(warehouse, "id", warehouse)),
        average_cost=weighted_average(batches),
        total_quantity=total_quantity,
        total_value=total_value,
    )


def product_running_average(
    *,
    old_average,
    old_quantity,
    new_cost,
    new_quantity,
) -> Decimal:
    """
    (old_avg × old_qty + new_cost × new_qty) / (old_qty + new_qty),
    falling back to new_cost when the combined quantity is 0.
    """
    old_average = Decimal(str(old_average or 0))
    old_quantity = Decimal(str(old_quantity or 0))
    new_cost = Decimal(str(new_cost))
    new_quantity = Decimal(str(new_quantity))

    combined = old_quantity + new_quantity
    if combined == 0:
        return new_cost
    return (old_average * old_quantity + new_cost * new_quantity) / combined


def total_active_quantity(product) -> Decimal:
    return (
        InventoryBatch.objects.filter(
            product=product,
            status=InventoryBatch.Status.ACTIVE,
        )
        .aggregate(total=Sum("quantity"))
        .get("total")
        or ZERO
    )


@transaction.atomic
def apply_receipt_to_product_average(*, product, new_cost, new_quantity, on_hand=None) -> Decimal:
    """
    Fold a received quantity into Product.average_cost_price.

    on_hand must be the product's active quantity across all warehouses
    BEFORE the receipt's batch exists; when omitted it is read now, so call
    this before opening the batch.
    """
    locked = Product.objects.select_for_update().get(pk=product.pk)

    if on_hand is None:
        on_hand = total_active_quantity(locked)

    new_average = quantize_cost(
        product_running_average(
            old_average=locked.average_cost_price,
            old_quantity=on_hand,
            new_cost=new_cost,
            new_quantity=new_quantity,
        )
    )

    locked.average_cost_price = new_average
    locked.save(update_fields=["average_cost_price", "updated_at"])

    product.average_cost_price = new_average
    return new_average
