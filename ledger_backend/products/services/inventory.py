# products/services/inventory.py

"""
======================================================
PATH: products/services/inventory.py
======================================================
INVENTORY CORE SERVICES (STOCK MUTATOR)

Purpose:
- add_stock():      new batch + IN movement (base UOM, expiry from shelf life)
- deduct_stock():   FIFO-by-expiry depletion, one OUT movement per batch touched
- transfer_stock(): deduct at source + add at destination at source average cost
- adjust_stock():   set an active batch's quantity with an ADJUSTMENT movement
- read side:        stock levels, totals, sufficiency checks

Rules:
- Every mutation is ONE transaction (@transaction.atomic). Nested calls join
  the caller's transaction as savepoints, so transfer legs commit together.
- All validation happens before the first write.
- The product row is locked (select_for_update) by every mutation, and the
  active batches are locked before the sufficiency check, so two deductions
  of the same product cannot both pass the check against the same batches.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal

from django.core.exceptions import ValidationError
from django.db import transaction
from django.db.models import Sum
from django.utils import timezone

from products.models import InventoryBatch, Product, StockMovement
from products.services.batches import (
    append_movement,
    get_active_batches,
    open_batch,
)
from products.services.costing import ZERO, per_warehouse_average, quantize_cost
from products.services.exceptions import InsufficientStockError, NotFoundError
from products.services.uom import convert_to_base, to_decimal
from warehouses.models import Warehouse

logger = logging.getLogger("inventory")

TRANSFER_REFERENCE = "TRANSFER"
ADJUSTMENT_REFERENCE = "ADJUSTMENT"


# ============================================================
# HELPERS
# ============================================================

def _lock_product(product_id) -> Product:
    try:
        return (
            Product.objects.select_for_update()
            .prefetch_related("alternate_uoms")
            .get(id=getattr(product_id, "id", product_id))
        )
    except (Product.DoesNotExist, ValidationError, ValueError) as exc:
        raise NotFoundError("Product", product_id) from exc


def _get_warehouse(warehouse_id, *, label="Warehouse") -> Warehouse:
    try:
        return Warehouse.objects.get(id=getattr(warehouse_id, "id", warehouse_id))
    except (Warehouse.DoesNotExist, ValidationError, ValueError) as exc:
        raise NotFoundError(label, warehouse_id) from exc


def _require_positive_quantity(value: Decimal) -> Decimal:
    if value <= 0:
        raise ValidationError({"quantity": "Quantity must be greater than zero"})
    return value


def _require_positive_cost(value) -> Decimal:
    cost = quantize_cost(to_decimal(value, field_name="unit_cost"))
    if cost <= 0:
        raise ValidationError({"unit_cost": "Unit cost must be greater than zero"})
    return cost


def _to_date(value) -> date:
    if value is None:
        return timezone.localdate()
    if isinstance(value, datetime):
        if timezone.is_aware(value):
            return timezone.localdate(value)
        return value.date()
    if isinstance(value, date):
        return value
    raise ValidationError({"received_date": "received_date must be a date"})


# ============================================================
# ADD
# ============================================================

@transaction.atomic
def add_stock(
    *,
    product_id,
    warehouse_id,
    quantity,
    uom: str,
    unit_cost,
    received_date=None,
    reason: str = "Stock addition",
    reference_id=None,
    reference_type=None,
) -> InventoryBatch:
    """
    Add stock as a new batch. Returns the batch with product + warehouse loaded.
    """
    product = _lock_product(product_id)
    warehouse = _get_warehouse(warehouse_id)
    warehouse.ensure_can_receive()

    base_quantity = _require_positive_quantity(
        convert_to_base(product=product, quantity=quantity, uom=uom)
    )
    cost = _require_positive_cost(unit_cost)

    batch = open_batch(
        product=product,
        warehouse=warehouse,
        quantity=base_quantity,
        unit_cost=cost,
        received_date=_to_date(received_date),
        reason=reason or "Stock addition",
        reference_id=reference_id,
        reference_type=reference_type,
    )

    return InventoryBatch.objects.select_related("product", "warehouse").get(pk=batch.pk)


# ============================================================
# FIFO DEDUCTION
# ============================================================

@transaction.atomic
def deduct_stock(
    *,
    product_id,
    warehouse_id,
    quantity,
    uom: str,
    reason: str = "Stock deduction",
    reference_id=None,
    reference_type=None,
) -> list[StockMovement]:
    """
    Deduct stock First-Expiry-First-Out within one warehouse.

    Sufficiency is checked against locked rows BEFORE any batch is touched;
    a shortfall raises InsufficientStockError and nothing is written.
    """
    product = _lock_product(product_id)
    warehouse = _get_warehouse(warehouse_id)

    requested = _require_positive_quantity(
        convert_to_base(product=product, quantity=quantity, uom=uom)
    )

    batches = get_active_batches(product=product, warehouse=warehouse, lock=True)
    available = sum((b.quantity for b in batches), ZERO)

    if available < requested:
        logger.warning(
            "Insufficient stock for deduction",
            extra={
                "product_id": str(product.id),
                "warehouse_id": str(warehouse.id),
                "available": str(available),
                "requested": str(requested),
            },
        )
        raise InsufficientStockError(product.name, available, requested)

    remaining = requested
    movements = []

    for batch in batches:
        if remaining <= 0:
            break

        consumed = min(remaining, batch.quantity)

        # save() derives status: 0 -> depleted, otherwise active
        batch.quantity = batch.quantity - consumed
        batch.save(update_fields=["quantity", "status"])

        movements.append(
            append_movement(
                batch=batch,
                movement_type=StockMovement.MovementType.OUT,
                quantity=consumed,
                reason=reason or "Stock deduction",
                reference_id=reference_id,
                reference_type=reference_type,
            )
        )

        remaining -= consumed

    logger.info(
        "Stock deducted",
        extra={
            "product_id": str(product.id),
            "warehouse_id": str(warehouse.id),
            "quantity": str(requested),
            "batches_touched": len(movements),
        },
    )

    return movements


# ============================================================
# TRANSFER
# ============================================================

@dataclass(frozen=True)
class TransferResult:
    transfer_id: str
    unit_cost: Decimal
    source_movements: list = field(default_factory=list)
    destination_batch: InventoryBatch | None = None


@transaction.atomic
def transfer_stock(
    *,
    product_id,
    source_warehouse_id,
    destination_warehouse_id,
    quantity,
    uom: str,
    reason: str | None = None,
) -> TransferResult:
    """
    Move stock between warehouses as ONE unit of work.

    The destination batch is costed at the source's weighted-average cost.
    Either both legs commit or neither does.
    """
    if str(getattr(source_warehouse_id, "id", source_warehouse_id)) == str(
        getattr(destination_warehouse_id, "id", destination_warehouse_id)
    ):
        raise ValidationError(
            {"warehouse": "Source and destination warehouses must be different"}
        )

    product = _lock_product(product_id)
    source = _get_warehouse(source_warehouse_id, label="Source warehouse")
    destination = _get_warehouse(destination_warehouse_id, label="Destination warehouse")
    destination.ensure_can_receive()

    average_cost = quantize_cost(per_warehouse_average(product=product, warehouse=source))
    if average_cost == 0:
        raise ValidationError(
            {"warehouse": "No stock available in source warehouse"}
        )

    transfer_id = str(uuid.uuid4())

    source_movements = deduct_stock(
        product_id=product.id,
        warehouse_id=source.id,
        quantity=quantity,
        uom=uom,
        reason=reason or f"Transfer to {destination.name}",
        reference_id=transfer_id,
        reference_type=TRANSFER_REFERENCE,
    )

    destination_batch = add_stock(
        product_id=product.id,
        warehouse_id=destination.id,
        quantity=quantity,
        uom=uom,
        unit_cost=average_cost,
        reason=reason or f"Transfer from {source.name}",
        reference_id=transfer_id,
        reference_type=TRANSFER_REFERENCE,
    )

    logger.info(
        "Stock transferred",
        extra={
            "transfer_id": transfer_id,
            "product_id": str(product.id),
            "source_warehouse_id": str(source.id),
            "destination_warehouse_id": str(destination.id),
            "unit_cost": str(average_cost),
        },
    )

    return TransferResult(
        transfer_id=transfer_id,
        unit_cost=average_cost,
        source_movements=source_movements,
        destination_batch=destination_batch,
    )


# ============================================================
# ADJUSTMENT
# ============================================================

@transaction.atomic
def adjust_stock(*, batch_id, new_quantity, reason: str, reference_id=None) -> InventoryBatch:
    """
    Set an ACTIVE batch's quantity (stock count correction).

    Movement quantity is |new - current|. Depleted/expired batches are frozen.
    """
    if not (reason or "").strip():
        raise ValidationError({"reason": "reason is required"})

    target = to_decimal(new_quantity, field_name="new_quantity")

    try:
        batch = InventoryBatch.objects.select_for_update().get(
            id=getattr(batch_id, "id", batch_id)
        )
    except (InventoryBatch.DoesNotExist, ValidationError, ValueError) as exc:
        raise NotFoundError("Inventory batch", batch_id) from exc

    if batch.status != InventoryBatch.Status.ACTIVE:
        raise ValidationError({"batch": f"Cannot adjust a {batch.status} batch"})

    if target < 0:
        raise ValidationError({"new_quantity": "new_quantity cannot be negative"})

    if target > batch.quantity_received:
        raise ValidationError(
            {"new_quantity": "new_quantity cannot exceed the quantity received"}
        )

    delta = target - batch.quantity
    if delta == 0:
        raise ValidationError({"new_quantity": "new_quantity equals current quantity"})

    batch.quantity = target
    batch.save(update_fields=["quantity", "status"])

    append_movement(
        batch=batch,
        movement_type=StockMovement.MovementType.ADJUSTMENT,
        quantity=abs(delta),
        reason=reason,
        reference_id=reference_id,
        reference_type=ADJUSTMENT_REFERENCE,
    )

    logger.info(
        "Batch adjusted",
        extra={"batch_number": batch.batch_number, "delta": str(delta)},
    )

    return batch


# ============================================================
# READ SIDE
# ============================================================

def get_current_stock_level(*, product_id, warehouse_id) -> Decimal:
    """Σ quantity of active batches for (product, warehouse), base UOM."""
    return (
        InventoryBatch.objects.filter(
            product_id=getattr(product_id, "id", product_id),
            warehouse_id=getattr(warehouse_id, "id", warehouse_id),
            status=InventoryBatch.Status.ACTIVE,
        )
        .aggregate(total=Sum("quantity"))
        .get("total")
        or ZERO
    )


def get_total_stock_for_product(product_id) -> Decimal:
    return (
        InventoryBatch.objects.filter(
            product_id=getattr(product_id, "id", product_id),
            status=InventoryBatch.Status.ACTIVE,
        )
        .aggregate(total=Sum("quantity"))
        .get("total")
        or ZERO
    )


def has_sufficient_stock(*, product_id, warehouse_id, quantity, uom: str) -> bool:
    requested = convert_to_base(product=product_id, quantity=quantity, uom=uom)
    return get_current_stock_level(product_id=product_id, warehouse_id=warehouse_id) >= requested


@dataclass(frozen=True)
class StockLevel:
    product_id: str
    product_name: str
    warehouse_id: str
    warehouse_name: str
    base_uom: str
    quantity: Decimal
    weighted_average_cost: Decimal
    total_value: Decimal


def get_stock_levels(*, warehouse_id=None) -> list[StockLevel]:
    """
    One row per (product, warehouse) with active stock.
    """
    qs = InventoryBatch.objects.filter(status=InventoryBatch.Status.ACTIVE)
    if warehouse_id is not None:
        qs = qs.filter(warehouse_id=getattr(warehouse_id, "id", warehouse_id))

    groups = (
        qs.values(
            "product_id",
            "product__name",
            "product__base_uom",
            "warehouse_id",
            "warehouse__name",
        )
        .annotate(total=Sum("quantity"))
        .order_by("product__name", "warehouse__name")
    )

    levels = []
    for row in groups:
        quantity = row["total"] or ZERO
        average = per_warehouse_average(
            product=row["product_id"], warehouse=row["warehouse_id"]
        )
        levels.append(
            StockLevel(
                product_id=str(row["product_id"]),
                product_name=row["product__name"],
                warehouse_id=str(row["warehouse_id"]),
                warehouse_name=row["warehouse__name"],
                base_uom=row["product__base_uom"],
                quantity=quantity,
                weighted_average_cost=average,
                total_value=quantity * average,
            )
        )
    return levels
