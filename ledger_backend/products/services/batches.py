# products/services/batches.py

"""
======================================================
PATH: products/services/batches.py
======================================================
BATCH STORE + MOVEMENT LOG

Purpose:
- Canonical batch queries (FIFO-by-expiry ordering lives HERE, nowhere else).
- open_batch(): the ONE primitive that creates a batch + its IN movement.
  Used by add_stock() and by purchase receiving so expiry/status defaults
  can never drift between the two.
- Append-only movement log helpers and read filters.
- Expiry sweep (idempotent, safe alongside any mutation).

Rules:
- Quantities are base-UOM Decimals.
- Batches are never deleted; movements are never edited.
- FIFO order: (expiry_date, received_date, batch_number) ascending.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import transaction
from django.utils import timezone

from products.models import InventoryBatch, StockMovement
from products.services.exceptions import NotFoundError
from products.services.sequences import BATCH_PREFIX, create_with_sequence

logger = logging.getLogger("inventory")

FIFO_ORDER = ("expiry_date", "received_date", "batch_number")


# ============================================================
# QUERIES
# ============================================================

def get_active_batches(*, product, warehouse, lock: bool = False):
    """
    Active batches with stock for (product, warehouse), FIFO ordered.

    lock=True takes row locks (select_for_update) and must run inside
    a transaction.
    """
    qs = InventoryBatch.objects.filter(
        product=product,
        warehouse=warehouse,
        status=InventoryBatch.Status.ACTIVE,
        quantity__gt=0,
    )
    if lock:
        qs = qs.select_for_update()
    return list(qs.order_by(*FIFO_ORDER))


def get_batch_by_id(batch_id) -> InventoryBatch:
    try:
        return InventoryBatch.objects.select_related("product", "warehouse").get(id=batch_id)
    except (InventoryBatch.DoesNotExist, ValidationError, ValueError) as exc:
        raise NotFoundError("Inventory batch", batch_id) from exc


def list_batches(
    *,
    product=None,
    warehouse=None,
    status=None,
    expiry_from=None,
    expiry_to=None,
):
    qs = InventoryBatch.objects.select_related("product", "warehouse")

    if product is not None:
        qs = qs.filter(product=product)
    if warehouse is not None:
        qs = qs.filter(warehouse=warehouse)
    if status:
        qs = qs.filter(status=status)
    if expiry_from:
        qs = qs.filter(expiry_date__gte=expiry_from)
    if expiry_to:
        qs = qs.filter(expiry_date__lte=expiry_to)

    return qs.order_by(*FIFO_ORDER)


def list_movements(
    *,
    batch=None,
    product=None,
    warehouse=None,
    movement_type=None,
    reference_id=None,
    reference_type=None,
    date_from=None,
    date_to=None,
):
    qs = StockMovement.objects.select_related(
        "batch", "batch__product", "batch__warehouse"
    )

    if batch is not None:
        qs = qs.filter(batch=batch)
    if product is not None:
        qs = qs.filter(batch__product=product)
    if warehouse is not None:
        qs = qs.filter(batch__warehouse=warehouse)
    if movement_type:
        qs = qs.filter(movement_type=movement_type)
    if reference_id:
        qs = qs.filter(reference_id=str(reference_id))
    if reference_type:
        qs = qs.filter(reference_type=reference_type)
    if date_from:
        qs = qs.filter(created_at__gte=date_from)
    if date_to:
        qs = qs.filter(created_at__lte=date_to)

    return qs.order_by("created_at", "id")


def get_expiring_batches(days: int | None = None, *, today=None):
    """Active batches expiring within `days` (not yet expired)."""
    if days is None:
        days = getattr(settings, "EXPIRING_SOON_DAYS", 30)
    today = today or timezone.localdate()
    return list_batches(
        status=InventoryBatch.Status.ACTIVE,
        expiry_from=today,
        expiry_to=today + timedelta(days=days),
    )


def get_expired_batches(*, today=None):
    """Active batches whose expiry date has passed but were not swept yet."""
    today = today or timezone.localdate()
    return list_batches(status=InventoryBatch.Status.ACTIVE).filter(expiry_date__lt=today)


# ============================================================
# WRITES
# ============================================================

def append_movement(
    *,
    batch: InventoryBatch,
    movement_type: str,
    quantity,
    reason: str = "",
    reference_id=None,
    reference_type=None,
) -> StockMovement:
    return StockMovement.objects.create(
        batch=batch,
        movement_type=movement_type,
        quantity=quantity,
        reason=reason or "",
        reference_id=(str(reference_id) if reference_id is not None else None),
        reference_type=reference_type,
    )


@transaction.atomic
def open_batch(
    *,
    product,
    warehouse,
    quantity,
    unit_cost,
    received_date=None,
    reason: str = "",
    reference_id=None,
    reference_type=None,
) -> InventoryBatch:
    """
    Create an ACTIVE batch + its IN movement.

    - batch_number: BATCH-YYYYMMDD-NNNN (keyed on the current date)
    - expiry_date = received_date + product.shelf_life_days
    - caller has already converted quantity/unit_cost to base UOM
    """
    received_date = received_date or timezone.localdate()
    expiry_date = received_date + timedelta(days=int(product.shelf_life_days or 0))

    batch = create_with_sequence(
        model=InventoryBatch,
        field="batch_number",
        prefix=BATCH_PREFIX,
        product=product,
        warehouse=warehouse,
        quantity_received=quantity,
        quantity=quantity,
        unit_cost=unit_cost,
        received_date=received_date,
        expiry_date=expiry_date,
        status=InventoryBatch.Status.ACTIVE,
    )

    append_movement(
        batch=batch,
        movement_type=StockMovement.MovementType.IN,
        quantity=quantity,
        reason=reason,
        reference_id=reference_id,
        reference_type=reference_type,
    )

    logger.info(
        "Batch opened",
        extra={
            "batch_number": batch.batch_number,
            "product_id": str(product.id),
            "warehouse_id": str(warehouse.id),
            "quantity": str(quantity),
            "unit_cost": str(unit_cost),
        },
    )

    return batch


def mark_expired_batches(*, today=None) -> int:
    """
    Flip ACTIVE batches with expiry_date < today to EXPIRED.

    Single conditional UPDATE: never touches quantity, idempotent,
    safe to run concurrently with stock mutations.
    """
    today = today or timezone.localdate()
    count = InventoryBatch.objects.filter(
        status=InventoryBatch.Status.ACTIVE,
        expiry_date__lt=today,
    ).update(status=InventoryBatch.Status.EXPIRED)

    if count:
        logger.info("Expired batches marked", extra={"count": count, "as_of": str(today)})

    return count
