# products/services/sequences.py

"""
DATE-SCOPED SEQUENCE NUMBERS

Format: {PREFIX}-{YYYYMMDD}-{NNNN}
  BATCH-20240115-0001   InventoryBatch.batch_number
  PO-20240315-0012      PurchaseOrder.po_number
  RV-20240315-0004      ReceivingVoucher.rv_number
  RCP-20240315-0004     POS receipt numbers (external caller, same helpers)

Rules:
- next = max(existing trailing segment for prefix+date) + 1, starting at 1
- zero-padded to 4 digits (wider once past 9999)
- must be computed and consumed inside the transaction that creates the row

Concurrency:
- "read max, increment" alone is racy. Every numbered column carries a unique
  constraint and create_with_sequence() retries inside a savepoint on
  IntegrityError, a bounded number of times.
"""

from __future__ import annotations

import logging

from django.conf import settings
from django.db import IntegrityError, transaction
from django.utils import timezone

from products.services.exceptions import SequenceAllocationError

logger = logging.getLogger("inventory")

BATCH_PREFIX = "BATCH"
PURCHASE_ORDER_PREFIX = "PO"
RECEIVING_VOUCHER_PREFIX = "RV"

SEQUENCE_WIDTH = 4


def format_date_key(day=None) -> str:
    day = day or timezone.localdate()
    return day.strftime("%Y%m%d")


def _parse_sequence(value: str, *, scope: str):
    tail = value[len(scope):]
    if not tail.isdigit():
        return None
    return int(tail)


def next_sequence(*, model, field: str, prefix: str, date_key: str | None = None) -> str:
    """
    Next identifier for prefix+date_key, scanning `model.field`.

    Parsing is numeric: BATCH-…-10000 beats BATCH-…-9999 even though it
    sorts lower as a string.
    """
    date_key = date_key or format_date_key()
    scope = f"{prefix}-{date_key}-"

    existing = model.objects.filter(**{f"{field}__startswith": scope}).values_list(
        field, flat=True
    )

    highest = 0
    for value in existing:
        seq = _parse_sequence(value, scope=scope)
        if seq is not None and seq > highest:
            highest = seq

    return f"{scope}{highest + 1:0{SEQUENCE_WIDTH}d}"


def create_with_sequence(
    *,
    model,
    field: str,
    prefix: str,
    date_key: str | None = None,
    attempts: int | None = None,
    **fields,
):
    """
    Allocate a number and insert `model(**fields, field=number)` atomically.

    Each try runs in its own savepoint so a unique-constraint collision
    rolls back only that insert and leaves the outer transaction usable.
    """
    attempts = attempts or getattr(settings, "SEQUENCE_MAX_ATTEMPTS", 5)
    last_exc = None

    for attempt in range(1, attempts + 1):
        number = next_sequence(model=model, field=field, prefix=prefix, date_key=date_key)
        try:
            with transaction.atomic():
                return model.objects.create(**{field: number}, **fields)
        except IntegrityError as exc:
            # Only a taken number is retried; any other constraint failure is fatal.
            if not model.objects.filter(**{field: number}).exists():
                raise
            last_exc = exc
            logger.warning(
                "Sequence collision, retrying",
                extra={
                    "model": model.__name__,
                    "number": number,
                    "attempt": attempt,
                },
            )

    logger.error(
        "Sequence allocation exhausted",
        extra={"model": model.__name__, "prefix": prefix, "attempts": attempts},
    )
    raise SequenceAllocationError(
        f"Could not allocate a unique {prefix} number after {attempts} attempts"
    ) from last_exc
