# products/models/stock_movement.py

"""
CANONICAL INVENTORY LEDGER

Immutable inventory ledger entry, always tied to one InventoryBatch.

GUARANTEES:
- Append-only (no updates, no deletes)
- quantity is always positive; direction lives in movement_type
- reference_id/reference_type link the triggering business object
  (PO, RV, sale, transfer, adjustment) without a hard FK
"""

import uuid
from decimal import Decimal

from django.core.exceptions import ValidationError
from django.db import models

from .inventory_batch import InventoryBatch


class StockMovement(models.Model):
    class MovementType(models.TextChoices):
        IN = "IN", "Stock In"
        OUT = "OUT", "Stock Out"
        ADJUSTMENT = "ADJUSTMENT", "Adjustment"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    batch = models.ForeignKey(
        InventoryBatch, on_delete=models.PROTECT, related_name="movements"
    )

    movement_type = models.CharField(max_length=16, choices=MovementType.choices)

    quantity = models.DecimalField(max_digits=18, decimal_places=4)

    reason = models.CharField(max_length=255, blank=True, default="")

    reference_id = models.CharField(max_length=64, null=True, blank=True)
    reference_type = models.CharField(max_length=32, null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["created_at"]
        indexes = [
            models.Index(fields=["created_at"]),
            models.Index(fields=["movement_type"]),
            models.Index(fields=["batch", "created_at"]),
            models.Index(fields=["reference_type", "reference_id"]),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(quantity__gt=0),
                name="chk_movement_qty_gt_zero",
            ),
        ]

    def clean(self):
        if self.quantity is None or self.quantity <= Decimal("0"):
            raise ValidationError("quantity must be greater than zero")

        if self.movement_type not in self.MovementType.values:
            raise ValidationError({"movement_type": "Invalid movement_type"})

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValidationError("StockMovement records are immutable")

        if self.reason is not None:
            self.reason = self.reason.strip()

        self.full_clean()
        return super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValidationError(
            "StockMovement records are immutable and cannot be deleted"
        )

    @property
    def total_cost(self) -> Decimal:
        return self.batch.unit_cost * self.quantity

    def __str__(self):
        return f"{self.batch.batch_number} | {self.movement_type} | {self.quantity}"
