# products/models/inventory_batch.py

"""
INVENTORY BATCH (DELIVERY-BASED INVENTORY)

Represents ONE cost-bearing quantity of a product received into a warehouse.

CANONICAL MODEL:
- warehouse-scoped inventory
- batch_number is globally unique (BATCH-YYYYMMDD-NNNN)
- quantity_received and unit_cost are immutable after creation
- quantity is mutated ONLY via services
- status is derived: depleted <=> quantity == 0
- expired is applied lazily by the expiry sweep, never by reads
- Never deleted (audit safety)
"""

import uuid
from decimal import Decimal

from django.core.exceptions import ValidationError
from django.db import models
from django.db.models import F, Q

from warehouses.models import Warehouse

from .product import Product


class InventoryBatch(models.Model):
    class Status(models.TextChoices):
        ACTIVE = "active", "Active"
        DEPLETED = "depleted", "Depleted"
        EXPIRED = "expired", "Expired"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    product = models.ForeignKey(
        Product,
        on_delete=models.PROTECT,
        related_name="inventory_batches",
    )

    warehouse = models.ForeignKey(
        Warehouse,
        on_delete=models.PROTECT,
        related_name="inventory_batches",
    )

    batch_number = models.CharField(max_length=64, unique=True)

    quantity_received = models.DecimalField(
        max_digits=18,
        decimal_places=4,
        help_text="Base-UOM quantity delivered (immutable)",
    )

    quantity = models.DecimalField(
        max_digits=18,
        decimal_places=4,
        help_text="Remaining base-UOM quantity (service-managed only)",
    )

    unit_cost = models.DecimalField(
        max_digits=14,
        decimal_places=4,
        help_text="Cost per base unit (immutable)",
    )

    received_date = models.DateField()
    expiry_date = models.DateField()

    status = models.CharField(
        max_length=16,
        choices=Status.choices,
        default=Status.ACTIVE,
    )

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["expiry_date", "received_date", "batch_number"]
        indexes = [
            models.Index(fields=["product", "warehouse", "status", "expiry_date"]),
            models.Index(fields=["warehouse", "expiry_date"]),
            models.Index(fields=["status", "expiry_date"]),
            models.Index(fields=["created_at"]),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(quantity_received__gt=0),
                name="chk_batch_qty_received_gt_zero",
            ),
            models.CheckConstraint(
                condition=Q(quantity__gte=0),
                name="chk_batch_qty_gte_zero",
            ),
            models.CheckConstraint(
                condition=Q(quantity__lte=F("quantity_received")),
                name="chk_batch_qty_lte_received",
            ),
            models.CheckConstraint(
                condition=Q(unit_cost__gt=0),
                name="chk_batch_unit_cost_gt_zero",
            ),
        ]

    # -------------------------------------------------
    # VALIDATION
    # -------------------------------------------------

    def clean(self):
        if self.quantity_received is None or self.quantity_received <= 0:
            raise ValidationError(
                {"quantity_received": "quantity_received must be greater than zero"}
            )

        if self.quantity is None or self.quantity < 0:
            raise ValidationError({"quantity": "quantity cannot be negative"})

        if self.quantity > self.quantity_received:
            raise ValidationError(
                {"quantity": "quantity cannot exceed quantity_received"}
            )

        if self.unit_cost is None or self.unit_cost <= Decimal("0"):
            raise ValidationError({"unit_cost": "unit_cost must be greater than zero"})

        if not self.expiry_date:
            raise ValidationError({"expiry_date": "expiry_date is required"})

        if self.received_date and self.expiry_date < self.received_date:
            raise ValidationError(
                {"expiry_date": "expiry_date cannot precede received_date"}
            )

    # -------------------------------------------------
    # IMMUTABILITY + DERIVED STATE
    # -------------------------------------------------

    def save(self, *args, **kwargs):
        if not self._state.adding:
            original = InventoryBatch.objects.only(
                "quantity_received", "unit_cost", "quantity", "status"
            ).get(pk=self.pk)

            if self.quantity_received != original.quantity_received:
                raise ValidationError({"quantity_received": "quantity_received is immutable"})

            if self.unit_cost != original.unit_cost:
                raise ValidationError({"unit_cost": "unit_cost is immutable"})

            if (
                original.status != self.Status.ACTIVE
                and self.quantity != original.quantity
            ):
                raise ValidationError(
                    {"quantity": f"quantity of a {original.status} batch cannot change"}
                )

        # depleted <=> quantity == 0
        if (self.quantity or 0) == 0:
            self.status = self.Status.DEPLETED
        elif self.status == self.Status.DEPLETED:
            self.status = self.Status.ACTIVE

        # batch_number uniqueness is left to the DB constraint so that
        # concurrent allocations surface as IntegrityError (retried upstream).
        self.full_clean(validate_unique=False)
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValidationError("InventoryBatch records are never deleted")

    # -------------------------------------------------
    # READ-ONLY HELPERS
    # -------------------------------------------------

    @property
    def is_active(self) -> bool:
        return self.status == self.Status.ACTIVE

    @property
    def quantity_consumed(self) -> Decimal:
        return self.quantity_received - self.quantity

    @property
    def total_value(self) -> Decimal:
        return self.unit_cost * self.quantity

    def __str__(self):
        product_name = getattr(self.product, "name", "Product")
        warehouse_name = getattr(self.warehouse, "name", "Warehouse")
        return f"{warehouse_name} | {product_name} | {self.batch_number}"
