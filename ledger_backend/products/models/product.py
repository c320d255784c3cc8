# products/models/product.py

import uuid
from decimal import Decimal

from django.core.exceptions import ValidationError
from django.db import models
from django.db.models import Q


class Product(models.Model):
    """
    Represents a stocked product (catalog row).

    STOCK MODEL (IMPORTANT):
    - Product itself does NOT store stock
    - Stock lives in InventoryBatch, per warehouse
    - Quantities and costs are expressed in base_uom

    The catalog is owned elsewhere; the inventory core only reads it,
    except for average_cost_price which the receiving flow maintains.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    sku = models.CharField(max_length=128, unique=True, db_index=True)
    name = models.CharField(max_length=255, db_index=True)

    base_uom = models.CharField(max_length=32, default="piece")

    # Days from receipt until a batch of this product expires
    shelf_life_days = models.PositiveIntegerField(default=365)

    # Selling price per base unit
    unit_price = models.DecimalField(
        max_digits=12, decimal_places=2, default=Decimal("0.00")
    )

    # Product-level running average cost across all warehouses.
    # Written ONLY by the purchase receiving transaction.
    average_cost_price = models.DecimalField(
        max_digits=14, decimal_places=4, default=Decimal("0.0000")
    )

    is_active = models.BooleanField(default=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]
        indexes = [
            models.Index(fields=["sku"]),
            models.Index(fields=["name"]),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(average_cost_price__gte=0),
                name="chk_product_avg_cost_gte_zero",
            ),
        ]

    def __str__(self):
        return f"{self.name} ({self.sku})"

    def clean(self):
        if not (self.base_uom or "").strip():
            raise ValidationError({"base_uom": "base_uom is required"})

        if self.unit_price is not None and Decimal(self.unit_price) < 0:
            raise ValidationError({"unit_price": "unit_price cannot be negative"})

    def save(self, *args, **kwargs):
        if self.base_uom is not None:
            self.base_uom = self.base_uom.strip()
        return super().save(*args, **kwargs)


class ProductUOM(models.Model):
    """
    Alternate unit of measure for a product.

    conversion_factor = base units per 1 unit of this UOM
      BOX  factor 12    -> 1 box  = 12 pieces
      GRAM factor 0.001 -> 1 gram = 0.001 kilogram
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    product = models.ForeignKey(
        Product,
        on_delete=models.CASCADE,
        related_name="alternate_uoms",
    )

    name = models.CharField(max_length=32)

    conversion_factor = models.DecimalField(max_digits=14, decimal_places=6)

    selling_price = models.DecimalField(
        max_digits=12, decimal_places=2, default=Decimal("0.00")
    )

    position = models.PositiveIntegerField(default=0)

    class Meta:
        ordering = ["position", "name"]
        constraints = [
            models.UniqueConstraint(
                fields=["product", "name"],
                name="uniq_product_uom_name",
            ),
            models.CheckConstraint(
                condition=Q(conversion_factor__gt=0),
                name="chk_product_uom_factor_gt_zero",
            ),
        ]

    def clean(self):
        if not (self.name or "").strip():
            raise ValidationError({"name": "name is required"})

        if self.conversion_factor is None or Decimal(self.conversion_factor) <= 0:
            raise ValidationError(
                {"conversion_factor": "conversion_factor must be greater than zero"}
            )

    def __str__(self):
        return f"{self.name} = {self.conversion_factor} {self.product.base_uom}"
