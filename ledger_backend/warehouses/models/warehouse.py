# warehouses/models/warehouse.py

import uuid

from django.core.exceptions import ValidationError
from django.db import models
from django.db.models import Q


class Warehouse(models.Model):
    """
    A stock location: one half of every (product, warehouse) stock key.

    - code is optional; stored upper-cased, and unique when present
    - an inactive warehouse takes no new stock (additions, transfers in,
      purchase orders) but can still be drawn down
    - batches PROTECT their warehouse, so a warehouse with history stays
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    name = models.CharField(max_length=255)
    code = models.CharField(max_length=50, null=True, blank=True, db_index=True)
    location = models.CharField(max_length=255, blank=True, default="")

    is_active = models.BooleanField(default=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]
        constraints = [
            models.UniqueConstraint(
                fields=["code"],
                condition=Q(code__isnull=False),
                name="uniq_warehouse_code_when_present",
            ),
        ]

    def save(self, *args, **kwargs):
        self.name = (self.name or "").strip()
        self.code = (self.code or "").strip().upper() or None
        super().save(*args, **kwargs)

    def ensure_can_receive(self):
        if not self.is_active:
            raise ValidationError({"warehouse": f"Warehouse {self} is inactive"})

    def __str__(self):
        return f"{self.name} ({self.code})" if self.code else self.name
