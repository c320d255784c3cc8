# purchases/models.py

import uuid
from decimal import Decimal

from django.core.exceptions import ValidationError
from django.db import models
from django.utils import timezone

from products.models import InventoryBatch, Product
from warehouses.models import Warehouse

TWOPLACES = Decimal("0.01")


def _money(v) -> Decimal:
    return Decimal(str(v or "0.00")).quantize(TWOPLACES)


class Supplier(models.Model):
    """
    Supplier master.

    payment_terms is free text ("Net 15", "Net 30", "Net 60", "COD");
    anything unrecognised is treated as Net 30 when a payable is raised.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    company_name = models.CharField(max_length=200)
    contact_person = models.CharField(max_length=200, blank=True, default="")
    phone = models.CharField(max_length=50, blank=True, default="")
    email = models.EmailField(blank=True, default="")
    address = models.TextField(blank=True, default="")

    payment_terms = models.CharField(max_length=32, default="Net 30")

    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["company_name"]
        indexes = [
            models.Index(fields=["company_name"]),
            models.Index(fields=["is_active"]),
        ]

    def save(self, *args, **kwargs):
        if self.company_name is not None:
            self.company_name = self.company_name.strip()
        if self.payment_terms is not None:
            self.payment_terms = self.payment_terms.strip()
        return super().save(*args, **kwargs)

    def __str__(self):
        return self.company_name


class PurchaseOrder(models.Model):
    """
    Purchase order header.

    Lifecycle: draft/pending -> ordered -> received (or cancelled).
    Receiving is performed by services (purchases/services/receiving_service.py):
    - only ORDERED orders can be received
    - receiving_status tracks cumulative line receipts
    - status flips to RECEIVED only once every line is fully received
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    STATUS_DRAFT = "draft"
    STATUS_PENDING = "pending"
    STATUS_ORDERED = "ordered"
    STATUS_RECEIVED = "received"
    STATUS_CANCELLED = "cancelled"

    STATUSES = [
        (STATUS_DRAFT, "Draft"),
        (STATUS_PENDING, "Pending"),
        (STATUS_ORDERED, "Ordered"),
        (STATUS_RECEIVED, "Received"),
        (STATUS_CANCELLED, "Cancelled"),
    ]

    RECEIVING_PENDING = "pending"
    RECEIVING_PARTIAL = "partially_received"
    RECEIVING_FULL = "fully_received"

    RECEIVING_STATUSES = [
        (RECEIVING_PENDING, "Pending"),
        (RECEIVING_PARTIAL, "Partially received"),
        (RECEIVING_FULL, "Fully received"),
    ]

    po_number = models.CharField(max_length=64, unique=True)

    supplier = models.ForeignKey(
        Supplier,
        on_delete=models.PROTECT,
        related_name="purchase_orders",
    )
    warehouse = models.ForeignKey(
        Warehouse,
        on_delete=models.PROTECT,
        related_name="purchase_orders",
    )

    status = models.CharField(max_length=20, choices=STATUSES, default=STATUS_DRAFT)
    receiving_status = models.CharField(
        max_length=24, choices=RECEIVING_STATUSES, default=RECEIVING_PENDING
    )

    total_amount = models.DecimalField(
        max_digits=14, decimal_places=2, default=Decimal("0.00")
    )

    expected_delivery_date = models.DateField(null=True, blank=True)
    actual_delivery_date = models.DateField(null=True, blank=True)

    notes = models.TextField(blank=True, default="")

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(total_amount__gte=Decimal("0.00")),
                name="purchase_order_total_nonnegative",
            ),
        ]
        indexes = [
            models.Index(fields=["status", "created_at"]),
            models.Index(fields=["supplier", "created_at"]),
            models.Index(fields=["warehouse", "created_at"]),
        ]

    def clean(self):
        if self.status == self.STATUS_RECEIVED and not self.actual_delivery_date:
            raise ValidationError(
                {"actual_delivery_date": "actual_delivery_date is required when status is received"}
            )

    def save(self, *args, **kwargs):
        self.full_clean(validate_unique=False)
        return super().save(*args, **kwargs)

    def __str__(self):
        return f"{self.po_number} ({self.supplier.company_name})"


class PurchaseOrderItem(models.Model):
    """
    Purchase order line. quantity and received_quantity are in the line's uom.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    purchase_order = models.ForeignKey(
        PurchaseOrder,
        on_delete=models.CASCADE,
        related_name="items",
    )
    product = models.ForeignKey(
        Product,
        on_delete=models.PROTECT,
        related_name="purchase_order_items",
    )

    uom = models.CharField(max_length=32)
    quantity = models.DecimalField(max_digits=18, decimal_places=4)
    unit_price = models.DecimalField(max_digits=14, decimal_places=4)
    received_quantity = models.DecimalField(
        max_digits=18, decimal_places=4, default=Decimal("0")
    )

    class Meta:
        ordering = ["id"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(quantity__gt=0),
                name="purchase_order_item_quantity_gt_zero",
            ),
            models.CheckConstraint(
                condition=models.Q(unit_price__gt=0),
                name="purchase_order_item_unit_price_gt_zero",
            ),
            models.CheckConstraint(
                condition=models.Q(received_quantity__gte=0),
                name="purchase_order_item_received_nonnegative",
            ),
        ]

    @property
    def is_fully_received(self) -> bool:
        return self.received_quantity >= self.quantity

    def __str__(self):
        product_name = getattr(self.product, "name", "Product")
        return f"{product_name} x {self.quantity} {self.uom}"


class ReceivingVoucher(models.Model):
    """
    Goods physically received against a purchase order (one delivery).
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    STATUS_COMPLETE = "complete"

    STATUSES = [
        (STATUS_COMPLETE, "Complete"),
    ]

    rv_number = models.CharField(max_length=64, unique=True)

    purchase_order = models.ForeignKey(
        PurchaseOrder,
        on_delete=models.PROTECT,
        related_name="receiving_vouchers",
    )
    warehouse = models.ForeignKey(
        Warehouse,
        on_delete=models.PROTECT,
        related_name="receiving_vouchers",
    )

    receiver_name = models.CharField(max_length=200)
    delivery_notes = models.TextField(blank=True, default="")

    status = models.CharField(max_length=20, choices=STATUSES, default=STATUS_COMPLETE)

    total_ordered_amount = models.DecimalField(
        max_digits=14, decimal_places=2, default=Decimal("0.00")
    )
    total_received_amount = models.DecimalField(
        max_digits=14, decimal_places=2, default=Decimal("0.00")
    )
    variance_amount = models.DecimalField(
        max_digits=14, decimal_places=2, default=Decimal("0.00")
    )

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["purchase_order", "created_at"]),
            models.Index(fields=["created_at"]),
        ]

    def __str__(self):
        return self.rv_number


class ReceivingVoucherItem(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    receiving_voucher = models.ForeignKey(
        ReceivingVoucher,
        on_delete=models.CASCADE,
        related_name="items",
    )
    product = models.ForeignKey(
        Product,
        on_delete=models.PROTECT,
        related_name="receiving_voucher_items",
    )
    batch = models.ForeignKey(
        InventoryBatch,
        on_delete=models.PROTECT,
        related_name="receiving_voucher_items",
        null=True,
        blank=True,
        help_text="Batch opened for this line (empty when nothing was received)",
    )

    uom = models.CharField(max_length=32)
    ordered_quantity = models.DecimalField(max_digits=18, decimal_places=4)
    received_quantity = models.DecimalField(max_digits=18, decimal_places=4)
    variance_quantity = models.DecimalField(max_digits=18, decimal_places=4)
    variance_percentage = models.DecimalField(max_digits=12, decimal_places=2)
    variance_reason = models.CharField(max_length=255, blank=True, default="")

    unit_price = models.DecimalField(max_digits=14, decimal_places=4)
    line_total = models.DecimalField(max_digits=14, decimal_places=2)

    class Meta:
        ordering = ["id"]

    def __str__(self):
        product_name = getattr(self.product, "name", "Product")
        return f"{product_name} {self.received_quantity}/{self.ordered_quantity} {self.uom}"


class AccountsPayable(models.Model):
    """
    Amount owed to a supplier for a fully received purchase order.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    STATUS_PENDING = "pending"
    STATUS_PARTIAL = "partial"
    STATUS_PAID = "paid"

    STATUSES = [
        (STATUS_PENDING, "Pending"),
        (STATUS_PARTIAL, "Partially paid"),
        (STATUS_PAID, "Paid"),
    ]

    supplier = models.ForeignKey(
        Supplier,
        on_delete=models.PROTECT,
        related_name="payables",
    )
    purchase_order = models.ForeignKey(
        PurchaseOrder,
        on_delete=models.PROTECT,
        related_name="payables",
    )

    total_amount = models.DecimalField(max_digits=14, decimal_places=2)
    paid_amount = models.DecimalField(
        max_digits=14, decimal_places=2, default=Decimal("0.00")
    )
    balance = models.DecimalField(max_digits=14, decimal_places=2)

    due_date = models.DateField(default=timezone.localdate)
    status = models.CharField(max_length=20, choices=STATUSES, default=STATUS_PENDING)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["due_date"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(total_amount__gt=Decimal("0.00")),
                name="accounts_payable_total_gt_zero",
            ),
            models.CheckConstraint(
                condition=models.Q(balance__gte=Decimal("0.00")),
                name="accounts_payable_balance_nonnegative",
            ),
        ]
        indexes = [
            models.Index(fields=["supplier", "due_date"]),
            models.Index(fields=["status", "due_date"]),
        ]

    def clean(self):
        if self.paid_amount is not None and self.paid_amount < Decimal("0.00"):
            raise ValidationError({"paid_amount": "paid_amount cannot be negative"})

        if (
            self.total_amount is not None
            and self.paid_amount is not None
            and self.balance is not None
            and _money(self.total_amount - self.paid_amount) != _money(self.balance)
        ):
            raise ValidationError({"balance": "balance must equal total_amount - paid_amount"})

    def save(self, *args, **kwargs):
        self.full_clean()
        return super().save(*args, **kwargs)

    def __str__(self):
        return f"{self.supplier.company_name} - {self.balance} due {self.due_date}"
