# purchases/services/purchase_order_service.py

"""
PURCHASE ORDER SERVICE

- create_purchase_order(): validates supplier + lines, allocates PO-YYYYMMDD-NNNN
- place_purchase_order():  draft/pending -> ordered (receivable)
"""

from __future__ import annotations

import logging
from decimal import ROUND_HALF_UP, Decimal

from django.core.exceptions import ValidationError
from django.db import transaction

from products.models import Product
from products.services.exceptions import NotFoundError
from products.services.sequences import PURCHASE_ORDER_PREFIX, create_with_sequence
from products.services.uom import get_conversion_factor, to_decimal
from purchases.models import PurchaseOrder, PurchaseOrderItem, Supplier
from warehouses.models import Warehouse

logger = logging.getLogger("purchasing")

TWOPLACES = Decimal("0.01")


def _money(v) -> Decimal:
    return Decimal(str(v or "0.00")).quantize(TWOPLACES, rounding=ROUND_HALF_UP)


def get_purchase_order(po_id, *, lock: bool = False) -> PurchaseOrder:
    qs = PurchaseOrder.objects.select_related("supplier", "warehouse")
    if lock:
        qs = qs.select_for_update()
    try:
        return qs.get(id=po_id)
    except (PurchaseOrder.DoesNotExist, ValidationError, ValueError) as exc:
        raise NotFoundError("Purchase Order", po_id) from exc


def _validate_lines(items) -> list[dict]:
    if not items:
        raise ValidationError({"items": "Purchase order must have at least one item"})

    lines = []
    seen = set()
    for item in items:
        product_id = item.get("product_id")
        try:
            product = Product.objects.prefetch_related("alternate_uoms").get(id=product_id)
        except (Product.DoesNotExist, ValidationError, ValueError) as exc:
            raise NotFoundError("Product", product_id) from exc

        if product.id in seen:
            raise ValidationError(
                {"items": f"Product {product.name} appears on more than one line"}
            )
        seen.add(product.id)

        if not product.is_active:
            raise ValidationError({"product": f"Product {product.name} is inactive"})

        quantity = to_decimal(item.get("quantity"), field_name="quantity")
        if quantity <= 0:
            raise ValidationError({"quantity": "Quantity must be greater than zero"})

        unit_price = to_decimal(item.get("unit_price"), field_name="unit_price")
        if unit_price <= 0:
            raise ValidationError({"unit_price": "Unit price must be greater than zero"})

        uom = (item.get("uom") or product.base_uom).strip()
        # raises ValidationError for a UOM the product does not have
        get_conversion_factor(product, uom)

        lines.append(
            {
                "product": product,
                "uom": uom,
                "quantity": quantity,
                "unit_price": unit_price,
            }
        )
    return lines


@transaction.atomic
def create_purchase_order(
    *,
    supplier_id,
    warehouse_id,
    items,
    expected_delivery_date=None,
    notes: str = "",
    status: str = PurchaseOrder.STATUS_DRAFT,
) -> PurchaseOrder:
    """
    items: [{"product_id", "uom", "quantity", "unit_price"}]
    """
    if status not in (PurchaseOrder.STATUS_DRAFT, PurchaseOrder.STATUS_PENDING):
        raise ValidationError({"status": "New purchase orders must be draft or pending"})

    try:
        supplier = Supplier.objects.get(id=supplier_id)
    except (Supplier.DoesNotExist, ValidationError, ValueError) as exc:
        raise NotFoundError("Supplier", supplier_id) from exc

    if not supplier.is_active:
        raise ValidationError({"supplier": "Cannot create PO with inactive supplier"})

    try:
        warehouse = Warehouse.objects.get(id=warehouse_id)
    except (Warehouse.DoesNotExist, ValidationError, ValueError) as exc:
        raise NotFoundError("Warehouse", warehouse_id) from exc

    warehouse.ensure_can_receive()

    lines = _validate_lines(items)
    total = _money(sum((line["quantity"] * line["unit_price"] for line in lines), Decimal("0")))

    po = create_with_sequence(
        model=PurchaseOrder,
        field="po_number",
        prefix=PURCHASE_ORDER_PREFIX,
        supplier=supplier,
        warehouse=warehouse,
        status=status,
        total_amount=total,
        expected_delivery_date=expected_delivery_date,
        notes=(notes or "").strip(),
    )

    PurchaseOrderItem.objects.bulk_create(
        [PurchaseOrderItem(purchase_order=po, **line) for line in lines]
    )

    logger.info(
        "Purchase order created",
        extra={
            "po_number": po.po_number,
            "supplier_id": str(supplier.id),
            "warehouse_id": str(warehouse.id),
            "total_amount": str(total),
            "lines": len(lines),
        },
    )

    return po


@transaction.atomic
def place_purchase_order(po_id) -> PurchaseOrder:
    po = get_purchase_order(po_id, lock=True)

    if po.status not in (PurchaseOrder.STATUS_DRAFT, PurchaseOrder.STATUS_PENDING):
        raise ValidationError(
            {"status": f"Cannot change status from {po.status} to {PurchaseOrder.STATUS_ORDERED}"}
        )

    po.status = PurchaseOrder.STATUS_ORDERED
    po.save(update_fields=["status", "updated_at"])

    logger.info("Purchase order placed", extra={"po_number": po.po_number})
    return po

