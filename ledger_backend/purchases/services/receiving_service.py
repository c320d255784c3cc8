# purchases/services/receiving_service.py


"""
======================================================
PATH: purchases/services/receiving_service.py
======================================================
PURCHASE RECEIVING SERVICE

Receive goods against an ORDERED PurchaseOrder atomically:

Canonical flow:
1) Lock PO (+ lines)
2) Validate status + items (every item must match a PO line)
3) Allocate RV-YYYYMMDD-NNNN and record variances per line
4) Per received line:
   - per-base-unit cost = unit_price / factor of the line's UOM (4 dp)
   - fold the receipt into Product.average_cost_price (on-hand BEFORE the batch)
   - open a batch (quantity converted to base UOM) + IN movement referencing the RV
   - bump the PO line's cumulative received_quantity (ordering UOM)
5) Recompute receiving_status; RECEIVED + actual_delivery_date only when full
6) Raise AccountsPayable for the completing voucher when its received amount > 0

Any failure rolls the whole receipt back. There is no partial-success state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal

from django.core.exceptions import ValidationError
from django.db import transaction
from django.utils import timezone

from products.services.batches import open_batch
from products.services.costing import apply_receipt_to_product_average, quantize_cost
from products.services.exceptions import NotFoundError
from products.services.sequences import RECEIVING_VOUCHER_PREFIX, create_with_sequence
from products.services.uom import get_conversion_factor, quantize_quantity, to_decimal
from purchases.models import (
    AccountsPayable,
    PurchaseOrder,
    PurchaseOrderItem,
    ReceivingVoucher,
    ReceivingVoucherItem,
)
from purchases.services.payment_terms import calculate_due_date

logger = logging.getLogger("purchasing")

RECEIVING_REFERENCE = "RV"

TWOPLACES = Decimal("0.01")
ZERO = Decimal("0")
HUNDRED = Decimal("100")


def _money(v) -> Decimal:
    return Decimal(str(v or "0.00")).quantize(TWOPLACES, rounding=ROUND_HALF_UP)


def variance_percentage(ordered: Decimal, received: Decimal) -> Decimal:
    """(received - ordered) / ordered × 100 at 2 dp; 0 when nothing was ordered."""
    if ordered == 0:
        return Decimal("0.00")
    return _money((received - ordered) / ordered * HUNDRED)


def _match_lines(po_lines, items) -> list[dict]:
    """
    Pair each received item with its PO line (by product) and validate numbers.
    Runs before any write.
    """
    by_product = {str(line.product_id): line for line in po_lines}
    matched = []
    seen = set()

    for item in items:
        product_id = str(item.get("product_id") or "")
        line = by_product.get(product_id)
        if line is None:
            raise ValidationError(
                {"items": f"Product {product_id} is not on this purchase order"}
            )
        if product_id in seen:
            raise ValidationError({"items": f"Product {product_id} is listed more than once"})
        seen.add(product_id)

        item_uom = (item.get("uom") or "").strip()
        if item_uom and item_uom.lower() != line.uom.strip().lower():
            raise ValidationError(
                {"uom": f"Ordered in {line.uom}; cannot receive in {item_uom}"}
            )

        received = to_decimal(item.get("received_quantity"), field_name="received_quantity")
        if received < 0:
            raise ValidationError({"received_quantity": "received_quantity cannot be negative"})

        ordered_raw = item.get("ordered_quantity")
        ordered = line.quantity if ordered_raw is None else to_decimal(
            ordered_raw, field_name="ordered_quantity"
        )

        price_raw = item.get("unit_price")
        unit_price = line.unit_price if price_raw is None else to_decimal(
            price_raw, field_name="unit_price"
        )

        uom = line.uom.strip()
        factor = get_conversion_factor(line.product, uom)

        if received > 0 and unit_price <= 0:
            raise ValidationError({"unit_price": "Unit price must be greater than zero"})

        matched.append(
            {
                "line": line,
                "uom": uom,
                "factor": factor,
                "ordered": ordered,
                "received": received,
                "unit_price": unit_price,
                "variance_reason": (item.get("variance_reason") or "").strip(),
            }
        )

    return matched


def _receiving_status(po_lines) -> str:
    if all(line.is_fully_received for line in po_lines):
        return PurchaseOrder.RECEIVING_FULL
    if any(line.received_quantity > 0 for line in po_lines):
        return PurchaseOrder.RECEIVING_PARTIAL
    return PurchaseOrder.RECEIVING_PENDING


@transaction.atomic
def receive_from_purchase_order(
    *,
    purchase_order_id,
    items,
    receiver_name: str,
    delivery_notes: str = "",
) -> ReceivingVoucher:
    """
    items: [{"product_id", "uom", "ordered_quantity", "received_quantity",
             "unit_price", "variance_reason"?}]

    ordered_quantity / unit_price default to the PO line's values when omitted.
    """
    try:
        po = (
            PurchaseOrder.objects.select_for_update()
            .select_related("supplier", "warehouse")
            .get(id=purchase_order_id)
        )
    except (PurchaseOrder.DoesNotExist, ValidationError, ValueError) as exc:
        raise NotFoundError("Purchase Order", purchase_order_id) from exc

    if po.status != PurchaseOrder.STATUS_ORDERED:
        logger.warning(
            "Receiving rejected: purchase order not in ordered status",
            extra={"po_number": po.po_number, "status": po.status},
        )
        raise ValidationError({"status": "Purchase order must be in ordered status"})

    po.warehouse.ensure_can_receive()

    items = list(items or [])
    if not any(
        to_decimal(it.get("received_quantity"), field_name="received_quantity") > 0
        for it in items
    ):
        raise ValidationError(
            {"items": "At least one item must have received quantity greater than zero"}
        )

    receiver_name = (receiver_name or "").strip()
    if not receiver_name:
        raise ValidationError({"receiver_name": "receiver_name is required"})

    po_lines = list(
        PurchaseOrderItem.objects.select_for_update()
        .filter(purchase_order=po)
        .select_related("product")
        .prefetch_related("product__alternate_uoms")
    )
    matched = _match_lines(po_lines, items)

    # ------------------------------
    # Totals + voucher header
    # ------------------------------
    total_ordered = sum((m["ordered"] * m["unit_price"] for m in matched), ZERO)
    total_received = sum((m["received"] * m["unit_price"] for m in matched), ZERO)

    rv = create_with_sequence(
        model=ReceivingVoucher,
        field="rv_number",
        prefix=RECEIVING_VOUCHER_PREFIX,
        purchase_order=po,
        warehouse=po.warehouse,
        receiver_name=receiver_name,
        delivery_notes=(delivery_notes or "").strip(),
        status=ReceivingVoucher.STATUS_COMPLETE,
        total_ordered_amount=_money(total_ordered),
        total_received_amount=_money(total_received),
        variance_amount=_money(total_received - total_ordered),
    )

    received_date = timezone.localdate()

    # ------------------------------
    # Lines: variance + stock intake
    # ------------------------------
    for m in matched:
        line = m["line"]
        product = line.product
        batch = None

        if m["received"] > 0:
            base_quantity = quantize_quantity(m["received"] * m["factor"])
            base_cost = quantize_cost(m["unit_price"] / m["factor"])

            apply_receipt_to_product_average(
                product=product,
                new_cost=base_cost,
                new_quantity=base_quantity,
            )

            batch = open_batch(
                product=product,
                warehouse=po.warehouse,
                quantity=base_quantity,
                unit_cost=base_cost,
                received_date=received_date,
                reason=f"Received from RV {rv.rv_number} (PO {po.po_number})",
                reference_id=rv.id,
                reference_type=RECEIVING_REFERENCE,
            )

            line.received_quantity = line.received_quantity + m["received"]
            line.save(update_fields=["received_quantity"])

        ReceivingVoucherItem.objects.create(
            receiving_voucher=rv,
            product=product,
            batch=batch,
            uom=m["uom"],
            ordered_quantity=m["ordered"],
            received_quantity=m["received"],
            variance_quantity=m["received"] - m["ordered"],
            variance_percentage=variance_percentage(m["ordered"], m["received"]),
            variance_reason=m["variance_reason"],
            unit_price=m["unit_price"],
            line_total=_money(m["received"] * m["unit_price"]),
        )

    # ------------------------------
    # PO receiving status
    # ------------------------------
    po.receiving_status = _receiving_status(po_lines)
    fully_received = po.receiving_status == PurchaseOrder.RECEIVING_FULL
    if fully_received:
        po.status = PurchaseOrder.STATUS_RECEIVED
        po.actual_delivery_date = received_date
    po.save(update_fields=["receiving_status", "status", "actual_delivery_date", "updated_at"])

    # ------------------------------
    # Accounts payable
    # ------------------------------
    # Raised by the completing voucher, for that voucher's received amount.
    if fully_received and rv.total_received_amount > 0:
        payable = rv.total_received_amount
        AccountsPayable.objects.create(
            supplier=po.supplier,
            purchase_order=po,
            total_amount=payable,
            paid_amount=Decimal("0.00"),
            balance=payable,
            due_date=calculate_due_date(po.supplier.payment_terms, received_date),
            status=AccountsPayable.STATUS_PENDING,
        )

    logger.info(
        "Purchase order received",
        extra={
            "rv_number": rv.rv_number,
            "po_number": po.po_number,
            "receiving_status": po.receiving_status,
            "total_received_amount": str(rv.total_received_amount),
        },
    )

    return (
        ReceivingVoucher.objects.select_related(
            "purchase_order", "purchase_order__supplier", "warehouse"
        )
        .prefetch_related("items", "items__product", "items__batch")
        .get(pk=rv.pk)
    )


# ============================================================
# VARIANCE REPORT
# ============================================================

@dataclass
class ProductVariance:
    product_id: str
    product_name: str
    total_ordered: Decimal = ZERO
    total_received: Decimal = ZERO
    total_variance: Decimal = ZERO
    variance_frequency: int = 0


@dataclass
class SupplierVarianceReport:
    supplier_id: str
    supplier_name: str
    total_receipts: int = 0
    over_delivery_count: int = 0
    under_delivery_count: int = 0
    exact_match_count: int = 0
    average_variance_percentage: Decimal = Decimal("0.00")
    products: list = field(default_factory=list)


def generate_variance_report(start=None, end=None) -> list[SupplierVarianceReport]:
    """
    Per-supplier delivery accuracy over receiving vouchers in [start, end].

    average_variance_percentage is the share of lines delivered with any
    variance (over or under), as a percentage at 2 dp.
    """
    qs = ReceivingVoucher.objects.select_related("purchase_order__supplier").prefetch_related(
        "items", "items__product"
    )
    if start:
        qs = qs.filter(created_at__date__gte=start)
    if end:
        qs = qs.filter(created_at__date__lte=end)

    reports: dict[str, SupplierVarianceReport] = {}
    products: dict[tuple, ProductVariance] = {}

    for rv in qs.order_by("created_at"):
        supplier = rv.purchase_order.supplier
        report = reports.get(str(supplier.id))
        if report is None:
            report = SupplierVarianceReport(
                supplier_id=str(supplier.id),
                supplier_name=supplier.company_name,
            )
            reports[report.supplier_id] = report

        report.total_receipts += 1

        for item in rv.items.all():
            variance = item.variance_quantity
            if variance > 0:
                report.over_delivery_count += 1
            elif variance < 0:
                report.under_delivery_count += 1
            else:
                report.exact_match_count += 1

            key = (report.supplier_id, str(item.product_id))
            entry = products.get(key)
            if entry is None:
                entry = ProductVariance(
                    product_id=str(item.product_id),
                    product_name=item.product.name,
                )
                products[key] = entry
                report.products.append(entry)

            entry.total_ordered += item.ordered_quantity
            entry.total_received += item.received_quantity
            entry.total_variance += variance
            entry.variance_frequency += 1

    for report in reports.values():
        lines = report.over_delivery_count + report.under_delivery_count + report.exact_match_count
        varied = report.over_delivery_count + report.under_delivery_count
        if lines:
            report.average_variance_percentage = _money(Decimal(varied) / Decimal(lines) * HUNDRED)

    return sorted(reports.values(), key=lambda r: r.supplier_name)
