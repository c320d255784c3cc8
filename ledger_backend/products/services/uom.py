# products/services/uom.py

"""
UNIT OF MEASURE CONVERSION

Every quantity the inventory core stores is in the product's base UOM.

Rules:
- UOM names match case-insensitively ("box" == "BOX" == "Box")
- base UOM -> factor 1
- alternate UOM -> its conversion_factor (base units per 1 of that UOM)
- anything else -> ValidationError naming the UOM
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from django.core.exceptions import ValidationError

from products.models import Product
from products.services.exceptions import NotFoundError

QUANTITY_PLACES = Decimal("0.0001")


def to_decimal(value, *, field_name="value") -> Decimal:
    if value is None or value == "" or isinstance(value, bool):
        raise ValidationError({field_name: f"{field_name} is required"})
    try:
        return Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise ValidationError({field_name: f"{field_name} must be a valid decimal"}) from exc


def quantize_quantity(value: Decimal) -> Decimal:
    return value.quantize(QUANTITY_PLACES, rounding=ROUND_HALF_UP)


def get_product(product) -> Product:
    """
    Resolve a Product (instance or id) with its alternate UOMs prefetched.
    """
    if isinstance(product, Product):
        return product
    try:
        return Product.objects.prefetch_related("alternate_uoms").get(id=product)
    except (Product.DoesNotExist, ValidationError, ValueError) as exc:
        raise NotFoundError("Product", product) from exc


def _same_uom(a: str, b: str) -> bool:
    return (a or "").strip().lower() == (b or "").strip().lower()


def find_alternate_uom(product: Product, uom: str):
    for alternate in product.alternate_uoms.all():
        if _same_uom(alternate.name, uom):
            return alternate
    return None


def is_base_uom(product: Product, uom: str) -> bool:
    return _same_uom(product.base_uom, uom)


def get_conversion_factor(product, uom: str) -> Decimal:
    product = get_product(product)

    if is_base_uom(product, uom):
        return Decimal("1")

    alternate = find_alternate_uom(product, uom)
    if alternate is None:
        raise ValidationError(
            {"uom": f"UOM '{uom}' not found for product {product.name}"}
        )

    return Decimal(str(alternate.conversion_factor))


def convert_to_base(*, product, quantity, uom: str) -> Decimal:
    """
    quantity (in `uom`) -> quantity in base UOM, 4 dp.
    """
    qty = to_decimal(quantity, field_name="quantity")
    factor = get_conversion_factor(product, uom)
    return quantize_quantity(qty * factor)


def get_uom_selling_price(*, product, uom: str) -> Decimal:
    # Used by sales consumers; the inventory core itself never prices.
    product = get_product(product)

    if is_base_uom(product, uom):
        return Decimal(str(product.unit_price))

    alternate = find_alternate_uom(product, uom)
    if alternate is None:
        raise ValidationError(
            {"uom": f"UOM '{uom}' not found for product {product.name}"}
        )
    return Decimal(str(alternate.selling_price))
