# products/tests/test_inventory.py

from datetime import timedelta
from decimal import Decimal
from unittest import mock

from django.core.exceptions import ValidationError
from django.test import TestCase
from django.utils import timezone

from products.models import InventoryBatch, Product, ProductUOM, StockMovement
from products.services.batches import get_batch_by_id, list_batches, list_movements
from products.services.exceptions import InsufficientStockError, NotFoundError
from products.services.inventory import (
    add_stock,
    adjust_stock,
    deduct_stock,
    get_current_stock_level,
    get_stock_levels,
    get_total_stock_for_product,
    has_sufficient_stock,
    transfer_stock,
)
from products.services.sequences import format_date_key
from warehouses.models import Warehouse


class InventoryTestMixin:
    def setUp(self):
        self.warehouse = Warehouse.objects.create(name="Main Warehouse", code="MAIN")
        self.branch = Warehouse.objects.create(name="Branch Store", code="BR1")

        self.product = Product.objects.create(
            sku="PCM-500",
            name="Paracetamol 500mg",
            base_uom="piece",
            shelf_life_days=365,
            unit_price=Decimal("10.00"),
        )
        ProductUOM.objects.create(
            product=self.product,
            name="box",
            conversion_factor=Decimal("12"),
            selling_price=Decimal("110.00"),
        )

    def add(self, quantity, unit_cost, *, warehouse=None, uom="piece", shelf_life_days=None):
        if shelf_life_days is not None:
            Product.objects.filter(pk=self.product.pk).update(shelf_life_days=shelf_life_days)
        return add_stock(
            product_id=self.product.id,
            warehouse_id=(warehouse or self.warehouse).id,
            quantity=quantity,
            uom=uom,
            unit_cost=unit_cost,
        )

    def level(self, warehouse=None):
        return get_current_stock_level(
            product_id=self.product.id,
            warehouse_id=(warehouse or self.warehouse).id,
        )


class AddStockTests(InventoryTestMixin, TestCase):
    def test_creates_active_batch_with_in_movement(self):
        batch = self.add(100, "5.00")

        self.assertEqual(batch.status, InventoryBatch.Status.ACTIVE)
        self.assertEqual(batch.quantity, Decimal("100"))
        self.assertEqual(batch.quantity_received, Decimal("100"))
        self.assertEqual(batch.unit_cost, Decimal("5.00"))
        self.assertEqual(batch.batch_number, f"BATCH-{format_date_key()}-0001")
        self.assertEqual(batch.product, self.product)
        self.assertEqual(batch.warehouse, self.warehouse)

        movements = list(batch.movements.all())
        self.assertEqual(len(movements), 1)
        self.assertEqual(movements[0].movement_type, StockMovement.MovementType.IN)
        self.assertEqual(movements[0].quantity, Decimal("100"))
        self.assertEqual(movements[0].reason, "Stock addition")

    def test_expiry_is_received_date_plus_shelf_life(self):
        received = timezone.localdate() - timedelta(days=10)
        batch = add_stock(
            product_id=self.product.id,
            warehouse_id=self.warehouse.id,
            quantity=1,
            uom="piece",
            unit_cost=1,
            received_date=received,
        )
        self.assertEqual(batch.received_date, received)
        self.assertEqual(batch.expiry_date, received + timedelta(days=365))

    def test_batch_numbers_increment_within_the_day(self):
        first = self.add(1, 1)
        second = self.add(1, 1)
        self.assertTrue(first.batch_number.endswith("-0001"))
        self.assertTrue(second.batch_number.endswith("-0002"))

    def test_alternate_uom_is_converted_to_base(self):
        batch = self.add(5, "4.00", uom="BOX")
        self.assertEqual(batch.quantity, Decimal("60"))
        self.assertEqual(self.level(), Decimal("60"))

    def test_rejects_non_positive_quantity(self):
        with self.assertRaises(ValidationError):
            self.add(0, "1.00")
        with self.assertRaises(ValidationError):
            self.add(-3, "1.00")
        self.assertFalse(InventoryBatch.objects.exists())

    def test_rejects_non_positive_unit_cost(self):
        with self.assertRaises(ValidationError):
            self.add(10, "0")
        self.assertFalse(InventoryBatch.objects.exists())

    def test_rejects_unknown_uom(self):
        with self.assertRaises(ValidationError) as ctx:
            self.add(1, "1.00", uom="pallet")
        self.assertIn("pallet", str(ctx.exception))
        self.assertFalse(StockMovement.objects.exists())

    def test_unknown_warehouse_is_not_found(self):
        with self.assertRaises(NotFoundError):
            add_stock(
                product_id=self.product.id,
                warehouse_id="00000000-0000-0000-0000-000000000000",
                quantity=1,
                uom="piece",
                unit_cost=1,
            )

    def test_unknown_product_is_not_found(self):
        with self.assertRaises(NotFoundError):
            add_stock(
                product_id="00000000-0000-0000-0000-000000000000",
                warehouse_id=self.warehouse.id,
                quantity=1,
                uom="piece",
                unit_cost=1,
            )


class DeductStockTests(InventoryTestMixin, TestCase):
    def test_fifo_by_expiry(self):
        # created out of expiry order on purpose
        late = self.add(75, "3.00", shelf_life_days=300)
        early = self.add(100, "1.00", shelf_life_days=90)
        middle = self.add(50, "2.00", shelf_life_days=180)

        movements = deduct_stock(
            product_id=self.product.id,
            warehouse_id=self.warehouse.id,
            quantity=120,
            uom="piece",
            reason="Sale",
            reference_id="SALE-1",
            reference_type="SALE",
        )

        early.refresh_from_db()
        middle.refresh_from_db()
        late.refresh_from_db()

        self.assertEqual(early.quantity, Decimal("0"))
        self.assertEqual(early.status, InventoryBatch.Status.DEPLETED)
        self.assertEqual(middle.quantity, Decimal("30"))
        self.assertEqual(middle.status, InventoryBatch.Status.ACTIVE)
        self.assertEqual(late.quantity, Decimal("75"))

        self.assertEqual([m.batch_id for m in movements], [early.id, middle.id])
        self.assertEqual([m.quantity for m in movements], [Decimal("100"), Decimal("20")])
        for m in movements:
            self.assertEqual(m.movement_type, StockMovement.MovementType.OUT)
            self.assertEqual(m.reference_id, "SALE-1")
            self.assertEqual(m.reference_type, "SALE")

        self.assertEqual(self.level(), Decimal("105"))

    def test_same_expiry_falls_back_to_batch_number(self):
        first = self.add(10, "1.00")
        second = self.add(10, "1.00")

        deduct_stock(
            product_id=self.product.id,
            warehouse_id=self.warehouse.id,
            quantity=15,
            uom="piece",
        )

        first.refresh_from_db()
        second.refresh_from_db()
        self.assertEqual(first.quantity, Decimal("0"))
        self.assertEqual(second.quantity, Decimal("5"))

    def test_insufficient_stock_mutates_nothing(self):
        batch = self.add(10, "1.00")

        with self.assertRaises(InsufficientStockError) as ctx:
            deduct_stock(
                product_id=self.product.id,
                warehouse_id=self.warehouse.id,
                quantity=11,
                uom="piece",
            )

        err = ctx.exception
        self.assertEqual(err.product_name, "Paracetamol 500mg")
        self.assertEqual(err.available, Decimal("10"))
        self.assertEqual(err.requested, Decimal("11"))
        self.assertIn("Available: 10", str(err))

        batch.refresh_from_db()
        self.assertEqual(batch.quantity, Decimal("10"))
        self.assertEqual(StockMovement.objects.filter(movement_type="OUT").count(), 0)

    def test_stock_in_other_warehouse_is_not_available(self):
        self.add(50, "1.00", warehouse=self.branch)
        with self.assertRaises(InsufficientStockError):
            deduct_stock(
                product_id=self.product.id,
                warehouse_id=self.warehouse.id,
                quantity=1,
                uom="piece",
            )

    def test_rejects_non_positive_quantity(self):
        self.add(10, "1.00")
        with self.assertRaises(ValidationError):
            deduct_stock(
                product_id=self.product.id,
                warehouse_id=self.warehouse.id,
                quantity=0,
                uom="piece",
            )

    def test_add_then_deduct_round_trip(self):
        self.add(20, "1.00")
        before = self.level()

        batch = self.add(2, "9.00", uom="box")
        deduct_stock(
            product_id=self.product.id,
            warehouse_id=self.warehouse.id,
            quantity=2,
            uom="box",
        )

        # same expiry; the older batch number drains first
        self.assertEqual(self.level(), before)
        self.assertEqual(
            sum(b.quantity for b in InventoryBatch.objects.all()),
            before,
        )
        self.assertEqual(batch.quantity_received, Decimal("24"))

    def test_round_trip_depletes_new_batch(self):
        batch = self.add(7, "2.00")
        deduct_stock(
            product_id=self.product.id,
            warehouse_id=self.warehouse.id,
            quantity=7,
            uom="piece",
        )
        batch.refresh_from_db()
        self.assertEqual(batch.quantity, Decimal("0"))
        self.assertEqual(batch.status, InventoryBatch.Status.DEPLETED)
        self.assertEqual(self.level(), Decimal("0"))


class TransferStockTests(InventoryTestMixin, TestCase):
    def test_transfer_moves_stock_at_source_average_cost(self):
        self.add(10, "2.00")
        self.add(30, "4.00")

        result = transfer_stock(
            product_id=self.product.id,
            source_warehouse_id=self.warehouse.id,
            destination_warehouse_id=self.branch.id,
            quantity=15,
            uom="piece",
        )

        self.assertEqual(result.unit_cost, Decimal("3.5000"))
        self.assertEqual(self.level(), Decimal("25"))
        self.assertEqual(self.level(self.branch), Decimal("15"))

        batch = result.destination_batch
        self.assertEqual(batch.warehouse, self.branch)
        self.assertEqual(batch.unit_cost, Decimal("3.5000"))

        legs = StockMovement.objects.filter(reference_id=result.transfer_id)
        self.assertEqual(legs.filter(movement_type="OUT").count(), 2)
        self.assertEqual(legs.filter(movement_type="IN").count(), 1)
        self.assertTrue(all(m.reference_type == "TRANSFER" for m in legs))
        self.assertEqual(
            legs.get(movement_type="IN").reason, "Transfer from Main Warehouse"
        )

    def test_same_warehouse_rejected_before_reading_batches(self):
        with mock.patch("products.services.inventory.get_active_batches") as batches, \
                mock.patch("products.services.costing.get_active_batches") as costed:
            with self.assertRaises(ValidationError):
                transfer_stock(
                    product_id=self.product.id,
                    source_warehouse_id=self.warehouse.id,
                    destination_warehouse_id=self.warehouse.id,
                    quantity=1,
                    uom="piece",
                )
        batches.assert_not_called()
        costed.assert_not_called()

    def test_no_stock_at_source_rejected(self):
        with self.assertRaises(ValidationError):
            transfer_stock(
                product_id=self.product.id,
                source_warehouse_id=self.warehouse.id,
                destination_warehouse_id=self.branch.id,
                quantity=1,
                uom="piece",
            )

    def test_insufficient_stock_at_source(self):
        self.add(5, "1.00")
        with self.assertRaises(InsufficientStockError):
            transfer_stock(
                product_id=self.product.id,
                source_warehouse_id=self.warehouse.id,
                destination_warehouse_id=self.branch.id,
                quantity=6,
                uom="piece",
            )
        self.assertEqual(self.level(), Decimal("5"))
        self.assertEqual(self.level(self.branch), Decimal("0"))

    def test_failed_destination_leg_rolls_back_source(self):
        batch = self.add(10, "1.00")

        with mock.patch(
            "products.services.inventory.add_stock",
            side_effect=RuntimeError("destination down"),
        ):
            with self.assertRaises(RuntimeError):
                transfer_stock(
                    product_id=self.product.id,
                    source_warehouse_id=self.warehouse.id,
                    destination_warehouse_id=self.branch.id,
                    quantity=4,
                    uom="piece",
                )

        batch.refresh_from_db()
        self.assertEqual(batch.quantity, Decimal("10"))
        self.assertFalse(StockMovement.objects.filter(movement_type="OUT").exists())
        self.assertEqual(self.level(self.branch), Decimal("0"))


class AdjustStockTests(InventoryTestMixin, TestCase):
    def test_adjust_down_and_up(self):
        batch = self.add(10, "1.00")

        adjust_stock(batch_id=batch.id, new_quantity=7, reason="Count correction")
        batch.refresh_from_db()
        self.assertEqual(batch.quantity, Decimal("7"))

        adjust_stock(batch_id=batch.id, new_quantity=9, reason="Found in back room")
        batch.refresh_from_db()
        self.assertEqual(batch.quantity, Decimal("9"))

        adjustments = batch.movements.filter(movement_type="ADJUSTMENT")
        self.assertEqual(
            sorted(m.quantity for m in adjustments), [Decimal("2"), Decimal("3")]
        )

    def test_adjust_to_zero_depletes(self):
        batch = self.add(10, "1.00")
        adjust_stock(batch_id=batch.id, new_quantity=0, reason="Damaged")
        batch.refresh_from_db()
        self.assertEqual(batch.status, InventoryBatch.Status.DEPLETED)

    def test_adjust_bounds(self):
        batch = self.add(10, "1.00")
        with self.assertRaises(ValidationError):
            adjust_stock(batch_id=batch.id, new_quantity=11, reason="x")
        with self.assertRaises(ValidationError):
            adjust_stock(batch_id=batch.id, new_quantity=-1, reason="x")
        with self.assertRaises(ValidationError):
            adjust_stock(batch_id=batch.id, new_quantity=10, reason="x")
        with self.assertRaises(ValidationError):
            adjust_stock(batch_id=batch.id, new_quantity=5, reason="  ")

    def test_depleted_batch_is_frozen(self):
        batch = self.add(10, "1.00")
        adjust_stock(batch_id=batch.id, new_quantity=0, reason="Damaged")
        with self.assertRaises(ValidationError):
            adjust_stock(batch_id=batch.id, new_quantity=5, reason="Oops")

    def test_unknown_batch(self):
        with self.assertRaises(NotFoundError):
            adjust_stock(
                batch_id="00000000-0000-0000-0000-000000000000",
                new_quantity=1,
                reason="x",
            )


class StockReadTests(InventoryTestMixin, TestCase):
    def test_levels_and_totals(self):
        self.add(10, "2.00")
        self.add(2, "24.00", uom="box")
        self.add(5, "1.00", warehouse=self.branch)

        self.assertEqual(self.level(), Decimal("34"))
        self.assertEqual(get_total_stock_for_product(self.product.id), Decimal("39"))

        self.assertTrue(
            has_sufficient_stock(
                product_id=self.product.id,
                warehouse_id=self.warehouse.id,
                quantity=2,
                uom="box",
            )
        )
        self.assertFalse(
            has_sufficient_stock(
                product_id=self.product.id,
                warehouse_id=self.branch.id,
                quantity=1,
                uom="box",
            )
        )

    def test_stock_levels_rows(self):
        self.add(10, "2.00")
        self.add(10, "4.00")
        self.add(5, "1.00", warehouse=self.branch)

        rows = get_stock_levels()
        self.assertEqual(len(rows), 2)

        main = next(r for r in rows if r.warehouse_id == str(self.warehouse.id))
        self.assertEqual(main.quantity, Decimal("20"))
        self.assertEqual(main.weighted_average_cost, Decimal("3"))
        self.assertEqual(main.total_value, Decimal("60"))

        only_branch = get_stock_levels(warehouse_id=self.branch.id)
        self.assertEqual([r.warehouse_name for r in only_branch], ["Branch Store"])

    def test_level_matches_sum_of_active_batches(self):
        self.add(10, "2.00")
        self.add(10, "4.00")
        deduct_stock(
            product_id=self.product.id,
            warehouse_id=self.warehouse.id,
            quantity=13,
            uom="piece",
        )
        active_sum = sum(
            b.quantity
            for b in InventoryBatch.objects.filter(
                product=self.product,
                warehouse=self.warehouse,
                status=InventoryBatch.Status.ACTIVE,
            )
        )
        self.assertEqual(self.level(), active_sum)
        self.assertEqual(self.level(), Decimal("7"))


class LedgerQueryTests(InventoryTestMixin, TestCase):
    def test_get_batch_by_id(self):
        batch = self.add(5, "1.00")
        self.assertEqual(get_batch_by_id(batch.id), batch)
        with self.assertRaises(NotFoundError):
            get_batch_by_id("not-a-uuid")

    def test_movements_filter_by_transfer_reference(self):
        self.add(10, "2.00")
        result = transfer_stock(
            product_id=self.product.id,
            source_warehouse_id=self.warehouse.id,
            destination_warehouse_id=self.branch.id,
            quantity=4,
            uom="piece",
        )

        legs = list_movements(reference_id=result.transfer_id, reference_type="TRANSFER")
        self.assertEqual(
            sorted(m.movement_type for m in legs),
            [StockMovement.MovementType.IN, StockMovement.MovementType.OUT],
        )
        self.assertEqual(
            list_movements(warehouse=self.branch).get().batch,
            result.destination_batch,
        )

    def test_list_batches_by_warehouse(self):
        self.add(3, "1.00")
        self.add(3, "1.00", warehouse=self.branch)
        self.assertEqual(list_batches(warehouse=self.branch).count(), 1)
        self.assertEqual(list_batches(product=self.product).count(), 2)


class InactiveWarehouseTests(InventoryTestMixin, TestCase):
    def test_add_stock_to_inactive_warehouse_rejected(self):
        Warehouse.objects.filter(pk=self.branch.pk).update(is_active=False)
        with self.assertRaises(ValidationError):
            self.add(5, "1.00", warehouse=self.branch)
        self.assertFalse(InventoryBatch.objects.exists())

    def test_transfer_into_inactive_warehouse_rejected(self):
        self.add(5, "1.00")
        Warehouse.objects.filter(pk=self.branch.pk).update(is_active=False)
        with self.assertRaises(ValidationError):
            transfer_stock(
                product_id=self.product.id,
                source_warehouse_id=self.warehouse.id,
                destination_warehouse_id=self.branch.id,
                quantity=2,
                uom="piece",
            )
        self.assertEqual(self.level(), Decimal("5"))

    def test_inactive_warehouse_can_be_drawn_down(self):
        self.add(5, "1.00")
        Warehouse.objects.filter(pk=self.warehouse.pk).update(is_active=False)
        deduct_stock(
            product_id=self.product.id,
            warehouse_id=self.warehouse.id,
            quantity=5,
            uom="piece",
        )
        self.assertEqual(self.level(), Decimal("0"))
