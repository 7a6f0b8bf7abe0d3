from django.test import TestCase

from storehouse.ledger import (
    SALE_SINK,
    InsufficientStockError,
    InvalidMovementError,
    InventoryLedger,
    NotFoundError,
)
from storehouse.models import Product, Stock, Warehouse


class InventoryLedgerTests(TestCase):
    def setUp(self):
        self.ledger = InventoryLedger()
        self.primary = Warehouse.objects.get(is_primary=True)
        self.point_of_sale = Warehouse.objects.get(name="Punto de Venta")
        self.product = Product.objects.create(code="P1", name="Arroz")

    def test_transfer_creates_destination_row(self):
        self.ledger.set_row(self.product.pk, self.primary.pk, 50)

        before = self.ledger.transfer(self.product.pk, 20, self.primary.pk, self.point_of_sale.pk)

        self.assertEqual(before, 50)
        self.assertEqual(self.ledger.quantity(self.product.pk, self.primary.pk), 30)
        row = self.ledger.get_row(self.product.pk, self.point_of_sale.pk)
        self.assertIsNotNone(row)
        self.assertEqual(row.quantity, 20)

    def test_transfer_rejects_quantity_above_stock(self):
        self.ledger.set_row(self.product.pk, self.primary.pk, 30)

        with self.assertRaises(InsufficientStockError) as ctx:
            self.ledger.transfer(self.product.pk, 40, self.primary.pk, self.point_of_sale.pk)

        self.assertEqual(ctx.exception.available, 30)
        self.assertEqual(ctx.exception.requested, 40)
        self.assertEqual(self.ledger.quantity(self.product.pk, self.primary.pk), 30)
        self.assertIsNone(self.ledger.get_row(self.product.pk, self.point_of_sale.pk))

    def test_transfer_conserves_units_between_existing_rows(self):
        self.ledger.set_row(self.product.pk, self.primary.pk, 12)
        self.ledger.set_row(self.product.pk, self.point_of_sale.pk, 3)

        self.ledger.transfer(self.product.pk, 7, self.primary.pk, self.point_of_sale.pk)

        origin = self.ledger.quantity(self.product.pk, self.primary.pk)
        destination = self.ledger.quantity(self.product.pk, self.point_of_sale.pk)
        self.assertEqual((origin, destination), (5, 10))
        self.assertEqual(origin + destination, 15)

    def test_sale_sink_destroys_units(self):
        self.ledger.set_row(self.product.pk, self.point_of_sale.pk, 10)

        self.ledger.transfer(self.product.pk, 4, self.point_of_sale.pk, SALE_SINK)

        self.assertEqual(self.ledger.quantity(self.product.pk, self.point_of_sale.pk), 6)
        self.assertEqual(Stock.objects.count(), 1)
        self.assertEqual(self.ledger.total(self.product.pk), 6)

    def test_transfer_to_same_warehouse_is_rejected(self):
        self.ledger.set_row(self.product.pk, self.primary.pk, 5)

        with self.assertRaises(InvalidMovementError):
            self.ledger.transfer(self.product.pk, 2, self.primary.pk, self.primary.pk)

        self.assertEqual(self.ledger.quantity(self.product.pk, self.primary.pk), 5)

    def test_transfer_to_unknown_warehouse_leaves_origin(self):
        self.ledger.set_row(self.product.pk, self.primary.pk, 5)

        with self.assertRaises(NotFoundError):
            self.ledger.transfer(self.product.pk, 2, self.primary.pk, 9999)

        self.assertEqual(self.ledger.quantity(self.product.pk, self.primary.pk), 5)

    def test_transfer_of_unknown_product(self):
        with self.assertRaises(NotFoundError):
            self.ledger.transfer(9999, 1, self.primary.pk, self.point_of_sale.pk)

    def test_transfer_requires_positive_integer_quantity(self):
        self.ledger.set_row(self.product.pk, self.primary.pk, 5)
        for quantity in (0, -3, 2.5, "abc"):
            with self.assertRaises(InvalidMovementError):
                self.ledger.transfer(self.product.pk, quantity, self.primary.pk, self.point_of_sale.pk)
        self.assertEqual(self.ledger.quantity(self.product.pk, self.primary.pk), 5)

    def test_transfer_from_missing_row_reports_zero_available(self):
        with self.assertRaises(InsufficientStockError) as ctx:
            self.ledger.transfer(self.product.pk, 1, self.point_of_sale.pk, self.primary.pk)
        self.assertEqual(ctx.exception.available, 0)
        self.assertFalse(Stock.objects.exists())

    def test_stock_never_goes_negative(self):
        self.ledger.set_row(self.product.pk, self.primary.pk, 10)
        moves = [
            (6, self.primary.pk, self.point_of_sale.pk),
            (6, self.primary.pk, self.point_of_sale.pk),
            (4, self.primary.pk, SALE_SINK),
            (7, self.point_of_sale.pk, self.primary.pk),
            (9, self.point_of_sale.pk, SALE_SINK),
            (4, self.point_of_sale.pk, self.primary.pk),
        ]
        for qty, origin, destination in moves:
            try:
                self.ledger.transfer(self.product.pk, qty, origin, destination)
            except InsufficientStockError:
                pass
            self.assertFalse(Stock.objects.filter(quantity__lt=0).exists())
        self.assertEqual(self.ledger.quantity(self.product.pk, self.primary.pk), 4)
        self.assertEqual(self.ledger.quantity(self.product.pk, self.point_of_sale.pk), 2)

    def test_total_sums_all_warehouses_and_is_stable(self):
        other = Product.objects.create(code="P2", name="Frijol")
        self.ledger.set_row(self.product.pk, self.primary.pk, 8)
        self.ledger.set_row(self.product.pk, self.point_of_sale.pk, 4)
        self.ledger.set_row(other.pk, self.primary.pk, 100)

        self.assertEqual(self.ledger.total(self.product.pk), 12)
        self.assertEqual(self.ledger.total(self.product.pk), 12)
        self.assertEqual(self.ledger.total(Product.objects.create(code="P3", name="Sal").pk), 0)

    def test_set_row_upserts(self):
        self.ledger.set_row(self.product.pk, self.primary.pk, 3)
        self.ledger.set_row(self.product.pk, self.primary.pk, 9)

        self.assertEqual(Stock.objects.filter(product=self.product).count(), 1)
        self.assertEqual(self.ledger.quantity(self.product.pk, self.primary.pk), 9)
        with self.assertRaises(InvalidMovementError):
            self.ledger.set_row(self.product.pk, self.primary.pk, -1)

    def test_by_warehouse_orders_by_name_and_filters_empty_rows(self):
        zucchini = Product.objects.create(code="Z1", name="Zanahoria")
        azucar = Product.objects.create(code="A1", name="Azúcar")
        self.ledger.set_row(zucchini.pk, self.point_of_sale.pk, 2)
        self.ledger.set_row(azucar.pk, self.point_of_sale.pk, 1)
        self.ledger.set_row(self.product.pk, self.point_of_sale.pk, 0)

        names = [row.product.name for row in self.ledger.by_warehouse(self.point_of_sale.pk)]
        self.assertEqual(names, ["Arroz", "Azúcar", "Zanahoria"])

        in_stock = [row.product.code for row in self.ledger.by_warehouse(self.point_of_sale.pk, in_stock_only=True)]
        self.assertEqual(in_stock, ["A1", "Z1"])
