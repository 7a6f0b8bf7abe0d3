from io import StringIO

from django.contrib.auth import get_user_model
from django.core.management import call_command
from django.test import TestCase

from storehouse import services
from storehouse.models import Product, Profile, Warehouse


class SeedDemoCommandTests(TestCase):
    def test_seed_is_idempotent(self):
        out = StringIO()
        call_command("seed_demo", stdout=out)
        call_command("seed_demo", stdout=out)

        self.assertEqual(Product.objects.count(), 5)
        primary = Warehouse.objects.get(is_primary=True)
        rice = Product.objects.get(code="P001")
        self.assertEqual(services.warehouse_inventory(primary.pk)[0]["stock"], 25)
        self.assertEqual(services.total_stock(rice.pk), 50)

        seller = get_user_model().objects.get(username="vendedor")
        self.assertEqual(seller.profile.warehouse, Warehouse.objects.get(name="Punto de Venta"))
        self.assertEqual(Profile.objects.get(user__username="admin").role, Profile.Role.ADMIN)
        self.assertIn("Productos: 0", out.getvalue())
