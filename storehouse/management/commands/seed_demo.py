from decimal import Decimal

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand

from storehouse import services
from storehouse.models import Product, Profile, Warehouse

DEMO_PRODUCTS = [
    ("P001", "Arroz Integral 1kg", "Arroz integral de alta calidad", "Abarrotes", "28.50", "22.00", 50, 10),
    ("P002", "Frijol Negro 1kg", "Frijol negro seleccionado", "Abarrotes", "32.00", "25.00", 40, 8),
    ("P003", "Aceite de Oliva 500ml", "Aceite de oliva extra virgen", "Aceites", "85.00", "65.00", 25, 5),
    ("P004", "Azúcar Refinada 1kg", "Azúcar blanca refinada", "Abarrotes", "25.00", "20.00", 60, 15),
    ("P005", "Sal de Mesa 1kg", "Sal refinada", "Abarrotes", "15.00", "10.00", 70, 20),
]


class Command(BaseCommand):
    help = "Carga productos y usuarios de ejemplo si no existen."

    def add_arguments(self, parser):
        parser.add_argument("--admin-password", default="admin123")
        parser.add_argument("--seller-password", default="vendedor123")

    def handle(self, *args, **options):
        if not Warehouse.objects.filter(is_primary=True).exists():
            self.stdout.write(self.style.ERROR("No hay almacén principal. Ejecute las migraciones primero."))
            return

        created_products = 0
        for code, name, description, category, price, cost, stock, min_stock in DEMO_PRODUCTS:
            if Product.objects.filter(code=code).exists():
                continue
            services.create_product(
                code=code,
                name=name,
                description=description,
                category=category,
                price=Decimal(price),
                cost=Decimal(cost),
                min_stock=min_stock,
                initial_stock=stock,
            )
            created_products += 1

        User = get_user_model()
        created_users = 0
        if not User.objects.filter(username="admin").exists():
            services.create_user("admin", options["admin_password"], role=Profile.Role.ADMIN, name="Administrador")
            created_users += 1
        if not User.objects.filter(username="vendedor").exists():
            point_of_sale = Warehouse.objects.filter(is_primary=False).order_by("id").first()
            services.create_user(
                "vendedor",
                options["seller_password"],
                role=Profile.Role.WORKER,
                name="Vendedor",
                warehouse_id=point_of_sale.pk if point_of_sale else None,
            )
            created_users += 1

        self.stdout.write(
            self.style.SUCCESS(f"Datos de ejemplo listos. Productos: {created_products}, Usuarios: {created_users}.")
        )
