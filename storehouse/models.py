from decimal import Decimal

from django.conf import settings
from django.db import models
from django.db.models import Q


class Warehouse(models.Model):
    name = models.CharField(max_length=100)
    address = models.CharField(max_length=255, blank=True, default="")
    description = models.TextField(blank=True, default="")
    is_primary = models.BooleanField(default=False, help_text="Almacén principal")

    class Meta:
        ordering = ["name"]
        constraints = [
            models.UniqueConstraint(fields=["is_primary"], condition=Q(is_primary=True), name="single_primary_warehouse"),
        ]

    def __str__(self) -> str:
        return self.name


class Product(models.Model):
    code = models.CharField(max_length=64, unique=True)
    name = models.CharField(max_length=255)
    description = models.TextField(blank=True, default="")
    category = models.CharField(max_length=100, blank=True, default="")
    price = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    cost = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    # Quantity entered on creation. The per-warehouse Stock rows are the real figure.
    stock = models.IntegerField(default=0)
    min_stock = models.PositiveIntegerField(default=5, help_text="Stock mínimo")

    class Meta:
        ordering = ["name"]

    def __str__(self) -> str:
        return f"{self.code} - {self.name}"


class Stock(models.Model):
    product = models.ForeignKey(Product, on_delete=models.CASCADE, related_name="stocks")
    warehouse = models.ForeignKey(Warehouse, on_delete=models.CASCADE, related_name="stocks")
    quantity = models.PositiveIntegerField(default=0)

    class Meta:
        unique_together = ("product", "warehouse")
        ordering = ["product__name", "warehouse__name"]

    def __str__(self) -> str:
        return f"{self.product.code} @ {self.warehouse.name}: {self.quantity}"


class Profile(models.Model):
    class Role(models.TextChoices):
        ADMIN = "admin", "Administrador"
        WORKER = "worker", "Trabajador"

    user = models.OneToOneField(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="profile")
    role = models.CharField(max_length=20, choices=Role.choices, default=Role.WORKER)
    name = models.CharField(max_length=255, blank=True, default="")
    warehouse = models.ForeignKey(
        Warehouse, on_delete=models.SET_NULL, null=True, blank=True, related_name="profiles"
    )

    class Meta:
        ordering = ["user__username"]

    def __str__(self) -> str:
        return f"{self.user.username} ({self.role})"

    @property
    def is_admin(self) -> bool:
        return self.role == self.Role.ADMIN


class Sale(models.Model):
    warehouse = models.ForeignKey(Warehouse, on_delete=models.SET_NULL, null=True, blank=True, related_name="sales")
    seller = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name="sales"
    )
    total = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    tendered = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    change = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    inventory_complete = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at", "-id"]

    def __str__(self) -> str:
        return f"Sale #{self.pk}"

    @property
    def ticket_number(self) -> str:
        return f"00001-{self.pk:08d}" if self.pk else ""


class SaleItem(models.Model):
    sale = models.ForeignKey(Sale, on_delete=models.CASCADE, related_name="items")
    product = models.ForeignKey(Product, on_delete=models.SET_NULL, null=True, blank=True, related_name="sale_items")
    code = models.CharField(max_length=64)
    name = models.CharField(max_length=255)
    unit_price = models.DecimalField(max_digits=12, decimal_places=2)
    quantity = models.PositiveIntegerField()
    stock_at_sale = models.IntegerField(default=0)
    settled = models.BooleanField(default=True)

    class Meta:
        ordering = ["sale__id", "id"]

    def __str__(self) -> str:
        return f"{self.code} x {self.quantity}"

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


class StockMovement(models.Model):
    class Kind(models.TextChoices):
        IN = "IN", "Entrada"
        OUT = "OUT", "Salida"

    product = models.ForeignKey(Product, on_delete=models.CASCADE, related_name="movements")
    warehouse = models.ForeignKey(
        Warehouse, on_delete=models.SET_NULL, null=True, blank=True, related_name="movements"
    )
    kind = models.CharField(max_length=10, choices=Kind.choices)
    quantity = models.PositiveIntegerField()
    description = models.CharField(max_length=255, blank=True, default="")
    reference = models.CharField(max_length=255, blank=True, default="")
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name="stock_movements"
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at", "-id"]

    def __str__(self) -> str:
        return f"{self.kind} - {self.product.code} ({self.quantity})"
