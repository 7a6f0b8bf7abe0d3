import logging
from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from django.conf import settings
from django.contrib.auth import get_user_model
from django.core.exceptions import ImproperlyConfigured, ValidationError
from django.db import transaction
from django.db.models import F, IntegerField, Sum, Value
from django.db.models.functions import Coalesce

from .ledger import (
    SALE_SINK,
    ForbiddenError,
    InsufficientStockError,
    InvalidMovementError,
    InventoryLedger,
    NotFoundError,
    NoWarehouseAssignedError,
    ProtectedWarehouseError,
    StockError,
    positive_quantity,
    to_quantity,
)
from .models import Product, Profile, Sale, SaleItem, StockMovement, Warehouse

logger = logging.getLogger(__name__)

SETTLEMENT_ATOMIC = "atomic"
SETTLEMENT_PARTIAL = "partial"

PRODUCT_EDITABLE_FIELDS = ("name", "description", "category", "price", "cost", "min_stock")


@dataclass(frozen=True)
class SaleLine:
    product_id: int
    quantity: int
    unit_price: Decimal


@dataclass
class Settlement:
    sale: Sale
    success: bool
    failed_product_ids: list[int] = field(default_factory=list)


def _to_decimal(value: Decimal | float | int | str | None) -> Decimal:
    if value is None or value == "":
        return Decimal("0.00")
    try:
        dec = value if isinstance(value, Decimal) else Decimal(str(value))
    except InvalidOperation as exc:
        raise ValidationError(f"Importe inválido: {value!r}") from exc
    if not dec.is_finite():
        raise ValidationError(f"Importe inválido: {value!r}")
    return dec.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def _ledger(ledger: InventoryLedger | None) -> InventoryLedger:
    return ledger if ledger is not None else InventoryLedger()


def settlement_policy() -> str:
    policy = getattr(settings, "STOREHOUSE", {}).get("SALE_SETTLEMENT", SETTLEMENT_ATOMIC)
    if policy not in (SETTLEMENT_ATOMIC, SETTLEMENT_PARTIAL):
        raise ImproperlyConfigured(f"STOREHOUSE['SALE_SETTLEMENT'] inválido: {policy!r}")
    return policy


def primary_warehouse() -> Warehouse | None:
    return Warehouse.objects.filter(is_primary=True).first()


# Ledger reads and transfers


def transfer_stock(product_id: int, quantity: int, origin_id: int, destination_id: int, ledger=None) -> bool:
    _ledger(ledger).transfer(product_id, quantity, origin_id, destination_id)
    return True


def warehouse_inventory(warehouse_id: int, in_stock_only: bool = False, ledger=None) -> list[dict]:
    ledger = _ledger(ledger)
    if not Warehouse.objects.using(ledger.using).filter(pk=warehouse_id).exists():
        raise NotFoundError(f"Subalmacén {warehouse_id} no existe")
    return [
        {
            "product_id": row.product_id,
            "code": row.product.code,
            "name": row.product.name,
            "price": row.product.price,
            "stock": row.quantity,
        }
        for row in ledger.by_warehouse(warehouse_id, in_stock_only=in_stock_only)
    ]


def total_stock(product_id: int, ledger=None) -> int:
    ledger = _ledger(ledger)
    if not Product.objects.using(ledger.using).filter(pk=product_id).exists():
        raise NotFoundError(f"Producto {product_id} no existe")
    return ledger.total(product_id)


def products_with_totals():
    return Product.objects.annotate(
        total_stock=Coalesce(Sum("stocks__quantity"), Value(0), output_field=IntegerField())
    ).order_by("name")


def products_below_minimum():
    return products_with_totals().filter(total_stock__lt=F("min_stock"))


# Sales


def _profile(user) -> Profile | None:
    user_id = getattr(user, "pk", None)
    if not user_id:
        return None
    return Profile.objects.select_related("warehouse").filter(user_id=user_id).first()


def is_admin_user(user, profile: Profile | None = None) -> bool:
    if getattr(user, "is_superuser", False):
        return True
    profile = profile or _profile(user)
    return profile is not None and profile.is_admin


def resolve_sale_warehouse(seller, warehouse_id: int | None = None) -> Warehouse:
    profile = _profile(seller)
    is_admin = is_admin_user(seller, profile)

    if warehouse_id is not None:
        # Workers only sell from the warehouse on their profile.
        if not is_admin and (profile is None or profile.warehouse_id != int(warehouse_id)):
            raise ForbiddenError("Solo puedes vender desde tu subalmacén asignado")
        warehouse = Warehouse.objects.filter(pk=warehouse_id).first()
        if warehouse is None:
            raise NotFoundError(f"Subalmacén {warehouse_id} no existe")
        return warehouse

    if profile and profile.warehouse:
        return profile.warehouse

    if is_admin:
        primary = primary_warehouse()
        if primary:
            return primary
    raise NoWarehouseAssignedError("No tienes un subalmacén asignado para realizar ventas")


def settle_sale(
    lines,
    total,
    tendered,
    change,
    seller,
    warehouse_id: int | None = None,
    ledger: InventoryLedger | None = None,
    policy: str | None = None,
) -> Settlement:
    lines = [
        SaleLine(
            product_id=int(line.product_id),
            quantity=positive_quantity(line.quantity),
            unit_price=_to_decimal(line.unit_price),
        )
        for line in lines
    ]
    if not lines:
        raise InvalidMovementError("Agregue productos para realizar una venta")

    ledger = _ledger(ledger)
    warehouse = resolve_sale_warehouse(seller, warehouse_id)
    products = Product.objects.using(ledger.using).in_bulk({line.product_id for line in lines})
    missing = sorted({line.product_id for line in lines} - set(products))
    if missing:
        raise NotFoundError(f"Productos inexistentes: {missing}")

    header = {
        "warehouse": warehouse,
        "seller": seller if getattr(seller, "pk", None) else None,
        "total": _to_decimal(total),
        "tendered": _to_decimal(tendered),
        "change": _to_decimal(change),
    }
    if (policy or settlement_policy()) == SETTLEMENT_PARTIAL:
        return _settle_partial(lines, products, header, ledger)
    return _settle_atomic(lines, products, header, ledger)


def _sale_item(sale: Sale, product: Product, line: SaleLine, stock_before: int, settled: bool, using: str) -> SaleItem:
    return SaleItem.objects.using(using).create(
        sale=sale,
        product=product,
        code=product.code,
        name=product.name,
        unit_price=line.unit_price,
        quantity=line.quantity,
        stock_at_sale=stock_before,
        settled=settled,
    )


def _settle_atomic(lines, products, header, ledger: InventoryLedger) -> Settlement:
    warehouse = header["warehouse"]
    requested = defaultdict(int)
    for line in lines:
        requested[line.product_id] += line.quantity

    with transaction.atomic(using=ledger.using):
        for product_id, qty in requested.items():
            available = ledger.quantity(product_id, warehouse.pk)
            if available < qty:
                logger.warning(
                    "Sale rejected: product=%s warehouse=%s requested=%s available=%s",
                    product_id,
                    warehouse.pk,
                    qty,
                    available,
                )
                raise InsufficientStockError(product_id, warehouse.pk, qty, available)

        sale = Sale.objects.using(ledger.using).create(**header)
        for line in lines:
            before = ledger.transfer(line.product_id, line.quantity, warehouse.pk, SALE_SINK)
            _sale_item(sale, products[line.product_id], line, before, True, ledger.using)

    logger.info("Sale #%s settled: warehouse=%s total=%s", sale.pk, warehouse.pk, sale.total)
    return Settlement(sale=sale, success=True)


def _settle_partial(lines, products, header, ledger: InventoryLedger) -> Settlement:
    warehouse = header["warehouse"]
    sale = Sale.objects.using(ledger.using).create(**header)
    failed = []
    for line in lines:
        try:
            before = ledger.transfer(line.product_id, line.quantity, warehouse.pk, SALE_SINK)
            settled = True
        except InsufficientStockError as exc:
            logger.warning("Sale #%s: inventory not updated for product=%s (%s)", sale.pk, line.product_id, exc)
            before = exc.available
            settled = False
            failed.append(line.product_id)
        _sale_item(sale, products[line.product_id], line, before, settled, ledger.using)

    if failed:
        sale.inventory_complete = False
        sale.save(using=ledger.using, update_fields=["inventory_complete"])
    logger.info("Sale #%s recorded: warehouse=%s total=%s failed=%s", sale.pk, warehouse.pk, sale.total, failed)
    return Settlement(sale=sale, success=not failed, failed_product_ids=failed)


# Manual movements


@transaction.atomic
def register_movement(
    product_id: int,
    warehouse_id: int,
    quantity: int,
    kind: str,
    user=None,
    description: str = "",
    reference: str = "",
    ledger: InventoryLedger | None = None,
) -> StockMovement:
    qty = positive_quantity(quantity)
    if kind not in StockMovement.Kind.values:
        raise InvalidMovementError(f"Tipo de movimiento inválido: {kind!r}")
    product = Product.objects.filter(pk=product_id).first()
    warehouse = Warehouse.objects.filter(pk=warehouse_id).first()
    if product is None or warehouse is None:
        raise NotFoundError("Producto o subalmacén inexistente")

    ledger = _ledger(ledger)
    if kind == StockMovement.Kind.IN:
        ledger.increase(product.pk, warehouse.pk, qty)
    else:
        ledger.decrease(product.pk, warehouse.pk, qty)

    return StockMovement.objects.create(
        product=product,
        warehouse=warehouse,
        kind=kind,
        quantity=qty,
        description=description or "",
        reference=reference or "",
        user=user if getattr(user, "pk", None) else None,
    )


# Catalog


@transaction.atomic
def create_product(
    code: str,
    name: str,
    price=Decimal("0.00"),
    cost=Decimal("0.00"),
    description: str = "",
    category: str = "",
    min_stock: int = 5,
    initial_stock: int = 0,
    ledger: InventoryLedger | None = None,
) -> Product:
    initial = to_quantity(initial_stock or 0)
    if initial < 0:
        raise InvalidMovementError("El stock inicial no puede ser negativo")
    if Product.objects.filter(code=code).exists():
        raise InvalidMovementError("Ya existe un producto con este código")

    product = Product.objects.create(
        code=code,
        name=name,
        description=description or "",
        category=category or "",
        price=_to_decimal(price),
        cost=_to_decimal(cost),
        stock=initial,
        min_stock=min_stock,
    )
    if initial > 0:
        primary = primary_warehouse()
        if primary is None:
            raise NotFoundError("No hay almacén principal configurado")
        _ledger(ledger).increase(product.pk, primary.pk, initial)
    logger.info("Product %s created with %s units", product.code, initial)
    return product


def update_product(product: Product, **fields) -> Product:
    if "code" in fields and fields.pop("code") != product.code:
        raise InvalidMovementError("El código de un producto no puede modificarse")
    unknown = set(fields) - set(PRODUCT_EDITABLE_FIELDS)
    if unknown:
        raise ValidationError(f"Campos no editables: {sorted(unknown)}")
    for name, value in fields.items():
        if name in ("price", "cost"):
            value = _to_decimal(value)
        setattr(product, name, value)
    if fields:
        product.save(update_fields=list(fields))
    return product


def delete_product(product_id: int) -> None:
    product = Product.objects.filter(pk=product_id).first()
    if product is None:
        raise NotFoundError(f"Producto {product_id} no existe")
    product.delete()
    logger.info("Product %s deleted", product_id)


def save_warehouse(name: str, address: str = "", description: str = "", warehouse_id: int | None = None) -> Warehouse:
    if warehouse_id is None:
        return Warehouse.objects.create(name=name, address=address or "", description=description or "")
    warehouse = Warehouse.objects.filter(pk=warehouse_id).first()
    if warehouse is None:
        raise NotFoundError(f"Subalmacén {warehouse_id} no existe")
    warehouse.name = name
    warehouse.address = address or ""
    warehouse.description = description or ""
    warehouse.save(update_fields=["name", "address", "description"])
    return warehouse


def delete_warehouse(warehouse_id: int) -> None:
    warehouse = Warehouse.objects.filter(pk=warehouse_id).first()
    if warehouse is None:
        raise NotFoundError(f"Subalmacén {warehouse_id} no existe")
    if warehouse.is_primary:
        raise ProtectedWarehouseError("No se puede eliminar el almacén principal")
    warehouse.delete()
    logger.info("Warehouse %s deleted", warehouse_id)


# Users


@transaction.atomic
def create_user(
    username: str,
    password: str,
    role: str = Profile.Role.WORKER,
    name: str = "",
    warehouse_id: int | None = None,
):
    if role not in Profile.Role.values:
        raise ValidationError(f"Rol inválido: {role!r}")
    User = get_user_model()
    if User.objects.filter(username=username).exists():
        raise ValidationError("El nombre de usuario ya existe")
    if warehouse_id is not None and not Warehouse.objects.filter(pk=warehouse_id).exists():
        raise NotFoundError(f"Subalmacén {warehouse_id} no existe")

    user = User.objects.create_user(username=username, password=password)
    # The post_save signal already created the profile.
    Profile.objects.filter(user=user).update(role=role, name=name or "", warehouse_id=warehouse_id)
    return user


def change_password(user, old_password: str, new_password: str) -> bool:
    if not user.check_password(old_password):
        return False
    user.set_password(new_password)
    user.save(update_fields=["password"])
    return True
