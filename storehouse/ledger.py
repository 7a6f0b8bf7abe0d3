"""Per-warehouse stock rows and the transfer primitive built on them.

Every quantity change goes through a conditional update, so a decrement can
never leave a row below zero even with two sessions racing on the same row.
"""
import logging

from django.db import DEFAULT_DB_ALIAS, transaction
from django.db.models import F, Sum

from .models import Product, Stock, Warehouse

logger = logging.getLogger(__name__)

# Destination id meaning "consumed by a sale": units leave the ledger.
SALE_SINK = 0


class StockError(Exception):
    """Base error for stock operations."""

    code = "stock_error"


class InvalidMovementError(StockError):
    """Raised when a movement request is invalid."""

    code = "invalid"


class NotFoundError(StockError):
    """Raised when a referenced product or warehouse does not exist."""

    code = "not_found"


class InsufficientStockError(StockError):
    """Raised when an operation would result in negative stock."""

    code = "insufficient_stock"

    def __init__(self, product_id: int, warehouse_id: int, requested: int, available: int):
        self.product_id = product_id
        self.warehouse_id = warehouse_id
        self.requested = requested
        self.available = available
        super().__init__(f"Stock insuficiente: disponible {available}, solicitado {requested}")


class NoWarehouseAssignedError(StockError):
    """Raised when a sale has no warehouse to take stock from."""

    code = "no_warehouse_assigned"


class ProtectedWarehouseError(StockError):
    """Raised when deleting the primary warehouse."""

    code = "protected"


class ForbiddenError(StockError):
    """Raised when the user's role does not allow the operation."""

    code = "forbidden"


def to_quantity(value) -> int:
    try:
        qty = int(value)
    except (TypeError, ValueError) as exc:
        raise InvalidMovementError(f"Cantidad inválida: {value!r}") from exc
    if qty != value and str(qty) != str(value).strip():
        raise InvalidMovementError(f"La cantidad debe ser un número entero: {value!r}")
    return qty


def positive_quantity(value) -> int:
    qty = to_quantity(value)
    if qty <= 0:
        raise InvalidMovementError("La cantidad debe ser mayor que cero")
    return qty


class InventoryLedger:
    """Read/write access to Stock rows on one database alias."""

    def __init__(self, using: str = DEFAULT_DB_ALIAS):
        self.using = using

    def _stocks(self):
        return Stock.objects.using(self.using)

    def _require(self, model, pk: int, label: str):
        if not model.objects.using(self.using).filter(pk=pk).exists():
            raise NotFoundError(f"{label} {pk} no existe")

    def get_row(self, product_id: int, warehouse_id: int) -> Stock | None:
        return self._stocks().filter(product_id=product_id, warehouse_id=warehouse_id).first()

    def quantity(self, product_id: int, warehouse_id: int) -> int:
        row = self.get_row(product_id, warehouse_id)
        return row.quantity if row else 0

    def set_row(self, product_id: int, warehouse_id: int, quantity) -> Stock:
        qty = to_quantity(quantity)
        if qty < 0:
            raise InvalidMovementError("El stock no puede ser negativo")
        with transaction.atomic(using=self.using):
            row, created = self._stocks().select_for_update().get_or_create(
                product_id=product_id, warehouse_id=warehouse_id, defaults={"quantity": qty}
            )
            if not created and row.quantity != qty:
                row.quantity = qty
                row.save(using=self.using, update_fields=["quantity"])
        return row

    def by_warehouse(self, warehouse_id: int, in_stock_only: bool = False) -> list[Stock]:
        qs = self._stocks().select_related("product").filter(warehouse_id=warehouse_id)
        if in_stock_only:
            qs = qs.filter(quantity__gt=0)
        return list(qs.order_by("product__name", "product_id"))

    def total(self, product_id: int) -> int:
        total = self._stocks().filter(product_id=product_id).aggregate(total=Sum("quantity")).get("total")
        return total if total is not None else 0

    def increase(self, product_id: int, warehouse_id: int, quantity) -> None:
        qty = positive_quantity(quantity)
        with transaction.atomic(using=self.using):
            row, created = self._stocks().select_for_update().get_or_create(
                product_id=product_id, warehouse_id=warehouse_id, defaults={"quantity": qty}
            )
            if not created:
                self._stocks().filter(pk=row.pk).update(quantity=F("quantity") + qty)

    def decrease(self, product_id: int, warehouse_id: int, quantity) -> int:
        """Take ``quantity`` units out of a row and return what it held before."""
        qty = positive_quantity(quantity)
        with transaction.atomic(using=self.using):
            updated = (
                self._stocks()
                .filter(product_id=product_id, warehouse_id=warehouse_id, quantity__gte=qty)
                .update(quantity=F("quantity") - qty)
            )
            if not updated:
                raise InsufficientStockError(product_id, warehouse_id, qty, self.quantity(product_id, warehouse_id))
            return self.quantity(product_id, warehouse_id) + qty

    def transfer(self, product_id: int, quantity, origin_id: int, destination_id: int) -> int:
        """Move units from ``origin_id`` to ``destination_id`` or to the sale sink.

        Both halves run in one transaction. Returns the origin quantity before
        the move.
        """
        qty = positive_quantity(quantity)
        product_id, origin_id, destination_id = int(product_id), int(origin_id), int(destination_id)
        if origin_id == destination_id:
            raise InvalidMovementError("El origen y destino no pueden ser iguales")
        self._require(Product, product_id, "Producto")
        self._require(Warehouse, origin_id, "Subalmacén")
        if destination_id != SALE_SINK:
            self._require(Warehouse, destination_id, "Subalmacén")

        with transaction.atomic(using=self.using):
            before = self.decrease(product_id, origin_id, qty)
            if destination_id != SALE_SINK:
                self.increase(product_id, destination_id, qty)

        logger.info(
            "Transfer product=%s qty=%s from=%s to=%s",
            product_id,
            qty,
            origin_id,
            destination_id if destination_id != SALE_SINK else "sale",
        )
        return before
