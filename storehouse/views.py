import json
import logging
from decimal import Decimal, InvalidOperation
from functools import wraps

from django import forms
from django.contrib.auth import login as auth_login, logout as auth_logout
from django.contrib.auth.decorators import login_required
from django.contrib.auth.forms import AuthenticationForm
from django.core.exceptions import ValidationError
from django.db.utils import DatabaseError
from django.http import JsonResponse
from django.shortcuts import get_object_or_404
from django.views.decorators.csrf import ensure_csrf_cookie
from django.views.decorators.http import require_http_methods

from . import services
from .models import Product, Sale, StockMovement, Warehouse

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    "invalid": 400,
    "not_found": 404,
    "insufficient_stock": 409,
    "no_warehouse_assigned": 409,
    "protected": 409,
    "forbidden": 403,
    "storage_error": 500,
}


class ProductForm(forms.ModelForm):
    initial_stock = forms.IntegerField(min_value=0, required=False, label="Stock inicial")

    class Meta:
        model = Product
        fields = ["code", "name", "description", "category", "price", "cost", "min_stock"]
        labels = {
            "code": "Código",
            "name": "Nombre",
            "description": "Descripción",
            "category": "Categoría",
            "price": "Precio",
            "cost": "Costo",
            "min_stock": "Stock mínimo",
        }

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        if self.instance.pk:
            self.fields["code"].disabled = True
            del self.fields["initial_stock"]


class WarehouseForm(forms.ModelForm):
    class Meta:
        model = Warehouse
        fields = ["name", "address", "description"]
        labels = {"name": "Nombre", "address": "Dirección", "description": "Descripción"}


class TransferForm(forms.Form):
    product_id = forms.IntegerField(min_value=1)
    quantity = forms.IntegerField(min_value=1, label="Cantidad")
    origin_id = forms.IntegerField(min_value=1, label="Origen")
    destination_id = forms.IntegerField(min_value=0, label="Destino")


class MovementForm(forms.Form):
    product_id = forms.IntegerField(min_value=1)
    warehouse_id = forms.IntegerField(min_value=1)
    quantity = forms.IntegerField(min_value=1, label="Cantidad")
    kind = forms.ChoiceField(choices=StockMovement.Kind.choices, label="Tipo")
    description = forms.CharField(max_length=255, required=False, label="Descripción")
    reference = forms.CharField(max_length=255, required=False, label="Referencia documento")


def _payload(request):
    if request.content_type != "application/json":
        return request.POST
    try:
        payload = json.loads(request.body.decode("utf-8") or "{}")
    except (UnicodeDecodeError, ValueError) as exc:
        raise ValidationError("JSON inválido") from exc
    if not isinstance(payload, dict):
        raise ValidationError("Se esperaba un objeto JSON")
    return payload


def _optional_id(value, label: str) -> int | None:
    if value in (None, ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{label} inválido: {value!r}") from exc


def _error(code: str, message, status: int | None = None, **extra) -> JsonResponse:
    body = {"ok": False, "error": code, "message": message, **extra}
    return JsonResponse(body, status=status or ERROR_STATUS.get(code, 400))


def _form_error(form) -> JsonResponse:
    return _error("invalid", "Datos inválidos", errors=form.errors.get_json_data())


def _money(value) -> str:
    return f"{(value or Decimal('0.00')):.2f}"


def _stock_errors(view):
    @wraps(view)
    def wrapper(request, *args, **kwargs):
        try:
            return view(request, *args, **kwargs)
        except services.InsufficientStockError as exc:
            return _error(exc.code, str(exc), product_id=exc.product_id, available=exc.available)
        except services.StockError as exc:
            return _error(exc.code, str(exc))
        except ValidationError as exc:
            return _error("invalid", "; ".join(exc.messages))
        except DatabaseError:
            logger.exception("Storage error in %s", view.__name__)
            return _error("storage_error", "No se pudo completar la operación")

    return wrapper


def _admin_required(view):
    """Reads stay open to every logged-in user; writes need an admin profile."""

    @wraps(view)
    def wrapper(request, *args, **kwargs):
        if request.method != "GET" and not services.is_admin_user(request.user):
            logger.warning("User %s denied %s %s", request.user.pk, request.method, request.path)
            return _error("forbidden", "Solo un administrador puede realizar esta operación")
        return view(request, *args, **kwargs)

    return wrapper


def _user_data(user) -> dict:
    profile = getattr(user, "profile", None)
    return {
        "id": user.pk,
        "username": user.get_username(),
        "name": profile.name if profile else "",
        "role": profile.role if profile else None,
        "warehouse_id": profile.warehouse_id if profile else None,
        "is_admin": services.is_admin_user(user, profile),
    }


def _product_data(product: Product) -> dict:
    data = {
        "id": product.id,
        "code": product.code,
        "name": product.name,
        "description": product.description,
        "category": product.category,
        "price": _money(product.price),
        "cost": _money(product.cost),
        "min_stock": product.min_stock,
    }
    if hasattr(product, "total_stock"):
        data["total_stock"] = product.total_stock
    return data


def _warehouse_data(warehouse: Warehouse) -> dict:
    return {
        "id": warehouse.id,
        "name": warehouse.name,
        "address": warehouse.address,
        "description": warehouse.description,
        "is_primary": warehouse.is_primary,
    }


def _sale_data(sale: Sale) -> dict:
    return {
        "id": sale.id,
        "ticket": sale.ticket_number,
        "created_at": sale.created_at.isoformat(),
        "warehouse_id": sale.warehouse_id,
        "seller_id": sale.seller_id,
        "total": _money(sale.total),
        "tendered": _money(sale.tendered),
        "change": _money(sale.change),
        "inventory_complete": sale.inventory_complete,
        "items": [
            {
                "product_id": item.product_id,
                "code": item.code,
                "name": item.name,
                "unit_price": _money(item.unit_price),
                "quantity": item.quantity,
                "stock_at_sale": item.stock_at_sale,
                "settled": item.settled,
            }
            for item in sale.items.all()
        ],
    }


@ensure_csrf_cookie
@require_http_methods(["GET", "POST"])
@_stock_errors
def session_login(request):
    if request.method == "GET":
        if not request.user.is_authenticated:
            return JsonResponse({"ok": True, "authenticated": False})
        return JsonResponse({"ok": True, "authenticated": True, "user": _user_data(request.user)})

    form = AuthenticationForm(request, data=_payload(request))
    if not form.is_valid():
        return _error("invalid", "Usuario o contraseña incorrectos", errors=form.errors.get_json_data())
    user = form.get_user()
    auth_login(request, user)
    logger.info("User %s logged in", user.pk)
    return JsonResponse({"ok": True, "authenticated": True, "user": _user_data(user)})


@require_http_methods(["POST"])
def session_logout(request):
    auth_logout(request)
    return JsonResponse({"ok": True, "authenticated": False})


@login_required
@require_http_methods(["GET", "POST"])
@_admin_required
@_stock_errors
def products(request):
    if request.method == "GET":
        return JsonResponse({"ok": True, "results": [_product_data(p) for p in services.products_with_totals()]})

    form = ProductForm(_payload(request))
    if not form.is_valid():
        return _form_error(form)
    data = form.cleaned_data
    product = services.create_product(
        code=data["code"],
        name=data["name"],
        description=data["description"],
        category=data["category"],
        price=data["price"],
        cost=data["cost"],
        min_stock=data["min_stock"],
        initial_stock=data.get("initial_stock") or 0,
    )
    return JsonResponse({"ok": True, "product": _product_data(product)}, status=201)


@login_required
@require_http_methods(["GET", "POST"])
@_admin_required
@_stock_errors
def product_detail(request, pk: int):
    product = get_object_or_404(Product, pk=pk)
    if request.method == "GET":
        return JsonResponse({"ok": True, "product": _product_data(product)})

    payload = _payload(request)
    requested_code = payload.get("code") or product.code
    form = ProductForm(payload, instance=product)
    if not form.is_valid():
        return _form_error(form)
    fields = {name: form.cleaned_data[name] for name in services.PRODUCT_EDITABLE_FIELDS}
    product = services.update_product(Product.objects.get(pk=pk), code=requested_code, **fields)
    return JsonResponse({"ok": True, "product": _product_data(product)})


@login_required
@require_http_methods(["POST"])
@_admin_required
@_stock_errors
def product_delete(request, pk: int):
    services.delete_product(pk)
    return JsonResponse({"ok": True})


@login_required
@require_http_methods(["GET"])
@_stock_errors
def product_stock(request, pk: int):
    return JsonResponse({"ok": True, "product_id": pk, "total_stock": services.total_stock(pk)})


@login_required
@require_http_methods(["GET"])
def low_stock(request):
    results = [_product_data(p) for p in services.products_below_minimum()]
    return JsonResponse({"ok": True, "results": results})


@login_required
@require_http_methods(["GET", "POST"])
@_admin_required
@_stock_errors
def warehouses(request):
    if request.method == "GET":
        return JsonResponse({"ok": True, "results": [_warehouse_data(w) for w in Warehouse.objects.all()]})

    form = WarehouseForm(_payload(request))
    if not form.is_valid():
        return _form_error(form)
    warehouse = services.save_warehouse(**form.cleaned_data)
    return JsonResponse({"ok": True, "warehouse": _warehouse_data(warehouse)}, status=201)


@login_required
@require_http_methods(["POST"])
@_admin_required
@_stock_errors
def warehouse_detail(request, pk: int):
    form = WarehouseForm(_payload(request))
    if not form.is_valid():
        return _form_error(form)
    warehouse = services.save_warehouse(warehouse_id=pk, **form.cleaned_data)
    return JsonResponse({"ok": True, "warehouse": _warehouse_data(warehouse)})


@login_required
@require_http_methods(["POST"])
@_admin_required
@_stock_errors
def warehouse_delete(request, pk: int):
    services.delete_warehouse(pk)
    return JsonResponse({"ok": True})


@login_required
@require_http_methods(["GET"])
@_stock_errors
def warehouse_inventory(request, pk: int):
    in_stock_only = (request.GET.get("in_stock") or "").strip() == "1"
    rows = services.warehouse_inventory(pk, in_stock_only=in_stock_only)
    for row in rows:
        row["price"] = _money(row["price"])
    return JsonResponse({"ok": True, "warehouse_id": pk, "results": rows})


@login_required
@require_http_methods(["POST"])
@_admin_required
@_stock_errors
def transfers(request):
    form = TransferForm(_payload(request))
    if not form.is_valid():
        return _form_error(form)
    data = form.cleaned_data
    ok = services.transfer_stock(data["product_id"], data["quantity"], data["origin_id"], data["destination_id"])
    return JsonResponse({"ok": ok})


def _sale_lines(payload) -> list[services.SaleLine]:
    try:
        return [
            services.SaleLine(
                product_id=int(item["product_id"]),
                quantity=item["quantity"],
                unit_price=Decimal(str(item["unit_price"])),
            )
            for item in payload.get("items") or []
        ]
    except (KeyError, TypeError, ValueError, InvalidOperation) as exc:
        raise ValidationError(f"Línea de venta inválida: {exc}") from exc


@login_required
@require_http_methods(["GET", "POST"])
@_stock_errors
def sales(request):
    if request.method == "GET":
        qs = Sale.objects.prefetch_related("items")
        return JsonResponse({"ok": True, "results": [_sale_data(s) for s in qs]})

    payload = _payload(request)
    amounts = {key: payload.get(key) or "0" for key in ("total", "tendered", "change")}
    settlement = services.settle_sale(
        _sale_lines(payload),
        seller=request.user,
        warehouse_id=_optional_id(payload.get("warehouse_id"), "Subalmacén"),
        **amounts,
    )
    return JsonResponse(
        {
            "ok": True,
            "sale_id": settlement.sale.id,
            "success": settlement.success,
            "failed_product_ids": settlement.failed_product_ids,
            "sale": _sale_data(settlement.sale),
        },
        status=201,
    )


@login_required
@require_http_methods(["GET", "POST"])
@_admin_required
@_stock_errors
def movements(request):
    if request.method == "GET":
        qs = StockMovement.objects.select_related("product", "warehouse")
        kind = (request.GET.get("kind") or "").strip().upper()
        if kind:
            qs = qs.filter(kind=kind)
        results = [
            {
                "id": m.id,
                "created_at": m.created_at.isoformat(),
                "product_id": m.product_id,
                "code": m.product.code,
                "warehouse_id": m.warehouse_id,
                "kind": m.kind,
                "quantity": m.quantity,
                "description": m.description,
                "reference": m.reference,
            }
            for m in qs
        ]
        return JsonResponse({"ok": True, "results": results})

    form = MovementForm(_payload(request))
    if not form.is_valid():
        return _form_error(form)
    movement = services.register_movement(user=request.user, **form.cleaned_data)
    return JsonResponse({"ok": True, "movement_id": movement.id}, status=201)
