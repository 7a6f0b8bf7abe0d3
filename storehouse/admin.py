from django.contrib import admin

from .models import Product, Profile, Sale, SaleItem, Stock, StockMovement, Warehouse


@admin.register(Warehouse)
class WarehouseAdmin(admin.ModelAdmin):
    list_display = ("name", "address", "is_primary")
    search_fields = ("name", "address")


@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    list_display = ("code", "name", "category", "price", "cost", "min_stock")
    search_fields = ("code", "name", "category")

    def get_readonly_fields(self, request, obj=None):
        return ("code", "stock") if obj else ()


@admin.register(Stock)
class StockAdmin(admin.ModelAdmin):
    list_display = ("product", "warehouse", "quantity")
    list_filter = ("warehouse",)
    search_fields = ("product__code", "product__name")


@admin.register(Profile)
class ProfileAdmin(admin.ModelAdmin):
    list_display = ("user", "name", "role", "warehouse")
    list_filter = ("role", "warehouse")


class SaleItemInline(admin.TabularInline):
    model = SaleItem
    extra = 0
    can_delete = False
    readonly_fields = ("product", "code", "name", "unit_price", "quantity", "stock_at_sale", "settled")


@admin.register(Sale)
class SaleAdmin(admin.ModelAdmin):
    list_display = ("id", "created_at", "warehouse", "seller", "total", "inventory_complete")
    list_filter = ("warehouse", "inventory_complete")
    readonly_fields = ("created_at",)
    inlines = [SaleItemInline]


@admin.register(StockMovement)
class StockMovementAdmin(admin.ModelAdmin):
    list_display = ("product", "kind", "warehouse", "quantity", "user", "created_at")
    list_filter = ("kind", "warehouse", "user")
    search_fields = ("product__code", "reference")
    readonly_fields = ("created_at",)
