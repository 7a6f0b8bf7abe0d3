from django.urls import path

from . import views

urlpatterns = [
    path("sesion/", views.session_login, name="storehouse_login"),
    path("sesion/cerrar/", views.session_logout, name="storehouse_logout"),
    path("productos/", views.products, name="storehouse_products"),
    path("productos/stock-bajo/", views.low_stock, name="storehouse_low_stock"),
    path("productos/<int:pk>/", views.product_detail, name="storehouse_product_detail"),
    path("productos/<int:pk>/eliminar/", views.product_delete, name="storehouse_product_delete"),
    path("productos/<int:pk>/stock/", views.product_stock, name="storehouse_product_stock"),
    path("subalmacenes/", views.warehouses, name="storehouse_warehouses"),
    path("subalmacenes/<int:pk>/", views.warehouse_detail, name="storehouse_warehouse_detail"),
    path("subalmacenes/<int:pk>/eliminar/", views.warehouse_delete, name="storehouse_warehouse_delete"),
    path("subalmacenes/<int:pk>/inventario/", views.warehouse_inventory, name="storehouse_warehouse_inventory"),
    path("transferencias/", views.transfers, name="storehouse_transfers"),
    path("ventas/", views.sales, name="storehouse_sales"),
    path("movimientos/", views.movements, name="storehouse_movements"),
]
