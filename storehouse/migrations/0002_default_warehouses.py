from django.db import migrations

PRIMARY_NAME = "Almacén Principal"
POINT_OF_SALE_NAME = "Punto de Venta"


def create_default_warehouses(apps, schema_editor):
    Warehouse = apps.get_model("storehouse", "Warehouse")
    if not Warehouse.objects.filter(is_primary=True).exists():
        Warehouse.objects.create(name=PRIMARY_NAME, is_primary=True)
    Warehouse.objects.get_or_create(name=POINT_OF_SALE_NAME, defaults={"is_primary": False})


def remove_default_warehouses(apps, schema_editor):
    Warehouse = apps.get_model("storehouse", "Warehouse")
    Warehouse.objects.filter(name__in=[PRIMARY_NAME, POINT_OF_SALE_NAME]).delete()


class Migration(migrations.Migration):
    dependencies = [
        ("storehouse", "0001_initial"),
    ]

    operations = [
        migrations.RunPython(create_default_warehouses, remove_default_warehouses),
    ]
