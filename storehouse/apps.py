from django.apps import AppConfig


class StorehouseConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "storehouse"
    verbose_name = "Almacenes e inventario"

    def ready(self):
        from . import signals  # noqa: F401
