from django.apps import AppConfig


class TaxesConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'backend.taxes'

    def ready(self):
        """Import signals when app is ready"""
        import backend.taxes.signals  # noqa: F401  # Cache invalidation signals
