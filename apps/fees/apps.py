# fees/apps.py

from django.apps import AppConfig


class FeesConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "fees"
    verbose_name = "Fee Ledger"

    def ready(self):
        """
        Import signal handlers when the app is ready.
        This ensures numbering signals are connected when Django starts.
        """
        import fees.signals  # noqa: F401
