"""
Billing app configuration for Kairos Platform.
"""

from django.apps import AppConfig


class BillingConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "apps.billing"
    verbose_name = "Billing"

    def ready(self) -> None:
        """Connect plan cache invalidation."""
        from apps.billing import signals  # noqa: F401, PLC0415
