"""
Common app configuration for Kairos Platform.
"""

from django.apps import AppConfig


class CommonConfig(AppConfig):
    """Shared types, clock and store helpers."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "apps.common"
    verbose_name = "Common"
