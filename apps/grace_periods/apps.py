"""
Grace periods app configuration for Kairos Platform.
"""

from django.apps import AppConfig


class GracePeriodsConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "apps.grace_periods"
    verbose_name = "Grace Periods"
