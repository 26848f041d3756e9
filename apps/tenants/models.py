"""
Tenant model for Kairos Platform.
A tenant is the organization-level billing unit that owns grace periods and
subscriptions.
"""

from __future__ import annotations

import uuid
from typing import Any, ClassVar

from django.db import models
from django.utils.translation import gettext_lazy as _


class Tenant(models.Model):
    """
    Organization-level billing unit.

    Only the billing pointer lives here (active plan, subscription and
    status). It is written exclusively through TenantService.set_active_plan.
    """

    BILLING_STATUS_CHOICES: ClassVar[tuple[tuple[str, Any], ...]] = (
        ("trial", _("Trial")),
        ("active", _("Active")),
        ("past_due", _("Past Due")),
        ("cancelled", _("Cancelled")),
    )

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=255)
    slug = models.SlugField(max_length=100, unique=True)
    owner_user_id = models.CharField(
        max_length=128,
        db_index=True,
        help_text=_("Identity of the user who owns billing for this tenant"),
    )
    billing_email = models.EmailField(blank=True, help_text=_("Recipient for billing reminders"))

    active_plan = models.ForeignKey(
        "billing.Plan",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="tenants",
    )
    active_subscription = models.ForeignKey(
        "billing.Subscription",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    billing_status = models.CharField(
        max_length=20,
        choices=BILLING_STATUS_CHOICES,
        default="trial",
        db_index=True,
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "tenants"
        verbose_name = _("Tenant")
        verbose_name_plural = _("Tenants")
        ordering = ("name",)

    def __str__(self) -> str:
        return f"{self.name} ({self.billing_status})"
