"""
Billing models for Kairos Platform
Plan catalog and the paid subscriptions produced by trial conversion.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, ClassVar

from django.core.validators import MinValueValidator
from django.db import models
from django.db.models import Q
from django.utils.translation import gettext_lazy as _

from .config import BILLING_CYCLE_DAYS, DEFAULT_CURRENCY_CODE

logger = logging.getLogger(__name__)

BILLING_CYCLE_CHOICES: tuple[tuple[str, Any], ...] = (
    ("monthly", _("Monthly")),
    ("yearly", _("Yearly")),
)


# ===============================================================================
# PLAN CATALOG
# ===============================================================================


class Plan(models.Model):
    """A purchasable plan: price, currency and feature flags."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    code = models.SlugField(max_length=50, unique=True, help_text=_("Stable plan identifier, e.g. 'pro-monthly'"))
    name = models.CharField(max_length=100)
    price = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        validators=[MinValueValidator(Decimal("0"))],
        help_text=_("Price per billing cycle"),
    )
    currency = models.CharField(max_length=3, default=DEFAULT_CURRENCY_CODE)
    billing_cycle = models.CharField(max_length=20, choices=BILLING_CYCLE_CHOICES, default="monthly")
    features = models.JSONField(default=dict, blank=True)
    is_active = models.BooleanField(default=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "billing_plans"
        verbose_name = _("Plan")
        verbose_name_plural = _("Plans")
        ordering = ("price",)
        constraints: ClassVar[list] = [
            models.CheckConstraint(condition=Q(price__gte=0), name="plan_price_non_negative"),
        ]

    def __str__(self) -> str:
        return f"{self.name} ({self.price} {self.currency}/{self.billing_cycle})"


# ===============================================================================
# SUBSCRIPTION
# ===============================================================================


class Subscription(models.Model):
    """
    Paid billing relationship created when a grace period converts.

    When ``grace_period`` is set, the referenced grace period must be
    ``converted`` and point back at this subscription. Subscriptions that
    break that link are orphans, which
    SubscriptionReconciliationService either links or cancels.
    """

    STATUS_CHOICES: ClassVar[tuple[tuple[str, Any], ...]] = (
        ("active", _("Active")),
        ("cancelled", _("Cancelled")),
    )

    CANCELLATION_REASON_CHOICES: ClassVar[tuple[tuple[str, Any], ...]] = (
        ("customer_request", _("Customer Request")),
        ("downgrade", _("Downgrade to Different Plan")),
        ("orphaned", _("Orphaned by Interrupted Conversion")),
        ("other", _("Other")),
    )

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    tenant = models.ForeignKey(
        "tenants.Tenant",
        on_delete=models.PROTECT,
        related_name="subscriptions",
    )
    plan = models.ForeignKey(Plan, on_delete=models.PROTECT, related_name="subscriptions")
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default="active", db_index=True)
    billing_cycle = models.CharField(max_length=20, choices=BILLING_CYCLE_CHOICES, default="monthly")

    # Pricing snapshot at conversion time
    base_price = models.DecimalField(max_digits=12, decimal_places=2, validators=[MinValueValidator(Decimal("0"))])
    discount_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    final_price = models.DecimalField(max_digits=12, decimal_places=2, validators=[MinValueValidator(Decimal("0"))])
    currency = models.CharField(max_length=3, default=DEFAULT_CURRENCY_CODE)

    grace_period = models.ForeignKey(
        "grace_periods.GracePeriod",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="subscriptions",
        help_text=_("Grace period this subscription was converted from"),
    )

    # Applied promo code snapshot
    promo_code = models.ForeignKey(
        "promotions.PromoCode",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="subscriptions",
    )
    promo_code_value = models.CharField(max_length=50, blank=True)
    promo_discount_type = models.CharField(max_length=20, blank=True)
    promo_discount_value = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)

    # Period boundaries
    current_period_start = models.DateTimeField()
    current_period_end = models.DateTimeField()

    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancellation_reason = models.CharField(max_length=30, choices=CANCELLATION_REASON_CHOICES, blank=True)

    meta = models.JSONField(default=dict, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "subscriptions"
        verbose_name = _("Subscription")
        verbose_name_plural = _("Subscriptions")
        ordering = ("-created_at",)
        indexes = (
            models.Index(fields=["tenant", "status"], name="sub_tenant_status_idx"),
            models.Index(fields=["grace_period", "status"], name="sub_grace_status_idx"),
        )
        constraints: ClassVar[list] = [
            models.CheckConstraint(condition=Q(base_price__gte=0), name="subscription_base_price_non_negative"),
            models.CheckConstraint(condition=Q(final_price__gte=0), name="subscription_final_price_non_negative"),
        ]

    def __str__(self) -> str:
        return f"{self.tenant_id} - {self.plan_id} ({self.status})"

    @classmethod
    def build_from_plan(cls, plan: Plan, tenant_id: Any, start: datetime, grace_period_id: Any = None) -> Subscription:
        """Unsaved subscription priced from the plan for one cycle starting at ``start``."""
        return cls(
            tenant_id=tenant_id,
            plan=plan,
            status="active",
            billing_cycle=plan.billing_cycle,
            base_price=plan.price,
            discount_amount=Decimal("0.00"),
            final_price=plan.price,
            currency=plan.currency,
            grace_period_id=grace_period_id,
            current_period_start=start,
            current_period_end=start + timedelta(days=BILLING_CYCLE_DAYS[plan.billing_cycle]),
        )

    def apply_discount(
        self,
        promo_code: Any,
        discount_amount: Decimal,
        final_amount: Decimal,
    ) -> None:
        """Copy a promo quote onto the in-memory pricing fields."""
        self.promo_code = promo_code
        self.promo_code_value = promo_code.code
        self.promo_discount_type = promo_code.discount_type
        self.promo_discount_value = promo_code.discount_value
        self.discount_amount = discount_amount
        self.final_price = final_amount

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    def cancel(self, reason: str, now: datetime) -> bool:
        """Conditionally cancel; returns False when already cancelled."""
        updated = Subscription.objects.filter(pk=self.pk, status="active").update(
            status="cancelled",
            cancelled_at=now,
            cancellation_reason=reason,
            updated_at=now,
        )
        if updated:
            self.status = "cancelled"
            self.cancelled_at = now
            self.cancellation_reason = reason
        return bool(updated)
