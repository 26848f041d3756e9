"""
Promo code models for Kairos Platform.

Supports:
- Percentage and fixed-amount discounts
- Validity windows and total usage caps (auto-deactivation on exhaustion)
- Per-user caps, plan restrictions, minimum amounts, new-users-only codes
- Immutable usage records that back the usage counter
- Attempt log for per-user validation throttling
"""

from __future__ import annotations

import logging
import secrets
import string
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, ClassVar, TypedDict, assert_never

from django.core.validators import MinValueValidator, RegexValidator
from django.db import models
from django.db.models import F, Q
from django.utils.translation import gettext_lazy as _

logger = logging.getLogger(__name__)

# ===============================================================================
# CONSTANTS
# ===============================================================================

PROMO_CODE_MIN_LENGTH = 3
PROMO_CODE_MAX_LENGTH = 50
PROMO_CODE_PATTERN = r"^[A-Z0-9_-]{3,50}$"
GENERATED_CODE_LENGTH = 8
GENERATED_CODE_CHARS = string.ascii_uppercase + string.digits
MAX_CODE_GENERATION_ATTEMPTS = 100

CENT = Decimal("0.01")
HUNDRED = Decimal("100")


def to_money(value: Any) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def normalize_code(code: str) -> str:
    """Normalize promo code to uppercase and trimmed."""
    return (code or "").strip().upper()


class DiscountType(models.TextChoices):
    PERCENTAGE = "percentage", _("Percentage")
    FIXED_AMOUNT = "fixed_amount", _("Fixed Amount")


class DeactivationReason(models.TextChoices):
    NONE = "", _("Active or never deactivated")
    EXHAUSTED = "exhausted", _("Usage limit reached")
    MANUAL = "manual", _("Deactivated by administrator")


class PromoErrorCode:
    """Stable machine-readable validation error codes."""

    CODE_NOT_FOUND = "CODE_NOT_FOUND"
    CODE_INACTIVE = "CODE_INACTIVE"
    CODE_EXPIRED = "CODE_EXPIRED"
    CODE_EXHAUSTED = "CODE_EXHAUSTED"
    NEW_USERS_ONLY = "NEW_USERS_ONLY"
    PLAN_NOT_ELIGIBLE = "PLAN_NOT_ELIGIBLE"
    MINIMUM_AMOUNT_NOT_MET = "MINIMUM_AMOUNT_NOT_MET"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    USER_LIMIT_EXCEEDED = "USER_LIMIT_EXCEEDED"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    APPLICATION_ERROR = "APPLICATION_ERROR"


class UsageContext(TypedDict, total=False):
    user_id: str
    tenant_id: str
    plan_id: str
    subscription_amount: Decimal
    is_new_user: bool


@dataclass
class ValidationResult:
    """
    Result of promo code validation.

    Attributes:
        is_valid: Whether the code can be applied in this context.
        error_message: Human-readable error message if validation failed.
        error_code: Machine-readable code (see PromoErrorCode).
        discount_amount: Discount for the context's subscription amount.
        final_amount: Amount left to pay after the discount (never negative).
    """

    is_valid: bool
    error_message: str = ""
    error_code: str = ""
    discount_amount: Decimal = Decimal("0.00")
    final_amount: Decimal = Decimal("0.00")
    promo_code_id: str | None = None

    @classmethod
    def failure(cls, error_code: str, error_message: str) -> ValidationResult:
        return cls(is_valid=False, error_code=error_code, error_message=error_message)


# ===============================================================================
# PROMO CODE
# ===============================================================================


class PromoCode(models.Model):
    """
    Reusable discount definition.

    ``current_uses`` must always equal the number of PromoCodeUsage rows for
    the code. It is only changed through PromoCodeService (atomic F()
    updates) and repaired by the reconciliation task when it drifts.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    code = models.CharField(
        max_length=PROMO_CODE_MAX_LENGTH,
        unique=True,
        validators=[RegexValidator(PROMO_CODE_PATTERN, _("Use 3-50 characters: A-Z, 0-9, '_' or '-'"))],
        help_text=_("Unique promo code (stored uppercase)"),
    )
    name = models.CharField(max_length=200, help_text=_("Internal name for this promo code"))
    description = models.TextField(blank=True)

    discount_type = models.CharField(max_length=20, choices=DiscountType.choices)
    discount_value = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        validators=[MinValueValidator(CENT)],
        help_text=_("Percent (0-100] for percentage codes, amount for fixed codes"),
    )

    is_active = models.BooleanField(default=True, db_index=True)
    deactivation_reason = models.CharField(
        max_length=20,
        choices=DeactivationReason.choices,
        default=DeactivationReason.NONE,
        blank=True,
    )

    valid_from = models.DateTimeField()
    valid_until = models.DateTimeField(null=True, blank=True, help_text=_("When the code expires (null = never)"))

    # Usage limits
    max_uses = models.PositiveIntegerField(null=True, blank=True, help_text=_("Total redemptions allowed"))
    current_uses = models.PositiveIntegerField(default=0)
    max_uses_per_user = models.PositiveIntegerField(null=True, blank=True)

    # Eligibility
    applicable_plans = models.JSONField(
        null=True,
        blank=True,
        help_text=_("Plan ids the code applies to (null = all plans)"),
    )
    minimum_amount = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    new_users_only = models.BooleanField(default=False)

    # Scope and ownership
    tenant = models.ForeignKey(
        "tenants.Tenant",
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="promo_codes",
        help_text=_("Tenant scope (null = global code)"),
    )
    created_by = models.CharField(max_length=128, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "promo_codes"
        verbose_name = _("Promo Code")
        verbose_name_plural = _("Promo Codes")
        ordering = ("-created_at",)
        indexes = (
            models.Index(fields=["is_active", "valid_from", "valid_until"], name="promo_active_window_idx"),
            models.Index(fields=["tenant", "is_active"], name="promo_tenant_active_idx"),
        )
        constraints: ClassVar[list] = [
            models.CheckConstraint(
                condition=Q(max_uses__isnull=True) | Q(current_uses__lte=F("max_uses")),
                name="promo_code_uses_within_limit",
            ),
            models.CheckConstraint(condition=Q(discount_value__gt=0), name="promo_code_discount_positive"),
            models.CheckConstraint(
                condition=~Q(discount_type="percentage") | Q(discount_value__lte=100),
                name="promo_code_percentage_max_100",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.code} ({self.get_discount_type_display()} {self.discount_value})"

    # =========================================================================
    # VALIDITY
    # =========================================================================

    @property
    def is_exhausted(self) -> bool:
        return self.max_uses is not None and self.current_uses >= self.max_uses

    def is_within_window(self, now: datetime) -> bool:
        if now < self.valid_from:
            return False
        return self.valid_until is None or now <= self.valid_until

    def is_valid(self, now: datetime) -> bool:
        return self.is_active and self.is_within_window(now) and not self.is_exhausted

    def calculate_discount(self, subscription_amount: Decimal) -> Decimal:
        """Discount for ``subscription_amount``, clamped so the total never goes negative."""
        amount = to_money(subscription_amount)
        discount_type = DiscountType(self.discount_type)
        match discount_type:
            case DiscountType.PERCENTAGE:
                discount = amount * Decimal(self.discount_value) / HUNDRED
            case DiscountType.FIXED_AMOUNT:
                discount = Decimal(self.discount_value)
            case _:
                assert_never(discount_type)
        return min(to_money(discount), amount)

    def can_be_used_by(self, context: UsageContext, now: datetime) -> ValidationResult:
        """Entity-level eligibility; throttling and per-user caps live in PromoCodeService."""
        if not self.is_active:
            # Exhaustion deactivates the code, report it as such
            if self.deactivation_reason == DeactivationReason.EXHAUSTED or self.is_exhausted:
                return ValidationResult.failure(PromoErrorCode.CODE_EXHAUSTED, "This promo code has been fully used")
            return ValidationResult.failure(PromoErrorCode.CODE_INACTIVE, "This promo code is not active")
        if not self.is_within_window(now):
            if now < self.valid_from:
                return ValidationResult.failure(PromoErrorCode.CODE_INACTIVE, "This promo code is not valid yet")
            return ValidationResult.failure(PromoErrorCode.CODE_EXPIRED, "This promo code has expired")
        if self.is_exhausted:
            return ValidationResult.failure(PromoErrorCode.CODE_EXHAUSTED, "This promo code has been fully used")

        if self.new_users_only and not context.get("is_new_user", False):
            return ValidationResult.failure(PromoErrorCode.NEW_USERS_ONLY, "This promo code is reserved for new users")

        plan_id = context.get("plan_id")
        if self.applicable_plans and plan_id and str(plan_id) not in {str(p) for p in self.applicable_plans}:
            return ValidationResult.failure(
                PromoErrorCode.PLAN_NOT_ELIGIBLE, "This promo code does not apply to the selected plan"
            )

        amount = to_money(context.get("subscription_amount") or 0)
        if self.minimum_amount is not None and amount < self.minimum_amount:
            return ValidationResult.failure(
                PromoErrorCode.MINIMUM_AMOUNT_NOT_MET,
                f"A minimum amount of {self.minimum_amount} is required for this promo code",
            )

        discount = self.calculate_discount(amount)
        return ValidationResult(
            is_valid=True,
            discount_amount=discount,
            final_amount=amount - discount,
            promo_code_id=str(self.id),
        )

    @classmethod
    def generate_code(cls, prefix: str = "", length: int = GENERATED_CODE_LENGTH) -> str:
        """
        Generate a unique promo code.

        Raises:
            ValueError: If a unique code cannot be generated within MAX_CODE_GENERATION_ATTEMPTS.
        """
        prefix = normalize_code(prefix)
        for _attempt in range(MAX_CODE_GENERATION_ATTEMPTS):
            code = prefix + "".join(secrets.choice(GENERATED_CODE_CHARS) for _ in range(length))
            if not cls.objects.filter(code=code).exists():
                return code
        raise ValueError(
            f"Could not generate unique promo code after {MAX_CODE_GENERATION_ATTEMPTS} attempts. "
            f"Consider using a longer code length or different prefix."
        )


# ===============================================================================
# USAGE RECORD
# ===============================================================================


class PromoCodeUsage(models.Model):
    """Immutable receipt of one promo code application."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    promo_code = models.ForeignKey(PromoCode, on_delete=models.PROTECT, related_name="usages")
    user_id = models.CharField(max_length=128, db_index=True)
    tenant = models.ForeignKey("tenants.Tenant", on_delete=models.PROTECT, related_name="promo_code_usages")
    subscription = models.ForeignKey(
        "billing.Subscription",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="promo_code_usages",
    )

    discount_applied = models.DecimalField(max_digits=12, decimal_places=2, validators=[MinValueValidator(0)])
    original_amount = models.DecimalField(max_digits=12, decimal_places=2)
    final_amount = models.DecimalField(max_digits=12, decimal_places=2)

    used_at = models.DateTimeField(db_index=True)
    ip_address = models.GenericIPAddressField(null=True, blank=True)
    user_agent = models.CharField(max_length=500, blank=True)

    class Meta:
        db_table = "promo_code_usages"
        verbose_name = _("Promo Code Usage")
        verbose_name_plural = _("Promo Code Usages")
        ordering = ("-used_at",)
        indexes = (models.Index(fields=["promo_code", "user_id"], name="promo_usage_code_user_idx"),)
        constraints: ClassVar[list] = [
            models.CheckConstraint(condition=Q(discount_applied__gte=0), name="promo_usage_discount_non_negative"),
        ]

    def __str__(self) -> str:
        return f"{self.promo_code_id} used by {self.user_id} ({self.discount_applied})"

    def save(self, *args: Any, **kwargs: Any) -> None:
        if not self._state.adding:
            raise ValueError("Promo code usages are immutable")
        super().save(*args, **kwargs)


# ===============================================================================
# VALIDATION ATTEMPT LOG
# ===============================================================================


class PromoCodeAttempt(models.Model):
    """Append-only log of validation attempts, counted over a trailing window."""

    user_id = models.CharField(max_length=128)
    code = models.CharField(max_length=PROMO_CODE_MAX_LENGTH * 2)
    success = models.BooleanField(default=False)
    attempted_at = models.DateTimeField()

    class Meta:
        db_table = "promo_code_attempts"
        indexes = (models.Index(fields=["user_id", "attempted_at"], name="promo_attempt_user_time_idx"),)

    def __str__(self) -> str:
        return f"{self.user_id} tried {self.code} ({'ok' if self.success else 'failed'})"
