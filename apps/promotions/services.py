"""
Promotion services for Kairos Platform.
Business logic for promo code validation, application, revocation,
administration, reporting and usage-counter reconciliation.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal
from typing import Any, TypedDict

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import DatabaseError, IntegrityError
from django.db.models import Count, F, Q

from apps.billing.config import get_promo_max_attempts_per_window, get_promo_rate_limit_window_seconds
from apps.common.clock import Clock, system_clock
from apps.common.db import store_call
from apps.common.types import (
    BusinessError,
    ConflictError,
    ExhaustedError,
    NotFoundError,
    ValidationError,
)
from apps.common.validators import log_security_event

from .models import (
    DeactivationReason,
    DiscountType,
    PromoCode,
    PromoCodeAttempt,
    PromoCodeUsage,
    PromoErrorCode,
    UsageContext,
    ValidationResult,
    normalize_code,
    to_money,
)

logger = logging.getLogger(__name__)

# ===============================================================================
# Constants
# ===============================================================================

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 200
MAX_BATCH_SIZE = 500
TOP_USERS_LIMIT = 10

# Fields an administrator may change after creation. ``code`` and
# ``current_uses`` are deliberately absent.
UPDATABLE_FIELDS = frozenset(
    {
        "name",
        "description",
        "discount_type",
        "discount_value",
        "valid_from",
        "valid_until",
        "max_uses",
        "max_uses_per_user",
        "applicable_plans",
        "minimum_amount",
        "new_users_only",
    }
)


# ===============================================================================
# Data Classes for Results
# ===============================================================================


@dataclass
class ApplicationResult:
    """
    Result of applying a promo code to a subscription.

    Attributes:
        success: Whether the code was applied and a usage recorded.
        discount_applied: Discount granted.
        final_amount: Amount left to pay.
        usage_id: UUID of the PromoCodeUsage record created.
        error_message: Human-readable error message if application failed.
        error_code: Machine-readable code (see PromoErrorCode).
    """

    success: bool
    discount_applied: Decimal = Decimal("0.00")
    final_amount: Decimal = Decimal("0.00")
    usage_id: str | None = None
    error_message: str = ""
    error_code: str = ""


@dataclass
class PromoCodePage:
    items: list[PromoCode] = field(default_factory=list)
    total: int = 0
    limit: int = DEFAULT_PAGE_SIZE
    offset: int = 0

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.items) < self.total


class PromoCodeFilters(TypedDict, total=False):
    is_active: bool
    discount_type: str
    tenant_id: str
    created_by: str
    search: str


class UsageReportFilters(TypedDict, total=False):
    promo_code_id: str
    user_id: str
    tenant_id: str
    date_from: Any
    date_to: Any


class ReconciliationResult(TypedDict):
    checked: int
    corrected: int
    errors: list[str]


# ===============================================================================
# Promo Code Service
# ===============================================================================


class PromoCodeService:
    """
    Service for promo code validation, application and bookkeeping.

    ``current_uses`` is only ever moved with conditional F() updates inside
    the same transaction as the usage insert/delete, so the counter and the
    usage rows move together. ``reconcile_usage_counts`` repairs any drift
    left behind by interrupted writes.
    """

    def __init__(self, clock: Clock | None = None):
        self.clock = clock or system_clock

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    def get_promo_code(self, promo_code_id: Any) -> PromoCode:
        try:
            return PromoCode.objects.get(pk=promo_code_id)
        except (PromoCode.DoesNotExist, DjangoValidationError, ValueError, TypeError) as e:
            raise NotFoundError(f"Promo code {promo_code_id} not found") from e

    def get_promo_code_by_code(self, code: str) -> PromoCode | None:
        """Get promo code by code (case-insensitive)."""
        return PromoCode.objects.filter(code=normalize_code(code)).first()

    def list_promo_codes(
        self,
        filters: PromoCodeFilters | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> PromoCodePage:
        filters = filters or {}
        limit = max(1, min(int(limit), MAX_PAGE_SIZE))
        offset = max(0, int(offset))

        queryset = PromoCode.objects.all().order_by("-created_at")
        if filters.get("is_active") is not None:
            queryset = queryset.filter(is_active=filters["is_active"])
        if filters.get("discount_type"):
            queryset = queryset.filter(discount_type=filters["discount_type"])
        if filters.get("tenant_id"):
            queryset = queryset.filter(tenant_id=filters["tenant_id"])
        if filters.get("created_by"):
            queryset = queryset.filter(created_by=filters["created_by"])
        if filters.get("search"):
            term = filters["search"].strip()
            queryset = queryset.filter(Q(code__icontains=term) | Q(name__icontains=term))

        total = queryset.count()
        return PromoCodePage(items=list(queryset[offset : offset + limit]), total=total, limit=limit, offset=offset)

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------

    def _check_rate_limit(self, user_id: str) -> bool:
        """True while the user is under the attempt cap for the trailing window."""
        window_start = self.clock.now() - timedelta(seconds=get_promo_rate_limit_window_seconds())
        attempts = PromoCodeAttempt.objects.filter(user_id=user_id, attempted_at__gt=window_start).count()
        return attempts < get_promo_max_attempts_per_window()

    def _log_attempt(self, user_id: str, code: str, success: bool) -> None:
        PromoCodeAttempt.objects.create(
            user_id=user_id,
            code=code[: PromoCodeAttempt._meta.get_field("code").max_length],
            success=success,
            attempted_at=self.clock.now(),
        )

    def _user_usage_count(self, promo_code: PromoCode, user_id: str) -> int:
        return PromoCodeUsage.objects.filter(promo_code=promo_code, user_id=user_id).count()

    def _check_user_cap(self, promo_code: PromoCode, user_id: str) -> ValidationResult | None:
        if promo_code.max_uses_per_user is None:
            return None
        if self._user_usage_count(promo_code, user_id) >= promo_code.max_uses_per_user:
            return ValidationResult.failure(
                PromoErrorCode.USER_LIMIT_EXCEEDED,
                "You have reached the usage limit for this promo code",
            )
        return None

    def validate_code(self, code: str, context: UsageContext) -> ValidationResult:
        """
        Validate ``code`` for the user in ``context``.

        Order: rate limit (no attempt logged), lookup, per-user cap, then the
        code's own eligibility rules. Every attempt past the rate limit is
        logged for the throttling window.
        """
        user_id = str(context.get("user_id") or "")
        normalized = normalize_code(code)
        if not user_id:
            return ValidationResult.failure(PromoErrorCode.VALIDATION_ERROR, "user_id is required")

        try:
            if not self._check_rate_limit(user_id):
                window_minutes = get_promo_rate_limit_window_seconds() // 60
                log_security_event("promo_code_rate_limited", {"user_id": user_id, "code": normalized})
                return ValidationResult.failure(
                    PromoErrorCode.RATE_LIMIT_EXCEEDED,
                    f"Too many promo code attempts. Please try again in {window_minutes} minutes.",
                )

            promo_code = self.get_promo_code_by_code(normalized)
            if promo_code is None:
                self._log_attempt(user_id, normalized, success=False)
                return ValidationResult.failure(PromoErrorCode.CODE_NOT_FOUND, "Promo code not found")

            capped = self._check_user_cap(promo_code, user_id)
            if capped is not None:
                self._log_attempt(user_id, normalized, success=False)
                return capped

            result = promo_code.can_be_used_by(context, self.clock.now())
            self._log_attempt(user_id, normalized, success=result.is_valid)
            return result

        except DatabaseError as e:
            logger.error(f"🔥 [Promo] Error validating promo code {normalized}: {e}")
            return ValidationResult.failure(PromoErrorCode.VALIDATION_ERROR, "Could not validate the promo code")

    def quote(self, promo_code_id: Any, context: UsageContext) -> tuple[PromoCode, ValidationResult]:
        """Eligibility and discount for a known code id, without throttling or side effects."""
        promo_code = self.get_promo_code(promo_code_id)
        capped = self._check_user_cap(promo_code, str(context.get("user_id") or ""))
        if capped is not None:
            return promo_code, capped
        return promo_code, promo_code.can_be_used_by(context, self.clock.now())

    # -------------------------------------------------------------------------
    # Application
    # -------------------------------------------------------------------------

    def is_new_user(self, tenant_id: Any, subscription_id: Any | None) -> bool:
        from apps.billing.models import Subscription  # noqa: PLC0415

        others = Subscription.objects.filter(tenant_id=tenant_id)
        if subscription_id:
            others = others.exclude(pk=subscription_id)
        return not others.exists()

    def record_usage(  # noqa: PLR0913
        self,
        promo_code: PromoCode,
        user_id: str,
        tenant_id: Any,
        subscription_id: Any | None,
        original_amount: Decimal,
        discount_applied: Decimal,
        ip_address: str | None = None,
        user_agent: str = "",
    ) -> PromoCodeUsage:
        """
        Claim one use of ``promo_code`` and write the usage record atomically.

        Raises:
            ExhaustedError: The code is inactive or its cap was reached by a
                concurrent application.
        """
        now = self.clock.now()
        with store_call("record promo code usage"):
            claimed = (
                PromoCode.objects.filter(pk=promo_code.pk, is_active=True)
                .filter(Q(max_uses__isnull=True) | Q(current_uses__lt=F("max_uses")))
                .update(current_uses=F("current_uses") + 1, updated_at=now)
            )
            if not claimed:
                raise ExhaustedError(f"Promo code {promo_code.code} has no uses left", code=PromoErrorCode.CODE_EXHAUSTED)

            usage = PromoCodeUsage.objects.create(
                promo_code=promo_code,
                user_id=user_id,
                tenant_id=tenant_id,
                subscription_id=subscription_id,
                discount_applied=discount_applied,
                original_amount=original_amount,
                final_amount=original_amount - discount_applied,
                used_at=now,
                ip_address=ip_address,
                user_agent=(user_agent or "")[:500],
            )

            deactivated = self._deactivate_if_exhausted(promo_code.pk, now)

        promo_code.refresh_from_db()
        if deactivated:
            logger.info(f"🔒 [Promo] {promo_code.code} reached {promo_code.max_uses} uses and was deactivated")

        log_security_event(
            "promo_code_applied",
            {
                "promo_code": promo_code.code,
                "usage_id": str(usage.id),
                "user_id": user_id,
                "subscription_id": str(subscription_id) if subscription_id else None,
                "discount_applied": str(discount_applied),
            },
            request_ip=ip_address,
        )
        return usage

    @staticmethod
    def _deactivate_if_exhausted(promo_code_pk: Any, now: Any) -> int:
        return PromoCode.objects.filter(
            pk=promo_code_pk,
            max_uses__isnull=False,
            current_uses__gte=F("max_uses"),
            is_active=True,
        ).update(is_active=False, deactivation_reason=DeactivationReason.EXHAUSTED, updated_at=now)

    def apply_code(  # noqa: PLR0913
        self,
        code: str,
        user_id: str,
        subscription_id: Any | None,
        tenant_id: Any,
        subscription_amount: Decimal | str | int,
        ip_address: str | None = None,
        user_agent: str = "",
    ) -> ApplicationResult:
        """Re-validate and apply a code; never trusts an earlier validation."""
        try:
            amount = to_money(subscription_amount)
        except ArithmeticError:
            return ApplicationResult(
                success=False,
                error_code=PromoErrorCode.VALIDATION_ERROR,
                error_message="subscription_amount must be a number",
            )
        failed = ApplicationResult(success=False, final_amount=amount)

        try:
            context = UsageContext(
                user_id=user_id,
                tenant_id=str(tenant_id),
                subscription_amount=amount,
                is_new_user=self.is_new_user(tenant_id, subscription_id),
            )
            plan_id = self._plan_for_subscription(subscription_id)
            if plan_id:
                context["plan_id"] = plan_id

            validation = self.validate_code(code, context)
            if not validation.is_valid:
                failed.error_code = validation.error_code
                failed.error_message = validation.error_message
                return failed

            promo_code = self.get_promo_code(validation.promo_code_id)
            usage = self.record_usage(
                promo_code,
                user_id=user_id,
                tenant_id=tenant_id,
                subscription_id=subscription_id,
                original_amount=amount,
                discount_applied=validation.discount_amount,
                ip_address=ip_address,
                user_agent=user_agent,
            )
        except ExhaustedError as e:
            failed.error_code = PromoErrorCode.CODE_EXHAUSTED
            failed.error_message = e.message
            return failed
        except (BusinessError, DatabaseError) as e:
            logger.error(f"🔥 [Promo] Error applying promo code {code}: {e}")
            failed.error_code = PromoErrorCode.APPLICATION_ERROR
            failed.error_message = "Could not apply the promo code"
            return failed

        return ApplicationResult(
            success=True,
            discount_applied=usage.discount_applied,
            final_amount=usage.final_amount,
            usage_id=str(usage.id),
        )

    def _plan_for_subscription(self, subscription_id: Any | None) -> str | None:
        if not subscription_id:
            return None
        from apps.billing.models import Subscription  # noqa: PLC0415

        plan_id = Subscription.objects.filter(pk=subscription_id).values_list("plan_id", flat=True).first()
        return str(plan_id) if plan_id else None

    def revoke_code(self, usage_id: Any) -> None:
        """Delete a usage, release its use and re-open a code closed only by exhaustion."""
        now = self.clock.now()
        with store_call("revoke promo code usage"):
            try:
                usage = PromoCodeUsage.objects.select_related("promo_code").get(pk=usage_id)
            except (PromoCodeUsage.DoesNotExist, DjangoValidationError, ValueError, TypeError) as e:
                raise NotFoundError(f"Promo code usage {usage_id} not found") from e

            promo_code = usage.promo_code
            usage.delete()
            PromoCode.objects.filter(pk=promo_code.pk, current_uses__gt=0).update(
                current_uses=F("current_uses") - 1,
                updated_at=now,
            )
            promo_code.refresh_from_db()

            if (
                not promo_code.is_active
                and promo_code.deactivation_reason == DeactivationReason.EXHAUSTED
                and promo_code.is_within_window(now)
                and not promo_code.is_exhausted
            ):
                PromoCode.objects.filter(pk=promo_code.pk, deactivation_reason=DeactivationReason.EXHAUSTED).update(
                    is_active=True,
                    deactivation_reason=DeactivationReason.NONE,
                    updated_at=now,
                )
                promo_code.refresh_from_db()
                logger.info(f"🔓 [Promo] {promo_code.code} re-activated after revocation")

        log_security_event(
            "promo_code_revoked",
            {"promo_code": promo_code.code, "usage_id": str(usage_id), "user_id": usage.user_id},
        )

    # -------------------------------------------------------------------------
    # Administration
    # -------------------------------------------------------------------------

    def _full_clean(self, promo_code: PromoCode, exclude: list[str] | None = None) -> None:
        if promo_code.discount_type == DiscountType.PERCENTAGE and promo_code.discount_value is not None:
            if Decimal(str(promo_code.discount_value)) > 100:
                raise ValidationError("Percentage discounts cannot exceed 100", field="discount_value")
        if promo_code.valid_until and promo_code.valid_from and promo_code.valid_until <= promo_code.valid_from:
            raise ValidationError("valid_until must be after valid_from", field="valid_until")
        if promo_code.max_uses is not None and promo_code.max_uses < promo_code.current_uses:
            raise ValidationError("max_uses cannot be lower than the uses already recorded", field="max_uses")
        try:
            promo_code.full_clean(exclude=exclude, validate_unique=False, validate_constraints=False)
        except DjangoValidationError as e:
            field_name, messages = next(iter(e.message_dict.items()))
            raise ValidationError(f"{field_name}: {' '.join(messages)}", field=field_name) from e

    def create_promo_code(self, data: dict[str, Any], created_by: str = "") -> PromoCode:
        code = normalize_code(data.get("code", ""))
        logger.info(f"🎟️ [Promo] Creating promo code {code} by {created_by or 'system'}")

        if PromoCode.objects.filter(code=code).exists():
            raise ConflictError(f"Promo code '{code}' already exists")

        values = {key: value for key, value in data.items() if key in UPDATABLE_FIELDS}
        promo_code = PromoCode(
            code=code,
            created_by=created_by,
            tenant_id=data.get("tenant_id"),
            is_active=data.get("is_active", True),
            **values,
        )
        if promo_code.valid_from is None:
            promo_code.valid_from = self.clock.now()
        if not promo_code.is_active:
            promo_code.deactivation_reason = DeactivationReason.MANUAL
        self._full_clean(promo_code)

        try:
            with store_call("create promo code"):
                promo_code.save(force_insert=True)
        except IntegrityError as e:
            raise ConflictError(f"Promo code '{code}' already exists") from e
        return promo_code

    def update_promo_code(self, promo_code_id: Any, updates: dict[str, Any]) -> PromoCode:
        immutable = {"code", "current_uses"} & updates.keys()
        if immutable:
            raise ValidationError(f"{', '.join(sorted(immutable))} cannot be changed", field=sorted(immutable)[0])

        promo_code = self.get_promo_code(promo_code_id)
        changed = [key for key in updates if key in UPDATABLE_FIELDS]
        for key in changed:
            setattr(promo_code, key, updates[key])
        self._full_clean(promo_code)

        now = self.clock.now()
        with store_call("update promo code"):
            # current_uses is never part of update_fields so concurrent applications are not overwritten
            promo_code.save(update_fields=[*changed, "updated_at"])
            if self._deactivate_if_exhausted(promo_code.pk, now):
                logger.info(f"🔒 [Promo] {promo_code.code} is at its new max_uses and was deactivated")
            elif promo_code.is_within_window(now):
                reopened = (
                    PromoCode.objects.filter(pk=promo_code.pk, deactivation_reason=DeactivationReason.EXHAUSTED)
                    .filter(Q(max_uses__isnull=True) | Q(current_uses__lt=F("max_uses")))
                    .update(is_active=True, deactivation_reason=DeactivationReason.NONE, updated_at=now)
                )
                if reopened:
                    logger.info(f"🔓 [Promo] {promo_code.code} re-activated after max_uses was raised")
        promo_code.refresh_from_db()

        if "is_active" in updates:
            promo_code = self.toggle_promo_code(promo_code.pk, bool(updates["is_active"]))
        return promo_code

    def toggle_promo_code(self, promo_code_id: Any, is_active: bool) -> PromoCode:
        promo_code = self.get_promo_code(promo_code_id)
        if is_active and promo_code.is_exhausted:
            raise ExhaustedError(
                f"Promo code {promo_code.code} has reached its usage limit; raise max_uses first",
                code=PromoErrorCode.CODE_EXHAUSTED,
            )
        reason = DeactivationReason.NONE if is_active else DeactivationReason.MANUAL
        PromoCode.objects.filter(pk=promo_code.pk).update(
            is_active=is_active,
            deactivation_reason=reason,
            updated_at=self.clock.now(),
        )
        promo_code.refresh_from_db()
        logger.info(f"🎟️ [Promo] {promo_code.code} {'activated' if is_active else 'deactivated'}")
        return promo_code

    def delete_promo_code(self, promo_code_id: Any) -> None:
        promo_code = self.get_promo_code(promo_code_id)
        if PromoCodeUsage.objects.filter(promo_code=promo_code).exists():
            raise ConflictError("Cannot delete promo code with existing usages. Deactivate it instead.")
        promo_code.delete()
        logger.info(f"🗑️ [Promo] Deleted promo code {promo_code.code}")

    def generate_promo_codes(
        self,
        count: int,
        prefix: str = "",
        created_by: str = "",
        **defaults: Any,
    ) -> list[PromoCode]:
        """Create ``count`` codes sharing ``defaults`` with unique random suffixes."""
        if not 1 <= count <= MAX_BATCH_SIZE:
            raise ValidationError(f"count must be between 1 and {MAX_BATCH_SIZE}", field="count")

        values = {key: value for key, value in defaults.items() if key in UPDATABLE_FIELDS}
        values.setdefault("valid_from", self.clock.now())
        promo_codes = []
        seen: set[str] = set()
        for _ in range(count):
            code = PromoCode.generate_code(prefix=prefix)
            while code in seen:
                code = PromoCode.generate_code(prefix=prefix)
            seen.add(code)
            promo_code = PromoCode(code=code, created_by=created_by, tenant_id=defaults.get("tenant_id"), **values)
            self._full_clean(promo_code)
            promo_codes.append(promo_code)

        with store_call("generate promo codes"):
            created = PromoCode.objects.bulk_create(promo_codes)
        logger.info(f"🎟️ [Promo] Generated {len(created)} promo codes with prefix '{prefix}'")
        return created

    # -------------------------------------------------------------------------
    # Reporting
    # -------------------------------------------------------------------------

    @staticmethod
    def _group_by_day(usages: list[PromoCodeUsage]) -> list[dict[str, Any]]:
        days: dict[str, dict[str, Any]] = {}
        for usage in usages:
            day = usage.used_at.date().isoformat()
            bucket = days.setdefault(day, {"date": day, "uses": 0, "discount": Decimal("0.00")})
            bucket["uses"] += 1
            bucket["discount"] += usage.discount_applied
        return [days[day] for day in sorted(days)]

    def get_promo_code_stats(self, promo_code_id: Any) -> dict[str, Any]:
        promo_code = self.get_promo_code(promo_code_id)
        usages = list(PromoCodeUsage.objects.filter(promo_code=promo_code))

        total_uses = len(usages)
        total_discount = sum((u.discount_applied for u in usages), Decimal("0.00"))
        per_user: dict[str, dict[str, Any]] = defaultdict(lambda: {"uses": 0, "total_discount": Decimal("0.00")})
        for usage in usages:
            per_user[usage.user_id]["uses"] += 1
            per_user[usage.user_id]["total_discount"] += usage.discount_applied

        top_users = sorted(
            ({"user_id": user_id, **stats} for user_id, stats in per_user.items()),
            key=lambda row: row["total_discount"],
            reverse=True,
        )[:TOP_USERS_LIMIT]

        return {
            "promo_code_id": str(promo_code.id),
            "code": promo_code.code,
            "total_uses": total_uses,
            "unique_users": len(per_user),
            "total_discount_applied": total_discount,
            "average_discount_per_use": to_money(total_discount / total_uses) if total_uses else Decimal("0.00"),
            "usage_by_day": self._group_by_day(usages),
            "top_users": top_users,
            "current_uses": promo_code.current_uses,
            "usage_drift": promo_code.current_uses - total_uses,
        }

    def get_usage_report(self, filters: UsageReportFilters | None = None) -> dict[str, Any]:
        filters = filters or {}
        queryset = PromoCodeUsage.objects.select_related("promo_code").order_by("-used_at")
        if filters.get("promo_code_id"):
            queryset = queryset.filter(promo_code_id=filters["promo_code_id"])
        if filters.get("user_id"):
            queryset = queryset.filter(user_id=filters["user_id"])
        if filters.get("tenant_id"):
            queryset = queryset.filter(tenant_id=filters["tenant_id"])
        if filters.get("date_from"):
            queryset = queryset.filter(used_at__gte=filters["date_from"])
        if filters.get("date_to"):
            queryset = queryset.filter(used_at__lte=filters["date_to"])

        usages = list(queryset)
        by_code: dict[str, dict[str, Any]] = {}
        by_user: dict[str, dict[str, Any]] = {}
        for usage in usages:
            code_row = by_code.setdefault(
                str(usage.promo_code_id),
                {"promo_code_id": str(usage.promo_code_id), "code": usage.promo_code.code, "uses": 0,
                 "total_discount": Decimal("0.00")},
            )
            code_row["uses"] += 1
            code_row["total_discount"] += usage.discount_applied

            user_row = by_user.setdefault(
                usage.user_id, {"user_id": usage.user_id, "uses": 0, "total_discount": Decimal("0.00")}
            )
            user_row["uses"] += 1
            user_row["total_discount"] += usage.discount_applied

        return {
            "total_usages": len(usages),
            "total_discount_applied": sum((u.discount_applied for u in usages), Decimal("0.00")),
            "usages_by_code": sorted(by_code.values(), key=lambda row: row["uses"], reverse=True),
            "usages_by_user": sorted(by_user.values(), key=lambda row: row["uses"], reverse=True),
            "timeline": self._group_by_day(usages),
        }

    # -------------------------------------------------------------------------
    # Reconciliation
    # -------------------------------------------------------------------------

    def reconcile_usage_counts(self, promo_code_ids: list[Any] | None = None) -> ReconciliationResult:
        """
        Recompute ``current_uses`` from usage rows and realign exhaustion state.

        Codes with more usage rows than ``max_uses`` cannot be represented
        without breaking the cap, so they are pinned at the cap, deactivated
        and reported as errors for manual review.
        """
        result = ReconciliationResult(checked=0, corrected=0, errors=[])
        queryset = PromoCode.objects.all()
        if promo_code_ids:
            queryset = queryset.filter(pk__in=promo_code_ids)

        for promo_code in list(queryset):
            result["checked"] += 1
            try:
                if self._reconcile_one(promo_code, result):
                    result["corrected"] += 1
            except Exception as e:
                logger.exception(f"🔥 [Promo] Reconciliation failed for {promo_code.code}")
                result["errors"].append(f"Promo code {promo_code.code}: {e}")

        logger.info(
            f"✅ [Promo] Reconciled {result['checked']} codes, corrected {result['corrected']}, "
            f"{len(result['errors'])} errors"
        )
        return result

    def _reconcile_one(self, promo_code: PromoCode, result: ReconciliationResult) -> bool:
        now = self.clock.now()
        with store_call("reconcile promo code usage"):
            locked = PromoCode.objects.select_for_update().get(pk=promo_code.pk)
            usage_count = PromoCodeUsage.objects.filter(promo_code=locked).count()

            target = usage_count
            if locked.max_uses is not None and usage_count > locked.max_uses:
                result["errors"].append(
                    f"Promo code {locked.code}: {usage_count} usages exceed max_uses={locked.max_uses}"
                )
                target = locked.max_uses

            is_active = locked.is_active
            reason = locked.deactivation_reason
            exhausted = locked.max_uses is not None and target >= locked.max_uses
            if exhausted and is_active:
                is_active, reason = False, DeactivationReason.EXHAUSTED
            elif not exhausted and reason == DeactivationReason.EXHAUSTED and locked.is_within_window(now):
                is_active, reason = True, DeactivationReason.NONE

            if (target, is_active, reason) == (locked.current_uses, locked.is_active, locked.deactivation_reason):
                return False

            PromoCode.objects.filter(pk=locked.pk).update(
                current_uses=target,
                is_active=is_active,
                deactivation_reason=reason,
                updated_at=now,
            )

        log_security_event(
            "promo_code_usage_reconciled",
            {
                "promo_code": locked.code,
                "previous_uses": locked.current_uses,
                "usage_records": usage_count,
                "current_uses": target,
                "is_active": is_active,
            },
        )
        return True
