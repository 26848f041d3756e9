"""
Grace period services for Kairos Platform.
Trial window lifecycle: creation, extension, cancellation, conversion,
expiry, listing and reporting.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import TYPE_CHECKING, Any, TypedDict, assert_never

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import IntegrityError
from django.db.models import Avg, Count

from apps.billing.config import get_default_grace_duration_days, get_promo_grace_duration_days
from apps.common.clock import Clock, system_clock
from apps.common.db import store_call
from apps.common.types import ConflictError, NotFoundError, ValidationError
from apps.common.validators import (
    log_security_event,
    validate_additional_days,
    validate_duration_days,
    validate_reason,
)
from apps.tenants.services import TenantService

from .models import GracePeriod, GracePeriodSource, GracePeriodStatus

if TYPE_CHECKING:
    from apps.billing.models import Subscription

logger = logging.getLogger(__name__)

# ===============================================================================
# CONSTANTS
# ===============================================================================

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 200


class GracePeriodFilters(TypedDict, total=False):
    status: str
    source: str
    user_id: str
    tenant_id: str
    expiring_in_days: int
    is_overdue: bool


@dataclass
class GracePeriodPage:
    """One page of grace periods plus the unpaginated total."""

    items: list[GracePeriod] = field(default_factory=list)
    total: int = 0
    limit: int = DEFAULT_PAGE_SIZE
    offset: int = 0

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.items) < self.total


def default_duration_for(source: GracePeriodSource) -> int:
    """Trial length used when the caller does not choose one."""
    match source:
        case GracePeriodSource.NEW_REGISTRATION | GracePeriodSource.PLAN_MIGRATION | GracePeriodSource.ADMIN_GRANTED:
            return get_default_grace_duration_days()
        case GracePeriodSource.PROMO_CODE:
            return get_promo_grace_duration_days()
        case _:
            assert_never(source)


def parse_source(value: Any) -> GracePeriodSource:
    try:
        return GracePeriodSource(value)
    except ValueError as e:
        allowed = ", ".join(GracePeriodSource.values)
        raise ValidationError(f"source must be one of: {allowed}", field="source") from e


# ===============================================================================
# GRACE PERIOD SERVICE
# ===============================================================================


class GracePeriodService:
    """
    Owns every write to GracePeriod rows.

    Other apps (conversion, sweeps, API) go through this service rather than
    mutating grace periods directly.
    """

    def __init__(self, clock: Clock | None = None):
        self.clock = clock or system_clock

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    def get_grace_period(self, grace_period_id: Any) -> GracePeriod:
        try:
            return GracePeriod.objects.select_related("tenant").get(pk=grace_period_id)
        except (GracePeriod.DoesNotExist, DjangoValidationError, ValueError, TypeError) as e:
            raise NotFoundError(f"Grace period {grace_period_id} not found") from e

    def get_active_grace_period(self, user_id: str) -> GracePeriod | None:
        return GracePeriod.objects.filter(user_id=user_id, status=GracePeriodStatus.ACTIVE).first()

    def list_grace_periods(
        self,
        filters: GracePeriodFilters | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> GracePeriodPage:
        filters = filters or {}
        limit = max(1, min(int(limit), MAX_PAGE_SIZE))
        offset = max(0, int(offset))
        now = self.clock.now()

        queryset = GracePeriod.objects.all().order_by("-created_at")
        if filters.get("status"):
            queryset = queryset.filter(status=filters["status"])
        if filters.get("source"):
            queryset = queryset.filter(source=filters["source"])
        if filters.get("user_id"):
            queryset = queryset.filter(user_id=filters["user_id"])
        if filters.get("tenant_id"):
            queryset = queryset.filter(tenant_id=filters["tenant_id"])
        if filters.get("expiring_in_days") is not None:
            # ceil(days_remaining) <= N  <=>  end_date <= now + N days
            queryset = queryset.filter(
                status=GracePeriodStatus.ACTIVE,
                end_date__lte=now + timedelta(days=int(filters["expiring_in_days"])),
            )
        if filters.get("is_overdue") is not None:
            overdue = {"status": GracePeriodStatus.ACTIVE, "end_date__lt": now}
            queryset = queryset.filter(**overdue) if filters["is_overdue"] else queryset.exclude(**overdue)

        total = queryset.count()
        items = list(queryset.select_related("tenant")[offset : offset + limit])
        return GracePeriodPage(items=items, total=total, limit=limit, offset=offset)

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def create_grace_period(
        self,
        user_id: str,
        tenant_id: Any,
        source: GracePeriodSource | str,
        duration_days: int | None = None,
        source_details: dict[str, Any] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> GracePeriod:
        """
        Open a trial window for ``user_id``.

        Raises ConflictError when the user already has an active grace period.
        The partial unique index catches the race where two creates pass the
        existence check at the same time.
        """
        if not user_id:
            raise ValidationError("user_id is required", field="user_id")
        source = parse_source(source)
        duration = validate_duration_days(duration_days if duration_days is not None else default_duration_for(source))
        now = self.clock.now()

        logger.info(f"⏳ [GracePeriod] Creating {duration}-day grace period for user {user_id}, tenant {tenant_id}")

        TenantService.get_tenant(tenant_id)
        if self.get_active_grace_period(user_id) is not None:
            raise ConflictError(f"User {user_id} already has an active grace period")

        grace_period = GracePeriod.open(
            user_id=user_id,
            tenant_id=tenant_id,
            duration_days=duration,
            source=source,
            now=now,
            source_details=source_details,
            metadata=metadata,
        )
        try:
            with store_call("create grace period"):
                grace_period.save(force_insert=True)
        except IntegrityError as e:
            raise ConflictError(f"User {user_id} already has an active grace period") from e

        logger.info(f"✅ [GracePeriod] Created {grace_period.id} ending {grace_period.end_date.isoformat()}")
        return grace_period

    def extend_grace_period(
        self,
        grace_period_id: Any,
        additional_days: int,
        extended_by: str,
        reason: str | None = None,
    ) -> GracePeriod:
        days = validate_additional_days(additional_days)
        reason = validate_reason(reason)
        if not extended_by:
            raise ValidationError("extended_by is required", field="extended_by")

        grace_period = self.get_grace_period(grace_period_id)
        with store_call("extend grace period"):
            grace_period.extend(days, extended_by=extended_by, now=self.clock.now(), reason=reason)

        log_security_event(
            "grace_period_extended",
            {
                "grace_period_id": str(grace_period.id),
                "user_id": grace_period.user_id,
                "additional_days": days,
                "extended_by": extended_by,
                "new_end_date": grace_period.end_date.isoformat(),
            },
        )
        return grace_period

    def cancel_grace_period(self, grace_period_id: Any, reason: str | None = None) -> GracePeriod:
        reason = validate_reason(reason)
        grace_period = self.get_grace_period(grace_period_id)
        with store_call("cancel grace period"):
            grace_period.cancel(now=self.clock.now(), reason=reason)

        log_security_event(
            "grace_period_cancelled",
            {"grace_period_id": str(grace_period.id), "user_id": grace_period.user_id, "reason": reason},
        )
        return grace_period

    def convert_grace_period(self, grace_period: GracePeriod, plan_id: Any, subscription_id: Any) -> GracePeriod:
        """State-machine conversion; the orchestrator lives in apps.billing.services."""
        grace_period.convert(plan_id=plan_id, subscription_id=subscription_id, now=self.clock.now())
        logger.info(f"🎉 [GracePeriod] {grace_period.id} converted to subscription {subscription_id}")
        return grace_period

    def expire_grace_period(self, grace_period_id: Any) -> bool:
        grace_period = self.get_grace_period(grace_period_id)
        with store_call("expire grace period"):
            return grace_period.expire(now=self.clock.now())

    def create_for_cancelled_subscription(self, subscription: Subscription) -> GracePeriod | None:
        """Open a plan_migration window for the tenant owner after a downgrade cancellation."""
        owner = subscription.tenant.owner_user_id
        if self.get_active_grace_period(owner) is not None:
            logger.info(f"⏭️ [GracePeriod] Owner {owner} already in a grace period, skipping")
            return None
        return self.create_grace_period(
            user_id=owner,
            tenant_id=subscription.tenant_id,
            source=GracePeriodSource.PLAN_MIGRATION,
            source_details={
                "previous_subscription_id": str(subscription.id),
                "previous_plan_id": str(subscription.plan_id),
            },
        )

    # -------------------------------------------------------------------------
    # Reporting
    # -------------------------------------------------------------------------

    def get_grace_period_stats(self, filters: GracePeriodFilters | None = None) -> dict[str, Any]:
        filters = filters or {}
        now = self.clock.now()

        queryset = GracePeriod.objects.all()
        if filters.get("tenant_id"):
            queryset = queryset.filter(tenant_id=filters["tenant_id"])

        total = queryset.count()
        by_status = {status: 0 for status in GracePeriodStatus.values}
        for row in queryset.values("status").annotate(count=Count("id")):
            by_status[row["status"]] = row["count"]
        by_source = {source: 0 for source in GracePeriodSource.values}
        for row in queryset.values("source").annotate(count=Count("id")):
            by_source[row["source"]] = row["count"]

        average_duration = queryset.aggregate(avg=Avg("duration_days"))["avg"] or 0
        conversion_rate = (by_status[GracePeriodStatus.CONVERTED] / total * 100) if total else 0

        active = queryset.filter(status=GracePeriodStatus.ACTIVE)

        def expiring_between(lower_days: int, upper_days: int) -> int:
            # lower < ceil(days_remaining) <= upper
            return active.filter(
                end_date__gt=now + timedelta(days=lower_days),
                end_date__lte=now + timedelta(days=upper_days),
            ).count()

        total_extensions = 0
        extension_days = 0
        for history in queryset.values_list("extension_history", flat=True):
            for record in history or []:
                total_extensions += 1
                extension_days += int(record.get("additional_days", 0))

        return {
            "total": total,
            "by_status": by_status,
            "by_source": by_source,
            "average_duration": round(float(average_duration), 2),
            "conversion_rate": round(conversion_rate, 2),
            "expiring_in_7_days": expiring_between(3, 7),
            "expiring_in_3_days": expiring_between(1, 3),
            "expiring_in_1_day": expiring_between(0, 1),
            "overdue": active.filter(end_date__lt=now).count(),
            "total_extensions": total_extensions,
            "average_extension_days": round(extension_days / total_extensions, 2) if total_extensions else 0,
        }
