"""
Grace period models for Kairos Platform
Time-boxed trial windows with reminder bookkeeping and extension history.

Lifecycle:
- active → expired | cancelled | converted
- active → active (extend)

Every transition is a conditional UPDATE so that concurrent callers cannot
both win: status-predicated for convert/expire, version-predicated for
read-modify-write changes on the JSON history fields.
"""

from __future__ import annotations

import logging
import math
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any, ClassVar, assert_never

from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from django.db.models import Q
from django.utils.translation import gettext_lazy as _

from apps.common.types import ConflictError, InvalidStateError, ValidationError

logger = logging.getLogger(__name__)

# ===============================================================================
# CONSTANTS
# ===============================================================================

SECONDS_PER_DAY = 86400
SECONDS_PER_HOUR = 3600

# Re-read attempts for version-checked updates before giving up
MAX_VERSION_RETRIES = 5


class GracePeriodStatus(models.TextChoices):
    ACTIVE = "active", _("Active")
    EXPIRED = "expired", _("Expired")
    CONVERTED = "converted", _("Converted")
    CANCELLED = "cancelled", _("Cancelled")


class GracePeriodSource(models.TextChoices):
    NEW_REGISTRATION = "new_registration", _("New Registration")
    PLAN_MIGRATION = "plan_migration", _("Plan Migration")
    ADMIN_GRANTED = "admin_granted", _("Granted by Administrator")
    PROMO_CODE = "promo_code", _("Promo Code")


class NotificationType(models.TextChoices):
    REMINDER_7D = "reminder_7d", _("7 days left")
    REMINDER_3D = "reminder_3d", _("3 days left")
    REMINDER_1D = "reminder_1d", _("1 day left")
    EXPIRED = "expired", _("Expired")


# Evaluation order for get_next_notification_due
NOTIFICATION_PRIORITY: tuple[NotificationType, ...] = (
    NotificationType.REMINDER_7D,
    NotificationType.REMINDER_3D,
    NotificationType.REMINDER_1D,
    NotificationType.EXPIRED,
)


# ===============================================================================
# GRACE PERIOD MODEL
# ===============================================================================


class GracePeriod(models.Model):
    """
    Trial window for one (user, tenant) pair.

    State changes go through the transition methods below (extend, cancel,
    convert, expire, add_notification). Derived queries take an explicit
    ``now`` so callers control the clock.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    user_id = models.CharField(max_length=128, db_index=True)
    tenant = models.ForeignKey(
        "tenants.Tenant",
        on_delete=models.PROTECT,
        related_name="grace_periods",
    )

    # Window
    start_date = models.DateTimeField()
    end_date = models.DateTimeField(db_index=True)
    duration_days = models.PositiveIntegerField(
        validators=[MinValueValidator(1), MaxValueValidator(365)],
        help_text=_("Total length in days, including extensions"),
    )

    status = models.CharField(
        max_length=20,
        choices=GracePeriodStatus.choices,
        default=GracePeriodStatus.ACTIVE,
        db_index=True,
    )
    source = models.CharField(max_length=30, choices=GracePeriodSource.choices)
    source_details = models.JSONField(default=dict, blank=True)

    # Bookkeeping (ordered lists of dicts, datetimes stored as ISO strings)
    notifications_sent = models.JSONField(default=list, blank=True)
    original_end_date = models.DateTimeField(null=True, blank=True, help_text=_("End date before the first extension"))
    extension_history = models.JSONField(default=list, blank=True)

    # Conversion
    converted_at = models.DateTimeField(null=True, blank=True)
    selected_plan = models.ForeignKey(
        "billing.Plan",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="+",
    )
    subscription = models.OneToOneField(
        "billing.Subscription",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="converted_grace_period",
    )

    metadata = models.JSONField(default=dict, blank=True)
    version = models.PositiveIntegerField(default=0)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "grace_periods"
        verbose_name = _("Grace Period")
        verbose_name_plural = _("Grace Periods")
        ordering = ("-created_at",)
        indexes = (
            models.Index(fields=["status", "end_date"], name="grace_status_end_idx"),
            models.Index(fields=["tenant", "status"], name="grace_tenant_status_idx"),
        )
        constraints: ClassVar[list] = [
            models.UniqueConstraint(
                fields=["user_id"],
                condition=Q(status="active"),
                name="uniq_active_grace_period_per_user",
            ),
            models.CheckConstraint(condition=Q(duration_days__gte=1), name="grace_period_duration_positive"),
            models.CheckConstraint(condition=Q(end_date__gte=models.F("start_date")), name="grace_period_end_after_start"),
            models.CheckConstraint(
                condition=~Q(status="converted") | Q(converted_at__isnull=False, selected_plan__isnull=False),
                name="grace_period_converted_has_plan",
            ),
        ]

    def __str__(self) -> str:
        return f"GracePeriod {self.id} user={self.user_id} ({self.status})"

    # =========================================================================
    # CONSTRUCTION
    # =========================================================================

    @classmethod
    def open(
        cls,
        user_id: str,
        tenant_id: Any,
        duration_days: int,
        source: GracePeriodSource,
        now: datetime,
        source_details: dict[str, Any] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> GracePeriod:
        """Unsaved active grace period starting at ``now``."""
        return cls(
            user_id=user_id,
            tenant_id=tenant_id,
            start_date=now,
            end_date=now + timedelta(days=duration_days),
            duration_days=duration_days,
            status=GracePeriodStatus.ACTIVE,
            source=source,
            source_details=source_details or {},
            metadata=metadata or {},
        )

    # =========================================================================
    # DERIVED QUERIES
    # =========================================================================

    def is_active(self, now: datetime) -> bool:
        return self.status == GracePeriodStatus.ACTIVE and now <= self.end_date

    def is_expired(self, now: datetime) -> bool:
        if self.status == GracePeriodStatus.EXPIRED:
            return True
        return self.status == GracePeriodStatus.ACTIVE and now > self.end_date

    def days_remaining(self, now: datetime) -> int:
        seconds = (self.end_date - now).total_seconds()
        return max(0, math.ceil(seconds / SECONDS_PER_DAY))

    def hours_remaining(self, now: datetime) -> int:
        seconds = (self.end_date - now).total_seconds()
        return max(0, math.ceil(seconds / SECONDS_PER_HOUR))

    def progress_percentage(self, now: datetime) -> float:
        total = (self.end_date - self.start_date).total_seconds()
        if total <= 0:
            return 100.0
        elapsed = (now - self.start_date).total_seconds()
        return round(min(100.0, max(0.0, elapsed / total * 100)), 2)

    def has_notification(self, notification_type: str) -> bool:
        return any(entry.get("type") == notification_type for entry in self.notifications_sent)

    def should_send_notification(self, notification_type: NotificationType, now: datetime) -> bool:
        """
        Whether ``notification_type`` is due at ``now``.

        Windows are half-open on the lower bound and must stay that way:
        reminder_7d for 3 < d <= 7, reminder_3d for 1 < d <= 3,
        reminder_1d for 0 < d <= 1, where d is days_remaining.
        """
        if self.has_notification(notification_type):
            return False

        days = self.days_remaining(now)
        match notification_type:
            case NotificationType.REMINDER_7D:
                return 3 < days <= 7
            case NotificationType.REMINDER_3D:
                return 1 < days <= 3
            case NotificationType.REMINDER_1D:
                return 0 < days <= 1
            case NotificationType.EXPIRED:
                return now > self.end_date and self.status != GracePeriodStatus.CONVERTED
            case _:
                assert_never(notification_type)

    def get_next_notification_due(self, now: datetime) -> NotificationType | None:
        for notification_type in NOTIFICATION_PRIORITY:
            if self.should_send_notification(notification_type, now):
                return notification_type
        return None

    # =========================================================================
    # TRANSITIONS
    # =========================================================================

    def _terminal_state_error(self, action: str) -> InvalidStateError:
        return InvalidStateError(
            f"Cannot {action} grace period {self.id}: it is already in terminal state '{self.status}'"
        )

    def _apply_versioned(self, build_changes: Callable[[GracePeriod], dict[str, Any]], now: datetime) -> None:
        """
        Optimistic read-modify-write: compute changes from the current row and
        write them only if nobody bumped ``version`` in between.
        """
        for _attempt in range(MAX_VERSION_RETRIES):
            changes = build_changes(self)
            if not changes:
                return
            updated = GracePeriod.objects.filter(pk=self.pk, version=self.version).update(
                **changes,
                version=self.version + 1,
                updated_at=now,
            )
            self.refresh_from_db()
            if updated:
                return
            logger.info(f"🔁 [GracePeriod] Version conflict on {self.id}, re-reading")
        raise ConflictError(f"Grace period {self.id} is being modified concurrently, please retry")

    def extend(self, additional_days: int, extended_by: str, now: datetime, reason: str = "") -> None:
        def changes(current: GracePeriod) -> dict[str, Any]:
            if current.status != GracePeriodStatus.ACTIVE:
                raise current._terminal_state_error("extend")
            new_duration = current.duration_days + additional_days
            if new_duration > 365:
                raise ValidationError(
                    "Extension would make the grace period longer than 365 days",
                    field="additional_days",
                )
            new_end = current.end_date + timedelta(days=additional_days)
            record = {
                "extended_by": extended_by,
                "extended_at": now.isoformat(),
                "additional_days": additional_days,
                "previous_end_date": current.end_date.isoformat(),
                "new_end_date": new_end.isoformat(),
                "reason": reason,
            }
            return {
                "end_date": new_end,
                "duration_days": new_duration,
                "original_end_date": current.original_end_date or current.end_date,
                "extension_history": [*current.extension_history, record],
            }

        self._apply_versioned(changes, now)

    def cancel(self, now: datetime, reason: str = "") -> None:
        """Cancel from any state except converted (expired periods may be cancelled)."""

        def changes(current: GracePeriod) -> dict[str, Any]:
            if current.status == GracePeriodStatus.CONVERTED:
                raise current._terminal_state_error("cancel")
            return {
                "status": GracePeriodStatus.CANCELLED,
                "metadata": {
                    **current.metadata,
                    "cancellation_reason": reason,
                    "cancelled_at": now.isoformat(),
                },
            }

        self._apply_versioned(changes, now)

    def convert(self, plan_id: Any, subscription_id: Any, now: datetime) -> None:
        """Mark converted. Only one caller can win; the rest get InvalidStateError."""
        updated = GracePeriod.objects.filter(pk=self.pk, status=GracePeriodStatus.ACTIVE).update(
            status=GracePeriodStatus.CONVERTED,
            converted_at=now,
            selected_plan_id=plan_id,
            subscription_id=subscription_id,
            version=models.F("version") + 1,
            updated_at=now,
        )
        self.refresh_from_db()
        if not updated:
            raise self._terminal_state_error("convert")

    def expire(self, now: datetime) -> bool:
        """Transition active → expired. Returns False (no-op) for any other state."""
        updated = GracePeriod.objects.filter(pk=self.pk, status=GracePeriodStatus.ACTIVE).update(
            status=GracePeriodStatus.EXPIRED,
            version=models.F("version") + 1,
            updated_at=now,
        )
        self.refresh_from_db()
        return bool(updated)

    def add_notification(
        self,
        notification_type: NotificationType,
        now: datetime,
        email_sent: bool = True,
        push_sent: bool = False,
    ) -> bool:
        """Record a dispatched notification. Returns False if it was already recorded."""
        recorded = True

        def changes(current: GracePeriod) -> dict[str, Any]:
            nonlocal recorded
            if current.has_notification(notification_type):
                recorded = False
                return {}
            entry = {
                "type": str(notification_type),
                "sent_at": now.isoformat(),
                "email_sent": email_sent,
                "push_sent": push_sent,
            }
            return {"notifications_sent": [*current.notifications_sent, entry]}

        if self.has_notification(notification_type):
            return False
        self._apply_versioned(changes, now)
        return recorded
