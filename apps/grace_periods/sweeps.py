"""
Time-driven grace period sweeps: reminders and expiry.

Both sweeps are idempotent. A notification is recorded only after the
transport reports success, so a crash between send and record can cause a
duplicate send but never a silent miss.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any

from apps.common.clock import Clock, system_clock
from apps.common.db import store_call
from apps.common.types import SweepResult, empty_sweep_result
from apps.notifications.services import NotificationTransport, get_notification_transport

from .models import GracePeriod, GracePeriodStatus, NotificationType

logger = logging.getLogger(__name__)

# Expired grace periods whose final notice failed are retried for this long
EXPIRED_NOTICE_RETRY_DAYS = 7


def build_notification_payload(grace_period: GracePeriod, notification_type: str, now: Any) -> dict[str, Any]:
    tenant = grace_period.tenant
    return {
        "email": tenant.billing_email,
        "tenant_name": tenant.name,
        "grace_period_id": str(grace_period.id),
        "notification_type": notification_type,
        "end_date": grace_period.end_date.date().isoformat(),
        "days_remaining": grace_period.days_remaining(now),
    }


class _NotifyingSweep:
    def __init__(self, clock: Clock | None = None, transport: NotificationTransport | None = None):
        self.clock = clock or system_clock
        self.transport = transport or get_notification_transport()

    def dispatch(self, grace_period: GracePeriod, notification_type: NotificationType) -> bool:
        """Send through the transport, then record. Returns True when delivered."""
        now = self.clock.now()
        payload = build_notification_payload(grace_period, notification_type, now)
        if not self.transport.send(grace_period.user_id, str(notification_type), payload):
            logger.warning(f"⚠️ [GraceSweep] Transport refused {notification_type} for {grace_period.id}")
            return False
        with store_call("record grace notification"):
            grace_period.add_notification(notification_type, now=now, email_sent=True, push_sent=False)
        return True


class GraceReminderService(_NotifyingSweep):
    """Sends the next due reminder for every active grace period."""

    def run_reminder_sweep(self) -> SweepResult:
        result = empty_sweep_result()
        now = self.clock.now()
        logger.info("🔔 [GraceReminder] Starting reminder sweep")

        active = GracePeriod.objects.filter(status=GracePeriodStatus.ACTIVE).select_related("tenant")
        for grace_period in list(active):
            try:
                notification_type = grace_period.get_next_notification_due(now)
                if notification_type is None:
                    continue
                result["processed"] += 1
                if self.dispatch(grace_period, notification_type):
                    result["sent"] += 1
                    result["processed_ids"].append(str(grace_period.id))
                else:
                    result["failed"] += 1
            except Exception as e:
                logger.exception(f"🔥 [GraceReminder] Failed on grace period {grace_period.id}")
                result["failed"] += 1
                result["errors"].append(f"Grace period {grace_period.id}: {e}")

        logger.info(
            f"✅ [GraceReminder] Sweep done: {result['sent']} sent, {result['failed']} failed, "
            f"{len(result['errors'])} errors"
        )
        return result


class GraceExpiryService(_NotifyingSweep):
    """Expires grace periods past their end date and sends the final notice."""

    def run_expiry_sweep(self) -> SweepResult:
        result = empty_sweep_result()
        now = self.clock.now()
        logger.info("⌛ [GraceExpiry] Starting expiry sweep")

        overdue = GracePeriod.objects.filter(
            status=GracePeriodStatus.ACTIVE,
            end_date__lt=now,
        ).select_related("tenant")

        for grace_period in list(overdue):
            try:
                with store_call("expire grace period"):
                    transitioned = grace_period.expire(now)
                if not transitioned:
                    # Converted or cancelled between the scan and the update
                    continue
                result["processed"] += 1
                result["processed_ids"].append(str(grace_period.id))
                logger.info(f"⌛ [GraceExpiry] Expired grace period {grace_period.id}")
                self._send_expired_notice(grace_period, result)
            except Exception as e:
                logger.exception(f"🔥 [GraceExpiry] Failed on grace period {grace_period.id}")
                result["errors"].append(f"Grace period {grace_period.id}: {e}")

        self._retry_pending_notices(result)

        logger.info(f"✅ [GraceExpiry] Sweep done: {result['processed']} expired, {len(result['errors'])} errors")
        return result

    def _send_expired_notice(self, grace_period: GracePeriod, result: SweepResult) -> None:
        if not grace_period.should_send_notification(NotificationType.EXPIRED, self.clock.now()):
            return
        if self.dispatch(grace_period, NotificationType.EXPIRED):
            result["sent"] += 1
        else:
            result["failed"] += 1

    def _retry_pending_notices(self, result: SweepResult) -> None:
        """Re-send final notices that failed on a previous run."""
        now = self.clock.now()
        recently_expired = GracePeriod.objects.filter(
            status=GracePeriodStatus.EXPIRED,
            end_date__gte=now - timedelta(days=EXPIRED_NOTICE_RETRY_DAYS),
        ).exclude(pk__in=result["processed_ids"]).select_related("tenant")

        for grace_period in list(recently_expired):
            if grace_period.has_notification(NotificationType.EXPIRED):
                continue
            try:
                self._send_expired_notice(grace_period, result)
            except Exception as e:
                logger.exception(f"🔥 [GraceExpiry] Notice retry failed for {grace_period.id}")
                result["errors"].append(f"Grace period {grace_period.id}: {e}")
