"""Grace period background tasks.

Django-Q2 entry points for the reminder and expiry sweeps. Both are
scheduled hourly by ``setup_billing_schedules``.
"""

from __future__ import annotations

import logging
from typing import Any

from django_q.tasks import async_task

from .sweeps import GraceExpiryService, GraceReminderService

logger = logging.getLogger(__name__)

# Task configuration
TASK_SOFT_TIME_LIMIT = 300  # 5 minutes
TASK_TIME_LIMIT = 600  # 10 minutes


def run_reminder_sweep() -> dict[str, Any]:
    """
    Send the next due reminder for every active grace period.

    Returns:
        SweepResult dictionary (processed, sent, failed, errors, processed_ids)
    """
    logger.info("🔔 [Tasks] Running grace period reminder sweep")
    return dict(GraceReminderService().run_reminder_sweep())


def run_expiry_sweep() -> dict[str, Any]:
    """
    Expire overdue grace periods and send the final notice.

    Returns:
        SweepResult dictionary (processed, sent, failed, errors, processed_ids)
    """
    logger.info("⌛ [Tasks] Running grace period expiry sweep")
    return dict(GraceExpiryService().run_expiry_sweep())


def run_reminder_sweep_async() -> str:
    """Queue the reminder sweep."""
    return async_task("apps.grace_periods.tasks.run_reminder_sweep", timeout=TASK_TIME_LIMIT)


def run_expiry_sweep_async() -> str:
    """Queue the expiry sweep."""
    return async_task("apps.grace_periods.tasks.run_expiry_sweep", timeout=TASK_TIME_LIMIT)
