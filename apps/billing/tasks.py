"""Billing background tasks.

Django-Q2 tasks for subscription reconciliation and the registration of
every recurring billing lifecycle schedule.
"""

from __future__ import annotations

import logging
from typing import Any

from django_q.tasks import async_task

from .services import SubscriptionReconciliationService

logger = logging.getLogger(__name__)

# Task configuration
TASK_TIME_LIMIT = 600  # 10 minutes

BILLING_SCHEDULES: tuple[dict[str, Any], ...] = (
    {
        "name": "Grace Period Reminder Sweep",
        "func": "apps.grace_periods.tasks.run_reminder_sweep",
        "schedule_type": "HOURLY",
    },
    {
        "name": "Grace Period Expiry Sweep",
        "func": "apps.grace_periods.tasks.run_expiry_sweep",
        "schedule_type": "HOURLY",
    },
    {
        "name": "Promo Code Usage Reconciliation",
        "func": "apps.promotions.tasks.reconcile_promo_usage_counts",
        "schedule_type": "DAILY",
    },
    {
        "name": "Orphaned Subscription Reconciliation",
        "func": "apps.billing.tasks.reconcile_subscriptions",
        "schedule_type": "HOURLY",
    },
)


def reconcile_subscriptions() -> dict[str, Any]:
    """
    Link or cancel subscriptions left behind by interrupted conversions.

    Returns:
        Dictionary with the orphan reconciliation results
    """
    logger.info("🔍 [Tasks] Reconciling subscriptions")
    service = SubscriptionReconciliationService()
    try:
        orphans = service.reconcile_orphaned_subscriptions()
    except Exception as e:
        logger.exception(f"💥 [Tasks] Subscription reconciliation failed: {e}")
        return {"success": False, "error": str(e)}

    return {
        "success": not orphans["errors"],
        "orphans": dict(orphans),
    }


def reconcile_subscriptions_async() -> str:
    """Queue subscription reconciliation."""
    return async_task("apps.billing.tasks.reconcile_subscriptions", timeout=TASK_TIME_LIMIT)


def register_billing_schedules() -> list[str]:
    """
    Register the billing lifecycle schedules with Django-Q.

    Idempotent: existing schedules are updated in place by name.
    """
    from django_q.models import Schedule  # noqa: PLC0415

    registered = []
    for config in BILLING_SCHEDULES:
        Schedule.objects.update_or_create(
            name=config["name"],
            defaults={
                "func": config["func"],
                "schedule_type": getattr(Schedule, config["schedule_type"]),
            },
        )
        logger.info(f"📅 [Tasks] Registered scheduled task: {config['name']}")
        registered.append(config["name"])
    return registered
