"""Promotion background tasks."""

from __future__ import annotations

import logging
from typing import Any

from django_q.tasks import async_task

from .services import PromoCodeService

logger = logging.getLogger(__name__)

TASK_TIME_LIMIT = 900  # 15 minutes


def reconcile_promo_usage_counts(promo_code_ids: list[str] | None = None) -> dict[str, Any]:
    """
    Recompute promo code usage counters from usage records.

    Args:
        promo_code_ids: Optional subset of codes to check; all codes when omitted

    Returns:
        Dictionary with checked, corrected and errors
    """
    logger.info("🎟️ [Tasks] Reconciling promo code usage counters")
    try:
        return dict(PromoCodeService().reconcile_usage_counts(promo_code_ids))
    except Exception as e:
        logger.exception(f"💥 [Tasks] Promo usage reconciliation failed: {e}")
        return {"checked": 0, "corrected": 0, "errors": [str(e)]}


def reconcile_promo_usage_counts_async(promo_code_ids: list[str] | None = None) -> str:
    """Queue promo usage reconciliation."""
    return async_task(
        "apps.promotions.tasks.reconcile_promo_usage_counts",
        promo_code_ids,
        timeout=TASK_TIME_LIMIT,
    )
