"""
Billing signals for Kairos Platform
Keeps the cached plan catalog in step with plan edits.
"""

import logging
from typing import Any

from django.db.models.signals import post_delete, post_save
from django.dispatch import receiver

from .models import Plan
from .services import PlanCatalog

logger = logging.getLogger(__name__)


@receiver(post_save, sender=Plan)
@receiver(post_delete, sender=Plan)
def invalidate_cached_plan(sender: type[Plan], instance: Plan, **kwargs: Any) -> None:
    PlanCatalog.invalidate(instance.pk)
    logger.debug(f"🗑️ [Billing] Plan cache cleared for {instance.code}")
