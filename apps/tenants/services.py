"""
Tenant repository for Kairos Platform.
"""

from __future__ import annotations

import logging
from typing import Any

from django.core.exceptions import ValidationError as DjangoValidationError
from django.utils import timezone

from apps.common.types import NotFoundError, ValidationError

from .models import Tenant

logger = logging.getLogger(__name__)


class TenantService:
    """Owns writes to a tenant's billing pointer."""

    VALID_STATUSES = frozenset(code for code, _label in Tenant.BILLING_STATUS_CHOICES)

    @staticmethod
    def get_tenant(tenant_id: Any) -> Tenant:
        try:
            return Tenant.objects.get(pk=tenant_id)
        except (Tenant.DoesNotExist, DjangoValidationError, ValueError, TypeError) as e:
            raise NotFoundError(f"Tenant {tenant_id} not found") from e

    @classmethod
    def set_active_plan(
        cls,
        tenant_id: Any,
        plan_id: Any,
        status: str,
        subscription_id: Any | None = None,
        clear_subscription: bool = False,
    ) -> None:
        """
        Repoint the tenant at a plan and optionally the backing subscription.

        ``clear_subscription`` drops the subscription pointer, for when the
        subscription it names has ended.
        """
        if status not in cls.VALID_STATUSES:
            raise ValidationError(f"Unknown billing status '{status}'", field="status")

        updates: dict[str, Any] = {
            "active_plan_id": plan_id,
            "billing_status": status,
            "updated_at": timezone.now(),
        }
        if clear_subscription:
            updates["active_subscription_id"] = None
        elif subscription_id is not None:
            updates["active_subscription_id"] = subscription_id

        updated = Tenant.objects.filter(pk=tenant_id).update(**updates)
        if not updated:
            raise NotFoundError(f"Tenant {tenant_id} not found")

        logger.info(f"🏢 [Tenant] {tenant_id} now on plan {plan_id} ({status})")
