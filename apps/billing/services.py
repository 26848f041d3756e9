"""
Billing services for Kairos Platform.

- PlanCatalog: cached plan lookups
- ConversionService: grace period → paid subscription orchestration
- SubscriptionService: subscription cancellation
- SubscriptionReconciliationService: repair of half-finished conversions
"""

from __future__ import annotations

import logging
from typing import Any, TypedDict

from django.core.cache import cache
from django.core.exceptions import ValidationError as DjangoValidationError

from apps.common.clock import Clock, system_clock
from apps.common.db import store_call
from apps.common.types import (
    BusinessError,
    Err,
    InvalidStateError,
    NotFoundError,
    Ok,
    Result,
    ValidationError,
    capture,
)
from apps.common.validators import log_security_event
from apps.grace_periods.models import GracePeriod, GracePeriodStatus
from apps.grace_periods.services import GracePeriodService
from apps.promotions.models import UsageContext
from apps.promotions.services import PromoCodeService
from apps.tenants.services import TenantService

from .models import Plan, Subscription

logger = logging.getLogger(__name__)

PLAN_CACHE_TIMEOUT = 300  # 5 minutes


# ===============================================================================
# PLAN CATALOG
# ===============================================================================


class PlanCatalog:
    """Read-only access to purchasable plans."""

    @staticmethod
    def _cache_key(plan_id: Any) -> str:
        return f"billing:plan:{plan_id}"

    @classmethod
    def get_plan(cls, plan_id: Any) -> Plan:
        cache_key = cls._cache_key(plan_id)
        plan = cache.get(cache_key)
        if plan is not None:
            return plan

        try:
            plan = Plan.objects.get(pk=plan_id, is_active=True)
        except (Plan.DoesNotExist, DjangoValidationError, ValueError, TypeError) as e:
            raise NotFoundError(f"Plan {plan_id} not found") from e

        cache.set(cache_key, plan, PLAN_CACHE_TIMEOUT)
        return plan

    @classmethod
    def invalidate(cls, plan_id: Any) -> None:
        cache.delete(cls._cache_key(plan_id))


# ===============================================================================
# CONVERSION ORCHESTRATOR
# ===============================================================================


class ConversionService:
    """
    Turns an active grace period into a paid subscription.

    Steps, in order:
      1. load the grace period (must be active)
      2. load the plan
      3. build the subscription from the plan price
      4. quote the promo code, if any, onto the subscription
      5. persist the subscription and claim the promo use
      6. conditionally convert the grace period (only one caller wins)
      7. point the tenant at the new plan

    Steps 5-7 share one transaction. A promo code used up by a concurrent
    application between the quote and the claim fails the whole conversion
    with ExhaustedError, so a capped code never grants more discounts than
    its cap. Should a crash still separate the steps, the only possible
    leftover is a subscription whose grace period does not point back at it,
    which SubscriptionReconciliationService repairs.
    """

    def __init__(
        self,
        clock: Clock | None = None,
        grace_periods: GracePeriodService | None = None,
        promo_codes: PromoCodeService | None = None,
    ):
        self.clock = clock or system_clock
        self.grace_periods = grace_periods or GracePeriodService(clock=self.clock)
        self.promo_codes = promo_codes or PromoCodeService(clock=self.clock)

    def convert_grace_period(
        self,
        grace_period_id: Any,
        plan_id: Any,
        promo_code_id: Any | None = None,
    ) -> Result[Subscription, BusinessError]:
        result = capture(lambda: self._convert(grace_period_id, plan_id, promo_code_id))
        match result:
            case Ok(subscription):
                logger.info(f"🎉 [Conversion] Grace period {grace_period_id} converted to {subscription.id}")
            case Err(error):
                logger.warning(f"⚠️ [Conversion] Grace period {grace_period_id} not converted: {error.code} {error}")
        return result

    def _convert(self, grace_period_id: Any, plan_id: Any, promo_code_id: Any | None) -> Subscription:
        now = self.clock.now()

        grace_period = self.grace_periods.get_grace_period(grace_period_id)
        if grace_period.status != GracePeriodStatus.ACTIVE:
            raise InvalidStateError(
                f"Only active grace periods can be converted (grace period {grace_period.id} is '{grace_period.status}')"
            )

        plan = PlanCatalog.get_plan(plan_id)
        subscription = Subscription.build_from_plan(plan, grace_period.tenant_id, now, grace_period_id=grace_period.id)

        promo_code = None
        if promo_code_id:
            promo_code = self._quote_promo(subscription, grace_period, plan, promo_code_id)

        with store_call("convert grace period"):
            subscription.save(force_insert=True)
            if promo_code is not None:
                self.promo_codes.record_usage(
                    promo_code,
                    user_id=grace_period.user_id,
                    tenant_id=grace_period.tenant_id,
                    subscription_id=subscription.id,
                    original_amount=subscription.base_price,
                    discount_applied=subscription.discount_amount,
                )
            self.grace_periods.convert_grace_period(grace_period, plan_id=plan.id, subscription_id=subscription.id)
            TenantService.set_active_plan(grace_period.tenant_id, plan.id, "active", subscription_id=subscription.id)

        log_security_event(
            "grace_period_converted",
            {
                "grace_period_id": str(grace_period.id),
                "subscription_id": str(subscription.id),
                "user_id": grace_period.user_id,
                "tenant_id": str(grace_period.tenant_id),
                "plan_id": str(plan.id),
                "promo_code": subscription.promo_code_value or None,
                "final_price": str(subscription.final_price),
            },
        )
        return subscription

    def _quote_promo(self, subscription: Subscription, grace_period: GracePeriod, plan: Plan, promo_code_id: Any) -> Any:
        context = UsageContext(
            user_id=grace_period.user_id,
            tenant_id=str(grace_period.tenant_id),
            plan_id=str(plan.id),
            subscription_amount=plan.price,
            is_new_user=self.promo_codes.is_new_user(grace_period.tenant_id, None),
        )
        promo_code, quote = self.promo_codes.quote(promo_code_id, context)
        if not quote.is_valid:
            raise ValidationError(quote.error_message, field="promo_code_id", code=quote.error_code)
        subscription.apply_discount(promo_code, quote.discount_amount, quote.final_amount)
        return promo_code


# ===============================================================================
# SUBSCRIPTIONS
# ===============================================================================


class SubscriptionService:
    """Cancellation of paid subscriptions."""

    VALID_REASONS = frozenset(code for code, _label in Subscription.CANCELLATION_REASON_CHOICES)

    def __init__(self, clock: Clock | None = None, grace_periods: GracePeriodService | None = None):
        self.clock = clock or system_clock
        self.grace_periods = grace_periods or GracePeriodService(clock=self.clock)

    def get_subscription(self, subscription_id: Any) -> Subscription:
        try:
            return Subscription.objects.select_related("tenant", "plan").get(pk=subscription_id)
        except (Subscription.DoesNotExist, DjangoValidationError, ValueError, TypeError) as e:
            raise NotFoundError(f"Subscription {subscription_id} not found") from e

    def cancel_subscription(self, subscription_id: Any, reason: str = "customer_request") -> Subscription:
        """
        Cancel an active subscription.

        A ``downgrade`` cancellation moves the tenant back to trial and opens a
        plan_migration grace period for the tenant owner.
        """
        if reason not in self.VALID_REASONS:
            raise ValidationError(f"Unknown cancellation reason '{reason}'", field="reason")

        subscription = self.get_subscription(subscription_id)
        tenant = subscription.tenant
        with store_call("cancel subscription"):
            if not subscription.cancel(reason, self.clock.now()):
                raise InvalidStateError(f"Subscription {subscription.id} is already cancelled")
            if tenant.active_subscription_id == subscription.id:
                status = "trial" if reason == "downgrade" else "cancelled"
                TenantService.set_active_plan(tenant.id, None, status, clear_subscription=True)

        logger.info(f"🛑 [Subscription] Cancelled {subscription.id} ({reason})")

        if reason == "downgrade":
            self.grace_periods.create_for_cancelled_subscription(subscription)
        return subscription


# ===============================================================================
# RECONCILIATION
# ===============================================================================


class OrphanReconciliationResult(TypedDict):
    checked: int
    linked: int
    cancelled: int
    errors: list[str]


class SubscriptionReconciliationService:
    """
    Repairs subscriptions left behind by interrupted conversions.

    A subscription is orphaned when it names a grace period that does not
    name it back.
    """

    def __init__(
        self,
        clock: Clock | None = None,
        grace_periods: GracePeriodService | None = None,
        promo_codes: PromoCodeService | None = None,
    ):
        self.clock = clock or system_clock
        self.grace_periods = grace_periods or GracePeriodService(clock=self.clock)
        self.promo_codes = promo_codes or PromoCodeService(clock=self.clock)

    def find_orphaned_subscriptions(self) -> list[Subscription]:
        return list(
            Subscription.objects.filter(
                status="active",
                grace_period__isnull=False,
                converted_grace_period__isnull=True,
            ).select_related("grace_period")
        )

    def reconcile_orphaned_subscriptions(self) -> OrphanReconciliationResult:
        result = OrphanReconciliationResult(checked=0, linked=0, cancelled=0, errors=[])
        logger.info("🔍 [Reconciliation] Scanning for orphaned subscriptions")

        for subscription in self.find_orphaned_subscriptions():
            result["checked"] += 1
            try:
                if self._link(subscription):
                    result["linked"] += 1
                else:
                    self._cancel_orphan(subscription)
                    result["cancelled"] += 1
                    logger.warning(f"⚠️ [Reconciliation] Cancelled orphaned subscription {subscription.id}")
                log_security_event(
                    "orphaned_subscription_reconciled",
                    {
                        "subscription_id": str(subscription.id),
                        "grace_period_id": str(subscription.grace_period_id),
                        "action": "cancelled" if subscription.status == "cancelled" else "linked",
                    },
                )
            except Exception as e:
                logger.exception(f"🔥 [Reconciliation] Failed on subscription {subscription.id}")
                result["errors"].append(f"Subscription {subscription.id}: {e}")

        logger.info(
            f"✅ [Reconciliation] {result['checked']} orphans: {result['linked']} linked, "
            f"{result['cancelled']} cancelled, {len(result['errors'])} errors"
        )
        return result

    def _link(self, subscription: Subscription) -> bool:
        """Finish the conversion for ``subscription``. False when its grace period moved on."""
        grace_period = subscription.grace_period
        if grace_period.status != GracePeriodStatus.ACTIVE:
            return False
        try:
            with store_call("link orphaned subscription"):
                self.grace_periods.convert_grace_period(
                    grace_period, plan_id=subscription.plan_id, subscription_id=subscription.id
                )
                TenantService.set_active_plan(
                    subscription.tenant_id, subscription.plan_id, "active", subscription_id=subscription.id
                )
        except InvalidStateError:
            return False
        logger.info(f"🔗 [Reconciliation] Linked subscription {subscription.id} to grace period {grace_period.id}")
        return True

    def _cancel_orphan(self, subscription: Subscription) -> None:
        """Cancel ``subscription`` and give back any promo use it claimed."""
        with store_call("cancel orphaned subscription"):
            subscription.cancel("orphaned", self.clock.now())
            for usage_id in subscription.promo_code_usages.values_list("id", flat=True):
                self.promo_codes.revoke_code(usage_id)
