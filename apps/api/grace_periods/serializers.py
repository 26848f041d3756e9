# ===============================================================================
# GRACE PERIOD API SERIALIZERS ⏳
# ===============================================================================

from typing import Any, ClassVar

from rest_framework import serializers

from apps.billing.models import Subscription
from apps.common.clock import system_clock
from apps.common.validators import (
    MAX_EXTENSION_DAYS,
    MAX_GRACE_DURATION_DAYS,
    MAX_REASON_LENGTH,
    MIN_EXTENSION_DAYS,
    MIN_GRACE_DURATION_DAYS,
)
from apps.grace_periods.models import GracePeriod, GracePeriodSource, GracePeriodStatus

# ===============================================================================
# OUTPUT SERIALIZERS 📤
# ===============================================================================


class GracePeriodSerializer(serializers.ModelSerializer):
    """Grace period with the derived countdown fields evaluated at response time"""

    tenant_id = serializers.UUIDField(read_only=True)
    selected_plan_id = serializers.UUIDField(read_only=True, allow_null=True)
    subscription_id = serializers.UUIDField(read_only=True, allow_null=True)
    days_remaining = serializers.SerializerMethodField()
    hours_remaining = serializers.SerializerMethodField()
    progress_percentage = serializers.SerializerMethodField()
    next_notification_due = serializers.SerializerMethodField()

    class Meta:
        model = GracePeriod
        fields: ClassVar = [
            "id",
            "user_id",
            "tenant_id",
            "status",
            "source",
            "source_details",
            "start_date",
            "end_date",
            "duration_days",
            "original_end_date",
            "extension_history",
            "notifications_sent",
            "converted_at",
            "selected_plan_id",
            "subscription_id",
            "metadata",
            "days_remaining",
            "hours_remaining",
            "progress_percentage",
            "next_notification_due",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields

    def _now(self) -> Any:
        return self.context.get("now") or system_clock.now()

    def get_days_remaining(self, obj: GracePeriod) -> int:
        return obj.days_remaining(self._now())

    def get_hours_remaining(self, obj: GracePeriod) -> int:
        return obj.hours_remaining(self._now())

    def get_progress_percentage(self, obj: GracePeriod) -> float:
        return obj.progress_percentage(self._now())

    def get_next_notification_due(self, obj: GracePeriod) -> str | None:
        if obj.status != GracePeriodStatus.ACTIVE:
            return None
        due = obj.get_next_notification_due(self._now())
        return str(due) if due else None


class SubscriptionSerializer(serializers.ModelSerializer):
    tenant_id = serializers.UUIDField(read_only=True)
    plan_id = serializers.UUIDField(read_only=True)
    grace_period_id = serializers.UUIDField(read_only=True, allow_null=True)
    promo_code_id = serializers.UUIDField(read_only=True, allow_null=True)

    class Meta:
        model = Subscription
        fields: ClassVar = [
            "id",
            "tenant_id",
            "plan_id",
            "status",
            "billing_cycle",
            "base_price",
            "discount_amount",
            "final_price",
            "currency",
            "grace_period_id",
            "promo_code_id",
            "promo_code_value",
            "current_period_start",
            "current_period_end",
            "cancelled_at",
            "cancellation_reason",
            "meta",
            "created_at",
        ]
        read_only_fields = fields


# ===============================================================================
# INPUT SERIALIZERS 📥
# ===============================================================================


class CreateGracePeriodSerializer(serializers.Serializer):
    user_id = serializers.CharField(max_length=128)
    tenant_id = serializers.UUIDField()
    source = serializers.ChoiceField(choices=GracePeriodSource.choices)
    duration_days = serializers.IntegerField(
        required=False, allow_null=True, min_value=MIN_GRACE_DURATION_DAYS, max_value=MAX_GRACE_DURATION_DAYS
    )
    source_details = serializers.DictField(required=False, default=dict)
    metadata = serializers.DictField(required=False, default=dict)


class ExtendGracePeriodSerializer(serializers.Serializer):
    additional_days = serializers.IntegerField(min_value=MIN_EXTENSION_DAYS, max_value=MAX_EXTENSION_DAYS)
    reason = serializers.CharField(required=False, allow_blank=True, max_length=MAX_REASON_LENGTH, default="")


class CancelGracePeriodSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, max_length=MAX_REASON_LENGTH, default="")


class ConvertGracePeriodSerializer(serializers.Serializer):
    plan_id = serializers.UUIDField()
    promo_code_id = serializers.UUIDField(required=False, allow_null=True)


class GracePeriodFilterSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=GracePeriodStatus.choices, required=False)
    source = serializers.ChoiceField(choices=GracePeriodSource.choices, required=False)
    user_id = serializers.CharField(required=False)
    tenant_id = serializers.UUIDField(required=False)
    expiring_in_days = serializers.IntegerField(required=False, min_value=0)
    is_overdue = serializers.BooleanField(required=False, allow_null=True, default=None)
    limit = serializers.IntegerField(required=False, min_value=1, default=50)
    offset = serializers.IntegerField(required=False, min_value=0, default=0)
