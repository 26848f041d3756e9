# ===============================================================================
# PROMO CODE API SERIALIZERS 🎟️
# ===============================================================================

from typing import ClassVar

from rest_framework import serializers

from apps.promotions.models import PROMO_CODE_MAX_LENGTH, DiscountType, PromoCode, PromoCodeUsage

MONEY = {"max_digits": 12, "decimal_places": 2}


class PromoCodeSerializer(serializers.ModelSerializer):
    tenant_id = serializers.UUIDField(read_only=True, allow_null=True)
    is_exhausted = serializers.BooleanField(read_only=True)

    class Meta:
        model = PromoCode
        fields: ClassVar = [
            "id",
            "code",
            "name",
            "description",
            "discount_type",
            "discount_value",
            "is_active",
            "deactivation_reason",
            "valid_from",
            "valid_until",
            "max_uses",
            "current_uses",
            "max_uses_per_user",
            "is_exhausted",
            "applicable_plans",
            "minimum_amount",
            "new_users_only",
            "tenant_id",
            "created_by",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class PromoCodeUsageSerializer(serializers.ModelSerializer):
    promo_code_id = serializers.UUIDField(read_only=True)
    tenant_id = serializers.UUIDField(read_only=True)
    subscription_id = serializers.UUIDField(read_only=True, allow_null=True)

    class Meta:
        model = PromoCodeUsage
        fields: ClassVar = [
            "id",
            "promo_code_id",
            "user_id",
            "tenant_id",
            "subscription_id",
            "discount_applied",
            "original_amount",
            "final_amount",
            "used_at",
        ]
        read_only_fields = fields


# ===============================================================================
# ADMIN INPUT 🛠️
# ===============================================================================


class PromoCodeWriteSerializer(serializers.Serializer):
    """Create payload; used with ``partial=True`` for updates."""

    code = serializers.CharField(max_length=PROMO_CODE_MAX_LENGTH)
    name = serializers.CharField(max_length=200)
    description = serializers.CharField(required=False, allow_blank=True)
    discount_type = serializers.ChoiceField(choices=DiscountType.choices)
    discount_value = serializers.DecimalField(**MONEY)
    valid_from = serializers.DateTimeField(required=False)
    valid_until = serializers.DateTimeField(required=False, allow_null=True)
    max_uses = serializers.IntegerField(required=False, allow_null=True, min_value=1)
    max_uses_per_user = serializers.IntegerField(required=False, allow_null=True, min_value=1)
    applicable_plans = serializers.ListField(child=serializers.CharField(), required=False, allow_null=True)
    minimum_amount = serializers.DecimalField(required=False, allow_null=True, **MONEY)
    new_users_only = serializers.BooleanField(required=False)
    tenant_id = serializers.UUIDField(required=False, allow_null=True)
    is_active = serializers.BooleanField(required=False)


class GeneratePromoCodesSerializer(serializers.Serializer):
    count = serializers.IntegerField(min_value=1, max_value=500)
    prefix = serializers.CharField(required=False, allow_blank=True, max_length=20, default="")
    name = serializers.CharField(max_length=200)
    description = serializers.CharField(required=False, allow_blank=True)
    discount_type = serializers.ChoiceField(choices=DiscountType.choices)
    discount_value = serializers.DecimalField(**MONEY)
    valid_from = serializers.DateTimeField(required=False)
    valid_until = serializers.DateTimeField(required=False, allow_null=True)
    max_uses = serializers.IntegerField(required=False, allow_null=True, min_value=1)
    max_uses_per_user = serializers.IntegerField(required=False, allow_null=True, min_value=1)
    minimum_amount = serializers.DecimalField(required=False, allow_null=True, **MONEY)
    new_users_only = serializers.BooleanField(required=False)


class TogglePromoCodeSerializer(serializers.Serializer):
    is_active = serializers.BooleanField()


class PromoCodeFilterSerializer(serializers.Serializer):
    is_active = serializers.BooleanField(required=False, allow_null=True, default=None)
    discount_type = serializers.ChoiceField(choices=DiscountType.choices, required=False)
    tenant_id = serializers.UUIDField(required=False)
    created_by = serializers.CharField(required=False)
    search = serializers.CharField(required=False)
    limit = serializers.IntegerField(required=False, min_value=1, default=50)
    offset = serializers.IntegerField(required=False, min_value=0, default=0)


class UsageReportFilterSerializer(serializers.Serializer):
    promo_code_id = serializers.UUIDField(required=False)
    user_id = serializers.CharField(required=False)
    tenant_id = serializers.UUIDField(required=False)
    date_from = serializers.DateTimeField(required=False)
    date_to = serializers.DateTimeField(required=False)


# ===============================================================================
# CUSTOMER INPUT 🛒
# ===============================================================================


class ValidateCodeSerializer(serializers.Serializer):
    code = serializers.CharField(max_length=PROMO_CODE_MAX_LENGTH * 2)
    tenant_id = serializers.UUIDField()
    plan_id = serializers.UUIDField(required=False)
    subscription_amount = serializers.DecimalField(required=False, min_value=0, **MONEY)


class ApplyCodeSerializer(serializers.Serializer):
    code = serializers.CharField(max_length=PROMO_CODE_MAX_LENGTH * 2)
    tenant_id = serializers.UUIDField()
    subscription_id = serializers.UUIDField(required=False, allow_null=True)
    subscription_amount = serializers.DecimalField(min_value=0, **MONEY)
