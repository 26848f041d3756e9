# ===============================================================================
# PROMO CODE API VIEWS 🎟️
# ===============================================================================

import logging
from dataclasses import asdict
from typing import Any

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAdminUser, IsAuthenticated
from rest_framework.request import Request
from rest_framework.response import Response

from apps.common.types import RateLimitedError
from apps.promotions.models import PromoErrorCode, UsageContext
from apps.promotions.services import PromoCodeService

from ..core.errors import error_response, handle_business_errors, invalid_input_response
from ..core.permissions import acting_user_id
from .serializers import (
    ApplyCodeSerializer,
    GeneratePromoCodesSerializer,
    PromoCodeFilterSerializer,
    PromoCodeSerializer,
    PromoCodeWriteSerializer,
    TogglePromoCodeSerializer,
    UsageReportFilterSerializer,
    ValidateCodeSerializer,
)

logger = logging.getLogger(__name__)

# Failed applications that are a state conflict rather than bad input
CONFLICT_ERROR_CODES = frozenset({PromoErrorCode.CODE_EXHAUSTED, PromoErrorCode.USER_LIMIT_EXCEEDED})


def _client_ip(request: Request) -> str | None:
    return request.META.get("REMOTE_ADDR") or None


def _money_fields(payload: dict[str, Any], *keys: str) -> dict[str, Any]:
    for key in keys:
        payload[key] = str(payload[key])
    return payload


def _rate_limited() -> Response:
    from apps.billing.config import get_promo_rate_limit_window_seconds  # noqa: PLC0415

    return error_response(
        RateLimitedError(
            "Too many promo code attempts, please try again later",
            retry_after_seconds=get_promo_rate_limit_window_seconds(),
            code=PromoErrorCode.RATE_LIMIT_EXCEEDED,
        )
    )


# ===============================================================================
# CUSTOMER OPERATIONS 🛒
# ===============================================================================


@api_view(["POST"])
@permission_classes([IsAuthenticated])
@handle_business_errors
def validate_code_api(request: Request) -> Response:
    """
    POST /api/promo-codes/validate/

    {"code": "SAVE20", "tenant_id": "...", "plan_id": "...", "subscription_amount": "100.00"}
    """
    serializer = ValidateCodeSerializer(data=request.data)
    if not serializer.is_valid():
        return invalid_input_response(serializer.errors)
    data = serializer.validated_data

    service = PromoCodeService()
    context = UsageContext(
        user_id=acting_user_id(request),
        tenant_id=str(data["tenant_id"]),
        subscription_amount=data.get("subscription_amount") or 0,
        is_new_user=service.is_new_user(data["tenant_id"], None),
    )
    if data.get("plan_id"):
        context["plan_id"] = str(data["plan_id"])

    result = service.validate_code(data["code"], context)
    if result.error_code == PromoErrorCode.RATE_LIMIT_EXCEEDED:
        return _rate_limited()
    return Response({"success": True, **_money_fields(asdict(result), "discount_amount", "final_amount")})


@api_view(["POST"])
@permission_classes([IsAuthenticated])
@handle_business_errors
def apply_code_api(request: Request) -> Response:
    """POST /api/promo-codes/apply/"""
    serializer = ApplyCodeSerializer(data=request.data)
    if not serializer.is_valid():
        return invalid_input_response(serializer.errors)
    data = serializer.validated_data

    result = PromoCodeService().apply_code(
        data["code"],
        user_id=acting_user_id(request),
        subscription_id=data.get("subscription_id"),
        tenant_id=data["tenant_id"],
        subscription_amount=data["subscription_amount"],
        ip_address=_client_ip(request),
        user_agent=request.META.get("HTTP_USER_AGENT", ""),
    )
    payload = _money_fields(asdict(result), "discount_applied", "final_amount")
    if result.success:
        return Response(payload, status=status.HTTP_201_CREATED)

    if result.error_code == PromoErrorCode.RATE_LIMIT_EXCEEDED:
        return _rate_limited()
    http_status = status.HTTP_409_CONFLICT if result.error_code in CONFLICT_ERROR_CODES else status.HTTP_400_BAD_REQUEST
    return Response({**payload, "error": result.error_message}, status=http_status)


# ===============================================================================
# ADMIN OPERATIONS 🛠️
# ===============================================================================


@api_view(["POST"])
@permission_classes([IsAdminUser])
@handle_business_errors
def revoke_usage_api(request: Request, usage_id: str) -> Response:
    """POST /api/promo-codes/usages/<id>/revoke/"""
    PromoCodeService().revoke_code(usage_id)
    logger.info(f"↩️ [API] Promo usage {usage_id} revoked by {request.user.get_username()}")
    return Response({"success": True})


@api_view(["GET", "POST"])
@permission_classes([IsAdminUser])
@handle_business_errors
def promo_codes_api(request: Request) -> Response:
    service = PromoCodeService()

    if request.method == "POST":
        serializer = PromoCodeWriteSerializer(data=request.data)
        if not serializer.is_valid():
            return invalid_input_response(serializer.errors)
        promo_code = service.create_promo_code(dict(serializer.validated_data), created_by=request.user.get_username())
        return Response(
            {"success": True, "promo_code": PromoCodeSerializer(promo_code).data},
            status=status.HTTP_201_CREATED,
        )

    filters = PromoCodeFilterSerializer(data=request.query_params.dict())
    if not filters.is_valid():
        return invalid_input_response(filters.errors)
    params = {key: value for key, value in filters.validated_data.items() if value is not None}
    limit = params.pop("limit")
    offset = params.pop("offset")

    page = service.list_promo_codes(params, limit=limit, offset=offset)
    return Response(
        {
            "success": True,
            "promo_codes": PromoCodeSerializer(page.items, many=True).data,
            "pagination": {
                "total": page.total,
                "limit": page.limit,
                "offset": page.offset,
                "has_more": page.has_more,
            },
        }
    )


@api_view(["GET", "PATCH", "DELETE"])
@permission_classes([IsAdminUser])
@handle_business_errors
def promo_code_detail_api(request: Request, promo_code_id: str) -> Response:
    service = PromoCodeService()

    if request.method == "DELETE":
        service.delete_promo_code(promo_code_id)
        return Response(status=status.HTTP_204_NO_CONTENT)

    if request.method == "PATCH":
        serializer = PromoCodeWriteSerializer(data=request.data, partial=True)
        if not serializer.is_valid():
            return invalid_input_response(serializer.errors)
        promo_code = service.update_promo_code(promo_code_id, dict(serializer.validated_data))
    else:
        promo_code = service.get_promo_code(promo_code_id)

    return Response({"success": True, "promo_code": PromoCodeSerializer(promo_code).data})


@api_view(["POST"])
@permission_classes([IsAdminUser])
@handle_business_errors
def toggle_promo_code_api(request: Request, promo_code_id: str) -> Response:
    serializer = TogglePromoCodeSerializer(data=request.data)
    if not serializer.is_valid():
        return invalid_input_response(serializer.errors)
    promo_code = PromoCodeService().toggle_promo_code(promo_code_id, serializer.validated_data["is_active"])
    return Response({"success": True, "promo_code": PromoCodeSerializer(promo_code).data})


@api_view(["POST"])
@permission_classes([IsAdminUser])
@handle_business_errors
def generate_promo_codes_api(request: Request) -> Response:
    serializer = GeneratePromoCodesSerializer(data=request.data)
    if not serializer.is_valid():
        return invalid_input_response(serializer.errors)
    defaults = dict(serializer.validated_data)
    count = defaults.pop("count")
    prefix = defaults.pop("prefix")

    promo_codes = PromoCodeService().generate_promo_codes(
        count, prefix=prefix, created_by=request.user.get_username(), **defaults
    )
    return Response(
        {"success": True, "promo_codes": PromoCodeSerializer(promo_codes, many=True).data},
        status=status.HTTP_201_CREATED,
    )


@api_view(["GET"])
@permission_classes([IsAdminUser])
@handle_business_errors
def promo_code_stats_api(request: Request, promo_code_id: str) -> Response:
    return Response({"success": True, "stats": PromoCodeService().get_promo_code_stats(promo_code_id)})


@api_view(["GET"])
@permission_classes([IsAdminUser])
@handle_business_errors
def usage_report_api(request: Request) -> Response:
    filters = UsageReportFilterSerializer(data=request.query_params.dict())
    if not filters.is_valid():
        return invalid_input_response(filters.errors)
    return Response({"success": True, "report": PromoCodeService().get_usage_report(dict(filters.validated_data))})


@api_view(["POST"])
@permission_classes([IsAdminUser])
@handle_business_errors
def reconcile_usage_api(request: Request) -> Response:
    """POST /api/promo-codes/reconcile/  {"promo_code_ids": [...]} (optional)"""
    promo_code_ids = request.data.get("promo_code_ids") or None
    return Response({"success": True, "result": PromoCodeService().reconcile_usage_counts(promo_code_ids)})
