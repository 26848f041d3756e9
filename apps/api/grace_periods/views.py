# ===============================================================================
# GRACE PERIOD API VIEWS ⏳
# ===============================================================================

import logging

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAdminUser, IsAuthenticated
from rest_framework.request import Request
from rest_framework.response import Response

from apps.billing.services import ConversionService
from apps.common.types import Err, Ok
from apps.grace_periods.services import GracePeriodService
from apps.grace_periods.sweeps import GraceExpiryService, GraceReminderService

from ..core.errors import error_response, handle_business_errors, invalid_input_response
from ..core.permissions import IsStaffOrSelf, acting_user_id
from .serializers import (
    CancelGracePeriodSerializer,
    ConvertGracePeriodSerializer,
    CreateGracePeriodSerializer,
    ExtendGracePeriodSerializer,
    GracePeriodFilterSerializer,
    GracePeriodSerializer,
    SubscriptionSerializer,
)

logger = logging.getLogger(__name__)


# ===============================================================================
# COLLECTION 📋
# ===============================================================================


@api_view(["GET", "POST"])
@permission_classes([IsAdminUser])
@handle_business_errors
def grace_periods_api(request: Request) -> Response:
    """
    GET  /api/grace-periods/   → filtered, paginated list
    POST /api/grace-periods/   → open a grace period
    """
    service = GracePeriodService()

    if request.method == "POST":
        serializer = CreateGracePeriodSerializer(data=request.data)
        if not serializer.is_valid():
            return invalid_input_response(serializer.errors)
        grace_period = service.create_grace_period(**serializer.validated_data)
        return Response(
            {"success": True, "grace_period": GracePeriodSerializer(grace_period).data},
            status=status.HTTP_201_CREATED,
        )

    filters = GracePeriodFilterSerializer(data=request.query_params.dict())
    if not filters.is_valid():
        return invalid_input_response(filters.errors)
    params = {key: value for key, value in filters.validated_data.items() if value is not None}
    limit = params.pop("limit")
    offset = params.pop("offset")

    page = service.list_grace_periods(params, limit=limit, offset=offset)
    return Response(
        {
            "success": True,
            "grace_periods": GracePeriodSerializer(page.items, many=True).data,
            "pagination": {
                "total": page.total,
                "limit": page.limit,
                "offset": page.offset,
                "has_more": page.has_more,
            },
        }
    )


@api_view(["GET"])
@permission_classes([IsAdminUser])
@handle_business_errors
def grace_period_stats_api(request: Request) -> Response:
    """GET /api/grace-periods/stats/?tenant_id=..."""
    filters = {"tenant_id": request.query_params["tenant_id"]} if request.query_params.get("tenant_id") else {}
    return Response({"success": True, "stats": GracePeriodService().get_grace_period_stats(filters)})


@api_view(["GET"])
@permission_classes([IsStaffOrSelf])
@handle_business_errors
def active_grace_period_api(request: Request) -> Response:
    """
    GET /api/grace-periods/active/?user_id=...

    Non-staff callers always get their own grace period.
    """
    user_id = request.query_params.get("user_id") or acting_user_id(request)
    grace_period = GracePeriodService().get_active_grace_period(user_id)
    return Response(
        {
            "success": True,
            "grace_period": GracePeriodSerializer(grace_period).data if grace_period else None,
        }
    )


# ===============================================================================
# SINGLE GRACE PERIOD 🔍
# ===============================================================================


@api_view(["GET"])
@permission_classes([IsAdminUser])
@handle_business_errors
def grace_period_detail_api(request: Request, grace_period_id: str) -> Response:
    grace_period = GracePeriodService().get_grace_period(grace_period_id)
    return Response({"success": True, "grace_period": GracePeriodSerializer(grace_period).data})


@api_view(["POST"])
@permission_classes([IsAdminUser])
@handle_business_errors
def extend_grace_period_api(request: Request, grace_period_id: str) -> Response:
    """POST /api/grace-periods/<id>/extend/  {"additional_days": 7, "reason": "..."}"""
    serializer = ExtendGracePeriodSerializer(data=request.data)
    if not serializer.is_valid():
        return invalid_input_response(serializer.errors)

    grace_period = GracePeriodService().extend_grace_period(
        grace_period_id,
        additional_days=serializer.validated_data["additional_days"],
        extended_by=request.user.get_username() or acting_user_id(request),
        reason=serializer.validated_data["reason"],
    )
    return Response({"success": True, "grace_period": GracePeriodSerializer(grace_period).data})


@api_view(["POST"])
@permission_classes([IsAdminUser])
@handle_business_errors
def cancel_grace_period_api(request: Request, grace_period_id: str) -> Response:
    serializer = CancelGracePeriodSerializer(data=request.data)
    if not serializer.is_valid():
        return invalid_input_response(serializer.errors)

    grace_period = GracePeriodService().cancel_grace_period(grace_period_id, reason=serializer.validated_data["reason"])
    return Response({"success": True, "grace_period": GracePeriodSerializer(grace_period).data})


@api_view(["POST"])
@permission_classes([IsAuthenticated])
@handle_business_errors
def convert_grace_period_api(request: Request, grace_period_id: str) -> Response:
    """
    POST /api/grace-periods/<id>/convert/  {"plan_id": "...", "promo_code_id": "..."}

    Staff may convert any grace period; other callers only their own.
    """
    serializer = ConvertGracePeriodSerializer(data=request.data)
    if not serializer.is_valid():
        return invalid_input_response(serializer.errors)

    service = ConversionService()
    if not request.user.is_staff:
        grace_period = service.grace_periods.get_grace_period(grace_period_id)
        if grace_period.user_id != acting_user_id(request):
            return Response(
                {"success": False, "error": "You cannot convert this grace period", "error_code": "FORBIDDEN"},
                status=status.HTTP_403_FORBIDDEN,
            )

    result = service.convert_grace_period(
        grace_period_id,
        plan_id=serializer.validated_data["plan_id"],
        promo_code_id=serializer.validated_data.get("promo_code_id"),
    )
    match result:
        case Ok(subscription):
            return Response(
                {"success": True, "subscription": SubscriptionSerializer(subscription).data},
                status=status.HTTP_201_CREATED,
            )
        case Err(error):
            return error_response(error)


# ===============================================================================
# SWEEPS 🧹
# ===============================================================================


@api_view(["POST"])
@permission_classes([IsAdminUser])
@handle_business_errors
def run_expiry_sweep_api(request: Request) -> Response:
    """POST /api/grace-periods/sweeps/expiry/ runs the expiry sweep synchronously."""
    logger.info(f"🧹 [API] Expiry sweep triggered by {request.user.get_username()}")
    return Response({"success": True, "result": GraceExpiryService().run_expiry_sweep()})


@api_view(["POST"])
@permission_classes([IsAdminUser])
@handle_business_errors
def run_reminder_sweep_api(request: Request) -> Response:
    """POST /api/grace-periods/sweeps/reminders/ runs the reminder sweep synchronously."""
    logger.info(f"🧹 [API] Reminder sweep triggered by {request.user.get_username()}")
    return Response({"success": True, "result": GraceReminderService().run_reminder_sweep()})
