# ===============================================================================
# BILLING API VIEWS 💳
# ===============================================================================

from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAdminUser
from rest_framework.request import Request
from rest_framework.response import Response

from apps.billing.services import SubscriptionService

from ..core.errors import handle_business_errors
from ..grace_periods.serializers import SubscriptionSerializer


@api_view(["POST"])
@permission_classes([IsAdminUser])
@handle_business_errors
def cancel_subscription_api(request: Request, subscription_id: str) -> Response:
    """
    POST /api/billing/subscriptions/<id>/cancel/  {"reason": "downgrade"}

    A downgrade cancellation opens a plan migration grace period for the tenant owner.
    """
    reason = request.data.get("reason") or "customer_request"
    subscription = SubscriptionService().cancel_subscription(subscription_id, reason=reason)
    return Response({"success": True, "subscription": SubscriptionSerializer(subscription).data})
