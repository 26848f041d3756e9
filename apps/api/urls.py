# ===============================================================================
# KAIROS API MAIN URLS 🚀
# ===============================================================================
#
# URL Structure:
#   /api/grace-periods/  → Trial window lifecycle, conversion and sweeps
#   /api/promo-codes/    → Promo code validation, application and administration
#   /api/billing/        → Subscription management
#

from django.urls import include, path

from .billing import urls as billing_urls
from .grace_periods import urls as grace_period_urls
from .promotions import urls as promotion_urls

app_name = "api"

urlpatterns = [
    path("grace-periods/", include((grace_period_urls, "grace_periods"))),
    path("promo-codes/", include((promotion_urls, "promotions"))),
    path("billing/", include((billing_urls, "billing"))),
]
