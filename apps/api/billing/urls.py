# ===============================================================================
# BILLING API URLS 💳
# ===============================================================================

from django.urls import path

from . import views

urlpatterns = [
    path("subscriptions/<uuid:subscription_id>/cancel/", views.cancel_subscription_api, name="cancel_subscription"),
]
