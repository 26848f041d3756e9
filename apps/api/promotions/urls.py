# ===============================================================================
# PROMO CODE API URLS 🎟️
# ===============================================================================

from django.urls import path

from . import views

urlpatterns = [
    # Customer operations
    path("validate/", views.validate_code_api, name="validate"),
    path("apply/", views.apply_code_api, name="apply"),
    # Administration
    path("", views.promo_codes_api, name="list"),
    path("generate/", views.generate_promo_codes_api, name="generate"),
    path("usage-report/", views.usage_report_api, name="usage_report"),
    path("reconcile/", views.reconcile_usage_api, name="reconcile"),
    path("usages/<uuid:usage_id>/revoke/", views.revoke_usage_api, name="revoke"),
    path("<uuid:promo_code_id>/", views.promo_code_detail_api, name="detail"),
    path("<uuid:promo_code_id>/toggle/", views.toggle_promo_code_api, name="toggle"),
    path("<uuid:promo_code_id>/stats/", views.promo_code_stats_api, name="stats"),
]
