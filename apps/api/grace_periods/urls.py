# ===============================================================================
# GRACE PERIOD API URLS ⏳
# ===============================================================================

from django.urls import path

from . import views

urlpatterns = [
    path("", views.grace_periods_api, name="list"),
    path("stats/", views.grace_period_stats_api, name="stats"),
    path("active/", views.active_grace_period_api, name="active"),
    path("sweeps/expiry/", views.run_expiry_sweep_api, name="expiry_sweep"),
    path("sweeps/reminders/", views.run_reminder_sweep_api, name="reminder_sweep"),
    path("<uuid:grace_period_id>/", views.grace_period_detail_api, name="detail"),
    path("<uuid:grace_period_id>/extend/", views.extend_grace_period_api, name="extend"),
    path("<uuid:grace_period_id>/cancel/", views.cancel_grace_period_api, name="cancel"),
    path("<uuid:grace_period_id>/convert/", views.convert_grace_period_api, name="convert"),
]
