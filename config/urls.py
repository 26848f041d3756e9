"""
URL configuration for Kairos Platform
"""

from django.conf import settings
from django.conf.urls.static import static
from django.urls import include, path

# ===============================================================================
# MAIN URL PATTERNS
# ===============================================================================

urlpatterns = [
    # REST API (grace periods, promo codes, billing)
    path("api/", include("apps.api.urls")),
]

# ===============================================================================
# DEVELOPMENT URLS (static files)
# ===============================================================================

if settings.DEBUG:
    urlpatterns += static(settings.STATIC_URL, document_root=settings.STATIC_ROOT)
