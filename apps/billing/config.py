"""
Centralized billing lifecycle configuration for Kairos Platform.

Trial lengths, promo throttling and store timeouts are read from Django
settings at call time so ``override_settings`` in tests takes effect.
"""

import logging

from django.conf import settings

logger = logging.getLogger(__name__)

# ===============================================================================
# HELPER: SAFE VALUE PARSING
# ===============================================================================


def _get_positive_int(setting_name: str, default: int) -> int:
    """Get a positive integer from settings with validation."""
    value = getattr(settings, setting_name, default)
    try:
        result = int(value)
    except (TypeError, ValueError):
        logger.warning(f"⚠️ [Config] Invalid {setting_name}={value!r}, using {default}")
        result = default
    return max(1, result)  # Ensure at least 1


# ===============================================================================
# GRACE PERIODS
# ===============================================================================


def get_default_grace_duration_days() -> int:
    """Trial length for registrations, downgrades and admin grants."""
    return _get_positive_int("GRACE_PERIOD_DEFAULT_DURATION_DAYS", 14)


def get_promo_grace_duration_days() -> int:
    """Trial length for grace periods opened by a promo code."""
    return _get_positive_int("GRACE_PERIOD_PROMO_DURATION_DAYS", 30)


def get_notification_transport_path() -> str:
    return getattr(
        settings,
        "GRACE_NOTIFICATION_TRANSPORT",
        "apps.notifications.services.EmailNotificationTransport",
    )


# ===============================================================================
# PROMO CODES
# ===============================================================================


def get_promo_max_attempts_per_window() -> int:
    return _get_positive_int("PROMO_CODE_MAX_ATTEMPTS_PER_HOUR", 10)


def get_promo_rate_limit_window_seconds() -> int:
    return _get_positive_int("PROMO_CODE_RATE_LIMIT_WINDOW_SECONDS", 3600)


# ===============================================================================
# STORE
# ===============================================================================


def get_entity_store_timeout_seconds() -> int:
    return _get_positive_int("ENTITY_STORE_TIMEOUT_SECONDS", 5)


DEFAULT_CURRENCY_CODE = getattr(settings, "DEFAULT_CURRENCY", "EUR") or "EUR"

# Days per billing cycle used for subscription period boundaries
BILLING_CYCLE_DAYS = {
    "monthly": 30,
    "yearly": 365,
}
