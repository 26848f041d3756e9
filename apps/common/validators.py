"""
Input validation and security event logging for Kairos Platform.
"""

from __future__ import annotations

import logging
from typing import Any

from apps.common.types import ValidationError

logger = logging.getLogger(__name__)

# ===============================================================================
# INPUT LIMITS
# ===============================================================================

MIN_GRACE_DURATION_DAYS = 1
MAX_GRACE_DURATION_DAYS = 365
MIN_EXTENSION_DAYS = 1
MAX_EXTENSION_DAYS = 90
MAX_REASON_LENGTH = 500


def validate_int_range(value: Any, field: str, minimum: int, maximum: int) -> int:
    """Coerce value to int and check the inclusive range."""
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer", field=field)
    try:
        number = int(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"{field} must be an integer", field=field) from e
    if number != value and not isinstance(value, str):
        raise ValidationError(f"{field} must be a whole number", field=field)
    if not minimum <= number <= maximum:
        raise ValidationError(f"{field} must be between {minimum} and {maximum}", field=field)
    return number


def validate_duration_days(value: Any) -> int:
    return validate_int_range(value, "duration_days", MIN_GRACE_DURATION_DAYS, MAX_GRACE_DURATION_DAYS)


def validate_additional_days(value: Any) -> int:
    return validate_int_range(value, "additional_days", MIN_EXTENSION_DAYS, MAX_EXTENSION_DAYS)


def validate_reason(reason: str | None) -> str:
    """Reasons are optional free text capped at MAX_REASON_LENGTH characters."""
    if reason is None:
        return ""
    if len(reason) > MAX_REASON_LENGTH:
        raise ValidationError(f"reason must be at most {MAX_REASON_LENGTH} characters", field="reason")
    return reason.strip()


# ===============================================================================
# SECURITY EVENT LOGGING
# ===============================================================================


def log_security_event(event_type: str, details: dict[str, Any], request_ip: str | None = None) -> None:
    """
    Log security events for monitoring and forensics
    """
    try:
        logger.warning(f"🚨 [Security] {event_type}: {details} from IP: {request_ip}")
    except Exception as e:
        logger.error(f"Failed to log security event: {e}")
