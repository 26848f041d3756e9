"""
Notification Services for Kairos Platform
Delivery transports for grace period reminders.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

from django.conf import settings
from django.core.mail import send_mail
from django.utils.html import strip_tags
from django.utils.module_loading import import_string

from apps.billing.config import get_notification_transport_path

logger = logging.getLogger(__name__)

MAX_CONTEXT_VALUE_LENGTH = 1000


class NotificationTransport(Protocol):
    """Anything that can deliver a notification; returns False on delivery failure."""

    def send(self, user_id: str, notification_type: str, payload: dict[str, Any]) -> bool: ...


# ===============================================================================
# MESSAGE TEMPLATES
# ===============================================================================

SUBJECTS: dict[str, str] = {
    "reminder_7d": "Your trial ends in {days_remaining} days",
    "reminder_3d": "Only {days_remaining} days left in your trial",
    "reminder_1d": "Your trial ends tomorrow",
    "expired": "Your trial has ended",
}

BODIES: dict[str, str] = {
    "reminder_7d": (
        "Hello {tenant_name},\n\nYour trial ends on {end_date}. "
        "Choose a plan to keep your workspace running without interruption."
    ),
    "reminder_3d": (
        "Hello {tenant_name},\n\nYour trial ends on {end_date}, {days_remaining} days from now. "
        "Pick a plan today to avoid losing access."
    ),
    "reminder_1d": (
        "Hello {tenant_name},\n\nYour trial ends on {end_date}. "
        "This is the last reminder before access is paused."
    ),
    "expired": (
        "Hello {tenant_name},\n\nYour trial ended on {end_date}. "
        "Choose a plan to restore access to your workspace."
    ),
}


def sanitize_context(payload: dict[str, Any]) -> dict[str, str]:
    """🔒 Strip markup and cap value length before interpolating into e-mail text"""
    cleaned: dict[str, str] = {}
    for key, value in payload.items():
        text = strip_tags(str(value))
        cleaned[key] = text[:MAX_CONTEXT_VALUE_LENGTH]
    return cleaned


# ===============================================================================
# TRANSPORTS
# ===============================================================================


class EmailNotificationTransport:
    """Sends reminders to the tenant's billing e-mail through Django's mail backend."""

    def send(self, user_id: str, notification_type: str, payload: dict[str, Any]) -> bool:
        recipient = payload.get("email")
        if not recipient:
            logger.warning(f"⚠️ [Email] No billing e-mail for user {user_id}, cannot send {notification_type}")
            return False
        if notification_type not in SUBJECTS:
            logger.error(f"🔥 [Email] Unknown notification type {notification_type}")
            return False

        context = sanitize_context(payload)
        try:
            subject = SUBJECTS[notification_type].format_map(context)
            body = BODIES[notification_type].format_map(context)
            sent = send_mail(
                subject=subject,
                message=body,
                from_email=settings.DEFAULT_FROM_EMAIL,
                recipient_list=[recipient],
                fail_silently=False,
            )
        except (KeyError, OSError) as e:
            logger.error(f"🔥 [Email] Failed to send {notification_type} to user {user_id}: {e}")
            return False

        logger.info(f"📧 [Email] Sent {notification_type} to user {user_id}")
        return sent > 0


def get_notification_transport() -> NotificationTransport:
    """Instantiate the transport configured by GRACE_NOTIFICATION_TRANSPORT."""
    transport_class = import_string(get_notification_transport_path())
    return transport_class()
