# ===============================================================================
# NOTIFICATION TRANSPORT TESTS
# ===============================================================================

from unittest.mock import patch

from django.core import mail
from django.test import TestCase, override_settings

from apps.notifications.services import EmailNotificationTransport, get_notification_transport


class EmailNotificationTransportTestCase(TestCase):
    def setUp(self):
        self.transport = EmailNotificationTransport()
        self.payload = {
            "email": "billing@acme.test",
            "tenant_name": "Acme Corp",
            "grace_period_id": "gp-1",
            "notification_type": "reminder_3d",
            "end_date": "2026-03-15",
            "days_remaining": 3,
        }

    def test_sends_reminder(self):
        """A reminder goes to the billing address with the days left in the subject"""
        self.assertTrue(self.transport.send("user-1", "reminder_3d", self.payload))

        self.assertEqual(len(mail.outbox), 1)
        message = mail.outbox[0]
        self.assertEqual(message.to, ["billing@acme.test"])
        self.assertEqual(message.subject, "Only 3 days left in your trial")
        self.assertIn("2026-03-15", message.body)

    def test_markup_stripped_from_context(self):
        payload = {**self.payload, "tenant_name": "<b>Acme</b>"}
        self.transport.send("user-1", "expired", payload)
        self.assertIn("Hello Acme,", mail.outbox[0].body)

    def test_missing_email(self):
        """Without a billing address the send is reported as failed"""
        self.assertFalse(self.transport.send("user-1", "reminder_7d", {**self.payload, "email": ""}))
        self.assertEqual(mail.outbox, [])

    def test_unknown_type(self):
        self.assertFalse(self.transport.send("user-1", "reminder_30d", self.payload))

    def test_smtp_failure(self):
        with patch("apps.notifications.services.send_mail", side_effect=OSError("connection refused")):
            self.assertFalse(self.transport.send("user-1", "reminder_1d", self.payload))


class TransportFactoryTestCase(TestCase):
    def test_default_transport(self):
        self.assertIsInstance(get_notification_transport(), EmailNotificationTransport)

    @override_settings(GRACE_NOTIFICATION_TRANSPORT="unittest.mock.MagicMock")
    def test_configured_transport(self):
        """The transport class is loaded from settings"""
        transport = get_notification_transport()
        self.assertNotIsInstance(transport, EmailNotificationTransport)
        self.assertTrue(hasattr(transport, "send"))
