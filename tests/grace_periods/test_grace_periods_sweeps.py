# ===============================================================================
# GRACE PERIOD SWEEP TESTS
# ===============================================================================

from datetime import timedelta
from unittest.mock import MagicMock, patch

from django.test import TestCase
from django.utils import timezone

from apps.common.clock import FrozenClock
from apps.grace_periods.models import GracePeriodStatus, NotificationType
from apps.grace_periods.sweeps import GraceExpiryService, GraceReminderService
from apps.grace_periods.tasks import run_expiry_sweep, run_reminder_sweep
from tests.factories.billing import T0, create_grace_period, create_plan, create_tenant


def make_transport(delivered: bool = True) -> MagicMock:
    transport = MagicMock()
    transport.send.return_value = delivered
    return transport


class ReminderSweepTestCase(TestCase):
    def setUp(self):
        self.clock = FrozenClock(T0)
        self.tenant = create_tenant()
        self.transport = make_transport()
        self.sweep = GraceReminderService(clock=self.clock, transport=self.transport)

    def test_sends_due_reminder_once(self):
        """A period with 5 days left gets its 7-day reminder exactly once"""
        grace_period = create_grace_period(self.tenant, start=T0 - timedelta(days=9))

        first = self.sweep.run_reminder_sweep()
        second = self.sweep.run_reminder_sweep()

        self.assertEqual(first["sent"], 1)
        self.assertEqual(first["processed_ids"], [str(grace_period.id)])
        self.assertEqual(second["sent"], 0)
        self.transport.send.assert_called_once()
        user_id, notification_type, payload = self.transport.send.call_args.args
        self.assertEqual(user_id, "user-1")
        self.assertEqual(notification_type, "reminder_7d")
        self.assertEqual(payload["email"], "billing@acme.test")
        self.assertEqual(payload["days_remaining"], 5)

        grace_period.refresh_from_db()
        self.assertEqual([n["type"] for n in grace_period.notifications_sent], ["reminder_7d"])

    def test_each_window_fires_in_turn(self):
        """Moving the clock through the windows sends 7d, 3d and 1d reminders in order"""
        grace_period = create_grace_period(self.tenant, start=T0, duration_days=14)

        for days_elapsed in (8, 12, 13):
            self.clock.set(T0 + timedelta(days=days_elapsed))
            self.sweep.run_reminder_sweep()

        grace_period.refresh_from_db()
        self.assertEqual(
            [n["type"] for n in grace_period.notifications_sent],
            ["reminder_7d", "reminder_3d", "reminder_1d"],
        )

    def test_nothing_due_far_from_end(self):
        create_grace_period(self.tenant, start=T0, duration_days=30)
        result = self.sweep.run_reminder_sweep()
        self.assertEqual(result["processed"], 0)
        self.transport.send.assert_not_called()

    def test_transport_failure_not_recorded(self):
        """A refused send is counted as failed and retried on the next sweep"""
        grace_period = create_grace_period(self.tenant, start=T0 - timedelta(days=12))
        self.transport.send.return_value = False

        result = self.sweep.run_reminder_sweep()

        self.assertEqual(result["failed"], 1)
        grace_period.refresh_from_db()
        self.assertEqual(grace_period.notifications_sent, [])

        self.transport.send.return_value = True
        retry = self.sweep.run_reminder_sweep()
        self.assertEqual(retry["sent"], 1)

    def test_one_bad_item_does_not_stop_the_sweep(self):
        """Per-item exceptions land in errors and the rest still get reminders"""
        create_grace_period(self.tenant, user_id="user-a", start=T0 - timedelta(days=9))
        create_grace_period(self.tenant, user_id="user-b", start=T0 - timedelta(days=9))
        self.transport.send.side_effect = [RuntimeError("smtp down"), True]

        result = self.sweep.run_reminder_sweep()

        self.assertEqual(result["processed"], 2)
        self.assertEqual(result["sent"], 1)
        self.assertEqual(result["failed"], 1)
        self.assertEqual(len(result["errors"]), 1)
        self.assertIn("smtp down", result["errors"][0])


class ExpirySweepTestCase(TestCase):
    def setUp(self):
        self.clock = FrozenClock(T0)
        self.tenant = create_tenant()
        self.transport = make_transport()
        self.sweep = GraceExpiryService(clock=self.clock, transport=self.transport)

    def test_expired_notice_sent_exactly_once(self):
        """Two sweeps past the end date expire once and notify once"""
        grace_period = create_grace_period(self.tenant, start=T0 - timedelta(days=15), duration_days=14)

        first = self.sweep.run_expiry_sweep()
        second = self.sweep.run_expiry_sweep()

        self.assertEqual(first["processed"], 1)
        self.assertEqual(first["sent"], 1)
        self.assertEqual(second["processed"], 0)
        self.assertEqual(second["sent"], 0)
        self.transport.send.assert_called_once()

        grace_period.refresh_from_db()
        self.assertEqual(grace_period.status, GracePeriodStatus.EXPIRED)
        expired_entries = [n for n in grace_period.notifications_sent if n["type"] == NotificationType.EXPIRED]
        self.assertEqual(len(expired_entries), 1)

    def test_end_date_exactly_now_not_expired(self):
        """A window ending exactly now is still active"""
        grace_period = create_grace_period(self.tenant, start=T0 - timedelta(days=14), duration_days=14)
        self.sweep.run_expiry_sweep()
        grace_period.refresh_from_db()
        self.assertEqual(grace_period.status, GracePeriodStatus.ACTIVE)

        self.clock.advance(seconds=1)
        self.sweep.run_expiry_sweep()
        grace_period.refresh_from_db()
        self.assertEqual(grace_period.status, GracePeriodStatus.EXPIRED)

    def test_converted_and_cancelled_untouched(self):
        """Only active rows are expired"""
        plan = create_plan()
        converted = create_grace_period(self.tenant, user_id="u1", start=T0 - timedelta(days=20))
        converted.convert(plan_id=plan.id, subscription_id=None, now=T0 - timedelta(days=10))
        create_grace_period(
            self.tenant, user_id="u2", start=T0 - timedelta(days=20), status=GracePeriodStatus.CANCELLED
        )

        result = self.sweep.run_expiry_sweep()

        self.assertEqual(result["processed"], 0)
        converted.refresh_from_db()
        self.assertEqual(converted.status, GracePeriodStatus.CONVERTED)
        self.transport.send.assert_not_called()

    def test_failed_notice_retried_next_run(self):
        """A refused final notice is retried while the period is recently expired"""
        grace_period = create_grace_period(self.tenant, start=T0 - timedelta(days=15), duration_days=14)
        self.transport.send.return_value = False

        first = self.sweep.run_expiry_sweep()
        self.assertEqual(first["processed"], 1)
        self.assertEqual(first["failed"], 1)

        self.transport.send.return_value = True
        self.clock.advance(hours=1)
        second = self.sweep.run_expiry_sweep()

        self.assertEqual(second["processed"], 0)
        self.assertEqual(second["sent"], 1)
        grace_period.refresh_from_db()
        self.assertTrue(grace_period.has_notification(NotificationType.EXPIRED))

    def test_notice_retry_window_closes(self):
        """After the retry window a missing final notice is left alone"""
        create_grace_period(
            self.tenant, start=T0 - timedelta(days=30), duration_days=14, status=GracePeriodStatus.EXPIRED
        )
        result = self.sweep.run_expiry_sweep()
        self.assertEqual(result["sent"], 0)
        self.transport.send.assert_not_called()


class SweepTaskTestCase(TestCase):
    def test_tasks_return_sweep_results(self):
        """The scheduled task wrappers run the sweeps with the configured transport"""
        tenant = create_tenant()
        create_grace_period(tenant, start=timezone.now() - timedelta(days=30), duration_days=14)
        transport = make_transport()

        with patch("apps.grace_periods.sweeps.get_notification_transport", return_value=transport):
            expiry = run_expiry_sweep()
            reminders = run_reminder_sweep()

        self.assertEqual(expiry["processed"], 1)
        self.assertEqual(reminders["processed"], 0)
