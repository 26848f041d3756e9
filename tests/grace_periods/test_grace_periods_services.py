# ===============================================================================
# GRACE PERIOD SERVICE TESTS
# ===============================================================================

import uuid
from datetime import timedelta

from django.test import TestCase, override_settings

from apps.common.clock import FrozenClock
from apps.common.types import ConflictError, InvalidStateError, NotFoundError, ValidationError
from apps.grace_periods.models import GracePeriod, GracePeriodSource, GracePeriodStatus
from apps.grace_periods.services import GracePeriodService
from tests.factories.billing import T0, create_grace_period, create_plan, create_subscription, create_tenant


class CreateGracePeriodTestCase(TestCase):
    def setUp(self):
        self.clock = FrozenClock(T0)
        self.service = GracePeriodService(clock=self.clock)
        self.tenant = create_tenant()

    def test_create_fourteen_day_period(self):
        """A new registration opens a 14-day window starting now"""
        grace_period = self.service.create_grace_period(
            user_id="user-1", tenant_id=self.tenant.id, source="new_registration", duration_days=14
        )

        self.assertEqual(grace_period.status, GracePeriodStatus.ACTIVE)
        self.assertEqual(grace_period.start_date, T0)
        self.assertEqual(grace_period.end_date, T0 + timedelta(days=14))
        self.assertEqual(grace_period.days_remaining(self.clock.now()), 14)
        self.assertFalse(grace_period.is_expired(self.clock.now()))
        self.assertEqual(grace_period.notifications_sent, [])
        self.assertEqual(grace_period.extension_history, [])

    def test_default_durations_by_source(self):
        """Registrations default to 14 days, promo-code windows to 30"""
        registration = self.service.create_grace_period(
            user_id="user-1", tenant_id=self.tenant.id, source=GracePeriodSource.NEW_REGISTRATION
        )
        promo = self.service.create_grace_period(
            user_id="user-2", tenant_id=self.tenant.id, source=GracePeriodSource.PROMO_CODE
        )
        self.assertEqual(registration.duration_days, 14)
        self.assertEqual(promo.duration_days, 30)

    @override_settings(GRACE_PERIOD_DEFAULT_DURATION_DAYS=21)
    def test_default_duration_from_settings(self):
        """The default trial length is read from settings at call time"""
        grace_period = self.service.create_grace_period(
            user_id="user-1", tenant_id=self.tenant.id, source=GracePeriodSource.ADMIN_GRANTED
        )
        self.assertEqual(grace_period.duration_days, 21)

    def test_duplicate_active_period_conflicts(self):
        """A user can hold only one active grace period"""
        self.service.create_grace_period(user_id="user-1", tenant_id=self.tenant.id, source="new_registration")
        with self.assertRaises(ConflictError):
            self.service.create_grace_period(user_id="user-1", tenant_id=self.tenant.id, source="admin_granted")
        self.assertEqual(GracePeriod.objects.filter(user_id="user-1").count(), 1)

    def test_new_period_after_previous_expired(self):
        """Once the old period is terminal the user may get another"""
        old = self.service.create_grace_period(user_id="user-1", tenant_id=self.tenant.id, source="new_registration")
        self.service.expire_grace_period(old.id)
        fresh = self.service.create_grace_period(user_id="user-1", tenant_id=self.tenant.id, source="admin_granted")
        self.assertNotEqual(fresh.id, old.id)

    def test_duration_out_of_range(self):
        """Durations outside 1..365 are rejected before anything is written"""
        for duration in (0, 366, -1):
            with self.subTest(duration=duration), self.assertRaises(ValidationError):
                self.service.create_grace_period(
                    user_id="user-1", tenant_id=self.tenant.id, source="new_registration", duration_days=duration
                )
        self.assertFalse(GracePeriod.objects.exists())

    def test_duration_boundaries_accepted(self):
        """1 and 365 days are both valid"""
        short = self.service.create_grace_period(
            user_id="user-1", tenant_id=self.tenant.id, source="new_registration", duration_days=1
        )
        long = self.service.create_grace_period(
            user_id="user-2", tenant_id=self.tenant.id, source="new_registration", duration_days=365
        )
        self.assertEqual(short.end_date, T0 + timedelta(days=1))
        self.assertEqual(long.end_date, T0 + timedelta(days=365))

    def test_unknown_source_rejected(self):
        """source must be one of the known values"""
        with self.assertRaises(ValidationError) as ctx:
            self.service.create_grace_period(user_id="user-1", tenant_id=self.tenant.id, source="referral")
        self.assertEqual(ctx.exception.field, "source")

    def test_missing_user_rejected(self):
        with self.assertRaises(ValidationError):
            self.service.create_grace_period(user_id="", tenant_id=self.tenant.id, source="new_registration")

    def test_unknown_tenant(self):
        """A tenant that does not exist is reported as not found"""
        with self.assertRaises(NotFoundError):
            self.service.create_grace_period(user_id="user-1", tenant_id=uuid.uuid4(), source="new_registration")


class ExtendAndCancelTestCase(TestCase):
    def setUp(self):
        self.clock = FrozenClock(T0)
        self.service = GracePeriodService(clock=self.clock)
        self.tenant = create_tenant()
        self.grace_period = self.service.create_grace_period(
            user_id="user-1", tenant_id=self.tenant.id, source="new_registration", duration_days=14
        )

    def test_extend_by_seven_days(self):
        """Extending a 14-day window by 7 gives 21 days and one history record"""
        extended = self.service.extend_grace_period(
            self.grace_period.id, additional_days=7, extended_by="admin1", reason="sales request"
        )

        self.assertEqual(extended.duration_days, 21)
        self.assertEqual(extended.end_date, T0 + timedelta(days=21))
        self.assertEqual(extended.original_end_date, T0 + timedelta(days=14))
        self.assertEqual(len(extended.extension_history), 1)
        self.assertEqual(extended.extension_history[0]["extended_by"], "admin1")

    def test_extend_bounds(self):
        """Extensions must be 1..90 days"""
        for days in (0, 91):
            with self.subTest(days=days), self.assertRaises(ValidationError):
                self.service.extend_grace_period(self.grace_period.id, additional_days=days, extended_by="admin1")

    def test_extend_requires_actor(self):
        with self.assertRaises(ValidationError):
            self.service.extend_grace_period(self.grace_period.id, additional_days=7, extended_by="")

    def test_reason_too_long(self):
        """Reasons over 500 characters are rejected"""
        with self.assertRaises(ValidationError):
            self.service.extend_grace_period(
                self.grace_period.id, additional_days=7, extended_by="admin1", reason="x" * 501
            )

    def test_extend_unknown_period(self):
        with self.assertRaises(NotFoundError):
            self.service.extend_grace_period(uuid.uuid4(), additional_days=7, extended_by="admin1")

    def test_extend_cancelled_period(self):
        """A cancelled window cannot be extended"""
        self.service.cancel_grace_period(self.grace_period.id, reason="fraud")
        with self.assertRaises(InvalidStateError):
            self.service.extend_grace_period(self.grace_period.id, additional_days=7, extended_by="admin1")

    def test_cancel_records_reason(self):
        cancelled = self.service.cancel_grace_period(self.grace_period.id, reason="  duplicate account  ")
        self.assertEqual(cancelled.status, GracePeriodStatus.CANCELLED)
        self.assertEqual(cancelled.metadata["cancellation_reason"], "duplicate account")

    def test_get_unknown_or_malformed_id(self):
        """Malformed identifiers surface as not found rather than a crash"""
        for grace_period_id in (uuid.uuid4(), "not-a-uuid"):
            with self.subTest(grace_period_id=grace_period_id), self.assertRaises(NotFoundError):
                self.service.get_grace_period(grace_period_id)

    def test_expire_is_idempotent(self):
        self.assertTrue(self.service.expire_grace_period(self.grace_period.id))
        self.assertFalse(self.service.expire_grace_period(self.grace_period.id))


class ListAndStatsTestCase(TestCase):
    def setUp(self):
        self.clock = FrozenClock(T0)
        self.service = GracePeriodService(clock=self.clock)
        self.tenant = create_tenant()
        self.other_tenant = create_tenant(name="Globex")

        # Ends in 2 days, 10 days and already overdue
        self.soon = create_grace_period(self.tenant, user_id="u-soon", start=T0 - timedelta(days=12))
        self.later = create_grace_period(self.tenant, user_id="u-later", start=T0 - timedelta(days=4))
        self.overdue = create_grace_period(self.other_tenant, user_id="u-overdue", start=T0 - timedelta(days=20))
        self.expired = create_grace_period(
            self.other_tenant, user_id="u-expired", start=T0 - timedelta(days=30), status=GracePeriodStatus.EXPIRED
        )

    def test_filter_by_status_and_tenant(self):
        page = self.service.list_grace_periods({"status": "active"})
        self.assertEqual(page.total, 3)

        page = self.service.list_grace_periods({"tenant_id": str(self.other_tenant.id)})
        self.assertEqual({gp.user_id for gp in page.items}, {"u-overdue", "u-expired"})

    def test_expiring_in_days(self):
        """expiring_in_days includes active windows ending within N days (overdue too)"""
        page = self.service.list_grace_periods({"expiring_in_days": 3})
        self.assertEqual({gp.user_id for gp in page.items}, {"u-soon", "u-overdue"})

    def test_is_overdue(self):
        overdue = self.service.list_grace_periods({"is_overdue": True})
        self.assertEqual([gp.user_id for gp in overdue.items], ["u-overdue"])

        not_overdue = self.service.list_grace_periods({"is_overdue": False})
        self.assertEqual(not_overdue.total, 3)

    def test_pagination(self):
        first = self.service.list_grace_periods(limit=3, offset=0)
        second = self.service.list_grace_periods(limit=3, offset=3)
        self.assertEqual(first.total, 4)
        self.assertEqual(len(first.items), 3)
        self.assertTrue(first.has_more)
        self.assertEqual(len(second.items), 1)
        self.assertFalse(second.has_more)

    def test_stats(self):
        """Stats count statuses, sources, expiry buckets and extensions"""
        self.service.extend_grace_period(self.later.id, additional_days=4, extended_by="admin1")

        stats = self.service.get_grace_period_stats()

        self.assertEqual(stats["total"], 4)
        self.assertEqual(stats["by_status"]["active"], 3)
        self.assertEqual(stats["by_status"]["expired"], 1)
        self.assertEqual(stats["by_status"]["converted"], 0)
        self.assertEqual(stats["by_source"]["new_registration"], 4)
        self.assertEqual(stats["conversion_rate"], 0)
        self.assertEqual(stats["expiring_in_3_days"], 1)
        self.assertEqual(stats["overdue"], 1)
        self.assertEqual(stats["total_extensions"], 1)
        self.assertEqual(stats["average_extension_days"], 4.0)

    def test_stats_by_tenant(self):
        stats = self.service.get_grace_period_stats({"tenant_id": self.tenant.id})
        self.assertEqual(stats["total"], 2)


class CancelledSubscriptionGracePeriodTestCase(TestCase):
    def setUp(self):
        self.service = GracePeriodService(clock=FrozenClock(T0))
        self.tenant = create_tenant(owner_user_id="owner-1")
        self.plan = create_plan()
        self.subscription = create_subscription(self.tenant, self.plan)

    def test_opens_plan_migration_window(self):
        """A downgrade opens a plan_migration window for the tenant owner"""
        grace_period = self.service.create_for_cancelled_subscription(self.subscription)

        self.assertIsNotNone(grace_period)
        self.assertEqual(grace_period.user_id, "owner-1")
        self.assertEqual(grace_period.source, GracePeriodSource.PLAN_MIGRATION)
        self.assertEqual(grace_period.source_details["previous_subscription_id"], str(self.subscription.id))

    def test_skips_owner_already_in_grace(self):
        create_grace_period(self.tenant, user_id="owner-1")
        self.assertIsNone(self.service.create_for_cancelled_subscription(self.subscription))
