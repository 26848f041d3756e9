# ===============================================================================
# BILLING SCHEDULE & TASK TESTS
# ===============================================================================

from io import StringIO
from unittest.mock import patch

from django.core.management import call_command
from django.test import TestCase
from django.utils import timezone
from django_q.models import Schedule

from apps.billing.tasks import BILLING_SCHEDULES, reconcile_subscriptions, register_billing_schedules
from tests.factories.billing import create_grace_period, create_plan, create_subscription, create_tenant


class RegisterSchedulesTestCase(TestCase):
    def test_registers_every_schedule(self):
        """Each billing job is stored once with its cadence"""
        names = register_billing_schedules()

        self.assertEqual(len(names), len(BILLING_SCHEDULES))
        expiry = Schedule.objects.get(name="Grace Period Expiry Sweep")
        self.assertEqual(expiry.func, "apps.grace_periods.tasks.run_expiry_sweep")
        self.assertEqual(expiry.schedule_type, Schedule.HOURLY)
        promo = Schedule.objects.get(name="Promo Code Usage Reconciliation")
        self.assertEqual(promo.schedule_type, Schedule.DAILY)

    def test_idempotent(self):
        register_billing_schedules()
        register_billing_schedules()
        self.assertEqual(Schedule.objects.count(), len(BILLING_SCHEDULES))

    def test_command(self):
        out = StringIO()
        call_command("setup_billing_schedules", stdout=out)
        self.assertIn("Registering billing schedules", out.getvalue())
        self.assertEqual(Schedule.objects.count(), len(BILLING_SCHEDULES))

    def test_command_dry_run(self):
        """--dry-run lists the jobs without writing them"""
        out = StringIO()
        call_command("setup_billing_schedules", "--dry-run", stdout=out)
        self.assertIn("Orphaned Subscription Reconciliation", out.getvalue())
        self.assertFalse(Schedule.objects.exists())


class ReconcileSubscriptionsTaskTestCase(TestCase):
    def test_reconciles_orphans(self):
        tenant = create_tenant()
        grace_period = create_grace_period(tenant, start=timezone.now())
        create_subscription(tenant, create_plan(), grace_period=grace_period)

        result = reconcile_subscriptions()

        self.assertTrue(result["success"])
        self.assertEqual(result["orphans"]["linked"], 1)

    def test_unexpected_failure_reported(self):
        with patch(
            "apps.billing.tasks.SubscriptionReconciliationService.reconcile_orphaned_subscriptions",
            side_effect=RuntimeError("db gone"),
        ):
            result = reconcile_subscriptions()
        self.assertFalse(result["success"])
        self.assertEqual(result["error"], "db gone")
