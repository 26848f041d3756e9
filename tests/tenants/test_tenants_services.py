# ===============================================================================
# TENANT SERVICE TESTS
# ===============================================================================

import uuid

from django.test import TestCase

from apps.common.types import NotFoundError, ValidationError
from apps.tenants.models import Tenant
from apps.tenants.services import TenantService
from tests.factories.billing import create_plan, create_subscription, create_tenant


class TenantServiceTestCase(TestCase):
    def setUp(self):
        self.tenant = create_tenant()
        self.plan = create_plan()

    def test_new_tenant_in_trial(self):
        self.assertEqual(self.tenant.billing_status, "trial")
        self.assertIsNone(self.tenant.active_plan_id)

    def test_set_active_plan(self):
        TenantService.set_active_plan(self.tenant.id, self.plan.id, "active")
        tenant = Tenant.objects.get(pk=self.tenant.pk)
        self.assertEqual(tenant.active_plan_id, self.plan.id)
        self.assertEqual(tenant.billing_status, "active")

    def test_clear_plan(self):
        TenantService.set_active_plan(self.tenant.id, self.plan.id, "active")
        TenantService.set_active_plan(self.tenant.id, None, "cancelled")
        tenant = Tenant.objects.get(pk=self.tenant.pk)
        self.assertIsNone(tenant.active_plan_id)
        self.assertEqual(tenant.billing_status, "cancelled")

    def test_unknown_status(self):
        with self.assertRaises(ValidationError):
            TenantService.set_active_plan(self.tenant.id, self.plan.id, "gold")

    def test_unknown_tenant(self):
        """Both lookups and updates report missing tenants"""
        with self.assertRaises(NotFoundError):
            TenantService.get_tenant(uuid.uuid4())
        with self.assertRaises(NotFoundError):
            TenantService.get_tenant("garbage")
        with self.assertRaises(NotFoundError):
            TenantService.set_active_plan(uuid.uuid4(), self.plan.id, "active")

    def test_clear_subscription_pointer(self):
        """An ended subscription is no longer referenced by the tenant"""
        subscription = create_subscription(self.tenant, self.plan)
        TenantService.set_active_plan(self.tenant.id, self.plan.id, "active", subscription_id=subscription.id)
        self.assertEqual(Tenant.objects.get(pk=self.tenant.pk).active_subscription_id, subscription.id)

        TenantService.set_active_plan(self.tenant.id, None, "cancelled", clear_subscription=True)

        tenant = Tenant.objects.get(pk=self.tenant.pk)
        self.assertIsNone(tenant.active_subscription_id)
        self.assertIsNone(tenant.active_plan_id)
