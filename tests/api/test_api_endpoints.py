# ===============================================================================
# REST API ENDPOINT TESTS
# ===============================================================================

import uuid
from datetime import timedelta

from django.contrib.auth import get_user_model
from django.core import mail
from django.test import TestCase
from django.urls import reverse
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APIClient

from apps.promotions.models import DeactivationReason, PromoCode
from apps.promotions.services import PromoCodeService
from tests.factories.billing import (
    create_grace_period,
    create_plan,
    create_promo_code,
    create_subscription,
    create_tenant,
)

User = get_user_model()


class ApiTestCase(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.admin = User.objects.create_user(username="admin", password="x", is_staff=True)
        self.customer = User.objects.create_user(username="customer", password="x")
        self.other = User.objects.create_user(username="other", password="x")
        self.tenant = create_tenant(owner_user_id=str(self.customer.pk))
        self.plan = create_plan(price="100.00")

    def as_admin(self):
        self.client.force_authenticate(user=self.admin)

    def as_customer(self, user=None):
        self.client.force_authenticate(user=user or self.customer)


class GracePeriodApiTestCase(ApiTestCase):
    def create_payload(self, **overrides):
        return {
            "user_id": str(self.customer.pk),
            "tenant_id": str(self.tenant.id),
            "source": "new_registration",
            "duration_days": 14,
            **overrides,
        }

    def test_requires_authentication(self):
        response = self.client.get(reverse("api:grace_periods:list"))
        self.assertIn(response.status_code, (status.HTTP_401_UNAUTHORIZED, status.HTTP_403_FORBIDDEN))

    def test_admin_only_endpoints(self):
        """Non-staff users cannot list or create grace periods"""
        self.as_customer()
        response = self.client.post(reverse("api:grace_periods:list"), self.create_payload(), format="json")
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_create_and_duplicate(self):
        """Creating returns 201 with derived fields; a second active period is a 409"""
        self.as_admin()
        url = reverse("api:grace_periods:list")

        response = self.client.post(url, self.create_payload(), format="json")

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        grace_period = response.json()["grace_period"]
        self.assertEqual(grace_period["status"], "active")
        self.assertEqual(grace_period["duration_days"], 14)
        self.assertEqual(grace_period["days_remaining"], 14)

        duplicate = self.client.post(url, self.create_payload(source="admin_granted"), format="json")
        self.assertEqual(duplicate.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(duplicate.json()["error_code"], "CONFLICT")
        self.assertFalse(duplicate.json()["success"])

    def test_invalid_duration(self):
        self.as_admin()
        response = self.client.post(
            reverse("api:grace_periods:list"), self.create_payload(duration_days=400), format="json"
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.json()["error_code"], "VALIDATION_ERROR")
        self.assertEqual(response.json()["field"], "duration_days")

    def test_list_with_filters(self):
        self.as_admin()
        create_grace_period(self.tenant, user_id="a", start=timezone.now())
        create_grace_period(self.tenant, user_id="b", start=timezone.now() - timedelta(days=30))

        response = self.client.get(reverse("api:grace_periods:list"), {"is_overdue": "true"})

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        body = response.json()
        self.assertEqual(body["pagination"]["total"], 1)
        self.assertEqual(body["grace_periods"][0]["user_id"], "b")

        everything = self.client.get(reverse("api:grace_periods:list"))
        self.assertEqual(everything.json()["pagination"]["total"], 2)

    def test_extend_and_cancel(self):
        self.as_admin()
        grace_period = create_grace_period(self.tenant, start=timezone.now())

        extended = self.client.post(
            reverse("api:grace_periods:extend", args=[grace_period.id]),
            {"additional_days": 7, "reason": "sales call"},
            format="json",
        )
        self.assertEqual(extended.status_code, status.HTTP_200_OK)
        self.assertEqual(extended.json()["grace_period"]["duration_days"], 21)
        self.assertEqual(extended.json()["grace_period"]["extension_history"][0]["extended_by"], "admin")

        cancelled = self.client.post(reverse("api:grace_periods:cancel", args=[grace_period.id]), {}, format="json")
        self.assertEqual(cancelled.json()["grace_period"]["status"], "cancelled")

        again = self.client.post(
            reverse("api:grace_periods:extend", args=[grace_period.id]), {"additional_days": 7}, format="json"
        )
        self.assertEqual(again.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(again.json()["error_code"], "INVALID_STATE")

    def test_unknown_grace_period(self):
        self.as_admin()
        response = self.client.get(reverse("api:grace_periods:detail", args=[uuid.uuid4()]))
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.json()["error_code"], "NOT_FOUND")

    def test_active_grace_period_for_self_only(self):
        """Customers can read their own active period but not another user's"""
        grace_period = create_grace_period(self.tenant, user_id=str(self.customer.pk), start=timezone.now())
        self.as_customer()

        own = self.client.get(reverse("api:grace_periods:active"))
        self.assertEqual(own.status_code, status.HTTP_200_OK)
        self.assertEqual(own.json()["grace_period"]["id"], str(grace_period.id))

        foreign = self.client.get(reverse("api:grace_periods:active"), {"user_id": str(self.other.pk)})
        self.assertEqual(foreign.status_code, status.HTTP_403_FORBIDDEN)

    def test_stats(self):
        self.as_admin()
        create_grace_period(self.tenant, start=timezone.now())
        response = self.client.get(reverse("api:grace_periods:stats"), {"tenant_id": str(self.tenant.id)})
        self.assertEqual(response.json()["stats"]["total"], 1)

    def test_expiry_sweep_endpoint(self):
        """The admin sweep endpoint expires overdue periods and sends the final e-mail"""
        self.as_admin()
        create_grace_period(self.tenant, start=timezone.now() - timedelta(days=30))

        response = self.client.post(reverse("api:grace_periods:expiry_sweep"))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.json()["result"]["processed"], 1)
        self.assertEqual(len(mail.outbox), 1)


class ConversionApiTestCase(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.grace_period = create_grace_period(self.tenant, user_id=str(self.customer.pk), start=timezone.now())
        self.url = reverse("api:grace_periods:convert", args=[self.grace_period.id])

    def test_owner_converts(self):
        """The grace period owner converts once; the second attempt is a 409"""
        self.as_customer()

        response = self.client.post(self.url, {"plan_id": str(self.plan.id)}, format="json")

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        subscription = response.json()["subscription"]
        self.assertEqual(subscription["final_price"], "100.00")
        self.assertEqual(subscription["grace_period_id"], str(self.grace_period.id))

        again = self.client.post(self.url, {"plan_id": str(self.plan.id)}, format="json")
        self.assertEqual(again.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(again.json()["error_code"], "INVALID_STATE")

    def test_other_user_forbidden(self):
        self.as_customer(self.other)
        response = self.client.post(self.url, {"plan_id": str(self.plan.id)}, format="json")
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(response.json()["error_code"], "FORBIDDEN")

    def test_convert_with_ineligible_promo(self):
        """Promo failures come back as 400 with the promo error code"""
        promo = create_promo_code("BIGSPEND", minimum_amount="500.00")
        self.as_admin()

        response = self.client.post(
            self.url, {"plan_id": str(self.plan.id), "promo_code_id": str(promo.id)}, format="json"
        )

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.json()["error_code"], "MINIMUM_AMOUNT_NOT_MET")
        self.assertEqual(response.json()["field"], "promo_code_id")

    def test_cancel_subscription_downgrade(self):
        self.as_customer()
        subscription_id = self.client.post(self.url, {"plan_id": str(self.plan.id)}, format="json").json()[
            "subscription"
        ]["id"]

        self.as_admin()
        response = self.client.post(
            reverse("api:billing:cancel_subscription", args=[subscription_id]), {"reason": "downgrade"}, format="json"
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.json()["subscription"]["status"], "cancelled")
        self.assertEqual(response.json()["subscription"]["cancellation_reason"], "downgrade")


class PromoCodeApiTestCase(ApiTestCase):
    def test_validate(self):
        create_promo_code("SAVE20", "percentage", "20.00")
        self.as_customer()

        response = self.client.post(
            reverse("api:promotions:validate"),
            {"code": "save20", "tenant_id": str(self.tenant.id), "subscription_amount": "100.00"},
            format="json",
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        body = response.json()
        self.assertTrue(body["is_valid"])
        self.assertEqual(body["discount_amount"], "20.00")
        self.assertEqual(body["final_amount"], "80.00")

    def test_validate_rate_limited(self):
        """The 11th validation inside an hour is a 429 with Retry-After"""
        self.as_customer()
        payload = {"code": "WRONG", "tenant_id": str(self.tenant.id)}
        for _ in range(10):
            self.client.post(reverse("api:promotions:validate"), payload, format="json")

        response = self.client.post(reverse("api:promotions:validate"), payload, format="json")

        self.assertEqual(response.status_code, status.HTTP_429_TOO_MANY_REQUESTS)
        self.assertEqual(response["Retry-After"], "3600")
        self.assertEqual(response.json()["error_code"], "RATE_LIMIT_EXCEEDED")

    def test_apply_and_exhausted(self):
        """Applying the last use succeeds; the next user gets a 409 CODE_EXHAUSTED"""
        create_promo_code("LIMITED", max_uses=1)
        other_tenant = create_tenant(name="Globex", owner_user_id=str(self.other.pk))
        url = reverse("api:promotions:apply")

        self.as_customer()
        first = self.client.post(
            url, {"code": "LIMITED", "tenant_id": str(self.tenant.id), "subscription_amount": "100.00"}, format="json"
        )
        self.assertEqual(first.status_code, status.HTTP_201_CREATED)
        self.assertEqual(first.json()["discount_applied"], "20.00")

        self.as_customer(self.other)
        second = self.client.post(
            url, {"code": "LIMITED", "tenant_id": str(other_tenant.id), "subscription_amount": "100.00"}, format="json"
        )
        self.assertEqual(second.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(second.json()["error_code"], "CODE_EXHAUSTED")

    def test_apply_unknown_code(self):
        self.as_customer()
        response = self.client.post(
            reverse("api:promotions:apply"),
            {"code": "NOPE", "tenant_id": str(self.tenant.id), "subscription_amount": "100.00"},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.json()["error_code"], "CODE_NOT_FOUND")

    def test_admin_crud(self):
        """Create, read, toggle and delete through the admin endpoints"""
        self.as_admin()
        created = self.client.post(
            reverse("api:promotions:list"),
            {"code": "spring25", "name": "Spring", "discount_type": "percentage", "discount_value": "25.00"},
            format="json",
        )
        self.assertEqual(created.status_code, status.HTTP_201_CREATED)
        promo_id = created.json()["promo_code"]["id"]
        self.assertEqual(created.json()["promo_code"]["code"], "SPRING25")
        self.assertEqual(created.json()["promo_code"]["created_by"], "admin")

        toggled = self.client.post(reverse("api:promotions:toggle", args=[promo_id]), {"is_active": False}, format="json")
        self.assertFalse(toggled.json()["promo_code"]["is_active"])

        patched = self.client.patch(
            reverse("api:promotions:detail", args=[promo_id]), {"name": "Spring sale"}, format="json"
        )
        self.assertEqual(patched.json()["promo_code"]["name"], "Spring sale")

        deleted = self.client.delete(reverse("api:promotions:detail", args=[promo_id]))
        self.assertEqual(deleted.status_code, status.HTTP_204_NO_CONTENT)
        self.assertFalse(PromoCode.objects.exists())

    def test_duplicate_and_delete_with_usages(self):
        self.as_admin()
        promo = create_promo_code("USED")
        PromoCodeService().record_usage(promo, "u1", self.tenant.id, None, promo.discount_value, promo.discount_value)

        duplicate = self.client.post(
            reverse("api:promotions:list"),
            {"code": "used", "name": "Again", "discount_type": "fixed_amount", "discount_value": "5.00"},
            format="json",
        )
        self.assertEqual(duplicate.status_code, status.HTTP_409_CONFLICT)

        response = self.client.delete(reverse("api:promotions:detail", args=[promo.id]))
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)

    def test_activate_exhausted_code_conflicts(self):
        self.as_admin()
        promo = create_promo_code(
            "DONE", max_uses=1, current_uses=1, is_active=False, deactivation_reason=DeactivationReason.EXHAUSTED
        )
        response = self.client.post(reverse("api:promotions:toggle", args=[promo.id]), {"is_active": True}, format="json")
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.json()["error_code"], "CODE_EXHAUSTED")

    def test_revoke_and_stats(self):
        self.as_admin()
        promo = create_promo_code("SAVE20", max_uses=5)
        usage = PromoCodeService().record_usage(promo, "u1", self.tenant.id, None, promo.discount_value, promo.discount_value)

        stats = self.client.get(reverse("api:promotions:stats", args=[promo.id]))
        self.assertEqual(stats.json()["stats"]["total_uses"], 1)

        revoked = self.client.post(reverse("api:promotions:revoke", args=[usage.id]))
        self.assertEqual(revoked.status_code, status.HTTP_200_OK)
        promo.refresh_from_db()
        self.assertEqual(promo.current_uses, 0)

    def test_reconcile_endpoint(self):
        self.as_admin()
        promo = create_promo_code("DRIFT")
        PromoCode.objects.filter(pk=promo.pk).update(current_uses=4)

        response = self.client.post(reverse("api:promotions:reconcile"), {}, format="json")

        self.assertEqual(response.json()["result"]["corrected"], 1)

    def test_customers_cannot_administer(self):
        self.as_customer()
        response = self.client.get(reverse("api:promotions:list"))
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_subscription_existing_makes_user_not_new(self):
        """new_users_only codes fail validation for tenants that already subscribed"""
        create_promo_code("WELCOME", new_users_only=True)
        create_subscription(self.tenant, self.plan)
        self.as_customer()

        response = self.client.post(
            reverse("api:promotions:validate"),
            {"code": "WELCOME", "tenant_id": str(self.tenant.id), "subscription_amount": "100.00"},
            format="json",
        )

        self.assertFalse(response.json()["is_valid"])
        self.assertEqual(response.json()["error_code"], "NEW_USERS_ONLY")
