# ===============================================================================
# PROMO CODE MODEL TESTS
# ===============================================================================

from datetime import timedelta
from decimal import Decimal

from django.test import TestCase

from apps.promotions.models import DeactivationReason, PromoCode, PromoCodeUsage, PromoErrorCode, normalize_code
from tests.factories.billing import T0, create_promo_code, create_tenant


class DiscountCalculationTestCase(TestCase):
    def test_percentage_discount(self):
        """20% of 100.00 is 20.00"""
        promo = create_promo_code("SAVE20", "percentage", "20.00")
        self.assertEqual(promo.calculate_discount(Decimal("100.00")), Decimal("20.00"))

    def test_fixed_discount_clamped_to_amount(self):
        """A fixed 50.00 discount on a 30.00 subscription is capped at 30.00"""
        promo = create_promo_code("FLAT50", "fixed_amount", "50.00")
        self.assertEqual(promo.calculate_discount(Decimal("30.00")), Decimal("30.00"))

        result = promo.can_be_used_by({"user_id": "u1", "subscription_amount": Decimal("30.00")}, T0)
        self.assertTrue(result.is_valid)
        self.assertEqual(result.discount_amount, Decimal("30.00"))
        self.assertEqual(result.final_amount, Decimal("0.00"))

    def test_half_up_rounding(self):
        """15% of 9.99 is 1.4985, which rounds half-up to 1.50"""
        promo = create_promo_code("FIFTEEN", "percentage", "15.00")
        self.assertEqual(promo.calculate_discount(Decimal("9.99")), Decimal("1.50"))

    def test_full_percentage_discount(self):
        promo = create_promo_code("FREE", "percentage", "100.00")
        self.assertEqual(promo.calculate_discount(Decimal("49.90")), Decimal("49.90"))


class EligibilityTestCase(TestCase):
    def setUp(self):
        self.context = {"user_id": "u1", "subscription_amount": Decimal("100.00"), "is_new_user": True}

    def test_not_yet_valid_and_expired(self):
        """Codes outside their validity window are rejected with distinct codes"""
        future = create_promo_code("LATER", valid_from=T0 + timedelta(days=1))
        past = create_promo_code("OLD", valid_until=T0 - timedelta(seconds=1))

        self.assertEqual(future.can_be_used_by(self.context, T0).error_code, PromoErrorCode.CODE_INACTIVE)
        self.assertEqual(past.can_be_used_by(self.context, T0).error_code, PromoErrorCode.CODE_EXPIRED)

    def test_window_bounds_inclusive(self):
        """valid_from and valid_until are both inclusive"""
        promo = create_promo_code("EDGE", valid_from=T0, valid_until=T0 + timedelta(days=1))
        self.assertTrue(promo.is_within_window(T0))
        self.assertTrue(promo.is_within_window(T0 + timedelta(days=1)))
        self.assertFalse(promo.is_within_window(T0 + timedelta(days=1, seconds=1)))

    def test_exhausted_reported_as_exhausted(self):
        """A code deactivated by exhaustion reports CODE_EXHAUSTED, not CODE_INACTIVE"""
        promo = create_promo_code(
            "ONCE", max_uses=1, current_uses=1, is_active=False, deactivation_reason=DeactivationReason.EXHAUSTED
        )
        manual = create_promo_code("PAUSED", is_active=False, deactivation_reason=DeactivationReason.MANUAL)

        self.assertEqual(promo.can_be_used_by(self.context, T0).error_code, PromoErrorCode.CODE_EXHAUSTED)
        self.assertEqual(manual.can_be_used_by(self.context, T0).error_code, PromoErrorCode.CODE_INACTIVE)

    def test_new_users_only(self):
        promo = create_promo_code("WELCOME", new_users_only=True)
        returning = {**self.context, "is_new_user": False}
        self.assertTrue(promo.can_be_used_by(self.context, T0).is_valid)
        self.assertEqual(promo.can_be_used_by(returning, T0).error_code, PromoErrorCode.NEW_USERS_ONLY)

    def test_plan_restriction(self):
        promo = create_promo_code("PROONLY", applicable_plans=["plan-pro"])
        self.assertTrue(promo.can_be_used_by({**self.context, "plan_id": "plan-pro"}, T0).is_valid)
        self.assertEqual(
            promo.can_be_used_by({**self.context, "plan_id": "plan-basic"}, T0).error_code,
            PromoErrorCode.PLAN_NOT_ELIGIBLE,
        )

    def test_minimum_amount(self):
        promo = create_promo_code("BIGSPEND", minimum_amount=Decimal("150.00"))
        result = promo.can_be_used_by(self.context, T0)
        self.assertFalse(result.is_valid)
        self.assertEqual(result.error_code, PromoErrorCode.MINIMUM_AMOUNT_NOT_MET)


class PromoCodeHelpersTestCase(TestCase):
    def test_normalize_code(self):
        self.assertEqual(normalize_code("  save20 "), "SAVE20")
        self.assertEqual(normalize_code(None), "")

    def test_generated_codes_use_prefix(self):
        code = PromoCode.generate_code(prefix="spring")
        self.assertTrue(code.startswith("SPRING"))
        self.assertEqual(len(code), len("SPRING") + 8)

    def test_usages_are_immutable(self):
        """Saving an existing usage record raises"""
        promo = create_promo_code()
        usage = PromoCodeUsage.objects.create(
            promo_code=promo,
            user_id="u1",
            tenant=create_tenant(),
            discount_applied=Decimal("20.00"),
            original_amount=Decimal("100.00"),
            final_amount=Decimal("80.00"),
            used_at=T0,
        )
        usage.discount_applied = Decimal("0.00")
        with self.assertRaises(ValueError):
            usage.save()
