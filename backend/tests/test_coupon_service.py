# Overview: Coupon discount math and the ordered validity checks.

import unittest
from datetime import timedelta

import pytest

from storefront.errors import ConflictError, NotFoundError, ValidationError
from storefront.models import Coupon
from storefront.services import coupon_service
from storefront.services.booking_service import split_deposit
from storefront.time_utils import utcnow


class DiscountMathTests(unittest.TestCase):
    """Pure calculations; nothing is persisted."""

    def _coupon(self, **kw):
        defaults = dict(
            code="X",
            discount_type="percentage",
            discount_value=10,
            minimum_order_cents=0,
            maximum_discount_cents=None,
        )
        defaults.update(kw)
        return Coupon(**defaults)

    def test_below_minimum_is_zero(self):
        coupon = self._coupon(discount_type="fixed", discount_value=500, minimum_order_cents=5000)
        self.assertEqual(coupon_service.calculate_discount(coupon, 4999), 0)
        self.assertEqual(coupon_service.calculate_discount(coupon, 5000), 500)

    def test_percentage_is_capped(self):
        coupon = self._coupon(discount_value=50, maximum_discount_cents=2000)
        self.assertEqual(coupon_service.calculate_discount(coupon, 10000), 2000)

    def test_percentage_rounds_half_up(self):
        coupon = self._coupon(discount_value=15)
        # 15% of 4999 = 749.85
        self.assertEqual(coupon_service.calculate_discount(coupon, 4999), 750)
        # 10% of 5 = 0.5
        self.assertEqual(coupon_service.calculate_discount(self._coupon(), 5), 1)

    def test_fixed_never_exceeds_amount(self):
        coupon = self._coupon(discount_type="fixed", discount_value=10000)
        self.assertEqual(coupon_service.calculate_discount(coupon, 2500), 2500)

    def test_deposit_split_rounds_half_up(self):
        self.assertEqual(split_deposit(10000), (5000, 5000))
        self.assertEqual(split_deposit(7000001), (3500001, 3500000))
        self.assertEqual(split_deposit(0), (0, 0))


class TestEvaluateCoupon:

    def test_unknown_code(self, db_session):
        evaluation = coupon_service.evaluate_coupon("NOPE", None, 10000)
        assert not evaluation.valid
        assert evaluation.reason == coupon_service.REASON_NOT_FOUND
        with pytest.raises(NotFoundError):
            evaluation.raise_if_invalid()

    def test_code_is_case_insensitive(self, make_coupon):
        make_coupon("SAVE10")
        evaluation = coupon_service.evaluate_coupon("  save10 ", None, 10000)
        assert evaluation.valid
        assert evaluation.discount_cents == 1000

    def test_inactive(self, make_coupon):
        make_coupon(is_active=False)
        evaluation = coupon_service.evaluate_coupon("SAVE10", None, 10000)
        assert evaluation.reason == coupon_service.REASON_INACTIVE

    def test_window(self, make_coupon):
        now = utcnow()
        make_coupon("SOON", start_date=now + timedelta(days=1), end_date=now + timedelta(days=2))
        make_coupon("OLD", start_date=now - timedelta(days=5), end_date=now - timedelta(days=1))
        assert coupon_service.evaluate_coupon("SOON", None, 10000).reason == coupon_service.REASON_NOT_STARTED
        assert coupon_service.evaluate_coupon("OLD", None, 10000).reason == coupon_service.REASON_EXPIRED

    def test_below_minimum_is_a_validation_error(self, make_coupon):
        make_coupon(minimum_order_cents=5000)
        evaluation = coupon_service.evaluate_coupon("SAVE10", None, 4999)
        assert evaluation.reason == coupon_service.REASON_BELOW_MINIMUM
        with pytest.raises(ValidationError):
            evaluation.raise_if_invalid()
        assert coupon_service.evaluate_coupon("SAVE10", None, 5000).valid

    def test_total_limit(self, make_coupon):
        make_coupon(usage_limit_total=2, usage_count=2)
        evaluation = coupon_service.evaluate_coupon("SAVE10", None, 10000)
        assert evaluation.reason == coupon_service.REASON_EXHAUSTED

    def test_per_user_limit_is_a_conflict(self, make_coupon, customer):
        coupon = make_coupon(usage_limit_per_user=1)
        assert coupon_service.record_coupon_usage(coupon_id=coupon.id, user_id=customer.id, order_number="ORD-1")

        evaluation = coupon_service.evaluate_coupon("SAVE10", customer.id, 10000)
        assert evaluation.reason == coupon_service.REASON_USER_LIMIT
        with pytest.raises(ConflictError):
            evaluation.raise_if_invalid()

        # Guests are not subject to the per-user limit
        assert coupon_service.evaluate_coupon("SAVE10", None, 10000).valid

    def test_usage_past_total_limit_is_reported(self, make_coupon, db_session):
        coupon = make_coupon(usage_limit_total=1)
        assert coupon_service.record_coupon_usage(coupon_id=coupon.id, user_id=None, order_number="ORD-1")
        assert not coupon_service.record_coupon_usage(coupon_id=coupon.id, user_id=None, order_number="ORD-2")
        db_session.refresh(coupon)
        assert coupon.usage_count == 1


class TestCouponRoutes:

    def test_validate_endpoint(self, client, make_coupon):
        make_coupon(discount_value=50, maximum_discount_cents=2000)
        resp = client.post("/api/coupons/validate", json={"code": "save10", "order_amount_cents": 10000})
        assert resp.status_code == 200
        assert resp.json["valid"] is True
        assert resp.json["discount_cents"] == 2000

    def test_admin_creates_coupon(self, client, admin_headers, customer_headers):
        body = {
            "code": "welcome",
            "discount_type": "fixed",
            "discount_value": 1000,
            "start_date": "2026-01-01T00:00:00Z",
            "end_date": "2030-01-01T00:00:00Z",
        }
        assert client.post("/api/coupons", json=body, headers=customer_headers).status_code == 403

        resp = client.post("/api/coupons", json=body, headers=admin_headers)
        assert resp.status_code == 201
        assert resp.json["coupon"]["code"] == "WELCOME"

        assert client.post("/api/coupons", json=body, headers=admin_headers).status_code == 409

    def test_end_before_start_rejected(self, client, admin_headers):
        resp = client.post("/api/coupons", json={
            "code": "BAD",
            "discount_type": "percentage",
            "discount_value": 10,
            "start_date": "2030-01-02T00:00:00Z",
            "end_date": "2030-01-01T00:00:00Z",
        }, headers=admin_headers)
        assert resp.status_code == 400
