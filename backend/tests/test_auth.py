# Overview: Pytest coverage for registration, login, session lifecycle and customer isolation.

"""
Authentication and Customer Isolation Tests

SECURITY TESTS: Prove that sessions behave and that one customer never sees
another customer's orders, bookings or enrollments.

Test Coverage:
- Registration: password strength, duplicate email
- Login: bad credentials, inactive accounts
- Sessions: logout revocation, idle and absolute expiry
- Isolation: foreign orders/bookings/enrollments look like missing ones (404)
"""

from datetime import datetime, timedelta

import pytest

from conftest import PASSWORD, auth_headers, order_payload

from storefront.errors import ValidationError
from storefront.models import SessionToken
from storefront.services import auth_service, booking_service, session_service
from storefront.services.session_service import SESSION_IDLE_TIMEOUT
from storefront.time_utils import utcnow


REGISTRATION = {
    "email": "New.Customer@Example.com",
    "password": PASSWORD,
    "first_name": "Ngozi",
    "last_name": "Okon",
    "phone": "08030000000",
}


class TestRegistration:

    def test_register_returns_user_and_token(self, client):
        resp = client.post("/api/auth/register", json=REGISTRATION)
        assert resp.status_code == 201
        assert resp.json["user"]["email"] == "new.customer@example.com"
        assert resp.json["user"]["role"] == "customer"
        assert "password_hash" not in resp.json["user"]

        me = client.get("/api/auth/me", headers=auth_headers(resp.json["token"]))
        assert me.status_code == 200
        assert me.json["user"]["first_name"] == "Ngozi"

    @pytest.mark.parametrize("password", ["short1!", "alllowercase1!", "NoDigits!!", "NoSpecial123"])
    def test_weak_passwords_rejected(self, client, password):
        resp = client.post("/api/auth/register", json={**REGISTRATION, "password": password})
        assert resp.status_code == 400

    def test_duplicate_email_conflicts(self, client):
        assert client.post("/api/auth/register", json=REGISTRATION).status_code == 201
        resp = client.post("/api/auth/register", json={**REGISTRATION, "email": "new.customer@example.com "})
        assert resp.status_code == 409

    def test_service_rejects_unknown_role(self, db_session):
        with pytest.raises(ValidationError):
            auth_service.create_user(
                email="x@example.com", password=PASSWORD, first_name="X", last_name="Y", role="superuser",
            )


class TestLogin:

    def test_login_success(self, client, customer):
        resp = client.post("/api/auth/login", json={"email": "ADA@example.com", "password": PASSWORD})
        assert resp.status_code == 200
        assert resp.json["token"]
        db_user = auth_service.authenticate("ada@example.com", PASSWORD)
        assert db_user.last_login_at is not None

    def test_bad_credentials(self, client, customer):
        assert client.post("/api/auth/login", json={"email": "ada@example.com", "password": "Wrong1!x"}).status_code == 401
        assert client.post("/api/auth/login", json={"email": "nobody@example.com", "password": PASSWORD}).status_code == 401
        assert client.post("/api/auth/login", json={"email": "ada@example.com"}).status_code == 400

    def test_inactive_account_cannot_login(self, client, customer, db_session):
        customer.is_active = False
        db_session.commit()
        resp = client.post("/api/auth/login", json={"email": "ada@example.com", "password": PASSWORD})
        assert resp.status_code == 401


class TestSessions:

    def test_logout_revokes_token(self, client, customer_headers):
        assert client.post("/api/auth/logout", headers=customer_headers).status_code == 200
        assert client.get("/api/auth/me", headers=customer_headers).status_code == 401

    def test_token_is_stored_hashed(self, customer, db_session):
        _, token = session_service.create_session(customer.id)
        row = db_session.query(SessionToken).filter_by(token_hash=session_service.hash_token(token)).one()
        assert row.token_hash != token

    def test_idle_session_is_revoked(self, customer, db_session):
        session, token = session_service.create_session(customer.id)
        session.last_used_at = session.last_used_at - SESSION_IDLE_TIMEOUT - timedelta(minutes=1)
        db_session.commit()

        assert session_service.validate_session(token) is None
        db_session.refresh(session)
        assert session.is_revoked
        assert session.revoked_reason == "Idle timeout"

    def test_expired_session_is_rejected(self, customer, db_session):
        session, token = session_service.create_session(customer.id)
        session.expires_at = datetime(2000, 1, 1)
        db_session.commit()
        assert session_service.validate_session(token) is None

    def test_deactivated_user_loses_session(self, client, customer, customer_headers, db_session):
        customer.is_active = False
        db_session.commit()
        assert client.get("/api/auth/me", headers=customer_headers).status_code == 401


class TestCustomerIsolation:
    """Another customer's records answer exactly like missing ones."""

    def test_orders_bookings_and_enrollments(
        self, client, make_product, brow_service, customer, customer_headers, other_headers, admin_headers,
    ):
        product = make_product()
        order_id = client.post(
            "/api/orders",
            json=order_payload([{"product_id": product.id, "quantity": 1}], payment_method="bank_transfer"),
            headers=customer_headers,
        ).json["order"]["id"]

        booking = booking_service.create_booking(
            {"service_id": brow_service.id, "artist_type": "senior", "location": "calabar",
             "date": "2025-06-01", "time_slot": "10:00"},
            user=customer,
            now=datetime(2025, 5, 1),
        )

        course_id = client.post(
            "/api/courses",
            json={"title": "Lash Basics", "category": "lashes", "price_cents": 5000000},
            headers=admin_headers,
        ).json["course"]["id"]
        start = (utcnow() + timedelta(days=14)).date().isoformat()
        enrollment_id = client.post(
            "/api/enrollments",
            json={"course_id": course_id, "start_date": start, "location": "calabar"},
            headers=customer_headers,
        ).json["enrollment"]["id"]

        for path in (
            f"/api/orders/{order_id}",
            f"/api/bookings/{booking.id}",
            f"/api/enrollments/{enrollment_id}",
        ):
            assert client.get(path, headers=other_headers).status_code == 404, path
            assert client.get(path, headers=customer_headers).status_code == 200, path
            assert client.get(path, headers=admin_headers).status_code == 200, path

        assert client.get("/api/orders", headers=other_headers).json["count"] == 0
