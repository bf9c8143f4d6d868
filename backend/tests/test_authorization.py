"""
Authorization tests for the storefront API.

Verifies:
- Unauthenticated requests return 401
- Customer role denied admin operations (403)
- Admin role can perform privileged operations
- Catalog, booking availability and system endpoints stay public
"""

import pytest


# =============================================================================
# UNAUTHENTICATED ACCESS: 401
# =============================================================================


class TestUnauthenticatedAccess:
    """All protected endpoints return 401 without a token."""

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/auth/me"),
            ("POST", "/api/auth/logout"),
            ("GET", "/api/cart"),
            ("POST", "/api/cart/items"),
            ("GET", "/api/orders"),
            ("GET", "/api/orders/1"),
            ("PUT", "/api/orders/1/cancel"),
            ("GET", "/api/orders/admin/all"),
            ("PUT", "/api/orders/1/status"),
            ("POST", "/api/bookings"),
            ("GET", "/api/bookings"),
            ("GET", "/api/bookings/admin/all"),
            ("PUT", "/api/bookings/1/cancel"),
            ("POST", "/api/enrollments"),
            ("GET", "/api/enrollments"),
            ("POST", "/api/products"),
            ("POST", "/api/products/1/stock"),
            ("GET", "/api/coupons"),
            ("POST", "/api/coupons"),
            ("PUT", "/api/payment/confirm-bank-transfer/1"),
            ("POST", "/api/payment/refund"),
            ("GET", "/api/payment/webhooks"),
        ],
    )
    def test_requires_auth(self, client, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"

    def test_invalid_token_is_rejected_not_treated_as_guest(self, client, make_product):
        product = make_product()
        resp = client.post(
            "/api/coupons/validate",
            json={"code": "NOPE", "order_amount_cents": 1000},
            headers={"Authorization": "Bearer not-a-real-token"},
        )
        assert resp.status_code == 401

        resp = client.post(
            "/api/orders",
            json={"items": [{"product_id": product.id, "quantity": 1}]},
            headers={"Authorization": "Bearer not-a-real-token"},
        )
        assert resp.status_code == 401


# =============================================================================
# CUSTOMER DENIED ADMIN OPERATIONS: 403
# =============================================================================


class TestCustomerDeniedAdmin:
    """Customer role cannot perform privileged operations."""

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/orders/admin/all"),
            ("PUT", "/api/orders/1/status"),
            ("GET", "/api/bookings/admin/all"),
            ("PUT", "/api/bookings/1/status"),
            ("POST", "/api/bookings/services"),
            ("POST", "/api/courses"),
            ("POST", "/api/categories"),
            ("POST", "/api/products"),
            ("PUT", "/api/products/1"),
            ("POST", "/api/products/1/stock"),
            ("GET", "/api/products/1/movements"),
            ("GET", "/api/coupons"),
            ("POST", "/api/coupons"),
            ("PUT", "/api/coupons/1"),
            ("PUT", "/api/payment/confirm-bank-transfer/1"),
            ("POST", "/api/payment/refund"),
            ("GET", "/api/payment/webhooks"),
            ("POST", "/api/payment/webhooks/1/replay"),
        ],
    )
    def test_admin_only(self, client, customer_headers, method, path):
        resp = getattr(client, method.lower())(path, json={}, headers=customer_headers)
        assert resp.status_code == 403, f"{method} {path} returned {resp.status_code}"

    def test_cannot_create_product(self, client, customer_headers):
        resp = client.post(
            "/api/products",
            json={"sku": "EVIL-1", "name": "Free Stuff", "price_cents": 1, "stock": 999},
            headers=customer_headers,
        )
        assert resp.status_code == 403


# =============================================================================
# ADMIN CAN PERFORM PRIVILEGED OPERATIONS: 200
# =============================================================================


class TestAdminAccess:
    """Admin role can perform privileged operations."""

    def test_can_list_all_orders(self, client, admin_headers):
        resp = client.get("/api/orders/admin/all", headers=admin_headers)
        assert resp.status_code == 200

    def test_can_list_all_bookings(self, client, admin_headers):
        resp = client.get("/api/bookings/admin/all", headers=admin_headers)
        assert resp.status_code == 200

    def test_can_list_coupons(self, client, admin_headers):
        resp = client.get("/api/coupons", headers=admin_headers)
        assert resp.status_code == 200

    def test_can_list_webhook_events(self, client, admin_headers):
        resp = client.get("/api/payment/webhooks", headers=admin_headers)
        assert resp.status_code == 200

    def test_can_create_product(self, client, admin_headers):
        resp = client.post(
            "/api/products",
            json={"sku": "KIT-1", "name": "Starter Kit", "price_cents": 25000, "stock": 3},
            headers=admin_headers,
        )
        assert resp.status_code == 201


# =============================================================================
# PUBLIC ENDPOINTS: NO AUTH REQUIRED
# =============================================================================


class TestPublicEndpoints:
    """Storefront browsing and system endpoints are public."""

    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json["checks"]["database"]["status"] == "healthy"

    def test_version(self, client):
        resp = client.get("/version")
        assert resp.status_code == 200

    def test_catalog(self, client, make_product):
        make_product(name="Lash Glue")
        resp = client.get("/api/products")
        assert resp.status_code == 200

    def test_services_and_availability(self, client, brow_service):
        assert client.get("/api/bookings/services").status_code == 200
        resp = client.get("/api/bookings/availability?date=2030-01-15&location=calabar&artist_type=senior")
        assert resp.status_code == 200
        assert len(resp.json["slots"]) == 10
