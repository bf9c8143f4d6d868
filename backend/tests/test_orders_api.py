# Overview: Order creation, bank-transfer confirmation, status transitions and cancellation over the API.

from conftest import GUEST, order_payload

from storefront.extensions import db
from storefront.models import CouponUsage, Notification, Order, Product


def _stock(product_id):
    db.session.expire_all()
    return db.session.get(Product, product_id).stock


class TestCreateOrder:

    def test_bank_transfer_order_then_admin_confirms(self, client, make_product, customer_headers, admin_headers):
        product = make_product(stock=10, price_cents=5000)

        resp = client.post(
            "/api/orders",
            json=order_payload([{"product_id": product.id, "quantity": 3}], payment_method="bank_transfer"),
            headers=customer_headers,
        )
        assert resp.status_code == 201
        order = resp.json["order"]
        assert order["status"] == "pending_payment"
        assert order["payment"]["status"] == "awaiting_transfer"
        assert order["pricing"] == {
            "subtotal_cents": 15000,
            "shipping_cents": 1500,
            "discount_cents": 0,
            "total_cents": 16500,
        }
        assert order["order_number"].startswith("ORD-")
        assert resp.json["bank_details"]["account_number"]
        assert _stock(product.id) == 7

        resp = client.put(f"/api/payment/confirm-bank-transfer/{order['id']}", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json["order"]["status"] == "processing"
        assert resp.json["order"]["payment"]["status"] == "paid"
        assert _stock(product.id) == 7

        # A second confirmation is a no-op
        resp = client.put(f"/api/payment/confirm-bank-transfer/{order['id']}", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json["order"]["status"] == "processing"
        kinds = [n.kind for n in db.session.query(Notification).order_by(Notification.id)]
        assert kinds == ["bank_transfer_instructions", "order_confirmation"]

    def test_customer_cannot_confirm_bank_transfer(self, client, make_product, customer_headers):
        product = make_product()
        resp = client.post(
            "/api/orders",
            json=order_payload([{"product_id": product.id, "quantity": 1}], payment_method="bank_transfer"),
            headers=customer_headers,
        )
        order_id = resp.json["order"]["id"]
        resp = client.put(f"/api/payment/confirm-bank-transfer/{order_id}", headers=customer_headers)
        assert resp.status_code == 403

    def test_insufficient_stock_conflict_names_product(self, client, make_product, customer_headers):
        product = make_product(stock=2, name="Lash Serum")

        resp = client.post(
            "/api/orders",
            json=order_payload([{"product_id": product.id, "quantity": 5}]),
            headers=customer_headers,
        )
        assert resp.status_code == 409
        assert "Lash Serum" in resp.json["error"]
        assert _stock(product.id) == 2
        assert db.session.query(Order).count() == 0

    def test_any_short_line_rejects_whole_order(self, client, make_product, customer_headers):
        first = make_product(stock=5)
        second = make_product(stock=0)

        resp = client.post(
            "/api/orders",
            json=order_payload([
                {"product_id": first.id, "quantity": 2},
                {"product_id": second.id, "quantity": 1},
            ]),
            headers=customer_headers,
        )
        assert resp.status_code == 409
        assert _stock(first.id) == 5

    def test_gateway_order_returns_checkout(self, client, make_product, customer_headers, gateway):
        product = make_product(stock=4, price_cents=2500)

        resp = client.post(
            "/api/orders",
            json=order_payload([{"product_id": product.id, "quantity": 2}], payment_method="paystack"),
            headers=customer_headers,
        )
        assert resp.status_code == 201
        assert resp.json["order"]["status"] == "pending_verification"
        payment = resp.json["payment"]
        assert payment["authorization_url"].startswith("https://checkout.test/")
        sent = gateway.initialized[payment["reference"]]
        assert sent["amount"] == 6500
        assert sent["metadata"] == {"type": "order", "referenceId": resp.json["order"]["id"], "purpose": "order"}

    def test_gateway_failure_keeps_order(self, client, make_product, customer_headers, gateway):
        gateway.fail_initialize = True
        product = make_product(stock=4)

        resp = client.post(
            "/api/orders",
            json=order_payload([{"product_id": product.id, "quantity": 1}]),
            headers=customer_headers,
        )
        assert resp.status_code == 201
        assert "payment_error" in resp.json
        assert _stock(product.id) == 3

    def test_guest_checkout_requires_contact_details(self, client, make_product):
        product = make_product()
        items = [{"product_id": product.id, "quantity": 1}]

        assert client.post("/api/orders", json=order_payload(items)).status_code == 400

        resp = client.post("/api/orders", json=order_payload(items, customer=GUEST))
        assert resp.status_code == 201
        assert resp.json["order"]["user_id"] is None
        assert resp.json["order"]["customer"]["email"] == "guest@example.com"

    def test_invalid_inputs(self, client, make_product, customer_headers):
        product = make_product()
        items = [{"product_id": product.id, "quantity": 1}]

        assert client.post("/api/orders", json=order_payload([]), headers=customer_headers).status_code == 400
        assert client.post(
            "/api/orders", json=order_payload(items, payment_method="cash"), headers=customer_headers
        ).status_code == 400
        assert client.post(
            "/api/orders", json=order_payload([{"product_id": 9999, "quantity": 1}]), headers=customer_headers
        ).status_code == 404
        assert client.post(
            "/api/orders", json=order_payload([{"product_id": product.id, "quantity": 0}]), headers=customer_headers
        ).status_code == 400

    def test_coupon_applied_and_counted(self, client, make_product, make_coupon, customer_headers):
        product = make_product(stock=5, price_cents=10000)
        coupon = make_coupon(discount_value=50, maximum_discount_cents=2000)

        resp = client.post(
            "/api/orders",
            json=order_payload([{"product_id": product.id, "quantity": 1}], coupon_code="save10"),
            headers=customer_headers,
        )
        assert resp.status_code == 201
        assert resp.json["order"]["pricing"]["discount_cents"] == 2000
        assert resp.json["order"]["pricing"]["total_cents"] == 9500
        db.session.refresh(coupon)
        assert coupon.usage_count == 1

        # Per-user limit of 1 is now spent
        resp = client.post(
            "/api/orders",
            json=order_payload([{"product_id": product.id, "quantity": 1}], coupon_code="SAVE10"),
            headers=customer_headers,
        )
        assert resp.status_code == 409
        assert db.session.query(CouponUsage).count() == 1

    def test_fully_discounted_order_is_settled_at_creation(
        self, client, make_product, make_coupon, customer_headers, admin_headers, gateway
    ):
        product = make_product(stock=5, price_cents=5000)
        make_coupon("FREEKIT", discount_type="fixed", discount_value=5000)

        resp = client.post(
            "/api/orders",
            json=order_payload(
                [{"product_id": product.id, "quantity": 1}],
                coupon_code="FREEKIT",
                delivery_zone={"zone": "Studio pickup", "cost_cents": 0},
            ),
            headers=customer_headers,
        )
        assert resp.status_code == 201
        order = resp.json["order"]
        assert order["pricing"]["total_cents"] == 0
        assert order["status"] == "processing"
        assert order["payment"]["status"] == "paid"
        assert order["payment"]["reference"] == f"FREE-{order['order_number']}"
        assert "payment" not in resp.json
        assert "payment_error" not in resp.json
        assert gateway.initialized == {}
        assert _stock(product.id) == 4

        # Fulfilment moves on like any paid order
        resp = client.put(f"/api/orders/{order['id']}/status", json={"status": "shipped"}, headers=admin_headers)
        assert resp.status_code == 200

        resp = client.post(
            "/api/payment/refund", json={"reference": order["payment"]["reference"]}, headers=admin_headers
        )
        assert resp.status_code == 409

    def test_free_bank_transfer_order_needs_no_transfer(self, client, make_product, make_coupon, customer_headers):
        product = make_product(stock=5, price_cents=5000)
        make_coupon("FREEKIT", discount_type="fixed", discount_value=5000)

        resp = client.post(
            "/api/orders",
            json=order_payload(
                [{"product_id": product.id, "quantity": 1}],
                payment_method="bank_transfer",
                coupon_code="FREEKIT",
                delivery_zone={"zone": "Studio pickup", "cost_cents": 0},
            ),
            headers=customer_headers,
        )
        assert resp.status_code == 201
        assert resp.json["order"]["status"] == "processing"
        assert "bank_details" not in resp.json
        assert db.session.query(Notification).filter_by(kind="bank_transfer_instructions").count() == 0

    def test_checkout_from_cart(self, client, make_product, customer_headers):
        product = make_product(stock=5)
        resp = client.post("/api/cart/items", json={"product_id": product.id, "quantity": 2}, headers=customer_headers)
        assert resp.status_code == 200

        payload = order_payload(None, use_cart=True)
        del payload["items"]
        resp = client.post("/api/orders", json=payload, headers=customer_headers)
        assert resp.status_code == 201
        assert resp.json["order"]["items"][0]["quantity"] == 2

        resp = client.get("/api/cart", headers=customer_headers)
        assert resp.json["cart"]["items"] == []


class TestCancelOrder:

    def _place(self, client, product, headers, quantity=3):
        resp = client.post(
            "/api/orders",
            json=order_payload([{"product_id": product.id, "quantity": quantity}], payment_method="bank_transfer"),
            headers=headers,
        )
        assert resp.status_code == 201
        return resp.json["order"]["id"]

    def test_cancel_restores_stock_once(self, client, make_product, customer_headers):
        product = make_product(stock=10)
        order_id = self._place(client, product, customer_headers)
        assert _stock(product.id) == 7

        resp = client.put(f"/api/orders/{order_id}/cancel", json={"reason": "Changed mind"}, headers=customer_headers)
        assert resp.status_code == 200
        assert resp.json["order"]["status"] == "cancelled"
        assert _stock(product.id) == 10

        resp = client.put(f"/api/orders/{order_id}/cancel", headers=customer_headers)
        assert resp.status_code == 409
        assert _stock(product.id) == 10

    def test_other_customer_cannot_cancel(self, client, make_product, customer_headers, other_headers):
        product = make_product(stock=10)
        order_id = self._place(client, product, customer_headers)

        resp = client.put(f"/api/orders/{order_id}/cancel", headers=other_headers)
        assert resp.status_code == 403
        assert client.get(f"/api/orders/{order_id}", headers=other_headers).status_code == 404

    def test_shipped_order_cannot_be_cancelled(self, client, make_product, customer_headers, admin_headers):
        product = make_product(stock=10)
        order_id = self._place(client, product, customer_headers)

        # Unpaid orders cannot move forward
        resp = client.put(f"/api/orders/{order_id}/status", json={"status": "shipped"}, headers=admin_headers)
        assert resp.status_code == 409

        client.put(f"/api/payment/confirm-bank-transfer/{order_id}", headers=admin_headers)
        resp = client.put(
            f"/api/orders/{order_id}/status",
            json={"status": "shipped", "tracking_number": "TRK-1"},
            headers=admin_headers,
        )
        assert resp.status_code == 200
        assert resp.json["order"]["tracking"]["tracking_number"] == "TRK-1"

        resp = client.put(f"/api/orders/{order_id}/status", json={"status": "processing"}, headers=admin_headers)
        assert resp.status_code == 409

        resp = client.put(f"/api/orders/{order_id}/cancel", headers=admin_headers)
        assert resp.status_code == 409
        assert _stock(product.id) == 7

    def test_admin_cancel_via_status(self, client, make_product, customer_headers, admin_headers):
        product = make_product(stock=10)
        order_id = self._place(client, product, customer_headers)

        resp = client.put(f"/api/orders/{order_id}/status", json={"status": "cancelled"}, headers=admin_headers)
        assert resp.status_code == 200
        assert _stock(product.id) == 10

        history = [h["status"] for h in resp.json["order"]["status_history"]]
        assert history == ["pending_payment", "cancelled"]

    def test_admin_listing(self, client, make_product, customer_headers, admin_headers):
        product = make_product(stock=10)
        self._place(client, product, customer_headers, quantity=1)
        self._place(client, product, customer_headers, quantity=1)

        resp = client.get("/api/orders/admin/all?status=pending_payment", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json["pagination"]["total"] == 2

        assert client.get("/api/orders/admin/all", headers=customer_headers).status_code == 403
        assert client.get("/api/orders", headers=customer_headers).json["count"] == 2
