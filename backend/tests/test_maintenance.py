# Overview: Scheduled maintenance jobs and the Flask CLI commands that run them.

from datetime import timedelta

from conftest import GUEST, order_payload, post_webhook, webhook_body

from storefront.extensions import db
from storefront.models import Notification, Order, Product, SessionToken, User, WebhookEvent
from storefront.models.notifications import NOTIFICATION_QUEUED, NOTIFICATION_SENT
from storefront.services import maintenance_service, order_service, payment_service, session_service
from storefront.time_utils import utcnow


def _guest_order(product, quantity=2, payment_method="bank_transfer"):
    result = order_service.create_order(
        order_payload([{"product_id": product.id, "quantity": quantity}], payment_method=payment_method, customer=GUEST),
        user=None,
    )
    return result.order


def _age(order, hours):
    order.created_at = utcnow() - timedelta(hours=hours)
    db.session.commit()


class TestExpireUnpaidOrders:

    def test_stale_unpaid_order_is_cancelled_and_stock_released(self, make_product, admin):
        product = make_product(stock=10)
        stale = _guest_order(product)
        fresh = _guest_order(product, quantity=1)
        _age(stale, 80)

        result = maintenance_service.expire_unpaid_orders(hours=72)

        assert result == {"expired": [stale.order_number], "skipped": []}
        db.session.expire_all()
        assert db.session.get(Order, stale.id).status == "cancelled"
        assert db.session.get(Order, fresh.id).status == "pending_payment"
        assert db.session.get(Product, product.id).stock == 9

    def test_paid_orders_are_left_alone(self, make_product, admin):
        product = make_product(stock=10)
        order = _guest_order(product)
        payment_service.confirm_bank_transfer(order.id, admin=admin)
        _age(order, 100)

        result = maintenance_service.expire_unpaid_orders(hours=72)

        assert result["expired"] == []
        db.session.expire_all()
        assert db.session.get(Order, order.id).status == "processing"
        assert db.session.get(Product, product.id).stock == 8

    def test_default_threshold_comes_from_config(self, app, make_product):
        product = make_product(stock=10)
        order = _guest_order(product, payment_method="gateway")
        _age(order, 5)

        app.config["UNPAID_ORDER_EXPIRY_HOURS"] = 4
        try:
            result = maintenance_service.expire_unpaid_orders()
        finally:
            app.config["UNPAID_ORDER_EXPIRY_HOURS"] = 72
        assert result["expired"] == [order.order_number]


class TestCleanupSessions:

    def test_only_long_expired_sessions_are_deleted(self, customer):
        old, _ = session_service.create_session(customer.id)
        recent, _ = session_service.create_session(customer.id)
        old.expires_at = utcnow() - timedelta(days=45)
        recent.expires_at = utcnow() - timedelta(days=2)
        db.session.commit()

        assert maintenance_service.cleanup_sessions(retention_days=30) == 1
        assert db.session.query(SessionToken).count() == 1


class TestCommands:

    def test_init_admin(self, app):
        runner = app.test_cli_runner()
        result = runner.invoke(args=[
            "system", "init-admin", "--email", "owner@example.com", "--password", "Sup3r!Secret",
        ])
        assert "PASS Created admin: owner@example.com" in result.output
        assert db.session.query(User).filter_by(email="owner@example.com").one().role == "admin"

        again = runner.invoke(args=[
            "system", "init-admin", "--email", "owner@example.com", "--password", "Sup3r!Secret",
        ])
        assert "already exists" in again.output

    def test_init_admin_weak_password(self, app):
        result = app.test_cli_runner().invoke(args=[
            "system", "init-admin", "--email", "owner@example.com", "--password", "weak",
        ])
        assert "FAIL Password validation failed" in result.output

    def test_expire_unpaid(self, app, make_product):
        product = make_product(stock=10)
        order = _guest_order(product)
        _age(order, 2)

        result = app.test_cli_runner().invoke(args=["orders", "expire-unpaid", "--hours", "1"])
        assert f"PASS Expired {order.order_number}" in result.output
        assert "Expired 1 orders, skipped 0." in result.output

    def test_replay_failed_webhook(self, app, client, make_product):
        product = make_product(stock=10)
        order = _guest_order(product, quantity=1, payment_method="gateway")

        # Unknown target first: stored as failed, visible to the listing command
        body = webhook_body(
            "charge.success", reference="late-ref", amount=order.total_cents,
            metadata={"type": "order", "referenceId": 999999},
        )
        assert post_webhook(client, body).status_code == 200
        event = db.session.query(WebhookEvent).one()

        runner = app.test_cli_runner()
        listing = runner.invoke(args=["payments", "failed-webhooks"])
        assert "late-ref" in listing.output

        missing = runner.invoke(args=["payments", "replay-webhook", "424242"])
        assert missing.exit_code == 1
        assert "not found" in missing.output

        replay = runner.invoke(args=["payments", "replay-webhook", str(event.id)])
        assert f"Event {event.id}" in replay.output
        assert "failed" in replay.output

    def test_deliver_notifications(self, app, make_product):
        product = make_product(stock=10)
        _guest_order(product)
        assert db.session.query(Notification).filter_by(status=NOTIFICATION_QUEUED).count() == 1

        result = app.test_cli_runner().invoke(args=["notifications", "deliver"])
        assert "Delivered 1 notifications." in result.output
        db.session.expire_all()
        assert db.session.query(Notification).filter_by(status=NOTIFICATION_SENT).count() == 1

    def test_cleanup_sessions_command(self, app, customer):
        result = app.test_cli_runner().invoke(args=["maintenance", "cleanup-sessions", "--retention-days", "10"])
        assert "Deleted 0 sessions" in result.output
