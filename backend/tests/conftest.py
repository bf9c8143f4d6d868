"""
Pytest fixtures for storefront backend tests.

Provides test database setup, users with session tokens, a fake payment
gateway and catalog/booking seed helpers.
"""

import hashlib
import hmac
import json
from datetime import timedelta

import pytest

from storefront import create_app
from storefront.extensions import db
from storefront.models import Coupon, Product
from storefront.models.auth import ROLE_ADMIN
from storefront.services import auth_service, booking_service, catalog_service, session_service
from storefront.services.gateway import CheckoutSession, PaystackGateway, VerificationResult
from storefront.time_utils import utcnow


TEST_SECRET = "sk_test_secret"
PASSWORD = "Passw0rd!"


class FakeGateway(PaystackGateway):
    """
    In-memory gateway. Signature validation is the real HMAC-SHA512 code;
    initialize/verify/refund never leave the process.
    """

    def __init__(self):
        super().__init__(secret_key=TEST_SECRET)
        self.initialized: dict[str, dict] = {}
        self.charges: dict[str, dict] = {}
        self.refunds: list[dict] = []
        self.fail_initialize = False

    def initialize(self, *, amount_cents, currency, email, reference, metadata=None, callback_url=None):
        if self.fail_initialize:
            from storefront.errors import ExternalServiceError
            raise ExternalServiceError("Payment gateway timed out")
        self.initialized[reference] = {
            "amount": amount_cents,
            "currency": currency,
            "email": email,
            "metadata": metadata or {},
        }
        return CheckoutSession(
            authorization_url=f"https://checkout.test/{reference}",
            access_code=f"ac_{reference}",
            reference=reference,
        )

    def complete(self, reference, *, amount_cents=None, status="success"):
        """Simulate the customer finishing (or failing) checkout."""
        init = self.initialized[reference]
        self.charges[reference] = {
            "status": status,
            "amount": init["amount"] if amount_cents is None else amount_cents,
            "metadata": init["metadata"],
        }

    def verify(self, reference):
        charge = self.charges.get(reference, {"status": "abandoned", "amount": 0, "metadata": {}})
        raw = {"reference": reference, **charge}
        return VerificationResult(
            success=charge["status"] == "success",
            amount_cents=charge["amount"],
            status=charge["status"],
            reference=reference,
            metadata=charge["metadata"],
            raw=raw,
        )

    def refund(self, *, reference, amount_cents=None, reason=None):
        self.refunds.append({"reference": reference, "amount": amount_cents, "reason": reason})
        return {"transaction": {"reference": reference}, "status": "pending"}


def sign(body: bytes, secret: str = TEST_SECRET) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha512).hexdigest()


def webhook_body(event: str, *, reference: str, amount: int, metadata: dict) -> bytes:
    return json.dumps({
        "event": event,
        "data": {
            "reference": reference,
            "amount": amount,
            "currency": "NGN",
            "status": "success" if event == "charge.success" else "failed",
            "metadata": metadata,
        },
    }).encode("utf-8")


def post_webhook(client, body: bytes, signature: str | None = None):
    headers = {"Content-Type": "application/json"}
    headers["x-paystack-signature"] = sign(body) if signature is None else signature
    return client.post("/api/payment/webhook", data=body, headers=headers)


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'PAYSTACK_SECRET_KEY': TEST_SECRET,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function', autouse=True)
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function', autouse=True)
def gateway(app):
    fake = FakeGateway()
    app.extensions["payment_gateway"] = fake
    return fake


@pytest.fixture(scope='function')
def customer(db_session):
    return auth_service.create_user(
        email="ada@example.com",
        password=PASSWORD,
        first_name="Ada",
        last_name="Obi",
        phone="08030000000",
    )


@pytest.fixture(scope='function')
def other_customer(db_session):
    return auth_service.create_user(
        email="bola@example.com",
        password=PASSWORD,
        first_name="Bola",
        last_name="Eze",
    )


@pytest.fixture(scope='function')
def admin(db_session):
    return auth_service.create_user(
        email="admin@example.com",
        password=PASSWORD,
        first_name="Store",
        last_name="Admin",
        role=ROLE_ADMIN,
    )


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def customer_headers(customer):
    _, token = session_service.create_session(customer.id)
    return auth_headers(token)


@pytest.fixture(scope='function')
def other_headers(other_customer):
    _, token = session_service.create_session(other_customer.id)
    return auth_headers(token)


@pytest.fixture(scope='function')
def admin_headers(admin):
    _, token = session_service.create_session(admin.id)
    return auth_headers(token)


@pytest.fixture(scope='function')
def make_product(db_session):
    counter = {"n": 0}

    def _make(*, price_cents=5000, stock=10, name=None, variants=None) -> Product:
        counter["n"] += 1
        payload = {
            "sku": f"SKU-{counter['n']:03d}",
            "name": name or f"Lash Glue {counter['n']}",
            "price_cents": price_cents,
        }
        if variants:
            payload["variants"] = variants
        else:
            payload["stock"] = stock
        return catalog_service.create_product(payload)

    return _make


@pytest.fixture(scope='function')
def make_coupon(db_session):
    def _make(code="SAVE10", **overrides) -> Coupon:
        now = utcnow()
        coupon = Coupon(
            code=code,
            discount_type=overrides.pop("discount_type", "percentage"),
            discount_value=overrides.pop("discount_value", 10),
            start_date=overrides.pop("start_date", now - timedelta(days=1)),
            end_date=overrides.pop("end_date", now + timedelta(days=30)),
            **overrides,
        )
        db.session.add(coupon)
        db.session.commit()
        return coupon

    return _make


@pytest.fixture(scope='function')
def brow_service(db_session):
    return booking_service.create_service({
        "name": "Microblading",
        "category": "brows",
        "duration_minutes": 120,
        "description": "Hair-stroke brows",
        "pricing": {"lulu": 15000000, "senior": 10000000, "artist": 7000001},
    })


def order_payload(items, *, payment_method="gateway", **extra) -> dict:
    payload = {
        "items": items,
        "payment_method": payment_method,
        "shipping_address": {"street": "12 Marian Rd", "city": "Calabar", "state": "Cross River"},
        "delivery_zone": {"zone": "Calabar Municipal", "cost_cents": 1500},
    }
    payload.update(extra)
    return payload


GUEST = {"first_name": "Guest", "last_name": "Buyer", "email": "guest@example.com", "phone": "0809"}
