# Overview: Paystack gateway adapter over httpx (mock transport) and webhook signature checks.

import json

import httpx
import pytest

from conftest import TEST_SECRET, sign

from storefront.errors import ExternalServiceError
from storefront.services.gateway import PaystackGateway


def _gateway(handler, **kw):
    return PaystackGateway(
        secret_key=kw.pop("secret_key", TEST_SECRET),
        base_url="https://api.paystack.test",
        transport=httpx.MockTransport(handler),
        **kw,
    )


class TestInitialize:

    def test_sends_minor_units_and_metadata(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={
                "status": True,
                "data": {
                    "authorization_url": "https://checkout.paystack.com/abc",
                    "access_code": "abc",
                    "reference": "order-1-xyz",
                },
            })

        gw = _gateway(handler, callback_url="https://shop.test/callback")
        session = gw.initialize(
            amount_cents=16500,
            currency="NGN",
            email="ada@example.com",
            reference="order-1-xyz",
            metadata={"type": "order", "referenceId": 1, "purpose": "order"},
        )

        assert session.authorization_url == "https://checkout.paystack.com/abc"
        assert session.reference == "order-1-xyz"
        assert seen["path"] == "/transaction/initialize"
        assert seen["auth"] == f"Bearer {TEST_SECRET}"
        assert seen["body"]["amount"] == 16500
        assert seen["body"]["metadata"]["referenceId"] == 1
        assert seen["body"]["callback_url"] == "https://shop.test/callback"

    def test_gateway_refusal_raises(self):
        gw = _gateway(lambda request: httpx.Response(400, json={"status": False, "message": "Invalid key"}))
        with pytest.raises(ExternalServiceError) as exc:
            gw.initialize(amount_cents=100, currency="NGN", email="a@b.co", reference="r")
        assert exc.value.message == "Invalid key"
        assert exc.value.status_code == 502

    def test_timeout_raises(self):
        def handler(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        with pytest.raises(ExternalServiceError):
            _gateway(handler).initialize(amount_cents=100, currency="NGN", email="a@b.co", reference="r")

    def test_missing_secret_fails_closed(self):
        gw = _gateway(lambda request: httpx.Response(200, json={"status": True}), secret_key="")
        with pytest.raises(ExternalServiceError):
            gw.verify("r")


class TestVerify:

    def test_success(self):
        def handler(request):
            assert request.url.path == "/transaction/verify/order-1-xyz"
            return httpx.Response(200, json={
                "status": True,
                "data": {
                    "status": "success",
                    "amount": 16500,
                    "reference": "order-1-xyz",
                    "metadata": {"type": "order", "referenceId": 1},
                },
            })

        result = _gateway(handler).verify("order-1-xyz")
        assert result.success
        assert result.amount_cents == 16500
        assert result.metadata["type"] == "order"

    def test_abandoned_and_string_metadata(self):
        def handler(request):
            return httpx.Response(200, json={
                "status": True,
                "data": {"status": "abandoned", "amount": 16500, "metadata": ""},
            })

        result = _gateway(handler).verify("r")
        assert not result.success
        assert result.metadata == {}


class TestRefund:

    def test_partial_refund_payload(self):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"status": True, "data": {"status": "pending"}})

        _gateway(handler).refund(reference="r-1", amount_cents=500, reason="Artist ill")
        assert seen["body"] == {"transaction": "r-1", "amount": 500, "merchant_note": "Artist ill"}


class TestWebhookSignature:

    def test_valid_signature(self):
        gw = PaystackGateway(secret_key=TEST_SECRET)
        body = b'{"event":"charge.success"}'
        assert gw.validate_webhook_signature(body, sign(body))

    def test_tampered_body(self):
        gw = PaystackGateway(secret_key=TEST_SECRET)
        body = b'{"event":"charge.success"}'
        assert not gw.validate_webhook_signature(body + b" ", sign(body))

    def test_wrong_secret_or_missing_signature(self):
        gw = PaystackGateway(secret_key=TEST_SECRET)
        body = b"{}"
        assert not gw.validate_webhook_signature(body, sign(body, secret="other"))
        assert not gw.validate_webhook_signature(body, None)
        assert not PaystackGateway(secret_key="").validate_webhook_signature(body, sign(body, secret=""))

    def test_non_ascii_signature_is_a_mismatch(self):
        gw = PaystackGateway(secret_key=TEST_SECRET)
        body = b'{"event":"charge.success"}'
        assert gw.validate_webhook_signature(body, "é" * 10) is False
        assert gw.validate_webhook_signature(body, sign(body)[:-1] + "é") is False
        assert gw.validate_webhook_signature(body, f"  {sign(body)}\n") is True
