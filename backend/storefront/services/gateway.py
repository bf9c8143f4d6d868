# Overview: Paystack-compatible payment gateway client (initialize, verify, refund, webhook signatures).

"""
Payment Gateway Adapter

Amounts cross this boundary in minor units (kobo), which is what the
gateway speaks. Calls use a bounded timeout and are never retried here:
a charge initialization that timed out may still have happened, so the
caller decides what to do (the reconciler is idempotent per reference).

Webhook signature: HMAC-SHA512 hex digest of the raw request body keyed with
the secret key, sent in the x-paystack-signature header. Validation fails
closed: no secret, no signature, or any mismatch is a rejection.
"""

from __future__ import annotations

import hashlib
import hmac
from dataclasses import dataclass, field

import httpx
from flask import current_app

from ..errors import ExternalServiceError

SIGNATURE_HEADER = "x-paystack-signature"


@dataclass(frozen=True)
class CheckoutSession:
    authorization_url: str
    access_code: str | None
    reference: str

    def to_dict(self) -> dict:
        return {
            "authorization_url": self.authorization_url,
            "access_code": self.access_code,
            "reference": self.reference,
        }


@dataclass(frozen=True)
class VerificationResult:
    success: bool
    amount_cents: int
    status: str
    reference: str
    metadata: dict = field(default_factory=dict)
    raw: dict = field(default_factory=dict)


class PaystackGateway:
    def __init__(
        self,
        *,
        secret_key: str,
        base_url: str = "https://api.paystack.co",
        callback_url: str | None = None,
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.secret_key = secret_key or ""
        self.base_url = base_url.rstrip("/")
        self.callback_url = callback_url
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_config(cls, config) -> "PaystackGateway":
        return cls(
            secret_key=config.get("PAYSTACK_SECRET_KEY", ""),
            base_url=config.get("PAYSTACK_BASE_URL", "https://api.paystack.co"),
            callback_url=config.get("PAYSTACK_CALLBACK_URL"),
            timeout=config.get("PAYMENT_GATEWAY_TIMEOUT", 10.0),
        )

    def _client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self._transport,
            headers={
                "Authorization": f"Bearer {self.secret_key}",
                "Content-Type": "application/json",
            },
        )

    def _request(self, method: str, path: str, *, json: dict | None = None) -> dict:
        """
        One HTTP call, no retry. Returns the "data" object of a successful
        envelope; transport errors, non-2xx and status=false all raise
        ExternalServiceError.
        """
        if not self.secret_key:
            raise ExternalServiceError("Payment gateway is not configured")

        try:
            with self._client() as client:
                resp = client.request(method, path, json=json)
        except httpx.TimeoutException as exc:
            raise ExternalServiceError("Payment gateway timed out", {"path": path}) from exc
        except httpx.RequestError as exc:
            raise ExternalServiceError("Payment gateway unreachable", {"path": path}) from exc

        try:
            body = resp.json()
        except ValueError:
            body = {}

        if resp.status_code >= 400 or not body.get("status"):
            message = body.get("message") or f"Payment gateway error (HTTP {resp.status_code})"
            raise ExternalServiceError(message, {"path": path, "http_status": resp.status_code})

        return body.get("data") or {}

    def initialize(
        self,
        *,
        amount_cents: int,
        currency: str,
        email: str,
        reference: str,
        metadata: dict | None = None,
        callback_url: str | None = None,
    ) -> CheckoutSession:
        payload = {
            "amount": int(amount_cents),
            "currency": currency,
            "email": email,
            "reference": reference,
            "metadata": metadata or {},
        }
        callback = callback_url or self.callback_url
        if callback:
            payload["callback_url"] = callback

        data = self._request("POST", "/transaction/initialize", json=payload)
        if not data.get("authorization_url"):
            raise ExternalServiceError("Payment gateway returned no authorization URL")

        return CheckoutSession(
            authorization_url=data["authorization_url"],
            access_code=data.get("access_code"),
            reference=data.get("reference") or reference,
        )

    def verify(self, reference: str) -> VerificationResult:
        data = self._request("GET", f"/transaction/verify/{reference}")
        status = data.get("status") or "unknown"
        metadata = data.get("metadata")
        return VerificationResult(
            success=status == "success",
            amount_cents=int(data.get("amount") or 0),
            status=status,
            reference=data.get("reference") or reference,
            metadata=metadata if isinstance(metadata, dict) else {},
            raw=data,
        )

    def refund(self, *, reference: str, amount_cents: int | None = None, reason: str | None = None) -> dict:
        payload: dict = {"transaction": reference}
        if amount_cents is not None:
            payload["amount"] = int(amount_cents)
        if reason:
            payload["merchant_note"] = reason
        return self._request("POST", "/refund", json=payload)

    def validate_webhook_signature(self, raw_body: bytes, signature: str | None) -> bool:
        if not self.secret_key or not signature:
            return False
        expected = hmac.new(self.secret_key.encode("utf-8"), raw_body, hashlib.sha512).hexdigest()
        # Bytes on both sides: a non-ASCII header is a mismatch, never an error
        return hmac.compare_digest(expected.encode("ascii"), signature.strip().encode("utf-8", "replace"))


def get_gateway():
    """The gateway bound to the running app (tests swap in a fake)."""
    return current_app.extensions["payment_gateway"]
