from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow

TARGET_ORDER = "order"
TARGET_BOOKING = "booking"
TARGET_ENROLLMENT = "enrollment"
VALID_TARGET_KINDS = (TARGET_ORDER, TARGET_BOOKING, TARGET_ENROLLMENT)

PURPOSE_ORDER = "order"
PURPOSE_DEPOSIT = "deposit"
PURPOSE_BALANCE = "balance"
PURPOSE_ENROLLMENT = "enrollment"
VALID_PURPOSES = (PURPOSE_ORDER, PURPOSE_DEPOSIT, PURPOSE_BALANCE, PURPOSE_ENROLLMENT)

TX_INITIALIZED = "initialized"
TX_SUCCESS = "success"
TX_FAILED = "failed"
TX_AMOUNT_MISMATCH = "amount_mismatch"
TX_NEEDS_REFUND = "needs_refund"  # paid a target that another reference had already settled
TX_REFUNDED = "refunded"

WEBHOOK_RECEIVED = "received"
WEBHOOK_PROCESSED = "processed"
WEBHOOK_IGNORED = "ignored"
WEBHOOK_FAILED = "failed"


class PaymentTransaction(db.Model):
    """
    One gateway charge attempt, keyed by its reference.

    IDEMPOTENCY:
    applied_at is claimed with a conditional UPDATE (applied_at IS NULL) by
    the reconciler. Only the caller whose UPDATE hits a row applies the
    state transition; webhook replays and verify/webhook races see rowcount 0.
    """
    __tablename__ = "payment_transactions"
    __table_args__ = (
        db.UniqueConstraint("reference", name="uq_payment_transactions_reference"),
        db.Index("ix_payment_transactions_target", "target_kind", "target_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    reference = db.Column(db.String(128), nullable=False)

    target_kind = db.Column(db.String(16), nullable=False)
    target_id = db.Column(db.Integer, nullable=False)
    purpose = db.Column(db.String(16), nullable=False)

    amount_cents = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="NGN")
    status = db.Column(db.String(20), nullable=False, default=TX_INITIALIZED, index=True)

    authorization_url = db.Column(db.String(512), nullable=True)
    access_code = db.Column(db.String(128), nullable=True)
    provider_payload = db.Column(db.JSON, nullable=True)
    failure_reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    verified_at = db.Column(db.DateTime(timezone=True), nullable=True)
    applied_at = db.Column(db.DateTime(timezone=True), nullable=True)
    refunded_at = db.Column(db.DateTime(timezone=True), nullable=True)
    refund_amount_cents = db.Column(db.Integer, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "reference": self.reference,
            "target_kind": self.target_kind,
            "target_id": self.target_id,
            "purpose": self.purpose,
            "amount_cents": self.amount_cents,
            "currency": self.currency,
            "status": self.status,
            "authorization_url": self.authorization_url,
            "failure_reason": self.failure_reason,
            "created_at": to_utc_z(self.created_at),
            "verified_at": to_utc_z(self.verified_at) if self.verified_at else None,
            "applied_at": to_utc_z(self.applied_at) if self.applied_at else None,
            "refunded_at": to_utc_z(self.refunded_at) if self.refunded_at else None,
            "refund_amount_cents": self.refund_amount_cents,
        }


class WebhookEvent(db.Model):
    """Signature-valid gateway webhook, stored verbatim for audit and replay."""
    __tablename__ = "webhook_events"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    event = db.Column(db.String(64), nullable=True)
    reference = db.Column(db.String(128), nullable=True, index=True)
    payload = db.Column(db.JSON, nullable=False)
    status = db.Column(db.String(16), nullable=False, default=WEBHOOK_RECEIVED, index=True)
    error = db.Column(db.Text, nullable=True)
    attempts = db.Column(db.Integer, nullable=False, default=0)
    received_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "event": self.event,
            "reference": self.reference,
            "status": self.status,
            "error": self.error,
            "attempts": self.attempts,
            "received_at": to_utc_z(self.received_at),
            "processed_at": to_utc_z(self.processed_at) if self.processed_at else None,
        }
