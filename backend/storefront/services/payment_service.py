# Overview: Payment initialization, verification, webhook intake, bank-transfer confirmation and refunds.

"""
Payment Service

WHY: Routes stay thin; every money movement goes through here and every
successful charge goes through reconciliation_service.

DESIGN NOTES:
- The amount charged is derived from the target (order total, booking leg,
  enrollment fee). A client-supplied amount must match it.
- Charge metadata carries type, referenceId and purpose so the webhook can
  be applied without guessing which booking leg was paid.
- Webhooks are stored before they are processed. After the signature check
  passes, processing errors are recorded on the event row and logged, and
  the gateway still gets a 200.
"""

from __future__ import annotations

import json
import secrets
import time

from flask import current_app

from ..errors import (
    AuthorizationError,
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    ValidationError,
)
from ..extensions import db
from ..models import Booking, Enrollment, Order, PaymentTransaction, User, WebhookEvent
from ..models.bookings import ACTIVE_BOOKING_STATUSES, REFUND_PENDING, REFUND_PROCESSED
from ..models.orders import (
    ORDER_CANCELLED,
    PAYMENT_METHOD_BANK_TRANSFER,
    PAYMENT_PAID,
    PAYMENT_REFUNDED,
)
from ..models.payments import (
    PURPOSE_BALANCE,
    PURPOSE_DEPOSIT,
    PURPOSE_ENROLLMENT,
    PURPOSE_ORDER,
    TARGET_BOOKING,
    TARGET_ENROLLMENT,
    TARGET_ORDER,
    TX_NEEDS_REFUND,
    TX_REFUNDED,
    TX_SUCCESS,
    VALID_TARGET_KINDS,
    WEBHOOK_FAILED,
    WEBHOOK_IGNORED,
    WEBHOOK_PROCESSED,
)
from ..time_utils import utcnow
from ..validation import coerce_int
from . import reconciliation_service
from .gateway import get_gateway

EVENT_CHARGE_SUCCESS = "charge.success"
EVENT_CHARGE_FAILED = "charge.failed"


# =============================================================================
# INITIALIZE
# =============================================================================

def _load_target(kind: str, reference_id: int):
    model = {TARGET_ORDER: Order, TARGET_BOOKING: Booking, TARGET_ENROLLMENT: Enrollment}[kind]
    target = db.session.get(model, reference_id)
    if target is None:
        raise NotFoundError(f"{kind.capitalize()} not found")
    return target


def _owner_id(kind: str, target) -> int | None:
    if kind == TARGET_ORDER:
        return target.user_id
    if kind == TARGET_BOOKING:
        return target.customer_id
    return target.student_id


def _charge_for(kind: str, target, purpose: str | None) -> tuple[int, str]:
    """(amount_cents, purpose) the gateway should collect for this target."""
    if kind == TARGET_ORDER:
        if target.status == ORDER_CANCELLED:
            raise ConflictError("Order is cancelled")
        if target.payment_status in (PAYMENT_PAID, PAYMENT_REFUNDED):
            raise ConflictError("Order is already paid")
        return target.total_cents, PURPOSE_ORDER

    if kind == TARGET_BOOKING:
        if target.status not in ACTIVE_BOOKING_STATUSES:
            raise ConflictError(f"Booking is {target.status}")
        if purpose is None:
            purpose = PURPOSE_BALANCE if target.deposit_paid else PURPOSE_DEPOSIT
        if purpose == PURPOSE_DEPOSIT:
            if target.deposit_paid:
                raise ConflictError("Deposit is already paid")
            return target.deposit_cents, PURPOSE_DEPOSIT
        if purpose == PURPOSE_BALANCE:
            if target.balance_paid:
                raise ConflictError("Balance is already paid")
            return target.balance_cents, PURPOSE_BALANCE
        raise ValidationError("purpose must be deposit or balance for bookings", {"field": "purpose"})

    if target.payment_status == PAYMENT_PAID:
        raise ConflictError("Enrollment is already paid")
    return target.amount_cents, PURPOSE_ENROLLMENT


def new_reference(kind: str, reference_id: int) -> str:
    return f"{kind}-{reference_id}-{int(time.time() * 1000)}-{secrets.token_hex(3)}"


def initialize_payment(
    *,
    kind: str,
    reference_id,
    actor: User | None,
    email: str | None = None,
    amount_cents=None,
    purpose: str | None = None,
) -> PaymentTransaction:
    """
    Start a gateway checkout for an order, booking leg or enrollment.

    actor=None is only allowed for guest orders (no owner).

    Raises:
        ValidationError: bad kind/purpose, or amount differs from what is owed
        NotFoundError: target missing, or not visible to the actor
        ConflictError: target already paid / cancelled / nothing to pay
        ExternalServiceError: gateway unreachable or refused
    """
    if kind not in VALID_TARGET_KINDS:
        raise ValidationError(f"type must be one of: {', '.join(VALID_TARGET_KINDS)}", {"field": "type"})
    reference_id = coerce_int(reference_id, "referenceId")

    target = _load_target(kind, reference_id)
    owner_id = _owner_id(kind, target)
    if actor is None:
        if owner_id is not None:
            raise AuthorizationError("Authentication required")
    elif not actor.is_admin and owner_id != actor.id:
        raise NotFoundError(f"{kind.capitalize()} not found")

    owed, purpose = _charge_for(kind, target, purpose)
    if owed <= 0:
        raise ConflictError("Nothing to pay")
    if amount_cents is not None and coerce_int(amount_cents, "amount") != owed:
        raise ValidationError(
            "Amount does not match the amount due",
            {"amount_due_cents": owed},
        )

    if email is None:
        if kind == TARGET_ENROLLMENT:
            student = db.session.get(User, target.student_id)
            email = student.email if student else None
        else:
            email = target.customer_email
    if not email:
        raise ValidationError("email is required", {"field": "email"})

    currency = current_app.config.get("STORE_CURRENCY", "NGN")
    reference = new_reference(kind, reference_id)
    checkout = get_gateway().initialize(
        amount_cents=owed,
        currency=currency,
        email=email,
        reference=reference,
        metadata={"type": kind, "referenceId": reference_id, "purpose": purpose},
    )

    tx = PaymentTransaction(
        reference=checkout.reference,
        target_kind=kind,
        target_id=reference_id,
        purpose=purpose,
        amount_cents=owed,
        currency=currency,
        authorization_url=checkout.authorization_url,
        access_code=checkout.access_code,
    )
    db.session.add(tx)
    db.session.commit()
    return tx


# =============================================================================
# VERIFY
# =============================================================================

def _metadata_target(metadata: dict) -> tuple[str | None, int | None, str | None]:
    kind = metadata.get("type")
    raw_id = metadata.get("referenceId")
    try:
        reference_id = int(raw_id) if raw_id is not None else None
    except (TypeError, ValueError):
        reference_id = None
    return kind, reference_id, metadata.get("purpose")


def _load_target_or_none(kind: str | None, reference_id: int | None):
    if kind not in VALID_TARGET_KINDS or reference_id is None:
        return None
    model = {TARGET_ORDER: Order, TARGET_BOOKING: Booking, TARGET_ENROLLMENT: Enrollment}[kind]
    return db.session.get(model, reference_id)


def verify_payment(reference: str) -> dict:
    """
    Client-driven verification (the customer lands back from checkout).

    Asks the gateway for the charge status and reconciles it exactly like
    the webhook would. Safe to call repeatedly.
    """
    reference = (reference or "").strip()
    if not reference:
        raise ValidationError("reference is required")

    tx = db.session.query(PaymentTransaction).filter_by(reference=reference).first()
    result = get_gateway().verify(reference)

    kind, reference_id, purpose = _metadata_target(result.metadata)
    if tx is not None:
        kind, reference_id, purpose = tx.target_kind, tx.target_id, tx.purpose
    if kind not in VALID_TARGET_KINDS or reference_id is None:
        raise NotFoundError("Unknown payment reference")

    if result.success:
        outcome = reconciliation_service.apply_successful_charge(
            reference=reference,
            kind=kind,
            reference_id=reference_id,
            amount_cents=result.amount_cents,
            purpose=purpose,
            payload=result.raw,
        )
        status = "success"
    else:
        reconciliation_service.record_failed_charge(
            reference=reference, kind=kind, reference_id=reference_id, payload=result.raw
        )
        outcome = None
        status = "failed"

    target = _load_target_or_none(kind, reference_id)
    return {
        "status": status,
        "gateway_status": result.status,
        "reference": reference,
        "reconciliation": outcome.to_dict() if outcome else None,
        "target": target.to_dict() if target is not None else None,
    }


# =============================================================================
# WEBHOOK
# =============================================================================

def receive_webhook(raw_body: bytes, signature: str | None) -> WebhookEvent:
    """
    Validate, store and process a gateway webhook.

    Raises ValidationError (400) for a bad signature or a body that is not a
    JSON object. Anything that goes wrong after that is stored on the event.
    """
    if not get_gateway().validate_webhook_signature(raw_body or b"", signature):
        raise ValidationError("Invalid webhook signature")

    try:
        payload = json.loads(raw_body)
    except (TypeError, ValueError):
        raise ValidationError("Malformed webhook payload")
    if not isinstance(payload, dict):
        raise ValidationError("Malformed webhook payload")

    data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
    event = WebhookEvent(
        event=str(payload.get("event") or "")[:64] or None,
        reference=str(data.get("reference") or "")[:128] or None,
        payload=payload,
    )
    db.session.add(event)
    db.session.commit()

    process_webhook_event(event)
    return event


def _dispatch(event: WebhookEvent) -> tuple[str, str | None]:
    payload = event.payload or {}
    data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
    reference = data.get("reference")
    metadata = data.get("metadata") if isinstance(data.get("metadata"), dict) else {}
    kind, reference_id, purpose = _metadata_target(metadata)

    if event.event == EVENT_CHARGE_SUCCESS:
        if not reference:
            raise ValidationError("charge.success without data.reference")
        outcome = reconciliation_service.apply_successful_charge(
            reference=reference,
            kind=kind,
            reference_id=reference_id,
            amount_cents=coerce_int(data.get("amount"), "data.amount"),
            purpose=purpose,
            payload=payload,
            currency=data.get("currency"),
        )
        if outcome.status in (reconciliation_service.OUTCOME_TARGET_MISSING, reconciliation_service.OUTCOME_UNKNOWN_KIND):
            return WEBHOOK_FAILED, outcome.detail
        if outcome.applied:
            return WEBHOOK_PROCESSED, None
        return WEBHOOK_IGNORED, outcome.status

    if event.event == EVENT_CHARGE_FAILED and reference:
        reconciliation_service.record_failed_charge(
            reference=reference, kind=kind, reference_id=reference_id, payload=payload
        )
        return WEBHOOK_PROCESSED, None

    return WEBHOOK_IGNORED, f"Unhandled event {event.event}"


def process_webhook_event(event: WebhookEvent) -> WebhookEvent:
    """Run (or re-run) a stored event; never raises."""
    event_id = event.id
    try:
        status, note = _dispatch(event)
    except Exception as exc:
        db.session.rollback()
        current_app.logger.exception(
            "PAYMENT ALERT: webhook event %s failed | reference=%s payload=%r",
            event_id, event.reference, event.payload,
        )
        status, note = WEBHOOK_FAILED, str(exc) or exc.__class__.__name__

    event = db.session.get(WebhookEvent, event_id)
    event.status = status
    event.error = note
    event.attempts = (event.attempts or 0) + 1
    event.processed_at = utcnow()
    db.session.commit()
    return event


def replay_webhook_event(event_id: int) -> WebhookEvent:
    event = db.session.get(WebhookEvent, event_id)
    if event is None:
        raise NotFoundError(f"Webhook event {event_id} not found")
    return process_webhook_event(event)


# =============================================================================
# BANK TRANSFER
# =============================================================================

def confirm_bank_transfer(order_id: int, *, admin: User, note: str | None = None) -> Order:
    """
    Admin confirms money arrived by bank transfer. Goes through the same
    reconciler as gateway charges, keyed by the order number, so a double
    click is a no-op.
    """
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFoundError("Order not found")
    if order.payment_method != PAYMENT_METHOD_BANK_TRANSFER:
        raise ConflictError("Order is not a bank transfer order")
    if order.status == ORDER_CANCELLED:
        raise ConflictError("Order is cancelled")

    outcome = reconciliation_service.apply_successful_charge(
        reference=f"BANK-{order.order_number}",
        kind=TARGET_ORDER,
        reference_id=order.id,
        amount_cents=order.total_cents,
        purpose=PURPOSE_ORDER,
        payload={"source": "bank_transfer", "confirmed_by_user_id": admin.id, "note": note},
    )
    if outcome.needs_attention:
        raise ConflictError(outcome.detail or "Could not confirm payment", outcome.to_dict())

    db.session.expire_all()
    return db.session.get(Order, order_id)


# =============================================================================
# REFUNDS
# =============================================================================

def refund_payment(
    *,
    reference: str,
    admin: User,
    amount_cents=None,
    reason: str | None = None,
) -> PaymentTransaction:
    """
    Refund an applied charge through the gateway (admin).

    Bank-transfer payments are refunded outside the gateway; their
    references start with BANK- and are rejected here, as are FREE-
    settlements of zero-total orders. A partial refund leaves the target
    paid; only refunding the whole charge marks it refunded.
    """
    tx = db.session.query(PaymentTransaction).filter_by(reference=(reference or "").strip()).first()
    if tx is None:
        raise NotFoundError("Payment not found")
    if tx.status == TX_REFUNDED:
        raise ConflictError("Payment is already refunded")
    if tx.status not in (TX_SUCCESS, TX_NEEDS_REFUND) or tx.applied_at is None:
        raise ConflictError(f"Payment is {tx.status}; only successful payments can be refunded")
    if tx.reference.startswith("BANK-"):
        raise ConflictError("Bank transfer payments are refunded manually")
    if tx.reference.startswith("FREE-") or tx.amount_cents <= 0:
        raise ConflictError("Nothing was charged for this payment")

    amount = coerce_int(amount_cents, "amount_cents") if amount_cents is not None else None
    if amount is not None and not (0 < amount <= tx.amount_cents):
        raise ValidationError("amount_cents must be between 1 and the amount paid", {"amount_paid_cents": tx.amount_cents})

    try:
        get_gateway().refund(reference=tx.reference, amount_cents=amount, reason=reason)
    except ExternalServiceError:
        current_app.logger.exception("Refund failed for %s", tx.reference)
        raise

    # A second payment never settled its target, so the target stays as it is
    settled_target = tx.status == TX_SUCCESS
    tx.status = TX_REFUNDED
    tx.refunded_at = utcnow()
    tx.refund_amount_cents = amount if amount is not None else tx.amount_cents

    target = _load_target_or_none(tx.target_kind, tx.target_id) if settled_target else None
    full_refund = tx.refund_amount_cents == tx.amount_cents
    if tx.target_kind in (TARGET_ORDER, TARGET_ENROLLMENT) and target is not None and full_refund:
        target.payment_status = PAYMENT_REFUNDED
    elif tx.target_kind == TARGET_BOOKING and target is not None and target.refund_status == REFUND_PENDING:
        target.refund_status = REFUND_PROCESSED

    current_app.logger.info(
        "Refunded %s (%s) for %s %s by admin %s",
        tx.reference, tx.refund_amount_cents, tx.target_kind, tx.target_id, admin.id,
    )
    db.session.commit()
    return tx


def list_webhook_events(*, status: str | None = None, limit: int = 100) -> list[WebhookEvent]:
    q = db.session.query(WebhookEvent)
    if status:
        q = q.filter(WebhookEvent.status == status)
    return q.order_by(WebhookEvent.id.desc()).limit(limit).all()


__all__ = [
    "initialize_payment",
    "verify_payment",
    "receive_webhook",
    "process_webhook_event",
    "replay_webhook_event",
    "confirm_bank_transfer",
    "refund_payment",
    "list_webhook_events",
]
