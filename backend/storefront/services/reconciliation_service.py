# Overview: Applies verified gateway charges to orders, bookings and enrollments exactly once.

"""
Payment Reconciler

Both entry points (client-driven verify and the gateway webhook) end up in
apply_successful_charge(). At-least-once delivery and verify/webhook races
are made harmless by a claim on the payment_transactions row:

  UPDATE payment_transactions SET applied_at = now
   WHERE reference = :ref AND applied_at IS NULL

Only the caller whose UPDATE hits a row goes on to transition the target.
A reference we never initialized locally (bank transfer confirmation, an
initialize call that timed out after the gateway accepted it) is claimed by
inserting the row; the unique reference makes a concurrent insert lose.

The claim and the target transition commit together, so a crash between
them leaves nothing claimed.

Stock is never touched here: it was reserved when the order was created.

ALERTS: anything a human must reconcile (missing target, amount mismatch,
a second payment for a settled target, money for a cancelled order/booking)
is logged at ERROR level with the reference and payload. Callers do not raise these to the gateway.
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Booking, Enrollment, Order, OrderStatusHistory, PaymentTransaction
from ..models.bookings import BOOKING_CANCELLED, BOOKING_PENDING, BOOKING_CONFIRMED
from ..models.enrollments import ENROLLMENT_ACTIVE, ENROLLMENT_CANCELLED, ENROLLMENT_PENDING
from ..models.orders import ORDER_CANCELLED, ORDER_PROCESSING, PAYMENT_FAILED, PAYMENT_PAID
from ..models.payments import (
    PURPOSE_BALANCE,
    PURPOSE_DEPOSIT,
    PURPOSE_ENROLLMENT,
    PURPOSE_ORDER,
    TARGET_BOOKING,
    TARGET_ENROLLMENT,
    TARGET_ORDER,
    TX_AMOUNT_MISMATCH,
    TX_FAILED,
    TX_NEEDS_REFUND,
    TX_SUCCESS,
)
from ..time_utils import utcnow
from . import notification_service
from .concurrency import lock_for_update, run_with_retry

OUTCOME_APPLIED = "applied"
OUTCOME_DUPLICATE = "duplicate"
OUTCOME_ALREADY_PAID = "already_paid"
OUTCOME_DUPLICATE_PAYMENT = "duplicate_payment"
OUTCOME_AMOUNT_MISMATCH = "amount_mismatch"
OUTCOME_TARGET_MISSING = "target_missing"
OUTCOME_TARGET_CANCELLED = "target_cancelled"
OUTCOME_UNKNOWN_KIND = "unknown_kind"

PURPOSE_FULL = "full"  # booking paid in one charge (deposit + balance)

DEFAULT_PURPOSE = {
    TARGET_ORDER: PURPOSE_ORDER,
    TARGET_ENROLLMENT: PURPOSE_ENROLLMENT,
}


@dataclass(frozen=True)
class ReconcileOutcome:
    status: str
    reference: str
    kind: str | None = None
    target_id: int | None = None
    detail: str | None = None

    @property
    def applied(self) -> bool:
        return self.status == OUTCOME_APPLIED

    @property
    def needs_attention(self) -> bool:
        return self.status in (
            OUTCOME_AMOUNT_MISMATCH,
            OUTCOME_DUPLICATE_PAYMENT,
            OUTCOME_TARGET_MISSING,
            OUTCOME_TARGET_CANCELLED,
            OUTCOME_UNKNOWN_KIND,
        )

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "reference": self.reference,
            "kind": self.kind,
            "target_id": self.target_id,
            "detail": self.detail,
        }


def _alert(message: str, *, reference: str, payload) -> None:
    current_app.logger.error("PAYMENT ALERT: %s | reference=%s payload=%r", message, reference, payload)


def _already_paid(tx, kind: str, target_id: int, label: str, paid_reference: str | None, payload) -> ReconcileOutcome:
    """A settled target charged again under a different reference: the money has to go back."""
    if tx.reference == paid_reference:
        return ReconcileOutcome(OUTCOME_ALREADY_PAID, tx.reference, kind, target_id)
    tx.status = TX_NEEDS_REFUND
    tx.failure_reason = f"{label} already paid by {paid_reference}"
    _alert(f"Second payment for {label}; refund required", reference=tx.reference, payload=payload)
    return ReconcileOutcome(OUTCOME_DUPLICATE_PAYMENT, tx.reference, kind, target_id, tx.failure_reason)


# =============================================================================
# CLAIM
# =============================================================================

def _claim(
    *,
    reference: str,
    kind: str,
    reference_id: int,
    amount_cents: int,
    purpose: str | None,
    payload,
    currency: str | None,
) -> PaymentTransaction | None:
    """
    Claim the right to apply this reference. Returns the claimed row, or
    None when another caller already applied it.
    """
    now = utcnow()
    tx = db.session.query(PaymentTransaction).filter_by(reference=reference).first()

    if tx is None:
        tx = PaymentTransaction(
            reference=reference,
            target_kind=kind,
            target_id=reference_id,
            purpose=purpose or DEFAULT_PURPOSE.get(kind, PURPOSE_ORDER),
            amount_cents=amount_cents,
            currency=currency or current_app.config.get("STORE_CURRENCY", "NGN"),
            status=TX_SUCCESS,
            provider_payload=payload,
            verified_at=now,
            applied_at=now,
        )
        db.session.add(tx)
        try:
            db.session.flush()
            return tx
        except IntegrityError:
            # Lost the insert race. Nothing else has been written in this
            # transaction yet, so roll back and fall through to the claim.
            db.session.rollback()
            tx = db.session.query(PaymentTransaction).filter_by(reference=reference).first()
            if tx is None:
                raise

    result = db.session.execute(
        update(PaymentTransaction)
        .where(PaymentTransaction.id == tx.id, PaymentTransaction.applied_at.is_(None))
        .values(applied_at=now, verified_at=now, status=TX_SUCCESS, provider_payload=payload)
        .execution_options(synchronize_session=False)
    )
    if not result.rowcount:
        return None
    db.session.refresh(tx)
    return tx


# =============================================================================
# TARGETS
# =============================================================================

def _apply_to_order(tx: PaymentTransaction, amount_cents: int, payload) -> ReconcileOutcome:
    ref = tx.reference
    order = lock_for_update(db.session.query(Order).filter_by(id=tx.target_id)).first()
    if order is None:
        return ReconcileOutcome(OUTCOME_TARGET_MISSING, ref, TARGET_ORDER, tx.target_id, "Order not found")

    if order.payment_status == PAYMENT_PAID:
        return _already_paid(
            tx, TARGET_ORDER, order.id, f"order {order.order_number}", order.payment_reference, payload,
        )

    if amount_cents != order.total_cents:
        tx.status = TX_AMOUNT_MISMATCH
        tx.failure_reason = f"Paid {amount_cents}, order total {order.total_cents}"
        _alert(f"Amount mismatch for order {order.order_number}: {tx.failure_reason}", reference=ref, payload=payload)
        return ReconcileOutcome(OUTCOME_AMOUNT_MISMATCH, ref, TARGET_ORDER, order.id, tx.failure_reason)

    now = utcnow()
    order.payment_status = PAYMENT_PAID
    order.payment_reference = ref
    order.paid_at = now

    if order.status == ORDER_CANCELLED:
        db.session.add(OrderStatusHistory(
            order_id=order.id,
            status=order.status,
            note=f"Payment {ref} received after cancellation; refund required",
        ))
        _alert(f"Payment received for cancelled order {order.order_number}", reference=ref, payload=payload)
        return ReconcileOutcome(OUTCOME_TARGET_CANCELLED, ref, TARGET_ORDER, order.id, "Order is cancelled")

    order.status = ORDER_PROCESSING
    db.session.add(OrderStatusHistory(
        order_id=order.id,
        status=ORDER_PROCESSING,
        note=f"Payment confirmed ({ref})",
    ))
    notification_service.queue_order_confirmation(order)
    return ReconcileOutcome(OUTCOME_APPLIED, ref, TARGET_ORDER, order.id)


def resolve_booking_purpose(booking: Booking, amount_cents: int, purpose: str | None) -> str | None:
    """
    Explicit purpose wins. Without one, fall back to matching the amount
    against the unpaid legs (deposit first), then the full price.
    """
    if purpose in (PURPOSE_DEPOSIT, PURPOSE_BALANCE):
        return purpose
    if amount_cents == booking.deposit_cents and not booking.deposit_paid:
        return PURPOSE_DEPOSIT
    if amount_cents == booking.balance_cents and not booking.balance_paid:
        return PURPOSE_BALANCE
    if amount_cents == booking.service_price_cents and not booking.deposit_paid and not booking.balance_paid:
        return PURPOSE_FULL
    return None


def _apply_to_booking(tx: PaymentTransaction, amount_cents: int, purpose: str | None, payload) -> ReconcileOutcome:
    ref = tx.reference
    booking = lock_for_update(db.session.query(Booking).filter_by(id=tx.target_id)).first()
    if booking is None:
        return ReconcileOutcome(OUTCOME_TARGET_MISSING, ref, TARGET_BOOKING, tx.target_id, "Booking not found")

    leg = resolve_booking_purpose(booking, amount_cents, purpose)
    expected = {
        PURPOSE_DEPOSIT: booking.deposit_cents,
        PURPOSE_BALANCE: booking.balance_cents,
        PURPOSE_FULL: booking.service_price_cents,
    }.get(leg)

    label = f"booking {booking.booking_number}"
    if leg in (PURPOSE_DEPOSIT, PURPOSE_FULL) and booking.deposit_paid:
        return _already_paid(tx, TARGET_BOOKING, booking.id, f"{label} deposit", booking.deposit_reference, payload)
    if leg == PURPOSE_BALANCE and booking.balance_paid:
        return _already_paid(tx, TARGET_BOOKING, booking.id, f"{label} balance", booking.balance_reference, payload)

    if leg is None or amount_cents != expected:
        tx.status = TX_AMOUNT_MISMATCH
        tx.failure_reason = (
            f"Paid {amount_cents}; deposit {booking.deposit_cents}, balance {booking.balance_cents}"
        )
        _alert(f"Cannot match payment to booking {booking.booking_number}", reference=ref, payload=payload)
        return ReconcileOutcome(OUTCOME_AMOUNT_MISMATCH, ref, TARGET_BOOKING, booking.id, tx.failure_reason)

    tx.purpose = PURPOSE_DEPOSIT if leg == PURPOSE_FULL else leg
    now = utcnow()
    if leg in (PURPOSE_DEPOSIT, PURPOSE_FULL):
        booking.deposit_paid = True
        booking.deposit_reference = ref
        booking.deposit_paid_at = now
    if leg in (PURPOSE_BALANCE, PURPOSE_FULL):
        booking.balance_paid = True
        booking.balance_reference = ref
        booking.balance_paid_at = now
    booking.payment_method = booking.payment_method or "paystack"

    if booking.status == BOOKING_CANCELLED:
        booking.payment_after_cancellation = True
        _alert(f"Payment received for cancelled booking {booking.booking_number}", reference=ref, payload=payload)
        return ReconcileOutcome(OUTCOME_TARGET_CANCELLED, ref, TARGET_BOOKING, booking.id, "Booking is cancelled")

    if leg in (PURPOSE_DEPOSIT, PURPOSE_FULL) and booking.status == BOOKING_PENDING:
        booking.status = BOOKING_CONFIRMED
        notification_service.queue_booking_confirmation(booking)

    return ReconcileOutcome(OUTCOME_APPLIED, ref, TARGET_BOOKING, booking.id, leg)


def _apply_to_enrollment(tx: PaymentTransaction, amount_cents: int, payload) -> ReconcileOutcome:
    ref = tx.reference
    enrollment = lock_for_update(db.session.query(Enrollment).filter_by(id=tx.target_id)).first()
    if enrollment is None:
        return ReconcileOutcome(OUTCOME_TARGET_MISSING, ref, TARGET_ENROLLMENT, tx.target_id, "Enrollment not found")

    if enrollment.payment_status == PAYMENT_PAID:
        return _already_paid(
            tx, TARGET_ENROLLMENT, enrollment.id, f"enrollment {enrollment.enrollment_number}",
            enrollment.payment_reference, payload,
        )

    if amount_cents != enrollment.amount_cents:
        tx.status = TX_AMOUNT_MISMATCH
        tx.failure_reason = f"Paid {amount_cents}, enrollment amount {enrollment.amount_cents}"
        _alert(f"Amount mismatch for enrollment {enrollment.enrollment_number}", reference=ref, payload=payload)
        return ReconcileOutcome(OUTCOME_AMOUNT_MISMATCH, ref, TARGET_ENROLLMENT, enrollment.id, tx.failure_reason)

    enrollment.payment_status = PAYMENT_PAID
    enrollment.payment_reference = ref
    enrollment.paid_at = utcnow()

    if enrollment.status == ENROLLMENT_CANCELLED:
        _alert(f"Payment received for cancelled enrollment {enrollment.enrollment_number}", reference=ref, payload=payload)
        return ReconcileOutcome(OUTCOME_TARGET_CANCELLED, ref, TARGET_ENROLLMENT, enrollment.id)

    if enrollment.status == ENROLLMENT_PENDING:
        enrollment.status = ENROLLMENT_ACTIVE
    return ReconcileOutcome(OUTCOME_APPLIED, ref, TARGET_ENROLLMENT, enrollment.id)


# =============================================================================
# ENTRY POINTS
# =============================================================================

def apply_successful_charge(
    *,
    reference: str,
    kind: str | None,
    reference_id: int | None,
    amount_cents: int,
    purpose: str | None = None,
    payload=None,
    currency: str | None = None,
) -> ReconcileOutcome:
    """
    Apply a verified successful charge. Safe to call any number of times
    for the same reference; only the first call changes anything.

    kind/reference_id/purpose come from the charge metadata; a locally
    initialized transaction row overrides them. Never raises for business
    outcomes (missing target, mismatch); those come back as the outcome
    status and are logged as alerts.
    """
    def _op() -> ReconcileOutcome:
        known = db.session.query(PaymentTransaction).filter_by(reference=reference).first()
        target_kind = known.target_kind if known else kind
        target_id = known.target_id if known else reference_id
        target_purpose = known.purpose if known and known.purpose else purpose

        if target_kind not in (TARGET_ORDER, TARGET_BOOKING, TARGET_ENROLLMENT) or target_id is None:
            db.session.rollback()
            _alert(f"Charge has no usable target (type={kind!r}, id={reference_id!r})", reference=reference, payload=payload)
            return ReconcileOutcome(OUTCOME_UNKNOWN_KIND, reference, kind, reference_id, "Unknown payment target")

        tx = _claim(
            reference=reference,
            kind=target_kind,
            reference_id=int(target_id),
            amount_cents=amount_cents,
            purpose=target_purpose,
            payload=payload,
            currency=currency,
        )
        if tx is None:
            db.session.rollback()
            return ReconcileOutcome(OUTCOME_DUPLICATE, reference, target_kind, int(target_id))

        if target_kind == TARGET_ORDER:
            outcome = _apply_to_order(tx, amount_cents, payload)
        elif target_kind == TARGET_BOOKING:
            outcome = _apply_to_booking(tx, amount_cents, target_purpose, payload)
        else:
            outcome = _apply_to_enrollment(tx, amount_cents, payload)

        if outcome.status == OUTCOME_TARGET_MISSING:
            # Leave the reference unclaimed so a replay can apply it later
            db.session.rollback()
            _alert(f"{target_kind} {target_id} not found for successful charge", reference=reference, payload=payload)
            return outcome

        db.session.commit()
        return outcome

    try:
        return run_with_retry(_op)
    except Exception:
        db.session.rollback()
        raise


def record_failed_charge(*, reference: str, kind: str | None, reference_id: int | None, payload=None) -> None:
    """
    Mark a failed charge. An order that is already paid keeps its paid state;
    a failed retry never regresses payment.
    """
    tx = db.session.query(PaymentTransaction).filter_by(reference=reference).first()
    if tx is not None:
        if tx.applied_at is None:
            tx.status = TX_FAILED
            tx.verified_at = utcnow()
            tx.provider_payload = payload
        kind, reference_id = tx.target_kind, tx.target_id

    if kind == TARGET_ORDER and reference_id is not None:
        order = lock_for_update(db.session.query(Order).filter_by(id=int(reference_id))).first()
        if order is not None and order.payment_status != PAYMENT_PAID:
            order.payment_status = PAYMENT_FAILED

    db.session.commit()
