# Overview: Customer notification outbox (queue once per dedupe key, deliver later).

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Booking, Notification, Order
from ..models.notifications import NOTIFICATION_QUEUED, NOTIFICATION_SENT
from ..time_utils import utcnow


def _format_naira(amount_cents: int) -> str:
    return f"NGN {amount_cents / 100:,.2f}"


def queue_notification(*, dedupe_key: str, kind: str, recipient: str, subject: str, body: str) -> bool:
    """
    Add an outbox row in the caller's transaction (no commit).

    Returns False when a notification with this dedupe key already exists.
    The insert runs in a SAVEPOINT so a duplicate does not poison the
    caller's transaction.
    """
    if db.session.query(Notification.id).filter_by(dedupe_key=dedupe_key).first():
        return False
    try:
        with db.session.begin_nested():
            db.session.add(Notification(
                dedupe_key=dedupe_key,
                kind=kind,
                recipient=recipient,
                subject=subject,
                body=body,
            ))
    except IntegrityError:
        return False
    return True


def queue_order_confirmation(order: Order) -> bool:
    lines = "\n".join(
        f"- {line.product_name}{f' ({line.variant_label})' if line.variant_label else ''}"
        f" x{line.quantity}: {_format_naira(line.line_total_cents)}"
        for line in order.lines
    )
    return queue_notification(
        dedupe_key=f"order-confirmed:{order.id}",
        kind="order_confirmation",
        recipient=order.customer_email,
        subject=f"Order confirmed - {order.order_number}",
        body=(
            f"Hi {order.customer_first_name},\n\n"
            f"We received your payment for order {order.order_number}.\n\n"
            f"{lines}\n\nTotal: {_format_naira(order.total_cents)}\n"
        ),
    )


def queue_bank_transfer_instructions(order: Order, bank_details: dict) -> bool:
    return queue_notification(
        dedupe_key=f"order-transfer-instructions:{order.id}",
        kind="bank_transfer_instructions",
        recipient=order.customer_email,
        subject=f"Payment instructions - {order.order_number}",
        body=(
            f"Hi {order.customer_first_name},\n\n"
            f"Please transfer {_format_naira(order.total_cents)} to:\n"
            f"{bank_details['bank_name']}\n"
            f"{bank_details['account_name']}\n"
            f"{bank_details['account_number']}\n\n"
            f"Use {order.order_number} as the transfer narration.\n"
        ),
    )


def queue_booking_confirmation(booking: Booking) -> bool:
    return queue_notification(
        dedupe_key=f"booking-confirmed:{booking.id}",
        kind="booking_confirmation",
        recipient=booking.customer_email,
        subject=f"Booking confirmed - {booking.booking_number}",
        body=(
            f"Hi {booking.customer_first_name},\n\n"
            f"Your {booking.service_name} appointment on "
            f"{booking.appointment_date.isoformat()} at {booking.slot_start} "
            f"({booking.location}) is confirmed.\n"
            f"Balance due at the studio: {_format_naira(booking.balance_cents)}\n"
        ),
    )


def deliver_pending(limit: int = 100) -> dict:
    """
    Drain queued notifications.

    There is no mail transport in this service; delivery is the log line
    (the mail relay tails it). Each row is committed as it is marked sent.
    """
    sender = current_app.config.get("NOTIFICATION_FROM_EMAIL")
    pending = (
        db.session.query(Notification)
        .filter_by(status=NOTIFICATION_QUEUED)
        .order_by(Notification.id.asc())
        .limit(limit)
        .all()
    )

    for note in pending:
        current_app.logger.info(
            "Delivering %s notification %s from %s to %s: %s",
            note.kind, note.id, sender, note.recipient, note.subject,
        )
        note.status = NOTIFICATION_SENT
        note.sent_at = utcnow()
        db.session.commit()

    return {"sent": len(pending)}
