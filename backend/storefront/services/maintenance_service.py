# Overview: Scheduled maintenance jobs (unpaid order expiry, session cleanup).

from __future__ import annotations

from datetime import timedelta

from flask import current_app

from ..errors import AppError
from ..extensions import db
from ..models import Order, SessionToken
from ..models.orders import (
    ORDER_PENDING,
    ORDER_PENDING_PAYMENT,
    ORDER_PENDING_VERIFICATION,
    PAYMENT_PAID,
)
from ..time_utils import utcnow
from . import order_service


def expire_unpaid_orders(*, hours: int | None = None) -> dict:
    """
    Cancel unpaid orders older than `hours`, releasing their stock.

    Goes through order_service.cancel_order() as the system actor, so stock
    release is exactly-once even if a customer cancels at the same moment.
    An order that fails to cancel is logged and skipped.
    """
    if hours is None:
        hours = current_app.config.get("UNPAID_ORDER_EXPIRY_HOURS", 72)
    cutoff = utcnow() - timedelta(hours=hours)

    order_ids = [
        row[0]
        for row in db.session.query(Order.id)
        .filter(
            Order.status.in_((ORDER_PENDING, ORDER_PENDING_PAYMENT, ORDER_PENDING_VERIFICATION)),
            Order.payment_status != PAYMENT_PAID,
            Order.created_at < cutoff,
        )
        .order_by(Order.id.asc())
        .all()
    ]

    expired, skipped = [], []
    for order_id in order_ids:
        try:
            order = order_service.cancel_order(
                order_id,
                actor=None,
                reason=f"Unpaid after {hours} hours",
                require_unpaid=True,
            )
            expired.append(order.order_number)
        except AppError as e:
            current_app.logger.warning("Could not expire order %s: %s", order_id, e.message)
            skipped.append(order_id)

    return {"expired": expired, "skipped": skipped}


def cleanup_sessions(*, retention_days: int = 30) -> int:
    """Delete sessions that expired more than retention_days ago."""
    cutoff = utcnow() - timedelta(days=retention_days)
    deleted = db.session.query(SessionToken).filter(
        SessionToken.expires_at < cutoff
    ).delete(synchronize_session=False)
    db.session.commit()
    return deleted
