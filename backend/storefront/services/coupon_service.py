# Overview: Coupon evaluation (pure) and usage recording (after the order commits).

"""
Coupon Evaluator

Checks run in a fixed order and the first failure wins:
  1. code exists and is active
  2. now within [start_date, end_date]
  3. order amount >= minimum order amount
  4. global usage count < total usage limit (when set)
  5. this user's usage count < per-user limit

evaluate_coupon() never writes. record_coupon_usage() is a separate step
the order workflow runs after its own commit, so a failed order never
consumes a coupon.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from flask import current_app
from sqlalchemy import func, or_, update
from sqlalchemy.exc import IntegrityError

from ..errors import AppError, ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Coupon, CouponUsage
from ..models.coupons import DISCOUNT_FIXED, DISCOUNT_PERCENTAGE
from ..time_utils import utcnow
from ..validation import ModelValidationPolicy, enforce_rules_coupon, validate_payload

REASON_NOT_FOUND = "not_found"
REASON_INACTIVE = "inactive"
REASON_NOT_STARTED = "not_started"
REASON_EXPIRED = "expired"
REASON_BELOW_MINIMUM = "below_minimum"
REASON_EXHAUSTED = "usage_limit_reached"
REASON_USER_LIMIT = "user_limit_reached"

_REASON_ERRORS: dict[str, type[AppError]] = {
    REASON_NOT_FOUND: NotFoundError,
    REASON_USER_LIMIT: ConflictError,
}

COUPON_POLICY = ModelValidationPolicy(
    writable_fields={
        "code", "description", "discount_type", "discount_value",
        "minimum_order_cents", "maximum_discount_cents", "start_date", "end_date",
        "usage_limit_total", "usage_limit_per_user", "is_active",
    },
    required_on_create={"code", "discount_type", "discount_value", "start_date", "end_date"},
)


@dataclass(frozen=True)
class CouponEvaluation:
    valid: bool
    discount_cents: int = 0
    reason: str | None = None
    message: str | None = None
    coupon: Coupon | None = None

    def raise_if_invalid(self) -> None:
        """Map a failed evaluation onto the error taxonomy (404 / 409 / 400)."""
        if self.valid:
            return
        error_cls = _REASON_ERRORS.get(self.reason, ValidationError)
        raise error_cls(self.message or "Invalid coupon", {"reason": self.reason})

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "discount_cents": self.discount_cents,
            "reason": self.reason,
            "message": self.message,
            "coupon": self.coupon.to_dict() if self.coupon is not None else None,
        }


def normalize_code(code: str | None) -> str:
    return (code or "").strip().upper()


def calculate_discount(coupon: Coupon, amount_cents: int) -> int:
    """
    Discount for an order amount.

    - 0 when amount is below the coupon minimum
    - percentage: round-half-up(amount * value / 100), capped by maximum_discount_cents
    - fixed: min(value, amount)
    """
    if amount_cents < (coupon.minimum_order_cents or 0):
        return 0

    if coupon.discount_type == DISCOUNT_PERCENTAGE:
        discount = (amount_cents * coupon.discount_value + 50) // 100
        if coupon.maximum_discount_cents is not None:
            discount = min(discount, coupon.maximum_discount_cents)
    elif coupon.discount_type == DISCOUNT_FIXED:
        discount = coupon.discount_value
    else:
        return 0

    return max(0, min(discount, amount_cents))


def user_usage_count(coupon_id: int, user_id: int) -> int:
    return (
        db.session.query(func.count(CouponUsage.id))
        .filter(CouponUsage.coupon_id == coupon_id, CouponUsage.user_id == user_id)
        .scalar()
        or 0
    )


def evaluate_coupon(
    code: str | None,
    user_id: int | None,
    order_amount_cents: int,
    *,
    now: datetime | None = None,
) -> CouponEvaluation:
    """Read-only validity check plus the discount the coupon would give."""
    normalized = normalize_code(code)
    coupon = db.session.query(Coupon).filter_by(code=normalized).first() if normalized else None

    if coupon is None:
        return CouponEvaluation(False, reason=REASON_NOT_FOUND, message="Coupon not found")
    if not coupon.is_active:
        return CouponEvaluation(False, reason=REASON_INACTIVE, message="Coupon is not active", coupon=coupon)

    now = now or utcnow()
    if now < coupon.start_date:
        return CouponEvaluation(False, reason=REASON_NOT_STARTED, message="Coupon is not yet valid", coupon=coupon)
    if now > coupon.end_date:
        return CouponEvaluation(False, reason=REASON_EXPIRED, message="Coupon has expired", coupon=coupon)

    if order_amount_cents < (coupon.minimum_order_cents or 0):
        return CouponEvaluation(
            False,
            reason=REASON_BELOW_MINIMUM,
            message=f"Minimum order amount is {coupon.minimum_order_cents}",
            coupon=coupon,
        )

    if coupon.usage_limit_total is not None and coupon.usage_count >= coupon.usage_limit_total:
        return CouponEvaluation(False, reason=REASON_EXHAUSTED, message="Coupon usage limit reached", coupon=coupon)

    if user_id is not None and user_usage_count(coupon.id, user_id) >= coupon.usage_limit_per_user:
        return CouponEvaluation(
            False,
            reason=REASON_USER_LIMIT,
            message="You have already used this coupon",
            coupon=coupon,
        )

    return CouponEvaluation(True, discount_cents=calculate_discount(coupon, order_amount_cents), coupon=coupon)


def record_coupon_usage(*, coupon_id: int, user_id: int | None, order_number: str) -> bool:
    """
    Count one use of a coupon and log it for the per-user limit. Commits.

    The increment is conditional on the total limit. Returns False when a
    concurrent checkout used the last slot first; the order stands and the
    overrun is logged for follow-up.
    """
    result = db.session.execute(
        update(Coupon)
        .where(
            Coupon.id == coupon_id,
            or_(Coupon.usage_limit_total.is_(None), Coupon.usage_count < Coupon.usage_limit_total),
        )
        .values(usage_count=Coupon.usage_count + 1)
        .execution_options(synchronize_session=False)
    )
    db.session.add(CouponUsage(coupon_id=coupon_id, user_id=user_id, order_number=order_number))
    db.session.commit()

    if not result.rowcount:
        current_app.logger.warning(
            "Coupon %s used past its total limit by order %s", coupon_id, order_number
        )
        return False
    return True


# =============================================================================
# ADMIN
# =============================================================================

def list_coupons(*, active_only: bool = False) -> list[Coupon]:
    q = db.session.query(Coupon)
    if active_only:
        q = q.filter(Coupon.is_active.is_(True))
    return q.order_by(Coupon.created_at.desc(), Coupon.id.desc()).all()


def create_coupon(payload: dict, *, created_by_user_id: int) -> Coupon:
    patch = validate_payload(model=Coupon, payload=payload, policy=COUPON_POLICY, partial=False)
    patch["code"] = normalize_code(patch["code"])
    enforce_rules_coupon(patch)

    coupon = Coupon(created_by_user_id=created_by_user_id, **patch)
    db.session.add(coupon)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError(f"Coupon code already exists: {patch['code']}")
    return coupon


def update_coupon(coupon_id: int, payload: dict) -> Coupon:
    coupon = db.session.get(Coupon, coupon_id)
    if not coupon:
        raise NotFoundError("Coupon not found")
    patch = validate_payload(model=Coupon, payload=payload, policy=COUPON_POLICY, partial=True)
    if "code" in patch:
        patch["code"] = normalize_code(patch["code"])
    merged = {
        "discount_type": coupon.discount_type,
        "start_date": coupon.start_date,
        "end_date": coupon.end_date,
        **patch,
    }
    enforce_rules_coupon(merged)
    for k, v in patch.items():
        setattr(coupon, k, v)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("Coupon code already exists")
    return coupon
