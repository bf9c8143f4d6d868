from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z

DISCOUNT_PERCENTAGE = "percentage"
DISCOUNT_FIXED = "fixed"
VALID_DISCOUNT_TYPES = (DISCOUNT_PERCENTAGE, DISCOUNT_FIXED)


class Coupon(db.Model):
    """
    Discount coupon.

    usage_count is bumped atomically when an order using the coupon commits;
    coupon_usages is the per-user log consulted for the per-user limit.
    """
    __tablename__ = "coupons"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_coupons_code"),
        db.Index("ix_coupons_active_window", "is_active", "start_date", "end_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(20), nullable=False)
    description = db.Column(db.String(200), nullable=True)

    discount_type = db.Column(db.String(16), nullable=False)  # percentage, fixed
    discount_value = db.Column(db.Integer, nullable=False)  # percent for percentage, minor units for fixed

    minimum_order_cents = db.Column(db.Integer, nullable=False, default=0)
    maximum_discount_cents = db.Column(db.Integer, nullable=True)  # cap, percentage only

    start_date = db.Column(db.DateTime(timezone=True), nullable=False)
    end_date = db.Column(db.DateTime(timezone=True), nullable=False)

    usage_limit_total = db.Column(db.Integer, nullable=True)  # None means unlimited
    usage_limit_per_user = db.Column(db.Integer, nullable=False, default=1)
    usage_count = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "description": self.description,
            "discount_type": self.discount_type,
            "discount_value": self.discount_value,
            "minimum_order_cents": self.minimum_order_cents,
            "maximum_discount_cents": self.maximum_discount_cents,
            "start_date": to_utc_z(self.start_date),
            "end_date": to_utc_z(self.end_date),
            "usage_limit_total": self.usage_limit_total,
            "usage_limit_per_user": self.usage_limit_per_user,
            "usage_count": self.usage_count,
            "remaining_uses": (
                max(0, self.usage_limit_total - self.usage_count)
                if self.usage_limit_total is not None else None
            ),
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class CouponUsage(db.Model):
    __tablename__ = "coupon_usages"
    __table_args__ = (
        db.Index("ix_coupon_usages_coupon_user", "coupon_id", "user_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    coupon_id = db.Column(db.Integer, db.ForeignKey("coupons.id"), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    order_number = db.Column(db.String(32), nullable=False)
    used_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    coupon = db.relationship("Coupon", backref=db.backref("usages", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "coupon_id": self.coupon_id,
            "user_id": self.user_id,
            "order_number": self.order_number,
            "used_at": to_utc_z(self.used_at),
        }
