from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow

# Order status
ORDER_PENDING_PAYMENT = "pending_payment"            # bank transfer, waiting for money
ORDER_PENDING_VERIFICATION = "pending_verification"  # gateway checkout started
ORDER_PENDING = "pending"
ORDER_PROCESSING = "processing"
ORDER_SHIPPED = "shipped"
ORDER_DELIVERED = "delivered"
ORDER_CANCELLED = "cancelled"

VALID_ORDER_STATUSES = (
    ORDER_PENDING_PAYMENT,
    ORDER_PENDING_VERIFICATION,
    ORDER_PENDING,
    ORDER_PROCESSING,
    ORDER_SHIPPED,
    ORDER_DELIVERED,
    ORDER_CANCELLED,
)

# Payment method
PAYMENT_METHOD_GATEWAY = "gateway"
PAYMENT_METHOD_BANK_TRANSFER = "bank_transfer"
VALID_PAYMENT_METHODS = (PAYMENT_METHOD_GATEWAY, PAYMENT_METHOD_BANK_TRANSFER)

# Payment status
PAYMENT_PENDING = "pending"
PAYMENT_AWAITING_TRANSFER = "awaiting_transfer"
PAYMENT_PAID = "paid"
PAYMENT_FAILED = "failed"
PAYMENT_REFUNDED = "refunded"


class Order(db.Model):
    """
    Order aggregate: frozen line snapshots, pricing, status and payment sub-state.

    PRICING INVARIANT: total = max(0, subtotal + shipping - discount).
    STOCK: reserved exactly once, when the order is created (see stock_service).
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("order_number", name="uq_orders_order_number"),
        db.Index("ix_orders_user_created", "user_id", "created_at"),
        db.Index("ix_orders_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(32), nullable=False)

    # Nullable for guest checkout
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    customer_first_name = db.Column(db.String(100), nullable=False)
    customer_last_name = db.Column(db.String(100), nullable=False)
    customer_email = db.Column(db.String(255), nullable=False)
    customer_phone = db.Column(db.String(32), nullable=False)

    shipping_street = db.Column(db.String(255), nullable=False)
    shipping_city = db.Column(db.String(100), nullable=False)
    shipping_state = db.Column(db.String(100), nullable=False)
    shipping_landmark = db.Column(db.String(255), nullable=True)
    delivery_zone = db.Column(db.String(64), nullable=False)

    subtotal_cents = db.Column(db.Integer, nullable=False)
    shipping_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)

    coupon_id = db.Column(db.Integer, db.ForeignKey("coupons.id"), nullable=True)
    coupon_code = db.Column(db.String(20), nullable=True)

    status = db.Column(db.String(24), nullable=False, index=True)

    payment_method = db.Column(db.String(16), nullable=False)
    payment_status = db.Column(db.String(20), nullable=False, index=True)
    payment_reference = db.Column(db.String(128), nullable=True, index=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)

    is_gift = db.Column(db.Boolean, nullable=False, default=False)
    gift_message = db.Column(db.String(500), nullable=True)
    customer_note = db.Column(db.Text, nullable=True)
    admin_note = db.Column(db.Text, nullable=True)

    tracking_number = db.Column(db.String(64), nullable=True)
    carrier = db.Column(db.String(64), nullable=True)

    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancellation_reason = db.Column(db.String(255), nullable=True)
    cancelled_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    lines = db.relationship("OrderLine", backref="order", lazy=True, order_by="OrderLine.id")
    history = db.relationship(
        "OrderStatusHistory",
        backref="order",
        lazy=True,
        order_by="OrderStatusHistory.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Order {self.order_number} status={self.status} payment={self.payment_status}>"

    def to_dict(self, include_history: bool = True) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "user_id": self.user_id,
            "customer": {
                "first_name": self.customer_first_name,
                "last_name": self.customer_last_name,
                "email": self.customer_email,
                "phone": self.customer_phone,
            },
            "shipping_address": {
                "street": self.shipping_street,
                "city": self.shipping_city,
                "state": self.shipping_state,
                "landmark": self.shipping_landmark,
            },
            "delivery_zone": {"zone": self.delivery_zone, "cost_cents": self.shipping_cents},
            "items": [line.to_dict() for line in self.lines],
            "pricing": {
                "subtotal_cents": self.subtotal_cents,
                "shipping_cents": self.shipping_cents,
                "discount_cents": self.discount_cents,
                "total_cents": self.total_cents,
            },
            "coupon_code": self.coupon_code,
            "status": self.status,
            "payment": {
                "method": self.payment_method,
                "status": self.payment_status,
                "reference": self.payment_reference,
                "paid_at": to_utc_z(self.paid_at) if self.paid_at else None,
            },
            "is_gift": self.is_gift,
            "gift_message": self.gift_message,
            "customer_note": self.customer_note,
            "tracking": {"tracking_number": self.tracking_number, "carrier": self.carrier},
            "delivered_at": to_utc_z(self.delivered_at) if self.delivered_at else None,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "cancellation_reason": self.cancellation_reason,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_history:
            data["status_history"] = [h.to_dict() for h in self.history]
        return data


class OrderLine(db.Model):
    """Frozen snapshot of what was bought, at the price it was bought."""
    __tablename__ = "order_lines"
    __table_args__ = (
        db.CheckConstraint("quantity >= 1", name="ck_order_lines_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=True)

    product_name = db.Column(db.String(200), nullable=False)
    product_sku = db.Column(db.String(64), nullable=False)
    variant_label = db.Column(db.String(100), nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "product_name": self.product_name,
            "product_sku": self.product_sku,
            "variant": self.variant_label,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
        }


class OrderStatusHistory(db.Model):
    __tablename__ = "order_status_history"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    status = db.Column(db.String(24), nullable=False)
    note = db.Column(db.String(255), nullable=True)
    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "note": self.note,
            "actor_user_id": self.actor_user_id,
            "created_at": to_utc_z(self.created_at),
        }
