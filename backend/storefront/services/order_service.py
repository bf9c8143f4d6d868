# Overview: Order creation, admin status transitions and cancellation.

"""
Order Workflow

CREATION (one DB transaction):
  read-check products and stock -> price lines -> evaluate coupon ->
  allocate order number -> insert order + line snapshots ->
  reserve stock per line -> status history -> clear cart -> COMMIT
Any failure before COMMIT rolls back every reservation made so far.
Coupon usage is recorded after the commit; gateway checkout is started
after that (a gateway failure leaves a valid, unpaid order). A total of 0
skips checkout: the reconciler settles it under FREE-<order_number>.

STATUS (monotonic):
  pending_payment | pending_verification | pending  (rank 0)
  -> processing (1) -> shipped (2) -> delivered (3)
cancelled is reachable only through cancel_order() and only from rank 0
or processing. Payment state is owned by the reconciler; this module never
moves payment_status backwards.
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..errors import (
    AppError,
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from ..extensions import db
from ..models import Order, OrderLine, OrderStatusHistory, Product, ProductVariant, User
from ..models.orders import (
    ORDER_CANCELLED,
    ORDER_DELIVERED,
    ORDER_PENDING,
    ORDER_PENDING_PAYMENT,
    ORDER_PENDING_VERIFICATION,
    ORDER_PROCESSING,
    ORDER_SHIPPED,
    PAYMENT_AWAITING_TRANSFER,
    PAYMENT_METHOD_BANK_TRANSFER,
    PAYMENT_METHOD_GATEWAY,
    PAYMENT_PAID,
    PAYMENT_PENDING,
    VALID_ORDER_STATUSES,
)
from ..time_utils import utcnow
from ..validation import coerce_int
from . import cart_service, coupon_service, notification_service, stock_service
from .concurrency import lock_for_update, run_with_retry
from .document_service import next_document_number

PAYMENT_METHOD_ALIASES = {
    "gateway": PAYMENT_METHOD_GATEWAY,
    "paystack": PAYMENT_METHOD_GATEWAY,
    "bank_transfer": PAYMENT_METHOD_BANK_TRANSFER,
    "transfer": PAYMENT_METHOD_BANK_TRANSFER,
}

STATUS_RANK = {
    ORDER_PENDING_PAYMENT: 0,
    ORDER_PENDING_VERIFICATION: 0,
    ORDER_PENDING: 0,
    ORDER_PROCESSING: 1,
    ORDER_SHIPPED: 2,
    ORDER_DELIVERED: 3,
}

CANCELLABLE_STATUSES = frozenset({
    ORDER_PENDING,
    ORDER_PENDING_PAYMENT,
    ORDER_PENDING_VERIFICATION,
    ORDER_PROCESSING,
})


@dataclass
class LineSpec:
    product: Product
    variant: ProductVariant | None
    quantity: int
    unit_price_cents: int

    @property
    def line_total_cents(self) -> int:
        return self.unit_price_cents * self.quantity


@dataclass
class OrderCreationResult:
    order: Order
    bank_details: dict | None = None
    checkout: dict | None = None
    payment_error: str | None = None
    coupon_applied: bool = False

    def to_dict(self) -> dict:
        body = {"order": self.order.to_dict()}
        if self.bank_details is not None:
            body["bank_details"] = self.bank_details
        if self.checkout is not None:
            body["payment"] = self.checkout
        if self.payment_error:
            body["payment_error"] = self.payment_error
        return body


# =============================================================================
# INPUT PARSING
# =============================================================================

def normalize_payment_method(value) -> str:
    method = PAYMENT_METHOD_ALIASES.get(str(value or "").strip().lower())
    if method is None:
        raise ValidationError(
            "payment_method must be one of: gateway, bank_transfer",
            {"field": "payment_method"},
        )
    return method


def bank_details_from_config() -> dict:
    cfg = current_app.config
    return {
        "bank_name": cfg["BANK_NAME"],
        "account_name": cfg["BANK_ACCOUNT_NAME"],
        "account_number": cfg["BANK_ACCOUNT_NUMBER"],
    }


def _require_text(data: dict, key: str, label: str) -> str:
    value = str(data.get(key) or "").strip()
    if not value:
        raise ValidationError(f"{label} is required", {"field": label})
    return value


def _parse_customer(payload: dict, user: User | None) -> dict:
    raw = payload.get("customer") or {}
    if not isinstance(raw, dict):
        raise ValidationError("customer must be an object")
    if user is not None:
        return {
            "first_name": (raw.get("first_name") or user.first_name).strip(),
            "last_name": (raw.get("last_name") or user.last_name).strip(),
            "email": (raw.get("email") or user.email).strip().lower(),
            "phone": (raw.get("phone") or user.phone or "").strip(),
        }
    return {
        "first_name": _require_text(raw, "first_name", "customer.first_name"),
        "last_name": _require_text(raw, "last_name", "customer.last_name"),
        "email": _require_text(raw, "email", "customer.email").lower(),
        "phone": _require_text(raw, "phone", "customer.phone"),
    }


def _parse_shipping(payload: dict) -> tuple[dict, str, int]:
    address = payload.get("shipping_address")
    if not isinstance(address, dict):
        raise ValidationError("shipping_address is required", {"field": "shipping_address"})
    parsed = {
        "street": _require_text(address, "street", "shipping_address.street"),
        "city": _require_text(address, "city", "shipping_address.city"),
        "state": _require_text(address, "state", "shipping_address.state"),
        "landmark": (address.get("landmark") or None),
    }

    zone = payload.get("delivery_zone")
    if not isinstance(zone, dict):
        raise ValidationError("delivery_zone is required", {"field": "delivery_zone"})
    zone_name = _require_text(zone, "zone", "delivery_zone.zone")
    cost = coerce_int(zone.get("cost_cents", 0), "delivery_zone.cost_cents")
    if cost < 0:
        raise ValidationError("delivery_zone.cost_cents must be >= 0")
    return parsed, zone_name, cost


def _raw_items(payload: dict, user: User | None) -> list[dict]:
    items = payload.get("items")
    if items is None and user is not None and payload.get("use_cart"):
        cart = cart_service.get_or_create_cart(user.id)
        items = [
            {"product_id": i.product_id, "variant_id": i.variant_id, "quantity": i.quantity}
            for i in cart.items
        ]
    if not isinstance(items, list) or not items:
        raise ValidationError("Order must contain at least one item", {"field": "items"})
    return items


def _price_lines(items: list[dict]) -> list[LineSpec]:
    """
    Read-check every line before anything is written.

    This is a fast, friendly failure path only; the conditional decrement in
    stock_service.reserve() is what actually prevents overselling.
    """
    specs: list[LineSpec] = []
    for raw in items:
        if not isinstance(raw, dict):
            raise ValidationError("Each item must be an object")
        product_id = coerce_int(raw.get("product_id"), "product_id")
        quantity = coerce_int(raw.get("quantity", 1), "quantity")
        if quantity < 1:
            raise ValidationError("Quantity must be at least 1", {"product_id": product_id})

        product = db.session.get(Product, product_id)
        if not product or not product.is_active:
            raise NotFoundError(f"Product {product_id} not found")

        variant = None
        unit_price = product.price_cents
        available = product.stock
        if raw.get("variant_id") is not None:
            variant_id = coerce_int(raw["variant_id"], "variant_id")
            variant = db.session.get(ProductVariant, variant_id)
            if not variant or variant.product_id != product.id:
                raise NotFoundError(f"Variant {variant_id} not found for {product.name}")
            unit_price += variant.price_adjustment_cents
            available = variant.stock
        elif product.has_variants:
            raise ValidationError(f"Select a variant for {product.name}", {"product_id": product.id})

        if quantity > available:
            raise ConflictError(
                f"Insufficient stock for {product.name}",
                {"product_id": product.id, "available": available, "requested": quantity},
            )

        specs.append(LineSpec(product=product, variant=variant, quantity=quantity, unit_price_cents=unit_price))
    return specs


# =============================================================================
# CREATION
# =============================================================================

def _add_history(order: Order, status: str, *, note: str | None = None, actor_user_id: int | None = None) -> None:
    db.session.add(OrderStatusHistory(
        order_id=order.id,
        status=status,
        note=note,
        actor_user_id=actor_user_id,
    ))


def create_order(payload: dict, *, user: User | None) -> OrderCreationResult:
    """
    Create an order and reserve its stock.

    Raises:
        ValidationError: empty items, bad payment method, bad address/zone, invalid coupon
        NotFoundError: unknown product/variant or coupon code
        ConflictError: insufficient stock (names the product), per-user coupon limit
    """
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    items = _raw_items(payload, user)
    method = normalize_payment_method(payload.get("payment_method"))
    customer = _parse_customer(payload, user)
    address, zone_name, shipping_cents = _parse_shipping(payload)

    specs = _price_lines(items)
    subtotal = sum(s.line_total_cents for s in specs)

    coupon = None
    discount = 0
    coupon_code = coupon_service.normalize_code(payload.get("coupon_code"))
    if coupon_code:
        evaluation = coupon_service.evaluate_coupon(coupon_code, user.id if user else None, subtotal)
        evaluation.raise_if_invalid()
        coupon = evaluation.coupon
        discount = evaluation.discount_cents

    total = max(0, subtotal + shipping_cents - discount)

    if method == PAYMENT_METHOD_BANK_TRANSFER:
        status, payment_status = ORDER_PENDING_PAYMENT, PAYMENT_AWAITING_TRANSFER
    else:
        status, payment_status = ORDER_PENDING_VERIFICATION, PAYMENT_PENDING

    # Nothing to collect: settled right after the commit, no transfer instructions
    settle_free = total == 0
    bank_details = bank_details_from_config() if method == PAYMENT_METHOD_BANK_TRANSFER and not settle_free else None

    def _op() -> Order:
        try:
            order = Order(
                order_number=next_document_number(document_type="ORDER"),
                user_id=user.id if user else None,
                customer_first_name=customer["first_name"],
                customer_last_name=customer["last_name"],
                customer_email=customer["email"],
                customer_phone=customer["phone"],
                shipping_street=address["street"],
                shipping_city=address["city"],
                shipping_state=address["state"],
                shipping_landmark=address["landmark"],
                delivery_zone=zone_name,
                subtotal_cents=subtotal,
                shipping_cents=shipping_cents,
                discount_cents=discount,
                total_cents=total,
                coupon_id=coupon.id if coupon else None,
                coupon_code=coupon.code if coupon else None,
                status=status,
                payment_method=method,
                payment_status=payment_status,
                is_gift=bool(payload.get("is_gift")),
                gift_message=payload.get("gift_message"),
                customer_note=payload.get("notes"),
            )
            db.session.add(order)
            db.session.flush()

            for spec in specs:
                line = OrderLine(
                    order_id=order.id,
                    product_id=spec.product.id,
                    variant_id=spec.variant.id if spec.variant else None,
                    product_name=spec.product.name,
                    product_sku=(spec.variant.sku if spec.variant and spec.variant.sku else spec.product.sku),
                    variant_label=spec.variant.label if spec.variant else None,
                    quantity=spec.quantity,
                    unit_price_cents=spec.unit_price_cents,
                    line_total_cents=spec.line_total_cents,
                )
                db.session.add(line)
                db.session.flush()
                stock_service.reserve(
                    product_id=spec.product.id,
                    variant_id=line.variant_id,
                    quantity=spec.quantity,
                    order_line_id=line.id,
                    note=f"Order {order.order_number}",
                    actor_user_id=user.id if user else None,
                )

            _add_history(order, status, note="Order placed", actor_user_id=user.id if user else None)

            if bank_details is not None:
                notification_service.queue_bank_transfer_instructions(order, bank_details)

            if user is not None:
                cart_service.clear_cart(user.id, commit=False)

            db.session.commit()
            return order
        except Exception:
            db.session.rollback()
            raise

    order = run_with_retry(_op)

    result = OrderCreationResult(order=order, bank_details=bank_details)

    if coupon is not None:
        result.coupon_applied = coupon_service.record_coupon_usage(
            coupon_id=coupon.id,
            user_id=user.id if user else None,
            order_number=order.order_number,
        )

    if settle_free:
        from . import reconciliation_service

        outcome = reconciliation_service.apply_successful_charge(
            reference=f"FREE-{order.order_number}",
            kind="order",
            reference_id=order.id,
            amount_cents=0,
            payload={"source": "zero_total", "coupon_code": order.coupon_code},
        )
        current_app.logger.info("Order %s settled at creation (%s)", order.order_number, outcome.status)
        db.session.expire_all()
        result.order = db.session.get(Order, order.id)
    elif method == PAYMENT_METHOD_GATEWAY:
        from . import payment_service

        try:
            tx = payment_service.initialize_payment(
                kind="order",
                reference_id=order.id,
                email=order.customer_email,
                actor=user,
            )
            result.checkout = {
                "authorization_url": tx.authorization_url,
                "access_code": tx.access_code,
                "reference": tx.reference,
            }
        except AppError as e:
            db.session.rollback()
            current_app.logger.warning(
                "Gateway initialization failed for order %s: %s", order.order_number, e.message
            )
            result.payment_error = "Payment could not be started. Retry payment from your order page."

    return result


# =============================================================================
# QUERIES
# =============================================================================

def get_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if not order:
        raise NotFoundError("Order not found")
    return order


def get_order_for_actor(order_id: int, actor: User) -> Order:
    """Owner or admin; others get the same 404 as a missing order."""
    order = get_order(order_id)
    if not actor.is_admin and order.user_id != actor.id:
        raise NotFoundError("Order not found")
    return order


def list_orders_for_user(user_id: int) -> list[Order]:
    return (
        db.session.query(Order)
        .filter(Order.user_id == user_id)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .all()
    )


def list_all_orders(
    *,
    status: str | None = None,
    payment_status: str | None = None,
    page: int = 1,
    per_page: int = 20,
) -> dict:
    q = db.session.query(Order)
    if status:
        if status not in VALID_ORDER_STATUSES:
            raise ValidationError(f"Unknown status: {status}")
        q = q.filter(Order.status == status)
    if payment_status:
        q = q.filter(Order.payment_status == payment_status)
    q = q.order_by(Order.created_at.desc(), Order.id.desc())

    per_page = min(max(per_page, 1), 100)
    page = max(page, 1)
    total = q.count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1
    orders = q.offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": [o.to_dict(include_history=False) for o in orders],
        "count": len(orders),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


# =============================================================================
# ADMIN STATUS TRANSITIONS
# =============================================================================

def update_order_status(
    order_id: int,
    *,
    new_status: str,
    actor: User,
    note: str | None = None,
    tracking_number: str | None = None,
    carrier: str | None = None,
) -> Order:
    """
    Move an order forward (admin).

    - "cancelled" is routed through cancel_order() so stock is released.
    - Backwards moves and moves out of cancelled raise ConflictError.
    - processing and later require a paid order.
    - delivered stamps delivered_at.
    """
    if new_status not in VALID_ORDER_STATUSES:
        raise ValidationError(f"Unknown status: {new_status}", {"field": "status"})

    if new_status == ORDER_CANCELLED:
        return cancel_order(order_id, actor=actor, reason=note or "Cancelled by admin")

    def _op() -> Order:
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if not order:
            raise NotFoundError("Order not found")
        if order.status == ORDER_CANCELLED:
            raise ConflictError("Cancelled orders cannot change status")

        current_rank = STATUS_RANK[order.status]
        target_rank = STATUS_RANK[new_status]
        if target_rank < current_rank:
            raise ConflictError(
                f"Cannot move order from {order.status} back to {new_status}",
                {"current_status": order.status},
            )
        if target_rank >= STATUS_RANK[ORDER_PROCESSING] and order.payment_status != PAYMENT_PAID:
            raise ConflictError(
                f"Order must be paid before it can be {new_status}",
                {"payment_status": order.payment_status},
            )

        if tracking_number is not None:
            order.tracking_number = tracking_number
        if carrier is not None:
            order.carrier = carrier
        if note:
            order.admin_note = note

        if new_status != order.status:
            order.status = new_status
            if new_status == ORDER_DELIVERED:
                order.delivered_at = utcnow()
            _add_history(order, new_status, note=note, actor_user_id=actor.id)

        db.session.commit()
        return order

    try:
        return run_with_retry(_op)
    except Exception:
        db.session.rollback()
        raise


# =============================================================================
# CANCELLATION
# =============================================================================

def cancel_order(
    order_id: int,
    *,
    actor: User | None,
    reason: str | None = None,
    require_unpaid: bool = False,
) -> Order:
    """
    Cancel an order and release every line's reservation exactly once.

    actor=None is the system (unpaid-order expiry). Owners and admins share
    the same eligibility floor: once shipped, an order cannot be cancelled.
    Payment state is left as is; refunds of paid orders are a separate
    admin action. require_unpaid makes a paid order a conflict (expiry sweep).
    """
    def _op() -> Order:
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if not order:
            raise NotFoundError("Order not found")

        if actor is not None and not actor.is_admin and order.user_id != actor.id:
            raise AuthorizationError("You can only cancel your own orders")

        if order.status not in CANCELLABLE_STATUSES:
            raise ConflictError(
                f"Order cannot be cancelled once {order.status}",
                {"current_status": order.status},
            )
        if require_unpaid and order.payment_status == PAYMENT_PAID:
            raise ConflictError("Order has been paid", {"payment_status": order.payment_status})

        for line in order.lines:
            stock_service.release(
                product_id=line.product_id,
                variant_id=line.variant_id,
                quantity=line.quantity,
                order_line_id=line.id,
                note=f"Cancel {order.order_number}",
                actor_user_id=actor.id if actor else None,
            )

        order.status = ORDER_CANCELLED
        order.cancelled_at = utcnow()
        order.cancellation_reason = reason
        order.cancelled_by_user_id = actor.id if actor else None
        _add_history(order, ORDER_CANCELLED, note=reason, actor_user_id=actor.id if actor else None)

        db.session.commit()
        return order

    try:
        return run_with_retry(_op)
    except IntegrityError:
        # Another cancellation released these lines first
        db.session.rollback()
        raise ConflictError("Order was cancelled concurrently")
    except Exception:
        db.session.rollback()
        raise
