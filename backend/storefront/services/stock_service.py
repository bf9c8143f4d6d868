# Overview: Stock ledger; the only code allowed to change product and variant stock.

"""
Stock Invariants (authoritative)

- products.stock and product_variants.stock are never negative. Decrements are
  a single conditional UPDATE (... WHERE stock >= q); a zero rowcount means
  insufficient stock and nothing was changed.
- When a product has variants, products.stock is recomputed as SUM(variant
  stock) in the same statement sequence as every variant change.
- Every change appends a StockMovement row in the same DB transaction.
- A reservation tied to an order line is released at most once: the RELEASE
  movement for that line is unique.

None of these functions commit. Callers own the transaction so that a
multi-line order either reserves every line or none.
"""

from __future__ import annotations

from sqlalchemy import func, select, update

from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Product, ProductVariant, StockMovement

MOVEMENT_RESERVE = "RESERVE"
MOVEMENT_RELEASE = "RELEASE"
MOVEMENT_ADJUST = "ADJUST"


def _load_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if not product:
        raise NotFoundError(f"Product {product_id} not found")
    return product


def _load_variant(product: Product, variant_id: int) -> ProductVariant:
    variant = db.session.get(ProductVariant, variant_id)
    if not variant or variant.product_id != product.id:
        raise NotFoundError(f"Variant {variant_id} not found for {product.name}")
    return variant


def _recompute_product_stock(product_id: int) -> None:
    total = (
        select(func.coalesce(func.sum(ProductVariant.stock), 0))
        .where(ProductVariant.product_id == product_id)
        .scalar_subquery()
    )
    db.session.execute(
        update(Product)
        .where(Product.id == product_id)
        .values(stock=total)
        .execution_options(synchronize_session=False)
    )


def _apply_delta(product: Product, variant_id: int | None, delta: int) -> bool:
    """
    Apply a signed stock delta with a non-negative guard.

    Returns False (and changes nothing) when the guard rejects the decrement.
    """
    if variant_id is not None:
        result = db.session.execute(
            update(ProductVariant)
            .where(
                ProductVariant.id == variant_id,
                ProductVariant.product_id == product.id,
                ProductVariant.stock + delta >= 0,
            )
            .values(stock=ProductVariant.stock + delta)
            .execution_options(synchronize_session=False)
        )
        if not result.rowcount:
            return False
        _recompute_product_stock(product.id)
    else:
        result = db.session.execute(
            update(Product)
            .where(Product.id == product.id, Product.stock + delta >= 0)
            .values(stock=Product.stock + delta)
            .execution_options(synchronize_session=False)
        )
        if not result.rowcount:
            return False

    # Loaded instances still hold the pre-UPDATE values
    db.session.expire(product)
    if variant_id is not None:
        variant = db.session.get(ProductVariant, variant_id)
        if variant is not None:
            db.session.expire(variant)
    return True


def _require_variant_choice(product: Product, variant_id: int | None) -> None:
    if variant_id is None and product.has_variants:
        raise ValidationError(f"Select a variant for {product.name}")


def available_quantity(product_id: int, variant_id: int | None = None) -> int:
    """Current sellable quantity (read-only; reserve() is the authoritative check)."""
    product = _load_product(product_id)
    if variant_id is not None:
        return _load_variant(product, variant_id).stock
    return product.stock


def reserve(
    *,
    product_id: int,
    variant_id: int | None,
    quantity: int,
    order_line_id: int | None = None,
    note: str | None = None,
    actor_user_id: int | None = None,
) -> StockMovement:
    """
    Decrement stock for a sale.

    Raises:
        ValidationError: quantity < 1, or a variant is required
        NotFoundError: product/variant missing
        ConflictError: insufficient stock (names the product)
    """
    if quantity is None or int(quantity) < 1:
        raise ValidationError("Quantity must be at least 1")
    quantity = int(quantity)

    product = _load_product(product_id)
    _require_variant_choice(product, variant_id)
    if variant_id is not None:
        _load_variant(product, variant_id)

    if not _apply_delta(product, variant_id, -quantity):
        raise ConflictError(
            f"Insufficient stock for {product.name}",
            {"product_id": product.id, "variant_id": variant_id, "requested": quantity},
        )

    db.session.execute(
        update(Product)
        .where(Product.id == product.id)
        .values(total_sales=Product.total_sales + quantity)
        .execution_options(synchronize_session=False)
    )

    movement = StockMovement(
        product_id=product.id,
        variant_id=variant_id,
        order_line_id=order_line_id,
        movement_type=MOVEMENT_RESERVE,
        quantity_delta=-quantity,
        note=note,
        actor_user_id=actor_user_id,
    )
    db.session.add(movement)
    db.session.flush()
    return movement


def release(
    *,
    product_id: int,
    variant_id: int | None,
    quantity: int,
    order_line_id: int | None = None,
    note: str | None = None,
    actor_user_id: int | None = None,
) -> bool:
    """
    Return stock from a cancelled reservation.

    Returns False when the order line was already released (no-op).
    A concurrent double release loses on the unique (order_line_id,
    movement_type) constraint at flush and the caller's transaction rolls back.
    """
    if quantity is None or int(quantity) < 1:
        raise ValidationError("Quantity must be at least 1")
    quantity = int(quantity)

    if order_line_id is not None:
        already = db.session.query(StockMovement.id).filter_by(
            order_line_id=order_line_id,
            movement_type=MOVEMENT_RELEASE,
        ).first()
        if already:
            return False

    product = _load_product(product_id)

    db.session.add(StockMovement(
        product_id=product.id,
        variant_id=variant_id,
        order_line_id=order_line_id,
        movement_type=MOVEMENT_RELEASE,
        quantity_delta=quantity,
        note=note,
        actor_user_id=actor_user_id,
    ))
    db.session.flush()

    _apply_delta(product, variant_id, quantity)
    db.session.execute(
        update(Product)
        .where(Product.id == product.id, Product.total_sales >= quantity)
        .values(total_sales=Product.total_sales - quantity)
        .execution_options(synchronize_session=False)
    )
    db.session.expire(product)
    return True


def adjust(
    *,
    product_id: int,
    variant_id: int | None,
    quantity_delta: int,
    note: str | None = None,
    actor_user_id: int | None = None,
) -> StockMovement:
    """
    Manual stock correction (receiving, shrinkage, recount).

    A negative delta larger than the stock on hand is rejected with ConflictError.
    """
    try:
        quantity_delta = int(quantity_delta)
    except (TypeError, ValueError):
        raise ValidationError("quantity_delta must be an integer")
    if quantity_delta == 0:
        raise ValidationError("quantity_delta cannot be zero")

    product = _load_product(product_id)
    _require_variant_choice(product, variant_id)
    if variant_id is not None:
        _load_variant(product, variant_id)

    if not _apply_delta(product, variant_id, quantity_delta):
        raise ConflictError(
            f"Adjustment would make stock negative for {product.name}",
            {"product_id": product.id, "variant_id": variant_id},
        )

    movement = StockMovement(
        product_id=product.id,
        variant_id=variant_id,
        movement_type=MOVEMENT_ADJUST,
        quantity_delta=quantity_delta,
        note=note,
        actor_user_id=actor_user_id,
    )
    db.session.add(movement)
    db.session.flush()
    return movement


def list_movements(product_id: int, limit: int = 200) -> list[StockMovement]:
    _load_product(product_id)
    return (
        db.session.query(StockMovement)
        .filter_by(product_id=product_id)
        .order_by(StockMovement.id.desc())
        .limit(limit)
        .all()
    )
