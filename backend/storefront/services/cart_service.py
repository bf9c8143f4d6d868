# Overview: Per-user shopping cart; checkout reads it and clears it.

from __future__ import annotations

from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Cart, CartItem, Product, ProductVariant
from ..validation import coerce_int


def get_or_create_cart(user_id: int) -> Cart:
    cart = db.session.query(Cart).filter_by(user_id=user_id).first()
    if cart is None:
        cart = Cart(user_id=user_id)
        db.session.add(cart)
        db.session.commit()
    return cart


def add_item(user_id: int, *, product_id, variant_id=None, quantity=1) -> Cart:
    """
    Add (or top up) a line in the user's cart.

    Stock is checked here only as a courtesy; the reservation at checkout
    is the authoritative check.
    """
    product_id = coerce_int(product_id, "product_id")
    quantity = coerce_int(quantity, "quantity")
    if quantity < 1:
        raise ValidationError("Quantity must be at least 1")

    product = db.session.get(Product, product_id)
    if not product or not product.is_active:
        raise NotFoundError("Product not found")

    unit_price = product.price_cents
    available = product.stock
    if variant_id is not None:
        variant_id = coerce_int(variant_id, "variant_id")
        variant = db.session.get(ProductVariant, variant_id)
        if not variant or variant.product_id != product.id:
            raise NotFoundError("Variant not found")
        unit_price += variant.price_adjustment_cents
        available = variant.stock
    elif product.has_variants:
        raise ValidationError(f"Select a variant for {product.name}")

    cart = get_or_create_cart(user_id)
    item = next(
        (i for i in cart.items if i.product_id == product_id and i.variant_id == variant_id),
        None,
    )
    new_qty = quantity + (item.quantity if item else 0)
    if new_qty > available:
        raise ConflictError(f"Only {available} of {product.name} in stock")

    if item:
        item.quantity = new_qty
        item.unit_price_cents = unit_price
    else:
        cart.items.append(CartItem(
            product_id=product_id,
            variant_id=variant_id,
            quantity=quantity,
            unit_price_cents=unit_price,
        ))
    db.session.commit()
    return cart


def remove_item(user_id: int, item_id: int) -> Cart:
    cart = get_or_create_cart(user_id)
    item = next((i for i in cart.items if i.id == item_id), None)
    if not item:
        raise NotFoundError("Cart item not found")
    cart.items.remove(item)
    db.session.commit()
    return cart


def clear_cart(user_id: int, *, commit: bool = True) -> None:
    cart = db.session.query(Cart).filter_by(user_id=user_id).first()
    if cart is None:
        return
    cart.items.clear()
    if commit:
        db.session.commit()
