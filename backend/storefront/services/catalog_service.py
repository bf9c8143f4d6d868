# Overview: Category and product master data (admin writes, public reads).

from __future__ import annotations

import re

from sqlalchemy.exc import IntegrityError

from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Category, Product, ProductVariant
from ..validation import (
    ModelValidationPolicy,
    coerce_int,
    enforce_rules_product,
    enforce_rules_variant_price,
    validate_payload,
)
from . import stock_service

CATEGORY_POLICY = ModelValidationPolicy(
    writable_fields={"name", "slug", "description", "is_active"},
    required_on_create={"name"},
)

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={
        "sku", "name", "description", "price_cents", "compare_price_cents",
        "category_id", "low_stock_threshold", "is_active",
    },
    required_on_create={"sku", "name", "price_cents"},
)

VARIANT_POLICY = ModelValidationPolicy(
    writable_fields={"variant_type", "value", "sku", "price_adjustment_cents"},
    required_on_create={"variant_type", "value"},
)


def slugify(value: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")
    return slug or "item"


# =============================================================================
# CATEGORIES
# =============================================================================

def list_categories(*, include_inactive: bool = False) -> list[Category]:
    q = db.session.query(Category)
    if not include_inactive:
        q = q.filter(Category.is_active.is_(True))
    return q.order_by(Category.name.asc()).all()


def create_category(payload: dict) -> Category:
    patch = validate_payload(model=Category, payload=payload, policy=CATEGORY_POLICY, partial=False)
    patch.setdefault("slug", slugify(patch["name"]))
    category = Category(**patch)
    db.session.add(category)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError(f"Category slug already exists: {patch['slug']}")
    return category


# =============================================================================
# PRODUCTS
# =============================================================================

def list_products(
    *,
    category_id: int | None = None,
    search: str | None = None,
    include_inactive: bool = False,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    """Product listing with optional pagination (public callers see active products only)."""
    base_query = db.session.query(Product)
    if not include_inactive:
        base_query = base_query.filter(Product.is_active.is_(True))
    if category_id is not None:
        base_query = base_query.filter(Product.category_id == category_id)
    if search:
        like = f"%{search.strip()}%"
        base_query = base_query.filter(db.or_(Product.name.ilike(like), Product.sku.ilike(like)))
    base_query = base_query.order_by(Product.name.asc(), Product.id.asc())

    if page is None:
        products = base_query.all()
        return {"items": [p.to_dict() for p in products], "count": len(products)}

    per_page = min(per_page or 20, 100)
    page = max(page, 1)

    total = base_query.count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1
    products = base_query.offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": [p.to_dict() for p in products],
        "count": len(products),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


def get_product(product_id: int, *, include_inactive: bool = False) -> Product:
    product = db.session.get(Product, product_id)
    if not product or (not product.is_active and not include_inactive):
        raise NotFoundError("Product not found")
    return product


def _validate_category(category_id: int | None) -> None:
    if category_id is not None and not db.session.get(Category, category_id):
        raise NotFoundError(f"Category {category_id} not found")


def create_product(payload: dict, *, actor_user_id: int | None = None) -> Product:
    """
    Create a product, optionally with variants and opening stock.

    payload may carry "stock" (no variants) or "variants": [{..., "stock": n}].
    Opening stock goes through the stock ledger as ADJUST movements.
    """
    payload = dict(payload or {})
    opening_stock = payload.pop("stock", None)
    variants_payload = payload.pop("variants", None) or []

    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
    enforce_rules_product(patch)
    _validate_category(patch.get("category_id"))

    if variants_payload and opening_stock:
        raise ValidationError("Products with variants take stock per variant")

    product = Product(stock=0, **patch)
    db.session.add(product)
    try:
        db.session.flush()

        openings: list[tuple[int | None, int]] = []
        for raw in variants_payload:
            raw = dict(raw)
            variant_stock = coerce_int(raw.pop("stock", 0) or 0, "stock")
            vpatch = validate_payload(model=ProductVariant, payload=raw, policy=VARIANT_POLICY, partial=False)
            enforce_rules_variant_price(
                patch["price_cents"], vpatch.get("price_adjustment_cents"), label=f"Variant {vpatch['value']}"
            )
            variant = ProductVariant(product_id=product.id, stock=0, **vpatch)
            db.session.add(variant)
            db.session.flush()
            if variant_stock:
                openings.append((variant.id, variant_stock))

        if opening_stock:
            openings.append((None, coerce_int(opening_stock, "stock")))

        for variant_id, qty in openings:
            if qty < 0:
                raise ValidationError("Opening stock cannot be negative")
            stock_service.adjust(
                product_id=product.id,
                variant_id=variant_id,
                quantity_delta=qty,
                note="Opening stock",
                actor_user_id=actor_user_id,
            )

        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("SKU already exists")
    except Exception:
        db.session.rollback()
        raise

    db.session.refresh(product)
    return product


def update_product(product_id: int, payload: dict) -> Product:
    """Patch product master data. Stock is not writable here (use adjust_product_stock)."""
    product = get_product(product_id, include_inactive=True)
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
    enforce_rules_product(patch)
    if "category_id" in patch:
        _validate_category(patch["category_id"])
    if "price_cents" in patch:
        for variant in product.variants:
            enforce_rules_variant_price(
                patch["price_cents"], variant.price_adjustment_cents, label=f"Variant {variant.value}"
            )

    for k, v in patch.items():
        setattr(product, k, v)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("SKU already exists")
    return product


def adjust_product_stock(
    product_id: int,
    *,
    variant_id: int | None,
    quantity_delta,
    note: str | None,
    actor_user_id: int,
) -> Product:
    try:
        stock_service.adjust(
            product_id=product_id,
            variant_id=variant_id,
            quantity_delta=quantity_delta,
            note=note,
            actor_user_id=actor_user_id,
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return get_product(product_id, include_inactive=True)
