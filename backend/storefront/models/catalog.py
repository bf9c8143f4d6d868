from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Category(db.Model):
    __tablename__ = "categories"
    __table_args__ = (
        db.UniqueConstraint("slug", name="uq_categories_slug"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    slug = db.Column(db.String(140), nullable=False)
    description = db.Column(db.Text, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "description": self.description,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Product(db.Model):
    """
    Product master data with the authoritative stock counter.

    STOCK INVARIANTS:
    - stock >= 0 always (CHECK constraint + conditional decrement)
    - When a product has variants, stock is the SUM of variant stocks and is
      recomputed after every variant stock change. It is never written
      independently.
    - Stock is only mutated through services/stock_service.py.

    Products are never deleted; they are deactivated (is_active=False).
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("sku", name="uq_products_sku"),
        db.CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
        db.Index("ix_products_category_active", "category_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    category_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=True, index=True)

    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)

    # Authoritative storage in minor units (kobo)
    price_cents = db.Column(db.Integer, nullable=False)
    compare_price_cents = db.Column(db.Integer, nullable=True)

    stock = db.Column(db.Integer, nullable=False, default=0)
    low_stock_threshold = db.Column(db.Integer, nullable=False, default=5)
    total_sales = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    category = db.relationship("Category", backref=db.backref("products", lazy=True))
    variants = db.relationship(
        "ProductVariant",
        backref="product",
        lazy=True,
        order_by="ProductVariant.id",
    )

    @property
    def has_variants(self) -> bool:
        return bool(self.variants)

    @property
    def is_low_stock(self) -> bool:
        return 0 < self.stock <= self.low_stock_threshold

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} stock={self.stock}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "category_id": self.category_id,
            "sku": self.sku,
            "name": self.name,
            "description": self.description,
            "price_cents": self.price_cents,
            "compare_price_cents": self.compare_price_cents,
            "stock": self.stock,
            "in_stock": self.stock > 0,
            "is_low_stock": self.is_low_stock,
            "low_stock_threshold": self.low_stock_threshold,
            "total_sales": self.total_sales,
            "is_active": self.is_active,
            "variants": [v.to_dict() for v in self.variants],
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class ProductVariant(db.Model):
    """A sellable variation of a product (length, color, curl...) with its own stock."""
    __tablename__ = "product_variants"
    __table_args__ = (
        db.UniqueConstraint("sku", name="uq_product_variants_sku"),
        db.CheckConstraint("stock >= 0", name="ck_product_variants_stock_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    variant_type = db.Column(db.String(32), nullable=False)  # Length, Color, Volume, Curl, Size...
    value = db.Column(db.String(64), nullable=False)
    sku = db.Column(db.String(64), nullable=True)

    stock = db.Column(db.Integer, nullable=False, default=0)
    price_adjustment_cents = db.Column(db.Integer, nullable=False, default=0)

    @property
    def label(self) -> str:
        return f"{self.variant_type}: {self.value}"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "type": self.variant_type,
            "value": self.value,
            "sku": self.sku,
            "stock": self.stock,
            "price_adjustment_cents": self.price_adjustment_cents,
        }


class StockMovement(db.Model):
    """
    Append-only record of every stock change.

    RESERVE/RELEASE rows are tied to an order line. The unique constraint on
    (order_line_id, movement_type) is what makes a release happen at most
    once per reservation, whichever workflow asks for it.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.UniqueConstraint("order_line_id", "movement_type", name="uq_stock_movements_line_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=True)
    order_line_id = db.Column(db.Integer, db.ForeignKey("order_lines.id"), nullable=True, index=True)

    movement_type = db.Column(db.String(16), nullable=False)  # RESERVE, RELEASE, ADJUST
    quantity_delta = db.Column(db.Integer, nullable=False)
    note = db.Column(db.String(255), nullable=True)
    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "order_line_id": self.order_line_id,
            "movement_type": self.movement_type,
            "quantity_delta": self.quantity_delta,
            "note": self.note,
            "actor_user_id": self.actor_user_id,
            "created_at": to_utc_z(self.created_at),
        }
