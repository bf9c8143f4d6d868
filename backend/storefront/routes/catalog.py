# Overview: Flask API routes for categories, products and admin stock adjustments.

from flask import Blueprint, request, jsonify, current_app, g

from ..errors import AppError
from ..services import catalog_service
from ..services import stock_service
from ..decorators import require_auth, require_role


catalog_bp = Blueprint("catalog", __name__, url_prefix="/api")


# =============================================================================
# CATEGORIES
# =============================================================================

@catalog_bp.get("/categories")
def list_categories_route():
    try:
        categories = catalog_service.list_categories()
        return jsonify({"items": [c.to_dict() for c in categories], "count": len(categories)}), 200
    except Exception:
        current_app.logger.exception("Failed to list categories")
        return jsonify({"error": "Internal server error"}), 500


@catalog_bp.post("/categories")
@require_auth
@require_role("admin")
def create_category_route():
    try:
        category = catalog_service.create_category(request.get_json(silent=True))
        return jsonify({"category": category.to_dict()}), 201
    except AppError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create category")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# PRODUCTS
# =============================================================================

@catalog_bp.get("/products")
def list_products_route():
    """
    Public product listing (active products only).

    Query params: category_id, search, page, per_page
    Without page the full list is returned.
    """
    try:
        result = catalog_service.list_products(
            category_id=request.args.get("category_id", type=int),
            search=request.args.get("search"),
            page=request.args.get("page", type=int),
            per_page=request.args.get("per_page", type=int),
        )
        return jsonify(result), 200
    except Exception:
        current_app.logger.exception("Failed to list products")
        return jsonify({"error": "Internal server error"}), 500


@catalog_bp.get("/products/<int:product_id>")
def get_product_route(product_id: int):
    try:
        product = catalog_service.get_product(product_id)
        return jsonify({"product": product.to_dict()}), 200
    except AppError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get product")
        return jsonify({"error": "Internal server error"}), 500


@catalog_bp.post("/products")
@require_auth
@require_role("admin")
def create_product_route():
    """
    Create a product.

    Request body:
    {
        "sku": "LASH-001", "name": "Mink Lashes", "price_cents": 1500000,
        "category_id": 1, "stock": 20
    }
    or with variants (stock per variant):
    {
        ..., "variants": [{"variant_type": "Length", "value": "12mm", "stock": 5}]
    }
    """
    try:
        product = catalog_service.create_product(
            request.get_json(silent=True),
            actor_user_id=g.current_user.id,
        )
        return jsonify({"product": product.to_dict()}), 201
    except AppError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Internal server error"}), 500


@catalog_bp.put("/products/<int:product_id>")
@require_auth
@require_role("admin")
def update_product_route(product_id: int):
    try:
        product = catalog_service.update_product(product_id, request.get_json(silent=True))
        return jsonify({"product": product.to_dict()}), 200
    except AppError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update product")
        return jsonify({"error": "Internal server error"}), 500


@catalog_bp.post("/products/<int:product_id>/stock")
@require_auth
@require_role("admin")
def adjust_stock_route(product_id: int):
    """
    Admin stock adjustment through the ledger.

    Request body: {"quantity_delta": -2, "variant_id": 3, "note": "Damaged"}
    """
    try:
        data = request.get_json(silent=True) or {}
        product = catalog_service.adjust_product_stock(
            product_id,
            variant_id=data.get("variant_id"),
            quantity_delta=data.get("quantity_delta"),
            note=data.get("note"),
            actor_user_id=g.current_user.id,
        )
        return jsonify({"product": product.to_dict()}), 200
    except AppError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to adjust stock")
        return jsonify({"error": "Internal server error"}), 500


@catalog_bp.get("/products/<int:product_id>/movements")
@require_auth
@require_role("admin")
def list_movements_route(product_id: int):
    try:
        movements = stock_service.list_movements(product_id, limit=request.args.get("limit", 200, type=int))
        return jsonify({"items": [m.to_dict() for m in movements], "count": len(movements)}), 200
    except AppError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list stock movements")
        return jsonify({"error": "Internal server error"}), 500
