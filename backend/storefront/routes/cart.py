# Overview: Flask API routes for the authenticated user's cart.

from flask import Blueprint, request, jsonify, current_app, g

from ..errors import AppError
from ..services import cart_service
from ..decorators import require_auth


cart_bp = Blueprint("cart", __name__, url_prefix="/api/cart")


@cart_bp.get("")
@require_auth
def get_cart_route():
    try:
        cart = cart_service.get_or_create_cart(g.current_user.id)
        return jsonify({"cart": cart.to_dict()}), 200
    except Exception:
        current_app.logger.exception("Failed to load cart")
        return jsonify({"error": "Internal server error"}), 500


@cart_bp.post("/items")
@require_auth
def add_item_route():
    """Request body: {"product_id": 1, "variant_id": null, "quantity": 2}"""
    try:
        data = request.get_json(silent=True) or {}
        cart = cart_service.add_item(
            g.current_user.id,
            product_id=data.get("product_id"),
            variant_id=data.get("variant_id"),
            quantity=data.get("quantity", 1),
        )
        return jsonify({"cart": cart.to_dict()}), 200
    except AppError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to add cart item")
        return jsonify({"error": "Internal server error"}), 500


@cart_bp.delete("/items/<int:item_id>")
@require_auth
def remove_item_route(item_id: int):
    try:
        cart = cart_service.remove_item(g.current_user.id, item_id)
        return jsonify({"cart": cart.to_dict()}), 200
    except AppError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to remove cart item")
        return jsonify({"error": "Internal server error"}), 500


@cart_bp.delete("")
@require_auth
def clear_cart_route():
    try:
        cart_service.clear_cart(g.current_user.id)
        return jsonify({"message": "Cart cleared"}), 200
    except Exception:
        current_app.logger.exception("Failed to clear cart")
        return jsonify({"error": "Internal server error"}), 500
