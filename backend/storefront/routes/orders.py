# Overview: Flask API routes for orders; parses input and returns JSON responses.

"""
Order API Routes

DESIGN:
- Checkout is open to guests (optional_auth); guests supply customer details
- Customers see and cancel only their own orders (others get 404/403)
- Admins list every order and move orders forward through fulfilment
- All state rules live in order_service; routes only map errors to HTTP
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import AppError
from ..services import order_service
from ..decorators import optional_auth, require_auth, require_role


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@orders_bp.post("")
@optional_auth
def create_order_route():
    """
    Place an order and reserve its stock.

    Request body:
    {
        "items": [{"product_id": 1, "variant_id": null, "quantity": 2}],
        "payment_method": "gateway" | "bank_transfer",
        "shipping_address": {"street": "...", "city": "...", "state": "...", "landmark": "..."},
        "delivery_zone": {"zone": "Calabar Municipal", "cost_cents": 150000},
        "coupon_code": "SAVE10",                  (optional)
        "customer": {"first_name": ..., ...},     (required for guests)
        "use_cart": true,                         (optional, instead of items)
        "is_gift": false, "gift_message": "...", "notes": "..."
    }

    Returns:
        201: order plus bank_details (bank transfer) or payment checkout (gateway)
        400: invalid input or coupon
        404: unknown product/variant/coupon
        409: insufficient stock, coupon already used
    """
    try:
        result = order_service.create_order(request.get_json(silent=True), user=g.current_user)
        return jsonify(result.to_dict()), 201
    except AppError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("")
@require_auth
def list_my_orders_route():
    try:
        orders = order_service.list_orders_for_user(g.current_user.id)
        return jsonify({
            "items": [o.to_dict(include_history=False) for o in orders],
            "count": len(orders),
        }), 200
    except Exception:
        current_app.logger.exception("Failed to list orders")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/admin/all")
@require_auth
@require_role("admin")
def list_all_orders_route():
    """Query params: status, payment_status, page, per_page"""
    try:
        result = order_service.list_all_orders(
            status=request.args.get("status"),
            payment_status=request.args.get("payment_status"),
            page=request.args.get("page", 1, type=int),
            per_page=request.args.get("per_page", 20, type=int),
        )
        return jsonify(result), 200
    except AppError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list all orders")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>")
@require_auth
def get_order_route(order_id: int):
    try:
        order = order_service.get_order_for_actor(order_id, g.current_user)
        return jsonify({"order": order.to_dict()}), 200
    except AppError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.put("/<int:order_id>/status")
@require_auth
@require_role("admin")
def update_order_status_route(order_id: int):
    """
    Request body: {"status": "shipped", "note": "...", "tracking_number": "...", "carrier": "..."}

    Returns:
        200: updated order
        409: backwards move, unpaid order, or order already cancelled
    """
    try:
        data = request.get_json(silent=True) or {}
        status = data.get("status")
        if not status:
            return jsonify({"error": "status is required"}), 400

        order = order_service.update_order_status(
            order_id,
            new_status=status,
            actor=g.current_user,
            note=data.get("note"),
            tracking_number=data.get("tracking_number"),
            carrier=data.get("carrier"),
        )
        return jsonify({"order": order.to_dict()}), 200
    except AppError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update order status")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.put("/<int:order_id>/cancel")
@require_auth
def cancel_order_route(order_id: int):
    """Owner or admin. Releases reserved stock. Body: {"reason": "..."}"""
    try:
        data = request.get_json(silent=True) or {}
        order = order_service.cancel_order(
            order_id,
            actor=g.current_user,
            reason=data.get("reason"),
        )
        return jsonify({"order": order.to_dict()}), 200
    except AppError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to cancel order")
        return jsonify({"error": "Internal server error"}), 500
