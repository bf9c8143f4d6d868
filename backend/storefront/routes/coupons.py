# Overview: Flask API routes for coupon preview (customers) and coupon management (admin).

from flask import Blueprint, request, jsonify, current_app, g

from ..errors import AppError
from ..services import coupon_service
from ..validation import coerce_int
from ..decorators import optional_auth, require_auth, require_role


coupons_bp = Blueprint("coupons", __name__, url_prefix="/api/coupons")


@coupons_bp.post("/validate")
@optional_auth
def validate_coupon_route():
    """
    Preview a coupon against an order amount. Never consumes a use.

    Request body: {"code": "SAVE10", "order_amount_cents": 500000}

    Returns 200 with the evaluation; an invalid coupon maps to 404 (unknown
    code), 409 (already used by this customer) or 400 (any other reason).
    """
    try:
        data = request.get_json(silent=True) or {}
        amount = coerce_int(data.get("order_amount_cents", 0), "order_amount_cents")
        user = g.current_user
        evaluation = coupon_service.evaluate_coupon(data.get("code"), user.id if user else None, amount)
        evaluation.raise_if_invalid()
        return jsonify(evaluation.to_dict()), 200
    except AppError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to validate coupon")
        return jsonify({"error": "Internal server error"}), 500


@coupons_bp.get("")
@require_auth
@require_role("admin")
def list_coupons_route():
    try:
        active_only = request.args.get("active_only", "false").lower() == "true"
        coupons = coupon_service.list_coupons(active_only=active_only)
        return jsonify({"items": [c.to_dict() for c in coupons], "count": len(coupons)}), 200
    except Exception:
        current_app.logger.exception("Failed to list coupons")
        return jsonify({"error": "Internal server error"}), 500


@coupons_bp.post("")
@require_auth
@require_role("admin")
def create_coupon_route():
    try:
        coupon = coupon_service.create_coupon(
            request.get_json(silent=True),
            created_by_user_id=g.current_user.id,
        )
        return jsonify({"coupon": coupon.to_dict()}), 201
    except AppError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create coupon")
        return jsonify({"error": "Internal server error"}), 500


@coupons_bp.put("/<int:coupon_id>")
@require_auth
@require_role("admin")
def update_coupon_route(coupon_id: int):
    try:
        coupon = coupon_service.update_coupon(coupon_id, request.get_json(silent=True))
        return jsonify({"coupon": coupon.to_dict()}), 200
    except AppError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update coupon")
        return jsonify({"error": "Internal server error"}), 500
