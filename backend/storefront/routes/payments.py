# Overview: Flask API routes for payments; parses input and returns JSON responses.

"""
Payment API Routes

WHY: One entry point per way money can arrive:
- gateway checkout (initialize, then verify on return or webhook)
- bank transfer (admin confirmation)

SECURITY:
- Webhooks are accepted only with a valid HMAC signature over the raw body
- After the signature check passes the gateway always gets 200; failures are
  stored on the webhook event for replay instead of triggering redelivery storms
- Bank-transfer confirmation, refunds and webhook replay are admin-only
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import AppError
from ..services import payment_service
from ..services.gateway import SIGNATURE_HEADER
from ..decorators import optional_auth, require_auth, require_role


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payment")


# =============================================================================
# GATEWAY CHECKOUT
# =============================================================================

@payments_bp.post("/initialize")
@optional_auth
def initialize_payment_route():
    """
    Start a gateway checkout.

    Request body:
    {
        "type": "order" | "booking" | "enrollment",
        "referenceId": 123,
        "purpose": "deposit" | "balance",   (bookings, optional)
        "amount": 2500000,                  (optional; must equal the amount due)
        "email": "customer@example.com"     (optional)
    }

    Returns:
        201: authorization_url, access_code, reference
        409: already paid / cancelled
        502: gateway unavailable
    """
    try:
        data = request.get_json(silent=True) or {}
        tx = payment_service.initialize_payment(
            kind=data.get("type"),
            reference_id=data.get("referenceId"),
            actor=g.current_user,
            email=data.get("email"),
            amount_cents=data.get("amount"),
            purpose=data.get("purpose"),
        )
        return jsonify({
            "authorization_url": tx.authorization_url,
            "access_code": tx.access_code,
            "reference": tx.reference,
            "amount_cents": tx.amount_cents,
            "purpose": tx.purpose,
        }), 201
    except AppError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to initialize payment")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.get("/verify/<reference>")
def verify_payment_route(reference: str):
    """Customer returns from checkout; reconcile the charge the same way the webhook would."""
    try:
        return jsonify(payment_service.verify_payment(reference)), 200
    except AppError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to verify payment %s", reference)
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.post("/webhook")
def webhook_route():
    """
    Gateway webhook.

    Returns:
        200: accepted (including events that failed processing; see webhook_events)
        400: bad signature or malformed body
    """
    try:
        event = payment_service.receive_webhook(
            request.get_data(cache=False),
            request.headers.get(SIGNATURE_HEADER),
        )
        return jsonify({"received": True, "status": event.status}), 200
    except AppError as e:
        current_app.logger.warning("Rejected webhook: %s", e.message)
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("PAYMENT ALERT: webhook could not be stored")
        return jsonify({"received": True}), 200


# =============================================================================
# ADMIN
# =============================================================================

@payments_bp.put("/confirm-bank-transfer/<int:order_id>")
@require_auth
@require_role("admin")
def confirm_bank_transfer_route(order_id: int):
    """Body (optional): {"note": "Seen on statement 12/03"}"""
    try:
        data = request.get_json(silent=True) or {}
        order = payment_service.confirm_bank_transfer(order_id, admin=g.current_user, note=data.get("note"))
        return jsonify({"order": order.to_dict()}), 200
    except AppError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to confirm bank transfer for order %s", order_id)
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.post("/refund")
@require_auth
@require_role("admin")
def refund_route():
    """Body: {"reference": "...", "amount_cents": 1000 (optional, default full), "reason": "..."}"""
    try:
        data = request.get_json(silent=True) or {}
        tx = payment_service.refund_payment(
            reference=data.get("reference"),
            admin=g.current_user,
            amount_cents=data.get("amount_cents"),
            reason=data.get("reason"),
        )
        return jsonify({"transaction": tx.to_dict()}), 200
    except AppError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to refund payment")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.get("/webhooks")
@require_auth
@require_role("admin")
def list_webhooks_route():
    try:
        events = payment_service.list_webhook_events(
            status=request.args.get("status"),
            limit=request.args.get("limit", 100, type=int),
        )
        return jsonify({"items": [e.to_dict() for e in events], "count": len(events)}), 200
    except Exception:
        current_app.logger.exception("Failed to list webhook events")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.post("/webhooks/<int:event_id>/replay")
@require_auth
@require_role("admin")
def replay_webhook_route(event_id: int):
    try:
        event = payment_service.replay_webhook_event(event_id)
        return jsonify({"event": event.to_dict()}), 200
    except AppError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to replay webhook event %s", event_id)
        return jsonify({"error": "Internal server error"}), 500
