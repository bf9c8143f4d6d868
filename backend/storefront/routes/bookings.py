# Overview: Flask API routes for bookings, slot availability and the service catalog.

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import AppError
from ..services import booking_service
from ..decorators import require_auth, require_role


bookings_bp = Blueprint("bookings", __name__, url_prefix="/api/bookings")


@bookings_bp.get("/availability")
def availability_route():
    """
    Free 1-hour slots.

    Query params: date (YYYY-MM-DD), location, artist_type
    """
    try:
        date = request.args.get("date")
        location = request.args.get("location")
        artist_type = request.args.get("artist_type")
        slots = booking_service.list_available_slots(date, location, artist_type)
        return jsonify({
            "date": date,
            "location": location,
            "artist_type": artist_type,
            "slots": [s.to_dict() for s in slots],
        }), 200
    except AppError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to compute availability")
        return jsonify({"error": "Internal server error"}), 500


@bookings_bp.post("")
@require_auth
def create_booking_route():
    """
    Request body:
    {
        "service_id": 1, "artist_type": "senior", "location": "calabar",
        "date": "2025-06-01", "time_slot": "10:00", "notes": "..."
    }

    Returns:
        201: booking (pending until the deposit is paid)
        409: slot already booked
    """
    try:
        booking = booking_service.create_booking(request.get_json(silent=True), user=g.current_user)
        return jsonify({"booking": booking.to_dict()}), 201
    except AppError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create booking")
        return jsonify({"error": "Internal server error"}), 500


@bookings_bp.get("")
@require_auth
def list_my_bookings_route():
    try:
        bookings = booking_service.list_bookings_for_user(g.current_user.id)
        return jsonify({"items": [b.to_dict() for b in bookings], "count": len(bookings)}), 200
    except Exception:
        current_app.logger.exception("Failed to list bookings")
        return jsonify({"error": "Internal server error"}), 500


@bookings_bp.get("/admin/all")
@require_auth
@require_role("admin")
def list_all_bookings_route():
    """Query params: status, location, date, page, per_page"""
    try:
        result = booking_service.list_all_bookings(
            status=request.args.get("status"),
            location=request.args.get("location"),
            appointment_date=request.args.get("date"),
            page=request.args.get("page", 1, type=int),
            per_page=request.args.get("per_page", 20, type=int),
        )
        return jsonify(result), 200
    except AppError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list all bookings")
        return jsonify({"error": "Internal server error"}), 500


@bookings_bp.get("/<int:booking_id>")
@require_auth
def get_booking_route(booking_id: int):
    try:
        booking = booking_service.get_booking_for_actor(booking_id, g.current_user)
        return jsonify({"booking": booking.to_dict()}), 200
    except AppError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get booking")
        return jsonify({"error": "Internal server error"}), 500


@bookings_bp.put("/<int:booking_id>/status")
@require_auth
@require_role("admin")
def update_booking_status_route(booking_id: int):
    """Body: {"status": "confirmed" | "in-progress" | "completed" | "no-show" | "cancelled", "note": "..."}"""
    try:
        data = request.get_json(silent=True) or {}
        status = data.get("status")
        if not status:
            return jsonify({"error": "status is required"}), 400
        booking = booking_service.update_booking_status(
            booking_id,
            new_status=status,
            actor=g.current_user,
            note=data.get("note"),
        )
        return jsonify({"booking": booking.to_dict()}), 200
    except AppError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update booking status")
        return jsonify({"error": "Internal server error"}), 500


@bookings_bp.put("/<int:booking_id>/cancel")
@require_auth
def cancel_booking_route(booking_id: int):
    """Owner (at least 24 hours ahead) or admin. Body: {"reason": "..."}"""
    try:
        data = request.get_json(silent=True) or {}
        booking = booking_service.cancel_booking(booking_id, actor=g.current_user, reason=data.get("reason"))
        return jsonify({"booking": booking.to_dict()}), 200
    except AppError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to cancel booking")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# SERVICE CATALOG
# =============================================================================

@bookings_bp.get("/services")
def list_services_route():
    try:
        services = booking_service.list_services(category=request.args.get("category"))
        return jsonify({"items": [s.to_dict() for s in services], "count": len(services)}), 200
    except Exception:
        current_app.logger.exception("Failed to list services")
        return jsonify({"error": "Internal server error"}), 500


@bookings_bp.post("/services")
@require_auth
@require_role("admin")
def create_service_route():
    """
    Body:
    {
        "name": "Microblading", "category": "brows", "duration_minutes": 120,
        "description": "...", "pricing": {"lulu": 15000000, "senior": 10000000, "artist": 7000000}
    }
    """
    try:
        service = booking_service.create_service(request.get_json(silent=True))
        return jsonify({"service": service.to_dict()}), 201
    except AppError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create service")
        return jsonify({"error": "Internal server error"}), 500
