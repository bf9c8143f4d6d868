# Overview: Flask API routes for academy courses and enrollments.

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import AppError
from ..services import enrollment_service
from ..decorators import require_auth, require_role


enrollments_bp = Blueprint("enrollments", __name__, url_prefix="/api")


@enrollments_bp.get("/courses")
def list_courses_route():
    try:
        courses = enrollment_service.list_courses()
        return jsonify({"items": [c.to_dict() for c in courses], "count": len(courses)}), 200
    except Exception:
        current_app.logger.exception("Failed to list courses")
        return jsonify({"error": "Internal server error"}), 500


@enrollments_bp.post("/courses")
@require_auth
@require_role("admin")
def create_course_route():
    try:
        course = enrollment_service.create_course(request.get_json(silent=True))
        return jsonify({"course": course.to_dict()}), 201
    except AppError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create course")
        return jsonify({"error": "Internal server error"}), 500


@enrollments_bp.post("/enrollments")
@require_auth
def create_enrollment_route():
    """Body: {"course_id": 1, "start_date": "2026-01-12", "location": "calabar"}"""
    try:
        enrollment = enrollment_service.create_enrollment(request.get_json(silent=True), user=g.current_user)
        return jsonify({"enrollment": enrollment.to_dict()}), 201
    except AppError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create enrollment")
        return jsonify({"error": "Internal server error"}), 500


@enrollments_bp.get("/enrollments")
@require_auth
def list_my_enrollments_route():
    try:
        enrollments = enrollment_service.list_enrollments_for_user(g.current_user.id)
        return jsonify({"items": [e.to_dict() for e in enrollments], "count": len(enrollments)}), 200
    except Exception:
        current_app.logger.exception("Failed to list enrollments")
        return jsonify({"error": "Internal server error"}), 500


@enrollments_bp.get("/enrollments/<int:enrollment_id>")
@require_auth
def get_enrollment_route(enrollment_id: int):
    try:
        enrollment = enrollment_service.get_enrollment_for_actor(enrollment_id, g.current_user)
        return jsonify({"enrollment": enrollment.to_dict()}), 200
    except AppError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get enrollment")
        return jsonify({"error": "Internal server error"}), 500
