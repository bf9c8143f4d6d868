# Overview: Academy courses and student enrollments (activated by payment reconciliation).

from __future__ import annotations

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import Course, Enrollment, User
from ..models.bookings import VALID_LOCATIONS, VALID_SERVICE_CATEGORIES
from ..time_utils import parse_iso_date, utcnow
from ..validation import coerce_int
from .concurrency import run_with_retry
from .document_service import next_document_number


def list_courses(*, include_inactive: bool = False) -> list[Course]:
    q = db.session.query(Course)
    if not include_inactive:
        q = q.filter(Course.is_active.is_(True))
    return q.order_by(Course.title.asc()).all()


def create_course(payload: dict) -> Course:
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    title = str(payload.get("title") or "").strip()
    if not title:
        raise ValidationError("title is required", {"field": "title"})
    category = str(payload.get("category") or "").strip().lower()
    if category not in VALID_SERVICE_CATEGORIES:
        raise ValidationError(
            f"category must be one of: {', '.join(VALID_SERVICE_CATEGORIES)}",
            {"field": "category"},
        )
    price = coerce_int(payload.get("price_cents"), "price_cents")
    if price < 0:
        raise ValidationError("price_cents must be >= 0")

    course = Course(
        title=title,
        category=category,
        course_type=str(payload.get("type") or "physical"),
        price_cents=price,
        duration=payload.get("duration"),
        is_active=bool(payload.get("is_active", True)),
    )
    db.session.add(course)
    db.session.commit()
    return course


def create_enrollment(payload: dict, *, user: User) -> Enrollment:
    """
    Enroll the authenticated user in a course. The enrollment stays pending
    until its payment is reconciled.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    course_id = coerce_int(payload.get("course_id"), "course_id")
    course = db.session.get(Course, course_id)
    if not course or not course.is_active:
        raise NotFoundError("Course not found")

    location = str(payload.get("location") or "").strip().lower()
    if location not in VALID_LOCATIONS:
        raise ValidationError(f"location must be one of: {', '.join(VALID_LOCATIONS)}", {"field": "location"})

    try:
        start_date = parse_iso_date(payload.get("start_date"))
    except ValueError:
        raise ValidationError("start_date must be YYYY-MM-DD", {"field": "start_date"})
    if start_date is None:
        raise ValidationError("start_date is required", {"field": "start_date"})
    if start_date < utcnow().date():
        raise ValidationError("start_date is in the past", {"field": "start_date"})

    def _op() -> Enrollment:
        try:
            enrollment = Enrollment(
                enrollment_number=next_document_number(document_type="ENROLLMENT"),
                student_id=user.id,
                course_id=course.id,
                course_title=course.title,
                course_category=course.category,
                course_duration=course.duration,
                start_date=start_date,
                location=location,
                amount_cents=course.price_cents,
            )
            db.session.add(enrollment)
            db.session.commit()
            return enrollment
        except Exception:
            db.session.rollback()
            raise

    return run_with_retry(_op)


def list_enrollments_for_user(user_id: int) -> list[Enrollment]:
    return (
        db.session.query(Enrollment)
        .filter(Enrollment.student_id == user_id)
        .order_by(Enrollment.created_at.desc(), Enrollment.id.desc())
        .all()
    )


def get_enrollment_for_actor(enrollment_id: int, actor: User) -> Enrollment:
    enrollment = db.session.get(Enrollment, enrollment_id)
    if not enrollment or (not actor.is_admin and enrollment.student_id != actor.id):
        raise NotFoundError("Enrollment not found")
    return enrollment
