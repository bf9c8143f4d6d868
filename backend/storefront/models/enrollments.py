from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow

ENROLLMENT_PENDING = "pending"
ENROLLMENT_ACTIVE = "active"
ENROLLMENT_COMPLETED = "completed"
ENROLLMENT_CANCELLED = "cancelled"
ENROLLMENT_ON_HOLD = "on-hold"


class Course(db.Model):
    """Academy training course students can enroll in."""
    __tablename__ = "courses"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    category = db.Column(db.String(32), nullable=False)
    course_type = db.Column(db.String(32), nullable=False, default="physical")
    price_cents = db.Column(db.Integer, nullable=False)
    duration = db.Column(db.String(64), nullable=True)  # "5 days", "3 weeks"
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "category": self.category,
            "type": self.course_type,
            "price_cents": self.price_cents,
            "duration": self.duration,
            "is_active": self.is_active,
        }


class Enrollment(db.Model):
    """Student enrollment; becomes active when its payment is reconciled."""
    __tablename__ = "enrollments"
    __table_args__ = (
        db.UniqueConstraint("enrollment_number", name="uq_enrollments_enrollment_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    enrollment_number = db.Column(db.String(32), nullable=False)
    student_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    course_id = db.Column(db.Integer, db.ForeignKey("courses.id"), nullable=False)
    course_title = db.Column(db.String(200), nullable=False)
    course_category = db.Column(db.String(32), nullable=True)
    course_duration = db.Column(db.String(64), nullable=True)

    start_date = db.Column(db.Date, nullable=False)
    location = db.Column(db.String(32), nullable=False)

    amount_cents = db.Column(db.Integer, nullable=False)
    payment_status = db.Column(db.String(16), nullable=False, default="pending")
    payment_reference = db.Column(db.String(128), nullable=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)

    status = db.Column(db.String(16), nullable=False, default=ENROLLMENT_PENDING, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "enrollment_number": self.enrollment_number,
            "student_id": self.student_id,
            "course": {
                "id": self.course_id,
                "title": self.course_title,
                "category": self.course_category,
                "duration": self.course_duration,
            },
            "start_date": self.start_date.isoformat(),
            "location": self.location,
            "payment": {
                "amount_cents": self.amount_cents,
                "status": self.payment_status,
                "reference": self.payment_reference,
                "paid_at": to_utc_z(self.paid_at) if self.paid_at else None,
            },
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
        }
