from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow

ARTIST_LULU = "lulu"
ARTIST_SENIOR = "senior"
ARTIST_ARTIST = "artist"
VALID_ARTIST_TYPES = (ARTIST_LULU, ARTIST_SENIOR, ARTIST_ARTIST)

VALID_LOCATIONS = ("calabar", "port-harcourt")
VALID_SERVICE_CATEGORIES = ("brows", "lashes", "signature")

BOOKING_PENDING = "pending"
BOOKING_CONFIRMED = "confirmed"
BOOKING_IN_PROGRESS = "in-progress"
BOOKING_COMPLETED = "completed"
BOOKING_CANCELLED = "cancelled"
BOOKING_NO_SHOW = "no-show"

VALID_BOOKING_STATUSES = (
    BOOKING_PENDING,
    BOOKING_CONFIRMED,
    BOOKING_IN_PROGRESS,
    BOOKING_COMPLETED,
    BOOKING_CANCELLED,
    BOOKING_NO_SHOW,
)
# A booking in one of these states holds its slot
ACTIVE_BOOKING_STATUSES = (BOOKING_PENDING, BOOKING_CONFIRMED, BOOKING_IN_PROGRESS)

BOOKING_PAYMENT_METHODS = ("paystack", "cash", "transfer")

REFUND_PENDING = "pending"
REFUND_PROCESSED = "processed"
REFUND_REJECTED = "rejected"


class Service(db.Model):
    """Bookable studio service (e.g. microblading) priced per artist tier."""
    __tablename__ = "services"
    __table_args__ = (
        db.UniqueConstraint("slug", name="uq_services_slug"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    slug = db.Column(db.String(220), nullable=False)
    category = db.Column(db.String(32), nullable=False)
    description = db.Column(db.Text, nullable=False)
    duration_minutes = db.Column(db.Integer, nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    total_bookings = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    pricing = db.relationship(
        "ServicePricing",
        backref="service",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="ServicePricing.id",
    )

    def price_for(self, artist_type: str) -> int | None:
        for tier in self.pricing:
            if tier.artist_type == artist_type:
                return tier.price_cents
        return None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "category": self.category,
            "description": self.description,
            "duration_minutes": self.duration_minutes,
            "is_active": self.is_active,
            "total_bookings": self.total_bookings,
            "pricing": [p.to_dict() for p in self.pricing],
            "created_at": to_utc_z(self.created_at),
        }


class ServicePricing(db.Model):
    __tablename__ = "service_pricing"
    __table_args__ = (
        db.UniqueConstraint("service_id", "artist_type", name="uq_service_pricing_artist"),
        db.CheckConstraint("price_cents >= 0", name="ck_service_pricing_price_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    service_id = db.Column(db.Integer, db.ForeignKey("services.id"), nullable=False, index=True)
    artist_type = db.Column(db.String(16), nullable=False)
    price_cents = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {"artist_type": self.artist_type, "price_cents": self.price_cents}


class Booking(db.Model):
    """
    Studio appointment in a 1-hour slot.

    SLOT INVARIANT:
    At most one active booking (pending, confirmed, in-progress) per
    (date, location, artist type, slot start). Enforced by the unique
    active_slot_key column, which holds "date|location|artist|start" while the
    booking is active and NULL otherwise (NULLs never collide).

    PAYMENT:
    Two legs, deposit (50%, rounded half-up) and balance (the remainder),
    each with its own paid flag and gateway reference.
    """
    __tablename__ = "bookings"
    __table_args__ = (
        db.UniqueConstraint("booking_number", name="uq_bookings_booking_number"),
        db.UniqueConstraint("active_slot_key", name="uq_bookings_active_slot_key"),
        db.Index("ix_bookings_date_location_artist", "appointment_date", "location", "artist_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    booking_number = db.Column(db.String(32), nullable=False)

    customer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    customer_first_name = db.Column(db.String(100), nullable=False)
    customer_last_name = db.Column(db.String(100), nullable=False)
    customer_email = db.Column(db.String(255), nullable=False)
    customer_phone = db.Column(db.String(32), nullable=True)

    service_id = db.Column(db.Integer, db.ForeignKey("services.id"), nullable=False)
    service_name = db.Column(db.String(200), nullable=False)
    service_description = db.Column(db.Text, nullable=True)
    service_duration_minutes = db.Column(db.Integer, nullable=False)

    artist_type = db.Column(db.String(16), nullable=False)
    artist_name = db.Column(db.String(100), nullable=True)
    location = db.Column(db.String(32), nullable=False)

    appointment_date = db.Column(db.Date, nullable=False)
    slot_start = db.Column(db.String(5), nullable=False)  # "HH:MM"
    slot_end = db.Column(db.String(5), nullable=False)
    active_slot_key = db.Column(db.String(80), nullable=True)

    service_price_cents = db.Column(db.Integer, nullable=False)
    deposit_cents = db.Column(db.Integer, nullable=False)
    balance_cents = db.Column(db.Integer, nullable=False)

    deposit_paid = db.Column(db.Boolean, nullable=False, default=False)
    deposit_reference = db.Column(db.String(128), nullable=True)
    deposit_paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    balance_paid = db.Column(db.Boolean, nullable=False, default=False)
    balance_reference = db.Column(db.String(128), nullable=True)
    balance_paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    payment_method = db.Column(db.String(16), nullable=True)

    status = db.Column(db.String(16), nullable=False, default=BOOKING_PENDING, index=True)
    customer_notes = db.Column(db.Text, nullable=True)
    admin_notes = db.Column(db.Text, nullable=True)

    cancelled_by = db.Column(db.String(16), nullable=True)  # customer | admin
    cancelled_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancellation_reason = db.Column(db.String(255), nullable=True)
    refund_amount_cents = db.Column(db.Integer, nullable=True)
    refund_status = db.Column(db.String(16), nullable=True)

    # Money arrived for a booking that was already cancelled; needs a human
    payment_after_cancellation = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_BOOKING_STATUSES

    @property
    def amount_paid_cents(self) -> int:
        paid = 0
        if self.deposit_paid:
            paid += self.deposit_cents
        if self.balance_paid:
            paid += self.balance_cents
        return paid

    def __repr__(self) -> str:
        return f"<Booking {self.booking_number} {self.appointment_date} {self.slot_start} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "booking_number": self.booking_number,
            "customer_id": self.customer_id,
            "customer": {
                "first_name": self.customer_first_name,
                "last_name": self.customer_last_name,
                "email": self.customer_email,
                "phone": self.customer_phone,
            },
            "service": {
                "id": self.service_id,
                "name": self.service_name,
                "description": self.service_description,
                "duration_minutes": self.service_duration_minutes,
            },
            "artist": {"type": self.artist_type, "name": self.artist_name},
            "location": self.location,
            "appointment_date": self.appointment_date.isoformat(),
            "time_slot": {"start": self.slot_start, "end": self.slot_end},
            "pricing": {
                "service_price_cents": self.service_price_cents,
                "deposit_cents": self.deposit_cents,
                "balance_cents": self.balance_cents,
            },
            "payment": {
                "method": self.payment_method,
                "deposit": {
                    "paid": self.deposit_paid,
                    "reference": self.deposit_reference,
                    "paid_at": to_utc_z(self.deposit_paid_at) if self.deposit_paid_at else None,
                },
                "balance": {
                    "paid": self.balance_paid,
                    "reference": self.balance_reference,
                    "paid_at": to_utc_z(self.balance_paid_at) if self.balance_paid_at else None,
                },
                "amount_paid_cents": self.amount_paid_cents,
                "payment_after_cancellation": self.payment_after_cancellation,
            },
            "status": self.status,
            "customer_notes": self.customer_notes,
            "cancellation": {
                "cancelled_by": self.cancelled_by,
                "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
                "reason": self.cancellation_reason,
                "refund_amount_cents": self.refund_amount_cents,
                "refund_status": self.refund_status,
            } if self.cancelled_at else None,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
