# Overview: Booking slot allocation, booking lifecycle and the bookable service catalog.

"""
Booking Service

SLOTS:
Fixed 1-hour buckets from BOOKING_OPENING_HOUR to BOOKING_CLOSING_HOUR.
A slot is held by a booking in pending / confirmed / in-progress for the
same (date, location, artist type, start).

DOUBLE-BOOKING GUARD:
1. Availability reads are advisory.
2. reserve_slot() re-checks inside the creating transaction.
3. The unique active_slot_key column is authoritative: two concurrent
   inserts for the same slot cannot both commit. The key is cleared when a
   booking leaves the active statuses so the slot frees up.

STATUS:
  pending -> confirmed -> in-progress -> completed
  confirmed -> no-show
  pending | confirmed | in-progress -> cancelled (cancel_booking only)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Booking, Service, ServicePricing, User
from ..models.bookings import (
    ACTIVE_BOOKING_STATUSES,
    BOOKING_CANCELLED,
    BOOKING_COMPLETED,
    BOOKING_CONFIRMED,
    BOOKING_IN_PROGRESS,
    BOOKING_NO_SHOW,
    BOOKING_PENDING,
    REFUND_PENDING,
    VALID_ARTIST_TYPES,
    VALID_BOOKING_STATUSES,
    VALID_LOCATIONS,
    VALID_SERVICE_CATEGORIES,
)
from ..time_utils import parse_hhmm, parse_iso_date, utcnow
from ..validation import coerce_int
from .catalog_service import slugify
from .concurrency import lock_for_update, run_with_retry
from .document_service import next_document_number

ALLOWED_TRANSITIONS = {
    BOOKING_PENDING: {BOOKING_CONFIRMED},
    BOOKING_CONFIRMED: {BOOKING_IN_PROGRESS, BOOKING_NO_SHOW},
    BOOKING_IN_PROGRESS: {BOOKING_COMPLETED},
}


@dataclass(frozen=True)
class Slot:
    start: str
    end: str

    def to_dict(self) -> dict:
        return {"start": self.start, "end": self.end}


# =============================================================================
# SLOTS
# =============================================================================

def _validate_slot_inputs(appointment_date, location, artist_type) -> date:
    try:
        parsed = parse_iso_date(appointment_date)
    except ValueError:
        raise ValidationError("date must be YYYY-MM-DD", {"field": "date"})
    if parsed is None:
        raise ValidationError("date is required", {"field": "date"})
    if location not in VALID_LOCATIONS:
        raise ValidationError(f"location must be one of: {', '.join(VALID_LOCATIONS)}", {"field": "location"})
    if artist_type not in VALID_ARTIST_TYPES:
        raise ValidationError(f"artist_type must be one of: {', '.join(VALID_ARTIST_TYPES)}", {"field": "artist_type"})
    return parsed


def all_slots() -> list[Slot]:
    opening = current_app.config.get("BOOKING_OPENING_HOUR", 8)
    closing = current_app.config.get("BOOKING_CLOSING_HOUR", 18)
    return [Slot(f"{h:02d}:00", f"{h + 1:02d}:00") for h in range(opening, closing)]


def slot_key(appointment_date: date, location: str, artist_type: str, start: str) -> str:
    return f"{appointment_date.isoformat()}|{location}|{artist_type}|{start}"


def held_slot_starts(appointment_date: date, location: str, artist_type: str) -> set[str]:
    rows = (
        db.session.query(Booking.slot_start)
        .filter(
            Booking.appointment_date == appointment_date,
            Booking.location == location,
            Booking.artist_type == artist_type,
            Booking.status.in_(ACTIVE_BOOKING_STATUSES),
        )
        .all()
    )
    return {r[0] for r in rows}


def list_available_slots(appointment_date, location: str, artist_type: str) -> list[Slot]:
    """Ordered free 1-hour slots for (date, location, artist type)."""
    parsed = _validate_slot_inputs(appointment_date, location, artist_type)
    held = held_slot_starts(parsed, location, artist_type)
    return [s for s in all_slots() if s.start not in held]


def reserve_slot(appointment_date: date, location: str, artist_type: str, start: str) -> tuple[Slot, str]:
    """
    Re-check a slot inside the caller's transaction and return it with its
    active_slot_key. Raises ConflictError if it is held.
    """
    slot = next((s for s in all_slots() if s.start == start), None)
    if slot is None:
        raise ValidationError(f"{start} is not a bookable slot", {"field": "time_slot"})

    key = slot_key(appointment_date, location, artist_type, start)
    if db.session.query(Booking.id).filter_by(active_slot_key=key).first():
        raise ConflictError(
            "This time slot is already booked",
            {"date": appointment_date.isoformat(), "location": location, "artist_type": artist_type, "start": start},
        )
    return slot, key


# =============================================================================
# CREATION
# =============================================================================

def split_deposit(price_cents: int) -> tuple[int, int]:
    """50% deposit rounded half-up; the balance is the remainder."""
    deposit = (price_cents + 1) // 2
    return deposit, price_cents - deposit


def create_booking(payload: dict, *, user: User, now: datetime | None = None) -> Booking:
    """
    Book a service slot for the authenticated customer.

    Payload: service_id, artist_type, location, date (YYYY-MM-DD),
    time_slot ("HH:MM" or {"start": "HH:MM"}), optional artist_name, notes.

    Raises:
        ValidationError: bad fields, date in the past, slot outside hours
        NotFoundError: service missing or inactive, no price for the artist type
        ConflictError: slot already held
    """
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    service_id = coerce_int(payload.get("service_id"), "service_id")
    artist_type = str(payload.get("artist_type") or "").strip().lower()
    location = str(payload.get("location") or "").strip().lower()
    appointment_date = _validate_slot_inputs(payload.get("date"), location, artist_type)

    raw_slot = payload.get("time_slot")
    start = raw_slot.get("start") if isinstance(raw_slot, dict) else raw_slot
    start = str(start or "").strip()
    try:
        start = parse_hhmm(start).strftime("%H:%M")
    except ValueError:
        raise ValidationError("time_slot must be HH:MM", {"field": "time_slot"})

    if appointment_date < (now or utcnow()).date():
        raise ValidationError("Appointment date is in the past", {"field": "date"})

    service = db.session.get(Service, service_id)
    if not service or not service.is_active:
        raise NotFoundError("Service not found")
    price = service.price_for(artist_type)
    if price is None:
        raise NotFoundError(f"{service.name} is not offered by artist type {artist_type}")
    deposit, balance = split_deposit(price)

    def _op() -> Booking:
        try:
            slot, key = reserve_slot(appointment_date, location, artist_type, start)
            booking = Booking(
                booking_number=next_document_number(document_type="BOOKING", now=now),
                customer_id=user.id,
                customer_first_name=user.first_name,
                customer_last_name=user.last_name,
                customer_email=user.email,
                customer_phone=user.phone,
                service_id=service.id,
                service_name=service.name,
                service_description=service.description,
                service_duration_minutes=service.duration_minutes,
                artist_type=artist_type,
                artist_name=payload.get("artist_name"),
                location=location,
                appointment_date=appointment_date,
                slot_start=slot.start,
                slot_end=slot.end,
                active_slot_key=key,
                service_price_cents=price,
                deposit_cents=deposit,
                balance_cents=balance,
                status=BOOKING_PENDING,
                customer_notes=payload.get("notes"),
            )
            db.session.add(booking)
            service.total_bookings = (service.total_bookings or 0) + 1
            db.session.flush()
        except IntegrityError:
            db.session.rollback()
            raise ConflictError(
                "This time slot is already booked",
                {"date": appointment_date.isoformat(), "location": location, "artist_type": artist_type, "start": start},
            )
        except Exception:
            db.session.rollback()
            raise

        db.session.commit()
        return booking

    return run_with_retry(_op)


# =============================================================================
# QUERIES
# =============================================================================

def get_booking(booking_id: int) -> Booking:
    booking = db.session.get(Booking, booking_id)
    if not booking:
        raise NotFoundError("Booking not found")
    return booking


def get_booking_for_actor(booking_id: int, actor: User) -> Booking:
    booking = get_booking(booking_id)
    if not actor.is_admin and booking.customer_id != actor.id:
        raise NotFoundError("Booking not found")
    return booking


def list_bookings_for_user(user_id: int) -> list[Booking]:
    return (
        db.session.query(Booking)
        .filter(Booking.customer_id == user_id)
        .order_by(Booking.appointment_date.desc(), Booking.slot_start.desc())
        .all()
    )


def list_all_bookings(
    *,
    status: str | None = None,
    location: str | None = None,
    appointment_date=None,
    page: int = 1,
    per_page: int = 20,
) -> dict:
    q = db.session.query(Booking)
    if status:
        if status not in VALID_BOOKING_STATUSES:
            raise ValidationError(f"Unknown status: {status}")
        q = q.filter(Booking.status == status)
    if location:
        q = q.filter(Booking.location == location)
    if appointment_date:
        q = q.filter(Booking.appointment_date == parse_iso_date(appointment_date))
    q = q.order_by(Booking.appointment_date.asc(), Booking.slot_start.asc(), Booking.id.asc())

    per_page = min(max(per_page, 1), 100)
    page = max(page, 1)
    total = q.count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1
    bookings = q.offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": [b.to_dict() for b in bookings],
        "count": len(bookings),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


# =============================================================================
# STATUS / CANCELLATION
# =============================================================================

def update_booking_status(booking_id: int, *, new_status: str, actor: User, note: str | None = None) -> Booking:
    """Admin status transition. cancelled is routed through cancel_booking()."""
    if new_status not in VALID_BOOKING_STATUSES:
        raise ValidationError(f"Unknown status: {new_status}", {"field": "status"})
    if new_status == BOOKING_CANCELLED:
        return cancel_booking(booking_id, actor=actor, reason=note or "Cancelled by admin")

    def _op() -> Booking:
        booking = lock_for_update(db.session.query(Booking).filter_by(id=booking_id)).first()
        if not booking:
            raise NotFoundError("Booking not found")
        if new_status == booking.status:
            return booking
        if new_status not in ALLOWED_TRANSITIONS.get(booking.status, set()):
            raise ConflictError(
                f"Cannot move booking from {booking.status} to {new_status}",
                {"current_status": booking.status},
            )

        booking.status = new_status
        if new_status not in ACTIVE_BOOKING_STATUSES:
            booking.active_slot_key = None
        if note:
            booking.admin_notes = note
        db.session.commit()
        return booking

    try:
        return run_with_retry(_op)
    except Exception:
        db.session.rollback()
        raise


def cancel_booking(
    booking_id: int,
    *,
    actor: User,
    reason: str | None = None,
    now: datetime | None = None,
) -> Booking:
    """
    Cancel a booking and free its slot.

    Owners must cancel at least BOOKING_CANCELLATION_WINDOW_HOURS before the
    appointment starts; admins can cancel any active booking. Whatever was
    paid is recorded as a pending refund for an admin to process.
    """
    window = timedelta(hours=current_app.config.get("BOOKING_CANCELLATION_WINDOW_HOURS", 24))

    def _op() -> Booking:
        booking = lock_for_update(db.session.query(Booking).filter_by(id=booking_id)).first()
        if not booking:
            raise NotFoundError("Booking not found")
        if not actor.is_admin and booking.customer_id != actor.id:
            raise AuthorizationError("You can only cancel your own bookings")
        if not booking.is_active:
            raise ConflictError(
                f"Booking cannot be cancelled once {booking.status}",
                {"current_status": booking.status},
            )

        starts_at = datetime.combine(booking.appointment_date, parse_hhmm(booking.slot_start))
        current = now or utcnow()
        if not actor.is_admin and starts_at - current < window:
            raise ConflictError(
                f"Bookings can only be cancelled at least {int(window.total_seconds() // 3600)} hours in advance",
                {"appointment_starts_at": starts_at.isoformat()},
            )

        booking.status = BOOKING_CANCELLED
        booking.active_slot_key = None
        booking.cancelled_by = "admin" if actor.is_admin else "customer"
        booking.cancelled_by_user_id = actor.id
        booking.cancelled_at = current
        booking.cancellation_reason = reason
        refund = booking.amount_paid_cents
        booking.refund_amount_cents = refund
        booking.refund_status = REFUND_PENDING if refund > 0 else None

        db.session.commit()
        return booking

    try:
        return run_with_retry(_op)
    except Exception:
        db.session.rollback()
        raise


# =============================================================================
# SERVICE CATALOG
# =============================================================================

def list_services(*, category: str | None = None, include_inactive: bool = False) -> list[Service]:
    q = db.session.query(Service)
    if not include_inactive:
        q = q.filter(Service.is_active.is_(True))
    if category:
        q = q.filter(Service.category == category)
    return q.order_by(Service.name.asc()).all()


def create_service(payload: dict) -> Service:
    """
    Admin: create a bookable service with per-artist-type pricing.

    pricing is {"lulu": 5000000, "senior": 3500000, ...} in kobo.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    name = str(payload.get("name") or "").strip()
    if not name:
        raise ValidationError("name is required", {"field": "name"})
    category = str(payload.get("category") or "").strip().lower()
    if category not in VALID_SERVICE_CATEGORIES:
        raise ValidationError(
            f"category must be one of: {', '.join(VALID_SERVICE_CATEGORIES)}",
            {"field": "category"},
        )
    duration = coerce_int(payload.get("duration_minutes", 60), "duration_minutes")
    if duration < 1:
        raise ValidationError("duration_minutes must be positive")

    pricing = payload.get("pricing")
    if not isinstance(pricing, dict) or not pricing:
        raise ValidationError("pricing is required", {"field": "pricing"})

    slug = slugify(payload.get("slug") or name)
    if db.session.query(Service.id).filter_by(slug=slug).first():
        raise ConflictError(f"Service '{slug}' already exists")

    service = Service(
        name=name,
        slug=slug,
        category=category,
        description=str(payload.get("description") or "").strip(),
        duration_minutes=duration,
        is_active=bool(payload.get("is_active", True)),
    )
    for artist_type, price in pricing.items():
        if artist_type not in VALID_ARTIST_TYPES:
            raise ValidationError(f"Unknown artist type in pricing: {artist_type}")
        price_cents = coerce_int(price, f"pricing.{artist_type}")
        if price_cents < 0:
            raise ValidationError("Prices must be >= 0")
        service.pricing.append(ServicePricing(artist_type=artist_type, price_cents=price_cents))

    db.session.add(service)
    db.session.commit()
    return service
