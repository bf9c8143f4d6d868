# Overview: Booking slot allocation, the double-booking guard, status moves and cancellation.

from datetime import datetime, timedelta

import pytest

from storefront.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from storefront.models.bookings import BOOKING_CANCELLED, REFUND_PENDING
from storefront.services import booking_service
from storefront.time_utils import utcnow


BEFORE_DAY = datetime(2025, 5, 1, 9, 0)


def _payload(service, start="10:00", **kw):
    body = {
        "service_id": service.id,
        "artist_type": "senior",
        "location": "calabar",
        "date": "2025-06-01",
        "time_slot": start,
    }
    body.update(kw)
    return body


class TestSlots:

    def test_open_day_has_ten_hourly_slots(self, db_session):
        slots = booking_service.list_available_slots("2025-06-01", "calabar", "senior")
        assert [s.start for s in slots][:2] == ["08:00", "09:00"]
        assert slots[-1].to_dict() == {"start": "17:00", "end": "18:00"}
        assert len(slots) == 10

    def test_booked_slot_is_not_offered(self, brow_service, customer):
        booking_service.create_booking(_payload(brow_service), user=customer, now=BEFORE_DAY)

        starts = [s.start for s in booking_service.list_available_slots("2025-06-01", "calabar", "senior")]
        assert "10:00" not in starts
        assert len(starts) == 9

        # Other artist types and locations are independent
        assert len(booking_service.list_available_slots("2025-06-01", "calabar", "lulu")) == 10
        assert len(booking_service.list_available_slots("2025-06-01", "port-harcourt", "senior")) == 10

    def test_second_booking_of_same_slot_conflicts(self, brow_service, customer, other_customer):
        booking_service.create_booking(_payload(brow_service), user=customer, now=BEFORE_DAY)

        with pytest.raises(ConflictError):
            booking_service.create_booking(_payload(brow_service), user=other_customer, now=BEFORE_DAY)

        booking = booking_service.create_booking(
            _payload(brow_service, start="11:00"), user=other_customer, now=BEFORE_DAY
        )
        assert booking.slot_start == "11:00"
        assert booking.slot_end == "12:00"

    def test_cancelled_booking_frees_slot(self, brow_service, customer, other_customer, admin):
        first = booking_service.create_booking(_payload(brow_service), user=customer, now=BEFORE_DAY)
        booking_service.cancel_booking(first.id, actor=admin, reason="Studio closed")

        again = booking_service.create_booking(_payload(brow_service), user=other_customer, now=BEFORE_DAY)
        assert again.active_slot_key == "2025-06-01|calabar|senior|10:00"

    def test_bad_inputs(self, brow_service, customer):
        with pytest.raises(ValidationError):
            booking_service.list_available_slots("2025-13-01", "calabar", "senior")
        with pytest.raises(ValidationError):
            booking_service.list_available_slots("2025-06-01", "lagos", "senior")
        with pytest.raises(ValidationError):
            booking_service.create_booking(_payload(brow_service, start="19:00"), user=customer, now=BEFORE_DAY)
        with pytest.raises(ValidationError):
            booking_service.create_booking(_payload(brow_service), user=customer, now=datetime(2025, 6, 2))


class TestCreateBooking:

    def test_snapshot_and_deposit(self, brow_service, customer):
        booking = booking_service.create_booking(
            _payload(brow_service, artist_type="artist", time_slot={"start": "09:00"}),
            user=customer,
            now=BEFORE_DAY,
        )
        assert booking.booking_number == "BK-202505-0001"
        assert booking.status == "pending"
        assert booking.service_name == "Microblading"
        assert booking.service_price_cents == 7000001
        assert booking.deposit_cents == 3500001
        assert booking.balance_cents == 3500000
        assert not booking.deposit_paid

    def test_unknown_service(self, customer, db_session):
        with pytest.raises(NotFoundError):
            booking_service.create_booking(
                {"service_id": 999, "artist_type": "senior", "location": "calabar",
                 "date": "2025-06-01", "time_slot": "10:00"},
                user=customer,
                now=BEFORE_DAY,
            )

    def test_booking_over_api(self, client, brow_service, customer_headers):
        day = (utcnow() + timedelta(days=10)).date().isoformat()
        body = {"service_id": brow_service.id, "artist_type": "lulu", "location": "calabar",
                "date": day, "time_slot": "14:00"}

        resp = client.post("/api/bookings", json=body, headers=customer_headers)
        assert resp.status_code == 201
        assert resp.json["booking"]["pricing"]["deposit_cents"] == 7500000

        assert client.post("/api/bookings", json=body, headers=customer_headers).status_code == 409

        resp = client.get(f"/api/bookings/availability?date={day}&location=calabar&artist_type=lulu")
        assert resp.status_code == 200
        assert "14:00" not in [s["start"] for s in resp.json["slots"]]

    def test_booking_requires_login(self, client, brow_service):
        resp = client.post("/api/bookings", json={"service_id": brow_service.id})
        assert resp.status_code == 401


class TestStatusAndCancellation:

    def test_admin_status_path(self, brow_service, customer, admin):
        booking = booking_service.create_booking(_payload(brow_service), user=customer, now=BEFORE_DAY)

        with pytest.raises(ConflictError):
            booking_service.update_booking_status(booking.id, new_status="completed", actor=admin)

        for status in ("confirmed", "in-progress", "completed"):
            booking = booking_service.update_booking_status(booking.id, new_status=status, actor=admin)
        assert booking.status == "completed"
        assert booking.active_slot_key is None

    def test_owner_cannot_cancel_inside_window(self, brow_service, customer):
        booking = booking_service.create_booking(_payload(brow_service), user=customer, now=BEFORE_DAY)

        with pytest.raises(ConflictError):
            booking_service.cancel_booking(booking.id, actor=customer, now=datetime(2025, 5, 31, 12, 0))

        cancelled = booking_service.cancel_booking(booking.id, actor=customer, now=datetime(2025, 5, 30, 9, 0))
        assert cancelled.status == BOOKING_CANCELLED
        assert cancelled.cancelled_by == "customer"
        assert cancelled.refund_status is None

    def test_other_customer_cannot_cancel(self, brow_service, customer, other_customer):
        booking = booking_service.create_booking(_payload(brow_service), user=customer, now=BEFORE_DAY)
        with pytest.raises(AuthorizationError):
            booking_service.cancel_booking(booking.id, actor=other_customer, now=BEFORE_DAY)

    def test_cancel_after_deposit_records_pending_refund(self, brow_service, customer, admin, db_session):
        booking = booking_service.create_booking(_payload(brow_service), user=customer, now=BEFORE_DAY)
        booking.deposit_paid = True
        booking.status = "confirmed"
        db_session.commit()

        cancelled = booking_service.cancel_booking(booking.id, actor=admin, reason="Artist ill")
        assert cancelled.cancelled_by == "admin"
        assert cancelled.refund_amount_cents == booking.deposit_cents
        assert cancelled.refund_status == REFUND_PENDING

        with pytest.raises(ConflictError):
            booking_service.cancel_booking(booking.id, actor=admin)

    def test_past_appointment_date_rejected(self, brow_service, customer):
        with pytest.raises(ValidationError):
            booking_service.create_booking(
                _payload(brow_service, date=(utcnow() - timedelta(days=2)).date().isoformat()),
                user=customer,
            )
