# Overview: Display-number allocation for orders, bookings and enrollments.

from datetime import datetime

import pytest

from storefront.extensions import db
from storefront.models import DocumentSequence
from storefront.services.document_service import DocumentSequenceError, next_document_number


JUNE_1 = datetime(2025, 6, 1, 10, 30)


class TestNextDocumentNumber:

    def test_orders_count_up_within_a_day(self, db_session):
        first = next_document_number(document_type="ORDER", now=JUNE_1)
        second = next_document_number(document_type="ORDER", now=JUNE_1)
        db_session.commit()

        assert first == "ORD-20250601-0001"
        assert second == "ORD-20250601-0002"

    def test_order_counter_resets_daily(self, db_session):
        next_document_number(document_type="ORDER", now=JUNE_1)
        assert next_document_number(document_type="ORDER", now=datetime(2025, 6, 2)) == "ORD-20250602-0001"

    def test_bookings_and_enrollments_are_monthly_and_independent(self, db_session):
        assert next_document_number(document_type="BOOKING", now=JUNE_1) == "BK-202506-0001"
        assert next_document_number(document_type="BOOKING", now=datetime(2025, 6, 30)) == "BK-202506-0002"
        assert next_document_number(document_type="ENROLLMENT", now=JUNE_1) == "ENR-202506-0001"
        assert next_document_number(document_type="BOOKING", now=datetime(2025, 7, 1)) == "BK-202507-0001"

    def test_unknown_type(self, db_session):
        with pytest.raises(DocumentSequenceError):
            next_document_number(document_type="INVOICE")

    def test_rollback_returns_the_number(self, db_session):
        next_document_number(document_type="ORDER", now=JUNE_1)
        db_session.commit()

        next_document_number(document_type="ORDER", now=JUNE_1)
        db_session.rollback()

        assert next_document_number(document_type="ORDER", now=JUNE_1) == "ORD-20250601-0002"

    def test_first_allocation_keeps_pending_work(self, db_session):
        db_session.add(DocumentSequence(document_type="BOOKING", scope="209912", next_number=7))
        next_document_number(document_type="ORDER", now=JUNE_1)
        db_session.commit()

        scopes = {row.scope for row in db.session.query(DocumentSequence)}
        assert scopes == {"209912", "20250601"}
