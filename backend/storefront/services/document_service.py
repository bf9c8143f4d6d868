# Overview: Allocates human-readable document numbers (orders, bookings, enrollments).

from __future__ import annotations

from datetime import datetime

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence
from ..time_utils import utcnow


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


# document_type -> (prefix, strftime pattern for the reset scope)
DOCUMENT_FORMATS = {
    "ORDER": ("ORD", "%Y%m%d"),
    "BOOKING": ("BK", "%Y%m"),
    "ENROLLMENT": ("ENR", "%Y%m"),
}


def next_document_number(
    *,
    document_type: str,
    now: datetime | None = None,
    pad: int = 4,
) -> str:
    """
    Atomically allocate the next number for a document type in the current period.

    ORDER      -> ORD-YYYYMMDD-NNNN (counter resets daily)
    BOOKING    -> BK-YYYYMM-NNNN    (counter resets monthly)
    ENROLLMENT -> ENR-YYYYMM-NNNN

    Runs inside the caller's transaction. The counter row is bumped with a
    single UPDATE, so two concurrent callers can never read the same value.
    The first allocation of a period inserts the row inside a SAVEPOINT;
    losing that insert race falls back to the UPDATE path without
    discarding the caller's pending work.
    """
    if document_type not in DOCUMENT_FORMATS:
        raise DocumentSequenceError(f"Unknown document type: {document_type}")

    prefix, scope_format = DOCUMENT_FORMATS[document_type]
    scope = (now or utcnow()).strftime(scope_format)

    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.document_type == document_type,
            DocumentSequence.scope == scope,
        )
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )

    def _current() -> int:
        return (
            db.session.query(DocumentSequence.next_number)
            .filter_by(document_type=document_type, scope=scope)
            .scalar()
        )

    result = db.session.execute(stmt)
    if result.rowcount:
        next_num = _current() - 1
    else:
        try:
            with db.session.begin_nested():
                db.session.add(DocumentSequence(document_type=document_type, scope=scope, next_number=2))
            next_num = 1
        except IntegrityError:
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise DocumentSequenceError(f"Could not allocate {document_type} number")
            next_num = _current() - 1

    return f"{prefix}-{scope}-{next_num:0{pad}d}"
