from __future__ import annotations

from ..extensions import db


class DocumentSequence(db.Model):
    """
    Atomic display-number counters.

    WHY: Order/booking/enrollment numbers must be unique under concurrent
    creation, so they come from a row incremented with a single UPDATE rather
    than from counting existing documents.

    scope is the period the counter resets on: "20250601" for per-day order
    numbers, "202506" for monthly booking and enrollment numbers.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("document_type", "scope", name="uq_doc_sequences_type_scope"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_type = db.Column(db.String(32), nullable=False, index=True)
    scope = db.Column(db.String(16), nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
