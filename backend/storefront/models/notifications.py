from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow

NOTIFICATION_QUEUED = "queued"
NOTIFICATION_SENT = "sent"


class Notification(db.Model):
    """
    Outbox row for a customer-facing message (email).

    dedupe_key is unique, so the same confirmation is queued once no matter
    how many times the reconciler runs for a payment.
    """
    __tablename__ = "notifications"
    __table_args__ = (
        db.UniqueConstraint("dedupe_key", name="uq_notifications_dedupe_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    dedupe_key = db.Column(db.String(128), nullable=False)
    kind = db.Column(db.String(48), nullable=False)
    recipient = db.Column(db.String(255), nullable=False)
    subject = db.Column(db.String(255), nullable=False)
    body = db.Column(db.Text, nullable=False)
    status = db.Column(db.String(16), nullable=False, default=NOTIFICATION_QUEUED, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    sent_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "dedupe_key": self.dedupe_key,
            "kind": self.kind,
            "recipient": self.recipient,
            "subject": self.subject,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
            "sent_at": to_utc_z(self.sent_at) if self.sent_at else None,
        }
