"""
Notifications raised by request workflow events.

A row is written for every recipient of an event: the initiator hears about
each status change, the next level's approvers hear that a request awaits
them.
"""

from datetime import datetime, timezone

from coopflow.models import db

KIND_REQUEST_UPDATE = "REQUEST_UPDATE"
KIND_APPROVAL_REQUIRED = "APPROVAL_REQUIRED"
NOTIFICATION_KINDS = {KIND_REQUEST_UPDATE, KIND_APPROVAL_REQUIRED}


def _utcnow():
    return datetime.now(timezone.utc)


class Notification(db.Model):
    __tablename__ = "notifications"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    kind = db.Column(db.String(30), nullable=False, default=KIND_REQUEST_UPDATE)
    title = db.Column(db.String(300), nullable=False)
    message = db.Column(db.Text, nullable=False, default="")
    request_id = db.Column(
        db.String(36), db.ForeignKey("requests.id", ondelete="CASCADE"), nullable=True, index=True,
    )
    # "metadata" is reserved on declarative classes
    meta = db.Column("metadata", db.JSON, default=dict)

    is_read = db.Column(db.Boolean, nullable=False, default=False)
    read_at = db.Column(db.DateTime(timezone=True))
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow, index=True)

    def mark_read(self):
        if not self.is_read:
            self.is_read = True
            self.read_at = _utcnow()

    def to_dict(self):
        payload = {
            c: getattr(self, c)
            for c in ("id", "user_id", "kind", "title", "message", "request_id", "is_read")
        }
        payload["metadata"] = self.meta or {}
        for stamp in ("read_at", "created_at"):
            value = getattr(self, stamp)
            payload[stamp] = value.isoformat() if value else None
        return payload

    def __repr__(self):
        return f"<Notification #{self.id} to user {self.user_id} ({self.kind})>"
