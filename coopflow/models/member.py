"""
Cooperative Request Workflow
Member (biodata) model.

Models:
    - Member: a cooperative member's biodata record. The workflow engine only
      flips ``is_approved`` (biodata approval) and ``membership_status``
      (account closure); all other fields are display context.
"""

import uuid
from datetime import datetime, timezone

from coopflow.models import db


# ── Constants ────────────────────────────────────────────────────────────────

MEMBERSHIP_PENDING = "PENDING"
MEMBERSHIP_ACTIVE = "ACTIVE"
MEMBERSHIP_INACTIVE = "INACTIVE"
MEMBERSHIP_SUSPENDED = "SUSPENDED"

MEMBERSHIP_STATUSES = {
    MEMBERSHIP_PENDING, MEMBERSHIP_ACTIVE, MEMBERSHIP_INACTIVE, MEMBERSHIP_SUSPENDED,
}


class Member(db.Model):
    """Biodata record of a cooperative member."""

    __tablename__ = "members"

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    erp_id = db.Column(db.String(50), unique=True, nullable=False)
    full_name = db.Column(db.String(200), nullable=False)
    department = db.Column(db.String(150))
    email_address = db.Column(db.String(200))
    phone_number = db.Column(db.String(30))
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    is_approved = db.Column(db.Boolean, default=False, nullable=False)
    membership_status = db.Column(db.String(20), default=MEMBERSHIP_PENDING, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    def summary(self):
        """Display slice embedded in request payloads."""
        return {
            "id": self.id,
            "full_name": self.full_name,
            "department": self.department,
            "erp_id": self.erp_id,
            "email_address": self.email_address,
            "phone_number": self.phone_number,
        }

    def to_dict(self):
        d = self.summary()
        d.update({
            "user_id": self.user_id,
            "is_approved": self.is_approved,
            "membership_status": self.membership_status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        })
        return d

    def __repr__(self):
        return f"<Member {self.erp_id}: {self.full_name}>"
