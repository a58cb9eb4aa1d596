"""
Users and their role grants.

Authentication itself happens upstream; the workflow only needs to know which
roles a user currently holds. A grant is revoked by clearing
``UserRole.is_active`` so the history of who could approve stays queryable.
"""

from datetime import datetime, timezone

from coopflow.models import db

SUPER_ADMIN = "SUPER_ADMIN"
CHAIRMAN = "CHAIRMAN"
TREASURER = "TREASURER"
ADMIN = "ADMIN"
MEMBER = "MEMBER"


def _utcnow():
    return datetime.now(timezone.utc)


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(100), unique=True, nullable=False)
    full_name = db.Column(db.String(200))
    email = db.Column(db.String(200))
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    grants = db.relationship(
        "UserRole", back_populates="user", lazy="dynamic", cascade="all, delete-orphan",
    )

    def summary(self):
        """Embedded as initiator / approver in request payloads."""
        return {"id": self.id, "username": self.username, "full_name": self.full_name}

    def __repr__(self):
        return f"<User {self.username}>"


class Role(db.Model):
    __tablename__ = "roles"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), unique=True, nullable=False)
    description = db.Column(db.Text)
    # 0 = no approval authority; CHAIRMAN and SUPER_ADMIN sit at the top
    approval_level = db.Column(db.Integer, default=0, nullable=False)
    can_approve = db.Column(db.Boolean, default=False)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    grants = db.relationship("UserRole", back_populates="role", lazy="dynamic")

    def __repr__(self):
        return f"<Role {self.name} L{self.approval_level}>"


class UserRole(db.Model):
    __tablename__ = "user_roles"
    __table_args__ = (db.UniqueConstraint("user_id", "role_id", name="uq_user_role"),)

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    role_id = db.Column(
        db.Integer, db.ForeignKey("roles.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    assigned_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    user = db.relationship("User", back_populates="grants")
    role = db.relationship("Role", back_populates="grants")
