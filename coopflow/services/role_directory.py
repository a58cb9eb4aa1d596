"""
Role directory: who holds which role, and how much authority that carries.

Every lookup is a live query. Role membership can change between approval
levels, so the "review needed" fan-out asks again at each transition.
"""

from __future__ import annotations

import logging

from sqlalchemy import func, select

from coopflow.core.exceptions import NotFoundError, ValidationError
from coopflow.models import db
from coopflow.models.auth import (
    ADMIN,
    CHAIRMAN,
    MEMBER,
    SUPER_ADMIN,
    TREASURER,
    Role,
    User,
    UserRole,
)

logger = logging.getLogger(__name__)

# name → (description, approval_level, can_approve)
DEFAULT_ROLES = {
    SUPER_ADMIN: ("Full system access", 3, True),
    CHAIRMAN: ("Cooperative chairman, final approver", 3, True),
    TREASURER: ("Treasurer, financial verification and disbursement", 2, True),
    ADMIN: ("Administrator, first-line review", 1, False),
    MEMBER: ("Cooperative member", 0, False),
}


def seed_default_roles() -> list[Role]:
    """Create any missing default role. Idempotent; commits."""
    existing = {r.name: r for r in db.session.execute(select(Role)).scalars()}
    created = []
    for name, (description, level, can_approve) in DEFAULT_ROLES.items():
        if name in existing:
            continue
        role = Role(name=name, description=description,
                    approval_level=level, can_approve=can_approve)
        db.session.add(role)
        created.append(role)
    db.session.commit()
    if created:
        logger.info("Seeded roles: %s", ", ".join(r.name for r in created))
    return created


def assign_role(user_id: int, role_name: str) -> UserRole:
    """Grant ``role_name`` to ``user_id`` (reactivating a revoked grant). Flushes only."""
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError("User", user_id)
    role = db.session.execute(select(Role).where(Role.name == role_name)).scalar_one_or_none()
    if role is None:
        raise ValidationError(f"Unknown role {role_name}", details={"role": "unknown"})

    grant = db.session.execute(
        select(UserRole).where(UserRole.user_id == user_id, UserRole.role_id == role.id)
    ).scalar_one_or_none()
    if grant is None:
        grant = UserRole(user_id=user_id, role_id=role.id, is_active=True)
        db.session.add(grant)
    else:
        grant.is_active = True
    db.session.flush()
    return grant


def users_with_role(role_name: str) -> list[int]:
    """Ids of active users currently holding ``role_name``."""
    stmt = (
        select(UserRole.user_id)
        .join(Role, Role.id == UserRole.role_id)
        .join(User, User.id == UserRole.user_id)
        .where(Role.name == role_name, UserRole.is_active.is_(True), User.is_active.is_(True))
        .order_by(UserRole.user_id)
    )
    return list(db.session.execute(stmt).scalars())


def role_names_for(user_id: int) -> set[str]:
    """Names of the user's active grants. A deactivated user holds none."""
    stmt = (
        select(Role.name)
        .join(UserRole, UserRole.role_id == Role.id)
        .join(User, User.id == UserRole.user_id)
        .where(UserRole.user_id == user_id, UserRole.is_active.is_(True), User.is_active.is_(True))
    )
    return set(db.session.execute(stmt).scalars())


def caller_has_role(user_id: int, role_name: str) -> bool:
    """True if the user holds ``role_name``; SUPER_ADMIN holds every role."""
    if user_id is None:
        return False
    names = role_names_for(user_id)
    return role_name in names or SUPER_ADMIN in names


def caller_approval_level(user_id: int) -> int:
    """Highest approval level among the user's active roles (0 if none)."""
    if user_id is None:
        return 0
    stmt = (
        select(func.max(Role.approval_level))
        .join(UserRole, UserRole.role_id == Role.id)
        .join(User, User.id == UserRole.user_id)
        .where(UserRole.user_id == user_id, UserRole.is_active.is_(True), User.is_active.is_(True))
    )
    return db.session.execute(stmt).scalar() or 0
