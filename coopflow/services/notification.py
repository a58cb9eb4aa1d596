"""
Workflow notifications.

``notify`` and ``notify_role`` only stage rows on the session. They ride in
the same transaction as the status change that produced them, so a rolled
back transition leaves no notification behind.
"""

import logging

from sqlalchemy import func, select

from coopflow.core.exceptions import NotFoundError
from coopflow.models import db
from coopflow.models.notification import KIND_REQUEST_UPDATE, Notification
from coopflow.services.role_directory import users_with_role

logger = logging.getLogger(__name__)


def _inbox(user_id, unread_only=False):
    stmt = select(Notification).where(Notification.user_id == user_id)
    if unread_only:
        stmt = stmt.where(Notification.is_read.is_(False))
    return stmt


class NotificationService:

    @staticmethod
    def notify(user_id, *, title, message="", kind=KIND_REQUEST_UPDATE,
               request_id=None, metadata=None):
        """Stage one notification for ``user_id``. The caller commits."""
        notif = Notification(
            user_id=user_id, kind=kind, title=title, message=message,
            request_id=request_id, meta=dict(metadata or {}),
        )
        db.session.add(notif)
        return notif

    @staticmethod
    def notify_role(role_name, *, title, message="", kind=KIND_REQUEST_UPDATE,
                    request_id=None, metadata=None):
        """Stage a notification for every active holder of ``role_name``."""
        staged = [
            NotificationService.notify(
                uid, title=title, message=message, kind=kind,
                request_id=request_id, metadata=metadata,
            )
            for uid in users_with_role(role_name)
        ]
        logger.debug("Notified %d holder(s) of %s", len(staged), role_name,
                     extra={"request_ref": request_id})
        return staged

    @staticmethod
    def list_for_user(user_id, unread_only=False, limit=50, offset=0):
        """Return ``(page, total)`` of the user's notifications, newest first."""
        stmt = _inbox(user_id, unread_only)
        total = db.session.scalar(select(func.count()).select_from(stmt.subquery()))
        page = db.session.scalars(
            stmt.order_by(Notification.created_at.desc(), Notification.id.desc())
            .limit(limit).offset(offset)
        ).all()
        return page, total

    @staticmethod
    def unread_count(user_id):
        return db.session.scalar(
            select(func.count()).select_from(_inbox(user_id, unread_only=True).subquery())
        )

    @staticmethod
    def mark_read(notification_id, user_id):
        """Mark one of the user's own notifications read and commit."""
        notif = db.session.get(Notification, notification_id)
        # Someone else's notification is reported as missing
        if notif is None or notif.user_id != user_id:
            raise NotFoundError("Notification", notification_id)
        notif.mark_read()
        db.session.commit()
        return notif
