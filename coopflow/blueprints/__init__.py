"""
Cooperative Request Workflow
Blueprint helpers shared by the API modules.

Authentication is handled upstream; the gateway forwards the caller's user
id in the ``X-User-Id`` header.
"""

import logging

from flask import request
from sqlalchemy.exc import SQLAlchemyError

from coopflow.core.exceptions import (
    UnauthenticatedError,
    UnauthorizedActionError,
    ValidationError,
    WorkflowError,
)
from coopflow.models import db
from coopflow.services.role_directory import caller_approval_level
from coopflow.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def current_user_id() -> int:
    """Caller id from the ``X-User-Id`` header."""
    raw = request.headers.get("X-User-Id", "").strip()
    if not raw:
        raise UnauthenticatedError("X-User-Id header is required")
    try:
        return int(raw)
    except ValueError:
        raise UnauthenticatedError("X-User-Id header must be an integer") from None


def require_approval_level(user_id: int, minimum: int) -> None:
    if caller_approval_level(user_id) < minimum:
        raise UnauthorizedActionError("Insufficient approval level for this operation")


def json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object", details={"body": "must be an object"})
    return data


def handle_workflow_error(error: WorkflowError):
    if error.status_code >= 500:
        logger.error("%s on %s: %s", error.code, request.path, error)
    return api_error(error.code, error.message, status=error.status_code,
                     details=error.details or None)


def handle_database_error(error: SQLAlchemyError):
    db.session.rollback()
    logger.exception("Unhandled database error endpoint=%s", request.endpoint)
    return api_error(E.FETCH_ERROR, "Database error")


def register_error_handlers(bp) -> None:
    """Render typed workflow errors as ``{"error", "code", "details"?}``."""
    bp.register_error_handler(WorkflowError, handle_workflow_error)
    bp.register_error_handler(SQLAlchemyError, handle_database_error)
