"""
Request Workflow Blueprint.

Routes:
  POST   /requests                       – submit a request
  GET    /requests                       – list all requests (staff)
  GET    /requests/user                  – caller's own requests
  GET    /requests/pending-count         – open requests (own, or by role for staff)
  GET    /requests/statistics            – totals and breakdowns (staff)
  GET    /requests/<rid>                 – one request (initiator or staff)
  PUT    /requests/<rid>                 – advance status
  DELETE /requests/<rid>                 – cancel (initiator, while PENDING)
  GET    /notifications                  – caller's notifications
  POST   /notifications/<nid>/read       – mark one read
"""

import logging

from flask import Blueprint, jsonify, request

from coopflow.blueprints import (
    current_user_id,
    json_body,
    register_error_handlers,
    require_approval_level,
)
from coopflow.core.exceptions import UnauthorizedActionError, ValidationError
from coopflow.services import request_queries, request_service
from coopflow.services.notification import NotificationService
from coopflow.services.request_content import SUBJECT_LINK_FIELDS
from coopflow.services.role_directory import caller_approval_level

logger = logging.getLogger(__name__)

request_bp = Blueprint("requests", __name__, url_prefix="/api/v1")
register_error_handlers(request_bp)

# Approval level needed to see requests that are not your own
STAFF_LEVEL = 1


# ═════════════════════════════════════════════════════════════════════════════
# REQUESTS
# ═════════════════════════════════════════════════════════════════════════════

@request_bp.route("/requests", methods=["POST"])
def create_request():
    """Submit a request.

    Body: { type, module, content?, metadata?, notes?,
            biodata_id? | savings_id? | loan_id? | personal_savings_id? }
    """
    user_id = current_user_id()
    data = json_body()

    errors = {}
    if not data.get("type"):
        errors["type"] = "required"
    if not data.get("module"):
        errors["module"] = "required"
    if errors:
        raise ValidationError("Missing required fields", details=errors)

    links = {k: data[k] for k in SUBJECT_LINK_FIELDS if data.get(k)}
    result = request_service.create_request(
        data["type"],
        data["module"],
        user_id,
        subject_links=links,
        content=data.get("content"),
        metadata=data.get("metadata"),
        notes=data.get("notes"),
    )
    return jsonify(result), 201


@request_bp.route("/requests", methods=["GET"])
def list_requests():
    """List requests. Query: type, status, biodata_id, assigned_to, initiator_id,
    start_date, end_date, page, limit, sort_by, sort_order."""
    user_id = current_user_id()
    require_approval_level(user_id, STAFF_LEVEL)
    return jsonify(request_queries.list_requests(request.args))


@request_bp.route("/requests/user", methods=["GET"])
def list_my_requests():
    user_id = current_user_id()
    return jsonify(request_queries.list_requests_for_user(user_id, request.args))


@request_bp.route("/requests/pending-count", methods=["GET"])
def pending_count():
    """Own open requests, or (staff, ``?role=``) open requests awaiting a role."""
    user_id = current_user_id()
    role = request.args.get("role")
    if role:
        require_approval_level(user_id, STAFF_LEVEL)
        count = request_queries.pending_request_count(role=role)
    else:
        count = request_queries.pending_request_count(user_id=user_id)
    return jsonify({"count": count})


@request_bp.route("/requests/statistics", methods=["GET"])
def request_statistics():
    """Query: start_date, end_date, biodata_id."""
    user_id = current_user_id()
    require_approval_level(user_id, STAFF_LEVEL)
    return jsonify(request_queries.request_statistics(request.args))


@request_bp.route("/requests/<request_id>", methods=["GET"])
def get_request(request_id):
    user_id = current_user_id()
    data = request_service.get_request(request_id)
    if data["initiator_id"] != user_id and caller_approval_level(user_id) < STAFF_LEVEL:
        raise UnauthorizedActionError("You can only view your own requests")
    return jsonify(data)


@request_bp.route("/requests/<request_id>", methods=["PUT"])
def advance_request(request_id):
    """Advance a request.

    Body: { status, notes? }
    """
    user_id = current_user_id()
    data = json_body()
    status = data.get("status")
    if not status:
        raise ValidationError("status is required", details={"status": "required"})
    result = request_service.advance_status(request_id, status, user_id, notes=data.get("notes"))
    return jsonify(result)


@request_bp.route("/requests/<request_id>", methods=["DELETE"])
def cancel_request(request_id):
    user_id = current_user_id()
    return jsonify(request_service.cancel_request(request_id, user_id))


# ═════════════════════════════════════════════════════════════════════════════
# NOTIFICATIONS
# ═════════════════════════════════════════════════════════════════════════════

@request_bp.route("/notifications", methods=["GET"])
def list_notifications():
    """Query: unread=true, limit (default 50, max 200), offset."""
    user_id = current_user_id()
    unread_only = request.args.get("unread", "").lower() == "true"
    try:
        limit = min(int(request.args.get("limit", 50)), 200)
        offset = max(int(request.args.get("offset", 0)), 0)
    except ValueError:
        raise ValidationError("limit and offset must be integers",
                              details={"limit": "must be an integer"}) from None
    items, total = NotificationService.list_for_user(
        user_id, unread_only=unread_only, limit=limit, offset=offset,
    )
    return jsonify({
        "data": [n.to_dict() for n in items],
        "meta": {"total": total, "unread": NotificationService.unread_count(user_id)},
    })


@request_bp.route("/notifications/<int:notification_id>/read", methods=["POST"])
def mark_notification_read(notification_id):
    user_id = current_user_id()
    notif = NotificationService.mark_read(notification_id, user_id)
    return jsonify(notif.to_dict())
