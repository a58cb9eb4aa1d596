"""
Read-only projections over persisted requests.

Listing, per-user listing, pending counts and statistics. Nothing here
consults the chain resolver or the transition validator, and nothing here
writes. Persistence failures surface as ``FetchError``.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone

from flask import current_app
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import selectinload

from coopflow.core.exceptions import FetchError, ValidationError
from coopflow.models import db
from coopflow.models.request import (
    APPROVED,
    CANCELLED,
    COMPLETED,
    OPEN_STATUSES,
    REJECTED,
    REQUEST_STATUSES,
    REQUEST_TYPES,
    STEP_PENDING,
    ApprovalStep,
    Request,
)

logger = logging.getLogger(__name__)

SORTABLE_COLUMNS = {
    "created_at": Request.created_at,
    "updated_at": Request.updated_at,
    "status": Request.status,
    "type": Request.type,
    "next_approval_level": Request.next_approval_level,
}


# ── Filter parsing ─────────────────────────────────────────────────────────────


def _parse_datetime(value, key, errors, *, end_of_day=False):
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, time.min)
        if end_of_day:
            parsed += timedelta(days=1)
    else:
        text = str(value)
        try:
            if len(text) == 10:
                parsed = datetime.combine(date.fromisoformat(text), time.min)
                if end_of_day:
                    parsed += timedelta(days=1)
            else:
                parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            errors[key] = "must be an ISO-8601 date"
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_int(value, key, errors, default=None, minimum=None):
    if value in (None, ""):
        return default
    try:
        number = int(value)
    except (TypeError, ValueError):
        errors[key] = "must be an integer"
        return default
    if minimum is not None and number < minimum:
        errors[key] = f"must be >= {minimum}"
        return default
    return number


@dataclass
class RequestFilters:
    type: str | None = None
    status: str | None = None
    biodata_id: str | None = None
    assigned_to: int | None = None
    initiator_id: int | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None  # exclusive upper bound
    page: int = 1
    limit: int = 10
    sort_by: str = "created_at"
    sort_order: str = "desc"

    @classmethod
    def from_mapping(cls, raw) -> "RequestFilters":
        """Build filters from query args (or a plain dict), validating each field."""
        raw = raw or {}
        errors: dict[str, str] = {}
        max_limit = current_app.config.get("REQUESTS_MAX_PAGE_SIZE", 100)
        default_limit = current_app.config.get("REQUESTS_DEFAULT_PAGE_SIZE", 10)

        req_type = raw.get("type") or None
        if req_type and req_type not in REQUEST_TYPES:
            errors["type"] = "unknown request type"
        status = raw.get("status") or None
        if status and status not in REQUEST_STATUSES:
            errors["status"] = "unknown status"

        sort_by = raw.get("sort_by") or "created_at"
        if sort_by not in SORTABLE_COLUMNS:
            errors["sort_by"] = f"must be one of {', '.join(sorted(SORTABLE_COLUMNS))}"
        sort_order = (raw.get("sort_order") or "desc").lower()
        if sort_order not in ("asc", "desc"):
            errors["sort_order"] = "must be asc or desc"

        limit = _parse_int(raw.get("limit"), "limit", errors, default=default_limit, minimum=1)

        filters = cls(
            type=req_type,
            status=status,
            biodata_id=raw.get("biodata_id") or None,
            assigned_to=_parse_int(raw.get("assigned_to"), "assigned_to", errors),
            initiator_id=_parse_int(raw.get("initiator_id"), "initiator_id", errors),
            start_date=_parse_datetime(raw.get("start_date"), "start_date", errors),
            end_date=_parse_datetime(raw.get("end_date"), "end_date", errors, end_of_day=True),
            page=_parse_int(raw.get("page"), "page", errors, default=1, minimum=1),
            limit=min(limit, max_limit),
            sort_by=sort_by,
            sort_order=sort_order,
        )
        if errors:
            raise ValidationError("Invalid query parameters", details=errors)
        return filters


def _apply_filters(stmt, filters: RequestFilters, *, include_status=True):
    if filters.type:
        stmt = stmt.where(Request.type == filters.type)
    if include_status and filters.status:
        stmt = stmt.where(Request.status == filters.status)
    if filters.biodata_id:
        stmt = stmt.where(Request.biodata_id == filters.biodata_id)
    if filters.initiator_id is not None:
        stmt = stmt.where(Request.initiator_id == filters.initiator_id)
    if filters.assigned_to is not None:
        stmt = stmt.where(Request.id.in_(
            select(ApprovalStep.request_id).where(ApprovalStep.approver_id == filters.assigned_to)
        ))
    if filters.start_date is not None:
        stmt = stmt.where(Request.created_at >= filters.start_date)
    if filters.end_date is not None:
        stmt = stmt.where(Request.created_at < filters.end_date)
    return stmt


def _count(stmt) -> int:
    return db.session.execute(select(func.count()).select_from(stmt.subquery())).scalar() or 0


def _grouped_counts(column, filters: RequestFilters, *, include_status=True) -> dict:
    stmt = _apply_filters(
        select(column, func.count(Request.id)).group_by(column),
        filters, include_status=include_status,
    )
    return {key: n for key, n in db.session.execute(stmt).all()}


# ── Public API ─────────────────────────────────────────────────────────────────


def list_requests(filters: RequestFilters | dict | None = None) -> dict:
    """Filtered, sorted, paginated requests.

    Returns:
        {"data": [...], "meta": {"total", "page", "limit", "total_pages",
                                  "status_counts"}}

    ``status_counts`` ignores the ``status`` filter so a client can render
    per-status tabs from one call.
    """
    if not isinstance(filters, RequestFilters):
        filters = RequestFilters.from_mapping(filters)

    column = SORTABLE_COLUMNS[filters.sort_by]
    order = column.asc() if filters.sort_order == "asc" else column.desc()
    base = _apply_filters(select(Request), filters)

    try:
        total = _count(base)
        rows = db.session.execute(
            base.options(
                selectinload(Request.approval_steps),
                selectinload(Request.biodata),
                selectinload(Request.initiator),
                selectinload(Request.approver),
            )
            .order_by(order, Request.id)
            .offset((filters.page - 1) * filters.limit)
            .limit(filters.limit)
        ).scalars().all()
        status_counts = _grouped_counts(Request.status, filters, include_status=False)
    except SQLAlchemyError as exc:
        logger.exception("Request listing failed")
        raise FetchError("Failed to fetch requests") from exc

    return {
        "data": [r.to_dict() for r in rows],
        "meta": {
            "total": total,
            "page": filters.page,
            "limit": filters.limit,
            "total_pages": math.ceil(total / filters.limit) if total else 0,
            "status_counts": status_counts,
        },
    }


def list_requests_for_user(user_id: int, filters: RequestFilters | dict | None = None) -> dict:
    """Same as ``list_requests`` but always scoped to requests the user initiated."""
    if not isinstance(filters, RequestFilters):
        filters = RequestFilters.from_mapping(filters)
    filters.initiator_id = user_id
    return list_requests(filters)


def pending_request_count(user_id: int | None = None, role: str | None = None) -> int:
    """Count PENDING / IN_REVIEW requests.

    Args:
        user_id: restrict to requests this user initiated.
        role:    restrict to requests with a PENDING step for this role.
    """
    stmt = select(func.count(Request.id)).where(Request.status.in_(OPEN_STATUSES))
    if user_id is not None:
        stmt = stmt.where(Request.initiator_id == user_id)
    if role:
        stmt = stmt.where(Request.id.in_(
            select(ApprovalStep.request_id).where(
                ApprovalStep.approver_role == role,
                ApprovalStep.status == STEP_PENDING,
            )
        ))
    try:
        return db.session.execute(stmt).scalar() or 0
    except SQLAlchemyError as exc:
        logger.exception("Pending count failed")
        raise FetchError("Failed to count pending requests") from exc


def request_statistics(filters: RequestFilters | dict | None = None) -> dict:
    """Totals by outcome plus exact per-status and per-type breakdowns.

    Only ``start_date``, ``end_date`` and ``biodata_id`` are honoured.
    """
    if not isinstance(filters, RequestFilters):
        filters = RequestFilters.from_mapping(filters)
    scoped = RequestFilters(
        biodata_id=filters.biodata_id,
        start_date=filters.start_date,
        end_date=filters.end_date,
    )
    try:
        by_status = _grouped_counts(Request.status, scoped)
        by_type = _grouped_counts(Request.type, scoped)
    except SQLAlchemyError as exc:
        logger.exception("Request statistics failed")
        raise FetchError("Failed to compute request statistics") from exc

    return {
        "total": sum(by_status.values()),
        "pending": sum(by_status.get(s, 0) for s in OPEN_STATUSES),
        "approved": by_status.get(APPROVED, 0) + by_status.get(COMPLETED, 0),
        "rejected": by_status.get(REJECTED, 0),
        "cancelled": by_status.get(CANCELLED, 0),
        "by_status": by_status,
        "by_type": by_type,
    }
