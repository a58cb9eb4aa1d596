"""
Workflow Orchestrator: request lifecycle service.

Creates requests with their full approval ladder, advances them through the
status state machine, and lets initiators cancel them while still pending.

Every write is one unit of work on ``db.session``:

    load (FOR UPDATE) → validate → authorize → mutate request + one step
    → flush (version compare-and-swap) → completion handler → notifications
    → commit

Any failure rolls the whole unit back. A flush that matches no row because
a concurrent transition bumped ``Request.version`` first surfaces as
``InvalidTransitionError``, the same error the loser would have seen had it
arrived a moment later.

Usage:
    from coopflow.services.request_service import advance_status

    data = advance_status(request_id, "IN_REVIEW", acting_user_id=7)
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.exc import StaleDataError

from coopflow.core.exceptions import (
    CreationFailedError,
    FetchError,
    InvalidTransitionError,
    NotFoundError,
    UnauthorizedActionError,
    ValidationError,
    WorkflowError,
)
from coopflow.models import db
from coopflow.models.auth import User
from coopflow.models.member import Member
from coopflow.models.notification import KIND_APPROVAL_REQUIRED, KIND_REQUEST_UPDATE
from coopflow.models.request import (
    APPROVED,
    CANCELLED,
    COMPLETED,
    IN_REVIEW,
    PENDING,
    PERSONAL_SAVINGS_CREATION,
    REJECTED,
    REQUEST_MODULES,
    REQUEST_STATUSES,
    REQUEST_TYPES,
    REVIEWED,
    STEP_PENDING,
    ApprovalStep,
    Request,
    allowed_next,
    step_outcome_for,
)
from coopflow.models.savings import PersonalSavings
from coopflow.services.approval_chain import resolve_chain
from coopflow.services.completion_handlers import run_completion_handler
from coopflow.services.notification import NotificationService
from coopflow.services.request_content import parse_content, validate_subject_links
from coopflow.services.role_directory import caller_has_role

logger = logging.getLogger(__name__)

# Transitions that move the ladder up one rung (when a higher rung exists)
_ADVANCING = frozenset({IN_REVIEW, REVIEWED, APPROVED})
_ENDING = frozenset({REJECTED, CANCELLED, COMPLETED})


# ── Private helpers ────────────────────────────────────────────────────────────


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _status_word(status: str) -> str:
    return status.replace("_", " ").title()


def _log_extra(req: Request, actor_id: int | None, from_status=None, to_status=None) -> dict:
    return {
        "request_ref": req.id,
        "request_type": req.type,
        "from_status": from_status,
        "to_status": to_status,
        "actor_id": actor_id,
    }


def _load_for_update(request_id: str) -> Request:
    """Load the request and its steps, locking the request row."""
    req = db.session.execute(
        select(Request)
        .where(Request.id == request_id)
        .options(selectinload(Request.approval_steps))
        .with_for_update(of=Request)
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if req is None:
        raise NotFoundError("Request", request_id)
    return req


def _check_subject_exists(request_type: str, links: dict, parsed) -> None:
    if links.get("biodata_id"):
        member = db.session.get(Member, links["biodata_id"])
        if member is None:
            raise NotFoundError("Member", links["biodata_id"])
        # The plan is opened for the linked member, under that member's ERP id
        if request_type == PERSONAL_SAVINGS_CREATION and parsed.erp_id != member.erp_id:
            raise ValidationError(
                "ERP id does not belong to the linked member",
                details={"content.erp_id": "does not match biodata_id member"},
            )
    if (links.get("personal_savings_id")
            and db.session.get(PersonalSavings, links["personal_savings_id"]) is None):
        raise NotFoundError("PersonalSavings", links["personal_savings_id"])


def _apply_transition(req: Request, step: ApprovalStep, target_status: str,
                      actor_id: int, notes: str | None) -> int:
    """Mutate the request and the awaited step in place. Returns the old level."""
    now = _utcnow()
    old_level = req.next_approval_level
    is_last_level = old_level >= req.max_level

    step.status = step_outcome_for(target_status)
    step.approver_id = actor_id
    step.approved_at = now
    if notes is not None:
        step.notes = notes

    if target_status in _ADVANCING and not is_last_level:
        req.next_approval_level = old_level + 1

    if target_status in _ENDING or (target_status == APPROVED and is_last_level):
        req.completed_at = now

    req.status = target_status
    req.approver_id = actor_id
    if notes is not None:
        req.notes = notes
    req.updated_at = now
    return old_level


def _notify_submitted(req: Request) -> None:
    label = req.type_label
    NotificationService.notify(
        req.initiator_id,
        kind=KIND_REQUEST_UPDATE,
        title="Request Submitted",
        message=f"Your {label} request has been submitted and is pending review.",
        request_id=req.id,
        metadata={"type": req.type, "status": req.status},
    )
    first = req.step_at(1)
    NotificationService.notify_role(
        first.approver_role,
        kind=KIND_APPROVAL_REQUIRED,
        title="New Request Requires Review",
        message=f"A new {label} request requires your review. {first.notes or ''}".strip(),
        request_id=req.id,
        metadata={"type": req.type, "level": 1},
    )


def _notify_transition(req: Request, old_level: int, notes: str | None) -> None:
    label = req.type_label
    message = f"Your {label} request is now {_status_word(req.status).lower()}."
    if notes:
        message += f" Notes: {notes}"
    NotificationService.notify(
        req.initiator_id,
        kind=KIND_REQUEST_UPDATE,
        title=f"Request {_status_word(req.status)}",
        message=message,
        request_id=req.id,
        metadata={"type": req.type, "status": req.status},
    )

    if req.next_approval_level > old_level:
        next_step = req.step_at(req.next_approval_level)
        NotificationService.notify_role(
            next_step.approver_role,
            kind=KIND_APPROVAL_REQUIRED,
            title="Request Requires Your Review",
            message=(
                f"A {label} request has reached level {next_step.level} and "
                f"requires your review. {next_step.notes or ''}"
            ).strip(),
            request_id=req.id,
            metadata={"type": req.type, "level": next_step.level},
        )


# ── Public API ─────────────────────────────────────────────────────────────────


def create_request(
    request_type: str,
    module: str,
    initiator_id: int,
    subject_links: dict | None = None,
    content: dict | None = None,
    metadata: dict | None = None,
    notes: str | None = None,
) -> dict:
    """Create a PENDING request together with its full approval ladder.

    The request, its steps and the submission notifications are committed
    together or not at all.

    Args:
        request_type:  One of REQUEST_TYPES.
        module:        Informational domain tag (LOAN, SAVINGS, ...).
        initiator_id:  User submitting the request.
        subject_links: At most one of biodata_id / savings_id / loan_id /
                       personal_savings_id.
        content:       Type-shaped payload (see request_content).
        metadata:      Display / audit context, never interpreted.
        notes:         Free-text note.

    Returns:
        Serialized request with its approval steps.

    Raises:
        ValidationError, NotFoundError, CreationFailedError.
    """
    if request_type not in REQUEST_TYPES:
        raise ValidationError("Invalid request type", details={"type": "unknown request type"})
    if module not in REQUEST_MODULES:
        raise ValidationError("Invalid module", details={"module": "unknown module"})
    if metadata is not None and not isinstance(metadata, dict):
        raise ValidationError("Metadata must be an object", details={"metadata": "must be an object"})

    links = validate_subject_links(request_type, subject_links)
    parsed = parse_content(request_type, content)

    try:
        if db.session.get(User, initiator_id) is None:
            raise NotFoundError("User", initiator_id)
        _check_subject_exists(request_type, links, parsed)

        req = Request(
            id=str(uuid.uuid4()),
            type=request_type,
            module=module,
            status=PENDING,
            content=parsed.to_dict(),
            meta=dict(metadata or {}),
            next_approval_level=1,
            initiator_id=initiator_id,
            notes=notes,
            **links,
        )
        for rung in resolve_chain(request_type):
            req.approval_steps.append(ApprovalStep(
                level=rung.level,
                approver_role=rung.approver_role,
                status=STEP_PENDING,
                notes=rung.notes,
            ))
        db.session.add(req)
        db.session.flush()

        _notify_submitted(req)
        db.session.commit()
    except WorkflowError:
        db.session.rollback()
        raise
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Request creation failed", extra={"request_type": request_type,
                                                           "actor_id": initiator_id})
        raise CreationFailedError("Failed to create request") from exc

    logger.info("Request created with %d level(s)", req.max_level,
                extra=_log_extra(req, initiator_id, to_status=PENDING))
    return req.to_dict()


def advance_status(
    request_id: str,
    target_status: str,
    acting_user_id: int,
    notes: str | None = None,
) -> dict:
    """Move a request one step through the state machine.

    Business rules enforced here:
    - ``target_status`` must be reachable from the current status.
    - The actor must hold the role of the step currently awaited
      (SUPER_ADMIN may act at any level).
    - Exactly one step, the one at ``next_approval_level``, is mutated.
    - The type's completion handler runs in the same transaction.

    Raises:
        NotFoundError:            no such request.
        InvalidTransitionError:   target not allowed, or lost a concurrent race.
        UnauthorizedActionError:  actor lacks the step's role.
        FetchError:               persistence failure.
    """
    if target_status not in REQUEST_STATUSES:
        raise ValidationError("Invalid status", details={"status": "unknown status"})

    current = None
    try:
        req = _load_for_update(request_id)
        current = req.status

        if target_status not in allowed_next(current):
            raise InvalidTransitionError(current, target_status)

        step = req.step_at(req.next_approval_level)
        if step is None:
            raise InvalidTransitionError(
                current, target_status,
                reason=f"no approval step at level {req.next_approval_level}",
            )
        if not caller_has_role(acting_user_id, step.approver_role):
            raise UnauthorizedActionError(
                f"Level {step.level} of this request requires role {step.approver_role}"
            )

        old_level = _apply_transition(req, step, target_status, acting_user_id, notes)
        db.session.flush()

        run_completion_handler(req, target_status, acting_user_id)
        _notify_transition(req, old_level, notes)
        db.session.commit()
    except StaleDataError as exc:
        db.session.rollback()
        logger.warning("Concurrent transition lost the race",
                       extra={"request_ref": request_id, "from_status": current,
                              "to_status": target_status, "actor_id": acting_user_id})
        raise InvalidTransitionError(
            current, target_status, reason="request was modified concurrently",
        ) from exc
    except WorkflowError:
        db.session.rollback()
        raise
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Request transition failed",
                         extra={"request_ref": request_id, "to_status": target_status,
                                "actor_id": acting_user_id})
        raise FetchError("Failed to update request status") from exc
    except Exception:
        # A failing completion handler must not leave the transition applied
        db.session.rollback()
        raise

    logger.info("Request %s -> %s", current, target_status,
                extra=_log_extra(req, acting_user_id, current, target_status))
    return req.to_dict()


def cancel_request(request_id: str, requesting_user_id: int) -> dict:
    """Cancel a PENDING request on behalf of its initiator.

    Raises:
        NotFoundError, InvalidTransitionError (not PENDING),
        UnauthorizedActionError (not the initiator), FetchError.
    """
    current = None
    try:
        req = _load_for_update(request_id)
        current = req.status

        if current != PENDING:
            raise InvalidTransitionError(current, CANCELLED,
                                         reason="only pending requests can be cancelled")
        if req.initiator_id != requesting_user_id:
            raise UnauthorizedActionError("Only the initiator can cancel this request")

        step = req.step_at(req.next_approval_level)
        old_level = _apply_transition(req, step, CANCELLED, requesting_user_id,
                                      "Request cancelled by user")
        db.session.flush()

        _notify_transition(req, old_level, None)
        db.session.commit()
    except StaleDataError as exc:
        db.session.rollback()
        raise InvalidTransitionError(
            current, CANCELLED, reason="request was modified concurrently",
        ) from exc
    except WorkflowError:
        db.session.rollback()
        raise
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Request cancellation failed", extra={"request_ref": request_id})
        raise FetchError("Failed to cancel request") from exc

    logger.info("Request cancelled by initiator",
                extra=_log_extra(req, requesting_user_id, current, CANCELLED))
    return req.to_dict()


def get_request(request_id: str) -> dict:
    """Return one request with its steps and display context."""
    try:
        req = db.session.execute(
            select(Request)
            .where(Request.id == request_id)
            .options(selectinload(Request.approval_steps))
        ).scalar_one_or_none()
    except SQLAlchemyError as exc:
        logger.exception("Request fetch failed", extra={"request_ref": request_id})
        raise FetchError("Failed to fetch request") from exc
    if req is None:
        raise NotFoundError("Request", request_id)
    return req.to_dict()
