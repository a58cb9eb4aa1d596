"""
Workflow exception hierarchy.

Every service raises one of these at the point of detection and lets it
propagate. Each class carries a stable machine-readable ``code`` and an
HTTP-style ``status_code`` so the blueprints can register a single handler
(``WorkflowError``) and render every failure the same way.

Usage:
    from coopflow.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Request", resource_id=request_id)
    raise ValidationError("Invalid content", details={"amount": "must be > 0"})
"""

from coopflow.utils.errors import E


class WorkflowError(Exception):
    """Base class. Subclasses pin ``code`` and ``status_code``."""

    code = E.INTERNAL
    status_code = 500

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)


class NotFoundError(WorkflowError):
    """Raised when a Request (or a collaborating entity) does not exist.

    Args:
        resource: Human-readable entity name (e.g. "Request", "Member").
        resource_id: The key that was looked up.
    """

    code = E.REQUEST_NOT_FOUND
    status_code = 404

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(WorkflowError):
    """Raised when an input payload is malformed for its request type.

    Args:
        message: Human-readable explanation of what failed.
        details: Field-level breakdown. Keys are field paths; values are
                 error descriptions.
    """

    code = E.INVALID_PARAMETERS
    status_code = 400


class InvalidTransitionError(WorkflowError):
    """Raised when the target status is not reachable from the current one.

    Also raised when a concurrent transition on the same Request won the
    race: the loser's compare-and-swap on ``Request.version`` matches no row.
    """

    code = E.INVALID_STATUS_TRANSITION
    status_code = 400

    def __init__(self, current: str | None, target: str, reason: str | None = None) -> None:
        self.current_status = current
        self.target_status = target
        msg = f"Cannot transition from {current} to {target}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class UnauthenticatedError(WorkflowError):
    """Raised at the HTTP boundary when the caller cannot be identified."""

    code = E.UNAUTHENTICATED
    status_code = 401


class UnauthorizedActionError(WorkflowError):
    """Raised when the actor lacks the role or ownership the action requires."""

    code = E.UNAUTHORIZED_ACTION
    status_code = 403


class CreationFailedError(WorkflowError):
    """Raised when persisting a new Request and its steps fails."""

    code = E.REQUEST_CREATION_FAILED
    status_code = 500


class FetchError(WorkflowError):
    """Raised when a read (or a transition's write) fails at the persistence layer."""

    code = E.FETCH_ERROR
    status_code = 500
