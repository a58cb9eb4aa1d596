"""JSON error bodies for the HTTP boundary.

Every failure leaves the API as::

    {"error": "<human message>", "code": "<E.*>", "details": {...}}

``details`` appears only for field-level validation failures.

    from coopflow.utils.errors import E, api_error

    return api_error(E.INVALID_STATUS_TRANSITION, "Cannot transition from PENDING to APPROVED")
"""

from __future__ import annotations

from flask import jsonify


class E:
    """Error codes. Part of the API contract: clients switch on these."""

    # 400
    INVALID_PARAMETERS = "INVALID_PARAMETERS"
    INVALID_STATUS_TRANSITION = "INVALID_STATUS_TRANSITION"
    # 401 / 403
    UNAUTHENTICATED = "UNAUTHENTICATED"
    UNAUTHORIZED_ACTION = "UNAUTHORIZED_ACTION"
    # 404
    REQUEST_NOT_FOUND = "REQUEST_NOT_FOUND"
    # 429
    RATE_LIMITED = "RATE_LIMITED"
    # 500
    REQUEST_CREATION_FAILED = "REQUEST_CREATION_FAILED"
    FETCH_ERROR = "FETCH_ERROR"
    INTERNAL = "INTERNAL_ERROR"


HTTP_STATUS_BY_CODE: dict[str, int] = {
    E.INVALID_PARAMETERS: 400,
    E.INVALID_STATUS_TRANSITION: 400,
    E.UNAUTHENTICATED: 401,
    E.UNAUTHORIZED_ACTION: 403,
    E.REQUEST_NOT_FOUND: 404,
    E.RATE_LIMITED: 429,
    E.REQUEST_CREATION_FAILED: 500,
    E.FETCH_ERROR: 500,
    E.INTERNAL: 500,
}


def api_error(code: str, message: str, *, status: int | None = None,
              details: dict | None = None):
    """Build ``(response, status)`` for ``code``.

    ``status`` defaults to the code's entry in ``HTTP_STATUS_BY_CODE``
    (400 for unknown codes).
    """
    payload = {"error": message, "code": code}
    if details:
        payload["details"] = details
    return jsonify(payload), status or HTTP_STATUS_BY_CODE.get(code, 400)
