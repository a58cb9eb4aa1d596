"""
Request timing middleware.

Every response carries ``X-Request-ID`` (echoed from the caller when sent)
and ``X-Request-Duration-Ms``. Calls under ``/api/`` are logged once with the
HTTP fields the JSON formatter understands.
"""

import logging
import time
import uuid

from flask import Flask, g, request

logger = logging.getLogger(__name__)

SLOW_REQUEST_MS = 1000


def _log_level_for(status_code, duration_ms):
    if status_code >= 500:
        return logging.ERROR
    if duration_ms > SLOW_REQUEST_MS:
        return logging.WARNING
    return logging.DEBUG


def init_request_timing(app: Flask):
    """Attach the before/after hooks to ``app``."""

    @app.before_request
    def _mark_start():
        g.request_started = time.perf_counter()
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]

    @app.after_request
    def _stamp_response(response):
        started = g.pop("request_started", None)
        if started is None:
            return response

        elapsed_ms = (time.perf_counter() - started) * 1000
        request_id = g.get("request_id", "")
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Request-Duration-Ms"] = f"{elapsed_ms:.1f}"

        if request.path.startswith("/api/"):
            logger.log(
                _log_level_for(response.status_code, elapsed_ms),
                "%s %s -> %d in %.0fms",
                request.method, request.path, response.status_code, elapsed_ms,
                extra={
                    "method": request.method,
                    "path": request.path,
                    "status": response.status_code,
                    "duration_ms": elapsed_ms,
                    "remote_addr": request.remote_addr,
                    "request_id": request_id,
                    "user_id": request.headers.get("X-User-Id"),
                },
            )
        return response
