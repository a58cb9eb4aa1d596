"""
Structured logging configuration.

Production emits one JSON object per line; development prints a short
coloured line; testing only configures levels. ``LOG_LEVEL`` overrides the
default level of each mode.

Workflow code logs transitions with ``extra=``:

    logger.info("Request %s -> %s", old, new,
                extra={"request_ref": req.id, "from_status": old,
                       "to_status": new, "actor_id": user_id})

HTTP fields land at the top level of the JSON line; workflow fields are
grouped under ``"workflow"`` so a log query can filter on
``workflow.request_ref`` without colliding with HTTP ``status``.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

HTTP_KEYS = ("method", "path", "status", "duration_ms", "remote_addr", "request_id", "user_id")
WORKFLOW_KEYS = (
    "request_ref", "request_type", "from_status", "to_status",
    "actor_id", "level", "plan_id", "amount",
)


def _pick(record, keys):
    return {k: getattr(record, k) for k in keys if getattr(record, k, None) is not None}


class JSONFormatter(logging.Formatter):
    """One JSON object per record, for log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "severity": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "where": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        entry.update(_pick(record, HTTP_KEYS))
        workflow = _pick(record, WORKFLOW_KEYS)
        if workflow:
            entry["workflow"] = workflow
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Coloured single-line format for a developer terminal."""

    _COLOURS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    _RESET = "\033[0m"

    @staticmethod
    def _workflow_tag(record):
        ref = getattr(record, "request_ref", None)
        if not ref:
            return ""
        tag = f" [req {str(ref)[:8]}"
        to_status = getattr(record, "to_status", None)
        if to_status:
            tag += f" {getattr(record, 'from_status', None) or '?'}->{to_status}"
        actor = getattr(record, "actor_id", None)
        if actor is not None:
            tag += f" by {actor}"
        return tag + "]"

    def format(self, record: logging.LogRecord) -> str:
        colour = self._COLOURS.get(record.levelname, "")
        stamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        line = (f"{colour}{stamp} {record.levelname:<7}{self._RESET} "
                f"{record.name}: {record.getMessage()}{self._workflow_tag(record)}")
        duration = getattr(record, "duration_ms", None)
        if duration is not None:
            line += f" ({duration:.0f}ms)"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """Install a single stderr handler on the root logger for ``app``'s mode."""
    testing = app.config.get("TESTING", False)
    production = not app.config.get("DEBUG", False) and not testing

    default = "INFO" if production else ("WARNING" if testing else "DEBUG")
    level_name = os.getenv("LOG_LEVEL", default).upper()
    level = getattr(logging, level_name, logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)
    app.logger.setLevel(level)
    for noisy in ("werkzeug", "sqlalchemy.engine", "alembic"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    if testing:
        # pytest owns the handlers
        return

    # Drop handlers from a previous create_app() in the same process
    for existing in list(root.handlers):
        if getattr(existing, "_coopflow", False):
            root.removeHandler(existing)
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if production else ReadableFormatter())
    handler._coopflow = True
    root.addHandler(handler)

    app.logger.info("Logging configured: level=%s format=%s",
                    level_name, "json" if production else "readable")
