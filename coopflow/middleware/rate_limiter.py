"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter. The Limiter instance
is created in coopflow/__init__.py with no default limits; this module
attaches limits per route category.

Usage:
    from coopflow.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

WRITE_LIMIT = "60/minute"
READ_LIMIT = "200/minute"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Request workflow:  200/minute (list/poll heavy)
        - Personal savings:  60/minute  (every call writes)

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    bp = app.blueprints.get("requests")
    if bp:
        limiter.limit(READ_LIMIT)(bp)

    bp = app.blueprints.get("personal_savings")
    if bp:
        limiter.limit(WRITE_LIMIT)(bp)

    app.logger.info("Rate limiter configured: requests: %s, personal savings: %s",
                    READ_LIMIT, WRITE_LIMIT)
