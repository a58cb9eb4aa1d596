"""
Cooperative Request Workflow
Flask application factory.

    from coopflow import create_app

    app = create_app()           # APP_ENV, else "development"
    app = create_app("testing")
"""

import logging
import os

from flask import Flask
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event

from coopflow.config import config
from coopflow.middleware.logging_config import configure_logging
from coopflow.middleware.rate_limiter import init_rate_limits
from coopflow.middleware.timing import init_request_timing
from coopflow.models import db
from coopflow.utils.errors import E, api_error

logger = logging.getLogger(__name__)


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """SQLite ignores foreign keys unless asked per connection."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
# Limits are attached per blueprint in init_rate_limits
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],
    storage_uri=os.getenv("REDIS_URL", "memory://"),
)


def _init_extensions(app):
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)

    origins = app.config.get("CORS_ORIGINS", "*")
    if origins and origins != "*":
        CORS(app, origins=[o.strip() for o in origins.split(",") if o.strip()])
    else:
        CORS(app)


def _create_tables(app):
    # Model modules must be imported before create_all / autogenerate
    from coopflow.models import auth, member, notification, request, savings  # noqa: F401

    with app.app_context():
        try:
            db.create_all()
        except Exception:
            # A read-only replica or a half-migrated schema must not stop the boot
            logger.exception("db.create_all() failed")


def _register_blueprints(app):
    from coopflow.blueprints.personal_savings_bp import personal_savings_bp
    from coopflow.blueprints.request_bp import request_bp

    app.register_blueprint(request_bp)
    app.register_blueprint(personal_savings_bp)

    @app.route("/api/v1/health")
    def health():
        return {"status": "ok", "app": "coopflow"}


def _register_cli(app):
    @app.cli.command("seed-roles")
    def seed_roles_cmd():
        """Create the default roles and their approval levels."""
        from coopflow.services.role_directory import seed_default_roles

        created = seed_default_roles()
        print(f"Seeded {len(created)} new role(s).")


def _register_error_pages(app):
    """JSON bodies for errors raised outside the blueprints' own handlers."""

    @app.errorhandler(404)
    def not_found(e):
        return api_error(E.REQUEST_NOT_FOUND, "Not found", status=404)

    @app.errorhandler(405)
    def method_not_allowed(e):
        return api_error(E.INVALID_PARAMETERS, "Method not allowed", status=405)

    @app.errorhandler(429)
    def rate_limited(e):
        return api_error(E.RATE_LIMITED, f"Too many requests: {e.description}")

    @app.errorhandler(500)
    def server_error(e):
        logger.error("Unhandled server error: %s", e, exc_info=True)
        return api_error(E.INTERNAL, "Internal server error")


def create_app(config_name=None):
    """
    Build the application.

    Args:
        config_name: "development", "testing" or "production"; defaults to
                     the APP_ENV environment variable, then "development".
    """
    config_name = config_name or os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    settings = config[config_name]
    app.config.from_object(settings() if config_name == "production" else settings)

    configure_logging(app)
    _init_extensions(app)
    init_request_timing(app)
    _create_tables(app)
    _register_blueprints(app)
    _register_cli(app)
    _register_error_pages(app)
    # Needs the blueprints registered
    init_rate_limits(app, limiter)

    return app
