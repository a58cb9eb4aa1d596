"""
Configuration objects for ``create_app``.

Pick one with ``APP_ENV`` (development | testing | production). Everything
that differs between deployments comes from the environment.
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'coopflow_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"

# PostgreSQL pool sizing; SQLite rejects these arguments
_POSTGRES_POOL = {
    "pool_pre_ping": True,
    "pool_size": 5,
    "max_overflow": 10,
    "pool_recycle": 300,
    "pool_timeout": 20,
}


def _database_url(var):
    # SQLAlchemy 2.0 only accepts the postgresql:// scheme
    raw = os.getenv(var, "")
    return raw.replace("postgres://", "postgresql://", 1) if raw else None


def _int_env(var, default):
    return int(os.getenv(var, str(default)))


class Config:
    """Settings shared by every environment."""

    # Per-process random key outside production
    SECRET_KEY = os.getenv("SECRET_KEY") or secrets.token_hex(32)
    DEBUG = False
    TESTING = False

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True}

    # Flask-Limiter storage
    REDIS_URL = os.getenv("REDIS_URL", "memory://")
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # ── Request listing ──────────────────────────────────────────────────
    REQUESTS_DEFAULT_PAGE_SIZE = 10
    REQUESTS_MAX_PAGE_SIZE = _int_env("REQUESTS_MAX_PAGE_SIZE", 100)

    # ── Personal savings withdrawal rules ────────────────────────────────
    # No withdrawal request within N days after the latest deposit
    PERSONAL_SAVINGS_DEPOSIT_COOLDOWN_DAYS = _int_env("PERSONAL_SAVINGS_DEPOSIT_COOLDOWN_DAYS", 7)
    # Days that must pass after a plan's first withdrawal before the next
    PERSONAL_SAVINGS_WITHDRAWAL_INTERVAL_DAYS = _int_env(
        "PERSONAL_SAVINGS_WITHDRAWAL_INTERVAL_DAYS", 30
    )


class DevelopmentConfig(Config):
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _database_url("DATABASE_URL") or _SQLITE_DEV
    SQLALCHEMY_ENGINE_OPTIONS = (
        _POSTGRES_POOL if SQLALCHEMY_DATABASE_URI.startswith("postgresql")
        else Config.SQLALCHEMY_ENGINE_OPTIONS
    )


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", _SQLITE_TEST)
    SQLALCHEMY_ENGINE_OPTIONS = {}
    RATELIMIT_ENABLED = False


class ProductionConfig(Config):
    """PostgreSQL only. Instantiated by ``create_app`` so missing settings fail at boot."""

    SQLALCHEMY_DATABASE_URI = _database_url("DATABASE_URL")
    # Must be set explicitly; "*" is not accepted here
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")
    SQLALCHEMY_ENGINE_OPTIONS = {
        **_POSTGRES_POOL,
        "connect_args": {"options": "-c statement_timeout=30000"},
    }

    def __init__(self):
        if not self.SQLALCHEMY_DATABASE_URI:
            raise RuntimeError("DATABASE_URL environment variable is required in production")
        if not os.getenv("SECRET_KEY"):
            raise RuntimeError("SECRET_KEY environment variable must be set in production")


config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
