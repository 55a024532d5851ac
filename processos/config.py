"""
ProcessOS
Configuration classes for Flask App Factory.

Usage:
    config_name = os.getenv("APP_ENV", "development")
    app.config.from_object(config[config_name])
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

# Default SQLite path for local dev when no DATABASE_URL is configured
_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'processos_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"

# Generate a random key for development; production MUST use a stable env var
_DEV_SECRET = secrets.token_hex(32)


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


class Config:
    """Base configuration shared across all environments."""

    SECRET_KEY = os.getenv("SECRET_KEY", _DEV_SECRET)
    DEBUG = False
    TESTING = False

    # SQLAlchemy
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,   # recycle connections every 5 min
    }

    # Reactor (run health scanner)
    REACTOR_INTERVAL_SECONDS = int(os.getenv("REACTOR_INTERVAL_SECONDS", "60"))
    REACTOR_AUTOSTART = False

    # Freshness defaults for new processes (seed WorkspaceSettings)
    DEFAULT_REVIEW_FREQUENCY_DAYS = int(os.getenv("DEFAULT_REVIEW_FREQUENCY_DAYS", "180"))
    DEFAULT_REVIEW_DUE_LEAD_DAYS = int(os.getenv("DEFAULT_REVIEW_DUE_LEAD_DAYS", "30"))
    # Expired versions always block new runs; this flag also freezes runs already in flight
    BLOCK_IN_PROGRESS_RUNS_ON_EXPIRED = _env_flag("BLOCK_IN_PROGRESS_RUNS_ON_EXPIRED")


class DevelopmentConfig(Config):
    """Development environment configuration."""

    DEBUG = True
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL") or _SQLITE_DEV
    REACTOR_AUTOSTART = _env_flag("REACTOR_AUTOSTART")


class TestingConfig(Config):
    """Testing environment configuration."""

    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", _SQLITE_TEST)
    # In-memory SQLite is served from a single static connection
    SQLALCHEMY_ENGINE_OPTIONS = {}
    REACTOR_AUTOSTART = False
    REACTOR_INTERVAL_SECONDS = 1


class ProductionConfig(Config):
    """Production environment configuration."""

    DEBUG = False
    # Heroku-style URLs use postgres:// but SQLAlchemy 2.0 requires postgresql://
    _raw_db_url = os.getenv("DATABASE_URL", "")
    SQLALCHEMY_DATABASE_URI = _raw_db_url.replace("postgres://", "postgresql://", 1) if _raw_db_url else None
    REACTOR_AUTOSTART = _env_flag("REACTOR_AUTOSTART", "true")

    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,
        "pool_timeout": 20,
    }

    def __init__(self):
        if not self.SQLALCHEMY_DATABASE_URI:
            raise RuntimeError("DATABASE_URL environment variable is required in production")
        if not os.getenv("SECRET_KEY"):
            raise RuntimeError("SECRET_KEY environment variable must be set in production")


# Configuration mapping: environment name -> config class
config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
