"""
ProcessOS
Flask Application Factory.

Usage:
    from processos import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import importlib
import logging
import os

import click
from flask import Flask
from sqlalchemy import engine as _sa_engine, event as _sa_event

from processos.config import config
from processos.core.logging_config import configure_logging
from processos.models import db

logger = logging.getLogger(__name__)


# ── SQLite FK enforcement (global engine event) ─────────────────────────
@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name])

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)

    # ── Import all models so create_all sees every table ─────────────────
    from processos.models import audit as _audit_models                # noqa: F401
    from processos.models import directory as _directory_models        # noqa: F401
    from processos.models import notification as _notification_models  # noqa: F401
    from processos.models import process as _process_models            # noqa: F401
    from processos.models import run as _run_models                    # noqa: F401
    from processos.models import scheduling as _scheduling_models      # noqa: F401
    from processos.models import workspace as _workspace_models        # noqa: F401

    if app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite:///") and not app.testing:
        os.makedirs(app.instance_path, exist_ok=True)

    with app.app_context():
        try:
            db.create_all()
            app.logger.info("db.create_all() completed successfully")
        except Exception as e:
            app.logger.warning("db.create_all() failed: %s", e)

    # ── Scheduler initialization (import jobs to register them) ──────────
    importlib.import_module("processos.services.scheduled_jobs")  # registers @register_job handlers
    from processos.services.reactor import Reactor
    from processos.services.scheduler_service import SchedulerService

    SchedulerService.init_app(app)
    with app.app_context():
        SchedulerService.ensure_jobs_registered()

    reactor = Reactor(app)
    app.extensions["reactor"] = reactor
    if app.config.get("REACTOR_AUTOSTART"):
        reactor.start()

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("seed-demo")
    def seed_demo_cmd():
        """Seed a demo directory, one published process and one run."""
        from processos.services.demo_seed import seed_demo
        result = seed_demo()
        click.echo(f"Demo seed: {result}")

    @app.cli.command("reactor-scan")
    def reactor_scan_cmd():
        """Run a single Reactor health scan."""
        result = SchedulerService.run_job("run_health_reactor")
        click.echo(f"{result['status']}: {result.get('result') or result.get('error')}")

    @app.cli.command("freshness-watch")
    def freshness_watch_cmd():
        """Announce published processes that are due for review or expired."""
        result = SchedulerService.run_job("freshness_watch")
        click.echo(f"{result['status']}: {result.get('result') or result.get('error')}")

    return app
