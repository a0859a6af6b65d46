"""
Siteline — construction project management platform
Flask Application Factory.

Usage:
    from app import create_app
    app = create_app()           # APP_ENV, defaults to "development"
    app = create_app("testing")  # explicit config
"""

import importlib
import logging
import os

import click
from flask import Flask, abort, jsonify, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event

from app.blueprints import register_blueprints
from app.config import config
from app.middleware.jwt_auth import init_jwt_middleware
from app.middleware.logging_config import configure_logging
from app.middleware.rate_limiter import init_rate_limits
from app.middleware.timing import init_request_timing
from app.middleware.user_context import init_user_context
from app.models import db

logger = logging.getLogger(__name__)


# ── SQLite FK enforcement (global engine event) ─────────────────────────
@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],                     # no global limit, applied per blueprint
    storage_uri=os.getenv("REDIS_URL", "memory://"),
)


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: One of "development", "testing", "production".
                     Defaults to the APP_ENV env var, or "development".
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    cfg = config[config_name]
    app.config.from_object(cfg() if config_name == "production" else cfg)

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── Request pipeline: timing → JWT → user ────────────────────────────
    init_request_timing(app)
    init_jwt_middleware(app)
    init_user_context(app)

    # ── Request guards (input length + Content-Type) ─────────────────────
    @app.before_request
    def _guard_request():
        max_len = app.config.get("MAX_CONTENT_LENGTH")
        if max_len and request.content_length and request.content_length > max_len:
            abort(413, description="Request body too large")
        if request.method in ("POST", "PUT", "PATCH") and request.path.startswith("/api/"):
            ct = request.content_type or ""
            if "multipart/form-data" in ct:
                return None
            if request.get_data(cache=True) and "json" not in ct:
                abort(415, description="Content-Type must be application/json")
        return None

    # ── Import all models so create_all / Alembic see them ───────────────
    from app.models import auth as _auth_models                  # noqa: F401
    from app.models import budget as _budget_models              # noqa: F401
    from app.models import change_order as _change_order_models  # noqa: F401
    from app.models import daily_report as _daily_report_models  # noqa: F401
    from app.models import project as _project_models            # noqa: F401
    from app.models import rfi as _rfi_models                    # noqa: F401
    from app.models import scheduling as _scheduling_models      # noqa: F401
    from app.models import submittal as _submittal_models        # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    with app.app_context():
        try:
            db.create_all()
            app.logger.info("db.create_all() completed successfully")
        except Exception as e:
            app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    register_blueprints(app)

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"error": "Not found", "path": request.path}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"error": "Method not allowed"}), 405

    @app.errorhandler(413)
    def payload_too_large(e):
        return jsonify({"error": "Request body too large"}), 413

    @app.errorhandler(415)
    def unsupported_media(e):
        return jsonify({"error": e.description}), 415

    @app.errorhandler(429)
    def rate_limited(e):
        return jsonify({"error": "Too many requests", "retry_after": e.description}), 429

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return jsonify({"error": "Internal server error"}), 500

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    # ── Scheduler (import jobs to register them) ─────────────────────────
    importlib.import_module("app.services.scheduled_jobs")  # registers @register_job handlers
    from app.services.scheduler_service import SchedulerService
    SchedulerService.init_app(app)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("run-job")
    @click.argument("name")
    def run_job_cmd(name):
        """Run a registered scheduled job once (e.g. rfi_overdue_digest)."""
        outcome = SchedulerService.run_job(name, trigger="cli")
        click.echo(f"{outcome['job_name']}: {outcome['status']}")
        if outcome.get("error"):
            click.echo(outcome["error"], err=True)
        if outcome["status"] in ("error", "failed"):
            raise SystemExit(1)

    @app.cli.command("jobs")
    @click.option("--enable", "enable", metavar="NAME", help="Switch a job on.")
    @click.option("--disable", "disable", metavar="NAME", help="Switch a job off.")
    def jobs_cmd(enable, disable):
        """List scheduled jobs with their last run, optionally toggling one."""
        SchedulerService.ensure_jobs_registered()
        for name, enabled in ((enable, True), (disable, False)):
            if name and SchedulerService.toggle_job(name, enabled) is None:
                raise click.BadParameter(f"Unknown job: {name}")
        for job in SchedulerService.list_jobs():
            last = job["last_run"] or {}
            state = "on" if job["is_enabled"] else "off"
            click.echo(f"{job['job_name']} [{state}] {job['schedule']} "
                       f"runs={job['run_count']} last={last.get('status', '-')}")

    return app
