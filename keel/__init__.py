"""
KEEL Familiarisation Service
Flask Application Factory.

Usage:
    from keel import create_app
    app = create_app()           # defaults to APP_ENV, else "development"
    app = create_app("testing")  # explicit config
"""

import json
import logging
import os

import click
from flask import Flask, abort, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event

from keel.config import config
from keel.middleware.actor_context import init_actor_context
from keel.middleware.logging_config import configure_logging
from keel.middleware.rate_limiter import init_rate_limits
from keel.middleware.timing import init_request_timing
from keel.models import db
from keel.utils.errors import E, api_error

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
    default_limits=[],                     # no global limit - apply per-blueprint
)


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
    config_cls = config[config_name]
    # ProductionConfig validates required env vars on instantiation
    app.config.from_object(config_cls() if config_name == "production" else config_cls)

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

    # ── Request timing + actor context ───────────────────────────────────
    init_request_timing(app)
    init_actor_context(app)

    # ── Request guards (input length + Content-Type) ─────────────────────
    @app.before_request
    def _guard_request():
        max_len = app.config.get("MAX_CONTENT_LENGTH")
        if max_len and request.content_length and request.content_length > max_len:
            abort(413, description="Request body too large")
        if request.method in ("POST", "PUT", "PATCH") and request.path.startswith("/api/"):
            ct = request.content_type or ""
            if request.data and "json" not in ct:
                abort(415, description="Content-Type must be application/json")

    # ── Import all models so Alembic can detect them ─────────────────────
    from keel.models import reference as _reference_models          # noqa: F401
    from keel.models import familiarisation as _familiarisation_models  # noqa: F401
    from keel.models import assignment as _assignment_models        # noqa: F401
    from keel.models import completion as _completion_models        # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    if not app.config.get("TESTING"):
        with app.app_context():
            url = db.engine.url
            if url.get_backend_name() == "sqlite" and url.database not in (None, "", ":memory:"):
                os.makedirs(os.path.dirname(os.path.abspath(url.database)), exist_ok=True)
            db.create_all()
            app.logger.info("db.create_all() completed successfully")

    # ── Blueprints ───────────────────────────────────────────────────────
    from keel.blueprints import register_error_handlers
    from keel.blueprints.assignment_bp import assignment_bp
    from keel.blueprints.completion_bp import completion_bp
    from keel.blueprints.health_bp import health_bp
    from keel.blueprints.progress_bp import progress_bp
    from keel.blueprints.review_bp import review_bp
    from keel.blueprints.template_bp import template_bp
    from keel.blueprints.trb_bp import trb_bp

    app.register_blueprint(assignment_bp)
    app.register_blueprint(completion_bp)
    app.register_blueprint(review_bp)
    app.register_blueprint(progress_bp)
    app.register_blueprint(trb_bp)
    app.register_blueprint(template_bp)
    app.register_blueprint(health_bp)

    register_error_handlers(app)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("import-familiarisation")
    @click.argument("path", type=click.Path(exists=True, dir_okay=False))
    @click.option("--strategy", default="SKIP", type=click.Choice(["SKIP", "UPDATE"]),
                  help="How to treat sections/tasks that already exist.")
    def import_familiarisation_cmd(path, strategy):
        """Import familiarisation sections and tasks from a JSON file of rows."""
        from keel.services.template_service import import_structure
        with open(path, encoding="utf-8") as fh:
            payload = json.load(fh)
        rows = payload.get("rows") if isinstance(payload, dict) else payload
        counts = import_structure(rows, conflict_strategy=strategy)
        click.echo(json.dumps(counts))
        logger.info("Imported familiarisation structure from %s: %s", path, counts)

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        return {"error": "Not found", "code": E.NOT_FOUND, "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(413)
    def too_large(e):
        return {"error": "Request body too large"}, 413

    @app.errorhandler(415)
    def unsupported_media(e):
        return {"error": "Content-Type must be application/json"}, 415

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def server_error(e):
        original = getattr(e, "original_exception", None) or e
        logger.error("500 error on %s %s", request.method, request.path,
                     exc_info=(type(original), original, original.__traceback__))
        db.session.rollback()
        return api_error(E.INTERNAL, "Internal server error")

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app
