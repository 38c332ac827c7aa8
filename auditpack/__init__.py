"""
Audit Pack
Flask Application Factory.

Usage:
    from auditpack import create_app
    app = create_app()           # defaults to APP_ENV or "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

import click
from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event
from werkzeug.exceptions import HTTPException

from auditpack.config import config
from auditpack.core.exceptions import (
    AuthenticationError,
    ConflictError,
    ExternalServiceError,
    InvalidTransition,
    NotFoundError,
    Unauthorized,
    ValidationError,
)
from auditpack.middleware.auth_context import init_auth_context
from auditpack.middleware.logging_config import configure_logging
from auditpack.middleware.rate_limiter import init_rate_limits
from auditpack.middleware.timing import init_request_timing
from auditpack.models import db
from auditpack.utils.errors import E, api_error

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
    default_limits=[],                                # per-blueprint limits only
    storage_uri=os.getenv("REDIS_URL", "memory://"),  # Redis in production, memory for dev
)


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: One of "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.
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

    # ── Middleware (order matters: request id first, then auth) ─────────
    init_request_timing(app)
    init_auth_context(app)

    # ── Import all models so Alembic can detect them ─────────────────────
    from auditpack.models import auth as _auth_models            # noqa: F401
    from auditpack.models import notification as _notif_models   # noqa: F401
    from auditpack.models import request as _request_models      # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    with app.app_context():
        db.create_all()
    os.makedirs(app.config["UPLOAD_FOLDER"], exist_ok=True)

    # ── Blueprints ───────────────────────────────────────────────────────
    from auditpack.blueprints.ai_bp import ai_bp
    from auditpack.blueprints.auth_bp import auth_bp
    from auditpack.blueprints.dashboard_bp import dashboard_bp
    from auditpack.blueprints.events_bp import events_bp
    from auditpack.blueprints.health_bp import health_bp
    from auditpack.blueprints.notification_bp import notification_bp
    from auditpack.blueprints.profile_bp import profile_bp
    from auditpack.blueprints.request_bp import request_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(profile_bp)
    app.register_blueprint(request_bp)
    app.register_blueprint(notification_bp)
    app.register_blueprint(ai_bp)
    app.register_blueprint(dashboard_bp)
    app.register_blueprint(events_bp)

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    _register_error_handlers(app)
    _register_cli(app)
    return app


def _register_error_handlers(app):
    """Map service exceptions to the JSON error contract."""

    @app.errorhandler(ValidationError)
    def _validation(e):
        return api_error(E.VALIDATION_INVALID, str(e), details=e.details)

    @app.errorhandler(AuthenticationError)
    def _unauthenticated(e):
        return api_error(E.UNAUTHENTICATED, str(e) or "Authentication required")

    @app.errorhandler(Unauthorized)
    def _restricted(e):
        logger.warning("Restricted access: %s", e, extra={"profile_id": e.profile_id})
        return api_error(E.RESTRICTED_ACCESS, "Restricted Access")

    @app.errorhandler(NotFoundError)
    def _not_found(e):
        return api_error(E.NOT_FOUND, e.public_message)

    @app.errorhandler(InvalidTransition)
    def _invalid_transition(e):
        return api_error(
            E.INVALID_TRANSITION, str(e),
            details={"current_status": e.current_status, "target_status": e.target_status,
                     "reason": e.reason},
        )

    @app.errorhandler(ConflictError)
    def _conflict(e):
        code = E.CONFLICT_STATE if e.stale else E.CONFLICT_DUPLICATE
        details = {"field": e.field}
        if e.stale:
            details["current_status"] = e.value
        return api_error(code, str(e), details=details)

    @app.errorhandler(ExternalServiceError)
    def _external(e):
        return api_error(E.EXTERNAL_SERVICE, str(e), details={"service": e.service})

    @app.errorhandler(404)
    def _route_not_found(e):
        return api_error(E.NOT_FOUND, "Not found", details={"path": request.path})

    @app.errorhandler(405)
    def _method_not_allowed(e):
        return api_error(E.VALIDATION_INVALID, "Method not allowed", status=405)

    @app.errorhandler(413)
    def _too_large(e):
        return api_error(E.VALIDATION_INVALID, "Upload too large", status=413)

    @app.errorhandler(429)
    def _rate_limited(e):
        return api_error(E.VALIDATION_INVALID, "Too many requests", status=429,
                         details={"retry_after": e.description})

    @app.errorhandler(Exception)
    def _unexpected(e):
        if isinstance(e, HTTPException):
            return api_error(E.VALIDATION_INVALID, e.description or e.name, status=e.code)
        logger.exception("Unhandled error on %s %s", request.method, request.path)
        db.session.rollback()
        return api_error(E.INTERNAL, "Internal server error")


def _register_cli(app):

    @app.cli.command("seed-demo")
    @click.option("--company", default="Demo Corp", show_default=True)
    @click.option("--password", default="demo-pass-123", show_default=True)
    def seed_demo_cmd(company, password):
        """Seed an organization with one profile per role and sample requests."""
        from auditpack.services.demo_data import seed_demo
        summary = seed_demo(company=company, password=password)
        click.echo(f"Seeded {summary['profiles']} profiles and {summary['requests']} requests "
                   f"for '{summary['organization']}'.")

    @app.cli.command("purge-revoked-tokens")
    def purge_revoked_tokens_cmd():
        """Drop sign-out denylist rows whose tokens have expired."""
        from auditpack.services.jwt_service import purge_expired_revocations
        click.echo(f"Removed {purge_expired_revocations()} expired revocation(s).")
