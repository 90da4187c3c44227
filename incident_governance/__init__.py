"""
Incident Governance Service
Flask Application Factory.

Usage:
    from incident_governance import create_app
    app = create_app()           # defaults to APP_ENV or "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

import click
from flask import Flask, request
from flask_cors import CORS
from flask_migrate import Migrate

from incident_governance.config import config
from incident_governance.middleware.logging_config import configure_logging
from incident_governance.middleware.timing import init_request_timing
from incident_governance.models import db

logger = logging.getLogger(__name__)

# ── SQLite FK enforcement (global engine event) ─────────────────────────
from sqlalchemy import event as _sa_event, engine as _sa_engine


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()


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
    app.config.from_object(config[config_name]())
    os.makedirs(app.instance_path, exist_ok=True)

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── Request timing middleware ────────────────────────────────────────
    init_request_timing(app)

    # ── Import all models so Alembic can detect them ─────────────────────
    from incident_governance.models import audit as _audit_models        # noqa: F401
    from incident_governance.models import incident as _incident_models  # noqa: F401
    from incident_governance.models import quarter as _quarter_models    # noqa: F401
    from incident_governance.models import sla as _sla_models            # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) + default SLA seed ─────
    with app.app_context():
        try:
            db.create_all()
            app.logger.info("db.create_all() completed successfully")
        except Exception as e:
            app.logger.warning("db.create_all() failed: %s", e)

        if app.config.get("GOVERNANCE_SEED_SLA_DEFINITIONS"):
            from incident_governance.models.sla import seed_default_sla_definitions
            try:
                created = seed_default_sla_definitions()
                db.session.commit()
                if created:
                    app.logger.info("Seeded %d default SLA definitions", len(created))
            except Exception as e:
                db.session.rollback()
                app.logger.warning("SLA definition seed failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from incident_governance.blueprints.incident_bp import incident_bp
    from incident_governance.blueprints.quarter_bp import quarter_bp
    from incident_governance.blueprints.sla_bp import sla_bp

    app.register_blueprint(incident_bp)
    app.register_blueprint(sla_bp)
    app.register_blueprint(quarter_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("seed-sla-definitions")
    def seed_sla_definitions_cmd():
        """Seed the default P0–P4 SLA definitions when none exist."""
        from incident_governance.models.sla import seed_default_sla_definitions
        created = seed_default_sla_definitions()
        db.session.commit()
        click.echo(f"Seeded {len(created)} SLA definitions.")

    @app.cli.command("finalization-status")
    @click.argument("quarter_id")
    def finalization_status_cmd(quarter_id):
        """Print finalization state and drift flag for a quarter."""
        from incident_governance.services.quarter_finalization import get_finalization_status
        status = get_finalization_status(quarter_id)
        click.echo(
            f"finalized={status['finalized']} "
            f"facts_changed_since_finalization={status['facts_changed_since_finalization']} "
            f"current_inputs_hash={status['current_inputs_hash']}"
        )

    # ── Health check ─────────────────────────────────────────────────────
    @app.route("/api/v1/health")
    def health():
        return {"status": "ok", "app": "Incident Governance Service"}

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        return {"error": "Not found", "path": request.path}, 404

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error"}, 500

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    return app
