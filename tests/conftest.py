"""
Shared pytest fixtures for the Incident Governance test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - quarter: Pre-created 2026 Q1 Quarter (Jan 1 - Mar 31)
    - default_slas: The default P0-P4 SLA definitions
"""

from datetime import date

import pytest

from incident_governance import create_app
from incident_governance.models import db as _db


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def quarter():
    """Return a committed 2026 Q1 quarter."""
    from incident_governance.services.quarter_service import create_quarter
    return create_quarter({
        "fiscal_year": 2026,
        "quarter_number": 1,
        "start_date": date(2026, 1, 1).isoformat(),
        "end_date": date(2026, 3, 31).isoformat(),
        "label": "FY2026 Q1",
    })


@pytest.fixture()
def default_slas():
    """Seed and return the default P0-P4 SLA definitions."""
    from incident_governance.models.sla import seed_default_sla_definitions
    created = seed_default_sla_definitions()
    _db.session.commit()
    return created
