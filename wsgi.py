"""
WSGI / Flask-Migrate entry point.

Usage:
    flask --app wsgi db upgrade
    flask --app wsgi seed-sla-definitions
    gunicorn wsgi:app
"""

from incident_governance import create_app

app = create_app()
