"""
Incident Governance Service
SQLAlchemy extension instance shared by all models.

Usage:
    from incident_governance.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
