"""
Incident Governance Service
SLA definition model.

Models:
    - SlaDefinition: response / resolve budget for one priority tier.

At most one *active* definition exists per priority; the service layer
enforces this so inactive history rows can be kept around.
"""

import uuid
from datetime import datetime, timezone

from incident_governance.models import db


class SlaDefinition(db.Model):
    """Response / resolve time budget per priority tier (P0..P4)."""

    __tablename__ = "sla_definitions"

    id = db.Column(
        db.String(64), primary_key=True,
        default=lambda: f"sla-{uuid.uuid4()}",
    )
    name = db.Column(db.String(200), nullable=False)
    priority = db.Column(
        db.String(2), nullable=False, index=True,
        comment="P0 | P1 | P2 | P3 | P4",
    )
    response_time_minutes = db.Column(
        db.Integer, nullable=False,
        comment="Maximum minutes from started_at to first response",
    )
    resolve_time_minutes = db.Column(
        db.Integer, nullable=False,
        comment="Maximum minutes from started_at to resolution",
    )
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.CheckConstraint(
            "priority IN ('P0','P1','P2','P3','P4')",
            name="ck_sla_priority",
        ),
        db.CheckConstraint("response_time_minutes > 0", name="ck_sla_response_positive"),
        db.CheckConstraint(
            "resolve_time_minutes >= response_time_minutes",
            name="ck_sla_resolve_after_response",
        ),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "priority": self.priority,
            "response_time_minutes": self.response_time_minutes,
            "resolve_time_minutes": self.resolve_time_minutes,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return (
            f"<SlaDefinition {self.priority}: {self.response_time_minutes}m/"
            f"{self.resolve_time_minutes}m active={self.is_active}>"
        )


DEFAULT_SLA_DEFINITIONS = [
    {"name": "P0 - Critical outage", "priority": "P0",
     "response_time_minutes": 15, "resolve_time_minutes": 60},
    {"name": "P1 - Major impact", "priority": "P1",
     "response_time_minutes": 30, "resolve_time_minutes": 240},
    {"name": "P2 - Significant impact", "priority": "P2",
     "response_time_minutes": 60, "resolve_time_minutes": 480},
    {"name": "P3 - Minor impact", "priority": "P3",
     "response_time_minutes": 120, "resolve_time_minutes": 1440},
    {"name": "P4 - Low impact", "priority": "P4",
     "response_time_minutes": 480, "resolve_time_minutes": 2880},
]


def seed_default_sla_definitions():
    """
    Create the default SLA table when no definitions exist yet.

    P0: 15 min response, 1 hr resolution
    P1: 30 min response, 4 hr resolution
    P2: 1 hr response, 8 hr resolution
    P3: 2 hr response, 1 day resolution
    P4: 8 hr response, 2 day resolution

    Returns the created rows (empty list when the table was already seeded).
    Uses ``flush`` so callers keep transaction control.
    """
    if db.session.query(SlaDefinition.id).first() is not None:
        return []

    items = [SlaDefinition(**d) for d in DEFAULT_SLA_DEFINITIONS]
    db.session.add_all(items)
    db.session.flush()
    return items
