"""
Incident Governance Service
Incident domain models.

Models:
    - Incident:            one tracked event; priority derived from severity x impact
    - Postmortem:          post-incident review document (one per incident)
    - ContributingFactor:  categorised cause recorded during analysis

Architecture:
    Incident ──1:1──▶ Postmortem
    Incident ──1:N──▶ ContributingFactor

Lifecycle states:
    Incident:  Active → Acknowledged → Monitoring → Resolved → Post-Mortem
               Resolved | Post-Mortem → Active  (reopen, counted)
    Postmortem: draft → review → final
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy.orm import validates

from incident_governance.core.exceptions import ValidationError
from incident_governance.models import db
from incident_governance.models.priority import classify, parse_impact, parse_severity
from incident_governance.utils.helpers import as_utc, minutes_between


def _utcnow():
    return datetime.now(timezone.utc)


def _new_id(prefix):
    return f"{prefix}-{uuid.uuid4()}"


# ── Constants ────────────────────────────────────────────────────────────────

STATUS_ACTIVE = "Active"
STATUS_ACKNOWLEDGED = "Acknowledged"
STATUS_MONITORING = "Monitoring"
STATUS_RESOLVED = "Resolved"
STATUS_POST_MORTEM = "Post-Mortem"

INCIDENT_STATUSES = (
    STATUS_ACTIVE, STATUS_ACKNOWLEDGED, STATUS_MONITORING,
    STATUS_RESOLVED, STATUS_POST_MORTEM,
)

POSTMORTEM_STATUSES = ("draft", "review", "final")

FACTOR_CATEGORIES = ("Process", "Tooling", "Communication", "Human Factors", "External")

# Optional lifecycle timestamps, in the order they normally occur.
LIFECYCLE_TIMESTAMPS = (
    "acknowledged_at", "first_response_at", "mitigation_started_at", "resolved_at",
)


# ── Lifecycle Transition Guards ──────────────────────────────────────────────

INCIDENT_TRANSITIONS = {
    STATUS_ACTIVE:       [STATUS_ACKNOWLEDGED, STATUS_MONITORING, STATUS_RESOLVED],
    STATUS_ACKNOWLEDGED: [STATUS_ACTIVE, STATUS_MONITORING, STATUS_RESOLVED],
    STATUS_MONITORING:   [STATUS_ACTIVE, STATUS_ACKNOWLEDGED, STATUS_RESOLVED],
    STATUS_RESOLVED:     [STATUS_ACTIVE, STATUS_POST_MORTEM],
    STATUS_POST_MORTEM:  [STATUS_ACTIVE],
}

# Entering Active from one of these counts as a reopen.
REOPEN_SOURCES = frozenset({STATUS_RESOLVED, STATUS_POST_MORTEM})


def validate_incident_transition(old_status, new_status):
    """Return True if Incident status transition is valid."""
    return new_status in INCIDENT_TRANSITIONS.get(old_status, [])


def is_reopen(old_status, new_status):
    """Return True if moving old → new is a reopen."""
    return new_status == STATUS_ACTIVE and old_status in REOPEN_SOURCES


def timestamp_ordering_issues(incident):
    """
    Return the timestamp fields of *incident* that are out of order.

    Rules:
      - detected_at must not precede started_at
      - no optional lifecycle timestamp may precede started_at
      - first_response_at must not precede detected_at
      - resolved_at must not precede acknowledged_at or mitigation_started_at
    """
    started = as_utc(incident.started_at)
    detected = as_utc(incident.detected_at)
    issues = []
    if started and detected and detected < started:
        issues.append("detected_at")
    for field in LIFECYCLE_TIMESTAMPS:
        value = as_utc(getattr(incident, field))
        if value is not None and started is not None and value < started:
            issues.append(field)
    responded = as_utc(incident.first_response_at)
    if responded and detected and responded < detected and "first_response_at" not in issues:
        issues.append("first_response_at")
    resolved = as_utc(incident.resolved_at)
    if resolved and "resolved_at" not in issues:
        for earlier in ("acknowledged_at", "mitigation_started_at"):
            value = as_utc(getattr(incident, earlier))
            if value is not None and resolved < value:
                issues.append("resolved_at")
                break
    return issues


# ═════════════════════════════════════════════════════════════════════════════
# 1. Incident
# ═════════════════════════════════════════════════════════════════════════════


class Incident(db.Model):
    """
    One tracked incident.

    ``priority`` is stored for querying but can only be written by the
    severity/impact validators below; the public attribute is a read-only
    property. ``status`` and ``reopen_count`` are written exclusively by
    ``incident_lifecycle.transition_incident``.
    """

    __tablename__ = "incidents"

    id = db.Column(db.String(64), primary_key=True, default=lambda: _new_id("inc"))
    title = db.Column(db.String(500), nullable=False)
    service = db.Column(db.String(200), nullable=False, default="")

    severity = db.Column(
        db.String(10), nullable=False,
        comment="Critical | High | Medium | Low",
    )
    impact = db.Column(
        db.String(10), nullable=False,
        comment="Critical | High | Medium | Low",
    )
    _priority = db.Column(
        "priority", db.String(2), nullable=False, index=True,
        comment="Derived: classify(severity, impact) - P0..P4",
    )
    status = db.Column(
        db.String(20), nullable=False, default=STATUS_ACTIVE, index=True,
        comment="Active | Acknowledged | Monitoring | Resolved | Post-Mortem",
    )

    # Lifecycle timestamps
    started_at = db.Column(db.DateTime(timezone=True), nullable=False)
    detected_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    acknowledged_at = db.Column(db.DateTime(timezone=True), nullable=True)
    first_response_at = db.Column(db.DateTime(timezone=True), nullable=True)
    mitigation_started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    reopened_at = db.Column(db.DateTime(timezone=True), nullable=True)
    reopen_count = db.Column(db.Integer, nullable=False, default=0)

    # Analysis
    root_cause = db.Column(db.Text, nullable=False, default="")
    resolution = db.Column(db.Text, nullable=False, default="")
    lessons_learned = db.Column(db.Text, nullable=False, default="")
    notes = db.Column(db.Text, nullable=False, default="")
    tags = db.Column(db.JSON, nullable=False, default=list)

    # Metadata
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    postmortem = db.relationship(
        "Postmortem", backref="incident", uselist=False,
        cascade="all, delete-orphan",
    )
    contributing_factors = db.relationship(
        "ContributingFactor", backref="incident", lazy="dynamic",
        cascade="all, delete-orphan", order_by="ContributingFactor.created_at",
    )

    __table_args__ = (
        db.CheckConstraint(
            "severity IN ('Critical','High','Medium','Low')",
            name="ck_incident_severity",
        ),
        db.CheckConstraint(
            "impact IN ('Critical','High','Medium','Low')",
            name="ck_incident_impact",
        ),
        db.CheckConstraint(
            "status IN ('Active','Acknowledged','Monitoring','Resolved','Post-Mortem')",
            name="ck_incident_status",
        ),
        db.CheckConstraint("reopen_count >= 0", name="ck_incident_reopen_count"),
    )

    # ── Derived priority ─────────────────────────────────────────────────

    @property
    def priority(self):
        return self._priority

    @validates("severity")
    def _validate_severity(self, key, value):
        value = parse_severity(value).value
        if self.impact is not None:
            self._priority = classify(value, self.impact).value
        return value

    @validates("impact")
    def _validate_impact(self, key, value):
        value = parse_impact(value).value
        if self.severity is not None:
            self._priority = classify(self.severity, value).value
        return value

    @validates("status")
    def _validate_status(self, key, value):
        if value not in INCIDENT_STATUSES:
            raise ValidationError(
                f"Invalid status '{value}'. Must be one of: {', '.join(INCIDENT_STATUSES)}",
                details={"status": value},
            )
        return value

    # ── Helpers ──────────────────────────────────────────────────────────

    @property
    def duration_minutes(self):
        """Minutes from started_at to resolved_at; None while unresolved."""
        if not self.resolved_at or not self.started_at:
            return None
        return minutes_between(self.started_at, self.resolved_at)

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "service": self.service,
            "severity": self.severity,
            "impact": self.impact,
            "priority": self.priority,
            "status": self.status,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "detected_at": self.detected_at.isoformat() if self.detected_at else None,
            "acknowledged_at": self.acknowledged_at.isoformat() if self.acknowledged_at else None,
            "first_response_at": self.first_response_at.isoformat() if self.first_response_at else None,
            "mitigation_started_at": (
                self.mitigation_started_at.isoformat() if self.mitigation_started_at else None
            ),
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "reopened_at": self.reopened_at.isoformat() if self.reopened_at else None,
            "reopen_count": self.reopen_count,
            "duration_minutes": self.duration_minutes,
            "root_cause": self.root_cause,
            "resolution": self.resolution,
            "lessons_learned": self.lessons_learned,
            "notes": self.notes,
            "tags": list(self.tags or []),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Incident {self.id}: [{self.priority}] {self.status} {(self.title or '')[:40]}>"


# ═════════════════════════════════════════════════════════════════════════════
# 2. Postmortem
# ═════════════════════════════════════════════════════════════════════════════


class Postmortem(db.Model):
    """Post-incident review. ``status == "final"`` means the review is complete."""

    __tablename__ = "postmortems"

    id = db.Column(db.String(64), primary_key=True, default=lambda: _new_id("pm"))
    incident_id = db.Column(
        db.String(64), db.ForeignKey("incidents.id", ondelete="CASCADE"),
        nullable=False, unique=True, index=True,
    )
    content = db.Column(db.Text, nullable=False, default="")
    status = db.Column(
        db.String(10), nullable=False, default="draft",
        comment="draft | review | final",
    )
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    no_action_items_justified = db.Column(db.Boolean, nullable=False, default=False)
    no_action_items_justification = db.Column(db.Text, nullable=False, default="")

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        db.CheckConstraint(
            "status IN ('draft','review','final')",
            name="ck_postmortem_status",
        ),
    )

    @property
    def is_complete(self):
        return self.status == "final"

    def to_dict(self):
        return {
            "id": self.id,
            "incident_id": self.incident_id,
            "content": self.content,
            "status": self.status,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "no_action_items_justified": self.no_action_items_justified,
            "no_action_items_justification": self.no_action_items_justification,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Postmortem {self.id}: {self.incident_id} [{self.status}]>"


# ═════════════════════════════════════════════════════════════════════════════
# 3. ContributingFactor
# ═════════════════════════════════════════════════════════════════════════════


class ContributingFactor(db.Model):
    """A categorised cause. ``is_root=True`` records the root cause."""

    __tablename__ = "contributing_factors"

    id = db.Column(db.String(64), primary_key=True, default=lambda: _new_id("cf"))
    incident_id = db.Column(
        db.String(64), db.ForeignKey("incidents.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    category = db.Column(
        db.String(30), nullable=False,
        comment="Process | Tooling | Communication | Human Factors | External",
    )
    description = db.Column(db.Text, nullable=False)
    is_root = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "incident_id": self.incident_id,
            "category": self.category,
            "description": self.description,
            "is_root": self.is_root,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<ContributingFactor {self.id}: {self.category} root={self.is_root}>"
