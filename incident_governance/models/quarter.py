"""
Incident Governance Service
Quarter governance models.

Models:
    - Quarter:               reporting window grouping incidents by detected_at
    - QuarterOverride:       human-approved exception for one critical finding
    - QuarterSnapshot:       frozen readiness report + summary metrics
    - QuarterFinalization:   active "frozen" marker for a quarter

Architecture:
    Quarter ──1:N──▶ QuarterOverride     (unique: quarter, rule_key, incident_id)
    Quarter ──1:1──▶ QuarterSnapshot     (rewritten on re-finalize, kept on unfinalize)
    Quarter ──0:1──▶ QuarterFinalization (deleted on unfinalize)

Lifecycle:
    Open → Finalized → Open   (unfinalize; re-finalize overwrites the snapshot)
"""

import json
import uuid
from datetime import datetime, timezone

from incident_governance.models import db


def _utcnow():
    return datetime.now(timezone.utc)


SNAPSHOT_SCHEMA_VERSION = 1


# ═════════════════════════════════════════════════════════════════════════════
# 1. Quarter
# ═════════════════════════════════════════════════════════════════════════════


class Quarter(db.Model):
    """A reporting window. Incidents belong by ``detected_at.date()`` in [start, end]."""

    __tablename__ = "quarters"

    id = db.Column(
        db.String(64), primary_key=True,
        default=lambda: f"q-{uuid.uuid4()}",
    )
    fiscal_year = db.Column(db.Integer, nullable=False)
    quarter_number = db.Column(db.Integer, nullable=False, comment="1..4")
    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=False)
    label = db.Column(db.String(100), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    overrides = db.relationship(
        "QuarterOverride", backref="quarter", lazy="dynamic",
        cascade="all, delete-orphan",
    )
    snapshot = db.relationship(
        "QuarterSnapshot", backref="quarter", uselist=False,
        cascade="all, delete-orphan",
    )
    finalization = db.relationship(
        "QuarterFinalization", backref="quarter", uselist=False,
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        db.UniqueConstraint("fiscal_year", "quarter_number", name="uq_quarter_year_number"),
        db.CheckConstraint("quarter_number BETWEEN 1 AND 4", name="ck_quarter_number"),
        db.CheckConstraint("end_date > start_date", name="ck_quarter_dates"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "fiscal_year": self.fiscal_year,
            "quarter_number": self.quarter_number,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "label": self.label,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Quarter {self.id}: {self.label}>"


# ═════════════════════════════════════════════════════════════════════════════
# 2. QuarterOverride
# ═════════════════════════════════════════════════════════════════════════════


class QuarterOverride(db.Model):
    """
    Accepts one critical finding for one incident.

    Upserted on ``(quarter_id, rule_key, incident_id)``; stays editable after
    finalization, so changes surface through drift detection.
    """

    __tablename__ = "quarter_overrides"

    id = db.Column(
        db.String(64), primary_key=True,
        default=lambda: f"qov-{uuid.uuid4()}",
    )
    quarter_id = db.Column(
        db.String(64), db.ForeignKey("quarters.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    rule_key = db.Column(db.String(80), nullable=False)
    incident_id = db.Column(
        db.String(64), nullable=False,
        comment="Not a FK: overrides outlive incident edits and deletions",
    )
    reason = db.Column(db.Text, nullable=False)
    approved_by = db.Column(db.String(150), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        db.UniqueConstraint(
            "quarter_id", "rule_key", "incident_id",
            name="uq_override_quarter_rule_incident",
        ),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "quarter_id": self.quarter_id,
            "rule_key": self.rule_key,
            "incident_id": self.incident_id,
            "reason": self.reason,
            "approved_by": self.approved_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<QuarterOverride {self.rule_key}:{self.incident_id} q={self.quarter_id}>"


# ═════════════════════════════════════════════════════════════════════════════
# 3. QuarterSnapshot
# ═════════════════════════════════════════════════════════════════════════════


class QuarterSnapshot(db.Model):
    """Frozen readiness report and summary metrics for one quarter."""

    __tablename__ = "quarter_snapshots"

    id = db.Column(
        db.String(64), primary_key=True,
        default=lambda: f"qsn-{uuid.uuid4()}",
    )
    quarter_id = db.Column(
        db.String(64), db.ForeignKey("quarters.id", ondelete="CASCADE"),
        nullable=False, unique=True, index=True,
    )
    schema_version = db.Column(db.Integer, nullable=False, default=SNAPSHOT_SCHEMA_VERSION)
    inputs_hash = db.Column(db.String(64), nullable=False, comment="SHA-256 hex digest")
    snapshot_json = db.Column(db.Text, nullable=False, default="{}")
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    @property
    def data(self) -> dict:
        try:
            return json.loads(self.snapshot_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self):
        return {
            "id": self.id,
            "quarter_id": self.quarter_id,
            "schema_version": self.schema_version,
            "inputs_hash": self.inputs_hash,
            "snapshot": self.data,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<QuarterSnapshot {self.quarter_id}: {self.inputs_hash[:12]}>"


# ═════════════════════════════════════════════════════════════════════════════
# 4. QuarterFinalization
# ═════════════════════════════════════════════════════════════════════════════


class QuarterFinalization(db.Model):
    """Active finalization marker. At most one per quarter (PK is quarter_id)."""

    __tablename__ = "quarter_finalizations"

    quarter_id = db.Column(
        db.String(64), db.ForeignKey("quarters.id", ondelete="CASCADE"),
        primary_key=True,
    )
    snapshot_id = db.Column(
        db.String(64), db.ForeignKey("quarter_snapshots.id", ondelete="RESTRICT"),
        nullable=False,
    )
    inputs_hash = db.Column(db.String(64), nullable=False)
    finalized_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    finalized_by = db.Column(db.String(150), nullable=False)
    notes = db.Column(db.Text, nullable=True)

    snapshot = db.relationship("QuarterSnapshot", foreign_keys=[snapshot_id])

    def to_dict(self):
        return {
            "quarter_id": self.quarter_id,
            "snapshot_id": self.snapshot_id,
            "inputs_hash": self.inputs_hash,
            "finalized_at": self.finalized_at.isoformat() if self.finalized_at else None,
            "finalized_by": self.finalized_by,
            "notes": self.notes,
        }

    def __repr__(self):
        return f"<QuarterFinalization {self.quarter_id} by {self.finalized_by}>"
