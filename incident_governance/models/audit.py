"""
Incident Governance Service
Audit domain model.

Models:
    - AuditLog: immutable, append-only feed of lifecycle and governance events.
"""

import json
from datetime import UTC, datetime

from incident_governance.models import db

# ── Constants ────────────────────────────────────────────────────────────────

AUDIT_ENTITY_TYPES = {
    "incident", "quarter", "quarter_override", "sla_definition",
}

AUDIT_ACTIONS = {
    # Incident lifecycle
    "incident.create",
    "incident.update",
    "incident.status_change",
    "incident.reopen",
    "incident.first_response",
    # Override ledger
    "quarter_override.upsert",
    "quarter_override.delete",
    # Finalization
    "quarter.finalize",
    "quarter.unfinalize",
    # Generic
    "create",
    "update",
    "delete",
}


class AuditLog(db.Model):
    """
    Immutable audit trail for every lifecycle and governance event.

    One row per action. ``diff_json`` carries an old→new snapshot for
    field-level changes.
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_entity", "entity_type", "entity_id"),
        db.Index("idx_audit_actor", "actor"),
        db.Index("idx_audit_action", "action"),
        db.Index("idx_audit_ts", "timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)

    entity_type = db.Column(
        db.String(30), nullable=False,
        comment="incident | quarter | quarter_override | sla_definition",
    )
    entity_id = db.Column(
        db.String(64), nullable=False,
        comment="PK of the referenced entity",
    )
    action = db.Column(
        db.String(60), nullable=False,
        comment="incident.reopen | quarter.finalize | …",
    )
    actor = db.Column(db.String(150), nullable=False, default="system")

    diff_json = db.Column(
        db.Text, default="{}",
        comment="JSON: {field: {old, new}} or event payload",
    )

    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(UTC),
    )

    @property
    def diff(self) -> dict:
        """Deserialise *diff_json* to a Python dict."""
        try:
            return json.loads(self.diff_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action,
            "actor": self.actor,
            "diff": self.diff,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<AuditLog {self.id}: {self.action} on {self.entity_type}/{self.entity_id}>"


# ── Convenience writer ───────────────────────────────────────────────────────

def write_audit(
    *,
    entity_type: str,
    entity_id: str,
    action: str,
    actor: str = "system",
    diff: dict | None = None,
) -> AuditLog:
    """
    Append a single audit row. Uses ``flush`` so callers keep
    transaction control.

    Returns the (flushed) AuditLog instance.
    """
    if entity_type not in AUDIT_ENTITY_TYPES:
        raise ValueError(f"Unknown audit entity_type: {entity_type}")
    if action not in AUDIT_ACTIONS:
        raise ValueError(f"Unknown audit action: {action}")
    log = AuditLog(
        entity_type=entity_type,
        entity_id=str(entity_id),
        action=action,
        actor=actor or "system",
        diff_json=json.dumps(diff or {}, default=str, sort_keys=True),
    )
    db.session.add(log)
    db.session.flush()
    return log


def list_audit(entity_type: str, entity_id: str) -> list[AuditLog]:
    """Return every audit row for one entity, oldest first."""
    return (
        AuditLog.query
        .filter_by(entity_type=entity_type, entity_id=str(entity_id))
        .order_by(AuditLog.timestamp.asc(), AuditLog.id.asc())
        .all()
    )
