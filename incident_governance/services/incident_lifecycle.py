"""
Incident Governance Service
Incident Lifecycle Service.

Manages incident status transitions with:
  - Transition validation (INCIDENT_TRANSITIONS)
  - Reopen counting (Resolved | Post-Mortem → Active)
  - Side effects (Acknowledged → acknowledged_at, Monitoring → mitigation_started_at,
    Resolved → resolved_at, reopen → reopened_at / clear resolved_at)
  - Audit trail via write_audit (incident.status_change / incident.reopen)

Each transition runs under the incident's keyed lock with a row lock on the
incident, so the status write and the reopen_count increment commit together.

Usage:
    from incident_governance.services.incident_lifecycle import transition_incident

    inc = transition_incident("inc-…", "Active", actor="oncall@example.com")
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from incident_governance.core.exceptions import InvalidTransitionError, ValidationError
from incident_governance.models import db
from incident_governance.models.audit import write_audit
from incident_governance.models.incident import (
    INCIDENT_STATUSES,
    INCIDENT_TRANSITIONS,
    STATUS_ACKNOWLEDGED,
    STATUS_MONITORING,
    STATUS_RESOLVED,
    Incident,
    is_reopen,
    timestamp_ordering_issues,
    validate_incident_transition,
)
from incident_governance.models.sla import SlaDefinition
from incident_governance.services.incident_service import get_incident_or_404
from incident_governance.services.locks import incident_lock
from incident_governance.services.sla_engine import compute_sla_status
from incident_governance.utils.helpers import as_utc

logger = logging.getLogger(__name__)

# Timestamp stamped (if unset) when entering a status.
_ENTRY_TIMESTAMPS = {
    STATUS_ACKNOWLEDGED: "acknowledged_at",
    STATUS_MONITORING: "mitigation_started_at",
    STATUS_RESOLVED: "resolved_at",
}


def get_available_transitions(status: str) -> list[str]:
    """Statuses reachable from *status*."""
    return list(INCIDENT_TRANSITIONS.get(status, []))


def apply_transition(inc: Incident, new_status: str, now: datetime) -> dict | None:
    """Mutate *inc* in memory for ``inc.status → new_status``.

    Pure with respect to the database: no flush, no commit. Returns the audit
    diff, or None when the transition is a no-op (same status).

    Raises:
        ValidationError: Unknown status value.
        InvalidTransitionError: Target not in the allowed set. *inc* untouched.
    """
    if new_status not in INCIDENT_STATUSES:
        raise ValidationError(
            f"Invalid status '{new_status}'. Must be one of: {', '.join(INCIDENT_STATUSES)}",
            details={"status": new_status},
        )
    old_status = inc.status
    if new_status == old_status:
        return None
    if not validate_incident_transition(old_status, new_status):
        raise InvalidTransitionError(
            inc.id, old_status, new_status, get_available_transitions(old_status),
        )

    diff = {"status": {"old": old_status, "new": new_status}}
    if is_reopen(old_status, new_status):
        old_count = inc.reopen_count or 0
        diff["reopen_count"] = {"old": old_count, "new": old_count + 1}
        if inc.resolved_at is not None:
            diff["resolved_at"] = {"old": inc.resolved_at.isoformat(), "new": None}
        inc.reopen_count = old_count + 1
        inc.reopened_at = now
        inc.resolved_at = None
    else:
        field = _ENTRY_TIMESTAMPS.get(new_status)
        if field and getattr(inc, field) is None:
            setattr(inc, field, now)
            diff[field] = {"old": None, "new": now.isoformat()}

    inc.status = new_status
    return diff


def transition_incident(
    incident_id: str,
    new_status: str,
    *,
    actor: str = "system",
    now: datetime | None = None,
) -> Incident:
    """Move an incident to *new_status*.

    Transition to the current status is an idempotent no-op. A reopen
    increments reopen_count by exactly one and is audited as
    ``incident.reopen``; everything else as ``incident.status_change``.

    Raises:
        NotFoundError: Unknown incident.
        ValidationError: Unknown status value, or the stamped
            timestamp would break timestamp ordering.
        InvalidTransitionError: Target not allowed from the current status.
    """
    now = as_utc(now) or datetime.now(timezone.utc)

    with incident_lock(incident_id):
        try:
            inc = get_incident_or_404(incident_id, for_update=True)
            old_status = inc.status
            prior_issues = set(timestamp_ordering_issues(inc))
            diff = apply_transition(inc, new_status, now)
            if diff is None:
                db.session.rollback()
                return inc
            issues = [f for f in timestamp_ordering_issues(inc) if f not in prior_issues]
            if issues:
                raise ValidationError(
                    f"Transition to '{new_status}' at {now.isoformat()} would put "
                    "incident timestamps out of order",
                    details={"fields": issues, "status": new_status},
                )

            reopened = is_reopen(old_status, new_status)
            write_audit(
                entity_type="incident",
                entity_id=inc.id,
                action="incident.reopen" if reopened else "incident.status_change",
                actor=actor,
                diff=diff,
            )
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

    if reopened:
        logger.info(
            "Incident reopened",
            extra={
                "incident_id": inc.id,
                "event_type": "incident.reopen",
                "status": new_status,
            },
        )
    else:
        logger.info(
            "Incident status changed %s → %s", old_status, new_status,
            extra={"incident_id": inc.id, "event_type": "incident.status_change"},
        )
    return inc


def record_first_response(
    incident_id: str,
    *,
    at: datetime | None = None,
    actor: str = "system",
) -> Incident:
    """Record ``first_response_at`` once.

    Business rule: first_response_at is immutable once set. Calling this a
    second time is a no-op (idempotent). A WARNING is logged when the
    response SLA was already breached at the response instant.
    """
    at = as_utc(at) or datetime.now(timezone.utc)

    with incident_lock(incident_id):
        try:
            inc = get_incident_or_404(incident_id, for_update=True)
            if inc.first_response_at is not None:
                db.session.rollback()
                return inc
            if at < as_utc(inc.detected_at):
                raise ValidationError(
                    "first_response_at must not precede detected_at",
                    details={"first_response_at": at.isoformat()},
                )

            inc.first_response_at = at
            write_audit(
                entity_type="incident", entity_id=inc.id,
                action="incident.first_response", actor=actor,
                diff={"first_response_at": {"old": None, "new": at.isoformat()}},
            )
            definitions = SlaDefinition.query.filter_by(is_active=True).all()
            status = compute_sla_status(inc, definitions, at)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

    if status.response_breached:
        logger.warning(
            "SLA response breach",
            extra={"incident_id": inc.id, "event_type": "sla.response_breach"},
        )
    return inc
