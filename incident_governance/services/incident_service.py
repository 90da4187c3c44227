"""
Incident Governance Service
Incident Service: the incident store the governance engine reads from.

Business logic:
  - Incident create / update / get / list-by-quarter
  - Timestamp ordering validated on every write
  - Post-mortem upsert (one per incident) and contributing factors

``status`` and ``reopen_count`` are never written here; they belong to
``incident_lifecycle.transition_incident``. ``priority`` is never written
anywhere: the model derives it from severity and impact.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import select

from incident_governance.core.exceptions import NotFoundError, ValidationError
from incident_governance.models import db
from incident_governance.models.audit import write_audit
from incident_governance.models.incident import (
    FACTOR_CATEGORIES,
    POSTMORTEM_STATUSES,
    ContributingFactor,
    Incident,
    Postmortem,
    timestamp_ordering_issues,
)
from incident_governance.models.quarter import Quarter
from incident_governance.utils.helpers import iso_utc, parse_datetime

logger = logging.getLogger(__name__)

# Fields the update endpoint accepts. Anything else in the payload is rejected
# if it is lifecycle-owned, ignored otherwise.
_TEXT_FIELDS = ("title", "service", "root_cause", "resolution", "lessons_learned", "notes")
_TIMESTAMP_FIELDS = (
    "started_at", "detected_at", "acknowledged_at", "first_response_at",
    "mitigation_started_at", "resolved_at",
)
_LIFECYCLE_OWNED = ("status", "reopen_count", "reopened_at", "priority")


# ═════════════════════════════════════════════════════════════════════════════
# Lookups
# ═════════════════════════════════════════════════════════════════════════════


def get_incident_or_404(incident_id: str, *, for_update: bool = False) -> Incident:
    """Load an incident or raise NotFoundError.

    ``for_update`` takes a row lock (no-op on SQLite).
    """
    stmt = select(Incident).where(Incident.id == incident_id)
    if for_update:
        stmt = stmt.with_for_update()
    inc = db.session.execute(stmt).scalar_one_or_none()
    if inc is None:
        raise NotFoundError(resource="Incident", resource_id=incident_id)
    return inc


def _validate_ordering(inc: Incident) -> None:
    issues = timestamp_ordering_issues(inc)
    if issues:
        raise ValidationError(
            "Incident timestamps are out of order "
            "(detected_at >= started_at; lifecycle timestamps must not precede started/detected)",
            details={"fields": issues},
        )


def _validate_tags(tags) -> list[str]:
    if tags is None:
        return []
    if not isinstance(tags, list) or not all(isinstance(t, str) for t in tags):
        raise ValidationError("tags must be a list of strings", details={"tags": tags})
    return [t.strip() for t in tags if t.strip()]


# ═════════════════════════════════════════════════════════════════════════════
# Incident CRUD
# ═════════════════════════════════════════════════════════════════════════════


def create_incident(data: dict, *, actor: str = "system") -> Incident:
    """Create an incident in status Active with reopen_count 0.

    Args:
        data: title, severity, impact, started_at, detected_at (required);
            service, optional lifecycle timestamps, text fields, tags.
        actor: Recorded on the audit row.

    Returns:
        The committed Incident.

    Raises:
        ValidationError: Missing/invalid fields or out-of-order timestamps.
    """
    missing = [f for f in ("title", "severity", "impact", "started_at", "detected_at")
               if not str(data.get(f) or "").strip()]
    if missing:
        raise ValidationError(
            f"Missing required fields: {', '.join(missing)}",
            details={"missing": missing},
        )
    forbidden = [f for f in _LIFECYCLE_OWNED if f in data and f != "status"]
    if data.get("status") not in (None, "", "Active"):
        forbidden.append("status")
    if forbidden:
        raise ValidationError(
            "New incidents always start Active with reopen_count 0 and a derived priority",
            details={"fields": forbidden},
        )

    try:
        inc = Incident(
            title=str(data["title"]).strip(),
            service=str(data.get("service") or "").strip(),
            severity=data["severity"],
            impact=data["impact"],
            status="Active",
            reopen_count=0,
            tags=_validate_tags(data.get("tags")),
        )
        for field in _TIMESTAMP_FIELDS:
            setattr(inc, field, parse_datetime(data.get(field), field))
        for field in ("root_cause", "resolution", "lessons_learned", "notes"):
            setattr(inc, field, str(data.get(field) or ""))
        _validate_ordering(inc)

        db.session.add(inc)
        db.session.flush()
        write_audit(
            entity_type="incident", entity_id=inc.id, action="incident.create",
            actor=actor,
            diff={"severity": inc.severity, "impact": inc.impact, "priority": inc.priority},
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Incident created",
        extra={"incident_id": inc.id, "event_type": "incident.create"},
    )
    return inc


def update_incident(incident_id: str, data: dict, *, actor: str = "system") -> Incident:
    """Update the facts of an incident.

    Lifecycle-owned fields (status, reopen_count, reopened_at, priority) are
    rejected; use ``incident_lifecycle.transition_incident`` for status.

    Raises:
        NotFoundError: Unknown incident.
        ValidationError: Lifecycle-owned fields, invalid values, bad ordering.
    """
    forbidden = [f for f in _LIFECYCLE_OWNED if f in data]
    if forbidden:
        raise ValidationError(
            "status, reopen_count and priority cannot be set directly",
            details={"fields": forbidden},
        )

    try:
        inc = get_incident_or_404(incident_id, for_update=True)
        diff: dict = {}

        for field in ("severity", "impact"):
            if field in data and data[field] != getattr(inc, field):
                old = getattr(inc, field)
                setattr(inc, field, data[field])
                diff[field] = {"old": old, "new": getattr(inc, field)}
        for field in _TEXT_FIELDS:
            if field in data:
                value = str(data[field] or "")
                if field == "title" and not value.strip():
                    raise ValidationError("title must not be blank", details={"title": value})
                if value != getattr(inc, field):
                    diff[field] = {"old": getattr(inc, field), "new": value}
                    setattr(inc, field, value)
        for field in _TIMESTAMP_FIELDS:
            if field in data:
                value = parse_datetime(data[field], field)
                if field in ("started_at", "detected_at") and value is None:
                    raise ValidationError(f"{field} is required", details={field: None})
                if iso_utc(value) != iso_utc(getattr(inc, field)):
                    diff[field] = {"old": iso_utc(getattr(inc, field)), "new": iso_utc(value)}
                    setattr(inc, field, value)
        if "tags" in data:
            inc.tags = _validate_tags(data["tags"])

        _validate_ordering(inc)

        if diff:
            diff["priority"] = inc.priority
            write_audit(
                entity_type="incident", entity_id=inc.id, action="incident.update",
                actor=actor, diff=diff,
            )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Incident updated",
        extra={"incident_id": inc.id, "event_type": "incident.update"},
    )
    return inc


def list_incidents_for_quarter(quarter: Quarter) -> list[Incident]:
    """Incidents whose ``detected_at`` date falls in [start_date, end_date], by id.

    The window is compared as UTC instants: start of start_date up to (not
    including) the day after end_date.
    """
    start = datetime.combine(quarter.start_date, datetime.min.time(), tzinfo=timezone.utc)
    end = datetime.combine(
        quarter.end_date + timedelta(days=1), datetime.min.time(), tzinfo=timezone.utc,
    )
    stmt = (
        select(Incident)
        .where(Incident.detected_at >= start, Incident.detected_at < end)
        .order_by(Incident.id)
    )
    return list(db.session.execute(stmt).scalars().all())


# ═════════════════════════════════════════════════════════════════════════════
# Post-mortems & contributing factors
# ═════════════════════════════════════════════════════════════════════════════


def upsert_postmortem(incident_id: str, data: dict) -> Postmortem:
    """Create or update the incident's post-mortem.

    Moving to ``final`` stamps ``completed_at``; leaving ``final`` clears it.
    """
    try:
        inc = get_incident_or_404(incident_id)
        pm = inc.postmortem
        if pm is None:
            pm = Postmortem(incident_id=inc.id)
            db.session.add(pm)

        if "status" in data:
            status = data["status"]
            if status not in POSTMORTEM_STATUSES:
                raise ValidationError(
                    f"Invalid post-mortem status '{status}'. "
                    f"Must be one of: {', '.join(POSTMORTEM_STATUSES)}",
                    details={"status": status},
                )
            if status == "final" and pm.status != "final":
                pm.completed_at = datetime.now(timezone.utc)
            elif status != "final":
                pm.completed_at = None
            pm.status = status
        if "content" in data:
            pm.content = str(data["content"] or "")
        if "no_action_items_justified" in data:
            pm.no_action_items_justified = bool(data["no_action_items_justified"])
        if "no_action_items_justification" in data:
            pm.no_action_items_justification = str(data["no_action_items_justification"] or "")

        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Postmortem saved",
        extra={"incident_id": incident_id, "event_type": "postmortem.upsert"},
    )
    return pm


def add_contributing_factor(incident_id: str, data: dict) -> ContributingFactor:
    category = data.get("category")
    if category not in FACTOR_CATEGORIES:
        raise ValidationError(
            f"Invalid category '{category}'. Must be one of: {', '.join(FACTOR_CATEGORIES)}",
            details={"category": category},
        )
    description = str(data.get("description") or "").strip()
    if not description:
        raise ValidationError("description is required", details={"description": ""})

    try:
        inc = get_incident_or_404(incident_id)
        factor = ContributingFactor(
            incident_id=inc.id,
            category=category,
            description=description,
            is_root=bool(data.get("is_root", False)),
        )
        db.session.add(factor)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return factor


def has_root_cause_analysis(incident: Incident, factors: list[ContributingFactor]) -> bool:
    """Root cause text is present, or a factor is marked ``is_root``."""
    if (incident.root_cause or "").strip():
        return True
    return any(f.is_root and f.incident_id == incident.id for f in factors)
