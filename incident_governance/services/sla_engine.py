"""
Incident Governance Service
SLA Engine: response / resolve deadline evaluation.

SlaStatus is derived, never persisted: it is recomputed from the incident's
timestamps and the active SlaDefinition for its priority on every call.

Freeze-at-event rule:
  response_elapsed = first_response_at (or now) - started_at
  resolve_elapsed  = resolved_at (or now)       - started_at
Once the event timestamp exists the elapsed value, and therefore the breach
flag, no longer depends on ``now``. Negative elapsed clamps to 0.

A priority with no active definition yields ``None`` targets and ``None``
breach flags ("not configured", which is not the same as "met").
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone

from sqlalchemy import select

from incident_governance.core.exceptions import ConflictError, NotFoundError, ValidationError
from incident_governance.models import db
from incident_governance.models.audit import write_audit
from incident_governance.models.priority import parse_priority
from incident_governance.models.sla import SlaDefinition
from incident_governance.utils.helpers import as_utc, minutes_between

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SlaStatus:
    incident_id: str
    priority: str
    definition_id: str | None
    response_target_minutes: int | None
    resolve_target_minutes: int | None
    response_elapsed_minutes: int
    resolve_elapsed_minutes: int
    response_breached: bool | None
    resolve_breached: bool | None
    response_final: bool
    resolve_final: bool

    @property
    def configured(self) -> bool:
        return self.definition_id is not None

    @property
    def breached(self) -> bool:
        return bool(self.response_breached or self.resolve_breached)

    def to_dict(self) -> dict:
        d = asdict(self)
        d["configured"] = self.configured
        d["breached"] = self.breached
        return d


def find_definition(priority: str, definitions) -> SlaDefinition | None:
    """The active definition for *priority*; lowest id wins if several exist."""
    matches = [d for d in definitions if d.is_active and d.priority == priority]
    if not matches:
        return None
    return min(matches, key=lambda d: d.id)


def compute_sla_status(incident, definitions, now: datetime) -> SlaStatus:
    """Evaluate *incident* against *definitions* at instant *now*.

    Pure: reads only its arguments.
    """
    now = as_utc(now)
    definition = find_definition(incident.priority, definitions)

    response_event = as_utc(incident.first_response_at)
    resolve_event = as_utc(incident.resolved_at)
    response_elapsed = minutes_between(incident.started_at, response_event or now)
    resolve_elapsed = minutes_between(incident.started_at, resolve_event or now)

    if definition is None:
        response_target = resolve_target = None
        response_breached = resolve_breached = None
    else:
        response_target = definition.response_time_minutes
        resolve_target = definition.resolve_time_minutes
        response_breached = response_elapsed > response_target
        resolve_breached = resolve_elapsed > resolve_target

    return SlaStatus(
        incident_id=incident.id,
        priority=incident.priority,
        definition_id=definition.id if definition else None,
        response_target_minutes=response_target,
        resolve_target_minutes=resolve_target,
        response_elapsed_minutes=response_elapsed,
        resolve_elapsed_minutes=resolve_elapsed,
        response_breached=response_breached,
        resolve_breached=resolve_breached,
        response_final=response_event is not None,
        resolve_final=resolve_event is not None,
    )


def active_definitions() -> list[SlaDefinition]:
    stmt = select(SlaDefinition).where(SlaDefinition.is_active.is_(True))
    return list(db.session.execute(stmt).scalars().all())


def get_incident_sla(incident_id: str, now: datetime | None = None) -> SlaStatus:
    """SLA status for one stored incident."""
    from incident_governance.services.incident_service import get_incident_or_404

    inc = get_incident_or_404(incident_id)
    return compute_sla_status(inc, active_definitions(), now or datetime.now(timezone.utc))


def list_sla_breaches(quarter_id: str, now: datetime | None = None) -> list[dict]:
    """Incidents in the quarter whose response or resolve SLA is breached at *now*."""
    from incident_governance.services.incident_service import list_incidents_for_quarter
    from incident_governance.services.quarter_service import get_quarter_or_404

    now = as_utc(now) or datetime.now(timezone.utc)
    quarter = get_quarter_or_404(quarter_id)
    definitions = active_definitions()

    result = []
    for inc in list_incidents_for_quarter(quarter):
        status = compute_sla_status(inc, definitions, now)
        if status.breached:
            result.append({
                "incident_id": inc.id,
                "title": inc.title,
                "status": inc.status,
                "sla": status.to_dict(),
            })
    if result:
        logger.warning(
            "SLA breaches in quarter: %d", len(result),
            extra={"quarter_id": quarter_id, "event_type": "sla.breaches"},
        )
    return result


# ═════════════════════════════════════════════════════════════════════════════
# SLA definition management
# ═════════════════════════════════════════════════════════════════════════════


def _positive_int(value, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        try:
            value = int(value)
        except (TypeError, ValueError):
            raise ValidationError(f"{field} must be an integer", details={field: value}) from None
    if value <= 0:
        raise ValidationError(f"{field} must be greater than 0", details={field: value})
    return value


def _validate_definition(name, priority, response, resolve) -> None:
    if not (name or "").strip():
        raise ValidationError("name is required", details={"name": name})
    if len(name) > 200:
        raise ValidationError("name must be at most 200 characters", details={"name": name})
    parse_priority(priority)
    if resolve < response:
        raise ValidationError(
            "resolve_time_minutes must be >= response_time_minutes",
            details={"response_time_minutes": response, "resolve_time_minutes": resolve},
        )


def _ensure_single_active(priority: str, exclude_id: str | None = None) -> None:
    stmt = select(SlaDefinition).where(
        SlaDefinition.priority == priority, SlaDefinition.is_active.is_(True),
    )
    if exclude_id is not None:
        stmt = stmt.where(SlaDefinition.id != exclude_id)
    if db.session.execute(stmt).first() is not None:
        raise ConflictError(resource="Active SlaDefinition", field="priority", value=priority)


def get_sla_definition_or_404(definition_id: str) -> SlaDefinition:
    sla = db.session.get(SlaDefinition, definition_id)
    if sla is None:
        raise NotFoundError(resource="SlaDefinition", resource_id=definition_id)
    return sla


def list_sla_definitions(*, include_inactive: bool = False) -> list[SlaDefinition]:
    stmt = select(SlaDefinition).order_by(SlaDefinition.priority, SlaDefinition.created_at)
    if not include_inactive:
        stmt = stmt.where(SlaDefinition.is_active.is_(True))
    return list(db.session.execute(stmt).scalars().all())


def create_sla_definition(data: dict, *, actor: str = "system") -> SlaDefinition:
    name = str(data.get("name") or "").strip()
    priority = data.get("priority")
    response = _positive_int(data.get("response_time_minutes"), "response_time_minutes")
    resolve = _positive_int(data.get("resolve_time_minutes"), "resolve_time_minutes")
    _validate_definition(name, priority, response, resolve)
    is_active = bool(data.get("is_active", True))

    try:
        if is_active:
            _ensure_single_active(priority)
        sla = SlaDefinition(
            name=name, priority=priority,
            response_time_minutes=response, resolve_time_minutes=resolve,
            is_active=is_active,
        )
        db.session.add(sla)
        db.session.flush()
        write_audit(
            entity_type="sla_definition", entity_id=sla.id, action="create",
            actor=actor, diff=sla.to_dict(),
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("SLA definition created for %s", priority, extra={"event_type": "sla.create"})
    return sla


def update_sla_definition(definition_id: str, data: dict, *, actor: str = "system") -> SlaDefinition:
    try:
        sla = get_sla_definition_or_404(definition_id)
        name = str(data.get("name", sla.name) or "").strip()
        priority = data.get("priority", sla.priority)
        response = _positive_int(
            data.get("response_time_minutes", sla.response_time_minutes), "response_time_minutes",
        )
        resolve = _positive_int(
            data.get("resolve_time_minutes", sla.resolve_time_minutes), "resolve_time_minutes",
        )
        _validate_definition(name, priority, response, resolve)
        is_active = bool(data.get("is_active", sla.is_active))
        if is_active:
            _ensure_single_active(priority, exclude_id=sla.id)

        before = sla.to_dict()
        sla.name = name
        sla.priority = priority
        sla.response_time_minutes = response
        sla.resolve_time_minutes = resolve
        sla.is_active = is_active
        db.session.flush()
        write_audit(
            entity_type="sla_definition", entity_id=sla.id, action="update",
            actor=actor, diff={"old": before, "new": sla.to_dict()},
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return sla


def deactivate_sla_definition(definition_id: str, *, actor: str = "system") -> SlaDefinition:
    """Soft delete: the row is kept with ``is_active = False``."""
    try:
        sla = get_sla_definition_or_404(definition_id)
        if sla.is_active:
            sla.is_active = False
            write_audit(
                entity_type="sla_definition", entity_id=sla.id, action="delete",
                actor=actor, diff={"is_active": {"old": True, "new": False}},
            )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return sla
