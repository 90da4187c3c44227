"""
Incident Governance Service
Quarter summary metrics frozen into the finalization snapshot.

All functions are pure over a QuarterFacts bundle.
"""

from __future__ import annotations

from incident_governance.models.incident import INCIDENT_STATUSES
from incident_governance.models.priority import PRIORITIES
from incident_governance.services.readiness import QuarterFacts, is_carried_over
from incident_governance.services.sla_engine import compute_sla_status


def summarize(facts: QuarterFacts) -> dict:
    """Totals by priority and status, SLA-breached count, MTTR and reopen counts."""
    by_priority = {p: 0 for p in PRIORITIES}
    by_status = {s: 0 for s in INCIDENT_STATUSES}
    breached = 0
    durations = []
    reopened = 0
    total_reopens = 0

    for inc in facts.incidents:
        by_priority[inc.priority] = by_priority.get(inc.priority, 0) + 1
        by_status[inc.status] = by_status.get(inc.status, 0) + 1
        if compute_sla_status(inc, facts.sla_definitions, facts.now).breached:
            breached += 1
        if inc.duration_minutes is not None:
            durations.append(inc.duration_minutes)
        if inc.reopen_count:
            reopened += 1
            total_reopens += inc.reopen_count

    mttr = round(sum(durations) / len(durations), 1) if durations else None
    return {
        "total_incidents": len(facts.incidents),
        "by_priority": by_priority,
        "by_status": by_status,
        "sla_breached_count": breached,
        "resolved_count": len(durations),
        "mean_time_to_resolve_minutes": mttr,
        "reopened_incident_count": reopened,
        "total_reopens": total_reopens,
    }


def notable_incident_ids(incidents, limit: int = 5) -> list[str]:
    """Ids of the *limit* longest resolved incidents (ties broken by id)."""
    resolved = [i for i in incidents if i.duration_minutes is not None]
    resolved.sort(key=lambda i: (-i.duration_minutes, i.id))
    return [i.id for i in resolved[:limit]]


def carried_over_incident_ids(incidents, quarter_end) -> list[str]:
    return sorted(i.id for i in incidents if is_carried_over(i, quarter_end))
