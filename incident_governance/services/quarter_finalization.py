"""
Incident Governance Service
Finalization Manager: freeze a quarter's readiness and metrics.

State machine per quarter:
    Open ──finalize──▶ Finalized ──unfinalize──▶ Open
    (re-finalize overwrites the snapshot in place)

Gate:
    Every (rule_key, incident_id) pair of every *critical* finding must have a
    matching QuarterOverride, otherwise ReadinessBlockedError lists the
    missing pairs.

Fingerprint (inputs_hash):
    SHA-256 hex digest of the canonical JSON (sorted keys, compact separators,
    second-precision UTC timestamps) of:
      - incidents sorted by id: id, title, service, severity, impact, priority, status,
        started_at, detected_at, acknowledged_at, first_response_at,
        mitigation_started_at, resolved_at, reopen_count, has_root_cause
      - overrides sorted by (rule_key, incident_id) with reason
      - post-mortem flags sorted by incident id: status,
        no_action_items_justified, justification present
      - active SLA definitions sorted by priority: priority,
        response_time_minutes, resolve_time_minutes
    The hash is a pure function of those facts; the evaluation time is not an
    input, so reverting a change restores the original hash.

Drift:
    facts_changed_since_finalization = finalized and current hash != stored hash
"""

from __future__ import annotations

import hashlib
import json
import logging
from datetime import datetime, timezone

from flask import current_app
from sqlalchemy import select

from incident_governance.core.exceptions import NotFoundError, ReadinessBlockedError
from incident_governance.models import db
from incident_governance.models.audit import write_audit
from incident_governance.models.quarter import (
    SNAPSHOT_SCHEMA_VERSION,
    QuarterFinalization,
    QuarterOverride,
    QuarterSnapshot,
)
from incident_governance.services import quarter_metrics
from incident_governance.services.locks import quarter_lock
from incident_governance.services.override_ledger import missing_override_pairs
from incident_governance.services.quarter_service import get_quarter_or_404
from incident_governance.services.readiness import QuarterFacts, evaluate, load_quarter_facts
from incident_governance.utils.helpers import as_utc, iso_utc

logger = logging.getLogger(__name__)

_FINGERPRINT_TIMESTAMPS = (
    "started_at", "detected_at", "acknowledged_at", "first_response_at",
    "mitigation_started_at", "resolved_at",
)


# ═════════════════════════════════════════════════════════════════════════════
# Fingerprint
# ═════════════════════════════════════════════════════════════════════════════


def canonical_json(payload) -> str:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def fingerprint_payload(facts: QuarterFacts, overrides) -> dict:
    incidents = []
    for inc in sorted(facts.incidents, key=lambda i: i.id):
        row = {
            "id": inc.id,
            "title": inc.title,
            "service": inc.service,
            "severity": inc.severity,
            "impact": inc.impact,
            "priority": inc.priority,
            "status": inc.status,
            "reopen_count": inc.reopen_count or 0,
            "has_root_cause": facts.has_root_cause(inc),
        }
        for field in _FINGERPRINT_TIMESTAMPS:
            row[field] = iso_utc(getattr(inc, field))
        incidents.append(row)

    override_rows = sorted(
        ({"rule_key": ov.rule_key, "incident_id": ov.incident_id, "reason": ov.reason}
         for ov in overrides),
        key=lambda o: (o["rule_key"], o["incident_id"]),
    )

    postmortems = [
        {
            "incident_id": incident_id,
            "status": pm.status,
            "no_action_items_justified": bool(pm.no_action_items_justified),
            "justification_present": bool((pm.no_action_items_justification or "").strip()),
        }
        for incident_id, pm in sorted(facts.postmortems.items())
    ]

    sla_definitions = sorted(
        (
            {
                "priority": d.priority,
                "response_time_minutes": d.response_time_minutes,
                "resolve_time_minutes": d.resolve_time_minutes,
            }
            for d in facts.sla_definitions if d.is_active
        ),
        key=lambda d: (d["priority"], d["response_time_minutes"], d["resolve_time_minutes"]),
    )

    return {
        "incidents": incidents,
        "overrides": override_rows,
        "postmortems": postmortems,
        "sla_definitions": sla_definitions,
    }


def compute_inputs_hash(facts: QuarterFacts, overrides) -> str:
    """SHA-256 hex digest of the canonical fingerprint payload."""
    return hashlib.sha256(
        canonical_json(fingerprint_payload(facts, overrides)).encode("utf-8")
    ).hexdigest()


# ═════════════════════════════════════════════════════════════════════════════
# Helpers
# ═════════════════════════════════════════════════════════════════════════════


def _overrides_for(quarter_id: str) -> list[QuarterOverride]:
    stmt = (
        select(QuarterOverride)
        .where(QuarterOverride.quarter_id == quarter_id)
        .order_by(QuarterOverride.rule_key, QuarterOverride.incident_id)
    )
    return list(db.session.execute(stmt).scalars().all())


def _build_snapshot(quarter, facts, report, overrides, inputs_hash, now) -> dict:
    limit = current_app.config.get("GOVERNANCE_NOTABLE_INCIDENT_COUNT", 5)
    return {
        "schema_version": SNAPSHOT_SCHEMA_VERSION,
        "quarter": {
            "id": quarter.id,
            "label": quarter.label,
            "fiscal_year": quarter.fiscal_year,
            "quarter_number": quarter.quarter_number,
            "start_date": quarter.start_date.isoformat(),
            "end_date": quarter.end_date.isoformat(),
        },
        "readiness": report.to_dict(),
        "overrides": [
            {k: v for k, v in ov.to_dict().items() if k not in ("created_at", "updated_at")}
            for ov in overrides
        ],
        "summary": quarter_metrics.summarize(facts),
        "incident_ids": sorted(i.id for i in facts.incidents),
        "notable_incident_ids": quarter_metrics.notable_incident_ids(facts.incidents, limit),
        "carried_over_incident_ids": quarter_metrics.carried_over_incident_ids(
            facts.incidents, quarter.end_date,
        ),
        "generated_at": iso_utc(now),
        "inputs_hash": inputs_hash,
    }


# ═════════════════════════════════════════════════════════════════════════════
# Operations
# ═════════════════════════════════════════════════════════════════════════════


def can_finalize(quarter_id: str, now: datetime | None = None) -> tuple[bool, list[dict]]:
    """Return ``(ok, missing)`` where *missing* lists uncovered critical pairs."""
    quarter = get_quarter_or_404(quarter_id)
    report = evaluate(load_quarter_facts(quarter, now))
    missing = missing_override_pairs(report.critical_pairs(), _overrides_for(quarter_id))
    return not missing, missing


def finalize_quarter(
    quarter_id: str,
    finalized_by: str | None = None,
    notes: str | None = None,
    *,
    now: datetime | None = None,
) -> QuarterFinalization:
    """Freeze the quarter.

    Readiness, override check, fingerprint and both writes happen under the
    quarter lock in one transaction. A prior finalization and snapshot are
    replaced in place.

    Raises:
        NotFoundError: Unknown quarter.
        ReadinessBlockedError: Critical findings without overrides.
    """
    now = as_utc(now) or datetime.now(timezone.utc)
    finalized_by = (finalized_by or "").strip() or current_app.config.get(
        "GOVERNANCE_DEFAULT_FINALIZED_BY", "self",
    )
    notes = (notes or "").strip() or None

    with quarter_lock(quarter_id):
        try:
            quarter = get_quarter_or_404(quarter_id, for_update=True)
            facts = load_quarter_facts(quarter, now)
            report = evaluate(facts)
            overrides = _overrides_for(quarter_id)

            missing = missing_override_pairs(report.critical_pairs(), overrides)
            if missing:
                logger.warning(
                    "Finalize blocked: %d critical finding(s) without override", len(missing),
                    extra={"quarter_id": quarter_id, "event_type": "quarter.finalize_blocked"},
                )
                raise ReadinessBlockedError(quarter_id, missing)

            inputs_hash = compute_inputs_hash(facts, overrides)
            snapshot_data = _build_snapshot(quarter, facts, report, overrides, inputs_hash, now)

            snapshot = db.session.execute(
                select(QuarterSnapshot).where(QuarterSnapshot.quarter_id == quarter_id)
            ).scalar_one_or_none()
            if snapshot is None:
                snapshot = QuarterSnapshot(quarter_id=quarter_id)
                db.session.add(snapshot)
            snapshot.schema_version = SNAPSHOT_SCHEMA_VERSION
            snapshot.inputs_hash = inputs_hash
            snapshot.snapshot_json = json.dumps(snapshot_data, sort_keys=True)
            snapshot.created_at = now
            db.session.flush()

            fin = db.session.get(QuarterFinalization, quarter_id)
            if fin is None:
                fin = QuarterFinalization(quarter_id=quarter_id)
                db.session.add(fin)
            fin.snapshot_id = snapshot.id
            fin.inputs_hash = inputs_hash
            fin.finalized_at = now
            fin.finalized_by = finalized_by
            fin.notes = notes
            db.session.flush()

            write_audit(
                entity_type="quarter", entity_id=quarter_id, action="quarter.finalize",
                actor=finalized_by,
                diff={"inputs_hash": inputs_hash, "snapshot_id": snapshot.id},
            )
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

    logger.info(
        "Quarter finalized",
        extra={"quarter_id": quarter_id, "event_type": "quarter.finalize"},
    )
    return fin


def unfinalize_quarter(quarter_id: str, *, actor: str = "system") -> None:
    """Remove the active finalization. The snapshot row is kept as an archive.

    Raises:
        NotFoundError: Unknown quarter, or the quarter is not finalized.
    """
    with quarter_lock(quarter_id):
        try:
            get_quarter_or_404(quarter_id, for_update=True)
            fin = db.session.get(QuarterFinalization, quarter_id)
            if fin is None:
                raise NotFoundError(resource="QuarterFinalization", resource_id=quarter_id)
            write_audit(
                entity_type="quarter", entity_id=quarter_id, action="quarter.unfinalize",
                actor=actor,
                diff={"inputs_hash": fin.inputs_hash, "finalized_by": fin.finalized_by},
            )
            db.session.delete(fin)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

    logger.info(
        "Quarter unfinalized",
        extra={"quarter_id": quarter_id, "event_type": "quarter.unfinalize"},
    )


def get_finalization_status(quarter_id: str, now: datetime | None = None) -> dict:
    """Finalization state, live readiness, overrides and the drift flag."""
    quarter = get_quarter_or_404(quarter_id)
    facts = load_quarter_facts(quarter, now)
    report = evaluate(facts)
    overrides = _overrides_for(quarter_id)
    fin = db.session.get(QuarterFinalization, quarter_id)

    current_hash = compute_inputs_hash(facts, overrides)
    snapshot_hash = fin.inputs_hash if fin else None
    return {
        "quarter_id": quarter_id,
        "finalized": fin is not None,
        "finalization": fin.to_dict() if fin else None,
        "readiness": report.to_dict(),
        "overrides": [ov.to_dict() for ov in overrides],
        "snapshot_inputs_hash": snapshot_hash,
        "current_inputs_hash": current_hash,
        "facts_changed_since_finalization": fin is not None and current_hash != snapshot_hash,
    }


def get_snapshot(quarter_id: str) -> QuarterSnapshot:
    """Latest snapshot for the quarter, finalized or archived.

    Raises:
        NotFoundError: Unknown quarter or never finalized.
    """
    get_quarter_or_404(quarter_id)
    snapshot = db.session.execute(
        select(QuarterSnapshot).where(QuarterSnapshot.quarter_id == quarter_id)
    ).scalar_one_or_none()
    if snapshot is None:
        raise NotFoundError(resource="QuarterSnapshot", resource_id=quarter_id)
    return snapshot
