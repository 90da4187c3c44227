"""
Incident Governance Service
Override Ledger: human-approved exceptions for critical readiness findings.

Keyed by (quarter_id, rule_key, incident_id). Upsert is idempotent on that
key; delete is explicit and unconditional. Overrides never expire and stay
editable after finalization (any edit then shows up as drift in the
finalization status).

Writes run under the quarter's keyed lock with a row lock on the quarter so
they cannot interleave with a finalize for the same quarter.
"""

from __future__ import annotations

import logging

from sqlalchemy import select

from incident_governance.core.exceptions import NotFoundError, ValidationError
from incident_governance.models import db
from incident_governance.models.audit import write_audit
from incident_governance.models.quarter import QuarterOverride
from incident_governance.services.locks import quarter_lock
from incident_governance.services.quarter_service import get_quarter_or_404

logger = logging.getLogger(__name__)


def list_overrides(quarter_id: str) -> list[QuarterOverride]:
    """Overrides for a quarter, sorted by (rule_key, incident_id)."""
    get_quarter_or_404(quarter_id)
    stmt = (
        select(QuarterOverride)
        .where(QuarterOverride.quarter_id == quarter_id)
        .order_by(QuarterOverride.rule_key, QuarterOverride.incident_id)
    )
    return list(db.session.execute(stmt).scalars().all())


def upsert_override(
    quarter_id: str,
    rule_key: str,
    incident_id: str,
    reason: str,
    approved_by: str | None = None,
    *,
    actor: str | None = None,
) -> QuarterOverride:
    """Create or update the override for (quarter, rule_key, incident).

    Reason is trimmed and must be non-empty; ids must be non-blank. Calling
    twice with the same key yields one row.

    Raises:
        ValidationError: Blank reason, rule_key or incident_id.
        NotFoundError: Unknown quarter.
    """
    rule_key = (rule_key or "").strip()
    incident_id = (incident_id or "").strip()
    reason = (reason or "").strip()
    approved_by = (approved_by or "").strip() or None
    if not rule_key:
        raise ValidationError("rule_key is required", details={"rule_key": rule_key})
    if not incident_id:
        raise ValidationError("incident_id is required", details={"incident_id": incident_id})
    if not reason:
        raise ValidationError("Override reason is required", details={"reason": ""})

    with quarter_lock(quarter_id):
        try:
            get_quarter_or_404(quarter_id, for_update=True)
            ov = db.session.execute(
                select(QuarterOverride).where(
                    QuarterOverride.quarter_id == quarter_id,
                    QuarterOverride.rule_key == rule_key,
                    QuarterOverride.incident_id == incident_id,
                )
            ).scalar_one_or_none()

            if ov is None:
                ov = QuarterOverride(
                    quarter_id=quarter_id,
                    rule_key=rule_key,
                    incident_id=incident_id,
                    reason=reason,
                    approved_by=approved_by,
                )
                db.session.add(ov)
                diff = {"reason": {"old": None, "new": reason},
                        "approved_by": {"old": None, "new": approved_by}}
            else:
                diff = {}
                if ov.reason != reason:
                    diff["reason"] = {"old": ov.reason, "new": reason}
                    ov.reason = reason
                if ov.approved_by != approved_by:
                    diff["approved_by"] = {"old": ov.approved_by, "new": approved_by}
                    ov.approved_by = approved_by
            db.session.flush()

            if diff:
                diff.update({"quarter_id": quarter_id, "rule_key": rule_key,
                             "incident_id": incident_id})
                write_audit(
                    entity_type="quarter_override", entity_id=ov.id,
                    action="quarter_override.upsert",
                    actor=actor or approved_by or "system", diff=diff,
                )
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

    logger.info(
        "Override upserted",
        extra={
            "quarter_id": quarter_id, "rule_key": rule_key,
            "incident_id": incident_id, "event_type": "quarter_override.upsert",
        },
    )
    return ov


def delete_override(override_id: str, *, actor: str = "system") -> None:
    """Remove an override. The matching critical finding becomes unresolved again.

    Raises:
        NotFoundError: Unknown override id.
    """
    ov = db.session.get(QuarterOverride, override_id)
    if ov is None:
        raise NotFoundError(resource="QuarterOverride", resource_id=override_id)
    quarter_id = ov.quarter_id

    with quarter_lock(quarter_id):
        try:
            get_quarter_or_404(quarter_id, for_update=True)
            ov = db.session.get(QuarterOverride, override_id)
            if ov is None:
                raise NotFoundError(resource="QuarterOverride", resource_id=override_id)
            write_audit(
                entity_type="quarter_override", entity_id=ov.id,
                action="quarter_override.delete", actor=actor,
                diff={
                    "quarter_id": ov.quarter_id, "rule_key": ov.rule_key,
                    "incident_id": ov.incident_id, "reason": ov.reason,
                },
            )
            rule_key, incident_id = ov.rule_key, ov.incident_id
            db.session.delete(ov)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

    logger.info(
        "Override deleted",
        extra={
            "quarter_id": quarter_id, "rule_key": rule_key,
            "incident_id": incident_id, "event_type": "quarter_override.delete",
        },
    )


def missing_override_pairs(critical_pairs, overrides) -> list[dict]:
    """(rule_key, incident_id) pairs from *critical_pairs* with no matching override."""
    covered = {(ov.rule_key, ov.incident_id) for ov in overrides}
    return [
        {"rule_key": rule_key, "incident_id": incident_id}
        for rule_key, incident_id in critical_pairs
        if (rule_key, incident_id) not in covered
    ]
