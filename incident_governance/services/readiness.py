"""
Incident Governance Service
Readiness Evaluator: quarter readiness rules registry.

Each rule is an independent unit with a fixed key and severity that maps a
QuarterFacts bundle to zero or more Findings. Rules are collected in
``RULES`` and run uniformly; adding a rule means adding a class with
``@register_rule``, nothing else.

    critical  missing_required_fields
    critical  timestamp_ordering
    critical  resolved_requires_resolved_at
    critical  postmortem_missing
    critical  sla_breach_without_root_cause
    warning   no_action_items_unjustified
    warning   carried_over

needs_attention_incidents is the size of the union of incident ids across
all findings, regardless of severity.

Usage:
    from incident_governance.services.readiness import compute_quarter_readiness
    report = compute_quarter_readiness("q-…")
    report.to_dict()
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum

from sqlalchemy import select

from incident_governance.models import db
from incident_governance.models.incident import (
    STATUS_POST_MORTEM,
    STATUS_RESOLVED,
    ContributingFactor,
    Postmortem,
    timestamp_ordering_issues,
)
from incident_governance.services.incident_service import (
    has_root_cause_analysis,
    list_incidents_for_quarter,
)
from incident_governance.services.sla_engine import active_definitions, compute_sla_status
from incident_governance.utils.helpers import as_utc

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════════════
# Enums & Data Classes
# ═════════════════════════════════════════════════════════════════════════════


class FindingSeverity(str, Enum):
    CRITICAL = "critical"
    WARNING = "warning"


@dataclass
class Finding:
    """Output of one rule: a flagged gap affecting one or more incidents."""
    rule_key: str
    severity: FindingSeverity
    message: str
    incident_ids: list[str]
    remediation: str

    def to_dict(self) -> dict:
        return {
            "rule_key": self.rule_key,
            "severity": self.severity.value,
            "message": self.message,
            "incident_ids": list(self.incident_ids),
            "remediation": self.remediation,
        }


@dataclass
class ReadinessReport:
    quarter_id: str
    quarter_label: str
    total_incidents: int
    ready_incidents: int
    needs_attention_incidents: int
    findings: list[Finding] = field(default_factory=list)

    @property
    def critical_findings(self) -> list[Finding]:
        return [f for f in self.findings if f.severity == FindingSeverity.CRITICAL]

    def critical_pairs(self) -> list[tuple[str, str]]:
        """Sorted (rule_key, incident_id) pairs across all critical findings."""
        return sorted(
            {(f.rule_key, iid) for f in self.critical_findings for iid in f.incident_ids}
        )

    def to_dict(self) -> dict:
        return {
            "quarter_id": self.quarter_id,
            "quarter_label": self.quarter_label,
            "total_incidents": self.total_incidents,
            "ready_incidents": self.ready_incidents,
            "needs_attention_incidents": self.needs_attention_incidents,
            "findings": [f.to_dict() for f in self.findings],
        }


@dataclass
class QuarterFacts:
    """Everything a rule may look at. Rules must not query the database."""
    quarter_id: str
    quarter_label: str
    quarter_end: date | None
    incidents: list
    postmortems: dict[str, Postmortem]
    factors: list[ContributingFactor]
    sla_definitions: list
    now: datetime

    def postmortem_for(self, incident_id: str) -> Postmortem | None:
        return self.postmortems.get(incident_id)

    def has_root_cause(self, incident) -> bool:
        return has_root_cause_analysis(incident, self.factors)


# ═════════════════════════════════════════════════════════════════════════════
# Rule Registry
# ═════════════════════════════════════════════════════════════════════════════


class ReadinessRule:
    """Base class: subclasses set the class attributes and implement ``matches``."""

    key: str = ""
    severity: FindingSeverity = FindingSeverity.WARNING
    message: str = ""
    remediation: str = ""

    def matches(self, incident, facts: QuarterFacts) -> bool:
        raise NotImplementedError

    def evaluate(self, facts: QuarterFacts) -> list[Finding]:
        ids = sorted(inc.id for inc in facts.incidents if self.matches(inc, facts))
        if not ids:
            return []
        return [Finding(
            rule_key=self.key,
            severity=self.severity,
            message=self.message,
            incident_ids=ids,
            remediation=self.remediation,
        )]


RULES: list[ReadinessRule] = []


def register_rule(cls):
    RULES.append(cls())
    return cls


def _blank(value) -> bool:
    return value is None or not str(value).strip()


@register_rule
class MissingRequiredFields(ReadinessRule):
    key = "missing_required_fields"
    severity = FindingSeverity.CRITICAL
    message = "Some incidents are missing required fields for quarterly reporting."
    remediation = (
        "Open each incident and fill in the missing required fields "
        "(title, service, severity/impact, status, started_at, detected_at)."
    )
    fields = ("title", "service", "severity", "impact", "status", "started_at", "detected_at")

    def matches(self, incident, facts):
        return any(_blank(getattr(incident, f)) for f in self.fields)


@register_rule
class TimestampOrdering(ReadinessRule):
    key = "timestamp_ordering"
    severity = FindingSeverity.CRITICAL
    message = "Some incidents have inconsistent timestamp ordering."
    remediation = (
        "Fix timestamps so detected_at >= started_at, and other timestamps "
        "do not precede detected/started."
    )

    def matches(self, incident, facts):
        return bool(timestamp_ordering_issues(incident))


@register_rule
class ResolvedRequiresResolvedAt(ReadinessRule):
    key = "resolved_requires_resolved_at"
    severity = FindingSeverity.CRITICAL
    message = "Some incidents are marked Resolved but have no resolved_at timestamp."
    remediation = "Set resolved_at for resolved incidents (or change status if not resolved)."

    def matches(self, incident, facts):
        return incident.status in (STATUS_RESOLVED, STATUS_POST_MORTEM) and incident.resolved_at is None


@register_rule
class PostmortemMissing(ReadinessRule):
    key = "postmortem_missing"
    severity = FindingSeverity.CRITICAL
    message = "Some Critical/High severity incidents have no completed post-mortem."
    remediation = "Complete the post-mortem (status final) for each listed incident, or record an override."

    def matches(self, incident, facts):
        if incident.severity not in ("Critical", "High"):
            return False
        pm = facts.postmortem_for(incident.id)
        return pm is None or not pm.is_complete


@register_rule
class NoActionItemsUnjustified(ReadinessRule):
    key = "no_action_items_unjustified"
    severity = FindingSeverity.WARNING
    message = "Some post-mortems claim no action items are needed but give no justification."
    remediation = "Add a justification explaining why no action items are needed, or add action items."

    def matches(self, incident, facts):
        pm = facts.postmortem_for(incident.id)
        return bool(pm and pm.no_action_items_justified and _blank(pm.no_action_items_justification))


@register_rule
class SlaBreachWithoutRootCause(ReadinessRule):
    key = "sla_breach_without_root_cause"
    severity = FindingSeverity.CRITICAL
    message = "Some incidents breached their SLA but have no recorded root-cause analysis."
    remediation = "Record a root cause (text or a contributing factor marked as root) for each listed incident."

    def matches(self, incident, facts):
        status = compute_sla_status(incident, facts.sla_definitions, facts.now)
        return status.breached and not facts.has_root_cause(incident)


@register_rule
class CarriedOver(ReadinessRule):
    """Resolution date after quarter end, or no resolution; see is_carried_over."""

    key = "carried_over"
    severity = FindingSeverity.WARNING
    message = "Some incidents detected this quarter were not resolved by quarter end (carried over)."
    remediation = (
        "Confirm these are correct and ensure the quarterly packet includes a "
        "carried-over section with current status/context."
    )

    def matches(self, incident, facts):
        return is_carried_over(incident, facts.quarter_end)


def is_carried_over(incident, quarter_end: date | None) -> bool:
    """Unresolved, or resolved after the quarter's last day.

    Decided by ``resolved_at`` against the quarter end, not by status: an
    incident resolved after the quarter closed still counts as carried over,
    and a Post-Mortem incident resolved inside the quarter does not.
    """
    if quarter_end is None:
        return False
    resolved = as_utc(incident.resolved_at)
    return resolved is None or resolved.date() > quarter_end


# ═════════════════════════════════════════════════════════════════════════════
# Evaluation
# ═════════════════════════════════════════════════════════════════════════════


def evaluate(facts: QuarterFacts, rules: list[ReadinessRule] | None = None) -> ReadinessReport:
    """Run every rule over *facts*. Pure."""
    findings: list[Finding] = []
    for rule in (RULES if rules is None else rules):
        findings.extend(rule.evaluate(facts))

    flagged = {iid for f in findings for iid in f.incident_ids}
    total = len(facts.incidents)
    needs_attention = len(flagged)
    return ReadinessReport(
        quarter_id=facts.quarter_id,
        quarter_label=facts.quarter_label,
        total_incidents=total,
        ready_incidents=total - needs_attention,
        needs_attention_incidents=needs_attention,
        findings=findings,
    )


def load_quarter_facts(quarter, now: datetime | None = None) -> QuarterFacts:
    """Read the quarter's incidents, post-mortems, factors and active SLA definitions."""
    incidents = list_incidents_for_quarter(quarter)
    ids = [inc.id for inc in incidents]
    postmortems: dict[str, Postmortem] = {}
    factors: list[ContributingFactor] = []
    if ids:
        pm_rows = db.session.execute(
            select(Postmortem).where(Postmortem.incident_id.in_(ids))
        ).scalars().all()
        postmortems = {pm.incident_id: pm for pm in pm_rows}
        factors = list(db.session.execute(
            select(ContributingFactor).where(ContributingFactor.incident_id.in_(ids))
        ).scalars().all())

    return QuarterFacts(
        quarter_id=quarter.id,
        quarter_label=quarter.label,
        quarter_end=quarter.end_date,
        incidents=incidents,
        postmortems=postmortems,
        factors=factors,
        sla_definitions=active_definitions(),
        now=as_utc(now) or datetime.now(timezone.utc),
    )


def compute_quarter_readiness(quarter_id: str, now: datetime | None = None) -> ReadinessReport:
    """Readiness report for a stored quarter.

    Raises:
        NotFoundError: Unknown quarter.
    """
    from incident_governance.services.quarter_service import get_quarter_or_404

    quarter = get_quarter_or_404(quarter_id)
    report = evaluate(load_quarter_facts(quarter, now))
    logger.debug(
        "Readiness evaluated: %d findings", len(report.findings),
        extra={"quarter_id": quarter_id, "event_type": "readiness.evaluate"},
    )
    return report
