"""
Quarter readiness tests.

Covers:
  - Each registered rule on a minimal failing incident
  - A clean incident produces no findings
  - needs_attention counts every flagged incident, warnings included
  - Quarter window (detected_at within start..end)
  - critical_pairs ordering
"""

from datetime import datetime, timedelta, timezone

import pytest

from incident_governance.core.exceptions import NotFoundError
from incident_governance.models import db
from incident_governance.models.incident import ContributingFactor, Incident, Postmortem
from incident_governance.services import readiness
from incident_governance.services.readiness import FindingSeverity

T0 = datetime(2026, 1, 5, 10, 0, tzinfo=timezone.utc)
EVAL_AT = datetime(2026, 4, 2, 9, 0, tzinfo=timezone.utc)


def _at(n):
    return T0 + timedelta(minutes=n)


def _make_incident(**kw):
    """Persist an incident that passes every rule unless overridden.

    Medium/Low → P3 (120 min response, 1440 min resolve).
    """
    fields = {
        "title": "Cache eviction storm",
        "service": "cache",
        "severity": "Medium",
        "impact": "Low",
        "status": "Resolved",
        "started_at": T0,
        "detected_at": _at(5),
        "first_response_at": _at(10),
        "resolved_at": _at(100),
    }
    fields.update(kw)
    inc = Incident(**fields)
    db.session.add(inc)
    db.session.flush()
    return inc


def _make_postmortem(inc, **kw):
    pm = Postmortem(incident_id=inc.id, status=kw.pop("status", "final"), **kw)
    db.session.add(pm)
    db.session.flush()
    return pm


def _report(quarter, now=EVAL_AT):
    return readiness.evaluate(readiness.load_quarter_facts(quarter, now))


def _finding(report, rule_key):
    return next((f for f in report.findings if f.rule_key == rule_key), None)


# ═════════════════════════════════════════════════════════════════════════════
# Individual rules
# ═════════════════════════════════════════════════════════════════════════════


class TestRules:
    def test_clean_incident_has_no_findings(self, quarter, default_slas):
        _make_incident()
        report = _report(quarter)
        assert report.findings == []
        assert report.total_incidents == 1
        assert report.ready_incidents == 1
        assert report.needs_attention_incidents == 0

    def test_rule_registry_order(self):
        assert [r.key for r in readiness.RULES] == [
            "missing_required_fields",
            "timestamp_ordering",
            "resolved_requires_resolved_at",
            "postmortem_missing",
            "no_action_items_unjustified",
            "sla_breach_without_root_cause",
            "carried_over",
        ]

    def test_missing_required_fields(self, quarter):
        inc = _make_incident(service="  ")
        f = _finding(_report(quarter), "missing_required_fields")
        assert f.severity == FindingSeverity.CRITICAL
        assert f.incident_ids == [inc.id]

    def test_timestamp_ordering(self, quarter):
        inc = _make_incident(first_response_at=_at(2))   # before detected_at
        f = _finding(_report(quarter), "timestamp_ordering")
        assert f.severity == FindingSeverity.CRITICAL
        assert f.incident_ids == [inc.id]

    @pytest.mark.parametrize("status", ["Resolved", "Post-Mortem"])
    def test_resolved_requires_resolved_at(self, quarter, status):
        inc = _make_incident(status=status, resolved_at=None)
        f = _finding(_report(quarter), "resolved_requires_resolved_at")
        assert f.incident_ids == [inc.id]

    def test_monitoring_without_resolved_at_is_fine(self, quarter):
        _make_incident(status="Monitoring", resolved_at=None)
        assert _finding(_report(quarter), "resolved_requires_resolved_at") is None

    def test_postmortem_missing_for_high_severity(self, quarter):
        missing = _make_incident(severity="High")
        draft = _make_incident(severity="Critical")
        _make_postmortem(draft, status="draft")
        done = _make_incident(severity="High")
        _make_postmortem(done, status="final")
        _make_incident(severity="Medium")   # not required

        f = _finding(_report(quarter), "postmortem_missing")
        assert f.severity == FindingSeverity.CRITICAL
        assert f.incident_ids == sorted([missing.id, draft.id])

    def test_no_action_items_unjustified(self, quarter):
        inc = _make_incident()
        _make_postmortem(inc, no_action_items_justified=True, no_action_items_justification=" ")
        justified = _make_incident()
        _make_postmortem(
            justified, no_action_items_justified=True,
            no_action_items_justification="Vendor outage; nothing actionable on our side",
        )

        f = _finding(_report(quarter), "no_action_items_unjustified")
        assert f.severity == FindingSeverity.WARNING
        assert f.incident_ids == [inc.id]

    def test_sla_breach_without_root_cause(self, quarter, default_slas):
        inc = _make_incident(first_response_at=_at(500))   # P3 response target 120
        f = _finding(_report(quarter), "sla_breach_without_root_cause")
        assert f.severity == FindingSeverity.CRITICAL
        assert f.incident_ids == [inc.id]

    def test_root_cause_text_clears_sla_finding(self, quarter, default_slas):
        _make_incident(first_response_at=_at(500), root_cause="Eviction policy misconfigured")
        assert _finding(_report(quarter), "sla_breach_without_root_cause") is None

    def test_root_factor_clears_sla_finding(self, quarter, default_slas):
        inc = _make_incident(first_response_at=_at(500))
        db.session.add(ContributingFactor(
            incident_id=inc.id, category="Tooling",
            description="Alert routed to the wrong rotation", is_root=True,
        ))
        db.session.flush()
        assert _finding(_report(quarter), "sla_breach_without_root_cause") is None

    def test_no_sla_definition_means_no_breach(self, quarter):
        _make_incident(first_response_at=_at(500))
        assert _finding(_report(quarter), "sla_breach_without_root_cause") is None

    def test_carried_over(self, quarter):
        unresolved = _make_incident(status="Monitoring", resolved_at=None)
        late = _make_incident(resolved_at=datetime(2026, 4, 3, 8, 0, tzinfo=timezone.utc))
        on_last_day = _make_incident(resolved_at=datetime(2026, 3, 31, 23, 0, tzinfo=timezone.utc))

        f = _finding(_report(quarter), "carried_over")
        assert f.severity == FindingSeverity.WARNING
        assert f.incident_ids == sorted([unresolved.id, late.id])
        assert on_last_day.id not in f.incident_ids

    def test_carried_over_follows_resolved_at_not_status(self, quarter):
        late = _make_incident(status="Post-Mortem",
                              resolved_at=datetime(2026, 4, 3, 8, 0, tzinfo=timezone.utc))
        _make_incident(status="Post-Mortem")

        f = _finding(_report(quarter), "carried_over")
        assert f.incident_ids == [late.id]


# ═════════════════════════════════════════════════════════════════════════════
# Aggregation
# ═════════════════════════════════════════════════════════════════════════════


class TestReport:
    def test_needs_attention_includes_warnings(self, quarter):
        _make_incident()
        _make_incident(status="Monitoring", resolved_at=None)   # carried_over only
        report = _report(quarter)
        assert report.critical_findings == []
        assert report.total_incidents == 2
        assert report.needs_attention_incidents == 1
        assert report.ready_incidents == 1

    def test_incident_in_several_findings_counted_once(self, quarter):
        _make_incident(service="", severity="High", status="Resolved", resolved_at=None)
        report = _report(quarter)
        assert len(report.findings) >= 3
        assert report.needs_attention_incidents == 1

    def test_critical_pairs_sorted(self, quarter):
        a = _make_incident(service="")
        b = _make_incident(severity="High")
        pairs = _report(quarter).critical_pairs()
        assert pairs == sorted(pairs)
        assert ("missing_required_fields", a.id) in pairs
        assert ("postmortem_missing", b.id) in pairs

    def test_incidents_outside_window_are_ignored(self, quarter):
        april = datetime(2026, 4, 1, 0, 30, tzinfo=timezone.utc)
        _make_incident(service="", started_at=april, detected_at=april,
                       first_response_at=None, resolved_at=None, status="Active")
        report = _report(quarter)
        assert report.total_incidents == 0
        assert report.findings == []

    def test_last_day_of_quarter_is_inside_window(self, quarter):
        last = datetime(2026, 3, 31, 23, 59, tzinfo=timezone.utc)
        _make_incident(started_at=last, detected_at=last, first_response_at=None,
                       resolved_at=None, status="Active")
        assert _report(quarter).total_incidents == 1

    def test_custom_rule_list(self, quarter):
        _make_incident(service="")
        facts = readiness.load_quarter_facts(quarter, EVAL_AT)
        report = readiness.evaluate(facts, rules=[readiness.CarriedOver()])
        assert report.findings == []

    def test_to_dict_shape(self, quarter):
        _make_incident(service="")
        d = _report(quarter).to_dict()
        assert d["quarter_id"] == quarter.id
        assert d["quarter_label"] == "FY2026 Q1"
        assert d["findings"][0]["severity"] == "critical"
        assert set(d["findings"][0]) == {
            "rule_key", "severity", "message", "incident_ids", "remediation",
        }

    def test_unknown_quarter(self):
        with pytest.raises(NotFoundError):
            readiness.compute_quarter_readiness("q-missing")
