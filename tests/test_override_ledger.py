"""
Override ledger tests.

Covers:
  - Upsert creates once per (quarter, rule_key, incident)
  - Repeat upsert updates in place and only audits real changes
  - Reason / key validation and trimming
  - Delete, and delete of an unknown id
  - missing_override_pairs matching
"""

import pytest

from incident_governance.core.exceptions import NotFoundError, ValidationError
from incident_governance.models.audit import AuditLog
from incident_governance.models.quarter import QuarterOverride
from incident_governance.services import override_ledger


def _audit_count(action):
    return AuditLog.query.filter_by(action=action).count()


class TestUpsert:
    def test_create(self, quarter):
        ov = override_ledger.upsert_override(
            quarter.id, "postmortem_missing", "inc-1",
            "  Vendor-owned incident; vendor RCA attached  ", "vp-eng@example.com",
        )
        assert ov.id.startswith("qov-")
        assert ov.reason == "Vendor-owned incident; vendor RCA attached"
        assert ov.approved_by == "vp-eng@example.com"
        assert _audit_count("quarter_override.upsert") == 1

    def test_repeat_with_same_values_is_idempotent(self, quarter):
        first = override_ledger.upsert_override(quarter.id, "postmortem_missing", "inc-1", "ok")
        second = override_ledger.upsert_override(quarter.id, "postmortem_missing", "inc-1", "ok")
        assert first.id == second.id
        assert QuarterOverride.query.count() == 1
        assert _audit_count("quarter_override.upsert") == 1

    def test_repeat_updates_reason(self, quarter):
        override_ledger.upsert_override(quarter.id, "postmortem_missing", "inc-1", "first")
        ov = override_ledger.upsert_override(quarter.id, "postmortem_missing", "inc-1", "second")
        assert ov.reason == "second"
        assert QuarterOverride.query.count() == 1
        assert _audit_count("quarter_override.upsert") == 2

    def test_distinct_keys_are_distinct_rows(self, quarter):
        override_ledger.upsert_override(quarter.id, "postmortem_missing", "inc-1", "r")
        override_ledger.upsert_override(quarter.id, "timestamp_ordering", "inc-1", "r")
        override_ledger.upsert_override(quarter.id, "postmortem_missing", "inc-2", "r")
        rows = override_ledger.list_overrides(quarter.id)
        assert [(o.rule_key, o.incident_id) for o in rows] == [
            ("postmortem_missing", "inc-1"),
            ("postmortem_missing", "inc-2"),
            ("timestamp_ordering", "inc-1"),
        ]

    @pytest.mark.parametrize("rule_key,incident_id,reason", [
        ("postmortem_missing", "inc-1", ""),
        ("postmortem_missing", "inc-1", "   "),
        ("postmortem_missing", "inc-1", None),
        ("", "inc-1", "reason"),
        ("postmortem_missing", " ", "reason"),
    ])
    def test_rejects_blank_values(self, quarter, rule_key, incident_id, reason):
        with pytest.raises(ValidationError):
            override_ledger.upsert_override(quarter.id, rule_key, incident_id, reason)
        assert QuarterOverride.query.count() == 0

    def test_unknown_quarter(self):
        with pytest.raises(NotFoundError):
            override_ledger.upsert_override("q-missing", "postmortem_missing", "inc-1", "r")


class TestDelete:
    def test_delete(self, quarter):
        ov = override_ledger.upsert_override(quarter.id, "postmortem_missing", "inc-1", "r")
        override_ledger.delete_override(ov.id, actor="auditor")
        assert override_ledger.list_overrides(quarter.id) == []
        assert _audit_count("quarter_override.delete") == 1

    def test_delete_unknown(self, quarter):
        with pytest.raises(NotFoundError):
            override_ledger.delete_override("qov-missing")


class TestMissingPairs:
    def test_matches_exact_pairs_only(self, quarter):
        ov = override_ledger.upsert_override(quarter.id, "postmortem_missing", "inc-2", "r")
        pairs = [("postmortem_missing", "inc-1"), ("postmortem_missing", "inc-2"),
                 ("timestamp_ordering", "inc-2")]
        assert override_ledger.missing_override_pairs(pairs, [ov]) == [
            {"rule_key": "postmortem_missing", "incident_id": "inc-1"},
            {"rule_key": "timestamp_ordering", "incident_id": "inc-2"},
        ]

    def test_nothing_missing(self):
        assert override_ledger.missing_override_pairs([], []) == []
