"""
HTTP API tests.

Covers:
  - Health check and request headers
  - Incident CRUD, transitions, first response, SLA, post-mortem, factors, audit
  - SLA definition endpoints
  - Quarter endpoints: readiness, overrides, finalize (incl. 409
    GOVERNANCE_BLOCK body), drift status, unfinalize, snapshot
  - Error envelope for 400 / 404 / 409 / 422
"""

import pytest

T0 = "2026-01-05T10:00:00Z"


# ── Helpers ──────────────────────────────────────────────────────────────────


def _create_incident(client, **kw):
    payload = {
        "title": "Payment gateway 502s",
        "service": "payments",
        "severity": "High",
        "impact": "Medium",
        "started_at": T0,
        "detected_at": "2026-01-05T10:04:00Z",
    }
    payload.update(kw)
    res = client.post("/api/v1/incidents", json=payload)
    assert res.status_code == 201, res.get_json()
    return res.get_json()


def _create_quarter(client):
    res = client.post("/api/v1/quarters", json={
        "fiscal_year": 2026, "quarter_number": 1,
        "start_date": "2026-01-01", "end_date": "2026-03-31", "label": "FY2026 Q1",
    })
    assert res.status_code == 201, res.get_json()
    return res.get_json()


# ═════════════════════════════════════════════════════════════════════════════
# Health
# ═════════════════════════════════════════════════════════════════════════════


def test_health(client):
    res = client.get("/api/v1/health")
    assert res.status_code == 200
    assert res.get_json()["status"] == "ok"
    assert res.headers.get("X-Request-ID")
    assert res.headers.get("X-Request-Duration-Ms") is not None


def test_unknown_route(client):
    res = client.get("/api/v1/does-not-exist")
    assert res.status_code == 404


# ═════════════════════════════════════════════════════════════════════════════
# Incidents
# ═════════════════════════════════════════════════════════════════════════════


class TestIncidentApi:
    def test_create_and_get(self, client):
        inc = _create_incident(client)
        assert inc["status"] == "Active"
        assert inc["priority"] == "P2"

        res = client.get(f"/api/v1/incidents/{inc['id']}")
        body = res.get_json()
        assert res.status_code == 200
        assert body["postmortem"] is None
        assert body["contributing_factors"] == []
        assert set(body["available_transitions"]) == {"Acknowledged", "Monitoring", "Resolved"}

    def test_create_requires_title(self, client):
        res = client.post("/api/v1/incidents", json={"severity": "High"})
        assert res.status_code == 400

    def test_create_invalid_severity_is_422(self, client):
        res = client.post("/api/v1/incidents", json={
            "title": "x", "severity": "Huge", "impact": "Low",
            "started_at": T0, "detected_at": T0,
        })
        assert res.status_code == 422
        assert res.get_json()["code"] == "ERR_VALIDATION_CONSTRAINT"

    def test_non_object_body_is_400(self, client):
        res = client.post("/api/v1/incidents", json=["not", "an", "object"])
        assert res.status_code == 400

    def test_get_unknown_is_404(self, client):
        res = client.get("/api/v1/incidents/inc-missing")
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"

    def test_update_rejects_status(self, client):
        inc = _create_incident(client)
        res = client.put(f"/api/v1/incidents/{inc['id']}", json={"status": "Resolved"})
        assert res.status_code == 422

    def test_update_recomputes_priority(self, client):
        inc = _create_incident(client)
        res = client.put(f"/api/v1/incidents/{inc['id']}", json={"impact": "Critical"})
        assert res.status_code == 200
        assert res.get_json()["priority"] == "P1"

    def test_transition_and_reopen(self, client):
        inc = _create_incident(client)
        res = client.post(f"/api/v1/incidents/{inc['id']}/transition",
                          json={"status": "Resolved", "actor": "oncall"})
        assert res.status_code == 200
        assert res.get_json()["resolved_at"] is not None

        res = client.post(f"/api/v1/incidents/{inc['id']}/transition", json={"status": "Active"})
        body = res.get_json()
        assert body["reopen_count"] == 1
        assert body["resolved_at"] is None

    def test_invalid_transition_is_409(self, client):
        inc = _create_incident(client)
        client.post(f"/api/v1/incidents/{inc['id']}/transition", json={"status": "Resolved"})
        client.post(f"/api/v1/incidents/{inc['id']}/transition", json={"status": "Post-Mortem"})

        res = client.post(f"/api/v1/incidents/{inc['id']}/transition", json={"status": "Resolved"})
        body = res.get_json()
        assert res.status_code == 409
        assert body["code"] == "ERR_INVALID_TRANSITION"
        assert body["details"] == {
            "current_status": "Post-Mortem", "target_status": "Resolved", "allowed": ["Active"],
        }

    def test_transition_requires_status(self, client):
        inc = _create_incident(client)
        res = client.post(f"/api/v1/incidents/{inc['id']}/transition", json={})
        assert res.status_code == 400

    @pytest.mark.parametrize("status", [5, ["Resolved"], {"name": "Resolved"}])
    def test_transition_rejects_non_string_status(self, client, status):
        inc = _create_incident(client)
        res = client.post(f"/api/v1/incidents/{inc['id']}/transition", json={"status": status})
        assert res.status_code == 400

    def test_transition_accepts_non_string_actor(self, client):
        inc = _create_incident(client)
        res = client.post(f"/api/v1/incidents/{inc['id']}/transition",
                          json={"status": "Acknowledged", "actor": 42})
        assert res.status_code == 200
        assert res.get_json()["status"] == "Acknowledged"

    def test_transition_out_of_order_is_422(self, client):
        inc = _create_incident(client, started_at="2099-01-05T10:00:00Z",
                               detected_at="2099-01-05T10:04:00Z")
        res = client.post(f"/api/v1/incidents/{inc['id']}/transition",
                          json={"status": "Acknowledged"})
        assert res.status_code == 422
        assert res.get_json()["details"]["fields"] == ["acknowledged_at"]
        assert client.get(f"/api/v1/incidents/{inc['id']}").get_json()["status"] == "Active"

    def test_transitions_endpoint(self, client):
        inc = _create_incident(client)
        res = client.get(f"/api/v1/incidents/{inc['id']}/transitions")
        assert res.get_json()["status"] == "Active"

    def test_first_response_and_sla(self, client, default_slas):
        inc = _create_incident(client)   # P2: 60 min response
        res = client.post(f"/api/v1/incidents/{inc['id']}/first-response",
                          json={"at": "2026-01-05T10:20:00Z"})
        assert res.status_code == 200

        res = client.get(f"/api/v1/incidents/{inc['id']}/sla?at=2026-01-06T10:00:00Z")
        sla = res.get_json()
        assert sla["response_elapsed_minutes"] == 20
        assert sla["response_breached"] is False
        assert sla["resolve_breached"] is True

    def test_sla_bad_at_is_422(self, client):
        inc = _create_incident(client)
        res = client.get(f"/api/v1/incidents/{inc['id']}/sla?at=yesterday")
        assert res.status_code == 422

    def test_postmortem_and_factor(self, client):
        inc = _create_incident(client)
        res = client.put(f"/api/v1/incidents/{inc['id']}/postmortem",
                         json={"status": "final", "content": "Timeline and RCA"})
        assert res.status_code == 200
        assert res.get_json()["completed_at"] is not None

        res = client.post(f"/api/v1/incidents/{inc['id']}/contributing-factors",
                          json={"category": "Tooling", "description": "No canary", "is_root": True})
        assert res.status_code == 201

        res = client.post(f"/api/v1/incidents/{inc['id']}/contributing-factors",
                          json={"category": "Weather", "description": "x"})
        assert res.status_code == 422

    def test_audit_feed(self, client):
        inc = _create_incident(client)
        client.post(f"/api/v1/incidents/{inc['id']}/transition", json={"status": "Acknowledged"})
        res = client.get(f"/api/v1/incidents/{inc['id']}/audit")
        body = res.get_json()
        assert body["total"] == 2
        assert [a["action"] for a in body["items"]] == ["incident.create", "incident.status_change"]


# ═════════════════════════════════════════════════════════════════════════════
# SLA definitions
# ═════════════════════════════════════════════════════════════════════════════


class TestSlaDefinitionApi:
    def test_crud(self, client):
        res = client.post("/api/v1/sla-definitions", json={
            "name": "P0 - Critical", "priority": "P0",
            "response_time_minutes": 15, "resolve_time_minutes": 60,
        })
        assert res.status_code == 201
        sla_id = res.get_json()["id"]

        res = client.put(f"/api/v1/sla-definitions/{sla_id}", json={"resolve_time_minutes": 90})
        assert res.get_json()["resolve_time_minutes"] == 90

        res = client.delete(f"/api/v1/sla-definitions/{sla_id}")
        assert res.get_json()["is_active"] is False
        assert client.get("/api/v1/sla-definitions").get_json() == []
        assert len(client.get("/api/v1/sla-definitions?include_inactive=true").get_json()) == 1

    def test_duplicate_active_is_409(self, client, default_slas):
        res = client.post("/api/v1/sla-definitions", json={
            "name": "Another P1", "priority": "P1",
            "response_time_minutes": 10, "resolve_time_minutes": 20,
        })
        assert res.status_code == 409

    def test_missing_field_is_400(self, client):
        res = client.post("/api/v1/sla-definitions", json={"name": "x", "priority": "P1"})
        assert res.status_code == 400


# ═════════════════════════════════════════════════════════════════════════════
# Quarters
# ═════════════════════════════════════════════════════════════════════════════


class TestQuarterApi:
    def test_create_list_get(self, client):
        q = _create_quarter(client)
        assert client.get("/api/v1/quarters").get_json()[0]["id"] == q["id"]
        assert client.get(f"/api/v1/quarters/{q['id']}").status_code == 200

    def test_duplicate_quarter_is_409(self, client):
        _create_quarter(client)
        res = client.post("/api/v1/quarters", json={
            "fiscal_year": 2026, "quarter_number": 1,
            "start_date": "2026-01-01", "end_date": "2026-03-31", "label": "dup",
        })
        assert res.status_code == 409

    def test_readiness(self, client):
        q = _create_quarter(client)
        inc = _create_incident(client)   # High severity, no post-mortem, unresolved
        res = client.get(f"/api/v1/quarters/{q['id']}/readiness?at=2026-04-02T00:00:00Z")
        body = res.get_json()
        assert res.status_code == 200
        assert body["total_incidents"] == 1
        keys = {f["rule_key"] for f in body["findings"]}
        assert {"postmortem_missing", "carried_over"} <= keys
        pm = next(f for f in body["findings"] if f["rule_key"] == "postmortem_missing")
        assert pm["incident_ids"] == [inc["id"]]

    def test_sla_breaches(self, client, default_slas):
        q = _create_quarter(client)
        inc = _create_incident(client)
        res = client.get(f"/api/v1/quarters/{q['id']}/sla-breaches?at=2026-01-06T00:00:00Z")
        assert [b["incident_id"] for b in res.get_json()] == [inc["id"]]

    def test_finalize_blocked_then_overridden(self, client):
        q = _create_quarter(client)
        inc = _create_incident(client)

        res = client.post(f"/api/v1/quarters/{q['id']}/finalize", json={"finalized_by": "cfo"})
        body = res.get_json()
        assert res.status_code == 409
        assert body["code"] == "GOVERNANCE_BLOCK"
        assert body["details"]["quarter_id"] == q["id"]
        assert body["details"]["blocking"] == [
            {"rule_key": "postmortem_missing", "incident_id": inc["id"]},
        ]

        res = client.post(f"/api/v1/quarters/{q['id']}/overrides", json={
            "rule_key": "postmortem_missing", "incident_id": inc["id"],
            "reason": "Post-mortem held jointly with vendor", "approved_by": "cto",
        })
        assert res.status_code == 200
        override_id = res.get_json()["id"]

        res = client.post(f"/api/v1/quarters/{q['id']}/finalize", json={"finalized_by": "cfo"})
        assert res.status_code == 200
        body = res.get_json()
        assert body["finalization"]["finalized_by"] == "cfo"
        assert body["snapshot"]["inputs_hash"] == body["finalization"]["inputs_hash"]

        status = client.get(f"/api/v1/quarters/{q['id']}/finalization").get_json()
        assert status["finalized"] is True
        assert status["facts_changed_since_finalization"] is False

        # Removing the override is a fingerprint change.
        assert client.delete(f"/api/v1/quarter-overrides/{override_id}").status_code == 200
        status = client.get(f"/api/v1/quarters/{q['id']}/finalization").get_json()
        assert status["facts_changed_since_finalization"] is True

    def test_override_blank_reason_is_422(self, client):
        q = _create_quarter(client)
        res = client.post(f"/api/v1/quarters/{q['id']}/overrides", json={
            "rule_key": "postmortem_missing", "incident_id": "inc-1", "reason": "  ",
        })
        assert res.status_code == 422

    def test_delete_unknown_override_is_404(self, client):
        assert client.delete("/api/v1/quarter-overrides/qov-missing").status_code == 404

    def test_unfinalize_and_snapshot(self, client):
        q = _create_quarter(client)
        assert client.get(f"/api/v1/quarters/{q['id']}/snapshot").status_code == 404
        assert client.post(f"/api/v1/quarters/{q['id']}/unfinalize", json={}).status_code == 404

        assert client.post(f"/api/v1/quarters/{q['id']}/finalize", json={}).status_code == 200
        res = client.post(f"/api/v1/quarters/{q['id']}/unfinalize", json={"actor": "cfo"})
        assert res.get_json() == {"quarter_id": q["id"], "finalized": False}

        res = client.get(f"/api/v1/quarters/{q['id']}/snapshot")
        assert res.status_code == 200
        assert res.get_json()["snapshot"]["summary"]["total_incidents"] == 0

    @pytest.mark.parametrize("path", [
        "/api/v1/quarters/q-missing",
        "/api/v1/quarters/q-missing/readiness",
        "/api/v1/quarters/q-missing/finalization",
    ])
    def test_unknown_quarter_is_404(self, client, path):
        assert client.get(path).status_code == 404
