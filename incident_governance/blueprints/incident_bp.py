"""Incident blueprint.

REST API for the incident store and its lifecycle.

Endpoint groups:
  Incident CRUD          POST /api/v1/incidents
                         GET/PUT /api/v1/incidents/<id>
  Lifecycle              POST /api/v1/incidents/<id>/transition
                         GET  /api/v1/incidents/<id>/transitions
                         POST /api/v1/incidents/<id>/first-response
  SLA                    GET  /api/v1/incidents/<id>/sla
  Analysis               PUT  /api/v1/incidents/<id>/postmortem
                         POST /api/v1/incidents/<id>/contributing-factors
  Audit feed             GET  /api/v1/incidents/<id>/audit

Service layer owns all business logic and commits.
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

from incident_governance.blueprints import json_body, paginate_query, register_error_handlers
from incident_governance.models.audit import AuditLog
from incident_governance.services import incident_lifecycle, incident_service, sla_engine
from incident_governance.utils.helpers import parse_datetime

logger = logging.getLogger(__name__)

incident_bp = Blueprint("incidents", __name__, url_prefix="/api/v1")
register_error_handlers(incident_bp)


def _actor(data: dict) -> str:
    raw = data.get("actor") or request.headers.get("X-Actor") or "system"
    return str(raw).strip() or "system"


# ═════════════════════════════════════════════════════════════════════════
# Incident CRUD
# ═════════════════════════════════════════════════════════════════════════


@incident_bp.route("/incidents", methods=["POST"])
def create_incident():
    """Create an incident (status Active, priority derived).

    Body: {title, severity, impact, started_at, detected_at, service?, ...}
    Returns: incident dict (201).
    """
    data, err = json_body()
    if err:
        return err
    if not str(data.get("title") or "").strip():
        return jsonify({"error": "title is required"}), 400
    inc = incident_service.create_incident(data, actor=_actor(data))
    return jsonify(inc.to_dict()), 201


@incident_bp.route("/incidents/<incident_id>", methods=["GET"])
def get_incident(incident_id):
    inc = incident_service.get_incident_or_404(incident_id)
    result = inc.to_dict()
    result["postmortem"] = inc.postmortem.to_dict() if inc.postmortem else None
    result["contributing_factors"] = [f.to_dict() for f in inc.contributing_factors]
    result["available_transitions"] = incident_lifecycle.get_available_transitions(inc.status)
    return jsonify(result), 200


@incident_bp.route("/incidents/<incident_id>", methods=["PUT"])
def update_incident(incident_id):
    """Update incident facts. status / reopen_count / priority are rejected (422)."""
    data, err = json_body()
    if err:
        return err
    actor = _actor(data)
    data.pop("actor", None)
    inc = incident_service.update_incident(incident_id, data, actor=actor)
    return jsonify(inc.to_dict()), 200


# ═════════════════════════════════════════════════════════════════════════
# Lifecycle
# ═════════════════════════════════════════════════════════════════════════


@incident_bp.route("/incidents/<incident_id>/transition", methods=["POST"])
def transition_incident(incident_id):
    """Body: {status, actor?}. 409 when the target is not allowed."""
    data, err = json_body()
    if err:
        return err
    status = data.get("status")
    if status is not None and not isinstance(status, str):
        return jsonify({"error": "status must be a string"}), 400
    status = (status or "").strip()
    if not status:
        return jsonify({"error": "status is required"}), 400
    inc = incident_lifecycle.transition_incident(incident_id, status, actor=_actor(data))
    result = inc.to_dict()
    result["available_transitions"] = incident_lifecycle.get_available_transitions(inc.status)
    return jsonify(result), 200


@incident_bp.route("/incidents/<incident_id>/transitions", methods=["GET"])
def available_transitions(incident_id):
    inc = incident_service.get_incident_or_404(incident_id)
    return jsonify({
        "incident_id": inc.id,
        "status": inc.status,
        "available_transitions": incident_lifecycle.get_available_transitions(inc.status),
    }), 200


@incident_bp.route("/incidents/<incident_id>/first-response", methods=["POST"])
def first_response(incident_id):
    """Body: {at?, actor?}. Idempotent: a second call keeps the first timestamp."""
    data, err = json_body()
    if err:
        return err
    at = parse_datetime(data.get("at"), "at")
    inc = incident_lifecycle.record_first_response(incident_id, at=at, actor=_actor(data))
    return jsonify(inc.to_dict()), 200


# ═════════════════════════════════════════════════════════════════════════
# SLA
# ═════════════════════════════════════════════════════════════════════════


@incident_bp.route("/incidents/<incident_id>/sla", methods=["GET"])
def incident_sla(incident_id):
    """Query params: at? (ISO-8601 evaluation instant, default now)."""
    now = parse_datetime(request.args.get("at"), "at")
    status = sla_engine.get_incident_sla(incident_id, now)
    return jsonify(status.to_dict()), 200


# ═════════════════════════════════════════════════════════════════════════
# Analysis
# ═════════════════════════════════════════════════════════════════════════


@incident_bp.route("/incidents/<incident_id>/postmortem", methods=["PUT"])
def upsert_postmortem(incident_id):
    """Body: {status?, content?, no_action_items_justified?, no_action_items_justification?}"""
    data, err = json_body()
    if err:
        return err
    pm = incident_service.upsert_postmortem(incident_id, data)
    return jsonify(pm.to_dict()), 200


@incident_bp.route("/incidents/<incident_id>/contributing-factors", methods=["POST"])
def add_contributing_factor(incident_id):
    """Body: {category, description, is_root?}"""
    data, err = json_body()
    if err:
        return err
    factor = incident_service.add_contributing_factor(incident_id, data)
    return jsonify(factor.to_dict()), 201


# ═════════════════════════════════════════════════════════════════════════
# Audit feed
# ═════════════════════════════════════════════════════════════════════════


@incident_bp.route("/incidents/<incident_id>/audit", methods=["GET"])
def incident_audit(incident_id):
    """Append-only audit entries for an incident, oldest first. Paginated."""
    incident_service.get_incident_or_404(incident_id)
    query = (
        AuditLog.query
        .filter_by(entity_type="incident", entity_id=incident_id)
        .order_by(AuditLog.timestamp.asc(), AuditLog.id.asc())
    )
    items, total = paginate_query(query)
    return jsonify({"items": [a.to_dict() for a in items], "total": total}), 200
