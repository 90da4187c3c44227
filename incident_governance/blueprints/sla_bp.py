"""SLA definition blueprint.

  GET    /api/v1/sla-definitions          ?include_inactive=true
  POST   /api/v1/sla-definitions
  PUT    /api/v1/sla-definitions/<id>
  DELETE /api/v1/sla-definitions/<id>     (deactivates)
"""

from __future__ import annotations

from flask import Blueprint, jsonify, request

from incident_governance.blueprints import json_body, register_error_handlers
from incident_governance.services import sla_engine

sla_bp = Blueprint("sla_definitions", __name__, url_prefix="/api/v1")
register_error_handlers(sla_bp)


@sla_bp.route("/sla-definitions", methods=["GET"])
def list_sla_definitions():
    include_inactive = request.args.get("include_inactive", "false").lower() == "true"
    rows = sla_engine.list_sla_definitions(include_inactive=include_inactive)
    return jsonify([r.to_dict() for r in rows]), 200


@sla_bp.route("/sla-definitions", methods=["POST"])
def create_sla_definition():
    """Body: {name, priority, response_time_minutes, resolve_time_minutes, is_active?}"""
    data, err = json_body()
    if err:
        return err
    for field in ("name", "priority", "response_time_minutes", "resolve_time_minutes"):
        if data.get(field) in (None, ""):
            return jsonify({"error": f"{field} is required"}), 400
    sla = sla_engine.create_sla_definition(data, actor=data.get("actor") or "system")
    return jsonify(sla.to_dict()), 201


@sla_bp.route("/sla-definitions/<definition_id>", methods=["PUT"])
def update_sla_definition(definition_id):
    data, err = json_body()
    if err:
        return err
    sla = sla_engine.update_sla_definition(definition_id, data, actor=data.get("actor") or "system")
    return jsonify(sla.to_dict()), 200


@sla_bp.route("/sla-definitions/<definition_id>", methods=["DELETE"])
def deactivate_sla_definition(definition_id):
    sla = sla_engine.deactivate_sla_definition(definition_id)
    return jsonify(sla.to_dict()), 200
