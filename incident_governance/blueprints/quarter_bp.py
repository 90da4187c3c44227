"""Quarter governance blueprint.

Endpoint groups:
  Quarters            GET/POST /api/v1/quarters
                      GET      /api/v1/quarters/<id>
  Readiness           GET      /api/v1/quarters/<id>/readiness
                      GET      /api/v1/quarters/<id>/sla-breaches
  Override ledger     GET/POST /api/v1/quarters/<id>/overrides
                      DELETE   /api/v1/quarter-overrides/<override_id>
  Finalization        GET      /api/v1/quarters/<id>/finalization
                      POST     /api/v1/quarters/<id>/finalize
                      POST     /api/v1/quarters/<id>/unfinalize
                      GET      /api/v1/quarters/<id>/snapshot

``?at=`` (ISO-8601) on the read endpoints pins the evaluation instant used
for live SLA checks.
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

from incident_governance.blueprints import json_body, register_error_handlers
from incident_governance.services import (
    override_ledger,
    quarter_finalization,
    quarter_service,
    readiness,
    sla_engine,
)
from incident_governance.utils.helpers import parse_datetime

logger = logging.getLogger(__name__)

quarter_bp = Blueprint("quarters", __name__, url_prefix="/api/v1")
register_error_handlers(quarter_bp)


def _at():
    return parse_datetime(request.args.get("at"), "at")


# ═════════════════════════════════════════════════════════════════════════
# Quarters
# ═════════════════════════════════════════════════════════════════════════


@quarter_bp.route("/quarters", methods=["GET"])
def list_quarters():
    return jsonify([q.to_dict() for q in quarter_service.list_quarters()]), 200


@quarter_bp.route("/quarters", methods=["POST"])
def create_quarter():
    """Body: {fiscal_year, quarter_number, start_date, end_date, label}"""
    data, err = json_body()
    if err:
        return err
    for field in ("fiscal_year", "quarter_number", "start_date", "end_date"):
        if data.get(field) in (None, ""):
            return jsonify({"error": f"{field} is required"}), 400
    quarter = quarter_service.create_quarter(data)
    return jsonify(quarter.to_dict()), 201


@quarter_bp.route("/quarters/<quarter_id>", methods=["GET"])
def get_quarter(quarter_id):
    return jsonify(quarter_service.get_quarter_or_404(quarter_id).to_dict()), 200


# ═════════════════════════════════════════════════════════════════════════
# Readiness
# ═════════════════════════════════════════════════════════════════════════


@quarter_bp.route("/quarters/<quarter_id>/readiness", methods=["GET"])
def quarter_readiness(quarter_id):
    report = readiness.compute_quarter_readiness(quarter_id, _at())
    return jsonify(report.to_dict()), 200


@quarter_bp.route("/quarters/<quarter_id>/sla-breaches", methods=["GET"])
def quarter_sla_breaches(quarter_id):
    return jsonify(sla_engine.list_sla_breaches(quarter_id, _at())), 200


# ═════════════════════════════════════════════════════════════════════════
# Override ledger
# ═════════════════════════════════════════════════════════════════════════


@quarter_bp.route("/quarters/<quarter_id>/overrides", methods=["GET"])
def list_overrides(quarter_id):
    return jsonify([o.to_dict() for o in override_ledger.list_overrides(quarter_id)]), 200


@quarter_bp.route("/quarters/<quarter_id>/overrides", methods=["POST"])
def upsert_override(quarter_id):
    """Body: {rule_key, incident_id, reason, approved_by?}. Idempotent on the key."""
    data, err = json_body()
    if err:
        return err
    ov = override_ledger.upsert_override(
        quarter_id,
        data.get("rule_key"),
        data.get("incident_id"),
        data.get("reason"),
        data.get("approved_by"),
        actor=data.get("actor"),
    )
    return jsonify(ov.to_dict()), 200


@quarter_bp.route("/quarter-overrides/<override_id>", methods=["DELETE"])
def delete_override(override_id):
    override_ledger.delete_override(override_id, actor=request.args.get("actor") or "system")
    return jsonify({"deleted": True, "id": override_id}), 200


# ═════════════════════════════════════════════════════════════════════════
# Finalization
# ═════════════════════════════════════════════════════════════════════════


@quarter_bp.route("/quarters/<quarter_id>/finalization", methods=["GET"])
def finalization_status(quarter_id):
    return jsonify(quarter_finalization.get_finalization_status(quarter_id, _at())), 200


@quarter_bp.route("/quarters/<quarter_id>/finalize", methods=["POST"])
def finalize_quarter(quarter_id):
    """Body: {finalized_by?, notes?}. 409 GOVERNANCE_BLOCK lists missing overrides."""
    data, err = json_body()
    if err:
        return err
    fin = quarter_finalization.finalize_quarter(
        quarter_id, data.get("finalized_by"), data.get("notes"), now=_at(),
    )
    return jsonify({
        "finalization": fin.to_dict(),
        "snapshot": fin.snapshot.to_dict(),
    }), 200


@quarter_bp.route("/quarters/<quarter_id>/unfinalize", methods=["POST"])
def unfinalize_quarter(quarter_id):
    data, err = json_body()
    if err:
        return err
    quarter_finalization.unfinalize_quarter(quarter_id, actor=data.get("actor") or "system")
    return jsonify({"quarter_id": quarter_id, "finalized": False}), 200


@quarter_bp.route("/quarters/<quarter_id>/snapshot", methods=["GET"])
def quarter_snapshot(quarter_id):
    return jsonify(quarter_finalization.get_snapshot(quarter_id).to_dict()), 200
