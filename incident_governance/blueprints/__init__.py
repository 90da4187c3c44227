"""
Incident Governance Service
Blueprint registry and shared helpers.
"""

import logging

from flask import jsonify, request
from werkzeug.exceptions import HTTPException

from incident_governance.core.exceptions import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    ReadinessBlockedError,
    ValidationError,
)
from incident_governance.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def paginate_query(query, default_limit=200, max_limit=1000):
    """Apply limit/offset pagination to a SQLAlchemy query.

    Query params:
        limit  - max items (default 200, capped at max_limit)
        offset - starting position (default 0)

    Returns:
        (items_list, total_count)
    """
    total = query.count()
    try:
        limit = min(int(request.args.get("limit", default_limit)), max_limit)
    except (ValueError, TypeError):
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    items = query.limit(limit).offset(offset).all()
    return items, total


def json_body() -> tuple[dict | None, tuple | None]:
    """Return ``(data, None)`` for a JSON object body, else ``(None, 400 response)``."""
    data = request.get_json(silent=True)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        return None, api_error(E.VALIDATION_INVALID, "Request body must be a JSON object")
    return data, None


def register_error_handlers(bp):
    """Map the service exception hierarchy to HTTP responses for *bp*."""

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return api_error(E.NOT_FOUND, str(error), status=404)

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        return api_error(E.VALIDATION_CONSTRAINT, str(error), status=422, details=error.details)

    @bp.errorhandler(InvalidTransitionError)
    def _handle_invalid_transition(error: InvalidTransitionError):
        return api_error(
            E.INVALID_TRANSITION, str(error), status=409,
            details={
                "current_status": error.current_status,
                "target_status": error.target_status,
                "allowed": error.allowed,
            },
        )

    @bp.errorhandler(ReadinessBlockedError)
    def _handle_blocked(error: ReadinessBlockedError):
        return api_error(E.GOVERNANCE_BLOCK, str(error), status=409, details=error.details)

    @bp.errorhandler(ConflictError)
    def _handle_conflict(error: ConflictError):
        return api_error(E.CONFLICT_DUPLICATE, str(error), status=409)

    @bp.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        if isinstance(error, HTTPException):
            return jsonify({"error": error.description}), error.code
        logger.exception("Unexpected error in %s endpoint=%s", bp.name, request.endpoint)
        return api_error(E.INTERNAL, "Internal server error", status=500)
