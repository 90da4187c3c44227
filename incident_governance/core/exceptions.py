"""
Service-wide exception hierarchy.

Every service module raises these types and nothing else for expected
failures. Blueprints register handlers against them once and get the same
HTTP status codes everywhere:

    NotFoundError           404
    ValidationError         422
    InvalidTransitionError  409
    ReadinessBlockedError   409  (code GOVERNANCE_BLOCK)
    ConflictError           409

None of these are retried. Each one is terminal for the call that raised it
and is raised before any mutation is committed.

Usage:
    from incident_governance.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Quarter", resource_id="q-2026-1")
    raise ValidationError("Override reason is required", details={"reason": ""})
"""


class NotFoundError(Exception):
    """Raised when a requested quarter, incident, override or SLA definition does not exist.

    Args:
        resource: Human-readable entity name (e.g. "Incident", "QuarterOverride").
        resource_id: The id that was looked up.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input is malformed or violates a business rule.

    Examples: empty override reason, unknown severity/impact value, timestamps
    out of order.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class InvalidTransitionError(Exception):
    """Raised when a lifecycle transition is not in the current status' allowed set.

    No field of the incident is modified when this is raised.

    Args:
        incident_id: Incident the transition was requested for.
        current: Status the incident is in.
        target: Requested status.
        allowed: Statuses reachable from ``current``.
    """

    def __init__(self, incident_id: str, current: str, target: str, allowed: list[str]) -> None:
        self.incident_id = incident_id
        self.current_status = current
        self.target_status = target
        self.allowed = list(allowed)
        super().__init__(
            f"Cannot transition incident {incident_id} from '{current}' to '{target}'"
            f" (allowed: {', '.join(self.allowed) or 'none'})"
        )


class ReadinessBlockedError(Exception):
    """Raised when a quarter is finalized while critical findings lack overrides.

    This is an expected control-flow outcome, not a bug. ``blocking`` lists
    every (rule_key, incident_id) pair that still needs an override or a
    data fix.

    Args:
        quarter_id: Quarter that could not be finalized.
        blocking: List of ``{"rule_key": ..., "incident_id": ...}`` dicts.
    """

    def __init__(self, quarter_id: str, blocking: list[dict]) -> None:
        self.quarter_id = quarter_id
        self.blocking = blocking
        pairs = ", ".join(f"{b['rule_key']}:{b['incident_id']}" for b in blocking)
        super().__init__(
            f"Cannot finalize quarter {quarter_id}: missing overrides for critical findings: {pairs}"
        )

    @property
    def details(self) -> dict:
        return {"quarter_id": self.quarter_id, "blocking": self.blocking}


class ConflictError(Exception):
    """Raised when an operation would create a duplicate unique key.

    Args:
        resource: Model name.
        field: The unique field that would be duplicated.
        value: The conflicting value.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(f"{resource} with {field}={value!r} already exists")
