"""
Incident Governance Service
Priority classification - severity x impact → priority tier.

The lookup table below is the single authoritative derivation. Every code
path that needs a priority (the Incident model hook, SLA lookups, the
readiness rules, the fingerprint) goes through ``classify``.

Usage:
    from incident_governance.models.priority import classify
    classify("High", "Medium")   # -> Priority.P2
"""

from __future__ import annotations

from enum import Enum

from incident_governance.core.exceptions import ValidationError


class Severity(str, Enum):
    CRITICAL = "Critical"
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


class Impact(str, Enum):
    CRITICAL = "Critical"
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


class Priority(str, Enum):
    P0 = "P0"
    P1 = "P1"
    P2 = "P2"
    P3 = "P3"
    P4 = "P4"


SEVERITIES = tuple(s.value for s in Severity)
IMPACTS = tuple(i.value for i in Impact)
PRIORITIES = tuple(p.value for p in Priority)


# (severity, impact) -> priority. Rows: severity, columns: impact.
PRIORITY_MATRIX: dict[tuple[Severity, Impact], Priority] = {
    (Severity.CRITICAL, Impact.CRITICAL): Priority.P0,
    (Severity.CRITICAL, Impact.HIGH):     Priority.P1,
    (Severity.CRITICAL, Impact.MEDIUM):   Priority.P1,
    (Severity.CRITICAL, Impact.LOW):      Priority.P2,
    (Severity.HIGH, Impact.CRITICAL):     Priority.P1,
    (Severity.HIGH, Impact.HIGH):         Priority.P1,
    (Severity.HIGH, Impact.MEDIUM):       Priority.P2,
    (Severity.HIGH, Impact.LOW):          Priority.P3,
    (Severity.MEDIUM, Impact.CRITICAL):   Priority.P2,
    (Severity.MEDIUM, Impact.HIGH):       Priority.P2,
    (Severity.MEDIUM, Impact.MEDIUM):     Priority.P3,
    (Severity.MEDIUM, Impact.LOW):        Priority.P3,
    (Severity.LOW, Impact.CRITICAL):      Priority.P3,
    (Severity.LOW, Impact.HIGH):          Priority.P3,
    (Severity.LOW, Impact.MEDIUM):        Priority.P4,
    (Severity.LOW, Impact.LOW):           Priority.P4,
}


def parse_severity(value: str | Severity) -> Severity:
    """Return the Severity for *value*; unknown values raise ValidationError."""
    try:
        return Severity(value)
    except ValueError:
        raise ValidationError(
            f"Invalid severity '{value}'. Must be one of: {', '.join(SEVERITIES)}",
            details={"severity": value},
        ) from None


def parse_impact(value: str | Impact) -> Impact:
    """Return the Impact for *value*; unknown values raise ValidationError."""
    try:
        return Impact(value)
    except ValueError:
        raise ValidationError(
            f"Invalid impact '{value}'. Must be one of: {', '.join(IMPACTS)}",
            details={"impact": value},
        ) from None


def parse_priority(value: str | Priority) -> Priority:
    try:
        return Priority(value)
    except ValueError:
        raise ValidationError(
            f"Invalid priority '{value}'. Must be one of: {', '.join(PRIORITIES)}",
            details={"priority": value},
        ) from None


def classify(severity: str | Severity, impact: str | Impact) -> Priority:
    """Map (severity, impact) to its priority tier.

    Total over the 4x4 product of valid values. Anything outside the enums
    is rejected with ValidationError, never defaulted.
    """
    return PRIORITY_MATRIX[(parse_severity(severity), parse_impact(impact))]
