"""
Priority classification tests.

Covers:
  - Every cell of the severity x impact matrix
  - Rejection of values outside the enums
  - Incident.priority is derived and follows severity/impact edits
"""

from datetime import datetime, timedelta, timezone

import pytest

from incident_governance.core.exceptions import ValidationError
from incident_governance.models.incident import Incident
from incident_governance.models.priority import Priority, classify

T0 = datetime(2026, 1, 5, 10, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    "severity,impact,expected",
    [
        ("Critical", "Critical", "P0"),
        ("Critical", "High", "P1"),
        ("Critical", "Medium", "P1"),
        ("Critical", "Low", "P2"),
        ("High", "Critical", "P1"),
        ("High", "High", "P1"),
        ("High", "Medium", "P2"),
        ("High", "Low", "P3"),
        ("Medium", "Critical", "P2"),
        ("Medium", "High", "P2"),
        ("Medium", "Medium", "P3"),
        ("Medium", "Low", "P3"),
        ("Low", "Critical", "P3"),
        ("Low", "High", "P3"),
        ("Low", "Medium", "P4"),
        ("Low", "Low", "P4"),
    ],
)
def test_classify_matrix(severity, impact, expected):
    assert classify(severity, impact) == Priority(expected)
    assert classify(severity, impact).value == expected


@pytest.mark.parametrize(
    "severity,impact",
    [("Severe", "High"), ("High", "Huge"), ("", "Low"), ("critical", "Low"), (None, "Low")],
)
def test_classify_rejects_unknown_values(severity, impact):
    with pytest.raises(ValidationError):
        classify(severity, impact)


def test_incident_priority_is_derived():
    inc = Incident(
        title="Checkout errors", service="checkout",
        severity="High", impact="Low",
        started_at=T0, detected_at=T0 + timedelta(minutes=2),
    )
    assert inc.priority == "P3"

    inc.impact = "Critical"
    assert inc.priority == "P1"

    inc.severity = "Low"
    assert inc.priority == "P3"


def test_incident_priority_cannot_be_assigned():
    inc = Incident(title="x", severity="Low", impact="Low", started_at=T0, detected_at=T0)
    with pytest.raises(AttributeError):
        inc.priority = "P0"


def test_incident_rejects_invalid_severity():
    with pytest.raises(ValidationError):
        Incident(title="x", severity="Urgent", impact="Low", started_at=T0, detected_at=T0)
