"""
Incident Governance Service
Quarter Service: reporting-window CRUD.
"""

from __future__ import annotations

import logging

from sqlalchemy import select

from incident_governance.core.exceptions import ConflictError, NotFoundError, ValidationError
from incident_governance.models import db
from incident_governance.models.quarter import Quarter
from incident_governance.utils.helpers import parse_date

logger = logging.getLogger(__name__)


def get_quarter_or_404(quarter_id: str, *, for_update: bool = False) -> Quarter:
    """Load a quarter or raise NotFoundError. ``for_update`` takes a row lock."""
    stmt = select(Quarter).where(Quarter.id == quarter_id)
    if for_update:
        stmt = stmt.with_for_update()
    quarter = db.session.execute(stmt).scalar_one_or_none()
    if quarter is None:
        raise NotFoundError(resource="Quarter", resource_id=quarter_id)
    return quarter


def list_quarters() -> list[Quarter]:
    stmt = select(Quarter).order_by(Quarter.fiscal_year.desc(), Quarter.quarter_number.desc())
    return list(db.session.execute(stmt).scalars().all())


def _int_field(data: dict, field: str) -> int:
    value = data.get(field)
    if isinstance(value, bool):
        value = None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer", details={field: value}) from None


def create_quarter(data: dict) -> Quarter:
    """Create a reporting window.

    Rules: quarter_number in 1..4, end_date > start_date, non-blank label,
    unique (fiscal_year, quarter_number).

    Raises:
        ValidationError: Invalid input.
        ConflictError: Duplicate fiscal_year / quarter_number.
    """
    fiscal_year = _int_field(data, "fiscal_year")
    quarter_number = _int_field(data, "quarter_number")
    if not 1 <= quarter_number <= 4:
        raise ValidationError(
            "quarter_number must be between 1 and 4",
            details={"quarter_number": quarter_number},
        )
    start_date = parse_date(data.get("start_date"), "start_date")
    end_date = parse_date(data.get("end_date"), "end_date")
    if start_date is None or end_date is None:
        raise ValidationError(
            "start_date and end_date are required",
            details={"start_date": data.get("start_date"), "end_date": data.get("end_date")},
        )
    if end_date <= start_date:
        raise ValidationError(
            "end_date must be after start_date",
            details={"start_date": start_date.isoformat(), "end_date": end_date.isoformat()},
        )
    label = str(data.get("label") or "").strip()
    if not label:
        raise ValidationError("label is required", details={"label": data.get("label")})

    existing = db.session.execute(
        select(Quarter.id).where(
            Quarter.fiscal_year == fiscal_year, Quarter.quarter_number == quarter_number,
        )
    ).first()
    if existing is not None:
        raise ConflictError(
            resource="Quarter", field="fiscal_year/quarter_number",
            value=f"{fiscal_year}/Q{quarter_number}",
        )

    try:
        quarter = Quarter(
            fiscal_year=fiscal_year,
            quarter_number=quarter_number,
            start_date=start_date,
            end_date=end_date,
            label=label,
        )
        db.session.add(quarter)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Quarter created: %s", quarter.label,
        extra={"quarter_id": quarter.id, "event_type": "quarter.create"},
    )
    return quarter
