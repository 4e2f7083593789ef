"""
Field validation for study groups.

Field shapes (required fields, capacity bounds, allowed locations and group
types, course and time formats, tags) are declared on the GroupCreate and
GroupUpdate models. This module turns their errors into ValidationException
with a machine-readable code and adds the rules that depend on context: the
meeting date against today, start before end, and capacity against the
current member count.
"""

import re
from datetime import date, datetime, timezone
from typing import Any, Dict, Optional, Type

from bson import ObjectId
from pydantic import BaseModel, ValidationError

from common.utils.exceptions import ValidationException
from coflow.schemas.groups import (
    DATE_PATTERN,
    MAX_CAPACITY,
    MIN_CAPACITY,
    TIME_PATTERN,
    GroupCreate,
    GroupUpdate,
)

TIME_FIELDS = ("meetingDate", "startTime", "endTime")

_TIME_RE = re.compile(TIME_PATTERN)
_DATE_RE = re.compile(DATE_PATTERN)

# First failing field decides the code and message
_FIELD_ERRORS = {
    "groupName": ("INVALID_STRING", "Group name must be non-empty text, not just a number"),
    "description": ("INVALID_STRING", "Description must be non-empty text, not just a number"),
    "capacity": ("INVALID_CAPACITY", f"Capacity must be a number between {MIN_CAPACITY} and {MAX_CAPACITY}"),
    "location": ("INVALID_LOCATION", "Invalid location"),
    "course": ("INVALID_COURSE", "Course must be in following format: CS-546 or CS 546"),
    "meetingDate": ("INVALID_DATE", "Date must be in format YYYY-MM-DD"),
    "startTime": ("INVALID_TIME", "Start time: invalid time format (must be HH:MM in 24-hour format)"),
    "endTime": ("INVALID_TIME", "End time: invalid time format (must be HH:MM in 24-hour format)"),
    "groupType": ("INVALID_GROUP_TYPE", "Invalid group type"),
    "tags": ("INVALID_TAGS", "One or more tags is not a string or is an empty string"),
}


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def check_id(value: Any, name: str = "ID") -> str:
    """Validate an identifier and return it as a stripped ObjectId hex string."""
    if not value:
        raise ValidationException(message=f"{name} is required", code="MISSING_ID")
    if isinstance(value, ObjectId):
        return str(value)
    if not isinstance(value, str):
        raise ValidationException(message=f"{name} must be a string", code="INVALID_ID")

    value = value.strip()
    if not value:
        raise ValidationException(message=f"{name} cannot be empty", code="INVALID_ID")
    if not ObjectId.is_valid(value):
        raise ValidationException(message=f"Invalid {name} format", code="INVALID_ID")
    return value


def check_time(value: Any, name: str = "Time") -> str:
    if not isinstance(value, str) or not _TIME_RE.match(value.strip()):
        raise ValidationException(
            message=f"{name}: invalid time format (must be HH:MM in 24-hour format)",
            code="INVALID_TIME",
        )
    return value.strip()


def check_time_order(start_time: str, end_time: str) -> None:
    """End must be strictly later than start on the same day."""
    if end_time <= start_time:
        raise ValidationException(
            message="End time must be later than start time",
            code="INVALID_TIME_RANGE",
        )


def check_date(value: Any, today: Optional[date] = None, allow_past: bool = False) -> str:
    """
    Validate a YYYY-MM-DD calendar date.

    Args:
        value: Date string
        today: Current date, UTC when omitted; bounds the year at today + 10
        allow_past: Accept dates before today

    Returns:
        The normalized date string
    """
    if not isinstance(value, str):
        raise ValidationException(message="Date must be a string", code="INVALID_DATE")

    value = value.strip()
    if not _DATE_RE.match(value):
        raise ValidationException(message="Date must be in format YYYY-MM-DD", code="INVALID_DATE")

    today = today or utc_today()
    year, month, day = (int(part) for part in value.split("-"))
    max_year = today.year + 10
    if year < 1900 or year > max_year:
        raise ValidationException(
            message=f"Year must be between 1900 and {max_year}",
            code="INVALID_DATE",
        )

    try:
        parsed = date(year, month, day)
    except ValueError:
        raise ValidationException(message="Date is not a valid calendar date", code="INVALID_DATE")

    if not allow_past and parsed < today:
        raise ValidationException(message="Meeting date cannot be in the past", code="DATE_IN_PAST")

    return value


def _parse(model: Type[BaseModel], data: Dict[str, Any]) -> BaseModel:
    """Run a field model and translate its first failure into a ValidationException."""
    try:
        return model.model_validate(data)
    except ValidationError as e:
        errors = e.errors()
        messages = [f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in errors]

        missing = [str(err["loc"][0]) for err in errors if err["type"] == "missing"]
        if missing:
            raise ValidationException(
                message="All required fields must be provided",
                code="MISSING_FIELDS",
                details={"missing": missing},
            )

        code, message = _FIELD_ERRORS.get(str(errors[0]["loc"][0]), ("INVALID_FIELD", "Invalid group field"))
        raise ValidationException(message=message, code=code, errors=messages)


def validate_group_fields(fields: Dict[str, Any], today: date) -> Dict[str, Any]:
    """
    Validate the fields of a new group.

    Args:
        fields: Raw field values keyed by document field name; None and
            empty strings count as missing
        today: Current date, meeting dates before it are refused

    Returns:
        Normalized field values ready to persist
    """
    supplied = {name: value for name, value in fields.items() if value is not None and value != ""}
    validated = _parse(GroupCreate, supplied).model_dump()

    check_date(validated["meetingDate"], today=today)
    check_time_order(validated["startTime"], validated["endTime"])
    return validated


def validate_group_changes(
    changes: Dict[str, Any],
    current: Dict[str, Any],
    today: date,
) -> Dict[str, Any]:
    """
    Validate a partial update against the group's current state.

    Only fields present with a non-None value are considered. Time ordering
    is checked on the merged start/end, and capacity may not drop below the
    current member count.

    Returns:
        Normalized values of the fields that were supplied
    """
    supplied = {name: value for name, value in changes.items() if value is not None}
    validated = _parse(GroupUpdate, supplied).model_dump(exclude_none=True)

    if "meetingDate" in validated:
        check_date(validated["meetingDate"], today=today)

    if "startTime" in validated or "endTime" in validated:
        check_time_order(
            validated.get("startTime", current["startTime"]),
            validated.get("endTime", current["endTime"]),
        )

    if "capacity" in validated and validated["capacity"] < len(current.get("members", [])):
        raise ValidationException(
            message="New capacity cannot be less than current member count",
            code="CAPACITY_BELOW_MEMBERS",
        )

    return validated
