"""
Schedule conflict detection.

Two commitments conflict when they fall on the same date and their
half-open [start, end) minute intervals overlap. Meetings that touch
(one ends exactly when the other starts) do not conflict.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional

from common.utils.exceptions import ValidationException


def to_minutes(value: str) -> int:
    """Convert an HH:MM string to minutes since midnight."""
    try:
        hours, minutes = value.split(":")
        hours, minutes = int(hours), int(minutes)
    except (AttributeError, ValueError):
        raise ValidationException(
            message=f"Invalid time format: {value!r} (must be HH:MM)",
            code="INVALID_TIME",
        )

    if not (0 <= hours <= 23 and 0 <= minutes <= 59):
        raise ValidationException(
            message=f"Invalid time format: {value!r} (must be HH:MM)",
            code="INVALID_TIME",
        )
    return hours * 60 + minutes


@dataclass(frozen=True)
class TimeInterval:
    """A meeting slot: calendar date plus [start, end) in minutes."""

    meeting_date: str
    start: int
    end: int

    @classmethod
    def from_strings(cls, meeting_date: str, start_time: str, end_time: str) -> "TimeInterval":
        return cls(meeting_date, to_minutes(start_time), to_minutes(end_time))

    @classmethod
    def from_group(cls, group: Dict[str, Any]) -> "TimeInterval":
        return cls.from_strings(group["meetingDate"], group["startTime"], group["endTime"])

    def overlaps(self, other: "TimeInterval") -> bool:
        return conflicts(self, other)


def conflicts(a: TimeInterval, b: TimeInterval) -> bool:
    """Symmetric overlap test. A slot always conflicts with itself."""
    return a.meeting_date == b.meeting_date and a.start < b.end and b.start < a.end


def group_id_of(group: Dict[str, Any]) -> str:
    """Group id as a string for both stored and serialized documents."""
    return str(group["_id"] if "_id" in group else group["id"])


def find_conflict(
    candidate: TimeInterval,
    groups: Iterable[Dict[str, Any]],
    exclude_group_id: Optional[str] = None,
) -> Optional[Dict[str, Any]]:
    """
    Return the first group whose slot overlaps the candidate.

    Args:
        candidate: Slot being checked
        groups: Existing commitments (group documents)
        exclude_group_id: Group to skip, typically the one being edited
    """
    for group in groups:
        if exclude_group_id is not None and group_id_of(group) == exclude_group_id:
            continue
        if conflicts(candidate, TimeInterval.from_group(group)):
            return group
    return None


def conflict_message(group: Dict[str, Any], prefix: str = "Schedule conflict with group") -> str:
    return f'{prefix} "{group.get("groupName", "")}" ({group["startTime"]} - {group["endTime"]})'


def conflict_details(group: Dict[str, Any]) -> Dict[str, Any]:
    """Describe the conflicting commitment for error payloads."""
    return {
        "conflictingGroupId": group_id_of(group),
        "conflictingGroupName": group.get("groupName"),
        "meetingDate": group["meetingDate"],
        "startTime": group["startTime"],
        "endTime": group["endTime"],
    }
