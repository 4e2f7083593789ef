"""Unit tests for schedule conflict detection (pure functions)."""

import pytest
from bson import ObjectId

from common.utils.exceptions import ValidationException
from coflow.services.groups.conflict_checker import (
    TimeInterval,
    conflict_details,
    conflict_message,
    conflicts,
    find_conflict,
    to_minutes,
)


def slot(start, end, meeting_date="2025-06-01"):
    return TimeInterval.from_strings(meeting_date, start, end)


def group_doc(start, end, meeting_date="2025-06-01", name="Group"):
    return {
        "_id": ObjectId(),
        "groupName": name,
        "meetingDate": meeting_date,
        "startTime": start,
        "endTime": end,
    }


# ─────────────────────────────────────────────────────────────────
# to_minutes
# ─────────────────────────────────────────────────────────────────


class TestToMinutes:
    def test_converts_hours_and_minutes(self):
        assert to_minutes("00:00") == 0
        assert to_minutes("10:30") == 630
        assert to_minutes("23:59") == 1439

    @pytest.mark.parametrize("value", ["24:00", "10:60", "ten", "10", "", None])
    def test_rejects_malformed_times(self, value):
        with pytest.raises(ValidationException) as exc_info:
            to_minutes(value)
        assert exc_info.value.code == "INVALID_TIME"


# ─────────────────────────────────────────────────────────────────
# conflicts
# ─────────────────────────────────────────────────────────────────


class TestConflicts:
    def test_partial_overlap_conflicts(self):
        assert conflicts(slot("10:00", "11:00"), slot("10:30", "11:30"))

    def test_containment_conflicts(self):
        assert conflicts(slot("09:00", "12:00"), slot("10:00", "11:00"))

    def test_back_to_back_does_not_conflict(self):
        assert not conflicts(slot("09:00", "10:00"), slot("10:00", "11:00"))
        assert not conflicts(slot("10:00", "11:00"), slot("09:00", "10:00"))

    def test_different_dates_never_conflict(self):
        assert not conflicts(slot("10:00", "11:00"), slot("10:00", "11:00", meeting_date="2025-06-02"))

    def test_slot_conflicts_with_itself(self):
        interval = slot("10:00", "11:00")
        assert conflicts(interval, interval)

    @pytest.mark.parametrize(
        "a,b",
        [
            (("10:00", "11:00"), ("10:30", "11:30")),
            (("08:00", "09:00"), ("09:00", "10:00")),
            (("13:00", "15:00"), ("13:30", "14:00")),
            (("07:00", "08:00"), ("19:00", "20:00")),
        ],
    )
    def test_is_symmetric(self, a, b):
        assert conflicts(slot(*a), slot(*b)) == conflicts(slot(*b), slot(*a))

    def test_overlaps_method_matches_function(self):
        a, b = slot("10:00", "11:00"), slot("10:59", "12:00")
        assert a.overlaps(b) is conflicts(a, b) is True


# ─────────────────────────────────────────────────────────────────
# find_conflict
# ─────────────────────────────────────────────────────────────────


class TestFindConflict:
    def test_returns_first_overlapping_group(self):
        free = group_doc("08:00", "09:00", name="Early")
        busy = group_doc("10:15", "10:45", name="Busy")

        assert find_conflict(slot("10:00", "11:00"), [free, busy]) is busy

    def test_returns_none_when_clear(self):
        groups = [group_doc("08:00", "10:00"), group_doc("11:00", "12:00")]
        assert find_conflict(slot("10:00", "11:00"), groups) is None

    def test_excludes_group_being_edited(self):
        own = group_doc("10:00", "11:00")
        assert find_conflict(slot("10:30", "11:30"), [own], exclude_group_id=str(own["_id"])) is None

    def test_excludes_serialized_group_by_id(self):
        own = {"id": "abc", "meetingDate": "2025-06-01", "startTime": "10:00", "endTime": "11:00"}
        assert find_conflict(slot("10:00", "11:00"), [own], exclude_group_id="abc") is None


class TestConflictDescription:
    def test_message_names_group_and_times(self):
        group = group_doc("10:00", "11:00", name="Databases")
        assert conflict_message(group) == 'Schedule conflict with group "Databases" (10:00 - 11:00)'

    def test_details_identify_conflicting_group(self):
        group = group_doc("10:00", "11:00", name="Databases")
        details = conflict_details(group)

        assert details["conflictingGroupId"] == str(group["_id"])
        assert details["conflictingGroupName"] == "Databases"
        assert details["startTime"] == "10:00"
        assert details["endTime"] == "11:00"
