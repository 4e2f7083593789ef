"""Tests for group pipeline functions."""

import pytest
from unittest.mock import AsyncMock, MagicMock
from bson import ObjectId

from common.utils.exceptions import ForbiddenException, ValidationException
from coflow.pipelines.groups import (
    check_slot_for_members,
    check_slot_for_user,
    get_group_roster,
    get_schedule_preview,
    get_user_dashboard,
    reconcile_user_commitments,
    search_groups_for_user,
)


@pytest.fixture
def alice_group_with_bob(group_service, membership_service, users, make_fields):
    async def _create(**overrides):
        group = await group_service.create_group(users["alice"], make_fields(**overrides))
        await membership_service.request_to_join(users["bob"], group["id"])
        await membership_service.approve_user(users["alice"], users["bob"], group["id"])
        return group["id"]

    return _create


class TestSearchGroupsForUser:
    @pytest.mark.asyncio
    async def test_wraps_results_in_list_response(self):
        group_service = MagicMock()
        group_service.search_groups = AsyncMock(return_value=[{"id": "g1", "userRole": "member"}])

        result = await search_groups_for_user(group_service, "u1", "algo", filters={"showFull": True})

        assert result == {"success": True, "data": [{"id": "g1", "userRole": "member"}], "count": 1}
        group_service.search_groups.assert_awaited_once_with("algo", user_id="u1", filters={"showFull": True})


class TestDashboard:
    @pytest.mark.asyncio
    async def test_collects_user_views(self, group_service, commitments, users, alice_group_with_bob):
        group_id = await alice_group_with_bob()

        result = await get_user_dashboard(group_service, commitments, users["bob"], today="2025-05-01")

        data = result["data"]
        assert data["createdGroups"] == []
        assert [g["id"] for g in data["joinedGroups"]] == [group_id]
        assert data["joinedGroups"][0]["userRole"] == "member"
        assert [e["groupId"] for e in data["upcoming"]] == [group_id]

    @pytest.mark.asyncio
    async def test_upcoming_excludes_earlier_dates(self, group_service, commitments, users, alice_group_with_bob):
        await alice_group_with_bob()

        result = await get_user_dashboard(group_service, commitments, users["bob"], today="2025-06-02")

        assert result["data"]["upcoming"] == []


class TestRoster:
    @pytest.mark.asyncio
    async def test_roster_for_admin(self, membership_service, users, alice_group_with_bob):
        group_id = await alice_group_with_bob()
        await membership_service.request_to_join(users["carol"], group_id)

        result = await get_group_roster(membership_service, group_id, users["alice"])

        assert [m["userName"] for m in result["data"]["members"]] == ["alice", "bob"]
        assert [p["userName"] for p in result["data"]["pending"]] == ["carol"]

    @pytest.mark.asyncio
    async def test_roster_refused_for_member(self, membership_service, users, alice_group_with_bob):
        group_id = await alice_group_with_bob()

        with pytest.raises(ForbiddenException):
            await get_group_roster(membership_service, group_id, users["bob"])


class TestSchedulePreview:
    @pytest.mark.asyncio
    async def test_groups_entries_by_day(self, group_service, commitments, users, make_fields):
        await group_service.create_group(users["alice"], make_fields(startTime="14:00", endTime="15:00"))
        await group_service.create_group(users["alice"], make_fields(startTime="09:00", endTime="10:00"))
        await group_service.create_group(users["alice"], make_fields(meetingDate="2025-06-03"))
        await group_service.create_group(users["alice"], make_fields(meetingDate="2025-07-01"))

        result = await get_schedule_preview(commitments, users["alice"], "2025-06-01", "2025-06-30")

        days = result["data"]["days"]
        assert result["data"]["count"] == 3
        assert [day["meetingDate"] for day in days] == ["2025-06-01", "2025-06-03"]
        assert [e["startTime"] for e in days[0]["entries"]] == ["09:00", "14:00"]

    @pytest.mark.asyncio
    async def test_rejects_bad_dates(self, commitments, users):
        with pytest.raises(ValidationException):
            await get_schedule_preview(commitments, users["alice"], "June 1st")


class TestSlotChecks:
    @pytest.mark.asyncio
    async def test_user_slot(self, group_service, groups_repo, users, make_fields):
        group = await group_service.create_group(users["alice"], make_fields())

        free = await check_slot_for_user(groups_repo, users["alice"], "2025-06-01", "11:00", "12:00")
        busy = await check_slot_for_user(groups_repo, users["alice"], "2025-06-01", "10:30", "11:30")
        own = await check_slot_for_user(
            groups_repo, users["alice"], "2025-06-01", "10:30", "11:30", exclude_group_id=group["id"]
        )

        assert free["data"] == {"available": True, "conflict": None}
        assert busy["data"]["available"] is False
        assert busy["data"]["conflict"]["conflictingGroupId"] == group["id"]
        assert own["data"]["available"] is True

    @pytest.mark.asyncio
    async def test_user_slot_rejects_inverted_times(self, groups_repo, users):
        with pytest.raises(ValidationException) as exc_info:
            await check_slot_for_user(groups_repo, users["alice"], "2025-06-01", "12:00", "11:00")

        assert exc_info.value.code == "INVALID_TIME_RANGE"

    @pytest.mark.asyncio
    async def test_members_slot_lists_every_clash(self, group_service, groups_repo, commitments, users, make_fields, alice_group_with_bob):
        group_id = await alice_group_with_bob()
        await group_service.create_group(users["bob"], make_fields(startTime="14:00", endTime="15:00", groupName="Bob's"))
        await group_service.create_group(users["alice"], make_fields(startTime="14:30", endTime="16:00", groupName="Alice's"))

        result = await check_slot_for_members(groups_repo, commitments, group_id, "2025-06-01", "14:00", "15:00")

        conflicts = result["data"]["conflicts"]
        assert result["data"]["available"] is False
        assert {(c["userName"], c["conflictingGroupName"]) for c in conflicts} == {
            ("alice", "Alice's"),
            ("bob", "Bob's"),
        }

    @pytest.mark.asyncio
    async def test_members_slot_free(self, groups_repo, commitments, alice_group_with_bob):
        group_id = await alice_group_with_bob()

        result = await check_slot_for_members(groups_repo, commitments, group_id, "2025-06-01", "18:00", "19:00")

        assert result["data"] == {"available": True, "conflicts": []}


class TestReconcileUserCommitments:
    @pytest.mark.asyncio
    async def test_consistent_projection_is_left_alone(self, groups_repo, commitments, users, alice_group_with_bob):
        await alice_group_with_bob()
        commitments.rebuild = AsyncMock()

        outcome = await reconcile_user_commitments(groups_repo, commitments, users["bob"])

        assert outcome["changed"] is False
        commitments.rebuild.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_stale_projection_is_rebuilt(self, groups_repo, commitments, users, membership_service, alice_group_with_bob):
        group_id = await alice_group_with_bob()
        other = await alice_group_with_bob(meetingDate="2025-06-05")
        await membership_service.request_to_join(users["carol"], group_id)

        # Simulate a partially applied write: bob's projection never got the entries
        bob = commitments.users[users["bob"]]
        bob["joinedGroups"] = []
        bob["schedule"] = []
        bob["pendingGroups"] = [str(ObjectId())]
        commitments.users[users["carol"]]["pendingGroups"] = []

        outcome = await reconcile_user_commitments(groups_repo, commitments, users["bob"])

        assert outcome == {
            "userId": users["bob"],
            "found": True,
            "changed": True,
            "memberGroups": 2,
            "pendingGroups": 0,
        }
        assert set(bob["joinedGroups"]) == {group_id, other}
        assert {e["groupId"] for e in bob["schedule"]} == {group_id, other}
        assert bob["pendingGroups"] == []

        carol = await reconcile_user_commitments(groups_repo, commitments, users["carol"])
        assert carol["changed"] is True
        assert commitments.users[users["carol"]]["pendingGroups"] == [group_id]

    @pytest.mark.asyncio
    async def test_group_filed_under_the_wrong_list_is_rebuilt(self, groups_repo, commitments, users, alice_group_with_bob):
        group_id = await alice_group_with_bob()
        alice = commitments.users[users["alice"]]
        alice["createdGroups"] = []
        alice["joinedGroups"] = [group_id]

        outcome = await reconcile_user_commitments(groups_repo, commitments, users["alice"])

        assert outcome["changed"] is True
        assert alice["createdGroups"] == [group_id]
        assert alice["joinedGroups"] == []

    @pytest.mark.asyncio
    async def test_unknown_user(self, groups_repo, commitments):
        outcome = await reconcile_user_commitments(groups_repo, commitments, str(ObjectId()))

        assert outcome["found"] is False
