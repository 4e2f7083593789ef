"""
Study group pipeline functions.

Orchestrates the read-side views collaborators render (search results,
a user's dashboard, rosters, schedule previews) and the per-user
commitment reconciliation used by the repair job.
"""

import logging
from typing import Any, Dict, List, Optional

from common.utils import list_response, success_response
from coflow.schemas.groups import ScheduleEntry
from coflow.services.groups.commitment_index import CommitmentIndex
from coflow.services.groups.conflict_checker import TimeInterval, conflict_details
from coflow.services.groups.group_repository import GroupRepository
from coflow.services.groups.group_service import GroupService
from coflow.services.groups.membership_service import MembershipService
from coflow.services.groups.role_resolver import annotate_roles, owner_of
from coflow.services.groups.validation import check_date, check_id, check_time, check_time_order, utc_today

logger = logging.getLogger(__name__)


async def search_groups_for_user(
    group_service: GroupService,
    user_id: str,
    query: Optional[str] = None,
    filters: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Search groups and tag each with the viewer's role.

    Returns:
        list_response of serialized groups carrying `userRole`
    """
    groups = await group_service.search_groups(query, user_id=user_id, filters=filters)
    logger.debug(f"Search {query!r} for user {user_id}: {len(groups)} group(s)")
    return list_response(groups)


async def get_user_dashboard(
    group_service: GroupService,
    commitments: CommitmentIndex,
    user_id: str,
    today: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Gather everything a user's group dashboard shows.

    1. Groups the user created, joined, and is waiting on
    2. Upcoming schedule entries from `today` onwards
    """
    created = await group_service.get_created_groups(user_id)
    joined = await group_service.get_joined_groups(user_id)
    pending = await group_service.get_pending_groups(user_id)
    today = today or utc_today().isoformat()
    upcoming = await commitments.get_schedule(user_id, start_date=today)

    return success_response(
        {
            "createdGroups": annotate_roles(created, user_id),
            "joinedGroups": annotate_roles(joined, user_id),
            "pendingGroups": annotate_roles(pending, user_id),
            "upcoming": upcoming,
        }
    )


async def get_group_roster(
    membership_service: MembershipService,
    group_id: str,
    admin_id: str,
) -> Dict[str, Any]:
    """Members and pending requesters of a group, for its admin."""
    members = await membership_service.get_joined_users(group_id, admin_id)
    pending = await membership_service.get_pending_users(group_id, admin_id)
    return success_response({"groupId": group_id, "members": members, "pending": pending})


async def get_schedule_preview(
    commitments: CommitmentIndex,
    user_id: str,
    start_date: str,
    end_date: Optional[str] = None,
) -> Dict[str, Any]:
    """
    A user's schedule between two dates (inclusive), grouped by day.

    Returns:
        {"days": [{"meetingDate": str, "entries": [...]}], "count": int}
    """
    user_id = check_id(user_id, "User ID")
    start_date = check_date(start_date, allow_past=True)
    if end_date is not None:
        end_date = check_date(end_date, allow_past=True)

    entries = await commitments.get_schedule(user_id, start_date=start_date, end_date=end_date)

    days: List[Dict[str, Any]] = []
    for entry in entries:
        if not days or days[-1]["meetingDate"] != entry["meetingDate"]:
            days.append({"meetingDate": entry["meetingDate"], "entries": []})
        days[-1]["entries"].append(entry)

    return success_response({"days": days, "count": len(entries)})


def _candidate_slot(meeting_date: str, start_time: str, end_time: str) -> TimeInterval:
    meeting_date = check_date(meeting_date, allow_past=True)
    start_time = check_time(start_time, "Start time")
    end_time = check_time(end_time, "End time")
    check_time_order(start_time, end_time)
    return TimeInterval.from_strings(meeting_date, start_time, end_time)


async def check_slot_for_user(
    groups: GroupRepository,
    user_id: str,
    meeting_date: str,
    start_time: str,
    end_time: str,
    exclude_group_id: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Tell whether a user is free for a slot.

    Returns:
        {"available": bool, "conflict": details of the clashing group or None}
    """
    user_id = check_id(user_id, "User ID")
    candidate = _candidate_slot(meeting_date, start_time, end_time)

    conflict = await groups.find_conflicting_group(user_id, candidate, exclude_group_id=exclude_group_id)
    return success_response(
        {
            "available": conflict is None,
            "conflict": conflict_details(conflict) if conflict else None,
        }
    )


async def check_slot_for_members(
    groups: GroupRepository,
    commitments: CommitmentIndex,
    group_id: str,
    meeting_date: str,
    start_time: str,
    end_time: str,
) -> Dict[str, Any]:
    """
    Preview a reschedule: every member whose other groups clash with the slot.

    Unlike update_group, which stops at the first clash, this lists them all.
    """
    group_id = check_id(group_id, "Group ID")
    candidate = _candidate_slot(meeting_date, start_time, end_time)
    group = await groups.get_required(group_id)

    clashes = []
    for member_id in group["members"]:
        conflict = await groups.find_conflicting_group(member_id, candidate, exclude_group_id=group_id)
        if conflict:
            clashes.append({"userId": member_id, **conflict_details(conflict)})

    if clashes:
        users = await commitments.get_users([clash["userId"] for clash in clashes])
        for clash in clashes:
            clash["userName"] = users.get(clash["userId"], {}).get("userName")

    return success_response({"available": not clashes, "conflicts": clashes})


async def reconcile_user_commitments(
    groups: GroupRepository,
    commitments: CommitmentIndex,
    user_id: str,
) -> Dict[str, Any]:
    """
    Rebuild a user's commitment projection from the group documents.

    Group documents are authoritative; the projection is overwritten with
    what they say. Reports whether the stored projection differed.
    """
    user_id = check_id(user_id, "User ID")

    user = await commitments.get_user(user_id)
    if not user:
        return {"userId": user_id, "found": False, "changed": False}

    member_groups = await groups.find_by_member(user_id)
    pending_groups = await groups.find_pending_for(user_id)

    expected_schedule = sorted(
        (ScheduleEntry.from_group(group).model_dump() for group in member_groups),
        key=lambda entry: entry["groupId"],
    )
    stored_schedule = sorted(user.get("schedule", []), key=lambda entry: str(entry.get("groupId")))
    expected_created = sorted(str(group["_id"]) for group in member_groups if owner_of(group) == user_id)
    expected_joined = sorted(str(group["_id"]) for group in member_groups if owner_of(group) != user_id)
    expected_pending = sorted(str(group["_id"]) for group in pending_groups)

    changed = (
        expected_schedule != stored_schedule
        or expected_created != sorted(user.get("createdGroups", []))
        or expected_joined != sorted(user.get("joinedGroups", []))
        or expected_pending != sorted(user.get("pendingGroups", []))
    )

    if changed:
        await commitments.rebuild(user_id, member_groups, pending_groups)
        logger.info(
            f"Rebuilt commitments for user {user_id}: "
            f"{len(member_groups)} membership(s), {len(pending_groups)} pending"
        )

    return {
        "userId": user_id,
        "found": True,
        "changed": changed,
        "memberGroups": len(member_groups),
        "pendingGroups": len(pending_groups),
    }


__all__ = [
    "search_groups_for_user",
    "get_user_dashboard",
    "get_group_roster",
    "get_schedule_preview",
    "check_slot_for_user",
    "check_slot_for_members",
    "reconcile_user_commitments",
]
