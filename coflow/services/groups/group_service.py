"""
Study group lifecycle and listings.

Creates, updates and deletes groups while keeping every member's schedule
free of overlapping meetings, and answers the read-only listing and search
queries used by collaborators.
"""

import logging
import re
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from motor.motor_asyncio import AsyncIOMotorClient
from pydantic import ValidationError

from common.database import transaction
from common.utils import (
    ConflictException,
    NotFoundException,
    ValidationException,
    success_response,
)
from coflow.schemas.groups import GroupFilters, ScheduleEntry, serialize_group
from coflow.services.groups.commitment_index import CommitmentIndex
from coflow.services.groups.conflict_checker import (
    TimeInterval,
    conflict_details,
    conflict_message,
)
from coflow.services.groups.consistency import write_member_projections, write_projection
from coflow.services.groups.group_repository import GroupRepository
from coflow.services.groups.role_resolver import annotate_roles, require_owner
from coflow.services.groups.validation import (
    TIME_FIELDS,
    check_id,
    utc_today,
    validate_group_changes,
    validate_group_fields,
)

logger = logging.getLogger(__name__)

SEARCH_FIELDS = ("groupName", "course", "description", "tags")

FiltersInput = Union[GroupFilters, Dict[str, Any], None]


def parse_filters(filters: FiltersInput) -> GroupFilters:
    """Accept a GroupFilters, a plain dict, or None."""
    if filters is None:
        return GroupFilters()
    if isinstance(filters, GroupFilters):
        return filters
    try:
        return GroupFilters.model_validate(filters)
    except ValidationError as e:
        raise ValidationException(
            message="Invalid group filters",
            code="INVALID_FILTERS",
            errors=[f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in e.errors()],
        )


def build_listing_query(
    filters: GroupFilters,
    today: date,
    term: Optional[str] = None,
) -> Tuple[Dict[str, Any], List[Tuple[str, int]]]:
    """
    Translate listing filters and an optional search term into a MongoDB query.

    Returns:
        (query, sort) pair
    """
    query: Dict[str, Any] = {}

    if filters.course:
        query["course"] = {"$regex": f"^{re.escape(filters.course.strip())}$", "$options": "i"}
    if filters.groupType:
        query["groupType"] = filters.groupType
    if filters.location:
        query["location"] = filters.location
    if filters.tags:
        query["tags"] = {"$in": filters.tags}
    if not filters.showFull:
        query["isFull"] = False

    date_condition: Dict[str, Any] = {}
    if filters.meetingDate:
        date_condition["$eq"] = filters.meetingDate
    if not filters.showPast:
        date_condition["$gte"] = today.isoformat()
    if date_condition:
        query["meetingDate"] = date_condition

    if term:
        pattern = re.escape(term)
        query["$or"] = [{field: {"$regex": pattern, "$options": "i"}} for field in SEARCH_FIELDS]

    direction = -1 if filters.sortDesc else 1
    sort = [(filters.sortBy, direction)]
    if filters.sortBy != "startTime":
        sort.append(("startTime", direction))
    return query, sort


class GroupService:
    """
    Handles group creation, updates, deletion and listings.
    """

    def __init__(
        self,
        groups: GroupRepository,
        commitments: CommitmentIndex,
        client: Optional[AsyncIOMotorClient] = None,
        today: Optional[Callable[[], date]] = None,
    ):
        """
        Initialize GroupService.

        Args:
            groups: Group repository
            commitments: User commitment projection
            client: Motor client; when given, each operation runs in a transaction
            today: Returns the current date, UTC by default
        """
        self._groups = groups
        self._commitments = commitments
        self._client = client
        self._today = today or utc_today

    # ─────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────

    async def create_group(self, founder_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create a group owned by its founder.

        Args:
            founder_id: User creating the group, becomes members[0]
            fields: Group fields (groupName, description, capacity, location,
                course, meetingDate, startTime, endTime, groupType, tags)

        Returns:
            The stored group, serialized

        Raises:
            ValidationException: A field is missing or invalid
            NotFoundException: Founder does not exist
            ConflictException: Founder already has a meeting in that slot
        """
        founder_id = check_id(founder_id, "Founder ID")
        validated = validate_group_fields(fields, today=self._today())

        if not await self._commitments.get_user(founder_id):
            raise NotFoundException(message="User not found", code="USER_NOT_FOUND")

        interval = TimeInterval.from_strings(
            validated["meetingDate"], validated["startTime"], validated["endTime"]
        )
        conflict = await self._groups.find_conflicting_group(founder_id, interval)
        if conflict:
            raise ConflictException(
                message=conflict_message(conflict, prefix="You already have a group scheduled at this time:"),
                code="SCHEDULE_CONFLICT",
                details=conflict_details(conflict),
            )

        now = datetime.now(timezone.utc)
        group_doc = {
            **validated,
            "members": [founder_id],
            "pendingMembers": [],
            "rejectedMembers": [],
            "isFull": False,
            "createdAt": now,
            "updatedAt": now,
        }

        async with transaction(self._client) as session:
            group = await self._groups.insert(group_doc, session=session)
            group_id = str(group["_id"])

            await write_projection(
                lambda: self._commitments.record_created(founder_id, ScheduleEntry.from_group(group), session=session),
                operation="create_group",
                group_id=group_id,
                user_ids=[founder_id],
                transactional=session is not None,
            )

        logger.info(f"User {founder_id} created group {group_id} ({validated['course']} on {validated['meetingDate']})")
        return serialize_group(group)

    async def get_group(self, group_id: str) -> Dict[str, Any]:
        group_id = check_id(group_id, "Group ID")
        return serialize_group(await self._groups.get_required(group_id))

    async def update_group(self, admin_id: str, group_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        """
        Update a group's fields.

        When the meeting slot moves, every current member (admin included) is
        checked for an overlap with their other groups before anything is
        written. The write itself only lands if the member list is unchanged
        since that check.

        Raises:
            ForbiddenException: Caller is not the group admin
            ValidationException: No changes, or a field is invalid
            ConflictException: A member has an overlapping meeting, or
                membership changed concurrently
            PartialWriteException: Some members' schedule entries could not be updated
        """
        admin_id = check_id(admin_id, "Admin ID")
        group_id = check_id(group_id, "Group ID")

        group = await self._groups.get_required(group_id)
        require_owner(group, admin_id, "update the group")

        validated = validate_group_changes(changes or {}, group, today=self._today())
        if not validated:
            raise ValidationException(message="No fields to update", code="NO_CHANGES")

        slot_changed = any(field in validated and validated[field] != group[field] for field in TIME_FIELDS)
        if slot_changed:
            interval = TimeInterval.from_strings(
                validated.get("meetingDate", group["meetingDate"]),
                validated.get("startTime", group["startTime"]),
                validated.get("endTime", group["endTime"]),
            )
            await self._ensure_members_available(group, interval)

        async with transaction(self._client) as session:
            updated = await self._groups.apply_update(group_id, validated, group["members"], session=session)
            if updated is None:
                raise ConflictException(
                    message="Group membership changed during the update, please try again",
                    code="CONCURRENT_UPDATE",
                )

            if slot_changed:
                entry = ScheduleEntry.from_group(updated)
                await write_member_projections(
                    updated["members"],
                    lambda user_id: self._commitments.replace_schedule_entry(user_id, entry, session=session),
                    operation="update_group",
                    group_id=group_id,
                    transactional=session is not None,
                )

        logger.info(f"Group {group_id} updated by {admin_id}: {sorted(validated)}")
        return serialize_group(updated)

    async def _ensure_members_available(self, group: Dict[str, Any], interval: TimeInterval) -> None:
        group_id = str(group["_id"])
        for member_id in group["members"]:
            conflict = await self._groups.find_conflicting_group(member_id, interval, exclude_group_id=group_id)
            if not conflict:
                continue

            users = await self._commitments.get_users([member_id])
            user_name = users.get(member_id, {}).get("userName") or "Unknown user"
            raise ConflictException(
                message=conflict_message(
                    conflict,
                    prefix=f"Member {user_name} ({member_id}) already has a group scheduled at this time:",
                ),
                code="SCHEDULE_CONFLICT",
                details={**conflict_details(conflict), "userId": member_id, "userName": user_name},
            )

    async def delete_group(self, admin_id: str, group_id: str) -> Dict[str, Any]:
        """
        Delete a group.

        The group document goes first, so no join request or approval can
        match it afterwards. Users are then cleared by the group id they
        hold, not by the member lists read beforehand, which also catches
        a request that landed between the read and the delete.
        """
        admin_id = check_id(admin_id, "Admin ID")
        group_id = check_id(group_id, "Group ID")

        group = await self._groups.get_required(group_id)
        require_owner(group, admin_id, "delete the group")

        async with transaction(self._client) as session:
            deleted = await self._groups.delete_owned(group_id, admin_id, session=session)
            if deleted is None:
                raise NotFoundException(message="Group not found", code="GROUP_NOT_FOUND")

            holders = list(deleted["members"]) + list(deleted.get("pendingMembers", []))
            cleared = await write_projection(
                lambda: self._commitments.purge_group(group_id, session=session),
                operation="delete_group",
                group_id=group_id,
                user_ids=holders,
                transactional=session is not None,
            )

        if cleared < len(holders):
            logger.warning(f"Deleting group {group_id}: {len(holders) - cleared} member(s) held no reference to it")
        logger.info(f"Group {group_id} deleted by {admin_id}, {cleared} user(s) updated")
        return success_response(
            {"groupId": group_id, "deleted": True, "affectedUsers": cleared},
            message="Group deleted successfully",
        )

    # ─────────────────────────────────────────────────────────────────
    # Listings
    # ─────────────────────────────────────────────────────────────────

    async def get_all_groups(self, filters: FiltersInput = None) -> List[Dict[str, Any]]:
        """
        List groups matching the filters.

        By default full groups and groups meeting before today are hidden.
        """
        query, sort = build_listing_query(parse_filters(filters), self._today())
        return [serialize_group(group) for group in await self._groups.find(query, sort)]

    async def get_all_non_full_groups(self, filters: FiltersInput = None) -> List[Dict[str, Any]]:
        parsed = parse_filters(filters).model_copy(update={"showFull": False, "showPast": False})
        return await self.get_all_groups(parsed)

    async def search_groups(
        self,
        query: Optional[str],
        user_id: Optional[str] = None,
        filters: FiltersInput = None,
    ) -> List[Dict[str, Any]]:
        """
        Case-insensitive substring search over name, course, description and tags.

        Args:
            query: Search term; blank returns the plain filtered listing
            user_id: Viewer; when given each group carries `userRole`
            filters: Listing filters applied on top of the search
        """
        term = (query or "").strip()
        mongo_query, sort = build_listing_query(parse_filters(filters), self._today(), term=term or None)
        groups = [serialize_group(group) for group in await self._groups.find(mongo_query, sort)]

        if user_id:
            groups = annotate_roles(groups, check_id(user_id, "User ID"))
        return groups

    async def get_created_groups(self, user_id: str) -> List[Dict[str, Any]]:
        user_id = check_id(user_id, "User ID")
        return [serialize_group(group) for group in await self._groups.find_owned_by(user_id)]

    async def get_joined_groups(self, user_id: str) -> List[Dict[str, Any]]:
        user_id = check_id(user_id, "User ID")
        return [serialize_group(group) for group in await self._groups.find_joined_by(user_id)]

    async def get_pending_groups(self, user_id: str) -> List[Dict[str, Any]]:
        user_id = check_id(user_id, "User ID")
        return [serialize_group(group) for group in await self._groups.find_pending_for(user_id)]
