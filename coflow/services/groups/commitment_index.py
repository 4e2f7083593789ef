"""
User commitment projection.

Each user document carries a denormalized view of their group commitments:
createdGroups, joinedGroups and pendingGroups (group id strings) plus a
schedule of {groupId, meetingDate, startTime, endTime} entries, one per
group the user is a member of.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase

from coflow.schemas.groups import ScheduleEntry
from coflow.services.groups.role_resolver import owner_of

logger = logging.getLogger(__name__)

DEFAULT_USERS_COLLECTION = "users"

# One per branch of the purge_group $or so deletes never scan the collection
USER_INDEXES: List[Tuple[str, list, dict]] = [
    (DEFAULT_USERS_COLLECTION, [("createdGroups", 1)], {}),
    (DEFAULT_USERS_COLLECTION, [("joinedGroups", 1)], {}),
    (DEFAULT_USERS_COLLECTION, [("pendingGroups", 1)], {}),
    (DEFAULT_USERS_COLLECTION, [("schedule.groupId", 1)], {}),
]


def _schedule_with(entry: ScheduleEntry) -> Dict[str, Any]:
    """Pipeline expression: schedule minus any entry for the group, plus `entry`."""
    return {
        "$concatArrays": [
            {
                "$filter": {
                    "input": {"$ifNull": ["$schedule", []]},
                    "cond": {"$ne": ["$$this.groupId", entry.groupId]},
                }
            },
            [{"$literal": entry.model_dump()}],
        ]
    }


def _ids_with(field: str, group_id: str) -> Dict[str, Any]:
    return {"$setUnion": [{"$ifNull": [f"${field}", []]}, [{"$literal": group_id}]]}


def _ids_without(field: str, group_id: str) -> Dict[str, Any]:
    return {
        "$filter": {
            "input": {"$ifNull": [f"${field}", []]},
            "cond": {"$ne": ["$$this", group_id]},
        }
    }


class CommitmentIndex:
    """
    Persistence boundary for users' commitment projections.

    Write methods return True when the user document was found, so callers
    can tell a missing user apart from a no-op.
    """

    def __init__(self, db: AsyncIOMotorDatabase, collection: str = DEFAULT_USERS_COLLECTION):
        """
        Initialize CommitmentIndex.

        Args:
            db: MongoDB database connection
            collection: Users collection name
        """
        self._users_collection = db[collection]

    # ─────────────────────────────────────────────────────────────────
    # Reads
    # ─────────────────────────────────────────────────────────────────

    async def get_user(self, user_id: str, session=None) -> Optional[Dict[str, Any]]:
        return await self._users_collection.find_one({"_id": ObjectId(user_id)}, session=session)

    async def get_users(self, user_ids: Sequence[str]) -> Dict[str, Dict[str, Any]]:
        """Fetch several users, keyed by id string."""
        if not user_ids:
            return {}
        cursor = self._users_collection.find(
            {"_id": {"$in": [ObjectId(user_id) for user_id in user_ids]}},
            {"userName": 1, "firstName": 1, "lastName": 1},
        )
        users = await cursor.to_list(length=len(user_ids))
        return {str(user["_id"]): user for user in users}

    async def get_schedule(
        self,
        user_id: str,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """
        Get a user's schedule entries, optionally bounded by date (inclusive).

        Returns:
            Entries sorted by meetingDate then startTime
        """
        user = await self._users_collection.find_one(
            {"_id": ObjectId(user_id)},
            {"schedule": 1},
        )
        if not user:
            return []

        entries = [
            entry
            for entry in user.get("schedule", [])
            if (start_date is None or entry["meetingDate"] >= start_date)
            and (end_date is None or entry["meetingDate"] <= end_date)
        ]
        return sorted(entries, key=lambda entry: (entry["meetingDate"], entry["startTime"]))

    async def list_user_ids(self, limit: Optional[int] = None) -> List[str]:
        cursor = self._users_collection.find({}, {"_id": 1})
        users = await cursor.to_list(length=limit)
        return [str(user["_id"]) for user in users]

    # ─────────────────────────────────────────────────────────────────
    # Writes
    # ─────────────────────────────────────────────────────────────────

    async def _update(self, user_id: str, update, session=None) -> bool:
        result = await self._users_collection.update_one(
            {"_id": ObjectId(user_id)},
            update,
            session=session,
        )
        return result.matched_count > 0

    async def add_pending(self, user_id: str, group_id: str, session=None) -> bool:
        return await self._update(user_id, {"$addToSet": {"pendingGroups": group_id}}, session=session)

    async def remove_pending(self, user_id: str, group_id: str, session=None) -> bool:
        return await self._update(user_id, {"$pull": {"pendingGroups": group_id}}, session=session)

    async def record_created(self, user_id: str, entry: ScheduleEntry, session=None) -> bool:
        """Register the user as owner of a new group and add its schedule entry."""
        return await self._update(
            user_id,
            [
                {
                    "$set": {
                        "createdGroups": _ids_with("createdGroups", entry.groupId),
                        "schedule": _schedule_with(entry),
                    }
                }
            ],
            session=session,
        )

    async def record_joined(self, user_id: str, entry: ScheduleEntry, session=None) -> bool:
        """Move a group from pendingGroups to joinedGroups and add its schedule entry."""
        return await self._update(
            user_id,
            [
                {
                    "$set": {
                        "pendingGroups": _ids_without("pendingGroups", entry.groupId),
                        "joinedGroups": _ids_with("joinedGroups", entry.groupId),
                        "schedule": _schedule_with(entry),
                    }
                }
            ],
            session=session,
        )

    async def record_departure(self, user_id: str, group_id: str, session=None) -> bool:
        """Drop a joined group and its schedule entry after leave or removal."""
        return await self._update(
            user_id,
            {"$pull": {"joinedGroups": group_id, "schedule": {"groupId": group_id}}},
            session=session,
        )

    async def replace_schedule_entry(self, user_id: str, entry: ScheduleEntry, session=None) -> bool:
        return await self._update(
            user_id,
            [{"$set": {"schedule": _schedule_with(entry)}}],
            session=session,
        )

    async def purge_group(self, group_id: str, session=None) -> int:
        """
        Pull every trace of a group from whichever users still hold one.

        Matches by the stored ids rather than a member list, so entries
        written after the group was read are cleared too.

        Returns:
            Number of user documents modified
        """
        result = await self._users_collection.update_many(
            {
                "$or": [
                    {"createdGroups": group_id},
                    {"joinedGroups": group_id},
                    {"pendingGroups": group_id},
                    {"schedule.groupId": group_id},
                ]
            },
            {
                "$pull": {
                    "createdGroups": group_id,
                    "joinedGroups": group_id,
                    "pendingGroups": group_id,
                    "schedule": {"groupId": group_id},
                }
            },
            session=session,
        )
        return result.modified_count

    async def rebuild(
        self,
        user_id: str,
        member_groups: List[Dict[str, Any]],
        pending_groups: List[Dict[str, Any]],
    ) -> bool:
        """
        Rewrite a user's projection from authoritative group documents.

        Args:
            user_id: User whose projection is rewritten
            member_groups: Groups whose members contain the user
            pending_groups: Groups whose pendingMembers contain the user
        """
        created, joined, schedule = [], [], []
        for group in member_groups:
            entry = ScheduleEntry.from_group(group)
            (created if owner_of(group) == user_id else joined).append(entry.groupId)
            schedule.append(entry.model_dump())

        return await self._update(
            user_id,
            {
                "$set": {
                    "createdGroups": created,
                    "joinedGroups": joined,
                    "pendingGroups": [str(group["_id"]) for group in pending_groups],
                    "schedule": schedule,
                }
            },
        )
