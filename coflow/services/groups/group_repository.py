"""
Group document persistence.

Wraps the groups collection. Membership transitions are single conditional
updates: the filter re-checks the precondition (pending, not full, not
owner) and the update moves the id between arrays and recomputes isFull in
the same atomic write, so two concurrent approvals cannot over-fill a group
and the member/pending/rejected sets stay disjoint.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

from common.utils.exceptions import NotFoundException
from coflow.services.groups.conflict_checker import TimeInterval, find_conflict

logger = logging.getLogger(__name__)

DEFAULT_GROUPS_COLLECTION = "groups"

GROUP_INDEXES: List[Tuple[str, list, dict]] = [
    (DEFAULT_GROUPS_COLLECTION, [("members", 1), ("meetingDate", 1)], {}),
    (DEFAULT_GROUPS_COLLECTION, [("pendingMembers", 1)], {}),
    (DEFAULT_GROUPS_COLLECTION, [("isFull", 1), ("meetingDate", 1)], {}),
]

# Second pipeline stage shared by every transition that changes membership
_RECOMPUTE_IS_FULL = {"$set": {"isFull": {"$gte": [{"$size": "$members"}, "$capacity"]}}}


def _without(field: str, user_id: str) -> Dict[str, Any]:
    """Pipeline expression: `field` with every occurrence of user_id removed, order kept."""
    return {
        "$filter": {
            "input": {"$ifNull": [f"${field}", []]},
            "cond": {"$ne": ["$$this", user_id]},
        }
    }


def _has_room() -> Dict[str, Any]:
    return {"$expr": {"$lt": [{"$size": "$members"}, "$capacity"]}}


class GroupRepository:
    """
    Persistence boundary for group records.
    """

    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        collection: str = DEFAULT_GROUPS_COLLECTION,
        query_limit: int = 500,
    ):
        """
        Initialize GroupRepository.

        Args:
            db: MongoDB database connection
            collection: Groups collection name
            query_limit: Maximum documents returned by a listing query
        """
        self._groups_collection = db[collection]
        self._query_limit = query_limit

    # ─────────────────────────────────────────────────────────────────
    # Reads
    # ─────────────────────────────────────────────────────────────────

    async def get(self, group_id: str, session=None) -> Optional[Dict[str, Any]]:
        return await self._groups_collection.find_one({"_id": ObjectId(group_id)}, session=session)

    async def get_required(self, group_id: str, session=None) -> Dict[str, Any]:
        """Get group by ID or raise NotFoundException."""
        group = await self.get(group_id, session=session)
        if not group:
            raise NotFoundException(message="Group not found", code="GROUP_NOT_FOUND")
        return group

    async def find_by_ids(self, group_ids: Sequence[str], session=None) -> List[Dict[str, Any]]:
        if not group_ids:
            return []
        cursor = self._groups_collection.find(
            {"_id": {"$in": [ObjectId(group_id) for group_id in group_ids]}},
            session=session,
        )
        return await cursor.to_list(length=len(group_ids))

    async def find_by_member(
        self,
        user_id: str,
        meeting_date: Optional[str] = None,
        session=None,
    ) -> List[Dict[str, Any]]:
        """Groups the user belongs to (owned or joined), optionally on one date."""
        query: Dict[str, Any] = {"members": user_id}
        if meeting_date:
            query["meetingDate"] = meeting_date
        cursor = self._groups_collection.find(query, session=session)
        return await cursor.to_list(length=self._query_limit)

    async def find_owned_by(self, user_id: str) -> List[Dict[str, Any]]:
        cursor = self._groups_collection.find({"members.0": user_id}).sort(
            [("meetingDate", 1), ("startTime", 1)]
        )
        return await cursor.to_list(length=self._query_limit)

    async def find_joined_by(self, user_id: str) -> List[Dict[str, Any]]:
        cursor = self._groups_collection.find(
            {"members": user_id, "members.0": {"$ne": user_id}}
        ).sort([("meetingDate", 1), ("startTime", 1)])
        return await cursor.to_list(length=self._query_limit)

    async def find_pending_for(self, user_id: str) -> List[Dict[str, Any]]:
        cursor = self._groups_collection.find({"pendingMembers": user_id}).sort(
            [("meetingDate", 1), ("startTime", 1)]
        )
        return await cursor.to_list(length=self._query_limit)

    async def find(
        self,
        query: Dict[str, Any],
        sort: List[Tuple[str, int]],
    ) -> List[Dict[str, Any]]:
        cursor = self._groups_collection.find(query).sort(sort)
        return await cursor.to_list(length=self._query_limit)

    async def find_conflicting_group(
        self,
        user_id: str,
        candidate: TimeInterval,
        exclude_group_id: Optional[str] = None,
        session=None,
    ) -> Optional[Dict[str, Any]]:
        """
        First group the user is committed to whose slot overlaps `candidate`.

        Only same-date groups are fetched; the overlap test itself is the
        pure half-open interval check.
        """
        same_day = await self.find_by_member(user_id, meeting_date=candidate.meeting_date, session=session)
        return find_conflict(candidate, same_day, exclude_group_id=exclude_group_id)

    # ─────────────────────────────────────────────────────────────────
    # Writes
    # ─────────────────────────────────────────────────────────────────

    async def insert(self, group_doc: Dict[str, Any], session=None) -> Dict[str, Any]:
        result = await self._groups_collection.insert_one(group_doc, session=session)
        group_doc["_id"] = result.inserted_id
        logger.debug(f"Inserted group {result.inserted_id}")
        return group_doc

    async def delete_owned(self, group_id: str, owner_id: str, session=None) -> Optional[Dict[str, Any]]:
        """
        Delete a group if owner_id is still its admin.

        Returns:
            The deleted document, or None if nothing matched
        """
        return await self._groups_collection.find_one_and_delete(
            {"_id": ObjectId(group_id), "members.0": owner_id},
            session=session,
        )

    async def add_pending(self, group_id: str, user_id: str, session=None) -> bool:
        """Queue a join request if the group has room and the user holds no other state in it."""
        result = await self._groups_collection.update_one(
            {
                "_id": ObjectId(group_id),
                "members": {"$ne": user_id},
                "pendingMembers": {"$ne": user_id},
                "rejectedMembers": {"$ne": user_id},
                **_has_room(),
            },
            {
                "$push": {"pendingMembers": user_id},
                "$set": {"updatedAt": datetime.now(timezone.utc)},
            },
            session=session,
        )
        return result.modified_count > 0

    async def remove_pending(self, group_id: str, user_id: str, session=None) -> bool:
        result = await self._groups_collection.update_one(
            {"_id": ObjectId(group_id), "pendingMembers": user_id},
            {
                "$pull": {"pendingMembers": user_id},
                "$set": {"updatedAt": datetime.now(timezone.utc)},
            },
            session=session,
        )
        return result.modified_count > 0

    async def approve_pending(self, group_id: str, user_id: str, session=None) -> Optional[Dict[str, Any]]:
        """
        Move a pending user into members if capacity still allows.

        Returns:
            The updated group, or None when the precondition no longer holds
        """
        return await self._groups_collection.find_one_and_update(
            {
                "_id": ObjectId(group_id),
                "pendingMembers": user_id,
                "members": {"$ne": user_id},
                **_has_room(),
            },
            [
                {
                    "$set": {
                        "pendingMembers": _without("pendingMembers", user_id),
                        "members": {"$concatArrays": ["$members", [{"$literal": user_id}]]},
                        "updatedAt": datetime.now(timezone.utc),
                    }
                },
                _RECOMPUTE_IS_FULL,
            ],
            return_document=ReturnDocument.AFTER,
            session=session,
        )

    async def reject_pending(self, group_id: str, user_id: str, session=None) -> bool:
        result = await self._groups_collection.update_one(
            {"_id": ObjectId(group_id), "pendingMembers": user_id},
            [
                {
                    "$set": {
                        "pendingMembers": _without("pendingMembers", user_id),
                        "rejectedMembers": {
                            "$concatArrays": [
                                _without("rejectedMembers", user_id),
                                [{"$literal": user_id}],
                            ]
                        },
                        "updatedAt": datetime.now(timezone.utc),
                    }
                },
            ],
            session=session,
        )
        return result.modified_count > 0

    async def remove_member(self, group_id: str, user_id: str, session=None) -> bool:
        """Drop a non-owner member; the filter refuses to touch members[0]."""
        result = await self._groups_collection.update_one(
            {
                "_id": ObjectId(group_id),
                "members": user_id,
                "members.0": {"$ne": user_id},
            },
            [
                {
                    "$set": {
                        "members": _without("members", user_id),
                        "updatedAt": datetime.now(timezone.utc),
                    }
                },
                _RECOMPUTE_IS_FULL,
            ],
            session=session,
        )
        return result.modified_count > 0

    async def apply_update(
        self,
        group_id: str,
        changes: Dict[str, Any],
        expected_members: List[str],
        session=None,
    ) -> Optional[Dict[str, Any]]:
        """
        Write validated field changes if membership is unchanged since it was checked.

        Returns:
            The updated group, or None if the group is gone or its members moved
        """
        values = {field: {"$literal": value} for field, value in changes.items()}
        values["updatedAt"] = datetime.now(timezone.utc)

        return await self._groups_collection.find_one_and_update(
            {"_id": ObjectId(group_id), "members": list(expected_members)},
            [{"$set": values}, _RECOMPUTE_IS_FULL],
            return_document=ReturnDocument.AFTER,
            session=session,
        )
