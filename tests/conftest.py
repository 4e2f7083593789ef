"""Shared test fixtures for CoFlow tests."""

import copy
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

import pytest
from unittest.mock import AsyncMock, MagicMock
from bson import ObjectId

from coflow.schemas.groups import ScheduleEntry
from coflow.services.groups.commitment_index import CommitmentIndex
from coflow.services.groups.group_repository import GroupRepository
from coflow.services.groups.group_service import GroupService
from coflow.services.groups.membership_service import MembershipService
from coflow.services.groups.role_resolver import owner_of

TODAY = date(2025, 5, 1)


# ─────────────────────────────────────────────────────────────────
# In-memory doubles
# ─────────────────────────────────────────────────────────────────


class InMemoryGroupRepository(GroupRepository):
    """
    GroupRepository double backed by a dict.

    Conditional transitions apply the same preconditions as the MongoDB
    filters, so workflow tests exercise the same guards. Reads return deep
    copies, like documents fetched from the driver.
    """

    def __init__(self):
        self.groups: Dict[str, Dict[str, Any]] = {}

    def _stored(self, group_id: str) -> Optional[Dict[str, Any]]:
        return self.groups.get(str(group_id))

    @staticmethod
    def _recompute(group: Dict[str, Any]) -> None:
        group["isFull"] = len(group["members"]) >= group["capacity"]
        group["updatedAt"] = datetime.now(timezone.utc)

    def _matching(self, predicate) -> List[Dict[str, Any]]:
        found = [copy.deepcopy(group) for group in self.groups.values() if predicate(group)]
        return sorted(found, key=lambda group: (group["meetingDate"], group["startTime"]))

    async def get(self, group_id, session=None):
        group = self._stored(group_id)
        return copy.deepcopy(group) if group else None

    async def find_by_ids(self, group_ids, session=None):
        return [copy.deepcopy(self.groups[str(gid)]) for gid in group_ids if str(gid) in self.groups]

    async def find_by_member(self, user_id, meeting_date=None, session=None):
        return self._matching(
            lambda g: user_id in g["members"] and (meeting_date is None or g["meetingDate"] == meeting_date)
        )

    async def find_owned_by(self, user_id):
        return self._matching(lambda g: g["members"][0] == user_id)

    async def find_joined_by(self, user_id):
        return self._matching(lambda g: user_id in g["members"] and g["members"][0] != user_id)

    async def find_pending_for(self, user_id):
        return self._matching(lambda g: user_id in g["pendingMembers"])

    async def find(self, query, sort):
        return self._matching(lambda g: True)

    async def insert(self, group_doc, session=None):
        group_doc["_id"] = ObjectId()
        self.groups[str(group_doc["_id"])] = copy.deepcopy(group_doc)
        return group_doc

    async def delete_owned(self, group_id, owner_id, session=None):
        group = self._stored(group_id)
        if not group or group["members"][0] != owner_id:
            return None
        return self.groups.pop(str(group_id))

    async def add_pending(self, group_id, user_id, session=None):
        group = self._stored(group_id)
        if (
            not group
            or len(group["members"]) >= group["capacity"]
            or user_id in group["members"]
            or user_id in group["pendingMembers"]
            or user_id in group["rejectedMembers"]
        ):
            return False
        group["pendingMembers"].append(user_id)
        return True

    async def remove_pending(self, group_id, user_id, session=None):
        group = self._stored(group_id)
        if not group or user_id not in group["pendingMembers"]:
            return False
        group["pendingMembers"].remove(user_id)
        return True

    async def approve_pending(self, group_id, user_id, session=None):
        group = self._stored(group_id)
        if (
            not group
            or user_id not in group["pendingMembers"]
            or user_id in group["members"]
            or len(group["members"]) >= group["capacity"]
        ):
            return None
        group["pendingMembers"].remove(user_id)
        group["members"].append(user_id)
        self._recompute(group)
        return copy.deepcopy(group)

    async def reject_pending(self, group_id, user_id, session=None):
        group = self._stored(group_id)
        if not group or user_id not in group["pendingMembers"]:
            return False
        group["pendingMembers"].remove(user_id)
        if user_id not in group["rejectedMembers"]:
            group["rejectedMembers"].append(user_id)
        return True

    async def remove_member(self, group_id, user_id, session=None):
        group = self._stored(group_id)
        if not group or user_id not in group["members"] or group["members"][0] == user_id:
            return False
        group["members"].remove(user_id)
        self._recompute(group)
        return True

    async def apply_update(self, group_id, changes, expected_members, session=None):
        group = self._stored(group_id)
        if not group or group["members"] != list(expected_members):
            return None
        group.update(copy.deepcopy(changes))
        self._recompute(group)
        return copy.deepcopy(group)


class InMemoryCommitmentIndex(CommitmentIndex):
    """CommitmentIndex double backed by a dict of user documents."""

    def __init__(self):
        self.users: Dict[str, Dict[str, Any]] = {}

    def add_user(self, user_name: str) -> str:
        user_id = ObjectId()
        self.users[str(user_id)] = {
            "_id": user_id,
            "userName": user_name,
            "createdGroups": [],
            "joinedGroups": [],
            "pendingGroups": [],
            "schedule": [],
        }
        return str(user_id)

    @staticmethod
    def _put_entry(user: Dict[str, Any], entry: ScheduleEntry) -> None:
        user["schedule"] = [e for e in user["schedule"] if e["groupId"] != entry.groupId]
        user["schedule"].append(entry.model_dump())

    async def get_user(self, user_id, session=None):
        user = self.users.get(str(user_id))
        return copy.deepcopy(user) if user else None

    async def get_users(self, user_ids):
        return {uid: copy.deepcopy(self.users[uid]) for uid in user_ids if uid in self.users}

    async def get_schedule(self, user_id, start_date=None, end_date=None):
        user = self.users.get(str(user_id))
        if not user:
            return []
        entries = [
            copy.deepcopy(e)
            for e in user["schedule"]
            if (start_date is None or e["meetingDate"] >= start_date)
            and (end_date is None or e["meetingDate"] <= end_date)
        ]
        return sorted(entries, key=lambda e: (e["meetingDate"], e["startTime"]))

    async def list_user_ids(self, limit=None):
        return list(self.users)[:limit]

    async def add_pending(self, user_id, group_id, session=None):
        user = self.users.get(user_id)
        if not user:
            return False
        if group_id not in user["pendingGroups"]:
            user["pendingGroups"].append(group_id)
        return True

    async def remove_pending(self, user_id, group_id, session=None):
        user = self.users.get(user_id)
        if not user:
            return False
        user["pendingGroups"] = [g for g in user["pendingGroups"] if g != group_id]
        return True

    async def record_created(self, user_id, entry, session=None):
        user = self.users.get(user_id)
        if not user:
            return False
        if entry.groupId not in user["createdGroups"]:
            user["createdGroups"].append(entry.groupId)
        self._put_entry(user, entry)
        return True

    async def record_joined(self, user_id, entry, session=None):
        user = self.users.get(user_id)
        if not user:
            return False
        user["pendingGroups"] = [g for g in user["pendingGroups"] if g != entry.groupId]
        if entry.groupId not in user["joinedGroups"]:
            user["joinedGroups"].append(entry.groupId)
        self._put_entry(user, entry)
        return True

    async def record_departure(self, user_id, group_id, session=None):
        user = self.users.get(user_id)
        if not user:
            return False
        user["joinedGroups"] = [g for g in user["joinedGroups"] if g != group_id]
        user["schedule"] = [e for e in user["schedule"] if e["groupId"] != group_id]
        return True

    async def replace_schedule_entry(self, user_id, entry, session=None):
        user = self.users.get(user_id)
        if not user:
            return False
        self._put_entry(user, entry)
        return True

    async def purge_group(self, group_id, session=None):
        modified = 0
        for user in self.users.values():
            before = copy.deepcopy(user)
            for field in ("createdGroups", "joinedGroups", "pendingGroups"):
                user[field] = [g for g in user[field] if g != group_id]
            user["schedule"] = [e for e in user["schedule"] if e["groupId"] != group_id]
            modified += user != before
        return modified

    async def rebuild(self, user_id, member_groups, pending_groups):
        user = self.users.get(user_id)
        if not user:
            return False
        user["createdGroups"] = [str(g["_id"]) for g in member_groups if owner_of(g) == user_id]
        user["joinedGroups"] = [str(g["_id"]) for g in member_groups if owner_of(g) != user_id]
        user["pendingGroups"] = [str(g["_id"]) for g in pending_groups]
        user["schedule"] = [ScheduleEntry.from_group(g).model_dump() for g in member_groups]
        return True


def assert_group_invariants(group: Dict[str, Any]) -> None:
    members = set(group["members"])
    pending = set(group["pendingMembers"])
    rejected = set(group["rejectedMembers"])
    assert len(members) == len(group["members"])
    assert not members & pending
    assert not members & rejected
    assert not pending & rejected
    assert group["isFull"] == (len(group["members"]) >= group["capacity"])
    assert group["startTime"] < group["endTime"]


# ─────────────────────────────────────────────────────────────────
# Fixtures
# ─────────────────────────────────────────────────────────────────


@pytest.fixture
def sample_user_id():
    return str(ObjectId())


@pytest.fixture
def mock_collection():
    collection = AsyncMock()
    # Motor's find() returns a cursor synchronously (not a coroutine),
    # so use MagicMock for it. Async methods like find_one, update_one
    # etc. stay as AsyncMock.
    collection.find = MagicMock()
    return collection


@pytest.fixture
def mock_db(mock_collection):
    db = MagicMock()
    db.__getitem__ = MagicMock(return_value=mock_collection)
    return db


@pytest.fixture
def groups_repo():
    return InMemoryGroupRepository()


@pytest.fixture
def commitments():
    return InMemoryCommitmentIndex()


@pytest.fixture
def users(commitments):
    return {name: commitments.add_user(name) for name in ("alice", "bob", "carol", "dave")}


@pytest.fixture
def check_invariants(groups_repo):
    """Assert the membership invariants on every stored group."""

    def _check():
        for group in groups_repo.groups.values():
            assert_group_invariants(group)

    return _check


@pytest.fixture
def group_service(groups_repo, commitments):
    return GroupService(groups_repo, commitments, today=lambda: TODAY)


@pytest.fixture
def membership_service(groups_repo, commitments):
    return MembershipService(groups_repo, commitments)


@pytest.fixture
def make_fields():
    def _make(**overrides):
        fields = {
            "groupName": "Algorithms Review",
            "description": "Going over dynamic programming problems",
            "capacity": 4,
            "location": "Library",
            "course": "CS-546",
            "meetingDate": "2025-06-01",
            "startTime": "10:00",
            "endTime": "11:00",
            "groupType": "study-group",
            "tags": ["exam", "algorithms"],
        }
        fields.update(overrides)
        return fields

    return _make

