"""
Viewer role resolution for study groups.

The owner is whoever sits at index 0 of the members list. Pure functions,
no I/O.
"""

from enum import Enum
from typing import Any, Dict, Iterable, List

from common.utils.exceptions import ForbiddenException


class GroupRole(str, Enum):
    OWNER = "owner"
    MEMBER = "member"
    PENDING = "pending"
    NONE = "none"


def owner_of(group: Dict[str, Any]) -> str:
    return group["members"][0]


def resolve_role(group: Dict[str, Any], user_id: str) -> GroupRole:
    """Return the role `user_id` holds in `group`."""
    members = group.get("members", [])
    if members and members[0] == user_id:
        return GroupRole.OWNER
    if user_id in members:
        return GroupRole.MEMBER
    if user_id in group.get("pendingMembers", []):
        return GroupRole.PENDING
    return GroupRole.NONE


def annotate_roles(groups: Iterable[Dict[str, Any]], user_id: str) -> List[Dict[str, Any]]:
    """Copy each group with a `userRole` key for the viewer."""
    return [{**group, "userRole": resolve_role(group, user_id).value} for group in groups]


def require_owner(group: Dict[str, Any], user_id: str, action: str) -> None:
    """
    Ensure `user_id` owns the group.

    Raises:
        ForbiddenException: If the caller is not members[0]
    """
    if resolve_role(group, user_id) is not GroupRole.OWNER:
        raise ForbiddenException(
            message=f"Only the group admin can {action}",
            code="NOT_GROUP_ADMIN",
        )
