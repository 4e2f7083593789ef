"""
Group membership workflow.

Drives the per (user, group) state machine:

    none -> pending -> member | rejected
    member -> none          (leave, remove)
    pending -> none         (cancel)

Rejected is terminal for the pair. Identity, role and state checks all run
before the first write; the group document is written first and the user's
commitment projection second.
"""

import logging
from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorClient

from common.database import transaction
from common.utils import (
    ConflictException,
    NotFoundException,
    ValidationException,
    success_response,
)
from coflow.schemas.groups import ScheduleEntry
from coflow.services.groups.commitment_index import CommitmentIndex
from coflow.services.groups.conflict_checker import (
    TimeInterval,
    conflict_details,
    conflict_message,
)
from coflow.services.groups.consistency import write_projection
from coflow.services.groups.group_repository import GroupRepository
from coflow.services.groups.role_resolver import owner_of, require_owner
from coflow.services.groups.validation import check_id

logger = logging.getLogger(__name__)


def _is_full(group: Dict[str, Any]) -> bool:
    return len(group.get("members", [])) >= group["capacity"]


class MembershipService:
    """
    Handles join requests, approvals, rejections and departures.
    """

    def __init__(
        self,
        groups: GroupRepository,
        commitments: CommitmentIndex,
        client: Optional[AsyncIOMotorClient] = None,
        recheck_conflicts_on_approval: bool = False,
    ):
        """
        Initialize MembershipService.

        Args:
            groups: Group repository
            commitments: User commitment projection
            client: Motor client; when given, each operation runs in a transaction
            recheck_conflicts_on_approval: Refuse approvals whose slot now
                conflicts with the user's schedule instead of only logging it
        """
        self._groups = groups
        self._commitments = commitments
        self._client = client
        self._recheck_conflicts_on_approval = recheck_conflicts_on_approval

    # ─────────────────────────────────────────────────────────────────
    # Requests
    # ─────────────────────────────────────────────────────────────────

    async def request_to_join(self, user_id: str, group_id: str) -> Dict[str, Any]:
        """
        Ask to join a group.

        Raises:
            NotFoundException: Group or user does not exist
            ConflictException: Group is full or overlaps one of the user's commitments
            ValidationException: User is already a member, already pending, or was rejected
        """
        user_id = check_id(user_id, "User ID")
        group_id = check_id(group_id, "Group ID")

        group = await self._groups.get_required(group_id)
        self._ensure_can_request(group, user_id)

        if not await self._commitments.get_user(user_id):
            raise NotFoundException(message="User not found", code="USER_NOT_FOUND")

        conflict = await self._groups.find_conflicting_group(
            user_id, TimeInterval.from_group(group), exclude_group_id=group_id
        )
        if conflict:
            raise ConflictException(
                message=conflict_message(conflict, prefix="You already have a group scheduled at this time:"),
                code="SCHEDULE_CONFLICT",
                details=conflict_details(conflict),
            )

        async with transaction(self._client) as session:
            if not await self._groups.add_pending(group_id, user_id, session=session):
                # Lost a race; report whichever precondition no longer holds
                self._ensure_can_request(await self._groups.get_required(group_id, session=session), user_id)
                raise ConflictException(message="Group changed, please try again", code="CONCURRENT_UPDATE")

            await write_projection(
                lambda: self._commitments.add_pending(user_id, group_id, session=session),
                operation="request_to_join",
                group_id=group_id,
                user_ids=[user_id],
                transactional=session is not None,
            )

        logger.info(f"User {user_id} requested to join group {group_id}")
        return success_response(
            {"groupId": group_id, "userId": user_id, "status": "pending"},
            message="Join request sent successfully",
        )

    def _ensure_can_request(self, group: Dict[str, Any], user_id: str) -> None:
        if _is_full(group):
            raise ConflictException(message="This group is full", code="GROUP_FULL")
        if user_id in group.get("members", []):
            raise ValidationException(message="You are already a member of this group", code="ALREADY_MEMBER")
        if user_id in group.get("pendingMembers", []):
            raise ValidationException(
                message="You already have a pending request for this group",
                code="ALREADY_PENDING",
            )
        if user_id in group.get("rejectedMembers", []):
            raise ValidationException(
                message="Your request to join this group was rejected",
                code="REQUEST_REJECTED",
            )

    async def cancel_request(self, user_id: str, group_id: str) -> Dict[str, Any]:
        """
        Withdraw a pending join request.

        Calling this without a pending request is not an error: the result
        carries `changed=False`. A stray pendingGroups entry on the user is
        cleared either way.
        """
        user_id = check_id(user_id, "User ID")
        group_id = check_id(group_id, "Group ID")

        await self._groups.get_required(group_id)

        async with transaction(self._client) as session:
            removed = await self._groups.remove_pending(group_id, user_id, session=session)
            if removed:
                await write_projection(
                    lambda: self._commitments.remove_pending(user_id, group_id, session=session),
                    operation="cancel_request",
                    group_id=group_id,
                    user_ids=[user_id],
                    transactional=session is not None,
                )
            else:
                await self._commitments.remove_pending(user_id, group_id, session=session)

        if removed:
            logger.info(f"User {user_id} cancelled join request for group {group_id}")
        else:
            logger.debug(f"No pending request from user {user_id} for group {group_id}")

        return success_response(
            {"groupId": group_id, "userId": user_id, "status": "none", "changed": removed},
            message="Join request cancelled" if removed else "No pending request to cancel",
        )

    # ─────────────────────────────────────────────────────────────────
    # Admin decisions
    # ─────────────────────────────────────────────────────────────────

    async def approve_user(self, admin_id: str, user_id: str, group_id: str) -> Dict[str, Any]:
        """
        Admit a pending user.

        Capacity is re-verified inside the atomic update, so concurrent
        approvals cannot push the group past capacity.

        Raises:
            ForbiddenException: Caller is not the group admin
            ValidationException: User has no pending request
            ConflictException: Group is full, or the slot now conflicts and
                conflict re-checking is enabled
        """
        admin_id = check_id(admin_id, "Admin ID")
        user_id = check_id(user_id, "User ID")
        group_id = check_id(group_id, "Group ID")

        group = await self._groups.get_required(group_id)
        require_owner(group, admin_id, "approve members")
        self._ensure_can_approve(group, user_id)
        await self._check_conflict_at_approval(user_id, group)

        async with transaction(self._client) as session:
            updated = await self._groups.approve_pending(group_id, user_id, session=session)
            if updated is None:
                self._ensure_can_approve(await self._groups.get_required(group_id, session=session), user_id)
                raise ConflictException(message="Group changed, please try again", code="CONCURRENT_UPDATE")

            await write_projection(
                lambda: self._commitments.record_joined(user_id, ScheduleEntry.from_group(updated), session=session),
                operation="approve_user",
                group_id=group_id,
                user_ids=[user_id],
                transactional=session is not None,
            )

        logger.info(f"User {user_id} approved into group {group_id} ({len(updated['members'])}/{updated['capacity']})")
        return success_response(
            {"groupId": group_id, "userId": user_id, "status": "member", "isFull": updated["isFull"]},
            message="User approved successfully",
        )

    def _ensure_can_approve(self, group: Dict[str, Any], user_id: str) -> None:
        if user_id not in group.get("pendingMembers", []):
            raise ValidationException(message="User is not in pending requests", code="NOT_PENDING")
        if _is_full(group):
            raise ConflictException(message="This group is now full", code="GROUP_FULL")

    async def _check_conflict_at_approval(self, user_id: str, group: Dict[str, Any]) -> None:
        """A conflict can appear between request and approval; log or refuse it."""
        group_id = str(group["_id"])
        conflict = await self._groups.find_conflicting_group(
            user_id, TimeInterval.from_group(group), exclude_group_id=group_id
        )
        if not conflict:
            return

        if self._recheck_conflicts_on_approval:
            raise ConflictException(
                message=conflict_message(conflict, prefix="User already has a group scheduled at this time:"),
                code="SCHEDULE_CONFLICT",
                details=conflict_details(conflict),
            )
        logger.warning(
            f"Approving user {user_id} into group {group_id} despite overlap with group {conflict['_id']}"
        )

    async def reject_user(self, admin_id: str, user_id: str, group_id: str) -> Dict[str, Any]:
        """Deny a pending request. The user cannot request this group again."""
        admin_id = check_id(admin_id, "Admin ID")
        user_id = check_id(user_id, "User ID")
        group_id = check_id(group_id, "Group ID")

        group = await self._groups.get_required(group_id)
        require_owner(group, admin_id, "reject members")
        if user_id not in group.get("pendingMembers", []):
            raise ValidationException(message="User is not in pending requests", code="NOT_PENDING")

        async with transaction(self._client) as session:
            if not await self._groups.reject_pending(group_id, user_id, session=session):
                raise ValidationException(message="User is not in pending requests", code="NOT_PENDING")

            await write_projection(
                lambda: self._commitments.remove_pending(user_id, group_id, session=session),
                operation="reject_user",
                group_id=group_id,
                user_ids=[user_id],
                transactional=session is not None,
            )

        logger.info(f"User {user_id} rejected from group {group_id}")
        return success_response(
            {"groupId": group_id, "userId": user_id, "status": "rejected"},
            message="User rejected successfully",
        )

    async def remove_user(self, admin_id: str, target_id: str, group_id: str) -> Dict[str, Any]:
        """Remove a non-owner member."""
        admin_id = check_id(admin_id, "Admin ID")
        target_id = check_id(target_id, "User ID")
        group_id = check_id(group_id, "Group ID")

        group = await self._groups.get_required(group_id)
        require_owner(group, admin_id, "remove members")
        if target_id == owner_of(group):
            raise ValidationException(message="Cannot remove the group admin", code="CANNOT_REMOVE_ADMIN")
        if target_id not in group["members"]:
            raise ValidationException(message="User is not a member of this group", code="NOT_MEMBER")

        await self._drop_member(group_id, target_id, operation="remove_user")

        logger.info(f"User {target_id} removed from group {group_id} by {admin_id}")
        return success_response(
            {"groupId": group_id, "userId": target_id, "status": "none"},
            message="User removed successfully",
        )

    async def leave_group(self, user_id: str, group_id: str) -> Dict[str, Any]:
        """Leave a group. The admin must delete the group instead."""
        user_id = check_id(user_id, "User ID")
        group_id = check_id(group_id, "Group ID")

        group = await self._groups.get_required(group_id)
        if user_id == owner_of(group):
            raise ValidationException(
                message="Group admin cannot leave the group, delete it instead",
                code="ADMIN_CANNOT_LEAVE",
            )
        if user_id not in group["members"]:
            raise ValidationException(message="You are not a member of this group", code="NOT_MEMBER")

        await self._drop_member(group_id, user_id, operation="leave_group")

        logger.info(f"User {user_id} left group {group_id}")
        return success_response(
            {"groupId": group_id, "userId": user_id, "status": "none"},
            message="Left group successfully",
        )

    async def _drop_member(self, group_id: str, user_id: str, operation: str) -> None:
        async with transaction(self._client) as session:
            if not await self._groups.remove_member(group_id, user_id, session=session):
                raise ValidationException(message="User is not a member of this group", code="NOT_MEMBER")

            await write_projection(
                lambda: self._commitments.record_departure(user_id, group_id, session=session),
                operation=operation,
                group_id=group_id,
                user_ids=[user_id],
                transactional=session is not None,
            )

    # ─────────────────────────────────────────────────────────────────
    # Rosters
    # ─────────────────────────────────────────────────────────────────

    async def get_pending_users(self, group_id: str, admin_id: str) -> List[Dict[str, Any]]:
        """Pending requesters as [{userId, userName}], admin only."""
        return await self._roster(group_id, admin_id, "pendingMembers", "view pending requests")

    async def get_joined_users(self, group_id: str, admin_id: str) -> List[Dict[str, Any]]:
        """Members as [{userId, userName}], admin first, admin only."""
        return await self._roster(group_id, admin_id, "members", "view members")

    async def _roster(self, group_id: str, admin_id: str, field: str, action: str) -> List[Dict[str, Any]]:
        group_id = check_id(group_id, "Group ID")
        admin_id = check_id(admin_id, "Admin ID")

        group = await self._groups.get_required(group_id)
        require_owner(group, admin_id, action)

        user_ids = group.get(field, [])
        users = await self._commitments.get_users(user_ids)

        roster = []
        for user_id in user_ids:
            user = users.get(user_id)
            if not user:
                logger.warning(f"User {user_id} listed in {field} of group {group_id} not found")
                continue
            roster.append({"userId": user_id, "userName": user.get("userName")})
        return roster
