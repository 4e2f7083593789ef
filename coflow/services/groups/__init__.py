"""Study group services."""

from coflow.services.groups.group_repository import GroupRepository, GROUP_INDEXES
from coflow.services.groups.commitment_index import CommitmentIndex
from coflow.services.groups.membership_service import MembershipService
from coflow.services.groups.group_service import GroupService
from coflow.services.groups.role_resolver import GroupRole, resolve_role, annotate_roles
from coflow.services.groups.conflict_checker import TimeInterval, conflicts, find_conflict

__all__ = [
    "GroupRepository",
    "GROUP_INDEXES",
    "CommitmentIndex",
    "MembershipService",
    "GroupService",
    "GroupRole",
    "resolve_role",
    "annotate_roles",
    "TimeInterval",
    "conflicts",
    "find_conflict",
]
