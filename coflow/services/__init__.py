"""
CoFlow Services.

All service classes organized by feature.
"""

# Group services
from coflow.services.groups import (
    CommitmentIndex,
    GroupRepository,
    GroupService,
    MembershipService,
)

__all__ = [
    "CommitmentIndex",
    "GroupRepository",
    "GroupService",
    "MembershipService",
]
