"""
Guards for the second half of a group + user write sequence.

Group documents are written first and users' commitment projections
second. Inside a
transaction a failing second step simply aborts the whole sequence. Without
one the first write has already committed, so the failure is logged as a
consistency repair candidate and surfaced as PartialWriteException rather
than a generic error.
"""

import logging
from typing import Any, Awaitable, Callable, List, Sequence

from common.utils.exceptions import PartialWriteException

logger = logging.getLogger(__name__)


async def write_projection(
    step: Callable[[], Awaitable[Any]],
    *,
    operation: str,
    group_id: str,
    user_ids: Sequence[str],
    transactional: bool,
) -> Any:
    """
    Run one projection write that follows a committed group write.

    Args:
        step: Zero-argument coroutine function performing the write
        operation: Name of the calling operation, for logs and error details
        group_id: Group already written
        user_ids: Users whose projection the step touches
        transactional: Whether the step runs inside a transaction

    Raises:
        PartialWriteException: If the step fails outside a transaction
    """
    try:
        return await step()
    except Exception as e:
        if transactional:
            raise
        logger.error(
            f"Consistency repair candidate: {operation} on group {group_id} failed after its first write, "
            f"users {list(user_ids)} may be stale: {e}"
        )
        raise PartialWriteException(
            message=f"{operation} was only partially applied",
            details={"operation": operation, "groupId": group_id, "userIds": list(user_ids)},
        ) from e


async def write_member_projections(
    user_ids: Sequence[str],
    step: Callable[[str], Awaitable[Any]],
    *,
    operation: str,
    group_id: str,
    transactional: bool,
) -> None:
    """
    Apply a projection write to each user, best-effort.

    Every user is attempted even after a failure. A step returning False
    (user document missing) is logged and tolerated.

    Raises:
        PartialWriteException: Listing every user whose write failed
    """
    failed: List[str] = []

    for user_id in user_ids:
        try:
            found = await step(user_id)
        except Exception as e:
            if transactional:
                raise
            logger.error(f"{operation}: projection write for user {user_id} on group {group_id} failed: {e}")
            failed.append(user_id)
            continue

        if found is False:
            logger.warning(f"{operation}: user {user_id} of group {group_id} not found, skipping")

    if failed:
        logger.error(
            f"Consistency repair candidate: {operation} updated group {group_id} "
            f"but {len(failed)} user projection(s) are stale: {failed}"
        )
        raise PartialWriteException(
            message=f"{operation} was only partially applied",
            details={"operation": operation, "groupId": group_id, "userIds": failed},
        )
