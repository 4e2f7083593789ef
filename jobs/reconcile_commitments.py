"""
Commitment reconciliation background job.

Rebuilds every user's commitment projection (createdGroups, joinedGroups,
pendingGroups, schedule) from the group documents. Repairs projections left
stale by a partially applied write when transactions are disabled.
This job should be run daily via CRON.

Usage:
    Run via CRON:
        30 3 * * * cd /path/to/project && python -m jobs.reconcile_commitments

    Or run directly:
        python -m jobs.reconcile_commitments
"""

import asyncio
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from common.database import MongoDB
from coflow.config import settings
from coflow.pipelines.groups import reconcile_user_commitments
from coflow.services.groups.commitment_index import CommitmentIndex
from coflow.services.groups.group_repository import GroupRepository

logging.basicConfig(
    level=settings.get_log_level(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


class ReconcileCommitmentsJob:
    """
    Rewrites user commitment projections from authoritative group documents.

    Actions performed:
    1. Lists user ids (bounded by `limit` when given)
    2. For each user:
       - Loads the groups whose members or pendingMembers contain the user
       - Compares them with the stored projection
       - Rewrites the projection when they differ
    """

    def __init__(
        self,
        groups: GroupRepository,
        commitments: CommitmentIndex,
        limit: Optional[int] = None,
    ):
        """
        Initialize the reconciliation job.

        Args:
            groups: Group repository
            commitments: User commitment projection
            limit: Maximum number of users to process
        """
        self._groups = groups
        self._commitments = commitments
        self._limit = limit

    async def run(self) -> Dict[str, Any]:
        """
        Execute the reconciliation job.

        Returns:
            Dict with job results including counts and any errors
        """
        logger.info("Starting commitment reconciliation job")
        start_time = datetime.now(timezone.utc)

        results = {
            "startTime": start_time.isoformat(),
            "usersChecked": 0,
            "usersRepaired": 0,
            "errors": [],
        }

        try:
            user_ids = await self._commitments.list_user_ids(limit=self._limit)
            logger.info(f"Found {len(user_ids)} users to check")

            for user_id in user_ids:
                try:
                    outcome = await reconcile_user_commitments(self._groups, self._commitments, user_id)
                    results["usersChecked"] += 1
                    if outcome["changed"]:
                        results["usersRepaired"] += 1

                except Exception as e:
                    error_msg = f"Failed to reconcile user {user_id}: {str(e)}"
                    logger.error(error_msg)
                    results["errors"].append(error_msg)

        except Exception as e:
            error_msg = f"Job failed: {str(e)}"
            logger.error(error_msg)
            results["errors"].append(error_msg)

        results["endTime"] = datetime.now(timezone.utc).isoformat()
        results["durationSeconds"] = (
            datetime.now(timezone.utc) - start_time
        ).total_seconds()

        logger.info(
            f"Commitment reconciliation job completed. "
            f"Checked: {results['usersChecked']} users, "
            f"Repaired: {results['usersRepaired']}, "
            f"Errors: {len(results['errors'])}"
        )

        return results


async def main():
    """Main entry point for the commitment reconciliation job."""
    database = MongoDB()
    await database.connect(uri=settings.MONGODB_URI, database_name=settings.MONGODB_DATABASE)

    job = ReconcileCommitmentsJob(
        groups=GroupRepository(
            database.db,
            collection=settings.GROUPS_COLLECTION,
            query_limit=settings.GROUP_QUERY_LIMIT,
        ),
        commitments=CommitmentIndex(database.db, collection=settings.USERS_COLLECTION),
    )

    try:
        results = await job.run()

        print("\n=== Commitment Reconciliation Job Results ===")
        print(f"Start Time: {results['startTime']}")
        print(f"End Time: {results['endTime']}")
        print(f"Duration: {results['durationSeconds']:.2f} seconds")
        print(f"Users Checked: {results['usersChecked']}")
        print(f"Users Repaired: {results['usersRepaired']}")

        if results["errors"]:
            print(f"\nErrors ({len(results['errors'])}):")
            for error in results["errors"]:
                print(f"  - {error}")

        exit_code = 1 if results["errors"] else 0
        sys.exit(exit_code)

    finally:
        await database.disconnect()


if __name__ == "__main__":
    asyncio.run(main())
