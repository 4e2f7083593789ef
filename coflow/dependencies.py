"""
Dependency wiring for CoFlow.

Constructs the repositories and services once, with explicit collaborators,
and hands them out to route handlers and jobs.
"""

import logging
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from common.database import MongoDB
from coflow.config import Settings, settings
from coflow.services.groups.commitment_index import USER_INDEXES, CommitmentIndex
from coflow.services.groups.group_repository import GROUP_INDEXES, GroupRepository
from coflow.services.groups.group_service import GroupService
from coflow.services.groups.membership_service import MembershipService

logger = logging.getLogger(__name__)


_group_repository: Optional[GroupRepository] = None
_commitment_index: Optional[CommitmentIndex] = None
_group_service: Optional[GroupService] = None
_membership_service: Optional[MembershipService] = None


def init_group_services(
    db: AsyncIOMotorDatabase,
    client: Optional[AsyncIOMotorClient] = None,
    app_settings: Settings = settings,
) -> None:
    """
    Initialize group services with database connection.

    Called once at application startup.

    Args:
        db: MongoDB database connection
        client: Motor client, only used when MONGODB_TRANSACTIONS is enabled
        app_settings: Settings to read collection names and flags from
    """
    global _group_repository, _commitment_index, _group_service, _membership_service

    session_client = client if app_settings.MONGODB_TRANSACTIONS else None
    if app_settings.MONGODB_TRANSACTIONS and client is None:
        logger.warning("MONGODB_TRANSACTIONS is enabled but no client was given, writes run without transactions")

    _group_repository = GroupRepository(
        db,
        collection=app_settings.GROUPS_COLLECTION,
        query_limit=app_settings.GROUP_QUERY_LIMIT,
    )
    _commitment_index = CommitmentIndex(db, collection=app_settings.USERS_COLLECTION)
    _group_service = GroupService(_group_repository, _commitment_index, client=session_client)
    _membership_service = MembershipService(
        _group_repository,
        _commitment_index,
        client=session_client,
        recheck_conflicts_on_approval=app_settings.RECHECK_CONFLICTS_ON_APPROVAL,
    )

    logger.info(f"Group services initialized (transactions={'on' if session_client else 'off'})")


async def startup(database: MongoDB, app_settings: Settings = settings) -> None:
    """
    Connect to MongoDB and initialize group services.

    Args:
        database: Connection manager to connect
        app_settings: Application settings
    """
    app_settings.validate_required()
    indexes = [
        (app_settings.GROUPS_COLLECTION, keys, options)
        for _, keys, options in GROUP_INDEXES
    ] + [
        (app_settings.USERS_COLLECTION, keys, options)
        for _, keys, options in USER_INDEXES
    ]
    await database.connect(
        uri=app_settings.MONGODB_URI,
        database_name=app_settings.MONGODB_DATABASE,
        indexes=indexes,
    )
    init_group_services(database.db, client=database.client, app_settings=app_settings)


def get_group_repository() -> GroupRepository:
    """Get group repository instance."""
    if _group_repository is None:
        raise RuntimeError("Group services not initialized.")
    return _group_repository


def get_commitment_index() -> CommitmentIndex:
    """Get commitment index instance."""
    if _commitment_index is None:
        raise RuntimeError("Group services not initialized.")
    return _commitment_index


def get_group_service() -> GroupService:
    """Get group service instance."""
    if _group_service is None:
        raise RuntimeError("Group services not initialized.")
    return _group_service


def get_membership_service() -> MembershipService:
    """Get membership service instance."""
    if _membership_service is None:
        raise RuntimeError("Group services not initialized.")
    return _membership_service
