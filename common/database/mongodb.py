"""
Generic MongoDB connection manager using Motor.

This module provides async MongoDB connectivity that works with any database.
Collections are handed to repositories explicitly, so nothing in the
application reaches for a module-level database handle.

Example:
    from common.database import MongoDB, transaction

    db = MongoDB()
    await db.connect(uri="mongodb://localhost:27017", database_name="coflow")

    groups = db.get_collection("groups")

    async with transaction(db.client) as session:
        await groups.insert_one({...}, session=session)
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional, Tuple

from motor.motor_asyncio import (
    AsyncIOMotorClient,
    AsyncIOMotorClientSession,
    AsyncIOMotorDatabase,
)

logger = logging.getLogger(__name__)


class MongoDB:
    """Generic MongoDB connection manager - works with any database."""

    def __init__(self):
        self._client: Optional[AsyncIOMotorClient] = None
        self._database_name: Optional[str] = None

    async def connect(
        self,
        uri: str,
        database_name: str,
        indexes: Optional[List[Tuple[str, list, dict]]] = None,
    ) -> None:
        """
        Connect to MongoDB and verify the server is reachable.

        Args:
            uri: MongoDB connection string
            database_name: Name of the database to use
            indexes: Optional (collection, keys, options) triples to ensure
        """
        # Mask the URI for logging (hide credentials)
        masked_uri = uri.split("@")[-1] if "@" in uri else uri
        logger.info(f"Connecting to MongoDB: {masked_uri}")
        logger.debug(f"Database name: {database_name}")

        try:
            self._client = AsyncIOMotorClient(uri)
            self._database_name = database_name
            await self._client.admin.command("ping")

            for collection, keys, options in indexes or []:
                logger.debug(f"Ensuring index on {collection}: {keys}")
                await self.db[collection].create_index(keys, **options)

            logger.info(f"Successfully connected to MongoDB database: {database_name}")
        except Exception as e:
            logger.error(f"Failed to connect to MongoDB: {e}")
            raise

    async def disconnect(self) -> None:
        """Close the MongoDB connection."""
        if self._client:
            logger.info(f"Disconnecting from MongoDB database: {self._database_name}")
            self._client.close()
            self._client = None
            self._database_name = None
            logger.debug("MongoDB connection closed")

    @property
    def is_connected(self) -> bool:
        """Check if a client has been created."""
        return self._client is not None

    @property
    def client(self) -> Optional[AsyncIOMotorClient]:
        """Get the underlying Motor client."""
        return self._client

    @property
    def database_name(self) -> Optional[str]:
        """Get the current database name."""
        return self._database_name

    @property
    def db(self) -> AsyncIOMotorDatabase:
        """Get the underlying Motor database instance."""
        if not self._client or not self._database_name:
            raise RuntimeError("Database not connected")
        return self._client[self._database_name]

    def get_collection(self, name: str):
        """
        Get a raw Motor collection for direct access.

        Args:
            name: Collection name

        Returns:
            AsyncIOMotorCollection instance
        """
        if not self._client or not self._database_name:
            logger.error("Attempted to get collection without database connection")
            raise RuntimeError("Database not connected")
        logger.debug(f"Getting collection: {name}")
        return self._client[self._database_name][name]


@asynccontextmanager
async def transaction(
    client: Optional[AsyncIOMotorClient],
) -> AsyncIterator[Optional[AsyncIOMotorClientSession]]:
    """
    Run a block inside a multi-document transaction.

    Yields None when no client is given, so callers can pass the session
    through unconditionally and fall back to ordered single-document writes.
    The transaction commits when the block exits normally and aborts when it
    raises.

    Args:
        client: Motor client, or None to disable transactions
    """
    if client is None:
        yield None
        return

    async with await client.start_session() as session:
        async with session.start_transaction():
            logger.debug("Started MongoDB transaction")
            yield session
