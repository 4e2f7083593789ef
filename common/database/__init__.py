"""
Database module - Generic async MongoDB connection using Motor.

Usage:
    from common.database import MongoDB, transaction

    db = MongoDB()
    await db.connect(uri, database_name)
    collection = db.get_collection("groups")
"""

from common.database.mongodb import MongoDB, transaction

__all__ = [
    "MongoDB",
    "transaction",
]
