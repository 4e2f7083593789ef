"""
Common library for reusable infrastructure components.

- database: Async MongoDB connection (Motor) and transaction helper
- utils: Standard results and exceptions
- config: Base settings class
"""

from common.database import MongoDB, transaction
from common.utils import (
    success_response,
    list_response,
    APIException,
    ForbiddenException,
    NotFoundException,
    ConflictException,
    ValidationException,
    PartialWriteException,
)
from common.config import BaseAppSettings

__all__ = [
    # Database
    "MongoDB",
    "transaction",
    # Utils
    "success_response",
    "list_response",
    "APIException",
    "ForbiddenException",
    "NotFoundException",
    "ConflictException",
    "ValidationException",
    "PartialWriteException",
    # Config
    "BaseAppSettings",
]
