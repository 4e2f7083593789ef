"""
Utilities module - Common helpers for results and exceptions.
"""

from common.utils.responses import success_response, list_response
from common.utils.exceptions import (
    APIException,
    ForbiddenException,
    NotFoundException,
    ConflictException,
    ValidationException,
    InternalServerException,
    PartialWriteException,
)

__all__ = [
    "success_response",
    "list_response",
    "APIException",
    "ForbiddenException",
    "NotFoundException",
    "ConflictException",
    "ValidationException",
    "InternalServerException",
    "PartialWriteException",
]
