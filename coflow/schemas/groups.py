"""
Pydantic models for study group queries and projections.

Declares the fields a group may be created or updated with, filter
parsing for group listings, the schedule entry stored on a user's
commitment projection, and the serialized group shape handed to
collaborators.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

DATE_PATTERN = r"^\d{4}-\d{2}-\d{2}$"
TIME_PATTERN = r"^(?:[01]\d|2[0-3]):[0-5]\d$"
COURSE_PATTERN = r"^[A-Za-z]{2,3}[-\s]?\d{3}$"

MIN_CAPACITY = 2
MAX_CAPACITY = 15

SortField = Literal["meetingDate", "startTime", "groupName", "course", "capacity", "createdAt"]

GroupType = Literal["study-group", "project-group"]

Location = Literal[
    "Edwin A. Stevens",
    "Library",
    "Gateway South",
    "Gateway North",
    "North Building",
    "Babbio",
    "ABS",
    "Burchard",
    "Carnegie",
    "Davidson",
    "Altorfer",
    "Kidde",
    "McLean",
    "Morton",
    "Nicoll",
    "Pierce",
    "Rocco",
    "TBD",
]


def _reject_bare_number(value: str) -> str:
    if value.isdigit():
        raise ValueError("cannot be just a number")
    return value


def _reject_bool(value: Any) -> Any:
    # bool is an int subclass and would otherwise pass as 0 or 1
    if isinstance(value, bool):
        raise ValueError("must be a number")
    return value


def _normalize_tags(value: Any) -> List[str]:
    """Tags are non-empty strings; duplicates collapse, first occurrence wins."""
    if value is None:
        return []
    if not isinstance(value, (list, tuple, set)):
        raise ValueError("Tags must be an array")

    tags: List[str] = []
    for tag in value:
        if not isinstance(tag, str) or not tag.strip():
            raise ValueError("One or more tags is not a string or is an empty string")
        tag = tag.strip()
        if tag not in tags:
            tags.append(tag)
    return tags


class GroupCreate(BaseModel):
    """Fields of a new study group."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    groupName: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    capacity: int = Field(..., ge=MIN_CAPACITY, le=MAX_CAPACITY)
    location: Location
    course: str = Field(..., pattern=COURSE_PATTERN)
    meetingDate: str = Field(..., pattern=DATE_PATTERN)
    startTime: str = Field(..., pattern=TIME_PATTERN)
    endTime: str = Field(..., pattern=TIME_PATTERN)
    groupType: GroupType
    tags: List[str] = Field(default_factory=list)

    @field_validator("groupName", "description")
    @classmethod
    def reject_bare_number(cls, value: str) -> str:
        return _reject_bare_number(value)

    @field_validator("capacity", mode="before")
    @classmethod
    def reject_bool(cls, value: Any) -> Any:
        return _reject_bool(value)

    @field_validator("tags", mode="before")
    @classmethod
    def normalize_tags(cls, value: Any) -> List[str]:
        return _normalize_tags(value)


class GroupUpdate(BaseModel):
    """Partial update of a study group; fields left as None are unchanged."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    groupName: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = Field(None, min_length=1)
    capacity: Optional[int] = Field(None, ge=MIN_CAPACITY, le=MAX_CAPACITY)
    location: Optional[Location] = None
    course: Optional[str] = Field(None, pattern=COURSE_PATTERN)
    meetingDate: Optional[str] = Field(None, pattern=DATE_PATTERN)
    startTime: Optional[str] = Field(None, pattern=TIME_PATTERN)
    endTime: Optional[str] = Field(None, pattern=TIME_PATTERN)
    groupType: Optional[GroupType] = None
    tags: Optional[List[str]] = None

    @field_validator("groupName", "description")
    @classmethod
    def reject_bare_number(cls, value: Optional[str]) -> Optional[str]:
        return value if value is None else _reject_bare_number(value)

    @field_validator("capacity", mode="before")
    @classmethod
    def reject_bool(cls, value: Any) -> Any:
        return _reject_bool(value)

    @field_validator("tags", mode="before")
    @classmethod
    def normalize_tags(cls, value: Any) -> Optional[List[str]]:
        return value if value is None else _normalize_tags(value)


class GroupFilters(BaseModel):
    """Filters accepted by group listings and search."""

    model_config = ConfigDict(extra="ignore")

    course: Optional[str] = None
    groupType: Optional[GroupType] = None
    location: Optional[str] = None
    meetingDate: Optional[str] = Field(None, pattern=DATE_PATTERN)
    tags: List[str] = Field(default_factory=list)
    showFull: bool = False
    showPast: bool = False
    sortBy: SortField = "meetingDate"
    sortDesc: bool = False


class ScheduleEntry(BaseModel):
    """A user's denormalized copy of one group's meeting slot."""

    groupId: str
    meetingDate: str = Field(..., pattern=DATE_PATTERN)
    startTime: str = Field(..., pattern=TIME_PATTERN)
    endTime: str = Field(..., pattern=TIME_PATTERN)

    @classmethod
    def from_group(cls, group: Dict[str, Any]) -> "ScheduleEntry":
        return cls(
            groupId=str(group["_id"]),
            meetingDate=group["meetingDate"],
            startTime=group["startTime"],
            endTime=group["endTime"],
        )


class GroupResponse(BaseModel):
    """Group as returned to collaborators."""

    model_config = ConfigDict(extra="allow")

    id: str
    groupName: str
    description: str
    capacity: int
    location: str
    course: str
    meetingDate: str
    startTime: str
    endTime: str
    groupType: str
    tags: List[str] = Field(default_factory=list)
    members: List[str]
    pendingMembers: List[str] = Field(default_factory=list)
    rejectedMembers: List[str] = Field(default_factory=list)
    isFull: bool
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None
    userRole: Optional[str] = None


def serialize_group(group: Dict[str, Any]) -> Dict[str, Any]:
    """
    Convert a stored group document into its response shape.

    The ObjectId becomes a string `id`, member arrays are copied so callers
    cannot mutate repository state, and isFull is derived from the member
    count rather than trusted from storage.
    """
    data = {key: value for key, value in group.items() if key != "_id"}
    data["id"] = str(group["_id"]) if "_id" in group else str(group["id"])
    for key in ("members", "pendingMembers", "rejectedMembers", "tags"):
        data[key] = [str(item) for item in group.get(key, [])]
    data["isFull"] = len(data["members"]) >= group["capacity"]
    return GroupResponse.model_validate(data).model_dump(exclude_none=True)
