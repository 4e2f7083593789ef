"""Pydantic schemas for CoFlow."""

from coflow.schemas.groups import GroupFilters, GroupResponse, ScheduleEntry, serialize_group

__all__ = ["GroupFilters", "GroupResponse", "ScheduleEntry", "serialize_group"]
