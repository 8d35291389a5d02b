"""Common enums, shared types, and utilities for CollectDesk models."""

from datetime import datetime, timezone
from enum import StrEnum
from typing import Annotated, Any, Optional

from bson import ObjectId
from pydantic import AfterValidator, BeforeValidator, PlainSerializer


def _validate_object_id(value: Any) -> str:
    """Validate and convert ObjectId or string to string representation."""
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, str):
        return value
    raise ValueError(f"Invalid ObjectId value: {value}")


# Annotated type for MongoDB ObjectId fields.
# Accepts ObjectId or string on input, always serializes as string.
PyObjectId = Annotated[
    str,
    BeforeValidator(_validate_object_id),
    PlainSerializer(lambda v: str(v), return_type=str),
]


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (MongoDB hands them back naive)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# Timezone-aware UTC datetime. Serialized to ISO-8601 only for JSON output;
# python-mode dumps keep the datetime so it can be stored natively.
UTCDateTime = Annotated[
    datetime,
    AfterValidator(ensure_utc),
    PlainSerializer(lambda v: v.isoformat(), return_type=str, when_used="json"),
]


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Convert a datetime to the naive-UTC form stored in MongoDB."""
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def mongo_ready(data: Any) -> Any:
    """Recursively normalise datetimes in a dumped model for storage."""
    if isinstance(data, datetime):
        return to_naive_utc(data)
    if isinstance(data, dict):
        return {key: mongo_ready(value) for key, value in data.items()}
    if isinstance(data, list):
        return [mongo_ready(item) for item in data]
    return data


class AuthType(StrEnum):
    """Kinds of authenticated callers."""
    ADMIN = "admin"
    COLLECTOR = "collector"


class ActivityAction(StrEnum):
    """Actions recorded in the activity log."""
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class ResourceType(StrEnum):
    """Resources whose changes are recorded in the activity log."""
    COLLECTION = "collection"
    COLLECTION_REPORT = "collection_report"
    LOCATION = "location"
    MACHINE = "machine"
    COLLECTOR = "collector"


class IssueType(StrEnum):
    """Inconsistencies detected on collection reports and machines."""
    MOVEMENT_MISMATCH = "MOVEMENT_MISMATCH"
    PREV_METERS_MISMATCH = "PREV_METERS_MISMATCH"
    INVALID_SAS_WINDOW = "INVALID_SAS_WINDOW"
    HISTORY_MISSING = "HISTORY_MISSING"
    TOTALS_MISMATCH = "TOTALS_MISMATCH"
    REPORT_MISSING = "REPORT_MISSING"
    ORPHANED_HISTORY = "ORPHANED_HISTORY"
    MACHINE_METERS_MISMATCH = "MACHINE_METERS_MISMATCH"


class SortOrder(StrEnum):
    """Sort direction accepted by list endpoints."""
    ASC = "asc"
    DESC = "desc"
