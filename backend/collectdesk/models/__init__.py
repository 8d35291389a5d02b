"""Pydantic models for CollectDesk."""

from collectdesk.models.common import (
    ActivityAction,
    AuthType,
    IssueType,
    PyObjectId,
    ResourceType,
    SortOrder,
    UTCDateTime,
)
from collectdesk.models.location import Location
from collectdesk.models.machine import CollectionHistoryEntry, Machine, MeterPair
from collectdesk.models.meter import MeterReading, SasMovement
from collectdesk.models.collection import Collection, Movement, SasMeters
from collectdesk.models.collection_report import CollectionReport
from collectdesk.models.collector import Collector, CollectorProfile
from collectdesk.models.activity import ActivityLog

__all__ = [
    # Enums and types
    "ActivityAction",
    "AuthType",
    "IssueType",
    "PyObjectId",
    "ResourceType",
    "SortOrder",
    "UTCDateTime",
    # Location and machine models
    "Location",
    "Machine",
    "MeterPair",
    "CollectionHistoryEntry",
    "MeterReading",
    "SasMovement",
    # Collection models
    "Collection",
    "Movement",
    "SasMeters",
    "CollectionReport",
    # People
    "Collector",
    "CollectorProfile",
    "ActivityLog",
]
