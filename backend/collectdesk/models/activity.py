"""Activity log domain model.

Audit trail of changes to collections, reports, locations, machines and
collectors. Auto-deleted after 90 days via TTL index.
"""

from typing import Any, Optional

from pydantic import BaseModel, Field

from collectdesk.models.common import (
    ActivityAction,
    PyObjectId,
    ResourceType,
    UTCDateTime,
    mongo_ready,
    utcnow,
)


class ActivityLog(BaseModel):
    """A single audit entry stored in the activity_logs collection."""

    model_config = {"populate_by_name": True, "arbitrary_types_allowed": True}

    id: Optional[PyObjectId] = Field(default=None, alias="_id")
    actor: str
    action: ActivityAction
    resource: ResourceType
    resource_id: str
    details: str = ""
    changes: dict[str, Any] = Field(default_factory=dict)
    created_at: UTCDateTime = Field(default_factory=utcnow)

    def to_mongo_dict(self) -> dict:
        """Convert model to a MongoDB-insertable dict, excluding None id."""
        data = mongo_ready(self.model_dump(by_alias=True, mode="python"))
        if data.get("_id") is None:
            data.pop("_id", None)
        return data
