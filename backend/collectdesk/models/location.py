"""Location domain model.

A location is a venue hosting gaming machines. It carries the revenue
share agreed with the venue partner and the balance carried over from
its last collection report.
"""

from typing import Optional

from pydantic import BaseModel, Field

from collectdesk.config import settings
from collectdesk.models.common import PyObjectId, UTCDateTime, mongo_ready, utcnow


class Location(BaseModel):
    """Represents a venue stored in the locations collection."""

    model_config = {"populate_by_name": True, "arbitrary_types_allowed": True}

    id: Optional[PyObjectId] = Field(default=None, alias="_id")
    name: str
    address: Optional[str] = None
    profit_share: int = Field(
        default_factory=lambda: settings.DEFAULT_PROFIT_SHARE, ge=0, le=100
    )
    collection_balance: float = 0
    previous_collection_time: Optional[UTCDateTime] = None
    created_at: UTCDateTime = Field(default_factory=utcnow)
    updated_at: UTCDateTime = Field(default_factory=utcnow)

    def to_mongo_dict(self) -> dict:
        """Convert model to a MongoDB-insertable dict, excluding None id."""
        data = mongo_ready(self.model_dump(by_alias=True, mode="python"))
        if data.get("_id") is None:
            data.pop("_id", None)
        return data
