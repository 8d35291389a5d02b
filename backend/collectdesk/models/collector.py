"""Collector domain model.

Collectors are the field staff who visit locations. They authenticate
with a UUID4 token and can only work on locations assigned to them.
"""

from typing import Optional

from pydantic import BaseModel, Field

from collectdesk.models.common import PyObjectId, UTCDateTime, mongo_ready, utcnow


class CollectorProfile(BaseModel):
    """Editable personal details of a collector."""

    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None


class Collector(BaseModel):
    """Represents a collector stored in the collectors collection."""

    model_config = {"populate_by_name": True, "arbitrary_types_allowed": True}

    id: Optional[PyObjectId] = Field(default=None, alias="_id")
    username: str
    collector_token: str
    email: Optional[str] = None
    profile: CollectorProfile = Field(default_factory=CollectorProfile)
    assigned_location_ids: list[str] = Field(default_factory=list)
    is_active: bool = True
    created_at: UTCDateTime = Field(default_factory=utcnow)
    updated_at: UTCDateTime = Field(default_factory=utcnow)

    @property
    def display_name(self) -> str:
        """Name shown on reports: username, first name, then email."""
        return (
            self.username
            or self.profile.first_name
            or self.email
            or str(self.id)
        )

    def to_mongo_dict(self) -> dict:
        """Convert model to a MongoDB-insertable dict, excluding None id."""
        data = mongo_ready(self.model_dump(by_alias=True, mode="python"))
        if data.get("_id") is None:
            data.pop("_id", None)
        return data
