"""SAS meter reading model.

Machines report their own movement (SAS meters) periodically. Each
reading holds the movement since the previous reading, so summing the
readings over a window gives the SAS movement for that window.
"""

from typing import Optional

from pydantic import BaseModel, Field

from collectdesk.models.common import PyObjectId, UTCDateTime, mongo_ready, utcnow


class SasMovement(BaseModel):
    """Movement deltas carried by one meter reading."""

    drop: float = 0
    total_cancelled_credits: float = 0
    games_played: int = 0
    jackpot: float = 0


class MeterReading(BaseModel):
    """A single SAS meter reading stored in the meters collection."""

    model_config = {"populate_by_name": True, "arbitrary_types_allowed": True}

    id: Optional[PyObjectId] = Field(default=None, alias="_id")
    machine_id: str
    read_at: UTCDateTime
    movement: SasMovement = Field(default_factory=SasMovement)
    created_at: UTCDateTime = Field(default_factory=utcnow)

    def to_mongo_dict(self) -> dict:
        """Convert model to a MongoDB-insertable dict, excluding None id."""
        data = mongo_ready(self.model_dump(by_alias=True, mode="python"))
        if data.get("_id") is None:
            data.pop("_id", None)
        return data
