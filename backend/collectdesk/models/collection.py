"""Collection domain models.

A collection is one machine's meter reading taken during a location
visit. It stays in progress (empty ``location_report_id``) until a
collection report finalizes the visit.
"""

from typing import Optional

from pydantic import BaseModel, Field

from collectdesk.models.common import PyObjectId, UTCDateTime, mongo_ready, utcnow


class Movement(BaseModel):
    """Meter movement since the previous collection."""

    drop: float = 0
    cancelled_credits: float = 0
    gross: float = 0


class SasMeters(BaseModel):
    """Machine-reported movement over the collection window."""

    drop: float = 0
    total_cancelled_credits: float = 0
    gross: float = 0
    games_played: int = 0
    jackpot: float = 0
    sas_start_time: Optional[UTCDateTime] = None
    sas_end_time: Optional[UTCDateTime] = None


class Collection(BaseModel):
    """Represents a machine collection stored in the collections collection."""

    model_config = {"populate_by_name": True, "arbitrary_types_allowed": True}

    id: Optional[PyObjectId] = Field(default=None, alias="_id")
    machine_id: str
    machine_name: str
    serial_number: Optional[str] = None
    game: Optional[str] = None
    location_id: str
    location_name: str
    collector: str
    timestamp: UTCDateTime = Field(default_factory=utcnow)
    meters_in: float
    meters_out: float
    prev_in: float = 0
    prev_out: float = 0
    ram_clear: bool = False
    ram_clear_meters_in: Optional[float] = None
    ram_clear_meters_out: Optional[float] = None
    notes: Optional[str] = None
    movement: Movement = Field(default_factory=Movement)
    sas_meters: SasMeters = Field(default_factory=SasMeters)
    is_completed: bool = False
    location_report_id: str = ""
    created_at: UTCDateTime = Field(default_factory=utcnow)
    updated_at: UTCDateTime = Field(default_factory=utcnow)

    @property
    def in_progress(self) -> bool:
        """True while no report has finalized this collection."""
        return not self.is_completed and not self.location_report_id

    def to_mongo_dict(self) -> dict:
        """Convert model to a MongoDB-insertable dict, excluding None id."""
        data = mongo_ready(self.model_dump(by_alias=True, mode="python"))
        if data.get("_id") is None:
            data.pop("_id", None)
        return data
