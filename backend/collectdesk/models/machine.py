"""Machine domain models.

Based on the machines collection: each machine embeds the meters taken
at its last finalized collection and a history of every collection that
moved those meters.
"""

from typing import Optional

from pydantic import BaseModel, Field

from collectdesk.models.common import PyObjectId, UTCDateTime, mongo_ready, utcnow


class MeterPair(BaseModel):
    """Coin-in / coin-out meters recorded at a collection."""

    meters_in: float = 0
    meters_out: float = 0


class CollectionHistoryEntry(BaseModel):
    """One finalized collection, embedded in the machine document."""

    id: str
    meters_in: float
    meters_out: float
    prev_meters_in: float = 0
    prev_meters_out: float = 0
    timestamp: UTCDateTime
    location_report_id: str


class Machine(BaseModel):
    """Represents a gaming machine stored in the machines collection."""

    model_config = {"populate_by_name": True, "arbitrary_types_allowed": True}

    id: Optional[PyObjectId] = Field(default=None, alias="_id")
    serial_number: str
    custom_name: Optional[str] = None
    game: Optional[str] = None
    location_id: str
    collection_meters: MeterPair = Field(default_factory=MeterPair)
    collection_time: Optional[UTCDateTime] = None
    previous_collection_time: Optional[UTCDateTime] = None
    collection_meters_history: list[CollectionHistoryEntry] = Field(
        default_factory=list
    )
    created_at: UTCDateTime = Field(default_factory=utcnow)
    updated_at: UTCDateTime = Field(default_factory=utcnow)

    @property
    def display_name(self) -> str:
        """Name shown on collection forms: custom name, serial, then id."""
        return self.custom_name or self.serial_number or str(self.id)

    def history_for_report(self, location_report_id: str) -> Optional[CollectionHistoryEntry]:
        """Return the history entry written by the given report, if any."""
        for entry in self.collection_meters_history:
            if entry.location_report_id == location_report_id:
                return entry
        return None

    def to_mongo_dict(self) -> dict:
        """Convert model to a MongoDB-insertable dict, excluding None id."""
        data = mongo_ready(self.model_dump(by_alias=True, mode="python"))
        if data.get("_id") is None:
            data.pop("_id", None)
        return data
