"""Collection report domain model.

One report finalizes a location visit: it links the visit's machine
collections and records the revenue split and balance carry-over.
"""

from typing import Optional

from pydantic import BaseModel, Field

from collectdesk.models.common import PyObjectId, UTCDateTime, mongo_ready, utcnow


class CollectionReport(BaseModel):
    """Represents a report stored in the collection_reports collection.

    Totals (``total_*``, ``partner_profit``, ``amount_to_collect`` and the
    balance fields) are always computed server-side from the linked
    collections.
    """

    model_config = {"populate_by_name": True, "arbitrary_types_allowed": True}

    id: Optional[PyObjectId] = Field(default=None, alias="_id")
    location_report_id: str
    location_id: str
    location_name: str
    collector: str
    timestamp: UTCDateTime = Field(default_factory=utcnow)

    # Inputs entered by the collector
    taxes: float = 0
    variance: float = 0
    variance_reason: Optional[str] = None
    advance: float = 0
    previous_balance: float = 0
    profit_share: int = 50
    amount_collected: float = 0
    base_balance_correction: float = 0
    balance_correction_reason: Optional[str] = None
    reason_for_shortage_payment: Optional[str] = None

    # Computed
    total_drop: float = 0
    total_cancelled: float = 0
    total_gross: float = 0
    total_sas_gross: float = 0
    partner_profit: float = 0
    amount_to_collect: float = 0
    amount_uncollected: float = 0
    current_balance: float = 0
    balance_correction: float = 0
    machines_collected: int = 0

    created_at: UTCDateTime = Field(default_factory=utcnow)
    updated_at: UTCDateTime = Field(default_factory=utcnow)

    @property
    def variation(self) -> float:
        """Difference between metered gross and SAS gross."""
        return round(self.total_gross - self.total_sas_gross, 2)

    def to_mongo_dict(self) -> dict:
        """Convert model to a MongoDB-insertable dict, excluding None id."""
        data = mongo_ready(self.model_dump(by_alias=True, mode="python"))
        if data.get("_id") is None:
            data.pop("_id", None)
        return data
