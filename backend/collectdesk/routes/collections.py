"""Machine collection route handlers.

Endpoints:
    GET    /api/collections                  -- List collections (filters below).
    POST   /api/collections                  -- Record a machine's meters.
    GET    /api/collections/{collection_id}  -- Get one collection.
    PATCH  /api/collections/{collection_id}  -- Edit meters, RAM clear, notes or time.
    DELETE /api/collections/{collection_id}  -- Delete and revert the machine's meters.
"""

import logging
from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, Path, Query, status
from pydantic import BaseModel, Field

from collectdesk.auth.dependencies import get_admin_or_collector
from collectdesk.dal.activity_dal import ActivityDAL
from collectdesk.dal.collection_reports_dal import CollectionReportDAL
from collectdesk.dal.collections_dal import CollectionDAL
from collectdesk.dal.database import get_database
from collectdesk.dal.locations_dal import LocationDAL
from collectdesk.dal.machines_dal import MachineDAL
from collectdesk.dal.meters_dal import MeterDAL
from collectdesk.models.collection import Collection, Movement, SasMeters
from collectdesk.models.common import SortOrder, UTCDateTime
from collectdesk.services.activity_service import ActivityService
from collectdesk.services.collection_service import CollectionService
from collectdesk.services.sas_service import SasService

logger = logging.getLogger("collectdesk.routes.collections")

router = APIRouter(prefix="/collections", tags=["Collections"])


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _get_service() -> CollectionService:
    """Build a CollectionService wired to the current database."""
    db = get_database()
    collection_dal = CollectionDAL(db)
    machine_dal = MachineDAL(db)
    return CollectionService(
        collection_dal=collection_dal,
        machine_dal=machine_dal,
        location_dal=LocationDAL(db),
        report_dal=CollectionReportDAL(db),
        sas_service=SasService(collection_dal, machine_dal, MeterDAL(db)),
        activity_service=ActivityService(ActivityDAL(db)),
    )


# ---------------------------------------------------------------------------
# Pydantic request / response schemas
# ---------------------------------------------------------------------------

class CollectionCreateRequest(BaseModel):
    """Request body for POST /api/collections."""
    machine_id: str
    meters_in: float
    meters_out: float
    prev_in: Optional[float] = Field(
        None, description="Overrides the previous coin-in meter (needs prev_out too)."
    )
    prev_out: Optional[float] = None
    ram_clear: bool = False
    ram_clear_meters_in: Optional[float] = Field(
        None, description="Last coin-in reading before the RAM clear."
    )
    ram_clear_meters_out: Optional[float] = Field(
        None, description="Last coin-out reading before the RAM clear."
    )
    notes: Optional[str] = Field(None, max_length=1000)
    timestamp: Optional[UTCDateTime] = None
    sas_start_time: Optional[UTCDateTime] = None
    location_report_id: Optional[str] = Field(
        None, description="Attach to an existing report instead of the open visit."
    )


class CollectionUpdateRequest(BaseModel):
    """Request body for PATCH /api/collections/{collection_id}."""
    meters_in: Optional[float] = None
    meters_out: Optional[float] = None
    prev_in: Optional[float] = None
    prev_out: Optional[float] = None
    ram_clear: Optional[bool] = None
    ram_clear_meters_in: Optional[float] = None
    ram_clear_meters_out: Optional[float] = None
    notes: Optional[str] = Field(None, max_length=1000)
    timestamp: Optional[UTCDateTime] = None


class CollectionResponse(BaseModel):
    """A collection as returned by the API."""
    id: str
    machine_id: str
    machine_name: str
    serial_number: Optional[str] = None
    game: Optional[str] = None
    location_id: str
    location_name: str
    collector: str
    timestamp: UTCDateTime
    meters_in: float
    meters_out: float
    prev_in: float
    prev_out: float
    ram_clear: bool
    ram_clear_meters_in: Optional[float] = None
    ram_clear_meters_out: Optional[float] = None
    notes: Optional[str] = None
    movement: Movement
    sas_meters: SasMeters
    is_completed: bool
    location_report_id: str


class CollectionWriteResponse(BaseModel):
    """Response for create and update: the collection plus meter warnings."""
    collection: CollectionResponse
    warnings: list[str] = Field(default_factory=list)


def collection_response(collection: Collection) -> CollectionResponse:
    """Convert a Collection model into its API representation."""
    data = collection.model_dump(exclude={"created_at", "updated_at"})
    data["id"] = str(collection.id)
    return CollectionResponse(**data)


def _non_null(body: BaseModel) -> dict[str, Any]:
    """Fields the client actually sent; explicit nulls only clear RAM-clear meters."""
    sent = body.model_dump(exclude_unset=True)
    return {
        key: value
        for key, value in sent.items()
        if value is not None or key.startswith("ram_clear_meters") or key == "notes"
    }


# ---------------------------------------------------------------------------
# GET /api/collections
# ---------------------------------------------------------------------------

@router.get(
    "",
    response_model=list[CollectionResponse],
    summary="List machine collections",
)
async def list_collections(
    location_report_id: Optional[str] = Query(None),
    location_id: Optional[str] = Query(None),
    collector: Optional[str] = Query(None),
    is_completed: Optional[bool] = Query(None),
    incomplete_only: bool = Query(False, description="Only collections not yet in a report."),
    machine_id: Optional[str] = Query(None),
    before_timestamp: Optional[datetime] = Query(None),
    sort_by: str = Query("timestamp"),
    sort_order: SortOrder = Query(SortOrder.DESC),
    limit: Optional[int] = Query(None, ge=1, le=1000),
    caller: dict[str, Any] = Depends(get_admin_or_collector),
) -> list[CollectionResponse]:
    """Collectors only see collections at their assigned locations."""
    collections = await _get_service().list_collections(
        caller,
        location_id=location_id,
        location_report_id=location_report_id,
        collector=collector,
        is_completed=is_completed,
        incomplete_only=incomplete_only,
        machine_id=machine_id,
        before_timestamp=before_timestamp,
        sort_by=sort_by,
        descending=sort_order == SortOrder.DESC,
        limit=limit,
    )
    return [collection_response(c) for c in collections]


# ---------------------------------------------------------------------------
# POST /api/collections
# ---------------------------------------------------------------------------

@router.post(
    "",
    response_model=CollectionWriteResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Record a machine's meters",
)
async def create_collection(
    body: CollectionCreateRequest,
    caller: dict[str, Any] = Depends(get_admin_or_collector),
) -> CollectionWriteResponse:
    """Compute previous meters, movement and SAS metrics and store the
    collection as part of the location's open visit.

    Negative meters are rejected (400). A meter lower than the previous
    one is accepted with a warning, as it may be an undeclared RAM clear.
    """
    collection, warnings = await _get_service().create_collection(
        caller, body.model_dump()
    )
    return CollectionWriteResponse(
        collection=collection_response(collection), warnings=warnings
    )


# ---------------------------------------------------------------------------
# GET /api/collections/{collection_id}
# ---------------------------------------------------------------------------

@router.get("/{collection_id}", response_model=CollectionResponse)
async def get_collection(
    collection_id: str = Path(...),
    caller: dict[str, Any] = Depends(get_admin_or_collector),
) -> CollectionResponse:
    collection = await _get_service().get_collection(caller, collection_id)
    return collection_response(collection)


# ---------------------------------------------------------------------------
# PATCH /api/collections/{collection_id}
# ---------------------------------------------------------------------------

@router.patch("/{collection_id}", response_model=CollectionWriteResponse)
async def update_collection(
    body: CollectionUpdateRequest,
    collection_id: str = Path(...),
    caller: dict[str, Any] = Depends(get_admin_or_collector),
) -> CollectionWriteResponse:
    """Edit a collection. Meter edits recompute previous meters and
    movement; meter or time edits recompute the SAS window."""
    collection, warnings = await _get_service().update_collection(
        caller, collection_id, _non_null(body)
    )
    return CollectionWriteResponse(
        collection=collection_response(collection), warnings=warnings
    )


# ---------------------------------------------------------------------------
# DELETE /api/collections/{collection_id}
# ---------------------------------------------------------------------------

@router.delete("/{collection_id}")
async def delete_collection(
    collection_id: str = Path(...),
    caller: dict[str, Any] = Depends(get_admin_or_collector),
) -> dict[str, Any]:
    """Delete a collection; a finalized one hands its previous meters back
    to the machine."""
    collection = await _get_service().delete_collection(caller, collection_id)
    return {"deleted": True, "collection_id": str(collection.id)}
