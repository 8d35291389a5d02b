"""Location route handlers.

Endpoints:
    GET    /api/locations                          -- List visible locations (optionally with machines).
    POST   /api/locations                          -- Create a location (admin).
    GET    /api/locations/{location_id}            -- Get one location.
    PUT    /api/locations/{location_id}            -- Update a location (admin).
    DELETE /api/locations/{location_id}            -- Delete an empty location (admin).
    GET    /api/locations/{location_id}/machines   -- List a location's machines.
"""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, Path, Query, status
from pydantic import BaseModel, Field

from collectdesk.auth.dependencies import get_admin_or_collector, get_current_admin
from collectdesk.dal.activity_dal import ActivityDAL
from collectdesk.dal.database import get_database
from collectdesk.dal.locations_dal import LocationDAL
from collectdesk.dal.machines_dal import MachineDAL
from collectdesk.dal.meters_dal import MeterDAL
from collectdesk.models.common import UTCDateTime
from collectdesk.models.location import Location
from collectdesk.services.activity_service import ActivityService
from collectdesk.services.location_service import LocationService

logger = logging.getLogger("collectdesk.routes.locations")

router = APIRouter(prefix="/locations", tags=["Locations"])


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _get_service() -> LocationService:
    """Build a LocationService wired to the current database."""
    db = get_database()
    return LocationService(
        location_dal=LocationDAL(db),
        machine_dal=MachineDAL(db),
        meter_dal=MeterDAL(db),
        activity_service=ActivityService(ActivityDAL(db)),
    )


# ---------------------------------------------------------------------------
# Pydantic request / response schemas
# ---------------------------------------------------------------------------

class LocationCreateRequest(BaseModel):
    """Request body for POST /api/locations."""
    name: str = Field(..., min_length=1, max_length=120)
    address: Optional[str] = Field(None, max_length=250)
    profit_share: Optional[int] = Field(
        None, ge=0, le=100, description="Partner share in percent (default 50)."
    )
    collection_balance: float = Field(
        0, description="Opening balance carried into the first report."
    )


class LocationUpdateRequest(BaseModel):
    """Request body for PUT /api/locations/{location_id}."""
    name: Optional[str] = Field(None, min_length=1, max_length=120)
    address: Optional[str] = Field(None, max_length=250)
    profit_share: Optional[int] = Field(None, ge=0, le=100)
    collection_balance: Optional[float] = None


class LocationResponse(BaseModel):
    """A location as returned by the API."""
    id: str
    name: str
    address: Optional[str] = None
    profit_share: int
    collection_balance: float
    previous_collection_time: Optional[UTCDateTime] = None


class MachineSummary(BaseModel):
    """Machine selection data on a location."""
    id: str
    name: str
    serial_number: str
    custom_name: Optional[str] = None
    game: Optional[str] = None
    collection_meters: dict[str, float]
    collection_time: Optional[UTCDateTime] = None


class LocationWithMachines(LocationResponse):
    """A location with its machines."""
    machines: list[MachineSummary] = Field(default_factory=list)


def _location_response(location: Location) -> LocationResponse:
    return LocationResponse(
        id=str(location.id),
        name=location.name,
        address=location.address,
        profit_share=location.profit_share,
        collection_balance=location.collection_balance,
        previous_collection_time=location.previous_collection_time,
    )


# ---------------------------------------------------------------------------
# GET /api/locations
# ---------------------------------------------------------------------------

@router.get(
    "",
    response_model=list[LocationWithMachines],
    summary="List locations visible to the caller",
)
async def list_locations(
    with_machines: bool = Query(False, description="Include machines and their meters."),
    caller: dict[str, Any] = Depends(get_admin_or_collector),
) -> list[LocationWithMachines]:
    """Admins see every location; collectors see their assigned ones."""
    rows = await _get_service().list_locations(caller, with_machines=with_machines)
    return [LocationWithMachines(**row) for row in rows]


# ---------------------------------------------------------------------------
# POST /api/locations
# ---------------------------------------------------------------------------

@router.post(
    "",
    response_model=LocationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a location",
)
async def create_location(
    body: LocationCreateRequest,
    admin: dict[str, Any] = Depends(get_current_admin),
) -> LocationResponse:
    location = await _get_service().create_location(
        actor=admin["username"],
        name=body.name,
        address=body.address,
        profit_share=body.profit_share,
        collection_balance=body.collection_balance,
    )
    return _location_response(location)


# ---------------------------------------------------------------------------
# GET /api/locations/{location_id}
# ---------------------------------------------------------------------------

@router.get("/{location_id}", response_model=LocationResponse)
async def get_location(
    location_id: str = Path(...),
    caller: dict[str, Any] = Depends(get_admin_or_collector),
) -> LocationResponse:
    location = await _get_service().require_location(caller, location_id)
    return _location_response(location)


# ---------------------------------------------------------------------------
# PUT /api/locations/{location_id}
# ---------------------------------------------------------------------------

@router.put("/{location_id}", response_model=LocationResponse)
async def update_location(
    body: LocationUpdateRequest,
    location_id: str = Path(...),
    admin: dict[str, Any] = Depends(get_current_admin),
) -> LocationResponse:
    """Update name, address, profit share or the carried balance."""
    location = await _get_service().update_location(
        admin["username"], location_id, body.model_dump(exclude_unset=True)
    )
    return _location_response(location)


# ---------------------------------------------------------------------------
# DELETE /api/locations/{location_id}
# ---------------------------------------------------------------------------

@router.delete("/{location_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_location(
    location_id: str = Path(...),
    admin: dict[str, Any] = Depends(get_current_admin),
) -> None:
    """Delete a location. Fails with 409 while it still has machines."""
    await _get_service().delete_location(admin["username"], location_id)


# ---------------------------------------------------------------------------
# GET /api/locations/{location_id}/machines
# ---------------------------------------------------------------------------

@router.get("/{location_id}/machines", response_model=list[MachineSummary])
async def list_location_machines(
    location_id: str = Path(...),
    caller: dict[str, Any] = Depends(get_admin_or_collector),
) -> list[MachineSummary]:
    service = _get_service()
    machines = await service.list_machines(caller, location_id)
    return [MachineSummary(**service.machine_summary(m)) for m in machines]
