"""Machine route handlers.

Endpoints:
    POST /api/machines                        -- Register a machine (admin).
    GET  /api/machines/{machine_id}           -- Machine detail with collection history.
    POST /api/machines/{machine_id}/meters    -- Record SAS meter readings (admin).
"""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, Path, Request, status
from pydantic import BaseModel, Field

from collectdesk.auth.dependencies import get_admin_or_collector, get_current_admin
from collectdesk.dal.activity_dal import ActivityDAL
from collectdesk.dal.database import get_database
from collectdesk.dal.locations_dal import LocationDAL
from collectdesk.dal.machines_dal import MachineDAL
from collectdesk.dal.meters_dal import MeterDAL
from collectdesk.middleware.rate_limit import rate_limit
from collectdesk.models.common import UTCDateTime
from collectdesk.models.machine import CollectionHistoryEntry, Machine, MeterPair
from collectdesk.services.activity_service import ActivityService
from collectdesk.services.location_service import LocationService

logger = logging.getLogger("collectdesk.routes.machines")

router = APIRouter(prefix="/machines", tags=["Machines"])


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

class MachineCreateRequest(BaseModel):
    """Request body for POST /api/machines."""
    serial_number: str = Field(..., min_length=1, max_length=64)
    location_id: str
    custom_name: Optional[str] = Field(None, max_length=120)
    game: Optional[str] = Field(None, max_length=120)
    meters_in: float = Field(0, ge=0, description="Opening coin-in meter.")
    meters_out: float = Field(0, ge=0, description="Opening coin-out meter.")
    collection_time: Optional[UTCDateTime] = None


class MachineResponse(BaseModel):
    """A machine as returned by the API."""
    id: str
    name: str
    serial_number: str
    custom_name: Optional[str] = None
    game: Optional[str] = None
    location_id: str
    collection_meters: MeterPair
    collection_time: Optional[UTCDateTime] = None
    previous_collection_time: Optional[UTCDateTime] = None
    collection_meters_history: list[CollectionHistoryEntry]


class SasMovementInput(BaseModel):
    """Movement deltas of one SAS reading."""
    drop: float = Field(0, ge=0)
    total_cancelled_credits: float = Field(0, ge=0)
    games_played: int = Field(0, ge=0)
    jackpot: float = Field(0, ge=0)


class MeterReadingInput(BaseModel):
    """A single SAS reading in the ingestion request."""
    read_at: UTCDateTime
    movement: SasMovementInput = Field(default_factory=SasMovementInput)


class MeterIngestRequest(BaseModel):
    """Request body for POST /api/machines/{machine_id}/meters."""
    readings: list[MeterReadingInput] = Field(..., min_length=1, max_length=1000)


class MeterIngestResponse(BaseModel):
    """Response for POST /api/machines/{machine_id}/meters."""
    machine_id: str
    recorded: int


def _machine_response(machine: Machine) -> MachineResponse:
    return MachineResponse(
        id=str(machine.id),
        name=machine.display_name,
        serial_number=machine.serial_number,
        custom_name=machine.custom_name,
        game=machine.game,
        location_id=machine.location_id,
        collection_meters=machine.collection_meters,
        collection_time=machine.collection_time,
        previous_collection_time=machine.previous_collection_time,
        collection_meters_history=machine.collection_meters_history,
    )


# ---------------------------------------------------------------------------
# POST /api/machines
# ---------------------------------------------------------------------------

@router.post(
    "",
    response_model=MachineResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a machine at a location",
)
async def create_machine(
    body: MachineCreateRequest,
    admin: dict[str, Any] = Depends(get_current_admin),
) -> MachineResponse:
    """The opening meters become the machine's collection meters, i.e. the
    previous meters of its first collection."""
    machine = await _get_service().create_machine(admin["username"], body.model_dump())
    return _machine_response(machine)


# ---------------------------------------------------------------------------
# GET /api/machines/{machine_id}
# ---------------------------------------------------------------------------

@router.get("/{machine_id}", response_model=MachineResponse)
async def get_machine(
    machine_id: str = Path(...),
    caller: dict[str, Any] = Depends(get_admin_or_collector),
) -> MachineResponse:
    machine = await _get_service().get_machine(caller, machine_id)
    return _machine_response(machine)


# ---------------------------------------------------------------------------
# POST /api/machines/{machine_id}/meters
# ---------------------------------------------------------------------------

@router.post(
    "/{machine_id}/meters",
    response_model=MeterIngestResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Record SAS meter readings",
)
@rate_limit("meter_ingest", lambda request: request.path_params.get("machine_id", ""))
async def ingest_meters(
    request: Request,
    body: MeterIngestRequest,
    machine_id: str = Path(...),
    admin: dict[str, Any] = Depends(get_current_admin),
) -> MeterIngestResponse:
    """Each reading carries the movement since the machine's previous
    reading; SAS metrics sum them over a collection window."""
    readings = await _get_service().record_meter_readings(
        machine_id, [reading.model_dump() for reading in body.readings]
    )
    return MeterIngestResponse(machine_id=machine_id, recorded=len(readings))
