"""Admin route handlers.

Endpoints:
    POST   /api/admin/collectors                             -- Create a collector (returns token).
    GET    /api/admin/collectors                             -- List collectors.
    PUT    /api/admin/collectors/{collector_id}/locations    -- Replace assigned locations.
    DELETE /api/admin/collectors/{collector_id}              -- Deactivate a collector.
    GET    /api/admin/stats                                  -- Dashboard statistics.
    GET    /api/admin/activity                               -- Recent activity log.
"""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, Path, Query, status
from pydantic import BaseModel, EmailStr, Field

from collectdesk.auth.dependencies import get_current_admin
from collectdesk.dal.activity_dal import ActivityDAL
from collectdesk.dal.collection_reports_dal import CollectionReportDAL
from collectdesk.dal.collections_dal import CollectionDAL
from collectdesk.dal.collectors_dal import CollectorDAL
from collectdesk.dal.database import get_database
from collectdesk.dal.locations_dal import LocationDAL
from collectdesk.dal.machines_dal import MachineDAL
from collectdesk.models.collector import Collector
from collectdesk.models.common import ResourceType
from collectdesk.services.activity_service import ActivityService
from collectdesk.services.admin_service import AdminService

logger = logging.getLogger("collectdesk.routes.admin")

router = APIRouter(prefix="/admin", tags=["Admin"])


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _get_service() -> AdminService:
    """Build an AdminService wired to the current database."""
    db = get_database()
    return AdminService(
        collector_dal=CollectorDAL(db),
        location_dal=LocationDAL(db),
        machine_dal=MachineDAL(db),
        collection_dal=CollectionDAL(db),
        report_dal=CollectionReportDAL(db),
        activity_service=ActivityService(ActivityDAL(db)),
    )


# ---------------------------------------------------------------------------
# Pydantic request / response schemas
# ---------------------------------------------------------------------------

class CollectorCreateRequest(BaseModel):
    """Request body for POST /api/admin/collectors."""
    username: str = Field(..., min_length=1, max_length=50)
    email: Optional[EmailStr] = None
    first_name: Optional[str] = Field(None, max_length=80)
    last_name: Optional[str] = Field(None, max_length=80)
    phone: Optional[str] = Field(None, max_length=40)
    location_ids: list[str] = Field(default_factory=list)


class AssignLocationsRequest(BaseModel):
    """Request body for PUT /api/admin/collectors/{collector_id}/locations."""
    location_ids: list[str]


class CollectorInfo(BaseModel):
    """A collector in admin responses."""
    id: str
    username: str
    display_name: str
    email: Optional[str] = None
    assigned_location_ids: list[str]
    is_active: bool


class CollectorCreatedResponse(CollectorInfo):
    """Response for collector creation; the only time the token is shown."""
    collector_token: str


class StatsResponse(BaseModel):
    """Response for GET /api/admin/stats."""
    total_locations: int
    total_machines: int
    active_collectors: int
    total_reports: int
    total_collections: int
    open_collections: int


def _collector_info(collector: Collector) -> dict[str, Any]:
    return {
        "id": str(collector.id),
        "username": collector.username,
        "display_name": collector.display_name,
        "email": collector.email,
        "assigned_location_ids": collector.assigned_location_ids,
        "is_active": collector.is_active,
    }


# ---------------------------------------------------------------------------
# Collectors
# ---------------------------------------------------------------------------

@router.post(
    "/collectors",
    response_model=CollectorCreatedResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_collector(
    body: CollectorCreateRequest,
    admin: dict[str, Any] = Depends(get_current_admin),
) -> CollectorCreatedResponse:
    collector = await _get_service().create_collector(
        actor=admin["username"],
        username=body.username,
        email=body.email,
        first_name=body.first_name,
        last_name=body.last_name,
        phone=body.phone,
        location_ids=body.location_ids,
    )
    return CollectorCreatedResponse(
        **_collector_info(collector), collector_token=collector.collector_token
    )


@router.get("/collectors", response_model=list[CollectorInfo])
async def list_collectors(
    include_inactive: bool = Query(False),
    admin: dict[str, Any] = Depends(get_current_admin),
) -> list[CollectorInfo]:
    collectors = await _get_service().list_collectors(include_inactive=include_inactive)
    return [CollectorInfo(**_collector_info(c)) for c in collectors]


@router.put("/collectors/{collector_id}/locations", response_model=CollectorInfo)
async def assign_locations(
    body: AssignLocationsRequest,
    collector_id: str = Path(...),
    admin: dict[str, Any] = Depends(get_current_admin),
) -> CollectorInfo:
    collector = await _get_service().assign_locations(
        admin["username"], collector_id, body.location_ids
    )
    return CollectorInfo(**_collector_info(collector))


@router.delete("/collectors/{collector_id}", response_model=CollectorInfo)
async def deactivate_collector(
    collector_id: str = Path(...),
    admin: dict[str, Any] = Depends(get_current_admin),
) -> CollectorInfo:
    collector = await _get_service().deactivate_collector(admin["username"], collector_id)
    return CollectorInfo(**_collector_info(collector))


# ---------------------------------------------------------------------------
# Stats and activity
# ---------------------------------------------------------------------------

@router.get("/stats", response_model=StatsResponse)
async def get_stats(
    admin: dict[str, Any] = Depends(get_current_admin),
) -> StatsResponse:
    return StatsResponse(**await _get_service().get_dashboard_stats())


@router.get("/activity")
async def get_activity(
    resource: Optional[ResourceType] = Query(None),
    resource_id: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    admin: dict[str, Any] = Depends(get_current_admin),
) -> list[dict[str, Any]]:
    service = ActivityService(ActivityDAL(get_database()))
    return await service.list_recent(resource=resource, resource_id=resource_id, limit=limit)
