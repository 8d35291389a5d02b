"""Collector profile route handlers.

Endpoints:
    GET /api/profile  -- The authenticated collector's profile.
    PUT /api/profile  -- Edit username, email, name or phone.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, EmailStr, Field

from collectdesk.auth.dependencies import get_current_collector
from collectdesk.dal.activity_dal import ActivityDAL
from collectdesk.dal.collection_reports_dal import CollectionReportDAL
from collectdesk.dal.collections_dal import CollectionDAL
from collectdesk.dal.collectors_dal import CollectorDAL
from collectdesk.dal.database import get_database
from collectdesk.dal.locations_dal import LocationDAL
from collectdesk.dal.machines_dal import MachineDAL
from collectdesk.models.collector import Collector
from collectdesk.services.activity_service import ActivityService
from collectdesk.services.admin_service import AdminService

logger = logging.getLogger("collectdesk.routes.profile")

router = APIRouter(prefix="/profile", tags=["Profile"])


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

class ProfileResponse(BaseModel):
    """A collector's own profile."""
    id: str
    username: str
    display_name: str
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    assigned_location_ids: list[str]


class ProfileUpdateRequest(BaseModel):
    """Request body for PUT /api/profile. Omitted fields are left unchanged."""
    username: Optional[str] = Field(None, max_length=50)
    email: Optional[EmailStr] = None
    first_name: Optional[str] = Field(None, max_length=80)
    last_name: Optional[str] = Field(None, max_length=80)
    phone: Optional[str] = Field(None, max_length=40)


def profile_response(collector: Collector) -> ProfileResponse:
    """Convert a Collector into its profile representation."""
    return ProfileResponse(
        id=str(collector.id),
        username=collector.username,
        display_name=collector.display_name,
        email=collector.email,
        first_name=collector.profile.first_name,
        last_name=collector.profile.last_name,
        phone=collector.profile.phone,
        assigned_location_ids=collector.assigned_location_ids,
    )


# ---------------------------------------------------------------------------
# GET /api/profile
# ---------------------------------------------------------------------------

@router.get("", response_model=ProfileResponse)
async def get_profile(
    collector: Collector = Depends(get_current_collector),
) -> ProfileResponse:
    return profile_response(collector)


# ---------------------------------------------------------------------------
# PUT /api/profile
# ---------------------------------------------------------------------------

@router.put("", response_model=ProfileResponse)
async def update_profile(
    body: ProfileUpdateRequest,
    collector: Collector = Depends(get_current_collector),
) -> ProfileResponse:
    """Username cannot be emptied; email must be valid when given."""
    updated = await _get_service().update_profile(
        collector, body.model_dump(exclude_unset=True)
    )
    return profile_response(updated)
