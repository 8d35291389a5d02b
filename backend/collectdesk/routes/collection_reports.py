"""Collection report route handlers.

Endpoints:
    GET    /api/collection-reports                       -- Report table rows.
    POST   /api/collection-reports                       -- Finalize a location visit.
    GET    /api/collection-reports/monthly               -- Monthly summary per location.
    GET    /api/collection-reports/check-all-issues      -- Check a report or every report of a machine.
    POST   /api/collection-reports/fix-all-sas-times     -- Repair SAS windows on all reports (admin).
    POST   /api/collection-reports/fix-machine-history   -- Rebuild a machine's history (admin).
    GET    /api/collection-report/{report_id}            -- Report with collections and metrics.
    PUT    /api/collection-report/{report_id}            -- Edit financial inputs.
    DELETE /api/collection-report/{report_id}            -- Delete and revert machine meters (admin).
    GET    /api/collection-report/{report_id}/issues     -- Consistency check.
    POST   /api/collection-report/{report_id}/fix        -- Repair detected issues (admin).
"""

import logging
from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Query, Request, status
from pydantic import BaseModel, Field

from collectdesk.auth.dependencies import get_admin_or_collector, get_current_admin
from collectdesk.dal.activity_dal import ActivityDAL
from collectdesk.dal.collection_reports_dal import CollectionReportDAL
from collectdesk.dal.collections_dal import CollectionDAL
from collectdesk.dal.collectors_dal import CollectorDAL
from collectdesk.dal.database import get_database
from collectdesk.dal.locations_dal import LocationDAL
from collectdesk.dal.machines_dal import MachineDAL
from collectdesk.dal.meters_dal import MeterDAL
from collectdesk.middleware.rate_limit import rate_limiter
from collectdesk.models.collection_report import CollectionReport
from collectdesk.models.common import AuthType, UTCDateTime
from collectdesk.routes.collections import CollectionResponse, collection_response
from collectdesk.services.activity_service import ActivityService
from collectdesk.services.issue_checker import IssueChecker
from collectdesk.services.report_service import ReportService
from collectdesk.services.sas_service import SasService

logger = logging.getLogger("collectdesk.routes.collection_reports")

router = APIRouter(prefix="/collection-reports", tags=["Collection Reports"])
report_router = APIRouter(prefix="/collection-report", tags=["Collection Reports"])


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _get_service() -> ReportService:
    """Build a ReportService wired to the current database."""
    db = get_database()
    return ReportService(
        report_dal=CollectionReportDAL(db),
        collection_dal=CollectionDAL(db),
        machine_dal=MachineDAL(db),
        location_dal=LocationDAL(db),
        collector_dal=CollectorDAL(db),
        activity_service=ActivityService(ActivityDAL(db)),
    )


def _get_issue_checker() -> IssueChecker:
    """Build an IssueChecker wired to the current database."""
    db = get_database()
    collection_dal = CollectionDAL(db)
    machine_dal = MachineDAL(db)
    return IssueChecker(
        report_dal=CollectionReportDAL(db),
        collection_dal=collection_dal,
        machine_dal=machine_dal,
        sas_service=SasService(collection_dal, machine_dal, MeterDAL(db)),
        report_service=_get_service(),
        activity_service=ActivityService(ActivityDAL(db)),
    )


# ---------------------------------------------------------------------------
# Pydantic request / response schemas
# ---------------------------------------------------------------------------

class ReportCreateRequest(BaseModel):
    """Request body for POST /api/collection-reports.

    Totals are never accepted from the client; they are computed from the
    stored collections.
    """
    location_id: str
    timestamp: Optional[UTCDateTime] = None
    collection_ids: Optional[list[str]] = Field(
        None, description="Defaults to every open collection of the location."
    )
    taxes: float = Field(0, ge=0)
    variance: float = 0
    variance_reason: Optional[str] = Field(None, max_length=500)
    advance: float = Field(0, ge=0)
    previous_balance: Optional[float] = Field(
        None, description="Defaults to the balance carried by the location."
    )
    amount_collected: float = Field(0, ge=0)
    base_balance_correction: float = 0
    balance_correction_reason: Optional[str] = Field(None, max_length=500)
    reason_for_shortage_payment: Optional[str] = Field(None, max_length=500)


class ReportUpdateRequest(BaseModel):
    """Request body for PUT /api/collection-report/{report_id}."""
    timestamp: Optional[UTCDateTime] = None
    taxes: Optional[float] = Field(None, ge=0)
    variance: Optional[float] = None
    variance_reason: Optional[str] = Field(None, max_length=500)
    advance: Optional[float] = Field(None, ge=0)
    previous_balance: Optional[float] = None
    amount_collected: Optional[float] = Field(None, ge=0)
    base_balance_correction: Optional[float] = None
    balance_correction_reason: Optional[str] = Field(None, max_length=500)
    reason_for_shortage_payment: Optional[str] = Field(None, max_length=500)


class ReportResponse(BaseModel):
    """A collection report as returned by the API."""
    id: str
    location_report_id: str
    location_id: str
    location_name: str
    collector: str
    timestamp: UTCDateTime
    taxes: float
    variance: float
    variance_reason: Optional[str] = None
    advance: float
    previous_balance: float
    profit_share: int
    amount_collected: float
    base_balance_correction: float
    balance_correction_reason: Optional[str] = None
    reason_for_shortage_payment: Optional[str] = None
    total_drop: float
    total_cancelled: float
    total_gross: float
    total_sas_gross: float
    variation: float
    partner_profit: float
    amount_to_collect: float
    amount_uncollected: float
    current_balance: float
    balance_correction: float
    machines_collected: int


class ReportRow(BaseModel):
    """A row of the report table."""
    location_report_id: str
    location_id: str
    location_name: str
    collector: str
    collector_name: str
    timestamp: UTCDateTime
    machines: str
    gross: float
    sas_gross: float
    variation: float
    amount_to_collect: float
    collected: float
    uncollected: float
    balance: float
    location_revenue: float


class ReportMetrics(BaseModel):
    """Location metrics shown with a report."""
    machines_collected: int
    machines_total: int
    machines: str
    gross: float
    sas_gross: float
    variation: float


class ReportDetailResponse(BaseModel):
    """Response for GET /api/collection-report/{report_id}."""
    report: ReportResponse
    collections: list[CollectionResponse]
    metrics: ReportMetrics


class MonthlyTotals(BaseModel):
    """Summed totals for the monthly summary."""
    drop: float
    cancelled_credits: float
    gross: float
    sas_gross: float
    report_count: int


class MonthlyLocationTotals(MonthlyTotals):
    """Monthly totals of one location."""
    location_name: str


class MonthlySummaryResponse(BaseModel):
    """Response for GET /api/collection-reports/monthly."""
    summary: MonthlyTotals
    details: list[MonthlyLocationTotals]


def report_response(report: CollectionReport) -> ReportResponse:
    """Convert a CollectionReport model into its API representation."""
    data = report.model_dump(exclude={"created_at", "updated_at"})
    data["id"] = str(report.id)
    data["variation"] = report.variation
    return ReportResponse(**data)


# ---------------------------------------------------------------------------
# GET /api/collection-reports
# ---------------------------------------------------------------------------

@router.get(
    "",
    response_model=list[ReportRow],
    summary="List collection reports",
)
async def list_reports(
    location_id: Optional[str] = Query(None),
    location_name: Optional[str] = Query(None),
    collector: Optional[str] = Query(None),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    time_period: Optional[str] = Query(
        None, description="Today, Yesterday, 7d, 30d or All (ignored with explicit dates)."
    ),
    limit: int = Query(100, ge=1, le=500),
    skip: int = Query(0, ge=0),
    caller: dict[str, Any] = Depends(get_admin_or_collector),
) -> list[ReportRow]:
    rows = await _get_service().list_reports(
        caller,
        location_id=location_id,
        location_name=location_name,
        collector=collector,
        start_date=start_date,
        end_date=end_date,
        time_period=time_period,
        limit=limit,
        skip=skip,
    )
    return [ReportRow(**row) for row in rows]


# ---------------------------------------------------------------------------
# POST /api/collection-reports
# ---------------------------------------------------------------------------

@router.post(
    "",
    response_model=ReportResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Finalize a location visit into a collection report",
)
async def create_report(
    request: Request,
    body: ReportCreateRequest,
    caller: dict[str, Any] = Depends(get_admin_or_collector),
) -> ReportResponse:
    """Link the visit's collections to a new report, move every machine's
    collection meters forward, and carry the new balance to the location.
    """
    rate_limiter.check_rate_limit(request, "report_create")
    inputs = body.model_dump(exclude={"location_id", "timestamp", "collection_ids"})
    report = await _get_service().create_report(
        caller,
        location_id=body.location_id,
        inputs=inputs,
        collection_ids=body.collection_ids,
        timestamp=body.timestamp,
    )
    return report_response(report)


# ---------------------------------------------------------------------------
# GET /api/collection-reports/monthly
# ---------------------------------------------------------------------------

@router.get("/monthly", response_model=MonthlySummaryResponse)
async def monthly_summary(
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    location_name: Optional[str] = Query(None),
    caller: dict[str, Any] = Depends(get_admin_or_collector),
) -> MonthlySummaryResponse:
    """Sum drop, cancelled credits, gross and SAS gross over a period,
    overall and per location."""
    result = await _get_service().monthly_summary(
        caller, start_date=start_date, end_date=end_date, location_name=location_name
    )
    return MonthlySummaryResponse(**result)


# ---------------------------------------------------------------------------
# GET /api/collection-reports/check-all-issues
# ---------------------------------------------------------------------------

@router.get("/check-all-issues")
async def check_all_issues(
    report_id: Optional[str] = Query(None),
    machine_id: Optional[str] = Query(None),
    caller: dict[str, Any] = Depends(get_admin_or_collector),
) -> dict[str, Any]:
    """Check one report, or every report a machine was collected in.

    With a machine_id only that machine's collections are checked, along
    with its history and meters.
    """
    if report_id:
        return await _get_issue_checker().check_report(caller, report_id)
    if machine_id:
        return await _get_issue_checker().check_machine(caller, machine_id)
    raise HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail="Either report_id or machine_id is required",
    )


# ---------------------------------------------------------------------------
# POST /api/collection-reports/fix-all-sas-times
# ---------------------------------------------------------------------------

@router.post("/fix-all-sas-times")
async def fix_all_sas_times(
    admin: dict[str, Any] = Depends(get_current_admin),
) -> dict[str, Any]:
    caller = {"auth_type": AuthType.ADMIN, "username": admin["username"], "location_ids": None}
    return await _get_issue_checker().fix_all_sas_times(caller)


# ---------------------------------------------------------------------------
# POST /api/collection-reports/fix-machine-history
# ---------------------------------------------------------------------------

@router.post("/fix-machine-history")
async def fix_machine_history(
    machine_id: str = Query(...),
    admin: dict[str, Any] = Depends(get_current_admin),
) -> dict[str, Any]:
    """Rebuild the machine's history from its finalized collections and
    reset its meters to the latest one."""
    caller = {"auth_type": AuthType.ADMIN, "username": admin["username"], "location_ids": None}
    return await _get_issue_checker().fix_machine_history(caller, machine_id)


# ---------------------------------------------------------------------------
# GET /api/collection-report/{report_id}
# ---------------------------------------------------------------------------

@report_router.get("/{report_id}", response_model=ReportDetailResponse)
async def get_report(
    report_id: str = Path(..., description="location_report_id or document id"),
    caller: dict[str, Any] = Depends(get_admin_or_collector),
) -> ReportDetailResponse:
    detail = await _get_service().get_report_detail(caller, report_id)
    return ReportDetailResponse(
        report=report_response(detail["report"]),
        collections=[collection_response(c) for c in detail["collections"]],
        metrics=ReportMetrics(**detail["metrics"]),
    )


# ---------------------------------------------------------------------------
# PUT /api/collection-report/{report_id}
# ---------------------------------------------------------------------------

@report_router.put("/{report_id}", response_model=ReportResponse)
async def update_report(
    body: ReportUpdateRequest,
    report_id: str = Path(...),
    caller: dict[str, Any] = Depends(get_admin_or_collector),
) -> ReportResponse:
    """Edit financial inputs; totals are recomputed from the collections."""
    report = await _get_service().update_report(
        caller, report_id, body.model_dump(exclude_unset=True)
    )
    return report_response(report)


# ---------------------------------------------------------------------------
# DELETE /api/collection-report/{report_id}
# ---------------------------------------------------------------------------

@report_router.delete("/{report_id}")
async def delete_report(
    report_id: str = Path(...),
    admin: dict[str, Any] = Depends(get_current_admin),
) -> dict[str, Any]:
    caller = {"auth_type": AuthType.ADMIN, "username": admin["username"], "location_ids": None}
    result = await _get_service().delete_report(caller, report_id)
    return {"deleted": True, **result}


# ---------------------------------------------------------------------------
# GET /api/collection-report/{report_id}/issues
# ---------------------------------------------------------------------------

@report_router.get("/{report_id}/issues")
async def check_report_issues(
    report_id: str = Path(...),
    caller: dict[str, Any] = Depends(get_admin_or_collector),
) -> dict[str, Any]:
    return await _get_issue_checker().check_report(caller, report_id)


# ---------------------------------------------------------------------------
# POST /api/collection-report/{report_id}/fix
# ---------------------------------------------------------------------------

@report_router.post("/{report_id}/fix")
async def fix_report_issues(
    report_id: str = Path(...),
    admin: dict[str, Any] = Depends(get_current_admin),
) -> dict[str, Any]:
    """Recompute previous meters, movements, SAS windows, machine history
    and totals, then return what is still inconsistent."""
    caller = {"auth_type": AuthType.ADMIN, "username": admin["username"], "location_ids": None}
    return await _get_issue_checker().fix_report(caller, report_id)
