"""Collection report business logic service.

Finalizes location visits into collection reports, keeps machine meters,
machine history and location balances in step with the reports, and
produces the report list and monthly summaries. Sits between route
handlers and the DAL.
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Optional

from fastapi import HTTPException, status

from collectdesk.auth.dependencies import require_location_access
from collectdesk.dal.collection_reports_dal import CollectionReportDAL
from collectdesk.dal.collections_dal import CollectionDAL
from collectdesk.dal.collectors_dal import CollectorDAL
from collectdesk.dal.locations_dal import LocationDAL
from collectdesk.dal.machines_dal import MachineDAL
from collectdesk.models.collection import Collection
from collectdesk.models.collection_report import CollectionReport
from collectdesk.models.common import ActivityAction, ResourceType, utcnow
from collectdesk.models.machine import CollectionHistoryEntry
from collectdesk.services.activity_service import ActivityService
from collectdesk.services.movement_math import (
    compute_balance,
    compute_report_totals,
    round2,
)

logger = logging.getLogger("collectdesk.services.report")

# Financial inputs a collector may enter or edit on a report.
REPORT_INPUT_FIELDS = (
    "taxes",
    "variance",
    "variance_reason",
    "advance",
    "previous_balance",
    "amount_collected",
    "base_balance_correction",
    "balance_correction_reason",
    "reason_for_shortage_payment",
)

TIME_PERIODS = ("Today", "Yesterday", "7d", "30d", "All")


def totals_for_report(
    report: CollectionReport,
    collections: list[Collection],
) -> dict[str, Any]:
    """Compute every derived report field from its inputs and collections.

    Returns:
        Dict of CollectionReport field names to values, ready to be set on
        the report.
    """
    totals = compute_report_totals(
        [c.movement.model_dump() for c in collections],
        taxes=report.taxes,
        variance=report.variance,
        advance=report.advance,
        previous_balance=report.previous_balance,
        profit_share=report.profit_share,
    )
    balance = compute_balance(
        totals["amount_to_collect"],
        report.amount_collected,
        report.base_balance_correction,
    )
    return {
        "total_drop": totals["drop"],
        "total_cancelled": totals["cancelled_credits"],
        "total_gross": totals["gross"],
        "total_sas_gross": round2(sum(c.sas_meters.gross for c in collections)),
        "partner_profit": totals["partner_profit"],
        "amount_to_collect": totals["amount_to_collect"],
        "current_balance": balance["current_balance"],
        "amount_uncollected": balance["amount_uncollected"],
        "balance_correction": balance["balance_correction"],
        "machines_collected": len(collections),
    }


def resolve_time_period(
    time_period: Optional[str],
    now: Optional[datetime] = None,
) -> tuple[Optional[datetime], Optional[datetime]]:
    """Translate a named period into a ``(start, end)`` range in UTC."""
    if time_period is None or time_period == "All":
        return None, None
    if time_period not in TIME_PERIODS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"time_period must be one of {', '.join(TIME_PERIODS)}",
        )
    now = now or utcnow()
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    if time_period == "Today":
        return midnight, now
    if time_period == "Yesterday":
        return midnight - timedelta(days=1), midnight - timedelta(microseconds=1)
    days = 7 if time_period == "7d" else 30
    return now - timedelta(days=days), now


class ReportService:
    """Service layer for collection reports."""

    def __init__(
        self,
        report_dal: CollectionReportDAL,
        collection_dal: CollectionDAL,
        machine_dal: MachineDAL,
        location_dal: LocationDAL,
        collector_dal: CollectorDAL,
        activity_service: ActivityService,
    ) -> None:
        self._report_dal = report_dal
        self._collection_dal = collection_dal
        self._machine_dal = machine_dal
        self._location_dal = location_dal
        self._collector_dal = collector_dal
        self._activity = activity_service

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _require_report(
        self, caller: dict[str, Any], report_id: str
    ) -> CollectionReport:
        report = await self._report_dal.get(report_id)
        if report is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Collection report not found",
            )
        require_location_access(caller, report.location_id)
        return report

    async def finalize_collections(
        self,
        collections: list[Collection],
        location_report_id: str,
    ) -> None:
        """Mark collections completed and move their machines' meters.

        Each machine gets the collected meters as its collection meters,
        its collection time shifted, and a history entry for the report.
        """
        if not collections:
            return
        await self._collection_dal.mark_completed(
            [c.id for c in collections], location_report_id
        )
        for collection in collections:
            machine = await self._machine_dal.get_by_id(collection.machine_id)
            if machine is None:
                logger.error(
                    "Machine %s of collection %s no longer exists; meters not updated",
                    collection.machine_id, collection.id,
                )
                continue
            await self._machine_dal.set_collection_meters(
                machine.id,
                collection.meters_in,
                collection.meters_out,
                collection_time=collection.timestamp,
                previous_collection_time=machine.collection_time,
            )
            if machine.history_for_report(location_report_id) is not None:
                await self._machine_dal.pull_history(machine.id, location_report_id)
            await self._machine_dal.push_history(
                machine.id,
                CollectionHistoryEntry(
                    id=collection.id,
                    meters_in=collection.meters_in,
                    meters_out=collection.meters_out,
                    prev_meters_in=collection.prev_in,
                    prev_meters_out=collection.prev_out,
                    timestamp=collection.timestamp,
                    location_report_id=location_report_id,
                ),
            )

    async def refresh_totals(self, report: CollectionReport) -> CollectionReport:
        """Recompute a report's totals from its linked collections and store them."""
        collections = await self._collection_dal.list_by_report(report.location_report_id)
        fields = totals_for_report(report, collections)
        await self._report_dal.update(report.location_report_id, fields)
        return report.model_copy(update=fields)

    async def sync_location_balance(self, report: CollectionReport) -> None:
        """Carry the balance of the location's latest report onto the location."""
        latest = await self._report_dal.get_latest_for_location(report.location_id)
        if latest is None or latest.location_report_id != report.location_report_id:
            return
        await self._location_dal.record_collection(
            report.location_id, report.timestamp, report.current_balance
        )

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create_report(
        self,
        caller: dict[str, Any],
        location_id: str,
        inputs: dict[str, Any],
        collection_ids: Optional[list[str]] = None,
        timestamp: Optional[datetime] = None,
    ) -> CollectionReport:
        """Finalize a location visit into a collection report.

        Args:
            caller: Context from ``get_admin_or_collector``.
            location_id: The visited location.
            inputs: Financial inputs (see ``REPORT_INPUT_FIELDS``). A missing
                ``previous_balance`` defaults to the location's carried balance.
            collection_ids: Collections to include. Defaults to every
                in-progress collection of the location.
            timestamp: Report time. Defaults to now.

        Returns:
            The stored CollectionReport with server-computed totals.

        Raises:
            HTTPException 404: Location or collections not found.
            HTTPException 400: No collections, or collections of another location.
            HTTPException 409: A collection was already finalized.
        """
        location = await self._location_dal.get_by_id(location_id)
        if location is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Location not found",
            )
        require_location_access(caller, location.id)

        if collection_ids is None:
            collections = await self._collection_dal.list_in_progress(location.id)
        else:
            collections = await self._collection_dal.get_by_ids(collection_ids)
            if len(collections) != len(set(collection_ids)):
                raise HTTPException(
                    status_code=status.HTTP_404_NOT_FOUND,
                    detail="One or more collections not found",
                )

        if not collections:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="A collection report needs at least one machine collection",
            )

        seen_machines: set[str] = set()
        for collection in collections:
            if collection.location_id != location.id:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail=f"Collection {collection.id} belongs to another location",
                )
            if not collection.in_progress:
                raise HTTPException(
                    status_code=status.HTTP_409_CONFLICT,
                    detail=f"Collection {collection.id} is already part of a report",
                )
            if collection.machine_id in seen_machines:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail=f"Machine {collection.machine_name} is collected more than once",
                )
            seen_machines.add(collection.machine_id)

        values = {key: inputs[key] for key in REPORT_INPUT_FIELDS if inputs.get(key) is not None}
        values.setdefault("previous_balance", location.collection_balance)

        report = CollectionReport(
            location_report_id=str(uuid.uuid4()),
            location_id=location.id,
            location_name=location.name,
            collector=caller["username"],
            timestamp=timestamp or utcnow(),
            profit_share=location.profit_share,
            **values,
        )
        report = report.model_copy(update=totals_for_report(report, collections))
        report = await self._report_dal.create(report)

        await self.finalize_collections(collections, report.location_report_id)
        await self._location_dal.record_collection(
            location.id, report.timestamp, report.current_balance
        )
        await self._activity.record(
            actor=caller["username"],
            action=ActivityAction.CREATE,
            resource=ResourceType.COLLECTION_REPORT,
            resource_id=report.location_report_id,
            details=(
                f"Report for {location.name}: {report.machines_collected} machines, "
                f"amount to collect {report.amount_to_collect}"
            ),
        )
        return report

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    async def get_report_detail(
        self, caller: dict[str, Any], report_id: str
    ) -> dict[str, Any]:
        """Return a report with its collections and location metrics."""
        report = await self._require_report(caller, report_id)
        collections = await self._collection_dal.list_by_report(report.location_report_id)
        total_machines = await self._machine_dal.count_by_location(report.location_id)
        gross = round2(sum(c.movement.gross for c in collections))
        sas_gross = round2(sum(c.sas_meters.gross for c in collections))
        return {
            "report": report,
            "collections": collections,
            "metrics": {
                "machines_collected": len(collections),
                "machines_total": total_machines,
                "machines": f"{len(collections)}/{total_machines}",
                "gross": gross,
                "sas_gross": sas_gross,
                "variation": round2(gross - sas_gross),
            },
        }

    async def _collector_names(self, usernames: set[str]) -> dict[str, str]:
        collectors = await self._collector_dal.list_by_usernames(sorted(usernames))
        return {c.username: c.display_name for c in collectors}

    async def list_reports(
        self,
        caller: dict[str, Any],
        location_id: Optional[str] = None,
        location_name: Optional[str] = None,
        collector: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        time_period: Optional[str] = None,
        limit: int = 100,
        skip: int = 0,
    ) -> list[dict[str, Any]]:
        """List report rows for the reports table, newest first.

        An explicit ``start_date``/``end_date`` range wins over ``time_period``.
        """
        location_ids = caller.get("location_ids")
        if location_id is not None:
            if location_ids is not None and location_id not in location_ids:
                return []
            location_ids = [location_id]
        if location_ids is not None and not location_ids:
            return []

        if start_date is None and end_date is None:
            start_date, end_date = resolve_time_period(time_period)

        reports = await self._report_dal.query(
            location_ids=location_ids,
            location_name=location_name,
            collector=collector,
            start=start_date,
            end=end_date,
            limit=limit,
            skip=skip,
        )
        names = await self._collector_names({r.collector for r in reports})
        machine_totals: dict[str, int] = {}

        rows: list[dict[str, Any]] = []
        for report in reports:
            if report.location_id not in machine_totals:
                machine_totals[report.location_id] = (
                    await self._machine_dal.count_by_location(report.location_id)
                )
            total = machine_totals[report.location_id]
            rows.append({
                "location_report_id": report.location_report_id,
                "location_id": report.location_id,
                "location_name": report.location_name,
                "collector": report.collector,
                "collector_name": names.get(report.collector, report.collector),
                "timestamp": report.timestamp,
                "machines": f"{report.machines_collected}/{total}",
                "gross": report.total_gross,
                "sas_gross": report.total_sas_gross,
                "variation": report.variation,
                "amount_to_collect": report.amount_to_collect,
                "collected": report.amount_collected,
                "uncollected": report.amount_uncollected,
                "balance": report.current_balance,
                "location_revenue": report.partner_profit,
            })
        return rows

    async def monthly_summary(
        self,
        caller: dict[str, Any],
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        location_name: Optional[str] = None,
    ) -> dict[str, Any]:
        """Sum report totals overall and per location name."""
        location_ids = caller.get("location_ids")
        if location_ids is not None and not location_ids:
            rows: list[dict[str, Any]] = []
        else:
            rows = await self._report_dal.summarize_by_location(
                start=start_date,
                end=end_date,
                location_name=location_name,
                location_ids=location_ids,
            )

        details = [
            {
                "location_name": row["location_name"],
                "drop": round2(row["drop"]),
                "cancelled_credits": round2(row["cancelled_credits"]),
                "gross": round2(row["gross"]),
                "sas_gross": round2(row["sas_gross"]),
                "report_count": row["report_count"],
            }
            for row in rows
        ]
        summary = {
            key: round2(sum(d[key] for d in details))
            for key in ("drop", "cancelled_credits", "gross", "sas_gross")
        }
        summary["report_count"] = sum(d["report_count"] for d in details)
        return {"summary": summary, "details": details}

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    async def update_report(
        self,
        caller: dict[str, Any],
        report_id: str,
        changes: dict[str, Any],
    ) -> CollectionReport:
        """Edit a report's financial inputs and recompute its totals.

        Collections attached to the report but not yet finalized are
        finalized first. When the report is the location's latest, the
        location's carried balance follows the new current balance.
        """
        report = await self._require_report(caller, report_id)

        # Reasons may be cleared with None; amounts may not.
        updates = {
            key: changes[key]
            for key in REPORT_INPUT_FIELDS
            if key in changes and (changes[key] is not None or "reason" in key)
        }
        if changes.get("timestamp") is not None:
            updates["timestamp"] = changes["timestamp"]
        if updates:
            await self._report_dal.update(report.location_report_id, updates)
            report = report.model_copy(update=updates)

        collections = await self._collection_dal.list_by_report(report.location_report_id)
        pending = [c for c in collections if not c.is_completed]
        if pending:
            logger.info(
                "Finalizing %d attached collections on report %s",
                len(pending), report.location_report_id,
            )
            await self.finalize_collections(pending, report.location_report_id)

        report = await self.refresh_totals(report)
        await self.sync_location_balance(report)
        await self._activity.record(
            actor=caller["username"],
            action=ActivityAction.UPDATE,
            resource=ResourceType.COLLECTION_REPORT,
            resource_id=report.location_report_id,
            details=f"Updated report for {report.location_name}",
            changes=updates,
        )
        return report

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    async def delete_report(self, caller: dict[str, Any], report_id: str) -> dict[str, Any]:
        """Delete a report and undo its effect on machines and the location.

        Machines get back the meters they had before the report, their
        history entries for the report are removed, and the report's
        collections are deleted with it.
        """
        report = await self._require_report(caller, report_id)
        collections = await self._collection_dal.list_by_report(report.location_report_id)

        for collection in collections:
            machine = await self._machine_dal.get_by_id(collection.machine_id)
            if machine is None:
                continue
            if collection.is_completed:
                if machine.collection_time == collection.timestamp:
                    restore_time = machine.previous_collection_time
                    earlier = None
                    if restore_time is not None:
                        earlier = await self._collection_dal.get_previous_completed(
                            machine.id, before=restore_time
                        )
                    await self._machine_dal.set_collection_state(
                        machine.id,
                        collection.prev_in,
                        collection.prev_out,
                        collection_time=restore_time,
                        previous_collection_time=earlier.timestamp if earlier else None,
                    )
                else:
                    await self._machine_dal.set_collection_meters(
                        machine.id, collection.prev_in, collection.prev_out
                    )
            await self._machine_dal.pull_history(machine.id, report.location_report_id)

        deleted_collections = await self._collection_dal.delete_by_report(
            report.location_report_id
        )
        await self._report_dal.delete(report.location_report_id)

        latest = await self._report_dal.get_latest_for_location(report.location_id)
        if latest is None or latest.timestamp <= report.timestamp:
            await self._location_dal.update(
                report.location_id,
                {
                    "collection_balance": report.previous_balance,
                    "previous_collection_time": latest.timestamp if latest else None,
                },
            )

        await self._activity.record(
            actor=caller["username"],
            action=ActivityAction.DELETE,
            resource=ResourceType.COLLECTION_REPORT,
            resource_id=report.location_report_id,
            details=(
                f"Deleted report for {report.location_name} "
                f"with {deleted_collections} collections"
            ),
        )
        return {
            "location_report_id": report.location_report_id,
            "deleted_collections": deleted_collections,
        }
