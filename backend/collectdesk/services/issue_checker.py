"""Collection report consistency checks and repairs.

A finalized report can drift from its collections when meters are edited
after the fact or when an earlier report is deleted. The checker flags
each kind of drift; the fixer recomputes everything derivable and writes
it back. Machines are checked through every report they were collected in.
"""

import logging
from typing import Any, Optional

from fastapi import HTTPException, status

from collectdesk.auth.dependencies import require_location_access
from collectdesk.config import settings
from collectdesk.dal.collection_reports_dal import CollectionReportDAL
from collectdesk.dal.collections_dal import CollectionDAL
from collectdesk.dal.machines_dal import MachineDAL
from collectdesk.models.collection import Collection, Movement
from collectdesk.models.collection_report import CollectionReport
from collectdesk.models.common import ActivityAction, IssueType, ResourceType
from collectdesk.models.machine import CollectionHistoryEntry, Machine
from collectdesk.services.activity_service import ActivityService
from collectdesk.services.movement_math import compute_movement, movement_matches
from collectdesk.services.report_service import ReportService, totals_for_report
from collectdesk.services.sas_service import SasService

logger = logging.getLogger("collectdesk.services.issue_checker")

# Stored report fields compared against a fresh recomputation.
CHECKED_TOTALS = (
    "total_gross",
    "total_sas_gross",
    "partner_profit",
    "amount_to_collect",
    "current_balance",
)


def _issue(
    issue_type: IssueType,
    message: str,
    collection: Optional[Collection] = None,
    expected: Any = None,
    actual: Any = None,
    machine_name: Optional[str] = None,
) -> dict[str, Any]:
    if collection is not None:
        machine_name = collection.machine_name
    return {
        "type": str(issue_type),
        "collection_id": collection.id if collection else None,
        "machine_name": machine_name,
        "message": message,
        "expected": expected,
        "actual": actual,
    }


def _expected_movement(collection: Collection) -> dict[str, float]:
    return compute_movement(
        collection.meters_in,
        collection.meters_out,
        collection.prev_in,
        collection.prev_out,
        collection.ram_clear,
        collection.ram_clear_meters_in,
        collection.ram_clear_meters_out,
    )


def _history_entry(collection: Collection) -> CollectionHistoryEntry:
    return CollectionHistoryEntry(
        id=collection.id,
        meters_in=collection.meters_in,
        meters_out=collection.meters_out,
        prev_meters_in=collection.prev_in,
        prev_meters_out=collection.prev_out,
        timestamp=collection.timestamp,
        location_report_id=collection.location_report_id,
    )


def _sas_window_valid(collection: Collection) -> bool:
    start = collection.sas_meters.sas_start_time
    end = collection.sas_meters.sas_end_time
    return start is not None and end is not None and start < end


class IssueChecker:
    """Detects and repairs inconsistencies on collection reports and machines."""

    def __init__(
        self,
        report_dal: CollectionReportDAL,
        collection_dal: CollectionDAL,
        machine_dal: MachineDAL,
        sas_service: SasService,
        report_service: ReportService,
        activity_service: ActivityService,
    ) -> None:
        self._report_dal = report_dal
        self._collection_dal = collection_dal
        self._machine_dal = machine_dal
        self._sas = sas_service
        self._reports = report_service
        self._activity = activity_service

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

    async def _require_machine(self, caller: dict[str, Any], machine_id: str) -> Machine:
        machine = await self._machine_dal.get_by_id(machine_id)
        if machine is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Machine not found",
            )
        require_location_access(caller, machine.location_id)
        return machine

    async def _finalized_collections(self, machine_id: str) -> list[Collection]:
        """Completed collections of a machine, oldest first."""
        return await self._collection_dal.query(
            machine_id=machine_id, is_completed=True, descending=False
        )

    async def _actual_previous(self, collection: Collection) -> Optional[Collection]:
        return await self._collection_dal.get_previous_completed(
            collection.machine_id, before=collection.timestamp, exclude_id=collection.id
        )

    # ------------------------------------------------------------------
    # Check
    # ------------------------------------------------------------------

    async def _collection_issues(
        self, collection: Collection, location_report_id: str
    ) -> list[dict[str, Any]]:
        issues: list[dict[str, Any]] = []
        tolerance = settings.MOVEMENT_TOLERANCE

        expected = _expected_movement(collection)
        actual = collection.movement.model_dump()
        if not movement_matches(actual, expected):
            issues.append(_issue(
                IssueType.MOVEMENT_MISMATCH,
                "Stored movement does not match the meters",
                collection, expected, actual,
            ))

        previous = await self._actual_previous(collection)
        if previous is not None and (
            abs(previous.meters_in - collection.prev_in) > tolerance
            or abs(previous.meters_out - collection.prev_out) > tolerance
        ):
            issues.append(_issue(
                IssueType.PREV_METERS_MISMATCH,
                "Previous meters differ from the machine's previous collection",
                collection,
                {"prev_in": previous.meters_in, "prev_out": previous.meters_out},
                {"prev_in": collection.prev_in, "prev_out": collection.prev_out},
            ))

        if not _sas_window_valid(collection):
            issues.append(_issue(
                IssueType.INVALID_SAS_WINDOW,
                "SAS start time must be before SAS end time",
                collection,
                actual={
                    "sas_start_time": collection.sas_meters.sas_start_time,
                    "sas_end_time": collection.sas_meters.sas_end_time,
                },
            ))

        if collection.is_completed:
            machine = await self._machine_dal.get_by_id(collection.machine_id)
            if machine is not None and machine.history_for_report(location_report_id) is None:
                issues.append(_issue(
                    IssueType.HISTORY_MISSING,
                    "Machine has no history entry for this report",
                    collection,
                ))
        return issues

    async def check_report(self, caller: dict[str, Any], report_id: str) -> dict[str, Any]:
        """List every inconsistency found on a report and its collections."""
        report = await self._require_report(caller, report_id)
        collections = await self._collection_dal.list_by_report(report.location_report_id)

        issues: list[dict[str, Any]] = []
        for collection in collections:
            issues.extend(
                await self._collection_issues(collection, report.location_report_id)
            )

        expected_totals = totals_for_report(report, collections)
        mismatched = {
            key: {"expected": expected_totals[key], "actual": getattr(report, key)}
            for key in CHECKED_TOTALS
            if abs(expected_totals[key] - getattr(report, key)) > settings.MOVEMENT_TOLERANCE
        }
        if mismatched:
            issues.append(_issue(
                IssueType.TOTALS_MISMATCH,
                "Stored report totals do not match the collections",
                expected={k: v["expected"] for k, v in mismatched.items()},
                actual={k: v["actual"] for k, v in mismatched.items()},
            ))

        if issues:
            logger.info(
                "Report %s has %d issues", report.location_report_id, len(issues)
            )
        return {
            "location_report_id": report.location_report_id,
            "issue_count": len(issues),
            "issues": issues,
        }

    def _machine_issues(
        self, machine: Machine, collections: list[Collection]
    ) -> list[dict[str, Any]]:
        issues: list[dict[str, Any]] = []
        tolerance = settings.MOVEMENT_TOLERANCE
        finalized_reports = {c.location_report_id for c in collections}

        for entry in machine.collection_meters_history:
            if entry.location_report_id not in finalized_reports:
                issues.append(_issue(
                    IssueType.ORPHANED_HISTORY,
                    "History entry has no finalized collection behind it",
                    actual={
                        "location_report_id": entry.location_report_id,
                        "timestamp": entry.timestamp,
                    },
                    machine_name=machine.display_name,
                ))

        if collections:
            latest = collections[-1]
            meters = machine.collection_meters
            if (
                abs(meters.meters_in - latest.meters_in) > tolerance
                or abs(meters.meters_out - latest.meters_out) > tolerance
                or machine.collection_time != latest.timestamp
            ):
                issues.append(_issue(
                    IssueType.MACHINE_METERS_MISMATCH,
                    "Machine meters do not match its latest collection",
                    expected={
                        "meters_in": latest.meters_in,
                        "meters_out": latest.meters_out,
                        "collection_time": latest.timestamp,
                    },
                    actual={
                        "meters_in": meters.meters_in,
                        "meters_out": meters.meters_out,
                        "collection_time": machine.collection_time,
                    },
                    machine_name=machine.display_name,
                ))
        return issues

    async def check_machine(self, caller: dict[str, Any], machine_id: str) -> dict[str, Any]:
        """Check every report a machine was collected in, plus the machine itself.

        Only the machine's own collections are checked in each report.

        Returns:
            Dict with the per-report issues, the machine-level issues and
            their combined count.
        """
        machine = await self._require_machine(caller, machine_id)
        collections = await self._finalized_collections(machine.id)

        by_report: dict[str, list[Collection]] = {}
        for collection in collections:
            by_report.setdefault(collection.location_report_id, []).append(collection)

        reports: list[dict[str, Any]] = []
        for location_report_id, report_collections in by_report.items():
            issues: list[dict[str, Any]] = []
            if await self._report_dal.get(location_report_id) is None:
                issues.append(_issue(
                    IssueType.REPORT_MISSING,
                    "Collection is linked to a report that no longer exists",
                    report_collections[0],
                    actual={"location_report_id": location_report_id},
                ))
            for collection in report_collections:
                issues.extend(await self._collection_issues(collection, location_report_id))
            reports.append({
                "location_report_id": location_report_id,
                "issue_count": len(issues),
                "issues": issues,
            })

        machine_issues = self._machine_issues(machine, collections)
        issue_count = sum(r["issue_count"] for r in reports) + len(machine_issues)
        if issue_count:
            logger.info("Machine %s has %d issues", machine.id, issue_count)
        return {
            "machine_id": machine.id,
            "issue_count": issue_count,
            "reports": reports,
            "machine_issues": machine_issues,
        }

    # ------------------------------------------------------------------
    # Fix
    # ------------------------------------------------------------------

    async def fix_report(self, caller: dict[str, Any], report_id: str) -> dict[str, Any]:
        """Repair a report: previous meters, movements, SAS windows,
        machine history and totals.

        Returns:
            Dict with the number of collections changed and the issues that
            remain after the repair.
        """
        report = await self._require_report(caller, report_id)
        collections = await self._collection_dal.list_by_report(report.location_report_id)

        fixed = 0
        for collection in collections:
            fields: dict[str, Any] = {}

            previous = await self._actual_previous(collection)
            if previous is not None and (
                previous.meters_in != collection.prev_in
                or previous.meters_out != collection.prev_out
            ):
                fields["prev_in"] = previous.meters_in
                fields["prev_out"] = previous.meters_out
                collection = collection.model_copy(update=fields)

            expected = _expected_movement(collection)
            if expected != collection.movement.model_dump():
                fields["movement"] = Movement(**expected).model_dump()

            if not _sas_window_valid(collection):
                sas_meters = await self._sas.sas_meters_for(
                    collection.machine_id, collection.timestamp
                )
                fields["sas_meters"] = sas_meters.model_dump()

            if fields:
                await self._collection_dal.update(collection.id, fields)
                fixed += 1
                logger.info(
                    "Fixed collection %s of report %s: %s",
                    collection.id, report.location_report_id, sorted(fields),
                )

            if collection.is_completed:
                machine = await self._machine_dal.get_by_id(collection.machine_id)
                if machine is not None and machine.history_for_report(
                    report.location_report_id
                ) is None:
                    await self._machine_dal.push_history(
                        machine.id, _history_entry(collection)
                    )

        report = await self._reports.refresh_totals(report)
        await self._reports.sync_location_balance(report)
        await self._activity.record(
            actor=caller["username"],
            action=ActivityAction.UPDATE,
            resource=ResourceType.COLLECTION_REPORT,
            resource_id=report.location_report_id,
            details=f"Fixed report issues ({fixed} collections changed)",
        )

        remaining = await self.check_report(caller, report.location_report_id)
        return {
            "location_report_id": report.location_report_id,
            "fixed_collections": fixed,
            "remaining_issues": remaining["issues"],
        }

    async def fix_machine_history(
        self, caller: dict[str, Any], machine_id: str
    ) -> dict[str, Any]:
        """Rebuild a machine's history from its finalized collections.

        The machine's collection meters and times are reset to its latest
        finalized collection. A machine with no finalized collection keeps
        its meters and loses every history entry.
        """
        machine = await self._require_machine(caller, machine_id)
        collections = await self._finalized_collections(machine.id)

        entries = [_history_entry(c) for c in collections]
        await self._machine_dal.replace_history(machine.id, entries)
        if collections:
            latest = collections[-1]
            previous_time = (
                collections[-2].timestamp if len(collections) > 1
                else machine.previous_collection_time
            )
            await self._machine_dal.set_collection_state(
                machine.id,
                latest.meters_in,
                latest.meters_out,
                collection_time=latest.timestamp,
                previous_collection_time=previous_time,
            )

        logger.info(
            "Rebuilt history of machine %s: %d entries, previously %d",
            machine.id, len(entries), len(machine.collection_meters_history),
        )
        await self._activity.record(
            actor=caller["username"],
            action=ActivityAction.UPDATE,
            resource=ResourceType.MACHINE,
            resource_id=machine.id,
            details=f"Rebuilt collection history ({len(entries)} entries)",
        )

        remaining = await self.check_machine(caller, machine.id)
        return {
            "machine_id": machine.id,
            "history_entries": len(entries),
            "remaining_issues": remaining["machine_issues"],
        }

    async def fix_all_sas_times(self, caller: dict[str, Any]) -> dict[str, Any]:
        """Recompute every invalid SAS window across all reports, oldest first.

        Reports with at least one repaired collection get their totals
        refreshed.

        Returns:
            Dict with reports_checked, reports_fixed, collections_fixed and
            one fixed_reports row per repaired report.
        """
        reports = await self._report_dal.list_chronological()

        fixed_reports: list[dict[str, Any]] = []
        collections_fixed = 0
        for report in reports:
            fixed = 0
            for collection in await self._collection_dal.list_by_report(
                report.location_report_id
            ):
                if _sas_window_valid(collection):
                    continue
                sas_meters = await self._sas.sas_meters_for(
                    collection.machine_id, collection.timestamp
                )
                await self._collection_dal.update(
                    collection.id, {"sas_meters": sas_meters.model_dump()}
                )
                fixed += 1
            if fixed:
                await self._reports.refresh_totals(report)
                collections_fixed += fixed
                fixed_reports.append({
                    "location_report_id": report.location_report_id,
                    "location_name": report.location_name,
                    "fixed_collections": fixed,
                })

        logger.info(
            "SAS window repair: %d of %d reports fixed, %d collections",
            len(fixed_reports), len(reports), collections_fixed,
        )
        if fixed_reports:
            await self._activity.record(
                actor=caller["username"],
                action=ActivityAction.UPDATE,
                resource=ResourceType.COLLECTION_REPORT,
                resource_id="*",
                details=f"Fixed SAS windows on {collections_fixed} collections",
            )
        return {
            "reports_checked": len(reports),
            "reports_fixed": len(fixed_reports),
            "collections_fixed": collections_fixed,
            "fixed_reports": fixed_reports,
        }
