"""Collection business logic service.

Handles the per-machine collections of a location visit: previous-meter
resolution, meter validation, movement and SAS calculation, and keeping
machine meters and report totals consistent when a collection changes.
"""

import logging
from typing import Any, Optional

from fastapi import HTTPException, status
from pymongo.errors import PyMongoError

from collectdesk.auth.dependencies import require_location_access
from collectdesk.dal.collection_reports_dal import CollectionReportDAL
from collectdesk.dal.collections_dal import CollectionDAL
from collectdesk.dal.locations_dal import LocationDAL
from collectdesk.dal.machines_dal import MachineDAL
from collectdesk.models.collection import Collection, Movement
from collectdesk.models.common import ActivityAction, ResourceType, utcnow
from collectdesk.models.machine import Machine
from collectdesk.services.activity_service import ActivityService, diff_fields
from collectdesk.services.movement_math import compute_movement, validate_meter_entry
from collectdesk.services.report_service import totals_for_report
from collectdesk.services.sas_service import SasService

logger = logging.getLogger("collectdesk.services.collection")

METER_FIELDS = (
    "meters_in",
    "meters_out",
    "ram_clear",
    "ram_clear_meters_in",
    "ram_clear_meters_out",
)


def _validation_error(result: dict[str, Any]) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail={
            "message": "Invalid meter entry",
            "errors": result["errors"],
            "warnings": result["warnings"],
        },
    )


class CollectionService:
    """Service layer for per-machine collections."""

    def __init__(
        self,
        collection_dal: CollectionDAL,
        machine_dal: MachineDAL,
        location_dal: LocationDAL,
        report_dal: CollectionReportDAL,
        sas_service: SasService,
        activity_service: ActivityService,
    ) -> None:
        self._collection_dal = collection_dal
        self._machine_dal = machine_dal
        self._location_dal = location_dal
        self._report_dal = report_dal
        self._sas = sas_service
        self._activity = activity_service

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _require_collection(
        self, caller: dict[str, Any], collection_id: str
    ) -> Collection:
        collection = await self._collection_dal.get_by_id(collection_id)
        if collection is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Collection not found",
            )
        require_location_access(caller, collection.location_id)
        return collection

    async def resolve_previous_meters(
        self,
        machine: Machine,
        prev_in: Optional[float] = None,
        prev_out: Optional[float] = None,
    ) -> tuple[float, float]:
        """Previous meters for a new collection of ``machine``.

        Client-supplied values win; otherwise the latest finalized
        collection of the machine; otherwise the machine's collection meters.
        """
        if prev_in is not None and prev_out is not None:
            return prev_in, prev_out

        previous = await self._collection_dal.get_previous_completed(machine.id)
        if previous is not None:
            return previous.meters_in, previous.meters_out

        meters = machine.collection_meters
        return meters.meters_in, meters.meters_out

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create_collection(
        self,
        caller: dict[str, Any],
        data: dict[str, Any],
    ) -> tuple[Collection, list[str]]:
        """Record a machine's meters as an in-progress collection.

        Args:
            caller: Context from ``get_admin_or_collector``.
            data: machine_id, meters_in, meters_out and optionally prev_in,
                prev_out, ram_clear, ram_clear_meters_in, ram_clear_meters_out,
                notes, timestamp, sas_start_time and location_report_id.

        Returns:
            The stored Collection and the validation warnings.

        Raises:
            HTTPException 404: Machine, location or report not found.
            HTTPException 403: Caller not assigned to the machine's location.
            HTTPException 400: Meter validation errors.
            HTTPException 409: The machine already has an open collection.
        """
        machine = await self._machine_dal.get_by_id(data["machine_id"])
        if machine is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Machine not found",
            )
        require_location_access(caller, machine.location_id)

        location = await self._location_dal.get_by_id(machine.location_id)
        if location is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Location not found",
            )

        location_report_id = data.get("location_report_id") or ""
        if location_report_id:
            report = await self._report_dal.get(location_report_id)
            if report is None:
                raise HTTPException(
                    status_code=status.HTTP_404_NOT_FOUND,
                    detail="Collection report not found",
                )
            if report.location_id != location.id:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail="Report belongs to another location",
                )
            location_report_id = report.location_report_id
            existing = await self._collection_dal.query(
                location_report_id=location_report_id, machine_id=machine.id, limit=1
            )
        else:
            existing = await self._collection_dal.query(
                machine_id=machine.id, incomplete_only=True, limit=1
            )
        if existing:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f"Machine {machine.display_name} already has an open collection",
            )

        prev_in, prev_out = await self.resolve_previous_meters(
            machine, data.get("prev_in"), data.get("prev_out")
        )
        ram_clear = bool(data.get("ram_clear"))
        meter_args = (
            data["meters_in"],
            data["meters_out"],
            prev_in,
            prev_out,
            ram_clear,
            data.get("ram_clear_meters_in"),
            data.get("ram_clear_meters_out"),
        )
        validation = validate_meter_entry(*meter_args)
        if not validation["is_valid"]:
            raise _validation_error(validation)
        for warning in validation["warnings"]:
            logger.warning("Machine %s: %s", machine.id, warning)

        timestamp = data.get("timestamp") or utcnow()
        sas_meters = await self._sas.sas_meters_for(
            machine.id, timestamp, data.get("sas_start_time")
        )

        collection = Collection(
            machine_id=machine.id,
            machine_name=machine.display_name,
            serial_number=machine.serial_number,
            game=machine.game,
            location_id=location.id,
            location_name=location.name,
            collector=caller["username"],
            timestamp=timestamp,
            meters_in=data["meters_in"],
            meters_out=data["meters_out"],
            prev_in=prev_in,
            prev_out=prev_out,
            ram_clear=ram_clear,
            ram_clear_meters_in=data.get("ram_clear_meters_in"),
            ram_clear_meters_out=data.get("ram_clear_meters_out"),
            notes=data.get("notes"),
            movement=Movement(**compute_movement(*meter_args)),
            sas_meters=sas_meters,
            location_report_id=location_report_id,
        )
        collection = await self._collection_dal.create(collection)

        await self._activity.record(
            actor=caller["username"],
            action=ActivityAction.CREATE,
            resource=ResourceType.COLLECTION,
            resource_id=collection.id,
            details=(
                f"Collected {collection.machine_name} at {collection.location_name}: "
                f"gross {collection.movement.gross}"
            ),
        )
        return collection, validation["warnings"]

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    async def get_collection(self, caller: dict[str, Any], collection_id: str) -> Collection:
        """Fetch one collection the caller may see."""
        return await self._require_collection(caller, collection_id)

    async def list_collections(
        self,
        caller: dict[str, Any],
        location_id: Optional[str] = None,
        **filters: Any,
    ) -> list[Collection]:
        """List collections visible to the caller.

        Collectors only see their assigned locations; asking for another
        location gives an empty list rather than an error.
        """
        location_ids = caller.get("location_ids")
        if location_id is not None:
            if location_ids is not None and location_id not in location_ids:
                return []
            location_ids = [location_id]
        if location_ids is not None and not location_ids:
            return []
        return await self._collection_dal.query(location_ids=location_ids, **filters)

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    async def update_collection(
        self,
        caller: dict[str, Any],
        collection_id: str,
        changes: dict[str, Any],
    ) -> tuple[Collection, list[str]]:
        """Apply edits to a collection and recompute what depends on them.

        Meter or RAM-clear edits re-derive the previous meters from the
        machine's actual previous finalized collection and recompute the
        movement. An explicit prev_in or prev_out is kept as sent and also
        recomputes the movement. Without an earlier finalized collection
        the stored previous meters stay. Timestamp or meter edits recompute
        the SAS window; a SAS failure is logged and leaves the stored SAS
        values in place.

        Returns:
            The updated Collection and the validation warnings.
        """
        collection = await self._require_collection(caller, collection_id)
        before = collection.model_dump()

        editable = METER_FIELDS + ("notes", "timestamp", "prev_in", "prev_out")
        updates = {key: changes[key] for key in editable if key in changes}
        if updates.get("timestamp") is None:
            updates.pop("timestamp", None)
        candidate = collection.model_copy(update=updates)

        meters_changed = any(
            getattr(candidate, key) != getattr(collection, key) for key in METER_FIELDS
        )
        timestamp_changed = candidate.timestamp != collection.timestamp
        # One side alone keeps the stored value of the other
        prev_overridden = "prev_in" in updates or "prev_out" in updates

        warnings: list[str] = []
        if meters_changed or prev_overridden:
            if not prev_overridden:
                previous = await self._collection_dal.get_previous_completed(
                    collection.machine_id,
                    before=candidate.timestamp,
                    exclude_id=collection.id,
                )
                if previous is not None:
                    candidate = candidate.model_copy(
                        update={"prev_in": previous.meters_in, "prev_out": previous.meters_out}
                    )
            meter_args = (
                candidate.meters_in,
                candidate.meters_out,
                candidate.prev_in,
                candidate.prev_out,
                candidate.ram_clear,
                candidate.ram_clear_meters_in,
                candidate.ram_clear_meters_out,
            )
            validation = validate_meter_entry(*meter_args)
            if not validation["is_valid"]:
                raise _validation_error(validation)
            warnings = validation["warnings"]
            candidate = candidate.model_copy(
                update={"movement": Movement(**compute_movement(*meter_args))}
            )

        if meters_changed or timestamp_changed:
            try:
                sas_meters = await self._sas.sas_meters_for(
                    collection.machine_id, candidate.timestamp
                )
                candidate = candidate.model_copy(update={"sas_meters": sas_meters})
            except PyMongoError as e:
                logger.warning(
                    "SAS recalculation failed for collection %s: %s", collection.id, e
                )

        fields = {
            key: value
            for key, value in candidate.model_dump().items()
            if key not in ("id", "created_at", "updated_at") and value != before.get(key)
        }
        if fields:
            await self._collection_dal.update(collection.id, fields)
        updated = candidate

        if updated.is_completed and (meters_changed or prev_overridden):
            await self._sync_machine(updated)
        if updated.location_report_id and fields:
            await self._refresh_report(updated.location_report_id)

        await self._activity.record(
            actor=caller["username"],
            action=ActivityAction.UPDATE,
            resource=ResourceType.COLLECTION,
            resource_id=collection.id,
            details=f"Updated collection of {collection.machine_name}",
            changes=diff_fields(before, {k: v for k, v in fields.items() if k in editable}),
        )
        return updated, warnings

    async def _sync_machine(self, collection: Collection) -> None:
        """Rewrite a finalized collection's history entry and, when it is the
        machine's latest collection, the machine's collection meters."""
        machine = await self._machine_dal.get_by_id(collection.machine_id)
        if machine is None:
            return
        entry = machine.history_for_report(collection.location_report_id)
        if entry is not None:
            await self._machine_dal.pull_history(machine.id, collection.location_report_id)
            await self._machine_dal.push_history(
                machine.id,
                entry.model_copy(update={
                    "meters_in": collection.meters_in,
                    "meters_out": collection.meters_out,
                    "prev_meters_in": collection.prev_in,
                    "prev_meters_out": collection.prev_out,
                    "timestamp": collection.timestamp,
                }),
            )
        latest = await self._collection_dal.get_previous_completed(machine.id)
        if latest is not None and latest.id == collection.id:
            await self._machine_dal.set_collection_meters(
                machine.id, collection.meters_in, collection.meters_out
            )

    async def _refresh_report(self, location_report_id: str) -> None:
        """Recompute the totals of the report a changed collection belongs to."""
        report = await self._report_dal.get(location_report_id)
        if report is None:
            return
        collections = await self._collection_dal.list_by_report(location_report_id)
        await self._report_dal.update(
            location_report_id, totals_for_report(report, collections)
        )

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    async def delete_collection(self, caller: dict[str, Any], collection_id: str) -> Collection:
        """Delete a collection and undo its effect on the machine.

        A finalized collection hands its previous meters back to the
        machine and its history entry is removed. The report it belonged
        to, if any, gets fresh totals.
        """
        collection = await self._require_collection(caller, collection_id)
        await self._collection_dal.delete(collection.id)

        if collection.is_completed:
            await self._machine_dal.set_collection_meters(
                collection.machine_id, collection.prev_in, collection.prev_out
            )
        if collection.location_report_id:
            await self._machine_dal.pull_history(
                collection.machine_id, collection.location_report_id
            )
            await self._refresh_report(collection.location_report_id)

        await self._activity.record(
            actor=caller["username"],
            action=ActivityAction.DELETE,
            resource=ResourceType.COLLECTION,
            resource_id=collection.id,
            details=f"Deleted collection of {collection.machine_name} at {collection.location_name}",
        )
        return collection
