"""Location and machine business logic service.

Covers location/machine management, the location-with-machines view the
collection form is built from, and ingestion of SAS meter readings.
"""

import logging
from typing import Any, Optional

from fastapi import HTTPException, status

from collectdesk.auth.dependencies import require_location_access
from collectdesk.dal.locations_dal import LocationDAL
from collectdesk.dal.machines_dal import MachineDAL
from collectdesk.dal.meters_dal import MeterDAL
from collectdesk.models.common import ActivityAction, ResourceType
from collectdesk.models.location import Location
from collectdesk.models.machine import Machine, MeterPair
from collectdesk.models.meter import MeterReading, SasMovement
from collectdesk.services.activity_service import ActivityService, diff_fields

logger = logging.getLogger("collectdesk.services.location")


class LocationService:
    """Service layer for locations, machines and SAS meter readings."""

    def __init__(
        self,
        location_dal: LocationDAL,
        machine_dal: MachineDAL,
        meter_dal: MeterDAL,
        activity_service: ActivityService,
    ) -> None:
        self._location_dal = location_dal
        self._machine_dal = machine_dal
        self._meter_dal = meter_dal
        self._activity = activity_service

    # ------------------------------------------------------------------
    # Locations
    # ------------------------------------------------------------------

    async def require_location(self, caller: dict[str, Any], location_id: str) -> Location:
        """Fetch a location the caller may access, or raise 404/403."""
        location = await self._location_dal.get_by_id(location_id)
        if location is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Location not found",
            )
        require_location_access(caller, location.id)
        return location

    async def create_location(
        self,
        actor: str,
        name: str,
        address: Optional[str] = None,
        profit_share: Optional[int] = None,
        collection_balance: float = 0,
    ) -> Location:
        """Create a location. Profit share defaults to the configured share."""
        name = name.strip()
        if not name:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Location name is required",
            )
        values: dict[str, Any] = {
            "name": name,
            "address": address,
            "collection_balance": collection_balance,
        }
        if profit_share is not None:
            values["profit_share"] = profit_share
        location = await self._location_dal.create(Location(**values))
        await self._activity.record(
            actor=actor,
            action=ActivityAction.CREATE,
            resource=ResourceType.LOCATION,
            resource_id=location.id,
            details=f"Created location {location.name}",
        )
        return location

    async def update_location(
        self,
        actor: str,
        location_id: str,
        changes: dict[str, Any],
    ) -> Location:
        """Update name, address, profit share or carried balance."""
        location = await self._location_dal.get_by_id(location_id)
        if location is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Location not found",
            )
        updates = {
            key: changes[key]
            for key in ("name", "address", "profit_share", "collection_balance")
            if changes.get(key) is not None
        }
        if "name" in updates:
            updates["name"] = updates["name"].strip()
            if not updates["name"]:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail="Location name is required",
                )
        if updates:
            await self._location_dal.update(location.id, updates)
            await self._activity.record(
                actor=actor,
                action=ActivityAction.UPDATE,
                resource=ResourceType.LOCATION,
                resource_id=location.id,
                details=f"Updated location {location.name}",
                changes=diff_fields(location.model_dump(), updates),
            )
        return location.model_copy(update=updates)

    async def delete_location(self, actor: str, location_id: str) -> None:
        """Delete a location that has no machines left."""
        location = await self._location_dal.get_by_id(location_id)
        if location is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Location not found",
            )
        if await self._machine_dal.count_by_location(location.id) > 0:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Location still has machines",
            )
        await self._location_dal.delete(location.id)
        await self._activity.record(
            actor=actor,
            action=ActivityAction.DELETE,
            resource=ResourceType.LOCATION,
            resource_id=location.id,
            details=f"Deleted location {location.name}",
        )

    async def list_locations(
        self,
        caller: dict[str, Any],
        with_machines: bool = False,
    ) -> list[dict[str, Any]]:
        """List the locations visible to the caller.

        With ``with_machines`` each location carries its machines with
        their collection meters and collection time.
        """
        locations = await self._location_dal.list_all(caller.get("location_ids"))
        rows: list[dict[str, Any]] = []
        for location in locations:
            row: dict[str, Any] = {
                "id": location.id,
                "name": location.name,
                "address": location.address,
                "profit_share": location.profit_share,
                "collection_balance": location.collection_balance,
                "previous_collection_time": location.previous_collection_time,
            }
            if with_machines:
                machines = await self._machine_dal.list_by_location(location.id)
                row["machines"] = [self.machine_summary(m) for m in machines]
            rows.append(row)
        return rows

    # ------------------------------------------------------------------
    # Machines
    # ------------------------------------------------------------------

    @staticmethod
    def machine_summary(machine: Machine) -> dict[str, Any]:
        """Selection data for one machine on the collection form."""
        return {
            "id": machine.id,
            "name": machine.display_name,
            "serial_number": machine.serial_number,
            "custom_name": machine.custom_name,
            "game": machine.game,
            "collection_meters": machine.collection_meters.model_dump(),
            "collection_time": machine.collection_time,
        }

    async def create_machine(self, actor: str, data: dict[str, Any]) -> Machine:
        """Register a machine at a location.

        Raises:
            HTTPException 404: Location not found.
            HTTPException 409: Serial number already registered.
        """
        location = await self._location_dal.get_by_id(data["location_id"])
        if location is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Location not found",
            )
        serial_number = data["serial_number"].strip()
        if await self._machine_dal.get_by_serial(serial_number) is not None:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f"Machine with serial number {serial_number} already exists",
            )
        machine = Machine(
            serial_number=serial_number,
            custom_name=data.get("custom_name"),
            game=data.get("game"),
            location_id=location.id,
            collection_meters=MeterPair(
                meters_in=data.get("meters_in") or 0,
                meters_out=data.get("meters_out") or 0,
            ),
            collection_time=data.get("collection_time"),
        )
        machine = await self._machine_dal.create(machine)
        await self._activity.record(
            actor=actor,
            action=ActivityAction.CREATE,
            resource=ResourceType.MACHINE,
            resource_id=machine.id,
            details=f"Created machine {machine.display_name} at {location.name}",
        )
        return machine

    async def get_machine(self, caller: dict[str, Any], machine_id: str) -> Machine:
        """Fetch a machine the caller may access, or raise 404/403."""
        machine = await self._machine_dal.get_by_id(machine_id)
        if machine is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Machine not found",
            )
        require_location_access(caller, machine.location_id)
        return machine

    async def list_machines(self, caller: dict[str, Any], location_id: str) -> list[Machine]:
        """List the machines of a location the caller may access."""
        await self.require_location(caller, location_id)
        return await self._machine_dal.list_by_location(location_id)

    # ------------------------------------------------------------------
    # SAS meter readings
    # ------------------------------------------------------------------

    async def record_meter_readings(
        self,
        machine_id: str,
        readings: list[dict[str, Any]],
    ) -> list[MeterReading]:
        """Store SAS meter readings reported by a machine."""
        machine = await self._machine_dal.get_by_id(machine_id)
        if machine is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Machine not found",
            )
        models = [
            MeterReading(
                machine_id=machine.id,
                read_at=reading["read_at"],
                movement=SasMovement(**reading.get("movement", {})),
            )
            for reading in readings
        ]
        return await self._meter_dal.create_many(models)
