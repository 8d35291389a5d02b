"""Machine Data Access Layer -- MongoDB operations for the machines collection.

Provides CRUD plus the collection-meter updates performed when reports
are finalized or reverted. Embedded history entries are addressed by
their ``location_report_id``.
"""

import logging
from datetime import datetime
from typing import Any, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase

from collectdesk.models.common import mongo_ready, utcnow
from collectdesk.models.machine import CollectionHistoryEntry, Machine

logger = logging.getLogger("collectdesk.dal.machines")

COLLECTION = "machines"


def _to_machine(doc: dict) -> Machine:
    doc["_id"] = str(doc["_id"])
    return Machine(**doc)


class MachineDAL:
    """Data access layer for the machines collection."""

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._collection = db[COLLECTION]

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create(self, machine: Machine) -> Machine:
        """Insert a new machine document and return it with its generated id."""
        doc = machine.to_mongo_dict()
        result = await self._collection.insert_one(doc)
        machine.id = str(result.inserted_id)
        logger.info(
            "Created machine %s (serial=%s) at location %s",
            machine.id, machine.serial_number, machine.location_id,
        )
        return machine

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    async def get_by_id(self, machine_id: str) -> Optional[Machine]:
        """Find a machine by its MongoDB ``_id``.

        Returns:
            A Machine instance, or None if not found.
        """
        if not ObjectId.is_valid(machine_id):
            return None
        doc = await self._collection.find_one({"_id": ObjectId(machine_id)})
        if doc is None:
            return None
        return _to_machine(doc)

    async def get_by_serial(self, serial_number: str) -> Optional[Machine]:
        """Find a machine by its serial number."""
        doc = await self._collection.find_one({"serial_number": serial_number})
        if doc is None:
            return None
        return _to_machine(doc)

    async def list_by_location(self, location_id: str) -> list[Machine]:
        """List the machines of a location sorted by serial number."""
        cursor = self._collection.find({"location_id": location_id}).sort(
            "serial_number", 1
        )
        return [_to_machine(doc) async for doc in cursor]

    async def count_by_location(self, location_id: str) -> int:
        """Count the machines of a location."""
        return await self._collection.count_documents({"location_id": location_id})

    async def count_all(self) -> int:
        """Count all machine documents."""
        return await self._collection.count_documents({})

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    async def update(self, machine_id: str, fields: dict[str, Any]) -> bool:
        """Set arbitrary fields on a machine.

        Returns:
            True if the machine exists, False otherwise.
        """
        if not ObjectId.is_valid(machine_id):
            return False
        result = await self._collection.update_one(
            {"_id": ObjectId(machine_id)},
            {"$set": mongo_ready({**fields, "updated_at": utcnow()})},
        )
        return result.matched_count > 0

    async def set_collection_meters(
        self,
        machine_id: str,
        meters_in: float,
        meters_out: float,
        collection_time: Optional[datetime] = None,
        previous_collection_time: Optional[datetime] = None,
    ) -> bool:
        """Overwrite the meters recorded at the machine's last collection.

        Args:
            machine_id: String ObjectId of the machine.
            meters_in: Coin-in meter to record.
            meters_out: Coin-out meter to record.
            collection_time: When given, becomes the machine's collection time.
            previous_collection_time: When given, becomes the machine's
                previous collection time.

        Returns:
            True if the machine exists, False otherwise.
        """
        fields: dict[str, Any] = {
            "collection_meters": {"meters_in": meters_in, "meters_out": meters_out},
        }
        if collection_time is not None:
            fields["collection_time"] = collection_time
        if previous_collection_time is not None:
            fields["previous_collection_time"] = previous_collection_time
        updated = await self.update(machine_id, fields)
        if updated:
            logger.info(
                "Machine %s collection meters set to in=%s out=%s",
                machine_id, meters_in, meters_out,
            )
        return updated

    async def set_collection_state(
        self,
        machine_id: str,
        meters_in: float,
        meters_out: float,
        collection_time: Optional[datetime],
        previous_collection_time: Optional[datetime],
    ) -> bool:
        """Write a machine's collection meters and both collection times.

        Unlike ``set_collection_meters`` the times are always written, so a
        machine that had never been collected can get None back.

        Returns:
            True if the machine exists, False otherwise.
        """
        updated = await self.update(
            machine_id,
            {
                "collection_meters": {"meters_in": meters_in, "meters_out": meters_out},
                "collection_time": collection_time,
                "previous_collection_time": previous_collection_time,
            },
        )
        if updated:
            logger.info(
                "Machine %s set to in=%s out=%s collected at %s",
                machine_id, meters_in, meters_out, collection_time,
            )
        return updated

    async def push_history(self, machine_id: str, entry: CollectionHistoryEntry) -> bool:
        """Append a collection history entry to a machine.

        Returns:
            True if the machine exists, False otherwise.
        """
        if not ObjectId.is_valid(machine_id):
            return False
        result = await self._collection.update_one(
            {"_id": ObjectId(machine_id)},
            {"$push": {"collection_meters_history": mongo_ready(entry.model_dump())}},
        )
        return result.matched_count > 0

    async def replace_history(
        self, machine_id: str, entries: list[CollectionHistoryEntry]
    ) -> bool:
        """Overwrite a machine's whole collection history.

        Returns:
            True if the machine exists, False otherwise.
        """
        return await self.update(
            machine_id,
            {"collection_meters_history": [entry.model_dump() for entry in entries]},
        )

    async def pull_history(self, machine_id: str, location_report_id: str) -> bool:
        """Remove the history entries written by a report.

        Returns:
            True if an entry was removed, False otherwise.
        """
        if not ObjectId.is_valid(machine_id):
            return False
        result = await self._collection.update_one(
            {"_id": ObjectId(machine_id)},
            {"$pull": {"collection_meters_history": {"location_report_id": location_report_id}}},
        )
        if result.modified_count > 0:
            logger.info(
                "Removed history of report %s from machine %s",
                location_report_id, machine_id,
            )
        return result.modified_count > 0

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    async def delete(self, machine_id: str) -> bool:
        """Delete a machine document by its MongoDB ``_id``."""
        if not ObjectId.is_valid(machine_id):
            return False
        result = await self._collection.delete_one({"_id": ObjectId(machine_id)})
        if result.deleted_count > 0:
            logger.info("Deleted machine %s", machine_id)
        return result.deleted_count > 0
