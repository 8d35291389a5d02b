"""Meter Data Access Layer -- MongoDB operations for SAS meter readings."""

import logging
from datetime import datetime
from typing import Any

from motor.motor_asyncio import AsyncIOMotorDatabase

from collectdesk.models.common import to_naive_utc
from collectdesk.models.meter import MeterReading

logger = logging.getLogger("collectdesk.dal.meters")

COLLECTION = "meters"


class MeterDAL:
    """Data access layer for the meters collection."""

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._collection = db[COLLECTION]

    async def create_many(self, readings: list[MeterReading]) -> list[MeterReading]:
        """Insert several meter readings at once.

        Args:
            readings: MeterReading instances (ids may be None).

        Returns:
            The same list with their ``id`` fields populated.
        """
        if not readings:
            return readings
        docs = [reading.to_mongo_dict() for reading in readings]
        result = await self._collection.insert_many(docs)
        for reading, inserted_id in zip(readings, result.inserted_ids):
            reading.id = str(inserted_id)
        logger.info(
            "Recorded %d meter readings for machine %s",
            len(readings), readings[0].machine_id,
        )
        return readings

    async def list_in_window(
        self,
        machine_id: str,
        start: datetime,
        end: datetime,
    ) -> list[dict[str, Any]]:
        """Return raw readings of a machine with ``start <= read_at <= end``.

        Raw documents are returned since callers only sum their movement.
        """
        cursor = self._collection.find(
            {
                "machine_id": machine_id,
                "read_at": {"$gte": to_naive_utc(start), "$lte": to_naive_utc(end)},
            }
        ).sort("read_at", 1)
        return [doc async for doc in cursor]

    async def delete_by_machine(self, machine_id: str) -> int:
        """Delete every reading of a machine."""
        result = await self._collection.delete_many({"machine_id": machine_id})
        return result.deleted_count
