"""Location Data Access Layer -- MongoDB operations for the locations collection.

All ObjectId handling is transparent: callers pass/receive strings,
the DAL converts as needed.
"""

import logging
from datetime import datetime
from typing import Any, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase

from collectdesk.models.common import mongo_ready, utcnow
from collectdesk.models.location import Location

logger = logging.getLogger("collectdesk.dal.locations")

COLLECTION = "locations"


class LocationDAL:
    """Data access layer for the locations collection."""

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._collection = db[COLLECTION]

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create(self, location: Location) -> Location:
        """Insert a new location document and return it with its generated id."""
        doc = location.to_mongo_dict()
        result = await self._collection.insert_one(doc)
        location.id = str(result.inserted_id)
        logger.info("Created location %s (%s)", location.id, location.name)
        return location

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    async def get_by_id(self, location_id: str) -> Optional[Location]:
        """Find a location by its MongoDB ``_id``.

        Args:
            location_id: String representation of the ObjectId.

        Returns:
            A Location instance, or None if not found.
        """
        if not ObjectId.is_valid(location_id):
            return None
        doc = await self._collection.find_one({"_id": ObjectId(location_id)})
        if doc is None:
            return None
        doc["_id"] = str(doc["_id"])
        return Location(**doc)

    async def list_all(
        self,
        location_ids: Optional[list[str]] = None,
    ) -> list[Location]:
        """List locations sorted by name.

        Args:
            location_ids: When given, only these locations are returned.

        Returns:
            A list of Location instances.
        """
        query: dict[str, Any] = {}
        if location_ids is not None:
            query["_id"] = {
                "$in": [ObjectId(lid) for lid in location_ids if ObjectId.is_valid(lid)]
            }
        cursor = self._collection.find(query).sort("name", 1)
        locations: list[Location] = []
        async for doc in cursor:
            doc["_id"] = str(doc["_id"])
            locations.append(Location(**doc))
        return locations

    async def count_all(self) -> int:
        """Count all location documents."""
        return await self._collection.count_documents({})

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    async def update(self, location_id: str, fields: dict[str, Any]) -> bool:
        """Set arbitrary fields on a location.

        Args:
            location_id: String ObjectId of the location.
            fields: Field names to new values.

        Returns:
            True if the location exists, False otherwise.
        """
        if not ObjectId.is_valid(location_id):
            return False
        update_fields = mongo_ready({**fields, "updated_at": utcnow()})
        result = await self._collection.update_one(
            {"_id": ObjectId(location_id)},
            {"$set": update_fields},
        )
        return result.matched_count > 0

    async def record_collection(
        self,
        location_id: str,
        collection_time: datetime,
        collection_balance: float,
    ) -> bool:
        """Record a finalized report on the location.

        Args:
            location_id: String ObjectId of the location.
            collection_time: Timestamp of the finalized report.
            collection_balance: Balance carried into the next report.

        Returns:
            True if the location exists, False otherwise.
        """
        updated = await self.update(
            location_id,
            {
                "previous_collection_time": collection_time,
                "collection_balance": collection_balance,
            },
        )
        if updated:
            logger.info(
                "Location %s collected at %s, balance now %s",
                location_id, collection_time.isoformat(), collection_balance,
            )
        return updated

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    async def delete(self, location_id: str) -> bool:
        """Delete a location document by its MongoDB ``_id``."""
        if not ObjectId.is_valid(location_id):
            return False
        result = await self._collection.delete_one({"_id": ObjectId(location_id)})
        if result.deleted_count > 0:
            logger.info("Deleted location %s", location_id)
        return result.deleted_count > 0
