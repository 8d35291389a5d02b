"""Collection Data Access Layer -- MongoDB operations for the collections collection.

Provides async CRUD and query methods for per-machine Collection
documents, including the previous-collection lookups that drive
movement and SAS window calculations.
"""

import logging
from datetime import datetime
from typing import Any, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase

from collectdesk.models.collection import Collection
from collectdesk.models.common import mongo_ready, to_naive_utc, utcnow

logger = logging.getLogger("collectdesk.dal.collections")

COLLECTION = "collections"

SORTABLE_FIELDS = ("timestamp", "created_at", "machine_name", "location_name")


def _to_collection(doc: dict) -> Collection:
    doc["_id"] = str(doc["_id"])
    return Collection(**doc)


def _object_ids(ids: list[str]) -> list[ObjectId]:
    return [ObjectId(i) for i in ids if ObjectId.is_valid(i)]


class CollectionDAL:
    """Data access layer for the collections collection."""

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._collection = db[COLLECTION]

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create(self, collection: Collection) -> Collection:
        """Insert a new collection document and return it with its generated id."""
        doc = collection.to_mongo_dict()
        result = await self._collection.insert_one(doc)
        collection.id = str(result.inserted_id)
        logger.info(
            "Created collection %s for machine %s at %s",
            collection.id, collection.machine_id, collection.location_name,
        )
        return collection

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    async def get_by_id(self, collection_id: str) -> Optional[Collection]:
        """Find a collection by its MongoDB ``_id``.

        Returns:
            A Collection instance, or None if not found.
        """
        if not ObjectId.is_valid(collection_id):
            return None
        doc = await self._collection.find_one({"_id": ObjectId(collection_id)})
        if doc is None:
            return None
        return _to_collection(doc)

    async def get_by_ids(self, collection_ids: list[str]) -> list[Collection]:
        """Fetch several collections by id, ordered by timestamp."""
        cursor = self._collection.find(
            {"_id": {"$in": _object_ids(collection_ids)}}
        ).sort("timestamp", 1)
        return [_to_collection(doc) async for doc in cursor]

    async def list_by_report(self, location_report_id: str) -> list[Collection]:
        """List every collection linked to a report, ordered by timestamp."""
        cursor = self._collection.find(
            {"location_report_id": location_report_id}
        ).sort("timestamp", 1)
        return [_to_collection(doc) async for doc in cursor]

    async def list_in_progress(self, location_id: str) -> list[Collection]:
        """List the collections of a location not yet finalized by a report."""
        cursor = self._collection.find(
            {"location_id": location_id, "is_completed": False, "location_report_id": ""}
        ).sort("timestamp", 1)
        return [_to_collection(doc) async for doc in cursor]

    async def query(
        self,
        *,
        location_report_id: Optional[str] = None,
        location_ids: Optional[list[str]] = None,
        collector: Optional[str] = None,
        is_completed: Optional[bool] = None,
        incomplete_only: bool = False,
        machine_id: Optional[str] = None,
        before_timestamp: Optional[datetime] = None,
        sort_by: str = "timestamp",
        descending: bool = True,
        limit: Optional[int] = None,
    ) -> list[Collection]:
        """Filtered collection listing.

        Args:
            location_report_id: Only collections linked to this report.
            location_ids: Only collections at these locations.
            collector: Only collections taken by this collector.
            is_completed: Filter on completion state.
            incomplete_only: Only in-progress collections (overrides
                ``is_completed``).
            machine_id: Only collections of this machine.
            before_timestamp: Only collections strictly older than this.
            sort_by: One of ``SORTABLE_FIELDS``.
            descending: Sort direction.
            limit: Maximum number of results.

        Returns:
            A list of Collection instances.
        """
        query: dict[str, Any] = {}
        if location_report_id is not None:
            query["location_report_id"] = location_report_id
        if location_ids is not None:
            query["location_id"] = {"$in": location_ids}
        if collector is not None:
            query["collector"] = collector
        if incomplete_only:
            query["is_completed"] = False
            query["location_report_id"] = ""
        elif is_completed is not None:
            query["is_completed"] = is_completed
        if machine_id is not None:
            query["machine_id"] = machine_id
        if before_timestamp is not None:
            query["timestamp"] = {"$lt": to_naive_utc(before_timestamp)}

        if sort_by not in SORTABLE_FIELDS:
            sort_by = "timestamp"
        cursor = self._collection.find(query).sort(sort_by, -1 if descending else 1)
        if limit:
            cursor = cursor.limit(limit)
        return [_to_collection(doc) async for doc in cursor]

    async def get_previous_completed(
        self,
        machine_id: str,
        before: Optional[datetime] = None,
        exclude_id: Optional[str] = None,
    ) -> Optional[Collection]:
        """Find the latest finalized collection of a machine.

        Args:
            machine_id: The machine to look up.
            before: When given, only collections strictly older than this.
            exclude_id: A collection id to ignore (the one being edited).

        Returns:
            The most recent completed Collection, or None.
        """
        query: dict[str, Any] = {
            "machine_id": machine_id,
            "is_completed": True,
            "location_report_id": {"$ne": ""},
        }
        if before is not None:
            query["timestamp"] = {"$lt": to_naive_utc(before)}
        if exclude_id is not None and ObjectId.is_valid(exclude_id):
            query["_id"] = {"$ne": ObjectId(exclude_id)}
        cursor = self._collection.find(query).sort("timestamp", -1).limit(1)
        async for doc in cursor:
            return _to_collection(doc)
        return None

    async def get_latest_before(
        self,
        machine_id: str,
        before: datetime,
    ) -> Optional[Collection]:
        """Find the most recent collection of a machine older than ``before``."""
        cursor = (
            self._collection.find(
                {"machine_id": machine_id, "timestamp": {"$lt": to_naive_utc(before)}}
            )
            .sort("timestamp", -1)
            .limit(1)
        )
        async for doc in cursor:
            return _to_collection(doc)
        return None

    async def count_in_progress(self) -> int:
        """Count collections not yet finalized by a report."""
        return await self._collection.count_documents(
            {"is_completed": False, "location_report_id": ""}
        )

    async def count_all(self) -> int:
        """Count all collection documents."""
        return await self._collection.count_documents({})

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    async def update(self, collection_id: str, fields: dict[str, Any]) -> bool:
        """Set arbitrary fields on a collection.

        Returns:
            True if the collection exists, False otherwise.
        """
        if not ObjectId.is_valid(collection_id):
            return False
        result = await self._collection.update_one(
            {"_id": ObjectId(collection_id)},
            {"$set": mongo_ready({**fields, "updated_at": utcnow()})},
        )
        return result.matched_count > 0

    async def mark_completed(
        self,
        collection_ids: list[str],
        location_report_id: str,
    ) -> int:
        """Link collections to a report and mark them completed.

        Returns:
            The number of collections updated.
        """
        result = await self._collection.update_many(
            {"_id": {"$in": _object_ids(collection_ids)}},
            {
                "$set": mongo_ready({
                    "is_completed": True,
                    "location_report_id": location_report_id,
                    "updated_at": utcnow(),
                })
            },
        )
        logger.info(
            "Marked %d collections completed for report %s",
            result.modified_count, location_report_id,
        )
        return result.modified_count

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    async def delete(self, collection_id: str) -> bool:
        """Delete a collection document by its MongoDB ``_id``."""
        if not ObjectId.is_valid(collection_id):
            return False
        result = await self._collection.delete_one({"_id": ObjectId(collection_id)})
        if result.deleted_count > 0:
            logger.info("Deleted collection %s", collection_id)
        return result.deleted_count > 0

    async def delete_by_report(self, location_report_id: str) -> int:
        """Delete every collection linked to a report.

        Returns:
            The number of deleted documents.
        """
        result = await self._collection.delete_many(
            {"location_report_id": location_report_id}
        )
        logger.info(
            "Deleted %d collections of report %s",
            result.deleted_count, location_report_id,
        )
        return result.deleted_count
