"""Collector Data Access Layer -- MongoDB operations for the collectors collection."""

import logging
from typing import Any, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase

from collectdesk.models.collector import Collector
from collectdesk.models.common import mongo_ready, utcnow

logger = logging.getLogger("collectdesk.dal.collectors")

COLLECTION = "collectors"


def _to_collector(doc: dict) -> Collector:
    doc["_id"] = str(doc["_id"])
    return Collector(**doc)


class CollectorDAL:
    """Data access layer for the collectors collection."""

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._collection = db[COLLECTION]

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create(self, collector: Collector) -> Collector:
        """Insert a new collector document and return it with its generated id."""
        doc = collector.to_mongo_dict()
        result = await self._collection.insert_one(doc)
        collector.id = str(result.inserted_id)
        logger.info("Created collector %s (%s)", collector.id, collector.username)
        return collector

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    async def get_by_id(self, collector_id: str) -> Optional[Collector]:
        """Find a collector by its MongoDB ``_id``."""
        if not ObjectId.is_valid(collector_id):
            return None
        doc = await self._collection.find_one({"_id": ObjectId(collector_id)})
        if doc is None:
            return None
        return _to_collector(doc)

    async def get_by_token(self, collector_token: str) -> Optional[Collector]:
        """Find an active collector by their UUID4 token.

        Args:
            collector_token: The token presented in ``X-Collector-Token``.

        Returns:
            A Collector instance, or None if not found or deactivated.
        """
        doc = await self._collection.find_one(
            {"collector_token": collector_token, "is_active": True}
        )
        if doc is None:
            return None
        return _to_collector(doc)

    async def get_by_username(self, username: str) -> Optional[Collector]:
        """Find a collector by username."""
        doc = await self._collection.find_one({"username": username})
        if doc is None:
            return None
        return _to_collector(doc)

    async def list_by_usernames(self, usernames: list[str]) -> list[Collector]:
        """Fetch the collectors with the given usernames."""
        cursor = self._collection.find({"username": {"$in": usernames}})
        return [_to_collector(doc) async for doc in cursor]

    async def list_all(self, include_inactive: bool = False) -> list[Collector]:
        """List collectors sorted by username."""
        query: dict[str, Any] = {} if include_inactive else {"is_active": True}
        cursor = self._collection.find(query).sort("username", 1)
        return [_to_collector(doc) async for doc in cursor]

    async def count_active(self) -> int:
        """Count active collectors."""
        return await self._collection.count_documents({"is_active": True})

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    async def update(self, collector_id: str, fields: dict[str, Any]) -> bool:
        """Set arbitrary fields on a collector.

        Returns:
            True if the collector exists, False otherwise.
        """
        if not ObjectId.is_valid(collector_id):
            return False
        result = await self._collection.update_one(
            {"_id": ObjectId(collector_id)},
            {"$set": mongo_ready({**fields, "updated_at": utcnow()})},
        )
        return result.matched_count > 0
