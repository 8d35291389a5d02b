"""Activity Log Data Access Layer -- MongoDB operations for activity_logs.

Entries are write-once and auto-deleted after 90 days via TTL index.
"""

import logging
from typing import Any, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from collectdesk.models.activity import ActivityLog
from collectdesk.models.common import ResourceType

logger = logging.getLogger("collectdesk.dal.activity")

COLLECTION = "activity_logs"


class ActivityDAL:
    """Data access layer for the activity_logs collection."""

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._collection = db[COLLECTION]

    async def create(self, entry: ActivityLog) -> ActivityLog:
        """Insert a new activity entry.

        Args:
            entry: An ActivityLog model instance (id may be None).

        Returns:
            The ActivityLog with its ``id`` populated.
        """
        doc = entry.to_mongo_dict()
        result = await self._collection.insert_one(doc)
        entry.id = str(result.inserted_id)
        logger.info(
            "Activity %s %s %s by %s",
            entry.action, entry.resource, entry.resource_id, entry.actor,
        )
        return entry

    async def get_recent(
        self,
        resource: Optional[ResourceType] = None,
        resource_id: Optional[str] = None,
        limit: int = 50,
    ) -> list[ActivityLog]:
        """Get recent activity, newest first.

        Args:
            resource: Only entries about this resource type.
            resource_id: Only entries about this resource.
            limit: Maximum number of results.

        Returns:
            A list of ActivityLog instances sorted by created_at descending.
        """
        query: dict[str, Any] = {}
        if resource is not None:
            query["resource"] = str(resource)
        if resource_id is not None:
            query["resource_id"] = resource_id
        cursor = self._collection.find(query).sort("created_at", -1).limit(limit)
        entries: list[ActivityLog] = []
        async for doc in cursor:
            doc["_id"] = str(doc["_id"])
            entries.append(ActivityLog(**doc))
        return entries
