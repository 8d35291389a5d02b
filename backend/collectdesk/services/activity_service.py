"""Activity log business logic service.

Used by the other services to record who changed what. A failed audit
write is logged and never fails the change it describes.
"""

import logging
from typing import Any, Optional

from pymongo.errors import PyMongoError

from collectdesk.dal.activity_dal import ActivityDAL
from collectdesk.models.activity import ActivityLog
from collectdesk.models.common import ActivityAction, ResourceType

logger = logging.getLogger("collectdesk.services.activity")


def diff_fields(before: dict[str, Any], after: dict[str, Any]) -> dict[str, Any]:
    """Return ``{field: {"old": ..., "new": ...}}`` for fields that changed."""
    return {
        key: {"old": before.get(key), "new": value}
        for key, value in after.items()
        if before.get(key) != value
    }


class ActivityService:
    """Service layer for the audit trail."""

    def __init__(self, activity_dal: ActivityDAL) -> None:
        self._dal = activity_dal

    async def record(
        self,
        actor: str,
        action: ActivityAction,
        resource: ResourceType,
        resource_id: str,
        details: str = "",
        changes: Optional[dict[str, Any]] = None,
    ) -> Optional[ActivityLog]:
        """Record one activity entry.

        Returns:
            The stored ActivityLog, or None if the write failed.
        """
        entry = ActivityLog(
            actor=actor,
            action=action,
            resource=resource,
            resource_id=resource_id,
            details=details,
            changes=changes or {},
        )
        try:
            return await self._dal.create(entry)
        except PyMongoError as e:
            logger.error(
                "Failed to record %s %s %s: %s", action, resource, resource_id, e
            )
            return None

    async def list_recent(
        self,
        resource: Optional[ResourceType] = None,
        resource_id: Optional[str] = None,
        limit: int = 50,
    ) -> list[dict[str, Any]]:
        """Return recent activity as JSON-ready dicts, newest first."""
        entries = await self._dal.get_recent(
            resource=resource, resource_id=resource_id, limit=limit
        )
        return [
            {
                "id": entry.id,
                "actor": entry.actor,
                "action": str(entry.action),
                "resource": str(entry.resource),
                "resource_id": entry.resource_id,
                "details": entry.details,
                "changes": entry.changes,
                "created_at": entry.created_at.isoformat(),
            }
            for entry in entries
        ]
