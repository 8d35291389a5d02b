"""Admin and collector-profile business logic service.

Handles collector management (creation, location assignment,
deactivation), collectors' own profile edits, and dashboard statistics.
"""

import logging
from typing import Any, Optional

from fastapi import HTTPException, status

from collectdesk.auth.collector_token import generate_collector_token
from collectdesk.dal.collection_reports_dal import CollectionReportDAL
from collectdesk.dal.collections_dal import CollectionDAL
from collectdesk.dal.collectors_dal import CollectorDAL
from collectdesk.dal.locations_dal import LocationDAL
from collectdesk.dal.machines_dal import MachineDAL
from collectdesk.models.collector import Collector, CollectorProfile
from collectdesk.models.common import ActivityAction, ResourceType
from collectdesk.services.activity_service import ActivityService, diff_fields

logger = logging.getLogger("collectdesk.services.admin")


def _clean(value: Optional[str]) -> Optional[str]:
    """Trim a string; empty strings become None."""
    if value is None:
        return None
    value = value.strip()
    return value or None


class AdminService:
    """Service layer for collector management and statistics."""

    def __init__(
        self,
        collector_dal: CollectorDAL,
        location_dal: LocationDAL,
        machine_dal: MachineDAL,
        collection_dal: CollectionDAL,
        report_dal: CollectionReportDAL,
        activity_service: ActivityService,
    ) -> None:
        self._collector_dal = collector_dal
        self._location_dal = location_dal
        self._machine_dal = machine_dal
        self._collection_dal = collection_dal
        self._report_dal = report_dal
        self._activity = activity_service

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _require_collector(self, collector_id: str) -> Collector:
        collector = await self._collector_dal.get_by_id(collector_id)
        if collector is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Collector not found",
            )
        return collector

    async def _check_locations(self, location_ids: list[str]) -> list[str]:
        """Return de-duplicated location ids, raising 404 for unknown ones."""
        unique_ids = list(dict.fromkeys(location_ids))
        for location_id in unique_ids:
            if await self._location_dal.get_by_id(location_id) is None:
                raise HTTPException(
                    status_code=status.HTTP_404_NOT_FOUND,
                    detail=f"Location {location_id} not found",
                )
        return unique_ids

    # ------------------------------------------------------------------
    # Collectors
    # ------------------------------------------------------------------

    async def create_collector(
        self,
        actor: str,
        username: str,
        email: Optional[str] = None,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        phone: Optional[str] = None,
        location_ids: Optional[list[str]] = None,
    ) -> Collector:
        """Create a collector and issue their access token.

        Raises:
            HTTPException 400: Empty username.
            HTTPException 404: Unknown location id.
            HTTPException 409: Username already taken.
        """
        username = username.strip()
        if not username:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Username is required",
            )
        email = _clean(email)
        if await self._collector_dal.get_by_username(username) is not None:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f"Username {username} is already taken",
            )

        collector = Collector(
            username=username,
            collector_token=generate_collector_token(),
            email=email,
            profile=CollectorProfile(
                first_name=_clean(first_name),
                last_name=_clean(last_name),
                phone=_clean(phone),
            ),
            assigned_location_ids=await self._check_locations(location_ids or []),
        )
        collector = await self._collector_dal.create(collector)
        await self._activity.record(
            actor=actor,
            action=ActivityAction.CREATE,
            resource=ResourceType.COLLECTOR,
            resource_id=collector.id,
            details=f"Created collector {collector.username}",
        )
        return collector

    async def list_collectors(self, include_inactive: bool = False) -> list[Collector]:
        """List collectors sorted by username."""
        return await self._collector_dal.list_all(include_inactive=include_inactive)

    async def assign_locations(
        self,
        actor: str,
        collector_id: str,
        location_ids: list[str],
    ) -> Collector:
        """Replace the set of locations a collector may work on."""
        collector = await self._require_collector(collector_id)
        location_ids = await self._check_locations(location_ids)
        await self._collector_dal.update(
            collector.id, {"assigned_location_ids": location_ids}
        )
        await self._activity.record(
            actor=actor,
            action=ActivityAction.UPDATE,
            resource=ResourceType.COLLECTOR,
            resource_id=collector.id,
            details=f"Assigned {len(location_ids)} locations to {collector.username}",
            changes=diff_fields(
                {"assigned_location_ids": collector.assigned_location_ids},
                {"assigned_location_ids": location_ids},
            ),
        )
        return collector.model_copy(update={"assigned_location_ids": location_ids})

    async def deactivate_collector(self, actor: str, collector_id: str) -> Collector:
        """Deactivate a collector; their token stops working immediately."""
        collector = await self._require_collector(collector_id)
        await self._collector_dal.update(collector.id, {"is_active": False})
        logger.info("Collector %s deactivated by %s", collector.username, actor)
        await self._activity.record(
            actor=actor,
            action=ActivityAction.DELETE,
            resource=ResourceType.COLLECTOR,
            resource_id=collector.id,
            details=f"Deactivated collector {collector.username}",
        )
        return collector.model_copy(update={"is_active": False})

    # ------------------------------------------------------------------
    # Profile
    # ------------------------------------------------------------------

    async def update_profile(
        self,
        collector: Collector,
        changes: dict[str, Any],
    ) -> Collector:
        """Apply a collector's edits to their own profile.

        Only keys present in ``changes`` are touched. Username must stay
        non-empty and unique. Emails arrive validated by the request schema.
        """
        updates: dict[str, Any] = {}

        if "username" in changes:
            username = _clean(changes["username"])
            if username is None:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail="Username cannot be empty",
                )
            if username != collector.username:
                if await self._collector_dal.get_by_username(username) is not None:
                    raise HTTPException(
                        status_code=status.HTTP_409_CONFLICT,
                        detail=f"Username {username} is already taken",
                    )
                updates["username"] = username

        if "email" in changes:
            updates["email"] = _clean(changes["email"])

        profile_changes = {
            key: _clean(changes[key])
            for key in ("first_name", "last_name", "phone")
            if key in changes
        }
        if profile_changes:
            updates["profile"] = collector.profile.model_copy(
                update=profile_changes
            ).model_dump()

        if not updates:
            return collector

        await self._collector_dal.update(collector.id, updates)
        await self._activity.record(
            actor=collector.username,
            action=ActivityAction.UPDATE,
            resource=ResourceType.COLLECTOR,
            resource_id=collector.id,
            details="Updated own profile",
            changes=diff_fields(collector.model_dump(), updates),
        )
        if "profile" in updates:
            updates["profile"] = CollectorProfile(**updates["profile"])
        return collector.model_copy(update=updates)

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    async def get_dashboard_stats(self) -> dict[str, Any]:
        """Get aggregate dashboard statistics.

        Returns:
            A dict with total_locations, total_machines, active_collectors,
            total_reports, total_collections and open_collections.
        """
        return {
            "total_locations": await self._location_dal.count_all(),
            "total_machines": await self._machine_dal.count_all(),
            "active_collectors": await self._collector_dal.count_active(),
            "total_reports": await self._report_dal.count_all(),
            "total_collections": await self._collection_dal.count_all(),
            "open_collections": await self._collection_dal.count_in_progress(),
        }
