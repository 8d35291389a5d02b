"""SAS window and metrics service.

The SAS window of a collection runs from the machine's previous
collection to the current collection timestamp. The machine-reported
movement summed over that window is compared with the metered movement.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Optional

from collectdesk.config import settings
from collectdesk.dal.collections_dal import CollectionDAL
from collectdesk.dal.machines_dal import MachineDAL
from collectdesk.dal.meters_dal import MeterDAL
from collectdesk.models.collection import SasMeters
from collectdesk.models.common import ensure_utc
from collectdesk.services.movement_math import sum_sas_movement

logger = logging.getLogger("collectdesk.services.sas")


class SasService:
    """Computes SAS windows and the SAS movement inside them."""

    def __init__(
        self,
        collection_dal: CollectionDAL,
        machine_dal: MachineDAL,
        meter_dal: MeterDAL,
    ) -> None:
        self._collection_dal = collection_dal
        self._machine_dal = machine_dal
        self._meter_dal = meter_dal

    async def get_sas_time_period(
        self,
        machine_id: str,
        end_time: datetime,
        start_time: Optional[datetime] = None,
    ) -> tuple[datetime, datetime]:
        """Resolve the SAS window ending at ``end_time``.

        Start resolution order:
            1. ``start_time`` when given and before the end;
            2. the machine's latest collection older than the end minus
               the buffer (so the collection being saved is skipped);
            3. the machine's ``collection_time`` when before the end;
            4. the fallback window (24 hours) before the end.

        Returns:
            A ``(start, end)`` tuple of UTC datetimes with start < end.
        """
        end = ensure_utc(end_time)
        fallback = end - timedelta(hours=settings.SAS_FALLBACK_HOURS)

        if start_time is not None:
            start = ensure_utc(start_time)
            if start < end:
                return start, end
            logger.warning(
                "Custom SAS start %s not before end %s for machine %s; using fallback",
                start.isoformat(), end.isoformat(), machine_id,
            )
            return fallback, end

        cutoff = end - timedelta(seconds=settings.SAS_PREVIOUS_BUFFER_SECONDS)
        previous = await self._collection_dal.get_latest_before(machine_id, cutoff)
        if previous is not None:
            if previous.timestamp < end:
                return previous.timestamp, end
            return fallback, end

        machine = await self._machine_dal.get_by_id(machine_id)
        if (
            machine is not None
            and machine.collection_time is not None
            and machine.collection_time < end
        ):
            return machine.collection_time, end

        return fallback, end

    async def calculate_sas_metrics(
        self,
        machine_id: str,
        start: datetime,
        end: datetime,
    ) -> dict[str, Any]:
        """Sum the SAS readings of a machine with ``start <= read_at <= end``.

        Returns:
            Dict with drop, total_cancelled_credits, gross, games_played,
            jackpot, sas_start_time and sas_end_time.
        """
        readings = await self._meter_dal.list_in_window(machine_id, start, end)
        metrics = sum_sas_movement(readings)
        logger.debug(
            "SAS metrics for machine %s from %d readings: gross=%s",
            machine_id, len(readings), metrics["gross"],
        )
        return {**metrics, "sas_start_time": start, "sas_end_time": end}

    async def sas_meters_for(
        self,
        machine_id: str,
        end_time: datetime,
        start_time: Optional[datetime] = None,
    ) -> SasMeters:
        """Resolve the window and its metrics as a SasMeters sub-document."""
        start, end = await self.get_sas_time_period(machine_id, end_time, start_time)
        metrics = await self.calculate_sas_metrics(machine_id, start, end)
        return SasMeters(**metrics)
