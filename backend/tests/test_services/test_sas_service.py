"""Tests for SAS window resolution and metric summing."""

import os
os.environ.setdefault("JWT_SECRET", "test-secret-key-for-unit-tests-only")

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from collectdesk.dal.collections_dal import CollectionDAL
from collectdesk.dal.machines_dal import MachineDAL
from collectdesk.dal.meters_dal import MeterDAL
from collectdesk.models.collection import Collection
from collectdesk.models.machine import Machine
from collectdesk.models.meter import MeterReading, SasMovement
from collectdesk.services.sas_service import SasService

INSTALLED = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)
END = datetime(2024, 5, 8, 9, 0, tzinfo=timezone.utc)


@pytest_asyncio.fixture
async def machine(test_db):
    return await MachineDAL(test_db).create(
        Machine(serial_number="SN-001", location_id="loc-1", collection_time=INSTALLED)
    )


@pytest.fixture
def sas(test_db):
    return SasService(CollectionDAL(test_db), MachineDAL(test_db), MeterDAL(test_db))


async def _store_collection(db, machine, timestamp):
    return await CollectionDAL(db).create(
        Collection(
            machine_id=machine.id,
            machine_name=machine.display_name,
            location_id=machine.location_id,
            location_name="Harbor Bar",
            collector="admin",
            timestamp=timestamp,
            meters_in=0,
            meters_out=0,
        )
    )


@pytest.mark.asyncio
class TestGetSasTimePeriod:

    async def test_custom_start_wins(self, sas, machine):
        start = datetime(2024, 5, 5, tzinfo=timezone.utc)
        assert await sas.get_sas_time_period(machine.id, END, start) == (start, END)

    async def test_custom_start_after_end_falls_back(self, sas, machine):
        start = END + timedelta(hours=1)
        window = await sas.get_sas_time_period(machine.id, END, start)
        assert window == (END - timedelta(hours=24), END)

    async def test_previous_collection_starts_window(self, test_db, sas, machine):
        previous_at = datetime(2024, 5, 4, 9, 0, tzinfo=timezone.utc)
        await _store_collection(test_db, machine, previous_at)

        assert await sas.get_sas_time_period(machine.id, END) == (previous_at, END)

    async def test_collection_inside_buffer_is_skipped(self, test_db, sas, machine):
        # The collection being saved sits right at the end of the window
        await _store_collection(test_db, machine, END - timedelta(seconds=30))

        assert await sas.get_sas_time_period(machine.id, END) == (INSTALLED, END)

    async def test_machine_collection_time(self, sas, machine):
        assert await sas.get_sas_time_period(machine.id, END) == (INSTALLED, END)

    async def test_machine_collection_time_after_end_falls_back(self, sas, machine):
        end = INSTALLED - timedelta(days=1)
        window = await sas.get_sas_time_period(machine.id, end)
        assert window == (end - timedelta(hours=24), end)

    async def test_unknown_machine_falls_back(self, sas):
        window = await sas.get_sas_time_period("000000000000000000000000", END)
        assert window == (END - timedelta(hours=24), END)

    async def test_naive_end_treated_as_utc(self, sas, machine):
        start, end = await sas.get_sas_time_period(machine.id, END.replace(tzinfo=None))
        assert end == END
        assert start < end


@pytest.mark.asyncio
class TestCalculateSasMetrics:

    async def test_window_bounds_are_inclusive(self, test_db, sas, machine):
        await MeterDAL(test_db).create_many([
            MeterReading(machine_id=machine.id, read_at=INSTALLED, movement=SasMovement(drop=10)),
            MeterReading(machine_id=machine.id, read_at=END, movement=SasMovement(drop=20, jackpot=5)),
            MeterReading(
                machine_id=machine.id,
                read_at=END + timedelta(seconds=1),
                movement=SasMovement(drop=1000),
            ),
            MeterReading(machine_id="other", read_at=END, movement=SasMovement(drop=1000)),
        ])

        metrics = await sas.calculate_sas_metrics(machine.id, INSTALLED, END)

        assert metrics["drop"] == 30
        assert metrics["gross"] == 30
        assert metrics["jackpot"] == 5
        assert metrics["sas_start_time"] == INSTALLED
        assert metrics["sas_end_time"] == END

    async def test_no_readings(self, sas, machine):
        meters = await sas.sas_meters_for(machine.id, END)
        assert meters.gross == 0
        assert meters.games_played == 0
        assert meters.sas_start_time == INSTALLED
        assert meters.sas_end_time == END
