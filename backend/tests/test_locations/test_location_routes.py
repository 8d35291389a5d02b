"""Integration tests for location and machine routes."""

import os
os.environ.setdefault("JWT_SECRET", "test-secret-key-for-unit-tests-only")

import pytest
import pytest_asyncio

from collectdesk.auth.collector_token import generate_collector_token
from collectdesk.dal.collectors_dal import CollectorDAL
from collectdesk.models.collector import Collector


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def location(api_client, admin_headers):
    response = await api_client.post(
        "/api/locations",
        json={"name": "Harbor Bar", "address": "1 Quay St", "profit_share": 40},
        headers=admin_headers,
    )
    assert response.status_code == 201, response.text
    return response.json()


@pytest_asyncio.fixture
async def machine(api_client, admin_headers, location):
    response = await api_client.post(
        "/api/machines",
        json={
            "serial_number": "SN-001",
            "location_id": location["id"],
            "game": "Fruit Fiesta",
            "meters_in": 1000,
            "meters_out": 400,
            "collection_time": "2024-05-01T09:00:00Z",
        },
        headers=admin_headers,
    )
    assert response.status_code == 201, response.text
    return response.json()


@pytest_asyncio.fixture
async def collector_headers(mock_db, location):
    collector = await CollectorDAL(mock_db).create(
        Collector(
            username="sam",
            collector_token=generate_collector_token(),
            assigned_location_ids=[location["id"]],
        )
    )
    return {"X-Collector-Token": collector.collector_token}


# ---------------------------------------------------------------------------
# Locations
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
class TestLocationRoutes:

    async def test_create_location(self, location):
        assert location["name"] == "Harbor Bar"
        assert location["profit_share"] == 40
        assert location["collection_balance"] == 0
        assert location["previous_collection_time"] is None

    async def test_default_profit_share(self, api_client, admin_headers):
        response = await api_client.post(
            "/api/locations", json={"name": "Anchor Pub"}, headers=admin_headers
        )
        assert response.status_code == 201
        assert response.json()["profit_share"] == 50

    async def test_profit_share_out_of_range(self, api_client, admin_headers):
        response = await api_client.post(
            "/api/locations", json={"name": "Anchor Pub", "profit_share": 120}, headers=admin_headers
        )
        assert response.status_code == 422

    async def test_create_requires_admin(self, api_client, collector_headers):
        response = await api_client.post(
            "/api/locations", json={"name": "Anchor Pub"}, headers=collector_headers
        )
        assert response.status_code == 401

    async def test_list_with_machines(self, api_client, admin_headers, machine):
        response = await api_client.get(
            "/api/locations", params={"with_machines": "true"}, headers=admin_headers
        )
        assert response.status_code == 200
        rows = response.json()
        assert len(rows) == 1
        assert rows[0]["machines"][0]["serial_number"] == "SN-001"
        assert rows[0]["machines"][0]["name"] == "SN-001"
        assert rows[0]["machines"][0]["collection_meters"] == {"meters_in": 1000, "meters_out": 400}

    async def test_collector_sees_assigned_only(self, api_client, admin_headers, collector_headers):
        await api_client.post("/api/locations", json={"name": "Anchor Pub"}, headers=admin_headers)

        response = await api_client.get("/api/locations", headers=collector_headers)

        assert [row["name"] for row in response.json()] == ["Harbor Bar"]

    async def test_collector_blocked_from_other_location(self, api_client, admin_headers, collector_headers):
        other = await api_client.post("/api/locations", json={"name": "Anchor Pub"}, headers=admin_headers)

        response = await api_client.get(
            f"/api/locations/{other.json()['id']}", headers=collector_headers
        )
        assert response.status_code == 403

    async def test_update_location(self, api_client, admin_headers, location):
        response = await api_client.put(
            f"/api/locations/{location['id']}",
            json={"profit_share": 60, "collection_balance": 25.5},
            headers=admin_headers,
        )
        assert response.status_code == 200
        assert response.json()["profit_share"] == 60
        assert response.json()["collection_balance"] == 25.5
        assert response.json()["name"] == "Harbor Bar"

    async def test_delete_location_with_machines(self, api_client, admin_headers, location, machine):
        response = await api_client.delete(f"/api/locations/{location['id']}", headers=admin_headers)
        assert response.status_code == 409

    async def test_delete_empty_location(self, api_client, admin_headers, location):
        response = await api_client.delete(f"/api/locations/{location['id']}", headers=admin_headers)
        assert response.status_code == 204

        response = await api_client.get(f"/api/locations/{location['id']}", headers=admin_headers)
        assert response.status_code == 404


# ---------------------------------------------------------------------------
# Machines
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
class TestMachineRoutes:

    async def test_create_machine(self, machine, location):
        assert machine["location_id"] == location["id"]
        assert machine["collection_meters"] == {"meters_in": 1000, "meters_out": 400}
        assert machine["collection_time"].startswith("2024-05-01T09:00:00")
        assert machine["collection_meters_history"] == []

    async def test_duplicate_serial(self, api_client, admin_headers, location, machine):
        response = await api_client.post(
            "/api/machines",
            json={"serial_number": "SN-001", "location_id": location["id"]},
            headers=admin_headers,
        )
        assert response.status_code == 409

    async def test_unknown_location(self, api_client, admin_headers):
        response = await api_client.post(
            "/api/machines",
            json={"serial_number": "SN-404", "location_id": "000000000000000000000000"},
            headers=admin_headers,
        )
        assert response.status_code == 404

    async def test_list_location_machines(self, api_client, collector_headers, location, machine):
        response = await api_client.get(
            f"/api/locations/{location['id']}/machines", headers=collector_headers
        )
        assert response.status_code == 200
        assert [m["id"] for m in response.json()] == [machine["id"]]

    async def test_get_machine(self, api_client, collector_headers, machine):
        response = await api_client.get(f"/api/machines/{machine['id']}", headers=collector_headers)
        assert response.status_code == 200
        assert response.json()["game"] == "Fruit Fiesta"

    async def test_ingest_meters_feeds_sas(self, api_client, admin_headers, machine):
        response = await api_client.post(
            f"/api/machines/{machine['id']}/meters",
            json={
                "readings": [
                    {"read_at": "2024-05-03T12:00:00Z", "movement": {"drop": 300, "total_cancelled_credits": 80}},
                    {"read_at": "2024-05-06T12:00:00Z", "movement": {"drop": 100, "games_played": 25}},
                ]
            },
            headers=admin_headers,
        )
        assert response.status_code == 201
        assert response.json() == {"machine_id": machine["id"], "recorded": 2}

        response = await api_client.post(
            "/api/collections",
            json={
                "machine_id": machine["id"],
                "meters_in": 1500,
                "meters_out": 600,
                "timestamp": "2024-05-08T09:00:00Z",
            },
            headers=admin_headers,
        )
        sas_meters = response.json()["collection"]["sas_meters"]
        assert sas_meters["drop"] == 400
        assert sas_meters["gross"] == 320
        assert sas_meters["games_played"] == 25

    async def test_ingest_unknown_machine(self, api_client, admin_headers):
        response = await api_client.post(
            "/api/machines/000000000000000000000000/meters",
            json={"readings": [{"read_at": "2024-05-03T12:00:00Z"}]},
            headers=admin_headers,
        )
        assert response.status_code == 404

    async def test_ingest_rejects_empty_batch(self, api_client, admin_headers, machine):
        response = await api_client.post(
            f"/api/machines/{machine['id']}/meters", json={"readings": []}, headers=admin_headers
        )
        assert response.status_code == 422
