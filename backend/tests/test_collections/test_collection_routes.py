"""Integration tests for collection and collection report routes.

These tests use HTTPX AsyncClient with the FastAPI app and
mongomock-motor so no real MongoDB instance is needed.
"""

import os
os.environ.setdefault("JWT_SECRET", "test-secret-key-for-unit-tests-only")

from datetime import datetime, timezone

import pytest
import pytest_asyncio

from collectdesk.auth.collector_token import generate_collector_token
from collectdesk.dal.collectors_dal import CollectorDAL
from collectdesk.dal.locations_dal import LocationDAL
from collectdesk.dal.machines_dal import MachineDAL
from collectdesk.models.collector import Collector
from collectdesk.models.location import Location
from collectdesk.models.machine import Machine, MeterPair

INSTALLED = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def location(mock_db):
    return await LocationDAL(mock_db).create(Location(name="Harbor Bar", profit_share=50))


@pytest_asyncio.fixture
async def machine(mock_db, location):
    return await MachineDAL(mock_db).create(
        Machine(
            serial_number="SN-001",
            custom_name="Lucky 7",
            location_id=location.id,
            collection_meters=MeterPair(meters_in=1000, meters_out=400),
            collection_time=INSTALLED,
        )
    )


@pytest_asyncio.fixture
async def collector_headers(mock_db, location):
    collector = await CollectorDAL(mock_db).create(
        Collector(
            username="sam",
            collector_token=generate_collector_token(),
            assigned_location_ids=[location.id],
        )
    )
    return {"X-Collector-Token": collector.collector_token}


@pytest_asyncio.fixture
async def outsider_headers(mock_db):
    collector = await CollectorDAL(mock_db).create(
        Collector(username="kim", collector_token=generate_collector_token())
    )
    return {"X-Collector-Token": collector.collector_token}


def _body(machine, **extra):
    return {
        "machine_id": machine.id,
        "meters_in": 1500,
        "meters_out": 600,
        "timestamp": "2024-05-08T09:00:00Z",
        **extra,
    }


async def _finalize(api_client, headers, location, **inputs):
    response = await api_client.post(
        "/api/collection-reports",
        json={"location_id": location.id, "timestamp": "2024-05-08T10:00:00Z", **inputs},
        headers=headers,
    )
    assert response.status_code == 201, response.text
    return response.json()


# ---------------------------------------------------------------------------
# /api/collections
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
class TestCollectionRoutes:

    async def test_create_collection(self, api_client, admin_headers, machine):
        response = await api_client.post("/api/collections", json=_body(machine), headers=admin_headers)

        assert response.status_code == 201
        data = response.json()
        assert data["warnings"] == []
        collection = data["collection"]
        assert collection["machine_name"] == "Lucky 7"
        assert collection["prev_in"] == 1000
        assert collection["movement"] == {"drop": 500, "cancelled_credits": 200, "gross": 300}
        assert collection["is_completed"] is False
        assert collection["location_report_id"] == ""
        assert collection["sas_meters"]["sas_start_time"].startswith("2024-05-01T09:00:00")

    async def test_create_by_assigned_collector(self, api_client, collector_headers, machine):
        response = await api_client.post(
            "/api/collections", json=_body(machine), headers=collector_headers
        )
        assert response.status_code == 201
        assert response.json()["collection"]["collector"] == "sam"

    async def test_create_by_unassigned_collector(self, api_client, outsider_headers, machine):
        response = await api_client.post(
            "/api/collections", json=_body(machine), headers=outsider_headers
        )
        assert response.status_code == 403

    async def test_create_requires_auth(self, api_client, machine):
        response = await api_client.post("/api/collections", json=_body(machine))
        assert response.status_code == 401

    async def test_unknown_collector_token(self, api_client, machine):
        response = await api_client.post(
            "/api/collections",
            json=_body(machine),
            headers={"X-Collector-Token": generate_collector_token()},
        )
        assert response.status_code == 401

    async def test_negative_meters(self, api_client, admin_headers, machine):
        response = await api_client.post(
            "/api/collections", json=_body(machine, meters_in=-10), headers=admin_headers
        )
        assert response.status_code == 400
        detail = response.json()["detail"]
        assert detail["message"] == "Invalid meter entry"
        assert "Meters in cannot be negative" in detail["errors"]

    async def test_lower_meters_warn(self, api_client, admin_headers, machine):
        response = await api_client.post(
            "/api/collections", json=_body(machine, meters_in=900), headers=admin_headers
        )
        assert response.status_code == 201
        warnings = response.json()["warnings"]
        assert len(warnings) == 1
        assert "Was there a RAM clear?" in warnings[0]

    async def test_duplicate_open_collection(self, api_client, admin_headers, machine):
        await api_client.post("/api/collections", json=_body(machine), headers=admin_headers)
        response = await api_client.post("/api/collections", json=_body(machine), headers=admin_headers)
        assert response.status_code == 409

    async def test_list_filters(self, api_client, admin_headers, machine, location):
        await api_client.post("/api/collections", json=_body(machine), headers=admin_headers)

        response = await api_client.get(
            "/api/collections",
            params={"location_id": location.id, "incomplete_only": "true"},
            headers=admin_headers,
        )
        assert response.status_code == 200
        assert len(response.json()) == 1

        response = await api_client.get(
            "/api/collections", params={"is_completed": "true"}, headers=admin_headers
        )
        assert response.json() == []

    async def test_list_hidden_from_outsider(self, api_client, admin_headers, outsider_headers, machine):
        await api_client.post("/api/collections", json=_body(machine), headers=admin_headers)

        response = await api_client.get("/api/collections", headers=outsider_headers)
        assert response.status_code == 200
        assert response.json() == []

    async def test_get_patch_delete(self, api_client, admin_headers, machine):
        created = await api_client.post("/api/collections", json=_body(machine), headers=admin_headers)
        collection_id = created.json()["collection"]["id"]

        response = await api_client.get(f"/api/collections/{collection_id}", headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["id"] == collection_id

        response = await api_client.patch(
            f"/api/collections/{collection_id}",
            json={"meters_out": 500, "notes": "Hopper refilled"},
            headers=admin_headers,
        )
        assert response.status_code == 200
        collection = response.json()["collection"]
        assert collection["movement"]["cancelled_credits"] == 100
        assert collection["movement"]["gross"] == 400
        assert collection["notes"] == "Hopper refilled"

        response = await api_client.delete(f"/api/collections/{collection_id}", headers=admin_headers)
        assert response.status_code == 200
        assert response.json() == {"deleted": True, "collection_id": collection_id}

        response = await api_client.get(f"/api/collections/{collection_id}", headers=admin_headers)
        assert response.status_code == 404


# ---------------------------------------------------------------------------
# /api/collection-reports and /api/collection-report/{id}
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
class TestCollectionReportRoutes:

    async def test_create_report(self, api_client, collector_headers, machine, location):
        await api_client.post("/api/collections", json=_body(machine), headers=collector_headers)

        report = await _finalize(
            api_client, collector_headers, location, taxes=10, amount_collected=100
        )

        assert report["collector"] == "sam"
        assert report["total_gross"] == 300
        assert report["partner_profit"] == 140
        assert report["amount_to_collect"] == 160
        assert report["current_balance"] == 60
        assert report["variation"] == 300
        assert report["machines_collected"] == 1

    async def test_report_needs_collections(self, api_client, admin_headers, location):
        response = await api_client.post(
            "/api/collection-reports", json={"location_id": location.id}, headers=admin_headers
        )
        assert response.status_code == 400

    async def test_negative_taxes_rejected(self, api_client, admin_headers, machine, location):
        await api_client.post("/api/collections", json=_body(machine), headers=admin_headers)
        response = await api_client.post(
            "/api/collection-reports",
            json={"location_id": location.id, "taxes": -1},
            headers=admin_headers,
        )
        assert response.status_code == 422

    async def test_get_report_detail(self, api_client, admin_headers, machine, location):
        await api_client.post("/api/collections", json=_body(machine), headers=admin_headers)
        report = await _finalize(api_client, admin_headers, location)

        response = await api_client.get(
            f"/api/collection-report/{report['location_report_id']}", headers=admin_headers
        )

        assert response.status_code == 200
        data = response.json()
        assert data["report"]["location_report_id"] == report["location_report_id"]
        assert len(data["collections"]) == 1
        assert data["collections"][0]["is_completed"] is True
        assert data["metrics"]["machines"] == "1/1"
        assert data["metrics"]["gross"] == 300

    async def test_get_unknown_report(self, api_client, admin_headers):
        response = await api_client.get("/api/collection-report/missing", headers=admin_headers)
        assert response.status_code == 404

    async def test_list_reports(self, api_client, admin_headers, machine, location):
        await api_client.post("/api/collections", json=_body(machine), headers=admin_headers)
        await _finalize(api_client, admin_headers, location, amount_collected=100)

        response = await api_client.get(
            "/api/collection-reports", params={"time_period": "All"}, headers=admin_headers
        )

        assert response.status_code == 200
        rows = response.json()
        assert len(rows) == 1
        assert rows[0]["location_name"] == "Harbor Bar"
        assert rows[0]["machines"] == "1/1"
        assert rows[0]["balance"] == 50

    async def test_list_rejects_unknown_period(self, api_client, admin_headers):
        response = await api_client.get(
            "/api/collection-reports", params={"time_period": "Decade"}, headers=admin_headers
        )
        assert response.status_code == 400

    async def test_monthly_summary(self, api_client, admin_headers, machine, location):
        await api_client.post("/api/collections", json=_body(machine), headers=admin_headers)
        await _finalize(api_client, admin_headers, location)

        response = await api_client.get(
            "/api/collection-reports/monthly",
            params={"start_date": "2024-05-01T00:00:00Z", "end_date": "2024-05-31T23:59:59Z"},
            headers=admin_headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["summary"]["gross"] == 300
        assert data["summary"]["report_count"] == 1
        assert data["details"][0]["location_name"] == "Harbor Bar"

    async def test_update_report(self, api_client, collector_headers, machine, location):
        await api_client.post("/api/collections", json=_body(machine), headers=collector_headers)
        report = await _finalize(api_client, collector_headers, location)

        response = await api_client.put(
            f"/api/collection-report/{report['location_report_id']}",
            json={"advance": 100, "amount_collected": 50},
            headers=collector_headers,
        )

        assert response.status_code == 200
        data = response.json()
        # floor((300 - 100) * 0.5)
        assert data["partner_profit"] == 100
        assert data["amount_to_collect"] == 100
        assert data["current_balance"] == 50

        location_response = await api_client.get(
            f"/api/locations/{location.id}", headers=collector_headers
        )
        assert location_response.json()["collection_balance"] == 50

    async def test_issues_and_fix(self, api_client, admin_headers, machine, location):
        await api_client.post("/api/collections", json=_body(machine), headers=admin_headers)
        report = await _finalize(api_client, admin_headers, location)
        report_id = report["location_report_id"]

        response = await api_client.get(
            f"/api/collection-report/{report_id}/issues", headers=admin_headers
        )
        assert response.status_code == 200
        assert response.json()["issue_count"] == 0

        response = await api_client.post(
            f"/api/collection-report/{report_id}/fix", headers=admin_headers
        )
        assert response.status_code == 200
        assert response.json()["remaining_issues"] == []

    async def test_fix_requires_admin(self, api_client, collector_headers, machine, location):
        await api_client.post("/api/collections", json=_body(machine), headers=collector_headers)
        report = await _finalize(api_client, collector_headers, location)

        response = await api_client.post(
            f"/api/collection-report/{report['location_report_id']}/fix",
            headers=collector_headers,
        )
        assert response.status_code == 401

    async def test_check_all_issues_needs_a_target(self, api_client, admin_headers):
        response = await api_client.get(
            "/api/collection-reports/check-all-issues", headers=admin_headers
        )
        assert response.status_code == 400

    async def test_check_all_issues_by_machine(self, api_client, collector_headers, machine, location):
        await api_client.post("/api/collections", json=_body(machine), headers=collector_headers)
        report = await _finalize(api_client, collector_headers, location)

        response = await api_client.get(
            "/api/collection-reports/check-all-issues",
            params={"machine_id": machine.id},
            headers=collector_headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["machine_id"] == machine.id
        assert data["issue_count"] == 0
        assert [r["location_report_id"] for r in data["reports"]] == [report["location_report_id"]]
        assert data["machine_issues"] == []

    async def test_check_all_issues_by_report(self, api_client, admin_headers, machine, location):
        await api_client.post("/api/collections", json=_body(machine), headers=admin_headers)
        report = await _finalize(api_client, admin_headers, location)

        response = await api_client.get(
            "/api/collection-reports/check-all-issues",
            params={"report_id": report["location_report_id"]},
            headers=admin_headers,
        )

        assert response.status_code == 200
        assert response.json()["issues"] == []

    async def test_check_all_issues_hidden_from_outsider(self, api_client, outsider_headers, machine):
        response = await api_client.get(
            "/api/collection-reports/check-all-issues",
            params={"machine_id": machine.id},
            headers=outsider_headers,
        )
        assert response.status_code == 403

    async def test_fix_all_sas_times(self, api_client, admin_headers, machine, location):
        await api_client.post("/api/collections", json=_body(machine), headers=admin_headers)
        await _finalize(api_client, admin_headers, location)

        response = await api_client.post(
            "/api/collection-reports/fix-all-sas-times", headers=admin_headers
        )

        assert response.status_code == 200
        assert response.json() == {
            "reports_checked": 1,
            "reports_fixed": 0,
            "collections_fixed": 0,
            "fixed_reports": [],
        }

    async def test_fix_all_sas_times_requires_admin(self, api_client, collector_headers):
        response = await api_client.post(
            "/api/collection-reports/fix-all-sas-times", headers=collector_headers
        )
        assert response.status_code == 401

    async def test_fix_machine_history(self, api_client, admin_headers, machine, location):
        await api_client.post("/api/collections", json=_body(machine), headers=admin_headers)
        await _finalize(api_client, admin_headers, location)

        response = await api_client.post(
            "/api/collection-reports/fix-machine-history",
            params={"machine_id": machine.id},
            headers=admin_headers,
        )

        assert response.status_code == 200
        assert response.json() == {
            "machine_id": machine.id,
            "history_entries": 1,
            "remaining_issues": [],
        }

    async def test_delete_report(self, api_client, admin_headers, machine, location):
        await api_client.post("/api/collections", json=_body(machine), headers=admin_headers)
        report = await _finalize(api_client, admin_headers, location)
        report_id = report["location_report_id"]

        response = await api_client.delete(f"/api/collection-report/{report_id}", headers=admin_headers)

        assert response.status_code == 200
        assert response.json() == {
            "deleted": True,
            "location_report_id": report_id,
            "deleted_collections": 1,
        }
        machine_response = await api_client.get(f"/api/machines/{machine.id}", headers=admin_headers)
        assert machine_response.json()["collection_meters"] == {"meters_in": 1000, "meters_out": 400}

        response = await api_client.get(f"/api/collection-report/{report_id}", headers=admin_headers)
        assert response.status_code == 404
