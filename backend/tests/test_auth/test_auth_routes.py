"""Integration tests for auth route handlers."""

import os
from datetime import timedelta

os.environ.setdefault("JWT_SECRET", "test-secret-key-for-unit-tests-only")

import pytest

from collectdesk.auth.collector_token import generate_collector_token
from collectdesk.auth.jwt import create_access_token
from collectdesk.config import settings
from collectdesk.dal.collectors_dal import CollectorDAL
from collectdesk.models.collector import Collector


@pytest.mark.asyncio
class TestAdminLogin:

    async def test_login_success(self, api_client):
        response = await api_client.post(
            "/api/auth/admin/login",
            json={"username": settings.ADMIN_USERNAME, "password": settings.ADMIN_PASSWORD},
        )
        assert response.status_code == 200
        data = response.json()
        assert data["token_type"] == "bearer"
        assert data["user"]["username"] == settings.ADMIN_USERNAME

        me = await api_client.get(
            "/api/auth/me", headers={"Authorization": f"Bearer {data['access_token']}"}
        )
        assert me.json() == {"role": "admin", "username": settings.ADMIN_USERNAME}

    async def test_wrong_password(self, api_client):
        response = await api_client.post(
            "/api/auth/admin/login",
            json={"username": settings.ADMIN_USERNAME, "password": "definitely-wrong"},
        )
        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid credentials"

    async def test_missing_fields(self, api_client):
        response = await api_client.post("/api/auth/admin/login", json={"username": "admin"})
        assert response.status_code == 422


@pytest.mark.asyncio
class TestMe:

    async def test_collector(self, api_client, mock_db):
        collector = await CollectorDAL(mock_db).create(
            Collector(
                username="sam",
                collector_token=generate_collector_token(),
                assigned_location_ids=["loc-1"],
            )
        )
        response = await api_client.get(
            "/api/auth/me", headers={"X-Collector-Token": collector.collector_token}
        )
        assert response.status_code == 200
        data = response.json()
        assert data["role"] == "collector"
        assert data["username"] == "sam"
        assert data["assigned_location_ids"] == ["loc-1"]

    async def test_no_credentials(self, api_client):
        response = await api_client.get("/api/auth/me")
        assert response.status_code == 401

    async def test_malformed_collector_token(self, api_client):
        response = await api_client.get("/api/auth/me", headers={"X-Collector-Token": "abc"})
        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid collector token format"

    async def test_expired_admin_token(self, api_client):
        token = create_access_token(
            data={"sub": "admin", "role": "admin"}, expires_delta=timedelta(seconds=-1)
        )
        response = await api_client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401
        assert response.json()["detail"] == "Token has expired"

    async def test_non_admin_jwt(self, api_client):
        token = create_access_token(data={"sub": "someone", "role": "viewer"})
        response = await api_client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 403
