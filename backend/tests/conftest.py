"""
Pytest configuration and fixtures for CollectDesk tests.

This module provides shared fixtures for testing async FastAPI endpoints
and MongoDB interactions using mongomock-motor (no real MongoDB required).
"""

import os

# Set required env vars before any app imports
os.environ.setdefault("JWT_SECRET", "test-secret-key-for-unit-tests-only")
# Disable rate limiting in tests
os.environ["TESTING"] = "1"


import pytest
import pytest_asyncio
from mongomock_motor import AsyncMongoMockClient

from collectdesk.models.common import AuthType


@pytest.fixture
def anyio_backend():
    """Specify anyio backend for async tests."""
    return "asyncio"


@pytest_asyncio.fixture
async def test_db():
    """In-memory MongoDB mock database for unit tests.

    Uses mongomock-motor so no real MongoDB instance is needed.
    The database is ephemeral -- it disappears after each test.
    """
    client = AsyncMongoMockClient()
    db = client["collectdesk_test"]
    yield db
    client.close()


@pytest_asyncio.fixture
async def mock_db(test_db):
    """Patch every module-level ``get_database`` reference to the mock db."""
    from collectdesk.auth import dependencies as auth_deps_module
    from collectdesk.dal import database as db_module
    from collectdesk.routes import admin as admin_route_module
    from collectdesk.routes import collection_reports as reports_route_module
    from collectdesk.routes import collections as collections_route_module
    from collectdesk.routes import locations as locations_route_module
    from collectdesk.routes import machines as machines_route_module
    from collectdesk.routes import profile as profile_route_module

    modules = [
        db_module,
        auth_deps_module,
        admin_route_module,
        reports_route_module,
        collections_route_module,
        locations_route_module,
        machines_route_module,
        profile_route_module,
    ]
    originals = [module.get_database for module in modules]
    for module in modules:
        module.get_database = lambda: test_db

    yield test_db

    for module, original in zip(modules, originals):
        module.get_database = original


@pytest_asyncio.fixture
async def client():
    """Async HTTP client for testing FastAPI endpoints."""
    from httpx import ASGITransport, AsyncClient
    from collectdesk.main import app

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture
async def api_client(mock_db):
    """Async HTTP client wired to the FastAPI app with the mocked db."""
    from httpx import ASGITransport, AsyncClient
    from collectdesk.main import app

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def admin_headers():
    """Authorization header carrying a valid admin JWT."""
    from collectdesk.auth.jwt import create_access_token

    token = create_access_token(data={"sub": "admin", "role": "admin"})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_caller():
    """Caller context as produced by ``get_admin_or_collector`` for an admin."""
    return {"auth_type": AuthType.ADMIN, "username": "admin", "location_ids": None}


