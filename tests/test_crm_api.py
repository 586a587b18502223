"""Integration tests for the CRM and workspace API endpoints.

Services are placed on app.state directly (the lifespan is not run), with
FakeAdapter-backed registries, and requests go through httpx ASGITransport.
"""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from src.zenith.api.v1.router import router as v1_router
from src.zenith.core.storage import InMemoryStorage
from src.zenith.crm.orchestrator import SyncOrchestrator
from src.zenith.crm.registry import ConnectionRegistry
from src.zenith.records.schemas import StaffMember, WorkloadAnalytics
from tests.helpers import AIRTABLE_BASE_ID, FakeAdapterFactory

AIRTABLE_CONFIGURATION = {
    "provider": "airtable",
    "credentials": {"api_key": "pat-secret", "base_id": AIRTABLE_BASE_ID},
}

CAMPAIGN = {"id": "cmp_1", "name": "Spring Launch", "status": "active"}


def _make_app() -> FastAPI:
    app = FastAPI()
    app.include_router(v1_router)
    return app


class StaticAccess:
    def __init__(self, *allowed: str) -> None:
        self.allowed = set(allowed)

    def has_permission(self, action: str) -> bool:
        return action in self.allowed


@pytest_asyncio.fixture
async def api(settings):
    """App with an empty registry backed by fake adapters."""
    app = _make_app()
    factory = FakeAdapterFactory()
    registry = ConnectionRegistry(InMemoryStorage(), factory, settings)
    await registry.initialize()
    app.state.connection_registry = registry
    app.state.sync_orchestrator = SyncOrchestrator(registry)
    app.state.workspace_service = None

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client, app, factory


# ── Health Tests ────────────────────────────────────────────────────────────


class TestHealthEndpoints:
    """Test liveness and CRM health."""

    async def test_liveness(self, api):
        """GET /health answers without touching providers."""
        client, _, _ = api

        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    async def test_readiness_without_storage(self, api):
        """Missing storage makes the service not ready."""
        client, _, _ = api

        response = await client.get("/health/ready")

        assert response.status_code == 503
        assert response.json()["checks"]["storage"] == "not_initialized"

    async def test_readiness_with_storage(self, api):
        """Initialized storage and registry make the service ready."""
        client, app, _ = api
        app.state.storage = InMemoryStorage()

        response = await client.get("/health/ready")

        assert response.status_code == 200
        assert response.json()["status"] == "ready"
        assert response.json()["checks"]["workspace"] == "disabled"

    async def test_crm_health_without_connections(self, api):
        """An empty registry is reported unhealthy with a recommendation."""
        client, _, _ = api

        response = await client.get("/api/v1/crm/health", params={"probe": "false"})

        body = response.json()
        assert response.status_code == 200
        assert body["healthy"] is False
        assert body["connection_count"] == 0
        assert body["recommendations"]


# ── Connection Endpoint Tests ───────────────────────────────────────────────


class TestConnectionEndpoints:
    """Test connection CRUD over HTTP."""

    async def test_add_connection(self, api):
        """POST /connections -> 201 with a connected connection and no credentials."""
        client, _, _ = api

        response = await client.post(
            "/api/v1/crm/connections",
            json={"configuration": AIRTABLE_CONFIGURATION, "display_name": "Marketing"},
        )

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "connected"
        assert body["is_active"] is True
        assert body["display_name"] == "Marketing"
        assert "pat-secret" not in response.text
        assert "credentials" not in body

    async def test_add_failing_connection_is_stored(self, api):
        """A failed test still returns 201, with status error."""
        client, _, factory = api
        factory.test_result = False

        response = await client.post("/api/v1/crm/connections", json={"configuration": AIRTABLE_CONFIGURATION})

        assert response.status_code == 201
        assert response.json()["status"] == "error"
        assert response.json()["error_message"] == "Connection test failed"

    async def test_list_and_active(self, api):
        """Added connections are listed and the usable one is active."""
        client, _, _ = api
        await client.post("/api/v1/crm/connections", json={"configuration": AIRTABLE_CONFIGURATION})

        listed = await client.get("/api/v1/crm/connections")
        active = await client.get("/api/v1/crm/connections/active")

        assert len(listed.json()) == 1
        assert active.status_code == 200
        assert active.json()["id"] == listed.json()[0]["id"]

    async def test_no_active_connection_404(self, api):
        """GET /connections/active with nothing usable -> 404."""
        client, _, _ = api

        response = await client.get("/api/v1/crm/connections/active")

        assert response.status_code == 404

    async def test_update_connection(self, api):
        """PATCH changes only the supplied fields."""
        client, _, _ = api
        created = (
            await client.post("/api/v1/crm/connections", json={"configuration": AIRTABLE_CONFIGURATION})
        ).json()

        response = await client.patch(
            f"/api/v1/crm/connections/{created['id']}", json={"is_active": False}
        )

        assert response.status_code == 200
        assert response.json()["is_active"] is False
        assert response.json()["display_name"] == created["display_name"]

    async def test_unknown_connection_404(self, api):
        """PATCH, DELETE and test on an unknown id -> 404."""
        client, _, _ = api

        assert (await client.patch("/api/v1/crm/connections/nope", json={"display_name": "x"})).status_code == 404
        assert (await client.delete("/api/v1/crm/connections/nope")).status_code == 404
        assert (await client.post("/api/v1/crm/connections/nope/test")).status_code == 404

    async def test_delete_connection(self, api):
        """DELETE -> 204 and the connection is gone."""
        client, _, _ = api
        created = (
            await client.post("/api/v1/crm/connections", json={"configuration": AIRTABLE_CONFIGURATION})
        ).json()

        response = await client.delete(f"/api/v1/crm/connections/{created['id']}")

        assert response.status_code == 204
        assert (await client.get("/api/v1/crm/connections")).json() == []

    async def test_retest_connection(self, api):
        """POST /{id}/test records the new outcome."""
        client, app, _ = api
        created = (
            await client.post("/api/v1/crm/connections", json={"configuration": AIRTABLE_CONFIGURATION})
        ).json()
        app.state.connection_registry.get_adapter(created["id"]).test_result = False

        response = await client.post(f"/api/v1/crm/connections/{created['id']}/test")

        assert response.status_code == 200
        assert response.json()["status"] == "error"


# ── Sync Endpoint Tests ─────────────────────────────────────────────────────


class TestSyncEndpoint:
    """Test POST /campaigns/sync."""

    async def test_sync_creates_and_returns_links(self, api):
        """A sync returns the result and the campaign with its external id."""
        client, _, _ = api
        created = (
            await client.post("/api/v1/crm/connections", json={"configuration": AIRTABLE_CONFIGURATION})
        ).json()

        response = await client.post("/api/v1/crm/campaigns/sync", json={"campaign": CAMPAIGN})

        body = response.json()
        assert response.status_code == 200
        assert body["result"]["success"] is True
        assert body["result"]["records_created"] == 1
        assert body["campaign"]["external_ids"] == {created["id"]: "ext-1"}

    async def test_sync_without_connection_409(self, api):
        """No active connection -> 409."""
        client, _, _ = api

        response = await client.post("/api/v1/crm/campaigns/sync", json={"campaign": CAMPAIGN})

        assert response.status_code == 409
        assert response.json()["detail"] == "No active CRM connection found"

    async def test_sync_without_permission_403(self, api):
        """A refused permission -> 403."""
        client, app, _ = api
        app.state.sync_orchestrator = SyncOrchestrator(
            app.state.connection_registry, access_control=StaticAccess()
        )

        response = await client.post("/api/v1/crm/campaigns/sync", json={"campaign": CAMPAIGN})

        assert response.status_code == 403

    async def test_provider_failure_is_200_with_errors(self, api):
        """Provider errors are reported in the body, not as HTTP errors."""
        client, app, _ = api
        created = (
            await client.post("/api/v1/crm/connections", json={"configuration": AIRTABLE_CONFIGURATION})
        ).json()
        app.state.connection_registry.get_adapter(created["id"]).fail_with = RuntimeError("boom")

        response = await client.post("/api/v1/crm/campaigns/sync", json={"campaign": CAMPAIGN})

        assert response.status_code == 200
        assert response.json()["result"]["success"] is False
        assert response.json()["result"]["errors"][0]["error"] == "boom"


# ── Workspace Endpoint Tests ────────────────────────────────────────────────


class TestWorkspaceEndpoints:
    """Test staff listing and workload endpoints."""

    async def test_workspace_503_when_not_configured(self, api):
        """No workspace service -> 503."""
        client, _, _ = api

        response = await client.get("/api/v1/workspace/staff")

        assert response.status_code == 503
        assert "not initialized" in response.json()["detail"]

    async def test_list_staff(self, api):
        """Staff are returned with attribute names."""
        client, app, _ = api
        workspace = AsyncMock()
        workspace.list_staff_members.return_value = [StaffMember(id="recS", name="Ada", is_active=True)]
        app.state.workspace_service = workspace

        response = await client.get("/api/v1/workspace/staff")

        assert response.status_code == 200
        assert response.json()[0]["name"] == "Ada"
        workspace.list_staff_members.assert_awaited_once_with(active_only=True)

    async def test_workload_unknown_staff_404(self, api):
        """Workload for a missing staff member -> 404."""
        client, app, _ = api
        workspace = AsyncMock()
        workspace.get_staff_member.return_value = None
        app.state.workspace_service = workspace

        response = await client.get("/api/v1/workspace/staff/recX/workload")

        assert response.status_code == 404

    async def test_workload(self, api):
        """Workload figures are returned for a known staff member."""
        client, app, _ = api
        workspace = AsyncMock()
        workspace.get_staff_member.return_value = StaffMember(id="recS")
        workspace.get_staff_workload.return_value = WorkloadAnalytics(staff_id="recS", performance_score=40.0)
        app.state.workspace_service = workspace

        response = await client.get("/api/v1/workspace/staff/recS/workload")

        assert response.status_code == 200
        assert response.json()["performance_score"] == 40.0


# ── Not Initialized Tests ───────────────────────────────────────────────────


class TestNotInitialized:
    """Test 503 when lifespan services are missing."""

    async def test_crm_503_when_not_initialized(self):
        """No registry on app.state -> 503."""
        app = _make_app()
        app.state.connection_registry = None

        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/api/v1/crm/connections")

        assert response.status_code == 503
        assert "not initialized" in response.json()["detail"]


# ── Application Factory Tests ───────────────────────────────────────────────


class TestCreateApp:
    """Test the assembled application (middleware and routes)."""

    async def test_request_id_is_echoed(self):
        """LoggingMiddleware returns the caller's X-Request-ID."""
        from src.zenith.main import create_app

        app = create_app()
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/health", headers={"X-Request-ID": "req-123"})

        assert response.status_code == 200
        assert response.headers["X-Request-ID"] == "req-123"

    async def test_request_id_is_generated(self):
        """Without a header a request id is generated."""
        from src.zenith.main import create_app

        app = create_app()
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/health")

        assert response.headers["X-Request-ID"]
