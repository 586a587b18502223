"""FastAPI dependencies resolving services created in the app lifespan.

Each dependency reads its service from ``request.app.state`` and answers 503
when the service was not initialized.
"""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from src.zenith.crm.orchestrator import SyncOrchestrator
from src.zenith.crm.registry import ConnectionRegistry
from src.zenith.records.service import WorkspaceService


def _from_state(request: Request, name: str, label: str):
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{label} not initialized",
        )
    return service


async def get_registry(request: Request) -> ConnectionRegistry:
    """Connection registry shared by all CRM endpoints."""
    return _from_state(request, "connection_registry", "Connection registry")


async def get_orchestrator(request: Request) -> SyncOrchestrator:
    return _from_state(request, "sync_orchestrator", "Sync orchestrator")


async def get_workspace(request: Request) -> WorkspaceService:
    """Workspace records service. Only available when Airtable is configured."""
    return _from_state(request, "workspace_service", "Workspace service (set AIRTABLE_API_KEY and AIRTABLE_BASE_ID)")
