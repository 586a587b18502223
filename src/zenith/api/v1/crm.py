"""REST API endpoints for CRM connection management and campaign sync.

Connections are returned without credentials. Orchestration preconditions
map to HTTP errors: unknown connection -> 404, no active connection -> 409,
missing permission -> 403. Provider failures during a sync are not HTTP
errors; they are reported inside the returned SyncResult.
"""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import BaseModel

from src.zenith.api.deps import get_orchestrator, get_registry
from src.zenith.campaigns.schemas import SavedCampaign
from src.zenith.crm.orchestrator import HealthReport, SyncOrchestrator
from src.zenith.crm.registry import ConnectionRegistry
from src.zenith.crm.schemas import (
    Connection,
    ConnectionStatus,
    CRMProviderType,
    ProviderConfiguration,
    SyncResult,
    SyncSettings,
)
from src.zenith.integrations.errors import (
    ConnectionNotFoundError,
    NoActiveConnectionError,
    PermissionDeniedError,
)

router = APIRouter(prefix="/crm", tags=["crm"])


# ── Request / Response Schemas ──────────────────────────────────────────────


class AddConnectionRequest(BaseModel):
    configuration: ProviderConfiguration
    display_name: str | None = None


class UpdateConnectionRequest(BaseModel):
    """Partial update. Only supplied fields change."""

    display_name: str | None = None
    is_active: bool | None = None
    configuration: ProviderConfiguration | None = None


class ConnectionResponse(BaseModel):
    """Connection as exposed over HTTP (credentials omitted)."""

    id: str
    provider: CRMProviderType
    display_name: str
    is_active: bool
    status: ConnectionStatus
    error_message: str | None = None
    last_sync_at: datetime | None = None
    created_at: datetime
    updated_at: datetime
    sync_settings: SyncSettings


class SyncCampaignRequest(BaseModel):
    campaign: SavedCampaign


class SyncCampaignResponse(BaseModel):
    """Sync outcome plus the campaign with its updated external ids."""

    result: SyncResult
    campaign: SavedCampaign


def _connection_to_response(connection: Connection) -> ConnectionResponse:
    return ConnectionResponse(
        id=connection.id,
        provider=connection.provider,
        display_name=connection.display_name,
        is_active=connection.is_active,
        status=connection.status,
        error_message=connection.error_message,
        last_sync_at=connection.last_sync_at,
        created_at=connection.created_at,
        updated_at=connection.updated_at,
        sync_settings=connection.configuration.sync_settings,
    )


def _not_found(exc: ConnectionNotFoundError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.message)


# ── Connection Endpoints ────────────────────────────────────────────────────


@router.get("/connections", response_model=list[ConnectionResponse])
async def list_connections(
    registry: ConnectionRegistry = Depends(get_registry),
) -> list[ConnectionResponse]:
    """List all connections in creation order."""
    return [_connection_to_response(c) for c in registry.get_connections()]


@router.post("/connections", response_model=ConnectionResponse, status_code=201)
async def add_connection(
    body: AddConnectionRequest,
    registry: ConnectionRegistry = Depends(get_registry),
) -> ConnectionResponse:
    """Test and store a new connection.

    A failed connection test still creates the connection; its status is
    ``error`` and error_message says why.
    """
    connection = await registry.add_connection(body.configuration, display_name=body.display_name)
    return _connection_to_response(connection)


@router.get("/connections/active", response_model=ConnectionResponse)
async def get_active_connection(
    registry: ConnectionRegistry = Depends(get_registry),
) -> ConnectionResponse:
    connection = registry.get_active_connection()
    if connection is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No active CRM connection found",
        )
    return _connection_to_response(connection)


@router.patch("/connections/{connection_id}", response_model=ConnectionResponse)
async def update_connection(
    connection_id: str,
    body: UpdateConnectionRequest,
    registry: ConnectionRegistry = Depends(get_registry),
) -> ConnectionResponse:
    changes = body.model_dump(exclude_unset=True, exclude_none=True)
    if "configuration" in changes:
        changes["configuration"] = body.configuration
    try:
        connection = await registry.update_connection(connection_id, **changes)
    except ConnectionNotFoundError as exc:
        raise _not_found(exc) from exc
    return _connection_to_response(connection)


@router.delete("/connections/{connection_id}", status_code=204)
async def delete_connection(
    connection_id: str,
    registry: ConnectionRegistry = Depends(get_registry),
) -> Response:
    try:
        await registry.delete_connection(connection_id)
    except ConnectionNotFoundError as exc:
        raise _not_found(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/connections/{connection_id}/test", response_model=ConnectionResponse)
async def test_connection(
    connection_id: str,
    registry: ConnectionRegistry = Depends(get_registry),
) -> ConnectionResponse:
    """Re-run the connection test and return the updated status."""
    try:
        connection = await registry.test_existing_connection(connection_id)
    except ConnectionNotFoundError as exc:
        raise _not_found(exc) from exc
    return _connection_to_response(connection)


# ── Sync Endpoints ──────────────────────────────────────────────────────────


@router.post("/campaigns/sync", response_model=SyncCampaignResponse)
async def sync_campaign(
    body: SyncCampaignRequest,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> SyncCampaignResponse:
    """Push one campaign to the active connection (create or update)."""
    campaign = body.campaign
    try:
        result = await orchestrator.sync_campaign(campaign)
    except NoActiveConnectionError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=exc.message) from exc
    except PermissionDeniedError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=exc.message) from exc
    return SyncCampaignResponse(result=result, campaign=campaign)


@router.get("/health", response_model=HealthReport)
async def crm_health(
    probe: bool = True,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> HealthReport:
    """Configuration and connectivity report for the CRM layer."""
    return await orchestrator.health_check(probe=probe)
