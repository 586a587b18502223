"""Campaign sync orchestration against the active CRM connection.

SyncOrchestrator is the entry point for use-case code:
- sync_campaign: push one saved campaign (create, or update when linked)
- sync_campaigns: push several, continuing past failures
- handle_generated_campaign: the automatic path run after generation,
  gated by AutoSyncConfig and tolerant of a missing connection
- health_check: configuration and connectivity report with recommendations

Provider failures never escape sync_campaign: they become a SyncResult error
entry and move the connection to ``error``. A status write that fails after
the provider call is logged and does not change the result. Only
orchestration preconditions (no active connection, missing permission) raise.

The provider call runs inside ``registry.syncing()``, so the connection
reads as ``syncing`` while staying the active connection for concurrent
syncs.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone

import structlog
from pydantic import BaseModel, Field

from src.zenith.campaigns.schemas import AccessControl, CampaignStatus, SavedCampaign
from src.zenith.crm.registry import ConnectionRegistry
from src.zenith.crm.schemas import (
    ConnectionStatus,
    CRMCampaign,
    CRMProviderType,
    SyncResult,
)
from src.zenith.integrations.errors import (
    CRMError,
    NoActiveConnectionError,
    PermissionDeniedError,
)

logger = structlog.get_logger(__name__)

SYNC_PERMISSION = "crm.sync"
EXTERNAL_CAMPAIGN_TYPE = "Marketing Campaign"


# ── Schemas ─────────────────────────────────────────────────────────────────


class AutoSyncConfig(BaseModel):
    """When the automatic post-generation sync runs."""

    enabled: bool = True
    sync_on_generation: bool = True
    sync_on_update: bool = False


class HealthReport(BaseModel):
    healthy: bool
    connection_count: int = 0
    active_connection_id: str | None = None
    provider: CRMProviderType | None = None
    status: ConnectionStatus | None = None
    last_sync_at: datetime | None = None
    issues: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)


# ── Orchestrator ────────────────────────────────────────────────────────────


class SyncOrchestrator:
    """Coordinates registry, adapter and campaign linkage for campaign sync.

    Args:
        registry: Connection registry resolving the active connection.
        access_control: Optional permission check; when supplied, every
            orchestrated sync requires the ``crm.sync`` permission.
        auto_sync: Settings for handle_generated_campaign.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        access_control: AccessControl | None = None,
        auto_sync: AutoSyncConfig | None = None,
    ) -> None:
        self._registry = registry
        self._access_control = access_control
        self.auto_sync = auto_sync or AutoSyncConfig()

    @staticmethod
    def build_external_campaign(campaign: SavedCampaign) -> CRMCampaign:
        """Provider-agnostic campaign payload (linkage is added by the adapter)."""
        return CRMCampaign(
            name=campaign.name,
            type=EXTERNAL_CAMPAIGN_TYPE,
            status="Active" if campaign.status == CampaignStatus.ACTIVE else "Planned",
            start_date=campaign.created_at.date(),
        )

    async def sync_campaign(self, campaign: SavedCampaign) -> SyncResult:
        """Create or update ``campaign`` on the active connection.

        On create, the provider id is stored in ``campaign.external_ids``
        under the connection id.

        Raises:
            NoActiveConnectionError: Nothing is active and connected. No
                HTTP call is made.
            PermissionDeniedError: access_control refused ``crm.sync``.
        """
        self._ensure_permitted()
        connection = self._registry.get_active_connection()
        if connection is None:
            raise NoActiveConnectionError("No active CRM connection found")

        started = time.monotonic()
        result = SyncResult(records_processed=1)
        external_id = campaign.external_ids.get(connection.id)
        log = logger.bind(campaign_id=campaign.id, connection_id=connection.id)

        try:
            adapter = self._registry.get_adapter(connection.id)
            payload = self.build_external_campaign(campaign)
            result.warnings.extend(
                adapter.embed_campaign_linkage(payload, campaign.id, campaign.snapshot_json())
            )

            async with self._registry.syncing(connection.id):
                if external_id:
                    await adapter.update_campaign(external_id, payload)
                    result.records_updated = 1
                else:
                    created = await adapter.create_campaign(payload)
                    campaign.external_ids[connection.id] = created.id
                    result.records_created = 1
        except Exception as exc:
            message = exc.message if isinstance(exc, CRMError) else str(exc)
            result.success = False
            result.add_error(campaign.id, exc)
            log.error("crm.campaign_sync_failed", error=message, error_type=type(exc).__name__)
            await self._record_status(connection.id, ConnectionStatus.ERROR, message)
        else:
            log.info(
                "crm.campaign_synced",
                external_id=campaign.external_ids.get(connection.id),
                operation="update" if external_id else "create",
            )
            await self._record_status(
                connection.id,
                ConnectionStatus.CONNECTED,
                last_sync_at=datetime.now(timezone.utc),
            )

        result.duration_ms = int((time.monotonic() - started) * 1000)
        return result

    async def _record_status(
        self,
        connection_id: str,
        status: ConnectionStatus,
        error_message: str | None = None,
        *,
        last_sync_at: datetime | None = None,
    ) -> None:
        """Write the post-sync status; a failed write is logged, not raised."""
        try:
            await self._registry.set_status(
                connection_id, status, error_message, last_sync_at=last_sync_at
            )
        except Exception as exc:
            logger.error(
                "crm.connection_status_update_failed",
                connection_id=connection_id,
                status=status.value,
                error=str(exc),
                error_type=type(exc).__name__,
            )

    async def sync_campaigns(self, campaigns: list[SavedCampaign]) -> SyncResult:
        """Sync campaigns one after another, continuing past failures."""
        self._ensure_permitted()
        if self._registry.get_active_connection() is None:
            raise NoActiveConnectionError("No active CRM connection found")

        total = SyncResult()
        for campaign in campaigns:
            if self._registry.get_active_connection() is None:
                # a previous failure moved the connection to error
                total.records_processed += 1
                total.add_error(campaign.id, "No active CRM connection found")
                total.success = False
                continue
            total.merge(await self.sync_campaign(campaign))

        logger.info(
            "crm.campaigns_synced",
            count=len(campaigns),
            created=total.records_created,
            updated=total.records_updated,
            errors=len(total.errors),
        )
        return total

    async def handle_generated_campaign(
        self, campaign: SavedCampaign, *, is_update: bool = False
    ) -> SyncResult:
        """Automatic sync after a campaign is generated (or updated).

        Never raises. Disabled auto-sync counts the campaign as skipped; a
        missing connection is a warning, not an error.
        """
        config = self.auto_sync
        wanted = config.sync_on_update if is_update else config.sync_on_generation
        if not (config.enabled and wanted):
            logger.info("crm.auto_sync_skipped", campaign_id=campaign.id, is_update=is_update)
            return SyncResult(records_skipped=1)

        if self._registry.get_active_connection() is None:
            warning = "No active CRM connection found, skipping sync"
            logger.warning("crm.auto_sync_no_connection", campaign_id=campaign.id)
            return SyncResult(warnings=[warning])

        try:
            return await self.sync_campaign(campaign)
        except PermissionDeniedError as exc:
            result = SyncResult(success=False, records_processed=1)
            result.add_error(campaign.id, exc)
            return result

    async def health_check(self, *, probe: bool = True) -> HealthReport:
        """Report on configuration and, with ``probe``, live connectivity."""
        connections = self._registry.get_connections()
        active = self._registry.get_active_connection()
        report = HealthReport(healthy=True, connection_count=len(connections))

        if not connections:
            report.issues.append("No CRM connections configured")
            report.recommendations.append("Add a CRM connection to enable campaign sync")

        for connection in connections:
            if connection.status == ConnectionStatus.ERROR:
                report.issues.append(
                    f"{connection.display_name}: {connection.error_message or 'unknown error'}"
                )
                report.recommendations.append(
                    f"Check credentials for {connection.display_name} and re-test the connection"
                )

        if active is None:
            if connections:
                report.issues.append("No active connected CRM connection")
                report.recommendations.append("Activate a connection that passes its connection test")
        else:
            report.active_connection_id = active.id
            report.provider = active.provider
            report.status = active.status
            report.last_sync_at = active.last_sync_at
            if active.last_sync_at is None:
                report.recommendations.append("Run an initial campaign sync")

            if probe:
                try:
                    reachable = await self._registry.get_adapter(active.id).test_connection()
                except CRMError as exc:
                    reachable = False
                    report.issues.append(f"{active.display_name}: {exc.message}")
                else:
                    if not reachable:
                        report.issues.append(f"{active.display_name}: connection test failed")
                if not reachable:
                    report.recommendations.append("Verify the provider is reachable and retry")

        report.healthy = not report.issues
        return report

    def _ensure_permitted(self) -> None:
        if self._access_control is not None and not self._access_control.has_permission(
            SYNC_PERMISSION
        ):
            raise PermissionDeniedError(f"Missing permission {SYNC_PERMISSION!r}")
