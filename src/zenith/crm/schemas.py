"""Pydantic schemas for the CRM integration layer.

Defines all structured types shared by adapters, the registry and the
orchestrator:
- Enums: CRMProviderType, ConnectionStatus, MappingDirection,
  ConflictResolution, EntityType, SyncOperation
- Configuration: Credentials, FieldMapping, SyncSettings, WebhookConfig,
  ProviderConfiguration
- Connection: persisted connection record with lifecycle status
- External entities: CRMContact, CRMDeal, CRMCompany, CRMCampaign, each with
  an open ``custom_fields`` map for provider fields with no internal home
- Results: SyncError, SyncResult
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, TypeAlias, Union

from pydantic import BaseModel, Field, JsonValue


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Enums ───────────────────────────────────────────────────────────────────


class CRMProviderType(str, Enum):
    """Third-party platforms a connection can target."""

    SALESFORCE = "salesforce"
    AIRTABLE = "airtable"
    HUBSPOT = "hubspot"
    PIPEDRIVE = "pipedrive"
    ZOHO = "zoho"
    MONDAY = "monday"
    CUSTOM_WEBHOOK = "custom_webhook"


class ConnectionStatus(str, Enum):
    """Connection lifecycle state. ``syncing`` is transient."""

    DISCONNECTED = "disconnected"
    SYNCING = "syncing"
    CONNECTED = "connected"
    ERROR = "error"


class MappingDirection(str, Enum):
    BIDIRECTIONAL = "bidirectional"
    TO_EXTERNAL = "to_external"
    FROM_EXTERNAL = "from_external"


class ConflictResolution(str, Enum):
    EXTERNAL_WINS = "external_wins"
    INTERNAL_WINS = "internal_wins"
    NEWEST_WINS = "newest_wins"
    MANUAL_REVIEW = "manual_review"


class EntityType(str, Enum):
    CONTACT = "contact"
    DEAL = "deal"
    COMPANY = "company"
    CAMPAIGN = "campaign"


class SyncOperation(str, Enum):
    CREATE = "create"
    UPDATE = "update"


# ── Configuration ───────────────────────────────────────────────────────────


class Credentials(BaseModel):
    """Opaque provider credentials. Which keys matter depends on the provider."""

    api_key: str | None = None
    access_token: str | None = None
    refresh_token: str | None = None
    domain: str | None = None
    user_id: str | None = None
    instance_url: str | None = None
    base_id: str | None = None
    client_id: str | None = None
    client_secret: str | None = None


class FieldMapping(BaseModel):
    """User-declared mapping between an internal and an external field."""

    internal_field: str
    external_field: str
    direction: MappingDirection = MappingDirection.BIDIRECTIONAL
    required: bool = False


class SyncSettings(BaseModel):
    auto_sync: bool = True
    sync_interval_minutes: int = Field(default=60, ge=1)
    sync_on_create: bool = True
    sync_on_update: bool = True
    conflict_resolution: ConflictResolution = ConflictResolution.EXTERNAL_WINS
    batch_size: int = Field(default=10, ge=1)
    retry_attempts: int = Field(default=3, ge=1)


class WebhookConfig(BaseModel):
    enabled: bool = False
    url: str = ""
    secret: str = ""
    events: list[str] = Field(default_factory=list)


class ProviderConfiguration(BaseModel):
    """Everything needed to reach and talk to one provider account."""

    provider: CRMProviderType
    credentials: Credentials = Field(default_factory=Credentials)
    field_mappings: list[FieldMapping] = Field(default_factory=list)
    sync_settings: SyncSettings = Field(default_factory=SyncSettings)
    webhook_config: WebhookConfig | None = None


# ── Connection ──────────────────────────────────────────────────────────────


class Connection(BaseModel):
    """A configured link to one provider account.

    Persisted as part of a single JSON array; datetimes serialize to
    ISO-8601 and parse back to timezone-aware datetimes.
    """

    id: str
    provider: CRMProviderType
    display_name: str
    configuration: ProviderConfiguration
    is_active: bool = False
    last_sync_at: datetime | None = None
    status: ConnectionStatus = ConnectionStatus.DISCONNECTED
    error_message: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    def is_usable(self) -> bool:
        """Active and connected (or mid-sync) -- eligible as the orchestration target."""
        return self.is_active and self.status in (ConnectionStatus.CONNECTED, ConnectionStatus.SYNCING)


# ── External Entities ───────────────────────────────────────────────────────


class CRMContact(BaseModel):
    id: str | None = None
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    company: str | None = None
    phone: str | None = None
    custom_fields: dict[str, JsonValue] = Field(default_factory=dict)


class CRMDeal(BaseModel):
    id: str | None = None
    name: str | None = None
    amount: float | None = None
    stage: str | None = None
    close_date: date | None = None
    contact_id: str | None = None
    company_id: str | None = None
    custom_fields: dict[str, JsonValue] = Field(default_factory=dict)


class CRMCompany(BaseModel):
    id: str | None = None
    name: str | None = None
    domain: str | None = None
    industry: str | None = None
    size: int | str | None = None
    custom_fields: dict[str, JsonValue] = Field(default_factory=dict)


class CRMCampaign(BaseModel):
    id: str | None = None
    name: str | None = None
    type: str | None = None
    status: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    budget: float | None = None
    custom_fields: dict[str, JsonValue] = Field(default_factory=dict)


CRMEntity: TypeAlias = Union[CRMContact, CRMDeal, CRMCompany, CRMCampaign]

ENTITY_MODELS: dict[EntityType, type[BaseModel]] = {
    EntityType.CONTACT: CRMContact,
    EntityType.DEAL: CRMDeal,
    EntityType.COMPANY: CRMCompany,
    EntityType.CAMPAIGN: CRMCampaign,
}


# ── Sync Results ────────────────────────────────────────────────────────────


class SyncError(BaseModel):
    """One record that ultimately failed (after retries)."""

    record_id: str
    error: str
    field: str | None = None
    retryable: bool = False


class SyncResult(BaseModel):
    """Aggregate outcome of a single-record or batch sync."""

    success: bool = True
    records_processed: int = 0
    records_created: int = 0
    records_updated: int = 0
    records_skipped: int = 0
    errors: list[SyncError] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    duration_ms: int = 0

    def add_error(self, record_id: str, exc: BaseException | str, **extra: Any) -> None:
        """Append an error entry built from an exception or message."""
        if isinstance(exc, BaseException):
            self.errors.append(
                SyncError(
                    record_id=record_id,
                    error=str(exc),
                    field=extra.get("field", getattr(exc, "field", None)),
                    retryable=extra.get("retryable", bool(getattr(exc, "retryable", False))),
                )
            )
        else:
            self.errors.append(
                SyncError(
                    record_id=record_id,
                    error=exc,
                    field=extra.get("field"),
                    retryable=extra.get("retryable", False),
                )
            )

    def merge(self, other: SyncResult) -> None:
        """Fold another result into this one (counts, errors, warnings, time)."""
        self.records_processed += other.records_processed
        self.records_created += other.records_created
        self.records_updated += other.records_updated
        self.records_skipped += other.records_skipped
        self.errors.extend(other.errors)
        self.warnings.extend(other.warnings)
        self.duration_ms += other.duration_ms
        self.success = self.success and other.success
