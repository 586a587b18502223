"""CRM adapter abstract base class -- the capability set every provider implements.

Each concrete adapter (Salesforce, Airtable, HubSpot stub) owns one
ProviderHTTPClient (rate limiter + retry policy) and one FieldMapper per
entity type. Provider-specific work is limited to the record primitives
(create/update/get one record, send one batch chunk) and connection checks;
per-entity CRUD and chunked batch sync are shared here.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, ClassVar

import structlog
from pydantic import BaseModel

from src.zenith.crm.field_mapping import FieldMapper
from src.zenith.crm.schemas import (
    Connection,
    CRMCampaign,
    CRMCompany,
    CRMContact,
    CRMDeal,
    EntityType,
    SyncOperation,
    SyncResult,
)
from src.zenith.integrations.errors import ConfigurationError, CRMError
from src.zenith.integrations.http_client import ProviderHTTPClient

logger = structlog.get_logger(__name__)


@dataclass
class RecordOutcome:
    """Per-record result of one batch chunk call."""

    record_id: str
    external_id: str | None = None
    error: str | None = None
    field: str | None = None


class CRMAdapter(ABC):
    """Abstract interface for one provider account.

    Args:
        connection: The connection this adapter serves (credentials and
            user-declared field mappings are read from its configuration).
        http: Rate-limited, retried HTTP client bound to the provider.
        mappers: FieldMapper per entity type. User-declared field mappings
            from the connection are layered on top.
    """

    #: Largest number of records the provider accepts in one bulk call.
    max_batch_size: ClassVar[int] = 10

    def __init__(
        self,
        connection: Connection,
        http: ProviderHTTPClient,
        mappers: dict[EntityType, FieldMapper[Any]],
    ) -> None:
        self._connection = connection
        self._http = http
        overrides = connection.configuration.field_mappings
        self._mappers = {
            entity_type: mapper.with_overrides(overrides) if overrides else mapper
            for entity_type, mapper in mappers.items()
        }

    @property
    def connection(self) -> Connection:
        return self._connection

    @property
    def http(self) -> ProviderHTTPClient:
        return self._http

    def mapper(self, entity_type: EntityType) -> FieldMapper[Any]:
        return self._mappers[entity_type]

    # ── Connection ──────────────────────────────────────────────────────

    @abstractmethod
    async def authenticate(self) -> bool:
        """Verify the credentials are accepted. False when they are not."""
        ...

    @abstractmethod
    async def refresh_token(self) -> bool:
        """Exchange a refresh token for a new access token. False when unsupported."""
        ...

    @abstractmethod
    async def test_connection(self) -> bool:
        """Low-cost read-only probe.

        Returns False on transient or not-found failures. Raises
        ConfigurationError (malformed settings) and AuthenticationError so
        the caller gets a human-readable reason.
        """
        ...

    @abstractmethod
    async def get_custom_fields(self, entity_type: EntityType) -> dict[str, dict[str, Any]]:
        """Introspect the live provider schema for fields the mapper does not know.

        Returns:
            {field_name: {"label": str, "type": str, "required": bool}}
        """
        ...

    # ── Record Primitives ───────────────────────────────────────────────

    @abstractmethod
    async def create_entity(self, entity_type: EntityType, entity: BaseModel) -> Any:
        """Create one record and return the entity carrying the provider id."""
        ...

    @abstractmethod
    async def update_entity(self, entity_type: EntityType, record_id: str, entity: BaseModel) -> Any:
        """Update one record by provider id and return the updated entity."""
        ...

    @abstractmethod
    async def get_entity(self, entity_type: EntityType, record_id: str) -> Any | None:
        """Fetch one record by provider id. None when it does not exist."""
        ...

    @abstractmethod
    async def _sync_chunk(
        self,
        entity_type: EntityType,
        operation: SyncOperation,
        chunk: Sequence[tuple[str, BaseModel]],
    ) -> list[RecordOutcome]:
        """Send one chunk (at most ``max_batch_size`` records) in a single call."""
        ...

    @abstractmethod
    def embed_campaign_linkage(
        self, payload: CRMCampaign, internal_id: str, snapshot: str
    ) -> list[str]:
        """Store the internal id and JSON snapshot wherever the provider allows.

        Mutates ``payload.custom_fields``. Returns warnings for anything the
        provider could not hold.
        """
        ...

    # ── Entity CRUD ─────────────────────────────────────────────────────

    async def create_contact(self, contact: CRMContact) -> CRMContact:
        return await self.create_entity(EntityType.CONTACT, contact)

    async def update_contact(self, record_id: str, contact: CRMContact) -> CRMContact:
        return await self.update_entity(EntityType.CONTACT, record_id, contact)

    async def get_contact(self, record_id: str) -> CRMContact | None:
        return await self.get_entity(EntityType.CONTACT, record_id)

    async def create_deal(self, deal: CRMDeal) -> CRMDeal:
        return await self.create_entity(EntityType.DEAL, deal)

    async def update_deal(self, record_id: str, deal: CRMDeal) -> CRMDeal:
        return await self.update_entity(EntityType.DEAL, record_id, deal)

    async def get_deal(self, record_id: str) -> CRMDeal | None:
        return await self.get_entity(EntityType.DEAL, record_id)

    async def create_company(self, company: CRMCompany) -> CRMCompany:
        return await self.create_entity(EntityType.COMPANY, company)

    async def update_company(self, record_id: str, company: CRMCompany) -> CRMCompany:
        return await self.update_entity(EntityType.COMPANY, record_id, company)

    async def get_company(self, record_id: str) -> CRMCompany | None:
        return await self.get_entity(EntityType.COMPANY, record_id)

    async def create_campaign(self, campaign: CRMCampaign) -> CRMCampaign:
        return await self.create_entity(EntityType.CAMPAIGN, campaign)

    async def update_campaign(self, record_id: str, campaign: CRMCampaign) -> CRMCampaign:
        return await self.update_entity(EntityType.CAMPAIGN, record_id, campaign)

    async def get_campaign(self, record_id: str) -> CRMCampaign | None:
        return await self.get_entity(EntityType.CAMPAIGN, record_id)

    async def search_contacts(self, query: str) -> list[CRMContact]:
        raise ConfigurationError(f"{self._connection.provider.value} does not support contact search")

    async def list_campaigns(self) -> list[CRMCampaign]:
        raise ConfigurationError(f"{self._connection.provider.value} does not support campaign listing")

    # ── Batch Sync ──────────────────────────────────────────────────────

    async def batch_sync(
        self,
        records: Sequence[BaseModel],
        operation: SyncOperation = SyncOperation.CREATE,
        entity_type: EntityType = EntityType.CONTACT,
    ) -> SyncResult:
        """Create or update many records in provider-sized chunks.

        Chunks are sent one after another. A chunk that fails outright turns
        every record in it into one error entry and processing continues with
        the next chunk. Updates of records without an id are skipped.
        """
        started = time.monotonic()
        result = SyncResult()
        pending: list[tuple[str, BaseModel]] = []

        for index, record in enumerate(records):
            record_id = getattr(record, "id", None)
            if operation == SyncOperation.UPDATE and not record_id:
                result.records_skipped += 1
                result.warnings.append(f"Record {index} has no id and cannot be updated")
                continue
            pending.append((record_id or f"{entity_type.value}_{index}", record))

        size = self.max_batch_size
        for start in range(0, len(pending), size):
            chunk = pending[start : start + size]
            try:
                outcomes = await self._sync_chunk(entity_type, operation, chunk)
            except CRMError as exc:
                logger.warning(
                    "crm.batch_chunk_failed",
                    provider=self._connection.provider.value,
                    entity_type=entity_type.value,
                    chunk_start=start,
                    chunk_size=len(chunk),
                    error=str(exc),
                )
                for record_id, _ in chunk:
                    result.add_error(record_id, exc)
                continue

            for outcome in outcomes:
                if outcome.error is not None:
                    result.add_error(outcome.record_id, outcome.error, field=outcome.field)
                elif operation == SyncOperation.CREATE:
                    result.records_created += 1
                else:
                    result.records_updated += 1

        result.records_processed = len(records)
        result.success = not result.errors
        result.duration_ms = int((time.monotonic() - started) * 1000)

        logger.info(
            "crm.batch_sync_completed",
            provider=self._connection.provider.value,
            entity_type=entity_type.value,
            operation=operation.value,
            processed=result.records_processed,
            created=result.records_created,
            updated=result.records_updated,
            skipped=result.records_skipped,
            errors=len(result.errors),
        )
        return result

    async def aclose(self) -> None:
        await self._http.aclose()
