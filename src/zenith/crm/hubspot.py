"""HubSpot adapter placeholder.

HubSpot connections can be stored and listed, but every provider call fails
with ConfigurationError so the connection lands in ``error`` status with a
readable message instead of silently doing nothing.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any, NoReturn

from pydantic import BaseModel

from src.zenith.crm.adapter import CRMAdapter, RecordOutcome
from src.zenith.crm.schemas import Connection, CRMCampaign, EntityType, SyncOperation
from src.zenith.integrations.errors import ConfigurationError
from src.zenith.integrations.http_client import ProviderHTTPClient

HUBSPOT_API_URL = "https://api.hubapi.com"


class HubSpotAdapter(CRMAdapter):
    max_batch_size = 100

    def __init__(self, connection: Connection, http: ProviderHTTPClient | None = None) -> None:
        credentials = connection.configuration.credentials
        http = http or ProviderHTTPClient(
            "hubspot", HUBSPOT_API_URL, token=credentials.access_token or credentials.api_key
        )
        super().__init__(connection, http, {})

    @staticmethod
    def _unsupported() -> NoReturn:
        raise ConfigurationError("HubSpot integration not implemented")

    async def authenticate(self) -> bool:
        self._unsupported()

    async def refresh_token(self) -> bool:
        self._unsupported()

    async def test_connection(self) -> bool:
        self._unsupported()

    async def get_custom_fields(self, entity_type: EntityType) -> dict[str, dict[str, Any]]:
        self._unsupported()

    async def create_entity(self, entity_type: EntityType, entity: BaseModel) -> Any:
        self._unsupported()

    async def update_entity(self, entity_type: EntityType, record_id: str, entity: BaseModel) -> Any:
        self._unsupported()

    async def get_entity(self, entity_type: EntityType, record_id: str) -> Any | None:
        self._unsupported()

    async def _sync_chunk(
        self,
        entity_type: EntityType,
        operation: SyncOperation,
        chunk: Sequence[tuple[str, BaseModel]],
    ) -> list[RecordOutcome]:
        self._unsupported()

    def embed_campaign_linkage(
        self, payload: CRMCampaign, internal_id: str, snapshot: str
    ) -> list[str]:
        self._unsupported()
