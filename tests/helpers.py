"""Test helpers: connection builders, mock HTTP clients, fake adapters and storage."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

import httpx

from src.zenith.core.storage import InMemoryStorage
from src.zenith.crm.schemas import (
    Connection,
    ConnectionStatus,
    Credentials,
    CRMCampaign,
    CRMProviderType,
    ProviderConfiguration,
)

AIRTABLE_BASE_ID = "appABCDEFGHIJKLMN"


def make_connection(
    provider: CRMProviderType = CRMProviderType.AIRTABLE,
    *,
    connection_id: str = "conn-1",
    is_active: bool = True,
    status: ConnectionStatus = ConnectionStatus.CONNECTED,
    **credentials: Any,
) -> Connection:
    """Build a connection with provider-appropriate default credentials."""
    if not credentials:
        if provider == CRMProviderType.SALESFORCE:
            credentials = {
                "instance_url": "https://acme.my.salesforce.com",
                "access_token": "sf-token",
            }
        elif provider == CRMProviderType.AIRTABLE:
            credentials = {"api_key": "pat-test", "base_id": AIRTABLE_BASE_ID}
    return Connection(
        id=connection_id,
        provider=provider,
        display_name=f"{provider.value} test",
        configuration=ProviderConfiguration(
            provider=provider, credentials=Credentials(**credentials)
        ),
        is_active=is_active,
        status=status,
    )


def mock_client(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
    """AsyncClient whose every request is answered by ``handler``."""
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class FakeAdapter:
    """In-memory stand-in for a CRMAdapter.

    Records every call in ``calls``. ``fail_with`` makes campaign writes
    raise; ``test_result`` (bool or exception) drives test_connection.
    """

    def __init__(self, connection: Connection) -> None:
        self.connection = connection
        self.calls: list[tuple[str, Any]] = []
        self.test_result: bool | Exception = True
        self.fail_with: Exception | None = None
        self.closed = False
        self._next_id = 1

    async def test_connection(self) -> bool:
        self.calls.append(("test_connection", None))
        if isinstance(self.test_result, Exception):
            raise self.test_result
        return self.test_result

    def embed_campaign_linkage(self, payload: CRMCampaign, internal_id: str, snapshot: str) -> list[str]:
        payload.custom_fields["zenith_campaign_id"] = internal_id
        return []

    async def create_campaign(self, campaign: CRMCampaign) -> CRMCampaign:
        self.calls.append(("create_campaign", campaign))
        if self.fail_with is not None:
            raise self.fail_with
        external_id = f"ext-{self._next_id}"
        self._next_id += 1
        return campaign.model_copy(update={"id": external_id})

    async def update_campaign(self, record_id: str, campaign: CRMCampaign) -> CRMCampaign:
        self.calls.append(("update_campaign", record_id))
        if self.fail_with is not None:
            raise self.fail_with
        return campaign.model_copy(update={"id": record_id})

    async def aclose(self) -> None:
        self.closed = True

    def count(self, name: str) -> int:
        return sum(1 for call, _ in self.calls if call == name)


class FakeAdapterFactory:
    """Adapter factory that remembers the adapter built per connection id."""

    def __init__(self) -> None:
        self.adapters: dict[str, FakeAdapter] = {}
        self.test_result: bool | Exception = True

    def __call__(self, connection: Connection) -> FakeAdapter:
        adapter = FakeAdapter(connection)
        adapter.test_result = self.test_result
        self.adapters[connection.id] = adapter
        return adapter


class GatedAdapter(FakeAdapter):
    """FakeAdapter whose campaign writes block until ``release`` is set."""

    def __init__(self, connection: Connection) -> None:
        super().__init__(connection)
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def create_campaign(self, campaign: CRMCampaign) -> CRMCampaign:
        self.entered.set()
        await self.release.wait()
        return await super().create_campaign(campaign)


class FlakyStorage(InMemoryStorage):
    """InMemoryStorage whose writes raise while ``fail_writes`` is set."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        super().__init__(initial)
        self.fail_writes = False

    async def set(self, key: str, value: str) -> None:
        if self.fail_writes:
            raise ConnectionError("redis down")
        await super().set(key, value)
