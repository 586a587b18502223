"""Connection registry -- the single owner of the CRM connection list.

Holds connections in insertion order, persists the whole list as one JSON
array after every mutation, and caches one adapter per connection id.
Mutations are serialized through an asyncio.Lock; provider calls (connection
tests) run outside the lock and only their outcome is written under it.
Each mutation builds the next list, persists it, and only then replaces the
in-memory list, so a failed write leaves both sides unchanged.

In-flight syncs are tracked in memory only. A connection with a sync in
flight is reported as ``syncing`` but stays eligible as the active
connection; ``syncing`` is never written to storage.

Constructed explicitly and passed to its users (API layer, orchestrator);
there is no module-level instance.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from functools import partial
from typing import Any

import structlog
from pydantic import TypeAdapter, ValidationError

from src.zenith.config import Settings, get_settings
from src.zenith.core.storage import KeyValueStorage
from src.zenith.crm.adapter import CRMAdapter
from src.zenith.crm.factory import create_adapter
from src.zenith.crm.schemas import (
    Connection,
    ConnectionStatus,
    Credentials,
    CRMProviderType,
    ProviderConfiguration,
)
from src.zenith.integrations.errors import ConnectionNotFoundError, CRMError

logger = structlog.get_logger(__name__)

CONNECTIONS_STORAGE_KEY = "zenith_crm_connections"

_connection_list = TypeAdapter(list[Connection])

# Fields callers may change through update_connection.
_UPDATABLE_FIELDS = frozenset(
    {"display_name", "configuration", "is_active", "status", "error_message", "last_sync_at"}
)

AdapterFactory = Callable[[Connection], CRMAdapter]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def bootstrap_connection_id(base_id: str) -> str:
    """Stable id for the environment-configured Airtable connection."""
    return f"env_airtable_{base_id}"


class ConnectionRegistry:
    """Store of CRM connections with controlled, persisted mutations.

    Args:
        storage: Key/value backend holding the serialized list.
        adapter_factory: Builds an adapter for a connection. Defaults to
            create_adapter bound to ``settings``.
        settings: Source of the environment bootstrap values.
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        adapter_factory: AdapterFactory | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._storage = storage
        self._settings = settings or get_settings()
        self._adapter_factory = adapter_factory or partial(create_adapter, settings=self._settings)
        self._connections: list[Connection] = []
        self._adapters: dict[str, CRMAdapter] = {}
        self._in_flight: dict[str, int] = {}
        self._lock = asyncio.Lock()
        self._loaded = False

    # ── Lifecycle ───────────────────────────────────────────────────────

    async def initialize(self) -> None:
        """Load the persisted list and apply the environment bootstrap.

        Safe to call repeatedly: the bootstrap connection has a stable id
        and is only added when absent.
        """
        async with self._lock:
            if not self._loaded:
                self._connections = self._reset_stale_syncing(await self._load())
                self._loaded = True
            await self._bootstrap_from_settings()

    async def aclose(self) -> None:
        """Close every cached adapter's HTTP client."""
        adapters, self._adapters = list(self._adapters.values()), {}
        for adapter in adapters:
            await adapter.aclose()

    # ── Queries ─────────────────────────────────────────────────────────

    def get_connections(self) -> list[Connection]:
        """Snapshot of all connections in insertion order."""
        return [self._snapshot(connection) for connection in self._connections]

    def get_connection(self, connection_id: str) -> Connection:
        return self._snapshot(self._find(connection_id))

    def get_active_connection(self) -> Connection | None:
        """First connection that is active and connected, in list order."""
        for connection in self._connections:
            if connection.is_usable():
                return self._snapshot(connection)
        return None

    def is_syncing(self, connection_id: str) -> bool:
        return self._in_flight.get(connection_id, 0) > 0

    @asynccontextmanager
    async def syncing(self, connection_id: str) -> AsyncIterator[None]:
        """Mark a sync as in flight on ``connection_id`` for the block."""
        self._in_flight[connection_id] = self._in_flight.get(connection_id, 0) + 1
        try:
            yield
        finally:
            remaining = self._in_flight.get(connection_id, 1) - 1
            if remaining > 0:
                self._in_flight[connection_id] = remaining
            else:
                self._in_flight.pop(connection_id, None)

    def get_adapter(self, connection_id: str) -> CRMAdapter:
        """Cached adapter for a connection, built on first use."""
        adapter = self._adapters.get(connection_id)
        if adapter is None:
            adapter = self._adapter_factory(self._find(connection_id))
            self._adapters[connection_id] = adapter
        return adapter

    # ── Mutations ───────────────────────────────────────────────────────

    async def add_connection(
        self,
        configuration: ProviderConfiguration,
        display_name: str | None = None,
    ) -> Connection:
        """Test connectivity, then store the new connection.

        Never raises on a failed test: the outcome is recorded as status
        ``connected`` (and active) or ``error`` with the reason.
        """
        connection = Connection(
            id=f"crm_{uuid.uuid4().hex[:12]}",
            provider=configuration.provider,
            display_name=display_name or f"{configuration.provider.value} Connection",
            configuration=configuration,
        )

        status, error_message = await self._run_test(connection)
        connection.status = status
        connection.error_message = error_message
        connection.is_active = status == ConnectionStatus.CONNECTED

        async with self._lock:
            await self._commit([*self._connections, connection])

        logger.info(
            "crm.connection_added",
            connection_id=connection.id,
            provider=connection.provider.value,
            status=status.value,
            error=error_message,
        )
        return connection.model_copy(deep=True)

    async def test_existing_connection(self, connection_id: str) -> Connection:
        """Re-run the connection test and record the outcome in place."""
        connection = self._find(connection_id)
        status, error_message = await self._run_test(connection, cached=True)

        updated = await self.set_status(connection_id, status, error_message)
        logger.info(
            "crm.connection_tested",
            connection_id=connection_id,
            status=status.value,
            error=error_message,
        )
        return updated

    async def update_connection(self, connection_id: str, **changes: Any) -> Connection:
        """Partial merge of ``changes`` into a stored connection.

        Raises:
            ConnectionNotFoundError: Unknown id.
            ValueError: A field that cannot be changed was supplied.
        """
        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update connection fields: {', '.join(sorted(unknown))}")

        async with self._lock:
            index = self._index(connection_id)
            current = self._connections[index]
            merged = Connection.model_validate(
                {**current.model_dump(), **changes, "updated_at": _utcnow()}
            )
            updated = list(self._connections)
            updated[index] = merged
            await self._commit(updated)

        if "configuration" in changes:
            await self._evict_adapter(connection_id)

        logger.info("crm.connection_updated", connection_id=connection_id, fields=sorted(changes))
        return merged.model_copy(deep=True)

    async def delete_connection(self, connection_id: str) -> None:
        """Remove a connection and drop its cached adapter."""
        async with self._lock:
            index = self._index(connection_id)
            await self._commit(self._connections[:index] + self._connections[index + 1 :])

        await self._evict_adapter(connection_id)
        logger.info("crm.connection_deleted", connection_id=connection_id)

    async def set_status(
        self,
        connection_id: str,
        status: ConnectionStatus,
        error_message: str | None = None,
        *,
        last_sync_at: datetime | None = None,
    ) -> Connection:
        """Record a status transition (and optionally the sync time)."""
        changes: dict[str, Any] = {"status": status, "error_message": error_message}
        if last_sync_at is not None:
            changes["last_sync_at"] = last_sync_at
        return await self.update_connection(connection_id, **changes)

    # ── Internals ───────────────────────────────────────────────────────

    async def _run_test(
        self, connection: Connection, *, cached: bool = False
    ) -> tuple[ConnectionStatus, str | None]:
        """Run the adapter's connection test and turn it into a status."""
        try:
            adapter = self.get_adapter(connection.id) if cached else self._adapter_factory(connection)
        except CRMError as exc:
            return ConnectionStatus.ERROR, exc.message

        try:
            ok = await adapter.test_connection()
        except CRMError as exc:
            return ConnectionStatus.ERROR, exc.message
        finally:
            if not cached:
                await adapter.aclose()

        if ok:
            return ConnectionStatus.CONNECTED, None
        return ConnectionStatus.ERROR, "Connection test failed"

    def _index(self, connection_id: str) -> int:
        for index, connection in enumerate(self._connections):
            if connection.id == connection_id:
                return index
        raise ConnectionNotFoundError(connection_id)

    def _find(self, connection_id: str) -> Connection:
        return self._connections[self._index(connection_id)]

    async def _evict_adapter(self, connection_id: str) -> None:
        adapter = self._adapters.pop(connection_id, None)
        if adapter is not None:
            await adapter.aclose()

    async def _load(self) -> list[Connection]:
        raw = await self._storage.get(CONNECTIONS_STORAGE_KEY)
        if not raw:
            return []
        try:
            connections = _connection_list.validate_json(raw)
        except ValidationError as exc:
            logger.error(
                "crm.connections_load_failed",
                key=CONNECTIONS_STORAGE_KEY,
                error=str(exc),
            )
            return []
        logger.info("crm.connections_loaded", count=len(connections))
        return connections

    async def _commit(self, connections: list[Connection]) -> None:
        """Persist ``connections``, then make it the in-memory list."""
        payload = _connection_list.dump_json(connections).decode()
        await self._storage.set(CONNECTIONS_STORAGE_KEY, payload)
        self._connections = connections

    def _snapshot(self, connection: Connection) -> Connection:
        copy = connection.model_copy(deep=True)
        if copy.status == ConnectionStatus.CONNECTED and self.is_syncing(copy.id):
            copy.status = ConnectionStatus.SYNCING
        return copy

    @staticmethod
    def _reset_stale_syncing(connections: list[Connection]) -> list[Connection]:
        # syncing only describes a live process; a stored one is stale
        for connection in connections:
            if connection.status == ConnectionStatus.SYNCING:
                connection.status = ConnectionStatus.CONNECTED
                logger.warning("crm.stale_syncing_status_reset", connection_id=connection.id)
        return connections

    async def _bootstrap_from_settings(self) -> None:
        settings = self._settings
        if not settings.has_airtable_bootstrap():
            return

        base_id = settings.AIRTABLE_BASE_ID
        connection_id = bootstrap_connection_id(base_id)
        for existing in self._connections:
            if existing.id == connection_id or (
                existing.provider == CRMProviderType.AIRTABLE
                and existing.configuration.credentials.base_id == base_id
            ):
                return

        connection = Connection(
            id=connection_id,
            provider=CRMProviderType.AIRTABLE,
            display_name="Airtable (environment)",
            configuration=ProviderConfiguration(
                provider=CRMProviderType.AIRTABLE,
                credentials=Credentials(api_key=settings.AIRTABLE_API_KEY, base_id=base_id),
            ),
            is_active=True,
            status=ConnectionStatus.CONNECTED,
        )
        await self._commit([*self._connections, connection])
        logger.info("crm.connection_bootstrapped", connection_id=connection_id, base_id=base_id)
