"""Airtable adapter: one table per entity type inside a single base.

Records live at ``{api_url}/v0/{baseId}/{Table}``. Bulk create/update accept
at most 10 records per request and succeed or fail as a whole. Schema
introspection uses the meta API at ``/v0/meta/bases/{baseId}/tables``.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from typing import Any

import structlog
from pydantic import BaseModel

from src.zenith.crm.adapter import CRMAdapter, RecordOutcome
from src.zenith.crm.field_mapping import (
    AIRTABLE_CONTACT_FIELDS,
    AIRTABLE_TABLES,
    INTERNAL_CAMPAIGN_ID_FIELD,
    airtable_mappers,
)
from src.zenith.crm.schemas import (
    Connection,
    CRMCampaign,
    CRMContact,
    EntityType,
    SyncOperation,
)
from src.zenith.integrations.errors import (
    AuthenticationError,
    ConfigurationError,
    CRMError,
    MalformedResponseError,
    NotFoundError,
)
from src.zenith.integrations.http_client import ProviderHTTPClient

logger = structlog.get_logger(__name__)

DEFAULT_API_URL = "https://api.airtable.com"

# "app" followed by 14 alphanumerics, e.g. appXXXXXXXXXXXXXX
BASE_ID_PATTERN = re.compile(r"^app[A-Za-z0-9]{14}$")

PAGE_SIZE = 100


def quote_formula_value(value: str) -> str:
    """Render ``value`` as a single-quoted Airtable formula string literal."""
    escaped = value.replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


def validate_base_id(base_id: str) -> None:
    """Raise ConfigurationError when ``base_id`` is not an Airtable base id."""
    if not BASE_ID_PATTERN.match(base_id):
        raise ConfigurationError(
            f"Invalid Airtable base id {base_id!r}: base ids start with 'app' "
            "followed by 14 letters or digits (copy it from the base URL)"
        )


class AirtableAdapter(CRMAdapter):
    """Adapter for one Airtable base.

    Requires ``base_id`` and an ``api_key`` (personal access token) or
    ``access_token`` credential. Airtable tokens do not refresh.
    """

    max_batch_size = 10

    def __init__(
        self,
        connection: Connection,
        http: ProviderHTTPClient | None = None,
        *,
        api_url: str = DEFAULT_API_URL,
    ) -> None:
        credentials = connection.configuration.credentials
        token = credentials.api_key or credentials.access_token
        if not token:
            raise ConfigurationError("Airtable connection requires an api_key")
        if not credentials.base_id:
            raise ConfigurationError("Airtable connection requires a base_id")

        self._base_id = credentials.base_id
        self._api_url = api_url.rstrip("/")
        http = http or ProviderHTTPClient("airtable", self.base_url, token=token)
        super().__init__(connection, http, airtable_mappers())

    @property
    def base_url(self) -> str:
        return f"{self._api_url}/v0/{self._base_id}"

    @property
    def meta_url(self) -> str:
        return f"{self._api_url}/v0/meta/bases/{self._base_id}/tables"

    # ── Connection ──────────────────────────────────────────────────────

    async def authenticate(self) -> bool:
        try:
            return await self.test_connection()
        except AuthenticationError:
            return False

    async def refresh_token(self) -> bool:
        return False

    async def test_connection(self) -> bool:
        validate_base_id(self._base_id)

        table = AIRTABLE_TABLES[EntityType.CAMPAIGN]
        try:
            await self._http.get(table, params={"maxRecords": 1})
            return True
        except AuthenticationError:
            raise
        except NotFoundError as exc:
            logger.warning(
                "airtable.connection_test_table_missing",
                base_id=self._base_id,
                table=table,
                error=str(exc),
            )
            return False
        except CRMError as exc:
            logger.warning(
                "airtable.connection_test_failed",
                base_id=self._base_id,
                error=str(exc),
            )
            return False

    async def get_custom_fields(self, entity_type: EntityType) -> dict[str, dict[str, Any]]:
        table_name = AIRTABLE_TABLES[entity_type]
        body = await self._http.get(self.meta_url)

        table = next(
            (t for t in (body or {}).get("tables", []) if t.get("name") == table_name),
            None,
        )
        if table is None:
            raise NotFoundError(
                f"airtable: table {table_name!r} not found in base", endpoint=f"GET {self.meta_url}"
            )

        known = self.mapper(entity_type).known_external_fields
        return {
            field["name"]: {
                "label": field["name"],
                "type": field.get("type", "singleLineText"),
                "required": False,
            }
            for field in table.get("fields", [])
            if field.get("name") not in known
        }

    # ── Record Primitives ───────────────────────────────────────────────

    def _to_entity(self, entity_type: EntityType, record: Any) -> Any:
        if not isinstance(record, dict) or "id" not in record:
            raise MalformedResponseError(
                "airtable: record response without id",
                hint="Expected a body like {\"id\": ..., \"fields\": {...}}",
            )
        return self.mapper(entity_type).from_external(record.get("fields", {}), record_id=record["id"])

    async def create_entity(self, entity_type: EntityType, entity: BaseModel) -> Any:
        table = AIRTABLE_TABLES[entity_type]
        fields = self.mapper(entity_type).to_external(entity)

        body = await self._http.post(table, json={"fields": fields})
        created = self._to_entity(entity_type, body)

        logger.info("airtable.record_created", table=table, record_id=created.id)
        return created

    async def update_entity(self, entity_type: EntityType, record_id: str, entity: BaseModel) -> Any:
        table = AIRTABLE_TABLES[entity_type]
        fields = self.mapper(entity_type).to_external(entity)

        body = await self._http.patch(f"{table}/{record_id}", json={"fields": fields})
        updated = self._to_entity(entity_type, body)

        logger.info("airtable.record_updated", table=table, record_id=record_id)
        return updated

    async def get_entity(self, entity_type: EntityType, record_id: str) -> Any | None:
        table = AIRTABLE_TABLES[entity_type]
        try:
            body = await self._http.get(f"{table}/{record_id}")
        except NotFoundError:
            return None
        return self._to_entity(entity_type, body)

    async def _sync_chunk(
        self,
        entity_type: EntityType,
        operation: SyncOperation,
        chunk: Sequence[tuple[str, BaseModel]],
    ) -> list[RecordOutcome]:
        table = AIRTABLE_TABLES[entity_type]
        mapper = self.mapper(entity_type)

        if operation == SyncOperation.CREATE:
            records = [{"fields": mapper.to_external(entity)} for _, entity in chunk]
            body = await self._http.post(table, json={"records": records})
        else:
            records = [
                {"id": record_id, "fields": mapper.to_external(entity)} for record_id, entity in chunk
            ]
            body = await self._http.patch(table, json={"records": records})

        returned = (body or {}).get("records", [])
        if len(returned) != len(chunk):
            raise MalformedResponseError(
                "airtable: bulk response does not match the request",
                hint=f"Expected {len(chunk)} records, got {len(returned)}",
            )

        return [
            RecordOutcome(record_id=record_id, external_id=item.get("id"))
            for (record_id, _), item in zip(chunk, returned)
        ]

    def embed_campaign_linkage(
        self, payload: CRMCampaign, internal_id: str, snapshot: str
    ) -> list[str]:
        # Campaigns table has no free column: the id rides in the Name.
        payload.custom_fields[INTERNAL_CAMPAIGN_ID_FIELD] = internal_id
        return ["Airtable campaign table has no snapshot column; snapshot not stored"]

    # ── Queries ─────────────────────────────────────────────────────────

    async def search_contacts(self, query: str) -> list[CRMContact]:
        needle = quote_formula_value(query.lower())
        columns = [AIRTABLE_CONTACT_FIELDS[name] for name in ("email", "first_name", "last_name", "company")]
        formula = "OR(" + ", ".join(f"FIND({needle}, LOWER({{{column}}}))" for column in columns) + ")"

        return await self.list_records(EntityType.CONTACT, filter_by_formula=formula)

    async def list_campaigns(self) -> list[CRMCampaign]:
        return await self.list_records(EntityType.CAMPAIGN)

    async def list_records(
        self, entity_type: EntityType, *, filter_by_formula: str | None = None
    ) -> list[Any]:
        """List every record of a table, following ``offset`` pages."""
        table = AIRTABLE_TABLES[entity_type]
        mapper = self.mapper(entity_type)
        params: dict[str, Any] = {"pageSize": PAGE_SIZE}
        if filter_by_formula:
            params["filterByFormula"] = filter_by_formula

        entities: list[Any] = []
        while True:
            body = await self._http.get(table, params=params)
            for record in body.get("records", []):
                entities.append(mapper.from_external(record.get("fields", {}), record_id=record["id"]))
            offset = body.get("offset")
            if not offset:
                return entities
            params = {**params, "offset": offset}
