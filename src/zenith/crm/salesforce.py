"""Salesforce adapter over the REST API.

Endpoints used (relative to ``{instance_url}/services/data/{version}``):
- ``sobjects/{Object}`` / ``sobjects/{Object}/{id}``   single-record CRUD
- ``composite/sobjects``                               batch create/update (<=200)
- ``query?q=SOQL``                                     contact search, campaign listing
- ``sobjects/{Object}/describe``                       custom field discovery
- ``limits``                                           connection probe
OAuth refresh goes to ``{instance_url}/services/oauth2/token``.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import structlog
from pydantic import BaseModel

from src.zenith.crm.adapter import CRMAdapter, RecordOutcome
from src.zenith.crm.field_mapping import SALESFORCE_SOBJECTS, salesforce_mappers
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

# Custom fields expected on the Salesforce Campaign object for linkage.
CAMPAIGN_ID_FIELD = "Zenith_Campaign_Id__c"
CAMPAIGN_SNAPSHOT_FIELD = "Zenith_Snapshot__c"

# Long Text Area upper bound.
SNAPSHOT_MAX_LENGTH = 131_072

SEARCH_LIMIT = 50


def soql_quote(value: str) -> str:
    """Escape a value for use inside a single-quoted SOQL literal."""
    return value.replace("\\", "\\\\").replace("'", "\\'")


class SalesforceAdapter(CRMAdapter):
    """Adapter for a Salesforce org.

    Requires ``instance_url`` and ``access_token`` credentials. A
    ``refresh_token`` plus ``client_id``/``client_secret`` enables
    :meth:`refresh_token`.
    """

    max_batch_size = 200

    def __init__(
        self,
        connection: Connection,
        http: ProviderHTTPClient | None = None,
        *,
        api_version: str = "v57.0",
    ) -> None:
        credentials = connection.configuration.credentials
        if not credentials.instance_url:
            raise ConfigurationError("Salesforce connection requires an instance_url")
        if not credentials.access_token:
            raise ConfigurationError("Salesforce connection requires an access_token")

        self._instance_url = credentials.instance_url.rstrip("/")
        self._api_version = api_version
        http = http or ProviderHTTPClient(
            "salesforce", self._api_base(), token=credentials.access_token
        )
        super().__init__(connection, http, salesforce_mappers())

    def _api_base(self) -> str:
        return f"{self._instance_url}/services/data/{self._api_version}"

    # ── Connection ──────────────────────────────────────────────────────

    async def authenticate(self) -> bool:
        try:
            await self._http.get("limits", max_attempts=1)
            return True
        except AuthenticationError:
            if self._connection.configuration.credentials.refresh_token:
                return await self.refresh_token()
            return False

    async def refresh_token(self) -> bool:
        credentials = self._connection.configuration.credentials
        if not (credentials.refresh_token and credentials.client_id and credentials.client_secret):
            logger.info("salesforce.refresh_skipped", reason="missing refresh credentials")
            return False

        try:
            body = await self._http.post(
                f"{self._instance_url}/services/oauth2/token",
                data={
                    "grant_type": "refresh_token",
                    "refresh_token": credentials.refresh_token,
                    "client_id": credentials.client_id,
                    "client_secret": credentials.client_secret,
                },
            )
        except AuthenticationError as exc:
            logger.warning("salesforce.refresh_failed", error=str(exc))
            return False

        token = body.get("access_token") if isinstance(body, dict) else None
        if not token:
            raise MalformedResponseError(
                "salesforce: token response without access_token",
                hint="Check the connected app OAuth settings",
            )

        credentials.access_token = token
        self._http.set_token(token)
        logger.info("salesforce.token_refreshed", connection_id=self._connection.id)
        return True

    async def test_connection(self) -> bool:
        try:
            await self._http.get("limits")
            return True
        except (ConfigurationError, AuthenticationError):
            raise
        except CRMError as exc:
            logger.warning(
                "salesforce.connection_test_failed",
                connection_id=self._connection.id,
                error=str(exc),
            )
            return False

    async def get_custom_fields(self, entity_type: EntityType) -> dict[str, dict[str, Any]]:
        sobject = SALESFORCE_SOBJECTS[entity_type]
        body = await self._http.get(f"sobjects/{sobject}/describe")

        custom: dict[str, dict[str, Any]] = {}
        for field in (body or {}).get("fields", []):
            if not field.get("custom"):
                continue
            custom[field["name"]] = {
                "label": field.get("label", field["name"]),
                "type": field.get("type", "string"),
                "required": not field.get("nillable", True),
            }
        return custom

    # ── Record Primitives ───────────────────────────────────────────────

    async def create_entity(self, entity_type: EntityType, entity: BaseModel) -> Any:
        sobject = SALESFORCE_SOBJECTS[entity_type]
        payload = self.mapper(entity_type).to_external(entity)

        body = await self._http.post(f"sobjects/{sobject}", json=payload)
        record_id = body.get("id") if isinstance(body, dict) else None
        if not record_id:
            raise MalformedResponseError(
                f"salesforce: create {sobject} returned no id",
                hint="Expected a body like {\"id\": ..., \"success\": true}",
            )

        logger.info("salesforce.record_created", sobject=sobject, record_id=record_id)
        return entity.model_copy(update={"id": record_id})

    async def update_entity(self, entity_type: EntityType, record_id: str, entity: BaseModel) -> Any:
        sobject = SALESFORCE_SOBJECTS[entity_type]
        payload = self.mapper(entity_type).to_external(entity)

        # 204 No Content on success
        await self._http.patch(f"sobjects/{sobject}/{record_id}", json=payload)

        logger.info("salesforce.record_updated", sobject=sobject, record_id=record_id)
        return entity.model_copy(update={"id": record_id})

    async def get_entity(self, entity_type: EntityType, record_id: str) -> Any | None:
        sobject = SALESFORCE_SOBJECTS[entity_type]
        try:
            body = await self._http.get(f"sobjects/{sobject}/{record_id}")
        except NotFoundError:
            return None
        return self.mapper(entity_type).from_external(body)

    async def _sync_chunk(
        self,
        entity_type: EntityType,
        operation: SyncOperation,
        chunk: Sequence[tuple[str, BaseModel]],
    ) -> list[RecordOutcome]:
        sobject = SALESFORCE_SOBJECTS[entity_type]
        mapper = self.mapper(entity_type)

        records = []
        for record_id, entity in chunk:
            record = {"attributes": {"type": sobject}, **mapper.to_external(entity)}
            if operation == SyncOperation.UPDATE:
                record["id"] = record_id
            records.append(record)

        body = {"allOrNone": False, "records": records}
        if operation == SyncOperation.CREATE:
            results = await self._http.post("composite/sobjects", json=body)
        else:
            results = await self._http.patch("composite/sobjects", json=body)

        if not isinstance(results, list) or len(results) != len(chunk):
            raise MalformedResponseError(
                "salesforce: composite response does not match the request",
                hint=f"Expected {len(chunk)} results",
            )

        outcomes: list[RecordOutcome] = []
        for (record_id, _), item in zip(chunk, results):
            if item.get("success"):
                outcomes.append(RecordOutcome(record_id=record_id, external_id=item.get("id")))
                continue
            errors = item.get("errors") or [{}]
            first = errors[0]
            fields = first.get("fields") or []
            outcomes.append(
                RecordOutcome(
                    record_id=record_id,
                    error=str(first.get("message") or first.get("statusCode") or "unknown error"),
                    field=fields[0] if fields else None,
                )
            )
        return outcomes

    def embed_campaign_linkage(
        self, payload: CRMCampaign, internal_id: str, snapshot: str
    ) -> list[str]:
        warnings: list[str] = []
        if len(snapshot) > SNAPSHOT_MAX_LENGTH:
            snapshot = snapshot[:SNAPSHOT_MAX_LENGTH]
            warnings.append(
                f"Campaign snapshot truncated to {SNAPSHOT_MAX_LENGTH} characters for Salesforce"
            )
        payload.custom_fields[CAMPAIGN_ID_FIELD] = internal_id
        payload.custom_fields[CAMPAIGN_SNAPSHOT_FIELD] = snapshot
        return warnings

    # ── Queries ─────────────────────────────────────────────────────────

    async def search_contacts(self, query: str) -> list[CRMContact]:
        term = soql_quote(query)
        soql = (
            "SELECT Id, Email, FirstName, LastName, Phone FROM Contact "
            f"WHERE Email LIKE '%{term}%' OR Name LIKE '%{term}%' "
            f"LIMIT {SEARCH_LIMIT}"
        )
        mapper = self.mapper(EntityType.CONTACT)
        return [mapper.from_external(record) for record in await self._query(soql)]

    async def list_campaigns(self) -> list[CRMCampaign]:
        soql = (
            "SELECT Id, Name, Type, Status, StartDate, EndDate, BudgetedCost "
            "FROM Campaign ORDER BY CreatedDate DESC"
        )
        mapper = self.mapper(EntityType.CAMPAIGN)
        return [mapper.from_external(record) for record in await self._query(soql)]

    async def _query(self, soql: str) -> list[dict[str, Any]]:
        """Run a SOQL query, following ``nextRecordsUrl`` pages."""
        body = await self._http.get("query", params={"q": soql})
        records = list(body.get("records", []))

        while not body.get("done", True) and body.get("nextRecordsUrl"):
            body = await self._http.get(f"{self._instance_url}{body['nextRecordsUrl']}")
            records.extend(body.get("records", []))

        return records
