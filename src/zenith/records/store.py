"""Generic Airtable table client for workspace records.

Wraps ProviderHTTPClient (rate limit + retry + status translation) with
record-level operations and ``select``-style listing: formula filter, sort,
max records, field projection, and ``offset`` pagination. Also provides
formula builders used by WorkspaceService.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import httpx
import structlog

from src.zenith.config import Settings
from src.zenith.crm.airtable import quote_formula_value
from src.zenith.integrations.errors import AuthenticationError, CRMError, NotFoundError
from src.zenith.integrations.http_client import ProviderHTTPClient
from src.zenith.integrations.rate_limit import RateLimiter
from src.zenith.integrations.retry import RetryExecutor
from src.zenith.records.schemas import AirtableRecord

logger = structlog.get_logger(__name__)

# Tables tried, in order, by test_connection.
CONNECTION_TEST_TABLES = ("Staff", "Campaigns", "Projects", "Clients", "Table1", "Table 1")

MAX_PAGE_SIZE = 100


# ── Formula Builders ────────────────────────────────────────────────────────


def field_equals(field: str, value: str) -> str:
    return f"{{{field}}} = {quote_formula_value(value)}"


def field_in(field: str, values: Sequence[str]) -> str:
    """``{field}`` equals any of ``values``."""
    clauses = [field_equals(field, value) for value in values]
    return clauses[0] if len(clauses) == 1 else f"OR({', '.join(clauses)})"


def link_contains(field: str, record_id: str) -> str:
    """Linked-record column ``field`` includes ``record_id``."""
    return f"FIND({quote_formula_value(record_id)}, ARRAYJOIN({{{field}}}, ',')) > 0"


def all_of(clauses: Sequence[str]) -> str | None:
    """AND-combine clauses. None when there are none."""
    if not clauses:
        return None
    return clauses[0] if len(clauses) == 1 else f"AND({', '.join(clauses)})"


# ── Store ───────────────────────────────────────────────────────────────────


class RecordStore:
    """CRUD and queries against the tables of one Airtable base.

    Args:
        http: Client whose base URL is ``{api_url}/v0/{base_id}``.
    """

    def __init__(self, http: ProviderHTTPClient) -> None:
        self._http = http

    @classmethod
    def from_settings(
        cls, settings: Settings, client: httpx.AsyncClient | None = None
    ) -> RecordStore:
        """Build a store for the environment-configured base."""
        http = ProviderHTTPClient(
            "airtable",
            f"{settings.AIRTABLE_API_URL.rstrip('/')}/v0/{settings.AIRTABLE_BASE_ID}",
            token=settings.AIRTABLE_API_KEY,
            rate_limiter=RateLimiter(settings.CRM_MIN_REQUEST_INTERVAL_MS),
            retry_executor=RetryExecutor(
                max_attempts=settings.CRM_RETRY_ATTEMPTS, base_delay=settings.CRM_RETRY_BASE_DELAY
            ),
            client=client,
            timeout=settings.CRM_HTTP_TIMEOUT,
        )
        return cls(http)

    async def create(self, table: str, fields: dict[str, Any]) -> AirtableRecord:
        body = await self._http.post(table, json={"fields": fields})
        record = AirtableRecord.model_validate(body)
        logger.info("airtable.record_created", table=table, record_id=record.id)
        return record

    async def update(self, table: str, record_id: str, fields: dict[str, Any]) -> AirtableRecord:
        body = await self._http.patch(f"{table}/{record_id}", json={"fields": fields})
        logger.info("airtable.record_updated", table=table, record_id=record_id)
        return AirtableRecord.model_validate(body)

    async def get(self, table: str, record_id: str) -> AirtableRecord | None:
        try:
            body = await self._http.get(f"{table}/{record_id}")
        except NotFoundError:
            return None
        return AirtableRecord.model_validate(body)

    async def delete(self, table: str, record_id: str) -> bool:
        """Delete a record. False when it did not exist."""
        try:
            await self._http.delete(f"{table}/{record_id}")
        except NotFoundError:
            return False
        logger.info("airtable.record_deleted", table=table, record_id=record_id)
        return True

    async def select(
        self,
        table: str,
        *,
        filter_by_formula: str | None = None,
        sort: Sequence[tuple[str, str]] = (),
        max_records: int | None = None,
        fields: Sequence[str] = (),
    ) -> list[AirtableRecord]:
        """Fetch every matching record, following ``offset`` pages.

        Args:
            sort: (field, "asc" | "desc") pairs, applied in order.
            max_records: Upper bound across all pages.
            fields: Only return these columns.
        """
        params: list[tuple[str, Any]] = [("pageSize", MAX_PAGE_SIZE)]
        if filter_by_formula:
            params.append(("filterByFormula", filter_by_formula))
        for index, (field, direction) in enumerate(sort):
            params.append((f"sort[{index}][field]", field))
            params.append((f"sort[{index}][direction]", direction))
        if max_records is not None:
            params.append(("maxRecords", max_records))
        for field in fields:
            params.append(("fields[]", field))

        records: list[AirtableRecord] = []
        offset: str | None = None
        while True:
            page_params = params + [("offset", offset)] if offset else params
            body = await self._http.get(table, params=page_params)
            records.extend(AirtableRecord.model_validate(item) for item in body.get("records", []))
            offset = body.get("offset")
            if not offset or (max_records is not None and len(records) >= max_records):
                break

        return records[:max_records] if max_records is not None else records

    async def test_connection(self, tables: Sequence[str] = CONNECTION_TEST_TABLES) -> str | None:
        """Return the first table that can be read, or None.

        Authentication failures are raised: no table will be readable.
        """
        for table in tables:
            try:
                await self._http.get(table, params={"maxRecords": 1})
            except AuthenticationError:
                raise
            except CRMError as exc:
                logger.debug("airtable.test_table_unavailable", table=table, error=str(exc))
                continue
            logger.info("airtable.connection_verified", table=table)
            return table

        logger.warning("airtable.no_accessible_tables", tables=list(tables))
        return None

    async def aclose(self) -> None:
        await self._http.aclose()
