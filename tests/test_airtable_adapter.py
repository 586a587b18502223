"""Tests for AirtableAdapter against a mocked Airtable API."""

from __future__ import annotations

import json

import httpx
import pytest

from src.zenith.crm.airtable import AirtableAdapter, quote_formula_value, validate_base_id
from src.zenith.crm.factory import create_adapter
from src.zenith.crm.schemas import (
    CRMCampaign,
    CRMCompany,
    CRMContact,
    CRMProviderType,
    EntityType,
    SyncOperation,
)
from src.zenith.integrations.errors import AuthenticationError, ConfigurationError, NotFoundError
from tests.helpers import AIRTABLE_BASE_ID, make_connection, mock_client

BASE_URL = f"https://api.airtable.com/v0/{AIRTABLE_BASE_ID}"


def _adapter(handler, settings, **credentials) -> AirtableAdapter:
    connection = make_connection(CRMProviderType.AIRTABLE, **credentials)
    adapter = create_adapter(connection, settings=settings, client=mock_client(handler))
    assert isinstance(adapter, AirtableAdapter)
    return adapter


def _echo_created(request: httpx.Request) -> httpx.Response:
    """Answer a bulk create by echoing each record with a new id."""
    body = json.loads(request.content)
    return httpx.Response(
        200,
        json={"records": [{"id": f"rec{i}", "fields": r["fields"]} for i, r in enumerate(body["records"])]},
    )


# ── Configuration Tests ─────────────────────────────────────────────────────


class TestAirtableConfiguration:
    """Test base id validation and required credentials."""

    @pytest.mark.parametrize("base_id", ["appABCDEFGHIJKLMN", "app0123456789abcd"])
    def test_valid_base_ids(self, base_id):
        """app + 14 alphanumerics is accepted."""
        validate_base_id(base_id)

    @pytest.mark.parametrize("base_id", ["appShort", "tblABCDEFGHIJKLMN", "appABCDEFGHIJKLM!", ""])
    def test_invalid_base_ids(self, base_id):
        """Anything else is a configuration error."""
        with pytest.raises(ConfigurationError, match="base id"):
            validate_base_id(base_id)

    async def test_invalid_base_id_raises_before_any_request(self, settings):
        """test_connection on a malformed base id raises without network."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        adapter = _adapter(handler, settings, api_key="pat", base_id="not-a-base")

        with pytest.raises(ConfigurationError):
            await adapter.test_connection()

    def test_missing_token_raises(self, settings):
        """A connection without api_key or access_token is rejected."""
        connection = make_connection(CRMProviderType.AIRTABLE, base_id=AIRTABLE_BASE_ID)

        with pytest.raises(ConfigurationError, match="api_key"):
            create_adapter(connection, settings=settings)

    def test_urls(self, settings):
        """Record and meta URLs are derived from the base id."""
        adapter = _adapter(lambda r: httpx.Response(200), settings)

        assert adapter.base_url == BASE_URL
        assert adapter.meta_url == f"https://api.airtable.com/v0/meta/bases/{AIRTABLE_BASE_ID}/tables"


# ── Connection Test Tests ───────────────────────────────────────────────────


class TestAirtableConnectionTest:
    """Test the read-only connection probe."""

    async def test_reachable_base(self, settings):
        """Reading one campaign record succeeds."""
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"records": []})

        assert await _adapter(handler, settings).test_connection() is True
        assert str(seen[0].url) == f"{BASE_URL}/Campaigns?maxRecords=1"
        assert seen[0].headers["Authorization"] == "Bearer pat-test"

    async def test_unreachable_returns_false(self, settings):
        """Persistent transport failure yields False rather than raising."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("unreachable", request=request)

        assert await _adapter(handler, settings).test_connection() is False

    async def test_missing_table_returns_false(self, settings):
        """A 404 (wrong base or table) yields False."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404, json={"error": "NOT_FOUND"})

        assert await _adapter(handler, settings).test_connection() is False

    async def test_bad_token_raises(self, settings):
        """Auth failures propagate with a readable reason."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, json={"error": {"type": "AUTHENTICATION_REQUIRED"}})

        with pytest.raises(AuthenticationError):
            await _adapter(handler, settings).test_connection()

    async def test_authenticate_swallows_auth_failure(self, settings):
        """authenticate() reports rejected tokens as False."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, json={"error": {"type": "AUTHENTICATION_REQUIRED"}})

        assert await _adapter(handler, settings).authenticate() is False

    async def test_refresh_is_unsupported(self, settings):
        """Airtable tokens do not refresh."""
        assert await _adapter(lambda r: httpx.Response(200), settings).refresh_token() is False


# ── Record Tests ────────────────────────────────────────────────────────────


class TestAirtableRecords:
    """Test single-record CRUD."""

    async def test_create_contact_wraps_fields(self, settings):
        """Records are sent as {"fields": ...} and read back with the record id."""
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            fields = json.loads(request.content)["fields"]
            return httpx.Response(200, json={"id": "recNEW", "createdTime": "2026-01-01T00:00:00.000Z", "fields": fields})

        created = await _adapter(handler, settings).create_contact(
            CRMContact(email="ada@example.com", first_name="Ada", custom_fields={"Source": "web"})
        )

        assert json.loads(seen[0].content) == {
            "fields": {"Email": "ada@example.com", "First Name": "Ada", "Source": "web"}
        }
        assert created.id == "recNEW"
        assert created.custom_fields == {"Source": "web"}

    async def test_update_company_patches_record(self, settings):
        """Updates PATCH the record URL."""
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"id": "recC", "fields": {"Name": "Acme", "Industry": "Retail"}})

        updated = await _adapter(handler, settings).update_company("recC", CRMCompany(industry="Retail"))

        assert seen[0].method == "PATCH"
        assert str(seen[0].url) == f"{BASE_URL}/Companies/recC"
        assert json.loads(seen[0].content) == {"fields": {"Industry": "Retail"}}
        assert updated.name == "Acme"

    async def test_get_missing_returns_none(self, settings):
        """404 on get maps to None."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404, json={"error": "NOT_FOUND"})

        assert await _adapter(handler, settings).get_deal("recMISSING") is None


# ── Batch Sync Tests ────────────────────────────────────────────────────────


class TestAirtableBatchSync:
    """Test 10-record chunking and whole-chunk failures."""

    async def test_records_are_chunked_by_ten(self, settings):
        """25 records are sent as chunks of 10, 10 and 5."""
        sizes = []

        def handler(request: httpx.Request) -> httpx.Response:
            sizes.append(len(json.loads(request.content)["records"]))
            return _echo_created(request)

        contacts = [CRMContact(email=f"u{i}@example.com") for i in range(25)]
        result = await _adapter(handler, settings).batch_sync(contacts)

        assert sizes == [10, 10, 5]
        assert result.records_processed == 25
        assert result.records_created == 25
        assert result.success is True

    async def test_failed_chunk_fails_every_record_in_it(self, settings):
        """A rejected first chunk yields 10 errors; the second chunk still lands."""
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            if len(calls) == 1:
                return httpx.Response(
                    422,
                    json={"error": {"type": "INVALID_VALUE_FOR_COLUMN", "message": 'Field "Email" is invalid'}},
                )
            return _echo_created(request)

        contacts = [CRMContact(email=f"u{i}@example.com") for i in range(12)]
        result = await _adapter(handler, settings).batch_sync(contacts)

        assert len(calls) == 2
        assert result.records_processed == 12
        assert result.records_created == 2
        assert len(result.errors) == 10
        assert result.errors[0].record_id == "contact_0"
        assert result.errors[0].field == "Email"
        assert result.success is False

    async def test_update_batch_sends_ids(self, settings):
        """Bulk updates PATCH records with their ids."""
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            body = json.loads(request.content)
            return httpx.Response(200, json={"records": body["records"]})

        contacts = [CRMContact(id="recA", phone="1"), CRMContact(id="recB", phone="2")]
        result = await _adapter(handler, settings).batch_sync(contacts, operation=SyncOperation.UPDATE)

        assert seen[0].method == "PATCH"
        assert json.loads(seen[0].content)["records"][0] == {"id": "recA", "fields": {"Phone": "1"}}
        assert result.records_updated == 2

    async def test_empty_batch_makes_no_requests(self, settings):
        """Nothing to sync means no HTTP traffic and a successful result."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        result = await _adapter(handler, settings).batch_sync([])

        assert result.success is True
        assert result.records_processed == 0


# ── Schema Introspection Tests ──────────────────────────────────────────────


class TestAirtableCustomFields:
    """Test custom field discovery via the meta API."""

    async def test_unknown_columns_are_custom(self, settings):
        """Columns not covered by the field map are returned."""

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == f"/v0/meta/bases/{AIRTABLE_BASE_ID}/tables"
            return httpx.Response(
                200,
                json={
                    "tables": [
                        {
                            "name": "Contacts",
                            "fields": [
                                {"name": "Email", "type": "email"},
                                {"name": "First Name", "type": "singleLineText"},
                                {"name": "Lead Score", "type": "number"},
                            ],
                        }
                    ]
                },
            )

        fields = await _adapter(handler, settings).get_custom_fields(EntityType.CONTACT)

        assert fields == {"Lead Score": {"label": "Lead Score", "type": "number", "required": False}}

    async def test_missing_table_raises(self, settings):
        """A base without the entity's table raises NotFoundError."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"tables": [{"name": "Other", "fields": []}]})

        with pytest.raises(NotFoundError, match="Deals"):
            await _adapter(handler, settings).get_custom_fields(EntityType.DEAL)


# ── Campaign Linkage and Query Tests ────────────────────────────────────────


class TestAirtableCampaigns:
    """Test campaign linkage and listing."""

    async def test_linkage_travels_in_name(self, settings):
        """The internal id is encoded in Name and the snapshot is dropped with a warning."""
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            fields = json.loads(request.content)["fields"]
            return httpx.Response(200, json={"id": "recCMP", "fields": fields})

        adapter = _adapter(handler, settings)
        payload = CRMCampaign(name="Spring Launch", status="Active")
        warnings = adapter.embed_campaign_linkage(payload, "cmp_42", "{}")
        created = await adapter.create_campaign(payload)

        assert len(warnings) == 1
        assert json.loads(seen[0].content)["fields"]["Name"] == "Spring Launch [zenith:cmp_42]"
        assert created.name == "Spring Launch"
        assert created.custom_fields["zenith_campaign_id"] == "cmp_42"

    async def test_list_campaigns_follows_offset(self, settings):
        """Listing follows the offset cursor until it disappears."""
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            if "offset" not in request.url.params:
                return httpx.Response(
                    200, json={"records": [{"id": "rec1", "fields": {"Name": "A [zenith:cmp_1]"}}], "offset": "itr2"}
                )
            return httpx.Response(200, json={"records": [{"id": "rec2", "fields": {"Name": "B"}}]})

        campaigns = await _adapter(handler, settings).list_campaigns()

        assert [c.id for c in campaigns] == ["rec1", "rec2"]
        assert campaigns[0].custom_fields == {"zenith_campaign_id": "cmp_1"}
        assert seen[1].url.params["offset"] == "itr2"
        assert seen[0].url.params["pageSize"] == "100"

    async def test_search_contacts_formula(self, settings):
        """Search lowercases and quotes the term inside FIND() over several columns."""
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"records": []})

        await _adapter(handler, settings).search_contacts("O'Neil")

        formula = seen[0].url.params["filterByFormula"]
        assert formula.startswith("OR(")
        assert "FIND('o\\'neil', LOWER({Email}))" in formula
        assert "LOWER({Company})" in formula

    def test_quote_formula_value(self):
        """Single quotes and backslashes are escaped."""
        assert quote_formula_value("it's") == "'it\\'s'"
