"""Adapter factory: provider enum -> adapter class, with shared HTTP shaping.

Every adapter gets its own ProviderHTTPClient, and therefore its own
RateLimiter, so connections to different providers do not throttle each
other.
"""

from __future__ import annotations

import httpx

from src.zenith.config import Settings, get_settings
from src.zenith.crm.adapter import CRMAdapter
from src.zenith.crm.airtable import AirtableAdapter
from src.zenith.crm.hubspot import HUBSPOT_API_URL, HubSpotAdapter
from src.zenith.crm.salesforce import SalesforceAdapter
from src.zenith.crm.schemas import Connection, CRMProviderType
from src.zenith.integrations.errors import ConfigurationError
from src.zenith.integrations.http_client import ProviderHTTPClient
from src.zenith.integrations.rate_limit import RateLimiter
from src.zenith.integrations.retry import RetryExecutor


def _http_client(
    provider: CRMProviderType,
    base_url: str,
    token: str | None,
    connection: Connection,
    settings: Settings,
    client: httpx.AsyncClient | None,
) -> ProviderHTTPClient:
    return ProviderHTTPClient(
        provider.value,
        base_url,
        token=token,
        rate_limiter=RateLimiter(settings.CRM_MIN_REQUEST_INTERVAL_MS),
        retry_executor=RetryExecutor(
            max_attempts=connection.configuration.sync_settings.retry_attempts,
            base_delay=settings.CRM_RETRY_BASE_DELAY,
        ),
        client=client,
        timeout=settings.CRM_HTTP_TIMEOUT,
    )


def create_adapter(
    connection: Connection,
    *,
    settings: Settings | None = None,
    client: httpx.AsyncClient | None = None,
) -> CRMAdapter:
    """Build the adapter for ``connection.provider``.

    Args:
        connection: Connection whose credentials configure the adapter.
        settings: Request shaping settings. Defaults to get_settings().
        client: Shared httpx client (tests inject one with a MockTransport).

    Raises:
        ConfigurationError: Unsupported provider or missing credentials.
    """
    settings = settings or get_settings()
    provider = connection.provider
    credentials = connection.configuration.credentials

    if provider == CRMProviderType.SALESFORCE:
        if not credentials.instance_url:
            raise ConfigurationError("Salesforce connection requires an instance_url")
        base_url = (
            f"{credentials.instance_url.rstrip('/')}/services/data/{settings.SALESFORCE_API_VERSION}"
        )
        http = _http_client(provider, base_url, credentials.access_token, connection, settings, client)
        return SalesforceAdapter(connection, http, api_version=settings.SALESFORCE_API_VERSION)

    if provider == CRMProviderType.AIRTABLE:
        if not credentials.base_id:
            raise ConfigurationError("Airtable connection requires a base_id")
        api_url = settings.AIRTABLE_API_URL.rstrip("/")
        base_url = f"{api_url}/v0/{credentials.base_id}"
        token = credentials.api_key or credentials.access_token
        http = _http_client(provider, base_url, token, connection, settings, client)
        return AirtableAdapter(connection, http, api_url=api_url)

    if provider == CRMProviderType.HUBSPOT:
        token = credentials.access_token or credentials.api_key
        http = _http_client(provider, HUBSPOT_API_URL, token, connection, settings, client)
        return HubSpotAdapter(connection, http)

    raise ConfigurationError(f"Provider {provider.value!r} is not supported")
