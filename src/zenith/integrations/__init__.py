"""Resilient outbound HTTP for third-party data platforms.

Shared by every CRM adapter and by the Airtable record store:
- RateLimiter: minimum spacing between requests to one API
- RetryExecutor: exponential backoff for transient failures only
- ProviderHTTPClient: gate -> retry -> httpx -> status translation -> lenient JSON
- errors: typed failure taxonomy (fatal vs retryable)
"""

from src.zenith.integrations.errors import (
    AuthenticationError,
    ConfigurationError,
    ConnectionNotFoundError,
    CRMError,
    MalformedResponseError,
    NoActiveConnectionError,
    NotFoundError,
    PermissionDeniedError,
    ProviderAPIError,
    SchemaValidationError,
    TransientNetworkError,
)
from src.zenith.integrations.http_client import ProviderHTTPClient
from src.zenith.integrations.rate_limit import RateLimiter
from src.zenith.integrations.retry import RetryExecutor, is_retryable

__all__ = [
    "CRMError",
    "ConfigurationError",
    "AuthenticationError",
    "NotFoundError",
    "SchemaValidationError",
    "TransientNetworkError",
    "MalformedResponseError",
    "ProviderAPIError",
    "NoActiveConnectionError",
    "PermissionDeniedError",
    "ConnectionNotFoundError",
    "RateLimiter",
    "RetryExecutor",
    "is_retryable",
    "ProviderHTTPClient",
]
