"""Async HTTP client shared by all provider adapters and the record store.

Every request goes through the same pipeline:
    rate-limit gate -> httpx call -> status translation -> lenient JSON parse
and the whole attempt is wrapped by RetryExecutor, so retried attempts are
rate limited too.

Status translation policy:
- 401 invalid credentials, 403 insufficient scope -> AuthenticationError
- 404 -> NotFoundError (message includes the attempted endpoint)
- 400 / 422 -> SchemaValidationError (names the offending fields when the
  provider reports them)
- 429 / 502 / 503 / 504 and transport failures -> TransientNetworkError
- anything else -> ProviderAPIError
"""

from __future__ import annotations

import re
from typing import Any

import httpx
import structlog

from src.zenith.integrations.errors import (
    AuthenticationError,
    MalformedResponseError,
    NotFoundError,
    ProviderAPIError,
    SchemaValidationError,
    TransientNetworkError,
)
from src.zenith.integrations.rate_limit import RateLimiter
from src.zenith.integrations.retry import RETRYABLE_STATUS_CODES, RetryExecutor

logger = structlog.get_logger(__name__)

_QUOTED_NAME = re.compile(r"\"([^\"]+)\"")


class ProviderHTTPClient:
    """Rate-limited, retried JSON client for one provider base URL.

    Args:
        provider: Provider label used in logs and error messages.
        base_url: Prefix for relative request paths.
        token: Bearer token sent as ``Authorization: Bearer <token>``.
        rate_limiter: Limiter owned by this client. Defaults to 200 ms spacing.
        retry_executor: Retry policy. Defaults to 3 attempts from 1s.
        client: Pre-built httpx.AsyncClient (tests pass one with a
            MockTransport). When omitted the client creates and owns one.
        timeout: Per-request timeout in seconds for an owned client.
    """

    def __init__(
        self,
        provider: str,
        base_url: str,
        token: str | None = None,
        rate_limiter: RateLimiter | None = None,
        retry_executor: RetryExecutor | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        self._provider = provider
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._limiter = rate_limiter or RateLimiter()
        self._retry = retry_executor or RetryExecutor()
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def rate_limiter(self) -> RateLimiter:
        return self._limiter

    def set_token(self, token: str | None) -> None:
        """Swap the bearer token (after an OAuth refresh)."""
        self._token = token

    def url_for(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self._base_url}/{path.lstrip('/')}"

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | list[tuple[str, Any]] | None = None,
        json: Any = None,
        data: dict[str, Any] | None = None,
        max_attempts: int | None = None,
        deadline: float | None = None,
    ) -> Any:
        """Issue one logical request and return the parsed JSON body.

        Returns None for empty bodies (e.g. 204 No Content).
        """
        url = self.url_for(path)

        async def _attempt() -> Any:
            await self._limiter.gate()
            try:
                response = await self._client.request(
                    method,
                    url,
                    params=params,
                    json=json,
                    data=data,
                    headers=self._headers(),
                )
            except httpx.TransportError as exc:
                raise TransientNetworkError(
                    f"CONNECTION_ERROR contacting {self._provider}: {exc}"
                ) from exc
            return self._handle_response(response, method, url)

        return await self._retry.run(_attempt, max_attempts=max_attempts, deadline=deadline)

    async def get(self, path: str, **kwargs: Any) -> Any:
        return await self.request("GET", path, **kwargs)

    async def post(self, path: str, **kwargs: Any) -> Any:
        return await self.request("POST", path, **kwargs)

    async def patch(self, path: str, **kwargs: Any) -> Any:
        return await self.request("PATCH", path, **kwargs)

    async def delete(self, path: str, **kwargs: Any) -> Any:
        return await self.request("DELETE", path, **kwargs)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # ── Internals ───────────────────────────────────────────────────────

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    def _handle_response(self, response: httpx.Response, method: str, url: str) -> Any:
        status = response.status_code
        endpoint = f"{method} {url}"

        if response.is_success:
            if status == 204 or not response.content:
                return None
            return self._parse_json(response, endpoint)

        message, fields = self._extract_error(response)
        logger.warning(
            "provider_http.error_response",
            provider=self._provider,
            endpoint=endpoint,
            status_code=status,
            error=message,
        )

        if status == 401:
            raise AuthenticationError(
                f"{self._provider}: invalid credentials ({message})", status_code=status
            )
        if status == 403:
            raise AuthenticationError(
                f"{self._provider}: insufficient permissions or scope ({message})",
                status_code=status,
            )
        if status == 404:
            raise NotFoundError(
                f"{self._provider}: resource not found, check base/table/object names ({message})",
                endpoint=endpoint,
            )
        if status in (400, 422):
            raise SchemaValidationError(
                f"{self._provider}: field validation failed ({message})",
                fields=fields,
                status_code=status,
            )
        if status in RETRYABLE_STATUS_CODES:
            raise TransientNetworkError(
                f"{self._provider}: transient failure {status} ({message})", status_code=status
            )
        raise ProviderAPIError(
            f"{self._provider}: unexpected status {status} ({message})", status_code=status
        )

    def _parse_json(self, response: httpx.Response, endpoint: str) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            body = response.text.lstrip()
            if body.startswith("<"):
                hint = (
                    "Received an HTML page instead of JSON; check the base/instance URL "
                    "and any proxy in front of the API"
                )
            else:
                hint = "Response body is not valid JSON"
            raise MalformedResponseError(
                f"{self._provider}: malformed response from {endpoint}",
                hint=hint,
                status_code=response.status_code,
            ) from exc

    @staticmethod
    def _extract_error(response: httpx.Response) -> tuple[str, list[str]]:
        """Pull a message and field names out of Airtable/Salesforce error bodies."""
        try:
            body = response.json()
        except ValueError:
            text = response.text.strip()
            return (text[:200] or response.reason_phrase or "no body"), []

        fields: list[str] = []
        message = response.reason_phrase or "error"

        # Salesforce: [{"message": ..., "errorCode": ..., "fields": [...]}]
        if isinstance(body, list) and body and isinstance(body[0], dict):
            messages = []
            for item in body:
                messages.append(str(item.get("message", item.get("errorCode", ""))))
                fields.extend(str(f) for f in item.get("fields", []) or [])
            message = "; ".join(m for m in messages if m) or message

        # Airtable: {"error": {"type": ..., "message": ...}} or {"error": "NOT_FOUND"}
        elif isinstance(body, dict):
            error = body.get("error", body)
            if isinstance(error, dict):
                message = str(error.get("message") or error.get("type") or message)
            elif error:
                message = str(error)
            if "message" in body and isinstance(body["message"], str):
                message = body["message"]

        if not fields and response.status_code in (400, 422):
            fields = _QUOTED_NAME.findall(message)

        return message, fields
