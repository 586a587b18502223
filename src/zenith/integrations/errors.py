"""Failure taxonomy for third-party CRM and data-platform calls.

Every error carries a ``retryable`` flag. Only TransientNetworkError is
retryable; everything else is a configuration, auth or data problem that
will not fix itself by trying again.
"""

from __future__ import annotations


class CRMError(Exception):
    """Base class for all integration failures."""

    retryable: bool = False

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class ConfigurationError(CRMError):
    """Missing or invalid credentials / identifiers. Never retried."""


class AuthenticationError(CRMError):
    """401 invalid credentials or 403 insufficient scope."""


class NotFoundError(CRMError):
    """404 -- usually a misconfigured base, table or object name."""

    def __init__(self, message: str, *, endpoint: str, status_code: int | None = 404) -> None:
        super().__init__(f"{message} (endpoint: {endpoint})", status_code=status_code)
        self.endpoint = endpoint


class SchemaValidationError(CRMError):
    """400/422 -- the provider rejected one or more fields."""

    def __init__(
        self,
        message: str,
        *,
        fields: list[str] | None = None,
        status_code: int | None = 422,
    ) -> None:
        self.fields = list(fields or [])
        if self.fields:
            message = f"{message} (fields: {', '.join(self.fields)})"
        super().__init__(message, status_code=status_code)

    @property
    def field(self) -> str | None:
        """First offending field, if the provider named one."""
        return self.fields[0] if self.fields else None


class TransientNetworkError(CRMError):
    """429 / 502 / 503 / 504 or a dropped connection. Retryable."""

    retryable = True


class MalformedResponseError(CRMError):
    """The provider answered with a body that is not JSON."""

    def __init__(self, message: str, *, hint: str, status_code: int | None = None) -> None:
        super().__init__(f"{message}. {hint}", status_code=status_code)
        self.hint = hint


class ProviderAPIError(CRMError):
    """Any other non-success status. Fatal."""


class NoActiveConnectionError(CRMError):
    """Orchestration precondition: no connection is active and connected."""


class PermissionDeniedError(CRMError):
    """Orchestration precondition: the caller may not perform the action."""


class ConnectionNotFoundError(CRMError):
    """No stored connection has the requested id."""

    def __init__(self, connection_id: str) -> None:
        super().__init__(f"CRM connection {connection_id!r} not found")
        self.connection_id = connection_id
