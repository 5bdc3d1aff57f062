"""Custom exception hierarchy for the ingestion pipeline.

All application exceptions inherit from :class:`GigzIngestError`, which
carries an optional ``provider_name`` so error handlers can identify which
external collaborator (e.g. "setlistfm", "redis", "sqlite") caused the
failure.

The hierarchy is organized by pipeline layer:

    GigzIngestError  (base -- catch-all for any ingestion error)
    +-- ConfigurationError       (startup / missing config)
    +-- ProviderHTTPError        (non-2xx response from a source provider)
    |   +-- AuthenticationError  (401 / 403 -- never retried)
    +-- ProviderUnavailableError (transport failure / request timeout)
    +-- ResponseParsingError     (malformed JSON body)
    +-- RecordValidationError    (a record is missing required fields)
    +-- PartialFetchError        (a page failed; carries what was collected)
    +-- RateLimitError           (local quota exhausted)
    +-- RateLimitStoreError      (shared rate-limit store unreachable)
    +-- StorageError             (catalog insert / query / command failed)
    |   +-- StorageConflictError (uniqueness constraint violated)
    +-- PipelineError            (job orchestration failure)

Providers translate library exceptions (httpx, redis, sqlite3) into this
hierarchy at their boundary so services never depend on a client library's
own error types.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any


class GigzIngestError(Exception):
    """Base exception for all ingestion errors.

    Every subclass carries a human-readable ``message`` and an optional
    ``provider_name`` identifying which external service triggered the
    error.  The ``__str__`` method prefixes the provider name in brackets
    for structured log output, e.g. ``[setlistfm] HTTP 503: Service Unavailable``.
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        provider_name: str | None = None,
    ) -> None:
        self._message = message
        self._provider_name = provider_name
        super().__init__(self._message)

    @property
    def message(self) -> str:
        return self._message

    @property
    def provider_name(self) -> str | None:
        return self._provider_name

    def __str__(self) -> str:
        if self._provider_name:
            return f"[{self._provider_name}] {self._message}"
        return self._message


# ---------------------------------------------------------------------------
# Source provider errors
# ---------------------------------------------------------------------------

class ProviderHTTPError(GigzIngestError):
    """Raised when a source provider answers with a non-2xx status.

    The status code and response headers are kept so the error classifier
    can derive severity, retryability, and any provider backoff hint
    (``Retry-After``, ``X-RateLimit-Reset``).
    """

    def __init__(
        self,
        status_code: int,
        message: str | None = None,
        provider_name: str | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> None:
        self._status_code = status_code
        # Lower-cased copy so hint lookups are case-insensitive.
        self._headers = {k.lower(): v for k, v in (headers or {}).items()}
        super().__init__(
            message=message or f"HTTP {status_code}",
            provider_name=provider_name,
        )

    @property
    def status_code(self) -> int:
        return self._status_code

    @property
    def headers(self) -> dict[str, str]:
        return dict(self._headers)


class AuthenticationError(ProviderHTTPError):
    """Raised on 401/403 responses.  Retrying cannot succeed."""


class ProviderUnavailableError(GigzIngestError):
    """Raised when a provider is unreachable (DNS, reset, refused, timeout)."""

    def __init__(
        self,
        message: str = "External service is unavailable",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ResponseParsingError(GigzIngestError):
    """Raised when a provider response body is not valid JSON.

    ``status_code`` records the (successful) status the body arrived with.
    """

    def __init__(
        self,
        message: str = "Failed to parse provider response",
        provider_name: str | None = None,
        status_code: int | None = None,
    ) -> None:
        self._status_code = status_code
        super().__init__(message=message, provider_name=provider_name)

    @property
    def status_code(self) -> int | None:
        return self._status_code


class RecordValidationError(GigzIngestError):
    """Raised when a record is missing required fields or has invalid values."""

    def __init__(
        self,
        message: str = "Record validation failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class PartialFetchError(GigzIngestError):
    """Raised when a paginated fetch fails part-way through.

    ``concerts`` holds the records collected from the pages that did
    succeed, so the caller can still ingest them.  ``cause`` is the error
    that ended pagination; it is also chained as ``__cause__``.
    """

    def __init__(
        self,
        message: str = "Fetch failed part-way through pagination",
        provider_name: str | None = None,
        concerts: list[Any] | None = None,
        cause: GigzIngestError | None = None,
    ) -> None:
        self._concerts = list(concerts or [])
        self._cause = cause
        super().__init__(message=message, provider_name=provider_name)

    @property
    def concerts(self) -> list[Any]:
        return list(self._concerts)

    @property
    def cause(self) -> GigzIngestError | None:
        return self._cause


# ---------------------------------------------------------------------------
# Rate limiting errors
# ---------------------------------------------------------------------------

class RateLimitError(GigzIngestError):
    """Raised when a quota is exhausted and the caller chose not to wait."""

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        provider_name: str | None = None,
        retry_after: float | None = None,
    ) -> None:
        self._retry_after = retry_after
        super().__init__(message=message, provider_name=provider_name)

    @property
    def retry_after(self) -> float | None:
        return self._retry_after


class RateLimitStoreError(GigzIngestError):
    """Raised by a rate-limit store when the shared backend cannot be reached."""

    def __init__(
        self,
        message: str = "Rate limit store operation failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Storage errors
# ---------------------------------------------------------------------------

class StorageError(GigzIngestError):
    """Raised when a catalog insert, query, or command fails."""

    def __init__(
        self,
        message: str = "Database operation failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class StorageConflictError(StorageError):
    """Raised when an insert violates a uniqueness constraint.

    The entity resolver treats this as "someone else created it first" and
    re-runs its match instead of failing the record.
    """


# ---------------------------------------------------------------------------
# Orchestration / configuration errors
# ---------------------------------------------------------------------------

class PipelineError(GigzIngestError):
    """Raised when job orchestration fails (unknown source, shutdown, etc.)."""

    def __init__(
        self,
        message: str = "Pipeline orchestration failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ConfigurationError(GigzIngestError):
    """Raised when configuration is invalid or missing at startup."""

    def __init__(
        self,
        message: str = "Invalid or missing configuration",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)
