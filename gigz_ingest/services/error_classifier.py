"""Rule-based classification of ingestion failures.

Every failure the pipeline handles (a page fetch, a chunk write, a record
resolution) passes through :meth:`ErrorClassifier.classify`, which decides:

- **category**: NETWORK, RATE_LIMIT, AUTHENTICATION, API, PARSING,
  VALIDATION, DATABASE or UNKNOWN.  Typed exceptions (status codes, storage
  and transport errors) are checked alongside substring rules over the
  lower-cased message.  Rules are evaluated in that order and the first hit
  wins.
- **severity**: authentication and database failures are CRITICAL, 5xx is
  HIGH, other 4xx MEDIUM, network MEDIUM, parsing/validation LOW.  Reaching
  the last allowed attempt escalates anything below HIGH to HIGH.
- **retryability**: authentication, validation and non-429 4xx are final;
  everything else may be retried.
- **retry delay**: a provider hint (``Retry-After``, ``X-RateLimit-Reset``,
  ``X-RateLimit-Reset-After``) wins; otherwise ``1s * 2**(attempt-1)``
  capped at 30s for retryable errors.

Classified errors are kept in a FIFO ring (``cachetools.FIFOCache``) for
dashboards and can be pruned by age.
"""

from __future__ import annotations

import asyncio
import math
import re
from collections import Counter
from datetime import datetime, timedelta, timezone
from email.utils import parsedate_to_datetime
from typing import Callable

import httpx
import structlog
from cachetools import FIFOCache
from pydantic import ValidationError as PydanticValidationError

from gigz_ingest.models.errors import (
    ErrorCategory,
    ErrorContext,
    ErrorSeverity,
    ErrorStats,
    ProcessedError,
)
from gigz_ingest.services.metrics import MetricsService
from gigz_ingest.utils.errors import (
    AuthenticationError,
    ProviderHTTPError,
    ProviderUnavailableError,
    RateLimitError,
    RecordValidationError,
    ResponseParsingError,
    StorageError,
)

logger = structlog.get_logger(logger_name=__name__)

_BASE_RETRY_DELAY = 1.0
_MAX_RETRY_DELAY = 30.0
_MIN_HINT_DELAY = 1.0

_NETWORK_PATTERNS = (
    "network error",
    "connection refused",
    "connection reset",
    "timeout",
    "socket hang up",
    "enotfound",
    "econnreset",
    "econnrefused",
    "etimedout",
)
_RATE_LIMIT_PATTERNS = (
    "rate limit",
    "rate limited",
    "too many requests",
    "quota exceeded",
    "api quota",
)
_AUTH_PATTERNS = (
    "unauthorized",
    "authentication",
    "invalid api key",
    "access denied",
    "forbidden",
)
_API_PATTERNS = ("http", "status")
_PARSE_PATTERNS = (
    "parse",
    "parsing",
    "json",
    "xml",
    "invalid format",
    "unexpected token",
)
_VALIDATION_PATTERNS = ("validation", "invalid", "required", "missing", "expected")
_DATABASE_PATTERNS = ("database", "sqlite", "query", "insert", "connection pool")

_STATUS_IN_MESSAGE = re.compile(r"http (\d{3})", re.IGNORECASE)

_NETWORK_TYPES: tuple[type[BaseException], ...] = (
    ProviderUnavailableError,
    httpx.TransportError,
    asyncio.TimeoutError,
    ConnectionError,
)


def _matches(message: str, patterns: tuple[str, ...]) -> bool:
    return any(p in message for p in patterns)


class ErrorClassifier:
    """Categorize failures and keep a bounded history of them.

    Parameters
    ----------
    max_errors:
        Ring capacity; the oldest classified error is evicted first.
    clock:
        Returns the current UTC time.  Injected for age-based pruning tests.
    metrics:
        Receives one ``errors_total`` increment per classified error.
    """

    def __init__(
        self,
        max_errors: int = 1000,
        clock: Callable[[], datetime] | None = None,
        metrics: MetricsService | None = None,
    ) -> None:
        self._errors: FIFOCache[str, ProcessedError] = FIFOCache(maxsize=max_errors)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._metrics = metrics or MetricsService()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def classify(
        self,
        error: BaseException,
        context: ErrorContext | None = None,
    ) -> ProcessedError:
        """Classify *error*, record it in the ring, and log it by severity."""
        context = context or ErrorContext()
        message = str(error) or type(error).__name__
        status = self.extract_status_code(error)
        category = self.categorize(error)
        retryable = self.is_retryable(error, category)

        processed = ProcessedError(
            category=category,
            severity=self._severity(category, status, context),
            is_retryable=retryable,
            is_rate_limited=self.is_rate_limited(error),
            retry_delay=self._retry_delay(error, retryable, context.attempt or 1),
            message=message,
            error_type=type(error).__name__,
            status_code=status,
            context=context,
            timestamp=self._clock(),
        )
        self._errors[processed.id] = processed
        self._metrics.record_error(
            context.source or "unknown", category.value, processed.severity.value
        )
        self._log(processed)
        return processed

    def categorize(self, error: BaseException) -> ErrorCategory:
        """Return the first matching category for *error*."""
        message = str(error).lower()
        name = type(error).__name__.lower()
        status = self.extract_status_code(error)

        if isinstance(error, _NETWORK_TYPES) or _matches(message, _NETWORK_PATTERNS):
            return ErrorCategory.NETWORK
        if (
            isinstance(error, RateLimitError)
            or status == 429
            or _matches(message, _RATE_LIMIT_PATTERNS)
        ):
            return ErrorCategory.RATE_LIMIT
        if (
            isinstance(error, AuthenticationError)
            or status in (401, 403)
            or _matches(message, _AUTH_PATTERNS)
        ):
            return ErrorCategory.AUTHENTICATION
        if status is not None or _matches(message, _API_PATTERNS):
            return ErrorCategory.API
        if (
            isinstance(error, ResponseParsingError)
            or _matches(message, _PARSE_PATTERNS)
            or "syntaxerror" in name
            or "decodeerror" in name
        ):
            return ErrorCategory.PARSING
        if (
            isinstance(error, (RecordValidationError, PydanticValidationError))
            or _matches(message, _VALIDATION_PATTERNS)
            or "validationerror" in name
        ):
            return ErrorCategory.VALIDATION
        if isinstance(error, StorageError) or _matches(message, _DATABASE_PATTERNS):
            return ErrorCategory.DATABASE
        return ErrorCategory.UNKNOWN

    def is_retryable(
        self, error: BaseException, category: ErrorCategory | None = None
    ) -> bool:
        category = category or self.categorize(error)
        if category in (ErrorCategory.AUTHENTICATION, ErrorCategory.VALIDATION):
            return False
        status = self.extract_status_code(error)
        if status is not None and 400 <= status < 500 and status != 429:
            return False
        return True

    def is_rate_limited(self, error: BaseException) -> bool:
        message = str(error).lower()
        return (
            isinstance(error, RateLimitError)
            or self.extract_status_code(error) == 429
            or "rate limit" in message
            or "too many requests" in message
            or "quota exceeded" in message
        )

    @staticmethod
    def extract_status_code(error: BaseException) -> int | None:
        """Return the HTTP status attached to *error* or quoted in its message."""
        if isinstance(error, ProviderHTTPError):
            return error.status_code
        if isinstance(error, httpx.HTTPStatusError):
            return error.response.status_code
        match = _STATUS_IN_MESSAGE.search(str(error))
        return int(match.group(1)) if match else None

    def extract_retry_hint(self, error: BaseException) -> float | None:
        """Return the provider's requested backoff in seconds, if any."""
        if isinstance(error, RateLimitError) and error.retry_after:
            return max(float(error.retry_after), _MIN_HINT_DELAY)

        headers: dict[str, str] = {}
        if isinstance(error, ProviderHTTPError):
            headers = error.headers
        elif isinstance(error, httpx.HTTPStatusError):
            headers = {k.lower(): v for k, v in error.response.headers.items()}
        if not headers:
            return None

        retry_after = headers.get("retry-after")
        if retry_after:
            retry_after = retry_after.strip()
            if retry_after.isdigit():
                return max(float(retry_after), _MIN_HINT_DELAY)
            try:
                when = parsedate_to_datetime(retry_after)
            except (TypeError, ValueError):
                when = None
            if when is not None:
                if when.tzinfo is None:
                    when = when.replace(tzinfo=timezone.utc)
                return max((when - self._clock()).total_seconds(), _MIN_HINT_DELAY)

        reset_after = headers.get("x-ratelimit-reset-after")
        if reset_after:
            try:
                return max(math.ceil(float(reset_after)), _MIN_HINT_DELAY)
            except ValueError:
                pass

        reset = headers.get("x-ratelimit-reset")
        if reset:
            try:
                reset_at = float(reset)
            except ValueError:
                return None
            now = self._clock().timestamp()
            return max(reset_at - now, _MIN_HINT_DELAY)

        return None

    # ------------------------------------------------------------------
    # Ring accessors
    # ------------------------------------------------------------------

    def get_stats(self) -> ErrorStats:
        errors = list(self._errors.values())
        by_category = Counter({c.value: 0 for c in ErrorCategory})
        by_severity = Counter({s.value: 0 for s in ErrorSeverity})
        by_source: Counter[str] = Counter()
        hour_ago = self._clock() - timedelta(hours=1)

        for err in errors:
            by_category[err.category.value] += 1
            by_severity[err.severity.value] += 1
            if err.context.source:
                by_source[err.context.source] += 1

        retryable = sum(1 for e in errors if e.is_retryable)
        return ErrorStats(
            total=len(errors),
            by_category=dict(by_category),
            by_severity=dict(by_severity),
            by_source=dict(by_source),
            retryable=retryable,
            non_retryable=len(errors) - retryable,
            rate_limited=sum(1 for e in errors if e.is_rate_limited),
            last_hour=sum(1 for e in errors if e.timestamp >= hour_ago),
        )

    def get_recent_errors(self, limit: int = 50) -> list[ProcessedError]:
        """Newest first."""
        return self._newest_first(self._errors.values())[:limit]

    def get_errors_by_category(self, category: ErrorCategory) -> list[ProcessedError]:
        return self._newest_first(e for e in self._errors.values() if e.category == category)

    def get_errors_by_severity(self, severity: ErrorSeverity) -> list[ProcessedError]:
        return self._newest_first(e for e in self._errors.values() if e.severity == severity)

    def clear_errors(self) -> None:
        self._errors.clear()

    def clear_old_errors(self, max_age: float = 24 * 3600) -> int:
        """Drop errors older than *max_age* seconds; return how many."""
        cutoff = self._clock() - timedelta(seconds=max_age)
        stale = [eid for eid, e in self._errors.items() if e.timestamp < cutoff]
        for eid in stale:
            del self._errors[eid]
        if stale:
            logger.info("old_errors_pruned", removed=len(stale), remaining=len(self._errors))
        return len(stale)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _newest_first(errors) -> list[ProcessedError]:
        return sorted(errors, key=lambda e: e.timestamp, reverse=True)

    @staticmethod
    def _severity(
        category: ErrorCategory, status: int | None, context: ErrorContext
    ) -> ErrorSeverity:
        if category in (ErrorCategory.AUTHENTICATION, ErrorCategory.DATABASE):
            severity = ErrorSeverity.CRITICAL
        elif status is not None and status >= 500:
            severity = ErrorSeverity.HIGH
        elif status is not None and status >= 400:
            severity = ErrorSeverity.MEDIUM
        elif category in (ErrorCategory.PARSING, ErrorCategory.VALIDATION):
            severity = ErrorSeverity.LOW
        else:
            severity = ErrorSeverity.MEDIUM

        exhausted = (
            context.attempt is not None
            and context.max_attempts is not None
            and context.attempt >= context.max_attempts
        )
        if exhausted and severity.rank < ErrorSeverity.HIGH.rank:
            severity = ErrorSeverity.HIGH
        return severity

    def _retry_delay(
        self, error: BaseException, retryable: bool, attempt: int
    ) -> float | None:
        hint = self.extract_retry_hint(error)
        if hint is not None:
            return hint
        if retryable:
            return min(_BASE_RETRY_DELAY * 2 ** (attempt - 1), _MAX_RETRY_DELAY)
        return None

    @staticmethod
    def _log(processed: ProcessedError) -> None:
        fields = {
            "error_id": processed.id,
            "category": processed.category.value,
            "severity": processed.severity.value,
            "retryable": processed.is_retryable,
            "rate_limited": processed.is_rate_limited,
            "retry_delay": processed.retry_delay,
            "source": processed.context.source,
            "operation": processed.context.operation,
            "attempt": processed.context.attempt,
            "error": processed.message,
        }
        if processed.severity in (ErrorSeverity.CRITICAL, ErrorSeverity.HIGH):
            logger.error("error_classified", **fields)
        elif processed.severity == ErrorSeverity.MEDIUM:
            logger.warning("error_classified", **fields)
        else:
            logger.info("error_classified", **fields)
