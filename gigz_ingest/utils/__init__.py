"""Utility modules for the ingestion pipeline.

- **errors** -- exception hierarchy rooted at GigzIngestError; providers
  translate client-library failures into it at their boundary.
- **concurrency** -- semaphore-gated ``asyncio.gather`` used for bounded
  chunk writes.
- **logging** -- structlog setup with console/JSON renderers.
- **text_normalizer** -- matching keys for names and provider dates.
- **geo** -- haversine distance for venue proximity matching.
"""

from gigz_ingest.utils.concurrency import throttled_gather
from gigz_ingest.utils.errors import (
    AuthenticationError,
    ConfigurationError,
    GigzIngestError,
    PartialFetchError,
    PipelineError,
    ProviderHTTPError,
    ProviderUnavailableError,
    RateLimitError,
    RateLimitStoreError,
    RecordValidationError,
    ResponseParsingError,
    StorageConflictError,
    StorageError,
)
from gigz_ingest.utils.geo import haversine_distance
from gigz_ingest.utils.logging import bind_job_context, clear_job_context, configure_logging
from gigz_ingest.utils.text_normalizer import (
    normalize_date,
    normalize_name,
    normalize_text,
)

__all__ = [
    "AuthenticationError",
    "ConfigurationError",
    "GigzIngestError",
    "PartialFetchError",
    "PipelineError",
    "ProviderHTTPError",
    "ProviderUnavailableError",
    "RateLimitError",
    "RateLimitStoreError",
    "RecordValidationError",
    "ResponseParsingError",
    "StorageConflictError",
    "StorageError",
    "bind_job_context",
    "clear_job_context",
    "configure_logging",
    "haversine_distance",
    "normalize_date",
    "normalize_name",
    "normalize_text",
    "throttled_gather",
]
