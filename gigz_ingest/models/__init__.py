"""Data models for the ingestion pipeline.

All models are Pydantic v2 ``BaseModel`` subclasses with ``frozen=True``.

Modules:
    scraped     -- Provider-tagged records before reconciliation, plus
                   discovery/scrape parameters.
    catalog     -- Canonical artists, aliases, venues, concerts and
                   provenance rows, with storage row conversion.
    rate_limit  -- Rate limiter configuration, results and violations.
    errors      -- Classified errors and their aggregate stats.
    batch       -- Validation results and batch-write configuration/results.
    source      -- Per-source quotas and connector/queue stats.
    pipeline    -- Resolution outcomes and job results.
"""

from gigz_ingest.models.batch import BatchConfig, BatchResult, FieldError, ValidationResult
from gigz_ingest.models.catalog import (
    AliasType,
    Artist,
    ArtistAlias,
    Concert,
    ConcertSource,
    TableKind,
    Venue,
)
from gigz_ingest.models.errors import (
    ErrorCategory,
    ErrorContext,
    ErrorSeverity,
    ErrorStats,
    ProcessedError,
)
from gigz_ingest.models.pipeline import (
    JobResult,
    JobType,
    ResolutionBatch,
    ResolutionFailure,
    ResolvedArtist,
    ResolvedConcert,
    ResolvedVenue,
)
from gigz_ingest.models.rate_limit import (
    RateLimitAlgorithm,
    RateLimitConfig,
    RateLimitResult,
    RateLimitViolation,
)
from gigz_ingest.models.scraped import (
    DateRange,
    DiscoveryParams,
    ScrapedArtist,
    ScrapedConcert,
    ScrapedVenue,
    ScrapeParams,
)
from gigz_ingest.models.source import (
    DEFAULT_SOURCE_LIMITS,
    ConnectorStats,
    QueueStats,
    SourceConfig,
    SourceRateLimit,
)

__all__ = [
    "DEFAULT_SOURCE_LIMITS",
    "AliasType",
    "Artist",
    "ArtistAlias",
    "BatchConfig",
    "BatchResult",
    "Concert",
    "ConcertSource",
    "ConnectorStats",
    "DateRange",
    "DiscoveryParams",
    "ErrorCategory",
    "ErrorContext",
    "ErrorSeverity",
    "ErrorStats",
    "FieldError",
    "JobResult",
    "JobType",
    "ProcessedError",
    "QueueStats",
    "RateLimitAlgorithm",
    "RateLimitConfig",
    "RateLimitResult",
    "RateLimitViolation",
    "ResolutionBatch",
    "ResolutionFailure",
    "ResolvedArtist",
    "ResolvedConcert",
    "ResolvedVenue",
    "ScrapeParams",
    "ScrapedArtist",
    "ScrapedConcert",
    "ScrapedVenue",
    "SourceConfig",
    "SourceRateLimit",
    "TableKind",
    "ValidationResult",
]
