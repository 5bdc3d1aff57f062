"""Pydantic v2 models for per-source connector configuration and stats."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class SourceRateLimit(BaseModel):
    """Request quota for one provider's request queue."""

    model_config = ConfigDict(frozen=True)

    requests_per_second: int = Field(
        default=1, ge=1, description="Interval cap over a rolling second."
    )
    max_concurrency: int = Field(default=1, ge=1)
    retry_delay: float = Field(
        default=1.0, ge=0, description="Base backoff in seconds, doubled per attempt."
    )
    max_retries: int = Field(default=3, ge=0)
    timeout: float = Field(default=10.0, gt=0, description="Per-request seconds.")


class SourceConfig(BaseModel):
    """Everything a connector needs besides its HTTP client."""

    model_config = ConfigDict(frozen=True)

    name: str
    base_url: str
    api_key: str = ""
    user_agent: str = "Gigz Concert Scraper/1.0"
    page_delay: float = Field(
        default=0.5, ge=0, description="Courtesy sleep between result pages."
    )
    rate_limit: SourceRateLimit = Field(default_factory=SourceRateLimit)


DEFAULT_SOURCE_LIMITS: dict[str, SourceRateLimit] = {
    "setlistfm": SourceRateLimit(
        requests_per_second=2, max_concurrency=1, retry_delay=1.0, max_retries=3
    ),
    "songkick": SourceRateLimit(
        requests_per_second=10, max_concurrency=2, retry_delay=0.5, max_retries=3
    ),
    "bandsintown": SourceRateLimit(
        requests_per_second=10, max_concurrency=2, retry_delay=0.5, max_retries=3
    ),
    "musicbrainz": SourceRateLimit(
        requests_per_second=1, max_concurrency=1, retry_delay=1.0, max_retries=5
    ),
}


class QueueStats(BaseModel):
    """Snapshot of a request queue."""

    model_config = ConfigDict(frozen=True)

    source: str
    pending: int = Field(description="Requests waiting for a slot.")
    in_flight: int
    completed: int
    failed: int
    retries: int
    paused: bool
    accepting: bool


class ConnectorStats(BaseModel):
    """Snapshot of a connector and its queue."""

    model_config = ConfigDict(frozen=True)

    source: str
    requests_made: int
    records_converted: int
    records_dropped: int
    queue: QueueStats
