"""Pydantic v2 models for the in-process metrics summary.

Durations are in seconds throughout.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict


class MetricType(str, Enum):
    COUNTER = "counter"
    GAUGE = "gauge"
    HISTOGRAM = "histogram"


class Percentiles(BaseModel):
    model_config = ConfigDict(frozen=True)

    p50: float = 0.0
    p95: float = 0.0
    p99: float = 0.0


class MetricAggregates(BaseModel):
    """Summary of the retained data points of one metric.

    ``percentiles`` is only filled in for histograms.  An empty window
    reports zeros rather than ``None``.
    """

    model_config = ConfigDict(frozen=True)

    count: int = 0
    sum: float = 0.0
    min: float = 0.0
    max: float = 0.0
    avg: float = 0.0
    latest: float = 0.0
    percentiles: Percentiles | None = None


class ScraperMetrics(BaseModel):
    """Headline numbers for a worker, summed over the retained data points."""

    model_config = ConfigDict(frozen=True)

    jobs_processed: int = 0
    jobs_succeeded: int = 0
    jobs_failed: int = 0
    concerts_scraped: int = 0
    concerts_stored: int = 0
    artists_created: int = 0
    venues_created: int = 0
    api_requests_made: int = 0
    api_requests_failed: int = 0
    average_job_duration: float = 0.0
    average_api_response_time: float = 0.0
    rate_limit_hits: int = 0
    errors_total: int = 0
