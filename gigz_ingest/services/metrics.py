"""Worker metrics: Prometheus collectors plus a short in-process history.

:class:`MetricsService` keeps two views of every metric:

- a ``prometheus_client`` collector on the service's own
  :class:`CollectorRegistry`, rendered by :meth:`export_prometheus` for a
  scrape endpoint;
- the last ``max_data_points`` raw observations, so
  :meth:`get_aggregates` can answer count/sum/min/max/avg/latest (and
  p50/p95/p99 for histograms) over an arbitrary time window.

Each metric has a fixed label set.  The pipeline records jobs and
created entities, the request queue records API calls, rate-limit hits and
queue depth, the batch processor records database operations, and the
error classifier records every classified error.  Durations are seconds.
"""

from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Mapping

import structlog
from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest

from gigz_ingest.models.metrics import (
    MetricAggregates,
    MetricType,
    Percentiles,
    ScraperMetrics,
)

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_MAX_DATA_POINTS = 10_000
_DEFAULT_NAMESPACE = "gigz_ingest"


@dataclass(frozen=True)
class MetricDefinition:
    name: str
    type: MetricType
    description: str
    labels: tuple[str, ...] = ()


@dataclass(frozen=True)
class _DataPoint:
    timestamp: float
    value: float
    labels: tuple[tuple[str, str], ...]


DEFAULT_METRICS: tuple[MetricDefinition, ...] = (
    # Jobs
    MetricDefinition("jobs_total", MetricType.COUNTER,
                     "Jobs started", ("source", "job_type")),
    MetricDefinition("jobs_succeeded", MetricType.COUNTER,
                     "Jobs that finished successfully", ("source", "job_type")),
    MetricDefinition("jobs_failed", MetricType.COUNTER,
                     "Jobs that finished with errors", ("source", "job_type")),
    MetricDefinition("job_duration", MetricType.HISTOGRAM,
                     "Job duration in seconds", ("source", "job_type", "status")),
    # Scraping
    MetricDefinition("concerts_scraped", MetricType.COUNTER,
                     "Concerts fetched from sources", ("source",)),
    MetricDefinition("concerts_stored", MetricType.COUNTER,
                     "Concerts written to the catalog", ("source",)),
    MetricDefinition("artists_created", MetricType.COUNTER,
                     "New artist rows", ("source",)),
    MetricDefinition("venues_created", MetricType.COUNTER,
                     "New venue rows", ("source",)),
    # Source APIs
    MetricDefinition("api_requests", MetricType.COUNTER,
                     "Request attempts made to sources", ("source", "operation")),
    MetricDefinition("api_requests_failed", MetricType.COUNTER,
                     "Request attempts that failed", ("source", "operation")),
    MetricDefinition("api_response_time", MetricType.HISTOGRAM,
                     "Request attempt duration in seconds",
                     ("source", "operation", "success")),
    MetricDefinition("rate_limit_hits", MetricType.COUNTER,
                     "Requests delayed by a quota or answered with 429", ("source",)),
    # Errors
    MetricDefinition("errors_total", MetricType.COUNTER,
                     "Classified errors", ("source", "category", "severity")),
    # Request queues
    MetricDefinition("queue_size", MetricType.GAUGE,
                     "Requests accepted and not yet finished", ("source",)),
    MetricDefinition("queue_pending", MetricType.GAUGE,
                     "Requests waiting for a slot", ("source",)),
    MetricDefinition("queue_active", MetricType.GAUGE,
                     "Requests in flight", ("source",)),
    # Catalog storage
    MetricDefinition("db_insert_duration", MetricType.HISTOGRAM,
                     "Insert duration in seconds", ("table", "success")),
    MetricDefinition("db_query_duration", MetricType.HISTOGRAM,
                     "Query and command duration in seconds", ("table", "success")),
    MetricDefinition("db_errors", MetricType.COUNTER,
                     "Failed database operations", ("operation", "table")),
)

_COLLECTORS = {
    MetricType.COUNTER: Counter,
    MetricType.GAUGE: Gauge,
    MetricType.HISTOGRAM: Histogram,
}


def _percentile(ordered: list[float], fraction: float) -> float:
    if not ordered:
        return 0.0
    return ordered[min(int(len(ordered) * fraction), len(ordered) - 1)]


class MetricsService:
    """Records worker metrics and summarizes them.

    Parameters
    ----------
    max_data_points:
        Raw observations kept per metric for aggregates.  Older ones are
        dropped first.  The Prometheus collectors are not affected.
    namespace:
        Prefix for exported metric names.
    clock:
        Wall-clock seconds, injected for tests.
    """

    def __init__(
        self,
        max_data_points: int = _DEFAULT_MAX_DATA_POINTS,
        namespace: str = _DEFAULT_NAMESPACE,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_data_points < 1:
            raise ValueError(f"max_data_points must be >= 1, got {max_data_points}")
        self._namespace = namespace
        self._clock = clock
        self._definitions = {d.name: d for d in DEFAULT_METRICS}
        self._points: dict[str, deque[_DataPoint]] = {
            name: deque(maxlen=max_data_points) for name in self._definitions
        }
        self._build_collectors()

    @property
    def registry(self) -> CollectorRegistry:
        return self._registry

    def get_metric_definitions(self) -> list[MetricDefinition]:
        return list(self._definitions.values())

    # ------------------------------------------------------------------
    # Generic recording
    # ------------------------------------------------------------------

    def increment(self, name: str, amount: float = 1.0, **labels: str) -> None:
        """Add *amount* to a counter.  Negative amounts are rejected."""
        self._collector(name, MetricType.COUNTER, labels).inc(amount)
        self._append(name, amount, labels)

    def set_gauge(self, name: str, value: float, **labels: str) -> None:
        self._collector(name, MetricType.GAUGE, labels).set(value)
        self._append(name, value, labels)

    def observe(self, name: str, value: float, **labels: str) -> None:
        """Record one histogram observation."""
        self._collector(name, MetricType.HISTOGRAM, labels).observe(value)
        self._append(name, value, labels)

    # ------------------------------------------------------------------
    # Domain recorders
    # ------------------------------------------------------------------

    def record_job_start(self, source: str, job_type: str) -> None:
        self.increment("jobs_total", source=source, job_type=job_type)

    def record_job_success(self, source: str, job_type: str, duration: float) -> None:
        self.increment("jobs_succeeded", source=source, job_type=job_type)
        self.observe("job_duration", duration, source=source, job_type=job_type,
                     status="success")

    def record_job_failure(self, source: str, job_type: str, duration: float) -> None:
        self.increment("jobs_failed", source=source, job_type=job_type)
        self.observe("job_duration", duration, source=source, job_type=job_type,
                     status="failed")

    def record_concerts_scraped(self, source: str, count: int) -> None:
        self.increment("concerts_scraped", count, source=source)

    def record_concerts_stored(self, source: str, count: int) -> None:
        self.increment("concerts_stored", count, source=source)

    def record_entities_created(self, source: str, artists: int, venues: int) -> None:
        self.increment("artists_created", artists, source=source)
        self.increment("venues_created", venues, source=source)

    def record_api_request(
        self, source: str, operation: str, duration: float, success: bool
    ) -> None:
        self.increment("api_requests", source=source, operation=operation)
        if not success:
            self.increment("api_requests_failed", source=source, operation=operation)
        self.observe("api_response_time", duration, source=source, operation=operation,
                     success=str(success).lower())

    def record_rate_limit_hit(self, source: str) -> None:
        self.increment("rate_limit_hits", source=source)

    def record_database_operation(
        self, operation: str, table: str, duration: float, success: bool
    ) -> None:
        """Record one storage call.  ``insert*`` operations go to the insert histogram."""
        name = "db_insert_duration" if "insert" in operation.lower() else "db_query_duration"
        self.observe(name, duration, table=table, success=str(success).lower())
        if not success:
            self.increment("db_errors", operation=operation, table=table)

    def record_error(self, source: str, category: str, severity: str) -> None:
        self.increment("errors_total", source=source, category=category, severity=severity)

    def update_queue_metrics(
        self, source: str, size: int, pending: int, active: int
    ) -> None:
        self.set_gauge("queue_size", size, source=source)
        self.set_gauge("queue_pending", pending, source=source)
        self.set_gauge("queue_active", active, source=source)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_aggregates(
        self,
        name: str,
        start: float | None = None,
        end: float | None = None,
        labels: Mapping[str, str] | None = None,
    ) -> MetricAggregates | None:
        """Summarize the retained points of *name*, or ``None`` if unknown.

        *start* and *end* bound the window inclusively, in clock seconds.
        *labels* keeps only points whose labels include every given pair.
        """
        definition = self._definitions.get(name)
        if definition is None:
            return None

        wanted = set((labels or {}).items())
        values = [
            point.value
            for point in self._points[name]
            if (start is None or point.timestamp >= start)
            and (end is None or point.timestamp <= end)
            and wanted.issubset(point.labels)
        ]
        if not values:
            return MetricAggregates()

        total = sum(values)
        percentiles = None
        if definition.type is MetricType.HISTOGRAM:
            ordered = sorted(values)
            percentiles = Percentiles(
                p50=_percentile(ordered, 0.5),
                p95=_percentile(ordered, 0.95),
                p99=_percentile(ordered, 0.99),
            )
        return MetricAggregates(
            count=len(values),
            sum=total,
            min=min(values),
            max=max(values),
            avg=total / len(values),
            latest=values[-1],
            percentiles=percentiles,
        )

    def get_all_metrics(self) -> dict[str, MetricAggregates]:
        return {name: self.get_aggregates(name) for name in self._definitions}

    def get_scraper_metrics(
        self, start: float | None = None, end: float | None = None
    ) -> ScraperMetrics:
        def total(name: str) -> int:
            return int(self.get_aggregates(name, start, end).sum)

        def average(name: str) -> float:
            return self.get_aggregates(name, start, end).avg

        return ScraperMetrics(
            jobs_processed=total("jobs_total"),
            jobs_succeeded=total("jobs_succeeded"),
            jobs_failed=total("jobs_failed"),
            concerts_scraped=total("concerts_scraped"),
            concerts_stored=total("concerts_stored"),
            artists_created=total("artists_created"),
            venues_created=total("venues_created"),
            api_requests_made=total("api_requests"),
            api_requests_failed=total("api_requests_failed"),
            average_job_duration=average("job_duration"),
            average_api_response_time=average("api_response_time"),
            rate_limit_hits=total("rate_limit_hits"),
            errors_total=total("errors_total"),
        )

    def export_prometheus(self) -> str:
        """Render every collector in the Prometheus text exposition format."""
        return generate_latest(self._registry).decode("utf-8")

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def reset(self) -> None:
        """Drop all history and start fresh collectors."""
        for points in self._points.values():
            points.clear()
        self._build_collectors()
        logger.info("metrics_reset")

    def clean_old_data_points(self, max_age: float) -> int:
        """Drop retained points older than *max_age* seconds; return how many."""
        cutoff = self._clock() - max_age
        removed = 0
        for points in self._points.values():
            # Points are appended in clock order.
            while points and points[0].timestamp < cutoff:
                points.popleft()
                removed += 1
        if removed:
            logger.info("metrics_data_points_cleaned", removed=removed)
        return removed

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _build_collectors(self) -> None:
        self._registry = CollectorRegistry()
        self._collectors = {
            d.name: _COLLECTORS[d.type](
                d.name,
                d.description,
                labelnames=d.labels,
                namespace=self._namespace,
                registry=self._registry,
            )
            for d in self._definitions.values()
        }

    def _collector(self, name: str, kind: MetricType, labels: Mapping[str, str]):
        definition = self._definitions.get(name)
        if definition is None or definition.type is not kind:
            raise ValueError(f"No {kind.value} metric named '{name}'")
        return self._collectors[name].labels(**labels)

    def _append(self, name: str, value: float, labels: Mapping[str, str]) -> None:
        self._points[name].append(
            _DataPoint(self._clock(), float(value), tuple(sorted(labels.items())))
        )
