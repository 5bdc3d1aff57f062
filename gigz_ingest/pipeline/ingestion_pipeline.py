"""Job orchestration for concert ingestion.

:class:`IngestionPipeline` is what a scheduler or worker calls.  Every job
fetches pages of :class:`ScrapedConcert` from one source connector and runs
each page through the same stages:

1. **validate**: records without usable matching keys are dropped and
   counted as errors;
2. **resolve**: the :class:`EntityResolver` matches or creates the artist,
   venue and concert;
3. **write**: one ``concert_sources`` provenance row per resolved record
   goes through the :class:`BatchProcessor`;
4. **recount**: ``concert_count`` is recomputed for every artist and venue
   the page touched.

:meth:`IngestionPipeline.request_shutdown` sets an event that is checked
before each stage and before each backfill slice.  A write already in
progress completes; records not yet reached are reported as skipped.

Failures of individual records never fail a job outright: they are counted
in the :class:`JobResult`.  :class:`AuthenticationError` is the exception;
retrying cannot help, so it propagates to the caller.  A fetch that fails
after retries marks the job unsuccessful; when the connector raises
:class:`PartialFetchError`, the concerts it carries are still ingested.

When a job finishes, its counts go to the :class:`MetricsService` and
classified errors and metric data points older than
``retention_seconds`` are swept.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from datetime import date
from typing import Awaitable, Callable, Mapping
from uuid import uuid4

import structlog
from pydantic import ValidationError

from gigz_ingest.interfaces.source_connector import ISourceConnector
from gigz_ingest.models.catalog import ConcertSource
from gigz_ingest.models.errors import ErrorContext
from gigz_ingest.models.pipeline import JobResult, JobType
from gigz_ingest.models.scraped import (
    DateRange,
    DiscoveryParams,
    ScrapedConcert,
    ScrapeParams,
)
from gigz_ingest.models.source import ConnectorStats
from gigz_ingest.services.batch_processor import BatchProcessor
from gigz_ingest.services.entity_resolver import EntityResolver
from gigz_ingest.services.error_classifier import ErrorClassifier
from gigz_ingest.services.metrics import MetricsService
from gigz_ingest.services.validation import validate_scraped_concert
from gigz_ingest.utils.errors import (
    AuthenticationError,
    GigzIngestError,
    PartialFetchError,
    PipelineError,
    RecordValidationError,
)
from gigz_ingest.utils.logging import bind_job_context, clear_job_context

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_BACKFILL_BATCH_SIZE = 100
_DEFAULT_BACKFILL_SLICE_DELAY = 1.0
_DEFAULT_RETENTION_SECONDS = 24 * 3600
_MAX_REPORTED_ERRORS = 100

_Fetch = Callable[[ISourceConnector], Awaitable[list[ScrapedConcert]]]


@dataclass
class _JobTally:
    scraped: int = 0
    processed: int = 0
    errors: int = 0
    skipped: int = 0
    artists_created: int = 0
    venues_created: int = 0
    concerts_created: int = 0
    interrupted: bool = False
    operation_failed: bool = False
    messages: list[str] = field(default_factory=list)

    def note(self, message: str) -> None:
        if len(self.messages) < _MAX_REPORTED_ERRORS:
            self.messages.append(message)


class IngestionPipeline:
    """Runs discovery, artist, venue and backfill jobs against the catalog.

    Parameters
    ----------
    connectors:
        Source connectors keyed by source name (``"setlistfm"``).
    resolver:
        Matches scraped records onto catalog rows.
    batch_processor:
        Writes provenance rows and refreshes concert counts.
    classifier:
        Classifies record- and job-level failures.
    backfill_batch_size:
        Default discovery page size for :meth:`run_backfill`.
    backfill_slice_delay:
        Pause between backfill slices, in seconds.
    metrics:
        Receives job outcomes and entity counts.
    retention_seconds:
        Age past which classified errors and metric data points are
        dropped at the end of each job.
    sleep:
        Injected for tests.
    """

    def __init__(
        self,
        connectors: Mapping[str, ISourceConnector],
        resolver: EntityResolver,
        batch_processor: BatchProcessor,
        classifier: ErrorClassifier | None = None,
        backfill_batch_size: int = _DEFAULT_BACKFILL_BATCH_SIZE,
        backfill_slice_delay: float = _DEFAULT_BACKFILL_SLICE_DELAY,
        metrics: MetricsService | None = None,
        retention_seconds: float = _DEFAULT_RETENTION_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._connectors = dict(connectors)
        self._resolver = resolver
        self._batch_processor = batch_processor
        self._classifier = classifier or ErrorClassifier()
        self._backfill_batch_size = backfill_batch_size
        self._backfill_slice_delay = backfill_slice_delay
        self._metrics = metrics or MetricsService()
        self._retention_seconds = retention_seconds
        self._sleep = sleep
        self._shutdown = asyncio.Event()

    @property
    def sources(self) -> list[str]:
        return sorted(self._connectors)

    @property
    def shutdown_requested(self) -> bool:
        return self._shutdown.is_set()

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    async def run_discovery(
        self, source: str, params: DiscoveryParams | None = None
    ) -> JobResult:
        """Ingest one discovery page set (location, genre, date filters)."""
        params = params or DiscoveryParams()
        return await self._run_job(
            JobType.DISCOVERY, source, lambda connector: connector.discover(params)
        )

    async def run_artist_scrape(
        self, source: str, artist_id: str, params: ScrapeParams | None = None
    ) -> JobResult:
        """Ingest every concert the source lists for one artist."""
        if not artist_id:
            raise PipelineError("Artist ID is required for an artist scrape", source)
        return await self._run_job(
            JobType.ARTIST,
            source,
            lambda connector: connector.scrape_by_artist(artist_id, params),
        )

    async def run_venue_scrape(
        self, source: str, venue_id: str, params: ScrapeParams | None = None
    ) -> JobResult:
        """Ingest every concert the source lists for one venue."""
        if not venue_id:
            raise PipelineError("Venue ID is required for a venue scrape", source)
        return await self._run_job(
            JobType.VENUE,
            source,
            lambda connector: connector.scrape_by_venue(venue_id, params),
        )

    async def run_backfill(
        self,
        source: str,
        start_date: date,
        end_date: date,
        batch_size: int | None = None,
    ) -> JobResult:
        """Walk a date range with discovery pages until the source runs dry.

        Each slice asks for ``batch_size`` concerts at the current offset.
        The walk ends on an empty slice, a short slice, a fetch failure, or
        a shutdown request.

        Raises
        ------
        PipelineError
            If the source is unknown or the date range is inverted.
        AuthenticationError
            If the source rejects the API key.
        """
        try:
            date_range = DateRange(start=start_date, end=end_date)
        except ValidationError as exc:
            raise PipelineError(
                f"Invalid backfill range {start_date}..{end_date}", source
            ) from exc
        size = batch_size or self._backfill_batch_size
        connector = self._connector(source)

        job_id = self._new_job_id()
        tally = _JobTally()
        started = time.monotonic()
        bind_job_context(job_id=job_id, job_type=JobType.BACKFILL.value, source=source)
        try:
            logger.info("job_started", start_date=str(start_date), end_date=str(end_date),
                        batch_size=size)
            self._metrics.record_job_start(source, JobType.BACKFILL.value)
            offset = 0
            while True:
                if self._should_stop(tally, "backfill_slice"):
                    break
                params = DiscoveryParams(date_range=date_range, limit=size, offset=offset)
                logger.info("backfill_slice_started", offset=offset, batch_size=size)
                scraped = await self._fetch(job_id, source, connector,
                                            lambda c: c.discover(params), tally)
                if not scraped:
                    break
                await self._ingest_page(job_id, source, scraped, tally)
                offset += len(scraped)
                if tally.operation_failed or len(scraped) < size:
                    break
                await self._sleep(self._backfill_slice_delay)

            return self._finish(job_id, JobType.BACKFILL, source, tally, started)
        finally:
            clear_job_context()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def request_shutdown(self) -> None:
        """Ask running jobs to stop at the next stage boundary."""
        if not self._shutdown.is_set():
            logger.warning("pipeline_shutdown_requested")
        self._shutdown.set()

    async def shutdown(self) -> None:
        """Stop jobs at the next stage and drain every connector's queue."""
        self.request_shutdown()
        await asyncio.gather(*(c.shutdown() for c in self._connectors.values()))
        logger.info("pipeline_shutdown_complete", sources=self.sources)

    def get_connector_stats(self) -> dict[str, ConnectorStats]:
        return {name: c.get_stats() for name, c in self._connectors.items()}

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _new_job_id() -> str:
        return f"job_{uuid4().hex[:12]}"

    def _connector(self, source: str) -> ISourceConnector:
        connector = self._connectors.get(source)
        if connector is None:
            raise PipelineError(
                f"No connector registered for source '{source}' "
                f"(available: {', '.join(self.sources) or 'none'})"
            )
        return connector

    async def _run_job(self, job_type: JobType, source: str, fetch: _Fetch) -> JobResult:
        connector = self._connector(source)
        job_id = self._new_job_id()
        tally = _JobTally()
        started = time.monotonic()
        bind_job_context(job_id=job_id, job_type=job_type.value, source=source)
        try:
            logger.info("job_started")
            self._metrics.record_job_start(source, job_type.value)
            if not self._should_stop(tally, "scrape"):
                scraped = await self._fetch(job_id, source, connector, fetch, tally)
                await self._ingest_page(job_id, source, scraped, tally)
            return self._finish(job_id, job_type, source, tally, started)
        finally:
            clear_job_context()

    async def _fetch(
        self,
        job_id: str,
        source: str,
        connector: ISourceConnector,
        fetch: _Fetch,
        tally: _JobTally,
    ) -> list[ScrapedConcert]:
        try:
            return await fetch(connector)
        except AuthenticationError:
            logger.error("job_authentication_failed")
            raise
        except PartialFetchError as exc:
            self._fetch_failed(job_id, source, exc, exc.cause or exc, tally)
            return exc.concerts
        except GigzIngestError as exc:
            self._fetch_failed(job_id, source, exc, exc, tally)
            return []

    def _fetch_failed(
        self,
        job_id: str,
        source: str,
        error: GigzIngestError,
        cause: GigzIngestError,
        tally: _JobTally,
    ) -> None:
        processed = self._classifier.classify(
            cause, ErrorContext(source=source, operation="fetch", job_id=job_id)
        )
        tally.operation_failed = True
        tally.note(f"fetch failed: {error}")
        logger.error("job_fetch_failed", error=str(error), error_id=processed.id,
                     category=processed.category.value)

    def _should_stop(self, tally: _JobTally, stage: str, pending: int = 0) -> bool:
        if not self._shutdown.is_set():
            return False
        tally.interrupted = True
        tally.skipped += pending
        logger.warning("job_interrupted", stage=stage, skipped=pending)
        return True

    async def _ingest_page(
        self,
        job_id: str,
        source: str,
        scraped: list[ScrapedConcert],
        tally: _JobTally,
    ) -> None:
        tally.scraped += len(scraped)
        if not scraped:
            logger.info("no_concerts_to_process")
            return

        # Stage 1: validate
        valid: list[ScrapedConcert] = []
        for concert in scraped:
            check = validate_scraped_concert(concert)
            if check.is_valid:
                valid.append(concert)
                continue
            error = RecordValidationError(
                f"Invalid scraped concert: {check.summary()}", provider_name=source
            )
            self._classifier.classify(
                error,
                ErrorContext(
                    source=source,
                    operation="validate_scraped_concert",
                    entity_id=concert.external_id,
                    job_id=job_id,
                ),
            )
            tally.errors += 1
            tally.note(str(error))

        # Stage 2: resolve
        if self._should_stop(tally, "resolve", pending=len(valid)) or not valid:
            return
        batch = await self._resolver.resolve_concerts(valid, job_id=job_id)
        tally.errors += len(batch.failures)
        for failure in batch.failures:
            tally.note(f"resolve failed for {failure.scraped.artist.name}: {failure.error}")
        tally.artists_created += batch.artists_created
        tally.venues_created += batch.venues_created
        tally.concerts_created += batch.concerts_created

        # Stage 3: provenance rows
        if self._should_stop(tally, "write", pending=len(batch.resolved)) or not batch.resolved:
            return
        sources = [
            ConcertSource(
                concert_id=r.concert.id,
                source_type=r.scraped.source,
                source_url=r.scraped.source_url,
                raw_data=r.scraped.raw_payload,
            )
            for r in batch.resolved
        ]
        written = await self._batch_processor.insert_concert_sources(sources)
        tally.processed += written.processed_count
        tally.errors += written.error_count
        for message in written.errors:
            tally.note(f"provenance write: {message}")

        # Stage 4: concert counts
        artist_ids = [r.artist.artist.id for r in batch.resolved]
        venue_ids = [r.venue.venue.id for r in batch.resolved]
        for recount in (
            await self._batch_processor.recompute_artist_concert_counts(artist_ids),
            await self._batch_processor.recompute_venue_concert_counts(venue_ids),
        ):
            if not recount.success:
                tally.operation_failed = True
                for message in recount.errors:
                    tally.note(f"{recount.table} count refresh: {message}")

        logger.info(
            "page_ingested",
            scraped=len(scraped),
            resolved=len(batch.resolved),
            processed=written.processed_count,
            errors=tally.errors,
        )

    def _finish(
        self,
        job_id: str,
        job_type: JobType,
        source: str,
        tally: _JobTally,
        started: float,
    ) -> JobResult:
        result = JobResult(
            job_id=job_id,
            job_type=job_type,
            source=source,
            success=tally.errors == 0 and not tally.operation_failed,
            processed_count=tally.processed,
            error_count=tally.errors,
            skipped_count=tally.skipped,
            scraped_count=tally.scraped,
            artists_created=tally.artists_created,
            venues_created=tally.venues_created,
            concerts_created=tally.concerts_created,
            interrupted=tally.interrupted,
            errors=tally.messages,
            duration=time.monotonic() - started,
        )
        log = logger.info if result.success else logger.warning
        log(
            "job_finished",
            success=result.success,
            scraped=result.scraped_count,
            processed=result.processed_count,
            errors=result.error_count,
            skipped=result.skipped_count,
            artists_created=result.artists_created,
            venues_created=result.venues_created,
            concerts_created=result.concerts_created,
            interrupted=result.interrupted,
            duration_s=round(result.duration, 3),
        )
        self._record_job(result)
        self._sweep()
        return result

    def _record_job(self, result: JobResult) -> None:
        source, job_type = result.source, result.job_type.value
        if result.success:
            self._metrics.record_job_success(source, job_type, result.duration)
        else:
            self._metrics.record_job_failure(source, job_type, result.duration)
        self._metrics.record_concerts_scraped(source, result.scraped_count)
        self._metrics.record_concerts_stored(source, result.processed_count)
        self._metrics.record_entities_created(
            source, result.artists_created, result.venues_created
        )

    def _sweep(self) -> None:
        errors = self._classifier.clear_old_errors(self._retention_seconds)
        points = self._metrics.clean_old_data_points(self._retention_seconds)
        if errors or points:
            logger.debug("retention_sweep", errors_removed=errors, data_points_removed=points)
