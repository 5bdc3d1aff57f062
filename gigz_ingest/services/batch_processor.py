"""Chunked, validated, retried writes to catalog storage.

:meth:`BatchProcessor.process` is the single write path for catalog rows:

1. every item is validated with :func:`validate_record`; invalid items are
   counted as errors and never sent to storage;
2. the valid rows are split into chunks of ``batch_size``;
3. at most ``parallel_batches`` chunks are written at once
   (:func:`throttled_gather` over an ``asyncio.Semaphore``);
4. each chunk gets ``max_retries`` retries after its first attempt, with
   ``retry_delay * 2**(attempt-1)`` backoff and a hard ``timeout`` per
   attempt.  A chunk that runs out of attempts counts every row as an
   error; the other chunks are unaffected.  Any exception a chunk raises
   counts against that chunk only.

The accounting is exact: ``processed_count + error_count`` equals the
number of items submitted, and ``success`` means ``error_count == 0``.

Concert-count refreshes for artists and venues use the same chunk and
retry discipline.  Every attempt is timed into the :class:`MetricsService`.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Mapping, Sequence
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

import structlog
from pydantic import BaseModel

from gigz_ingest.interfaces.storage_provider import IStorageProvider
from gigz_ingest.models.batch import BatchConfig, BatchResult
from gigz_ingest.models.catalog import (
    Artist,
    ArtistAlias,
    Concert,
    ConcertSource,
    TableKind,
    Venue,
)
from gigz_ingest.models.errors import ErrorContext
from gigz_ingest.services.error_classifier import ErrorClassifier
from gigz_ingest.services.metrics import MetricsService
from gigz_ingest.services.validation import validate_record
from gigz_ingest.utils.concurrency import throttled_gather
from gigz_ingest.utils.errors import PipelineError, StorageConflictError

logger = structlog.get_logger(logger_name=__name__)

_MAX_REPORTED_ERRORS = 100

_RECOMPUTE_COUNT_SQL = (
    "UPDATE {table} SET "
    "concert_count = (SELECT COUNT(*) FROM concerts WHERE concerts.{fk} = {table}.id), "
    "updated_at = :updated_at "
    "WHERE id IN ({placeholders})"
)


class BatchProcessor:
    """Validate and write catalog rows in bounded, retried chunks.

    Parameters
    ----------
    storage:
        Catalog storage.
    config:
        Chunk size, retry, parallelism and timeout settings.
    classifier:
        Decides whether a failed chunk is worth retrying.
    metrics:
        Receives one database timing per chunk attempt.
    sleep:
        Backoff sleep.  Injected for tests.
    """

    def __init__(
        self,
        storage: IStorageProvider,
        config: BatchConfig | None = None,
        classifier: ErrorClassifier | None = None,
        metrics: MetricsService | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._storage = storage
        self._config = config or BatchConfig()
        self._classifier = classifier or ErrorClassifier()
        self._metrics = metrics or MetricsService()
        self._sleep = sleep

    @property
    def config(self) -> BatchConfig:
        return self._config

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def process(
        self,
        table: TableKind | str,
        items: Sequence[BaseModel | Mapping[str, Any]],
    ) -> BatchResult:
        """Validate *items* and write them to *table*.

        Raises
        ------
        PipelineError
            If *table* is not a catalog table.
        """
        kind = self._table_kind(table)
        started = time.monotonic()

        rows: list[dict[str, Any]] = []
        errors: list[str] = []
        invalid = 0
        for index, item in enumerate(items):
            row = item.model_dump(mode="json") if isinstance(item, BaseModel) else item
            result = validate_record(kind, row)
            if result.is_valid:
                rows.append(result.record)
            else:
                invalid += 1
                errors.append(f"item {index}: {result.summary()}")

        if invalid:
            logger.warning("batch_items_invalid", table=kind.value, invalid=invalid,
                           total=len(items))

        size = self._config.batch_size
        chunks = [rows[i:i + size] for i in range(0, len(rows), size)]
        outcomes = await throttled_gather(
            [self._write_chunk(kind, n, chunk) for n, chunk in enumerate(chunks)],
            self._config.parallel_batches,
        )

        failed_rows = 0
        for chunk, failure in zip(chunks, outcomes):
            if failure is not None:
                failed_rows += len(chunk)
                errors.append(failure)

        error_count = invalid + failed_rows
        result = BatchResult(
            table=kind.value,
            success=error_count == 0,
            processed_count=len(items) - error_count,
            error_count=error_count,
            errors=errors[:_MAX_REPORTED_ERRORS],
            chunk_count=len(chunks),
            duration=time.monotonic() - started,
        )
        log = logger.info if result.success else logger.warning
        log(
            "batch_processed",
            table=kind.value,
            processed=result.processed_count,
            errors=result.error_count,
            chunks=result.chunk_count,
            duration_s=round(result.duration, 3),
        )
        return result

    async def insert_artists(self, artists: Sequence[Artist]) -> BatchResult:
        return await self.process(TableKind.ARTISTS, artists)

    async def insert_artist_aliases(self, aliases: Sequence[ArtistAlias]) -> BatchResult:
        return await self.process(TableKind.ARTIST_ALIASES, aliases)

    async def insert_venues(self, venues: Sequence[Venue]) -> BatchResult:
        return await self.process(TableKind.VENUES, venues)

    async def insert_concerts(self, concerts: Sequence[Concert]) -> BatchResult:
        return await self.process(TableKind.CONCERTS, concerts)

    async def insert_concert_sources(self, sources: Sequence[ConcertSource]) -> BatchResult:
        return await self.process(TableKind.CONCERT_SOURCES, sources)

    async def recompute_artist_concert_counts(self, artist_ids: Sequence[str]) -> BatchResult:
        """Set ``artists.concert_count`` from the concerts table."""
        return await self._recompute_counts(TableKind.ARTISTS, "artist_id", artist_ids)

    async def recompute_venue_concert_counts(self, venue_ids: Sequence[str]) -> BatchResult:
        """Set ``venues.concert_count`` from the concerts table."""
        return await self._recompute_counts(TableKind.VENUES, "venue_id", venue_ids)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _table_kind(table: TableKind | str) -> TableKind:
        try:
            return TableKind(table)
        except ValueError as exc:
            raise PipelineError(f"Unknown catalog table '{table}'") from exc

    async def _write_chunk(
        self, kind: TableKind, index: int, chunk: list[dict[str, Any]]
    ) -> str | None:
        return await self._with_retry(
            lambda: self._storage.insert(kind.value, chunk),
            table=kind.value,
            operation=f"insert_{kind.value}",
            index=index,
            size=len(chunk),
        )

    async def _recompute_counts(
        self, kind: TableKind, fk: str, ids: Sequence[str]
    ) -> BatchResult:
        started = time.monotonic()
        unique_ids = list(dict.fromkeys(i for i in ids if i))
        size = self._config.batch_size
        chunks = [unique_ids[i:i + size] for i in range(0, len(unique_ids), size)]

        def _update(chunk: list[str]) -> Callable[[], Awaitable[int]]:
            params: dict[str, Any] = {f"id_{n}": value for n, value in enumerate(chunk)}
            params["updated_at"] = datetime.now(timezone.utc)
            sql = _RECOMPUTE_COUNT_SQL.format(
                table=kind.value,
                fk=fk,
                placeholders=", ".join(f":id_{n}" for n in range(len(chunk))),
            )
            return lambda: self._storage.command(sql, params)

        outcomes = await throttled_gather(
            [
                self._with_retry(
                    _update(chunk),
                    table=kind.value,
                    operation=f"recompute_{kind.value}_counts",
                    index=n,
                    size=len(chunk),
                )
                for n, chunk in enumerate(chunks)
            ],
            self._config.parallel_batches,
        )

        errors = [failure for failure in outcomes if failure is not None]
        failed = sum(len(c) for c, failure in zip(chunks, outcomes) if failure is not None)
        result = BatchResult(
            table=kind.value,
            success=failed == 0,
            processed_count=len(unique_ids) - failed,
            error_count=failed,
            errors=errors,
            chunk_count=len(chunks),
            duration=time.monotonic() - started,
        )
        logger.debug("concert_counts_recomputed", table=kind.value,
                     updated=result.processed_count, errors=failed)
        return result

    async def _with_retry(
        self,
        action: Callable[[], Awaitable[Any]],
        table: str,
        operation: str,
        index: int,
        size: int,
    ) -> str | None:
        """Run one chunk action; return ``None`` or a failure description."""
        max_attempts = self._config.max_retries + 1
        for attempt in range(1, max_attempts + 1):
            attempt_started = time.monotonic()
            try:
                await asyncio.wait_for(action(), self._config.timeout)
            except Exception as exc:
                self._metrics.record_database_operation(
                    operation, table, time.monotonic() - attempt_started, success=False
                )
                processed = self._classifier.classify(
                    exc,
                    ErrorContext(
                        source=self._storage.get_provider_name(),
                        operation=operation,
                        attempt=attempt,
                        max_attempts=max_attempts,
                        metadata={"chunk": index, "size": size},
                    ),
                )
                # A uniqueness conflict repeats on every attempt.
                final = (
                    isinstance(exc, StorageConflictError)
                    or not processed.is_retryable
                    or attempt >= max_attempts
                )
                if final:
                    logger.error(
                        "chunk_write_failed",
                        operation=operation,
                        chunk=index,
                        size=size,
                        attempts=attempt,
                        error_id=processed.id,
                        error=str(exc)[:300],
                    )
                    if isinstance(exc, asyncio.TimeoutError):
                        detail = f"timed out after {self._config.timeout}s"
                    else:
                        detail = str(exc) or type(exc).__name__
                    return f"chunk {index} ({size} rows) failed after {attempt} attempt(s): {detail}"

                delay = self._config.retry_delay * 2 ** (attempt - 1)
                logger.warning(
                    "chunk_write_retrying",
                    operation=operation,
                    chunk=index,
                    attempt=attempt,
                    max_attempts=max_attempts,
                    backoff_s=delay,
                )
                await self._sleep(delay)
                continue

            self._metrics.record_database_operation(
                operation, table, time.monotonic() - attempt_started, success=True
            )
            if attempt > 1:
                logger.info("chunk_write_recovered", operation=operation, chunk=index,
                            attempt=attempt)
            return None

        # range() always returns inside the loop.
        return f"chunk {index} ({size} rows) was not attempted"
