"""Integration tests for IngestionPipeline against a real SQLite catalog.

Most tests use an in-memory fake connector; one drives the real setlist.fm
connector against a mock transport.  Resolution, provenance writes and
concert-count refreshes all run for real.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Any

import httpx
import pytest

from gigz_ingest.interfaces.source_connector import ISourceConnector
from gigz_ingest.models.batch import BatchConfig
from gigz_ingest.models.errors import ErrorContext
from gigz_ingest.models.pipeline import JobResult, JobType
from gigz_ingest.models.scraped import (
    DiscoveryParams,
    ScrapedArtist,
    ScrapedConcert,
    ScrapedVenue,
    ScrapeParams,
)
from gigz_ingest.models.source import (
    ConnectorStats,
    QueueStats,
    SourceConfig,
    SourceRateLimit,
)
from gigz_ingest.pipeline.ingestion_pipeline import IngestionPipeline
from gigz_ingest.providers.source.setlistfm_connector import (
    SETLISTFM_BASE_URL,
    SetlistFmConnector,
)
from gigz_ingest.providers.storage.sqlite_storage import SQLiteStorageProvider
from gigz_ingest.services.batch_processor import BatchProcessor
from gigz_ingest.services.entity_resolver import EntityResolver
from gigz_ingest.services.error_classifier import ErrorClassifier
from gigz_ingest.services.metrics import MetricsService
from gigz_ingest.services.request_queue import RequestQueue
from gigz_ingest.utils.errors import (
    AuthenticationError,
    PartialFetchError,
    PipelineError,
    ProviderHTTPError,
    ProviderUnavailableError,
)
from tests.conftest import make_artist, make_concert, make_venue


# ======================================================================
# Shared helpers
# ======================================================================


class _FakeConnector(ISourceConnector):
    """Serves a fixed list of concerts, honouring limit/offset on discover."""

    def __init__(self, concerts: list[ScrapedConcert], error: Exception | None = None,
                 on_fetch=None) -> None:
        self.concerts = concerts
        self.error = error
        self.on_fetch = on_fetch
        self.calls: list[tuple[str, Any]] = []
        self.closed = False

    async def _serve(self, call: str, arg: Any, items: list[ScrapedConcert]):
        self.calls.append((call, arg))
        if self.error is not None:
            raise self.error
        if self.on_fetch is not None:
            self.on_fetch()
        return items

    async def discover(self, params: DiscoveryParams) -> list[ScrapedConcert]:
        page = self.concerts[params.offset:params.offset + params.limit]
        return await self._serve("discover", params, page)

    async def scrape_by_artist(
        self, artist_id: str, params: ScrapeParams | None = None
    ) -> list[ScrapedConcert]:
        return await self._serve("artist", artist_id, self.concerts)

    async def scrape_by_venue(
        self, venue_id: str, params: ScrapeParams | None = None
    ) -> list[ScrapedConcert]:
        return await self._serve("venue", venue_id, self.concerts)

    async def search_artist(self, name: str) -> list[ScrapedArtist]:
        return []

    async def search_venue(self, name: str, city: str | None = None) -> list[ScrapedVenue]:
        return []

    async def get_artist_metadata(self, artist_id: str) -> dict[str, Any] | None:
        return None

    async def get_venue_metadata(self, venue_id: str) -> dict[str, Any] | None:
        return None

    def get_stats(self) -> ConnectorStats:
        return ConnectorStats(
            source="setlistfm",
            requests_made=len(self.calls),
            records_converted=len(self.concerts),
            records_dropped=0,
            queue=QueueStats(source="setlistfm", pending=0, in_flight=0, completed=0,
                             failed=0, retries=0, paused=False, accepting=not self.closed),
        )

    async def shutdown(self) -> None:
        self.closed = True

    def get_provider_name(self) -> str:
        return "setlistfm"


class _Sleeper:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def _pipeline(
    storage: SQLiteStorageProvider,
    connector: ISourceConnector,
    classifier: ErrorClassifier | None = None,
    sleeper: _Sleeper | None = None,
    metrics: MetricsService | None = None,
) -> IngestionPipeline:
    classifier = classifier or ErrorClassifier()
    return IngestionPipeline(
        connectors={"setlistfm": connector},
        resolver=EntityResolver(storage, classifier),
        batch_processor=BatchProcessor(storage, BatchConfig(batch_size=2), classifier),
        classifier=classifier,
        metrics=metrics,
        sleep=sleeper or _Sleeper(),
    )


def _tour() -> list[ScrapedConcert]:
    radiohead = make_artist("Radiohead", musicbrainz_id="a74b1b7f-71a5-4011-9441-d0b5e4122711")
    caribou = make_artist("Caribou")
    msg = make_venue(external_id="63d6a2b3")
    forum = make_venue("Forum", city="London", country="United Kingdom")
    return [
        make_concert(radiohead, msg, date(2024, 6, 1), external_id="sl1",
                     raw_payload={"id": "sl1"}),
        make_concert(radiohead, msg, date(2024, 6, 2), external_id="sl2",
                     raw_payload={"id": "sl2"}),
        make_concert(caribou, forum, date(2024, 6, 3), external_id="sl3"),
    ]


def _assert_accounted(result: JobResult) -> None:
    assert (
        result.processed_count + result.error_count + result.skipped_count
        == result.scraped_count
    )


async def _count(storage: SQLiteStorageProvider, table: str) -> int:
    rows = await storage.query(f"SELECT COUNT(*) AS n FROM {table}")
    return rows[0]["n"]


# ======================================================================
# Single-page jobs
# ======================================================================


class TestDiscovery:
    @pytest.mark.asyncio
    async def test_end_to_end(self, storage: SQLiteStorageProvider) -> None:
        pipeline = _pipeline(storage, _FakeConnector(_tour()))
        result = await pipeline.run_discovery("setlistfm", DiscoveryParams(limit=10))

        assert result.success
        assert result.job_type is JobType.DISCOVERY
        assert result.job_id.startswith("job_") and len(result.job_id) == 16
        assert (result.scraped_count, result.processed_count, result.error_count) == (3, 3, 0)
        assert (result.artists_created, result.venues_created, result.concerts_created) == (
            2, 2, 3,
        )
        _assert_accounted(result)

        assert await _count(storage, "concerts") == 3
        assert await _count(storage, "concert_sources") == 3
        counts = await storage.query(
            "SELECT name, concert_count FROM artists ORDER BY name"
        )
        assert counts == [
            {"name": "Caribou", "concert_count": 1},
            {"name": "Radiohead", "concert_count": 2},
        ]
        raw = await storage.query(
            "SELECT raw_data FROM concert_sources WHERE raw_data LIKE '%sl1%'"
        )
        assert len(raw) == 1

    @pytest.mark.asyncio
    async def test_rerun_adds_provenance_only(self, storage: SQLiteStorageProvider) -> None:
        pipeline = _pipeline(storage, _FakeConnector(_tour()))
        await pipeline.run_discovery("setlistfm")
        again = await pipeline.run_discovery("setlistfm")

        assert again.success
        assert (again.artists_created, again.venues_created, again.concerts_created) == (
            0, 0, 0,
        )
        assert again.processed_count == 3
        assert await _count(storage, "concerts") == 3
        assert await _count(storage, "concert_sources") == 6
        rows = await storage.query("SELECT concert_count FROM venues WHERE city = 'New York'")
        assert rows == [{"concert_count": 2}]

    @pytest.mark.asyncio
    async def test_invalid_record_is_an_error(
        self, storage: SQLiteStorageProvider, classifier: ErrorClassifier
    ) -> None:
        concerts = [*_tour(), make_concert(make_artist("!!!?"), external_id="bad")]
        pipeline = _pipeline(storage, _FakeConnector(concerts), classifier)
        result = await pipeline.run_discovery("setlistfm")

        assert not result.success
        assert (result.scraped_count, result.processed_count, result.error_count) == (4, 3, 1)
        assert "Invalid scraped concert" in result.errors[0]
        _assert_accounted(result)
        recorded = classifier.get_recent_errors(limit=1)[0]
        assert recorded.context.entity_id == "bad"
        assert recorded.context.job_id == result.job_id

    @pytest.mark.asyncio
    async def test_empty_page(self, storage: SQLiteStorageProvider) -> None:
        result = await _pipeline(storage, _FakeConnector([])).run_discovery("setlistfm")
        assert result.success
        assert result.scraped_count == 0
        _assert_accounted(result)

    @pytest.mark.asyncio
    async def test_fetch_failure_fails_job(self, storage: SQLiteStorageProvider) -> None:
        connector = _FakeConnector([], error=ProviderUnavailableError("timeout", "setlistfm"))
        result = await _pipeline(storage, connector).run_discovery("setlistfm")

        assert not result.success
        assert result.scraped_count == 0
        assert result.errors == ["fetch failed: [setlistfm] timeout"]

    @pytest.mark.asyncio
    async def test_partial_fetch_ingests_collected_concerts(
        self, storage: SQLiteStorageProvider, classifier: ErrorClassifier
    ) -> None:
        error = PartialFetchError(
            "page 2 failed: HTTP 503",
            provider_name="setlistfm",
            concerts=_tour()[:2],
            cause=ProviderHTTPError(503, provider_name="setlistfm"),
        )
        pipeline = _pipeline(storage, _FakeConnector([], error=error), classifier)
        result = await pipeline.run_discovery("setlistfm")

        assert not result.success
        assert (result.scraped_count, result.processed_count, result.error_count) == (2, 2, 0)
        assert result.errors == ["fetch failed: [setlistfm] page 2 failed: HTTP 503"]
        _assert_accounted(result)
        assert await _count(storage, "concerts") == 2
        recorded = classifier.get_recent_errors(limit=1)[0]
        assert recorded.status_code == 503
        assert recorded.context.operation == "fetch"

    @pytest.mark.asyncio
    async def test_authentication_error_propagates(
        self, storage: SQLiteStorageProvider
    ) -> None:
        connector = _FakeConnector([], error=AuthenticationError(401, provider_name="setlistfm"))
        with pytest.raises(AuthenticationError):
            await _pipeline(storage, connector).run_discovery("setlistfm")

    @pytest.mark.asyncio
    async def test_unknown_source(self, storage: SQLiteStorageProvider) -> None:
        pipeline = _pipeline(storage, _FakeConnector([]))
        with pytest.raises(PipelineError, match="No connector registered"):
            await pipeline.run_discovery("songkick")


class TestArtistAndVenueScrapes:
    @pytest.mark.asyncio
    async def test_artist_scrape(self, storage: SQLiteStorageProvider) -> None:
        connector = _FakeConnector(_tour()[:2])
        result = await _pipeline(storage, connector).run_artist_scrape(
            "setlistfm", "a74b1b7f-71a5-4011-9441-d0b5e4122711"
        )

        assert result.success
        assert result.job_type is JobType.ARTIST
        assert connector.calls == [("artist", "a74b1b7f-71a5-4011-9441-d0b5e4122711")]
        assert result.concerts_created == 2

    @pytest.mark.asyncio
    async def test_venue_scrape(self, storage: SQLiteStorageProvider) -> None:
        connector = _FakeConnector(_tour()[:2])
        result = await _pipeline(storage, connector).run_venue_scrape("setlistfm", "63d6a2b3")

        assert result.success
        assert result.job_type is JobType.VENUE
        rows = await storage.query("SELECT setlistfm_id FROM venues")
        assert rows == [{"setlistfm_id": "63d6a2b3"}]

    @pytest.mark.asyncio
    async def test_ids_are_required(self, storage: SQLiteStorageProvider) -> None:
        pipeline = _pipeline(storage, _FakeConnector([]))
        with pytest.raises(PipelineError, match="Artist ID is required"):
            await pipeline.run_artist_scrape("setlistfm", "")
        with pytest.raises(PipelineError, match="Venue ID is required"):
            await pipeline.run_venue_scrape("setlistfm", "")


# ======================================================================
# Shutdown
# ======================================================================


class TestShutdown:
    @pytest.mark.asyncio
    async def test_shutdown_before_fetch(self, storage: SQLiteStorageProvider) -> None:
        connector = _FakeConnector(_tour())
        pipeline = _pipeline(storage, connector)
        pipeline.request_shutdown()
        result = await pipeline.run_discovery("setlistfm")

        assert result.interrupted
        assert result.scraped_count == 0
        assert connector.calls == []

    @pytest.mark.asyncio
    async def test_shutdown_mid_job_skips_page(self, storage: SQLiteStorageProvider) -> None:
        holder: dict[str, IngestionPipeline] = {}
        connector = _FakeConnector(_tour(), on_fetch=lambda: holder["p"].request_shutdown())
        pipeline = holder["p"] = _pipeline(storage, connector)
        result = await pipeline.run_discovery("setlistfm")

        assert result.interrupted
        assert (result.scraped_count, result.skipped_count, result.processed_count) == (3, 3, 0)
        _assert_accounted(result)
        assert await _count(storage, "concerts") == 0

    @pytest.mark.asyncio
    async def test_shutdown_drains_connectors(self, storage: SQLiteStorageProvider) -> None:
        connector = _FakeConnector([])
        pipeline = _pipeline(storage, connector)
        await pipeline.shutdown()

        assert connector.closed
        assert pipeline.shutdown_requested
        assert not pipeline.get_connector_stats()["setlistfm"].queue.accepting


# ======================================================================
# Backfill
# ======================================================================


class TestBackfill:
    @staticmethod
    def _season(count: int) -> list[ScrapedConcert]:
        venue = make_venue()
        return [
            make_concert(make_artist(f"Band {n}"), venue, date(2024, 1, 1) + timedelta(days=n))
            for n in range(count)
        ]

    @pytest.mark.asyncio
    async def test_walks_slices_until_short_page(self, storage: SQLiteStorageProvider) -> None:
        connector = _FakeConnector(self._season(5))
        sleeper = _Sleeper()
        result = await _pipeline(storage, connector, sleeper=sleeper).run_backfill(
            "setlistfm", date(2024, 1, 1), date(2024, 1, 31), batch_size=2
        )

        assert result.success
        assert result.job_type is JobType.BACKFILL
        assert (result.scraped_count, result.processed_count) == (5, 5)
        assert [params.offset for _, params in connector.calls] == [0, 2, 4]
        assert all(params.limit == 2 for _, params in connector.calls)
        assert connector.calls[0][1].date_range.end == date(2024, 1, 31)
        assert sleeper.delays == [1.0, 1.0]
        _assert_accounted(result)

    @pytest.mark.asyncio
    async def test_stops_on_empty_slice(self, storage: SQLiteStorageProvider) -> None:
        connector = _FakeConnector(self._season(4))
        result = await _pipeline(storage, connector).run_backfill(
            "setlistfm", date(2024, 1, 1), date(2024, 1, 31), batch_size=2
        )

        assert result.processed_count == 4
        assert [params.offset for _, params in connector.calls] == [0, 2, 4]

    @pytest.mark.asyncio
    async def test_partial_fetch_ends_walk(self, storage: SQLiteStorageProvider) -> None:
        error = PartialFetchError(
            "page 1 failed: HTTP 500",
            provider_name="setlistfm",
            concerts=self._season(1),
            cause=ProviderHTTPError(500, provider_name="setlistfm"),
        )
        connector = _FakeConnector(self._season(6), error=error)
        sleeper = _Sleeper()
        result = await _pipeline(storage, connector, sleeper=sleeper).run_backfill(
            "setlistfm", date(2024, 1, 1), date(2024, 1, 31), batch_size=2
        )

        assert not result.success
        assert (result.scraped_count, result.processed_count) == (1, 1)
        assert len(connector.calls) == 1
        assert sleeper.delays == []
        _assert_accounted(result)

    @pytest.mark.asyncio
    async def test_inverted_range(self, storage: SQLiteStorageProvider) -> None:
        pipeline = _pipeline(storage, _FakeConnector([]))
        with pytest.raises(PipelineError, match="Invalid backfill range"):
            await pipeline.run_backfill("setlistfm", date(2024, 2, 1), date(2024, 1, 1))

    @pytest.mark.asyncio
    async def test_shutdown_between_slices(self, storage: SQLiteStorageProvider) -> None:
        holder: dict[str, IngestionPipeline] = {}
        connector = _FakeConnector(self._season(6))
        sleeper = _Sleeper()

        async def stop_after_first_slice(delay: float) -> None:
            sleeper.delays.append(delay)
            holder["p"].request_shutdown()

        pipeline = holder["p"] = _pipeline(storage, connector, sleeper=stop_after_first_slice)
        result = await pipeline.run_backfill(
            "setlistfm", date(2024, 1, 1), date(2024, 1, 31), batch_size=2
        )

        assert result.interrupted
        assert result.processed_count == 2
        assert len(connector.calls) == 1
        _assert_accounted(result)


# ======================================================================
# Real connector against a failing provider
# ======================================================================


class TestProviderOutage:
    @pytest.mark.asyncio
    async def test_exhausted_retries_fail_the_job(
        self, storage: SQLiteStorageProvider, clock
    ) -> None:
        requests: list[httpx.Request] = []

        def unavailable(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(503, text="Service Unavailable")

        sleeper = _Sleeper()
        metrics = MetricsService(clock=clock)
        classifier = ErrorClassifier(metrics=metrics)
        config = SourceConfig(
            name="setlistfm",
            base_url=SETLISTFM_BASE_URL,
            api_key="test-key",
            rate_limit=SourceRateLimit(requests_per_second=100, retry_delay=1.0,
                                       max_retries=2),
        )
        queue = RequestQueue("setlistfm", config.rate_limit, classifier=classifier,
                             metrics=metrics, sleep=sleeper)
        async with httpx.AsyncClient(transport=httpx.MockTransport(unavailable)) as client:
            connector = SetlistFmConnector(config, client, queue, sleep=sleeper)
            pipeline = _pipeline(storage, connector, classifier, sleeper, metrics)
            result = await pipeline.run_discovery("setlistfm")

        assert not result.success
        assert result.scraped_count == 0
        assert len(result.errors) == 1
        assert result.errors[0].startswith("fetch failed: [setlistfm] page 1 failed")
        assert len(requests) == 3
        assert sleeper.delays == [1.0, 2.0]

        summary = metrics.get_scraper_metrics()
        assert (summary.jobs_processed, summary.jobs_failed) == (1, 1)
        assert (summary.api_requests_made, summary.api_requests_failed) == (3, 3)


# ======================================================================
# Metrics and retention
# ======================================================================


class TestMetricsAndRetention:
    @pytest.mark.asyncio
    async def test_job_outcome_is_recorded(self, storage: SQLiteStorageProvider, clock) -> None:
        metrics = MetricsService(clock=clock)
        await _pipeline(storage, _FakeConnector(_tour()), metrics=metrics).run_discovery(
            "setlistfm"
        )

        summary = metrics.get_scraper_metrics()
        assert (summary.jobs_processed, summary.jobs_succeeded, summary.jobs_failed) == (1, 1, 0)
        assert (summary.concerts_scraped, summary.concerts_stored) == (3, 3)
        assert (summary.artists_created, summary.venues_created) == (2, 2)
        by_type = metrics.get_aggregates("jobs_total", labels={"job_type": "discover"})
        assert by_type.sum == 1

    @pytest.mark.asyncio
    async def test_job_end_sweeps_old_errors_and_data_points(
        self, storage: SQLiteStorageProvider, clock
    ) -> None:
        now = {"t": datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)}
        metrics = MetricsService(clock=clock)
        classifier = ErrorClassifier(clock=lambda: now["t"], metrics=metrics)
        classifier.classify(ProviderHTTPError(503, provider_name="setlistfm"),
                            ErrorContext(source="setlistfm"))
        metrics.record_rate_limit_hit("setlistfm")

        now["t"] += timedelta(hours=25)
        clock.advance(25 * 3600)
        await _pipeline(storage, _FakeConnector(_tour()), classifier,
                        metrics=metrics).run_discovery("setlistfm")

        assert classifier.get_recent_errors() == []
        assert metrics.get_aggregates("rate_limit_hits").count == 0
        assert metrics.get_aggregates("errors_total").count == 0
        assert metrics.get_scraper_metrics().jobs_processed == 1
