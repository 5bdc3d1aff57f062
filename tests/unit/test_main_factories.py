"""Unit tests for the object graph built in gigz_ingest/main.py.

No network access: the HTTP client is never used and the Redis client is
only constructed, not connected.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from gigz_ingest.config.settings import Settings
from gigz_ingest.main import _source_config, build_pipeline, close_pipeline
from gigz_ingest.models.errors import ErrorContext
from gigz_ingest.pipeline.ingestion_pipeline import IngestionPipeline
from gigz_ingest.providers.source.setlistfm_connector import SetlistFmConnector
from gigz_ingest.providers.store.memory_store import MemoryRateLimitStore
from gigz_ingest.providers.store.redis_store import RedisRateLimitStore
from gigz_ingest.services.metrics import MetricsService
from gigz_ingest.utils.errors import ProviderHTTPError

PROJECT_CONFIG = Path(__file__).parent.parent.parent / "config" / "config.yaml"


# ======================================================================
# Shared helpers
# ======================================================================


def _settings(tmp_path: Path, **overrides) -> Settings:
    """Build Settings with safe defaults and optional overrides."""
    defaults = {
        "setlistfm_api_key": "",
        "redis_url": "",
        "storage_db_path": str(tmp_path / "gigz.db"),
        "app_env": "test",
    }
    defaults.update(overrides)
    return Settings(_env_file=None, **defaults)


# ======================================================================
# _source_config
# ======================================================================


class TestSourceConfig:
    def test_yaml_overrides_default_quota(self) -> None:
        config = {"sources": {"setlistfm": {"requests_per_second": 7, "api_key": "k",
                                            "page_delay": 0.0}}}
        source = _source_config("setlistfm", config, "https://example.test")

        assert source.rate_limit.requests_per_second == 7
        assert source.rate_limit.max_retries == 3
        assert source.api_key == "k"
        assert source.page_delay == 0.0
        assert source.base_url == "https://example.test"

    def test_unknown_source_gets_generic_defaults(self) -> None:
        source = _source_config("newsource", {}, "https://example.test")
        assert source.rate_limit.requests_per_second == 1
        assert source.api_key == ""


# ======================================================================
# build_pipeline
# ======================================================================


class TestBuildPipeline:
    @pytest.mark.asyncio
    async def test_wires_setlistfm_when_key_present(self, tmp_path: Path) -> None:
        components = build_pipeline(
            _settings(tmp_path, setlistfm_api_key="abc123"), config_path=PROJECT_CONFIG
        )
        try:
            assert isinstance(components["pipeline"], IngestionPipeline)
            assert isinstance(components["store"], MemoryRateLimitStore)
            connector = components["connectors"]["setlistfm"]
            assert isinstance(connector, SetlistFmConnector)
            assert components["pipeline"].sources == ["setlistfm"]
            assert connector.get_stats().queue.accepting
            assert components["config"]["storage"]["db_path"] == str(tmp_path / "gigz.db")
        finally:
            await close_pipeline(components)

        assert not components["connectors"]["setlistfm"].get_stats().queue.accepting
        assert components["http_client"].is_closed

    @pytest.mark.asyncio
    async def test_skips_setlistfm_without_key(self, tmp_path: Path) -> None:
        components = build_pipeline(_settings(tmp_path), config_path=PROJECT_CONFIG)
        try:
            assert components["connectors"] == {}
            assert components["pipeline"].sources == []
        finally:
            await close_pipeline(components)

    @pytest.mark.asyncio
    async def test_batch_settings_flow_into_processor(self, tmp_path: Path) -> None:
        components = build_pipeline(
            _settings(tmp_path, batch_size=250, parallel_batches=5), config_path=PROJECT_CONFIG
        )
        try:
            config = components["batch_processor"].config
            assert config.batch_size == 250
            assert config.parallel_batches == 5
        finally:
            await close_pipeline(components)

    def test_redis_url_selects_redis_store(self, tmp_path: Path) -> None:
        components = build_pipeline(
            _settings(tmp_path, redis_url="redis://localhost:6379/0"),
            config_path=PROJECT_CONFIG,
        )
        assert isinstance(components["store"], RedisRateLimitStore)

    @pytest.mark.asyncio
    async def test_services_share_one_metrics_service(self, tmp_path: Path) -> None:
        components = build_pipeline(_settings(tmp_path), config_path=PROJECT_CONFIG)
        try:
            metrics = components["metrics"]
            assert isinstance(metrics, MetricsService)
            components["classifier"].classify(
                ProviderHTTPError(503, provider_name="setlistfm"),
                ErrorContext(source="setlistfm"),
            )
            assert metrics.get_scraper_metrics().errors_total == 1
            assert "gigz_ingest_errors_total" in metrics.export_prometheus()
        finally:
            await close_pipeline(components)
