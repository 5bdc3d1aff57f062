"""Object graph for the ingestion worker.

Loads configuration from ``.env`` and ``config/config.yaml`` and wires every
provider and service together by constructor injection.  Nothing here is a
module-level singleton: callers (the CLI, a scheduler, tests) build a graph,
use it, and close it with :func:`close_pipeline`.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import httpx
import structlog

from gigz_ingest.config.loader import load_config
from gigz_ingest.config.settings import Settings
from gigz_ingest.interfaces.rate_limit_store import IRateLimitStore
from gigz_ingest.interfaces.source_connector import ISourceConnector
from gigz_ingest.models.batch import BatchConfig
from gigz_ingest.models.source import DEFAULT_SOURCE_LIMITS, SourceConfig, SourceRateLimit
from gigz_ingest.pipeline.ingestion_pipeline import IngestionPipeline
from gigz_ingest.providers.source.setlistfm_connector import (
    SETLISTFM_BASE_URL,
    SetlistFmConnector,
)
from gigz_ingest.providers.storage.sqlite_storage import SQLiteStorageProvider
from gigz_ingest.providers.store.memory_store import MemoryRateLimitStore
from gigz_ingest.providers.store.redis_store import RedisRateLimitStore
from gigz_ingest.services.batch_processor import BatchProcessor
from gigz_ingest.services.entity_resolver import EntityResolver
from gigz_ingest.services.error_classifier import ErrorClassifier
from gigz_ingest.services.metrics import MetricsService
from gigz_ingest.services.rate_limiter import DistributedRateLimiter
from gigz_ingest.services.request_queue import RequestQueue

logger = structlog.get_logger(logger_name=__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_HTTP_TIMEOUT = 30.0
_DEFAULT_BACKFILL_BATCH_SIZE = 100
_DEFAULT_RETENTION_SECONDS = 24 * 3600
_DEFAULT_MAX_DATA_POINTS = 10_000
_DEFAULT_METRICS_NAMESPACE = "gigz_ingest"


def _source_config(name: str, config: dict[str, Any], base_url: str) -> SourceConfig:
    """Merge the YAML block for *name* over its default quota."""
    raw = config.get("sources", {}).get(name, {}) or {}
    defaults = DEFAULT_SOURCE_LIMITS.get(name, SourceRateLimit())
    limits = SourceRateLimit.model_validate(
        {
            **defaults.model_dump(),
            **{k: v for k, v in raw.items() if k in SourceRateLimit.model_fields},
        }
    )
    return SourceConfig(
        name=name,
        base_url=raw.get("base_url") or base_url,
        api_key=raw.get("api_key", ""),
        user_agent=raw.get("user_agent") or SourceConfig.model_fields["user_agent"].default,
        page_delay=raw.get("page_delay", SourceConfig.model_fields["page_delay"].default),
        rate_limit=limits,
    )


def _build_store(s: Settings) -> IRateLimitStore:
    if s.redis_url:
        logger.info("rate_limit_store_selected", backend="redis")
        return RedisRateLimitStore.from_url(s.redis_url)
    logger.info("rate_limit_store_selected", backend="memory")
    return MemoryRateLimitStore()


def build_pipeline(
    custom_settings: Settings | None = None,
    config_path: str | Path | None = None,
) -> dict[str, Any]:
    """Construct and return all ingestion services with injected dependencies.

    Parameters
    ----------
    custom_settings:
        Application settings.  A fresh ``Settings()`` is read from the
        environment when omitted.
    config_path:
        YAML config file.  Defaults to ``settings.config_path``.

    Returns
    -------
    dict
        Service instances keyed by role name; ``"pipeline"`` is the
        :class:`IngestionPipeline`.
    """
    s = custom_settings or Settings()
    config = load_config(config_path, settings=s)
    key_prefix = config["rate_limit"]["key_prefix"]

    metrics_config = config.get("metrics", {})
    metrics = MetricsService(
        max_data_points=metrics_config.get("max_data_points", _DEFAULT_MAX_DATA_POINTS),
        namespace=metrics_config.get("namespace", _DEFAULT_METRICS_NAMESPACE),
    )

    store = _build_store(s)
    rate_limiter = DistributedRateLimiter(store)
    classifier = ErrorClassifier(max_errors=config["errors"]["max_errors"], metrics=metrics)

    storage = SQLiteStorageProvider(db_path=config["storage"]["db_path"])
    batch_processor = BatchProcessor(
        storage=storage,
        config=BatchConfig.model_validate(config["batch"]),
        classifier=classifier,
        metrics=metrics,
    )
    resolver = EntityResolver(storage=storage, classifier=classifier)

    http_client = httpx.AsyncClient(timeout=_HTTP_TIMEOUT, follow_redirects=True)

    connectors: dict[str, ISourceConnector] = {}
    setlistfm = _source_config("setlistfm", config, SETLISTFM_BASE_URL)
    if setlistfm.api_key:
        queue = RequestQueue(
            source=setlistfm.name,
            limits=setlistfm.rate_limit,
            classifier=classifier,
            rate_limiter=rate_limiter,
            key_prefix=key_prefix,
            metrics=metrics,
        )
        connectors[setlistfm.name] = SetlistFmConnector(setlistfm, http_client, queue)
    else:
        logger.warning("source_not_configured", source="setlistfm",
                       hint="set SETLISTFM_API_KEY")

    pipeline = IngestionPipeline(
        connectors=connectors,
        resolver=resolver,
        batch_processor=batch_processor,
        classifier=classifier,
        backfill_batch_size=config.get("backfill", {}).get(
            "batch_size", _DEFAULT_BACKFILL_BATCH_SIZE
        ),
        metrics=metrics,
        retention_seconds=config["errors"].get(
            "retention_seconds", _DEFAULT_RETENTION_SECONDS
        ),
    )

    logger.info("pipeline_built", sources=pipeline.sources, db_path=config["storage"]["db_path"])
    return {
        "settings": s,
        "config": config,
        "store": store,
        "rate_limiter": rate_limiter,
        "classifier": classifier,
        "metrics": metrics,
        "storage": storage,
        "batch_processor": batch_processor,
        "resolver": resolver,
        "http_client": http_client,
        "connectors": connectors,
        "pipeline": pipeline,
    }


async def close_pipeline(components: dict[str, Any]) -> None:
    """Drain connectors, then release the HTTP client and the shared store."""
    await components["pipeline"].shutdown()
    await components["http_client"].aclose()
    await components["store"].close()
