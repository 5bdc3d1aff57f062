"""Application settings loaded from environment variables via pydantic-settings.

# ─── HOW SETTINGS WORK ────────────────────────────────────────────────
#
# Values are read from two sources, highest priority first:
#
#   1. Environment variables, e.g. SETLISTFM_API_KEY=abc123
#   2. A ``.env`` file in the working directory (local development)
#
# Field ``setlistfm_api_key`` maps to env var ``SETLISTFM_API_KEY``.
# Defaults apply when neither source sets a value.
#
# Per-source request quotas live in ``config/config.yaml`` instead, because
# they are structured (one block per provider) and rarely differ between
# environments.  See ``gigz_ingest.config.loader``.
# ──────────────────────────────────────────────────────────────────────
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Ingestion worker settings.

    Environment variables override defaults. Loaded from .env file when present.
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # === Source providers ===
    # Empty string = "not configured"; build_pipeline() skips the connector.
    setlistfm_api_key: str = ""
    setlistfm_base_url: str = "https://api.setlist.fm/rest/1.0"
    scraper_user_agent: str = "Gigz Concert Scraper/1.0"

    # === Shared rate-limit store ===
    # Empty = in-process memory store (single worker only).
    redis_url: str = ""
    rate_limit_key_prefix: str = "rate_limit"

    # === Catalog storage ===
    storage_db_path: str = "data/gigz.db"

    # === Batch writes ===
    batch_size: int = 1000
    batch_max_retries: int = 3
    batch_retry_delay: float = 1.0  # seconds, doubled per attempt
    parallel_batches: int = 3
    batch_timeout: float = 30.0  # seconds per chunk-write attempt

    # === Error tracking ===
    max_tracked_errors: int = 1000
    # Classified errors and metric data points older than this are dropped
    # when a job finishes.
    error_retention_seconds: float = 86400.0

    # === App ===
    app_env: str = "development"
    log_level: str = "INFO"
    config_path: str = "config/config.yaml"
