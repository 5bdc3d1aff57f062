"""YAML configuration loader with environment variable overrides.

# ─── CONFIGURATION HIERARCHY ──────────────────────────────────────────
#
# Configuration is loaded in layers (later layers override earlier):
#
#   1. config/config.yaml  -- per-source quotas and batch defaults
#   2. .env file           -- local developer overrides (not committed)
#   3. Environment vars    -- set by the deployment
#
# load_config() reads the YAML file first, then deep-merges the values
# from Settings on top, so a deployment can raise ``BATCH_SIZE`` without
# editing the YAML.
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from gigz_ingest.config.settings import Settings
from gigz_ingest.utils.errors import ConfigurationError


def load_config(
    path: str | Path | None = None,
    settings: Settings | None = None,
) -> dict[str, Any]:
    """Load YAML config and merge with environment-based Settings.

    Args:
        path: YAML file to read.  Defaults to ``settings.config_path``.
            A missing file yields an empty base layer.
        settings: Settings to overlay.  A fresh ``Settings()`` is built
            when omitted.

    Returns:
        Fully resolved configuration dictionary.

    Raises:
        ConfigurationError: If the YAML is malformed or not a mapping.
    """
    settings = settings or Settings()
    config_path = Path(path or settings.config_path)

    if config_path.exists():
        with open(config_path, encoding="utf-8") as f:
            try:
                yaml_config = yaml.safe_load(f) or {}
            except yaml.YAMLError as exc:
                raise ConfigurationError(
                    f"Invalid YAML in {config_path}: {exc}"
                ) from exc
        if not isinstance(yaml_config, dict):
            raise ConfigurationError(
                f"Top level of {config_path} must be a mapping"
            )
    else:
        yaml_config = {}

    env_overrides: dict[str, Any] = {
        "app": {"env": settings.app_env},
        "logging": {"level": settings.log_level},
        "storage": {"db_path": settings.storage_db_path},
        "rate_limit": {
            "redis_url": settings.redis_url,
            "key_prefix": settings.rate_limit_key_prefix,
        },
        "batch": {
            "batch_size": settings.batch_size,
            "max_retries": settings.batch_max_retries,
            "retry_delay": settings.batch_retry_delay,
            "parallel_batches": settings.parallel_batches,
            "timeout": settings.batch_timeout,
        },
        "errors": {
            "max_errors": settings.max_tracked_errors,
            "retention_seconds": settings.error_retention_seconds,
        },
        "sources": {
            "setlistfm": {
                "api_key": settings.setlistfm_api_key,
                "base_url": settings.setlistfm_base_url,
                "user_agent": settings.scraper_user_agent,
            },
        },
    }

    _deep_merge(yaml_config, env_overrides)
    return yaml_config


def _deep_merge(base: dict, overrides: dict) -> None:
    """Recursively merge overrides into base dict, mutating base in place."""
    for key, value in overrides.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
