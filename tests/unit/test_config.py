"""Unit tests for Settings and the YAML config loader."""

from __future__ import annotations

from pathlib import Path

import pytest

from gigz_ingest.config.loader import load_config
from gigz_ingest.config.settings import Settings
from gigz_ingest.utils.errors import ConfigurationError

PROJECT_CONFIG = Path(__file__).parent.parent.parent / "config" / "config.yaml"


def _settings(**overrides) -> Settings:
    """Build Settings without reading a developer's .env file."""
    return Settings(_env_file=None, **overrides)


# ======================================================================
# Settings
# ======================================================================


class TestSettings:
    def test_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        for var in ("SETLISTFM_API_KEY", "REDIS_URL", "BATCH_SIZE", "LOG_LEVEL"):
            monkeypatch.delenv(var, raising=False)
        s = _settings()
        assert s.setlistfm_api_key == ""
        assert s.redis_url == ""
        assert s.batch_size == 1000
        assert s.parallel_batches == 3
        assert s.log_level == "INFO"

    def test_environment_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SETLISTFM_API_KEY", "abc123")
        monkeypatch.setenv("BATCH_SIZE", "250")
        s = _settings()
        assert s.setlistfm_api_key == "abc123"
        assert s.batch_size == 250


# ======================================================================
# load_config
# ======================================================================


class TestLoadConfig:
    def test_project_yaml_loads(self) -> None:
        config = load_config(PROJECT_CONFIG, settings=_settings())
        assert config["sources"]["setlistfm"]["requests_per_second"] == 2
        assert config["sources"]["musicbrainz"]["max_retries"] == 5
        assert config["backfill"]["batch_size"] == 100

    def test_settings_are_merged_over_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text(
            "batch:\n  batch_size: 10\n  extra: kept\n"
            "sources:\n  setlistfm:\n    requests_per_second: 5\n",
            encoding="utf-8",
        )
        config = load_config(path, settings=_settings(batch_size=500, setlistfm_api_key="k"))

        assert config["batch"]["batch_size"] == 500
        assert config["batch"]["extra"] == "kept"
        assert config["sources"]["setlistfm"]["requests_per_second"] == 5
        assert config["sources"]["setlistfm"]["api_key"] == "k"

    def test_missing_file_uses_settings_only(self, tmp_path: Path) -> None:
        config = load_config(tmp_path / "absent.yaml", settings=_settings(storage_db_path="x.db"))
        assert config["storage"]["db_path"] == "x.db"
        assert "backfill" not in config

    def test_malformed_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.yaml"
        path.write_text("batch: [unclosed\n", encoding="utf-8")
        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            load_config(path, settings=_settings())

    def test_top_level_must_be_mapping(self, tmp_path: Path) -> None:
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(ConfigurationError, match="must be a mapping"):
            load_config(path, settings=_settings())
