"""Configuration module -- exports Settings and load_config."""

from gigz_ingest.config.loader import load_config
from gigz_ingest.config.settings import Settings

__all__ = ["Settings", "load_config"]
