"""Concert source connectors."""

from gigz_ingest.providers.source.base_connector import BaseHTTPConnector
from gigz_ingest.providers.source.setlistfm_connector import (
    SETLISTFM_BASE_URL,
    SetlistFmConnector,
)

__all__ = ["SETLISTFM_BASE_URL", "BaseHTTPConnector", "SetlistFmConnector"]
