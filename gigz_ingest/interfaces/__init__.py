"""Abstract interfaces for swappable backends.

- ``IRateLimitStore`` -- shared counters / sorted sets / token buckets.
- ``IStorageProvider`` -- catalog insert / query / command.
- ``ISourceConnector`` -- one concert data provider.
"""

from gigz_ingest.interfaces.rate_limit_store import IRateLimitStore
from gigz_ingest.interfaces.source_connector import ISourceConnector
from gigz_ingest.interfaces.storage_provider import IStorageProvider

__all__ = ["IRateLimitStore", "ISourceConnector", "IStorageProvider"]
