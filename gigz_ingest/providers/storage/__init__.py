"""Catalog storage backends."""

from gigz_ingest.providers.storage.sqlite_storage import SQLiteStorageProvider

__all__ = ["SQLiteStorageProvider"]
