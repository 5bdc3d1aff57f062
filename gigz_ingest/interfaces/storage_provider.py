"""Abstract base class for catalog storage.

The batch processor and entity resolver depend only on the three operations
below; they never see the storage engine's connection, dialect quirks, or
error types.  Statements use named ``:param`` placeholders.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class IStorageProvider(ABC):
    """Contract for the catalog store (artists, venues, concerts, ...)."""

    @abstractmethod
    async def initialize(self) -> None:
        """Create tables and indexes if they do not exist."""

    @abstractmethod
    async def insert(self, table: str, records: list[dict[str, Any]]) -> None:
        """Bulk-append *records* to *table* as one atomic unit.

        Parameters
        ----------
        table:
            A known catalog table name (see ``TableKind``).
        records:
            Rows as column -> value mappings.  Lists and dicts are stored
            as JSON text.

        Raises
        ------
        StorageConflictError
            If a row violates a uniqueness constraint.  No row of the
            batch is written.
        StorageError
            On any other storage failure.
        """

    @abstractmethod
    async def query(
        self, sql: str, params: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        """Run a read statement and return rows as dicts.

        Raises
        ------
        StorageError
            If the statement fails.
        """

    @abstractmethod
    async def command(self, sql: str, params: dict[str, Any] | None = None) -> int:
        """Run a DDL or bulk-update statement; return the affected row count.

        Raises
        ------
        StorageError
            If the statement fails.
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a short identifier for logs (e.g. ``"sqlite"``)."""
