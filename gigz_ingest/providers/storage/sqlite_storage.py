"""SQLite-backed catalog storage.

Persists artists, aliases, venues, concerts and provenance rows to a local
SQLite database (``data/gigz.db`` by default) using ``aiosqlite`` for async
I/O.  Each call opens its own connection, so concurrent chunk writers do not
share a cursor; WAL journaling plus a busy timeout lets them queue on the
write lock instead of failing.

Uniqueness constraints back the catalog's identity rules:

- artists: ``musicbrainz_id`` and ``spotify_id`` (when present)
- artist_aliases: (``artist_id``, ``alias_normalized``)
- venues: (``name_normalized``, ``city``, ``country``)
- concerts: (``artist_id``, ``venue_id``, ``date``)

A violation surfaces as :class:`StorageConflictError`, which the entity
resolver treats as "already created by a concurrent job".
"""

from __future__ import annotations

import json
import re
from datetime import date, datetime
from pathlib import Path
from typing import Any

import aiosqlite
import structlog

from gigz_ingest.interfaces.storage_provider import IStorageProvider
from gigz_ingest.models.catalog import TableKind
from gigz_ingest.utils.errors import StorageConflictError, StorageError

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_DB_PATH = Path("data/gigz.db")
_BUSY_TIMEOUT_S = 30.0
_COLUMN_NAME = re.compile(r"^[a-z_][a-z0-9_]*$")

_CREATE_TABLES_SQL = [
    """\
CREATE TABLE IF NOT EXISTS artists (
    id              TEXT    PRIMARY KEY,
    name            TEXT    NOT NULL,
    name_normalized TEXT    NOT NULL,
    musicbrainz_id  TEXT,
    spotify_id      TEXT,
    image_url       TEXT,
    concert_count   INTEGER NOT NULL DEFAULT 0,
    verified        INTEGER NOT NULL DEFAULT 0,
    source          TEXT    NOT NULL,
    created_at      TEXT    NOT NULL,
    updated_at      TEXT    NOT NULL
);
""",
    """\
CREATE TABLE IF NOT EXISTS artist_aliases (
    id               TEXT PRIMARY KEY,
    artist_id        TEXT NOT NULL,
    alias            TEXT NOT NULL,
    alias_normalized TEXT NOT NULL,
    alias_type       TEXT NOT NULL DEFAULT 'alternate',
    created_at       TEXT NOT NULL,
    UNIQUE(artist_id, alias_normalized)
);
""",
    """\
CREATE TABLE IF NOT EXISTS venues (
    id              TEXT    PRIMARY KEY,
    name            TEXT    NOT NULL,
    name_normalized TEXT    NOT NULL,
    city            TEXT    NOT NULL,
    state_province  TEXT,
    country         TEXT    NOT NULL,
    address         TEXT,
    postal_code     TEXT,
    latitude        REAL,
    longitude       REAL,
    capacity        INTEGER,
    setlistfm_id    TEXT,
    concert_count   INTEGER NOT NULL DEFAULT 0,
    verified        INTEGER NOT NULL DEFAULT 0,
    source          TEXT    NOT NULL,
    created_at      TEXT    NOT NULL,
    updated_at      TEXT    NOT NULL,
    UNIQUE(name_normalized, city, country)
);
""",
    """\
CREATE TABLE IF NOT EXISTS concerts (
    id                 TEXT    PRIMARY KEY,
    artist_id          TEXT    NOT NULL,
    venue_id           TEXT    NOT NULL,
    date               TEXT    NOT NULL,
    tour_name          TEXT,
    event_name         TEXT,
    setlist            TEXT,
    setlistfm_id       TEXT,
    supporting_artists TEXT    NOT NULL DEFAULT '[]',
    attendance_count   INTEGER,
    verified           INTEGER NOT NULL DEFAULT 0,
    source             TEXT    NOT NULL,
    source_url         TEXT,
    created_at         TEXT    NOT NULL,
    updated_at         TEXT    NOT NULL,
    UNIQUE(artist_id, venue_id, date)
);
""",
    """\
CREATE TABLE IF NOT EXISTS concert_sources (
    id          TEXT PRIMARY KEY,
    concert_id  TEXT NOT NULL,
    source_type TEXT NOT NULL,
    source_url  TEXT,
    raw_data    TEXT NOT NULL DEFAULT '{}',
    scraped_at  TEXT NOT NULL
);
""",
]

_CREATE_INDICES_SQL = [
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_artists_mbid ON artists(musicbrainz_id) "
    "WHERE musicbrainz_id IS NOT NULL;",
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_artists_spotify ON artists(spotify_id) "
    "WHERE spotify_id IS NOT NULL;",
    "CREATE INDEX IF NOT EXISTS idx_artists_name ON artists(name_normalized);",
    "CREATE INDEX IF NOT EXISTS idx_aliases_normalized ON artist_aliases(alias_normalized);",
    "CREATE INDEX IF NOT EXISTS idx_venues_city ON venues(city);",
    "CREATE INDEX IF NOT EXISTS idx_concerts_artist ON concerts(artist_id);",
    "CREATE INDEX IF NOT EXISTS idx_concerts_venue ON concerts(venue_id);",
    "CREATE INDEX IF NOT EXISTS idx_sources_concert ON concert_sources(concert_id);",
]

_KNOWN_TABLES = frozenset(kind.value for kind in TableKind)


def _to_sql_value(value: Any) -> Any:
    """Convert a Python value to something sqlite3 can bind."""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (list, dict)):
        return json.dumps(value)
    return value


class SQLiteStorageProvider(IStorageProvider):
    """:class:`IStorageProvider` backed by a local SQLite file."""

    def __init__(self, db_path: str | Path = _DEFAULT_DB_PATH) -> None:
        self._db_path = Path(db_path)

    def get_provider_name(self) -> str:
        return "sqlite"

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _connect(self) -> aiosqlite.Connection:
        return aiosqlite.connect(str(self._db_path), timeout=_BUSY_TIMEOUT_S)

    @staticmethod
    def _check_table(table: str) -> None:
        if table not in _KNOWN_TABLES:
            raise StorageError(f"Unknown table '{table}'", provider_name="sqlite")

    # ------------------------------------------------------------------
    # IStorageProvider implementation
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Create catalog tables and indices if they don't exist."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            async with self._connect() as db:
                await db.execute("PRAGMA journal_mode=WAL;")
                for table_sql in _CREATE_TABLES_SQL:
                    await db.execute(table_sql)
                for idx_sql in _CREATE_INDICES_SQL:
                    await db.execute(idx_sql)
                await db.commit()
        except aiosqlite.Error as exc:
            raise StorageError(
                f"Database initialization failed: {exc}", provider_name="sqlite"
            ) from exc
        logger.info("catalog_db_initialized", path=str(self._db_path))

    async def insert(self, table: str, records: list[dict[str, Any]]) -> None:
        self._check_table(table)
        if not records:
            return

        columns: list[str] = []
        for record in records:
            for column in record:
                if column not in columns:
                    columns.append(column)
        bad = [c for c in columns if not _COLUMN_NAME.match(c)]
        if bad:
            raise StorageError(
                f"Invalid column names for insert into '{table}': {bad}",
                provider_name="sqlite",
            )

        sql = (
            f"INSERT INTO {table} ({', '.join(columns)}) "
            f"VALUES ({', '.join(':' + c for c in columns)})"
        )
        rows = [{c: _to_sql_value(r.get(c)) for c in columns} for r in records]

        try:
            async with self._connect() as db:
                await db.executemany(sql, rows)
                await db.commit()
        except aiosqlite.IntegrityError as exc:
            if "UNIQUE" in str(exc).upper():
                raise StorageConflictError(
                    f"Database insert into '{table}' conflicts with an existing row: {exc}",
                    provider_name="sqlite",
                ) from exc
            raise StorageError(
                f"Database insert into '{table}' failed: {exc}", provider_name="sqlite"
            ) from exc
        except aiosqlite.Error as exc:
            raise StorageError(
                f"Database insert into '{table}' failed: {exc}", provider_name="sqlite"
            ) from exc

        logger.debug("rows_inserted", table=table, count=len(rows))

    async def query(
        self, sql: str, params: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        bound = {k: _to_sql_value(v) for k, v in (params or {}).items()}
        try:
            async with self._connect() as db:
                db.row_factory = aiosqlite.Row
                cursor = await db.execute(sql, bound)
                rows = await cursor.fetchall()
        except aiosqlite.Error as exc:
            raise StorageError(
                f"Database query failed: {exc}", provider_name="sqlite"
            ) from exc
        return [dict(r) for r in rows]

    async def command(self, sql: str, params: dict[str, Any] | None = None) -> int:
        bound = {k: _to_sql_value(v) for k, v in (params or {}).items()}
        try:
            async with self._connect() as db:
                cursor = await db.execute(sql, bound)
                await db.commit()
                affected = cursor.rowcount
        except aiosqlite.Error as exc:
            raise StorageError(
                f"Database command failed: {exc}", provider_name="sqlite"
            ) from exc
        return affected
