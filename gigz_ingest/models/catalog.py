"""Pydantic v2 models for the canonical concert catalog.

These are the deduplicated records every scraped variant resolves to.
Each model converts to and from a flat storage row:

- :meth:`to_row` dumps JSON-compatible values (ISO dates, lists), which
  the storage provider serializes per column.
- :meth:`from_row` accepts what the storage provider returns, including
  list/dict columns still encoded as JSON text and 0/1 booleans.
"""

from __future__ import annotations

import datetime as dt
import json
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _new_id() -> str:
    return str(uuid4())


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def _decode_json_text(value: Any) -> Any:
    if isinstance(value, str):
        return json.loads(value) if value else None
    return value


class TableKind(str, Enum):
    """Catalog tables the batch processor and storage provider know about."""

    ARTISTS = "artists"
    ARTIST_ALIASES = "artist_aliases"
    VENUES = "venues"
    CONCERTS = "concerts"
    CONCERT_SOURCES = "concert_sources"


class AliasType(str, Enum):
    ALTERNATE = "alternate"
    FORMER_NAME = "former_name"
    MISSPELLING = "misspelling"
    ABBREVIATION = "abbreviation"


class _CatalogRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    def to_row(self) -> dict[str, Any]:
        """Return a storage row for this record."""
        return self.model_dump(mode="json")

    @classmethod
    def from_row(cls, row: dict[str, Any]):
        """Build a record from a storage row, ignoring unknown columns."""
        known = {k: v for k, v in row.items() if k in cls.model_fields}
        return cls.model_validate(known)


class Artist(_CatalogRecord):
    """A canonical artist.  Referenced by id once created."""

    id: str = Field(default_factory=_new_id)
    name: str = Field(min_length=1)
    name_normalized: str = Field(
        min_length=1, description="normalize_name(name); the matching key."
    )
    musicbrainz_id: str | None = None
    spotify_id: str | None = None
    image_url: str | None = None
    concert_count: int = 0
    verified: bool = False
    source: str = Field(description="Provider that first created this artist.")
    created_at: dt.datetime = Field(default_factory=_utcnow)
    updated_at: dt.datetime = Field(default_factory=_utcnow)


class ArtistAlias(_CatalogRecord):
    """Alternate name for an artist.  Append-only."""

    id: str = Field(default_factory=_new_id)
    artist_id: str
    alias: str = Field(min_length=1)
    alias_normalized: str = Field(min_length=1)
    alias_type: AliasType = AliasType.ALTERNATE
    created_at: dt.datetime = Field(default_factory=_utcnow)


class Venue(_CatalogRecord):
    """A canonical venue, unique by (name_normalized, city, country)."""

    id: str = Field(default_factory=_new_id)
    name: str = Field(min_length=1)
    name_normalized: str = Field(min_length=1)
    city: str = Field(min_length=1)
    state_province: str | None = None
    country: str = Field(min_length=1)
    address: str | None = None
    postal_code: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    capacity: int | None = None
    setlistfm_id: str | None = None
    concert_count: int = 0
    verified: bool = False
    source: str
    created_at: dt.datetime = Field(default_factory=_utcnow)
    updated_at: dt.datetime = Field(default_factory=_utcnow)


class Concert(_CatalogRecord):
    """A canonical concert, unique by (artist_id, venue_id, date)."""

    id: str = Field(default_factory=_new_id)
    artist_id: str
    venue_id: str
    date: dt.date
    tour_name: str | None = None
    event_name: str | None = None
    setlist: list[str] | None = None
    setlistfm_id: str | None = None
    supporting_artists: list[str] = Field(default_factory=list)
    attendance_count: int | None = None
    verified: bool = False
    source: str
    source_url: str | None = None
    created_at: dt.datetime = Field(default_factory=_utcnow)
    updated_at: dt.datetime = Field(default_factory=_utcnow)

    @field_validator("setlist", mode="before")
    @classmethod
    def _decode_setlist(cls, value: Any) -> Any:
        return _decode_json_text(value)

    @field_validator("supporting_artists", mode="before")
    @classmethod
    def _decode_supporting(cls, value: Any) -> Any:
        decoded = _decode_json_text(value)
        return [] if decoded is None else decoded


class ConcertSource(_CatalogRecord):
    """Provenance row: which provider reported a concert, and when."""

    id: str = Field(default_factory=_new_id)
    concert_id: str
    source_type: str
    source_url: str | None = None
    raw_data: dict[str, Any] = Field(default_factory=dict)
    scraped_at: dt.datetime = Field(default_factory=_utcnow)

    @field_validator("raw_data", mode="before")
    @classmethod
    def _decode_raw(cls, value: Any) -> Any:
        decoded = _decode_json_text(value)
        return {} if decoded is None else decoded
