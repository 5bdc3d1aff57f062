"""Pydantic v2 models for provider-tagged records prior to reconciliation.

A connector turns each provider payload into a :class:`ScrapedConcert`
(which nests a :class:`ScrapedArtist` and a :class:`ScrapedVenue`).  These
records are never persisted; the entity resolver consumes them and produces
canonical catalog rows.  All models are frozen.
"""

from __future__ import annotations

import datetime as dt
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ScrapedArtist(BaseModel):
    """An artist as reported by one provider."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1, description="Artist name as listed.")
    source: str = Field(description="Provider that produced this record.")
    musicbrainz_id: str | None = Field(
        default=None, description="MusicBrainz artist MBID, if known."
    )
    spotify_id: str | None = Field(default=None, description="Spotify artist id.")
    image_url: str | None = None
    genres: list[str] = Field(default_factory=list)
    aliases: list[str] = Field(
        default_factory=list,
        description="Alternate names seen on the provider (sort names, etc.).",
    )


class ScrapedVenue(BaseModel):
    """A venue as reported by one provider."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1, description="Venue name as listed.")
    city: str = Field(min_length=1)
    country: str = Field(min_length=1, description="Country name or ISO code.")
    source: str
    state_province: str | None = None
    address: str | None = None
    postal_code: str | None = None
    latitude: float | None = Field(default=None, ge=-90, le=90)
    longitude: float | None = Field(default=None, ge=-180, le=180)
    capacity: int | None = Field(default=None, ge=0)
    external_id: str | None = Field(
        default=None, description="Provider's own venue id (e.g. setlist.fm id)."
    )


class ScrapedConcert(BaseModel):
    """A single performance scraped from a provider."""

    model_config = ConfigDict(frozen=True)

    artist: ScrapedArtist
    venue: ScrapedVenue
    date: dt.date = Field(description="Calendar date of the show, no time zone.")
    source: str
    external_id: str | None = Field(
        default=None, description="Provider's id for this performance."
    )
    source_url: str | None = None
    tour_name: str | None = None
    event_name: str | None = None
    setlist: list[str] | None = Field(
        default=None, description="Song titles in performance order."
    )
    supporting_artists: list[str] = Field(default_factory=list)
    attendance_count: int | None = Field(default=None, ge=0)
    raw_payload: dict[str, Any] = Field(
        default_factory=dict,
        description="Provider payload snapshot, kept for provenance rows.",
    )


class DateRange(BaseModel):
    """Inclusive calendar-date range."""

    model_config = ConfigDict(frozen=True)

    start: dt.date
    end: dt.date

    @model_validator(mode="after")
    def _check_order(self) -> DateRange:
        if self.end < self.start:
            msg = f"date range end {self.end} is before start {self.start}"
            raise ValueError(msg)
        return self


class DiscoveryParams(BaseModel):
    """Filters for an open-ended discovery scrape."""

    model_config = ConfigDict(frozen=True)

    location: str | None = Field(default=None, description="City name filter.")
    genre: str | None = None
    date_range: DateRange | None = None
    limit: int = Field(default=50, ge=1)
    offset: int = Field(default=0, ge=0)


class ScrapeParams(BaseModel):
    """Options for artist/venue scrapes."""

    model_config = ConfigDict(frozen=True)

    date_range: DateRange | None = None
    limit: int = Field(default=100, ge=1)
