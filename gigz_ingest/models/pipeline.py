"""Pydantic v2 models for resolution outcomes and job results."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from gigz_ingest.models.catalog import Artist, ArtistAlias, Concert, Venue
from gigz_ingest.models.scraped import ScrapedConcert


class JobType(str, Enum):
    DISCOVERY = "discover"
    ARTIST = "artist"
    VENUE = "venue"
    BACKFILL = "backfill"


class ResolvedArtist(BaseModel):
    model_config = ConfigDict(frozen=True)

    artist: Artist
    is_new: bool
    new_aliases: list[ArtistAlias] = Field(default_factory=list)


class ResolvedVenue(BaseModel):
    model_config = ConfigDict(frozen=True)

    venue: Venue
    is_new: bool


class ResolvedConcert(BaseModel):
    """A scraped concert mapped onto catalog ids."""

    model_config = ConfigDict(frozen=True)

    scraped: ScrapedConcert
    concert: Concert
    artist: ResolvedArtist
    venue: ResolvedVenue
    is_new: bool


class ResolutionFailure(BaseModel):
    model_config = ConfigDict(frozen=True)

    scraped: ScrapedConcert
    error: str
    error_id: str | None = Field(
        default=None, description="ProcessedError id, when classified."
    )


class ResolutionBatch(BaseModel):
    """Outcome of resolving one page of scraped concerts, in page order."""

    model_config = ConfigDict(frozen=True)

    resolved: list[ResolvedConcert] = Field(default_factory=list)
    failures: list[ResolutionFailure] = Field(default_factory=list)

    @property
    def artists_created(self) -> int:
        return len({r.artist.artist.id for r in self.resolved if r.artist.is_new})

    @property
    def venues_created(self) -> int:
        return len({r.venue.venue.id for r in self.resolved if r.venue.is_new})

    @property
    def concerts_created(self) -> int:
        return len({r.concert.id for r in self.resolved if r.is_new})


class JobResult(BaseModel):
    """Aggregate result returned to the scheduler for one job.

    ``processed_count`` counts scraped concerts that were resolved and had
    their provenance row written; ``error_count`` counts scraped concerts
    that were invalid, failed resolution or failed the write;
    ``skipped_count`` counts those a shutdown left untouched.  The three
    always add up to ``scraped_count``.
    """

    model_config = ConfigDict(frozen=True)

    job_id: str
    job_type: JobType
    source: str
    success: bool
    processed_count: int
    error_count: int
    skipped_count: int = 0
    scraped_count: int = 0
    artists_created: int = 0
    venues_created: int = 0
    concerts_created: int = 0
    interrupted: bool = Field(
        default=False, description="True when shutdown stopped the job early."
    )
    errors: list[str] = Field(default_factory=list)
    duration: float = 0.0
