"""Unit tests for the Pydantic models in gigz_ingest.models."""

from __future__ import annotations

import json
from datetime import date

import pytest
from pydantic import ValidationError

from gigz_ingest.models.batch import BatchConfig, FieldError, ValidationResult
from gigz_ingest.models.catalog import Artist, Concert, ConcertSource, Venue
from gigz_ingest.models.pipeline import (
    ResolutionBatch,
    ResolvedArtist,
    ResolvedConcert,
    ResolvedVenue,
)
from gigz_ingest.models.rate_limit import RateLimitConfig
from gigz_ingest.models.scraped import DateRange, DiscoveryParams
from gigz_ingest.models.source import SourceRateLimit
from tests.conftest import make_artist, make_concert, make_venue


# ======================================================================
# Scraped records and job parameters
# ======================================================================


class TestScrapedModels:
    def test_date_range_single_day(self) -> None:
        rng = DateRange(start=date(2024, 6, 1), end=date(2024, 6, 1))
        assert rng.start == rng.end

    def test_date_range_rejects_inverted_bounds(self) -> None:
        with pytest.raises(ValidationError, match="before start"):
            DateRange(start=date(2024, 6, 2), end=date(2024, 6, 1))

    def test_discovery_params_bounds(self) -> None:
        assert DiscoveryParams().limit == 50
        with pytest.raises(ValidationError):
            DiscoveryParams(limit=0)
        with pytest.raises(ValidationError):
            DiscoveryParams(offset=-1)

    def test_scraped_records_are_frozen(self) -> None:
        concert = make_concert()
        with pytest.raises(ValidationError):
            concert.source = "songkick"

    def test_venue_coordinates_are_bounded(self) -> None:
        with pytest.raises(ValidationError):
            make_venue(latitude=91.0)


# ======================================================================
# Catalog rows
# ======================================================================


class TestCatalogRows:
    def test_to_row_is_json_compatible(self) -> None:
        concert = Concert(
            artist_id="a", venue_id="v", date=date(2024, 6, 1), source="setlistfm",
            setlist=["Airbag", "Paranoid Android"],
        )
        row = concert.to_row()
        assert row["date"] == "2024-06-01"
        assert row["setlist"] == ["Airbag", "Paranoid Android"]
        json.dumps(row)

    def test_from_row_decodes_json_text_and_ignores_extras(self) -> None:
        row = {
            "id": "c1",
            "artist_id": "a",
            "venue_id": "v",
            "date": "2024-06-01",
            "setlist": '["Airbag"]',
            "supporting_artists": "",
            "verified": 1,
            "source": "setlistfm",
            "created_at": "2024-06-02T10:00:00+00:00",
            "updated_at": "2024-06-02T10:00:00+00:00",
            "rowid": 7,
        }
        concert = Concert.from_row(row)
        assert concert.setlist == ["Airbag"]
        assert concert.supporting_artists == []
        assert concert.verified is True
        assert concert.date == date(2024, 6, 1)

    def test_concert_source_raw_data(self) -> None:
        source = ConcertSource.from_row(
            {"concert_id": "c1", "source_type": "setlistfm", "raw_data": '{"id": "63d1"}'}
        )
        assert source.raw_data == {"id": "63d1"}

    def test_blank_names_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Artist(name="", name_normalized="", source="setlistfm")

    def test_ids_are_unique(self) -> None:
        first = Venue(name="A", name_normalized="a", city="X", country="Y", source="s")
        second = Venue(name="A", name_normalized="a", city="X", country="Y", source="s")
        assert first.id != second.id


# ======================================================================
# Resolution batches
# ======================================================================


class TestResolutionBatch:
    def _resolved(self, artist: Artist, venue: Venue, artist_new: bool,
                  venue_new: bool, concert_new: bool) -> ResolvedConcert:
        scraped = make_concert(artist=make_artist(artist.name), venue=make_venue(venue.name))
        concert = Concert(artist_id=artist.id, venue_id=venue.id, date=scraped.date,
                          source="setlistfm")
        return ResolvedConcert(
            scraped=scraped,
            concert=concert,
            artist=ResolvedArtist(artist=artist, is_new=artist_new),
            venue=ResolvedVenue(venue=venue, is_new=venue_new),
            is_new=concert_new,
        )

    def test_created_counts_deduplicate_by_id(self) -> None:
        artist = Artist(name="Radiohead", name_normalized="radiohead", source="setlistfm")
        venue = Venue(name="MSG", name_normalized="msg", city="New York",
                      country="United States", source="setlistfm")
        other = Venue(name="Forum", name_normalized="forum", city="London",
                      country="United Kingdom", source="setlistfm")
        batch = ResolutionBatch(resolved=[
            self._resolved(artist, venue, True, True, True),
            self._resolved(artist, other, True, True, True),
            self._resolved(artist, venue, False, False, False),
        ])

        assert batch.artists_created == 1
        assert batch.venues_created == 2
        assert batch.concerts_created == 2

    def test_empty_batch(self) -> None:
        batch = ResolutionBatch()
        assert (batch.artists_created, batch.venues_created, batch.concerts_created) == (0, 0, 0)


# ======================================================================
# Configuration models
# ======================================================================


class TestConfigModels:
    def test_batch_config_bounds(self) -> None:
        assert BatchConfig().batch_size == 1000
        with pytest.raises(ValidationError):
            BatchConfig(batch_size=0)
        with pytest.raises(ValidationError):
            BatchConfig(timeout=0)

    def test_rate_limit_config_bounds(self) -> None:
        assert RateLimitConfig().block_duration == 0
        with pytest.raises(ValidationError):
            RateLimitConfig(limit=0)
        with pytest.raises(ValidationError):
            RateLimitConfig(key_prefix="")

    def test_source_rate_limit_defaults(self) -> None:
        limits = SourceRateLimit()
        assert (limits.requests_per_second, limits.max_concurrency) == (1, 1)
        with pytest.raises(ValidationError):
            SourceRateLimit(requests_per_second=0)

    def test_validation_result_summary(self) -> None:
        result = ValidationResult.invalid([
            FieldError(field="name", message="must not be blank"),
            FieldError(field="city", message="required"),
        ])
        assert not result.is_valid
        assert result.summary() == "name: must not be blank; city: required"
        assert ValidationResult.valid({"name": "x"}).is_valid
