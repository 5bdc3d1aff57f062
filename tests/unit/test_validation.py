"""Unit tests for record validation (catalog rows and scraped concerts)."""

from __future__ import annotations

from datetime import date

import pytest

from gigz_ingest.models.catalog import TableKind
from gigz_ingest.services.validation import validate_record, validate_scraped_concert
from tests.conftest import make_artist, make_concert, make_venue


# ======================================================================
# validate_record
# ======================================================================


class TestValidateRecord:
    def test_valid_artist_fills_defaults(self) -> None:
        result = validate_record(
            TableKind.ARTISTS,
            {"name": "Radiohead", "name_normalized": "radiohead", "source": "setlistfm"},
        )
        assert result.is_valid
        assert result.record["verified"] is False
        assert result.record["concert_count"] == 0
        assert result.record["id"]

    def test_accepts_table_name_string(self) -> None:
        result = validate_record("artist_aliases", {
            "artist_id": "a1", "alias": "Beatles, The", "alias_normalized": "beatles",
        })
        assert result.is_valid
        assert result.record["alias_type"] == "alternate"

    def test_missing_required_fields(self) -> None:
        result = validate_record(TableKind.VENUES, {"name": "MSG", "source": "setlistfm"})
        assert not result.is_valid
        fields = {e.field for e in result.errors}
        assert {"name_normalized", "city", "country"} <= fields

    def test_blank_name_rejected(self) -> None:
        result = validate_record(
            TableKind.ARTISTS, {"name": "", "name_normalized": "x", "source": "setlistfm"}
        )
        assert [e.field for e in result.errors] == ["name"]

    def test_unknown_columns_are_dropped(self) -> None:
        result = validate_record(TableKind.CONCERT_SOURCES, {
            "concert_id": "c1", "source_type": "setlistfm", "surprise": 1,
        })
        assert result.is_valid
        assert "surprise" not in result.record

    def test_concert_date_is_iso(self) -> None:
        result = validate_record(TableKind.CONCERTS, {
            "artist_id": "a1", "venue_id": "v1", "date": date(2024, 6, 1),
            "source": "setlistfm", "setlist": ["Airbag"],
        })
        assert result.record["date"] == "2024-06-01"
        assert result.record["setlist"] == ["Airbag"]

    def test_bad_date_reports_field(self) -> None:
        result = validate_record(TableKind.CONCERTS, {
            "artist_id": "a1", "venue_id": "v1", "date": "not-a-date", "source": "setlistfm",
        })
        assert [e.field for e in result.errors] == ["date"]
        assert "date:" in result.summary()

    def test_non_mapping_row(self) -> None:
        result = validate_record(TableKind.ARTISTS, ["Radiohead"])
        assert not result.is_valid
        assert result.errors[0].field == "__record__"

    def test_unknown_table(self) -> None:
        with pytest.raises(ValueError):
            validate_record("setlists", {})


# ======================================================================
# validate_scraped_concert
# ======================================================================


class TestValidateScrapedConcert:
    def test_valid_concert(self) -> None:
        concert = make_concert(raw_payload={"id": "sl1"})
        result = validate_scraped_concert(concert)
        assert result.is_valid
        assert "raw_payload" not in result.record
        assert result.record["artist"]["name"] == "Radiohead"

    def test_name_without_matching_key(self) -> None:
        concert = make_concert(artist=make_artist(name="!!!?"))
        result = validate_scraped_concert(concert)
        assert [e.field for e in result.errors] == ["artist.name"]

    def test_blank_city_and_country(self) -> None:
        concert = make_concert(venue=make_venue(city=" ", country="  "))
        result = validate_scraped_concert(concert)
        assert [e.field for e in result.errors] == ["venue.city", "venue.country"]

    def test_reports_every_problem(self) -> None:
        concert = make_concert(
            artist=make_artist(name="??"), venue=make_venue(name="/", city="?")
        )
        fields = [e.field for e in validate_scraped_concert(concert).errors]
        assert fields == ["artist.name", "venue.name", "venue.city"]
