"""Record validation that reports instead of raising.

Two entry points:

- :func:`validate_record` screens a storage row for one catalog table by
  running it through that table's pydantic model.  A valid row comes back
  normalized (defaults filled, JSON-compatible values); an invalid one comes
  back as a list of :class:`FieldError`.
- :func:`validate_scraped_concert` checks that a scraped concert can be
  matched at all: the artist and venue names must survive normalization,
  and the venue must have a city and a country.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ValidationError

from gigz_ingest.models.batch import FieldError, ValidationResult
from gigz_ingest.models.catalog import (
    Artist,
    ArtistAlias,
    Concert,
    ConcertSource,
    TableKind,
    Venue,
)
from gigz_ingest.models.scraped import ScrapedConcert
from gigz_ingest.utils.text_normalizer import normalize_name, normalize_text

_TABLE_MODELS: dict[TableKind, type[BaseModel]] = {
    TableKind.ARTISTS: Artist,
    TableKind.ARTIST_ALIASES: ArtistAlias,
    TableKind.VENUES: Venue,
    TableKind.CONCERTS: Concert,
    TableKind.CONCERT_SOURCES: ConcertSource,
}

_ROOT_FIELD = "__record__"


def _field_errors(exc: ValidationError) -> list[FieldError]:
    errors: list[FieldError] = []
    for err in exc.errors():
        field = ".".join(str(part) for part in err["loc"]) or _ROOT_FIELD
        errors.append(FieldError(field=field, message=err["msg"]))
    return errors


def validate_record(kind: TableKind | str, row: Any) -> ValidationResult:
    """Validate *row* against the schema of table *kind*.

    Unknown columns are ignored and dropped from the returned record.
    """
    model = _TABLE_MODELS[TableKind(kind)]
    if not isinstance(row, Mapping):
        return ValidationResult.invalid(
            [FieldError(field=_ROOT_FIELD, message=f"expected a mapping, got {type(row).__name__}")]
        )

    known = {k: v for k, v in row.items() if k in model.model_fields}
    try:
        record = model.model_validate(known)
    except ValidationError as exc:
        return ValidationResult.invalid(_field_errors(exc))
    return ValidationResult.valid(record.model_dump(mode="json"))


def validate_scraped_concert(concert: ScrapedConcert) -> ValidationResult:
    """Check that *concert* has usable matching keys."""
    errors: list[FieldError] = []
    if not normalize_name(concert.artist.name):
        errors.append(FieldError(field="artist.name", message="normalizes to an empty key"))
    if not normalize_name(concert.venue.name):
        errors.append(FieldError(field="venue.name", message="normalizes to an empty key"))
    if not normalize_text(concert.venue.city):
        errors.append(FieldError(field="venue.city", message="is blank"))
    if not normalize_text(concert.venue.country):
        errors.append(FieldError(field="venue.country", message="is blank"))

    if errors:
        return ValidationResult.invalid(errors)
    return ValidationResult.valid(concert.model_dump(mode="json", exclude={"raw_payload"}))
