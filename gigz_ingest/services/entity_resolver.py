"""Entity resolution: map scraped records onto canonical catalog rows.

Each scraped concert is matched against the catalog in three steps.  Artist
and venue are resolved concurrently, then the concert:

- **artist**: musicbrainz_id, then spotify_id, then ``name_normalized``,
  then a join on ``artist_aliases.alias_normalized`` for the scraped name
  and aliases.  The first strategy with a hit wins.
- **venue**: (``name_normalized``, city, country); failing that, the nearest
  venue in the same city within 1 km (haversine), when the scraped venue
  has coordinates.
- **concert**: exact (artist_id, venue_id, date).

When nothing matches, a new row is inserted right away with a fresh uuid4,
``verified = False`` and zero counts.  The catalog's unique indexes close
the race between two jobs creating the same entity: a
:class:`StorageConflictError` on insert re-runs the match and returns
whichever row won.

Aliases seen on a matched artist are diffed against the stored ones and at
most ``max_new_aliases`` new ``alternate`` aliases are appended.
"""

from __future__ import annotations

import asyncio
from typing import Any

import structlog

from gigz_ingest.interfaces.storage_provider import IStorageProvider
from gigz_ingest.models.catalog import (
    AliasType,
    Artist,
    ArtistAlias,
    Concert,
    TableKind,
    Venue,
)
from gigz_ingest.models.errors import ErrorContext
from gigz_ingest.models.pipeline import (
    ResolutionBatch,
    ResolutionFailure,
    ResolvedArtist,
    ResolvedConcert,
    ResolvedVenue,
)
from gigz_ingest.models.scraped import ScrapedArtist, ScrapedConcert, ScrapedVenue
from gigz_ingest.services.error_classifier import ErrorClassifier
from gigz_ingest.utils.errors import StorageConflictError
from gigz_ingest.utils.geo import haversine_distance
from gigz_ingest.utils.text_normalizer import normalize_name

logger = structlog.get_logger(logger_name=__name__)

_SETLISTFM = "setlistfm"
_DEFAULT_MAX_NEW_ALIASES = 10
_DEFAULT_GEO_RADIUS_M = 1000.0

_ARTIST_BY_MBID = "SELECT * FROM artists WHERE musicbrainz_id = :musicbrainz_id LIMIT 1"
_ARTIST_BY_SPOTIFY = "SELECT * FROM artists WHERE spotify_id = :spotify_id LIMIT 1"
_ARTIST_BY_NAME = "SELECT * FROM artists WHERE name_normalized = :name_normalized LIMIT 1"
_ARTIST_BY_ALIAS = (
    "SELECT a.* FROM artists a "
    "JOIN artist_aliases aa ON a.id = aa.artist_id "
    "WHERE aa.alias_normalized IN ({placeholders}) "
    "LIMIT 1"
)
_ALIASES_FOR_ARTIST = (
    "SELECT alias_normalized FROM artist_aliases WHERE artist_id = :artist_id"
)
_VENUE_BY_LOCATION = (
    "SELECT * FROM venues "
    "WHERE name_normalized = :name_normalized AND city = :city AND country = :country "
    "LIMIT 1"
)
_VENUES_WITH_COORDINATES = (
    "SELECT * FROM venues "
    "WHERE city = :city AND latitude IS NOT NULL AND longitude IS NOT NULL"
)
_CONCERT_BY_KEY = (
    "SELECT * FROM concerts "
    "WHERE artist_id = :artist_id AND venue_id = :venue_id AND date = :date "
    "LIMIT 1"
)


def _unique_aliases(aliases: list[str], exclude: set[str]) -> list[tuple[str, str]]:
    """Return ``(alias, normalized)`` pairs, dropping blanks and repeats."""
    seen = set(exclude)
    unique: list[tuple[str, str]] = []
    for alias in aliases:
        key = normalize_name(alias)
        if not key or key in seen:
            continue
        seen.add(key)
        unique.append((alias.strip(), key))
    return unique


class EntityResolver:
    """Match-or-create resolution of artists, venues and concerts.

    Parameters
    ----------
    storage:
        Catalog storage.  Queries use named ``:param`` placeholders.
    classifier:
        Classifies per-record failures in :meth:`resolve_concerts`.
    max_new_aliases:
        Cap on aliases appended to an already-known artist per resolution.
    geo_radius_m:
        Venue proximity threshold in metres.
    """

    def __init__(
        self,
        storage: IStorageProvider,
        classifier: ErrorClassifier | None = None,
        max_new_aliases: int = _DEFAULT_MAX_NEW_ALIASES,
        geo_radius_m: float = _DEFAULT_GEO_RADIUS_M,
    ) -> None:
        self._storage = storage
        self._classifier = classifier or ErrorClassifier()
        self._max_new_aliases = max_new_aliases
        self._geo_radius_m = geo_radius_m

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def resolve_artist(self, scraped: ScrapedArtist) -> ResolvedArtist:
        existing = await self._find_artist(scraped)
        if existing is not None:
            logger.debug("artist_matched", artist_id=existing.id, name=existing.name)
            new_aliases = await self._append_aliases(existing, scraped.aliases)
            return ResolvedArtist(artist=existing, is_new=False, new_aliases=new_aliases)

        artist = Artist(
            name=scraped.name.strip(),
            name_normalized=normalize_name(scraped.name),
            musicbrainz_id=scraped.musicbrainz_id,
            spotify_id=scraped.spotify_id,
            image_url=scraped.image_url,
            source=scraped.source,
        )
        try:
            await self._storage.insert(TableKind.ARTISTS.value, [artist.to_row()])
        except StorageConflictError:
            winner = await self._find_artist(scraped)
            if winner is None:
                raise
            logger.info("artist_created_concurrently", artist_id=winner.id, name=winner.name)
            new_aliases = await self._append_aliases(winner, scraped.aliases)
            return ResolvedArtist(artist=winner, is_new=False, new_aliases=new_aliases)

        aliases = _unique_aliases(scraped.aliases, {artist.name_normalized})
        created = await self._insert_aliases(artist.id, aliases)
        logger.info(
            "artist_created",
            artist_id=artist.id,
            name=artist.name,
            source=artist.source,
            aliases=len(created),
        )
        return ResolvedArtist(artist=artist, is_new=True, new_aliases=created)

    async def resolve_venue(self, scraped: ScrapedVenue) -> ResolvedVenue:
        existing = await self._find_venue(scraped)
        if existing is not None:
            logger.debug("venue_matched", venue_id=existing.id, name=existing.name,
                         city=existing.city)
            return ResolvedVenue(venue=existing, is_new=False)

        venue = Venue(
            name=scraped.name.strip(),
            name_normalized=normalize_name(scraped.name),
            city=scraped.city,
            state_province=scraped.state_province,
            country=scraped.country,
            address=scraped.address,
            postal_code=scraped.postal_code,
            latitude=scraped.latitude,
            longitude=scraped.longitude,
            capacity=scraped.capacity,
            setlistfm_id=scraped.external_id if scraped.source == _SETLISTFM else None,
            source=scraped.source,
        )
        try:
            await self._storage.insert(TableKind.VENUES.value, [venue.to_row()])
        except StorageConflictError:
            winner = await self._find_venue(scraped)
            if winner is None:
                raise
            logger.info("venue_created_concurrently", venue_id=winner.id, name=winner.name)
            return ResolvedVenue(venue=winner, is_new=False)

        logger.info("venue_created", venue_id=venue.id, name=venue.name,
                    city=venue.city, source=venue.source)
        return ResolvedVenue(venue=venue, is_new=True)

    async def resolve_concert(
        self,
        scraped: ScrapedConcert,
        artist: ResolvedArtist,
        venue: ResolvedVenue,
    ) -> ResolvedConcert:
        artist_id = artist.artist.id
        venue_id = venue.venue.id

        existing = await self._find_concert(artist_id, venue_id, scraped)
        if existing is not None:
            logger.debug("concert_matched", concert_id=existing.id,
                         artist=artist.artist.name, venue=venue.venue.name,
                         date=str(existing.date))
            return ResolvedConcert(
                scraped=scraped, concert=existing, artist=artist, venue=venue, is_new=False
            )

        concert = Concert(
            artist_id=artist_id,
            venue_id=venue_id,
            date=scraped.date,
            tour_name=scraped.tour_name,
            event_name=scraped.event_name,
            setlist=scraped.setlist,
            setlistfm_id=scraped.external_id if scraped.source == _SETLISTFM else None,
            supporting_artists=scraped.supporting_artists,
            attendance_count=scraped.attendance_count,
            source=scraped.source,
            source_url=scraped.source_url,
        )
        try:
            await self._storage.insert(TableKind.CONCERTS.value, [concert.to_row()])
        except StorageConflictError:
            winner = await self._find_concert(artist_id, venue_id, scraped)
            if winner is None:
                raise
            logger.info("concert_created_concurrently", concert_id=winner.id)
            return ResolvedConcert(
                scraped=scraped, concert=winner, artist=artist, venue=venue, is_new=False
            )

        logger.info(
            "concert_created",
            concert_id=concert.id,
            artist=artist.artist.name,
            venue=venue.venue.name,
            date=str(concert.date),
            source=concert.source,
        )
        return ResolvedConcert(
            scraped=scraped, concert=concert, artist=artist, venue=venue, is_new=True
        )

    async def resolve_concerts(
        self, scraped_concerts: list[ScrapedConcert], job_id: str | None = None
    ) -> ResolutionBatch:
        """Resolve a page of concerts in order.

        Any exception while resolving a record is classified, logged and
        reported in ``failures``; the rest of the page still resolves.
        """
        resolved: list[ResolvedConcert] = []
        failures: list[ResolutionFailure] = []

        for scraped in scraped_concerts:
            try:
                artist, venue = await asyncio.gather(
                    self.resolve_artist(scraped.artist),
                    self.resolve_venue(scraped.venue),
                )
                resolved.append(await self.resolve_concert(scraped, artist, venue))
            except Exception as exc:
                processed = self._classifier.classify(
                    exc,
                    ErrorContext(
                        source=scraped.source,
                        operation="resolve_concert",
                        entity_id=scraped.external_id,
                        job_id=job_id,
                    ),
                )
                logger.error(
                    "concert_resolution_failed",
                    error=str(exc)[:300],
                    error_id=processed.id,
                    artist=scraped.artist.name,
                    venue=scraped.venue.name,
                    date=str(scraped.date),
                )
                failures.append(
                    ResolutionFailure(scraped=scraped, error=str(exc), error_id=processed.id)
                )

        batch = ResolutionBatch(resolved=resolved, failures=failures)
        logger.info(
            "concerts_resolved",
            resolved=len(resolved),
            failed=len(failures),
            artists_created=batch.artists_created,
            venues_created=batch.venues_created,
            concerts_created=batch.concerts_created,
        )
        return batch

    # ------------------------------------------------------------------
    # Matching
    # ------------------------------------------------------------------

    async def _find_artist(self, scraped: ScrapedArtist) -> Artist | None:
        if scraped.musicbrainz_id:
            row = await self._first(_ARTIST_BY_MBID, {"musicbrainz_id": scraped.musicbrainz_id})
            if row:
                return Artist.from_row(row)

        if scraped.spotify_id:
            row = await self._first(_ARTIST_BY_SPOTIFY, {"spotify_id": scraped.spotify_id})
            if row:
                return Artist.from_row(row)

        name_key = normalize_name(scraped.name)
        row = await self._first(_ARTIST_BY_NAME, {"name_normalized": name_key})
        if row:
            return Artist.from_row(row)

        keys = [key for _, key in _unique_aliases([scraped.name, *scraped.aliases], set())]
        if keys:
            params = {f"alias_{i}": key for i, key in enumerate(keys)}
            sql = _ARTIST_BY_ALIAS.format(placeholders=", ".join(f":{p}" for p in params))
            row = await self._first(sql, params)
            if row:
                return Artist.from_row(row)

        return None

    async def _find_venue(self, scraped: ScrapedVenue) -> Venue | None:
        row = await self._first(
            _VENUE_BY_LOCATION,
            {
                "name_normalized": normalize_name(scraped.name),
                "city": scraped.city,
                "country": scraped.country,
            },
        )
        if row:
            return Venue.from_row(row)

        if scraped.latitude is None or scraped.longitude is None:
            return None

        nearest: tuple[float, dict[str, Any]] | None = None
        for candidate in await self._storage.query(_VENUES_WITH_COORDINATES, {"city": scraped.city}):
            distance = haversine_distance(
                scraped.latitude, scraped.longitude,
                candidate["latitude"], candidate["longitude"],
            )
            if distance < self._geo_radius_m and (nearest is None or distance < nearest[0]):
                nearest = (distance, candidate)

        if nearest is None:
            return None
        logger.debug("venue_geo_matched", venue_id=nearest[1]["id"], distance_m=round(nearest[0]))
        return Venue.from_row(nearest[1])

    async def _find_concert(
        self, artist_id: str, venue_id: str, scraped: ScrapedConcert
    ) -> Concert | None:
        row = await self._first(
            _CONCERT_BY_KEY,
            {"artist_id": artist_id, "venue_id": venue_id, "date": scraped.date},
        )
        return Concert.from_row(row) if row else None

    async def _first(self, sql: str, params: dict[str, Any]) -> dict[str, Any] | None:
        rows = await self._storage.query(sql, params)
        return rows[0] if rows else None

    # ------------------------------------------------------------------
    # Aliases
    # ------------------------------------------------------------------

    async def _append_aliases(self, artist: Artist, aliases: list[str]) -> list[ArtistAlias]:
        if not aliases:
            return []
        rows = await self._storage.query(_ALIASES_FOR_ARTIST, {"artist_id": artist.id})
        known = {row["alias_normalized"] for row in rows}
        known.add(artist.name_normalized)

        fresh = _unique_aliases(aliases, known)[: self._max_new_aliases]
        created = await self._insert_aliases(artist.id, fresh)
        if created:
            logger.info("artist_aliases_added", artist_id=artist.id, count=len(created))
        return created

    async def _insert_aliases(
        self, artist_id: str, aliases: list[tuple[str, str]]
    ) -> list[ArtistAlias]:
        records = [
            ArtistAlias(
                artist_id=artist_id,
                alias=alias,
                alias_normalized=key,
                alias_type=AliasType.ALTERNATE,
            )
            for alias, key in aliases
        ]
        if not records:
            return []

        try:
            await self._storage.insert(
                TableKind.ARTIST_ALIASES.value, [r.to_row() for r in records]
            )
        except StorageConflictError:
            logger.debug("artist_alias_conflict", artist_id=artist_id, count=len(records))
            return await self._insert_aliases_one_by_one(records)
        return records

    async def _insert_aliases_one_by_one(
        self, records: list[ArtistAlias]
    ) -> list[ArtistAlias]:
        # Another job added some of these; keep the ones still missing.
        created: list[ArtistAlias] = []
        for record in records:
            try:
                await self._storage.insert(TableKind.ARTIST_ALIASES.value, [record.to_row()])
            except StorageConflictError:
                continue
            created.append(record)
        return created
