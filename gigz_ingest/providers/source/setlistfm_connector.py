"""setlist.fm connector (REST API v1.0).

Searches ``/search/setlists`` by artist MBID, venue id, or city, paginating
with ``p=`` until the requested limit is reached, a page comes back empty,
or ``page * itemsPerPage >= total``.  Requests carry the ``x-api-key``
header and go through the source's request queue (2 req/s, one at a time,
by default); a further courtesy delay separates pages.

setlist.fm answers 404 when a search has no results, so a 404 on a search
page simply ends pagination.  Any other page failure raises
:class:`PartialFetchError` carrying the concerts already collected.

Each setlist becomes a :class:`ScrapedConcert`:

- songs become a flat list of titles, annotated ``(X cover)`` and ``[info]``
- the artist's ``sortName`` ("Beatles, The") becomes an alias
- ``eventDate`` (``dd-MM-yyyy``) becomes a plain date
- city coordinates are **not** copied onto the venue: they are the city
  centroid, and every venue in the city would then geo-match every other
"""

from __future__ import annotations

from typing import Any

import structlog

from gigz_ingest.models.scraped import (
    DateRange,
    DiscoveryParams,
    ScrapedArtist,
    ScrapedConcert,
    ScrapedVenue,
    ScrapeParams,
)
from gigz_ingest.providers.source.base_connector import BaseHTTPConnector
from gigz_ingest.utils.errors import (
    AuthenticationError,
    GigzIngestError,
    PartialFetchError,
    ProviderHTTPError,
)
from gigz_ingest.utils.text_normalizer import format_provider_date, normalize_date

logger = structlog.get_logger(logger_name=__name__)

SETLISTFM_BASE_URL = "https://api.setlist.fm/rest/1.0"
_SEARCH_SETLISTS = "search/setlists"
_SEARCH_ARTISTS = "search/artists"
_SEARCH_VENUES = "search/venues"
_PAGE_SIZE = 20  # setlist.fm returns 20 setlists per page


class SetlistFmConnector(BaseHTTPConnector):
    """:class:`ISourceConnector` for api.setlist.fm."""

    def _default_headers(self) -> dict[str, str]:
        headers = super()._default_headers()
        headers["x-api-key"] = self._config.api_key
        return headers

    # ------------------------------------------------------------------
    # Scrapes
    # ------------------------------------------------------------------

    async def discover(self, params: DiscoveryParams) -> list[ScrapedConcert]:
        query: list[tuple[str, str]] = []
        if params.location:
            query.append(("cityName", params.location))
        query.extend(self._date_filters(params.date_range))
        if params.genre:
            # No genre filter on setlist.fm search.
            logger.debug("setlistfm_genre_filter_ignored", genre=params.genre)

        logger.info("setlistfm_discovery_started", location=params.location,
                    limit=params.limit, offset=params.offset)
        concerts = await self._paginate(query, params.limit, params.offset, "discover")
        logger.info("setlistfm_discovery_finished", concerts=len(concerts))
        return concerts

    async def scrape_by_artist(
        self, artist_id: str, params: ScrapeParams | None = None
    ) -> list[ScrapedConcert]:
        params = params or ScrapeParams()
        query = [("artistMbid", artist_id), *self._date_filters(params.date_range)]
        concerts = await self._paginate(query, params.limit, 0, "scrape_by_artist")
        logger.info("setlistfm_artist_scraped", artist_id=artist_id, concerts=len(concerts))
        return concerts

    async def scrape_by_venue(
        self, venue_id: str, params: ScrapeParams | None = None
    ) -> list[ScrapedConcert]:
        params = params or ScrapeParams()
        query = [("venueId", venue_id), *self._date_filters(params.date_range)]
        concerts = await self._paginate(query, params.limit, 0, "scrape_by_venue")
        logger.info("setlistfm_venue_scraped", venue_id=venue_id, concerts=len(concerts))
        return concerts

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def search_artist(self, name: str) -> list[ScrapedArtist]:
        payload = await self._lookup(
            _SEARCH_ARTISTS, [("artistName", name), ("sort", "relevance")], "search_artist"
        )
        artists: list[ScrapedArtist] = []
        for item in (payload or {}).get("artist") or []:
            if item.get("name"):
                artists.append(self._to_scraped_artist(item))
        return artists

    async def search_venue(
        self, name: str, city: str | None = None
    ) -> list[ScrapedVenue]:
        query = [("name", name)]
        if city:
            query.append(("cityName", city))
        payload = await self._lookup(_SEARCH_VENUES, query, "search_venue")
        venues: list[ScrapedVenue] = []
        for item in (payload or {}).get("venue") or []:
            try:
                venues.append(self._to_scraped_venue(item))
            except (KeyError, TypeError, ValueError) as exc:
                logger.debug("setlistfm_venue_skipped", venue_id=item.get("id"), error=str(exc))
        return venues

    async def get_artist_metadata(self, artist_id: str) -> dict[str, Any] | None:
        return await self._lookup(f"artist/{artist_id}", None, "artist_metadata")

    async def get_venue_metadata(self, venue_id: str) -> dict[str, Any] | None:
        return await self._lookup(f"venue/{venue_id}", None, "venue_metadata")

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _date_filters(date_range: DateRange | None) -> list[tuple[str, str]]:
        if date_range is None:
            return []
        return [
            ("date", f">={format_provider_date(date_range.start)}"),
            ("date", f"<={format_provider_date(date_range.end)}"),
        ]

    async def _paginate(
        self,
        query: list[tuple[str, str]],
        limit: int,
        offset: int,
        operation: str,
    ) -> list[ScrapedConcert]:
        page = offset // _PAGE_SIZE + 1
        skip = offset % _PAGE_SIZE
        concerts: list[ScrapedConcert] = []

        while len(concerts) < limit:
            try:
                payload = await self._get_json(
                    _SEARCH_SETLISTS, [*query, ("p", str(page))], operation
                )
            except AuthenticationError:
                raise
            except GigzIngestError as exc:
                if isinstance(exc, ProviderHTTPError) and exc.status_code == 404:
                    break
                logger.error("setlistfm_page_failed", page=page, operation=operation,
                             error=str(exc), collected=len(concerts))
                raise PartialFetchError(
                    f"page {page} failed: {exc.message}",
                    provider_name=self.get_provider_name(),
                    concerts=concerts[:limit],
                    cause=exc,
                ) from exc

            items = payload.get("setlist") if isinstance(payload, dict) else None
            if not items:
                break
            if skip:
                items, skip = items[skip:], 0
            concerts.extend(self._convert_items(items, self._to_scraped_concert))

            items_per_page = int(payload.get("itemsPerPage") or _PAGE_SIZE)
            total = int(payload.get("total") or 0)
            logger.debug("setlistfm_page_fetched", page=page, total=total,
                         collected=len(concerts))
            if page * items_per_page >= total:
                break
            page += 1
            await self._page_pause()

        return concerts[:limit]

    async def _lookup(
        self,
        path: str,
        query: list[tuple[str, str]] | None,
        operation: str,
    ) -> dict[str, Any] | None:
        try:
            payload = await self._get_json(path, query, operation)
        except AuthenticationError:
            raise
        except ProviderHTTPError as exc:
            if exc.status_code != 404:
                logger.warning("setlistfm_lookup_failed", path=path, error=str(exc))
            return None
        except GigzIngestError as exc:
            logger.warning("setlistfm_lookup_failed", path=path, error=str(exc))
            return None
        return payload if isinstance(payload, dict) else None

    def _to_scraped_artist(self, raw: dict[str, Any]) -> ScrapedArtist:
        name = raw["name"]
        sort_name = raw.get("sortName")
        return ScrapedArtist(
            name=name,
            musicbrainz_id=raw.get("mbid") or None,
            aliases=[sort_name] if sort_name and sort_name != name else [],
            source=self.get_provider_name(),
        )

    def _to_scraped_venue(self, raw: dict[str, Any]) -> ScrapedVenue:
        city = raw["city"]
        country = city["country"]
        return ScrapedVenue(
            name=raw["name"],
            city=city["name"],
            country=country.get("name") or country["code"],
            state_province=city.get("state"),
            external_id=raw.get("id"),
            source=self.get_provider_name(),
        )

    def _to_scraped_concert(self, item: dict[str, Any]) -> ScrapedConcert:
        event_date = normalize_date(item["eventDate"])
        if event_date is None:
            msg = f"unparseable eventDate {item['eventDate']!r}"
            raise ValueError(msg)

        return ScrapedConcert(
            artist=self._to_scraped_artist(item["artist"]),
            venue=self._to_scraped_venue(item["venue"]),
            date=event_date,
            source=self.get_provider_name(),
            external_id=item.get("id"),
            source_url=item.get("url"),
            tour_name=(item.get("tour") or {}).get("name"),
            setlist=self._extract_songs(item) or None,
            raw_payload=item,
        )

    @staticmethod
    def _extract_songs(item: dict[str, Any]) -> list[str]:
        songs: list[str] = []
        for song_set in (item.get("sets") or {}).get("set") or []:
            for song in song_set.get("song") or []:
                title = (song.get("name") or "").strip()
                if not title:
                    # Tape intros and untitled entries.
                    continue
                cover = song.get("cover") or {}
                if cover.get("name"):
                    title = f"{title} ({cover['name']} cover)"
                if song.get("info"):
                    title = f"{title} [{song['info']}]"
                songs.append(title)
        return songs
