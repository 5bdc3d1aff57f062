"""Abstract base class for concert source connectors.

A connector paginates one provider's search endpoints and converts each
payload into a :class:`~gigz_ingest.models.scraped.ScrapedConcert`.  All of
its HTTP traffic goes through a per-source
:class:`~gigz_ingest.services.request_queue.RequestQueue`, so quotas,
timeouts and retries are enforced in one place.

Conversion is best-effort: a payload that cannot be converted is logged and
skipped, never allowed to abort the page it came from.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from gigz_ingest.models.scraped import (
    DiscoveryParams,
    ScrapedArtist,
    ScrapedConcert,
    ScrapedVenue,
    ScrapeParams,
)
from gigz_ingest.models.source import ConnectorStats


class ISourceConnector(ABC):
    """Contract for concert providers (setlist.fm, Songkick, ...)."""

    @abstractmethod
    async def discover(self, params: DiscoveryParams) -> list[ScrapedConcert]:
        """Return concerts matching open-ended filters.

        Paginates until ``params.limit`` concerts are collected or the
        provider has no more pages.  Skips the first ``params.offset``
        results.

        Raises
        ------
        AuthenticationError
            If the provider rejects the credentials.
        PartialFetchError
            If a page fails after retries.  Carries the concerts collected
            before the failure.
        """

    @abstractmethod
    async def scrape_by_artist(
        self, artist_id: str, params: ScrapeParams | None = None
    ) -> list[ScrapedConcert]:
        """Return concerts for one provider artist id (e.g. an MBID)."""

    @abstractmethod
    async def scrape_by_venue(
        self, venue_id: str, params: ScrapeParams | None = None
    ) -> list[ScrapedConcert]:
        """Return concerts for one provider venue id."""

    @abstractmethod
    async def search_artist(self, name: str) -> list[ScrapedArtist]:
        """Look up artists by name."""

    @abstractmethod
    async def search_venue(
        self, name: str, city: str | None = None
    ) -> list[ScrapedVenue]:
        """Look up venues by name, optionally within a city."""

    @abstractmethod
    async def get_artist_metadata(self, artist_id: str) -> dict[str, Any] | None:
        """Return the provider's raw artist record, or ``None`` if unknown."""

    @abstractmethod
    async def get_venue_metadata(self, venue_id: str) -> dict[str, Any] | None:
        """Return the provider's raw venue record, or ``None`` if unknown."""

    @abstractmethod
    def get_stats(self) -> ConnectorStats:
        """Return request and conversion counters."""

    @abstractmethod
    async def shutdown(self) -> None:
        """Stop accepting requests and wait for in-flight ones to finish."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return the source tag stamped on scraped records."""
