"""Shared pytest fixtures for the gigz_ingest test suite."""

from __future__ import annotations

from datetime import date
from pathlib import Path
from typing import Any

import pytest

from gigz_ingest.models.scraped import ScrapedArtist, ScrapedConcert, ScrapedVenue
from gigz_ingest.providers.storage.sqlite_storage import SQLiteStorageProvider
from gigz_ingest.providers.store.memory_store import MemoryRateLimitStore
from gigz_ingest.services.error_classifier import ErrorClassifier


class FakeClock:
    """Manually advanced Unix clock shared by stores and limiters."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ---------------------------------------------------------------------------
# Scraped record factories
# ---------------------------------------------------------------------------


def make_artist(name: str = "Radiohead", **kwargs: Any) -> ScrapedArtist:
    kwargs.setdefault("source", "setlistfm")
    return ScrapedArtist(name=name, **kwargs)


def make_venue(
    name: str = "Madison Square Garden",
    city: str = "New York",
    country: str = "United States",
    **kwargs: Any,
) -> ScrapedVenue:
    kwargs.setdefault("source", "setlistfm")
    return ScrapedVenue(name=name, city=city, country=country, **kwargs)


def make_concert(
    artist: ScrapedArtist | None = None,
    venue: ScrapedVenue | None = None,
    day: date = date(2024, 6, 1),
    **kwargs: Any,
) -> ScrapedConcert:
    kwargs.setdefault("source", "setlistfm")
    return ScrapedConcert(
        artist=artist or make_artist(),
        venue=venue or make_venue(),
        date=day,
        **kwargs,
    )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def memory_store(clock: FakeClock) -> MemoryRateLimitStore:
    """In-process rate-limit store driven by the fake clock."""
    return MemoryRateLimitStore(clock=clock)


@pytest.fixture
def classifier() -> ErrorClassifier:
    return ErrorClassifier(max_errors=100)


@pytest.fixture
async def storage(tmp_path: Path):
    """Create an initialized SQLiteStorageProvider in a temp directory."""
    provider = SQLiteStorageProvider(db_path=tmp_path / "catalog.db")
    await provider.initialize()
    yield provider
