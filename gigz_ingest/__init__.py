"""Concert ingestion pipeline: rate-limited scraping, entity resolution and
batched catalog writes."""

__version__ = "0.1.0"
