"""Command-line tools for the ingestion worker.

- ``python -m gigz_ingest.cli`` runs one ingestion job (discover, artist,
  venue, backfill) or initializes the catalog database.
"""
