"""Job orchestration: scrape, validate, resolve, write."""

from gigz_ingest.pipeline.ingestion_pipeline import IngestionPipeline

__all__ = ["IngestionPipeline"]
