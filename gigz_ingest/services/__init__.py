"""Ingestion services: rate limiting, request queuing, resolution, writes."""

from gigz_ingest.services.batch_processor import BatchProcessor
from gigz_ingest.services.entity_resolver import EntityResolver
from gigz_ingest.services.error_classifier import ErrorClassifier
from gigz_ingest.services.rate_limiter import DistributedRateLimiter
from gigz_ingest.services.request_queue import RequestQueue
from gigz_ingest.services.validation import validate_record, validate_scraped_concert

__all__ = [
    "BatchProcessor",
    "DistributedRateLimiter",
    "EntityResolver",
    "ErrorClassifier",
    "RequestQueue",
    "validate_record",
    "validate_scraped_concert",
]
