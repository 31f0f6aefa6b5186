"""
runmatch services: batch processing on top of the identity service.

Usage:
    from runmatch.services import ingest_batch

    stats = ingest_batch(records)
"""

from runmatch.services.results_ingestion import (
    ImportStats,
    ingest_batch,
    ingest_single_record,
)

__all__ = [
    "ImportStats",
    "ingest_batch",
    "ingest_single_record",
]
