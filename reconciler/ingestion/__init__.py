"""Ingestion and deduplication."""

from reconciler.ingestion.importer import (
    TransactionImporter,
    fingerprint,
    make_external_id,
)

__all__ = ["TransactionImporter", "fingerprint", "make_external_id"]
