"""Batch ingestion of historical offer documents."""

from priceintel.ingestion.pipeline import (
    VALIDATED_OK,
    BatchResult,
    DocumentOutcome,
    IngestionPipeline,
    market_source_loader,
)

__all__ = [
    "VALIDATED_OK",
    "BatchResult",
    "DocumentOutcome",
    "IngestionPipeline",
    "market_source_loader",
]
