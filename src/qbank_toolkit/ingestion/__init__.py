"""
Module: ingestion

Purpose:
    Exam-question ingestion: turns page images, text-layer PDFs or plain
    text into subject batches of multiple-choice questions, gated by
    diagram review and save confirmation.

Key Modules:
    - ingestion.pipeline: IngestionPipeline / run_ingestion (main entry point)
    - ingestion.session: ProcessingSession state machine
    - ingestion.extraction: ExtractionBatchRunner

Only the dependency-free layers are re-exported here; import the
pipeline, session and extraction modules directly.
"""

from .config import EnrichmentConfig, IngestionConfig, ServiceSettings
from .errors import (
    ExtractionServiceError,
    FatalExtractionError,
    IngestionError,
    InputValidationError,
    PersistenceError,
    RunCancelled,
    SessionStateError,
    StorageError,
)

__all__ = [
    # Config
    "EnrichmentConfig",
    "IngestionConfig",
    "ServiceSettings",
    # Errors
    "ExtractionServiceError",
    "FatalExtractionError",
    "IngestionError",
    "InputValidationError",
    "PersistenceError",
    "RunCancelled",
    "SessionStateError",
    "StorageError",
]
