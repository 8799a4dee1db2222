"""
Module: ingestion.config

Purpose:
    Configuration dataclasses for the ingestion pipeline, the enrichment
    worker and the external service adapters. Immutable settings with
    documented defaults.

Key Classes:
    - IngestionConfig: Quotas, limits, chunk budgets and polling
    - EnrichmentConfig: Batch size and inter-batch delay
    - ServiceSettings: Endpoints and credentials, loadable from env

Dependencies:
    - dataclasses: For frozen dataclass support
    - os: Environment lookup

Used By:
    - ingestion.pipeline: Uses IngestionConfig for run settings
    - ingestion.validation: File count/size limits
    - enrichment.queue: Uses EnrichmentConfig
    - services: Build adapters from ServiceSettings
    - cli: Wires everything together
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from qbank_toolkit.core.models.bounds import MIN_CROP_SIZE

DEFAULT_SUBJECT_QUOTA = 40
MAX_FILES = 10
MAX_FILE_SIZE_BYTES = 10 * 1024 * 1024


@dataclass(frozen=True)
class IngestionConfig:
    """
    Configuration for an ingestion run.

    Attributes:
        subject_quota: Question cap when a single subject is pinned (default 40)
        min_crop_size: Minimum diagram width/height in pixels (default 24)
        max_files: Maximum files per upload (default 10)
        max_file_size_bytes: Maximum size of each file (default 10 MiB)
        subject_text_chunk_chars: Character budget per text-PDF request (default 30000)
        plain_text_chunk_chars: Character budget per plain-text request (default 8000)
        render_dpi: DPI for rendering PDF pages for review (default 144)
        upload_concurrency: Concurrent preview uploads (default 4)
        poll_interval_seconds: Wait granularity for pause/review/save (default 0.15)
        checkpoint_dir: Where subject checkpoints go (None disables them)
        auto_save: Save without confirmation when nothing is outstanding (default True)
    """
    subject_quota: int = DEFAULT_SUBJECT_QUOTA
    min_crop_size: int = MIN_CROP_SIZE
    max_files: int = MAX_FILES
    max_file_size_bytes: int = MAX_FILE_SIZE_BYTES
    subject_text_chunk_chars: int = 30000  # service request limit
    plain_text_chunk_chars: int = 8000
    render_dpi: int = 144  # 2x of 72pt pages
    upload_concurrency: int = 4
    poll_interval_seconds: float = 0.15
    checkpoint_dir: Optional[Path] = None
    auto_save: bool = True

    def __post_init__(self) -> None:
        if self.subject_quota < 1:
            raise ValueError(f"subject_quota must be >= 1: {self.subject_quota}")
        if self.min_crop_size < 1:
            raise ValueError(f"min_crop_size must be >= 1: {self.min_crop_size}")
        if self.upload_concurrency < 1:
            raise ValueError(f"upload_concurrency must be >= 1: {self.upload_concurrency}")
        if self.poll_interval_seconds <= 0:
            raise ValueError(f"poll_interval_seconds must be > 0: {self.poll_interval_seconds}")
        if self.subject_text_chunk_chars < 1 or self.plain_text_chunk_chars < 1:
            raise ValueError("chunk budgets must be >= 1")


@dataclass(frozen=True)
class EnrichmentConfig:
    """
    Configuration for the background enrichment worker.

    Attributes:
        batch_size: Records classified per batch (default 3)
        batch_delay_seconds: Pause after each batch for rate limits (default 1.0)
        idle_timeout_seconds: How long the worker waits for new jobs before exiting (default 0.5)
    """
    batch_size: int = 3
    batch_delay_seconds: float = 1.0
    idle_timeout_seconds: float = 0.5

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be >= 1: {self.batch_size}")
        if self.batch_delay_seconds < 0:
            raise ValueError(f"batch_delay_seconds must be >= 0: {self.batch_delay_seconds}")


@dataclass(frozen=True)
class ServiceSettings:
    """
    Endpoints and credentials for the external collaborators.

    Attributes:
        extraction_base_url: Base URL of the extraction/metadata service
        extraction_api_key: Bearer token for that service (optional)
        request_timeout_seconds: Per-request timeout (default 30)
        storage_endpoint: Object storage host:port
        storage_access_key, storage_secret_key: Object storage credentials
        storage_bucket: Bucket for page previews and diagram crops
        storage_secure: Use TLS for object storage
        storage_public_url: Public base URL for uploaded objects (optional)
        database_url: SQLAlchemy URL of the question store
    """
    extraction_base_url: str = "http://localhost:8080"
    extraction_api_key: Optional[str] = None
    request_timeout_seconds: float = 30.0
    storage_endpoint: str = "localhost:9000"
    storage_access_key: str = "minioadmin"
    storage_secret_key: str = "minioadmin"
    storage_bucket: str = "exam-assets"
    storage_secure: bool = False
    storage_public_url: Optional[str] = None
    database_url: str = "sqlite:///qbank.db"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> ServiceSettings:
        """Build settings from QBANK_* environment variables."""
        env = os.environ if environ is None else environ
        defaults = cls()

        def get(name: str, default):
            value = env.get(f"QBANK_{name}")
            return default if value is None or value == "" else value

        return cls(
            extraction_base_url=get("EXTRACTION_URL", defaults.extraction_base_url),
            extraction_api_key=get("EXTRACTION_API_KEY", None),
            request_timeout_seconds=float(get("REQUEST_TIMEOUT", defaults.request_timeout_seconds)),
            storage_endpoint=get("STORAGE_ENDPOINT", defaults.storage_endpoint),
            storage_access_key=get("STORAGE_ACCESS_KEY", defaults.storage_access_key),
            storage_secret_key=get("STORAGE_SECRET_KEY", defaults.storage_secret_key),
            storage_bucket=get("STORAGE_BUCKET", defaults.storage_bucket),
            storage_secure=str(get("STORAGE_SECURE", "false")).lower() in ("1", "true", "yes"),
            storage_public_url=get("STORAGE_PUBLIC_URL", None),
            database_url=get("DATABASE_URL", defaults.database_url),
        )
