"""
External collaborators: extraction/metadata service, object storage and
the question store. The pipeline depends on the abstract interfaces in
``services.base``; ``build_services`` wires the concrete adapters from
ServiceSettings.
"""

from __future__ import annotations

from typing import NamedTuple

from qbank_toolkit.ingestion.config import ServiceSettings

from .base import (
    ExtractionRequest,
    ExtractionService,
    MetadataService,
    ObjectStorage,
    QuestionDetails,
    QuestionStore,
    TopicClassification,
)
from .extraction_client import HttpExtractionClient
from .object_storage import MinioObjectStorage, generate_unique_filename
from .question_store import SqlQuestionStore


class ServiceBundle(NamedTuple):
    extraction: HttpExtractionClient
    storage: MinioObjectStorage
    store: SqlQuestionStore


def build_services(settings: ServiceSettings) -> ServiceBundle:
    """Build the concrete adapters from settings."""
    client = HttpExtractionClient(
        settings.extraction_base_url,
        timeout_seconds=settings.request_timeout_seconds,
        api_key=settings.extraction_api_key,
    )
    storage = MinioObjectStorage(
        settings.storage_endpoint,
        settings.storage_access_key,
        settings.storage_secret_key,
        settings.storage_bucket,
        secure=settings.storage_secure,
        public_url=settings.storage_public_url,
    )
    store = SqlQuestionStore(settings.database_url)
    return ServiceBundle(client, storage, store)


__all__ = [
    "ExtractionRequest",
    "ExtractionService",
    "HttpExtractionClient",
    "MetadataService",
    "MinioObjectStorage",
    "ObjectStorage",
    "QuestionDetails",
    "QuestionStore",
    "ServiceBundle",
    "SqlQuestionStore",
    "TopicClassification",
    "build_services",
    "generate_unique_filename",
]
