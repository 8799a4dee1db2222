"""
Module: services.base

Purpose:
    Abstract interfaces for the external collaborators the pipeline
    talks to. The pipeline only depends on these; concrete adapters
    live beside them (HTTP extraction client, object storage, SQL store).

Key Classes:
    - ExtractionRequest: Content + hints for one extraction call
    - ExtractionService: Opaque question extraction
    - TopicClassification / QuestionDetails: Enrichment results
    - MetadataService: Topic classification and explanation generation
    - ObjectStorage: Upload a base64 image, get a URL
    - QuestionStore: Question rows keyed by (subject, year, session, number)

Dependencies:
    - abc (std)
    - core.models: QuestionCandidate

Used By:
    - ingestion.extraction, ingestion.pipeline
    - review.reconciliation
    - enrichment.queue
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from qbank_toolkit.core.models import QuestionCandidate


@dataclass(frozen=True)
class ExtractionRequest:
    """
    One call to the extraction service.

    Exactly one of images / text is set.

    Attributes:
        images: (mime_type, base64 data) pairs
        text: Text chunk
        subject_hint: Subject being processed, if known
        allowed_subjects: Certification subject list
    """

    images: Tuple[Tuple[str, str], ...] = ()
    text: Optional[str] = None
    subject_hint: Optional[str] = None
    allowed_subjects: Tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        if bool(self.images) == bool(self.text):
            raise ValueError("exactly one of images or text must be provided")

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "subject_hint": self.subject_hint,
            "allowed_subjects": list(self.allowed_subjects),
        }
        if self.images:
            payload["images"] = [{"mime_type": m, "data": d} for m, d in self.images]
        else:
            payload["text"] = self.text
        return payload


@dataclass(frozen=True)
class TopicClassification:
    topic_category: Optional[str] = None
    topic_keywords: Tuple[str, ...] = ()
    difficulty_level: Optional[str] = None


@dataclass(frozen=True)
class QuestionDetails:
    ai_explanation: Optional[str] = None
    hint: Optional[str] = None
    rationale: Optional[str] = None


class ExtractionService(ABC):
    """Opaque remote capability: content in, ordered candidates out."""

    @abstractmethod
    def extract_questions(self, request: ExtractionRequest) -> List[QuestionCandidate]:
        """
        Extract question candidates.

        Raises:
            ExtractionServiceError: With a descriptive message on failure.
        """


class MetadataService(ABC):
    """Topic/difficulty classification and explanation generation."""

    @abstractmethod
    def classify_topic(self, candidate: QuestionCandidate) -> TopicClassification:
        """Classify topic, keywords and difficulty of one question."""

    @abstractmethod
    def generate_details(self, candidate: QuestionCandidate) -> QuestionDetails:
        """Generate explanation, hint and rationale for one question."""


class ObjectStorage(ABC):
    """Blob storage for page previews and diagram crops."""

    @abstractmethod
    def upload(self, base64_image: str, filename: str) -> str:
        """
        Upload a base64 image (a data-URL prefix is allowed).

        Returns:
            Public URL of the object.

        Raises:
            StorageError: If the upload fails.
        """


class QuestionStore(ABC):
    """Persisted question rows."""

    @abstractmethod
    def insert_questions(self, rows: Sequence[Dict[str, Any]]) -> List[int]:
        """
        Insert rows in one transaction.

        Returns:
            Record ids in row order.

        Raises:
            PersistenceError: If the write fails; nothing is inserted.
        """

    @abstractmethod
    def find_question_ids(
        self,
        subject: str,
        year: int,
        exam_session: int,
        question_number: int,
    ) -> List[int]:
        """Ids of rows whose question text parses to question_number, oldest first."""

    @abstractmethod
    def update_question(self, record_id: int, fields: Dict[str, Any]) -> None:
        """
        Update selected fields of one row.

        Raises:
            PersistenceError: If the row is missing or the write fails.
        """

    @abstractmethod
    def get_question(self, record_id: int) -> Optional[Dict[str, Any]]:
        """Return a row as a dict, or None."""
