"""HTTP client adapter for the extraction and metadata service.

Assumes endpoints (JSON in, JSON out):
- POST /v1/extract-questions -> {"ok": true, "data": [candidate, ...]}
- POST /v1/classify-topic    -> {"ok": true, "data": {"topicCategory", "topicKeywords", "difficultyLevel"}}
- POST /v1/question-details  -> {"ok": true, "data": {"aiExplanation", "hint", "rationale"}}

Failures come back as {"ok": false, "error": "..."} or a non-2xx status.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from qbank_toolkit.core.models import QuestionCandidate
from qbank_toolkit.core.models.candidates import candidates_from_dicts
from qbank_toolkit.ingestion.errors import ExtractionServiceError

from .base import (
    ExtractionRequest,
    ExtractionService,
    MetadataService,
    QuestionDetails,
    TopicClassification,
)

logger = logging.getLogger(__name__)

EXTRACT_PATH = "/v1/extract-questions"
CLASSIFY_PATH = "/v1/classify-topic"
DETAILS_PATH = "/v1/question-details"


class HttpExtractionClient(ExtractionService, MetadataService):
    """Extraction and metadata client over httpx (sync).

    A new client is opened per call so the adapter can be shared between
    the pipeline thread and the enrichment worker.
    """

    def __init__(
        self,
        base_url: Optional[str],
        timeout_seconds: float = 30.0,
        api_key: Optional[str] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._base_url = base_url
        self._timeout_seconds = timeout_seconds
        self._api_key = api_key
        self._transport = transport

    def _client(self) -> httpx.Client:
        if not self._base_url:
            raise ExtractionServiceError("Extraction base_url is not configured")
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return httpx.Client(
            base_url=self._base_url,
            timeout=self._timeout_seconds,
            headers=headers,
            transport=self._transport,
        )

    def _post(self, path: str, payload: Dict[str, Any]) -> Any:
        try:
            with self._client() as client:
                resp = client.post(path, json=payload)
        except httpx.RequestError as e:
            raise ExtractionServiceError(f"Request to {path} failed: {e}") from e

        if resp.status_code >= 400:
            raise ExtractionServiceError(
                f"Edge function returned a non-2xx status code ({resp.status_code})",
                status_code=resp.status_code,
            )
        try:
            body = resp.json()
        except ValueError as e:
            raise ExtractionServiceError(f"Invalid JSON from {path}", status_code=resp.status_code) from e

        if not isinstance(body, dict):
            raise ExtractionServiceError(f"Unexpected response shape from {path}")
        if not body.get("ok", False):
            raise ExtractionServiceError(str(body.get("error") or f"{path} reported failure"))
        return body.get("data")

    # ─────────────────────────────────────────────────────────────────────────
    # Extraction
    # ─────────────────────────────────────────────────────────────────────────

    def extract_questions(self, request: ExtractionRequest) -> List[QuestionCandidate]:
        data = self._post(EXTRACT_PATH, request.to_payload())
        if isinstance(data, dict):
            data = data.get("questions")
        if data is None:
            return []
        if not isinstance(data, list):
            raise ExtractionServiceError("Extraction response data is not a list")

        candidates, warnings = candidates_from_dicts(data)
        if warnings:
            logger.warning(
                f"Extraction returned {len(warnings)} malformed candidate(s)",
                extra={"skipped": len(warnings)},
            )
        return candidates

    # ─────────────────────────────────────────────────────────────────────────
    # Metadata
    # ─────────────────────────────────────────────────────────────────────────

    @staticmethod
    def _question_payload(candidate: QuestionCandidate) -> Dict[str, Any]:
        return {
            "question_text": candidate.question_text,
            "options": list(candidate.options),
            "subject": candidate.subject,
            "answer_index": candidate.answer_index,
        }

    def classify_topic(self, candidate: QuestionCandidate) -> TopicClassification:
        data = self._post(CLASSIFY_PATH, self._question_payload(candidate)) or {}
        return TopicClassification(
            topic_category=data.get("topicCategory"),
            topic_keywords=tuple(str(k) for k in (data.get("topicKeywords") or [])),
            difficulty_level=data.get("difficultyLevel"),
        )

    def generate_details(self, candidate: QuestionCandidate) -> QuestionDetails:
        data = self._post(DETAILS_PATH, self._question_payload(candidate)) or {}
        return QuestionDetails(
            ai_explanation=data.get("aiExplanation"),
            hint=data.get("hint"),
            rationale=data.get("rationale"),
        )
