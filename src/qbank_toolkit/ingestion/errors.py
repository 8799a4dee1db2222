"""
Module: ingestion.errors

Purpose:
    Exception hierarchy for the ingestion pipeline. Each class maps to
    one failure class and therefore to one handling policy: input
    problems stop the run before it starts, per-unit extraction errors
    are skipped, fatal extraction errors abort, persistence errors leave
    the batch unconfirmed, storage errors become reconciliation misses.
"""

from __future__ import annotations

from typing import List, Optional

SERVER_ERROR_MARKERS = ("server error", "500", "non-2xx status code")

SERVER_ERROR_DIAGNOSTIC = (
    "추출 서비스에서 서버 오류가 발생했습니다. "
    "서비스 상태와 API 키, 요청 크기(페이지 수/텍스트 길이)를 확인한 뒤 다시 시도해 주세요."
)


class IngestionError(Exception):
    """Base class for ingestion failures."""


class InputValidationError(IngestionError):
    """Files, subject ranges or exam identity are invalid; the run does not start."""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.errors = errors or [message]


class ExtractionServiceError(IngestionError):
    """One call to the extraction service failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code

    @property
    def is_server_error(self) -> bool:
        lowered = str(self).lower()
        if self.status_code is not None and self.status_code >= 500:
            return True
        return any(marker in lowered for marker in SERVER_ERROR_MARKERS)

    @property
    def diagnostic(self) -> str:
        """Operator-facing message; specialized for server-side failures."""
        if self.is_server_error:
            return f"{SERVER_ERROR_DIAGNOSTIC} (원본 오류: {self})"
        return str(self)


class FatalExtractionError(IngestionError):
    """No further subject can succeed (e.g. no text layer anywhere)."""


class PersistenceError(IngestionError):
    """A write to the question store failed."""


class StorageError(IngestionError):
    """An object-storage upload failed."""


class SessionStateError(IngestionError):
    """An operator action arrived in a state that does not accept it."""


class RunCancelled(IngestionError):
    """Raised inside the pipeline when the cancellation flag is observed."""
