"""
Module: ingestion.validation

Purpose:
    Input validation that runs before any session state exists: file
    types, counts and sizes, mixed-mode uploads, subject ranges and the
    exam identity. Every problem found is collected so the operator sees
    them all at once.

Key Functions:
    - detect_source_kind(): Map a file name / MIME type to a SourceKind
    - validate_source_files(): Classify uploads and reject invalid sets
    - read_source_files(): Load files from disk for validation
    - validate_subject_ranges(): Check declared ranges
    - validate_exam_identity(): Year and session bounds

Dependencies:
    - mimetypes (std)
    - core.models: SourceFile, SubjectRange, ExamIdentity

Used By:
    - ingestion.pipeline: Called before a run starts
    - cli: Pre-flight checks
"""

from __future__ import annotations

import logging
import mimetypes
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple

from qbank_toolkit.common.numbering import validate_exam_session, validate_exam_year
from qbank_toolkit.core.models import ExamIdentity, SourceFile, SourceKind, SubjectRange

from .config import IngestionConfig
from .errors import InputValidationError

logger = logging.getLogger(__name__)

IMAGE_MIME_TYPES = {"image/jpeg", "image/png", "image/webp"}
IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp"}
PDF_MIME_TYPE = "application/pdf"
TEXT_MIME_TYPE = "text/plain"

# (name, content, mime_type)
Upload = Tuple[str, bytes, str]


def detect_source_kind(name: str, mime_type: Optional[str] = None) -> Optional[SourceKind]:
    """
    Classify an upload by declared MIME type, falling back to extension.

    Returns:
        The SourceKind, or None for unsupported files.
    """
    mime = (mime_type or "").lower()
    suffix = Path(name).suffix.lower()
    if mime in IMAGE_MIME_TYPES or (not mime and suffix in IMAGE_EXTENSIONS):
        return SourceKind.PAGE_IMAGE
    if mime == PDF_MIME_TYPE or (not mime and suffix == ".pdf"):
        return SourceKind.PAGE_TEXT_DOCUMENT
    if mime == TEXT_MIME_TYPE or (not mime and suffix == ".txt"):
        return SourceKind.PLAIN_TEXT
    return None


def validate_source_files(
    uploads: Sequence[Upload],
    config: Optional[IngestionConfig] = None,
) -> List[SourceFile]:
    """
    Validate an upload set and classify each file.

    Args:
        uploads: (name, content, mime_type) tuples in upload order.
        config: Limits (defaults to IngestionConfig()).

    Returns:
        SourceFile instances in upload order (offsets not yet assigned).

    Raises:
        InputValidationError: On empty uploads, too many files, oversize or
            unsupported files, or a mixed-mode set.
    """
    config = config or IngestionConfig()
    errors: List[str] = []

    if not uploads:
        raise InputValidationError("업로드된 파일이 없습니다.")
    if len(uploads) > config.max_files:
        errors.append(f"파일은 최대 {config.max_files}개까지 업로드할 수 있습니다. ({len(uploads)}개 선택됨)")

    sources: List[SourceFile] = []
    for name, content, mime_type in uploads:
        kind = detect_source_kind(name, mime_type)
        if kind is None:
            errors.append(f"{name}: 지원하지 않는 파일 형식입니다. (JPG, PNG, WEBP, PDF, TXT만 가능)")
            continue
        if len(content) > config.max_file_size_bytes:
            limit_mb = config.max_file_size_bytes // (1024 * 1024)
            errors.append(f"{name}: 파일 크기가 {limit_mb}MB를 초과합니다.")
            continue
        if not content:
            errors.append(f"{name}: 빈 파일입니다.")
            continue
        sources.append(
            SourceFile(
                name=name,
                kind=kind,
                content=content,
                mime_type=mime_type or mimetypes.guess_type(name)[0] or "",
            )
        )

    kinds = {source.kind for source in sources}
    if SourceKind.PAGE_IMAGE in kinds and SourceKind.PAGE_TEXT_DOCUMENT in kinds:
        errors.append("이미지와 PDF 파일을 함께 업로드할 수 없습니다. 한 가지 형식만 선택해 주세요.")
    if SourceKind.PLAIN_TEXT in kinds and len(kinds) > 1:
        errors.append("텍스트 파일은 다른 형식의 파일과 함께 업로드할 수 없습니다.")

    if errors:
        logger.warning(f"Rejected upload set: {len(errors)} problem(s)", extra={"errors": errors})
        raise InputValidationError(errors[0], errors)
    return sources


def read_source_files(paths: Iterable[Path]) -> List[Upload]:
    """
    Read files from disk as upload tuples.

    Raises:
        FileNotFoundError: If a path does not exist.
    """
    uploads: List[Upload] = []
    for path in paths:
        if not path.exists():
            raise FileNotFoundError(f"Source file not found: {path}")
        mime_type = mimetypes.guess_type(path.name)[0] or ""
        uploads.append((path.name, path.read_bytes(), mime_type))
    return uploads


def validate_subject_ranges(
    ranges: Sequence[SubjectRange],
    *,
    selected_subject: Optional[str] = None,
) -> None:
    """
    Check declared subject ranges before a multi-subject run.

    Skipped entirely when a single subject is pinned, since the range
    is synthesized over the whole corpus in that case.

    Raises:
        InputValidationError: Listing each invalid range.
    """
    if selected_subject:
        return
    if not ranges:
        raise InputValidationError("최소 한 개 이상의 과목 범위를 설정해 주세요.")

    errors: List[str] = []
    for index, subject_range in enumerate(ranges, start=1):
        label = subject_range.name or f"{index}번째 범위"
        if not subject_range.name.strip():
            errors.append(f"{index}번째 범위: 과목명을 입력해 주세요.")
        if subject_range.start_page < 1 or subject_range.end_page < subject_range.start_page:
            errors.append(f"{label}: 페이지 범위를 확인해 주세요. (시작 ≥ 1, 시작 ≤ 끝)")
        if subject_range.question_start < 1 or subject_range.question_end < subject_range.question_start:
            errors.append(f"{label}: 문항 번호 범위를 확인해 주세요. (시작 ≥ 1, 시작 ≤ 끝)")

    if errors:
        raise InputValidationError(errors[0], errors)


def parse_subject_ranges(items: Sequence[dict]) -> List[SubjectRange]:
    """
    Build SubjectRange instances from operator-supplied dicts.

    Raises:
        InputValidationError: Listing every entry that could not be built.
    """
    ranges: List[SubjectRange] = []
    errors: List[str] = []
    for index, item in enumerate(items, start=1):
        try:
            ranges.append(SubjectRange.from_dict(item))
        except (KeyError, TypeError, ValueError) as e:
            errors.append(f"{index}번째 범위가 올바르지 않습니다: {e}")
    if errors:
        raise InputValidationError(errors[0], errors)
    return ranges


def validate_exam_identity(identity: ExamIdentity, *, require_year: bool = True) -> None:
    """
    Check the exam year and session.

    Args:
        identity: Certification, year and session.
        require_year: When False a missing year passes; the save gate
            asks for it later. A given year is always checked.

    Raises:
        InputValidationError: If the year or session is missing or out of range.
    """
    errors: List[str] = []
    if identity.year is not None or require_year:
        year_error = validate_exam_year(identity.year)
        if year_error:
            errors.append(year_error)
    session_error = validate_exam_session(identity.session)
    if session_error:
        errors.append(session_error)
    if errors:
        raise InputValidationError(errors[0], errors)
