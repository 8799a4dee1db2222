"""
Module: review.reconciliation

Purpose:
    Persists a reviewed subject package and reconciles its diagrams with
    the stored rows: crop each assigned region, upload it, find the row
    by (subject, year, session, leading question number) and write the
    diagram URL. Every miss is classified by cause and reported.

Key Functions:
    - build_row_payloads(): Package -> store rows
    - persist_package(): Insert rows in one transaction
    - resolve_match_subject(): Explicit subject, then range, then pinned subject
    - reconcile_diagrams(): Crop, upload and match every assignment
    - attach_manual_diagram(): Upload an operator-supplied diagram
    - dismiss_manual_diagrams(): Clear the manual-diagram flag

Key Classes:
    - MatchCause: Miss causes
    - MatchMiss / MatchReport: Reconciliation outcome

Dependencies:
    - PIL (via review.cropper)
    - services.base: ObjectStorage, QuestionStore

Used By:
    - ingestion.pipeline: Save step of every subject
    - ingestion.session: Manual diagram operations
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from qbank_toolkit.core.models import (
    DEFAULT_TOPIC_CATEGORY,
    ExamIdentity,
    QuestionCandidate,
    SubjectProcessingPackage,
    SubjectRange,
)
from qbank_toolkit.core.models.bounds import MIN_CROP_SIZE
from qbank_toolkit.core.models.subjects import range_for_question
from qbank_toolkit.ingestion.diagnostics import DiagnosticsCollector
from qbank_toolkit.ingestion.errors import PersistenceError, StorageError
from qbank_toolkit.services.base import ObjectStorage, QuestionStore
from qbank_toolkit.services.object_storage import DIAGRAMS_PREFIX, generate_unique_filename

from .cropper import crop_diagram, encode_image_base64, is_blank_crop

logger = logging.getLogger(__name__)


class MatchCause(str, Enum):
    NO_SUBJECT = "no-subject"
    NO_NUMBER = "no-number"
    NOT_FOUND = "not-found"
    LOOKUP_FAILED = "lookup-failed"
    UPLOAD_FAILED = "upload-failed"
    UPDATE_FAILED = "update-failed"


CAUSE_LABELS = {
    MatchCause.NO_SUBJECT: "과목 미확인",
    MatchCause.NO_NUMBER: "문항 번호 없음",
    MatchCause.NOT_FOUND: "저장된 문항 없음",
    MatchCause.LOOKUP_FAILED: "조회 실패",
    MatchCause.UPLOAD_FAILED: "업로드 실패",
    MatchCause.UPDATE_FAILED: "갱신 실패",
}


@dataclass(frozen=True)
class MatchMiss:
    question_index: int
    cause: MatchCause
    message: str
    question_number: Optional[int] = None


@dataclass
class MatchReport:
    """
    Outcome of reconciling one subject's diagrams.

    Attributes:
        subject: Package subject
        updated: (question index, record id, diagram URL) per written row
        misses: One entry per assignment that did not end in an update
    """
    subject: str
    updated: List[Tuple[int, int, str]] = field(default_factory=list)
    misses: List[MatchMiss] = field(default_factory=list)

    @property
    def has_misses(self) -> bool:
        return bool(self.misses)

    @property
    def counts_by_cause(self) -> Dict[str, int]:
        return dict(Counter(miss.cause.value for miss in self.misses))

    def summary(self) -> str:
        """Operator-facing warning text; empty when everything matched."""
        if not self.misses:
            return ""
        counts = Counter(miss.cause for miss in self.misses)
        parts = [f"{CAUSE_LABELS[cause]} {count}" for cause, count in counts.items()]
        return f"{self.subject}: 도면 {len(self.misses)}건을 연결하지 못했습니다 ({', '.join(parts)})"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "subject": self.subject,
            "updated": [
                {"question_index": i, "record_id": r, "diagram_url": u} for i, r, u in self.updated
            ],
            "counts_by_cause": self.counts_by_cause,
            "misses": [
                {
                    "question_index": m.question_index,
                    "cause": m.cause.value,
                    "message": m.message,
                    "question_number": m.question_number,
                }
                for m in self.misses
            ],
        }


# ─────────────────────────────────────────────────────────────────────────────
# Persistence
# ─────────────────────────────────────────────────────────────────────────────

def row_subject(question: QuestionCandidate, package: SubjectProcessingPackage) -> str:
    return question.subject or package.subject_name


def build_row_payloads(package: SubjectProcessingPackage, identity: ExamIdentity) -> List[Dict[str, Any]]:
    """Store rows for every question of the package, in package order."""
    rows = []
    for question in package.questions:
        rows.append(
            {
                "subject": row_subject(question, package),
                "year": identity.year,
                "exam_session": identity.session,
                "certification": identity.certification,
                "question_text": question.question_text,
                "options": list(question.options),
                "answer_index": question.answer_index,
                "ai_explanation": question.ai_explanation,
                "hint": question.hint,
                "rationale": question.rationale,
                "topic_category": question.topic_category or DEFAULT_TOPIC_CATEGORY,
                "topic_keywords": list(question.topic_keywords),
                "difficulty_level": question.difficulty_level,
                "image_url": question.image_url,
                "diagram_url": question.diagram_url,
            }
        )
    return rows


def persist_package(
    store: QuestionStore,
    package: SubjectProcessingPackage,
    identity: ExamIdentity,
) -> List[int]:
    """
    Insert all rows of a package.

    Raises:
        PersistenceError: If the exam year is invalid or the insert fails.
    """
    if not identity.has_valid_year:
        raise PersistenceError(f"유효한 시험 연도가 아닙니다: {identity.year}")
    ids = store.insert_questions(build_row_payloads(package, identity))
    logger.info(
        f"Saved {len(ids)} question(s) for {package.subject_name}",
        extra={"subject": package.subject_name, "count": len(ids)},
    )
    return ids


# ─────────────────────────────────────────────────────────────────────────────
# Diagram reconciliation
# ─────────────────────────────────────────────────────────────────────────────

def resolve_match_subject(
    question: QuestionCandidate,
    ranges: Sequence[SubjectRange] = (),
    selected_subject: Optional[str] = None,
) -> Optional[str]:
    """
    Subject used for matching a diagram to a stored row.

    The question's own subject wins; otherwise the range whose question
    window contains the leading number; otherwise the pinned subject.
    """
    if question.subject and question.subject.strip():
        return question.subject.strip()
    subject_range = range_for_question(ranges, question.leading_number)
    if subject_range is not None:
        return subject_range.name
    if selected_subject and selected_subject.strip():
        return selected_subject.strip()
    return None


def reconcile_diagrams(
    package: SubjectProcessingPackage,
    identity: ExamIdentity,
    storage: ObjectStorage,
    store: QuestionStore,
    *,
    ranges: Sequence[SubjectRange] = (),
    selected_subject: Optional[str] = None,
    diagnostics: Optional[DiagnosticsCollector] = None,
    min_crop_size: int = MIN_CROP_SIZE,
) -> MatchReport:
    """
    Crop, upload and match every diagram assignment, one at a time.

    Assignments are processed in question order. A question is updated
    only when its key resolves to a stored row; the newest row with that
    key wins. Failures never raise; each one is a MatchMiss.
    """
    report = MatchReport(subject=package.subject_name)

    def miss(index: int, cause: MatchCause, message: str, number: Optional[int] = None) -> None:
        report.misses.append(MatchMiss(index, cause, message, number))
        logger.warning(
            f"{package.subject_name} Q{index + 1}: {cause.value} - {message}",
            extra={"subject": package.subject_name, "cause": cause.value},
        )
        if diagnostics is not None:
            diagnostics.add_match_miss(package.subject_name, cause.value, message, number)

    for index in sorted(package.diagram_assignments):
        assignment = package.diagram_assignments[index]
        question = package.questions[index]
        number = question.leading_number

        preview = package.preview_for_page(assignment.page_index)
        if preview is None or preview.image is None:
            miss(index, MatchCause.UPLOAD_FAILED, f"page {assignment.page_index + 1} image unavailable", number)
            continue

        crop = crop_diagram(preview.image, assignment.bounds, min_crop_size)
        if is_blank_crop(crop):
            logger.warning(
                f"{package.subject_name} Q{index + 1}: diagram crop looks blank",
                extra={"subject": package.subject_name},
            )
        try:
            url = storage.upload(encode_image_base64(crop), generate_unique_filename("jpg", DIAGRAMS_PREFIX))
        except StorageError as e:
            miss(index, MatchCause.UPLOAD_FAILED, str(e), number)
            continue

        subject = resolve_match_subject(question, ranges, selected_subject)
        if subject is None:
            miss(index, MatchCause.NO_SUBJECT, "과목을 확인할 수 없습니다", number)
            continue
        if number is None:
            miss(index, MatchCause.NO_NUMBER, "문항 번호를 찾을 수 없습니다", None)
            continue
        try:
            record_ids = store.find_question_ids(subject, identity.year, identity.session, number)
        except PersistenceError as e:
            miss(index, MatchCause.LOOKUP_FAILED, str(e), number)
            continue
        if not record_ids:
            miss(index, MatchCause.NOT_FOUND, f"{subject} {identity.year}년 {identity.session}회 {number}번 없음", number)
            continue

        record_id = record_ids[-1]
        try:
            store.update_question(record_id, {"diagram_url": url})
        except PersistenceError as e:
            miss(index, MatchCause.UPDATE_FAILED, str(e), number)
            continue
        report.updated.append((index, record_id, url))

    logger.info(
        f"{package.subject_name}: {len(report.updated)} diagram(s) linked, {len(report.misses)} missed",
        extra={"subject": package.subject_name, "misses": report.counts_by_cause},
    )
    return report


# ─────────────────────────────────────────────────────────────────────────────
# Manual diagrams
# ─────────────────────────────────────────────────────────────────────────────

def attach_manual_diagram(
    package: SubjectProcessingPackage,
    question_index: int,
    base64_image: str,
    storage: ObjectStorage,
) -> SubjectProcessingPackage:
    """
    Upload an operator-supplied diagram and set it on the question.

    The URL is part of the row when the package is saved, so no match
    step is needed for it.

    Raises:
        IndexError: question_index outside the package.
        StorageError: If the upload fails.
    """
    if not 0 <= question_index < len(package.questions):
        raise IndexError(f"question index out of range: {question_index}")
    url = storage.upload(base64_image, generate_unique_filename("jpg", DIAGRAMS_PREFIX))
    questions = list(package.questions)
    questions[question_index] = questions[question_index].with_updates(diagram_url=url)
    logger.info(f"{package.subject_name} Q{question_index + 1}: manual diagram attached")
    return package.with_questions(tuple(questions))


def dismiss_manual_diagrams(
    package: SubjectProcessingPackage,
    question_indexes: Optional[Iterable[int]] = None,
) -> SubjectProcessingPackage:
    """Clear needs_manual_diagram on the given (default: all outstanding) questions."""
    targets = set(package.outstanding_manual_diagrams() if question_indexes is None else question_indexes)
    questions = tuple(
        question.with_updates(needs_manual_diagram=False) if index in targets else question
        for index, question in enumerate(package.questions)
    )
    return package.with_questions(questions)
