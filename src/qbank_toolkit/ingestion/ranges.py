"""
Module: ingestion.ranges

Purpose:
    Subject Range Resolver. Decides which subject windows a run processes
    and which physical source pages each window covers.

Key Functions:
    - resolve_processing_ranges(): Declared ranges, or one synthesized
      whole-corpus range when a single subject is pinned
    - resolve_segments(): Source files + local page spans overlapping a window
    - pages_for_range(): Absolute page numbers a window covers in the corpus

Dependencies:
    - core.models: Corpus, SubjectRange, SubjectSegment

Used By:
    - ingestion.pipeline: Range list for the subject loop
    - ingestion.extraction: Pages per subject
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from qbank_toolkit.core.models import Corpus, CorpusMode, SubjectRange, SubjectSegment

from .errors import InputValidationError

logger = logging.getLogger(__name__)


def resolve_processing_ranges(
    corpus: Corpus,
    declared: Sequence[SubjectRange],
    *,
    selected_subject: Optional[str] = None,
    subject_quota: int = 40,
) -> List[SubjectRange]:
    """
    Decide the subject windows for a run.

    With a pinned subject, one range spanning every corpus page is
    synthesized and the question window is advisory (the range predicate
    accepts everything in that mode). Otherwise the declared ranges are
    used verbatim, in declared order.

    Raises:
        InputValidationError: If no ranges are declared in multi-subject mode.
    """
    if selected_subject:
        name = selected_subject.strip()
        synthesized = SubjectRange(
            name=name,
            start_page=1,
            end_page=max(1, corpus.total_pages),
            question_start=1,
            question_end=subject_quota,
        )
        logger.info(
            f"Single-subject run for {name}: pages 1-{synthesized.end_page}",
            extra={"subject": name},
        )
        return [synthesized]

    if not declared:
        raise InputValidationError("최소 한 개 이상의 과목 범위를 설정해 주세요.")
    return list(declared)


def resolve_segments(corpus: Corpus, subject_range: SubjectRange) -> List[SubjectSegment]:
    """
    Find the source slices that physically overlap a subject window.

    For each source occupying absolute pages ``base+1 .. base+count`` the
    overlap with ``[start_page, end_page]`` is converted back to a local
    span. A window may hit zero, one or several files.

    Example:
        Two 3-page PDFs; window pages 3-4 -> file 0 local 3-3, file 1 local 1-1.
    """
    if corpus.mode is CorpusMode.PLAIN_TEXT:
        return []

    segments: List[SubjectSegment] = []
    for source_index, source in enumerate(corpus.sources):
        if source.page_count == 0:
            continue
        abs_start = source.absolute_start
        abs_end = source.absolute_end
        overlap_start = max(subject_range.start_page, abs_start)
        overlap_end = min(subject_range.end_page, abs_end)
        if overlap_start > overlap_end:
            continue
        segments.append(
            SubjectSegment(
                source_index=source_index,
                local_start=overlap_start - abs_start + 1,
                local_end=overlap_end - abs_start + 1,
                absolute_start=overlap_start,
                absolute_end=overlap_end,
            )
        )

    if not segments:
        logger.warning(
            f"Subject {subject_range.name}: pages {subject_range.start_page}-"
            f"{subject_range.end_page} are outside the corpus ({corpus.total_pages} pages)",
            extra={"subject": subject_range.name},
        )
    return segments


def pages_for_range(corpus: Corpus, subject_range: SubjectRange) -> List[int]:
    """Absolute page numbers covered by a window, in order."""
    pages: List[int] = []
    for segment in resolve_segments(corpus, subject_range):
        pages.extend(segment.absolute_pages())
    return pages
