"""
Module: ingestion.quota

Purpose:
    Range-inclusion predicate and per-subject quota enforcement.

    The final list of a subject never exceeds its limit. In-range
    candidates keep their original order and always come first; any
    backfill walks the full pre-filter pool in order, skipping ids that
    are already selected and items the predicate rejects.

Key Functions:
    - make_range_predicate(): Candidate -> bool for a subject window
    - subject_question_limit(): Quota for a subject
    - enforce_subject_question_quota(): Truncate or backfill to the limit
"""

from __future__ import annotations

from typing import Callable, List, Optional, Sequence, Set

from qbank_toolkit.core.models import QuestionCandidate, SubjectRange

CandidatePredicate = Callable[[QuestionCandidate], bool]


def is_question_in_range(
    candidate: QuestionCandidate,
    subject_range: SubjectRange,
    *,
    single_subject: bool = False,
) -> bool:
    """
    Range-inclusion predicate.

    Single-subject runs accept everything. Otherwise a candidate is
    accepted when its leading number lies in the question window, or
    when no number can be parsed at all.
    """
    if single_subject:
        return True
    number = candidate.leading_number
    if number is None:
        return True
    return subject_range.contains_question(number)


def make_range_predicate(subject_range: SubjectRange, *, single_subject: bool = False) -> CandidatePredicate:
    def predicate(candidate: QuestionCandidate) -> bool:
        return is_question_in_range(candidate, subject_range, single_subject=single_subject)
    return predicate


def subject_question_limit(
    subject_range: SubjectRange,
    *,
    single_subject: bool,
    subject_quota: int = 40,
) -> int:
    """Pinned subject -> subject_quota; otherwise the question window size."""
    if single_subject:
        return subject_quota
    return subject_range.question_count


def enforce_subject_question_quota(
    primary: Sequence[QuestionCandidate],
    fallback_pool: Sequence[QuestionCandidate],
    limit: int,
    is_allowed: Optional[CandidatePredicate] = None,
) -> List[QuestionCandidate]:
    """
    Cap a subject's questions at limit, backfilling when short.

    Args:
        primary: Range-filtered candidates in extraction order.
        fallback_pool: Every raw candidate (pre-filter) in extraction order.
        limit: Maximum number of questions to keep.
        is_allowed: Predicate applied to every item taken (primary or pool).

    Returns:
        At most ``limit`` candidates, deduplicated by candidate_id.

    Example:
        >>> # 45 raw candidates numbered 1..45, window 1..40
        >>> # -> primary has 40 items, returned unchanged
    """
    if limit <= 0:
        return []
    if len(primary) >= limit:
        return list(primary[:limit])

    selected: List[QuestionCandidate] = []
    seen: Set[str] = set()

    def try_add(candidate: QuestionCandidate) -> None:
        if len(selected) >= limit or candidate.candidate_id in seen:
            return
        if is_allowed is not None and not is_allowed(candidate):
            return
        seen.add(candidate.candidate_id)
        selected.append(candidate)

    for candidate in primary:
        try_add(candidate)
    for candidate in fallback_pool:
        if len(selected) >= limit:
            break
        try_add(candidate)
    return selected
