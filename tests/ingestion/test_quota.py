"""
Tests for ingestion.quota

Test Coverage:
- is_question_in_range(): Window, unnumbered and pinned-subject rules
- enforce_subject_question_quota(): Truncation, backfill, dedupe
"""
from qbank_toolkit.core.models import QuestionCandidate, SubjectRange
from qbank_toolkit.ingestion.quota import (
    enforce_subject_question_quota,
    is_question_in_range,
    make_range_predicate,
    subject_question_limit,
)


def _numbered(*numbers):
    return [QuestionCandidate(f"{n}. question {n}") for n in numbers]


class TestRangePredicate:
    def test_predicate_when_number_in_window_then_accepted(self):
        window = SubjectRange("전력공학", 2, 3, 21, 40)

        assert is_question_in_range(QuestionCandidate("21. A"), window)
        assert not is_question_in_range(QuestionCandidate("20. A"), window)

    def test_predicate_when_unnumbered_then_accepted(self):
        """Questions without a parseable number are kept."""
        assert is_question_in_range(QuestionCandidate("다음 중 옳은 것은?"), SubjectRange("A", 1, 1, 21, 40))

    def test_predicate_when_single_subject_then_everything(self):
        window = SubjectRange("A", 1, 1, 1, 40)

        assert is_question_in_range(QuestionCandidate("99. A"), window, single_subject=True)

    def test_limit_when_single_subject_then_quota(self):
        window = SubjectRange("A", 1, 1, 21, 40)

        assert subject_question_limit(window, single_subject=True, subject_quota=40) == 40
        assert subject_question_limit(window, single_subject=False) == 20


class TestEnforceQuota:
    def test_enforce_when_pinned_subject_returns_45_then_first_40(self):
        """A pinned subject keeps the first 40 of 45 candidates in order."""
        # Arrange
        raw = _numbered(*range(1, 46))
        window = SubjectRange("전력공학", 1, 5, 1, 40)
        predicate = make_range_predicate(window, single_subject=True)
        primary = [c for c in raw if predicate(c)]

        # Act
        final = enforce_subject_question_quota(primary, raw, 40, predicate)

        # Assert
        assert [c.leading_number for c in final] == list(range(1, 41))

    def test_enforce_when_chunk_spans_two_subjects_then_split_by_window(self):
        """Questions 18-23 from one chunk are divided at the window boundary."""
        raw = _numbered(*range(18, 24))
        first = SubjectRange("전기자기학", 1, 2, 1, 20)
        second = SubjectRange("전력공학", 2, 3, 21, 40)

        kept = {}
        for window in (first, second):
            predicate = make_range_predicate(window)
            primary = [c for c in raw if predicate(c)]
            kept[window.name] = enforce_subject_question_quota(primary, raw, window.question_count, predicate)

        assert [c.leading_number for c in kept["전기자기학"]] == [18, 19, 20]
        assert [c.leading_number for c in kept["전력공학"]] == [21, 22, 23]

    def test_enforce_when_short_without_predicate_then_backfilled_from_pool(self):
        """Backfill walks the pool in order, skipping ids already selected."""
        pool = _numbered(1, 2, 3, 4)

        final = enforce_subject_question_quota([pool[2]], pool, 3)

        assert [c.leading_number for c in final] == [3, 1, 2]

    def test_enforce_when_predicate_rejects_then_pool_item_skipped(self):
        pool = _numbered(1, 50, 2)

        final = enforce_subject_question_quota([pool[0]], pool, 3, lambda c: c.leading_number < 10)

        assert [c.leading_number for c in final] == [1, 2]

    def test_enforce_when_duplicates_then_each_id_once(self):
        candidate = QuestionCandidate("1. A")

        final = enforce_subject_question_quota([candidate, candidate], [candidate], 5)

        assert final == [candidate]

    def test_enforce_when_limit_zero_then_empty(self):
        assert enforce_subject_question_quota(_numbered(1), _numbered(1), 0) == []
