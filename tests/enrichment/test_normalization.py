"""Tests for enrichment.normalization."""
import pytest

from qbank_toolkit.enrichment.normalization import normalize_difficulty, normalize_topic


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("Hard", "상"),
        ("high", "상"),
        ("상", "상"),
        ("easy", "하"),
        (" LOW ", "하"),
        ("하", "하"),
        ("medium", "중"),
        ("", "중"),
        (None, "중"),
    ],
)
def test_normalize_difficulty_when_value_then_three_levels(raw, expected):
    assert normalize_difficulty(raw) == expected


def test_normalize_topic_when_new_values_then_stripped():
    assert normalize_topic(" 전력계통 ", ["송전", " 안정도 ", ""]) == ("전력계통", ("송전", "안정도"))


def test_normalize_topic_when_blank_then_prior_kept():
    """A blank classification keeps the question's existing topic."""
    assert normalize_topic("  ", [], prior_category="발전", prior_keywords=("수력",)) == ("발전", ("수력",))


def test_normalize_topic_when_nothing_anywhere_then_default_category():
    assert normalize_topic(None, []) == ("기타", ())
