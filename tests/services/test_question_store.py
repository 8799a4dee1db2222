"""Tests for services.question_store against in-memory SQLite."""
import pytest

from qbank_toolkit.ingestion.errors import PersistenceError
from qbank_toolkit.services.question_store import SqlQuestionStore


def _row(number, subject="전력공학", year=2023, session=1, **extra):
    row = {
        "subject": subject,
        "year": year,
        "exam_session": session,
        "certification": "전기기사",
        "question_text": f"{number}. 문항",
        "options": ["가", "나"],
        "answer_index": 0,
    }
    row.update(extra)
    return row


@pytest.fixture
def store():
    return SqlQuestionStore("sqlite://")


def test_insert_when_rows_then_ids_and_defaults(store):
    ids = store.insert_questions([_row(1), _row(2, topic_keywords=("송전",))])

    assert ids == [1, 2]
    first = store.get_question(1)
    assert first["options"] == ["가", "나"]
    assert first["topic_category"] == "기타"
    assert store.get_question(2)["topic_keywords"] == ["송전"]


def test_insert_when_empty_then_no_ids(store):
    assert store.insert_questions([]) == []


def test_insert_when_required_column_missing_then_persistence_error(store):
    with pytest.raises(PersistenceError):
        store.insert_questions([{"subject": "전력공학", "question_text": "1. 문항"}])


def test_find_when_same_key_twice_then_ids_in_insert_order(store):
    """Both rows match the key; callers pick the last (newest)."""
    store.insert_questions([_row(21), _row(22)])
    store.insert_questions([_row(21)])

    assert store.find_question_ids("전력공학", 2023, 1, 21) == [1, 3]
    assert store.find_question_ids("전력공학", 2023, 2, 21) == []
    assert store.find_question_ids("전기기기", 2023, 1, 21) == []


def test_update_when_allowed_fields_then_written(store):
    store.insert_questions([_row(1)])

    store.update_question(1, {"diagram_url": "https://cdn.test/d.jpg", "topic_keywords": ("송전", "안정도")})

    row = store.get_question(1)
    assert row["diagram_url"] == "https://cdn.test/d.jpg"
    assert row["topic_keywords"] == ["송전", "안정도"]


def test_update_when_unknown_field_then_rejected(store):
    store.insert_questions([_row(1)])

    with pytest.raises(PersistenceError):
        store.update_question(1, {"question_text": "changed"})


def test_update_when_record_missing_then_error(store):
    with pytest.raises(PersistenceError):
        store.update_question(42, {"hint": "x"})


def test_get_when_missing_then_none(store):
    assert store.get_question(7) is None
