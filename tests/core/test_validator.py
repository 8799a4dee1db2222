"""
Unit Tests for Schema Validation

Tests for the checkpoint JSON schema validator.
"""

import pytest

from qbank_toolkit.core.schemas.validator import ValidationError, validate_checkpoint


def _checkpoint(**overrides):
    data = {
        "subject": "전기자기학",
        "savedAt": "2026-01-02T03:04:05+00:00",
        "extractedQuestions": [
            {"questionText": "1. 전계의 세기는?", "options": ["1", "2", "3", "4"], "answerIndex": 1},
        ],
        "pageRange": {"start": 1, "end": 2},
        "questionRange": {"start": 1, "end": 20},
    }
    data.update(overrides)
    return data


class TestValidateCheckpoint:
    """Tests for validate_checkpoint."""

    def test_valid_checkpoint_passes(self):
        """A well-formed document validates silently."""
        validate_checkpoint(_checkpoint())

    def test_missing_subject_fails(self):
        """A missing required key is reported."""
        data = _checkpoint()
        del data["subject"]

        with pytest.raises(ValidationError) as exc_info:
            validate_checkpoint(data)

        assert "subject" in str(exc_info.value)

    def test_bad_question_reports_path(self):
        """Violations inside questions carry their location."""
        data = _checkpoint(extractedQuestions=[{"questionText": "", "options": []}])

        with pytest.raises(ValidationError) as exc_info:
            validate_checkpoint(data)

        assert exc_info.value.path.startswith("extractedQuestions/0")

    def test_every_violation_listed(self):
        """All violations are collected, not just the first."""
        data = _checkpoint(
            pageRange={"start": 0, "end": 2},
            extractedQuestions=[{"questionText": "1. A", "options": [], "answerIndex": -1}],
        )

        with pytest.raises(ValidationError) as exc_info:
            validate_checkpoint(data)

        assert len(exc_info.value.errors) == 2

    def test_non_object_fails(self):
        with pytest.raises(ValidationError):
            validate_checkpoint([1, 2, 3])
