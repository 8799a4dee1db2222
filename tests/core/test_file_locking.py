"""
Tests for core.utils.file_locking

Test Coverage:
- locked_write_json() / locked_read_json(): Round trip, overwrite
- locked_update_json(): Default creation and merge
"""
import json

import pytest

from qbank_toolkit.core.utils.file_locking import (
    locked_read_json,
    locked_update_json,
    locked_write_json,
)


def test_write_then_read_when_overwritten_then_latest(tmp_path):
    """A second write replaces the whole document."""
    path = tmp_path / "nested" / "data.json"

    locked_write_json(path, {"a": 1, "long": "x" * 100})
    locked_write_json(path, {"b": "전력"})

    assert locked_read_json(path) == {"b": "전력"}


def test_read_when_missing_then_file_not_found(tmp_path):
    with pytest.raises(FileNotFoundError):
        locked_read_json(tmp_path / "missing.json")


def test_update_when_absent_then_default_used(tmp_path):
    """The default factory seeds a missing file."""
    path = tmp_path / "runs.json"

    def add(existing):
        existing["runs"]["r1"] = 1
        return existing

    result = locked_update_json(path, add, default=lambda: {"runs": {}})

    assert result == {"runs": {"r1": 1}}
    assert json.loads(path.read_text(encoding="utf-8")) == {"runs": {"r1": 1}}


def test_update_when_existing_then_merged(tmp_path):
    path = tmp_path / "runs.json"
    path.write_text(json.dumps({"runs": {"r1": 1}}), encoding="utf-8")

    locked_update_json(path, lambda d: {"runs": {**d["runs"], "r2": 2}})

    assert locked_read_json(path) == {"runs": {"r1": 1, "r2": 2}}
