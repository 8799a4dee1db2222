"""
Checkpoint Serialization Utilities

A checkpoint is the human-inspectable JSON artifact emitted after each
subject completes::

    {
      "subject": "전력공학",
      "extractedQuestions": [...],
      "pageRange": {"start": 2, "end": 3},        # optional
      "questionRange": {"start": 21, "end": 40},  # optional
      "savedAt": "2026-10-19T09:30:00+00:00"
    }

Loading a checkpoint repopulates the extracted-question list without
re-running extraction.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from qbank_toolkit.core.models.candidates import QuestionCandidate
from qbank_toolkit.core.models.subjects import SubjectRange
from qbank_toolkit.core.schemas.validator import validate_checkpoint
from qbank_toolkit.core.utils.file_locking import locked_read_json, locked_write_json

logger = logging.getLogger(__name__)

_UNSAFE_FILENAME_CHARS = re.compile(r'[\\/:*?"<>|\s]+')


@dataclass
class LoadedCheckpoint:
    """A checkpoint read back from disk."""

    subject: str
    questions: List[QuestionCandidate]
    saved_at: str
    page_range: Optional[Dict[str, int]] = None
    question_range: Optional[Dict[str, int]] = None
    source_path: Optional[Path] = None
    warnings: List[str] = field(default_factory=list)


def build_checkpoint(
    subject: str,
    questions: Sequence[QuestionCandidate],
    subject_range: Optional[SubjectRange] = None,
    saved_at: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Build a checkpoint document for one subject.

    Args:
        subject: Subject name.
        questions: Final questions of the subject.
        subject_range: Window used for extraction; adds pageRange/questionRange.
        saved_at: Timestamp override (defaults to now, UTC).
    """
    stamp = (saved_at or datetime.now(timezone.utc)).isoformat()
    data: Dict[str, Any] = {
        "subject": subject,
        "extractedQuestions": [q.to_dict() for q in questions],
        "savedAt": stamp,
    }
    if subject_range is not None:
        data["pageRange"] = subject_range.page_range_dict()
        data["questionRange"] = subject_range.question_range_dict()
    return data


def checkpoint_filename(subject: str, saved_at: Optional[datetime] = None) -> str:
    """
    File name for a subject checkpoint.

    Example:
        >>> checkpoint_filename("회로이론 및 제어공학", datetime(2026, 1, 2, 3, 4, 5))
        '회로이론_및_제어공학_20260102T030405.json'
    """
    safe = _UNSAFE_FILENAME_CHARS.sub("_", subject.strip()) or "subject"
    stamp = (saved_at or datetime.now(timezone.utc)).strftime("%Y%m%dT%H%M%S")
    return f"{safe}_{stamp}.json"


def save_checkpoint(directory: Path, checkpoint: Dict[str, Any]) -> Path:
    """
    Validate and write a checkpoint into directory.

    Returns:
        Path of the written file.

    Raises:
        ValidationError: If the document does not match the schema.
    """
    validate_checkpoint(checkpoint)
    saved_at = datetime.fromisoformat(checkpoint["savedAt"])
    path = directory / checkpoint_filename(checkpoint["subject"], saved_at)
    locked_write_json(path, checkpoint)
    logger.info(
        f"Saved checkpoint for {checkpoint['subject']} "
        f"({len(checkpoint['extractedQuestions'])} questions) to {path}",
        extra={"subject": checkpoint["subject"], "path": str(path)},
    )
    return path


def load_checkpoint(path: Path) -> LoadedCheckpoint:
    """
    Load a checkpoint and rebuild its questions.

    Candidate ids stored in the file are kept so a reloaded list keeps
    its identities.

    Raises:
        FileNotFoundError: If path does not exist.
        ValidationError: If the document does not match the schema.
    """
    data = locked_read_json(path)
    validate_checkpoint(data)

    questions: List[QuestionCandidate] = []
    warnings: List[str] = []
    for index, item in enumerate(data["extractedQuestions"]):
        try:
            question = QuestionCandidate.from_dict(item)
        except (TypeError, ValueError) as e:
            msg = f"Skipping question #{index} in {path.name}: {e}"
            logger.warning(msg, extra={"path": str(path), "question_index": index})
            warnings.append(msg)
            continue
        if question.subject is None:
            question = question.with_updates(subject=data["subject"])
        questions.append(question)

    logger.info(f"Loaded {len(questions)} questions for {data['subject']} from {path.name}")
    return LoadedCheckpoint(
        subject=data["subject"],
        questions=questions,
        saved_at=data["savedAt"],
        page_range=data.get("pageRange"),
        question_range=data.get("questionRange"),
        source_path=path,
        warnings=warnings,
    )
