"""
Module: ingestion.diagnostics

Captures non-fatal problems of a run (skipped extraction units, diagram
match misses, failed uploads) and produces a report with per-type and
per-cause counts.

Structure:
- Each issue carries the subject, the unit (page/chunk label) or the
  question number it concerns, and the message shown to the operator.
- Reports from several runs may be merged into the same JSON file.
"""

from __future__ import annotations

import logging
import threading
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from qbank_toolkit.core.utils.file_locking import locked_update_json

logger = logging.getLogger(__name__)

UNIT_FAILURE = "unit_failure"
MATCH_MISS = "match_miss"
UPLOAD_FAILURE = "upload_failure"


@dataclass
class RunIssue:
    """A single non-fatal issue."""
    issue_type: str
    subject: str
    message: str
    unit: str = ""
    question_number: Optional[int] = None
    cause: str = ""

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "issue_type": self.issue_type,
            "subject": self.subject,
            "message": self.message,
        }
        if self.unit:
            d["unit"] = self.unit
        if self.question_number is not None:
            d["question_number"] = self.question_number
        if self.cause:
            d["cause"] = self.cause
        return d


@dataclass
class DiagnosticsReport:
    """Snapshot of collected issues."""
    run_id: str
    generated_at: str
    issues: List[RunIssue] = field(default_factory=list)

    @property
    def counts_by_type(self) -> Dict[str, int]:
        return dict(Counter(issue.issue_type for issue in self.issues))

    @property
    def counts_by_cause(self) -> Dict[str, int]:
        return dict(Counter(issue.cause for issue in self.issues if issue.cause))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "generated_at": self.generated_at,
            "counts_by_type": self.counts_by_type,
            "counts_by_cause": self.counts_by_cause,
            "issues": [issue.to_dict() for issue in self.issues],
        }

    def save(self, path: Path) -> None:
        """Merge this report into path under a file lock, keyed by run id."""
        def merge(existing: Dict[str, Any]) -> Dict[str, Any]:
            existing.setdefault("runs", {})[self.run_id] = self.to_dict()
            return existing

        locked_update_json(path, merge, default=lambda: {"runs": {}})
        logger.debug(f"Saved diagnostics for run {self.run_id} to {path}")


class DiagnosticsCollector:
    """
    Thread-safe collector for run issues.

    Preview uploads run on worker threads, so every mutation takes the lock.
    """

    def __init__(self, run_id: Optional[str] = None):
        self.run_id = run_id or datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%f")
        self._issues: List[RunIssue] = []
        self._lock = threading.Lock()

    def _add(self, issue: RunIssue) -> None:
        with self._lock:
            self._issues.append(issue)

    def add_unit_failure(self, subject: str, unit: str, message: str) -> None:
        """Record a skipped page/chunk extraction."""
        self._add(RunIssue(UNIT_FAILURE, subject, message, unit=unit))

    def add_match_miss(self, subject: str, cause: str, message: str, question_number: Optional[int] = None) -> None:
        """Record a diagram that could not be matched to a stored row."""
        self._add(RunIssue(MATCH_MISS, subject, message, question_number=question_number, cause=cause))

    def add_upload_failure(self, subject: str, unit: str, message: str) -> None:
        self._add(RunIssue(UPLOAD_FAILURE, subject, message, unit=unit))

    def issues_for(self, subject: str) -> List[RunIssue]:
        with self._lock:
            return [issue for issue in self._issues if issue.subject == subject]

    def generate_report(self) -> DiagnosticsReport:
        with self._lock:
            issues = list(self._issues)
        return DiagnosticsReport(
            run_id=self.run_id,
            generated_at=datetime.now(timezone.utc).isoformat(),
            issues=issues,
        )
