"""
Module: subjects

Purpose:
    Subject range models - the declared (page span, question-number span)
    windows that partition a multi-subject source into per-subject batches,
    and the resolved source segments each window covers.

Key Classes:
    - SubjectRange: One declared subject window
    - SubjectSegment: A physical slice of one source file inside a window

Dependencies:
    - dataclasses (std)
    - uuid (std)

Used By:
    - common.certifications: Default range templates
    - ingestion.ranges: Range resolution
    - ingestion.quota: Range-inclusion predicate
    - review.reconciliation: Subject resolution by question window
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


def new_range_id() -> str:
    return f"subject-{uuid.uuid4().hex[:9]}"


@dataclass(frozen=True, slots=True)
class SubjectRange:
    """
    A declared subject window over the corpus.

    Pages are absolute, 1-based positions across every text-bearing
    source (or image) in upload order. Both windows are inclusive.

    Attributes:
        name: Subject name as persisted (e.g. "전기자기학")
        start_page: First absolute page (>= 1)
        end_page: Last absolute page (>= start_page)
        question_start: First question number (>= 1)
        question_end: Last question number (>= question_start)
        id: Stable identifier for editing; generated when omitted

    Invariants:
        - 1 <= start_page <= end_page
        - 1 <= question_start <= question_end

    Example:
        >>> r = SubjectRange("전력공학", 2, 3, 21, 40)
        >>> r.question_count
        20
        >>> r.contains_question(21)
        True
    """

    name: str
    start_page: int
    end_page: int
    question_start: int
    question_end: int
    id: str = field(default_factory=new_range_id)

    def __post_init__(self) -> None:
        """Validate windows on construction."""
        if self.start_page < 1:
            raise ValueError(f"start_page must be >= 1: {self.start_page}")
        if self.end_page < self.start_page:
            raise ValueError(
                f"end_page must be >= start_page: {self.end_page} < {self.start_page}"
            )
        if self.question_start < 1:
            raise ValueError(f"question_start must be >= 1: {self.question_start}")
        if self.question_end < self.question_start:
            raise ValueError(
                f"question_end must be >= question_start: "
                f"{self.question_end} < {self.question_start}"
            )

    # ─────────────────────────────────────────────────────────────────────────
    # Properties
    # ─────────────────────────────────────────────────────────────────────────

    @property
    def page_count(self) -> int:
        return self.end_page - self.start_page + 1

    @property
    def question_count(self) -> int:
        """Size of the question-number window (the multi-subject quota)."""
        return self.question_end - self.question_start + 1

    def contains_question(self, number: int) -> bool:
        return self.question_start <= number <= self.question_end

    def contains_page(self, page_number: int) -> bool:
        return self.start_page <= page_number <= self.end_page

    # ─────────────────────────────────────────────────────────────────────────
    # Serialization
    # ─────────────────────────────────────────────────────────────────────────

    def page_range_dict(self) -> Dict[str, int]:
        return {"start": self.start_page, "end": self.end_page}

    def question_range_dict(self) -> Dict[str, int]:
        return {"start": self.question_start, "end": self.question_end}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "startPage": self.start_page,
            "endPage": self.end_page,
            "questionStart": self.question_start,
            "questionEnd": self.question_end,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> SubjectRange:
        """
        Deserialize from a dict using camelCase keys (snake_case accepted).

        Raises:
            KeyError: If a required key is missing.
            ValueError: If the windows are invalid.
        """
        def pick(camel: str, snake: str) -> Any:
            return data[camel] if camel in data else data[snake]

        kwargs: Dict[str, Any] = {
            "name": str(data["name"]).strip(),
            "start_page": int(pick("startPage", "start_page")),
            "end_page": int(pick("endPage", "end_page")),
            "question_start": int(pick("questionStart", "question_start")),
            "question_end": int(pick("questionEnd", "question_end")),
        }
        if data.get("id"):
            kwargs["id"] = str(data["id"])
        return cls(**kwargs)


@dataclass(frozen=True, slots=True)
class SubjectSegment:
    """
    The part of one source file that physically overlaps a subject window.

    Attributes:
        source_index: Index of the source file in upload order
        local_start: First page within that file (1-based)
        local_end: Last page within that file (inclusive)
        absolute_start: Same first page in corpus numbering
        absolute_end: Same last page in corpus numbering
    """

    source_index: int
    local_start: int
    local_end: int
    absolute_start: int
    absolute_end: int

    def __post_init__(self) -> None:
        if self.local_start < 1 or self.local_end < self.local_start:
            raise ValueError(
                f"invalid local span: {self.local_start}-{self.local_end}"
            )
        if self.absolute_end - self.absolute_start != self.local_end - self.local_start:
            raise ValueError("absolute and local spans must have equal length")

    @property
    def page_count(self) -> int:
        return self.local_end - self.local_start + 1

    def absolute_pages(self) -> range:
        return range(self.absolute_start, self.absolute_end + 1)


def range_for_question(ranges, number: Optional[int]) -> Optional[SubjectRange]:
    """Return the first range whose question window contains number."""
    if number is None:
        return None
    for subject_range in ranges:
        if subject_range.contains_question(number):
            return subject_range
    return None
