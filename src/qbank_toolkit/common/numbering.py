"""
Module: common.numbering

Purpose:
    Heuristic parsing of question numbers and exam identity values.
    Leading question numbers drive range filtering, plain-text
    segmentation and diagram reconciliation, so every caller goes
    through the same pattern table.

Key Functions:
    - extract_leading_question_number(): Leading number of a question text
    - starts_with_question_number(): Segment boundary test for plain text
    - extract_year_from_filename(): Best-effort exam year from a file name
    - validate_exam_year(): Bounded year check with operator message
    - validate_exam_session(): Bounded session (회차) check

Dependencies:
    - re (std)
    - datetime (std)

Used By:
    - ingestion.quota: Range-inclusion predicate
    - ingestion.corpus: Plain-text segmentation
    - review.reconciliation: Match key construction
    - services.question_store: Row lookup by question number
"""

from __future__ import annotations

import re
from datetime import date
from typing import Optional, Tuple

# Ordered by priority: "12.", "12)", "12번" / "제12문" / "문항 12"
LEADING_NUMBER_PATTERNS: Tuple[re.Pattern, ...] = (
    re.compile(r"^(\d{1,3})\s*(?:[).:\-]|번)"),
    re.compile(r"^제?\s*(\d{1,3})\s*문"),
    re.compile(r"^(?:문항|문제)\s*(\d{1,3})"),
)

MIN_EXAM_YEAR = 2000
MAX_YEAR_LOOKAHEAD = 5
MIN_EXAM_SESSION = 1
MAX_EXAM_SESSION = 10

# Filename years outside this window are treated as noise (e.g. "2100x")
_FILENAME_YEAR_FLOOR = 2000
_FILENAME_YEAR_CEILING = 2030

_FOUR_DIGIT_YEAR = re.compile(r"(20\d{2})")
_DELIMITED_TWO_DIGIT_YEAR = re.compile(r"[_\s\-년](\d{2})[\s_\-년회차.]")
_EDGE_TWO_DIGIT_YEAR = re.compile(r"(?:^(\d{2})[_\s\-년]|[_\s\-](\d{2})$)")


def extract_leading_question_number(text: Optional[str]) -> Optional[int]:
    """
    Parse the question number at the start of a question text.

    Args:
        text: Raw question text (may be None or empty).

    Returns:
        The parsed number, or None when no pattern matches.

    Example:
        >>> extract_leading_question_number("  23. 다음 중 옳은 것은?")
        23
        >>> extract_leading_question_number("제5문 회로에서")
        5
        >>> extract_leading_question_number("다음 그림에서") is None
        True
    """
    if not text:
        return None
    normalized = text.strip()
    if not normalized:
        return None

    for pattern in LEADING_NUMBER_PATTERNS:
        match = pattern.match(normalized)
        if match:
            return int(match.group(1))
    return None


def starts_with_question_number(line: str) -> bool:
    """True when a line opens a new numbered question."""
    return extract_leading_question_number(line) is not None


def current_max_exam_year(today: Optional[date] = None) -> int:
    return (today or date.today()).year + MAX_YEAR_LOOKAHEAD


def validate_exam_year(value: object, today: Optional[date] = None) -> Optional[str]:
    """
    Validate an exam year.

    Args:
        value: Year as int or numeric string; None/"" counts as missing.
        today: Override for the current date (tests).

    Returns:
        None when valid, otherwise an operator-facing error message.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        return "시험 연도를 입력해주세요."
    if isinstance(value, bool):
        return "시험 연도는 숫자여야 합니다."
    try:
        year = int(str(value).strip())
    except ValueError:
        return "시험 연도는 숫자여야 합니다."

    max_year = current_max_exam_year(today)
    if year < MIN_EXAM_YEAR or year > max_year:
        return f"시험 연도는 {MIN_EXAM_YEAR}년부터 {max_year}년 사이여야 합니다."
    return None


def validate_exam_session(value: object) -> Optional[str]:
    """Validate an exam session (회차). Returns None when valid."""
    if value is None or isinstance(value, bool):
        return "시험 회차를 입력해주세요."
    try:
        session = int(str(value).strip())
    except ValueError:
        return "시험 회차는 숫자여야 합니다."
    if session < MIN_EXAM_SESSION or session > MAX_EXAM_SESSION:
        return f"시험 회차는 {MIN_EXAM_SESSION}회부터 {MAX_EXAM_SESSION}회 사이여야 합니다."
    return None


def extract_year_from_filename(filename: str) -> Optional[int]:
    """
    Detect an exam year embedded in a file name.

    Tries a four-digit 20xx year first, then a delimited two-digit
    year ("_21_", " 21년"), then a two-digit year at either edge.

    Example:
        >>> extract_year_from_filename("전기기사_2021_1회.pdf")
        2021
        >>> extract_year_from_filename("전기기사 21년 2회.pdf")
        2021
    """
    stem = filename.rsplit(".", 1)[0] if "." in filename else filename

    for match in _FOUR_DIGIT_YEAR.finditer(stem):
        year = int(match.group(1))
        if _FILENAME_YEAR_FLOOR <= year <= _FILENAME_YEAR_CEILING:
            return year

    match = _DELIMITED_TWO_DIGIT_YEAR.search(stem + ".")
    if match:
        year = _two_digit_to_year(match.group(1))
        if year is not None:
            return year

    match = _EDGE_TWO_DIGIT_YEAR.search(stem)
    if match:
        return _two_digit_to_year(match.group(1) or match.group(2))
    return None


def _two_digit_to_year(digits: str) -> Optional[int]:
    value = int(digits)
    if 0 <= value <= _FILENAME_YEAR_CEILING - 2000:
        return 2000 + value
    return None
