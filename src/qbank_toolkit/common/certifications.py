"""
Module: common.certifications

Purpose:
    Static certification data: the subject list of each certification
    and the default subject range template used to prefill a run.

Key Functions:
    - certification_subjects(): Subject names for a certification
    - default_subject_ranges(): Template ranges or an even split

Dependencies:
    - core.models.subjects: SubjectRange

Used By:
    - ingestion.ranges: Default ranges when the caller declares none
    - ingestion.classification: Allowed subjects for normalization
    - cli: Certification choices
"""

from __future__ import annotations

import logging
from typing import Dict, List, Tuple

from qbank_toolkit.core.models.subjects import SubjectRange

logger = logging.getLogger(__name__)

__all__ = [
    "CERTIFICATION_SUBJECTS",
    "CERTIFICATION_RANGE_TEMPLATES",
    "UnknownCertificationError",
    "certification_subjects",
    "default_subject_ranges",
    "supported_certifications",
]

# (name, start_page, end_page, question_start, question_end)
RangeTemplate = Tuple[str, int, int, int, int]

CERTIFICATION_SUBJECTS: Dict[str, List[str]] = {
    "전기기사": [
        "전기자기학",
        "전력공학",
        "전기기기",
        "회로이론 및 제어공학",
        "전기설비기술기준 및 판단기준",
    ],
    "신재생에너지발전설비기사(태양광)": [
        "태양광발전 기획",
        "태양광발전 설계",
        "태양광발전 시공",
        "태양광발전 운영",
    ],
    "소방설비기사(전기)": [
        "소방원론",
        "소방전기 일반",
        "소방관계법규",
        "소방전기시설의 구조 및 원리",
    ],
}

CERTIFICATION_RANGE_TEMPLATES: Dict[str, List[RangeTemplate]] = {
    "전기기사": [
        ("전기자기학", 1, 2, 1, 20),
        ("전력공학", 2, 3, 21, 40),
        ("전기기기", 3, 4, 41, 60),
        ("회로이론 및 제어공학", 4, 5, 61, 80),
        ("전기설비기술기준 및 판단기준", 5, 6, 81, 100),
    ],
    "신재생에너지발전설비기사(태양광)": [
        ("태양광발전 기획", 1, 2, 1, 20),
        ("태양광발전 설계", 2, 3, 21, 40),
        ("태양광발전 시공", 3, 4, 41, 60),
        ("태양광발전 운영", 4, 5, 61, 80),
    ],
    "소방설비기사(전기)": [
        ("소방원론", 1, 2, 1, 20),
        ("소방전기 일반", 2, 3, 21, 40),
        ("소방관계법규", 3, 4, 41, 60),
        ("소방전기시설의 구조 및 원리", 4, 5, 61, 80),
    ],
}

TOTAL_QUESTION_SLOTS = 100
FALLBACK_BLOCK = 20


class UnknownCertificationError(KeyError):
    """Raised when a certification has no subject list."""


def supported_certifications() -> List[str]:
    return list(CERTIFICATION_SUBJECTS)


def certification_subjects(certification: str) -> List[str]:
    """
    Return the subject list of a certification.

    Raises:
        UnknownCertificationError: If the certification is not known.
    """
    try:
        return list(CERTIFICATION_SUBJECTS[certification])
    except KeyError:
        raise UnknownCertificationError(
            f"Unknown certification: {certification!r}. "
            f"Supported: {', '.join(CERTIFICATION_SUBJECTS)}"
        ) from None


def default_subject_ranges(
    certification: str,
    subjects: List[str] | None = None,
) -> List[SubjectRange]:
    """
    Build the default subject ranges for a certification.

    Uses the static template when one exists. Otherwise the question
    slots are split evenly across the subject list
    (``block = 100 // len(subjects)``) and the same numbers are used as
    the page window, which the operator is expected to adjust.

    Args:
        certification: Certification name.
        subjects: Override subject list (skips the template).

    Returns:
        Fresh SubjectRange instances (new ids each call).

    Example:
        >>> [r.name for r in default_subject_ranges("소방설비기사(전기)")][:2]
        ['소방원론', '소방전기 일반']
    """
    if subjects is None and certification in CERTIFICATION_RANGE_TEMPLATES:
        return [
            SubjectRange(name, start_page, end_page, q_start, q_end)
            for name, start_page, end_page, q_start, q_end
            in CERTIFICATION_RANGE_TEMPLATES[certification]
        ]

    names = subjects if subjects is not None else CERTIFICATION_SUBJECTS.get(certification, [])
    if not names:
        logger.warning(f"No subjects known for certification {certification!r}")
        return []

    block = TOTAL_QUESTION_SLOTS // len(names) if names else FALLBACK_BLOCK
    block = max(1, block)
    ranges = []
    for index, name in enumerate(names):
        start = index * block + 1
        end = (index + 1) * block
        ranges.append(SubjectRange(name, start, end, start, end))
    return ranges
