"""Normalization of enrichment results before they are written back."""

from __future__ import annotations

from typing import Optional, Sequence, Tuple

from qbank_toolkit.core.models import DEFAULT_TOPIC_CATEGORY

DIFFICULTY_HIGH = "상"
DIFFICULTY_MEDIUM = "중"
DIFFICULTY_LOW = "하"


def normalize_difficulty(value: Optional[str]) -> str:
    """
    Map a free-form difficulty onto 상/중/하.

    Unknown or empty values become 중.

    Example:
        >>> normalize_difficulty("Hard"), normalize_difficulty("하"), normalize_difficulty(None)
        ('상', '하', '중')
    """
    raw = (value or "").strip().lower()
    if not raw:
        return DIFFICULTY_MEDIUM
    if DIFFICULTY_HIGH in raw or raw in ("high", "hard"):
        return DIFFICULTY_HIGH
    if DIFFICULTY_LOW in raw or raw in ("low", "easy"):
        return DIFFICULTY_LOW
    return DIFFICULTY_MEDIUM


def normalize_topic(
    category: Optional[str],
    keywords: Sequence[str],
    prior_category: Optional[str] = None,
    prior_keywords: Sequence[str] = (),
) -> Tuple[str, Tuple[str, ...]]:
    """New topic if given, else the prior one, else 기타; same for keywords."""
    resolved = (category or "").strip() or (prior_category or "").strip() or DEFAULT_TOPIC_CATEGORY
    cleaned = tuple(k.strip() for k in keywords if k and k.strip())
    return resolved, cleaned or tuple(prior_keywords)
