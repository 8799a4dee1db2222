"""Background metadata enrichment of saved question rows."""

from .normalization import normalize_difficulty, normalize_topic
from .queue import EnrichmentJob, EnrichmentQueue, EnrichmentStats

__all__ = [
    "EnrichmentJob",
    "EnrichmentQueue",
    "EnrichmentStats",
    "normalize_difficulty",
    "normalize_topic",
]
