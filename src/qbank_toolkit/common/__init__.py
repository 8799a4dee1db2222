"""
Common helpers shared across ingestion, review and enrichment:
question-number parsing, exam identity validation and logging setup.
Certification data lives in ``common.certifications``.
"""

from .numbering import (
    extract_leading_question_number,
    extract_year_from_filename,
    validate_exam_session,
    validate_exam_year,
)

__all__ = [
    "extract_leading_question_number",
    "extract_year_from_filename",
    "validate_exam_session",
    "validate_exam_year",
]
