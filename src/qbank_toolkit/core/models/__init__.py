"""
Core Models Package

Immutable, validated data models shared by ingestion, review and
enrichment. Post-processing returns new instances; question identity
is the synthetic ``candidate_id`` assigned at creation.
"""

from .bounds import DiagramBounds
from .candidates import DEFAULT_TOPIC_CATEGORY, QuestionCandidate, StructureHints
from .packages import DiagramAssignment, ExamIdentity, PreviewImage, SubjectProcessingPackage
from .sources import (
    Corpus,
    CorpusMode,
    EmbeddedImage,
    PageImage,
    PageText,
    QuestionAnchor,
    SourceFile,
    SourceKind,
    TextSegment,
)
from .subjects import SubjectRange, SubjectSegment

__all__ = [
    "Corpus",
    "CorpusMode",
    "DEFAULT_TOPIC_CATEGORY",
    "DiagramAssignment",
    "DiagramBounds",
    "EmbeddedImage",
    "ExamIdentity",
    "PageImage",
    "PageText",
    "PreviewImage",
    "QuestionAnchor",
    "QuestionCandidate",
    "SourceFile",
    "SourceKind",
    "StructureHints",
    "SubjectProcessingPackage",
    "SubjectRange",
    "SubjectSegment",
    "TextSegment",
]
