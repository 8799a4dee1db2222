"""
Module: candidates

Purpose:
    Provides the QuestionCandidate dataclass - one multiple-choice question
    returned by the extraction service, carried through filtering,
    classification, review and persistence.

Key Classes:
    - QuestionCandidate: Immutable question record with synthetic identity
    - StructureHints: Structural metadata reported by the extraction service

Key Functions:
    - new_candidate_id(): Synthetic identifier assigned at creation

Dependencies:
    - dataclasses (std)
    - uuid (std)
    - core.models.bounds: DiagramBounds

Used By:
    - ingestion.extraction: Candidate collection and quota enforcement
    - ingestion.classification: Post-processing (returns new instances)
    - core.utils.serialization: Checkpoint artifacts
    - review.reconciliation: Persist and match-back
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Tuple

from qbank_toolkit.common.numbering import extract_leading_question_number

from .bounds import DiagramBounds

logger = logging.getLogger(__name__)

DEFAULT_TOPIC_CATEGORY = "기타"


def new_candidate_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True, slots=True)
class StructureHints:
    """
    Structural signals attached by the extraction service.

    Attributes:
        axes: Axis labels when the question contains a plotted graph
        table_entries: Number of table cells detected
        diagram_info: Free-text description of a detected figure
    """

    axes: Tuple[str, ...] = ()
    table_entries: int = 0
    diagram_info: Optional[str] = None

    @property
    def has_graph_or_table(self) -> bool:
        return bool(self.axes) or self.table_entries > 0

    @property
    def is_empty(self) -> bool:
        return not self.axes and self.table_entries == 0 and not self.diagram_info

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {}
        if self.axes:
            d["axes"] = list(self.axes)
        if self.table_entries:
            d["table_entries"] = self.table_entries
        if self.diagram_info:
            d["diagram_info"] = self.diagram_info
        return d

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> StructureHints:
        if not data:
            return cls()
        axes = data.get("axes") or ()
        entries = data.get("table_entries") or 0
        if isinstance(entries, list):
            entries = len(entries)
        return cls(
            axes=tuple(str(a) for a in axes),
            table_entries=int(entries),
            diagram_info=data.get("diagram_info") or None,
        )


@dataclass(frozen=True)
class QuestionCandidate:
    """
    A multiple-choice question candidate.

    Candidates are immutable: post-processing (subject normalization,
    diagram-flag correction, classification) returns new instances via
    ``with_updates``. The ``candidate_id`` survives every update, so
    quota deduplication and diagram maps are set-of-ID operations.

    Attributes:
        question_text: Question stem, usually starting with its number
        options: Answer choices in display order
        subject: Subject name (normalized against the allowed list)
        answer_index: Zero-based index of the correct option, if known
        year: Exam year reported by the service, if any
        ai_explanation, hint, rationale: Explanatory text
        topic_category: Topic bucket (defaults to "기타")
        topic_keywords: Topic keywords
        difficulty_level: 상/중/하 or None before enrichment
        needs_manual_diagram: A diagram is required but none is attached
        diagram_bounds: Auto-detected or reviewed diagram region
        diagram_url: URL of an uploaded diagram crop
        image_url: URL of the source page preview
        structure: Structural hints from the service
        problem_class: Classifier output (concept, calculation, ...)
        route: Classifier routing (text-llm, diagram-llm, code-verify)
        required_signals: Classifier signals ("diagram", "numeric")
        candidate_id: Synthetic identity, assigned once at creation
    """

    question_text: str
    options: Tuple[str, ...] = ()
    subject: Optional[str] = None
    answer_index: Optional[int] = None
    year: Optional[int] = None
    ai_explanation: Optional[str] = None
    hint: Optional[str] = None
    rationale: Optional[str] = None
    topic_category: str = DEFAULT_TOPIC_CATEGORY
    topic_keywords: Tuple[str, ...] = ()
    difficulty_level: Optional[str] = None
    needs_manual_diagram: bool = False
    diagram_bounds: Optional[DiagramBounds] = None
    diagram_url: Optional[str] = None
    image_url: Optional[str] = None
    structure: StructureHints = field(default_factory=StructureHints)
    problem_class: Optional[str] = None
    route: Optional[str] = None
    required_signals: Tuple[str, ...] = ()
    candidate_id: str = field(default_factory=new_candidate_id)

    def __post_init__(self) -> None:
        if self.answer_index is not None and self.answer_index < 0:
            raise ValueError(f"answer_index must be >= 0: {self.answer_index}")

    # ─────────────────────────────────────────────────────────────────────────
    # Derived values
    # ─────────────────────────────────────────────────────────────────────────

    @property
    def classification_text(self) -> str:
        """Question text plus options, the text keyword rules look at."""
        return f"{self.question_text} {' '.join(self.options)}".strip()

    @property
    def leading_number(self) -> Optional[int]:
        return extract_leading_question_number(self.question_text)

    def with_updates(self, **changes: Any) -> QuestionCandidate:
        """Return a copy with changes applied; candidate_id is preserved."""
        changes.pop("candidate_id", None)
        return replace(self, **changes)

    # ─────────────────────────────────────────────────────────────────────────
    # Serialization
    # ─────────────────────────────────────────────────────────────────────────

    def to_dict(self) -> Dict[str, Any]:
        """Serialize using the camelCase field names of the artifact format."""
        d: Dict[str, Any] = {
            "id": self.candidate_id,
            "subject": self.subject,
            "questionText": self.question_text,
            "options": list(self.options),
            "answerIndex": self.answer_index,
            "topicCategory": self.topic_category,
            "topicKeywords": list(self.topic_keywords),
            "needsManualDiagram": self.needs_manual_diagram,
        }
        optional = {
            "year": self.year,
            "aiExplanation": self.ai_explanation,
            "hint": self.hint,
            "rationale": self.rationale,
            "difficultyLevel": self.difficulty_level,
            "diagramUrl": self.diagram_url,
            "imageUrl": self.image_url,
            "problemClass": self.problem_class,
            "route": self.route,
        }
        d.update({k: v for k, v in optional.items() if v is not None})
        if self.diagram_bounds is not None:
            d["diagramBounds"] = self.diagram_bounds.to_dict()
        if not self.structure.is_empty:
            d["structure"] = self.structure.to_dict()
        if self.required_signals:
            d["requiredSignals"] = list(self.required_signals)
        return d

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> QuestionCandidate:
        """
        Deserialize from a camelCase dict (service response or artifact).

        Malformed diagram bounds are dropped with a debug log rather than
        rejecting the whole candidate.

        Raises:
            ValueError: If questionText is missing or blank.
        """
        text = str(data.get("questionText") or "").strip()
        if not text:
            raise ValueError("questionText is required")

        bounds = None
        raw_bounds = data.get("diagramBounds")
        if raw_bounds:
            try:
                bounds = DiagramBounds.from_dict(raw_bounds)
            except (KeyError, TypeError, ValueError) as e:
                logger.debug(f"Dropping malformed diagram bounds {raw_bounds!r}: {e}")

        answer_index = data.get("answerIndex")
        if answer_index is not None:
            answer_index = int(answer_index)
            if answer_index < 0:
                answer_index = None

        year = data.get("year")
        kwargs: Dict[str, Any] = dict(
            question_text=text,
            options=tuple(str(o) for o in (data.get("options") or [])),
            subject=(str(data["subject"]).strip() or None) if data.get("subject") else None,
            answer_index=answer_index,
            year=int(year) if isinstance(year, (int, float)) or (isinstance(year, str) and year.isdigit()) else None,
            ai_explanation=data.get("aiExplanation"),
            hint=data.get("hint"),
            rationale=data.get("rationale"),
            topic_category=data.get("topicCategory") or DEFAULT_TOPIC_CATEGORY,
            topic_keywords=tuple(str(k) for k in (data.get("topicKeywords") or [])),
            difficulty_level=data.get("difficultyLevel"),
            needs_manual_diagram=bool(data.get("needsManualDiagram", False)),
            diagram_bounds=bounds,
            diagram_url=data.get("diagramUrl"),
            image_url=data.get("imageUrl"),
            structure=StructureHints.from_dict(data.get("structure")),
            problem_class=data.get("problemClass"),
            route=data.get("route"),
            required_signals=tuple(data.get("requiredSignals") or ()),
        )
        if data.get("id"):
            kwargs["candidate_id"] = str(data["id"])
        return cls(**kwargs)


def candidates_from_dicts(items: List[Dict[str, Any]]) -> Tuple[List[QuestionCandidate], List[str]]:
    """
    Parse a list of candidate dicts, skipping malformed entries.

    Returns:
        Tuple of (candidates, warnings) - one warning per skipped entry.
    """
    candidates: List[QuestionCandidate] = []
    warnings: List[str] = []
    for index, item in enumerate(items):
        try:
            candidates.append(QuestionCandidate.from_dict(item))
        except (TypeError, ValueError, AttributeError) as e:
            msg = f"Skipping malformed candidate #{index}: {e}"
            logger.warning(msg, extra={"candidate_index": index, "error": str(e)})
            warnings.append(msg)
    return candidates, warnings
