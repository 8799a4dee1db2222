"""
Module: ingestion.classification

Purpose:
    Diagram Classifier & Locator. Post-processes extracted candidates:
    subject normalization, false-positive diagram suppression, rule-based
    problem classification (which decides whether a diagram is
    structurally required) and locating embedded diagrams on text pages.

Key Functions:
    - normalize_subject_name(): Map a reported subject onto the allowed list
    - suppress_false_positive_diagrams(): Keyword gate on auto-detected boxes
    - classify_problem(): Ordered rules -> problem class + route
    - apply_classification(): Attach class/route and the manual-diagram flag
    - post_process_candidates(): All of the above, in order
    - locate_page_diagrams(): Embedded image -> question by anchor window

Dependencies:
    - re (std)
    - core.models: QuestionCandidate, DiagramBounds, PageText

Used By:
    - ingestion.extraction: Applied to every unit's candidates
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

from qbank_toolkit.core.models import DiagramBounds, PageText, QuestionCandidate

logger = logging.getLogger(__name__)

DIAGRAM_KEYWORDS: Tuple[str, ...] = ("그림", "회로", "회로도", "결선", "배선", "도면", "도식")
GRAPH_TABLE_KEYWORDS: Tuple[str, ...] = ("그래프", "곡선", "도표", "표", "좌표", "축", "눈금", "스케일")
DEFINITION_HINTS: Tuple[str, ...] = (
    "옳은 것은",
    "옳지 않은 것은",
    "틀린 것은",
    "맞는 것은",
    "가장 적절",
    "정의",
    "설명",
    "의미",
)
# Only these phrases confirm that an auto-detected box is a real figure
SUPPRESSION_KEYWORDS: Tuple[str, ...] = ("그림", "다음 그림", "아래 그림", "회로도", "결선도")

NUMERIC_UNIT_PATTERN = re.compile(
    r"[0-9][0-9.,]*\s?(V|A|W|kW|kV|mA|mV|Ω|ohm|Hz|N|Pa|kPa|MPa|mm|cm|m|kg|g|s|ms|%|볼트|암페어|와트|옴|헤르츠)",
    re.IGNORECASE,
)


class ProblemClass(str, Enum):
    TABLE_GRAPH = "table_graph"
    DIAGRAM = "diagram"
    CALCULATION = "calculation"
    DEFINITION = "definition"
    CONCEPT = "concept"


class Route(str, Enum):
    DIAGRAM_LLM = "diagram-llm"
    CODE_VERIFY = "code-verify"
    TEXT_LLM = "text-llm"


@dataclass(frozen=True, slots=True)
class ClassificationResult:
    problem_class: ProblemClass
    route: Route
    required_signals: Tuple[str, ...]

    @property
    def requires_diagram(self) -> bool:
        return self.problem_class in (ProblemClass.TABLE_GRAPH, ProblemClass.DIAGRAM)


def _contains_any(text: str, keywords: Sequence[str]) -> bool:
    return any(keyword in text for keyword in keywords)


# ─────────────────────────────────────────────────────────────────────────────
# Subject normalization
# ─────────────────────────────────────────────────────────────────────────────

def _comparable(value: str) -> str:
    return re.sub(r"\s+", "", value).lower()


def normalize_subject_name(
    name: Optional[str],
    allowed: Sequence[str],
    fallback: Optional[str] = None,
) -> Optional[str]:
    """
    Map a subject reported by the service onto the allowed list.

    Exact (whitespace/case-insensitive) match first, then containment in
    either direction, then the fallback hint, then the first allowed name.
    With no allowed list the name (or fallback) is returned unchanged.

    Example:
        >>> normalize_subject_name("전력 공학", ["전기자기학", "전력공학"])
        '전력공학'
    """
    if not allowed:
        return (name or "").strip() or fallback
    if name:
        target = _comparable(name)
        for subject in allowed:
            if _comparable(subject) == target:
                return subject
        if target:
            for subject in allowed:
                candidate = _comparable(subject)
                if candidate in target or target in candidate:
                    return subject
    if fallback:
        return fallback
    return allowed[0]


# ─────────────────────────────────────────────────────────────────────────────
# Diagram flags
# ─────────────────────────────────────────────────────────────────────────────

def suppress_false_positive_diagrams(candidate: QuestionCandidate) -> QuestionCandidate:
    """
    Reconcile auto-detected boxes with the question's wording.

    - A box without any figure phrase in the text is dropped.
    - A figure phrase without a box forces needs_manual_diagram.
    """
    has_keyword = _contains_any(candidate.classification_text, SUPPRESSION_KEYWORDS)
    if candidate.diagram_bounds is not None and not has_keyword:
        logger.debug(
            f"Dropping diagram box without figure wording: {candidate.question_text[:40]!r}",
            extra={"candidate_id": candidate.candidate_id},
        )
        return candidate.with_updates(diagram_bounds=None)
    if candidate.diagram_bounds is None and has_keyword and not candidate.diagram_url:
        return candidate.with_updates(needs_manual_diagram=True)
    return candidate


def classify_problem(candidate: QuestionCandidate) -> ClassificationResult:
    """
    Classify a question with ordered rules.

    1. axes/table entries or graph/table keywords -> table_graph, diagram-llm
    2. bounding box, diagram description or diagram keywords -> diagram, diagram-llm
    3. numeric value with unit -> calculation, code-verify
    4. definitional phrasing -> definition, text-llm
    5. otherwise -> concept, text-llm
    """
    text = candidate.classification_text
    structure = candidate.structure
    has_numeric = NUMERIC_UNIT_PATTERN.search(text) is not None

    if structure.has_graph_or_table or _contains_any(text, GRAPH_TABLE_KEYWORDS):
        problem_class, route = ProblemClass.TABLE_GRAPH, Route.DIAGRAM_LLM
    elif (
        candidate.diagram_bounds is not None
        or structure.diagram_info
        or _contains_any(text, DIAGRAM_KEYWORDS)
    ):
        problem_class, route = ProblemClass.DIAGRAM, Route.DIAGRAM_LLM
    elif has_numeric:
        problem_class, route = ProblemClass.CALCULATION, Route.CODE_VERIFY
    elif _contains_any(text, DEFINITION_HINTS):
        problem_class, route = ProblemClass.DEFINITION, Route.TEXT_LLM
    else:
        problem_class, route = ProblemClass.CONCEPT, Route.TEXT_LLM

    signals: List[str] = []
    if problem_class in (ProblemClass.TABLE_GRAPH, ProblemClass.DIAGRAM):
        signals.append("diagram")
    if has_numeric:
        signals.append("numeric")
    return ClassificationResult(problem_class, route, tuple(signals))


def apply_classification(candidate: QuestionCandidate) -> QuestionCandidate:
    """Attach class, route, signals and the manual-diagram flag."""
    result = classify_problem(candidate)
    needs_manual = candidate.needs_manual_diagram or (
        result.requires_diagram
        and candidate.diagram_bounds is None
        and not candidate.diagram_url
    )
    return candidate.with_updates(
        problem_class=result.problem_class.value,
        route=result.route.value,
        required_signals=result.required_signals,
        needs_manual_diagram=needs_manual,
    )


def post_process_candidates(
    candidates: Sequence[QuestionCandidate],
    *,
    allowed_subjects: Sequence[str] = (),
    subject_hint: Optional[str] = None,
    located_bounds: Optional[Dict[int, DiagramBounds]] = None,
) -> List[QuestionCandidate]:
    """
    Run the full post-processing chain on one unit's candidates.

    Args:
        candidates: Raw candidates from the service.
        allowed_subjects: Subject list of the certification.
        subject_hint: Subject being processed (normalization fallback).
        located_bounds: Question number -> bounds found on the page by
            locate_page_diagrams(); attached to candidates without a box
            after suppression.
    """
    processed: List[QuestionCandidate] = []
    for candidate in candidates:
        subject = normalize_subject_name(candidate.subject or subject_hint, allowed_subjects, subject_hint)
        candidate = candidate.with_updates(subject=subject)
        candidate = suppress_false_positive_diagrams(candidate)
        if located_bounds and candidate.diagram_bounds is None:
            number = candidate.leading_number
            if number is not None and number in located_bounds:
                candidate = candidate.with_updates(
                    diagram_bounds=located_bounds[number],
                    needs_manual_diagram=False,
                )
        processed.append(apply_classification(candidate))
    return processed


# ─────────────────────────────────────────────────────────────────────────────
# Locator
# ─────────────────────────────────────────────────────────────────────────────

def locate_page_diagrams(page: PageText, scale: float = 1.0) -> Dict[int, DiagramBounds]:
    """
    Assign embedded images on a text page to numbered questions.

    Each anchor owns the vertical window from its own y to the next
    anchor's y (the last anchor runs to the page bottom). An image
    belongs to the anchor whose window contains its vertical centre;
    the first image per question wins.

    Args:
        page: Page with anchors and embedded images (PDF points).
        scale: Points -> rendered pixels factor (dpi / 72).

    Returns:
        Question number -> bounds in rendered-page pixels.
    """
    located: Dict[int, DiagramBounds] = {}
    if not page.anchors or not page.images:
        return located

    anchors = sorted(page.anchors, key=lambda a: a.y)
    page_bottom = page.height_pt or float("inf")
    for image in page.images:
        center = image.center_y
        for index, anchor in enumerate(anchors):
            window_end = anchors[index + 1].y if index + 1 < len(anchors) else page_bottom
            if anchor.y <= center < window_end:
                if anchor.number not in located:
                    bounds = DiagramBounds(
                        x=image.x0,
                        y=image.y0,
                        width=image.x1 - image.x0,
                        height=image.y1 - image.y0,
                    )
                    located[anchor.number] = bounds.scaled(scale)
                break
    return located
