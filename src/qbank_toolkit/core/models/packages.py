"""
Module: packages

Purpose:
    Models handed from extraction to the review/save stage: diagram
    assignments, preview images, the per-subject processing package and
    the exam identity that qualifies every persisted record.

Key Classes:
    - DiagramAssignment: Question position -> page index + pixel bounds
    - PreviewImage: A page image offered for review
    - SubjectProcessingPackage: Final per-subject question set
    - ExamIdentity: Certification, exam year and exam session

Dependencies:
    - dataclasses (std)
    - core.models.bounds, core.models.candidates, core.models.subjects

Used By:
    - ingestion.extraction: Builds packages
    - ingestion.session: Holds the active package
    - review.reconciliation: Crops, uploads and matches assignments
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, List, Mapping, Optional, Tuple

from qbank_toolkit.common.numbering import validate_exam_session, validate_exam_year

from .bounds import DiagramBounds
from .candidates import QuestionCandidate
from .subjects import SubjectRange

if TYPE_CHECKING:
    from PIL import Image


@dataclass(frozen=True, slots=True)
class DiagramAssignment:
    """
    Where a question's diagram lives.

    Attributes:
        question_index: Position of the question in the package
        page_index: Zero-based absolute page index of the source image
        bounds: Pixel region in the untransformed page image
    """

    question_index: int
    page_index: int
    bounds: DiagramBounds

    def __post_init__(self) -> None:
        if self.question_index < 0:
            raise ValueError(f"question_index must be >= 0: {self.question_index}")
        if self.page_index < 0:
            raise ValueError(f"page_index must be >= 0: {self.page_index}")


@dataclass(frozen=True, eq=False)
class PreviewImage:
    """
    A page offered for diagram review.

    Attributes:
        page_index: Zero-based absolute page index
        width, height: Natural pixel size of the page image
        url: Uploaded preview URL, if uploaded
        image: In-memory page image used for cropping
    """

    page_index: int
    width: int
    height: int
    url: Optional[str] = None
    image: Optional[Image.Image] = field(default=None, repr=False)

    @property
    def natural_size(self) -> Tuple[int, int]:
        return self.width, self.height


@dataclass(frozen=True)
class SubjectProcessingPackage:
    """
    The final question set for one subject, ready for review and save.

    Packages are replaced wholesale: review edits produce a new package
    through ``with_assignments`` / ``with_questions``.

    Attributes:
        subject_name: Subject the questions belong to
        questions: Final ordered questions (quota already enforced)
        question_page_map: Question position -> zero-based page index
        diagram_assignments: Question position -> DiagramAssignment
        preview_images: Page images referenced by the assignments
        subject_range: Window the package was extracted from
    """

    subject_name: str
    questions: Tuple[QuestionCandidate, ...] = ()
    question_page_map: Mapping[int, int] = field(default_factory=dict)
    diagram_assignments: Mapping[int, DiagramAssignment] = field(default_factory=dict)
    preview_images: Tuple[PreviewImage, ...] = ()
    subject_range: Optional[SubjectRange] = None

    def __post_init__(self) -> None:
        count = len(self.questions)
        for index, assignment in self.diagram_assignments.items():
            if not 0 <= index < count:
                raise ValueError(f"diagram assignment index out of range: {index}")
            if assignment.question_index != index:
                raise ValueError(
                    f"assignment key {index} != question_index {assignment.question_index}"
                )

    @property
    def is_empty(self) -> bool:
        return not self.questions

    @property
    def has_diagrams(self) -> bool:
        return bool(self.diagram_assignments)

    def outstanding_manual_diagrams(self) -> List[int]:
        """Positions that need a diagram and have neither an assignment nor a URL."""
        return [
            index
            for index, question in enumerate(self.questions)
            if question.needs_manual_diagram
            and index not in self.diagram_assignments
            and not question.diagram_url
        ]

    def preview_for_page(self, page_index: int) -> Optional[PreviewImage]:
        for preview in self.preview_images:
            if preview.page_index == page_index:
                return preview
        return None

    def with_assignments(self, assignments: Mapping[int, DiagramAssignment]) -> SubjectProcessingPackage:
        return replace(self, diagram_assignments=dict(assignments))

    def with_questions(self, questions: Tuple[QuestionCandidate, ...]) -> SubjectProcessingPackage:
        if len(questions) != len(self.questions):
            raise ValueError("question count must not change during review")
        return replace(self, questions=tuple(questions))


@dataclass(frozen=True, slots=True)
class ExamIdentity:
    """
    Scalar identity fields required before any persistence write.

    Attributes:
        certification: Certification name (e.g. "전기기사")
        year: Exam year
        session: Exam session (회차)
    """

    certification: str
    year: Optional[int] = None
    session: Optional[int] = None

    def validation_errors(self) -> List[str]:
        errors = []
        year_error = validate_exam_year(self.year)
        if year_error:
            errors.append(year_error)
        session_error = validate_exam_session(self.session)
        if session_error:
            errors.append(session_error)
        return errors

    @property
    def is_valid(self) -> bool:
        return not self.validation_errors()

    @property
    def has_valid_year(self) -> bool:
        return validate_exam_year(self.year) is None
