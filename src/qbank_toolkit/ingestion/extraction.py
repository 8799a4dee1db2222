"""
Module: ingestion.extraction

Purpose:
    Extraction Batch Runner. For one subject range, sends every unit of
    work (page image, page-text chunk or plain-text chunk) to the
    extraction service, post-processes the candidates, applies the range
    predicate and the subject quota, and assembles the
    SubjectProcessingPackage handed to review.

Key Functions:
    - ExtractionBatchRunner.run_subject(): One subject -> SubjectExtraction

Key Classes:
    - SubjectExtraction: Package plus per-subject statistics and warnings
    - ExtractionBatchRunner: Holds the service and per-run settings

Dependencies:
    - fitz (PyMuPDF): Page rendering for text-mode previews
    - PIL: Page images
    - services.base: ExtractionService, ObjectStorage

Used By:
    - ingestion.pipeline: Once per subject range
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from PIL import Image

from qbank_toolkit.core.models import (
    Corpus,
    CorpusMode,
    DiagramAssignment,
    DiagramBounds,
    PageText,
    PreviewImage,
    QuestionCandidate,
    SubjectProcessingPackage,
    SubjectRange,
    TextSegment,
)
from qbank_toolkit.review.bounds_editor import clamp_bounds_to_page
from qbank_toolkit.review.cropper import encode_image_base64
from qbank_toolkit.services.base import ExtractionRequest, ExtractionService, ObjectStorage
from qbank_toolkit.services.object_storage import IMAGES_PREFIX, generate_unique_filename

from .chunking import TextChunk, chunk_pages, chunk_segments
from .classification import locate_page_diagrams, post_process_candidates
from .config import IngestionConfig
from .diagnostics import DiagnosticsCollector
from .errors import ExtractionServiceError, FatalExtractionError
from .pdf_utils import open_pdf, render_page
from .quota import enforce_subject_question_quota, make_range_predicate, subject_question_limit
from .ranges import pages_for_range
from .timing import TimingLog, timed_phase
from .upload_queue import UploadQueue

logger = logging.getLogger(__name__)

Checkpoint = Callable[[], None]


def _no_checkpoint() -> None:
    return None


@dataclass
class SubjectExtraction:
    """
    Result of extracting one subject.

    Attributes:
        package: Final package (may be empty)
        raw_count: Candidates returned by the service before filtering
        units_total: Units of work attempted
        units_failed: Units skipped after a service error
        warnings: Operator-facing messages for skipped units and uploads
    """
    package: SubjectProcessingPackage
    raw_count: int = 0
    units_total: int = 0
    units_failed: int = 0
    warnings: List[str] = field(default_factory=list)


@dataclass
class _UnitOutput:
    """Raw candidates of a subject, with where each one came from."""
    candidates: List[QuestionCandidate] = field(default_factory=list)
    page_of: Dict[str, int] = field(default_factory=dict)  # candidate_id -> page index
    units_total: int = 0
    units_failed: int = 0
    warnings: List[str] = field(default_factory=list)


class ExtractionBatchRunner:
    """
    Runs extraction for subject ranges against one corpus.

    Args:
        service: Extraction service.
        config: Ingestion settings (chunk budgets, DPI, quota).
        storage: Preview upload target; previews stay in memory if None.
        allowed_subjects: Certification subject list for normalization.
        diagnostics: Collector for skipped units and failed uploads.
        timing: Timing log for per-subject phases.
        checkpoint: Called before every unit; blocks while paused and
            raises RunCancelled once cancellation is requested.
    """

    def __init__(
        self,
        service: ExtractionService,
        *,
        config: Optional[IngestionConfig] = None,
        storage: Optional[ObjectStorage] = None,
        allowed_subjects: Sequence[str] = (),
        diagnostics: Optional[DiagnosticsCollector] = None,
        timing: Optional[TimingLog] = None,
        checkpoint: Optional[Checkpoint] = None,
    ):
        self.service = service
        self.config = config or IngestionConfig()
        self.storage = storage
        self.allowed_subjects = tuple(allowed_subjects)
        self.diagnostics = diagnostics or DiagnosticsCollector()
        self.timing = timing or TimingLog()
        self.checkpoint = checkpoint or _no_checkpoint
        # page index -> preview URL, shared by every subject of the run
        self._preview_urls: Dict[int, str] = {}

    # ─────────────────────────────────────────────────────────────────────────
    # Public API
    # ─────────────────────────────────────────────────────────────────────────

    def run_subject(
        self,
        corpus: Corpus,
        subject_range: SubjectRange,
        *,
        single_subject: bool = False,
    ) -> SubjectExtraction:
        """
        Extract, filter and package one subject.

        Raises:
            FatalExtractionError: Page-text corpus with no text anywhere in
                the subject's window.
            RunCancelled: Propagated from the checkpoint callback.
        """
        subject = subject_range.name
        logger.info(
            f"Extracting {subject} ({corpus.mode.value}, pages {subject_range.start_page}-"
            f"{subject_range.end_page}, questions {subject_range.question_start}-{subject_range.question_end})",
            extra={"subject": subject},
        )

        located: Dict[int, Tuple[int, DiagramBounds]] = {}
        window_pages: List[PageText] = []
        with timed_phase(self.timing, "extraction", subject=subject):
            if corpus.mode is CorpusMode.IMAGES:
                output = self._extract_images(corpus, subject_range)
            elif corpus.mode is CorpusMode.PAGE_TEXT:
                window_pages = [p for p in (corpus.page(n) for n in pages_for_range(corpus, subject_range)) if p]
                located = self._locate_window_diagrams(window_pages)
                output = self._extract_page_text(window_pages, subject_range, located)
            else:
                output = self._extract_plain_text(corpus.segments, subject_range, single_subject)

        predicate = make_range_predicate(subject_range, single_subject=single_subject)
        primary = [c for c in output.candidates if predicate(c)]
        limit = subject_question_limit(
            subject_range,
            single_subject=single_subject,
            subject_quota=self.config.subject_quota,
        )
        final = enforce_subject_question_quota(primary, output.candidates, limit, predicate)
        if single_subject:
            final = [c if c.subject == subject else c.with_updates(subject=subject) for c in final]
        logger.info(
            f"{subject}: {len(output.candidates)} raw, {len(primary)} in range, {len(final)} kept (limit {limit})",
            extra={"subject": subject, "raw": len(output.candidates), "kept": len(final)},
        )

        if corpus.mode is CorpusMode.PAGE_TEXT:
            self._assign_text_pages(corpus, final, window_pages, located, output.page_of)

        with timed_phase(self.timing, "previews", subject=subject):
            package, upload_warnings = self._build_package(corpus, subject_range, final, output.page_of)

        return SubjectExtraction(
            package=package,
            raw_count=len(output.candidates),
            units_total=output.units_total,
            units_failed=output.units_failed,
            warnings=output.warnings + upload_warnings,
        )

    # ─────────────────────────────────────────────────────────────────────────
    # Units of work
    # ─────────────────────────────────────────────────────────────────────────

    def _call_service(
        self,
        output: _UnitOutput,
        subject: str,
        unit_label: str,
        request: ExtractionRequest,
        located_bounds: Optional[Dict[int, DiagramBounds]] = None,
    ) -> List[QuestionCandidate]:
        """One extraction call; a service error skips the unit."""
        output.units_total += 1
        try:
            raw = self.service.extract_questions(request)
        except ExtractionServiceError as e:
            output.units_failed += 1
            message = f"{subject} {unit_label} 추출 실패: {e.diagnostic}"
            logger.warning(message, extra={"subject": subject, "unit": unit_label})
            output.warnings.append(message)
            self.diagnostics.add_unit_failure(subject, unit_label, e.diagnostic)
            return []

        processed = post_process_candidates(
            raw,
            allowed_subjects=self.allowed_subjects,
            subject_hint=subject,
            located_bounds=located_bounds,
        )
        output.candidates.extend(processed)
        logger.debug(f"{subject} {unit_label}: {len(processed)} candidate(s)")
        return processed

    def _extract_images(self, corpus: Corpus, subject_range: SubjectRange) -> _UnitOutput:
        output = _UnitOutput()
        for page_number in pages_for_range(corpus, subject_range):
            self.checkpoint()
            page = corpus.images[page_number - 1]
            request = ExtractionRequest(
                images=(("image/jpeg", encode_image_base64(page.image)),),
                subject_hint=subject_range.name,
                allowed_subjects=self.allowed_subjects,
            )
            for candidate in self._call_service(output, subject_range.name, f"page {page_number}", request):
                output.page_of[candidate.candidate_id] = page.page_index
        return output

    def _extract_page_text(
        self,
        pages: Sequence[PageText],
        subject_range: SubjectRange,
        located: Dict[int, Tuple[int, DiagramBounds]],
    ) -> _UnitOutput:
        if not pages:
            message = f"{subject_range.name}: 페이지 범위가 문서 밖에 있어 건너뜁니다."
            logger.warning(message, extra={"subject": subject_range.name})
            return _UnitOutput(warnings=[message])
        if not any(page.has_text for page in pages):
            raise FatalExtractionError(
                f"{subject_range.name}: PDF에서 텍스트를 추출하지 못했습니다. "
                "텍스트 레이어가 없는 PDF는 현재 처리할 수 없습니다."
            )
        output = _UnitOutput()
        located_bounds = {number: bounds for number, (_, bounds) in located.items()}
        for chunk in chunk_pages(pages, self.config.subject_text_chunk_chars):
            self.checkpoint()
            self._call_service(
                output,
                subject_range.name,
                _chunk_label("pages", chunk),
                ExtractionRequest(
                    text=chunk.text,
                    subject_hint=subject_range.name,
                    allowed_subjects=self.allowed_subjects,
                ),
                located_bounds=located_bounds,
            )
        return output

    def _extract_plain_text(
        self,
        segments: Sequence[TextSegment],
        subject_range: SubjectRange,
        single_subject: bool,
    ) -> _UnitOutput:
        selected = [
            segment
            for segment in segments
            if single_subject
            or segment.leading_number is None
            or subject_range.contains_question(segment.leading_number)
        ]
        output = _UnitOutput()
        for chunk in chunk_segments(selected, self.config.plain_text_chunk_chars):
            self.checkpoint()
            self._call_service(
                output,
                subject_range.name,
                _chunk_label("segments", chunk),
                ExtractionRequest(
                    text=chunk.text,
                    subject_hint=subject_range.name,
                    allowed_subjects=self.allowed_subjects,
                ),
            )
        return output

    # ─────────────────────────────────────────────────────────────────────────
    # Page mapping and previews
    # ─────────────────────────────────────────────────────────────────────────

    def _locate_window_diagrams(self, pages: Sequence[PageText]) -> Dict[int, Tuple[int, DiagramBounds]]:
        """Question number -> (page index, bounds in rendered pixels); first page wins."""
        scale = self.config.render_dpi / 72.0
        located: Dict[int, Tuple[int, DiagramBounds]] = {}
        for page in pages:
            for number, bounds in locate_page_diagrams(page, scale).items():
                located.setdefault(number, (page.page_number - 1, bounds))
        return located

    @staticmethod
    def _assign_text_pages(
        corpus: Corpus,
        questions: Sequence[QuestionCandidate],
        window_pages: Sequence[PageText],
        located: Dict[int, Tuple[int, DiagramBounds]],
        page_of: Dict[str, int],
    ) -> None:
        """Page of each question: locator page, then first anchor page, then window start."""
        if not window_pages:
            return
        lookup = corpus.question_page_lookup()
        fallback = window_pages[0].page_number - 1
        for question in questions:
            number = question.leading_number
            if number is not None and number in located and question.diagram_bounds == located[number][1]:
                page_of[question.candidate_id] = located[number][0]
            elif number is not None and number in lookup:
                page_of[question.candidate_id] = lookup[number] - 1
            else:
                page_of[question.candidate_id] = fallback

    def _build_package(
        self,
        corpus: Corpus,
        subject_range: SubjectRange,
        questions: List[QuestionCandidate],
        page_of: Dict[str, int],
    ) -> Tuple[SubjectProcessingPackage, List[str]]:
        question_page_map = {
            index: page_of[question.candidate_id]
            for index, question in enumerate(questions)
            if question.candidate_id in page_of
        }

        # Pages worth previewing: diagram boxes and questions awaiting a manual diagram
        needed: Set[int] = set()
        for index, question in enumerate(questions):
            if index in question_page_map and (question.diagram_bounds is not None or question.needs_manual_diagram):
                needed.add(question_page_map[index])

        page_images = self._page_images(corpus, sorted(needed))
        urls, warnings = self._upload_previews(subject_range.name, page_images)
        previews = tuple(
            PreviewImage(
                page_index=page_index,
                width=image.width,
                height=image.height,
                url=urls.get(page_index),
                image=image,
            )
            for page_index, image in sorted(page_images.items())
        )

        assignments: Dict[int, DiagramAssignment] = {}
        for index, question in enumerate(questions):
            page_index = question_page_map.get(index)
            if question.diagram_bounds is None or page_index is None or page_index not in page_images:
                continue
            image = page_images[page_index]
            assignments[index] = DiagramAssignment(
                question_index=index,
                page_index=page_index,
                bounds=clamp_bounds_to_page(
                    question.diagram_bounds,
                    (image.width, image.height),
                    self.config.min_crop_size,
                ),
            )
            if urls.get(page_index) and not question.image_url:
                questions[index] = question.with_updates(image_url=urls[page_index])

        package = SubjectProcessingPackage(
            subject_name=subject_range.name,
            questions=tuple(questions),
            question_page_map=question_page_map,
            diagram_assignments=assignments,
            preview_images=previews,
            subject_range=subject_range,
        )
        return package, warnings

    def _page_images(self, corpus: Corpus, page_indexes: Iterable[int]) -> Dict[int, Image.Image]:
        """In-memory images of pages (rendered from the PDF in page-text mode)."""
        images: Dict[int, Image.Image] = {}
        page_indexes = list(page_indexes)
        if not page_indexes:
            return images
        if corpus.mode is CorpusMode.IMAGES:
            for page_index in page_indexes:
                images[page_index] = corpus.images[page_index].image
            return images
        if corpus.mode is not CorpusMode.PAGE_TEXT:
            return images

        by_source: Dict[int, List[PageText]] = defaultdict(list)
        for page_index in page_indexes:
            page = corpus.page(page_index + 1)
            if page is not None:
                by_source[page.source_index].append(page)
        for source_index, pages in by_source.items():
            with open_pdf(corpus.sources[source_index].content) as doc:
                for page in pages:
                    images[page.page_number - 1] = render_page(doc[page.local_page - 1], self.config.render_dpi)
        return images

    def _upload_previews(self, subject: str, page_images: Dict[int, Image.Image]) -> Tuple[Dict[int, str], List[str]]:
        """Upload pages not yet uploaded in this run; returns URLs for every requested page."""
        if self.storage is None or not page_images:
            return {}, []
        warnings: List[str] = []
        pending = {i: image for i, image in page_images.items() if i not in self._preview_urls}
        with UploadQueue(self.storage, max_workers=self.config.upload_concurrency) as queue:
            for page_index, image in pending.items():
                queue.queue_upload(
                    page_index,
                    encode_image_base64(image),
                    generate_unique_filename("jpg", IMAGES_PREFIX),
                )
            urls = queue.wait_all()
        for page_index, error in queue.failures.items():
            message = f"{subject} page {page_index + 1} 미리보기 업로드 실패: {error}"
            warnings.append(message)
            self.diagnostics.add_upload_failure(subject, f"page {page_index + 1}", error)
        self._preview_urls.update({int(k): v for k, v in urls.items()})
        cached = {i: self._preview_urls[i] for i in page_images if i in self._preview_urls}
        if len(pending) < len(page_images):
            logger.debug(
                f"{subject}: reused {len(page_images) - len(pending)} uploaded preview(s)",
                extra={"subject": subject},
            )
        return cached, warnings


def _chunk_label(kind: str, chunk: TextChunk) -> str:
    if chunk.first_unit == chunk.last_unit:
        return f"{kind} {chunk.first_unit}"
    return f"{kind} {chunk.first_unit}-{chunk.last_unit}"
