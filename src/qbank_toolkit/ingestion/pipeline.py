"""
Module: ingestion.pipeline

Purpose:
    Main orchestrator of an ingestion run. Validates the inputs, builds
    the corpus, resolves the subject ranges and then, per subject:
    extract -> (diagram review) -> save gate -> persist -> checkpoint
    artifact -> reconcile diagrams -> enqueue enrichment.

Key Functions:
    - run_ingestion(): Convenience wrapper around IngestionPipeline.run

Key Classes:
    - IngestionRequest: Uploads, exam identity and subject ranges
    - SubjectOutcome: What happened to one subject
    - IngestionResult: Container for run output
    - IngestionPipeline: Wires services, session and enrichment queue

Dependencies:
    - ingestion.*: Corpus, ranges, extraction, session
    - review.reconciliation: Persist and diagram matching
    - enrichment.queue: Background metadata enrichment

Used By:
    - cli: `qbank-ingest run`
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import List, Optional, Sequence

from qbank_toolkit.common.certifications import UnknownCertificationError, certification_subjects
from qbank_toolkit.common.numbering import extract_year_from_filename, validate_exam_year
from qbank_toolkit.core.models import ExamIdentity, SubjectProcessingPackage, SubjectRange
from qbank_toolkit.core.utils.serialization import build_checkpoint, save_checkpoint
from qbank_toolkit.enrichment.queue import EnrichmentJob, EnrichmentQueue
from qbank_toolkit.review.reconciliation import MatchReport, persist_package, reconcile_diagrams
from qbank_toolkit.services.base import ExtractionService, ObjectStorage, QuestionStore

from .config import IngestionConfig
from .corpus import build_corpus
from .diagnostics import DiagnosticsCollector, DiagnosticsReport
from .errors import FatalExtractionError, PersistenceError, RunCancelled
from .extraction import ExtractionBatchRunner
from .ranges import resolve_processing_ranges
from .session import ProcessingSession, SessionState, StateListener
from .timing import TimingLog, timed_phase
from .validation import Upload, validate_exam_identity, validate_source_files, validate_subject_ranges

logger = logging.getLogger(__name__)


@dataclass
class IngestionRequest:
    """
    Inputs of one run.

    Attributes:
        uploads: (name, bytes, mime_type) per file, in upload order
        identity: Certification, exam year and session
        subject_ranges: Declared windows (multi-subject runs)
        selected_subject: Pinned subject; ranges are then synthesized
    """
    uploads: Sequence[Upload]
    identity: ExamIdentity
    subject_ranges: Sequence[SubjectRange] = ()
    selected_subject: Optional[str] = None


@dataclass
class SubjectOutcome:
    subject: str
    question_count: int = 0
    record_ids: List[int] = field(default_factory=list)
    saved: bool = False
    skipped: bool = False
    match_report: Optional[MatchReport] = None
    checkpoint_path: Optional[Path] = None
    warnings: List[str] = field(default_factory=list)


@dataclass
class IngestionResult:
    """
    Container for run output.

    Attributes:
        state: Terminal session state (completed, cancelled or failed)
        subjects: Outcome per processed subject, in order
        warnings: Every non-fatal warning of the run
        error: Fatal error message, if the run failed
        timing: Per-phase timing
        diagnostics: Collected issues
    """
    state: SessionState
    subjects: List[SubjectOutcome] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    error: Optional[str] = None
    timing: TimingLog = field(default_factory=TimingLog)
    diagnostics: Optional[DiagnosticsReport] = None

    @property
    def saved_question_count(self) -> int:
        return sum(len(outcome.record_ids) for outcome in self.subjects)

    @property
    def completed_subjects(self) -> List[str]:
        return [o.subject for o in self.subjects if o.saved or o.skipped]


class IngestionPipeline:
    """
    One ingestion run over a set of uploads.

    Args:
        extraction_service: Question extraction.
        storage: Object storage for previews and diagram crops.
        store: Question store.
        config: Ingestion settings.
        enrichment: Queue receiving each saved batch (optional).
        session: Session to drive; a new one is created when omitted.
        on_state_change: Listener for a session created here.
    """

    def __init__(
        self,
        extraction_service: ExtractionService,
        storage: ObjectStorage,
        store: QuestionStore,
        *,
        config: Optional[IngestionConfig] = None,
        enrichment: Optional[EnrichmentQueue] = None,
        session: Optional[ProcessingSession] = None,
        on_state_change: Optional[StateListener] = None,
    ):
        self.extraction_service = extraction_service
        self.storage = storage
        self.store = store
        self.config = config or IngestionConfig()
        self.enrichment = enrichment
        self.session = session or ProcessingSession(
            poll_interval=self.config.poll_interval_seconds,
            min_crop_size=self.config.min_crop_size,
            on_state_change=on_state_change,
        )
        self.timing = TimingLog()
        self.diagnostics = DiagnosticsCollector()

    # ─────────────────────────────────────────────────────────────────────────
    # Input validation
    # ─────────────────────────────────────────────────────────────────────────

    @staticmethod
    def resolve_identity(request: IngestionRequest) -> ExamIdentity:
        """
        Validate the exam identity, detecting the year from file names if absent.

        A missing year does not block the run; saving waits until the
        operator supplies one.

        Raises:
            InputValidationError: Invalid session or invalid given year.
        """
        identity = request.identity
        if identity.year is None:
            for name, _, _ in request.uploads:
                detected = extract_year_from_filename(name)
                if detected is not None and validate_exam_year(detected) is None:
                    logger.info(f"Exam year {detected} detected from {name}")
                    identity = replace(identity, year=detected)
                    break
        validate_exam_identity(identity, require_year=False)
        return identity

    # ─────────────────────────────────────────────────────────────────────────
    # Run
    # ─────────────────────────────────────────────────────────────────────────

    def run(self, request: IngestionRequest) -> IngestionResult:
        """
        Execute a run to a terminal state.

        Raises:
            InputValidationError: Before anything starts; no state changes.
        """
        sources = validate_source_files(request.uploads, self.config)
        validate_subject_ranges(request.subject_ranges, selected_subject=request.selected_subject)
        identity = self.resolve_identity(request)
        self.session.set_exam_identity(identity)

        with timed_phase(self.timing, "corpus_build"):
            corpus = build_corpus(sources)
        ranges = resolve_processing_ranges(
            corpus,
            request.subject_ranges,
            selected_subject=request.selected_subject,
            subject_quota=self.config.subject_quota,
        )
        single_subject = bool(request.selected_subject)

        try:
            allowed_subjects = certification_subjects(identity.certification)
        except UnknownCertificationError:
            allowed_subjects = [r.name for r in ranges]

        runner = ExtractionBatchRunner(
            self.extraction_service,
            config=self.config,
            storage=self.storage,
            allowed_subjects=allowed_subjects,
            diagnostics=self.diagnostics,
            timing=self.timing,
            checkpoint=self.session.checkpoint,
        )

        result = IngestionResult(state=SessionState.RUNNING, timing=self.timing)
        result.warnings.extend(corpus.warnings)
        self.session.start(len(ranges))
        try:
            for index, subject_range in enumerate(ranges):
                self.session.begin_subject(index, subject_range.name)
                extraction = runner.run_subject(corpus, subject_range, single_subject=single_subject)
                outcome = SubjectOutcome(
                    subject=subject_range.name,
                    question_count=len(extraction.package.questions),
                    warnings=list(extraction.warnings),
                )
                result.subjects.append(outcome)
                result.warnings.extend(extraction.warnings)

                if extraction.package.is_empty:
                    outcome.skipped = True
                    outcome.checkpoint_path = self._write_checkpoint(extraction.package)
                    self.session.skip_empty_subject()
                    continue

                self._review_and_save(extraction.package, outcome, ranges, request.selected_subject)
                result.warnings.extend(w for w in outcome.warnings if w not in extraction.warnings)
            self.session.finish()
        except RunCancelled as e:
            logger.info(f"Run cancelled: {e}")
            self.session.mark_cancelled()
        except FatalExtractionError as e:
            logger.error(f"Run aborted: {e}")
            result.error = str(e)
            self.session.fail(e)
        except Exception as e:
            self.session.fail(e)
            raise

        result.state = self.session.state
        result.diagnostics = self.diagnostics.generate_report()
        logger.info(self.timing.summary())
        return result

    def _review_and_save(
        self,
        package: SubjectProcessingPackage,
        outcome: SubjectOutcome,
        ranges: Sequence[SubjectRange],
        selected_subject: Optional[str],
    ) -> None:
        """Gate on review and confirmation, then persist; retries on persistence errors."""
        state = self.session.offer_package(package)
        if state is SessionState.AWAITING_DIAGRAM_REVIEW:
            self.session.wait_for_review()

        force_confirmation = False
        while True:
            self.session.checkpoint()
            package = self.session.current_package()
            identity = self.session.identity
            needs_confirmation = (
                force_confirmation
                or not self.config.auto_save
                or bool(package.outstanding_manual_diagrams())
                or identity is None
                or not identity.has_valid_year
            )
            if needs_confirmation:
                package = self.session.wait_for_save_request()
                identity = self.session.identity

            subject = package.subject_name
            try:
                with timed_phase(self.timing, "save", subject=subject):
                    record_ids = persist_package(self.store, package, identity)
            except PersistenceError as e:
                outcome.warnings.append(str(e))
                self.session.mark_save_failed(e)
                force_confirmation = True
                continue
            break

        outcome.saved = True
        outcome.record_ids = record_ids
        outcome.question_count = len(package.questions)
        outcome.checkpoint_path = self._write_checkpoint(package)

        if package.has_diagrams:
            with timed_phase(self.timing, "reconcile", subject=subject):
                report = reconcile_diagrams(
                    package,
                    identity,
                    self.storage,
                    self.store,
                    ranges=ranges,
                    selected_subject=selected_subject,
                    diagnostics=self.diagnostics,
                    min_crop_size=self.config.min_crop_size,
                )
            outcome.match_report = report
            if report.has_misses:
                outcome.warnings.append(report.summary())

        if self.enrichment is not None and record_ids:
            self.enrichment.enqueue(
                EnrichmentJob(record_id=record_id, candidate=question)
                for record_id, question in zip(record_ids, package.questions)
            )
        self.session.mark_saved()

    def _write_checkpoint(self, package: SubjectProcessingPackage) -> Optional[Path]:
        if self.config.checkpoint_dir is None:
            return None
        checkpoint = build_checkpoint(package.subject_name, package.questions, package.subject_range)
        return save_checkpoint(self.config.checkpoint_dir, checkpoint)


def run_ingestion(
    request: IngestionRequest,
    extraction_service: ExtractionService,
    storage: ObjectStorage,
    store: QuestionStore,
    *,
    config: Optional[IngestionConfig] = None,
    enrichment: Optional[EnrichmentQueue] = None,
    on_state_change: Optional[StateListener] = None,
) -> IngestionResult:
    """
    Run one ingestion to completion.

    Args:
        request: Uploads, identity and ranges.
        extraction_service: Question extraction.
        storage: Object storage.
        store: Question store.
        config: Ingestion settings.
        enrichment: Background enrichment queue.
        on_state_change: Session listener (operator hooks).

    Returns:
        IngestionResult with the terminal state and per-subject outcomes.

    Example:
        >>> result = run_ingestion(request, client, storage, store)  # doctest: +SKIP
        >>> result.state
        <SessionState.COMPLETED: 'completed'>
    """
    pipeline = IngestionPipeline(
        extraction_service,
        storage,
        store,
        config=config,
        enrichment=enrichment,
        on_state_change=on_state_change,
    )
    return pipeline.run(request)
