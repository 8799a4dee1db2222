"""
Module: ingestion.session

Purpose:
    Processing Session State Machine. Sequences subject batches and
    gates progression on diagram review and save confirmation, with
    cooperative pause/resume/cancel.

    idle -> running(S) -> [awaiting-diagram-review] -> awaiting-save
         -> running(S+1) -> ... -> completed
    cancelled is reachable from running and both awaiting states;
    failed follows a fatal extraction error.

    The pipeline thread drives transitions and blocks in the wait_*
    methods; operator actions (pause, resume, cancel, review, save) may
    come from any thread. Waits poll with a short timeout so pause and
    cancel are observed promptly. Cancellation is advisory: it is only
    seen at the next checkpoint, never interrupting a remote call.

Key Classes:
    - SessionState: Session states
    - SessionSnapshot: Immutable view for observers
    - ProcessingSession: Thread-safe session

Dependencies:
    - threading (std)
    - review.bounds_editor: Clamping of reviewed boxes

Used By:
    - ingestion.pipeline: Drives the session
    - cli: Operator surface
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, List, Mapping, Optional, Tuple, Union

from qbank_toolkit.core.models import (
    DiagramAssignment,
    DiagramBounds,
    ExamIdentity,
    SubjectProcessingPackage,
)
from qbank_toolkit.core.models.bounds import MIN_CROP_SIZE
from qbank_toolkit.review.bounds_editor import apply_handle_delta, clamp_bounds_to_page
from qbank_toolkit.review.reconciliation import attach_manual_diagram, dismiss_manual_diagrams
from qbank_toolkit.services.base import ObjectStorage

from .errors import InputValidationError, RunCancelled, SessionStateError

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    AWAITING_DIAGRAM_REVIEW = "awaiting-diagram-review"
    AWAITING_SAVE = "awaiting-save"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


ACTIVE_STATES = frozenset(
    {SessionState.RUNNING, SessionState.AWAITING_DIAGRAM_REVIEW, SessionState.AWAITING_SAVE}
)
REVIEW_STATES = frozenset({SessionState.AWAITING_DIAGRAM_REVIEW, SessionState.AWAITING_SAVE})
TERMINAL_STATES = frozenset({SessionState.COMPLETED, SessionState.CANCELLED, SessionState.FAILED})

ReviewEntry = Union[DiagramAssignment, DiagramBounds]


@dataclass(frozen=True)
class SessionSnapshot:
    """Point-in-time view of a session, handed to state listeners."""
    state: SessionState
    subject: Optional[str]
    subject_index: int
    subject_count: int
    paused: bool
    cancel_requested: bool
    batch_confirmed: bool
    diagram_review_complete: bool
    completed_subjects: Tuple[str, ...]
    outstanding_manual_diagrams: Tuple[int, ...]
    last_error: Optional[str]


StateListener = Callable[[SessionSnapshot], None]


class ProcessingSession:
    """
    Thread-safe processing session.

    Args:
        identity: Exam identity used for saving (year may be fixed later).
        poll_interval: Wait granularity in seconds.
        min_crop_size: Minimum box side for reviewed bounds.
        on_state_change: Called synchronously after every transition,
            outside the session lock, so a listener may call operator
            methods directly.
    """

    def __init__(
        self,
        identity: Optional[ExamIdentity] = None,
        *,
        poll_interval: float = 0.15,
        min_crop_size: int = MIN_CROP_SIZE,
        on_state_change: Optional[StateListener] = None,
    ):
        self._cond = threading.Condition()
        self._poll_interval = poll_interval
        self._min_crop_size = min_crop_size
        self._listener = on_state_change

        self._identity = identity
        self._state = SessionState.IDLE
        self._subject: Optional[str] = None
        self._subject_index = -1
        self._subject_count = 0
        self._paused = False
        self._cancel_requested = False
        self._batch_confirmed = True
        self._review_complete = True
        self._save_requested = False
        self._package: Optional[SubjectProcessingPackage] = None
        self._completed: List[str] = []
        self._last_error: Optional[str] = None

    # ─────────────────────────────────────────────────────────────────────────
    # Queries
    # ─────────────────────────────────────────────────────────────────────────

    @property
    def state(self) -> SessionState:
        with self._cond:
            return self._state

    @property
    def package(self) -> Optional[SubjectProcessingPackage]:
        with self._cond:
            return self._package

    @property
    def identity(self) -> Optional[ExamIdentity]:
        with self._cond:
            return self._identity

    @property
    def cancel_requested(self) -> bool:
        with self._cond:
            return self._cancel_requested

    def snapshot(self) -> SessionSnapshot:
        with self._cond:
            return self._snapshot_locked()

    def _snapshot_locked(self) -> SessionSnapshot:
        outstanding = tuple(self._package.outstanding_manual_diagrams()) if self._package else ()
        return SessionSnapshot(
            state=self._state,
            subject=self._subject,
            subject_index=self._subject_index,
            subject_count=self._subject_count,
            paused=self._paused,
            cancel_requested=self._cancel_requested,
            batch_confirmed=self._batch_confirmed,
            diagram_review_complete=self._review_complete,
            completed_subjects=tuple(self._completed),
            outstanding_manual_diagrams=outstanding,
            last_error=self._last_error,
        )

    def _notify(self, snapshot: SessionSnapshot) -> None:
        if self._listener is not None:
            self._listener(snapshot)

    # ─────────────────────────────────────────────────────────────────────────
    # Pipeline side
    # ─────────────────────────────────────────────────────────────────────────

    def start(self, subject_count: int) -> None:
        with self._cond:
            if self._state is not SessionState.IDLE:
                raise SessionStateError(f"session already started ({self._state.value})")
            self._subject_count = subject_count
            self._state = SessionState.RUNNING
            snapshot = self._snapshot_locked()
        logger.info(f"Session started with {subject_count} subject(s)")
        self._notify(snapshot)

    def begin_subject(self, index: int, subject: str) -> None:
        """Enter running(subject); the previous batch must be confirmed."""
        self.checkpoint()
        with self._cond:
            if self._state is not SessionState.RUNNING:
                raise SessionStateError(f"cannot begin a subject in {self._state.value}")
            if not self._batch_confirmed:
                raise SessionStateError("previous subject batch is not confirmed")
            self._subject_index = index
            self._subject = subject
            self._package = None
            self._last_error = None
            snapshot = self._snapshot_locked()
        logger.info(f"Subject {index + 1}/{self._subject_count}: {subject}", extra={"subject": subject})
        self._notify(snapshot)

    def checkpoint(self) -> None:
        """
        Cooperative suspension point.

        Blocks while paused; raises RunCancelled once cancel is requested.
        """
        with self._cond:
            while True:
                if self._cancel_requested:
                    raise RunCancelled("processing cancelled by operator")
                if not self._paused:
                    return
                self._cond.wait(timeout=self._poll_interval)

    def offer_package(self, package: SubjectProcessingPackage) -> SessionState:
        """
        Hand a non-empty package to review.

        Goes to awaiting-diagram-review when the package has assignments,
        otherwise straight to awaiting-save.
        """
        with self._cond:
            if self._state is not SessionState.RUNNING:
                raise SessionStateError(f"cannot offer a package in {self._state.value}")
            self._package = package
            self._batch_confirmed = False
            self._save_requested = False
            self._review_complete = not package.has_diagrams
            self._state = (
                SessionState.AWAITING_SAVE if self._review_complete else SessionState.AWAITING_DIAGRAM_REVIEW
            )
            state = self._state
            snapshot = self._snapshot_locked()
        self._notify(snapshot)
        return state

    def skip_empty_subject(self) -> None:
        """A subject that produced zero questions is confirmed without saving."""
        with self._cond:
            self._package = None
            self._batch_confirmed = True
            self._review_complete = True
            if self._subject:
                self._completed.append(self._subject)
            snapshot = self._snapshot_locked()
        logger.info(f"{self._subject}: no questions, skipped", extra={"subject": self._subject})
        self._notify(snapshot)

    def wait_for_review(self) -> SubjectProcessingPackage:
        """Block until the operator has completed diagram review."""
        with self._cond:
            while True:
                if self._cancel_requested:
                    raise RunCancelled("processing cancelled during diagram review")
                if self._review_complete and self._state is SessionState.AWAITING_SAVE:
                    return self._package
                self._cond.wait(timeout=self._poll_interval)

    def wait_for_save_request(self) -> SubjectProcessingPackage:
        """Block until the operator confirms the save."""
        with self._cond:
            while True:
                if self._cancel_requested:
                    raise RunCancelled("processing cancelled before save")
                if self._save_requested:
                    self._save_requested = False
                    return self._package
                self._cond.wait(timeout=self._poll_interval)

    def current_package(self) -> SubjectProcessingPackage:
        with self._cond:
            if self._package is None:
                raise SessionStateError("no active package")
            return self._package

    def mark_saved(self) -> None:
        """Batch persisted: confirm it and go back to running."""
        with self._cond:
            if self._state is not SessionState.AWAITING_SAVE:
                raise SessionStateError(f"cannot confirm a save in {self._state.value}")
            self._batch_confirmed = True
            self._last_error = None
            if self._subject:
                self._completed.append(self._subject)
            self._package = None
            self._state = SessionState.RUNNING
            snapshot = self._snapshot_locked()
        self._notify(snapshot)

    def mark_save_failed(self, error: Exception) -> None:
        """Save failed: stay in awaiting-save, unconfirmed, with the error recorded."""
        with self._cond:
            self._batch_confirmed = False
            self._save_requested = False
            self._last_error = str(error)
            snapshot = self._snapshot_locked()
        logger.error(f"Save failed for {self._subject}: {error}", extra={"subject": self._subject})
        self._notify(snapshot)

    def finish(self) -> None:
        self._terminate(SessionState.COMPLETED)

    def mark_cancelled(self) -> None:
        self._terminate(SessionState.CANCELLED)

    def fail(self, error: Exception) -> None:
        with self._cond:
            self._last_error = str(error)
        self._terminate(SessionState.FAILED)

    def _terminate(self, state: SessionState) -> None:
        with self._cond:
            if self._state in TERMINAL_STATES:
                return
            self._state = state
            self._paused = False
            self._cond.notify_all()
            snapshot = self._snapshot_locked()
        logger.info(f"Session {state.value}", extra={"completed": list(snapshot.completed_subjects)})
        self._notify(snapshot)

    # ─────────────────────────────────────────────────────────────────────────
    # Operator side
    # ─────────────────────────────────────────────────────────────────────────

    def pause(self) -> None:
        with self._cond:
            if self._state not in ACTIVE_STATES:
                raise SessionStateError(f"cannot pause in {self._state.value}")
            self._paused = True
            snapshot = self._snapshot_locked()
        self._notify(snapshot)

    def resume(self) -> None:
        with self._cond:
            self._paused = False
            self._cond.notify_all()
            snapshot = self._snapshot_locked()
        self._notify(snapshot)

    def cancel(self) -> None:
        """Request cancellation; observed at the pipeline's next checkpoint."""
        with self._cond:
            if self._state in TERMINAL_STATES:
                return
            self._cancel_requested = True
            self._paused = False
            self._cond.notify_all()
        logger.info("Cancellation requested")

    def set_exam_identity(self, identity: ExamIdentity) -> None:
        with self._cond:
            self._identity = identity

    def apply_diagram_review(self, entries: Optional[Mapping[int, ReviewEntry]] = None) -> None:
        """
        Complete diagram review, optionally replacing the assignments.

        Args:
            entries: question index -> DiagramAssignment, or DiagramBounds
                on the question's mapped page. None keeps the current
                assignments. Every box is clamped to its page.

        Raises:
            SessionStateError: Outside the review/save states.
            ValueError: A question index without a page image.
        """
        with self._cond:
            if self._state not in REVIEW_STATES or self._package is None:
                raise SessionStateError(f"no diagram review in {self._state.value}")
            package = self._package
            if entries is not None:
                assignments = {}
                for index, entry in entries.items():
                    assignments[index] = self._reviewed_assignment(package, index, entry)
                package = package.with_assignments(assignments)
            self._package = package
            self._review_complete = True
            self._state = SessionState.AWAITING_SAVE
            self._cond.notify_all()
            snapshot = self._snapshot_locked()
        self._notify(snapshot)

    def _reviewed_assignment(
        self,
        package: SubjectProcessingPackage,
        index: int,
        entry: ReviewEntry,
    ) -> DiagramAssignment:
        if isinstance(entry, DiagramAssignment):
            page_index, bounds = entry.page_index, entry.bounds
        else:
            page_index = package.question_page_map.get(index)
            if page_index is None:
                raise ValueError(f"question {index} has no page to crop from")
            bounds = entry
        preview = package.preview_for_page(page_index)
        if preview is None:
            raise ValueError(f"page {page_index + 1} has no preview image")
        clamped = clamp_bounds_to_page(bounds, preview.natural_size, self._min_crop_size)
        return DiagramAssignment(question_index=index, page_index=page_index, bounds=clamped)

    def adjust_bounds(self, question_index: int, handle: str, delta_x: float, delta_y: float) -> DiagramAssignment:
        """Drag one assignment's box through a handle and clamp it to the page."""
        with self._cond:
            if self._state not in REVIEW_STATES or self._package is None:
                raise SessionStateError(f"no diagram review in {self._state.value}")
            package = self._package
            current = package.diagram_assignments.get(question_index)
            if current is None:
                raise KeyError(f"question {question_index} has no diagram assignment")
            moved = apply_handle_delta(current.bounds, handle, delta_x, delta_y, self._min_crop_size)
            updated = self._reviewed_assignment(package, question_index, DiagramAssignment(
                question_index=question_index, page_index=current.page_index, bounds=moved,
            ))
            assignments = dict(package.diagram_assignments)
            assignments[question_index] = updated
            self._package = package.with_assignments(assignments)
            return updated

    def attach_manual_diagram(self, question_index: int, base64_image: str, storage: ObjectStorage) -> None:
        """Upload a diagram for a question that needs one (review/save states only)."""
        package = self._require_review_package()
        updated = attach_manual_diagram(package, question_index, base64_image, storage)
        self._replace_package(package, updated)

    def dismiss_manual_diagrams(self, question_indexes: Optional[Iterable[int]] = None) -> None:
        package = self._require_review_package()
        self._replace_package(package, dismiss_manual_diagrams(package, question_indexes))

    def request_save(self) -> None:
        """
        Confirm the pending batch for saving.

        Raises:
            SessionStateError: Not awaiting save.
            InputValidationError: The exam year is missing or invalid.
        """
        with self._cond:
            if self._state is not SessionState.AWAITING_SAVE or self._package is None:
                raise SessionStateError(f"nothing to save in {self._state.value}")
            if self._identity is None or not self._identity.has_valid_year:
                errors = self._identity.validation_errors() if self._identity else ["시험 연도를 입력해 주세요."]
                raise InputValidationError(errors[0], errors)
            self._save_requested = True
            self._cond.notify_all()

    confirm_save = request_save

    def _require_review_package(self) -> SubjectProcessingPackage:
        with self._cond:
            if self._state not in REVIEW_STATES or self._package is None:
                raise SessionStateError(f"no package under review in {self._state.value}")
            return self._package

    def _replace_package(self, expected: SubjectProcessingPackage, updated: SubjectProcessingPackage) -> None:
        with self._cond:
            if self._package is not expected:
                raise SessionStateError("package changed during the operation")
            self._package = updated
            snapshot = self._snapshot_locked()
        self._notify(snapshot)
