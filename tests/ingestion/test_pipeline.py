"""
Tests for ingestion.pipeline

End-to-end runs against in-memory services:
- Multi-subject image runs saved automatically
- Diagram review, manual-diagram dismissal and reconciliation
- Save retries after a persistence failure
- Exam year detection and operator-supplied years
- Cancellation, fatal extraction errors, empty subjects
- Checkpoint artifacts and background enrichment
"""
import pytest

from ingest_fakes import (
    FakeExtractionService,
    FakeMetadataService,
    FakeStorage,
    InMemoryQuestionStore,
    draw_page,
    make_text_pdf,
    png_bytes,
    question,
)
from qbank_toolkit.core.models import DiagramBounds, ExamIdentity, SubjectRange
from qbank_toolkit.core.utils.serialization import load_checkpoint
from qbank_toolkit.enrichment.queue import EnrichmentQueue
from qbank_toolkit.ingestion.config import EnrichmentConfig, IngestionConfig
from qbank_toolkit.ingestion.errors import InputValidationError, PersistenceError
from qbank_toolkit.ingestion.pipeline import IngestionPipeline, IngestionRequest, run_ingestion
from qbank_toolkit.ingestion.session import ProcessingSession, SessionState

CIRCUIT_BOX = {"x": 100, "y": 200, "width": 200, "height": 150}
TWO_SUBJECTS = [
    SubjectRange("전기자기학", 1, 2, 1, 20),
    SubjectRange("전력공학", 3, 4, 21, 40),
]


def _image_uploads(count, prefix="page"):
    return [(f"{prefix}{i}.png", png_bytes(draw_page()), "image/png") for i in range(count)]


def _numbered_pages(pages):
    """Handler returning the given question numbers for each call in order."""
    return lambda request, index: [question(n) for n in pages[index]] if index < len(pages) else []


class Operator:
    """Scripted operator: accepts review, dismisses manual diagrams, saves."""

    def __init__(self, year=None, cancel_on_save=False):
        self.session = None
        self.year = year
        self.cancel_on_save = cancel_on_save
        self.states = []

    def __call__(self, snapshot):
        self.states.append(snapshot.state)
        if snapshot.state is SessionState.AWAITING_DIAGRAM_REVIEW:
            self.session.apply_diagram_review()
        elif snapshot.state is SessionState.AWAITING_SAVE and not snapshot.cancel_requested:
            if self.cancel_on_save:
                self.session.cancel()
            elif snapshot.outstanding_manual_diagrams:
                self.session.dismiss_manual_diagrams()
            else:
                try:
                    self.session.request_save()
                except InputValidationError:
                    identity = self.session.identity
                    self.session.set_exam_identity(ExamIdentity(identity.certification, self.year, identity.session))
                    self.session.request_save()


class ReviewingOperator(Operator):
    """Draws the given boxes for questions awaiting a manual diagram, then saves."""

    def __init__(self, boxes):
        super().__init__()
        self.boxes = boxes
        self.flagged = []

    def __call__(self, snapshot):
        if snapshot.state is SessionState.AWAITING_SAVE and snapshot.outstanding_manual_diagrams:
            self.states.append(snapshot.state)
            self.flagged.append(snapshot.outstanding_manual_diagrams)
            self.session.apply_diagram_review(self.boxes)
            return
        super().__call__(snapshot)


class FailingLookupStore(InMemoryQuestionStore):
    def find_question_ids(self, subject, year, exam_session, question_number):
        raise PersistenceError("Question lookup failed: connection reset")


def _pipeline(service, storage=None, store=None, operator=None, config=None, enrichment=None):
    session = ProcessingSession(poll_interval=0.01, on_state_change=operator)
    if operator is not None:
        operator.session = session
    return IngestionPipeline(
        service,
        storage or FakeStorage(),
        store or InMemoryQuestionStore(),
        config=config,
        enrichment=enrichment,
        session=session,
    )


class TestMultiSubjectRun:
    def test_run_when_two_subjects_then_both_saved_in_order(self):
        """Each subject is saved with its own rows once its pages are extracted."""
        # Arrange
        store = InMemoryQuestionStore()
        service = FakeExtractionService(_numbered_pages([(1, 2), (3, 4), (21, 22), (23, 24)]))
        request = IngestionRequest(
            uploads=_image_uploads(4),
            identity=ExamIdentity("전기기사", 2023, 1),
            subject_ranges=TWO_SUBJECTS,
        )

        # Act
        result = _pipeline(service, store=store).run(request)

        # Assert
        assert result.state is SessionState.COMPLETED
        assert [o.subject for o in result.subjects] == ["전기자기학", "전력공학"]
        assert all(o.saved for o in result.subjects)
        assert result.saved_question_count == 8
        assert [row["subject"] for row in store.rows.values()] == ["전기자기학"] * 4 + ["전력공학"] * 4
        assert {row["year"] for row in store.rows.values()} == {2023}
        assert {row["exam_session"] for row in store.rows.values()} == {1}

    def test_run_when_subject_returns_nothing_then_skipped(self):
        service = FakeExtractionService(_numbered_pages([(1,), (2,), (), ()]))

        result = _pipeline(service).run(
            IngestionRequest(_image_uploads(4), ExamIdentity("전기기사", 2023, 1), TWO_SUBJECTS)
        )

        assert result.state is SessionState.COMPLETED
        assert result.subjects[1].skipped is True
        assert result.completed_subjects == ["전기자기학", "전력공학"]

    def test_run_when_ranges_missing_then_input_error_before_start(self):
        pipeline = _pipeline(FakeExtractionService(_numbered_pages([])))

        with pytest.raises(InputValidationError):
            pipeline.run(IngestionRequest(_image_uploads(1), ExamIdentity("전기기사", 2023, 1)))
        assert pipeline.session.state is SessionState.IDLE

    def test_run_when_session_invalid_then_input_error(self):
        pipeline = _pipeline(FakeExtractionService(_numbered_pages([])))

        with pytest.raises(InputValidationError):
            pipeline.run(IngestionRequest(_image_uploads(1), ExamIdentity("전기기사", 2023, 0), TWO_SUBJECTS))


class TestDiagramFlow:
    def test_run_when_circuit_questions_then_one_diagram_linked(self):
        """
        Q1 has a detected box and is linked after review; Q2 mentions a
        circuit without a box, is dismissed, and causes no update.
        """
        # Arrange
        store = InMemoryQuestionStore()
        storage = FakeStorage()
        service = FakeExtractionService(
            lambda request, index: [
                question(1, "다음 그림과 같은 회로에서 전류는?", diagramBounds=CIRCUIT_BOX),
                question(2, "회로의 합성 저항을 구하는 방법은?"),
            ]
        )
        operator = Operator()
        request = IngestionRequest(
            _image_uploads(1),
            ExamIdentity("전기기사", 2023, 1),
            selected_subject="전력공학",
        )

        # Act
        result = _pipeline(service, storage=storage, store=store, operator=operator).run(request)

        # Assert
        assert result.state is SessionState.COMPLETED
        assert SessionState.AWAITING_DIAGRAM_REVIEW in operator.states
        diagram_updates = [(rid, f) for rid, f in store.updates if "diagram_url" in f]
        assert len(diagram_updates) == 1
        record_id, fields = diagram_updates[0]
        assert store.rows[record_id]["question_text"].startswith("1.")
        assert fields["diagram_url"].startswith("https://cdn.test/exam-assets/diagrams/")
        assert len(storage.names_with_prefix("diagrams")) == 1
        assert len(storage.names_with_prefix("images")) == 1
        report = result.subjects[0].match_report
        assert report is not None and not report.has_misses

    def test_run_when_operator_cancels_at_save_gate_then_nothing_saved(self):
        """Cancelling at the save gate stops the run before the insert."""
        service = FakeExtractionService(lambda r, i: [question(1, "회로의 합성 저항을 구하는 방법은?")])
        store = InMemoryQuestionStore()
        operator = Operator(cancel_on_save=True)

        result = _pipeline(service, store=store, operator=operator).run(
            IngestionRequest(_image_uploads(1), ExamIdentity("전기기사", 2023, 1), selected_subject="전력공학")
        )

        assert result.state is SessionState.CANCELLED
        assert store.rows == {}

    def test_run_when_manual_question_boxed_in_review_then_one_diagram_linked(self):
        """
        A circuit question without a box is flagged for a manual diagram;
        the operator draws its box during review and confirms the save.
        """
        # Arrange
        store = InMemoryQuestionStore()
        storage = FakeStorage()
        service = FakeExtractionService(lambda r, i: [question(1, "회로의 합성 저항을 구하는 방법은?")])
        operator = ReviewingOperator({0: DiagramBounds(100, 200, 200, 150)})
        request = IngestionRequest(_image_uploads(1), ExamIdentity("전기기사", 2023, 1), selected_subject="전력공학")

        # Act
        result = _pipeline(service, storage=storage, store=store, operator=operator).run(request)

        # Assert
        assert result.state is SessionState.COMPLETED
        assert operator.flagged == [(0,)]
        diagram_updates = [(rid, f) for rid, f in store.updates if "diagram_url" in f]
        assert len(diagram_updates) == 1
        assert diagram_updates[0][0] == 1
        assert len(storage.names_with_prefix("diagrams")) == 1
        assert not result.subjects[0].match_report.has_misses

    def test_run_when_windows_share_a_page_then_preview_uploaded_once(self):
        """Overlapping subject windows reuse the preview URL of the shared page."""
        # Arrange
        storage = FakeStorage()
        store = InMemoryQuestionStore()
        boxed = {
            1: [question(1, "다음 그림과 같은 회로에서 전류는?", diagramBounds=CIRCUIT_BOX)],
            2: [question(21, "다음 그림과 같은 회로에서 전압은?", diagramBounds=CIRCUIT_BOX)],
        }
        service = FakeExtractionService(lambda r, i: boxed.get(i, []))
        ranges = [SubjectRange("전기자기학", 1, 2, 1, 20), SubjectRange("전력공학", 2, 3, 21, 40)]

        # Act
        result = _pipeline(service, storage=storage, store=store, operator=Operator()).run(
            IngestionRequest(_image_uploads(3), ExamIdentity("전기기사", 2023, 1), ranges)
        )

        # Assert
        assert result.state is SessionState.COMPLETED
        assert len(storage.names_with_prefix("images")) == 1
        image_urls = {row["image_url"] for row in store.rows.values()}
        assert len(store.rows) == 2
        assert len(image_urls) == 1 and None not in image_urls
        assert len(storage.names_with_prefix("diagrams")) == 2

    def test_run_when_row_lookup_fails_then_miss_reported_and_run_completes(self):
        """A failing lookup during reconciliation does not abort the run."""
        # Arrange
        store = FailingLookupStore()
        service = FakeExtractionService(
            lambda r, i: [question(1, "다음 그림과 같은 회로에서 전류는?", diagramBounds=CIRCUIT_BOX)]
        )

        # Act
        result = _pipeline(service, store=store, operator=Operator()).run(
            IngestionRequest(_image_uploads(1), ExamIdentity("전기기사", 2023, 1), selected_subject="전력공학")
        )

        # Assert
        assert result.state is SessionState.COMPLETED
        assert result.subjects[0].saved is True
        assert len(store.rows) == 1
        assert result.subjects[0].match_report.counts_by_cause == {"lookup-failed": 1}
        assert any("조회 실패" in w for w in result.warnings)


class TestSaveGate:
    def test_run_when_insert_fails_once_then_retried_after_confirmation(self):
        """A failed insert keeps the batch; the operator's confirmation retries it."""
        # Arrange
        store = InMemoryQuestionStore(fail_inserts=1)
        operator = Operator()
        service = FakeExtractionService(_numbered_pages([(1, 2)]))

        # Act
        result = _pipeline(service, store=store, operator=operator).run(
            IngestionRequest(_image_uploads(1), ExamIdentity("전기기사", 2023, 1), selected_subject="전력공학")
        )

        # Assert
        assert result.state is SessionState.COMPLETED
        assert store.insert_calls == 2
        assert len(store.rows) == 2
        assert any("connection reset" in w for w in result.subjects[0].warnings)

    def test_run_when_year_in_filename_then_detected(self):
        store = InMemoryQuestionStore()
        uploads = [("전기기사_2021_1회.png", png_bytes(draw_page()), "image/png")]

        result = _pipeline(FakeExtractionService(_numbered_pages([(1,)])), store=store).run(
            IngestionRequest(uploads, ExamIdentity("전기기사", None, 1), selected_subject="전력공학")
        )

        assert result.state is SessionState.COMPLETED
        assert [row["year"] for row in store.rows.values()] == [2021]

    def test_run_when_year_unknown_then_operator_supplies_it(self):
        """Saving waits for a valid year; the operator's year is used for the rows."""
        store = InMemoryQuestionStore()
        operator = Operator(year=2019)

        result = _pipeline(FakeExtractionService(_numbered_pages([(1,)])), store=store, operator=operator).run(
            IngestionRequest(_image_uploads(1), ExamIdentity("전기기사", None, 1), selected_subject="전력공학")
        )

        assert result.state is SessionState.COMPLETED
        assert [row["year"] for row in store.rows.values()] == [2019]

    def test_run_when_auto_save_off_and_operator_cancels_then_nothing_saved(self):
        store = InMemoryQuestionStore()
        operator = Operator(cancel_on_save=True)

        result = _pipeline(
            FakeExtractionService(_numbered_pages([(1, 2), (3,)])),
            store=store,
            operator=operator,
            config=IngestionConfig(auto_save=False),
        ).run(IngestionRequest(_image_uploads(4), ExamIdentity("전기기사", 2023, 1), TWO_SUBJECTS))

        assert result.state is SessionState.CANCELLED
        assert store.insert_calls == 0
        assert result.completed_subjects == []


class TestFailuresAndArtifacts:
    def test_run_when_pdf_has_no_text_then_failed(self):
        uploads = [("exam.pdf", make_text_pdf([[], []]), "application/pdf")]

        result = _pipeline(FakeExtractionService(_numbered_pages([]))).run(
            IngestionRequest(uploads, ExamIdentity("전기기사", 2023, 1), selected_subject="전력공학")
        )

        assert result.state is SessionState.FAILED
        assert "텍스트" in result.error

    def test_run_when_checkpoint_dir_then_artifact_per_subject(self, tmp_path):
        service = FakeExtractionService(_numbered_pages([(1, 2), (3,), (21,), (22,)]))

        result = _pipeline(service, config=IngestionConfig(checkpoint_dir=tmp_path)).run(
            IngestionRequest(_image_uploads(4), ExamIdentity("전기기사", 2023, 1), TWO_SUBJECTS)
        )

        paths = [o.checkpoint_path for o in result.subjects]
        assert all(p is not None and p.exists() for p in paths)
        loaded = load_checkpoint(paths[0])
        assert loaded.subject == "전기자기학"
        assert len(loaded.questions) == 3
        assert loaded.question_range == {"start": 1, "end": 20}

    def test_run_when_enrichment_queue_then_rows_enriched(self):
        """Saved rows receive normalized topic, difficulty and explanations."""
        # Arrange
        store = InMemoryQuestionStore()
        enrichment = EnrichmentQueue(
            FakeMetadataService(),
            store,
            EnrichmentConfig(batch_size=2, batch_delay_seconds=0, idle_timeout_seconds=0.05),
            sleep=lambda seconds: None,
        )

        # Act
        result = run_ingestion(
            IngestionRequest(_image_uploads(1), ExamIdentity("전기기사", 2023, 1), selected_subject="전력공학"),
            FakeExtractionService(_numbered_pages([(1, 2, 3)])),
            FakeStorage(),
            store,
            enrichment=enrichment,
        )
        assert enrichment.wait_idle(timeout=5)

        # Assert
        assert result.state is SessionState.COMPLETED
        for row in store.rows.values():
            assert row["difficulty_level"] == "상"
            assert row["topic_category"] == "전력계통"
            assert row["topic_keywords"] == ["송전", "안정도"]
            assert row["ai_explanation"].startswith("Explanation of")
        assert enrichment.stats.processed == 3
