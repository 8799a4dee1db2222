"""
Tests for ingestion.extraction

Test Coverage:
- Image corpora: one call per page, failed units skipped with a warning
- Page-text corpora: fatal when the window has no text, locator boxes
- Plain-text corpora: segments outside the window are not sent
- Single-subject runs force the pinned subject
"""
import fitz
import pytest

from ingest_fakes import FakeExtractionService, FakeStorage, draw_page, make_text_pdf, png_bytes, question
from qbank_toolkit.core.models import SubjectRange
from qbank_toolkit.ingestion.config import IngestionConfig
from qbank_toolkit.ingestion.corpus import build_corpus
from qbank_toolkit.ingestion.diagnostics import UNIT_FAILURE, DiagnosticsCollector
from qbank_toolkit.ingestion.errors import FatalExtractionError, RunCancelled
from qbank_toolkit.ingestion.extraction import ExtractionBatchRunner
from qbank_toolkit.ingestion.validation import validate_source_files

SUBJECTS = ("전기자기학", "전력공학")


def _image_corpus(count):
    uploads = [(f"page{i}.png", png_bytes(draw_page()), "image/png") for i in range(count)]
    return build_corpus(validate_source_files(uploads))


def _pdf_corpus(pages, **kwargs):
    uploads = [("exam.pdf", make_text_pdf(pages, **kwargs), "application/pdf")]
    return build_corpus(validate_source_files(uploads))


def _text_corpus(text):
    return build_corpus(validate_source_files([("exam.txt", text.encode("utf-8"), "text/plain")]))


class TestImageExtraction:
    def test_run_when_one_page_fails_then_unit_skipped_with_warning(self):
        """A 500 on page 2 skips that page; the other pages still count."""
        # Arrange
        service = FakeExtractionService(
            lambda request, index: [question(index * 2 + 1), question(index * 2 + 2)],
            fail_calls=(1,),
        )
        diagnostics = DiagnosticsCollector()
        runner = ExtractionBatchRunner(service, allowed_subjects=SUBJECTS, diagnostics=diagnostics)

        # Act
        result = runner.run_subject(_image_corpus(3), SubjectRange("전기자기학", 1, 3, 1, 20))

        # Assert
        assert [q.leading_number for q in result.package.questions] == [1, 2, 5, 6]
        assert (result.units_total, result.units_failed, result.raw_count) == (3, 1, 4)
        assert len(result.warnings) == 1
        assert "page 2" in result.warnings[0]
        [issue] = diagnostics.issues_for("전기자기학")
        assert issue.issue_type == UNIT_FAILURE
        assert issue.unit == "page 2"

    def test_run_when_every_request_carries_one_image(self):
        service = FakeExtractionService(lambda request, index: [])
        runner = ExtractionBatchRunner(service, allowed_subjects=SUBJECTS)

        runner.run_subject(_image_corpus(2), SubjectRange("전기자기학", 1, 2, 1, 20))

        assert len(service.requests) == 2
        assert all(len(r.images) == 1 and r.text is None for r in service.requests)
        assert all(r.subject_hint == "전기자기학" for r in service.requests)

    def test_run_when_box_detected_then_assignment_and_preview(self):
        """A boxed figure question gets an assignment on its page and an uploaded preview."""
        # Arrange
        bounds = {"x": 100, "y": 200, "width": 200, "height": 150}
        service = FakeExtractionService(
            lambda request, index: [question(index + 1, "다음 그림과 같은 회로에서 전류는?", diagramBounds=bounds)]
            if index == 1
            else [question(index + 1, "변압기의 정의로 옳은 것은?")]
        )
        storage = FakeStorage()
        runner = ExtractionBatchRunner(service, storage=storage, allowed_subjects=SUBJECTS)

        # Act
        package = runner.run_subject(_image_corpus(2), SubjectRange("전력공학", 1, 2, 1, 20)).package

        # Assert
        assert list(package.diagram_assignments) == [1]
        assignment = package.diagram_assignments[1]
        assert assignment.page_index == 1
        assert (assignment.bounds.x, assignment.bounds.y) == (100, 200)
        assert [p.page_index for p in package.preview_images] == [1]
        assert package.preview_images[0].url.startswith("https://cdn.test/exam-assets/images/")
        assert package.questions[1].image_url == package.preview_images[0].url
        assert len(storage.names_with_prefix("images")) == 1

    def test_run_when_checkpoint_cancels_then_propagates(self):
        def cancel():
            raise RunCancelled("stop")

        runner = ExtractionBatchRunner(FakeExtractionService(lambda r, i: []), checkpoint=cancel)

        with pytest.raises(RunCancelled):
            runner.run_subject(_image_corpus(1), SubjectRange("전기자기학", 1, 1, 1, 20))


class TestPageTextExtraction:
    def test_run_when_window_has_no_text_then_fatal(self):
        runner = ExtractionBatchRunner(FakeExtractionService(lambda r, i: [question(1)]))

        with pytest.raises(FatalExtractionError):
            runner.run_subject(_pdf_corpus([[], []]), SubjectRange("전력공학", 1, 2, 1, 20))

    def test_run_when_window_outside_document_then_warning_and_empty(self):
        service = FakeExtractionService(lambda r, i: [question(1)])
        runner = ExtractionBatchRunner(service)

        result = runner.run_subject(_pdf_corpus([["1. First question"]]), SubjectRange("전력공학", 3, 4, 21, 40))

        assert result.package.is_empty
        assert len(result.warnings) == 1
        assert service.requests == []

    def test_run_when_text_pages_then_chunk_has_page_headers(self):
        service = FakeExtractionService(lambda r, i: [])
        runner = ExtractionBatchRunner(service)

        runner.run_subject(
            _pdf_corpus([["1. First question"], ["2. Second question"]]),
            SubjectRange("전력공학", 1, 2, 1, 20),
        )

        [request] = service.requests
        assert "# Page 1" in request.text
        assert "# Page 2" in request.text

    def test_run_when_image_below_anchor_then_located_bounds_attached(self):
        """The embedded figure under question 2 becomes its diagram box in rendered pixels."""
        # Arrange
        corpus = _pdf_corpus(
            [["1. First question", "2. Refer to the figure"]],
            images={0: fitz.Rect(100, 200, 300, 300)},
        )
        service = FakeExtractionService(
            lambda r, i: [question(1, "첫 번째 문항"), question(2, "다음 결선 방식은?")]
        )
        runner = ExtractionBatchRunner(service, config=IngestionConfig(render_dpi=144))

        # Act
        package = runner.run_subject(corpus, SubjectRange("전력공학", 1, 1, 1, 20)).package

        # Assert
        assert list(package.diagram_assignments) == [1]
        bounds = package.diagram_assignments[1].bounds
        assert bounds.x == pytest.approx(200, abs=2)
        assert bounds.y == pytest.approx(400, abs=2)
        assert bounds.width == pytest.approx(400, abs=2)
        assert bounds.height == pytest.approx(200, abs=2)
        assert package.questions[1].needs_manual_diagram is False
        assert package.preview_images[0].width == pytest.approx(1190, abs=2)


class TestPlainTextExtraction:
    def test_run_when_segments_outside_window_then_not_sent(self):
        service = FakeExtractionService(lambda r, i: [])
        runner = ExtractionBatchRunner(service)
        corpus = _text_corpus("1. 첫 문항\n① 가\n21. 스물한 번째 문항\n② 나")

        runner.run_subject(corpus, SubjectRange("전력공학", 1, 1, 21, 40))

        [request] = service.requests
        assert "21." in request.text
        assert "첫 문항" not in request.text


class TestSingleSubject:
    def test_run_when_subject_pinned_then_every_question_relabelled(self):
        """Service-reported subjects are overridden by the pinned subject."""
        service = FakeExtractionService(
            lambda r, i: [question(1, subject="전기자기학"), question(2, subject="전력공학")]
        )
        runner = ExtractionBatchRunner(service, allowed_subjects=SUBJECTS)

        result = runner.run_subject(_image_corpus(1), SubjectRange("전력공학", 1, 1, 1, 40), single_subject=True)

        assert [q.subject for q in result.package.questions] == ["전력공학", "전력공학"]

    def test_run_when_pinned_subject_returns_more_than_quota_then_capped(self):
        service = FakeExtractionService(lambda r, i: [question(n) for n in range(1, 46)])
        runner = ExtractionBatchRunner(service, config=IngestionConfig(subject_quota=40))

        result = runner.run_subject(_image_corpus(1), SubjectRange("전력공학", 1, 1, 1, 40), single_subject=True)

        assert len(result.package.questions) == 40
        assert result.raw_count == 45
