"""
Tests for ingestion.corpus

Test Coverage:
- build_corpus(): Image, page-text and plain-text corpora
- Absolute page numbering across several PDFs
- segment_plain_text(): Numbered line boundaries
"""
import fitz
import pytest

from ingest_fakes import draw_page, make_text_pdf, png_bytes
from qbank_toolkit.core.models import CorpusMode, SourceFile, SourceKind
from qbank_toolkit.ingestion.corpus import build_corpus, segment_plain_text
from qbank_toolkit.ingestion.errors import InputValidationError


def _pdf_source(name, pages, **kwargs):
    return SourceFile(name, SourceKind.PAGE_TEXT_DOCUMENT, make_text_pdf(pages, **kwargs), "application/pdf")


class TestImageCorpus:
    def test_build_when_images_then_one_page_each(self):
        """Each image becomes one page in upload order."""
        # Arrange
        sources = [
            SourceFile("p1.png", SourceKind.PAGE_IMAGE, png_bytes(draw_page(400, 500)), "image/png"),
            SourceFile("p2.png", SourceKind.PAGE_IMAGE, png_bytes(draw_page(300, 600)), "image/png"),
        ]

        # Act
        corpus = build_corpus(sources)

        # Assert
        assert corpus.mode is CorpusMode.IMAGES
        assert corpus.total_pages == 2
        assert corpus.images[1].natural_size == (300, 600)
        assert [s.base_index for s in corpus.sources] == [0, 1]

    def test_build_when_image_corrupt_then_raises(self):
        with pytest.raises(InputValidationError):
            build_corpus([SourceFile("bad.png", SourceKind.PAGE_IMAGE, b"not an image", "image/png")])


class TestPageTextCorpus:
    def test_build_when_two_pdfs_then_absolute_numbering(self):
        """The second file's pages continue after the first file's."""
        # Arrange
        first = _pdf_source("a.pdf", [["1. First question"], ["2. Second question"], ["3. Third question"]])
        second = _pdf_source("b.pdf", [["21. Next subject"], ["22. Another"]])

        # Act
        corpus = build_corpus([first, second])

        # Assert
        assert corpus.mode is CorpusMode.PAGE_TEXT
        assert [p.page_number for p in corpus.pages] == [1, 2, 3, 4, 5]
        assert [(s.base_index, s.page_count) for s in corpus.sources] == [(0, 3), (3, 2)]
        assert corpus.pages[3].source_index == 1
        assert corpus.pages[3].local_page == 1
        assert "21. Next subject" in corpus.pages[3].text

    def test_build_when_numbered_lines_then_anchors_found(self):
        """Numbered lines become anchors, sorted top to bottom."""
        corpus = build_corpus([_pdf_source("a.pdf", [["4. Voltage", "(1) 10 V", "5. Current"]])])

        anchors = corpus.pages[0].anchors

        assert [a.number for a in anchors] == [4, 5]
        assert anchors[0].y < anchors[1].y
        assert corpus.question_page_lookup() == {4: 1, 5: 1}

    def test_build_when_image_placed_then_embedded_image_listed(self):
        corpus = build_corpus(
            [_pdf_source("a.pdf", [["1. Refer to the figure"]], images={0: fitz.Rect(100, 100, 300, 250)})]
        )

        images = corpus.pages[0].images

        assert len(images) == 1
        assert images[0].x0 == pytest.approx(100, abs=1)
        assert images[0].y1 == pytest.approx(250, abs=1)

    def test_build_when_page_has_no_text_then_warning(self):
        """Pages without a text layer are reported, not fatal."""
        corpus = build_corpus([_pdf_source("a.pdf", [["1. Question"], []])])

        assert not corpus.pages[1].has_text
        assert corpus.warnings and "2" in corpus.warnings[0]

    def test_build_when_pdf_unreadable_then_raises(self):
        with pytest.raises(InputValidationError):
            build_corpus([SourceFile("x.pdf", SourceKind.PAGE_TEXT_DOCUMENT, b"%PDF-garbage", "application/pdf")])


class TestPlainTextCorpus:
    def test_build_when_text_files_then_segments(self):
        """Plain text is split into numbered segments."""
        source = SourceFile("q.txt", SourceKind.PLAIN_TEXT, "1. 전압은?\n① 1V\n2. 전류는?\n".encode("utf-8"), "text/plain")

        corpus = build_corpus([source])

        assert corpus.mode is CorpusMode.PLAIN_TEXT
        assert [s.leading_number for s in corpus.segments] == [1, 2]

    def test_build_when_cp949_then_decoded(self):
        source = SourceFile("q.txt", SourceKind.PLAIN_TEXT, "1. 저항\n".encode("cp949"), "text/plain")

        corpus = build_corpus([source])

        assert corpus.segments[0].text == "1. 저항"


class TestSegmentPlainText:
    def test_segment_when_preamble_then_own_segment(self):
        """Text before the first numbered line stays as an unnumbered segment."""
        segments = segment_plain_text("전기기사 필기\n1. A\n① x\n2. B")

        assert [s.leading_number for s in segments] == [None, 1, 2]
        assert segments[1].text == "1. A\n① x"

    def test_segment_when_no_numbers_then_single_segment(self):
        segments = segment_plain_text("보기만 있는 텍스트\n두 번째 줄")

        assert len(segments) == 1
        assert segments[0].leading_number is None

    def test_segment_when_blank_then_empty(self):
        assert segment_plain_text("  \n ") == []
