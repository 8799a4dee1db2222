"""
Module: sources

Purpose:
    Source file and corpus models. Heterogeneous uploads are normalized
    into exactly one of three corpora: an ordered page-image sequence,
    an ordered page-text sequence with absolute numbering across files,
    or a sequence of plain-text question segments.

Key Classes:
    - SourceKind: page-image / page-text-document / plain-text
    - SourceFile: One uploaded unit with its absolute page offset
    - PageImage: One decoded page image with its natural size
    - QuestionAnchor: A numbered question start found on a text page
    - EmbeddedImage: Position of an image placed on a text page
    - PageText: Text layer of one page plus anchors and images
    - TextSegment: One plain-text question span
    - Corpus: The normalized corpus handed to range resolution

Dependencies:
    - dataclasses (std)
    - enum (std)
    - PIL.Image (TYPE_CHECKING only)

Used By:
    - ingestion.corpus: Builds these models
    - ingestion.ranges: Resolves windows against them
    - ingestion.extraction: Reads page content per unit
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Dict, List, Optional, Tuple

if TYPE_CHECKING:
    from PIL import Image


class SourceKind(str, Enum):
    PAGE_IMAGE = "page-image"
    PAGE_TEXT_DOCUMENT = "page-text-document"
    PLAIN_TEXT = "plain-text"


class CorpusMode(str, Enum):
    IMAGES = "images"
    PAGE_TEXT = "page-text"
    PLAIN_TEXT = "plain-text"


@dataclass(frozen=True)
class SourceFile:
    """
    One uploaded unit.

    Attributes:
        name: Original file name
        kind: Declared source kind
        content: Raw file bytes
        mime_type: Declared MIME type
        base_index: Number of corpus pages that precede this file
        page_count: Pages contributed (1 for images, 0 for plain text)

    For page-text documents the file occupies absolute pages
    ``base_index + 1 .. base_index + page_count``.
    """

    name: str
    kind: SourceKind
    content: bytes = field(repr=False)
    mime_type: str = ""
    base_index: int = 0
    page_count: int = 0

    def __post_init__(self) -> None:
        if self.base_index < 0:
            raise ValueError(f"base_index must be >= 0: {self.base_index}")
        if self.page_count < 0:
            raise ValueError(f"page_count must be >= 0: {self.page_count}")

    @property
    def size(self) -> int:
        return len(self.content)

    @property
    def absolute_start(self) -> int:
        return self.base_index + 1

    @property
    def absolute_end(self) -> int:
        return self.base_index + self.page_count


@dataclass(frozen=True, eq=False)
class PageImage:
    """
    A decoded page image.

    Attributes:
        page_index: Zero-based absolute page index in the corpus
        image: RGB PIL image at natural resolution
        mime_type: MIME type used when encoding for the service
        source_index: Index of the originating SourceFile
    """

    page_index: int
    image: Image.Image = field(repr=False)
    mime_type: str = "image/jpeg"
    source_index: int = 0

    @property
    def page_number(self) -> int:
        return self.page_index + 1

    @property
    def natural_size(self) -> Tuple[int, int]:
        return self.image.width, self.image.height


@dataclass(frozen=True, slots=True)
class QuestionAnchor:
    """A line starting with "<n>." and its vertical position in PDF points."""

    number: int
    y: float


@dataclass(frozen=True, slots=True)
class EmbeddedImage:
    """Bounding box (PDF points) of an image placed on a page."""

    x0: float
    y0: float
    x1: float
    y1: float

    @property
    def center_y(self) -> float:
        return (self.y0 + self.y1) / 2


@dataclass(frozen=True)
class PageText:
    """
    Text layer of one page of a page-text document.

    Attributes:
        page_number: Absolute 1-based page number across all files
        text: Extracted text (may be empty)
        source_index: Index of the originating SourceFile
        local_page: 1-based page number within that file
        width_pt: Page width in PDF points
        height_pt: Page height in PDF points
        anchors: Question starts in reading order
        images: Embedded images on the page
    """

    page_number: int
    text: str
    source_index: int = 0
    local_page: int = 1
    width_pt: float = 0.0
    height_pt: float = 0.0
    anchors: Tuple[QuestionAnchor, ...] = ()
    images: Tuple[EmbeddedImage, ...] = ()

    @property
    def has_text(self) -> bool:
        return bool(self.text.strip())


@dataclass(frozen=True, slots=True)
class TextSegment:
    """One plain-text question span."""

    index: int
    text: str
    leading_number: Optional[int] = None


@dataclass
class Corpus:
    """
    Normalized corpus for one run.

    Exactly one of images, pages, segments is populated, as given by mode.

    Attributes:
        mode: Which corpus kind was built
        sources: Loaded source files with page offsets
        images: Page images (image mode)
        pages: Page texts (page-text mode)
        segments: Question segments (plain-text mode)
        warnings: Non-fatal problems met while loading
    """

    mode: CorpusMode
    sources: List[SourceFile]
    images: List[PageImage] = field(default_factory=list)
    pages: List[PageText] = field(default_factory=list)
    segments: List[TextSegment] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def total_pages(self) -> int:
        """Number of addressable pages (segments count as one page each)."""
        if self.mode is CorpusMode.IMAGES:
            return len(self.images)
        if self.mode is CorpusMode.PAGE_TEXT:
            return len(self.pages)
        return max(1, len(self.segments))

    def question_page_lookup(self) -> Dict[int, int]:
        """
        Map question numbers to the first absolute page they appear on.

        Only meaningful in page-text mode; other modes return {}.
        """
        lookup: Dict[int, int] = {}
        for page in self.pages:
            for anchor in page.anchors:
                lookup.setdefault(anchor.number, page.page_number)
        return lookup

    def page(self, page_number: int) -> Optional[PageText]:
        index = page_number - 1
        if 0 <= index < len(self.pages):
            return self.pages[index]
        return None
