"""
Module: ingestion.pdf_utils

Purpose:
    PDF access for page-text documents: text extraction, question anchor
    detection, embedded image positions and page rendering for review.

Key Functions:
    - open_pdf(): Open a PDF from bytes
    - extract_text(): Plain text of a page
    - find_question_anchors(): "<n>." line starts with y positions
    - find_embedded_images(): Bounding boxes of placed images
    - render_page(): Render a page to an RGB PIL image

Dependencies:
    - fitz (PyMuPDF): PDF parsing and rendering
    - PIL.Image: Image handling

Used By:
    - ingestion.corpus: Builds PageText entries
    - ingestion.extraction: Renders pages for diagram review
"""

from __future__ import annotations

import logging
import re
from typing import List, Tuple

import fitz
from PIL import Image

from qbank_toolkit.core.models import EmbeddedImage, QuestionAnchor

logger = logging.getLogger(__name__)

DEFAULT_DPI = 144
# Images smaller than this (points) are bullets, logos or rules
MIN_EMBEDDED_IMAGE_PT = 12.0

_ANCHOR_PATTERN = re.compile(r"^\s*(\d{1,3})\.")


def open_pdf(content: bytes) -> fitz.Document:
    """
    Open a PDF held in memory.

    Raises:
        ValueError: If the bytes are not a readable PDF or it has no pages.
    """
    try:
        doc = fitz.open(stream=content, filetype="pdf")
    except (RuntimeError, ValueError) as e:
        raise ValueError(f"Cannot open PDF: {e}") from e
    if doc.page_count == 0:
        doc.close()
        raise ValueError("Cannot open PDF: no pages")
    return doc


def extract_text(page: fitz.Page) -> str:
    """
    Extract text content from a PDF page.

    Returns:
        Extracted text, empty string on error.
    """
    try:
        return page.get_text("text") or ""
    except (RuntimeError, ValueError) as e:
        logger.warning(f"Failed to extract text from page {page.number + 1}: {e}")
        return ""


def find_question_anchors(page: fitz.Page) -> List[QuestionAnchor]:
    """
    Find lines that start a numbered question ("12. ...").

    Returns:
        Anchors in top-to-bottom order; y is the line's top in points.
    """
    anchors: List[QuestionAnchor] = []
    try:
        layout = page.get_text("dict")
    except (RuntimeError, ValueError) as e:
        logger.warning(f"Failed to read layout of page {page.number + 1}: {e}")
        return anchors

    for block in layout.get("blocks", []):
        if block.get("type", 0) != 0:
            continue
        for line in block.get("lines", []):
            text = "".join(span.get("text", "") for span in line.get("spans", []))
            match = _ANCHOR_PATTERN.match(text)
            if match:
                anchors.append(QuestionAnchor(number=int(match.group(1)), y=float(line["bbox"][1])))

    anchors.sort(key=lambda a: a.y)
    return anchors


def find_embedded_images(page: fitz.Page) -> List[EmbeddedImage]:
    """Bounding boxes (points) of images placed on the page."""
    images: List[EmbeddedImage] = []
    try:
        infos = page.get_image_info()
    except (RuntimeError, ValueError) as e:
        logger.warning(f"Failed to list images on page {page.number + 1}: {e}")
        return images

    for info in infos:
        x0, y0, x1, y1 = info["bbox"]
        if (x1 - x0) < MIN_EMBEDDED_IMAGE_PT or (y1 - y0) < MIN_EMBEDDED_IMAGE_PT:
            continue
        images.append(EmbeddedImage(float(x0), float(y0), float(x1), float(y1)))
    return images


def render_page(page: fitz.Page, dpi: int = DEFAULT_DPI) -> Image.Image:
    """
    Render a full page to an RGB image.

    Args:
        page: PyMuPDF page object.
        dpi: Resolution for rendering. Defaults to 144.
    """
    matrix = fitz.Matrix(dpi / 72.0, dpi / 72.0)
    pix = page.get_pixmap(matrix=matrix, alpha=False)
    return Image.frombytes("RGB", (pix.width, pix.height), pix.samples)


def page_size_points(page: fitz.Page) -> Tuple[float, float]:
    return float(page.rect.width), float(page.rect.height)
