"""
Module: ingestion.corpus

Purpose:
    Page Corpus Builder. Normalizes validated source files into one of
    three uniform corpora:

    - images: ordered page images (one per image file)
    - page-text: ordered page texts with absolute numbering across PDFs
      (each file's ``base_index`` is the running page offset)
    - plain-text: question-sized segments split on leading numbers

Key Functions:
    - build_corpus(): Main entry point
    - segment_plain_text(): Split text on "<number><delimiter>" line starts

Dependencies:
    - fitz (PyMuPDF): via ingestion.pdf_utils
    - PIL.Image: Page image decoding

Used By:
    - ingestion.pipeline: First stage of every run
"""

from __future__ import annotations

import io
import logging
from dataclasses import replace
from typing import List, Sequence

from PIL import Image, UnidentifiedImageError

from qbank_toolkit.common.numbering import extract_leading_question_number
from qbank_toolkit.core.models import (
    Corpus,
    CorpusMode,
    PageImage,
    PageText,
    SourceFile,
    SourceKind,
    TextSegment,
)

from .errors import InputValidationError
from .pdf_utils import (
    extract_text,
    find_embedded_images,
    find_question_anchors,
    open_pdf,
    page_size_points,
)

logger = logging.getLogger(__name__)

TEXT_ENCODINGS = ("utf-8-sig", "cp949")


def build_corpus(sources: Sequence[SourceFile]) -> Corpus:
    """
    Build the corpus for a run.

    Args:
        sources: Validated sources in upload order (see
            ingestion.validation.validate_source_files).

    Returns:
        Corpus whose mode matches the source kinds; sources are returned
        with base_index/page_count filled in.

    Raises:
        InputValidationError: If the set mixes incompatible kinds or a
            file cannot be decoded at all.
    """
    if not sources:
        raise InputValidationError("업로드된 파일이 없습니다.")

    kinds = {source.kind for source in sources}
    if len(kinds) > 1:
        raise InputValidationError(
            f"한 번의 실행에서는 한 가지 형식만 처리할 수 있습니다: {sorted(k.value for k in kinds)}"
        )
    kind = kinds.pop()

    if kind is SourceKind.PAGE_IMAGE:
        corpus = _build_image_corpus(sources)
    elif kind is SourceKind.PAGE_TEXT_DOCUMENT:
        corpus = _build_page_text_corpus(sources)
    else:
        corpus = _build_plain_text_corpus(sources)

    logger.info(
        f"Built {corpus.mode.value} corpus: {len(corpus.sources)} file(s), "
        f"{corpus.total_pages} page(s)/segment(s)",
        extra={"mode": corpus.mode.value, "file_count": len(corpus.sources)},
    )
    return corpus


def _build_image_corpus(sources: Sequence[SourceFile]) -> Corpus:
    images: List[PageImage] = []
    loaded: List[SourceFile] = []
    errors: List[str] = []

    for source_index, source in enumerate(sources):
        try:
            with Image.open(io.BytesIO(source.content)) as raw:
                image = raw.convert("RGB")
        except (UnidentifiedImageError, OSError) as e:
            errors.append(f"{source.name}: 이미지를 읽을 수 없습니다 ({e})")
            continue
        page_index = len(images)
        images.append(
            PageImage(
                page_index=page_index,
                image=image,
                mime_type=source.mime_type or "image/jpeg",
                source_index=source_index,
            )
        )
        loaded.append(replace(source, base_index=page_index, page_count=1))

    if errors:
        raise InputValidationError(errors[0], errors)
    return Corpus(mode=CorpusMode.IMAGES, sources=loaded, images=images)


def _build_page_text_corpus(sources: Sequence[SourceFile]) -> Corpus:
    pages: List[PageText] = []
    loaded: List[SourceFile] = []
    errors: List[str] = []
    base_index = 0

    for source_index, source in enumerate(sources):
        try:
            doc = open_pdf(source.content)
        except ValueError as e:
            errors.append(f"{source.name}: {e}")
            continue

        with doc:
            page_count = doc.page_count
            for local_index in range(page_count):
                page = doc[local_index]
                width_pt, height_pt = page_size_points(page)
                pages.append(
                    PageText(
                        page_number=base_index + local_index + 1,
                        text=extract_text(page),
                        source_index=source_index,
                        local_page=local_index + 1,
                        width_pt=width_pt,
                        height_pt=height_pt,
                        anchors=tuple(find_question_anchors(page)),
                        images=tuple(find_embedded_images(page)),
                    )
                )

        loaded.append(replace(source, base_index=base_index, page_count=page_count))
        logger.debug(
            f"{source.name}: pages {base_index + 1}-{base_index + page_count}",
            extra={"source": source.name, "base_index": base_index},
        )
        base_index += page_count

    if errors:
        raise InputValidationError(errors[0], errors)

    warnings = []
    empty_pages = [p.page_number for p in pages if not p.has_text]
    if empty_pages:
        msg = f"No text layer on page(s): {', '.join(map(str, empty_pages))}"
        logger.warning(msg, extra={"pages": empty_pages})
        warnings.append(msg)
    return Corpus(mode=CorpusMode.PAGE_TEXT, sources=loaded, pages=pages, warnings=warnings)


def _build_plain_text_corpus(sources: Sequence[SourceFile]) -> Corpus:
    texts = [_decode_text(source) for source in sources]
    combined = "\n\n".join(text for text in texts if text.strip())
    segments = segment_plain_text(combined)
    loaded = [replace(source, base_index=0, page_count=0) for source in sources]
    return Corpus(mode=CorpusMode.PLAIN_TEXT, sources=loaded, segments=segments)


def _decode_text(source: SourceFile) -> str:
    for encoding in TEXT_ENCODINGS:
        try:
            return source.content.decode(encoding)
        except UnicodeDecodeError:
            continue
    logger.warning(f"{source.name}: undecodable bytes replaced", extra={"source": source.name})
    return source.content.decode("utf-8", errors="replace")


def segment_plain_text(text: str) -> List[TextSegment]:
    """
    Split plain text into question-sized segments.

    A new segment starts at every line whose stripped form begins with a
    leading question number. Text before the first numbered line becomes
    its own unnumbered segment. Without any numbered line the whole text
    is one segment.

    Example:
        >>> [s.leading_number for s in segment_plain_text("1. A\\n① x\\n2. B")]
        [1, 2]
    """
    if not text.strip():
        return []

    blocks: List[List[str]] = [[]]
    for line in text.splitlines():
        if extract_leading_question_number(line) is not None and any(l.strip() for l in blocks[-1]):
            blocks.append([])
        blocks[-1].append(line)

    segments: List[TextSegment] = []
    for block in blocks:
        body = "\n".join(block).strip()
        if not body:
            continue
        segments.append(
            TextSegment(
                index=len(segments),
                text=body,
                leading_number=extract_leading_question_number(body),
            )
        )
    return segments
