"""
Module: review.cropper

Purpose:
    Image helpers for previews and diagram crops: base64 JPEG encoding,
    clamped cropping and a blank-crop check.

Key Functions:
    - encode_image_base64(): PIL image -> base64 JPEG
    - crop_diagram(): Clamp bounds to the page and crop
    - is_blank_crop(): Detect crops with (almost) no ink

Dependencies:
    - PIL: Image manipulation
    - numpy: Pixel statistics

Used By:
    - ingestion.extraction: Page images for the service and previews
    - review.reconciliation: Diagram crops
"""

from __future__ import annotations

import base64
import io
import logging

import numpy as np
from PIL import Image

from qbank_toolkit.core.models import DiagramBounds
from qbank_toolkit.core.models.bounds import MIN_CROP_SIZE

from .bounds_editor import clamp_bounds_to_page

logger = logging.getLogger(__name__)

JPEG_QUALITY = 90
INK_THRESHOLD = 245  # grayscale values below this count as ink
MIN_INK_RATIO = 0.002


def encode_image_base64(image: Image.Image, quality: int = JPEG_QUALITY) -> str:
    """Encode as JPEG and return base64 text (no data-URL prefix)."""
    if image.mode not in ("RGB", "L"):
        image = image.convert("RGB")
    buffer = io.BytesIO()
    image.save(buffer, format="JPEG", quality=quality)
    return base64.b64encode(buffer.getvalue()).decode("ascii")


def crop_diagram(
    page_image: Image.Image,
    bounds: DiagramBounds,
    min_size: int = MIN_CROP_SIZE,
) -> Image.Image:
    """
    Crop a diagram from a page image.

    Bounds are clamped to the page first, so a box partly outside the
    page is cut at the edge instead of padding with black.
    """
    clamped = clamp_bounds_to_page(bounds, (page_image.width, page_image.height), min_size)
    return clamped.crop_from(page_image)


def is_blank_crop(image: Image.Image, min_ink_ratio: float = MIN_INK_RATIO) -> bool:
    """True if nearly every pixel of the crop is background."""
    gray = np.asarray(image.convert("L"), dtype=np.uint8)
    if gray.size == 0:
        return True
    ink_ratio = float(np.count_nonzero(gray < INK_THRESHOLD)) / gray.size
    return ink_ratio < min_ink_ratio
