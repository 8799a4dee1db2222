"""
Module: review.bounds_editor

Purpose:
    Pure geometry for the diagram review step: sanitizing raw bounds,
    applying a drag delta through one of the box handles, and clamping a
    box to the page's natural pixel size.

Key Functions:
    - sanitize_bounds(): Raw mapping -> DiagramBounds with safe defaults
    - apply_handle_delta(): Move or resize from a corner handle
    - clamp_bounds_to_page(): Keep a box inside the page, never under min size

Dependencies:
    - core.models.bounds: DiagramBounds

Used By:
    - review.reconciliation: Clamps every reviewed box before cropping
    - ingestion.session: Operator edits during diagram review
"""

from __future__ import annotations

import math
from typing import Any, Literal, Mapping, Optional, Tuple, Union

from qbank_toolkit.core.models import DiagramBounds
from qbank_toolkit.core.models.bounds import MIN_CROP_SIZE

Handle = Literal["move", "nw", "ne", "sw", "se"]
HANDLES: Tuple[str, ...] = ("move", "nw", "ne", "sw", "se")

BoundsLike = Union[DiagramBounds, Mapping[str, Any], None]


def _finite_or(value: Any, fallback: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return fallback
    if not math.isfinite(value):
        return fallback
    return float(value)


def sanitize_bounds(bounds: BoundsLike, min_size: int = MIN_CROP_SIZE) -> DiagramBounds:
    """
    Coerce raw bounds into a valid box.

    Non-numeric or non-finite coordinates fall back to 0, sizes to
    min_size; non-positive sizes are raised to min_size.

    Example:
        >>> sanitize_bounds({"x": float("nan"), "y": 5, "width": None, "height": 40})
        DiagramBounds(0, 5, 24x40)
    """
    if isinstance(bounds, DiagramBounds):
        return bounds
    raw = bounds or {}
    width = _finite_or(raw.get("width"), min_size)
    height = _finite_or(raw.get("height"), min_size)
    return DiagramBounds(
        x=_finite_or(raw.get("x"), 0.0),
        y=_finite_or(raw.get("y"), 0.0),
        width=width if width > 0 else min_size,
        height=height if height > 0 else min_size,
    )


def apply_handle_delta(
    initial: DiagramBounds,
    handle: str,
    delta_x: float,
    delta_y: float,
    min_size: int = MIN_CROP_SIZE,
) -> DiagramBounds:
    """
    Apply a drag delta through a handle.

    ``move`` translates without resizing. Corner handles move their two
    edges; the opposite edges stay put. A resize never shrinks a side
    below min_size: a west/north handle that would cross it pins the box
    against the fixed east/south edge.

    Raises:
        ValueError: For an unknown handle.
    """
    if handle not in HANDLES:
        raise ValueError(f"unknown handle: {handle!r}")

    if handle == "move":
        return DiagramBounds(initial.x + delta_x, initial.y + delta_y, initial.width, initial.height)

    x, y, width, height = initial.x, initial.y, initial.width, initial.height
    if "w" in handle:
        x = initial.x + delta_x
        width = initial.width - delta_x
    if "e" in handle:
        width = initial.width + delta_x
    if "n" in handle:
        y = initial.y + delta_y
        height = initial.height - delta_y
    if "s" in handle:
        height = initial.height + delta_y

    if "w" in handle and width <= min_size:
        x = initial.x + (initial.width - min_size)
        width = min_size
    width = max(min_size, width)
    if "n" in handle and height <= min_size:
        y = initial.y + (initial.height - min_size)
        height = min_size
    height = max(min_size, height)

    return DiagramBounds(x, y, width, height)


def clamp_bounds_to_page(
    bounds: BoundsLike,
    natural_size: Optional[Tuple[int, int]] = None,
    min_size: int = MIN_CROP_SIZE,
) -> DiagramBounds:
    """
    Clamp a box into ``[0, page_width] x [0, page_height]``.

    Without a known page size the box's own extent is the page, so only
    negative offsets and undersized sides are corrected.

    Example:
        >>> clamp_bounds_to_page(DiagramBounds(900, -10, 300, 50), (1000, 800))
        DiagramBounds(700, 0, 300x50)
    """
    safe = sanitize_bounds(bounds, min_size)
    if natural_size is not None:
        max_width, max_height = float(natural_size[0]), float(natural_size[1])
    else:
        max_width = max(safe.right, float(min_size))
        max_height = max(safe.bottom, float(min_size))

    width = max(float(min_size), min(safe.width, max_width))
    height = max(float(min_size), min(safe.height, max_height))
    x = max(0.0, min(safe.x, max_width - width))
    y = max(0.0, min(safe.y, max_height - height))
    return DiagramBounds(x, y, width, height)
