"""
Module: bounds

Purpose:
    Provides the DiagramBounds dataclass - a diagram region in pixel
    coordinates of the untransformed source page image.

Key Functions:
    - DiagramBounds.crop_box(): (left, top, right, bottom) for PIL
    - DiagramBounds.crop_from(image): Crop this region from a PIL image
    - DiagramBounds.to_dict(): Serialize for JSON
    - DiagramBounds.from_dict(data): Deserialize from JSON

Dependencies:
    - dataclasses (std)
    - math (std)
    - PIL.Image (TYPE_CHECKING only)

Used By:
    - core.models.candidates.QuestionCandidate
    - core.models.packages.DiagramAssignment
    - review.bounds_editor: Clamping and handle deltas
    - review.cropper: Cropping page images
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Tuple

MIN_CROP_SIZE = 24  # pixels; smallest diagram side a reviewer can produce

if TYPE_CHECKING:
    from PIL import Image


@dataclass(frozen=True, slots=True)
class DiagramBounds:
    """
    Diagram region in source-image pixels.

    The region is [x, x + width) x [y, y + height). Values may be
    fractional when produced by the extraction service; cropping
    rounds to whole pixels.

    Attributes:
        x: Left edge in pixels
        y: Top edge in pixels
        width: Region width in pixels
        height: Region height in pixels

    Invariants:
        - all values finite
        - width > 0 and height > 0

    Minimum size and page containment are enforced by
    review.bounds_editor, not by the model itself.

    Example:
        >>> b = DiagramBounds(x=10, y=20, width=100, height=50)
        >>> b.right, b.bottom
        (110, 70)
    """

    x: float
    y: float
    width: float
    height: float

    def __post_init__(self) -> None:
        """Validate bounds on construction."""
        for name in ("x", "y", "width", "height"):
            value = getattr(self, name)
            if not isinstance(value, (int, float)) or not math.isfinite(value):
                raise ValueError(f"{name} must be a finite number: {value!r}")
        if self.width <= 0:
            raise ValueError(f"width must be > 0: {self.width}")
        if self.height <= 0:
            raise ValueError(f"height must be > 0: {self.height}")

    # ─────────────────────────────────────────────────────────────────────────
    # Properties
    # ─────────────────────────────────────────────────────────────────────────

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @property
    def center_y(self) -> float:
        return self.y + self.height / 2

    # ─────────────────────────────────────────────────────────────────────────
    # Image Operations
    # ─────────────────────────────────────────────────────────────────────────

    def crop_box(self) -> Tuple[int, int, int, int]:
        """
        Get as an integer (left, top, right, bottom) box for PIL.

        Returns:
            Rounded box; width/height never collapse below 1 pixel.
        """
        left = int(round(self.x))
        top = int(round(self.y))
        right = max(left + 1, int(round(self.right)))
        bottom = max(top + 1, int(round(self.bottom)))
        return left, top, right, bottom

    def crop_from(self, image: Image.Image) -> Image.Image:
        return image.crop(self.crop_box())

    def scaled(self, factor: float) -> DiagramBounds:
        """Return bounds multiplied by factor (e.g. PDF points to render pixels)."""
        return DiagramBounds(
            x=self.x * factor,
            y=self.y * factor,
            width=self.width * factor,
            height=self.height * factor,
        )

    # ─────────────────────────────────────────────────────────────────────────
    # Serialization
    # ─────────────────────────────────────────────────────────────────────────

    def to_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> DiagramBounds:
        """
        Deserialize from a dict with x, y, width, height.

        Raises:
            KeyError: If a key is missing.
            ValueError: If a value is not a finite number or the size is not positive.
        """
        return cls(
            x=float(data["x"]),
            y=float(data["y"]),
            width=float(data["width"]),
            height=float(data["height"]),
        )

    def __repr__(self) -> str:
        return f"DiagramBounds({self.x:g}, {self.y:g}, {self.width:g}x{self.height:g})"
