"""
Tests for core.models.bounds

Test Coverage:
- DiagramBounds: Validation, derived edges, crop box, scaling, serialization
"""
import math

import pytest
from PIL import Image

from qbank_toolkit.core.models import DiagramBounds


class TestDiagramBounds:
    def test_create_when_valid_then_edges_derived(self):
        """right/bottom are derived from origin and size."""
        bounds = DiagramBounds(x=10, y=20, width=100, height=50)

        assert bounds.right == 110
        assert bounds.bottom == 70
        assert bounds.center_y == 45

    @pytest.mark.parametrize(
        "kwargs",
        [
            dict(x=0, y=0, width=0, height=10),
            dict(x=0, y=0, width=10, height=-1),
            dict(x=math.nan, y=0, width=10, height=10),
            dict(x=0, y=math.inf, width=10, height=10),
        ],
    )
    def test_create_when_invalid_then_raises(self, kwargs):
        """Non-finite values and non-positive sizes are rejected."""
        with pytest.raises(ValueError):
            DiagramBounds(**kwargs)

    def test_crop_box_when_fractional_then_rounded(self):
        """Crop boxes are whole pixels."""
        bounds = DiagramBounds(x=10.4, y=19.6, width=99.8, height=50.2)

        assert bounds.crop_box() == (10, 20, 110, 70)

    def test_crop_from_when_applied_then_region_size(self):
        image = Image.new("RGB", (400, 300), "white")
        bounds = DiagramBounds(x=50, y=40, width=120, height=80)

        crop = bounds.crop_from(image)

        assert crop.size == (120, 80)

    def test_scaled_when_factor_two_then_all_doubled(self):
        """Points to 144-dpi pixels is a factor of two."""
        assert DiagramBounds(1, 2, 3, 4).scaled(2.0) == DiagramBounds(2, 4, 6, 8)

    def test_from_dict_when_round_tripped_then_equal(self):
        bounds = DiagramBounds(5, 6, 70, 80)

        assert DiagramBounds.from_dict(bounds.to_dict()) == bounds

    def test_from_dict_when_key_missing_then_key_error(self):
        with pytest.raises(KeyError):
            DiagramBounds.from_dict({"x": 1, "y": 2, "width": 3})
