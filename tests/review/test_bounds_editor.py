"""
Tests for review.bounds_editor

Test Coverage:
- sanitize_bounds(): Non-finite and missing values
- apply_handle_delta(): Move and corner resizes, minimum size pinning
- clamp_bounds_to_page(): Boxes pulled back inside the page
"""
import math

import pytest

from qbank_toolkit.core.models import DiagramBounds
from qbank_toolkit.review.bounds_editor import apply_handle_delta, clamp_bounds_to_page, sanitize_bounds

BOX = DiagramBounds(100, 100, 200, 100)


def _tuple(bounds):
    return bounds.x, bounds.y, bounds.width, bounds.height


class TestSanitize:
    def test_sanitize_when_nan_and_none_then_defaults(self):
        bounds = sanitize_bounds({"x": float("nan"), "y": 5, "width": None, "height": 40})

        assert _tuple(bounds) == (0, 5, 24, 40)

    def test_sanitize_when_negative_size_then_min_size(self):
        bounds = sanitize_bounds({"x": 1, "y": 2, "width": -10, "height": math.inf}, min_size=30)

        assert (bounds.width, bounds.height) == (30, 30)

    def test_sanitize_when_none_then_min_box_at_origin(self):
        assert _tuple(sanitize_bounds(None)) == (0, 0, 24, 24)


class TestApplyHandleDelta:
    def test_move_when_dragged_then_translated(self):
        assert _tuple(apply_handle_delta(BOX, "move", -20, 15)) == (80, 115, 200, 100)

    def test_se_when_dragged_then_east_and_south_edges_move(self):
        assert _tuple(apply_handle_delta(BOX, "se", 30, -20)) == (100, 100, 230, 80)

    def test_nw_when_dragged_then_west_and_north_edges_move(self):
        assert _tuple(apply_handle_delta(BOX, "nw", 10, 20)) == (110, 120, 190, 80)

    def test_nw_when_dragged_past_min_then_pinned_to_fixed_edges(self):
        """The box stops at min size against the unmoved east/south edges."""
        bounds = apply_handle_delta(BOX, "nw", 500, 500, min_size=24)

        assert _tuple(bounds) == (276, 176, 24, 24)
        assert bounds.right == BOX.right
        assert bounds.bottom == BOX.bottom

    def test_ne_when_shrunk_past_min_then_min_width(self):
        bounds = apply_handle_delta(BOX, "ne", -500, 0)

        assert (bounds.x, bounds.width) == (100, 24)

    def test_unknown_handle_then_raises(self):
        with pytest.raises(ValueError):
            apply_handle_delta(BOX, "n", 0, 0)


class TestClamp:
    def test_clamp_when_off_right_and_top_then_shifted_inside(self):
        bounds = clamp_bounds_to_page(DiagramBounds(900, -10, 300, 50), (1000, 800))

        assert _tuple(bounds) == (700, 0, 300, 50)

    def test_clamp_when_larger_than_page_then_page_sized(self):
        bounds = clamp_bounds_to_page(DiagramBounds(0, 0, 2000, 3000), (800, 1000))

        assert _tuple(bounds) == (0, 0, 800, 1000)

    def test_clamp_when_inside_then_unchanged(self):
        assert clamp_bounds_to_page(BOX, (800, 1000)) == BOX
