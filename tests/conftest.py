import sys
from pathlib import Path

import pytest
from PIL import Image

# Add src (the package) and tests (shared fakes) to sys.path
TESTS_PATH = Path(__file__).resolve().parent
SRC_PATH = TESTS_PATH.parent / "src"
for path in (SRC_PATH, TESTS_PATH):
    if path.as_posix() not in sys.path:
        sys.path.insert(0, path.as_posix())

from ingest_fakes import draw_page  # noqa: E402


@pytest.fixture
def page_image():
    """An 800x1000 page with ink at (100, 200)-(300, 350)."""
    return draw_page()


@pytest.fixture
def blank_page():
    return Image.new("RGB", (800, 1000), color="white")
