import sys
from pathlib import Path

import pytest

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from chatcards.layout import LayoutUnavailableError, Typography  # noqa: E402
from chatcards.pagination import PaginationConfig  # noqa: E402


def char_measure(per_char: int = 1):
    """Deterministic stand-in for the layout oracle: height grows with length."""

    def measure(fragment: str, extra_height: int = 0) -> int:
        return len(fragment) * per_char + extra_height

    return measure


@pytest.fixture
def measure():
    return char_measure()


@pytest.fixture
def small_config():
    # Chrome is 52 + 56 = 108 per turn.
    return PaginationConfig(budget=660, role_header=52, item_padding=56, turn_gap=16)


@pytest.fixture(scope="session")
def typography():
    try:
        return Typography.load(font_size=20, scale=1, download=False)
    except LayoutUnavailableError:
        pytest.skip("no TrueType font available on this machine")
