"""Pytest configuration for the HyperianLang test suite."""

import sys
from pathlib import Path

import pytest

SRC_DIR = Path(__file__).parent.parent / "src"

# Import the package from the source tree without installing it
sys.path.insert(0, str(SRC_DIR))

from hyperian.host import World  # noqa: E402


@pytest.fixture
def world() -> World:
    """A quiet in-memory world: nothing printed, no sleeping."""
    return World(echo=False, sleep=False)
