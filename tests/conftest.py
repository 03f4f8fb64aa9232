"""Pytest configuration and fixtures."""

import sys
from collections.abc import Generator
from pathlib import Path

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for directory_mock imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

from directory_mock import MockDirectoryContext  # noqa: E402


@pytest.fixture
def dirs(tmp_path: Path) -> tuple[Path, Path]:
    """Existing specs and state directories."""
    specs_dir = tmp_path / "specs"
    state_dir = tmp_path / "state"
    specs_dir.mkdir()
    state_dir.mkdir()
    return specs_dir, state_dir


@pytest.fixture
def mock_directory() -> Generator[MockDirectoryContext, None, None]:
    """In-memory directory behind the client factory."""
    with MockDirectoryContext() as ctx:
        yield ctx
