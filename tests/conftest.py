"""Shared fixtures: synthetic levels written to a temporary directory."""

import pytest

from level_builder import default_level


@pytest.fixture
def level_files():
    """The default synthetic level as bytes (RAC1 layout)."""
    return default_level()


@pytest.fixture
def engine_path(tmp_path, level_files):
    """Path to the engine file of a complete level on disk."""
    return level_files.write(tmp_path / "level")
