"""
Configuration file for pytest.

This file defines shared fixtures for the test suite. Fixtures defined here are
automatically available to all tests.
"""

import pathlib
import tempfile

import pytest

from kduproc.utils import config
from tests.utils.mocks import create_test_ppm


@pytest.fixture(scope="function")
def temp_dir():
    """
    Pytest fixture to create a temporary directory for a test function.

    Yields:
        pathlib.Path: The path to the created temporary directory.

    The directory and its contents are automatically removed after the test finishes.
    """
    with tempfile.TemporaryDirectory(prefix="kduproc_test_") as tmpdir:
        yield pathlib.Path(tmpdir)


@pytest.fixture(scope="session")
def project_root():
    """
    Pytest fixture to get the root directory of the project.

    Returns:
        pathlib.Path: The project root directory.
    """
    # Assumes conftest.py is in the 'tests' directory, one level below the root
    return pathlib.Path(__file__).parent.parent


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch, tmp_path):
    """Point the config loader at an empty per-test location."""
    monkeypatch.setenv("KDUPROC_CONFIG_FILE", str(tmp_path / "no-such-config.toml"))
    config._load_config.cache_clear()
    yield
    config._load_config.cache_clear()


@pytest.fixture
def ppm_bytes():
    """A 64x48 RGB raster in PPM encoding."""
    return create_test_ppm()


@pytest.fixture
def jp2_source(temp_dir):
    """A placeholder .jp2 file; its contents are never decoded in unit tests."""
    path = temp_dir / "sample image.jp2"
    path.write_bytes(b"\x00\x00\x00\x0cjP  \r\n\x87\n")
    return path


JP2INFO_XML = """<?xml version="1.0" encoding="UTF-8"?>
<JP2_family_file>
  <jp2_header>
    <image_header>
      <width>{width}</width>
      <height>{height}</height>
    </image_header>
  </jp2_header>
  <codestream>
    <width>{width}</width>
    <height>{height}</height>
    <components>3</components>
    <tiles>1</tiles>
  </codestream>
</JP2_family_file>
"""


@pytest.fixture
def jp2info_xml():
    """Factory for kdu_jp2info XML output of a given size."""

    def _make(width: int = 800, height: int = 600) -> str:
        return JP2INFO_XML.format(width=width, height=height)

    return _make
