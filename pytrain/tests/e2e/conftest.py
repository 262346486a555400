"""Configuration for pytest."""

import shutil
import logging

import pytest

# Import fixtures to make them available to all tests
from pytrain.tests.e2e.fixtures import repo_ctx  # noqa: F401

# Configure logging
logger = logging.getLogger(__name__)

def pytest_collection_modifyitems(config, items):
    """Skip end-to-end tests when git is not installed."""
    if shutil.which("git"):
        return
    skip = pytest.mark.skip(reason="git executable not found")
    for item in items:
        if "/e2e/" in item.nodeid:
            item.add_marker(skip)
