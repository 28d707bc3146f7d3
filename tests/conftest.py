"""
Pytest configuration and fixtures for MySQLBox tests.

Provides common fixtures and test utilities across all test modules.
"""

import logging
import os
import shutil
import tempfile
from collections.abc import Generator
from pathlib import Path
from unittest.mock import patch

import pytest

from mysqlbox.config import MySQLBoxSettings

from .mock_containers import MockContainerController

TESTDATA_DIR = Path(__file__).parent / "testdata"


@pytest.fixture
def isolated_test_env() -> Generator[dict[str, str], None, None]:
    """
    Create isolated test environment with clean environment variables.

    Yields:
        Dictionary of original environment variables
    """
    # Save original environment
    original_env = os.environ.copy()

    # Clear mysqlbox-related environment variables
    for key in list(os.environ.keys()):
        if key.startswith("MYSQLBOX_"):
            del os.environ[key]

    yield original_env

    # Restore original environment
    os.environ.clear()
    os.environ.update(original_env)


@pytest.fixture(autouse=True)
def restore_root_logger() -> Generator[None, None, None]:
    """Undo setup_logging() calls made by a test."""
    root_logger = logging.getLogger()
    level = root_logger.level
    handlers = [h for h in root_logger.handlers if not _is_pytest_handler(h)]

    yield

    for handler in root_logger.handlers[:]:
        if handler not in handlers and not _is_pytest_handler(handler):
            root_logger.removeHandler(handler)
            handler.close()
    for handler in handlers:
        if handler not in root_logger.handlers:
            root_logger.addHandler(handler)
    root_logger.setLevel(level)


def _is_pytest_handler(handler: logging.Handler) -> bool:
    return type(handler).__module__.startswith("_pytest")


@pytest.fixture
def test_settings(isolated_test_env: dict[str, str], temp_workspace: Path) -> MySQLBoxSettings:
    """
    Create test settings with safe defaults.

    Returns:
        Settings that never read a .env file
    """
    return MySQLBoxSettings(
        _env_file=None,
        log_level="DEBUG",
        log_dir=str(temp_workspace / "logs"),
    )


@pytest.fixture
def temp_workspace() -> Generator[Path, None, None]:
    """
    Create temporary workspace directory for test files.

    Yields:
        Path to temporary workspace
    """
    temp_dir = tempfile.mkdtemp(prefix="mysqlbox_workspace_")
    workspace = Path(temp_dir)

    yield workspace

    # Cleanup
    shutil.rmtree(temp_dir)


@pytest.fixture
def mock_controller() -> MockContainerController:
    """Container controller that never talks to Docker."""
    return MockContainerController()


@pytest.fixture
def ping_ok() -> Generator[None, None, None]:
    """Make every readiness probe succeed."""
    with patch("mysqlbox.database_operations.ConnectionManager.ping", return_value=None):
        yield


@pytest.fixture
def testdata_dir() -> Path:
    return TESTDATA_DIR


# Pytest configuration
def pytest_collection_modifyitems(config, items):
    """Modify test collection to add markers automatically."""
    for item in items:
        # Add markers based on test path/name
        if "integration" in item.nodeid:
            item.add_marker(pytest.mark.integration)
            item.add_marker(pytest.mark.container)

        if "database" in item.nodeid:
            item.add_marker(pytest.mark.database)

        # Mark slow tests
        if any(keyword in item.nodeid for keyword in ["slow", "performance"]):
            item.add_marker(pytest.mark.slow)
