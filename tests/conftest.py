"""
Pytest configuration and fixtures for fixturestack tests.

Provides common fixtures and test utilities across all test modules.
"""

import os
import shutil
import tempfile
from collections.abc import Generator
from pathlib import Path

import pytest

from fixturestack.config import FixturestackConfig

from .mock_containers import MockRuntimeClient


@pytest.fixture
def isolated_test_env() -> Generator[dict[str, str], None, None]:
    """
    Create isolated test environment with clean environment variables.

    Yields:
        Dictionary of original environment variables
    """
    original_env = os.environ.copy()

    for key in list(os.environ.keys()):
        if key.startswith("FIXTURESTACK_"):
            del os.environ[key]

    yield original_env

    os.environ.clear()
    os.environ.update(original_env)


@pytest.fixture
def test_config(isolated_test_env: dict[str, str]) -> FixturestackConfig:
    """
    Create test configuration with safe defaults.

    Returns:
        Test configuration instance
    """
    return FixturestackConfig(
        log_level="DEBUG",
        verbose=True,
    )


@pytest.fixture
def mock_runtime(test_config: FixturestackConfig) -> MockRuntimeClient:
    """Provide an in-memory runtime client."""
    return MockRuntimeClient(test_config)


@pytest.fixture
def sleeps() -> list:
    """Record of delays requested by readiness polling."""
    return []


@pytest.fixture
def fake_sleep(sleeps: list):
    """Sleep replacement that records delays instead of blocking."""
    return sleeps.append


@pytest.fixture
def temp_workspace() -> Generator[Path, None, None]:
    """
    Create temporary workspace directory for test files.

    Yields:
        Path to temporary workspace
    """
    temp_dir = tempfile.mkdtemp(prefix="fixturestack_workspace_")
    workspace = Path(temp_dir)

    yield workspace

    shutil.rmtree(temp_dir)


@pytest.fixture
def migrations_dir(temp_workspace: Path) -> Path:
    """Create a migrations directory holding the todo table migration."""
    path = temp_workspace / "migrations"
    path.mkdir()
    (path / "20221128135505_todo.sql").write_text(
        "CREATE TABLE todos (id SERIAL PRIMARY KEY, title VARCHAR(255) NOT NULL);"
    )
    return path


# Pytest configuration
def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "slow: marks tests as slow")
    config.addinivalue_line("markers", "integration: marks tests as integration tests")


def pytest_collection_modifyitems(config, items):
    """Modify test collection to add markers automatically."""
    for item in items:
        if "integration" in item.nodeid:
            item.add_marker(pytest.mark.integration)
