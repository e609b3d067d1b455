"""
Integration test configuration for fixturestack.

Runs against a real Docker or Podman runtime; every test in this directory is
skipped when neither is available.
"""

import subprocess
from pathlib import Path

import pytest

from fixturestack.config import FixturestackConfig

MIGRATIONS_PATH = Path(__file__).parent / "migrations"


def detect_container_runtime():
    """
    Detect available container runtime (Docker or Podman).

    Returns:
        str: 'docker' or 'podman' or None if neither is available
    """
    for runtime in ("docker", "podman"):
        try:
            result = subprocess.run(
                [runtime, "info"], capture_output=True, text=True, timeout=10
            )
            if result.returncode == 0:
                return runtime
        except (subprocess.TimeoutExpired, FileNotFoundError):
            continue
    return None


@pytest.fixture(scope="session")
def container_runtime():
    runtime = detect_container_runtime()
    if runtime is None:
        pytest.skip("No container runtime (Docker or Podman) available for integration tests")
    return runtime


@pytest.fixture(scope="session")
def integration_config(container_runtime) -> FixturestackConfig:
    """Configuration pointing at the detected runtime and the todo migrations."""
    return FixturestackConfig(
        container_runtime=container_runtime,
        migrations_path=str(MIGRATIONS_PATH),
        log_level="DEBUG",
    )


@pytest.fixture
def fixturestack_config(integration_config) -> FixturestackConfig:
    """Override the plugin configuration for integration runs."""
    return integration_config
