"""
fixturestack: disposable containers and PostgreSQL databases for tests

Launches containers through the docker or podman CLI, waits for them to be
ready, resolves their published endpoints and guarantees their removal.
"""

__version__ = "0.1.0"

from .config import FixturestackConfig, load_config
from .container import ContainerHandle, cleanup_managed_containers, start_container
from .database import PostgresFixture
from .errors import (
    DatabaseConnectionError,
    DatabaseCreateError,
    FixtureError,
    InspectError,
    LaunchError,
    MigrationError,
    PortResolutionError,
    ReadinessTimeout,
    TeardownError,
)
from .logging_config import setup_logging
from .models import ContainerDescriptor, NetworkEndpoint, RetryPolicy
from .readiness import async_poll_until_ready, poll_until_ready
from .runtime import RuntimeClient

__all__ = [
    "ContainerDescriptor",
    "ContainerHandle",
    "DatabaseConnectionError",
    "DatabaseCreateError",
    "FixtureError",
    "FixturestackConfig",
    "InspectError",
    "LaunchError",
    "MigrationError",
    "NetworkEndpoint",
    "PortResolutionError",
    "PostgresFixture",
    "ReadinessTimeout",
    "RetryPolicy",
    "RuntimeClient",
    "TeardownError",
    "async_poll_until_ready",
    "cleanup_managed_containers",
    "load_config",
    "poll_until_ready",
    "setup_logging",
    "start_container",
]
