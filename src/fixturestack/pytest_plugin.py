"""
pytest plugin for fixturestack

Exposes containers and migrated PostgreSQL databases as pytest fixtures.
A resource that cannot be torn down stops the whole session.
"""

import logging
from typing import Callable, Generator, Iterable, List, Sequence, TypeVar, Union

import pytest

from .config import FixturestackConfig, load_config
from .container import ContainerHandle, start_container
from .database import PostgresFixture
from .errors import TeardownError
from .logging_config import setup_logging

logger = logging.getLogger(__name__)

TEARDOWN_FAILURE_EXIT_CODE = 3

T = TypeVar("T")


def _abort(failures: List[TeardownError], config: FixturestackConfig) -> None:
    """Stop the session for leaked containers, or re-raise when aborting is off."""
    if not config.abort_on_teardown_failure:
        raise failures[0]

    details = "\n".join(e.get_detailed_message() for e in failures)
    pytest.exit(
        f"fixturestack: aborting, {len(failures)} container(s) could not be removed:\n"
        f"{details}",
        returncode=TEARDOWN_FAILURE_EXIT_CODE,
    )


def provision(start: Callable[[], T], config: FixturestackConfig) -> T:
    """
    Run a provisioning call inside a fixture.

    A TeardownError means a failed start could not be cleaned up and the
    container is leaked, so it takes the same abort path as ``release``.
    Other errors propagate as test errors.
    """
    try:
        return start()
    except TeardownError as e:
        _abort([e], config)
        raise


def release_all(resources: Iterable, config: FixturestackConfig) -> None:
    """
    Tear down every container handle or database fixture in ``resources``.

    All teardowns are attempted before any TeardownError is acted on. With
    ``config.abort_on_teardown_failure`` the session is then stopped through
    ``pytest.exit``; otherwise the first failure is raised.
    """
    failures: List[TeardownError] = []
    for resource in resources:
        try:
            resource.teardown()
        except TeardownError as e:
            failures.append(e)

    if failures:
        _abort(failures, config)


def release(resource, config: FixturestackConfig) -> None:
    """Tear down a single container handle or database fixture."""
    release_all([resource], config)


def pytest_configure(config):
    """Register fixturestack markers."""
    config.addinivalue_line("markers", "container: marks tests that require containers")
    config.addinivalue_line("markers", "database: marks tests that require database")


@pytest.fixture(scope="session")
def fixturestack_config() -> FixturestackConfig:
    """Configuration loaded from FIXTURESTACK_* environment variables."""
    config = load_config()
    setup_logging(
        log_dir=config.log_dir,
        verbose=config.verbose,
        log_level=config.log_level,
        enable_file_logging=config.enable_file_logging,
    )
    return config


@pytest.fixture
def postgres_fixture(
    fixturestack_config: FixturestackConfig,
) -> Generator[PostgresFixture, None, None]:
    """A freshly migrated PostgreSQL database, discarded after the test."""
    fixture = provision(
        lambda: PostgresFixture.create(
            fixturestack_config.get_migrations_path(), config=fixturestack_config
        ),
        fixturestack_config,
    )
    try:
        yield fixture
    finally:
        release(fixture, fixturestack_config)


@pytest.fixture
def postgres_pool(postgres_fixture: PostgresFixture):
    """Connection pool bound to the ``postgres_fixture`` database."""
    pool = postgres_fixture.get_pool()
    yield pool
    if not pool.closed:
        pool.closeall()


@pytest.fixture
def container_factory(
    fixturestack_config: FixturestackConfig,
) -> Generator[Callable[..., ContainerHandle], None, None]:
    """
    Start containers on demand; every container started is torn down after
    the test.
    """
    handles: List[ContainerHandle] = []

    def factory(
        image: str, port: Union[str, int], args: Sequence[str] = ()
    ) -> ContainerHandle:
        handle = provision(
            lambda: start_container(image, port, args, config=fixturestack_config),
            fixturestack_config,
        )
        handles.append(handle)
        return handle

    try:
        yield factory
    finally:
        release_all(reversed(handles), fixturestack_config)
