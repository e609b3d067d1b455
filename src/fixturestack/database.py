"""
PostgreSQL test fixtures for fixturestack

A PostgresFixture runs a throwaway PostgreSQL container with generated
credentials, creates a uniquely named database, applies migrations to it and
hands out connection pools. Tearing the fixture down discards the container
and everything in it.
"""

import logging
import time
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Generator, List, Optional, Union

import psycopg2
from psycopg2 import sql
from psycopg2.extensions import ISOLATION_LEVEL_AUTOCOMMIT
from psycopg2.extensions import connection as PostgresConnection
from psycopg2.pool import ThreadedConnectionPool

from .config import FixturestackConfig
from .container import ContainerHandle
from .errors import (
    DatabaseConnectionError,
    DatabaseCreateError,
    FixtureError,
    MigrationError,
    TeardownError,
)
from .models import ContainerDescriptor, FixtureState
from .readiness import poll_until_ready
from .runtime import RuntimeClient
from .schema_migration import MigrationRunner

logger = logging.getLogger(__name__)


def generate_token() -> str:
    """Get a collision-resistant random token."""
    return str(uuid.uuid4())


class PostgresFixture:
    """
    A migrated PostgreSQL database running in its own container.

    Example::

        with PostgresFixture.create("./migrations") as db:
            pool = db.get_pool()
            ...
    """

    def __init__(
        self,
        user: str,
        password: str,
        dbname: str,
        config: Optional[FixturestackConfig] = None,
    ):
        self.user = user
        self.password = password
        self.dbname = dbname
        self.config = config or FixturestackConfig()
        self.container: Optional[ContainerHandle] = None
        self.state = FixtureState.PROVISIONING
        self._pools: List[ThreadedConnectionPool] = []

    @classmethod
    def create(
        cls,
        migrations_path: Union[str, Path],
        config: Optional[FixturestackConfig] = None,
        runtime: Optional[RuntimeClient] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> "PostgresFixture":
        """
        Provision a PostgreSQL container, create the database and migrate it.

        Args:
            migrations_path: Directory of SQL migrations to apply
            config: Configuration (image, port, retry policy, pool size)
            runtime: Runtime client used for the container
            sleep: Delay function used between readiness attempts

        Returns:
            A ready PostgresFixture that owns its container

        Raises:
            LaunchError: If the container could not be launched
            PortResolutionError: If the PostgreSQL port was not published
            ReadinessTimeout: If the container or server never became ready
            DatabaseCreateError: If the database could not be created
            MigrationError: If a migration failed
        """
        config = config or (runtime.config if runtime else FixturestackConfig())
        fixture = cls(
            user=f"postgres_user_{generate_token()}",
            password=f"postgres_password_{generate_token()}",
            dbname=f"test_postgres_{generate_token()}",
            config=config,
        )

        descriptor = ContainerDescriptor(
            image=config.postgres_image,
            port=config.postgres_port,
            args=[
                "-e", f"POSTGRES_USER={fixture.user}",
                "-e", f"POSTGRES_PASSWORD={fixture.password}",
            ],
        )
        fixture.container = ContainerHandle.start(
            descriptor,
            runtime=runtime,
            policy=config.retry_policy(),
            sleep=sleep,
            config=config,
        )

        try:
            fixture._bootstrap(migrations_path, sleep)
        except BaseException as e:
            if isinstance(e, FixtureError):
                e.container_id = fixture.container.container_id
            fixture._discard(e)
            raise

        fixture.state = FixtureState.READY
        return fixture

    @property
    def host(self) -> str:
        return self.container.host if self.container else ""

    @property
    def port(self) -> int:
        return self.container.port if self.container else 0

    def server_url(self) -> str:
        """Get the connection URL of the server, without a database name."""
        if not self.password:
            return f"postgres://{self.user}@{self.host}:{self.port}"
        return f"postgres://{self.user}:{self.password}@{self.host}:{self.port}"

    def database_url(self) -> str:
        """Get the connection URL of the fixture database."""
        return f"{self.server_url()}/{self.dbname}"

    def _bootstrap(self, migrations_path: Union[str, Path], sleep: Callable[[float], None]) -> None:
        self._wait_for_server(sleep)
        self._create_database()
        self._migrate(migrations_path)

    def _check_server(self) -> bool:
        conn = psycopg2.connect(self.server_url())
        conn.close()
        return True

    def _wait_for_server(self, sleep: Callable[[float], None]) -> None:
        result = poll_until_ready(
            self._check_server,
            policy=self.config.retry_policy(),
            sleep=sleep,
            description=f"PostgreSQL at {self.host}:{self.port}",
        )
        logger.info(f"PostgreSQL is ready to go: {result.get_summary()}")

    def _create_database(self) -> None:
        try:
            conn = psycopg2.connect(self.server_url())
        except psycopg2.Error as e:
            raise DatabaseConnectionError(
                f"Cannot connect to PostgreSQL at {self.host}:{self.port}",
                diagnostics=str(e),
            ) from e

        try:
            # CREATE DATABASE cannot run inside a transaction block
            conn.set_isolation_level(ISOLATION_LEVEL_AUTOCOMMIT)
            with conn.cursor() as cursor:
                cursor.execute(
                    sql.SQL("CREATE DATABASE {};").format(sql.Identifier(self.dbname))
                )
        except psycopg2.Error as e:
            raise DatabaseCreateError(
                f"Failed to create database {self.dbname}",
                diagnostics=str(e),
            ) from e
        finally:
            conn.close()

        logger.info(f"PostgreSQL created database {self.dbname}")

    def _migrate(self, migrations_path: Union[str, Path]) -> None:
        pool = self._open_pool(self.config.pool_max_connections)
        try:
            runner = MigrationRunner(pool, migrations_path)
            result = runner.migrate()
        except psycopg2.Error as e:
            raise MigrationError(
                f"Failed to migrate database {self.dbname}",
                diagnostics=str(e),
            ) from e
        finally:
            pool.closeall()

        if not result.success:
            raise MigrationError(
                result.message,
                diagnostics=str(result.error) if result.error else "",
            )

        logger.info(f"PostgreSQL database {self.dbname} migrated: {result.message}")

    def _open_pool(self, max_connections: int) -> ThreadedConnectionPool:
        try:
            return ThreadedConnectionPool(1, max_connections, dsn=self.database_url())
        except psycopg2.Error as e:
            raise DatabaseConnectionError(
                f"Cannot open connection pool to database {self.dbname}",
                diagnostics=str(e),
            ) from e

    def get_pool(self, max_connections: Optional[int] = None) -> ThreadedConnectionPool:
        """
        Get a new connection pool bound to the fixture database.

        Each call returns an independent pool. Pools still open at teardown
        are closed before the container is removed.

        Args:
            max_connections: Pool size, defaults to ``config.pool_max_connections``
        """
        if max_connections is None:
            max_connections = self.config.pool_max_connections
        if max_connections < 1:
            raise ValueError(f"max_connections must be at least 1, got {max_connections}")

        pool = self._open_pool(max_connections)
        self._pools.append(pool)
        return pool

    @contextmanager
    def connection(self) -> Generator[PostgresConnection, None, None]:
        """Get a single connection to the fixture database, closed on exit."""
        try:
            conn = psycopg2.connect(self.database_url())
        except psycopg2.Error as e:
            raise DatabaseConnectionError(
                f"Cannot connect to database {self.dbname}",
                diagnostics=str(e),
            ) from e

        try:
            yield conn
        finally:
            conn.close()

    def _close_pools(self) -> None:
        pools, self._pools = self._pools, []
        for pool in pools:
            if not pool.closed:
                pool.closeall()

    def teardown(self) -> None:
        """Close outstanding pools and discard the container."""
        if self.state == FixtureState.TORN_DOWN:
            return
        self.state = FixtureState.TORN_DOWN

        try:
            self._close_pools()
        finally:
            if self.container is not None:
                self.container.teardown()
                logger.info(f"PostgreSQL container {self.container.container_id} dropped")

    def _discard(self, cause: BaseException) -> None:
        """Tear down after a failed bootstrap, chaining any teardown error."""
        try:
            self.teardown()
        except TeardownError as e:
            raise e from cause

    def __enter__(self) -> "PostgresFixture":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.teardown()

    def __repr__(self) -> str:
        return (
            f"PostgresFixture(dbname={self.dbname!r}, "
            f"host={self.host!r}, port={self.port}, state={self.state.value!r})"
        )
