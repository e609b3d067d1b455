"""
Schema migration module for fixturestack

Applies ordered SQL migration files from a directory to a fixture database
through a psycopg2 connection pool, recording each applied file in a ledger
table so that reruns only apply what is pending.
"""

import hashlib
import logging
import re
import time
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Generator, List, Optional, Union

import psycopg2
from psycopg2.extensions import connection as PostgresConnection
from psycopg2.pool import AbstractConnectionPool

from .errors import MigrationError

logger = logging.getLogger(__name__)

LEDGER_TABLE = "_fixturestack_migrations"

# Arbitrary key shared by every runner; serializes concurrent runs on one database
ADVISORY_LOCK_KEY = 0x66787374

MIGRATION_FILENAME = re.compile(r"^(\d+)_(.+?)(\.up)?\.sql$")
SKIPPED_SUFFIXES = (".down.sql", ".rollback.sql")


@dataclass
class MigrationResult:
    """Result of a migration operation."""
    success: bool
    version: Optional[str] = None
    message: str = ""
    applied_count: int = 0
    execution_time_ms: Optional[int] = None
    error: Optional[Exception] = None


@dataclass
class AppliedMigration:
    """Record of an applied migration."""
    version: str
    description: Optional[str]
    applied_at: datetime
    execution_time_ms: Optional[int]
    checksum: str


class Migration:
    """A single forward migration file."""

    def __init__(self, migration_file: Path):
        """Initialize migration from a SQL file."""
        self.migration_file = migration_file
        self._match = MIGRATION_FILENAME.match(migration_file.name)
        self._validate_file()

    def _validate_file(self):
        if not self.migration_file.exists():
            raise MigrationError(f"Migration file not found: {self.migration_file}")

        if not self.migration_file.is_file():
            raise MigrationError(f"Not a file: {self.migration_file}")

    @property
    def version(self) -> str:
        """Get migration version from filename (e.g., '20221128135505')."""
        if not self._match:
            raise MigrationError(f"Invalid migration filename: {self.migration_file.name}")
        return self._match.group(1)

    @property
    def name(self) -> str:
        """Get migration name from filename (e.g., 'todo')."""
        if not self._match:
            raise MigrationError(f"Invalid migration filename: {self.migration_file.name}")
        return self._match.group(2)

    @property
    def checksum(self) -> str:
        """Calculate SHA-256 checksum of migration content."""
        return hashlib.sha256(self.get_sql().encode("utf-8")).hexdigest()

    def get_sql(self) -> str:
        """Read and return the migration SQL."""
        return self.migration_file.read_text(encoding="utf-8")

    def get_description(self) -> str:
        """Extract description from SQL comment."""
        for line in self.get_sql().split("\n")[:10]:
            if line.strip().startswith("-- Description:"):
                return line.replace("-- Description:", "").strip()
        return self.name.replace("_", " ").title()

    def apply(self, conn: PostgresConnection) -> None:
        """Execute the migration SQL; the caller owns the transaction."""
        with conn.cursor() as cursor:
            cursor.execute(self.get_sql())

    def __repr__(self) -> str:
        return f"Migration({self.migration_file.name!r})"


class MigrationRunner:
    """Applies pending migrations from a directory through a connection pool."""

    def __init__(
        self,
        pool: AbstractConnectionPool,
        migrations_path: Union[str, Path] = "./migrations",
    ):
        """
        Initialize migration runner.

        Args:
            pool: Pool bound to the target database
            migrations_path: Directory containing ``<version>_<name>.sql`` files
        """
        self.pool = pool
        self.migrations_path = Path(migrations_path)

    @contextmanager
    def _connection(self) -> Generator[PostgresConnection, None, None]:
        """Borrow a connection from the pool and return it afterwards."""
        conn = self.pool.getconn()
        try:
            yield conn
        finally:
            self.pool.putconn(conn)

    def _ensure_ledger_table(self, conn: PostgresConnection) -> None:
        with conn.cursor() as cursor:
            cursor.execute(f"""
                CREATE TABLE IF NOT EXISTS {LEDGER_TABLE} (
                    version BIGINT PRIMARY KEY,
                    description TEXT NOT NULL,
                    applied_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
                    execution_time_ms INTEGER,
                    checksum VARCHAR(64) NOT NULL
                );
            """)
        conn.commit()

    def discover_migrations(self) -> List[Migration]:
        """Discover all forward migration files, ordered by numeric version."""
        if not self.migrations_path.is_dir():
            raise MigrationError(
                f"Migrations directory not found: {self.migrations_path}"
            )

        migration_map = {}
        for sql_file in sorted(self.migrations_path.glob("*.sql")):
            if sql_file.name.endswith(SKIPPED_SUFFIXES):
                continue

            migration = Migration(sql_file)
            version = int(migration.version)
            if version in migration_map:
                raise MigrationError(
                    f"Duplicate migration version {migration.version}: "
                    f"{migration_map[version].migration_file.name} and {sql_file.name}"
                )
            migration_map[version] = migration

        return [migration_map[version] for version in sorted(migration_map)]

    def _fetch_applied(self, conn: PostgresConnection) -> List[AppliedMigration]:
        applied = []
        with conn.cursor() as cursor:
            cursor.execute(f"""
                SELECT version, description, applied_at, execution_time_ms, checksum
                FROM {LEDGER_TABLE}
                ORDER BY version;
            """)
            for row in cursor.fetchall():
                applied.append(AppliedMigration(
                    version=str(row[0]),
                    description=row[1],
                    applied_at=row[2],
                    execution_time_ms=row[3],
                    checksum=row[4],
                ))
        conn.commit()
        return applied

    def get_applied_migrations(self) -> List[AppliedMigration]:
        """Get list of migrations that have been applied."""
        with self._connection() as conn:
            self._ensure_ledger_table(conn)
            return self._fetch_applied(conn)

    def _pending(
        self, migrations: List[Migration], applied: List[AppliedMigration]
    ) -> List[Migration]:
        applied_by_version = {int(m.version): m for m in applied}
        pending = []
        for migration in migrations:
            record = applied_by_version.get(int(migration.version))
            if record is None:
                pending.append(migration)
            elif record.checksum != migration.checksum:
                raise MigrationError(
                    f"Migration {migration.version} was applied but has since been modified",
                    diagnostics=f"recorded={record.checksum}, current={migration.checksum}",
                )
        return pending

    def get_pending_migrations(self) -> List[Migration]:
        """Get list of migrations that haven't been applied."""
        return self._pending(self.discover_migrations(), self.get_applied_migrations())

    def migrate(self) -> MigrationResult:
        """
        Apply all pending migrations in version order.

        Each migration runs in its own transaction together with its ledger
        record. The first failure is rolled back and reported; later
        migrations are not attempted.

        Raises:
            MigrationError: If the migration files are missing, malformed or
                differ from what was already applied
        """
        migrations = self.discover_migrations()

        with self._connection() as conn:
            self._ensure_ledger_table(conn)

            with conn.cursor() as cursor:
                cursor.execute("SELECT pg_advisory_lock(%s);", (ADVISORY_LOCK_KEY,))
            try:
                pending = self._pending(migrations, self._fetch_applied(conn))
                if not pending:
                    return MigrationResult(success=True, message="No pending migrations")

                return self._apply_all(conn, pending)
            finally:
                conn.rollback()
                with conn.cursor() as cursor:
                    cursor.execute("SELECT pg_advisory_unlock(%s);", (ADVISORY_LOCK_KEY,))
                conn.commit()

    def _apply_all(
        self, conn: PostgresConnection, pending: List[Migration]
    ) -> MigrationResult:
        applied_count = 0
        last_version = None
        total_start = time.time()

        for migration in pending:
            start_time = time.time()
            logger.info(f"Applying migration {migration.version}: {migration.name}")

            try:
                migration.apply(conn)

                execution_time_ms = int((time.time() - start_time) * 1000)
                with conn.cursor() as cursor:
                    cursor.execute(f"""
                        INSERT INTO {LEDGER_TABLE}
                        (version, description, checksum, execution_time_ms)
                        VALUES (%s, %s, %s, %s);
                    """, (
                        int(migration.version),
                        migration.get_description(),
                        migration.checksum,
                        execution_time_ms,
                    ))

                conn.commit()

            except psycopg2.Error as e:
                conn.rollback()
                logger.error(f"Migration {migration.version} failed: {e}")
                return MigrationResult(
                    success=False,
                    version=migration.version,
                    message=f"Migration {migration.version} ({migration.name}) failed: {e}",
                    applied_count=applied_count,
                    error=e,
                )

            applied_count += 1
            last_version = migration.version
            logger.info(f"Applied migration {migration.version} in {execution_time_ms}ms")

        return MigrationResult(
            success=True,
            version=last_version,
            message=f"Applied {applied_count} migration(s)",
            applied_count=applied_count,
            execution_time_ms=int((time.time() - total_start) * 1000),
        )
