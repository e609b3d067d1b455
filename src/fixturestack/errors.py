"""
Error taxonomy for fixturestack

Every failure raised by the runtime client, the readiness poller, container
handles and database fixtures derives from FixtureError and keeps the raw
diagnostic text reported by the collaborator (runtime stderr, driver message).
"""

from typing import Optional


class FixtureError(RuntimeError):
    """Base class for fixture provisioning and teardown failures."""

    def __init__(
        self,
        message: str,
        diagnostics: str = "",
        container_id: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.diagnostics = diagnostics
        self.container_id = container_id

    def get_detailed_message(self) -> str:
        """Get message with container id and diagnostics appended."""
        parts = [self.message]
        if self.container_id:
            parts.append(f"container: {self.container_id}")
        if self.diagnostics:
            parts.append(self.diagnostics.strip())
        return "\n".join(parts)

    def __str__(self) -> str:
        if self.diagnostics:
            return f"{self.message}\n{self.diagnostics.strip()}"
        return self.message


class LaunchError(FixtureError):
    """The runtime refused or failed to launch a container."""
    pass


class InspectError(FixtureError):
    """A runtime inspect command failed."""
    pass


class PortResolutionError(FixtureError):
    """The published host endpoint for a container port could not be resolved."""
    pass


class ReadinessTimeout(FixtureError):
    """A readiness check did not succeed within its attempt budget."""

    def __init__(
        self,
        message: str,
        attempts: int,
        last_error: Optional[BaseException] = None,
        diagnostics: str = "",
        container_id: Optional[str] = None,
    ):
        if not diagnostics and last_error is not None:
            diagnostics = str(last_error)
        super().__init__(message, diagnostics=diagnostics, container_id=container_id)
        self.attempts = attempts
        self.last_error = last_error


class TeardownError(FixtureError):
    """Stopping or removing a container failed; the container may be leaked."""
    pass


class DatabaseCreateError(FixtureError):
    """The CREATE DATABASE statement failed."""
    pass


class MigrationError(FixtureError):
    """Discovering or applying schema migrations failed."""
    pass


class DatabaseConnectionError(FixtureError):
    """A connection or connection pool to the fixture database could not be opened."""
    pass
