"""
Data models for fixturestack

Value types passed between the runtime client, endpoint resolver, readiness
poller and fixtures, plus the lifecycle states of container handles and
database fixtures.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Sequence, Union

MAX_PORT = 65535


class ContainerState(Enum):
    """
    Lifecycle states of a container handle.

    A failed start never yields a handle; LaunchError, PortResolutionError
    and ReadinessTimeout stand for the failure states.
    """

    READY = "ready"
    STOPPED = "stopped"


class FixtureState(Enum):
    """
    Lifecycle states of a database fixture.

    Provisioning failures surface as LaunchError/ReadinessTimeout,
    DatabaseCreateError and MigrationError instead of states.
    """

    PROVISIONING = "provisioning"
    READY = "ready"
    TORN_DOWN = "torn_down"


@dataclass(frozen=True)
class ContainerDescriptor:
    """What to launch: image, internal port to publish, extra run arguments."""

    image: str
    port: Union[str, int]
    args: Sequence[str] = ()

    def __post_init__(self):
        object.__setattr__(self, "port", str(self.port))
        object.__setattr__(self, "args", tuple(self.args))


@dataclass(frozen=True)
class PortBinding:
    """One host binding as reported by the runtime; missing fields are empty."""

    host_ip: str = ""
    host_port: str = ""


@dataclass(frozen=True)
class NetworkEndpoint:
    """Externally reachable address of a published container port."""

    host: str
    port: int

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    @property
    def is_valid(self) -> bool:
        return bool(self.host) and 0 < self.port <= MAX_PORT


@dataclass(frozen=True)
class RetryPolicy:
    """
    Attempt budget and backoff schedule for readiness polling.

    The delay after attempt ``i`` is ``i * backoff_seconds``; no delay
    follows the final attempt.
    """

    max_attempts: int = 10
    backoff_seconds: float = 1.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.backoff_seconds < 0:
            raise ValueError("backoff_seconds cannot be negative")

    def delay_for_attempt(self, attempt: int) -> float:
        """Get the delay in seconds to wait after a failed attempt."""
        return attempt * self.backoff_seconds


@dataclass
class ReadinessResult:
    """Result of a successful readiness poll."""

    attempts: int
    elapsed: float = 0.0
    description: str = ""
    delays: List[float] = field(default_factory=list)

    def get_summary(self) -> str:
        """Get a summary string for the readiness result."""
        return (
            f"{self.description} ready after {self.attempts} attempt(s) "
            f"({self.elapsed:.1f}s)"
        )
