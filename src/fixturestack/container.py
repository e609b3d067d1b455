"""
Container lifecycle management for fixturestack

A ContainerHandle owns exactly one launched container: it is created by the
launch -> resolve endpoint -> wait for running sequence and stops and removes
the container exactly once, on every exit path of the ``with`` block that
holds it.
"""

import logging
import time
from typing import Callable, List, Optional, Sequence, Union

from .config import FixturestackConfig
from .endpoint import EndpointResolver
from .errors import FixtureError, TeardownError
from .models import ContainerDescriptor, ContainerState, NetworkEndpoint, RetryPolicy
from .readiness import poll_until_ready
from .runtime import RuntimeClient

logger = logging.getLogger(__name__)

RUNNING_STATUS = "running"


class ContainerHandle:
    """
    Handle to one running container and its published endpoint.

    Use ``ContainerHandle.start`` (or ``start_container``) to create one, and
    hold it in a ``with`` block or call ``teardown()`` explicitly.
    """

    def __init__(
        self,
        container_id: str,
        endpoint: NetworkEndpoint,
        runtime: RuntimeClient,
        descriptor: Optional[ContainerDescriptor] = None,
    ):
        self._container_id = container_id
        self._endpoint = endpoint
        self._runtime = runtime
        self._descriptor = descriptor
        self._state = ContainerState.READY
        self._teardown_started = False

    @classmethod
    def start(
        cls,
        descriptor: ContainerDescriptor,
        runtime: Optional[RuntimeClient] = None,
        policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], None] = time.sleep,
        config: Optional[FixturestackConfig] = None,
    ) -> "ContainerHandle":
        """
        Launch a container and wait until the runtime reports it running.

        Args:
            descriptor: Image, internal port and run arguments
            runtime: Runtime client (built from ``config`` when omitted)
            policy: Readiness retry policy (from ``config`` when omitted)
            sleep: Delay function used between readiness attempts
            config: Configuration used for defaults

        Returns:
            A ready ContainerHandle

        Raises:
            LaunchError: If the runtime could not launch the container
            PortResolutionError: If the published endpoint cannot be resolved
            ReadinessTimeout: If the container never reached ``running``
            TeardownError: If cleanup after one of the failures above failed
        """
        config = config or (runtime.config if runtime else FixturestackConfig())
        runtime = runtime or RuntimeClient(config)
        policy = policy or config.retry_policy()

        # Nothing exists to tear down if launch fails
        container_id = runtime.launch(descriptor)

        try:
            endpoint = EndpointResolver(runtime).resolve(container_id, descriptor.port)
            result = poll_until_ready(
                lambda: runtime.inspect_status(container_id) == RUNNING_STATUS,
                policy=policy,
                sleep=sleep,
                description=f"Container {container_id}",
            )
        except BaseException as e:
            if isinstance(e, FixtureError):
                e.container_id = container_id
            logger.error(
                f"Container {container_id} from {descriptor.image} failed to start: "
                f"{str(e) or type(e).__name__}"
            )
            _discard(runtime, container_id, e)
            raise

        logger.info(
            f"Container started - image: {descriptor.image}, id: {container_id}, "
            f"host: {endpoint.address} ({result.attempts} attempt(s))"
        )
        return cls(container_id, endpoint, runtime, descriptor)

    @property
    def container_id(self) -> str:
        return self._container_id

    @property
    def endpoint(self) -> NetworkEndpoint:
        return self._endpoint

    @property
    def host(self) -> str:
        return self._endpoint.host

    @property
    def port(self) -> int:
        return self._endpoint.port

    @property
    def descriptor(self) -> Optional[ContainerDescriptor]:
        return self._descriptor

    @property
    def state(self) -> ContainerState:
        return self._state

    def teardown(self) -> None:
        """
        Stop and remove the container.

        Only the first call has any effect. A failure is raised as
        TeardownError and is not retried: the container must be treated as
        leaked.
        """
        if self._teardown_started:
            return
        self._teardown_started = True

        try:
            self._runtime.stop_and_remove(self._container_id)
        except TeardownError as e:
            logger.critical(
                f"Container {self._container_id} could not be removed and is leaked: {e}"
            )
            raise

        self._state = ContainerState.STOPPED
        logger.info(f"Container {self._container_id} removed")

    def __enter__(self) -> "ContainerHandle":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.teardown()

    def __repr__(self) -> str:
        return (
            f"ContainerHandle(id={self._container_id!r}, "
            f"endpoint={self._endpoint.address!r}, state={self._state.value!r})"
        )


def _discard(runtime: RuntimeClient, container_id: str, cause: BaseException) -> None:
    """Tear down a container whose startup failed, chaining any teardown error."""
    try:
        runtime.stop_and_remove(container_id)
    except TeardownError as e:
        logger.critical(
            f"Container {container_id} could not be removed after failed startup: {e}"
        )
        raise e from cause


def start_container(
    image: str,
    port: Union[str, int],
    args: Sequence[str] = (),
    **kwargs,
) -> ContainerHandle:
    """
    Start a container for running tests.

    Example::

        with start_container("postgres:14-alpine", 5432,
                             ["-e", "POSTGRES_PASSWORD=password"]) as container:
            connect(container.host, container.port)
    """
    return ContainerHandle.start(ContainerDescriptor(image, port, args), **kwargs)


def cleanup_managed_containers(runtime: Optional[RuntimeClient] = None) -> List[str]:
    """
    Stop and remove every container carrying the managed label.

    Intended for recovering from an aborted session. It also removes
    containers owned by other sessions still running on the same daemon.

    Returns:
        Ids of the containers removed
    """
    runtime = runtime or RuntimeClient()
    removed = []
    for container_id in runtime.list_managed():
        runtime.stop_and_remove(container_id)
        removed.append(container_id)

    logger.info(f"Removed {len(removed)} managed container(s)")
    return removed
