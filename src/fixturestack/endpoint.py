"""
Endpoint resolution for published container ports

Decodes the port-mapping output of the runtime into PortBinding values and
resolves the externally reachable host/port of a container port.
"""

import json
import logging
from typing import Any, Dict, List, Sequence

from .errors import PortResolutionError
from .models import MAX_PORT, NetworkEndpoint, PortBinding

logger = logging.getLogger(__name__)

# Field names the runtimes have used for each side of a binding
HOST_IP_ALIASES = ("HostIp", "HostIP", "host_ip")
HOST_PORT_ALIASES = ("HostPort", "host_port")


def _first_alias(raw: Dict[str, Any], aliases: Sequence[str]) -> str:
    for alias in aliases:
        value = raw.get(alias)
        if value is not None:
            return str(value)
    return ""


def decode_port_bindings(raw: str) -> List[PortBinding]:
    """
    Decode the quoted JSON array printed by the port-mapping inspect.

    Args:
        raw: Runtime stdout, e.g. ``'[{"HostIp":"0.0.0.0","HostPort":"5432"}]'``

    Returns:
        Bindings in runtime order; fields missing from an entry are empty

    Raises:
        PortResolutionError: If the payload is not a JSON array of objects
    """
    payload = raw.strip().strip("'").strip()

    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        raise PortResolutionError(
            f"Cannot decode port mapping: {e}", diagnostics=raw
        ) from e

    if not isinstance(data, list):
        raise PortResolutionError(
            "Port mapping is not a JSON array", diagnostics=raw
        )

    bindings = []
    for entry in data:
        if not isinstance(entry, dict):
            raise PortResolutionError(
                "Port mapping entry is not an object", diagnostics=raw
            )
        bindings.append(
            PortBinding(
                host_ip=_first_alias(entry, HOST_IP_ALIASES),
                host_port=_first_alias(entry, HOST_PORT_ALIASES),
            )
        )
    return bindings


def endpoint_from_binding(binding: PortBinding) -> NetworkEndpoint:
    """Convert a decoded binding into a validated NetworkEndpoint."""
    if not binding.host_ip:
        raise PortResolutionError(
            "Port binding has no host IP", diagnostics=repr(binding)
        )

    try:
        port = int(binding.host_port)
    except ValueError as e:
        raise PortResolutionError(
            f"Port binding has no usable host port: {binding.host_port!r}",
            diagnostics=repr(binding),
        ) from e

    if not 0 < port <= MAX_PORT:
        raise PortResolutionError(
            f"Host port out of range: {port}", diagnostics=repr(binding)
        )

    return NetworkEndpoint(host=binding.host_ip, port=port)


class EndpointResolver:
    """Resolves the host endpoint a container port was published on."""

    def __init__(self, runtime):
        self.runtime = runtime

    def resolve(self, container_id: str, port: str) -> NetworkEndpoint:
        """
        Resolve the published endpoint of ``port``/tcp.

        The first binding reported by the runtime is used when there are
        several (e.g. one for IPv4 and one for IPv6).

        Raises:
            PortResolutionError: If the port has no binding or it is unusable
        """
        raw = self.runtime.inspect_port_mapping(container_id, str(port))

        try:
            bindings = decode_port_bindings(raw)
            if not bindings:
                raise PortResolutionError(
                    f"Container {container_id} has no host binding for port {port}/tcp",
                    diagnostics=raw,
                )
            endpoint = endpoint_from_binding(bindings[0])
        except PortResolutionError as e:
            e.container_id = container_id
            raise

        logger.debug(
            f"Container {container_id} port {port}/tcp published on {endpoint.address}"
        )
        return endpoint
