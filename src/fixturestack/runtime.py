"""
Container runtime client for fixturestack

Issues run/inspect/stop/rm commands against the docker or podman CLI and
turns non-zero exits into typed errors that keep the runtime's stderr.
"""

import logging
import subprocess
import time
from typing import List, Optional, Type

from .config import FixturestackConfig
from .errors import FixtureError, InspectError, LaunchError, TeardownError
from .logging_config import SubprocessLogHandler
from .models import ContainerDescriptor

logger = logging.getLogger(__name__)

SHORT_ID_LENGTH = 12

STATUS_TEMPLATE = "{{.State.Status}}"

# Renders the host bindings of one port as a quoted JSON array, e.g.
# '[{"HostIp":"0.0.0.0","HostPort":"49153"},{"HostIp":"::","HostPort":"49153"}]'
PORT_MAPPING_TEMPLATE = (
    "'[{{{{range $i,$v := (index .NetworkSettings.Ports \"{port}/tcp\")}}}}"
    "{{{{if $i}}}},{{{{end}}}}{{{{json $v}}}}{{{{end}}}}]'"
)


class RuntimeClient:
    """
    Runs container lifecycle commands through the runtime CLI.

    Every method blocks until the CLI returns. Failures raise the FixtureError
    subclass matching the operation, carrying the CLI's stderr verbatim.
    """

    def __init__(
        self,
        config: Optional[FixturestackConfig] = None,
        log_handler: Optional[SubprocessLogHandler] = None,
    ):
        """Initialize runtime client with configuration."""
        self.config = config or FixturestackConfig()
        self.container_runtime = self.config.container_runtime
        self.log_handler = log_handler or SubprocessLogHandler(
            "container_runtime",
            self.config.log_dir if self.config.enable_file_logging else None,
        )

    def _run(
        self,
        args: List[str],
        error_class: Type[FixtureError],
        timeout: int,
        container_id: Optional[str] = None,
    ) -> str:
        """Run a runtime command and return its stdout."""
        cmd = [self.container_runtime] + args
        self.log_handler.log_command(cmd)

        start_time = time.time()
        try:
            process = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except FileNotFoundError as e:
            raise error_class(
                f"Container runtime not found: {self.container_runtime}",
                diagnostics=str(e),
                container_id=container_id,
            ) from e
        except subprocess.TimeoutExpired as e:
            raise error_class(
                f"'{self.container_runtime} {args[0]}' timed out after {timeout} seconds",
                diagnostics=str(e),
                container_id=container_id,
            ) from e

        self.log_handler.log_output(process.stdout)
        self.log_handler.log_output(process.stderr, logging.WARNING)
        self.log_handler.log_completion(process.returncode, time.time() - start_time)

        if process.returncode != 0:
            raise error_class(
                f"'{self.container_runtime} {args[0]}' failed "
                f"(exit code: {process.returncode})",
                diagnostics=process.stderr or "",
                container_id=container_id,
            )

        return process.stdout or ""

    def launch(self, descriptor: ContainerDescriptor) -> str:
        """
        Launch a detached container with all ports published.

        Args:
            descriptor: Image, port and run arguments

        Returns:
            The 12-character short container identifier
        """
        logger.info(f"Launching container from {descriptor.image}")

        args = ["run", "-P", "-d"]
        if self.config.managed_label:
            args.extend(["--label", self.config.managed_label])
        args.extend(descriptor.args)
        args.append(descriptor.image)

        output = self._run(args, LaunchError, self.config.launch_timeout)

        lines = output.splitlines()
        first_line = lines[0].strip() if lines else ""
        if len(first_line) < SHORT_ID_LENGTH:
            raise LaunchError(
                f"Runtime reported no container id for {descriptor.image}",
                diagnostics=output,
            )

        container_id = first_line[:SHORT_ID_LENGTH]
        logger.info(f"Container {container_id} launched from {descriptor.image}")
        return container_id

    def inspect_status(self, container_id: str) -> str:
        """Get the runtime state string of a container, e.g. ``running``."""
        output = self._run(
            ["inspect", "-f", STATUS_TEMPLATE, container_id],
            InspectError,
            self.config.command_timeout,
            container_id=container_id,
        )
        return output.strip()

    def inspect_port_mapping(self, container_id: str, port: str) -> str:
        """Get the raw quoted JSON list of host bindings for ``port``/tcp."""
        template = PORT_MAPPING_TEMPLATE.format(port=port)
        return self._run(
            ["inspect", "-f", template, container_id],
            InspectError,
            self.config.command_timeout,
            container_id=container_id,
        )

    def stop(self, container_id: str) -> None:
        """Stop a running container."""
        logger.info(f"Stopping container: {container_id}")
        self._run(
            ["stop", container_id],
            TeardownError,
            self.config.command_timeout,
            container_id=container_id,
        )

    def remove(self, container_id: str) -> None:
        """Remove a container together with its anonymous volumes."""
        logger.info(f"Removing container: {container_id}")
        self._run(
            ["rm", "-v", container_id],
            TeardownError,
            self.config.command_timeout,
            container_id=container_id,
        )

    def stop_and_remove(self, container_id: str) -> None:
        """Stop then remove a container; remove is skipped if stop fails."""
        self.stop(container_id)
        self.remove(container_id)

    def list_managed(self) -> List[str]:
        """List ids of all containers carrying the managed label."""
        if not self.config.managed_label:
            return []

        output = self._run(
            ["ps", "-a", "-q", "--filter", f"label={self.config.managed_label}"],
            InspectError,
            self.config.command_timeout,
        )
        return [line.strip() for line in output.splitlines() if line.strip()]
