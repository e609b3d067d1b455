"""
Tests for the container runtime client

Tests command construction, short id extraction and error mapping with the
runtime CLI replaced by a mocked subprocess.run.
"""

import subprocess
from unittest.mock import Mock, patch

import pytest

from fixturestack.errors import InspectError, LaunchError, TeardownError
from fixturestack.models import ContainerDescriptor
from fixturestack.runtime import RuntimeClient

FULL_ID = "3f4e8a2b9c1d7e6f5a4b3c2d1e0f9a8b7c6d5e4f3a2b1c0d9e8f7a6b5c4d3e2f"


class TestRuntimeClient:
    """Test runtime CLI operations."""

    @pytest.fixture
    def client(self, test_config):
        """Create runtime client instance."""
        return RuntimeClient(test_config)

    def test_client_initialization(self, client):
        """Test runtime client defaults to docker."""
        assert client.container_runtime == "docker"
        assert client.log_handler.get_log_file_path() is None

    @patch("fixturestack.runtime.subprocess.run")
    def test_launch_success(self, mock_run, client):
        """Test launch returns the 12-character short id."""
        mock_run.return_value = Mock(returncode=0, stdout=f"{FULL_ID}\n", stderr="")

        descriptor = ContainerDescriptor(
            "postgres:14-alpine", 5432, ["-e", "POSTGRES_USER=postgres"]
        )
        container_id = client.launch(descriptor)

        assert container_id == FULL_ID[:12]
        assert len(container_id) == 12

        cmd = mock_run.call_args[0][0]
        assert cmd[:4] == ["docker", "run", "-P", "-d"]
        assert cmd[-3:] == ["-e", "POSTGRES_USER=postgres", "postgres:14-alpine"]
        assert "--label" in cmd
        assert mock_run.call_args[1]["timeout"] == client.config.launch_timeout

    @patch("fixturestack.runtime.subprocess.run")
    def test_launch_uses_first_line(self, mock_run, client):
        """Test only the first stdout line is taken as the id."""
        mock_run.return_value = Mock(
            returncode=0, stdout=f"{FULL_ID}\nsome trailing notice\n", stderr=""
        )

        assert client.launch(ContainerDescriptor("alpine", 80)) == FULL_ID[:12]

    @patch("fixturestack.runtime.subprocess.run")
    def test_launch_failure_keeps_stderr(self, mock_run, client):
        """Test runtime failure raises LaunchError with stderr verbatim."""
        mock_run.return_value = Mock(
            returncode=125,
            stdout="",
            stderr="Unable to find image 'nope:latest' locally\n",
        )

        with pytest.raises(LaunchError) as exc_info:
            client.launch(ContainerDescriptor("nope", 80))

        assert "exit code: 125" in exc_info.value.message
        assert exc_info.value.diagnostics == "Unable to find image 'nope:latest' locally\n"
        assert exc_info.value.container_id is None

    @patch("fixturestack.runtime.subprocess.run")
    def test_launch_without_id(self, mock_run, client):
        """Test empty stdout is a launch failure."""
        mock_run.return_value = Mock(returncode=0, stdout="", stderr="")

        with pytest.raises(LaunchError, match="no container id"):
            client.launch(ContainerDescriptor("alpine", 80))

    @patch("fixturestack.runtime.subprocess.run")
    def test_runtime_not_installed(self, mock_run, client):
        """Test a missing runtime binary is reported as a launch failure."""
        mock_run.side_effect = FileNotFoundError("[Errno 2] No such file or directory: 'docker'")

        with pytest.raises(LaunchError, match="Container runtime not found"):
            client.launch(ContainerDescriptor("alpine", 80))

    @patch("fixturestack.runtime.subprocess.run")
    def test_launch_timeout(self, mock_run, client):
        """Test a hung runtime command is reported with its timeout."""
        mock_run.side_effect = subprocess.TimeoutExpired(cmd="docker run", timeout=600)

        with pytest.raises(LaunchError, match="timed out after 600 seconds"):
            client.launch(ContainerDescriptor("alpine", 80))

    @patch("fixturestack.runtime.subprocess.run")
    def test_inspect_status(self, mock_run, client):
        """Test status inspection trims output."""
        mock_run.return_value = Mock(returncode=0, stdout="running\n", stderr="")

        assert client.inspect_status("3f4e8a2b9c1d") == "running"
        assert mock_run.call_args[0][0] == [
            "docker", "inspect", "-f", "{{.State.Status}}", "3f4e8a2b9c1d",
        ]

    @patch("fixturestack.runtime.subprocess.run")
    def test_inspect_status_failure(self, mock_run, client):
        """Test inspect failure raises InspectError carrying the container id."""
        mock_run.return_value = Mock(
            returncode=1, stdout="", stderr="Error: No such object: 3f4e8a2b9c1d"
        )

        with pytest.raises(InspectError) as exc_info:
            client.inspect_status("3f4e8a2b9c1d")

        assert exc_info.value.container_id == "3f4e8a2b9c1d"
        assert "No such object" in str(exc_info.value)

    @patch("fixturestack.runtime.subprocess.run")
    def test_inspect_port_mapping_template(self, mock_run, client):
        """Test the port mapping template targets the tcp port."""
        raw = '\'[{"HostIp":"0.0.0.0","HostPort":"49153"}]\'\n'
        mock_run.return_value = Mock(returncode=0, stdout=raw, stderr="")

        assert client.inspect_port_mapping("3f4e8a2b9c1d", "5432") == raw

        template = mock_run.call_args[0][0][3]
        assert '(index .NetworkSettings.Ports "5432/tcp")' in template
        assert template.startswith("'[") and template.endswith("]'")
        assert "{{json $v}}" in template

    @patch("fixturestack.runtime.subprocess.run")
    def test_stop_and_remove(self, mock_run, client):
        """Test teardown runs stop then rm -v."""
        mock_run.return_value = Mock(returncode=0, stdout="3f4e8a2b9c1d\n", stderr="")

        client.stop_and_remove("3f4e8a2b9c1d")

        commands = [call[0][0] for call in mock_run.call_args_list]
        assert commands == [
            ["docker", "stop", "3f4e8a2b9c1d"],
            ["docker", "rm", "-v", "3f4e8a2b9c1d"],
        ]

    @patch("fixturestack.runtime.subprocess.run")
    def test_stop_failure_skips_remove(self, mock_run, client):
        """Test remove is not attempted when stop fails."""
        mock_run.return_value = Mock(
            returncode=1, stdout="", stderr="Error response from daemon: cannot stop"
        )

        with pytest.raises(TeardownError, match="cannot stop"):
            client.stop_and_remove("3f4e8a2b9c1d")

        assert mock_run.call_count == 1

    @patch("fixturestack.runtime.subprocess.run")
    def test_list_managed(self, mock_run, client):
        """Test listing containers carrying the managed label."""
        mock_run.return_value = Mock(
            returncode=0, stdout="3f4e8a2b9c1d\n9a8b7c6d5e4f\n\n", stderr=""
        )

        assert client.list_managed() == ["3f4e8a2b9c1d", "9a8b7c6d5e4f"]
        cmd = mock_run.call_args[0][0]
        assert cmd[-1] == f"label={client.config.managed_label}"

    @patch("fixturestack.runtime.subprocess.run")
    def test_podman_runtime(self, mock_run, test_config):
        """Test the configured runtime binary is used."""
        config = test_config.model_copy(update={"container_runtime": "podman"})
        client = RuntimeClient(config)
        mock_run.return_value = Mock(returncode=0, stdout="running\n", stderr="")

        client.inspect_status("3f4e8a2b9c1d")

        assert mock_run.call_args[0][0][0] == "podman"
