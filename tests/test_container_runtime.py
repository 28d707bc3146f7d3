"""
Tests for the Docker container controller.

The Docker API client is replaced by a Mock; these tests check the calls
made to the engine and how engine errors are translated. Closing the
attached log stream is checked against a local server answering like a
quiet engine.
"""

import io
import json
import struct
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from unittest.mock import Mock, patch

import docker
import pytest
import requests
from docker.errors import APIError, DockerException, NotFound

from mysqlbox.container_logs import LogMultiplexer
from mysqlbox.container_runtime import CONTAINER_STOP_TIMEOUT, ContainerController
from mysqlbox.exceptions import (
    ContainerCreateError,
    ContainerRemovalError,
    ContainerStartError,
    ContainerStopError,
    ImagePullError,
    LogStreamError,
    PortResolutionError,
    ProvisioningError,
)
from mysqlbox.models import DISCOVERY_LABEL, SCRIPT_MOUNT_TARGET, ContainerSpec

CONTAINER_ID = "0123456789ab" + "c" * 52


@pytest.fixture
def api():
    api = Mock()
    api.create_host_config.side_effect = lambda **kwargs: kwargs
    api.create_container.return_value = {"Id": CONTAINER_ID, "Warnings": []}
    api.pull.return_value = iter([])
    return api


@pytest.fixture
def controller(api):
    return ContainerController(api, pull_output=io.StringIO())


@pytest.fixture
def spec():
    return ContainerSpec.for_mysql(image="mysql:8", name="mysqlbox-test", database="testing")


class TestContainerCreation:
    """Test container creation and the pull-and-retry path."""

    def test_create_container(self, controller, api, spec):
        container_id = controller.create(spec)

        assert container_id == CONTAINER_ID
        api.pull.assert_not_called()

        kwargs = api.create_container.call_args.kwargs
        assert kwargs["image"] == "mysql:8"
        assert kwargs["name"] == "mysqlbox-test"
        assert kwargs["ports"] == [3306]
        assert kwargs["labels"] == {DISCOVERY_LABEL: "1"}
        assert "MYSQL_DATABASE=testing" in kwargs["environment"]
        assert "MYSQL_ALLOW_EMPTY_PASSWORD=1" in kwargs["environment"]
        assert "--general-log=1" in kwargs["command"]

        host_config = kwargs["host_config"]
        assert host_config["auto_remove"] is True
        assert host_config["port_bindings"] == {"3306/tcp": ("127.0.0.1", "0")}
        assert host_config["mounts"] == []

    def test_create_with_root_password(self, controller, api):
        spec = ContainerSpec.for_mysql(
            image="mysql:8", name="mysqlbox-test", database="testing", root_password="root_pass"
        )

        controller.create(spec)

        environment = api.create_container.call_args.kwargs["environment"]
        assert "MYSQL_ROOT_PASSWORD=root_pass" in environment
        assert not any(e.startswith("MYSQL_ALLOW_EMPTY_PASSWORD") for e in environment)

    def test_create_with_fixed_port(self, controller, api):
        spec = ContainerSpec.for_mysql(
            image="mysql:8", name="mysqlbox-test", database="testing", host_port=33306
        )

        controller.create(spec)

        host_config = api.create_container.call_args.kwargs["host_config"]
        assert host_config["port_bindings"] == {"3306/tcp": ("127.0.0.1", "33306")}

    def test_create_mounts_script(self, controller, api):
        spec = ContainerSpec.for_mysql(
            image="mysql:8",
            name="mysqlbox-test",
            database="testing",
            script_path="/tmp/schema-abc.sql",
        )

        controller.create(spec)

        mounts = api.create_container.call_args.kwargs["host_config"]["mounts"]
        assert len(mounts) == 1
        assert mounts[0]["Target"] == SCRIPT_MOUNT_TARGET
        assert mounts[0]["Source"] == "/tmp/schema-abc.sql"
        assert mounts[0]["Type"] == "bind"
        assert mounts[0]["ReadOnly"] is True

    def test_missing_image_pulled_and_retried(self, controller, api, spec):
        api.create_container.side_effect = [
            NotFound("No such image: mysql:8"),
            {"Id": CONTAINER_ID, "Warnings": None},
        ]
        api.pull.return_value = iter(
            [
                {"status": "Pulling from library/mysql", "id": "8"},
                {"status": "Downloading", "id": "abc", "progress": "[==>  ]"},
                {"status": "Status: Downloaded newer image for mysql:8"},
            ]
        )

        container_id = controller.create(spec)

        assert container_id == CONTAINER_ID
        api.pull.assert_called_once_with("mysql:8", stream=True, decode=True)
        assert api.create_container.call_count == 2
        assert "Downloaded newer image" in controller.pull_output.getvalue()

    def test_pull_retried_only_once(self, controller, api, spec):
        api.create_container.side_effect = NotFound("No such image: mysql:8")

        with pytest.raises(ContainerCreateError, match="after pulling image"):
            controller.create(spec)

        assert api.pull.call_count == 1
        assert api.create_container.call_count == 2

    def test_pull_failure(self, controller, api, spec):
        api.create_container.side_effect = NotFound("No such image: mysql:8")
        api.pull.return_value = iter([{"error": "manifest unknown"}])

        with pytest.raises(ImagePullError, match="manifest unknown"):
            controller.create(spec)

        assert api.create_container.call_count == 1

    def test_other_create_errors_not_retried(self, controller, api, spec):
        api.create_container.side_effect = APIError("Conflict. The container name is already in use")

        with pytest.raises(ContainerCreateError) as exc_info:
            controller.create(spec)

        api.pull.assert_not_called()
        assert exc_info.value.operation == "create_container"
        assert exc_info.value.context["name"] == "mysqlbox-test"

    def test_engine_unreachable(self, controller, api, spec):
        api.create_container.side_effect = requests.exceptions.ConnectionError("refused")

        with pytest.raises(ContainerCreateError):
            controller.create(spec)


class TestImagePull:
    """Test image pulling."""

    def test_blank_image(self, controller, api):
        with pytest.raises(ImagePullError, match="image is blank"):
            controller.pull_image("")

        api.pull.assert_not_called()

    def test_pull_progress_written(self, controller, api):
        api.pull.return_value = iter([{"status": "Pulling fs layer", "id": "layer1"}, {}])

        controller.pull_image("mysql:8")

        assert controller.pull_output.getvalue() == "layer1 Pulling fs layer\n"

    def test_pull_client_error(self, controller, api):
        api.pull.side_effect = APIError("pull access denied")

        with pytest.raises(ImagePullError) as exc_info:
            controller.pull_image("private/mysql:8")

        assert exc_info.value.context["image"] == "private/mysql:8"


class TestContainerLifecycle:
    """Test start, port resolution, stop and removal."""

    def test_start(self, controller, api):
        controller.start(CONTAINER_ID)
        api.start.assert_called_once_with(CONTAINER_ID)

    def test_start_failure(self, controller, api):
        api.start.side_effect = APIError("port is already allocated")

        with pytest.raises(ContainerStartError, match="port is already allocated"):
            controller.start(CONTAINER_ID)

    def test_resolve_port(self, controller, api):
        api.inspect_container.return_value = {
            "NetworkSettings": {
                "Ports": {"3306/tcp": [{"HostIp": "127.0.0.1", "HostPort": "49153"}]}
            }
        }

        assert controller.resolve_port(CONTAINER_ID) == 49153

    @pytest.mark.parametrize(
        "network_settings",
        [
            {},
            {"Ports": None},
            {"Ports": {}},
            {"Ports": {"3306/tcp": None}},
            {"Ports": {"3306/tcp": []}},
        ],
    )
    def test_resolve_port_without_bindings(self, controller, api, network_settings):
        api.inspect_container.return_value = {"NetworkSettings": network_settings}

        with pytest.raises(PortResolutionError, match="no port bindings"):
            controller.resolve_port(CONTAINER_ID)

    def test_resolve_port_invalid_binding(self, controller, api):
        api.inspect_container.return_value = {
            "NetworkSettings": {"Ports": {"3306/tcp": [{"HostPort": ""}]}}
        }

        with pytest.raises(PortResolutionError, match="invalid host port binding"):
            controller.resolve_port(CONTAINER_ID)

    def test_resolve_port_inspect_failure(self, controller, api):
        api.inspect_container.side_effect = NotFound("No such container")

        with pytest.raises(PortResolutionError):
            controller.resolve_port(CONTAINER_ID)

    def test_stop(self, controller, api):
        controller.stop(CONTAINER_ID)
        api.stop.assert_called_once_with(CONTAINER_ID, timeout=CONTAINER_STOP_TIMEOUT)
        assert CONTAINER_STOP_TIMEOUT == 60

    def test_stop_already_removed(self, controller, api):
        api.stop.side_effect = NotFound("No such container")

        controller.stop(CONTAINER_ID)

    def test_stop_failure(self, controller, api):
        api.stop.side_effect = requests.exceptions.ReadTimeout("timed out")

        with pytest.raises(ContainerStopError):
            controller.stop(CONTAINER_ID)

    def test_wait_removed(self, controller, api):
        controller.wait_removed(CONTAINER_ID)
        api.wait.assert_called_once_with(CONTAINER_ID, condition="removed")

    def test_wait_removed_already_gone(self, controller, api):
        api.wait.side_effect = NotFound("No such container")

        controller.wait_removed(CONTAINER_ID)

    def test_wait_removed_failure(self, controller, api):
        api.wait.side_effect = APIError("engine error")

        with pytest.raises(ContainerRemovalError):
            controller.wait_removed(CONTAINER_ID)

    def test_remove(self, controller, api):
        controller.remove(CONTAINER_ID)
        api.remove_container.assert_called_once_with(CONTAINER_ID, force=True)

    def test_remove_not_found(self, controller, api):
        api.remove_container.side_effect = NotFound("No such container")

        controller.remove(CONTAINER_ID)

    def test_remove_failure(self, controller, api):
        api.remove_container.side_effect = APIError("removal in progress")

        with pytest.raises(ContainerRemovalError):
            controller.remove(CONTAINER_ID)


class TestLogStream:
    """Test attaching to the container output."""

    def test_open_log_stream(self, controller, api):
        stream = controller.open_log_stream(CONTAINER_ID)

        api.attach.assert_called_once_with(
            CONTAINER_ID, stdout=True, stderr=True, stream=True, logs=True, demux=True
        )
        assert stream is api.attach.return_value

    def test_open_log_stream_not_found(self, controller, api):
        api.attach.side_effect = NotFound("No such container: abc")

        with pytest.raises(LogStreamError) as exc_info:
            controller.open_log_stream(CONTAINER_ID)

        assert exc_info.value.operation == "attach_logs"
        assert exc_info.value.context["container_id"] == CONTAINER_ID[:12]
        assert isinstance(exc_info.value.__cause__, NotFound)

    def test_open_log_stream_engine_unreachable(self, controller, api):
        api.attach.side_effect = requests.exceptions.ConnectionError("refused")

        with pytest.raises(LogStreamError, match="error attaching to container logs"):
            controller.open_log_stream(CONTAINER_ID)


class QuietEngineHandler(BaseHTTPRequestHandler):
    """
    Answers inspect and attach like a Docker engine whose container logs a
    single stdout line and then stays quiet until the server is released.
    """

    protocol_version = "HTTP/1.1"

    def do_GET(self):
        body = json.dumps({"Id": CONTAINER_ID, "Config": {"Tty": False}}).encode()
        self.send_response(200)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def do_POST(self):
        self.send_response(200)
        self.send_header("Content-Type", "application/vnd.docker.raw-stream")
        self.end_headers()
        self.wfile.flush()

        # Header and output must not arrive in the same read
        time.sleep(0.2)
        self.wfile.write(struct.pack(">BxxxL", 1, 6) + b"ready\n")
        self.wfile.flush()

        self.server.release.wait(30)
        self.close_connection = True

    def log_message(self, format, *args):
        pass


@pytest.fixture
def quiet_engine():
    server = ThreadingHTTPServer(("127.0.0.1", 0), QuietEngineHandler)
    server.daemon_threads = True
    server.block_on_close = False
    server.release = threading.Event()
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield f"tcp://127.0.0.1:{server.server_address[1]}"
    finally:
        server.release.set()
        server.shutdown()
        server.server_close()


class TestAttachedStreamClose:
    """Closing the attached stream ends a reader blocked on a quiet container."""

    def test_close_interrupts_blocked_reader(self, quiet_engine):
        api = docker.APIClient(base_url=quiet_engine, version="1.41")
        api.trust_env = False
        controller = ContainerController(api)
        stdout = io.BytesIO()

        logs = LogMultiplexer(controller.open_log_stream(CONTAINER_ID), stdout=stdout)
        logs.start()
        deadline = time.monotonic() + 5
        while stdout.getvalue() != b"ready\n" and time.monotonic() < deadline:
            time.sleep(0.01)
        assert stdout.getvalue() == b"ready\n"

        started = time.monotonic()
        logs.close(timeout=5)
        elapsed = time.monotonic() - started
        controller.close()

        assert elapsed < 3
        assert not logs.running
        assert logs.error is None
        assert not logs.exited.is_set()


class TestContainerDiscovery:
    """Test listing and removing labelled containers."""

    def test_list_containers(self, controller, api):
        api.containers.return_value = [
            {
                "Id": CONTAINER_ID,
                "Names": ["/mysqlbox-abc"],
                "Image": "mysql:8",
                "State": "running",
                "Status": "Up 2 minutes",
                "Ports": [
                    {"PrivatePort": 33060, "Type": "tcp"},
                    {"IP": "127.0.0.1", "PrivatePort": 3306, "PublicPort": 49153, "Type": "tcp"},
                ],
            },
            {"Id": "f" * 64, "Names": [], "Image": "mysql:8", "State": "exited"},
        ]

        containers = controller.list_containers()

        api.containers.assert_called_once_with(all=True, filters={"label": DISCOVERY_LABEL})
        assert containers[0] == {
            "id": CONTAINER_ID[:12],
            "name": "mysqlbox-abc",
            "image": "mysql:8",
            "state": "running",
            "status": "Up 2 minutes",
            "host_port": "49153",
        }
        assert containers[1]["name"] == ""
        assert containers[1]["host_port"] == ""

    def test_remove_containers(self, controller, api):
        api.containers.return_value = [
            {"Id": "a" * 64, "Names": ["/one"]},
            {"Id": "b" * 64, "Names": ["/two"]},
            {"Id": "c" * 64, "Names": ["/three"]},
        ]
        api.remove_container.side_effect = [None, NotFound("gone"), APIError("busy")]

        removed = controller.remove_containers()

        assert removed == ["a" * 12]
        assert api.remove_container.call_count == 3

    def test_list_containers_engine_error(self, controller, api):
        api.containers.side_effect = APIError("engine error")

        with pytest.raises(ProvisioningError, match="error listing containers") as exc_info:
            controller.list_containers()

        assert exc_info.value.operation == "list_containers"

    def test_remove_containers_engine_unreachable(self, controller, api):
        api.containers.return_value = [{"Id": "a" * 64, "Names": ["/one"]}]
        api.remove_container.side_effect = requests.exceptions.ConnectionError("refused")

        assert controller.remove_containers() == []


class TestDockerConnection:
    """Test connecting to the Docker engine."""

    def test_from_env(self):
        client = Mock()
        with patch("mysqlbox.container_runtime.docker.from_env", return_value=client):
            controller = ContainerController.from_env()

        assert controller.api is client.api

    def test_close(self, controller, api):
        controller.close()

        api.close.assert_called_once_with()

    def test_from_docker_host(self):
        with patch("mysqlbox.container_runtime.docker.DockerClient") as mock_client:
            controller = ContainerController.from_env("tcp://127.0.0.1:2375")

        mock_client.assert_called_once_with(base_url="tcp://127.0.0.1:2375")
        assert controller.api is mock_client.return_value.api

    def test_docker_unavailable(self):
        with patch(
            "mysqlbox.container_runtime.docker.from_env",
            side_effect=DockerException("Error while fetching server API version"),
        ):
            with pytest.raises(ProvisioningError, match="could not connect to Docker"):
                ContainerController.from_env()
