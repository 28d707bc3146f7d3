"""
Container lifecycle management for MySQLBox

ContainerController drives the Docker engine for a MySQL container:
creation with a single pull-and-retry when the image is missing, start,
host port resolution, stop, the removal wait and the attached log
stream. It also enumerates containers by the discovery label so orphans
can be cleaned up.
"""

import logging
import sys
import time
from typing import IO, Dict, List, Optional

import docker
import requests
from docker.errors import DockerException, NotFound
from docker.types import CancellableStream, Mount

from .exceptions import (
    ContainerCreateError,
    ContainerRemovalError,
    ContainerStartError,
    ContainerStopError,
    ImagePullError,
    LogStreamError,
    PortResolutionError,
    ProvisioningError,
)
from .logging_config import mask_sensitive_data
from .models import (
    DISCOVERY_LABEL,
    MYSQL_CONTAINER_PORT,
    MYSQL_PORT,
    SCRIPT_MOUNT_TARGET,
    ContainerSpec,
)

logger = logging.getLogger(__name__)

CONTAINER_STOP_TIMEOUT = 60
LOOPBACK = "127.0.0.1"

_CLIENT_ERRORS = (DockerException, requests.exceptions.RequestException)


class ContainerController:
    """
    Manages the MySQL container through the Docker engine API.

    All calls go through a low-level docker.APIClient so engine errors keep
    their HTTP status and not-found responses can be told apart.
    """

    def __init__(self, api: docker.APIClient, pull_output: Optional[IO[str]] = None):
        """Initialize the controller with a Docker API client."""
        self.api = api
        self.pull_output = pull_output

    @classmethod
    def from_env(cls, docker_host: Optional[str] = None) -> "ContainerController":
        """Connect to the engine named by docker_host, DOCKER_HOST or the default socket."""
        try:
            if docker_host:
                client = docker.DockerClient(base_url=docker_host)
            else:
                client = docker.from_env()
        except DockerException as e:
            raise ProvisioningError(
                f"could not connect to Docker: {e}",
                operation="connect_docker",
                context={"docker_host": docker_host or "default"},
            ) from e

        return cls(client.api)

    def close(self) -> None:
        """Close the connection pool of the API client."""
        if self.api is not None:
            self.api.close()

    def create(self, spec: ContainerSpec) -> str:
        """
        Create the container described by spec.

        A missing image is pulled once and creation retried once.

        Returns:
            Container ID
        """
        logger.info(f"Creating container {spec.name} from {spec.image}")
        logger.debug(mask_sensitive_data(f"Container environment: {spec.environment_list()}"))

        try:
            return self._create(spec)
        except NotFound as e:
            logger.info(f"Image {spec.image} not found locally: {e.explanation}")

        self.pull_image(spec.image)

        try:
            return self._create(spec)
        except _CLIENT_ERRORS as e:
            raise ContainerCreateError(
                f"error creating container after pulling image: {e}",
                operation="create_container",
                context={"name": spec.name, "image": spec.image},
            ) from e

    def _create(self, spec: ContainerSpec) -> str:
        mounts = []
        if spec.script_path:
            mounts.append(
                Mount(
                    target=SCRIPT_MOUNT_TARGET,
                    source=spec.script_path,
                    type="bind",
                    read_only=True,
                )
            )

        host_config = self.api.create_host_config(
            auto_remove=True,
            port_bindings={MYSQL_PORT: (LOOPBACK, str(spec.host_port))},
            mounts=mounts,
        )

        try:
            created = self.api.create_container(
                image=spec.image,
                command=spec.command,
                environment=spec.environment_list(),
                ports=[MYSQL_CONTAINER_PORT],
                labels=spec.labels,
                host_config=host_config,
                name=spec.name,
            )
        except NotFound:
            raise
        except _CLIENT_ERRORS as e:
            raise ContainerCreateError(
                f"error creating container: {e}",
                operation="create_container",
                context={"name": spec.name, "image": spec.image},
            ) from e

        for warning in created.get("Warnings") or []:
            logger.warning(f"Docker warning for {spec.name}: {warning}")

        container_id = created["Id"]
        logger.info(f"Container {spec.name} created: {container_id[:12]}")
        return container_id

    def pull_image(self, image: str) -> None:
        """Pull image, streaming progress to the diagnostic output."""
        if not image:
            raise ImagePullError("image is blank", operation="pull_image")

        output = self.pull_output or sys.stderr
        logger.info(f"Pulling Docker image {image}...")
        start_time = time.time()

        try:
            for event in self.api.pull(image, stream=True, decode=True):
                if "error" in event:
                    raise ImagePullError(
                        f"docker image pull stream error: {event['error']}",
                        operation="pull_image",
                        context={"image": image},
                    )
                output.write(_format_pull_event(event))
            output.flush()
        except _CLIENT_ERRORS as e:
            raise ImagePullError(
                f"docker image pull error: {e}",
                operation="pull_image",
                context={"image": image},
            ) from e

        logger.info(f"Docker image {image} pulled in {time.time() - start_time:.1f}s")

    def start(self, container_id: str) -> None:
        """Start a created container."""
        try:
            self.api.start(container_id)
        except _CLIENT_ERRORS as e:
            raise ContainerStartError(
                f"error starting container: {e}",
                operation="start_container",
                context={"container_id": container_id[:12]},
            ) from e

        logger.info(f"Container {container_id[:12]} started")

    def resolve_port(self, container_id: str) -> int:
        """Return the host port bound to the container's MySQL port."""
        try:
            info = self.api.inspect_container(container_id)
        except _CLIENT_ERRORS as e:
            raise PortResolutionError(
                f"error inspecting container: {e}",
                operation="resolve_port",
                context={"container_id": container_id[:12]},
            ) from e

        ports = (info.get("NetworkSettings") or {}).get("Ports") or {}
        bindings = ports.get(MYSQL_PORT) or []
        if not bindings:
            raise PortResolutionError(
                "no port bindings",
                operation="resolve_port",
                context={"container_id": container_id[:12]},
            )

        try:
            port = int(bindings[0]["HostPort"])
        except (KeyError, TypeError, ValueError) as e:
            raise PortResolutionError(
                f"invalid host port binding {bindings[0]!r}",
                operation="resolve_port",
                context={"container_id": container_id[:12]},
            ) from e

        logger.debug(f"Container {container_id[:12]} MySQL port bound to {LOOPBACK}:{port}")
        return port

    def open_log_stream(self, container_id: str) -> CancellableStream:
        """
        Attach to the container output, replaying what was logged so far.

        The stream yields (stdout, stderr) chunk pairs until the container
        exits. Its close() shuts the socket down, which also ends a read
        blocked in another thread.
        """
        try:
            return self.api.attach(
                container_id,
                stdout=True,
                stderr=True,
                stream=True,
                logs=True,
                demux=True,
            )
        except _CLIENT_ERRORS as e:
            raise LogStreamError(
                f"error attaching to container logs: {e}",
                operation="attach_logs",
                context={"container_id": container_id[:12]},
            ) from e

    def stop(self, container_id: str, timeout: int = CONTAINER_STOP_TIMEOUT) -> None:
        """Stop the container. The engine removes it once it has stopped."""
        logger.info(f"Stopping container {container_id[:12]}")
        try:
            self.api.stop(container_id, timeout=timeout)
        except NotFound:
            logger.info(f"Container {container_id[:12]} already removed")
        except _CLIENT_ERRORS as e:
            raise ContainerStopError(
                f"error stopping container: {e}",
                operation="stop_container",
                context={"container_id": container_id[:12]},
            ) from e

    def wait_removed(self, container_id: str) -> None:
        """Block until the engine reports the container removed."""
        try:
            self.api.wait(container_id, condition="removed")
        except NotFound:
            pass
        except _CLIENT_ERRORS as e:
            raise ContainerRemovalError(
                f"error waiting for container removal: {e}",
                operation="wait_removed",
                context={"container_id": container_id[:12]},
            ) from e

        logger.info(f"Container {container_id[:12]} removed")

    def remove(self, container_id: str) -> None:
        """Force-remove a container that may never have been started."""
        try:
            self.api.remove_container(container_id, force=True)
        except NotFound:
            pass
        except _CLIENT_ERRORS as e:
            raise ContainerRemovalError(
                f"error removing container: {e}",
                operation="remove_container",
                context={"container_id": container_id[:12]},
            ) from e

        logger.info(f"Container {container_id[:12]} removed")

    def list_containers(self) -> List[Dict[str, str]]:
        """List all containers carrying the discovery label."""
        try:
            containers = self.api.containers(all=True, filters={"label": DISCOVERY_LABEL})
        except _CLIENT_ERRORS as e:
            raise ProvisioningError(
                f"error listing containers: {e}",
                operation="list_containers",
                context={"label": DISCOVERY_LABEL},
            ) from e

        result = []
        for container in containers:
            names = container.get("Names") or []
            host_port = ""
            for port_info in container.get("Ports") or []:
                if port_info.get("PrivatePort") == MYSQL_CONTAINER_PORT and port_info.get("PublicPort"):
                    host_port = str(port_info["PublicPort"])
                    break

            result.append(
                {
                    "id": container.get("Id", "")[:12],
                    "name": names[0].lstrip("/") if names else "",
                    "image": container.get("Image", ""),
                    "state": container.get("State", "unknown"),
                    "status": container.get("Status", ""),
                    "host_port": host_port,
                }
            )

        logger.debug(f"Found {len(result)} mysqlbox containers")
        return result

    def remove_containers(self) -> List[str]:
        """Force-remove every container carrying the discovery label."""
        removed = []
        for container in self.list_containers():
            try:
                self.api.remove_container(container["id"], force=True)
                removed.append(container["id"])
                logger.info(f"Removed container {container['name'] or container['id']}")
            except NotFound:
                continue
            except _CLIENT_ERRORS as e:
                logger.warning(f"Failed to remove container {container['id']}: {e}")

        return removed


def _format_pull_event(event: dict) -> str:
    parts = [event.get("id"), event.get("status"), event.get("progress")]
    line = " ".join(str(part) for part in parts if part)
    return line + "\n" if line else ""
