"""
DockerBackend - Runs managed nodes as Docker containers.
"""

import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional

import docker
from rich.console import Console

from nodebox.commands.backends.base import Backend
from nodebox.commands.config import ManagerConfig
from nodebox.commands.constants import (
    CONTAINER_LOG_DIR,
    CONTAINER_LOG_FILE,
    CONTAINER_NODE_DIR,
    DEFAULT_IMAGE,
    DOCKER_BACKEND,
    NODE_LABEL,
    PEER_SERVICE,
    PEERS_ENV_VAR,
    PUBKEY_FILE,
    SERVICE_PORTS,
    TEST_ID_LABEL,
    TIMEOUT_EXIT_CODE,
)
from nodebox.commands.errors import (
    BackendError,
    CommandTimeoutError,
    NodeNotRunningError,
    ServiceNotFoundError,
)
from nodebox.commands.models import CommandResult, NodeSpec

logger = logging.getLogger(__name__)
console = Console()

CONTAINER_STOP_TIMEOUT = 10  # seconds, when no soft timeout is given


@dataclass
class DockerBackendState:
    """State of a started Docker backend."""

    client: docker.DockerClient
    test_id: str
    log_root: Path
    network_name: str
    created_networks: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class DockerNodeState:
    """State of one node container."""

    name: str
    spec: NodeSpec
    container: object
    hostname: str
    log_dir: Path
    backend_state: DockerBackendState
    networks: frozenset = frozenset()
    started: bool = False


class DockerBackend(Backend):
    """Docker driver for the node manager."""

    def __init__(self, client: Optional[docker.DockerClient] = None):
        """Initialize the backend.

        Args:
            client: Optional Docker client. If not provided, one is created from
                the environment when the backend starts.
        """
        self._client = client

    @property
    def name(self) -> str:
        return DOCKER_BACKEND

    # Backend lifetime

    def start(self, config: ManagerConfig) -> DockerBackendState:
        client = self._client
        if client is None:
            try:
                client = docker.from_env()
            except docker.errors.DockerException as e:
                console.print(f"[red]Failed to connect to Docker: {str(e)}[/red]")
                console.print(
                    "[yellow]Make sure Docker is running and you have permission to access it.[/yellow]"
                )
                raise BackendError(
                    f"Failed to connect to Docker: {e}",
                    operation="start",
                    backend=self.name,
                ) from e

        log_root = Path(config.data_dir) / config.test_id
        os.makedirs(log_root, exist_ok=True)

        state = DockerBackendState(
            client=client,
            test_id=config.test_id,
            log_root=log_root,
            network_name=f"nodebox-{config.test_id}",
        )
        self._ensure_network(state, state.network_name)
        return state

    def stop(self, backend_state: DockerBackendState) -> None:
        failed = []
        for network_name in reversed(backend_state.created_networks):
            try:
                backend_state.client.networks.get(network_name).remove()
                console.print(f"[green]✓ Removed network {network_name}[/green]")
            except docker.errors.NotFound:
                pass
            except docker.errors.APIError as e:
                console.print(
                    f"[red]✗ Failed to remove network {network_name}: {str(e)}[/red]"
                )
                failed.append(network_name)
        backend_state.created_networks = failed
        if failed:
            raise BackendError(
                f"Could not remove networks: {', '.join(failed)}",
                operation="stop",
                backend=self.name,
            )

    # Node specs and addressing

    def prepare_spec(
        self, spec: NodeSpec, backend_state: DockerBackendState
    ) -> NodeSpec:
        options = {
            "image": spec.source or DEFAULT_IMAGE,
            "container_name": f"{backend_state.test_id}-{spec.name}",
            "hostname": spec.name,
        }
        options.update(spec.options)
        return spec.with_options(**options)

    def peer_from_spec(self, spec: NodeSpec, backend_state: DockerBackendState) -> str:
        return _peer_address(
            spec.options.get("hostname", spec.name), spec.options.get("pubkey")
        )

    def get_peer_address(self, node_state: DockerNodeState) -> str:
        return _peer_address(node_state.hostname, node_state.spec.options.get("pubkey"))

    # Node lifecycle

    def setup_node(
        self, spec: NodeSpec, backend_state: DockerBackendState
    ) -> DockerNodeState:
        client = backend_state.client
        image = spec.options["image"]
        container_name = spec.options["container_name"]
        hostname = spec.options["hostname"]

        self._ensure_image_pulled(client, image)

        log_dir = backend_state.log_root / spec.name
        os.makedirs(log_dir, exist_ok=True)

        container = client.containers.create(
            image,
            name=container_name,
            hostname=hostname,
            detach=True,
            environment={PEERS_ENV_VAR: ",".join(spec.peer_addresses())},
            ports={f"{port}/tcp": None for port in SERVICE_PORTS.values()},
            volumes={
                os.path.abspath(log_dir): {"bind": CONTAINER_LOG_DIR, "mode": "rw"}
            },
            labels={
                NODE_LABEL: "true",
                TEST_ID_LABEL: backend_state.test_id,
                "node.name": spec.name,
            },
            network=backend_state.network_name,
        )
        console.print(
            f"[cyan]✓ Created container {container_name} for node {spec.name}[/cyan]"
        )

        return DockerNodeState(
            name=spec.name,
            spec=spec,
            container=container,
            hostname=hostname,
            log_dir=log_dir,
            backend_state=backend_state,
            networks=frozenset([backend_state.network_name]),
        )

    def start_node(self, node_state: DockerNodeState) -> DockerNodeState:
        node_state.container.start()
        console.print(
            f"[green]✓ Started node {node_state.name} (ID: {node_state.container.short_id})[/green]"
        )
        return replace(node_state, started=True)

    def stop_node(
        self, node_state: DockerNodeState, soft_timeout: Optional[float] = None
    ) -> DockerNodeState:
        timeout = CONTAINER_STOP_TIMEOUT if soft_timeout is None else int(soft_timeout)
        try:
            node_state.container.stop(timeout=timeout)
        except docker.errors.NotFound:
            logger.debug("Container for %s already gone", node_state.name)
        console.print(f"[green]✓ Stopped node {node_state.name}[/green]")
        return replace(node_state, started=False)

    def kill_node(self, node_state: DockerNodeState) -> DockerNodeState:
        try:
            node_state.container.kill()
        except docker.errors.APIError as e:
            # Killing a container that is not running is a no-op for us
            if not _is_not_running_conflict(e):
                raise
        console.print(f"[green]✓ Killed node {node_state.name}[/green]")
        return replace(node_state, started=False)

    def delete_node(self, node_state: DockerNodeState) -> None:
        try:
            node_state.container.remove(force=True)
            console.print(
                f"[green]✓ Removed container for node {node_state.name}[/green]"
            )
        except docker.errors.NotFound:
            logger.debug("Container for %s already removed", node_state.name)

    # Queries

    def get_service_address(self, service: str, node_state: DockerNodeState) -> str:
        if service not in SERVICE_PORTS:
            raise ServiceNotFoundError(node_state.name, service)

        container = node_state.container
        container.reload()
        if container.status != "running":
            raise NodeNotRunningError(
                node_state.name, details={"status": container.status}
            )

        host_port = self._extract_host_port(container, f"{SERVICE_PORTS[service]}/tcp")
        if host_port is None:
            raise NodeNotRunningError(
                node_state.name, details={"service": service, "reason": "no host port"}
            )
        return f"http://localhost:{host_port}/"

    def get_node_pubkey(self, node_state: DockerNodeState) -> str:
        pubkey = node_state.spec.options.get("pubkey")
        if pubkey:
            return pubkey

        result = node_state.container.exec_run(
            ["cat", PUBKEY_FILE], workdir=CONTAINER_NODE_DIR
        )
        if result.exit_code != 0:
            raise BackendError(
                f"Could not read public key: {_decode(result.output)}",
                operation="get_node_pubkey",
                node_name=node_state.name,
                backend=self.name,
            )
        return _decode(result.output).strip()

    def get_log_path(self, node_state: DockerNodeState) -> Path:
        return node_state.log_dir

    def node_logs(self, node_state: DockerNodeState) -> None:
        logs = node_state.container.logs(timestamps=True)
        log_file = node_state.log_dir / CONTAINER_LOG_FILE
        with open(log_file, "wb") as f:
            f.write(logs)
        logger.debug("Wrote container logs for %s to %s", node_state.name, log_file)

    # Node interaction

    def run_cmd_in_node_dir(
        self, node_state: DockerNodeState, cmd: list[str], timeout: float
    ) -> tuple[CommandResult, DockerNodeState]:
        full_cmd = ["timeout", str(max(1, int(timeout)))] + list(cmd)
        result = node_state.container.exec_run(full_cmd, workdir=CONTAINER_NODE_DIR)
        if result.exit_code == TIMEOUT_EXIT_CODE:
            raise CommandTimeoutError(
                list(cmd), timeout, node_name=node_state.name, backend=self.name
            )
        return CommandResult(result.exit_code, _decode(result.output)), node_state

    def extract_archive(
        self, node_state: DockerNodeState, path: str, archive: bytes
    ) -> DockerNodeState:
        if not node_state.container.put_archive(path, archive):
            raise BackendError(
                f"Failed to extract archive to {path}",
                operation="extract_archive",
                node_name=node_state.name,
                backend=self.name,
            )
        return node_state

    def connect_node(
        self, net_name: str, node_state: DockerNodeState
    ) -> DockerNodeState:
        network = self._ensure_network(node_state.backend_state, net_name)
        network.connect(node_state.container, aliases=[node_state.hostname])
        console.print(
            f"[cyan]✓ {node_state.name} connected to network {net_name}[/cyan]"
        )
        return replace(node_state, networks=node_state.networks | {net_name})

    def disconnect_node(
        self, net_name: str, node_state: DockerNodeState
    ) -> DockerNodeState:
        client = node_state.backend_state.client
        client.networks.get(net_name).disconnect(node_state.container)
        console.print(
            f"[cyan]✓ {node_state.name} disconnected from network {net_name}[/cyan]"
        )
        return replace(node_state, networks=node_state.networks - {net_name})

    # Helpers

    def _ensure_network(self, backend_state: DockerBackendState, network_name: str):
        """Get a network by name, creating a bridge network if it is missing."""
        client = backend_state.client
        try:
            return client.networks.get(network_name)
        except docker.errors.NotFound:
            console.print(f"[yellow]Creating network: {network_name}[/yellow]")
            network = client.networks.create(network_name, driver="bridge")
            backend_state.created_networks.append(network_name)
            console.print(f"[green]✓ Created network: {network_name}[/green]")
            return network

    def _ensure_image_pulled(self, client: docker.DockerClient, image: str) -> None:
        """Ensure the image is available locally, pulling it if needed."""
        try:
            client.images.get(image)
            logger.debug("Image %s already available locally", image)
            return
        except docker.errors.ImageNotFound:
            pass

        console.print(f"[yellow]Pulling image: {image}[/yellow]")
        try:
            client.images.pull(image)
        except docker.errors.NotFound as e:
            console.print(f"[red]✗ Image {image} not found in registry[/red]")
            raise BackendError(
                f"Image {image} not found in registry",
                operation="setup_node",
                backend=self.name,
            ) from e
        console.print(f"[green]✓ Successfully pulled image: {image}[/green]")

    def _extract_host_port(self, container, container_port: str) -> Optional[int]:
        """Extract the published host port for a given container port."""
        ports = container.attrs.get("NetworkSettings", {}).get("Ports") or {}
        for binding in ports.get(container_port) or []:
            host_port = binding.get("HostPort")
            if host_port and host_port.isdigit():
                return int(host_port)
        return None


def _peer_address(hostname: str, pubkey: Optional[str]) -> str:
    port = SERVICE_PORTS[PEER_SERVICE]
    if pubkey:
        return f"aenode://{pubkey}@{hostname}:{port}"
    return f"http://{hostname}:{port}/"


def _is_not_running_conflict(error: docker.errors.APIError) -> bool:
    return error.status_code == 409 and "is not running" in str(error)


def _decode(output) -> str:
    if output is None:
        return ""
    if isinstance(output, bytes):
        return output.decode("utf-8", errors="replace")
    return str(output)
