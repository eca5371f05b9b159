"""Backend driver interface for node lifecycle operations."""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional

from nodebox.commands.config import ManagerConfig
from nodebox.commands.models import CommandResult, NodeSpec


class Backend(ABC):
    """Abstract base class for node backends.

    A backend owns two kinds of opaque state: one backend state created by
    ``start`` and one node state per node created by ``setup_node``. The
    manager stores both and hands them back unchanged; every mutating
    operation returns the new node state instead of relying on aliasing.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Backend type tag (e.g., 'docker')."""
        ...

    # Backend lifetime

    @abstractmethod
    def start(self, config: ManagerConfig) -> Any:
        """Prepare the backend and return its state."""
        ...

    @abstractmethod
    def stop(self, backend_state: Any) -> None:
        """Release everything the backend created in ``start``."""
        ...

    # Node specs and addressing

    def prepare_spec(self, spec: NodeSpec, backend_state: Any) -> NodeSpec:
        """Fill in backend defaults before peers are resolved.

        The default implementation returns the spec unchanged.
        """
        return spec

    @abstractmethod
    def peer_from_spec(self, spec: NodeSpec, backend_state: Any) -> str:
        """Address other nodes use to reach the node described by ``spec``."""
        ...

    @abstractmethod
    def get_peer_address(self, node_state: Any) -> str:
        """Address other nodes use to reach an already set up node."""
        ...

    # Node lifecycle

    @abstractmethod
    def setup_node(self, spec: NodeSpec, backend_state: Any) -> Any:
        """Materialize a node from a resolved spec without starting it."""
        ...

    @abstractmethod
    def start_node(self, node_state: Any) -> Any:
        ...

    @abstractmethod
    def stop_node(self, node_state: Any, soft_timeout: Optional[float] = None) -> Any:
        """Stop a node gracefully.

        ``soft_timeout`` is a hint for how long to wait before forcing; backends
        decide how to honor it.
        """
        ...

    @abstractmethod
    def kill_node(self, node_state: Any) -> Any:
        ...

    @abstractmethod
    def delete_node(self, node_state: Any) -> None:
        """Destroy a node and its backend resources."""
        ...

    # Queries

    @abstractmethod
    def get_service_address(self, service: str, node_state: Any) -> str:
        ...

    @abstractmethod
    def get_node_pubkey(self, node_state: Any) -> str:
        ...

    @abstractmethod
    def get_log_path(self, node_state: Any) -> Path:
        """Directory holding the node's log files."""
        ...

    @abstractmethod
    def node_logs(self, node_state: Any) -> None:
        """Persist the node's current logs under its log path."""
        ...

    # Node interaction

    @abstractmethod
    def run_cmd_in_node_dir(
        self, node_state: Any, cmd: list[str], timeout: float
    ) -> tuple[CommandResult, Any]:
        """Run ``cmd`` in the node's working directory.

        Returns:
            The command result and the new node state.

        Raises:
            CommandTimeoutError: If the command did not finish within ``timeout``.
        """
        ...

    @abstractmethod
    def extract_archive(self, node_state: Any, path: str, archive: bytes) -> Any:
        """Unpack tar ``archive`` data into the node's filesystem at ``path``."""
        ...

    @abstractmethod
    def connect_node(self, net_name: str, node_state: Any) -> Any:
        ...

    @abstractmethod
    def disconnect_node(self, net_name: str, node_state: Any) -> Any:
        ...
