"""
Commands module - CLI commands and the node manager they drive.
"""

from nodebox.commands.backends import Backend, DockerBackend
from nodebox.commands.config import ManagerConfig, load_node_specs
from nodebox.commands.errors import (
    BackendError,
    BackendNotProvidedError,
    CommandTimeoutError,
    ConfigurationError,
    ManagerStoppedError,
    ManagerTimeoutError,
    NodeboxError,
    NodeError,
    NodeNotRegisteredError,
    NodeNotRunningError,
    PeerNotFoundError,
    ServiceNotFoundError,
)
from nodebox.commands.manager import NodeManager
from nodebox.commands.models import (
    CleanupReport,
    CommandResult,
    LiteralPeer,
    NodeRef,
    NodeSpec,
)
from nodebox.commands.run import run
from nodebox.commands.validate import validate

__all__ = [
    # Commands
    "run",
    "validate",
    # Manager and backends
    "NodeManager",
    "ManagerConfig",
    "load_node_specs",
    "Backend",
    "DockerBackend",
    # Data types
    "NodeSpec",
    "LiteralPeer",
    "NodeRef",
    "CommandResult",
    "CleanupReport",
    # Error classes
    "NodeboxError",
    "ConfigurationError",
    "BackendNotProvidedError",
    "PeerNotFoundError",
    "NodeError",
    "NodeNotRegisteredError",
    "NodeNotRunningError",
    "ServiceNotFoundError",
    "BackendError",
    "CommandTimeoutError",
    "ManagerTimeoutError",
    "ManagerStoppedError",
]
