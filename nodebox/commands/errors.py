"""
Typed error classes for nodebox.

This module provides the error hierarchy used by the node manager and backends:
- NodeboxError: Base exception for all nodebox errors
- ConfigurationError: Invalid manager configuration or node specs
- NodeError: Errors about a specific managed node
- BackendError: Failures reported by a backend driver
- ManagerTimeoutError / ManagerStoppedError: Control point errors
"""

from typing import Any, Optional


class NodeboxError(Exception):
    """Root of every error the node manager and its backends raise.

    ``code`` is a stable machine-readable tag (e.g. ``PEER_NOT_FOUND``) and
    ``details`` carries the node, backend or operation involved. Both are
    included in ``to_dict()`` only when set.
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = dict(details) if details else {}

    def to_dict(self) -> dict[str, Any]:
        optional = {"code": self.code, "details": self.details}
        return {
            "type": type(self).__name__,
            "message": self.message,
            **{key: value for key, value in optional.items() if value},
        }

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}" if self.code else self.message


class ConfigurationError(NodeboxError):
    """Configuration-related errors.

    Raised when:
    - Manager configuration is missing required keys
    - A node spec file is missing or malformed
    - A node spec cannot be matched against the registered backends
    """

    def __init__(
        self,
        message: str,
        config_file: Optional[str] = None,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        self.config_file = config_file
        details = details or {}
        if config_file:
            details["config_file"] = config_file
        super().__init__(message, code=code or "CONFIGURATION_ERROR", details=details)


class BackendNotProvidedError(ConfigurationError):
    """Raised when a node spec names a backend the manager was not started with."""

    def __init__(self, backend: str, node_name: Optional[str] = None):
        self.backend = backend
        self.node_name = node_name
        details: dict[str, Any] = {"backend": backend}
        if node_name:
            details["node_name"] = node_name
        super().__init__(
            f"Backend '{backend}' not provided",
            code="BACKEND_NOT_PROVIDED",
            details=details,
        )


class PeerNotFoundError(ConfigurationError):
    """Raised when a symbolic peer reference does not name a known node."""

    def __init__(self, peer: str, node_name: Optional[str] = None):
        self.peer = peer
        self.node_name = node_name
        details: dict[str, Any] = {"peer": peer}
        if node_name:
            details["node_name"] = node_name
        super().__init__(
            f"Peer '{peer}' not found", code="PEER_NOT_FOUND", details=details
        )


class NodeError(NodeboxError):
    """Errors related to a single managed node.

    Raised when:
    - A node name is not registered with the manager
    - A node is not running
    - A node does not expose a requested service
    """

    def __init__(
        self,
        message: str,
        node_name: Optional[str] = None,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        self.node_name = node_name
        details = details or {}
        if node_name:
            details["node_name"] = node_name
        super().__init__(message, code=code, details=details)


class NodeNotRegisteredError(NodeError):
    """Raised when an operation names a node that was never set up.

    This is a caller contract violation; the manager does not recover from it.
    """

    def __init__(self, node_name: str):
        super().__init__(
            f"Node '{node_name}' is not registered",
            node_name=node_name,
            code="NODE_NOT_REGISTERED",
        )


class NodeNotRunningError(NodeError):
    """Raised by backends when a query needs a running node."""

    def __init__(self, node_name: str, details: Optional[dict[str, Any]] = None):
        super().__init__(
            f"Node '{node_name}' is not running",
            node_name=node_name,
            code="NODE_NOT_RUNNING",
            details=details,
        )


class ServiceNotFoundError(NodeError):
    """Raised by backends when a node does not expose the requested service."""

    def __init__(self, node_name: str, service: str):
        self.service = service
        super().__init__(
            f"Node '{node_name}' has no service '{service}'",
            node_name=node_name,
            code="SERVICE_NOT_FOUND",
            details={"service": service},
        )


class BackendError(NodeboxError):
    """A backend driver failed to perform a lifecycle operation.

    Attributes:
        operation: Name of the backend capability that failed
        node_name: Node the operation was addressed to, if any
        backend: Type tag of the backend
    """

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        node_name: Optional[str] = None,
        backend: Optional[str] = None,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        self.operation = operation
        self.node_name = node_name
        self.backend = backend
        details = details or {}
        if operation:
            details["operation"] = operation
        if node_name:
            details["node_name"] = node_name
        if backend:
            details["backend"] = backend
        super().__init__(message, code=code or "BACKEND_ERROR", details=details)


class CommandTimeoutError(BackendError):
    """Raised when a command run inside a node exceeds its timeout."""

    def __init__(
        self,
        cmd: list[str],
        timeout_seconds: float,
        node_name: Optional[str] = None,
        backend: Optional[str] = None,
    ):
        self.cmd = cmd
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Command {' '.join(cmd)!r} timed out after {timeout_seconds}s",
            operation="run_cmd_in_node_dir",
            node_name=node_name,
            backend=backend,
            code="COMMAND_TIMEOUT",
            details={"timeout_seconds": timeout_seconds},
        )


class ManagerTimeoutError(NodeboxError):
    """Raised when the caller's wait on the control point expires.

    The operation itself is not cancelled and keeps the control point busy.
    """

    def __init__(self, operation: str, timeout_seconds: float):
        self.operation = operation
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Manager call '{operation}' timed out after {timeout_seconds}s",
            code="TIMEOUT",
            details={"operation": operation, "timeout_seconds": timeout_seconds},
        )


class ManagerStoppedError(NodeboxError):
    """Raised when an operation is submitted to a stopped manager."""

    def __init__(self, operation: str):
        super().__init__(
            f"Node manager is stopped, cannot run '{operation}'",
            code="MANAGER_STOPPED",
            details={"operation": operation},
        )


__all__ = [
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
