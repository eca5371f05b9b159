"""
Data types shared by the node manager and its backends.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Optional, Union


@dataclass(frozen=True)
class LiteralPeer:
    """A peer given directly by its network address."""

    address: str


@dataclass(frozen=True)
class NodeRef:
    """A peer given by the name of another managed node."""

    name: str


Peer = Union[LiteralPeer, NodeRef]


def parse_peer(value: Union[str, Peer]) -> Peer:
    """Turn a spec file peer entry into a Peer.

    Strings with a URI scheme are literal addresses, anything else is a node name.
    """
    if isinstance(value, (LiteralPeer, NodeRef)):
        return value
    if "://" in value:
        return LiteralPeer(value)
    return NodeRef(value)


@dataclass(frozen=True)
class NodeSpec:
    """Declarative description of a node to create."""

    name: str
    backend: str
    peers: tuple = ()
    source: Optional[str] = None
    options: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "peers", tuple(parse_peer(p) for p in self.peers))

    def with_peers(self, peers) -> "NodeSpec":
        return replace(self, peers=tuple(peers))

    def with_options(self, **options: Any) -> "NodeSpec":
        merged = dict(self.options)
        merged.update(options)
        return replace(self, options=merged)

    def peer_addresses(self) -> list[str]:
        """Addresses of literal peers; only complete after peer resolution."""
        return [p.address for p in self.peers if isinstance(p, LiteralPeer)]


@dataclass
class ManagedNode:
    """Registry record pairing a backend name with its opaque node state."""

    backend: str
    state: Any


@dataclass(frozen=True)
class CommandResult:
    """Exit code and combined output of a command run inside a node."""

    exit_code: int
    output: str

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


@dataclass
class CleanupReport:
    """Outcome of NodeManager.cleanup().

    Attributes:
        log_errors: Node name -> error lines found in that node's log
        teardown_errors: Node name -> exceptions raised while stopping and deleting it
        backend_errors: Backend name -> exception raised while stopping it
        skipped: True when teardown was disabled and nodes were left running
    """

    log_errors: dict[str, list[str]] = field(default_factory=dict)
    teardown_errors: dict[str, list[Exception]] = field(default_factory=dict)
    backend_errors: dict[str, Exception] = field(default_factory=dict)
    skipped: bool = False

    @property
    def teardown_failed(self) -> bool:
        return bool(self.teardown_errors or self.backend_errors)

    @property
    def log_errors_found(self) -> bool:
        return bool(self.log_errors)

    @property
    def ok(self) -> bool:
        """True when the log scan came back clean."""
        return not self.log_errors
