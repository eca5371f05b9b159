"""
Node Manager - Single control point for the lifecycle of managed nodes.

Every operation is executed by one worker thread in arrival order, so registry
updates made by one call are visible before the next call starts. Callers
block on the result with a bounded wait.
"""

import concurrent.futures
import logging
from typing import Any, Callable, Iterable, Mapping, Optional, Union

from rich.console import Console

from nodebox.commands.backends.base import Backend
from nodebox.commands.config import ManagerConfig
from nodebox.commands.constants import (
    CALL_TIMEOUT,
    COMMAND_WAIT_MARGIN,
    NODE_TEARDOWN_TIMEOUT,
)
from nodebox.commands.errors import (
    BackendError,
    BackendNotProvidedError,
    ConfigurationError,
    ManagerStoppedError,
    ManagerTimeoutError,
    NodeboxError,
    NodeNotRegisteredError,
    PeerNotFoundError,
)
from nodebox.commands.log_scan import emit_diagnostic, scan_node_logs
from nodebox.commands.models import (
    CleanupReport,
    CommandResult,
    LiteralPeer,
    ManagedNode,
    NodeSpec,
)
from nodebox.commands.termination import TerminationMixin

logger = logging.getLogger(__name__)
console = Console()


class NodeManager(TerminationMixin):
    """Tracks managed nodes and dispatches lifecycle operations to their backends."""

    def __init__(
        self,
        backends: Iterable[Backend],
        config: Union[ManagerConfig, Mapping[str, Any]],
        enable_signal_handlers: bool = False,
    ):
        """
        Start every backend and the control point.

        Args:
            backends: Backend drivers to register, keyed by their ``name``.
            config: Manager configuration, or a mapping accepted by
                ManagerConfig.from_mapping.
            enable_signal_handlers: If True, tear nodes down on SIGINT/SIGTERM
                and at interpreter exit.

        Raises:
            ConfigurationError: If the config is invalid or backend names clash.
        """
        if not isinstance(config, ManagerConfig):
            config = ManagerConfig.from_mapping(config)
        self.config = config

        backends = list(backends)
        names = [backend.name for backend in backends]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ConfigurationError(
                f"Duplicate backends: {', '.join(duplicates)}",
                details={"backends": duplicates},
            )

        self._init_termination_state()
        self._backends: dict[str, Backend] = {}
        self._backend_states: dict[str, Any] = {}
        self._nodes: dict[str, ManagedNode] = {}
        self._stopped = False
        self._executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="nodebox-manager"
        )

        try:
            self._call("start", self._mgr_start_backends, backends)
        except BaseException:
            self._stopped = True
            self._executor.shutdown(wait=False)
            raise

        if enable_signal_handlers:
            self._install_termination_hooks()

    def __enter__(self) -> "NodeManager":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.stop()
        return False

    # Public API

    def setup_nodes(self, specs: Iterable[NodeSpec]) -> None:
        """Materialize nodes from specs without starting them.

        Symbolic peers are resolved against the registered nodes and the new
        specs. Entries with an existing name are replaced; the old node is not
        torn down.

        Raises:
            BackendNotProvidedError: If a spec names an unregistered backend.
            PeerNotFoundError: If a symbolic peer names no known node.
        """
        self._call("setup_nodes", self._mgr_setup_nodes, list(specs))

    def start_node(self, node_name: str) -> None:
        self._call("start_node", self._mgr_start_node, node_name)

    def stop_node(self, node_name: str, timeout: Optional[float] = None) -> None:
        """Stop a node gracefully; ``timeout`` is a soft hint for the backend."""
        self._call("stop_node", self._mgr_stop_node, node_name, timeout)

    def kill_node(self, node_name: str) -> None:
        self._call("kill_node", self._mgr_kill_node, node_name)

    def get_service_address(self, node_name: str, service: str) -> str:
        return self._call(
            "get_service_address", self._mgr_get_service_address, node_name, service
        )

    def get_node_pubkey(self, node_name: str) -> str:
        return self._call("get_node_pubkey", self._mgr_get_node_pubkey, node_name)

    def run_cmd_in_node_dir(
        self, node_name: str, cmd: list[str], timeout: float = CALL_TIMEOUT
    ) -> CommandResult:
        """Run a command in the node's working directory.

        A nonzero exit code is returned, not raised.

        Raises:
            CommandTimeoutError: If the command exceeds ``timeout``.
        """
        wait = max(self.config.call_timeout, timeout + COMMAND_WAIT_MARGIN)
        return self._call(
            "run_cmd_in_node_dir",
            self._mgr_run_cmd_in_node_dir,
            node_name,
            list(cmd),
            timeout,
            wait=wait,
        )

    def extract_archive(self, node_name: str, path: str, archive: bytes) -> None:
        self._call(
            "extract_archive", self._mgr_extract_archive, node_name, path, archive
        )

    def connect_node(self, node_name: str, net_name: str) -> None:
        self._call("connect_node", self._mgr_connect_node, node_name, net_name)

    def disconnect_node(self, node_name: str, net_name: str) -> None:
        self._call("disconnect_node", self._mgr_disconnect_node, node_name, net_name)

    def dump_logs(self) -> dict[str, Exception]:
        """Ask every node's backend to persist its logs.

        Best effort: a failing node does not stop the others.

        Returns:
            Node name -> exception, for nodes whose logs could not be dumped.
        """
        return self._call("dump_logs", self._mgr_dump_logs)

    def cleanup(self) -> CleanupReport:
        """Scan node logs for errors, then tear down every node and backend.

        Teardown runs regardless of the scan result, unless
        ``config.disable_cleanup`` is set at the time of the call.
        """
        return self._call("cleanup", self._mgr_cleanup)

    def node_names(self) -> list[str]:
        return self._call("node_names", lambda: sorted(self._nodes))

    def backend_names(self) -> list[str]:
        return self._call("backend_names", lambda: list(self._backends))

    def has_node(self, node_name: str) -> bool:
        return self._call("has_node", lambda: node_name in self._nodes)

    @property
    def stopped(self) -> bool:
        """True once the control point has shut down, e.g. after a signal."""
        return self._stopped

    def stop(self) -> None:
        """Tear everything down and shut the control point down."""
        self._terminate_once()
        self.remove_termination_hooks()

    # Control point

    def _call(self, operation: str, fn: Callable, *args, wait: Optional[float] = None):
        if self._stopped:
            raise ManagerStoppedError(operation)
        try:
            future = self._executor.submit(fn, *args)
        except RuntimeError as e:
            raise ManagerStoppedError(operation) from e

        wait = wait or self.config.call_timeout
        done, _ = concurrent.futures.wait([future], timeout=wait)
        if not done:
            logger.error("Manager call %s still running after %ss", operation, wait)
            raise ManagerTimeoutError(operation, wait)
        return future.result()

    def _do_terminate(self):
        try:
            try:
                report = self._call("terminate", self._mgr_teardown)
            except ManagerStoppedError:
                # The worker thread is gone at interpreter shutdown
                report = self._mgr_teardown()
            if report.teardown_failed:
                console.print("[red]✗ Some nodes or backends failed to stop[/red]")
        except NodeboxError as e:
            logger.error("Termination cleanup failed: %s", e)
            console.print(f"[red]✗ Termination cleanup failed: {str(e)}[/red]")
        finally:
            self._stopped = True
            self._executor.shutdown(wait=False)

    # Operations, run on the control point only

    def _mgr_start_backends(self, backends: list[Backend]) -> None:
        for backend in backends:
            try:
                state = backend.start(self.config)
            except Exception as e:
                self._stop_backends()
                if isinstance(e, NodeboxError):
                    raise
                raise BackendError(
                    f"Backend '{backend.name}' failed to start: {e}",
                    operation="start",
                    backend=backend.name,
                ) from e
            self._backends[backend.name] = backend
            self._backend_states[backend.name] = state
            logger.debug("Started backend %s", backend.name)

    def _mgr_setup_nodes(self, specs: list[NodeSpec]) -> None:
        names = [spec.name for spec in specs]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ConfigurationError(
                f"Duplicate node names in setup: {', '.join(duplicates)}",
                details={"nodes": duplicates},
            )

        for spec in specs:
            if spec.backend not in self._backends:
                raise BackendNotProvidedError(spec.backend, spec.name)

        prepared = [
            self._invoke(
                "prepare_spec",
                spec.name,
                spec.backend,
                self._backends[spec.backend].prepare_spec,
                spec,
                self._backend_states[spec.backend],
            )
            for spec in specs
        ]

        addresses = {
            name: self._invoke(
                "get_peer_address",
                name,
                node.backend,
                self._backends[node.backend].get_peer_address,
                node.state,
            )
            for name, node in self._nodes.items()
        }
        for spec in prepared:
            addresses[spec.name] = self._invoke(
                "peer_from_spec",
                spec.name,
                spec.backend,
                self._backends[spec.backend].peer_from_spec,
                spec,
                self._backend_states[spec.backend],
            )

        resolved = [self._resolve_peers(spec, addresses) for spec in prepared]

        created: dict[str, ManagedNode] = {}
        try:
            for spec in resolved:
                state = self._invoke(
                    "setup_node",
                    spec.name,
                    spec.backend,
                    self._backends[spec.backend].setup_node,
                    spec,
                    self._backend_states[spec.backend],
                )
                created[spec.name] = ManagedNode(spec.backend, state)
        except Exception:
            self._discard_nodes(created)
            raise

        for name in created:
            if name in self._nodes:
                logger.warning("Replacing node %s without tearing it down", name)
        self._nodes.update(created)
        console.print(
            f"[green]✓ Set up {len(created)} node(s): {', '.join(created)}[/green]"
        )

    def _mgr_start_node(self, node_name: str) -> None:
        backend, node = self._lookup(node_name)
        state = self._invoke(
            "start_node", node_name, node.backend, backend.start_node, node.state
        )
        self._store(node_name, node, state)

    def _mgr_stop_node(self, node_name: str, timeout: Optional[float]) -> None:
        backend, node = self._lookup(node_name)
        state = self._invoke(
            "stop_node",
            node_name,
            node.backend,
            backend.stop_node,
            node.state,
            soft_timeout=timeout,
        )
        self._store(node_name, node, state)

    def _mgr_kill_node(self, node_name: str) -> None:
        backend, node = self._lookup(node_name)
        state = self._invoke(
            "kill_node", node_name, node.backend, backend.kill_node, node.state
        )
        self._store(node_name, node, state)

    def _mgr_get_service_address(self, node_name: str, service: str) -> str:
        backend, node = self._lookup(node_name)
        return self._invoke(
            "get_service_address",
            node_name,
            node.backend,
            backend.get_service_address,
            service,
            node.state,
        )

    def _mgr_get_node_pubkey(self, node_name: str) -> str:
        backend, node = self._lookup(node_name)
        return self._invoke(
            "get_node_pubkey",
            node_name,
            node.backend,
            backend.get_node_pubkey,
            node.state,
        )

    def _mgr_run_cmd_in_node_dir(
        self, node_name: str, cmd: list[str], timeout: float
    ) -> CommandResult:
        backend, node = self._lookup(node_name)
        result, state = self._invoke(
            "run_cmd_in_node_dir",
            node_name,
            node.backend,
            backend.run_cmd_in_node_dir,
            node.state,
            cmd,
            timeout,
        )
        self._store(node_name, node, state)
        return result

    def _mgr_extract_archive(self, node_name: str, path: str, archive: bytes) -> None:
        backend, node = self._lookup(node_name)
        state = self._invoke(
            "extract_archive",
            node_name,
            node.backend,
            backend.extract_archive,
            node.state,
            path,
            archive,
        )
        self._store(node_name, node, state)

    def _mgr_connect_node(self, node_name: str, net_name: str) -> None:
        backend, node = self._lookup(node_name)
        state = self._invoke(
            "connect_node",
            node_name,
            node.backend,
            backend.connect_node,
            net_name,
            node.state,
        )
        self._store(node_name, node, state)

    def _mgr_disconnect_node(self, node_name: str, net_name: str) -> None:
        backend, node = self._lookup(node_name)
        state = self._invoke(
            "disconnect_node",
            node_name,
            node.backend,
            backend.disconnect_node,
            net_name,
            node.state,
        )
        self._store(node_name, node, state)

    def _mgr_dump_logs(self) -> dict[str, Exception]:
        failures = {}
        for node_name, node in self._nodes.items():
            try:
                self._backends[node.backend].node_logs(node.state)
            except Exception as e:
                failures[node_name] = e
                self._report(f"Failed to dump logs of node {node_name}: {e}")
        return failures

    def _mgr_cleanup(self) -> CleanupReport:
        log_errors = self._scan_logs()

        if self.config.disable_cleanup:
            console.print(
                "[yellow]Node cleanup disabled, leaving nodes and backends running[/yellow]"
            )
            return CleanupReport(log_errors=log_errors, skipped=True)

        report = self._mgr_teardown()
        report.log_errors = log_errors
        return report

    def _mgr_teardown(self) -> CleanupReport:
        if self.config.disable_cleanup:
            return CleanupReport(skipped=True)

        report = CleanupReport()
        for node_name, node in list(self._nodes.items()):
            backend = self._backends[node.backend]
            state = node.state
            try:
                state = backend.stop_node(state, soft_timeout=NODE_TEARDOWN_TIMEOUT)
            except Exception as e:
                report.teardown_errors.setdefault(node_name, []).append(e)
                self._report(f"Failed to stop node {node_name}: {e}")
            try:
                backend.delete_node(state)
            except Exception as e:
                report.teardown_errors.setdefault(node_name, []).append(e)
                self._report(f"Failed to delete node {node_name}: {e}")
        self._nodes.clear()

        report.backend_errors.update(self._stop_backends())
        return report

    # Helpers

    def _lookup(self, node_name: str) -> tuple[Backend, ManagedNode]:
        node = self._nodes.get(node_name)
        if node is None:
            raise NodeNotRegisteredError(node_name)
        return self._backends[node.backend], node

    def _store(self, node_name: str, node: ManagedNode, state: Any) -> None:
        self._nodes[node_name] = ManagedNode(node.backend, state)

    def _invoke(
        self,
        operation: str,
        node_name: Optional[str],
        backend_name: str,
        fn,
        *args,
        **kwargs,
    ):
        """Call a backend capability, wrapping foreign exceptions in BackendError."""
        try:
            return fn(*args, **kwargs)
        except NodeboxError:
            raise
        except Exception as e:
            raise BackendError(
                f"{operation} failed on backend '{backend_name}' for node '{node_name}': {e}",
                operation=operation,
                node_name=node_name,
                backend=backend_name,
            ) from e

    def _resolve_peers(self, spec: NodeSpec, addresses: dict[str, str]) -> NodeSpec:
        peers = []
        for peer in spec.peers:
            if isinstance(peer, LiteralPeer):
                peers.append(peer)
            elif peer.name in addresses:
                peers.append(LiteralPeer(addresses[peer.name]))
            else:
                raise PeerNotFoundError(peer.name, spec.name)
        return spec.with_peers(peers)

    def _discard_nodes(self, nodes: dict[str, ManagedNode]) -> None:
        """Best-effort removal of nodes created by a failed setup."""
        for node_name, node in nodes.items():
            try:
                self._backends[node.backend].delete_node(node.state)
            except Exception as e:
                self._report(f"Failed to delete partially set up node {node_name}: {e}")

    def _stop_backends(self) -> dict[str, Exception]:
        errors = {}
        for backend_name, backend in list(self._backends.items()):
            try:
                backend.stop(self._backend_states[backend_name])
            except Exception as e:
                errors[backend_name] = e
                self._report(f"Failed to stop backend {backend_name}: {e}")
        self._backends.clear()
        self._backend_states.clear()
        return errors

    def _scan_logs(self) -> dict[str, list[str]]:
        log_dirs = {}
        for node_name, node in self._nodes.items():
            try:
                log_dirs[node_name] = self._backends[node.backend].get_log_path(
                    node.state
                )
            except Exception as e:
                self._report(f"Could not get log path of node {node_name}: {e}")
        return scan_node_logs(log_dirs, self.config.log_fun)

    def _report(self, text: str) -> None:
        logger.warning(text)
        emit_diagnostic(self.config.log_fun, text)
