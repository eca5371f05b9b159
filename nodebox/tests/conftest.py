"""Pytest configuration for nodebox tests.

Provides an in-memory backend so the node manager can be exercised without
Docker.
"""

import threading
import time
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Optional

import pytest

from nodebox.commands.backends.base import Backend
from nodebox.commands.config import ManagerConfig
from nodebox.commands.errors import (
    CommandTimeoutError,
    NodeNotRunningError,
    ServiceNotFoundError,
)
from nodebox.commands.manager import NodeManager
from nodebox.commands.models import CommandResult, NodeSpec

FAKE_SERVICES = ("sync", "ext_http")


@dataclass(frozen=True)
class FakeNodeState:
    name: str
    spec: NodeSpec
    log_dir: Path
    resource: str
    status: str = "created"
    networks: frozenset = frozenset()
    commands: tuple = ()
    archives: tuple = ()


class FakeBackend(Backend):
    """Backend keeping nodes in memory and recording every call.

    ``fail_on`` maps ``(operation, node_name)`` or ``(operation, None)`` to the
    exception that operation should raise.
    """

    def __init__(self, name: str = "fake", fail_on: Optional[dict] = None):
        self._name = name
        self.fail_on = dict(fail_on or {})
        self.calls = []
        self.stop_timeouts = []
        self.resources = set()
        self.stopped = False
        self.block = None
        self._active = 0
        self.max_active = 0
        self._lock = threading.Lock()
        self._counter = 0

    @property
    def name(self) -> str:
        return self._name

    def _record(self, operation, node_name=None):
        self.calls.append((operation, node_name))
        for key in ((operation, node_name), (operation, None)):
            if key in self.fail_on:
                raise self.fail_on[key]

    def start(self, config):
        self._record("start")
        return {"log_root": Path(config.data_dir) / config.test_id}

    def stop(self, backend_state):
        self._record("stop")
        self.stopped = True

    def prepare_spec(self, spec, backend_state):
        self._record("prepare_spec", spec.name)
        return spec.with_options(hostname=spec.options.get("hostname", spec.name))

    def peer_from_spec(self, spec, backend_state):
        return f"fake://{spec.options['hostname']}"

    def get_peer_address(self, node_state):
        return f"fake://{node_state.spec.options['hostname']}"

    def setup_node(self, spec, backend_state):
        self._record("setup_node", spec.name)
        self._counter += 1
        log_dir = backend_state["log_root"] / spec.name
        log_dir.mkdir(parents=True, exist_ok=True)
        resource = f"{spec.name}#{self._counter}"
        self.resources.add(resource)
        return FakeNodeState(spec.name, spec, log_dir, resource)

    def start_node(self, node_state):
        with self._lock:
            self._active += 1
            self.max_active = max(self.max_active, self._active)
        try:
            self._record("start_node", node_state.name)
            if self.block is not None:
                self.block.wait()
            time.sleep(0.001)
            return replace(node_state, status="running")
        finally:
            with self._lock:
                self._active -= 1

    def stop_node(self, node_state, soft_timeout=None):
        self._record("stop_node", node_state.name)
        self.stop_timeouts.append((node_state.name, soft_timeout))
        return replace(node_state, status="stopped")

    def kill_node(self, node_state):
        self._record("kill_node", node_state.name)
        return replace(node_state, status="killed")

    def delete_node(self, node_state):
        self._record("delete_node", node_state.name)
        self.resources.discard(node_state.resource)

    def get_service_address(self, service, node_state):
        self._record("get_service_address", node_state.name)
        if service not in FAKE_SERVICES:
            raise ServiceNotFoundError(node_state.name, service)
        if node_state.status != "running":
            raise NodeNotRunningError(node_state.name)
        return f"http://{node_state.name}.local/{service}"

    def get_node_pubkey(self, node_state):
        self._record("get_node_pubkey", node_state.name)
        return f"pp_{node_state.name}"

    def get_log_path(self, node_state):
        return node_state.log_dir

    def node_logs(self, node_state):
        self._record("node_logs", node_state.name)
        (node_state.log_dir / "container.log").write_text("dumped\n")

    def run_cmd_in_node_dir(self, node_state, cmd, timeout):
        self._record("run_cmd_in_node_dir", node_state.name)
        if cmd[0] == "sleep":
            raise CommandTimeoutError(cmd, timeout, node_state.name, self.name)
        exit_code = 1 if cmd[0] == "false" else 0
        new_state = replace(node_state, commands=node_state.commands + (tuple(cmd),))
        return CommandResult(exit_code, " ".join(cmd[1:])), new_state

    def extract_archive(self, node_state, path, archive):
        self._record("extract_archive", node_state.name)
        return replace(node_state, archives=node_state.archives + ((path, archive),))

    def connect_node(self, net_name, node_state):
        self._record("connect_node", node_state.name)
        return replace(node_state, networks=node_state.networks | {net_name})

    def disconnect_node(self, net_name, node_state):
        self._record("disconnect_node", node_state.name)
        return replace(node_state, networks=node_state.networks - {net_name})


@pytest.fixture
def fake_backend_class():
    return FakeBackend


@pytest.fixture
def fake_backend():
    return FakeBackend()


@pytest.fixture
def log_sink():
    """List collecting everything the manager sends to its log_fun."""
    return []


@pytest.fixture
def manager_config(tmp_path, log_sink):
    return ManagerConfig(
        data_dir=tmp_path / "data",
        temp_dir=tmp_path / "tmp",
        test_id="unit",
        log_fun=log_sink.append,
        call_timeout=5,
    )


@pytest.fixture
def manager(fake_backend, manager_config):
    mgr = NodeManager([fake_backend], manager_config)
    yield mgr
    mgr.stop()


def node_state(manager: NodeManager, node_name: str) -> FakeNodeState:
    """Peek at the opaque state the manager stores for a node."""
    return manager._nodes[node_name].state


@pytest.fixture
def get_node_state():
    return node_state
