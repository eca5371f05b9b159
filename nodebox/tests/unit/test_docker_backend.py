"""Unit tests for the Docker backend with a mocked Docker client."""

from unittest.mock import MagicMock, patch

import docker
import pytest

from nodebox.commands.backends.docker import DockerBackend
from nodebox.commands.config import ManagerConfig
from nodebox.commands.errors import (
    BackendError,
    CommandTimeoutError,
    NodeNotRunningError,
    ServiceNotFoundError,
)
from nodebox.commands.models import LiteralPeer, NodeSpec


@pytest.fixture
def client():
    client = MagicMock()
    client.networks.get.side_effect = docker.errors.NotFound("no network")
    return client


@pytest.fixture
def config(tmp_path):
    return ManagerConfig(data_dir=tmp_path / "data", temp_dir=tmp_path / "tmp")


@pytest.fixture
def backend(client):
    return DockerBackend(client=client)


@pytest.fixture
def backend_state(backend, config):
    return backend.start(config)


def make_node(backend, backend_state, name="node1", **options):
    spec = backend.prepare_spec(
        NodeSpec(name, "docker", options=options), backend_state
    )
    return backend.setup_node(spec, backend_state)


def test_start_creates_network_and_log_root(backend, backend_state, client, config):
    assert backend.name == "docker"
    assert backend_state.log_root == config.data_dir / "quickcheck"
    assert backend_state.log_root.is_dir()
    client.networks.create.assert_called_once_with(
        "nodebox-quickcheck", driver="bridge"
    )
    assert backend_state.created_networks == ["nodebox-quickcheck"]


@patch("docker.from_env")
def test_start_without_docker(mock_from_env, config):
    mock_from_env.side_effect = docker.errors.DockerException("socket missing")

    with pytest.raises(BackendError) as exc_info:
        DockerBackend().start(config)
    assert exc_info.value.operation == "start"


def test_stop_removes_created_networks(backend, backend_state, client):
    client.networks.get.side_effect = None
    network = MagicMock()
    client.networks.get.return_value = network

    backend.stop(backend_state)

    network.remove.assert_called_once()
    assert backend_state.created_networks == []


def test_stop_reports_networks_that_stay(backend, backend_state, client):
    client.networks.get.side_effect = None
    client.networks.get.return_value.remove.side_effect = docker.errors.APIError(
        "in use"
    )

    with pytest.raises(BackendError):
        backend.stop(backend_state)
    assert backend_state.created_networks == ["nodebox-quickcheck"]


def test_prepare_spec_defaults_keep_explicit_options(backend, backend_state):
    spec = NodeSpec("node1", "docker", source="epoch:v1", options={"hostname": "n1"})

    prepared = backend.prepare_spec(spec, backend_state)

    assert prepared.options == {
        "image": "epoch:v1",
        "container_name": "quickcheck-node1",
        "hostname": "n1",
    }


def test_peer_addresses(backend, backend_state):
    plain = backend.prepare_spec(NodeSpec("node1", "docker"), backend_state)
    keyed = backend.prepare_spec(
        NodeSpec("node2", "docker", options={"pubkey": "pp_abc"}), backend_state
    )

    assert backend.peer_from_spec(plain, backend_state) == "http://node1:3015/"
    assert backend.peer_from_spec(keyed, backend_state) == "aenode://pp_abc@node2:3015"


def test_setup_node_creates_container(backend, backend_state, client):
    client.images.get.side_effect = docker.errors.ImageNotFound("missing")
    spec = backend.prepare_spec(
        NodeSpec("node2", "docker", peers=["aenode://pp_x@node1:3015"]),
        backend_state,
    )

    state = backend.setup_node(spec, backend_state)

    client.images.pull.assert_called_once_with("aeternity/epoch:local")
    _, kwargs = client.containers.create.call_args
    assert kwargs["name"] == "quickcheck-node2"
    assert kwargs["hostname"] == "node2"
    assert kwargs["environment"] == {"NODEBOX_PEERS": "aenode://pp_x@node1:3015"}
    assert kwargs["network"] == "nodebox-quickcheck"
    assert "3013/tcp" in kwargs["ports"]
    assert state.container is client.containers.create.return_value
    assert state.log_dir.is_dir()
    assert state.spec.peers == (LiteralPeer("aenode://pp_x@node1:3015"),)
    assert not state.started


def test_setup_node_image_missing_from_registry(backend, backend_state, client):
    client.images.get.side_effect = docker.errors.ImageNotFound("missing")
    client.images.pull.side_effect = docker.errors.NotFound("unknown image")

    with pytest.raises(BackendError) as exc_info:
        make_node(backend, backend_state)
    assert exc_info.value.operation == "setup_node"
    client.containers.create.assert_not_called()


def test_start_stop_node(backend, backend_state):
    state = make_node(backend, backend_state)

    started = backend.start_node(state)
    assert started.started
    state.container.start.assert_called_once()

    stopped = backend.stop_node(started, soft_timeout=0)
    assert not stopped.started
    state.container.stop.assert_called_once_with(timeout=0)


def test_stop_node_default_timeout(backend, backend_state):
    state = make_node(backend, backend_state)

    backend.stop_node(state)

    state.container.stop.assert_called_once_with(timeout=10)


def test_kill_node_not_running_is_ignored(backend, backend_state):
    state = make_node(backend, backend_state)
    response = MagicMock(status_code=409)
    state.container.kill.side_effect = docker.errors.APIError(
        "conflict", response=response, explanation="Container abc is not running"
    )

    assert not backend.kill_node(state).started


def test_kill_node_other_errors_propagate(backend, backend_state):
    state = make_node(backend, backend_state)
    response = MagicMock(status_code=500)
    state.container.kill.side_effect = docker.errors.APIError(
        "server error", response=response, explanation="daemon exploded"
    )

    with pytest.raises(docker.errors.APIError):
        backend.kill_node(state)


def test_delete_node_already_removed(backend, backend_state):
    state = make_node(backend, backend_state)
    state.container.remove.side_effect = docker.errors.NotFound("gone")

    backend.delete_node(state)

    state.container.remove.assert_called_once_with(force=True)


def test_get_service_address(backend, backend_state):
    state = make_node(backend, backend_state)
    state.container.status = "running"
    state.container.attrs = {
        "NetworkSettings": {"Ports": {"3013/tcp": [{"HostPort": "49153"}]}}
    }

    assert backend.get_service_address("ext_http", state) == "http://localhost:49153/"
    state.container.reload.assert_called_once()


def test_get_service_address_errors(backend, backend_state):
    state = make_node(backend, backend_state)
    state.container.status = "exited"

    with pytest.raises(ServiceNotFoundError):
        backend.get_service_address("grpc", state)
    with pytest.raises(NodeNotRunningError):
        backend.get_service_address("ext_http", state)

    state.container.status = "running"
    state.container.attrs = {"NetworkSettings": {"Ports": {}}}
    with pytest.raises(NodeNotRunningError):
        backend.get_service_address("ext_http", state)


def test_get_node_pubkey(backend, backend_state):
    configured = make_node(backend, backend_state, "node1", pubkey="pp_set")
    assert backend.get_node_pubkey(configured) == "pp_set"
    configured.container.exec_run.assert_not_called()

    read = make_node(backend, backend_state, "node2")
    read.container.exec_run.return_value = MagicMock(exit_code=0, output=b"pp_read\n")
    assert backend.get_node_pubkey(read) == "pp_read"

    read.container.exec_run.return_value = MagicMock(exit_code=1, output=b"no file")
    with pytest.raises(BackendError):
        backend.get_node_pubkey(read)


def test_node_logs_written_to_log_dir(backend, backend_state):
    state = make_node(backend, backend_state)
    state.container.logs.return_value = b"2018-01-01T00:00:00Z booting\n"

    backend.node_logs(state)

    assert backend.get_log_path(state) == state.log_dir
    assert (state.log_dir / "container.log").read_bytes() == (
        b"2018-01-01T00:00:00Z booting\n"
    )


def test_run_cmd_in_node_dir(backend, backend_state):
    state = make_node(backend, backend_state)
    state.container.exec_run.return_value = MagicMock(exit_code=0, output=b"pong")

    result, new_state = backend.run_cmd_in_node_dir(state, ["bin/epoch", "ping"], 7.5)

    assert result.ok
    assert result.output == "pong"
    assert new_state is state
    state.container.exec_run.assert_called_once_with(
        ["timeout", "7", "bin/epoch", "ping"], workdir="/home/epoch/node"
    )


def test_run_cmd_in_node_dir_timeout(backend, backend_state):
    state = make_node(backend, backend_state)
    state.container.exec_run.return_value = MagicMock(exit_code=124, output=b"")

    with pytest.raises(CommandTimeoutError) as exc_info:
        backend.run_cmd_in_node_dir(state, ["sleep", "100"], 1)
    assert exc_info.value.node_name == "node1"


def test_extract_archive(backend, backend_state):
    state = make_node(backend, backend_state)
    state.container.put_archive.return_value = True

    assert backend.extract_archive(state, "/tmp", b"tar") is state

    state.container.put_archive.return_value = False
    with pytest.raises(BackendError):
        backend.extract_archive(state, "/tmp", b"tar")


def test_connect_and_disconnect(backend, backend_state, client):
    state = make_node(backend, backend_state)
    network = client.networks.create.return_value

    connected = backend.connect_node("partition", state)

    network.connect.assert_called_once_with(state.container, aliases=["node1"])
    assert "partition" in connected.networks
    assert "partition" in backend_state.created_networks

    client.networks.get.side_effect = None
    disconnected = backend.disconnect_node("partition", connected)

    client.networks.get.return_value.disconnect.assert_called_once_with(
        state.container
    )
    assert "partition" not in disconnected.networks
