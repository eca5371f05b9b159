"""
Constants and configuration values used across the nodebox codebase.
"""

from enum import Enum

# Manager defaults
DEFAULT_TEST_ID = "quickcheck"
CALL_TIMEOUT = 60  # seconds a caller waits on the control point
COMMAND_WAIT_MARGIN = 5  # seconds added to a command timeout for the caller wait
NODE_TEARDOWN_TIMEOUT = 0  # soft timeout used when stopping nodes during cleanup

# Environment toggle mapped onto ManagerConfig.disable_cleanup by the CLI
ENV_DISABLE_NODE_CLEANUP = "NODEBOX_DISABLE_NODE_CLEANUP"

# Log scanning
LOG_FILE_NAME = "epoch.log"
LOG_ERROR_MARKER = "[error]"
# Exit reports of dead processes from the watchdog are expected noise
LOG_BENIGN_ERROR_PATTERN = (
    r"emulator Error in process <[0-9.]*> on node \S+@localhost with exit value"
)

# Docker backend
DOCKER_BACKEND = "docker"
DEFAULT_IMAGE = "aeternity/epoch:local"
NODE_LABEL = "nodebox.node"
TEST_ID_LABEL = "nodebox.test_id"
CONTAINER_LOG_DIR = "/home/epoch/node/log"
CONTAINER_NODE_DIR = "/home/epoch/node"
CONTAINER_LOG_FILE = "container.log"
PUBKEY_FILE = "keys/peer_key.pub"
PEERS_ENV_VAR = "NODEBOX_PEERS"
TIMEOUT_EXIT_CODE = 124  # exit code of coreutils `timeout` on expiry

# Service name -> port inside the container
SERVICE_PORTS = {
    "sync": 3015,
    "ext_http": 3013,
    "int_http": 3113,
    "ws": 3014,
}
PEER_SERVICE = "sync"


class TerminationOutcome(Enum):
    """What a call to the run-once termination guard did."""

    PERFORMED = "performed"
    ALREADY_DONE = "already_done"
    IN_PROGRESS = "in_progress"
