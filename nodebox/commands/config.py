"""
Configuration for the node manager and node spec files.
"""

from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Callable, Mapping, Optional, Union

import yaml

from nodebox.commands.constants import CALL_TIMEOUT, DEFAULT_TEST_ID
from nodebox.commands.errors import ConfigurationError
from nodebox.commands.models import NodeSpec

REQUIRED_CONFIG_KEYS = ("data_dir", "temp_dir")


def discard_log(text: str) -> None:
    """Default diagnostic sink: drop everything."""


@dataclass
class ManagerConfig:
    """Startup configuration handed to the manager and every backend.

    Attributes:
        data_dir: Directory backends persist node data and logs under
        temp_dir: Scratch directory for backends
        test_id: Identifier of the test run, used to namespace resources
        log_fun: Sink receiving diagnostic text (log scan hits, teardown failures)
        call_timeout: Seconds a caller waits for an operation to complete
        disable_cleanup: Leave nodes and backends running on cleanup, for postmortems
    """

    data_dir: Path
    temp_dir: Path
    test_id: str = DEFAULT_TEST_ID
    log_fun: Optional[Callable[[str], None]] = None
    call_timeout: float = CALL_TIMEOUT
    disable_cleanup: bool = False

    def __post_init__(self):
        self.data_dir = Path(self.data_dir)
        self.temp_dir = Path(self.temp_dir)
        if self.log_fun is None:
            self.log_fun = discard_log
        if self.call_timeout <= 0:
            raise ConfigurationError(
                "call_timeout must be positive",
                details={"call_timeout": self.call_timeout},
            )

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> "ManagerConfig":
        """Build a config from a plain mapping, rejecting missing or unknown keys."""
        missing = [key for key in REQUIRED_CONFIG_KEYS if key not in mapping]
        if missing:
            raise ConfigurationError(
                f"Missing required config keys: {', '.join(missing)}",
                details={"missing": missing},
            )
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(mapping) - known)
        if unknown:
            raise ConfigurationError(
                f"Unknown config keys: {', '.join(unknown)}",
                details={"unknown": unknown},
            )
        return cls(**dict(mapping))


def load_node_specs(path: Union[str, Path]) -> list[NodeSpec]:
    """Load node specs from a YAML file.

    The file must contain a top-level ``nodes`` list. Each entry needs a ``name``
    and a ``backend`` and may carry ``peers``, ``source`` and ``options``.

    Raises:
        ConfigurationError: If the file is missing, unparsable or invalid.
    """
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(
            f"Node spec file not found: {path}", config_file=str(path)
        )

    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(
            f"Invalid YAML in node spec file: {e}", config_file=str(path)
        ) from e

    if not isinstance(data, dict) or not isinstance(data.get("nodes"), list):
        raise ConfigurationError(
            "Node spec file must contain a 'nodes' list", config_file=str(path)
        )

    specs = []
    seen = set()
    for index, entry in enumerate(data["nodes"]):
        spec = _parse_node_entry(entry, index, str(path))
        if spec.name in seen:
            raise ConfigurationError(
                f"Duplicate node name '{spec.name}'", config_file=str(path)
            )
        seen.add(spec.name)
        specs.append(spec)
    return specs


def _parse_node_entry(entry: Any, index: int, config_file: str) -> NodeSpec:
    if not isinstance(entry, dict):
        raise ConfigurationError(
            f"Node entry #{index} must be a mapping", config_file=config_file
        )

    for key in ("name", "backend"):
        if not isinstance(entry.get(key), str) or not entry[key]:
            raise ConfigurationError(
                f"Node entry #{index}: '{key}' is required and must be a string",
                config_file=config_file,
            )

    peers = entry.get("peers", [])
    if not isinstance(peers, list) or not all(isinstance(p, str) for p in peers):
        raise ConfigurationError(
            f"Node '{entry['name']}': 'peers' must be a list of strings",
            config_file=config_file,
        )

    source = entry.get("source")
    if source is not None and not isinstance(source, str):
        raise ConfigurationError(
            f"Node '{entry['name']}': 'source' must be a string",
            config_file=config_file,
        )

    options = entry.get("options", {})
    if not isinstance(options, dict):
        raise ConfigurationError(
            f"Node '{entry['name']}': 'options' must be a mapping",
            config_file=config_file,
        )

    return NodeSpec(
        name=entry["name"],
        backend=entry["backend"],
        peers=peers,
        source=source,
        options=options,
    )
