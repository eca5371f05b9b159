"""
Log error scanning run by the node manager before teardown.
"""

import logging
import re
from pathlib import Path
from typing import Callable, Optional, Union

from nodebox.commands.constants import (
    LOG_BENIGN_ERROR_PATTERN,
    LOG_ERROR_MARKER,
    LOG_FILE_NAME,
)

logger = logging.getLogger(__name__)

_BENIGN_RE = re.compile(LOG_BENIGN_ERROR_PATTERN)


def emit_diagnostic(log_fun: Optional[Callable[[str], None]], text: str) -> None:
    """Hand text to a diagnostic sink. A failing sink is logged, never raised."""
    if log_fun is None:
        return
    try:
        log_fun(text)
    except Exception:
        logger.exception("Diagnostic sink failed on: %s", text.partition("\n")[0])


def find_error_lines(log_file: Union[str, Path]) -> list[str]:
    """Return the error lines of a node log, ignoring known-benign ones.

    A missing file has no errors. Unreadable files are logged and treated the
    same way, since the scan is advisory.
    """
    log_file = Path(log_file)
    if not log_file.is_file():
        return []

    try:
        with open(log_file, encoding="utf-8", errors="replace") as f:
            return [
                line.rstrip("\n")
                for line in f
                if LOG_ERROR_MARKER in line and not _BENIGN_RE.search(line)
            ]
    except OSError as e:
        logger.warning("Could not read log file %s: %s", log_file, e)
        return []


def scan_node_logs(
    log_dirs: dict[str, Union[str, Path]],
    log_fun: Optional[Callable[[str], None]] = None,
    log_file_name: str = LOG_FILE_NAME,
) -> dict[str, list[str]]:
    """Scan each node's log directory for error lines.

    Args:
        log_dirs: Node name -> directory holding that node's log file
        log_fun: Sink that receives a report for every node with errors
        log_file_name: Name of the log file inside each directory

    Returns:
        Node name -> error lines, for nodes with at least one error only.
    """
    findings = {}
    for node_name, log_dir in log_dirs.items():
        lines = find_error_lines(Path(log_dir) / log_file_name)
        if not lines:
            continue
        findings[node_name] = lines
        report = f"Node {node_name}'s logs contains errors:\n" + "\n".join(lines)
        logger.warning(report)
        emit_diagnostic(log_fun, report)
    return findings
