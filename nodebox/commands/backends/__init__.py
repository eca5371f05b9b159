"""
Backends module - Drivers that run managed nodes in a specific environment.

- Backend: Capability contract every driver implements
- DockerBackend: Nodes as Docker containers
"""

from nodebox.commands.backends.base import Backend
from nodebox.commands.backends.docker import DockerBackend

__all__ = [
    "Backend",
    "DockerBackend",
]
