"""
Validate command - Check a node spec file without touching any backend.
"""

import sys

import click
from rich import box
from rich.console import Console
from rich.table import Table

from nodebox.commands.config import load_node_specs
from nodebox.commands.errors import ConfigurationError
from nodebox.commands.models import LiteralPeer, NodeSpec

console = Console()


def find_unresolved_peers(specs: list[NodeSpec]) -> dict[str, list[str]]:
    """Return node name -> symbolic peers that name no node in ``specs``."""
    names = {spec.name for spec in specs}
    unresolved = {}
    for spec in specs:
        missing = [
            peer.name
            for peer in spec.peers
            if not isinstance(peer, LiteralPeer) and peer.name not in names
        ]
        if missing:
            unresolved[spec.name] = missing
    return unresolved


def _format_peer(peer) -> str:
    if isinstance(peer, LiteralPeer):
        return peer.address
    return f"@{peer.name}"


@click.command()
@click.argument("spec_file", type=click.Path(dir_okay=False))
def validate(spec_file):
    """Validate a node spec file and list its nodes."""
    try:
        specs = load_node_specs(spec_file)
    except ConfigurationError as e:
        console.print(f"[red]✗ {e.message}[/red]")
        sys.exit(1)

    table = Table(title=f"Nodes in {spec_file}", box=box.ROUNDED)
    table.add_column("Name", style="cyan")
    table.add_column("Backend", style="magenta")
    table.add_column("Source", style="blue")
    table.add_column("Peers", style="yellow")

    for spec in specs:
        table.add_row(
            spec.name,
            spec.backend,
            spec.source or "default",
            ", ".join(_format_peer(p) for p in spec.peers) or "-",
        )
    console.print(table)

    unresolved = find_unresolved_peers(specs)
    if unresolved:
        for node_name, peers in unresolved.items():
            console.print(
                f"[red]✗ Node {node_name} references unknown peer(s): {', '.join(peers)}[/red]"
            )
        sys.exit(1)

    console.print(f"[green]✓ {len(specs)} node(s) valid[/green]")
