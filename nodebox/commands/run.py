"""
Run command - Bring the nodes of a spec file up, exercise them and tear them down.
"""

import shlex
import sys

import click
from rich import box
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from nodebox.commands.backends import DockerBackend
from nodebox.commands.config import ManagerConfig, load_node_specs
from nodebox.commands.constants import (
    CALL_TIMEOUT,
    DEFAULT_TEST_ID,
    ENV_DISABLE_NODE_CLEANUP,
    SERVICE_PORTS,
)
from nodebox.commands.errors import NodeboxError
from nodebox.commands.manager import NodeManager

console = Console()


def print_diagnostic(text: str) -> None:
    """Diagnostic sink for the manager; log lines contain brackets, so escape them."""
    console.print(f"[red]{escape(text)}[/red]")


def print_service_addresses(manager: NodeManager, node_names: list[str]) -> None:
    table = Table(title="Node Services", box=box.ROUNDED)
    table.add_column("Node", style="cyan")
    for service in SERVICE_PORTS:
        table.add_column(service, style="yellow")

    for node_name in node_names:
        row = [node_name]
        for service in SERVICE_PORTS:
            try:
                row.append(manager.get_service_address(node_name, service))
            except NodeboxError:
                row.append("N/A")
        table.add_row(*row)
    console.print(table)


def run_commands(
    manager: NodeManager, node_names: list[str], commands: list[str], timeout: float
) -> bool:
    """Run each command in every node. Returns False if any exits nonzero."""
    success = True
    for command in commands:
        argv = shlex.split(command)
        for node_name in node_names:
            result = manager.run_cmd_in_node_dir(node_name, argv, timeout)
            if result.ok:
                console.print(f"[green]✓ {node_name}: {escape(command)}[/green]")
            else:
                console.print(
                    f"[red]✗ {node_name}: {escape(command)} exited with {result.exit_code}[/red]"
                )
                success = False
            if result.output:
                console.print(escape(result.output.rstrip()))
    return success


@click.command()
@click.argument("spec_file", type=click.Path(dir_okay=False))
@click.option(
    "--data-dir",
    default="./data",
    show_default=True,
    type=click.Path(file_okay=False),
    help="Directory for node data and logs",
)
@click.option(
    "--temp-dir",
    default="./data/tmp",
    show_default=True,
    type=click.Path(file_okay=False),
    help="Scratch directory for backends",
)
@click.option(
    "--test-id",
    default=DEFAULT_TEST_ID,
    show_default=True,
    help="Identifier used to namespace containers and logs",
)
@click.option(
    "--cmd",
    "commands",
    multiple=True,
    help="Command to run in every node directory (repeatable)",
)
@click.option(
    "--timeout",
    default=CALL_TIMEOUT,
    show_default=True,
    type=float,
    help="Timeout in seconds for each command",
)
@click.option(
    "--keep-nodes/--no-keep-nodes",
    default=False,
    envvar=ENV_DISABLE_NODE_CLEANUP,
    help="Leave nodes running after the run for debugging",
)
def run(spec_file, data_dir, temp_dir, test_id, commands, timeout, keep_nodes):
    """Start the nodes of SPEC_FILE, run commands in them and clean up."""
    try:
        specs = load_node_specs(spec_file)
    except NodeboxError as e:
        console.print(f"[red]✗ {e.message}[/red]")
        sys.exit(1)

    config = ManagerConfig(
        data_dir=data_dir,
        temp_dir=temp_dir,
        test_id=test_id,
        log_fun=print_diagnostic,
        disable_cleanup=keep_nodes,
    )
    node_names = [spec.name for spec in specs]

    try:
        manager = NodeManager([DockerBackend()], config, enable_signal_handlers=True)
    except NodeboxError as e:
        console.print(f"[red]✗ Failed to start node manager: {e.message}[/red]")
        sys.exit(1)

    success = True
    report = None
    with manager:
        try:
            manager.setup_nodes(specs)
            for node_name in node_names:
                manager.start_node(node_name)
            print_service_addresses(manager, node_names)
            success = run_commands(manager, node_names, list(commands), timeout)
        except NodeboxError as e:
            console.print(f"[red]✗ {escape(str(e))}[/red]")
            success = False
        finally:
            # A signal handler may already have torn everything down
            if not manager.stopped:
                manager.dump_logs()
                report = manager.cleanup()

    if report is None:
        console.print("[red]✗ Run interrupted before cleanup[/red]")
        sys.exit(1)

    if report.skipped:
        console.print(
            f"[yellow]Nodes left running ({ENV_DISABLE_NODE_CLEANUP})[/yellow]"
        )
    if report.log_errors_found:
        console.print(
            f"[red]✗ Errors found in logs of: {', '.join(report.log_errors)}[/red]"
        )
        success = False
    if report.teardown_failed:
        console.print("[red]✗ Teardown did not complete cleanly[/red]")
        success = False

    if not success:
        sys.exit(1)
    console.print("[green]✓ Run completed[/green]")
