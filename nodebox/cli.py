#!/usr/bin/env python3
"""
Nodebox CLI
A Python CLI tool for running blockchain test nodes through the node manager.
"""

import click

from nodebox import __version__
from nodebox.commands import run, validate


@click.group()
@click.version_option(version=__version__)
def cli():
    """Nodebox CLI - Manage blockchain test nodes."""
    pass


cli.add_command(run)
cli.add_command(validate)


def main():
    """Main entry point for the nodebox CLI."""
    cli()


if __name__ == "__main__":
    main()
