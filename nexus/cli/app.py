"""CLI application — Click-based command hierarchy for Nexus.

The main CLI group and global flags. Subcommand modules register
themselves by importing and adding to the group.
"""

from __future__ import annotations

import click

from nexus.logging_setup import configure_logging


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Show scheduler logs")
@click.option("--no-color", is_flag=True, help="Disable ANSI colors")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, no_color: bool) -> None:
    """Nexus - agent swarm orchestrator."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["no_color"] = no_color
    configure_logging("INFO" if verbose else "WARNING", colors=not no_color)


def _register_subcommands() -> None:
    """Import and register all subcommand groups/commands."""
    from nexus.cli.history import history_group
    from nexus.cli.run import run_cmd

    cli.add_command(run_cmd)
    cli.add_command(history_group)


_register_subcommands()
