"""
Nexus — Main Entry Point.

The ``nexus`` console script lands here. All commands live in the click group
defined in ``nexus.cli.app``; this module only invokes it and turns Ctrl-C
into a quiet exit.
"""

from __future__ import annotations

from rich.console import Console

from nexus.cli.app import cli

console = Console()


def main() -> None:
    """Entry point for the ``nexus`` command."""
    try:
        cli(obj={})
    except KeyboardInterrupt:
        console.print("\n[dim]Interrupted. Exiting.[/dim]")


if __name__ == "__main__":
    main()
