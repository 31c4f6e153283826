"""Mission archive commands — list, show, delete."""

from __future__ import annotations

import json as json_mod

import click
from rich.markdown import Markdown

from nexus.cli.formatters import build_table, format_age, get_console
from nexus.config import NexusConfig
from nexus.memory.mission_archive import MissionArchive


def _open_archive() -> MissionArchive:
    config = NexusConfig()
    return MissionArchive(config.archive.archive_path, max_entries=config.archive.max_entries)


@click.group("history")
def history_group() -> None:
    """Browse and prune the swarm's mission memory."""
    pass


@history_group.command("list")
@click.option("--limit", "-n", default=10, show_default=True, help="Entries to show")
@click.option("--json", "json_output", is_flag=True, help="JSON output")
@click.pass_context
def history_list(ctx: click.Context, limit: int, json_output: bool) -> None:
    """List archived missions, newest first."""
    entries = _open_archive().entries(limit=limit)

    if json_output:
        click.echo(json_mod.dumps([e.model_dump() for e in entries], indent=2))
        return
    if not entries:
        click.echo("Swarm memory is empty.")
        return

    rows = [
        [e.entry_id, format_age(e.timestamp), e.goal[:60], e.report[:60].replace("\n", " ")]
        for e in entries
    ]
    console = get_console(no_color=ctx.obj.get("no_color", False))
    console.print(build_table("Swarm Memory", ["ID", "When", "Goal", "Report"], rows))


@history_group.command("show")
@click.argument("entry_id")
@click.option("--json", "json_output", is_flag=True, help="JSON output")
@click.pass_context
def history_show(ctx: click.Context, entry_id: str, json_output: bool) -> None:
    """Print one archived mission report."""
    entry = _open_archive().get(entry_id)
    if entry is None:
        raise click.ClickException(f"No archived mission with id {entry_id}")

    if json_output:
        click.echo(entry.model_dump_json(indent=2))
        return
    console = get_console(no_color=ctx.obj.get("no_color", False))
    console.print(f"[bold]Goal:[/bold] {entry.goal}  [dim]({format_age(entry.timestamp)})[/dim]")
    console.print()
    console.print(Markdown(entry.report))


@history_group.command("delete")
@click.argument("entry_id")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
def history_delete(entry_id: str, yes: bool) -> None:
    """Delete one archived mission."""
    archive = _open_archive()
    if archive.get(entry_id) is None:
        raise click.ClickException(f"No archived mission with id {entry_id}")
    if not yes:
        click.confirm(f"Delete mission {entry_id}?", abort=True)
    if not archive.delete(entry_id):
        raise click.ClickException(f"Could not delete mission {entry_id}")
    click.echo(f"Deleted {entry_id}.")
