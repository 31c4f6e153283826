"""CLI formatters — status indicators, progress bars, mission tables."""

from __future__ import annotations

import time
from typing import Any

from rich.console import Console
from rich.table import Table
from rich.text import Text

from nexus.swarm.models import AgentStatus, Mission

_STATUS_STYLES = {
    AgentStatus.QUEUED: ("- ", "dim"),
    AgentStatus.WORKING: ("> ", "cyan"),
    AgentStatus.BLOCKED: ("|| ", "yellow"),
    AgentStatus.COMPLETE: ("ok ", "green"),
    AgentStatus.FAILED: ("x ", "red"),
}

BAR_WIDTH = 20


def get_console(no_color: bool = False) -> Console:
    """Get a Rich Console, optionally with color disabled."""
    return Console(no_color=no_color)


def status_indicator(status: AgentStatus) -> Text:
    """Map an agent status to a colored indicator."""
    marker, style = _STATUS_STYLES.get(status, ("? ", "dim"))
    return Text(f"{marker}{status.value}", style=style)


def progress_bar(progress: int, width: int = BAR_WIDTH) -> str:
    """Render 0-100 progress as a fixed-width text bar."""
    progress = max(0, min(100, int(progress)))
    filled = round(width * progress / 100)
    return f"[{'#' * filled}{'.' * (width - filled)}] {progress:3d}%"


def format_age(timestamp: float) -> str:
    """Format how long ago a timestamp was, in human-readable form."""
    seconds = max(0.0, time.time() - timestamp)
    if seconds < 60:
        return f"{seconds:.0f}s ago"
    if seconds < 3600:
        return f"{int(seconds // 60)}m ago"
    if seconds < 86400:
        return f"{int(seconds // 3600)}h ago"
    return f"{int(seconds // 86400)}d ago"


def mission_table(mission: Mission) -> Table:
    """Build the live agent table for a mission."""
    table = Table(
        title=f"Mission: {mission.goal}",
        caption=mission.status.value,
        show_header=True,
        header_style="bold",
    )
    table.add_column("ID")
    table.add_column("Agent")
    table.add_column("Waits on")
    table.add_column("Status")
    table.add_column("Progress")
    for agent in mission.agents:
        table.add_row(
            agent.id,
            agent.name,
            agent.dependency_id or "-",
            status_indicator(agent.status),
            progress_bar(agent.progress),
        )
    return table


def build_table(title: str, columns: list[str], rows: list[list[Any]]) -> Table:
    """Build a Rich table with standard styling."""
    table = Table(title=title, show_header=True, header_style="bold")
    for col in columns:
        table.add_column(col)
    for row in rows:
        table.add_row(*(str(v) for v in row))
    return table
