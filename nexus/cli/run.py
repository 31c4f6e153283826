"""The ``run`` command — plan a goal, watch the swarm work, ask follow-ups."""

from __future__ import annotations

import asyncio
from typing import Optional

import click
from pydantic import ValidationError
from rich.console import Console
from rich.live import Live
from rich.markdown import Markdown

from nexus.api.provider import ProviderClient, ProviderInitError
from nexus.cli._async import async_cmd
from nexus.cli.formatters import get_console, mission_table
from nexus.config import NexusConfig
from nexus.events import AgentFailedEvent, EventBus, MissionStalledEvent, SwarmEvent
from nexus.memory.mission_archive import MissionArchive
from nexus.swarm.backend import ProviderSwarmBackend
from nexus.swarm.control import MissionControl
from nexus.swarm.errors import DecompositionError, InvalidTransitionError, QueryError
from nexus.swarm.models import AgentStatus, Mission, MissionStatus

REFRESH_SECONDS = 0.1


def _build_control(config: NexusConfig, event_bus: EventBus) -> MissionControl:
    try:
        provider = ProviderClient(config.provider)
    except (ValidationError, ProviderInitError) as exc:
        raise click.ClickException(f"Provider is not configured: {exc}") from exc

    archive = MissionArchive(config.archive.archive_path, max_entries=config.archive.max_entries)
    backend = ProviderSwarmBackend(provider, context_missions=config.archive.context_missions)
    return MissionControl(
        backend,
        config.swarm,
        config.chat,
        archive=archive,
        event_bus=event_bus,
        context_missions=config.archive.context_missions,
    )


async def _watch(control: MissionControl, console: Console) -> Optional[Mission]:
    """Render the live agent table until the scheduler settles."""
    mission = control.mission
    with Live(mission_table(mission), console=console, refresh_per_second=10) as live:
        while not control.scheduler.is_settled():
            await asyncio.sleep(REFRESH_SECONDS)
            live.update(mission_table(control.mission))
        live.update(mission_table(control.mission))
    return await control.wait()


def _retryable_agents(mission: Mission) -> list[str]:
    return [
        a.id
        for a in mission.agents
        if a.status == AgentStatus.FAILED
        or (a.status == AgentStatus.WORKING and a.error is not None)
    ]


async def _drive(control: MissionControl, console: Console) -> Optional[Mission]:
    """Run to completion, offering manual recovery when the mission stalls."""
    mission = await _watch(control, console)
    while mission is not None:
        if mission.status == MissionStatus.SYNTHESIS_FAILED:
            console.print(f"[red]Synthesis failed:[/red] {mission.error}")
            if not click.confirm("Retry synthesis?", default=True):
                break
            control.scheduler.retry_synthesis()
        elif mission.status == MissionStatus.RUNNING:
            stuck = _retryable_agents(mission)
            if not stuck:
                break
            for agent_id in stuck:
                agent = mission.agent(agent_id)
                console.print(f"[red]{agent_id} failed:[/red] {agent.error if agent else ''}")
            if not click.confirm(f"Retry {', '.join(stuck)}?", default=True):
                break
            for agent_id in stuck:
                try:
                    control.retry_agent(agent_id)
                except InvalidTransitionError as exc:
                    console.print(f"[yellow]{exc}[/yellow]")
        else:
            break
        mission = await _watch(control, console)
    return mission


async def _chat_loop(control: MissionControl, console: Console) -> None:
    console.print("[dim]Swarm memory active. Ask follow-up questions (blank line to exit).[/dim]")
    while True:
        question = click.prompt("ask", default="", show_default=False)
        if not question.strip():
            return
        try:
            answer = await control.ask(question)
        except QueryError as exc:
            console.print(f"[red]Query failed:[/red] {exc}")
            continue
        console.print(Markdown(answer))


@click.command("run")
@click.argument("goal")
@click.option("--no-memory", is_flag=True, help="Do not feed past missions to the planner")
@click.option(
    "--policy",
    type=click.Choice(["fail", "stuck"]),
    default=None,
    help="Executor failure policy (default from NEXUS_FAILURE_POLICY)",
)
@click.option("--chat/--no-chat", default=True, help="Offer follow-up questions afterwards")
@click.option("--json", "json_output", is_flag=True, help="Print the final mission as JSON")
@click.pass_context
@async_cmd
async def run_cmd(
    ctx: click.Context,
    goal: str,
    no_memory: bool,
    policy: Optional[str],
    chat: bool,
    json_output: bool,
) -> None:
    """Decompose GOAL into a swarm of agents and run it to a final report."""
    config = NexusConfig()
    if policy:
        config.swarm.failure_policy = policy  # type: ignore[assignment]
    console = get_console(no_color=ctx.obj.get("no_color", False))

    event_bus = EventBus()
    control = _build_control(config, event_bus)

    def _on_event(event: SwarmEvent) -> None:
        if json_output:
            return
        if isinstance(event, AgentFailedEvent):
            console.print(
                f"[red]agent {event.agent_id} failed[/red] "
                f"(attempt {event.attempts}, {event.reason}): {event.error}"
            )
        elif isinstance(event, MissionStalledEvent):
            console.print(f"[yellow]swarm waiting on:[/yellow] {', '.join(event.waiting_agent_ids)}")

    event_bus.subscribe("agent.failed", _on_event)
    event_bus.subscribe("mission.stalled", _on_event)
    await event_bus.start()

    try:
        try:
            if not json_output:
                with console.status("Decomposing goal..."):
                    await control.plan(goal, use_memory=not no_memory)
            else:
                await control.plan(goal, use_memory=not no_memory)
        except DecompositionError as exc:
            raise click.ClickException(f"Could not plan mission: {exc}") from exc

        control.launch()
        if json_output:
            mission = await control.wait()
        else:
            mission = await _drive(control, console)

        if mission is None:
            return
        if json_output:
            click.echo(mission.model_dump_json(indent=2))
            return

        if mission.status != MissionStatus.COMPLETE:
            await control.cancel("abandoned")
            raise click.ClickException(f"Mission ended without a report ({mission.status.value})")

        console.print()
        console.print(Markdown(mission.final_report or ""))
        if chat:
            await _chat_loop(control, console)
    finally:
        await control.shutdown()
        await event_bus.stop()
