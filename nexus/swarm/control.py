"""
Mission Control — the one object a front end talks to.

MissionControl ties the pieces of a mission together: it reads swarm memory
from the archive, asks the backend for a plan, hands the resulting Mission to
the scheduler, archives the report when it arrives, and opens a follow-up chat
on the finished mission. A new goal always supersedes the active mission; it is
never merged into it.
"""

from __future__ import annotations

import random
from typing import Any, Optional

import structlog

from nexus.config import ChatConfig, SwarmConfig
from nexus.events import MissionArchivedEvent, MissionPlannedEvent, SwarmEvent
from nexus.memory.mission_archive import MissionArchive
from nexus.swarm.backend import SwarmBackend
from nexus.swarm.errors import DecompositionError, QueryError
from nexus.swarm.followup import FollowUpChat
from nexus.swarm.models import ChatTurn, Mission, MissionArchiveEntry, MissionStatus
from nexus.swarm.scheduler import SwarmScheduler

logger = structlog.get_logger(__name__)


class MissionControl:
    """Plan, run, archive and question missions, one active mission at a time."""

    def __init__(
        self,
        backend: SwarmBackend,
        swarm_config: SwarmConfig,
        chat_config: ChatConfig,
        archive: Optional[MissionArchive] = None,
        event_bus: Any = None,  # EventBus
        context_missions: int = 5,
        rng: Optional[random.Random] = None,
    ):
        self._backend = backend
        self._chat_config = chat_config
        self._archive = archive
        self._event_bus = event_bus
        self._context_missions = max(0, context_missions)
        self._scheduler = SwarmScheduler(
            swarm_config,
            backend,
            event_bus=event_bus,
            rng=rng,
            on_mission_complete=self._archive_once,
        )
        self._chat: Optional[FollowUpChat] = None
        self._archived_mission_id: Optional[str] = None

    @property
    def scheduler(self) -> SwarmScheduler:
        return self._scheduler

    @property
    def mission(self) -> Optional[Mission]:
        """Snapshot of the active mission."""
        return self._scheduler.snapshot()

    # ------------------------------------------------------------------
    # Planning and running
    # ------------------------------------------------------------------

    async def plan(self, goal: str, use_memory: bool = True) -> Mission:
        """
        Decompose ``goal`` into a new active mission.

        On DecompositionError nothing changes: no agent records are created and
        the previously active mission (if any) is left untouched.
        """
        if not goal or not goal.strip():
            raise DecompositionError("Goal must not be empty")
        goal = goal.strip()

        past: list[MissionArchiveEntry] = []
        if use_memory and self._archive is not None and self._context_missions:
            past = self._archive.entries(limit=self._context_missions)

        try:
            plans = await self._backend.decompose(goal, past)
        except DecompositionError:
            logger.warning("mission_control.plan_failed", goal=goal)
            raise

        mission = Mission.from_plan(goal, plans)
        self._scheduler.load(mission)
        self._chat = None
        logger.info(
            "mission_control.planned",
            mission_id=mission.mission_id,
            agents=len(mission.agents),
            memory_missions=len(past),
        )
        self._emit(MissionPlannedEvent(
            mission_id=mission.mission_id,
            goal=goal,
            agent_ids=[a.id for a in mission.agents],
        ))
        return self._scheduler.snapshot()  # type: ignore[return-value]

    def launch(self) -> None:
        """Start executing the active mission."""
        self._scheduler.start()

    async def wait(self, timeout: Optional[float] = None) -> Optional[Mission]:
        """Wait for the active mission to settle and return a snapshot of it."""
        return await self._scheduler.wait(timeout=timeout)

    async def run(self, goal: str, use_memory: bool = True, timeout: Optional[float] = None) -> Mission:
        """Plan, launch and wait: one call from goal to settled mission."""
        await self.plan(goal, use_memory=use_memory)
        self.launch()
        return await self.wait(timeout=timeout)  # type: ignore[return-value]

    # ------------------------------------------------------------------
    # Manual controls (delegated to the scheduler)
    # ------------------------------------------------------------------

    def block(self, agent_id: str) -> None:
        self._scheduler.block(agent_id)

    def unblock(self, agent_id: str) -> None:
        self._scheduler.unblock(agent_id)

    def retry_agent(self, agent_id: str) -> None:
        self._scheduler.retry_agent(agent_id)

    async def retry_synthesis(self, timeout: Optional[float] = None) -> Optional[Mission]:
        self._scheduler.retry_synthesis()
        return await self.wait(timeout=timeout)

    async def cancel(self, reason: str = "cancelled") -> bool:
        return await self._scheduler.cancel(reason)

    async def shutdown(self) -> None:
        await self._scheduler.shutdown()

    # ------------------------------------------------------------------
    # Follow-up chat
    # ------------------------------------------------------------------

    async def ask(self, question: str) -> str:
        """Ask a follow-up question about the active, completed mission."""
        mission = self._scheduler.snapshot()
        if mission is None or mission.status != MissionStatus.COMPLETE:
            raise QueryError("Follow-up questions need a completed mission")
        if self._chat is None or self._chat.mission_id != mission.mission_id:
            self._chat = FollowUpChat(mission, self._backend, self._chat_config)
        return await self._chat.ask(question)

    @property
    def chat_history(self) -> list[ChatTurn]:
        return self._chat.turns if self._chat else []

    # ------------------------------------------------------------------
    # Archive
    # ------------------------------------------------------------------

    def history(self, limit: Optional[int] = None) -> list[MissionArchiveEntry]:
        if self._archive is None:
            return []
        return self._archive.entries(limit=limit)

    def forget(self, entry_id: str) -> bool:
        if self._archive is None:
            return False
        return self._archive.delete(entry_id)

    def _archive_once(self, mission: Mission) -> None:
        if self._archive is None or self._archived_mission_id == mission.mission_id:
            return
        self._archived_mission_id = mission.mission_id
        entry = self._archive.append(mission.goal, mission.final_report or "")
        self._emit(MissionArchivedEvent(
            mission_id=mission.mission_id,
            entry_id=entry.entry_id if entry else None,
        ))

    def _emit(self, event: SwarmEvent) -> None:
        if self._event_bus is not None:
            try:
                self._event_bus.emit(event)
            except Exception:
                logger.debug("mission_control.emit_event_failed", exc_info=True)
