"""
Swarm Data Models — the language of a mission.

An AgentPlan is what the decomposer proposes. An AgentRecord is that plan plus
the lifecycle state the scheduler drives. A Mission is one goal's full run from
decomposition to final report. Archive entries and chat turns are the
write-once records that outlive (or follow) the live mission.
"""

from __future__ import annotations

import time
import uuid
from enum import Enum
from typing import Literal, Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field, field_validator

from nexus.swarm.errors import DecompositionError

logger = structlog.get_logger(__name__)

MIN_PLAN_SIZE = 3
MAX_PLAN_SIZE = 5


class AgentStatus(str, Enum):
    QUEUED = "QUEUED"
    WORKING = "WORKING"
    BLOCKED = "BLOCKED"
    COMPLETE = "COMPLETE"
    FAILED = "FAILED"


class MissionStatus(str, Enum):
    PLANNED = "PLANNED"
    RUNNING = "RUNNING"
    SYNTHESIZING = "SYNTHESIZING"
    COMPLETE = "COMPLETE"
    SYNTHESIS_FAILED = "SYNTHESIS_FAILED"
    ABORTED = "ABORTED"


class AgentPlan(BaseModel):
    """One agent definition as produced by the decomposer."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    role: str
    dependency_id: Optional[str] = Field(None, alias="dependencyId")

    @field_validator("id", "name", "role", mode="before")
    @classmethod
    def _strip(cls, value: object) -> object:
        return value.strip() if isinstance(value, str) else value

    @field_validator("dependency_id", mode="before")
    @classmethod
    def _blank_to_none(cls, value: object) -> object:
        # Providers spell "no dependency" as null, "", "none" or "null".
        if isinstance(value, str):
            value = value.strip()
            if not value or value.lower() in {"none", "null"}:
                return None
        return value


class AgentRecord(AgentPlan):
    """A planned agent plus the lifecycle state owned by the scheduler."""

    status: AgentStatus = AgentStatus.QUEUED
    progress: int = 0
    result: Optional[str] = None
    error: Optional[str] = None
    attempts: int = 0

    @property
    def is_root(self) -> bool:
        return self.dependency_id is None

    @classmethod
    def from_plan(cls, plan: AgentPlan) -> "AgentRecord":
        return cls(id=plan.id, name=plan.name, role=plan.role, dependency_id=plan.dependency_id)


class Mission(BaseModel):
    """One decomposition-to-synthesis run for a single goal."""

    mission_id: str = Field(default_factory=lambda: f"mission-{uuid.uuid4().hex[:12]}")
    goal: str
    agents: list[AgentRecord] = Field(default_factory=list)
    final_report: Optional[str] = None
    status: MissionStatus = MissionStatus.PLANNED
    error: Optional[str] = None
    created_at: float = Field(default_factory=time.time)

    @classmethod
    def from_plan(cls, goal: str, plans: list[AgentPlan]) -> "Mission":
        return cls(goal=goal, agents=[AgentRecord.from_plan(p) for p in plans])

    def agent(self, agent_id: str) -> Optional[AgentRecord]:
        for agent in self.agents:
            if agent.id == agent_id:
                return agent
        return None

    def dependents_of(self, agent_id: str) -> list[AgentRecord]:
        return [a for a in self.agents if a.dependency_id == agent_id]

    @property
    def all_complete(self) -> bool:
        return bool(self.agents) and all(a.status == AgentStatus.COMPLETE for a in self.agents)

    @property
    def is_finished(self) -> bool:
        return self.status in {MissionStatus.COMPLETE, MissionStatus.ABORTED}


class MissionArchiveEntry(BaseModel):
    """Write-once record of a completed mission, fed back as swarm memory."""

    model_config = ConfigDict(frozen=True)

    entry_id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])
    goal: str
    report: str
    timestamp: float = Field(default_factory=time.time)


class ChatTurn(BaseModel):
    """One message of the post-synthesis follow-up conversation."""

    model_config = ConfigDict(frozen=True)

    role: Literal["user", "assistant"]
    content: str
    timestamp: float = Field(default_factory=time.time)


def validate_plan(plans: list[AgentPlan]) -> list[AgentPlan]:
    """
    Check a decomposer plan before any agent record is created.

    Rejects empty plans, duplicate ids, self-dependencies, dependencies on ids
    outside the plan and dependency cycles. The 3-5 size is requested from the
    provider but only warned about here; any other size still runs.
    """
    if not plans:
        raise DecompositionError("Decomposer returned no agents")

    ids = [p.id for p in plans]
    for plan in plans:
        if not plan.id or not plan.name:
            raise DecompositionError("Every agent needs a non-empty id and name")
    duplicates = sorted({i for i in ids if ids.count(i) > 1})
    if duplicates:
        raise DecompositionError(f"Duplicate agent ids in plan: {', '.join(duplicates)}")

    known = set(ids)
    parent = {p.id: p.dependency_id for p in plans}
    for plan in plans:
        if plan.dependency_id is None:
            continue
        if plan.dependency_id == plan.id:
            raise DecompositionError(f"Agent {plan.id} depends on itself")
        if plan.dependency_id not in known:
            raise DecompositionError(
                f"Agent {plan.id} depends on unknown agent {plan.dependency_id}"
            )

    # Single-pointer graph: following dependency links from any node must end at a root.
    for plan in plans:
        seen = {plan.id}
        current = parent[plan.id]
        while current is not None:
            if current in seen:
                raise DecompositionError(f"Dependency cycle involving agent {plan.id}")
            seen.add(current)
            current = parent[current]

    if not MIN_PLAN_SIZE <= len(plans) <= MAX_PLAN_SIZE:
        logger.warning(
            "plan.unusual_size",
            agents=len(plans),
            expected=f"{MIN_PLAN_SIZE}-{MAX_PLAN_SIZE}",
        )
    return plans
