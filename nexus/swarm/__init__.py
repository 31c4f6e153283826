"""
Swarm Orchestration — one goal, several agents, one report.

A goal is decomposed into 3-5 agents with optional single dependency edges.
The scheduler runs them concurrently in dependency order, and when every agent
is done the synthesizer merges their work into a mission report that can be
questioned afterwards.
"""

from __future__ import annotations

from nexus.swarm.errors import (
    DecompositionError,
    ExecutionError,
    InvalidTransitionError,
    QueryError,
    SwarmError,
    SynthesisError,
)
from nexus.swarm.models import (
    AgentPlan,
    AgentRecord,
    AgentStatus,
    ChatTurn,
    Mission,
    MissionArchiveEntry,
    MissionStatus,
)

__all__ = [
    "AgentPlan",
    "AgentRecord",
    "AgentStatus",
    "ChatTurn",
    "DecompositionError",
    "ExecutionError",
    "InvalidTransitionError",
    "Mission",
    "MissionArchiveEntry",
    "MissionStatus",
    "QueryError",
    "SwarmError",
    "SynthesisError",
]
