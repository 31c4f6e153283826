"""
Shared fixtures for the Nexus test suite.

Provides a zero-delay swarm config, an in-memory backend whose executor calls
can be gated, failed or slowed per agent, and a temp-dir mission archive, so
individual test modules can focus on behavior rather than setup.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional, Sequence

import pytest

from nexus.config import ChatConfig, SwarmConfig
from nexus.memory.mission_archive import MissionArchive
from nexus.swarm.backend import SwarmBackend
from nexus.swarm.errors import ExecutionError, SynthesisError
from nexus.swarm.models import AgentPlan, AgentRecord, ChatTurn, MissionArchiveEntry


def _plan(agent_id: str, dependency_id: Optional[str] = None, role: str = "worker") -> AgentPlan:
    """Build a one-line AgentPlan."""
    return AgentPlan(id=agent_id, name=f"Agent {agent_id}", role=role, dependency_id=dependency_id)


class FakeBackend(SwarmBackend):
    """
    In-memory SwarmBackend.

    - ``gates[agent_id]``: executor waits on this event before answering
    - ``failures[agent_id]``: number of leading executor calls that raise
    - ``hang``: agent ids whose executor never returns
    - ``synthesis_failures``: number of leading synthesize calls that raise
    """

    def __init__(self, plans: Optional[list[AgentPlan]] = None) -> None:
        self.plans = plans if plans is not None else [_plan("A1"), _plan("A2", "A1"), _plan("A3", "A2")]
        self.gates: dict[str, asyncio.Event] = {}
        self.failures: dict[str, int] = {}
        self.hang: set[str] = set()
        self.synthesis_failures = 0
        self.synthesis_gate: Optional[asyncio.Event] = None
        self.answer_error: Optional[Exception] = None

        self.decompose_calls: list[tuple[str, list[MissionArchiveEntry]]] = []
        self.execute_calls: list[str] = []
        self.started: list[str] = []
        self.synthesize_calls: list[list[str]] = []
        self.query_calls: list[dict] = []

    async def decompose(self, goal: str, past_missions: Sequence[MissionArchiveEntry] = ()) -> list[AgentPlan]:
        self.decompose_calls.append((goal, list(past_missions)))
        return [p.model_copy() for p in self.plans]

    async def execute_agent(self, agent: AgentRecord, goal: str) -> str:
        self.execute_calls.append(agent.id)
        if agent.id in self.hang:
            await asyncio.Event().wait()
        gate = self.gates.get(agent.id)
        if gate is not None:
            await gate.wait()
        remaining = self.failures.get(agent.id, 0)
        if remaining:
            self.failures[agent.id] = remaining - 1
            raise ExecutionError("executor exploded", agent_id=agent.id)
        return f"result of {agent.id} for {goal}"

    async def synthesize(self, goal: str, agents: Sequence[AgentRecord]) -> str:
        self.synthesize_calls.append([a.id for a in agents])
        if self.synthesis_gate is not None:
            await self.synthesis_gate.wait()
        if self.synthesis_failures:
            self.synthesis_failures -= 1
            raise SynthesisError("synthesizer exploded")
        return f"# Report for {goal}\n" + "\n".join(f"- {a.result}" for a in agents)

    async def query_follow_up(
        self,
        goal: str,
        agents: Sequence[AgentRecord],
        report: str,
        chat_history: Sequence[ChatTurn],
        question: str,
    ) -> str:
        self.query_calls.append({
            "goal": goal,
            "agents": list(agents),
            "report": report,
            "history": list(chat_history),
            "question": question,
        })
        if self.answer_error is not None:
            raise self.answer_error
        return f"answer to {question}"


@pytest.fixture()
def swarm_config() -> SwarmConfig:
    """A SwarmConfig with every delay at zero and progress reaching 100 in one tick."""
    return SwarmConfig(
        tick_interval=0.0,
        progress_increment_min=100,
        progress_increment_max=100,
        settle_delay=0.0,
        executor_timeout=5.0,
        synthesis_timeout=5.0,
        failure_policy="fail",
        executor_max_attempts=3,
        executor_retry_base_delay=0.0,
    )


@pytest.fixture()
def chat_config() -> ChatConfig:
    return ChatConfig(max_history_turns=20, max_result_chars=2000)


@pytest.fixture()
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture()
def archive(tmp_path: Path) -> MissionArchive:
    """A fresh MissionArchive backed by a temp directory."""
    return MissionArchive(tmp_path / "data" / "missions.json", max_entries=5)
