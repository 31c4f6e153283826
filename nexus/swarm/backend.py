"""
Swarm Backends — the model-facing half of the swarm.

The scheduler never builds prompts. It talks to a SwarmBackend, which knows how
to turn a goal into a plan, an agent into a work product, a finished swarm into
a report, and a question into an answer. One backend exists in production:

  ProviderSwarmBackend — prompts the Anthropic Messages API via ProviderClient

Tests substitute in-memory backends that subclass SwarmBackend directly.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Sequence

import structlog
from pydantic import ValidationError

from nexus.api.provider import ProviderClient, ProviderError
from nexus.swarm.errors import (
    DecompositionError,
    ExecutionError,
    QueryError,
    SynthesisError,
)
from nexus.swarm.models import (
    AgentPlan,
    AgentRecord,
    ChatTurn,
    MissionArchiveEntry,
    validate_plan,
)

logger = structlog.get_logger(__name__)

# Characters of each archived report that are fed back as swarm memory.
MEMORY_REPORT_PREVIEW = 300

DECOMPOSER_SYSTEM_PROMPT = """\
You are the planner of an autonomous agent swarm. Break the user's goal into \
3-5 distinct sub-agents. Assign short IDs (e.g. "A1", "A2"). If a task strictly \
requires the output of another agent, set "dependencyId" to that agent's ID; \
an agent may depend on at most one other agent and never on itself.

Respond with JSON only, in exactly this shape:
{{"agents": [{{"id": "A1", "name": "...", "role": "...", "dependencyId": null}}]}}
{memory}"""

MEMORY_CONTEXT_TEMPLATE = """
SWARM MEMORY (PREVIOUS MISSIONS):
{missions}

INSTRUCTION: Use the swarm memory above. If the new goal relates to previous \
work, assign agents to retrieve that data instead of re-doing it. Optimise the \
plan based on learned context.
"""

EXECUTOR_SYSTEM_PROMPT = "You are one specialist agent inside a coordinated swarm."

EXECUTOR_PROMPT = """\
I am agent {name} (ID: {agent_id}). My role is: {role}. The overall goal of the \
swarm is: {goal}.

Generate a concise but substantive output for my specific task.
- If I am a researcher, provide the data I found.
- If I am a coder, provide the structure or snippet.
- If I am a planner, provide the schedule.

Keep it under 80 words, but make it look like real work product. Use bullet \
points if necessary."""

SYNTHESIS_SYSTEM_PROMPT = "You are the swarm commander. The mission is complete."

SYNTHESIS_PROMPT = """\
ORIGINAL MISSION: {goal}

SWARM AGENT OUTPUTS:
{outputs}

Synthesize the individual outputs above into a final, cohesive mission debrief.
- Eliminate redundancy.
- Merge the findings into a unified solution or plan.
- Use headers and bullet points.
- Keep it concise but comprehensive."""

FOLLOW_UP_SYSTEM_PROMPT = """\
You are the interface to the swarm's memory. Answer the user's follow-up \
question based strictly on the context provided. Be helpful and concise."""

FOLLOW_UP_PROMPT = """\
CONTEXT:
Original Goal: {goal}
Agent Data:
{agent_data}
Final Report:
{report}

CHAT HISTORY:
{history}

USER QUESTION: {question}"""

DEFAULT_AGENT_RESULT = "Task Complete."


class SwarmBackend(ABC):
    """Abstract base for the four model-backed swarm calls."""

    @abstractmethod
    async def decompose(
        self,
        goal: str,
        past_missions: Sequence[MissionArchiveEntry] = (),
    ) -> list[AgentPlan]:
        """Turn a goal into an ordered agent plan. Raises DecompositionError."""

    @abstractmethod
    async def execute_agent(self, agent: AgentRecord, goal: str) -> str:
        """Produce one agent's work product. Raises ExecutionError."""

    @abstractmethod
    async def synthesize(self, goal: str, agents: Sequence[AgentRecord]) -> str:
        """Merge every agent's result into one report. Raises SynthesisError."""

    @abstractmethod
    async def query_follow_up(
        self,
        goal: str,
        agents: Sequence[AgentRecord],
        report: str,
        chat_history: Sequence[ChatTurn],
        question: str,
    ) -> str:
        """Answer a question about a finished mission. Raises QueryError."""


def render_memory_context(past_missions: Sequence[MissionArchiveEntry]) -> str:
    """Render archived missions as the decomposer's swarm-memory block."""
    if not past_missions:
        return ""
    missions = "\n\n".join(
        f'MISSION {i}: "{m.goal}"\nRESULT SUMMARY: {m.report[:MEMORY_REPORT_PREVIEW]}...'
        for i, m in enumerate(past_missions, 1)
    )
    return MEMORY_CONTEXT_TEMPLATE.format(missions=missions)


def parse_plan(payload: dict[str, Any]) -> list[AgentPlan]:
    """Parse and validate a decomposer JSON payload of the form {"agents": [...]}."""
    raw_agents = payload.get("agents")
    if not isinstance(raw_agents, list):
        raise DecompositionError("Decomposer response is missing the 'agents' list")
    try:
        plans = [AgentPlan.model_validate(item) for item in raw_agents]
    except ValidationError as exc:
        raise DecompositionError(f"Malformed agent definition: {exc}") from exc
    return validate_plan(plans)


class ProviderSwarmBackend(SwarmBackend):
    """SwarmBackend that prompts the model through a ProviderClient."""

    def __init__(self, provider: ProviderClient, context_missions: int = 5):
        self._provider = provider
        self._context_missions = max(0, context_missions)

    async def decompose(
        self,
        goal: str,
        past_missions: Sequence[MissionArchiveEntry] = (),
    ) -> list[AgentPlan]:
        if not goal or not goal.strip():
            raise DecompositionError("Goal must not be empty")

        memory = list(past_missions)[: self._context_missions]
        system_prompt = DECOMPOSER_SYSTEM_PROMPT.format(memory=render_memory_context(memory))
        try:
            payload = await self._provider.generate_json(
                system_prompt=system_prompt,
                prompt=f"Goal: {goal.strip()}",
                model=self._provider.planner_model,
            )
        except ProviderError as exc:
            logger.error("backend.decompose_failed", error=str(exc))
            raise DecompositionError(str(exc)) from exc

        plans = parse_plan(payload)
        logger.info(
            "backend.decomposed",
            agents=len(plans),
            memory_missions=len(memory),
        )
        return plans

    async def execute_agent(self, agent: AgentRecord, goal: str) -> str:
        prompt = EXECUTOR_PROMPT.format(
            name=agent.name,
            agent_id=agent.id,
            role=agent.role,
            goal=goal,
        )
        try:
            text = await self._provider.generate(
                system_prompt=EXECUTOR_SYSTEM_PROMPT,
                prompt=prompt,
            )
        except ProviderError as exc:
            raise ExecutionError(str(exc), agent_id=agent.id) from exc
        return text or DEFAULT_AGENT_RESULT

    async def synthesize(self, goal: str, agents: Sequence[AgentRecord]) -> str:
        outputs = "\n\n".join(
            f"[AGENT: {a.name} ({a.role})]:\n{a.result or 'No Output'}" for a in agents
        )
        try:
            text = await self._provider.generate(
                system_prompt=SYNTHESIS_SYSTEM_PROMPT,
                prompt=SYNTHESIS_PROMPT.format(goal=goal, outputs=outputs),
                model=self._provider.planner_model,
            )
        except ProviderError as exc:
            raise SynthesisError(str(exc)) from exc
        if not text:
            raise SynthesisError("Provider returned an empty report")
        return text

    async def query_follow_up(
        self,
        goal: str,
        agents: Sequence[AgentRecord],
        report: str,
        chat_history: Sequence[ChatTurn],
        question: str,
    ) -> str:
        agent_data = "\n".join(f"[AGENT: {a.name}]: {a.result or ''}" for a in agents)
        history = "\n".join(f"{t.role.upper()}: {t.content}" for t in chat_history)
        prompt = FOLLOW_UP_PROMPT.format(
            goal=goal,
            agent_data=agent_data,
            report=report,
            history=history or "(none)",
            question=question,
        )
        try:
            text = await self._provider.generate(
                system_prompt=FOLLOW_UP_SYSTEM_PROMPT,
                prompt=prompt,
                model=self._provider.planner_model,
            )
        except ProviderError as exc:
            raise QueryError(str(exc)) from exc
        if not text:
            raise QueryError("Provider returned an empty answer")
        return text
