"""
Follow-up chat — questions asked against a finished mission.

One FollowUpChat belongs to one Mission. It keeps the ordered turn log and
decides how much context goes back to the model on each question: the last
``max_history_turns`` turns and each agent result truncated to
``max_result_chars``. A failed question leaves the log exactly as it was.
"""

from __future__ import annotations

import structlog

from nexus.config import ChatConfig
from nexus.swarm.backend import SwarmBackend
from nexus.swarm.errors import QueryError
from nexus.swarm.models import AgentRecord, ChatTurn, Mission

logger = structlog.get_logger(__name__)


class FollowUpChat:
    """Append-only turn log plus the windowed query call for one mission."""

    def __init__(self, mission: Mission, backend: SwarmBackend, config: ChatConfig):
        self._mission_id = mission.mission_id
        self._goal = mission.goal
        self._agents = [a.model_copy() for a in mission.agents]
        self._report = mission.final_report
        self._backend = backend
        self._config = config
        self._turns: list[ChatTurn] = []

    @property
    def mission_id(self) -> str:
        return self._mission_id

    @property
    def turns(self) -> list[ChatTurn]:
        return list(self._turns)

    def context_window(self) -> list[ChatTurn]:
        """The slice of history sent along with the next question."""
        limit = self._config.max_history_turns
        if limit <= 0:
            return []
        return self._turns[-limit:]

    def _bounded_agents(self) -> list[AgentRecord]:
        limit = self._config.max_result_chars
        bounded = []
        for agent in self._agents:
            result = agent.result or ""
            if len(result) > limit:
                result = result[:limit] + "\n[truncated]"
            bounded.append(agent.model_copy(update={"result": result}))
        return bounded

    async def ask(self, question: str) -> str:
        """Answer ``question``; both turns are appended only on success."""
        if not question or not question.strip():
            raise QueryError("Question must not be empty")
        if not self._report:
            raise QueryError("The mission has no final report to ask about yet")

        question = question.strip()
        answer = await self._backend.query_follow_up(
            self._goal,
            self._bounded_agents(),
            self._report,
            self.context_window(),
            question,
        )

        self._turns.append(ChatTurn(role="user", content=question))
        self._turns.append(ChatTurn(role="assistant", content=answer))
        logger.info(
            "followup.answered",
            mission_id=self._mission_id,
            turns=len(self._turns),
        )
        return answer
