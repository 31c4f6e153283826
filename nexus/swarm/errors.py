"""
Swarm error taxonomy.

Each error is scoped to the smallest unit it affects: one mission plan, one
agent, one synthesis pass, one follow-up turn. None of them discards work that
has already completed.
"""

from __future__ import annotations

from typing import Optional


class SwarmError(Exception):
    """Base class for every swarm-level failure."""


class DecompositionError(SwarmError):
    """The goal could not be turned into a runnable plan. No mission starts."""


class ExecutionError(SwarmError):
    """One agent's executor call failed. Sibling agents are unaffected."""

    def __init__(self, message: str, agent_id: Optional[str] = None, reason: str = "error"):
        super().__init__(message)
        self.agent_id = agent_id
        self.reason = reason


class SynthesisError(SwarmError):
    """The final report could not be produced. Agent results are kept."""


class QueryError(SwarmError):
    """A follow-up question could not be answered. Prior turns are kept."""


class InvalidTransitionError(SwarmError):
    """A requested agent or mission transition is not allowed from its state."""
