"""
Swarm Scheduler — drives one mission's agents from QUEUED to a final report.

The scheduler is the sole owner of the active Mission. Every agent moves
through a small state machine:

    QUEUED ──► WORKING ──► COMPLETE
                 │  ▲
                 ▼  │
               BLOCKED        WORKING ──► FAILED ──► WORKING (manual retry)

Root agents start immediately. A dependent stays QUEUED until the one agent it
names is COMPLETE, then starts after a short settling delay. While WORKING an
agent's progress climbs on a tick; at 100 the executor is called, and its
result completes the agent and releases its dependents. The first time every
agent is COMPLETE the synthesizer runs, exactly once.

Every piece of asynchronous work (progress loop, settle delay, executor call,
synthesis) is an asyncio.Task held in ``_handles``. Loading a new mission or
cancelling the current one cancels all of them at once, and every task re-checks
that its mission is still the active one before touching state, so a late reply
from a replaced mission can never land in its successor.
"""

from __future__ import annotations

import asyncio
import functools
import random
from typing import Any, Callable, Coroutine, Optional

import structlog

from nexus.config import SwarmConfig
from nexus.events import (
    AgentFailedEvent,
    AgentProgressEvent,
    AgentStatusChangedEvent,
    MissionAbortedEvent,
    MissionStalledEvent,
    MissionSynthesisFailedEvent,
    MissionSynthesizedEvent,
    SwarmEvent,
)
from nexus.harness.retry import RetryConfig, with_retries
from nexus.swarm.backend import SwarmBackend
from nexus.swarm.errors import ExecutionError, InvalidTransitionError, SynthesisError
from nexus.swarm.models import AgentRecord, AgentStatus, Mission, MissionStatus

logger = structlog.get_logger(__name__)

_ALLOWED_TRANSITIONS: dict[AgentStatus, set[AgentStatus]] = {
    AgentStatus.QUEUED: {AgentStatus.WORKING},
    AgentStatus.WORKING: {AgentStatus.BLOCKED, AgentStatus.COMPLETE, AgentStatus.FAILED},
    AgentStatus.BLOCKED: {AgentStatus.WORKING},
    AgentStatus.FAILED: {AgentStatus.WORKING},
    AgentStatus.COMPLETE: set(),
}

_SETTLED_MISSION_STATES = {
    MissionStatus.PLANNED,
    MissionStatus.COMPLETE,
    MissionStatus.SYNTHESIS_FAILED,
    MissionStatus.ABORTED,
}

_SYNTHESIS_KEY = "synthesis"


def _progress_key(agent_id: str) -> str:
    return f"progress:{agent_id}"


def _execute_key(agent_id: str) -> str:
    return f"execute:{agent_id}"


def _release_key(agent_id: str) -> str:
    return f"release:{agent_id}"


class SwarmScheduler:
    """Owns the active mission and every task working on it."""

    def __init__(
        self,
        config: SwarmConfig,
        backend: SwarmBackend,
        event_bus: Any = None,  # EventBus
        rng: Optional[random.Random] = None,
        on_mission_complete: Optional[Callable[[Mission], None]] = None,
    ):
        self._config = config
        self._backend = backend
        self._event_bus = event_bus
        self._on_mission_complete = on_mission_complete
        self._rng = rng or random.Random()

        self._mission: Optional[Mission] = None
        # Every in-flight task for the active mission, keyed by purpose.
        self._handles: dict[str, asyncio.Task] = {}
        self._synthesis_started = False
        self._stall_reported = False
        self._state_changed = asyncio.Event()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def mission_id(self) -> Optional[str]:
        return self._mission.mission_id if self._mission else None

    @property
    def in_flight(self) -> int:
        return len(self._handles)

    def snapshot(self) -> Optional[Mission]:
        """Deep copy of the active mission. Callers never see live records."""
        return self._mission.model_copy(deep=True) if self._mission else None

    def is_settled(self) -> bool:
        """True when nothing will change without a new request from outside."""
        mission = self._mission
        if mission is None or mission.status in _SETTLED_MISSION_STATES:
            return True
        if mission.status == MissionStatus.SYNTHESIZING:
            return False
        return not self._handles

    # ------------------------------------------------------------------
    # Mission lifecycle
    # ------------------------------------------------------------------

    def load(self, mission: Mission) -> None:
        """Make ``mission`` the active one, discarding the previous mission's work."""
        if mission.status != MissionStatus.PLANNED or any(
            a.status != AgentStatus.QUEUED for a in mission.agents
        ):
            raise InvalidTransitionError("Only a freshly planned mission can be loaded")

        previous = self._mission
        self._cancel_all()
        if previous is not None and previous.status in {
            MissionStatus.RUNNING,
            MissionStatus.SYNTHESIZING,
        }:
            previous.status = MissionStatus.ABORTED
            self._emit(MissionAbortedEvent(mission_id=previous.mission_id, reason="replaced"))
            logger.info("scheduler.mission_replaced", mission_id=previous.mission_id)

        self._mission = mission
        self._synthesis_started = False
        self._stall_reported = False
        logger.info(
            "scheduler.mission_loaded",
            mission_id=mission.mission_id,
            agents=len(mission.agents),
        )
        self._notify()

    def start(self) -> None:
        """Start every root agent. Starting a running mission is a no-op."""
        mission = self._require_mission()
        if mission.status == MissionStatus.RUNNING:
            return
        if mission.status != MissionStatus.PLANNED:
            raise InvalidTransitionError(
                f"Cannot start mission in state {mission.status.value}"
            )

        mission.status = MissionStatus.RUNNING
        roots = [a for a in mission.agents if a.is_root]
        logger.info(
            "scheduler.mission_started",
            mission_id=mission.mission_id,
            roots=[a.id for a in roots],
        )
        for agent in roots:
            self._start_agent(mission, agent)
        self._notify()

    async def wait(self, timeout: Optional[float] = None) -> Optional[Mission]:
        """Wait until the mission is settled and return a snapshot of it."""

        async def _wait_settled() -> None:
            while not self.is_settled():
                self._state_changed.clear()
                await self._state_changed.wait()

        await asyncio.wait_for(_wait_settled(), timeout=timeout)
        return self.snapshot()

    async def cancel(self, reason: str = "cancelled") -> bool:
        """Abort the active mission. No further executor or synthesis calls are made."""
        mission = self._mission
        if mission is None or mission.is_finished:
            return False

        tasks = self._cancel_all()
        mission.status = MissionStatus.ABORTED
        mission.error = reason
        self._emit(MissionAbortedEvent(mission_id=mission.mission_id, reason=reason))
        logger.info("scheduler.mission_aborted", mission_id=mission.mission_id, reason=reason)
        self._notify()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        return True

    async def shutdown(self) -> None:
        """Cancel everything still running (used on exit)."""
        tasks = self._cancel_all()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._notify()
        logger.debug("scheduler.shutdown_complete", cancelled=len(tasks))

    # ------------------------------------------------------------------
    # Manual controls
    # ------------------------------------------------------------------

    def block(self, agent_id: str) -> None:
        """Pause a WORKING agent (e.g. pending human approval). Progress freezes."""
        mission, agent = self._require_running_agent(agent_id)
        if agent.status != AgentStatus.WORKING:
            raise InvalidTransitionError(f"Agent {agent_id} is {agent.status.value}, not WORKING")
        if _execute_key(agent_id) in self._handles:
            raise InvalidTransitionError(f"Agent {agent_id} is waiting on its executor result")

        self._cancel_handle(_progress_key(agent_id))
        self._transition(mission, agent, AgentStatus.BLOCKED)
        self._notify()

    def unblock(self, agent_id: str) -> None:
        """Resume a BLOCKED agent from the progress it had when blocked."""
        mission, agent = self._require_running_agent(agent_id)
        if agent.status != AgentStatus.BLOCKED:
            raise InvalidTransitionError(f"Agent {agent_id} is {agent.status.value}, not BLOCKED")

        self._transition(mission, agent, AgentStatus.WORKING)
        self._spawn(
            _progress_key(agent_id),
            self._run_progress(mission.mission_id, agent_id),
        )
        self._notify()

    def retry_agent(self, agent_id: str) -> None:
        """Re-run the executor for a FAILED (or stuck-at-100%) agent."""
        mission, agent = self._require_running_agent(agent_id)
        stuck = (
            agent.status == AgentStatus.WORKING
            and agent.progress >= 100
            and agent.error is not None
            and _execute_key(agent_id) not in self._handles
            and _progress_key(agent_id) not in self._handles
        )
        if agent.status != AgentStatus.FAILED and not stuck:
            raise InvalidTransitionError(f"Agent {agent_id} has no failed execution to retry")

        agent.error = None
        if agent.status == AgentStatus.FAILED:
            self._transition(mission, agent, AgentStatus.WORKING)
        logger.info("scheduler.agent_retry", mission_id=mission.mission_id, agent_id=agent_id)
        self._spawn(_execute_key(agent_id), self._run_executor(mission.mission_id, agent_id))
        self._notify()

    def retry_synthesis(self) -> None:
        """Run synthesis again after a failure, without re-running any agent."""
        mission = self._require_mission()
        if mission.status != MissionStatus.SYNTHESIS_FAILED:
            raise InvalidTransitionError(
                f"Synthesis can only be retried after it failed (mission is {mission.status.value})"
            )
        mission.error = None
        mission.status = MissionStatus.SYNTHESIZING
        self._spawn(_SYNTHESIS_KEY, self._run_synthesis(mission.mission_id))
        self._notify()

    # ------------------------------------------------------------------
    # Agent tasks
    # ------------------------------------------------------------------

    def _start_agent(self, mission: Mission, agent: AgentRecord) -> None:
        self._transition(mission, agent, AgentStatus.WORKING)
        self._spawn(_progress_key(agent.id), self._run_progress(mission.mission_id, agent.id))

    async def _run_progress(self, mission_id: str, agent_id: str) -> None:
        """Advance progress on a fixed tick, then hand over to the executor."""
        while True:
            agent = self._current_agent(mission_id, agent_id)
            if agent is None or agent.status != AgentStatus.WORKING:
                return
            if agent.progress >= 100:
                break

            await asyncio.sleep(self._config.tick_interval)

            agent = self._current_agent(mission_id, agent_id)
            if agent is None or agent.status != AgentStatus.WORKING:
                return
            increment = self._rng.randint(
                self._config.progress_increment_min,
                self._config.progress_increment_max,
            )
            agent.progress = min(100, agent.progress + increment)
            self._emit(AgentProgressEvent(
                mission_id=mission_id,
                agent_id=agent_id,
                progress=agent.progress,
            ))

        self._spawn(_execute_key(agent_id), self._run_executor(mission_id, agent_id))

    async def _run_executor(self, mission_id: str, agent_id: str) -> None:
        """Call the executor (with the configured failure policy) and record the outcome."""
        agent = self._current_agent(mission_id, agent_id)
        if agent is None:
            return
        goal = self._mission.goal  # type: ignore[union-attr]
        fail_policy = self._config.failure_policy == "fail"
        max_attempts = self._config.executor_max_attempts if fail_policy else 1

        async def _attempt() -> str:
            current = self._current_agent(mission_id, agent_id)
            if current is None:
                raise asyncio.CancelledError()
            current.attempts += 1
            request = current.model_copy()
            try:
                return await asyncio.wait_for(
                    self._backend.execute_agent(request, goal),
                    timeout=self._config.executor_timeout,
                )
            except asyncio.TimeoutError as exc:
                raise ExecutionError(
                    f"Executor timed out after {self._config.executor_timeout:.1f}s",
                    agent_id=agent_id,
                    reason="timeout",
                ) from exc
            except ExecutionError:
                raise
            except Exception as exc:
                raise ExecutionError(str(exc) or type(exc).__name__, agent_id=agent_id) from exc

        retry_config = RetryConfig(
            max_retries=max_attempts - 1,
            base_delay=self._config.executor_retry_base_delay,
            max_delay=max(self._config.executor_retry_base_delay * 8, 0.0),
            exponential_base=2.0,
            jitter_range=0.0,
        )

        try:
            result = await with_retries(
                _attempt,
                config=retry_config,
                is_retryable=lambda e: isinstance(e, ExecutionError),
            )
        except ExecutionError as exc:
            self._record_failure(mission_id, agent_id, exc, terminal=fail_policy)
            return

        agent = self._current_agent(mission_id, agent_id)
        if agent is None:
            logger.info("scheduler.stale_result_discarded", mission_id=mission_id, agent_id=agent_id)
            return
        if agent.status != AgentStatus.WORKING:
            return

        mission = self._mission
        agent.result = result
        agent.error = None
        agent.progress = 100
        self._transition(mission, agent, AgentStatus.COMPLETE)  # type: ignore[arg-type]
        self._release_dependents(mission, agent_id)  # type: ignore[arg-type]
        self._maybe_synthesize()
        self._notify()

    def _record_failure(
        self,
        mission_id: str,
        agent_id: str,
        exc: ExecutionError,
        terminal: bool,
    ) -> None:
        agent = self._current_agent(mission_id, agent_id)
        if agent is None:
            logger.info("scheduler.stale_failure_discarded", mission_id=mission_id, agent_id=agent_id)
            return
        if agent.status != AgentStatus.WORKING:
            return

        agent.error = str(exc)
        if terminal:
            self._transition(self._mission, agent, AgentStatus.FAILED)  # type: ignore[arg-type]
        logger.warning(
            "scheduler.agent_failed",
            mission_id=mission_id,
            agent_id=agent_id,
            reason=exc.reason,
            attempts=agent.attempts,
            terminal=terminal,
            error=str(exc),
        )
        self._emit(AgentFailedEvent(
            mission_id=mission_id,
            agent_id=agent_id,
            error=str(exc),
            reason=exc.reason,
            attempts=agent.attempts,
            terminal=terminal,
        ))
        self._notify()

    def _release_dependents(self, mission: Mission, agent_id: str) -> None:
        """Release every QUEUED agent that names ``agent_id`` as its dependency."""
        for dependent in mission.dependents_of(agent_id):
            if dependent.status != AgentStatus.QUEUED:
                continue
            if _release_key(dependent.id) in self._handles:
                continue
            self._spawn(
                _release_key(dependent.id),
                self._release_after_settle(mission.mission_id, dependent.id),
            )

    async def _release_after_settle(self, mission_id: str, agent_id: str) -> None:
        if self._config.settle_delay > 0:
            await asyncio.sleep(self._config.settle_delay)

        agent = self._current_agent(mission_id, agent_id)
        if agent is None or agent.status != AgentStatus.QUEUED:
            return
        mission = self._mission
        dependency = mission.agent(agent.dependency_id) if agent.dependency_id else None  # type: ignore[union-attr]
        if dependency is None or dependency.status != AgentStatus.COMPLETE:
            return
        self._start_agent(mission, agent)  # type: ignore[arg-type]

    # ------------------------------------------------------------------
    # Synthesis
    # ------------------------------------------------------------------

    def _maybe_synthesize(self) -> None:
        """Trigger synthesis the first time every agent is COMPLETE.

        Check and set happen without an intervening await, so near-simultaneous
        completions cannot both pass the guard.
        """
        mission = self._mission
        if mission is None or mission.status != MissionStatus.RUNNING:
            return
        if self._synthesis_started or not mission.all_complete:
            return

        self._synthesis_started = True
        mission.status = MissionStatus.SYNTHESIZING
        logger.info("scheduler.synthesis_triggered", mission_id=mission.mission_id)
        self._spawn(_SYNTHESIS_KEY, self._run_synthesis(mission.mission_id))

    async def _run_synthesis(self, mission_id: str) -> None:
        mission = self._mission
        if mission is None or mission.mission_id != mission_id:
            return
        agents = [a.model_copy() for a in mission.agents]

        try:
            try:
                report = await asyncio.wait_for(
                    self._backend.synthesize(mission.goal, agents),
                    timeout=self._config.synthesis_timeout,
                )
            except asyncio.TimeoutError as exc:
                raise SynthesisError(
                    f"Synthesis timed out after {self._config.synthesis_timeout:.1f}s"
                ) from exc
            except SynthesisError:
                raise
            except Exception as exc:
                raise SynthesisError(str(exc) or type(exc).__name__) from exc
        except SynthesisError as exc:
            if not self._is_current(mission_id):
                return
            mission.status = MissionStatus.SYNTHESIS_FAILED
            mission.error = str(exc)
            logger.error("scheduler.synthesis_failed", mission_id=mission_id, error=str(exc))
            self._emit(MissionSynthesisFailedEvent(mission_id=mission_id, error=str(exc)))
            self._notify()
            return

        if not self._is_current(mission_id) or mission.status != MissionStatus.SYNTHESIZING:
            logger.info("scheduler.stale_report_discarded", mission_id=mission_id)
            return
        mission.final_report = report
        mission.status = MissionStatus.COMPLETE
        logger.info("scheduler.mission_complete", mission_id=mission_id, report_chars=len(report))
        self._emit(MissionSynthesizedEvent(mission_id=mission_id, report_chars=len(report)))
        if self._on_mission_complete is not None:
            try:
                self._on_mission_complete(mission.model_copy(deep=True))
            except Exception:
                logger.error("scheduler.completion_hook_failed", mission_id=mission_id, exc_info=True)
        self._notify()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _transition(self, mission: Mission, agent: AgentRecord, new: AgentStatus) -> None:
        previous = agent.status
        if new not in _ALLOWED_TRANSITIONS[previous]:
            raise InvalidTransitionError(
                f"Agent {agent.id} cannot go from {previous.value} to {new.value}"
            )
        agent.status = new
        logger.debug(
            "scheduler.agent_transition",
            mission_id=mission.mission_id,
            agent_id=agent.id,
            previous=previous.value,
            current=new.value,
            progress=agent.progress,
        )
        self._emit(AgentStatusChangedEvent(
            mission_id=mission.mission_id,
            agent_id=agent.id,
            previous=previous.value,
            current=new.value,
            progress=agent.progress,
        ))

    def _require_mission(self) -> Mission:
        if self._mission is None:
            raise InvalidTransitionError("No active mission")
        return self._mission

    def _require_running_agent(self, agent_id: str) -> tuple[Mission, AgentRecord]:
        mission = self._require_mission()
        if mission.status != MissionStatus.RUNNING:
            raise InvalidTransitionError(
                f"Mission is {mission.status.value}; agent controls need a RUNNING mission"
            )
        agent = mission.agent(agent_id)
        if agent is None:
            raise InvalidTransitionError(f"Unknown agent {agent_id}")
        return mission, agent

    def _is_current(self, mission_id: str) -> bool:
        mission = self._mission
        return (
            mission is not None
            and mission.mission_id == mission_id
            and mission.status != MissionStatus.ABORTED
        )

    def _current_agent(self, mission_id: str, agent_id: str) -> Optional[AgentRecord]:
        if not self._is_current(mission_id):
            return None
        return self._mission.agent(agent_id)  # type: ignore[union-attr]

    def _spawn(self, key: str, coro: Coroutine[Any, Any, None]) -> None:
        mission_id = self.mission_id
        task = asyncio.create_task(coro, name=f"{mission_id}:{key}")
        self._handles[key] = task
        self._stall_reported = False
        task.add_done_callback(functools.partial(self._on_handle_done, key))

    def _cancel_handle(self, key: str) -> None:
        task = self._handles.pop(key, None)
        if task is not None:
            task.cancel()

    def _cancel_all(self) -> list[asyncio.Task]:
        tasks = list(self._handles.values())
        self._handles.clear()
        for task in tasks:
            task.cancel()
        return tasks

    def _on_handle_done(self, key: str, task: asyncio.Task) -> None:
        if self._handles.get(key) is task:
            del self._handles[key]
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                "scheduler.task_crashed",
                key=key,
                task=task.get_name(),
                exc_info=task.exception(),
            )
        self._notify()

    def _notify(self) -> None:
        """Wake waiters and report a stall once when nothing is left in flight."""
        self._state_changed.set()
        mission = self._mission
        if (
            mission is None
            or mission.status != MissionStatus.RUNNING
            or self._handles
            or self._stall_reported
        ):
            return
        waiting = [a.id for a in mission.agents if a.status != AgentStatus.COMPLETE]
        if not waiting:
            return
        self._stall_reported = True
        logger.warning("scheduler.mission_stalled", mission_id=mission.mission_id, waiting=waiting)
        self._emit(MissionStalledEvent(mission_id=mission.mission_id, waiting_agent_ids=waiting))

    def _emit(self, event: SwarmEvent) -> None:
        if self._event_bus is not None:
            try:
                self._event_bus.emit(event)
            except Exception:
                logger.debug("scheduler.emit_event_failed", exc_info=True)
