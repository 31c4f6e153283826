"""
Event Bus — how the swarm reports to whoever is watching.

The scheduler owns mission state; presentation code must never touch it. What
the presentation layer gets instead is a stream of typed events: an agent
started, progress moved, an agent failed, the report is ready.

Concurrency model:
  - emit() enqueues — non-blocking, sync-safe (the scheduler emits from
    progress ticks and done-callbacks)
  - A dispatcher task dequeues and fans out to pattern-matched handlers
  - Handler exceptions are logged but do not propagate
  - Events are dispatched in emission order
"""

from __future__ import annotations

import asyncio
import fnmatch as _fnmatch_mod
import re
import uuid
from typing import Any, Callable, Coroutine, Optional

import structlog
from pydantic import BaseModel

logger = structlog.get_logger(__name__)

EventHandler = Callable[["SwarmEvent"], Any] | Callable[["SwarmEvent"], Coroutine[Any, Any, Any]]

# Splits CamelCase including consecutive capitals: "AgentStatusChanged" → Agent/Status/Changed
_CAMEL_SPLIT_RE = re.compile(r"[A-Z]+(?=[A-Z][a-z]|\d|\b)|[A-Z][a-z]*")


class SwarmEvent(BaseModel):
    """Base class for all events; event_type is derived from the class name."""

    event_type: str = ""

    def model_post_init(self, __context: Any) -> None:
        if not self.event_type:
            name = type(self).__name__.removesuffix("Event")
            parts = _CAMEL_SPLIT_RE.findall(name)
            self.event_type = ".".join(p.lower() for p in parts) if parts else name.lower()


class _Subscription:
    __slots__ = ("sub_id", "pattern", "handler", "_compiled")

    def __init__(self, sub_id: str, pattern: str, handler: EventHandler) -> None:
        self.sub_id = sub_id
        self.pattern = pattern
        self.handler = handler
        self._compiled: re.Pattern[str] = re.compile(_fnmatch_mod.translate(pattern))

    def matches(self, event_type: str) -> bool:
        return self._compiled.match(event_type) is not None


_SENTINEL = object()


class EventBus:
    """Minimal async event bus with typed events and wildcard subscriptions.

    Pattern matching uses fnmatch-style wildcards:
      "agent.*"    matches "agent.progress", "agent.status.changed"
      "mission.*"  matches "mission.synthesized"
      "*"          matches everything
    """

    def __init__(self, max_queue_size: int = 10000) -> None:
        self._queue: asyncio.Queue[SwarmEvent | object] = asyncio.Queue(maxsize=max_queue_size)
        self._subscriptions: dict[str, _Subscription] = {}
        self._dispatcher_task: asyncio.Task[None] | None = None
        self._running = False

    async def start(self) -> None:
        """Start the dispatcher task."""
        if self._running:
            return
        self._running = True
        self._dispatcher_task = asyncio.create_task(
            self._dispatch_loop(), name="event-bus-dispatcher"
        )
        logger.debug("event_bus.started")

    async def stop(self) -> None:
        """Drain the queue and stop the dispatcher."""
        if not self._running:
            return
        self._running = False
        try:
            self._queue.put_nowait(_SENTINEL)
        except asyncio.QueueFull:
            logger.warning("event_bus.stop_queue_full_cancelling_directly")
            if self._dispatcher_task is not None:
                self._dispatcher_task.cancel()
        if self._dispatcher_task is not None:
            try:
                await asyncio.wait_for(self._dispatcher_task, timeout=5.0)
            except asyncio.TimeoutError:
                logger.warning("event_bus.stop_timeout_cancelling", timeout=5.0)
                self._dispatcher_task.cancel()
            except asyncio.CancelledError:
                pass
            self._dispatcher_task = None
        logger.debug("event_bus.stopped")

    def subscribe(self, pattern: str, handler: EventHandler) -> str:
        """Subscribe to events matching a fnmatch-style pattern. Returns a subscription ID."""
        sub_id = uuid.uuid4().hex[:12]
        self._subscriptions[sub_id] = _Subscription(sub_id, pattern, handler)
        logger.debug("event_bus.subscribed", pattern=pattern, sub_id=sub_id)
        return sub_id

    def unsubscribe(self, subscription_id: str) -> None:
        if self._subscriptions.pop(subscription_id, None):
            logger.debug("event_bus.unsubscribed", sub_id=subscription_id)

    def emit(self, event: SwarmEvent) -> None:
        """Enqueue an event for dispatch. A full queue drops the event with a warning."""
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning("event_bus.queue_full", event_type=event.event_type, dropped=True)

    async def drain(self) -> None:
        """Wait until every event emitted so far has been dispatched."""
        if self._running:
            await self._queue.join()

    async def _dispatch_loop(self) -> None:
        while self._running:
            try:
                item = await self._queue.get()
            except asyncio.CancelledError:
                break
            try:
                if item is _SENTINEL:
                    break
                await self._dispatch_event(item)  # type: ignore[arg-type]
            finally:
                self._queue.task_done()

        while not self._queue.empty():
            try:
                item = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            try:
                if item is not _SENTINEL:
                    await self._dispatch_event(item)  # type: ignore[arg-type]
            finally:
                self._queue.task_done()

    async def _dispatch_event(self, event: SwarmEvent) -> None:
        coros = [
            self._invoke_handler(sub, event)
            for sub in list(self._subscriptions.values())
            if sub.matches(event.event_type)
        ]
        if coros:
            await asyncio.gather(*coros, return_exceptions=True)

    @staticmethod
    async def _invoke_handler(sub: _Subscription, event: SwarmEvent) -> None:
        try:
            result = sub.handler(event)
            if asyncio.iscoroutine(result) or asyncio.isfuture(result):
                await result
        except Exception:
            logger.error(
                "event_bus.handler_error",
                pattern=sub.pattern,
                event_type=event.event_type,
                exc_info=True,
            )

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)

    @property
    def is_running(self) -> bool:
        return self._running


# ---------------------------------------------------------------------------
# Event Definitions
# ---------------------------------------------------------------------------

class MissionPlannedEvent(SwarmEvent):
    """Emitted when a goal has been decomposed into a new active mission."""

    mission_id: str
    goal: str
    agent_ids: list[str]


class AgentStatusChangedEvent(SwarmEvent):
    """Emitted on every agent lifecycle transition."""

    mission_id: str
    agent_id: str
    previous: str
    current: str
    progress: int


class AgentProgressEvent(SwarmEvent):
    """Emitted on each progress tick of a working agent."""

    mission_id: str
    agent_id: str
    progress: int


class AgentFailedEvent(SwarmEvent):
    """Emitted when an executor call fails (after any retries)."""

    mission_id: str
    agent_id: str
    error: str
    reason: str
    attempts: int
    terminal: bool


class MissionSynthesizedEvent(SwarmEvent):
    """Emitted once the final report exists."""

    mission_id: str
    report_chars: int


class MissionSynthesisFailedEvent(SwarmEvent):
    """Emitted when synthesis fails; agents keep their results."""

    mission_id: str
    error: str


class MissionAbortedEvent(SwarmEvent):
    """Emitted when a mission is cancelled or replaced mid-flight."""

    mission_id: str
    reason: str


class MissionStalledEvent(SwarmEvent):
    """Emitted when no agent can progress without manual action."""

    mission_id: str
    waiting_agent_ids: list[str]


class MissionArchivedEvent(SwarmEvent):
    """Emitted after a completed mission is written to the archive."""

    mission_id: str
    entry_id: Optional[str] = None
