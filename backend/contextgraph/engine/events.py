"""
Engine event bus.

Two independent channels share one telemetry backend:

* Human-required escalations (``emit_human_required``) are fire-and-forget.
  Each handler is spawned as its own asyncio task. Delivery is best-effort
  and unbounded, with no backpressure. The triggering operation never waits on them
  and never sees their failures; failed tasks are logged. ``drain()`` awaits
  whatever is still pending. Outside a running event loop the telemetry is
  still recorded but the handlers are skipped and the skip is logged.
* Typed lifecycle events (``emit``) record telemetry first, then run every
  handler for the event type concurrently and wait for all of them.

One bus is built at process start and passed explicitly to the engine,
the detectors and any store that emits.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, ClassVar, DefaultDict, Dict, List, Optional, Set, Union

from contextgraph.telemetry.backends import NoopBackend, TelemetryBackend
from contextgraph.telemetry.models import EngineEventType, TelemetryEvent

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"


@dataclass(frozen=True)
class EpistemicCollisionEvent:
    type: ClassVar[str] = "EPISTEMIC_COLLISION"
    collision_id: str
    detail: str


@dataclass(frozen=True)
class PolicyConflictEvent:
    type: ClassVar[str] = "POLICY_CONFLICT"
    collision_id: str
    field: str


@dataclass(frozen=True)
class CorruptionDetectedEvent:
    type: ClassVar[str] = "CORRUPTION_DETECTED"
    endpoint_id: str
    detail: str


HumanRequiredEvent = Union[EpistemicCollisionEvent, PolicyConflictEvent, CorruptionDetectedEvent]
HumanRequiredHandler = Callable[[HumanRequiredEvent], Union[None, Awaitable[None]]]


@dataclass
class EngineEvent:
    type: EngineEventType
    agent_id: str = SYSTEM_ACTOR
    branch_name: str = ""
    payload: Dict[str, Any] = field(default_factory=dict)


EngineEventHandler = Callable[[EngineEvent], Union[None, Awaitable[None]]]


class EngineEventBus:
    def __init__(self, telemetry: Optional[TelemetryBackend] = None) -> None:
        self._telemetry: TelemetryBackend = telemetry if telemetry is not None else NoopBackend()
        self._human_handlers: List[HumanRequiredHandler] = []
        self._handlers: DefaultDict[EngineEventType, List[EngineEventHandler]] = defaultdict(list)
        self._pending: Set[asyncio.Task] = set()

    @property
    def telemetry(self) -> TelemetryBackend:
        return self._telemetry

    def set_telemetry(self, backend: Optional[TelemetryBackend]) -> None:
        self._telemetry = backend if backend is not None else NoopBackend()

    async def flush(self) -> None:
        flush = getattr(self._telemetry, "flush", None)
        if callable(flush):
            result = flush()
            if inspect.isawaitable(result):
                await result

    # Human-required channel

    def on_human_required(self, handler: HumanRequiredHandler) -> None:
        self._human_handlers.append(handler)

    def emit_human_required(self, event: HumanRequiredEvent) -> None:
        self._telemetry.record(self._human_required_telemetry(event))
        logger.warning(
            "Human intervention required: %s",
            event.type,
            extra={"event_type": event.type},
        )

        if not self._human_handlers:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.error(
                "No running event loop; %d human-required handler(s) skipped for %s",
                len(self._human_handlers),
                event.type,
                extra={"event_type": event.type},
            )
            return
        for handler in list(self._human_handlers):
            task = loop.create_task(self._invoke(handler, event))
            self._pending.add(task)
            task.add_done_callback(self._on_human_task_done)

    async def drain(self) -> None:
        """Wait for every escalation dispatched so far."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    @property
    def pending(self) -> int:
        return len(self._pending)

    def _on_human_task_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Human-required handler failed", exc_info=exc)

    def _human_required_telemetry(self, event: HumanRequiredEvent) -> TelemetryEvent:
        telemetry = TelemetryEvent(
            event_type=EngineEventType.HUMAN_REQUIRED,
            agent_id=SYSTEM_ACTOR,
            branch_name="",
            human_required=True,
            attributes={"type": event.type},
        )
        if isinstance(event, CorruptionDetectedEvent):
            telemetry.endpoint_id = event.endpoint_id
        else:
            telemetry.collision_class = event.type
            telemetry.attributes["collision_id"] = event.collision_id
        return telemetry

    # Typed lifecycle channel

    def on(self, event_type: EngineEventType, handler: EngineEventHandler) -> None:
        self._handlers[event_type].append(handler)

    def off(self, event_type: EngineEventType, handler: EngineEventHandler) -> None:
        handlers = self._handlers.get(event_type)
        if handlers and handler in handlers:
            handlers.remove(handler)

    async def emit(self, event: EngineEvent) -> None:
        # Telemetry sees the event even if a handler later fails.
        self._telemetry.record(
            TelemetryEvent.from_payload(event.type, event.agent_id, event.branch_name, event.payload)
        )

        handlers = list(self._handlers.get(event.type, ()))
        if not handlers:
            return
        results = await asyncio.gather(
            *(self._invoke(handler, event) for handler in handlers),
            return_exceptions=True,
        )
        errors = [result for result in results if isinstance(result, BaseException)]
        for error in errors:
            logger.error(
                "Handler for %s failed",
                event.type.value,
                extra={"event_type": event.type.value},
                exc_info=error,
            )
        if errors:
            raise errors[0]

    @staticmethod
    async def _invoke(handler: Callable[[Any], Any], event: Any) -> None:
        result = handler(event)
        if inspect.isawaitable(result):
            await result
