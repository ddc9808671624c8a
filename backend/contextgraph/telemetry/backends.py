from __future__ import annotations

import asyncio
import inspect
import logging
from collections import deque
from typing import Deque, Iterable, List, Protocol, runtime_checkable

from .models import TelemetryEvent

logger = logging.getLogger(__name__)


@runtime_checkable
class TelemetryBackend(Protocol):
    """Sink for engine telemetry. ``record`` must not raise into the engine."""

    def record(self, event: TelemetryEvent) -> None: ...


class NoopBackend:
    def record(self, event: TelemetryEvent) -> None:
        return None


class CompositeBackend:
    """Fans each event out to several backends, isolating their failures."""

    def __init__(self, backends: Iterable[TelemetryBackend]) -> None:
        self._backends: List[TelemetryBackend] = list(backends)

    @property
    def backends(self) -> List[TelemetryBackend]:
        return list(self._backends)

    def record(self, event: TelemetryEvent) -> None:
        for backend in self._backends:
            try:
                backend.record(event)
            except Exception:
                logger.error(
                    "Telemetry backend %s failed to record event",
                    type(backend).__name__,
                    extra={"event_type": event.event_type.value},
                    exc_info=True,
                )

    async def flush(self) -> None:
        await asyncio.gather(
            *(
                self._flush_one(backend)
                for backend in self._backends
                if callable(getattr(backend, "flush", None))
            )
        )

    @staticmethod
    async def _flush_one(backend: TelemetryBackend) -> None:
        try:
            result = backend.flush()
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.error(
                "Telemetry backend %s failed to flush",
                type(backend).__name__,
                exc_info=True,
            )


class LoggingTelemetryBackend:
    """Telemetry sink that writes engine events to the standard logging pipeline."""

    def __init__(self, logger_name: str = "contextgraph.telemetry") -> None:
        self._logger = logging.getLogger(logger_name)

    def record(self, event: TelemetryEvent) -> None:
        payload = event.to_dict()
        level = logging.WARNING if event.human_required else logging.INFO
        self._logger.log(
            level,
            "engine_event",
            extra={
                "event_type": event.event_type.value,
                "agent_id": event.agent_id,
                "branch_name": event.branch_name,
                "telemetry": payload,
            },
        )


class InMemoryTelemetryBackend:
    """Bounded in-process buffer of recent telemetry events."""

    def __init__(self, max_events: int = 1000) -> None:
        self._events: Deque[TelemetryEvent] = deque(maxlen=max_events)

    def record(self, event: TelemetryEvent) -> None:
        self._events.append(event)

    @property
    def events(self) -> List[TelemetryEvent]:
        return list(self._events)

    def clear(self) -> None:
        self._events.clear()


def build_telemetry_backend(settings) -> TelemetryBackend:
    """Select telemetry backends from configuration."""
    names: List[str] = list(settings.TELEMETRY_BACKENDS)
    if not names or names == ["none"]:
        return NoopBackend()

    backends: List[TelemetryBackend] = []
    for name in names:
        if name == "logging":
            backends.append(LoggingTelemetryBackend(settings.TELEMETRY_LOGGER_NAME))
        elif name == "memory":
            backends.append(InMemoryTelemetryBackend(settings.TELEMETRY_BUFFER_SIZE))

    if len(backends) == 1:
        return backends[0]
    return CompositeBackend(backends)
