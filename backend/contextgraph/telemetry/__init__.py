from .models import EngineEventType, TelemetryEvent
from .backends import (
    CompositeBackend,
    InMemoryTelemetryBackend,
    LoggingTelemetryBackend,
    NoopBackend,
    TelemetryBackend,
    build_telemetry_backend,
)

__all__ = [
    "EngineEventType",
    "TelemetryEvent",
    "TelemetryBackend",
    "NoopBackend",
    "CompositeBackend",
    "LoggingTelemetryBackend",
    "InMemoryTelemetryBackend",
    "build_telemetry_backend",
]
