"""
Global pytest configuration and fixtures for the context graph engine.
"""

import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Add project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

# Set test environment
os.environ["TESTING"] = "1"
os.environ.setdefault("TELEMETRY_BACKENDS", "memory")
os.environ.setdefault("LOG_FORMAT", "text")


NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FrozenClock:
    """Manually advanced clock for deterministic timestamps."""

    def __init__(self, start: datetime = NOW):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def telemetry():
    from contextgraph.telemetry import InMemoryTelemetryBackend

    return InMemoryTelemetryBackend()


@pytest.fixture
def event_bus(telemetry):
    from contextgraph.engine import EngineEventBus

    return EngineEventBus(telemetry=telemetry)


@pytest.fixture
def store(event_bus, clock):
    from contextgraph.storage import InMemoryContextGraphStore

    return InMemoryContextGraphStore(events=event_bus, clock=clock)


@pytest.fixture
def make_node():
    """Factory for knowledge nodes with sensible defaults."""
    from contextgraph.graph import KnowledgeNode, NodeMetadata

    def _make(
        node_id="n1",
        topic="billing.refunds",
        claim="Refunds settle in 5 days",
        agent_id="agent-a",
        evidence=(),
        confidence=None,
        last_verified_at=None,
        isomorphisms=(),
        tombstoned=False,
    ):
        return KnowledgeNode(
            id=node_id,
            commit_hash=f"c-{node_id}",
            topic=topic,
            claim=claim,
            version_hash=f"v-{node_id}",
            isomorphisms=tuple(isomorphisms),
            metadata=NodeMetadata(
                agent_id=agent_id,
                evidence_refs=frozenset(evidence),
                confidence=confidence,
                last_verified_at=last_verified_at,
            ),
            tombstoned=tombstoned,
        )

    return _make
