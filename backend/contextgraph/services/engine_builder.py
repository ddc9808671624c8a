from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional

from contextgraph.context_index import build_context_index_payload, serialize_context_index
from contextgraph.core.config import Settings, settings as default_settings
from contextgraph.core.logging_config import setup_logging
from contextgraph.engine import (
    CollisionDetector,
    ContextGraphEngine,
    ConvergenceDetector,
    DecayEngine,
    DriftDetector,
    EngineEventBus,
    ProvenanceTracker,
)
from contextgraph.engine.engine import ContextIndexBuilder, TopicProvider
from contextgraph.graph.models import utcnow
from contextgraph.storage import InMemoryContextGraphStore
from contextgraph.telemetry import build_telemetry_backend

logger = logging.getLogger("contextgraph.engine.builder")


def _store_context_index_builder(store, max_tokens: int) -> ContextIndexBuilder:
    async def build(agent_id: str, branch: str) -> str:
        payload = await build_context_index_payload(store, agent_id, branch)
        return serialize_context_index(payload, max_tokens=max_tokens)

    return build


def create_context_graph_engine(
    store=None,
    *,
    events: Optional[EngineEventBus] = None,
    settings: Optional[Settings] = None,
    context_index_builder: Optional[ContextIndexBuilder] = None,
    topic_provider: Optional[TopicProvider] = None,
    clock: Optional[Callable[[], datetime]] = None,
    configure_logging: bool = False,
) -> ContextGraphEngine:
    settings = settings or default_settings
    if configure_logging:
        setup_logging(settings.LOG_LEVEL, settings.LOG_FORMAT)

    events = events or EngineEventBus(telemetry=build_telemetry_backend(settings))
    clock = clock or utcnow
    store = store if store is not None else InMemoryContextGraphStore(events=events, clock=clock)

    if context_index_builder is None and hasattr(store, "get_branch"):
        context_index_builder = _store_context_index_builder(store, settings.CONTEXT_INDEX_MAX_TOKENS)
    if topic_provider is None:
        topic_provider = getattr(store, "list_topics", None)

    logger.info(
        "Context graph engine created",
        extra={"event_type": "engine_created", "telemetry_backends": list(settings.TELEMETRY_BACKENDS)},
    )

    return ContextGraphEngine(
        drift=DriftDetector(store, events),
        collision=CollisionDetector(store, events),
        decay=DecayEngine(store, events, clock=clock),
        convergence=ConvergenceDetector(store, events),
        provenance=ProvenanceTracker(store),
        events=events,
        context_index_builder=context_index_builder,
        topic_provider=topic_provider,
    )
