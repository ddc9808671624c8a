"""
Versioned, multi-agent knowledge graph engine.

Agents commit knowledge to branches; the engine watches external schemas for
drift, classifies merge collisions, decays stale knowledge and promotes
independently corroborated claims to canonical nodes.
"""

from contextgraph.engine import ContextGraphEngine, EngineEventBus
from contextgraph.services import create_context_graph_engine
from contextgraph.storage import InMemoryContextGraphStore

__version__ = "0.1.0"

__all__ = [
    "ContextGraphEngine",
    "EngineEventBus",
    "InMemoryContextGraphStore",
    "create_context_graph_engine",
    "__version__",
]
