from .engine_builder import create_context_graph_engine

__all__ = ["create_context_graph_engine"]
