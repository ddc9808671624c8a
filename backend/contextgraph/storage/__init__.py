from .memory_store import InMemoryContextGraphStore, sha256_hex

__all__ = ["InMemoryContextGraphStore", "sha256_hex"]
