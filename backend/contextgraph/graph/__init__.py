from .models import (
    Branch,
    BranchStatus,
    CommitAuthor,
    KnowledgeNode,
    MemoryCommit,
    NodeMetadata,
    ProvenanceEntry,
    SchemaEndpoint,
    parse_timestamp,
    utcnow,
)

__all__ = [
    "Branch",
    "BranchStatus",
    "CommitAuthor",
    "KnowledgeNode",
    "MemoryCommit",
    "NodeMetadata",
    "ProvenanceEntry",
    "SchemaEndpoint",
    "parse_timestamp",
    "utcnow",
]
