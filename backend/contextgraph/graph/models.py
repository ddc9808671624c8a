from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, Mapping, Optional


class CommitAuthor(str, Enum):
    HUMAN = "HUMAN"
    AGENT = "AGENT"
    SYSTEM = "SYSTEM"


class BranchStatus(str, Enum):
    ACTIVE = "ACTIVE"
    MERGED = "MERGED"
    ARCHIVED = "ARCHIVED"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Coerce a stored timestamp (datetime or ISO-8601 string) to an aware datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    else:
        raise TypeError(f"Unsupported timestamp value: {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _pick(row: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in row and row[key] is not None:
            return row[key]
    return default


@dataclass(frozen=True)
class NodeMetadata:
    agent_id: Optional[str] = None
    evidence_refs: FrozenSet[str] = frozenset()
    confidence: Optional[float] = None
    last_verified_at: Optional[datetime] = None
    task_contract_ref: Optional[str] = None
    commit_message: Optional[str] = None

    @classmethod
    def from_dict(cls, row: Optional[Mapping[str, Any]]) -> "NodeMetadata":
        row = row or {}
        confidence = _pick(row, "confidence")
        return cls(
            agent_id=_pick(row, "agent_id", "agentId", "author"),
            evidence_refs=frozenset(_pick(row, "evidence_refs", "evidenceRefs", default=()) or ()),
            confidence=float(confidence) if isinstance(confidence, (int, float)) else None,
            last_verified_at=parse_timestamp(_pick(row, "last_verified_at", "lastVerifiedAt")),
            task_contract_ref=_pick(row, "task_contract_ref", "taskContractRef"),
            commit_message=_pick(row, "commit_message", "commitMessage"),
        )


@dataclass(frozen=True)
class KnowledgeNode:
    """Append-only knowledge record. Superseded nodes are tombstoned, never edited."""

    id: str
    commit_hash: str
    topic: str
    claim: str
    version_hash: str
    parent_hash: Optional[str] = None
    isomorphisms: tuple = ()
    metadata: NodeMetadata = field(default_factory=NodeMetadata)
    # Read-side flag surfaced by storage; the engine never sets it.
    tombstoned: bool = False

    @classmethod
    def from_dict(cls, row: Mapping[str, Any]) -> "KnowledgeNode":
        metadata = row.get("metadata")
        if not isinstance(metadata, NodeMetadata):
            metadata = NodeMetadata.from_dict(metadata)
        return cls(
            id=str(row["id"]),
            commit_hash=_pick(row, "commit_hash", "commitHash"),
            topic=row["topic"],
            claim=row["claim"],
            version_hash=_pick(row, "version_hash", "versionHash"),
            parent_hash=_pick(row, "parent_hash", "parentHash"),
            isomorphisms=tuple(row.get("isomorphisms") or ()),
            metadata=metadata,
            tombstoned=bool(row.get("tombstoned", False)),
        )


@dataclass(frozen=True)
class MemoryCommit:
    """Immutable, parent-linked record of a knowledge mutation."""

    hash: str
    branch_name: str
    author: CommitAuthor
    message: str
    schema_hash: str
    parent_hash: Optional[str] = None
    snapshot: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class Branch:
    """Named pointer to a commit chain; the only mutable entity."""

    name: str
    head_hash: str
    agent_id: str
    parent_branch: Optional[str] = None
    status: BranchStatus = BranchStatus.ACTIVE
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class SchemaEndpoint:
    """External schema source. Only sync and drift metadata change after registration."""

    id: str
    name: str
    uri: str
    current_hash: Optional[str] = None
    previous_hash: Optional[str] = None
    drift_status: str = "UNKNOWN"
    type_map_snapshot: Optional[Dict[str, Any]] = None
    last_introspected_at: Optional[datetime] = None


@dataclass(frozen=True)
class ProvenanceEntry:
    commit_hash: str
    schema_hash: str
    author: CommitAuthor
    branch_name: str
    node_id: Optional[str] = None
    version_hash: Optional[str] = None
    parent_hash: Optional[str] = None
    agent_id: Optional[str] = None
    task_contract_ref: Optional[str] = None
    evidence_refs: tuple = ()
    convergence_of: tuple = ()
    created_at: Optional[datetime] = None

    @classmethod
    def from_dict(cls, row: Mapping[str, Any]) -> "ProvenanceEntry":
        return cls(
            commit_hash=_pick(row, "commit_hash", "commitHash"),
            schema_hash=_pick(row, "schema_hash", "schemaHash", default="unknown"),
            author=CommitAuthor(_pick(row, "author", default=CommitAuthor.SYSTEM.value)),
            branch_name=_pick(row, "branch_name", "branchName"),
            node_id=_pick(row, "node_id", "nodeId"),
            version_hash=_pick(row, "version_hash", "versionHash"),
            parent_hash=_pick(row, "parent_hash", "parentHash"),
            agent_id=_pick(row, "agent_id", "agentId"),
            task_contract_ref=_pick(row, "task_contract_ref", "taskContractRef"),
            evidence_refs=tuple(_pick(row, "evidence_refs", "evidenceRefs", default=()) or ()),
            convergence_of=tuple(_pick(row, "convergence_of", "convergenceOf", default=()) or ()),
            created_at=parse_timestamp(_pick(row, "created_at", "createdAt")),
        )

