from __future__ import annotations

import hashlib
import json
from dataclasses import replace
from datetime import datetime
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Set, Tuple, Union
from uuid import uuid4

from contextgraph.core.logging_config import LoggerMixin
from contextgraph.engine.collision import Collision
from contextgraph.engine.convergence import CanonicalNode
from contextgraph.engine.drift import DriftSeverity, TypeMap
from contextgraph.engine.events import EngineEvent, EngineEventBus
from contextgraph.engine.exceptions import StoreError
from contextgraph.graph.models import (
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
from contextgraph.telemetry.models import EngineEventType


def sha256_hex(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


class InMemoryContextGraphStore(LoggerMixin):
    """Process-local implementation of every engine data source.

    Commits and nodes are append-only. Tombstones live in a side set and the
    node records themselves are never edited. Branch heads are the only
    pointers that move, and they always reference a stored commit.
    Callers receive copies of branches, so only the store moves a head.
    """

    def __init__(
        self,
        events: Optional[EngineEventBus] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._events = events
        self._clock = clock
        self._branches: Dict[str, Branch] = {}
        self._commits: Dict[str, MemoryCommit] = {}
        self._nodes: Dict[str, KnowledgeNode] = {}
        self._tombstones: Set[str] = set()
        self._endpoints: Dict[str, SchemaEndpoint] = {}
        self._type_maps: Dict[str, Dict[str, TypeMap]] = {}
        self._collisions: Dict[Tuple[str, str], List[Collision]] = {}
        self._canonical: Dict[FrozenSet[str], CanonicalNode] = {}

    # Branches

    async def create_branch(
        self,
        name: str,
        agent_id: str,
        parent_branch: Optional[str] = None,
    ) -> Branch:
        if name in self._branches:
            raise StoreError(f"Branch '{name}' already exists", branch_name=name)

        now = self._clock()
        if parent_branch is not None:
            head_hash = self._require_branch(parent_branch).head_hash
        else:
            genesis = MemoryCommit(
                hash=sha256_hex(f"genesis:{name}:{now.isoformat()}"),
                branch_name=name,
                author=CommitAuthor.SYSTEM,
                message=f"Create branch {name}",
                schema_hash=self._current_schema_hash(),
                snapshot={"genesis": True},
                created_at=now,
            )
            self._add_commit(genesis)
            head_hash = genesis.hash

        branch = Branch(
            name=name,
            head_hash=head_hash,
            agent_id=agent_id,
            parent_branch=parent_branch,
            created_at=now,
            updated_at=now,
        )
        self._branches[name] = branch
        self.log_info("Branch created", branch_name=name, agent_id=agent_id)
        return replace(branch)

    async def get_branch(self, name: str) -> Optional[Branch]:
        branch = self._branches.get(name)
        return replace(branch) if branch is not None else None

    async def list_branches(self) -> List[Branch]:
        return [replace(branch) for branch in self._branches.values()]

    def set_branch_status(self, name: str, status: Union[BranchStatus, str]) -> Branch:
        branch = self._require_branch(name)
        branch.status = BranchStatus(status)
        branch.updated_at = self._clock()
        return replace(branch)

    # Knowledge

    async def commit_knowledge(
        self,
        branch_name: str,
        agent_id: str,
        topic: str,
        claim: str,
        commit_message: str = "",
        evidence_refs: Iterable[str] = (),
        confidence: Optional[float] = None,
        task_contract_ref: Optional[str] = None,
        isomorphisms: Sequence[Any] = (),
        parent_hash: Optional[str] = None,
        last_verified_at: Optional[Union[datetime, str]] = None,
    ) -> KnowledgeNode:
        branch = self._require_branch(branch_name)
        now = self._clock()

        metadata = NodeMetadata(
            agent_id=agent_id,
            evidence_refs=frozenset(evidence_refs),
            confidence=confidence,
            last_verified_at=parse_timestamp(last_verified_at) or now,
            task_contract_ref=task_contract_ref,
            commit_message=commit_message,
        )
        node, commit = self._append_node(
            branch=branch,
            author=CommitAuthor.AGENT,
            topic=topic,
            claim=claim,
            message=commit_message,
            metadata=metadata,
            parent_hash=parent_hash,
            isomorphisms=tuple(isomorphisms),
            now=now,
        )
        self.log_info("Knowledge committed", branch_name=branch_name, agent_id=agent_id, node_id=node.id)

        if self._events is not None:
            await self._events.emit(
                EngineEvent(
                    type=EngineEventType.COMMIT_KNOWLEDGE,
                    agent_id=agent_id,
                    branch_name=branch_name,
                    payload={"nodeId": node.id, "commitHash": commit.hash, "topic": topic},
                )
            )
        return node

    async def get_node(self, node_id: str) -> Optional[KnowledgeNode]:
        node = self._nodes.get(node_id)
        if node is None:
            return None
        return replace(node, tombstoned=node_id in self._tombstones)

    async def list_nodes(self, branch_name: str) -> List[KnowledgeNode]:
        visible = set(self._ancestry(self._require_branch(branch_name).head_hash))
        return [
            node
            for node in self._nodes.values()
            if node.commit_hash in visible and node.id not in self._tombstones
        ]

    async def list_nodes_by_topic(self, topic: str) -> List[KnowledgeNode]:
        return [node for node in self._nodes.values() if node.topic == topic and node.id not in self._tombstones]

    async def list_topics(self, branch_name: str) -> List[str]:
        return sorted({node.topic for node in await self.list_nodes(branch_name)})

    async def mark_tombstone(self, node_id: str) -> None:
        if node_id not in self._nodes:
            raise StoreError(f"Unknown node '{node_id}'", node_id=node_id)
        self._tombstones.add(node_id)

    async def promote_canonical(self, nodes: Sequence[KnowledgeNode]) -> CanonicalNode:
        sources = [node.id for node in nodes]
        key = frozenset(sources)
        existing = self._canonical.get(key)
        if existing is not None:
            return existing

        first = nodes[0]
        commit = self._commits.get(first.commit_hash)
        if commit is None:
            raise StoreError(f"Unknown commit '{first.commit_hash}'", commit_hash=first.commit_hash)
        branch = self._require_branch(commit.branch_name)
        evidence: Set[str] = set()
        for node in nodes:
            evidence.update(node.metadata.evidence_refs)

        # No agent id: a canonical node never counts as an independent source.
        metadata = NodeMetadata(
            evidence_refs=frozenset(evidence),
            confidence=1.0,
            last_verified_at=self._clock(),
            commit_message=f"Converged {len(sources)} node(s)",
        )
        node, _ = self._append_node(
            branch=branch,
            author=CommitAuthor.SYSTEM,
            topic=first.topic,
            claim=first.claim,
            message=metadata.commit_message,
            metadata=metadata,
            parent_hash=None,
            isomorphisms=tuple(sources),
            now=self._clock(),
            convergence_of=sources,
        )
        canonical = CanonicalNode(
            topic=node.topic,
            claim=node.claim,
            version_hash=node.version_hash,
            sources=sources,
            id=node.id,
        )
        self._canonical[key] = canonical
        self.log_info("Canonical node created", topic=node.topic, node_id=node.id)
        return canonical

    # Schema endpoints

    def register_endpoint(
        self,
        endpoint_id: str,
        name: str,
        uri: str,
        current_hash: Optional[str] = None,
    ) -> SchemaEndpoint:
        if endpoint_id in self._endpoints:
            raise StoreError(f"Endpoint '{endpoint_id}' already registered", endpoint_id=endpoint_id)
        endpoint = SchemaEndpoint(id=endpoint_id, name=name, uri=uri, current_hash=current_hash)
        self._endpoints[endpoint_id] = endpoint
        return endpoint

    def record_type_maps(
        self,
        endpoint_id: str,
        before: Union[TypeMap, Mapping[str, Any]],
        after: Union[TypeMap, Mapping[str, Any]],
    ) -> None:
        self._require_endpoint(endpoint_id)
        self._type_maps[endpoint_id] = {
            "before": before if isinstance(before, TypeMap) else TypeMap.model_validate(before),
            "after": after if isinstance(after, TypeMap) else TypeMap.model_validate(after),
        }

    async def list_endpoints(self) -> List[SchemaEndpoint]:
        return list(self._endpoints.values())

    async def load_type_map(self, endpoint_id: str) -> Dict[str, TypeMap]:
        self._require_endpoint(endpoint_id)
        type_maps = self._type_maps.get(endpoint_id)
        if type_maps is None:
            raise StoreError(f"No type maps recorded for endpoint '{endpoint_id}'", endpoint_id=endpoint_id)
        return dict(type_maps)

    async def update_endpoint(self, endpoint_id: str, severity: DriftSeverity) -> None:
        endpoint = self._require_endpoint(endpoint_id)
        after = self._type_maps[endpoint_id]["after"]
        endpoint.previous_hash = endpoint.current_hash
        endpoint.current_hash = after.hash
        endpoint.drift_status = DriftSeverity(severity).value
        endpoint.type_map_snapshot = after.model_dump()
        endpoint.last_introspected_at = self._clock()

    # Collisions

    def add_collision(
        self,
        branch_a: str,
        branch_b: str,
        collision: Union[Collision, Mapping[str, Any]],
    ) -> Collision:
        if not isinstance(collision, Collision):
            collision = Collision.model_validate(collision)
        self._collisions.setdefault((branch_a, branch_b), []).append(collision)
        return collision

    async def list_collisions(self, branch_a: str, branch_b: str) -> List[Collision]:
        return list(self._collisions.get((branch_a, branch_b), ()))

    # Provenance

    async def get_commit(self, commit_hash: str) -> Optional[ProvenanceEntry]:
        commit = self._commits.get(commit_hash)
        return self._entry(commit) if commit is not None else None

    async def get_chain(self, node_id: str) -> List[ProvenanceEntry]:
        node = self._nodes.get(node_id)
        if node is None:
            return []
        chain = [self._entry(self._commits[commit_hash]) for commit_hash in self._ancestry(node.commit_hash)]
        chain.reverse()
        return chain

    async def list_commits_before(self, branch_name: str, at: datetime) -> List[str]:
        at = parse_timestamp(at)
        return [
            commit.hash
            for commit in self._commits.values()
            if commit.branch_name == branch_name and commit.created_at <= at
        ]

    # Internals

    def _append_node(
        self,
        *,
        branch: Branch,
        author: CommitAuthor,
        topic: str,
        claim: str,
        message: str,
        metadata: NodeMetadata,
        parent_hash: Optional[str],
        isomorphisms: tuple,
        now: datetime,
        convergence_of: Sequence[str] = (),
    ) -> Tuple[KnowledgeNode, MemoryCommit]:
        version_hash = sha256_hex(claim + topic)
        node_payload = {
            "topic": topic,
            "claim": claim,
            "version_hash": version_hash,
            "parent_hash": parent_hash,
            "isomorphisms": list(isomorphisms),
            "agent_id": metadata.agent_id,
            "head": branch.head_hash,
        }
        commit_hash = sha256_hex(
            json.dumps(node_payload, sort_keys=True, default=str) + branch.name + now.isoformat()
        )

        node = KnowledgeNode(
            id=str(uuid4()),
            commit_hash=commit_hash,
            topic=topic,
            claim=claim,
            version_hash=version_hash,
            parent_hash=parent_hash,
            isomorphisms=isomorphisms,
            metadata=metadata,
        )
        commit = MemoryCommit(
            hash=commit_hash,
            branch_name=branch.name,
            author=author,
            message=message,
            schema_hash=self._current_schema_hash(),
            parent_hash=branch.head_hash,
            snapshot={
                "node_id": node.id,
                "version_hash": version_hash,
                "agent_id": metadata.agent_id,
                "task_contract_ref": metadata.task_contract_ref,
                "evidence_refs": sorted(metadata.evidence_refs),
                "convergence_of": list(convergence_of),
            },
            created_at=now,
        )

        self._add_commit(commit)
        self._nodes[node.id] = node
        self._advance_head(branch, commit.hash, now)
        return node, commit

    def _add_commit(self, commit: MemoryCommit) -> None:
        if commit.hash in self._commits:
            raise StoreError(f"Duplicate commit hash '{commit.hash}'", commit_hash=commit.hash)
        self._commits[commit.hash] = commit

    def _advance_head(self, branch: Branch, commit_hash: str, now: datetime) -> None:
        if commit_hash not in self._commits:
            raise StoreError(
                f"Head of '{branch.name}' would reference missing commit '{commit_hash}'",
                branch_name=branch.name,
                commit_hash=commit_hash,
            )
        branch.head_hash = commit_hash
        branch.updated_at = now

    def _ancestry(self, commit_hash: Optional[str]) -> List[str]:
        """Commit hashes from ``commit_hash`` back to the root, newest first."""
        hashes: List[str] = []
        seen: Set[str] = set()
        while commit_hash and commit_hash in self._commits and commit_hash not in seen:
            seen.add(commit_hash)
            hashes.append(commit_hash)
            commit_hash = self._commits[commit_hash].parent_hash
        return hashes

    def _entry(self, commit: MemoryCommit) -> ProvenanceEntry:
        snapshot = commit.snapshot
        return ProvenanceEntry(
            commit_hash=commit.hash,
            schema_hash=commit.schema_hash,
            author=commit.author,
            branch_name=commit.branch_name,
            node_id=snapshot.get("node_id"),
            version_hash=snapshot.get("version_hash"),
            parent_hash=commit.parent_hash,
            agent_id=snapshot.get("agent_id"),
            task_contract_ref=snapshot.get("task_contract_ref"),
            evidence_refs=tuple(snapshot.get("evidence_refs") or ()),
            convergence_of=tuple(snapshot.get("convergence_of") or ()),
            created_at=commit.created_at,
        )

    def _current_schema_hash(self) -> str:
        for endpoint in self._endpoints.values():
            return endpoint.current_hash or "unknown"
        return "unknown"

    def _require_branch(self, name: str) -> Branch:
        branch = self._branches.get(name)
        if branch is None:
            raise StoreError(f"Unknown branch '{name}'", branch_name=name)
        return branch

    def _require_endpoint(self, endpoint_id: str) -> SchemaEndpoint:
        endpoint = self._endpoints.get(endpoint_id)
        if endpoint is None:
            raise StoreError(f"Unknown endpoint '{endpoint_id}'", endpoint_id=endpoint_id)
        return endpoint
