from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, List, Mapping, Optional, Protocol, Sequence, Union

from contextgraph.graph.models import ProvenanceEntry


@dataclass
class VerificationResult:
    ok: bool
    missing: List[str] = field(default_factory=list)


@dataclass
class EpistemicState:
    """Commits visible on a branch at a given instant."""

    branch_name: str
    at: datetime
    commit_hashes: List[str] = field(default_factory=list)


class ProvenanceDataSource(Protocol):
    async def get_chain(self, node_id: str) -> Sequence[ProvenanceEntry]: ...

    async def get_commit(self, commit_hash: str) -> Optional[ProvenanceEntry]: ...

    async def list_commits_before(self, branch_name: str, at: datetime) -> Sequence[str]: ...


class ProvenanceTracker:
    def __init__(self, data_source: ProvenanceDataSource) -> None:
        self._data_source = data_source

    async def chain(self, node_id: str) -> List[ProvenanceEntry]:
        return [self._coerce(entry) for entry in await self._data_source.get_chain(node_id)]

    async def verify(self, commit_hash: str) -> VerificationResult:
        """Check a commit and its immediate parent exist (one hop, not a full walk)."""
        commit = await self._data_source.get_commit(commit_hash)
        if commit is None:
            return VerificationResult(ok=False, missing=[commit_hash])

        commit = self._coerce(commit)
        missing: List[str] = []
        if commit.parent_hash:
            parent = await self._data_source.get_commit(commit.parent_hash)
            if parent is None:
                missing.append(commit.parent_hash)

        return VerificationResult(ok=not missing, missing=missing)

    async def replay(self, branch_name: str, at: datetime) -> EpistemicState:
        commit_hashes = await self._data_source.list_commits_before(branch_name, at)
        return EpistemicState(branch_name=branch_name, at=at, commit_hashes=list(commit_hashes))

    @staticmethod
    def _coerce(value: Union[ProvenanceEntry, Mapping[str, Any]]) -> ProvenanceEntry:
        if isinstance(value, ProvenanceEntry):
            return value
        return ProvenanceEntry.from_dict(value)
