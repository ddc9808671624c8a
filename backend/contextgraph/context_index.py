"""
Context index pushed to an agent when it resumes a session.

The index is a compact JSON summary of the agent's branch: head commit,
schema endpoints and their drift status, known topics and node count. It
is trimmed to a token budget before it leaves the engine.
"""

from __future__ import annotations

import math
from typing import List, Optional, Protocol, Sequence

from pydantic import BaseModel, Field

from contextgraph.graph.models import Branch, KnowledgeNode, SchemaEndpoint

DEFAULT_MAX_TOKENS = 200
DRIFT_WARNING_STATUSES = {"BREAKING", "CORRUPTION"}
SHORT_HASH_LENGTH = 8


class EndpointSummary(BaseModel):
    name: str
    drift_status: Optional[str] = None
    hash: str


class ContextIndexPayload(BaseModel):
    agent_id: str
    branch: str
    head_hash: str
    endpoints: List[EndpointSummary] = Field(default_factory=list)
    topics: List[str] = Field(default_factory=list)
    knowledge_count: int = 0
    drift_warning: bool = False


class ContextIndexSource(Protocol):
    async def get_branch(self, name: str) -> Optional[Branch]: ...

    async def list_endpoints(self) -> Sequence[SchemaEndpoint]: ...

    async def list_nodes(self, branch_name: str) -> Sequence[KnowledgeNode]: ...


def estimate_tokens(text: str) -> int:
    """Rough token estimate: one token per four characters."""
    return math.ceil(len(text) / 4)


async def build_context_index_payload(
    source: ContextIndexSource,
    agent_id: str,
    branch_name: str,
) -> ContextIndexPayload:
    branch = await source.get_branch(branch_name)
    endpoints = await source.list_endpoints()
    nodes = await source.list_nodes(branch_name)

    return ContextIndexPayload(
        agent_id=agent_id,
        branch=branch_name,
        head_hash=branch.head_hash[:SHORT_HASH_LENGTH] if branch and branch.head_hash else "genesis",
        endpoints=[
            EndpointSummary(
                name=endpoint.name,
                drift_status=endpoint.drift_status,
                hash=(endpoint.current_hash or "unknown")[:SHORT_HASH_LENGTH],
            )
            for endpoint in endpoints
        ],
        topics=sorted({node.topic for node in nodes}),
        knowledge_count=len(nodes),
        drift_warning=any(endpoint.drift_status in DRIFT_WARNING_STATUSES for endpoint in endpoints),
    )


def serialize_context_index(payload: ContextIndexPayload, max_tokens: int = DEFAULT_MAX_TOKENS) -> str:
    serialized = payload.model_dump_json()
    if estimate_tokens(serialized) <= max_tokens:
        return serialized

    topics = list(payload.topics)
    endpoints = list(payload.endpoints)

    def render() -> str:
        return payload.model_copy(update={"topics": topics, "endpoints": endpoints}).model_dump_json()

    while topics and estimate_tokens(serialized) > max_tokens:
        topics.pop()
        serialized = render()

    while endpoints and estimate_tokens(serialized) > max_tokens:
        endpoints.pop()
        serialized = render()

    if estimate_tokens(serialized) > max_tokens:
        return payload.model_copy(update={"topics": [], "endpoints": []}).model_dump_json()
    return serialized
