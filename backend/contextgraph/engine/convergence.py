from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, List, Mapping, Optional, Protocol, Sequence, Union

from contextgraph.graph.models import KnowledgeNode
from contextgraph.telemetry.models import EngineEventType
from .events import EngineEvent, EngineEventBus
from .exceptions import ConvergenceThresholdError, InsufficientNodesError

logger = logging.getLogger(__name__)

PROMOTION_THRESHOLD = 0.85
MIN_INDEPENDENCE = 0.5
INDEPENDENT_SCORE = 1.0
DEPENDENT_SCORE = 0.2

STRUCTURAL_WEIGHT = 0.4
EVIDENTIAL_WEIGHT = 0.3
TEMPORAL_WEIGHT = 0.3


@dataclass(frozen=True)
class ConvergenceScore:
    structural: float
    evidential: float
    # Independence of the two sources, not elapsed time.
    temporal: float
    combined: float


@dataclass(frozen=True)
class ConvergenceCandidate:
    node_a: KnowledgeNode
    node_b: KnowledgeNode
    score: ConvergenceScore


@dataclass(frozen=True)
class CanonicalNode:
    topic: str
    claim: str
    version_hash: str
    sources: List[str] = field(default_factory=list)
    id: Optional[str] = None


class ConvergenceDataSource(Protocol):
    async def list_nodes_by_topic(self, topic: str) -> Sequence[KnowledgeNode]: ...

    # Optional: async def promote_canonical(self, nodes: List[KnowledgeNode]) -> CanonicalNode


def meets_promotion_threshold(score: ConvergenceScore) -> bool:
    return score.combined > PROMOTION_THRESHOLD and score.temporal >= MIN_INDEPENDENCE


class ConvergenceDetector:
    """Finds independently sourced nodes that agree and promotes them to a canonical node."""

    def __init__(self, data_source: ConvergenceDataSource, events: Optional[EngineEventBus] = None) -> None:
        self._data_source = data_source
        self._events = events

    async def scan(self, topic: str) -> List[ConvergenceCandidate]:
        nodes = list(await self._data_source.list_nodes_by_topic(topic))
        candidates: List[ConvergenceCandidate] = []
        for i in range(len(nodes)):
            for j in range(i + 1, len(nodes)):
                candidates.append(
                    ConvergenceCandidate(
                        node_a=nodes[i],
                        node_b=nodes[j],
                        score=self.compute_score(nodes[i], nodes[j]),
                    )
                )
        return candidates

    async def promote(self, nodes: Sequence[KnowledgeNode]) -> CanonicalNode:
        nodes = list(nodes)
        if len(nodes) < 2:
            raise InsufficientNodesError(len(nodes))

        # Only the first pair is checked, not every pair in the group.
        score = self.compute_score(nodes[0], nodes[1])
        if not meets_promotion_threshold(score):
            raise ConvergenceThresholdError(score.combined, score.temporal)

        promote_canonical = getattr(self._data_source, "promote_canonical", None)
        if promote_canonical is not None:
            canonical = self._coerce(await promote_canonical(nodes))
        else:
            canonical = CanonicalNode(
                topic=nodes[0].topic,
                claim=nodes[0].claim,
                version_hash=nodes[0].version_hash,
                sources=[node.id for node in nodes],
            )

        contributing_agents = list(dict.fromkeys(node.metadata.agent_id or "unknown" for node in nodes))
        logger.info(
            "Promoted %d node(s) to canonical",
            len(nodes),
            extra={"topic": canonical.topic},
        )

        if self._events is not None:
            await self._events.emit(
                EngineEvent(
                    type=EngineEventType.CONVERGENCE_PROMOTE,
                    payload={
                        "topic": nodes[0].topic,
                        "contributingAgents": ",".join(contributing_agents),
                        "convergenceScore": score.combined,
                    },
                )
            )
        return canonical

    @staticmethod
    def compute_score(node_a: KnowledgeNode, node_b: KnowledgeNode) -> ConvergenceScore:
        structural = 1.0 if node_a.topic == node_b.topic else 0.0

        evidence_a = set(node_a.metadata.evidence_refs)
        evidence_b = set(node_b.metadata.evidence_refs)
        overlap = len(evidence_a & evidence_b)
        overlap_score = min(1.0, overlap / max(len(evidence_a), len(evidence_b), 1))
        claim_equality = 1.0 if node_a.claim == node_b.claim else 0.0
        evidential = max(overlap_score, claim_equality)

        agent_a = node_a.metadata.agent_id
        agent_b = node_b.metadata.agent_id
        independent = bool(agent_a) and bool(agent_b) and agent_a != agent_b and overlap == 0
        temporal = INDEPENDENT_SCORE if independent else DEPENDENT_SCORE

        combined = round(
            STRUCTURAL_WEIGHT * structural + EVIDENTIAL_WEIGHT * evidential + TEMPORAL_WEIGHT * temporal,
            4,
        )
        return ConvergenceScore(
            structural=structural,
            evidential=evidential,
            temporal=temporal,
            combined=combined,
        )

    @staticmethod
    def _coerce(value: Union[CanonicalNode, Mapping[str, Any]]) -> CanonicalNode:
        if isinstance(value, CanonicalNode):
            return value
        return CanonicalNode(
            topic=value["topic"],
            claim=value["claim"],
            version_hash=value.get("version_hash") or value["versionHash"],
            sources=list(value.get("sources") or []),
            id=value.get("id"),
        )
