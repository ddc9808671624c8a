from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional, Protocol, Sequence, Set

from contextgraph.graph.models import KnowledgeNode, SchemaEndpoint, parse_timestamp, utcnow
from contextgraph.telemetry.models import EngineEventType
from .events import EngineEvent, EngineEventBus

logger = logging.getLogger(__name__)

TOMBSTONE_THRESHOLD = 0.95
TEMPORAL_HORIZON_DAYS = 30
DEFAULT_CONFIDENCE = 0.5
UNCORROBORATED_STRUCTURAL_DECAY = 1.0
CORROBORATED_STRUCTURAL_DECAY = 0.3

TEMPORAL_WEIGHT = 0.4
STRUCTURAL_WEIGHT = 0.3
EMPIRICAL_WEIGHT = 0.3

_SECONDS_PER_DAY = 86400


@dataclass(frozen=True)
class DecayScore:
    temporal: float
    structural: float
    empirical: float
    combined: float
    tombstone: bool


@dataclass(frozen=True)
class NodeDecay:
    node_id: str
    score: DecayScore


@dataclass
class DecayReport:
    branch_name: str
    scanned: int
    tombstoned: int
    scores: List[NodeDecay] = field(default_factory=list)


class DecayDataSource(Protocol):
    async def list_nodes(self, branch_name: str) -> Sequence[KnowledgeNode]: ...

    async def list_endpoints(self) -> Sequence[SchemaEndpoint]: ...

    async def mark_tombstone(self, node_id: str) -> None: ...


class DecayEngine:
    """Scores knowledge staleness over time, structure and confidence."""

    def __init__(
        self,
        data_source: DecayDataSource,
        events: Optional[EngineEventBus] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._data_source = data_source
        self._events = events
        self._clock = clock

    def compute_score(
        self,
        node: KnowledgeNode,
        endpoint: Optional[SchemaEndpoint] = None,
        now: Optional[datetime] = None,
    ) -> DecayScore:
        # ``endpoint`` is the schema context the node is scored against; the
        # current weights do not read it.
        now = parse_timestamp(now or self._clock())
        metadata = node.metadata

        last_verified = parse_timestamp(metadata.last_verified_at)
        if last_verified is None:
            temporal = 1.0
        else:
            age_days = max(0.0, (now - last_verified).total_seconds() / _SECONDS_PER_DAY)
            temporal = min(1.0, age_days / TEMPORAL_HORIZON_DAYS)

        structural = (
            UNCORROBORATED_STRUCTURAL_DECAY if len(node.isomorphisms) == 0 else CORROBORATED_STRUCTURAL_DECAY
        )

        confidence = metadata.confidence if metadata.confidence is not None else DEFAULT_CONFIDENCE
        empirical = 1.0 - min(1.0, max(0.0, confidence))

        combined = round(
            TEMPORAL_WEIGHT * temporal + STRUCTURAL_WEIGHT * structural + EMPIRICAL_WEIGHT * empirical,
            4,
        )
        return DecayScore(
            temporal=temporal,
            structural=structural,
            empirical=empirical,
            combined=combined,
            tombstone=combined >= TOMBSTONE_THRESHOLD,
        )

    async def scan(self, branch_name: str) -> DecayReport:
        nodes = await self._data_source.list_nodes(branch_name)
        endpoints = await self._data_source.list_endpoints()
        # Only the first endpoint is used as context, whichever schema produced the node.
        endpoint = endpoints[0] if endpoints else SchemaEndpoint(id="unknown", name="unknown", uri="")

        now = self._clock()
        seen: Set[str] = set()
        scores: List[NodeDecay] = []
        tombstoned = 0

        for node in nodes:
            if node.id in seen:
                continue
            seen.add(node.id)

            score = self.compute_score(node, endpoint, now=now)
            scores.append(NodeDecay(node_id=node.id, score=score))
            if score.tombstone and not node.tombstoned:
                await self.tombstone(node.id)
                tombstoned += 1

        report = DecayReport(
            branch_name=branch_name,
            scanned=len(scores),
            tombstoned=tombstoned,
            scores=scores,
        )
        logger.info(
            "Decay scan scanned %d node(s), tombstoned %d",
            report.scanned,
            report.tombstoned,
            extra={"branch_name": branch_name},
        )

        if self._events is not None:
            await self._events.emit(
                EngineEvent(
                    type=EngineEventType.DECAY_SCAN,
                    branch_name=branch_name,
                    payload={
                        "nodesScanned": report.scanned,
                        "nodesTombstoned": report.tombstoned,
                    },
                )
            )
        return report

    async def tombstone(self, node_id: str) -> None:
        await self._data_source.mark_tombstone(node_id)
        logger.info("Node tombstoned", extra={"node_id": node_id})
