from __future__ import annotations

import inspect
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional, Sequence, Union

from pydantic import BaseModel

from contextgraph.context_index import estimate_tokens
from contextgraph.telemetry.models import EngineEventType
from .collision import CollisionDetector, ResolutionResult
from .convergence import ConvergenceDetector, meets_promotion_threshold
from .decay import DecayEngine
from .drift import DriftDetector, RemediationResult
from .events import EngineEvent, EngineEventBus
from .provenance import ProvenanceTracker

logger = logging.getLogger(__name__)

ContextIndexBuilder = Callable[[str, str], Union[Any, Awaitable[Any]]]
TopicProvider = Callable[[str], Union[Sequence[str], Awaitable[Sequence[str]]]]


class MergeStatus(str, Enum):
    MERGED = "MERGED"
    BLOCKED = "BLOCKED"


@dataclass
class MergeResult:
    status: MergeStatus
    requires_human: bool
    resolutions: List[ResolutionResult] = field(default_factory=list)


@dataclass
class MaintenanceReport:
    branch_name: str
    decay_scanned: int
    tombstoned: int
    convergence_promotions: int


async def _default_context_index_builder(agent_id: str, branch: str) -> Any:
    return {"agent_id": agent_id, "branch": branch}


async def _no_topics(branch_name: str) -> Sequence[str]:
    return []


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class ContextGraphEngine:
    """Composes the detectors and the event bus into the engine's entry points."""

    def __init__(
        self,
        *,
        drift: DriftDetector,
        collision: CollisionDetector,
        decay: DecayEngine,
        convergence: ConvergenceDetector,
        provenance: ProvenanceTracker,
        events: EngineEventBus,
        context_index_builder: Optional[ContextIndexBuilder] = None,
        topic_provider: Optional[TopicProvider] = None,
    ) -> None:
        self._drift = drift
        self._collision = collision
        self._decay = decay
        self._convergence = convergence
        self._provenance = provenance
        self._events = events
        self._context_index_builder = context_index_builder or _default_context_index_builder
        self._topic_provider = topic_provider or _no_topics

    @property
    def events(self) -> EngineEventBus:
        return self._events

    @property
    def provenance(self) -> ProvenanceTracker:
        return self._provenance

    @property
    def drift(self) -> DriftDetector:
        return self._drift

    @property
    def collision(self) -> CollisionDetector:
        return self._collision

    @property
    def decay(self) -> DecayEngine:
        return self._decay

    @property
    def convergence(self) -> ConvergenceDetector:
        return self._convergence

    async def on_schema_change(self, endpoint_id: str) -> RemediationResult:
        event = await self._drift.detect(endpoint_id)
        return await self._drift.remediate(event)

    async def on_merge_attempt(self, source: str, target: str) -> MergeResult:
        collisions = await self._collision.detect(source, target)
        resolutions: List[ResolutionResult] = []
        requires_human = False

        for collision in collisions:
            resolution = await self._collision.resolve(collision)
            resolutions.append(resolution)
            # Any single escalation blocks the whole merge.
            requires_human = requires_human or resolution.requires_human

        result = MergeResult(
            status=MergeStatus.BLOCKED if requires_human else MergeStatus.MERGED,
            requires_human=requires_human,
            resolutions=resolutions,
        )
        logger.info(
            "Merge attempt %s -> %s: %s (%d collision(s))",
            source,
            target,
            result.status.value,
            len(resolutions),
            extra={"branch_name": target},
        )
        return result

    async def run_maintenance(self, branch_name: str) -> MaintenanceReport:
        decay_report = await self._decay.scan(branch_name)
        topics = await _maybe_await(self._topic_provider(branch_name))

        promotions = 0
        for topic in topics:
            candidates = await self._convergence.scan(topic)
            if not candidates:
                continue
            best = max(candidates, key=lambda candidate: candidate.score.combined)
            if meets_promotion_threshold(best.score):
                await self._convergence.promote([best.node_a, best.node_b])
                promotions += 1

        return MaintenanceReport(
            branch_name=branch_name,
            decay_scanned=decay_report.scanned,
            tombstoned=decay_report.tombstoned,
            convergence_promotions=promotions,
        )

    async def build_context_index(self, agent_id: str, branch: str) -> str:
        payload = await _maybe_await(self._context_index_builder(agent_id, branch))
        if isinstance(payload, str):
            index = payload
        elif isinstance(payload, BaseModel):
            index = payload.model_dump_json()
        else:
            index = json.dumps(payload, default=str)

        await self._events.emit(
            EngineEvent(
                type=EngineEventType.SESSION_RESUME,
                agent_id=agent_id,
                branch_name=branch,
                payload={"tokenCount": estimate_tokens(index)},
            )
        )
        return index
