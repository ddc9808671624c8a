from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Mapping, Optional, Protocol, Sequence, Union, assert_never

from pydantic import BaseModel, ConfigDict, Field, field_validator

from contextgraph.telemetry.models import EngineEventType
from .events import EngineEvent, EngineEventBus, EpistemicCollisionEvent, PolicyConflictEvent
from .exceptions import UnknownCollisionKindError

logger = logging.getLogger(__name__)


class CollisionKind(str, Enum):
    ADDITIVE = "ADDITIVE"
    CONCURRENT_EDIT = "CONCURRENT_EDIT"
    SCHEMA_TEMPORAL = "SCHEMA_TEMPORAL"
    EPISTEMIC = "EPISTEMIC"
    POLICY_CONFLICT = "POLICY_CONFLICT"


class ResolutionStrategy(str, Enum):
    AUTO_MERGE = "auto_merge"
    SCHEMA_FIRST = "schema_first"
    REBASE_TO_CURRENT = "rebase_to_current"
    HUMAN_ARBITRATION = "human_arbitration"
    ESCALATE_IMMEDIATE = "escalate_immediate"


class Collision(BaseModel):
    """Conflict found between two branches. ``kind`` stays raw until classified."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    kind: str
    node_a: Optional[str] = Field(default=None, alias="nodeA")
    node_b: Optional[str] = Field(default=None, alias="nodeB")
    contradiction: Optional[str] = None
    hash_a: Optional[str] = Field(default=None, alias="hashA")
    hash_b: Optional[str] = Field(default=None, alias="hashB")
    field: Optional[str] = None

    @field_validator("kind", mode="before")
    @classmethod
    def normalise_kind(cls, v):
        return v.value if isinstance(v, Enum) else v


@dataclass(frozen=True)
class AdditiveCollision:
    kind: CollisionKind = CollisionKind.ADDITIVE


@dataclass(frozen=True)
class ConcurrentEditCollision:
    kind: CollisionKind = CollisionKind.CONCURRENT_EDIT


@dataclass(frozen=True)
class SchemaTemporalCollision:
    hash_a: str
    hash_b: str
    kind: CollisionKind = CollisionKind.SCHEMA_TEMPORAL


@dataclass(frozen=True)
class EpistemicCollision:
    node_a: str
    node_b: str
    contradiction: str
    kind: CollisionKind = CollisionKind.EPISTEMIC


@dataclass(frozen=True)
class PolicyConflictCollision:
    field: str
    kind: CollisionKind = CollisionKind.POLICY_CONFLICT


CollisionClass = Union[
    AdditiveCollision,
    ConcurrentEditCollision,
    SchemaTemporalCollision,
    EpistemicCollision,
    PolicyConflictCollision,
]


@dataclass(frozen=True)
class ResolutionResult:
    collision_id: str
    kind: CollisionKind
    strategy: ResolutionStrategy
    requires_human: bool


class CollisionDataSource(Protocol):
    async def list_collisions(self, branch_a: str, branch_b: str) -> Sequence[Any]: ...


class CollisionDetector:
    """Classifies branch conflicts and decides how each one is resolved."""

    def __init__(self, data_source: CollisionDataSource, events: Optional[EngineEventBus] = None) -> None:
        self._data_source = data_source
        self._events = events

    async def detect(self, branch_a: str, branch_b: str) -> List[Collision]:
        raw = await self._data_source.list_collisions(branch_a, branch_b)
        return [self._coerce(item) for item in raw]

    def classify(self, collision: Union[Collision, Mapping[str, Any]]) -> CollisionClass:
        collision = self._coerce(collision)
        try:
            kind = CollisionKind(collision.kind)
        except ValueError:
            raise UnknownCollisionKindError(collision.kind, collision.id) from None

        if kind is CollisionKind.ADDITIVE:
            return AdditiveCollision()
        if kind is CollisionKind.CONCURRENT_EDIT:
            return ConcurrentEditCollision()
        if kind is CollisionKind.SCHEMA_TEMPORAL:
            return SchemaTemporalCollision(
                hash_a=collision.hash_a or "unknown",
                hash_b=collision.hash_b or "unknown",
            )
        if kind is CollisionKind.EPISTEMIC:
            return EpistemicCollision(
                node_a=collision.node_a or "unknown",
                node_b=collision.node_b or "unknown",
                contradiction=collision.contradiction or "contradiction",
            )
        if kind is CollisionKind.POLICY_CONFLICT:
            return PolicyConflictCollision(field=collision.field or "unknown")
        assert_never(kind)

    async def resolve(self, collision: Union[Collision, Mapping[str, Any]]) -> ResolutionResult:
        collision = self._coerce(collision)
        classification = self.classify(collision)

        if isinstance(classification, AdditiveCollision):
            strategy, requires_human = ResolutionStrategy.AUTO_MERGE, False
        elif isinstance(classification, ConcurrentEditCollision):
            strategy, requires_human = ResolutionStrategy.SCHEMA_FIRST, False
        elif isinstance(classification, SchemaTemporalCollision):
            strategy, requires_human = ResolutionStrategy.REBASE_TO_CURRENT, False
        elif isinstance(classification, EpistemicCollision):
            strategy, requires_human = ResolutionStrategy.HUMAN_ARBITRATION, True
            self._escalate(
                EpistemicCollisionEvent(collision_id=collision.id, detail=classification.contradiction)
            )
        elif isinstance(classification, PolicyConflictCollision):
            strategy, requires_human = ResolutionStrategy.ESCALATE_IMMEDIATE, True
            self._escalate(PolicyConflictEvent(collision_id=collision.id, field=classification.field))
        else:
            assert_never(classification)

        result = ResolutionResult(
            collision_id=collision.id,
            kind=classification.kind,
            strategy=strategy,
            requires_human=requires_human,
        )
        logger.info(
            "Collision resolved with %s",
            strategy.value,
            extra={"collision_id": collision.id},
        )

        if self._events is not None:
            await self._events.emit(
                EngineEvent(
                    type=EngineEventType.COLLISION_RESOLVE,
                    payload={
                        "collisionClass": classification.kind.value,
                        "resolutionStrategy": strategy.value,
                        "humanRequired": requires_human,
                    },
                )
            )
        return result

    def _escalate(self, event) -> None:
        if self._events is not None:
            self._events.emit_human_required(event)

    @staticmethod
    def _coerce(value: Union[Collision, Mapping[str, Any]]) -> Collision:
        if isinstance(value, Collision):
            return value
        return Collision.model_validate(value)
