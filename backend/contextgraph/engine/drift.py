from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, List, Mapping, Optional, Protocol, Union

from pydantic import BaseModel, Field, ValidationError

from contextgraph.graph.models import utcnow
from contextgraph.telemetry.models import EngineEventType
from .events import CorruptionDetectedEvent, EngineEvent, EngineEventBus
from .exceptions import InvalidTypeMapError

logger = logging.getLogger(__name__)


class DriftSeverity(str, Enum):
    CORRUPTION = "CORRUPTION"
    BREAKING = "BREAKING"
    DEPRECATION = "DEPRECATION"
    ADDITIVE = "ADDITIVE"
    SILENT = "SILENT"


class RemediationPolicy(str, Enum):
    AUTO_SYNC = "AUTO_SYNC"
    REGROUND = "REGROUND"
    PAUSE_NOTIFY = "PAUSE_NOTIFY"
    ROLLBACK = "ROLLBACK"


POLICY_BY_SEVERITY = {
    DriftSeverity.CORRUPTION: RemediationPolicy.ROLLBACK,
    DriftSeverity.BREAKING: RemediationPolicy.PAUSE_NOTIFY,
    DriftSeverity.DEPRECATION: RemediationPolicy.REGROUND,
    DriftSeverity.ADDITIVE: RemediationPolicy.AUTO_SYNC,
    DriftSeverity.SILENT: RemediationPolicy.AUTO_SYNC,
}


class TypeMap(BaseModel):
    """Introspected operation set of an external schema."""

    hash: str
    operations: List[str] = Field(default_factory=list)
    added: List[str] = Field(default_factory=list)
    removed: List[str] = Field(default_factory=list)
    deprecated: List[str] = Field(default_factory=list)
    corruption: bool = False


@dataclass
class DriftEvent:
    endpoint_id: str
    severity: DriftSeverity
    affected_operations: List[str]
    remediation_policy: RemediationPolicy
    detected_at: datetime = field(default_factory=utcnow)


@dataclass
class RemediationResult:
    action: RemediationPolicy
    requires_human: bool
    message: str


class DriftDataSource(Protocol):
    async def load_type_map(self, endpoint_id: str) -> Mapping[str, Any]: ...

    # Optional: async def update_endpoint(self, endpoint_id: str, severity: DriftSeverity) -> None


class DriftDetector:
    """Classifies schema drift of an external oracle and maps it to a remediation policy."""

    def __init__(self, data_source: DriftDataSource, events: Optional[EngineEventBus] = None) -> None:
        self._data_source = data_source
        self._events = events

    async def detect(self, endpoint_id: str) -> DriftEvent:
        raw = await self._data_source.load_type_map(endpoint_id)
        before = self._coerce(endpoint_id, raw["before"])
        after = self._coerce(endpoint_id, raw["after"])

        severity = self.classify(before, after)
        update_endpoint = getattr(self._data_source, "update_endpoint", None)
        if update_endpoint is not None:
            await update_endpoint(endpoint_id, severity)

        event = DriftEvent(
            endpoint_id=endpoint_id,
            severity=severity,
            affected_operations=self.affected_operations(before, after),
            remediation_policy=POLICY_BY_SEVERITY[severity],
        )
        logger.info(
            "Schema drift classified as %s",
            severity.value,
            extra={"endpoint_id": endpoint_id, "severity": severity.value},
        )

        if self._events is not None:
            await self._events.emit(
                EngineEvent(
                    type=EngineEventType.DRIFT_DETECT,
                    payload={
                        "endpointId": endpoint_id,
                        "severity": severity.value,
                        "affectedOperationCount": len(event.affected_operations),
                    },
                )
            )
        return event

    @staticmethod
    def classify(before: TypeMap, after: TypeMap) -> DriftSeverity:
        if after.corruption:
            return DriftSeverity.CORRUPTION
        if after.removed:
            return DriftSeverity.BREAKING
        if after.deprecated:
            return DriftSeverity.DEPRECATION
        if after.added:
            return DriftSeverity.ADDITIVE
        # Covers both a bare hash change and no change at all.
        return DriftSeverity.SILENT

    async def remediate(self, event: DriftEvent) -> RemediationResult:
        if event.severity == DriftSeverity.CORRUPTION:
            if self._events is not None:
                self._events.emit_human_required(
                    CorruptionDetectedEvent(
                        endpoint_id=event.endpoint_id,
                        detail="Type map corruption detected",
                    )
                )
            return RemediationResult(
                action=RemediationPolicy.ROLLBACK,
                requires_human=True,
                message="Corruption detected; blocking until human review.",
            )

        # BREAKING pauses through the caller reading the policy, not by blocking here.
        action = event.remediation_policy
        return RemediationResult(
            action=action,
            requires_human=False,
            message=f"Applied remediation policy {action.value}.",
        )

    @staticmethod
    def affected_operations(before: TypeMap, after: TypeMap) -> List[str]:
        changed = after.operations if before.hash != after.hash else []
        ordered = [*after.removed, *after.added, *after.deprecated, *changed]
        return list(dict.fromkeys(ordered))

    @staticmethod
    def _coerce(endpoint_id: str, value: Union[TypeMap, Mapping[str, Any]]) -> TypeMap:
        if isinstance(value, TypeMap):
            return value
        try:
            return TypeMap.model_validate(value)
        except ValidationError as exc:
            raise InvalidTypeMapError(endpoint_id, exc.errors()) from exc
