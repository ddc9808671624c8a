from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional


class EngineEventType(str, Enum):
    DRIFT_DETECT = "DRIFT_DETECT"
    COLLISION_RESOLVE = "COLLISION_RESOLVE"
    DECAY_SCAN = "DECAY_SCAN"
    CONVERGENCE_PROMOTE = "CONVERGENCE_PROMOTE"
    SESSION_RESUME = "SESSION_RESUME"
    COMMIT_KNOWLEDGE = "COMMIT_KNOWLEDGE"
    HUMAN_REQUIRED = "HUMAN_REQUIRED"


# payload key -> TelemetryEvent field
_PAYLOAD_FIELDS = {
    "endpointId": "endpoint_id",
    "endpoint_id": "endpoint_id",
    "severity": "severity",
    "collisionClass": "collision_class",
    "collision_class": "collision_class",
    "humanRequired": "human_required",
    "human_required": "human_required",
    "decayScore": "decay_score",
    "decay_score": "decay_score",
    "tokenCount": "token_count",
    "token_count": "token_count",
    "durationMs": "duration_ms",
    "duration_ms": "duration_ms",
    "traceId": "trace_id",
    "trace_id": "trace_id",
    "spanId": "span_id",
    "span_id": "span_id",
    "parentSpanId": "parent_span_id",
    "parent_span_id": "parent_span_id",
}


@dataclass
class TelemetryEvent:
    event_type: EngineEventType
    agent_id: str
    branch_name: str
    endpoint_id: Optional[str] = None
    severity: Optional[str] = None
    collision_class: Optional[str] = None
    human_required: Optional[bool] = None
    decay_score: Optional[float] = None
    token_count: Optional[int] = None
    duration_ms: Optional[float] = None
    trace_id: Optional[str] = None
    span_id: Optional[str] = None
    parent_span_id: Optional[str] = None
    attributes: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(
        cls,
        event_type: EngineEventType,
        agent_id: str,
        branch_name: str,
        payload: Optional[Mapping[str, Any]] = None,
    ) -> "TelemetryEvent":
        known: Dict[str, Any] = {}
        attributes: Dict[str, Any] = {}
        for key, value in (payload or {}).items():
            target = _PAYLOAD_FIELDS.get(key)
            if target is None:
                attributes[key] = value
            else:
                known[target] = value.value if isinstance(value, Enum) else value
        return cls(
            event_type=event_type,
            agent_id=agent_id,
            branch_name=branch_name,
            attributes=attributes,
            **known,
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "event_type": self.event_type.value,
            "agent_id": self.agent_id,
            "branch_name": self.branch_name,
        }
        for name in (
            "endpoint_id",
            "severity",
            "collision_class",
            "human_required",
            "decay_score",
            "token_count",
            "duration_ms",
            "trace_id",
            "span_id",
            "parent_span_id",
        ):
            value = getattr(self, name)
            if value is not None:
                data[name] = value
        if self.attributes:
            data["attributes"] = dict(self.attributes)
        return data
