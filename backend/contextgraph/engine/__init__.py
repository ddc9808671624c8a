from .collision import (
    AdditiveCollision,
    Collision,
    CollisionClass,
    CollisionDetector,
    CollisionKind,
    ConcurrentEditCollision,
    EpistemicCollision,
    PolicyConflictCollision,
    ResolutionResult,
    ResolutionStrategy,
    SchemaTemporalCollision,
)
from .convergence import (
    CanonicalNode,
    ConvergenceCandidate,
    ConvergenceDetector,
    ConvergenceScore,
    meets_promotion_threshold,
)
from .decay import DecayEngine, DecayReport, DecayScore, NodeDecay
from .drift import (
    DriftDetector,
    DriftEvent,
    DriftSeverity,
    RemediationPolicy,
    RemediationResult,
    TypeMap,
)
from .engine import ContextGraphEngine, MaintenanceReport, MergeResult, MergeStatus
from .events import (
    CorruptionDetectedEvent,
    EngineEvent,
    EngineEventBus,
    EpistemicCollisionEvent,
    HumanRequiredEvent,
    PolicyConflictEvent,
)
from .exceptions import (
    ContextGraphError,
    ConvergenceError,
    ConvergenceThresholdError,
    InsufficientNodesError,
    InvalidTypeMapError,
    StoreError,
    UnknownCollisionKindError,
)
from .provenance import EpistemicState, ProvenanceTracker, VerificationResult

__all__ = [
    "AdditiveCollision",
    "CanonicalNode",
    "Collision",
    "CollisionClass",
    "CollisionDetector",
    "CollisionKind",
    "ConcurrentEditCollision",
    "ContextGraphEngine",
    "ContextGraphError",
    "ConvergenceCandidate",
    "ConvergenceDetector",
    "ConvergenceError",
    "ConvergenceScore",
    "ConvergenceThresholdError",
    "CorruptionDetectedEvent",
    "DecayEngine",
    "DecayReport",
    "DecayScore",
    "DriftDetector",
    "DriftEvent",
    "DriftSeverity",
    "EngineEvent",
    "EngineEventBus",
    "EpistemicCollision",
    "EpistemicCollisionEvent",
    "EpistemicState",
    "HumanRequiredEvent",
    "InsufficientNodesError",
    "InvalidTypeMapError",
    "MaintenanceReport",
    "MergeResult",
    "MergeStatus",
    "NodeDecay",
    "PolicyConflictCollision",
    "PolicyConflictEvent",
    "ProvenanceTracker",
    "RemediationPolicy",
    "RemediationResult",
    "ResolutionResult",
    "ResolutionStrategy",
    "SchemaTemporalCollision",
    "StoreError",
    "UnknownCollisionKindError",
    "VerificationResult",
    "meets_promotion_threshold",
]
