from typing import Any, Dict, Optional


class ContextGraphError(Exception):
    """Base exception for context graph engine errors."""

    def __init__(self, message: str, code: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)


class ConvergenceError(ContextGraphError):
    """Raised when a convergence promotion cannot proceed."""


class InsufficientNodesError(ConvergenceError):
    def __init__(self, count: int):
        super().__init__(
            "Convergence promotion requires at least two nodes.",
            code="INSUFFICIENT_NODES",
            details={"count": count},
        )


class ConvergenceThresholdError(ConvergenceError):
    def __init__(self, combined: float, temporal: float):
        super().__init__(
            "Convergence threshold not met.",
            code="THRESHOLD_NOT_MET",
            details={"combined": combined, "temporal": temporal},
        )


class UnknownCollisionKindError(ContextGraphError):
    def __init__(self, kind: Any, collision_id: Optional[str] = None):
        details: Dict[str, Any] = {"kind": kind}
        if collision_id is not None:
            details["collision_id"] = collision_id
        super().__init__(f"Unknown collision kind: {kind!r}", code="UNKNOWN_COLLISION_KIND", details=details)


class InvalidTypeMapError(ContextGraphError):
    def __init__(self, endpoint_id: str, errors: Any = None):
        super().__init__(
            f"Invalid type map for endpoint '{endpoint_id}'",
            code="INVALID_TYPE_MAP",
            details={"endpoint_id": endpoint_id, "errors": errors or []},
        )


class StoreError(ContextGraphError):
    """Raised by the in-memory store when an invariant would be broken."""

    def __init__(self, message: str, **details: Any):
        super().__init__(message, code="STORE_ERROR", details=details)
