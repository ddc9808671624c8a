import pytest

from contextgraph.engine import (
    CorruptionDetectedEvent,
    DriftDetector,
    DriftSeverity,
    InvalidTypeMapError,
    RemediationPolicy,
    TypeMap,
)
from contextgraph.telemetry import EngineEventType


class TypeMapSourceStub:
    def __init__(self, before, after):
        self.maps = {"before": before, "after": after}
        self.updates = []

    async def load_type_map(self, endpoint_id):
        return self.maps

    async def update_endpoint(self, endpoint_id, severity):
        self.updates.append((endpoint_id, severity))


class ReadOnlyTypeMapSource:
    def __init__(self, before, after):
        self.maps = {"before": before, "after": after}

    async def load_type_map(self, endpoint_id):
        return self.maps


BEFORE = TypeMap(hash="a", operations=["q1", "q2"])


@pytest.mark.parametrize(
    "after, expected",
    [
        (
            TypeMap(hash="b", removed=["q1"], deprecated=["q2"], added=["q3"], corruption=True),
            DriftSeverity.CORRUPTION,
        ),
        (TypeMap(hash="b", removed=["q1"], deprecated=["q2"], added=["q3"]), DriftSeverity.BREAKING),
        (TypeMap(hash="b", deprecated=["q2"], added=["q3"]), DriftSeverity.DEPRECATION),
        (TypeMap(hash="b", added=["q3"]), DriftSeverity.ADDITIVE),
        (TypeMap(hash="b", operations=["q1", "q2"]), DriftSeverity.SILENT),
        (TypeMap(hash="a", operations=["q1", "q2"]), DriftSeverity.SILENT),
    ],
)
def test_classify_precedence(after, expected):
    assert DriftDetector.classify(BEFORE, after) == expected


def test_affected_operations_are_ordered_and_unique():
    after = TypeMap(hash="b", operations=["q1", "q3"], removed=["q2"], added=["q3"], deprecated=["q1"])

    assert DriftDetector.affected_operations(BEFORE, after) == ["q2", "q3", "q1"]


def test_affected_operations_ignore_unchanged_hash():
    after = TypeMap(hash="a", operations=["q1", "q2"])

    assert DriftDetector.affected_operations(BEFORE, after) == []


@pytest.mark.asyncio
async def test_corruption_scenario_rolls_back_and_escalates(event_bus):
    received = []
    event_bus.on_human_required(received.append)
    source = TypeMapSourceStub(
        {"hash": "a", "operations": ["q1", "q2"]},
        {"hash": "a", "operations": ["q1", "q2"], "corruption": True},
    )
    detector = DriftDetector(source, event_bus)

    event = await detector.detect("users-api")
    result = await detector.remediate(event)
    await event_bus.drain()

    assert event.severity == DriftSeverity.CORRUPTION
    assert event.remediation_policy == RemediationPolicy.ROLLBACK
    assert result.action == RemediationPolicy.ROLLBACK
    assert result.requires_human is True
    assert received == [CorruptionDetectedEvent(endpoint_id="users-api", detail="Type map corruption detected")]


@pytest.mark.asyncio
async def test_breaking_drift_returns_pause_without_escalation(event_bus):
    received = []
    event_bus.on_human_required(received.append)
    source = TypeMapSourceStub(BEFORE, TypeMap(hash="b", operations=["q2"], removed=["q1"]))
    detector = DriftDetector(source, event_bus)

    result = await detector.remediate(await detector.detect("users-api"))
    await event_bus.drain()

    assert result.action == RemediationPolicy.PAUSE_NOTIFY
    assert result.requires_human is False
    assert result.message == "Applied remediation policy PAUSE_NOTIFY."
    assert received == []


@pytest.mark.asyncio
async def test_detect_updates_endpoint_when_supported():
    source = TypeMapSourceStub(BEFORE, TypeMap(hash="b", added=["q3"]))
    detector = DriftDetector(source)

    event = await detector.detect("users-api")

    assert event.severity == DriftSeverity.ADDITIVE
    assert source.updates == [("users-api", DriftSeverity.ADDITIVE)]


@pytest.mark.asyncio
async def test_detect_without_update_endpoint():
    detector = DriftDetector(ReadOnlyTypeMapSource(BEFORE, TypeMap(hash="b", deprecated=["q1"])))

    event = await detector.detect("users-api")

    assert event.severity == DriftSeverity.DEPRECATION
    assert event.remediation_policy == RemediationPolicy.REGROUND


@pytest.mark.asyncio
async def test_detect_records_telemetry(event_bus, telemetry):
    detector = DriftDetector(TypeMapSourceStub(BEFORE, TypeMap(hash="b", removed=["q1"])), event_bus)

    await detector.detect("users-api")

    [recorded] = telemetry.events
    assert recorded.event_type == EngineEventType.DRIFT_DETECT
    assert recorded.endpoint_id == "users-api"
    assert recorded.severity == "BREAKING"
    assert recorded.attributes["affectedOperationCount"] == 1


@pytest.mark.asyncio
async def test_invalid_type_map_raises():
    detector = DriftDetector(TypeMapSourceStub({"operations": ["q1"]}, {"hash": "b"}))

    with pytest.raises(InvalidTypeMapError) as exc_info:
        await detector.detect("users-api")

    assert exc_info.value.code == "INVALID_TYPE_MAP"
    assert exc_info.value.details["endpoint_id"] == "users-api"
