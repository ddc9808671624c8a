import pytest

from contextgraph.engine import (
    Collision,
    ConvergenceDetector,
    DriftDetector,
    DriftSeverity,
    ProvenanceTracker,
    StoreError,
)
from contextgraph.graph import BranchStatus, CommitAuthor
from contextgraph.storage import sha256_hex
from contextgraph.telemetry import EngineEventType


@pytest.mark.asyncio
async def test_root_branch_starts_with_genesis_commit(store):
    branch = await store.create_branch("main", "agent-a")

    genesis = await store.get_commit(branch.head_hash)

    assert genesis is not None
    assert genesis.author == CommitAuthor.SYSTEM
    assert genesis.parent_hash is None
    assert branch.status == BranchStatus.ACTIVE


@pytest.mark.asyncio
async def test_fork_inherits_parent_head(store):
    main = await store.create_branch("main", "agent-a")
    fork = await store.create_branch("agent/ws/task", "agent-b", parent_branch="main")

    assert fork.head_hash == main.head_hash
    assert fork.parent_branch == "main"


@pytest.mark.asyncio
async def test_branch_errors(store):
    await store.create_branch("main", "agent-a")

    with pytest.raises(StoreError) as exc_info:
        await store.create_branch("main", "agent-b")
    assert exc_info.value.code == "STORE_ERROR"

    with pytest.raises(StoreError):
        await store.create_branch("fork", "agent-b", parent_branch="missing")

    with pytest.raises(StoreError):
        await store.commit_knowledge("missing", "agent-a", "t", "c")


@pytest.mark.asyncio
async def test_commit_advances_head(store, telemetry):
    await store.create_branch("main", "agent-a")

    node = await store.commit_knowledge(
        "main",
        "agent-a",
        "billing.refunds",
        "Refunds settle in 5 days",
        commit_message="Record refund window",
        evidence_refs=["doc-1"],
        confidence=0.8,
    )
    branch = await store.get_branch("main")
    commit = await store.get_commit(branch.head_hash)

    assert branch.head_hash == node.commit_hash
    assert node.version_hash == sha256_hex("Refunds settle in 5 days" + "billing.refunds")
    assert node.metadata.agent_id == "agent-a"
    assert node.metadata.evidence_refs == frozenset({"doc-1"})
    assert commit.node_id == node.id
    assert commit.author == CommitAuthor.AGENT
    assert commit.evidence_refs == ("doc-1",)

    [recorded] = telemetry.events
    assert recorded.event_type == EngineEventType.COMMIT_KNOWLEDGE
    assert recorded.agent_id == "agent-a"
    assert recorded.attributes["nodeId"] == node.id


@pytest.mark.asyncio
async def test_identical_commits_get_distinct_hashes(store):
    await store.create_branch("main", "agent-a")

    first = await store.commit_knowledge("main", "agent-a", "t", "same claim")
    second = await store.commit_knowledge("main", "agent-a", "t", "same claim")

    assert first.commit_hash != second.commit_hash
    assert first.version_hash == second.version_hash


@pytest.mark.asyncio
async def test_branch_visibility_follows_ancestry(store):
    await store.create_branch("main", "agent-a")
    shared = await store.commit_knowledge("main", "agent-a", "t", "shared")
    await store.create_branch("agent/ws/task", "agent-b", parent_branch="main")
    private = await store.commit_knowledge("agent/ws/task", "agent-b", "t", "private")

    main_ids = [node.id for node in await store.list_nodes("main")]
    fork_ids = [node.id for node in await store.list_nodes("agent/ws/task")]

    assert main_ids == [shared.id]
    assert fork_ids == [shared.id, private.id]


@pytest.mark.asyncio
async def test_tombstones_hide_nodes_and_are_idempotent(store):
    await store.create_branch("main", "agent-a")
    node = await store.commit_knowledge("main", "agent-a", "t", "stale")

    await store.mark_tombstone(node.id)
    await store.mark_tombstone(node.id)

    assert await store.list_nodes("main") == []
    assert await store.list_nodes_by_topic("t") == []
    assert (await store.get_node(node.id)).tombstoned is True

    with pytest.raises(StoreError):
        await store.mark_tombstone("missing")


@pytest.mark.asyncio
async def test_chain_is_oldest_first(store):
    branch = await store.create_branch("main", "agent-a")
    first = await store.commit_knowledge("main", "agent-a", "t", "one")
    second = await store.commit_knowledge("main", "agent-a", "t", "two")

    chain = await store.get_chain(second.id)

    assert [entry.commit_hash for entry in chain] == [branch.head_hash, first.commit_hash, second.commit_hash]
    assert chain[-1].node_id == second.id
    assert await store.get_chain("missing") == []


@pytest.mark.asyncio
async def test_provenance_verify_over_store(store):
    await store.create_branch("main", "agent-a")
    node = await store.commit_knowledge("main", "agent-a", "t", "one")
    tracker = ProvenanceTracker(store)

    assert (await tracker.verify(node.commit_hash)).ok is True
    assert (await tracker.verify("missing")).missing == ["missing"]


@pytest.mark.asyncio
async def test_commits_before_a_point_in_time(store, clock):
    branch = await store.create_branch("main", "agent-a")
    clock.advance(hours=1)
    first = await store.commit_knowledge("main", "agent-a", "t", "one")
    cutoff = clock.advance(hours=1)
    clock.advance(hours=1)
    await store.commit_knowledge("main", "agent-a", "t", "two")

    state = await ProvenanceTracker(store).replay("main", cutoff)

    assert state.commit_hashes == [branch.head_hash, first.commit_hash]


@pytest.mark.asyncio
async def test_promote_canonical_is_unique_per_source_set(store):
    await store.create_branch("main", "agent-a")
    a = await store.commit_knowledge("main", "agent-a", "billing.refunds", "5 days", evidence_refs=["doc-1"])
    b = await store.commit_knowledge("main", "agent-b", "billing.refunds", "5 days", evidence_refs=["doc-2"])
    detector = ConvergenceDetector(store)

    canonical = await detector.promote([a, b])
    again = await detector.promote([b, a])

    assert again == canonical
    assert canonical.sources == [a.id, b.id]

    chain = await store.get_chain(canonical.id)
    assert chain[-1].author == CommitAuthor.SYSTEM
    assert chain[-1].convergence_of == (a.id, b.id)

    canonical_node = await store.get_node(canonical.id)
    assert canonical_node.metadata.agent_id is None
    assert canonical_node.metadata.evidence_refs == frozenset({"doc-1", "doc-2"})
    assert len(await store.list_nodes_by_topic("billing.refunds")) == 3


@pytest.mark.asyncio
async def test_drift_detection_rotates_endpoint_hashes(store):
    store.register_endpoint("e1", "users", "https://users.example/graphql", current_hash="h1")
    store.record_type_maps(
        "e1",
        {"hash": "h1", "operations": ["q1", "q2"]},
        {"hash": "h2", "operations": ["q1"], "removed": ["q2"]},
    )

    event = await DriftDetector(store).detect("e1")
    [endpoint] = await store.list_endpoints()

    assert event.severity == DriftSeverity.BREAKING
    assert endpoint.previous_hash == "h1"
    assert endpoint.current_hash == "h2"
    assert endpoint.drift_status == "BREAKING"
    assert endpoint.type_map_snapshot["removed"] == ["q2"]
    assert endpoint.last_introspected_at is not None


@pytest.mark.asyncio
async def test_endpoint_errors(store):
    store.register_endpoint("e1", "users", "https://users.example/graphql")

    with pytest.raises(StoreError):
        store.register_endpoint("e1", "users", "https://users.example/graphql")
    with pytest.raises(StoreError):
        await store.load_type_map("e1")
    with pytest.raises(StoreError):
        await store.load_type_map("e2")


@pytest.mark.asyncio
async def test_collisions_are_listed_per_branch_pair(store):
    store.add_collision("agent/ws/task", "main", {"id": "c1", "kind": "ADDITIVE"})
    store.add_collision("agent/ws/other", "main", Collision(id="c2", kind="EPISTEMIC"))

    collisions = await store.list_collisions("agent/ws/task", "main")

    assert [collision.id for collision in collisions] == ["c1"]
    assert await store.list_collisions("main", "agent/ws/task") == []


@pytest.mark.asyncio
async def test_topics_and_status(store):
    await store.create_branch("main", "agent-a")
    await store.commit_knowledge("main", "agent-a", "b-topic", "x")
    await store.commit_knowledge("main", "agent-a", "a-topic", "y")

    assert await store.list_topics("main") == ["a-topic", "b-topic"]

    branch = store.set_branch_status("main", "MERGED")
    assert branch.status == BranchStatus.MERGED
    assert [b.name for b in await store.list_branches()] == ["main"]


@pytest.mark.asyncio
async def test_returned_branches_are_detached_copies(store):
    created = await store.create_branch("main", "agent-a")
    node = await store.commit_knowledge("main", "agent-a", "t", "one")

    fetched = await store.get_branch("main")
    fetched.head_hash = "not-a-commit"
    [listed] = await store.list_branches()
    listed.head_hash = "not-a-commit"
    store.set_branch_status("main", "MERGED").head_hash = "not-a-commit"

    current = await store.get_branch("main")
    assert created.head_hash != node.commit_hash
    assert current.head_hash == node.commit_hash
    assert current.status == BranchStatus.MERGED
    assert [n.id for n in await store.list_nodes("main")] == [node.id]
