"""
Unit tests for the project-scoped SQLite graph store.

Tests cover:
- Project and session lifecycle
- Node and edge upserts
- Node deletion cascading to edges
- Watermark monotonicity and delta queries
- Bulk writes, clear and import atomicity
- Project isolation
"""

import sqlite3
import tempfile

import pytest

from server.graphsync_server.errors import (
    EdgeNotFoundError,
    ForbiddenError,
    NodeNotFoundError,
    PersistenceError,
    ProjectNotFoundError,
)
from server.graphsync_server.store import GraphStore


def node(node_id, label="A", x=0, y=0, **extra):
    return {"id": node_id, "label": label, "x": x, "y": y, **extra}


def edge(edge_id, source, target):
    return {"id": edge_id, "source": source, "target": target}


@pytest.fixture
def data_dir():
    """Create temporary data directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
async def store(data_dir):
    """Create an initialized store."""
    store = GraphStore(data_dir, wal_mode=False)
    await store.initialize()
    return store


@pytest.fixture
async def project_id(store):
    project, _ = await store.create_project("P1", "first")
    return project.id


class TestProjects:
    """Tests for project and session lifecycle."""

    @pytest.mark.asyncio
    async def test_create_project_returns_token_and_zero_watermark(self, store):
        """A new project has a resolvable token and watermark 0."""
        project, token = await store.create_project("P1", None)

        assert project.name == "P1"
        assert project.description == ""
        assert token
        assert (await store.resolve_session(token)).id == project.id
        assert await store.get_watermark(project.id) == 0

    @pytest.mark.asyncio
    async def test_list_projects_most_recent_first(self, store):
        """Writing to a project moves it to the top of the listing."""
        first, _ = await store.create_project("first")
        second, _ = await store.create_project("second")

        await store.upsert_node(node("n1"), first.id)
        await store.upsert_node(node("n2"), first.id)

        listed = [p.id for p in await store.list_projects()]
        assert listed == [first.id, second.id]

    @pytest.mark.asyncio
    async def test_get_missing_project_raises(self, store):
        with pytest.raises(ProjectNotFoundError):
            await store.get_project("nope")

    @pytest.mark.asyncio
    async def test_create_session_for_existing_project(self, store, project_id):
        """Many tokens may resolve to one project."""
        token = await store.create_session(project_id)
        assert (await store.resolve_session(token)).id == project_id
        assert (await store.get_stats(project_id))["sessions"] == 2

    @pytest.mark.asyncio
    async def test_create_session_unknown_project(self, store):
        with pytest.raises(ProjectNotFoundError):
            await store.create_session("missing")

    @pytest.mark.asyncio
    async def test_resolve_unknown_token(self, store):
        with pytest.raises(ForbiddenError):
            await store.resolve_session("not-a-token")

    @pytest.mark.asyncio
    async def test_delete_project_cascades(self, store):
        """Deleting a project removes its graph and invalidates its sessions."""
        project, token = await store.create_project("P1")
        await store.upsert_node(node("n1"), project.id)
        await store.upsert_node(node("n2"), project.id)
        await store.upsert_edge(edge("e1", "n1", "n2"), project.id)

        await store.delete_project(project.id)

        with pytest.raises(ForbiddenError):
            await store.resolve_session(token)
        with pytest.raises(ProjectNotFoundError):
            await store.get_watermark(project.id)
        assert await store.get_nodes(project.id) == []
        assert await store.get_edges(project.id) == []

    @pytest.mark.asyncio
    async def test_delete_missing_project(self, store):
        with pytest.raises(ProjectNotFoundError):
            await store.delete_project("missing")


class TestNodes:
    """Tests for node writes."""

    @pytest.mark.asyncio
    async def test_upsert_applies_defaults(self, store, project_id):
        saved = await store.upsert_node(node("n1"), project_id)

        assert saved.description == ""
        assert saved.icon == "circle"
        assert saved.updated_at > 0

    @pytest.mark.asyncio
    async def test_upsert_replaces_in_place(self, store, project_id):
        """Same id replaces the row with new values and a newer stamp."""
        first = await store.upsert_node(node("n1", label="A"), project_id)
        second = await store.upsert_node(node("n1", label="B", x=5.5), project_id)

        nodes = await store.get_nodes(project_id)
        assert len(nodes) == 1
        assert nodes[0].label == "B"
        assert nodes[0].x == 5.5
        assert second.updated_at > first.updated_at

    @pytest.mark.asyncio
    async def test_upsert_node_keeps_edges(self, store, project_id):
        """Replacing a node must not fire the edge cascade."""
        await store.upsert_node(node("n1"), project_id)
        await store.upsert_node(node("n2"), project_id)
        await store.upsert_edge(edge("e1", "n1", "n2"), project_id)

        await store.upsert_node(node("n1", label="renamed"), project_id)

        assert [e.id for e in await store.get_edges(project_id)] == ["e1"]

    @pytest.mark.asyncio
    async def test_delete_node_cascades_edges(self, store, project_id):
        """No edge references a deleted node."""
        for nid in ("n1", "n2", "n3"):
            await store.upsert_node(node(nid), project_id)
        await store.upsert_edge(edge("e1", "n1", "n2"), project_id)
        await store.upsert_edge(edge("e2", "n3", "n1"), project_id)
        await store.upsert_edge(edge("e3", "n2", "n3"), project_id)

        result = await store.delete_node("n1", project_id)

        assert result.nodes_deleted == 1
        assert result.edges_deleted == 2
        remaining = await store.get_edges(project_id)
        assert [e.id for e in remaining] == ["e3"]

    @pytest.mark.asyncio
    async def test_delete_missing_node(self, store, project_id):
        before = await store.get_watermark(project_id)
        with pytest.raises(NodeNotFoundError):
            await store.delete_node("ghost", project_id)
        assert await store.get_watermark(project_id) == before


class TestEdges:
    """Tests for edge writes."""

    @pytest.mark.asyncio
    async def test_edge_requires_existing_endpoints(self, store, project_id):
        await store.upsert_node(node("n1"), project_id)
        before = await store.get_watermark(project_id)

        with pytest.raises(NodeNotFoundError):
            await store.upsert_edge(edge("e1", "n1", "missing"), project_id)

        assert await store.get_edges(project_id) == []
        assert await store.get_watermark(project_id) == before

    @pytest.mark.asyncio
    async def test_edge_to_dict_strips_internal_fields(self, store, project_id):
        await store.upsert_node(node("n1"), project_id)
        await store.upsert_node(node("n2"), project_id)
        saved = await store.upsert_edge(edge("e1", "n1", "n2"), project_id)

        assert saved.to_dict() == {"id": "e1", "source": "n1", "target": "n2"}

    @pytest.mark.asyncio
    async def test_delete_edge(self, store, project_id):
        await store.upsert_node(node("n1"), project_id)
        await store.upsert_node(node("n2"), project_id)
        await store.upsert_edge(edge("e1", "n1", "n2"), project_id)

        assert await store.delete_edge("e1", project_id) == 1
        assert await store.get_edges(project_id) == []

        with pytest.raises(EdgeNotFoundError):
            await store.delete_edge("e1", project_id)


class TestWatermark:
    """Tests for the per-project sync watermark."""

    @pytest.mark.asyncio
    async def test_watermark_advances_on_first_write(self, store, project_id):
        """Watermark starts at 0, the old one sees the node, the new one sees nothing."""
        assert await store.get_watermark(project_id) == 0

        await store.upsert_node(node("n1"), project_id)
        watermark = await store.get_watermark(project_id)
        assert watermark > 0

        old = await store.get_changes_since(0, project_id)
        assert [n.id for n in old.nodes] == ["n1"]
        assert old.timestamp == watermark

        new = await store.get_changes_since(watermark, project_id)
        assert new.nodes == []
        assert new.edges == []

    @pytest.mark.asyncio
    async def test_rapid_writes_get_distinct_stamps(self, store, project_id):
        """Writes inside one clock tick still get strictly increasing stamps."""
        stamps = []
        for i in range(20):
            saved = await store.upsert_node(node(f"n{i}"), project_id)
            stamps.append(saved.updated_at)

        assert stamps == sorted(stamps)
        assert len(set(stamps)) == len(stamps)

    @pytest.mark.asyncio
    async def test_changes_since_boundary_is_exclusive(self, store, project_id):
        """Exactly the rows with updated_at > t are returned."""
        written = [await store.upsert_node(node(f"n{i}"), project_id) for i in range(5)]
        pivot = written[2].updated_at

        changes = await store.get_changes_since(pivot, project_id)

        assert [n.id for n in changes.nodes] == ["n3", "n4"]
        assert all(n.updated_at > pivot for n in changes.nodes)

    @pytest.mark.asyncio
    async def test_delete_bumps_watermark_without_tombstone(self, store, project_id):
        await store.upsert_node(node("n1"), project_id)
        before = await store.get_watermark(project_id)

        await store.delete_node("n1", project_id)

        after = await store.get_watermark(project_id)
        assert after > before
        changes = await store.get_changes_since(before, project_id)
        assert changes.nodes == []

    @pytest.mark.asyncio
    async def test_graph_snapshot_carries_watermark(self, store, project_id):
        await store.upsert_node(node("n1"), project_id)
        graph = await store.get_graph(project_id)

        assert graph.timestamp == await store.get_watermark(project_id)
        assert graph.to_dict()["nodes"][0]["id"] == "n1"


class TestBatches:
    """Tests for bulk writes, clear and import."""

    @pytest.mark.asyncio
    async def test_bulk_nodes_share_one_stamp(self, store, project_id):
        count = await store.bulk_upsert_nodes([node("n1"), node("n2"), node("n3")], project_id)

        assert count == 3
        stamps = {n.updated_at for n in await store.get_nodes(project_id)}
        assert stamps == {await store.get_watermark(project_id)}

    @pytest.mark.asyncio
    async def test_bulk_edges_all_or_nothing(self, store, project_id):
        await store.bulk_upsert_nodes([node("n1"), node("n2")], project_id)
        before = await store.get_watermark(project_id)

        with pytest.raises(NodeNotFoundError):
            await store.bulk_upsert_edges(
                [edge("e1", "n1", "n2"), edge("e2", "n1", "missing")],
                project_id,
            )

        assert await store.get_edges(project_id) == []
        assert await store.get_watermark(project_id) == before

    @pytest.mark.asyncio
    async def test_clear_project(self, store, project_id):
        await store.bulk_upsert_nodes([node("n1"), node("n2")], project_id)
        await store.upsert_edge(edge("e1", "n1", "n2"), project_id)
        before = await store.get_watermark(project_id)

        stamp = await store.clear_project(project_id)

        assert stamp > before
        graph = await store.get_graph(project_id)
        assert graph.nodes == [] and graph.edges == []

    @pytest.mark.asyncio
    async def test_import_empty_clears_with_one_bump(self, store, project_id):
        """Importing an empty graph leaves nothing and advances the watermark once."""
        await store.bulk_upsert_nodes([node("n1"), node("n2")], project_id)
        await store.upsert_edge(edge("e1", "n1", "n2"), project_id)
        before = await store.get_watermark(project_id)

        result = await store.import_into_project([], [], project_id)

        assert (result.node_count, result.edge_count) == (0, 0)
        graph = await store.get_graph(project_id)
        assert graph.nodes == [] and graph.edges == []
        after = await store.get_watermark(project_id)
        assert after > before

    @pytest.mark.asyncio
    async def test_import_replaces_graph(self, store, project_id):
        await store.upsert_node(node("old"), project_id)

        result = await store.import_into_project(
            [node("a"), node("b")],
            [edge("ab", "a", "b")],
            project_id,
        )

        assert (result.node_count, result.edge_count) == (2, 1)
        assert sorted(n.id for n in await store.get_nodes(project_id)) == ["a", "b"]
        stamps = {n.updated_at for n in await store.get_nodes(project_id)}
        assert stamps == {await store.get_watermark(project_id)}

    @pytest.mark.asyncio
    async def test_failed_import_keeps_old_graph(self, store, project_id):
        await store.upsert_node(node("keep"), project_id)

        with pytest.raises(NodeNotFoundError):
            await store.import_into_project([node("a")], [edge("ax", "a", "x")], project_id)

        assert [n.id for n in await store.get_nodes(project_id)] == ["keep"]


class TestIsolation:
    """Tests for project scoping."""

    @pytest.mark.asyncio
    async def test_same_ids_in_two_projects(self, store):
        """Node ids are unique only within a project."""
        a, _ = await store.create_project("A")
        b, _ = await store.create_project("B")

        await store.upsert_node(node("n1", label="in A"), a.id)
        await store.upsert_node(node("n1", label="in B"), b.id)
        await store.delete_node("n1", a.id)

        assert await store.get_nodes(a.id) == []
        assert [n.label for n in await store.get_nodes(b.id)] == ["in B"]

    @pytest.mark.asyncio
    async def test_edge_cannot_reference_other_project(self, store):
        a, _ = await store.create_project("A")
        b, _ = await store.create_project("B")
        await store.upsert_node(node("n1"), a.id)
        await store.upsert_node(node("n2"), a.id)
        await store.upsert_node(node("n1"), b.id)

        with pytest.raises(NodeNotFoundError):
            await store.upsert_edge(edge("e1", "n1", "n2"), b.id)

    @pytest.mark.asyncio
    async def test_write_to_unknown_project(self, store):
        with pytest.raises(ProjectNotFoundError):
            await store.upsert_node(node("n1"), "missing")


class TestPersistenceFailures:
    """Tests for storage failure handling."""

    @pytest.mark.asyncio
    async def test_sqlite_error_rolls_back_and_wraps(self, store, project_id, monkeypatch):
        """A failing statement undoes the watermark bump and surfaces PersistenceError."""
        before = await store.get_watermark(project_id)

        def broken_write(conn, data, pid, stamp):
            raise sqlite3.OperationalError("disk I/O error")

        monkeypatch.setattr(store, "_write_node", broken_write)

        with pytest.raises(PersistenceError) as exc_info:
            await store.upsert_node(node("n1"), project_id)

        assert exc_info.value.operation == "upsert_node"
        assert await store.get_watermark(project_id) == before
        assert exc_info.value.message == "upsert_node failed"
        assert "disk" not in exc_info.value.to_dict()["error"]
        assert exc_info.value.details == {"operation": "upsert_node"}


class TestSchema:
    """Tests for schema bookkeeping."""

    @pytest.mark.asyncio
    async def test_schema_version_recorded_once(self, data_dir):
        store = GraphStore(data_dir, wal_mode=False)
        await store.initialize()
        await store.initialize()

        conn = sqlite3.connect(store.db_path)
        try:
            rows = conn.execute("SELECT version FROM schema_version").fetchall()
        finally:
            conn.close()

        assert rows == [(GraphStore.SCHEMA_VERSION,)]
