"""
Integration tests for ProjectSession, the client reconciliation loop.

The realtime link is a loopback that feeds frames straight into the
server's ConnectionHandler, so broadcasts travel the real server path
without a network socket.

Tests cover:
- Opening a session and seeding the delta cursor
- Peers converging through broadcasts
- Delta sync of out-of-band writes
- Optimistic writes that fail
- Cancellation on close and dropping late responses
- Project deletion and token invalidation
- Connection health reporting
"""

import asyncio

import httpx
import pytest

from sdk.graphsync_sdk import ClientSettings, GraphClient, NetworkError, ProjectSession
from server.graphsync_server.api import create_app
from server.graphsync_server.config import ServerConfig, StorageConfig
from server.graphsync_server.realtime.handler import ConnectionHandler
from tests.fakes import FakeChannel

SLOW = ClientSettings(sync_interval=60, health_interval=60)


class LoopbackChannel(FakeChannel):
    """RealtimeChannel stand-in wired directly to a server ConnectionHandler."""

    def __init__(self, app):
        super().__init__()
        state = app.state
        self.handler = ConnectionHandler(self, state.router, state.resolver, state.engine)
        self.handler.open()

    async def send_json(self, data):
        await self.dispatch(data["event"], data["data"])

    async def join_project(self, token):
        await super().join_project(token)
        await self.handler.handle_frame({"event": "joinProject", "data": {"token": token}})

    async def leave_project(self):
        await super().leave_project()
        await self.handler.handle_frame({"event": "leaveProject", "data": {}})


@pytest.fixture
async def app(tmp_path):
    app = create_app(ServerConfig(storage=StorageConfig(data_dir=str(tmp_path), wal_mode=False)))
    async with app.router.lifespan_context(app):
        yield app


@pytest.fixture
async def make_client(app):
    clients = []

    def make(token=None, settings=SLOW):
        client = GraphClient(
            "http://testserver",
            token,
            settings=settings,
            transport=httpx.ASGITransport(app=app),
        )
        clients.append(client)
        return client

    yield make
    for client in clients:
        await client.close()


@pytest.fixture
async def project(make_client):
    admin = make_client()
    project, token = await admin.create_project("P1")
    _, second = await admin.join_project(project.id)
    return project, token, second


async def eventually(predicate, timeout=2.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


class TestOpen:
    """Tests for ProjectSession.open."""

    @pytest.mark.asyncio
    async def test_open_loads_snapshot_and_joins(self, app, make_client, project):
        proj, token, _ = project
        writer = make_client(token)
        await writer.save_node({"id": "n1", "label": "A", "x": 0, "y": 0})
        channel = LoopbackChannel(app)

        session = ProjectSession(make_client(), channel, token)
        opened = await session.open()

        assert opened.id == proj.id
        assert list(session.mirror.nodes) == ["n1"]
        assert session.last_sync_timestamp == await writer.get_sync_timestamp()
        assert session.connection_state == "connected"
        assert channel.joined == [token]
        assert app.state.router.count(proj.id) == 1
        await session.close()

    @pytest.mark.asyncio
    async def test_open_with_bad_token(self, make_client):
        from sdk.graphsync_sdk import ForbiddenError

        session = ProjectSession(make_client(), None, "bogus")
        with pytest.raises(ForbiddenError):
            await session.open()


class TestConvergence:
    """Tests for the three reconciliation inputs."""

    @pytest.mark.asyncio
    async def test_peers_converge_through_broadcast(self, app, make_client, project):
        """T1 creates e1; T2's mirror gets it without polling."""
        _, t1, t2 = project
        s1 = ProjectSession(make_client(), LoopbackChannel(app), t1)
        s2 = ProjectSession(make_client(), LoopbackChannel(app), t2)
        await s1.open()
        await s2.open()

        assert await s1.save_node({"id": "n1", "label": "A", "x": 0, "y": 0})
        assert await s1.save_node({"id": "n2", "label": "B", "x": 1, "y": 1})
        assert await s1.save_edge({"id": "e1", "source": "n1", "target": "n2"})

        assert "e1" in s2.mirror.edges
        assert s2.mirror.to_dict() == s1.mirror.to_dict()

        assert await s2.delete_node("n1")
        assert s1.mirror.edges == {}
        assert list(s1.mirror.nodes) == ["n2"]

        await s1.close()
        await s2.close()

    @pytest.mark.asyncio
    async def test_import_and_clear_reach_peers(self, app, make_client, project):
        _, t1, t2 = project
        s1 = ProjectSession(make_client(), LoopbackChannel(app), t1)
        s2 = ProjectSession(make_client(), LoopbackChannel(app), t2)
        await s1.open()
        await s2.open()

        await s1.import_graph(
            [{"id": "a", "label": "A", "x": 0, "y": 0}, {"id": "b", "label": "B", "x": 0, "y": 0}],
            [{"id": "ab", "source": "a", "target": "b"}],
        )
        assert sorted(s2.mirror.nodes) == ["a", "b"]

        await s2.clear()
        assert len(s1.mirror) == 0

        await s1.close()
        await s2.close()

    @pytest.mark.asyncio
    async def test_delta_sync_picks_up_out_of_band_writes(self, make_client, project):
        _, token, other = project
        session = ProjectSession(make_client(), None, token)
        await session.open()
        writer = make_client(other)
        await writer.save_node({"id": "n1", "label": "A", "x": 0, "y": 0})

        assert await session.sync_now()
        assert "n1" in session.mirror.nodes
        assert session.sync_status == "Synced 1 nodes, 0 edges"
        assert session.last_sync_timestamp == await writer.get_sync_timestamp()

        assert await session.sync_now()
        assert session.sync_status == "No changes to sync"
        await session.close()

    @pytest.mark.asyncio
    async def test_periodic_sync(self, make_client, project):
        _, token, other = project
        fast = ClientSettings(sync_interval=0.02, health_interval=60)
        session = ProjectSession(make_client(settings=fast), None, token, settings=fast)
        await session.open()

        await make_client(other).save_node({"id": "n1", "label": "A", "x": 0, "y": 0})

        await eventually(lambda: "n1" in session.mirror.nodes)
        await session.close()

    @pytest.mark.asyncio
    async def test_delta_does_not_resurrect_missed_delete(self, make_client, project):
        """Deltas carry no tombstones; a missed delete only heals on a snapshot."""
        _, token, other = project
        writer = make_client(other)
        await writer.save_node({"id": "n1", "label": "A", "x": 0, "y": 0})
        session = ProjectSession(make_client(), None, token)
        await session.open()

        await writer.delete_node("n1")
        await session.sync_now()
        assert "n1" in session.mirror.nodes

        session.mirror.load_snapshot(await session.client.get_graph())
        assert "n1" not in session.mirror.nodes
        await session.close()


class TestOptimisticWrites:
    """Tests for failed optimistic writes."""

    @pytest.mark.asyncio
    async def test_failed_write_is_kept_and_reported(self, make_client, project):
        _, token, _ = project
        session = ProjectSession(make_client(), None, token)
        await session.open()

        ok = await session.save_edge({"id": "e1", "source": "ghost", "target": "other"})

        assert ok is False
        assert "e1" in session.mirror.edges
        assert session.sync_status == "Failed to save edge"
        await session.close()

    @pytest.mark.asyncio
    async def test_local_delete_cascades(self, make_client, project):
        _, token, _ = project
        session = ProjectSession(make_client(), None, token)
        await session.open()
        await session.save_node({"id": "a", "label": "A", "x": 0, "y": 0})
        await session.save_node({"id": "b", "label": "B", "x": 0, "y": 0})
        await session.save_edge({"id": "ab", "source": "a", "target": "b"})

        await session.delete_node("a")

        assert session.mirror.edges == {}
        assert await session.client.get_edges() == []
        await session.close()


class TestLifecycle:
    """Tests for close, cancellation and invalidation."""

    @pytest.mark.asyncio
    async def test_close_cancels_background_tasks(self, app, make_client, project):
        _, token, _ = project
        fast = ClientSettings(sync_interval=0.01, health_interval=0.01)
        channel = LoopbackChannel(app)
        session = ProjectSession(make_client(settings=fast), channel, token, settings=fast)
        await session.open()
        tasks = list(session._tasks)
        assert tasks

        await session.close()

        assert all(t.done() for t in tasks)
        assert len(session.mirror) == 0
        assert channel.left == 1
        assert channel.handler_count() == 0
        assert await session.sync_now() is False

    @pytest.mark.asyncio
    async def test_late_response_is_dropped(self, make_client, project):
        """A delta that lands after close() must not repopulate the mirror."""
        _, token, other = project
        await make_client(other).save_node({"id": "n1", "label": "A", "x": 0, "y": 0})
        client = make_client()
        session = ProjectSession(client, None, token)
        await session.open()

        release = asyncio.Event()
        real_get_changes = client.get_changes

        async def slow_get_changes(since):
            result = await real_get_changes(0)
            await release.wait()
            return result

        client.get_changes = slow_get_changes
        pending = asyncio.create_task(session.sync_now())
        await asyncio.sleep(0.05)

        await session.close()
        release.set()

        assert await pending is False
        assert len(session.mirror) == 0

    @pytest.mark.asyncio
    async def test_project_deleted_closes_peer_session(self, app, make_client, project):
        proj, t1, t2 = project
        reasons = []
        s1 = ProjectSession(make_client(), LoopbackChannel(app), t1, on_closed=reasons.append)
        await s1.open()
        await s1.save_node({"id": "n1", "label": "A", "x": 0, "y": 0})

        await make_client(t2).delete_project(proj.id)

        assert reasons == ["project deleted"]
        assert not s1.is_open
        assert len(s1.mirror) == 0

    @pytest.mark.asyncio
    async def test_forbidden_sync_invalidates_session(self, make_client, project):
        proj, t1, t2 = project
        session = ProjectSession(make_client(), None, t1)
        await session.open()

        await make_client(t2).delete_project(proj.id)
        assert await session.sync_now() is False

        assert session.closed_reason == "token invalidated"


class TestHealth:
    """Tests for connection health polling."""

    @pytest.mark.asyncio
    async def test_health_transitions(self, make_client, project):
        _, token, _ = project
        client = make_client()
        session = ProjectSession(client, None, token)
        await session.open()
        real_status = client.status

        async def down():
            raise NetworkError("unreachable")

        client.status = down
        assert await session.check_health() is False
        assert session.connection_state == "disconnected"

        client.status = real_status
        assert await session.check_health() is True
        assert session.connection_state == "reconnected"
        await session.close()
