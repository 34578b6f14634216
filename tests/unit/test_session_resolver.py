"""
Unit tests for session token resolution.

Tests cover:
- Token extraction from headers
- Missing vs unknown tokens
- Cross-project checks
"""

import tempfile

import pytest

from server.graphsync_server.auth import SessionResolver, token_hint
from server.graphsync_server.errors import ForbiddenError, UnauthorizedError
from server.graphsync_server.store import GraphStore


@pytest.fixture
def data_dir():
    """Create temporary data directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
async def store(data_dir):
    store = GraphStore(data_dir, wal_mode=False)
    await store.initialize()
    return store


@pytest.fixture
def resolver(store):
    return SessionResolver(store)


class TestExtractToken:
    """Tests for header parsing."""

    def test_bearer_header(self):
        assert SessionResolver.extract_token("Bearer abc123") == "abc123"

    def test_bearer_is_case_insensitive(self):
        assert SessionResolver.extract_token("bearer   abc123 ") == "abc123"

    def test_raw_authorization_value(self):
        assert SessionResolver.extract_token("abc123") == "abc123"

    def test_session_token_header_fallback(self):
        assert SessionResolver.extract_token(None, "xyz") == "xyz"

    def test_nothing_supplied(self):
        assert SessionResolver.extract_token(None, None) is None
        assert SessionResolver.extract_token("Bearer ", "  ") is None


class TestResolve:
    """Tests for SessionResolver.resolve."""

    @pytest.mark.asyncio
    async def test_missing_token_is_unauthorized(self, resolver):
        with pytest.raises(UnauthorizedError):
            await resolver.resolve(None)
        with pytest.raises(UnauthorizedError):
            await resolver.resolve("")

    @pytest.mark.asyncio
    async def test_unknown_token_is_forbidden(self, resolver):
        with pytest.raises(ForbiddenError):
            await resolver.resolve("never-issued")

    @pytest.mark.asyncio
    async def test_valid_token(self, store, resolver):
        project, token = await store.create_project("P1")

        context = await resolver.resolve(token)

        assert context.project_id == project.id
        assert context.token == token

    @pytest.mark.asyncio
    async def test_token_dies_with_project(self, store, resolver):
        project, token = await store.create_project("P1")
        await store.delete_project(project.id)

        with pytest.raises(ForbiddenError):
            await resolver.resolve(token)


class TestRequireProject:
    """Tests for cross-project checks."""

    @pytest.mark.asyncio
    async def test_other_project_is_forbidden(self, store, resolver):
        a, token_a = await store.create_project("A")
        b, _ = await store.create_project("B")
        context = await resolver.resolve(token_a)

        SessionResolver.require_project(context, a.id)
        with pytest.raises(ForbiddenError):
            SessionResolver.require_project(context, b.id)


def test_token_hint_never_reveals_token():
    token = "abcdefghijklmnopqrstuvwxyz"
    assert token_hint(token) == "abcdef..."
    assert token_hint("abc") == "***"
