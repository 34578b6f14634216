"""
Project-scoped SQLite store for GraphSync.

This module is the persistence gateway. It owns the durable copy of:
- Projects (the tenancy unit)
- Session tokens bound to projects
- Nodes and edges, keyed by (project_id, id)
- One sync watermark per project

Invariants:
    - Every mutating operation runs in one BEGIN IMMEDIATE transaction that
      covers both the row writes and the watermark bump
    - The watermark is strictly increasing per project, and every row written
      in a transaction carries that transaction's watermark as updated_at
    - Deleting a node deletes every edge that references it in the same
      transaction
    - Deleting a project cascades to its nodes, edges, sessions and watermark

How to change safely:
    - Schema migrations must be backward compatible
    - Never write nodes with INSERT OR REPLACE: the implicit delete fires the
      node -> edge cascade
    - Keep reads that return a timestamp inside one read transaction

Table schema:
    projects:
        - id TEXT PRIMARY KEY (UUID)
        - name TEXT
        - description TEXT
        - created_at INTEGER (Unix ms)
        - updated_at INTEGER (Unix ms)

    sessions:
        - token TEXT PRIMARY KEY
        - project_id TEXT -> projects(id) ON DELETE CASCADE
        - created_at INTEGER

    nodes:
        - project_id TEXT -> projects(id) ON DELETE CASCADE
        - id TEXT
        - label, description, icon TEXT
        - x, y REAL
        - updated_at INTEGER (watermark stamp)
        - PRIMARY KEY (project_id, id)

    edges:
        - project_id TEXT
        - id TEXT
        - source, target TEXT -> nodes(project_id, id) ON DELETE CASCADE
        - updated_at INTEGER (watermark stamp)
        - PRIMARY KEY (project_id, id)

    sync_status:
        - project_id TEXT PRIMARY KEY -> projects(id) ON DELETE CASCADE
        - last_sync INTEGER
"""

from __future__ import annotations

import logging
import secrets
import sqlite3
import time
import uuid
from collections.abc import Iterable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..errors import (
    EdgeNotFoundError,
    ForbiddenError,
    NodeNotFoundError,
    PersistenceError,
    ProjectNotFoundError,
)

logger = logging.getLogger(__name__)

DEFAULT_ICON = "circle"


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class Project:
    """A project, the root tenancy unit.

    Attributes:
        id: Project identifier (UUID)
        name: Display name
        description: Free text description
        created_at: Creation timestamp (Unix ms)
        updated_at: Last write timestamp (Unix ms)
    """

    id: str
    name: str
    description: str
    created_at: int
    updated_at: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class Node:
    """A node in a project's graph.

    Attributes:
        id: Node identifier, unique within the project
        project_id: Owning project
        label: Display label
        description: Free text description
        icon: Icon name
        x: Horizontal position
        y: Vertical position
        updated_at: Watermark stamp of the last write
    """

    id: str
    project_id: str
    label: str
    description: str
    icon: str
    x: float
    y: float
    updated_at: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "label": self.label,
            "description": self.description,
            "icon": self.icon,
            "x": self.x,
            "y": self.y,
            "updated_at": self.updated_at,
        }


@dataclass
class Edge:
    """An edge between two nodes of the same project.

    Attributes:
        id: Edge identifier, unique within the project
        project_id: Owning project
        source: Source node ID
        target: Target node ID
        updated_at: Watermark stamp of the last write
    """

    id: str
    project_id: str
    source: str
    target: str
    updated_at: int

    def to_dict(self) -> dict[str, Any]:
        # Clients only ever see the connection itself.
        return {"id": self.id, "source": self.source, "target": self.target}


@dataclass
class GraphSnapshot:
    """Full graph of one project plus the watermark it was read at."""

    nodes: list[Node] = field(default_factory=list)
    edges: list[Edge] = field(default_factory=list)
    timestamp: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "nodes": [n.to_dict() for n in self.nodes],
            "edges": [e.to_dict() for e in self.edges],
        }


@dataclass
class ChangeSet(GraphSnapshot):
    """Rows written after ``since``; ``timestamp`` is the watermark at read time."""

    since: int = 0


@dataclass
class DeleteResult:
    nodes_deleted: int
    edges_deleted: int


@dataclass
class ImportResult:
    node_count: int
    edge_count: int


class GraphStore:
    """SQLite store for projects, sessions and project-scoped graphs.

    Thread safety:
        Each database connection is created per-operation.
        Writers serialize on BEGIN IMMEDIATE; readers use WAL snapshots.

    Example:
        >>> store = GraphStore("/var/lib/graphsync")
        >>> await store.initialize()
        >>> project, token = await store.create_project("P1", "")
        >>> await store.upsert_node({"id": "n1", "label": "A", "x": 0, "y": 0}, project.id)
    """

    SCHEMA_VERSION = 1

    def __init__(
        self,
        data_dir: str,
        db_filename: str = "graphsync.db",
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
        cache_size_pages: int = -64000,
    ) -> None:
        """Initialize the store.

        Args:
            data_dir: Directory for the SQLite database file
            db_filename: Database file name
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: SQLite busy timeout
            cache_size_pages: SQLite cache size (negative = KB)
        """
        self.data_dir = Path(data_dir)
        self.db_path = self.data_dir / db_filename
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self.cache_size_pages = cache_size_pages

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Open a configured connection to the database."""
        self.data_dir.mkdir(parents=True, exist_ok=True)

        try:
            conn = sqlite3.connect(
                str(self.db_path),
                timeout=self.busy_timeout_ms / 1000.0,
                isolation_level=None,  # Autocommit by default, explicit transactions
            )
        except sqlite3.Error as e:
            logger.error("Cannot open database", extra={"path": str(self.db_path), "error": str(e)})
            raise PersistenceError("Cannot open database", operation="connect") from e
        conn.row_factory = sqlite3.Row

        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            conn.execute(f"PRAGMA cache_size = {self.cache_size_pages}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            conn.execute("PRAGMA foreign_keys = ON")

            yield conn
        finally:
            conn.close()

    @contextmanager
    def _transaction(self, operation: str) -> Iterator[sqlite3.Connection]:
        """Run a write transaction.

        Any exception rolls back every statement, the watermark bump included.
        sqlite3 errors are re-raised as PersistenceError.
        """
        with self._get_connection() as conn:
            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                logger.error(
                    f"Transaction could not start: {operation}",
                    extra={"operation": operation, "error": str(e)},
                )
                raise PersistenceError(f"{operation} failed", operation=operation) from e

            try:
                yield conn
                conn.execute("COMMIT")
            except sqlite3.Error as e:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                logger.error(
                    f"Transaction failed: {operation}",
                    extra={"operation": operation, "error": str(e)},
                )
                raise PersistenceError(f"{operation} failed", operation=operation) from e
            except Exception:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise

    @contextmanager
    def _read(self, operation: str) -> Iterator[sqlite3.Connection]:
        """Run several SELECTs against one consistent snapshot."""
        with self._get_connection() as conn:
            try:
                conn.execute("BEGIN")
                yield conn
                conn.execute("COMMIT")
            except sqlite3.Error as e:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                logger.error(
                    f"Read failed: {operation}",
                    extra={"operation": operation, "error": str(e)},
                )
                raise PersistenceError(f"{operation} failed", operation=operation) from e
            except Exception:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        """Create database schema."""
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS projects (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                description TEXT NOT NULL DEFAULT '',
                created_at INTEGER NOT NULL,
                updated_at INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS sessions (
                token TEXT PRIMARY KEY,
                project_id TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
                created_at INTEGER NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_sessions_project ON sessions(project_id);

            CREATE TABLE IF NOT EXISTS nodes (
                project_id TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
                id TEXT NOT NULL,
                label TEXT NOT NULL,
                description TEXT NOT NULL DEFAULT '',
                icon TEXT NOT NULL DEFAULT 'circle',
                x REAL NOT NULL,
                y REAL NOT NULL,
                updated_at INTEGER NOT NULL,
                PRIMARY KEY (project_id, id)
            );

            CREATE INDEX IF NOT EXISTS idx_nodes_updated ON nodes(project_id, updated_at);

            CREATE TABLE IF NOT EXISTS edges (
                project_id TEXT NOT NULL,
                id TEXT NOT NULL,
                source TEXT NOT NULL,
                target TEXT NOT NULL,
                updated_at INTEGER NOT NULL,
                PRIMARY KEY (project_id, id),
                FOREIGN KEY (project_id, source)
                    REFERENCES nodes(project_id, id) ON DELETE CASCADE,
                FOREIGN KEY (project_id, target)
                    REFERENCES nodes(project_id, id) ON DELETE CASCADE
            );

            CREATE INDEX IF NOT EXISTS idx_edges_source ON edges(project_id, source);
            CREATE INDEX IF NOT EXISTS idx_edges_target ON edges(project_id, target);
            CREATE INDEX IF NOT EXISTS idx_edges_updated ON edges(project_id, updated_at);

            CREATE TABLE IF NOT EXISTS sync_status (
                project_id TEXT PRIMARY KEY REFERENCES projects(id) ON DELETE CASCADE,
                last_sync INTEGER NOT NULL
            );
        """)
        conn.execute(
            "INSERT OR IGNORE INTO schema_version (version, applied_at) VALUES (?, ?)",
            (self.SCHEMA_VERSION, _now_ms()),
        )

    async def initialize(self) -> None:
        """Create the database file and schema if they don't exist."""
        with self._get_connection() as conn:
            self._create_schema(conn)
        logger.info(f"Initialized graph database: {self.db_path}")

    # ------------------------------------------------------------------
    # Row helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_project(row: sqlite3.Row) -> Project:
        return Project(
            id=row["id"],
            name=row["name"],
            description=row["description"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _row_to_node(row: sqlite3.Row) -> Node:
        return Node(
            id=row["id"],
            project_id=row["project_id"],
            label=row["label"],
            description=row["description"],
            icon=row["icon"],
            x=row["x"],
            y=row["y"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _row_to_edge(row: sqlite3.Row) -> Edge:
        return Edge(
            id=row["id"],
            project_id=row["project_id"],
            source=row["source"],
            target=row["target"],
            updated_at=row["updated_at"],
        )

    def _bump_watermark(self, conn: sqlite3.Connection, project_id: str) -> int:
        """Advance the project's watermark inside the caller's transaction.

        Returns:
            The new watermark, strictly greater than the previous one
        """
        row = conn.execute(
            "SELECT last_sync FROM sync_status WHERE project_id = ?",
            (project_id,),
        ).fetchone()
        if row is None:
            raise ProjectNotFoundError(project_id)

        stamp = max(_now_ms(), row["last_sync"] + 1)
        conn.execute(
            "UPDATE sync_status SET last_sync = ? WHERE project_id = ?",
            (stamp, project_id),
        )
        conn.execute("UPDATE projects SET updated_at = ? WHERE id = ?", (stamp, project_id))
        return stamp

    def _read_watermark(self, conn: sqlite3.Connection, project_id: str) -> int:
        row = conn.execute(
            "SELECT last_sync FROM sync_status WHERE project_id = ?",
            (project_id,),
        ).fetchone()
        if row is None:
            raise ProjectNotFoundError(project_id)
        return row["last_sync"]

    def _write_node(
        self,
        conn: sqlite3.Connection,
        node: Mapping[str, Any],
        project_id: str,
        stamp: int,
    ) -> Node:
        written = Node(
            id=node["id"],
            project_id=project_id,
            label=node["label"],
            description=node.get("description") or "",
            icon=node.get("icon") or DEFAULT_ICON,
            x=float(node["x"]),
            y=float(node["y"]),
            updated_at=stamp,
        )
        conn.execute(
            """
            INSERT INTO nodes (project_id, id, label, description, icon, x, y, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (project_id, id) DO UPDATE SET
                label = excluded.label,
                description = excluded.description,
                icon = excluded.icon,
                x = excluded.x,
                y = excluded.y,
                updated_at = excluded.updated_at
            """,
            (
                project_id,
                written.id,
                written.label,
                written.description,
                written.icon,
                written.x,
                written.y,
                stamp,
            ),
        )
        return written

    def _write_edge(
        self,
        conn: sqlite3.Connection,
        edge: Mapping[str, Any],
        project_id: str,
        stamp: int,
    ) -> Edge:
        for endpoint in (edge["source"], edge["target"]):
            exists = conn.execute(
                "SELECT 1 FROM nodes WHERE project_id = ? AND id = ?",
                (project_id, endpoint),
            ).fetchone()
            if exists is None:
                raise NodeNotFoundError(endpoint)

        conn.execute(
            """
            INSERT INTO edges (project_id, id, source, target, updated_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT (project_id, id) DO UPDATE SET
                source = excluded.source,
                target = excluded.target,
                updated_at = excluded.updated_at
            """,
            (project_id, edge["id"], edge["source"], edge["target"], stamp),
        )
        return Edge(
            id=edge["id"],
            project_id=project_id,
            source=edge["source"],
            target=edge["target"],
            updated_at=stamp,
        )

    # ------------------------------------------------------------------
    # Projects and sessions
    # ------------------------------------------------------------------

    async def create_project(self, name: str, description: str | None = None) -> tuple[Project, str]:
        """Create a project with its first session token and a zero watermark.

        Args:
            name: Display name
            description: Optional description

        Returns:
            Tuple of (created project, session token)
        """
        now = _now_ms()
        project = Project(
            id=str(uuid.uuid4()),
            name=name,
            description=description or "",
            created_at=now,
            updated_at=now,
        )
        token = secrets.token_urlsafe(32)

        with self._transaction("create_project") as conn:
            conn.execute(
                """
                INSERT INTO projects (id, name, description, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (project.id, project.name, project.description, now, now),
            )
            conn.execute(
                "INSERT INTO sync_status (project_id, last_sync) VALUES (?, 0)",
                (project.id,),
            )
            conn.execute(
                "INSERT INTO sessions (token, project_id, created_at) VALUES (?, ?, ?)",
                (token, project.id, now),
            )

        logger.info("Created project", extra={"project_id": project.id, "project_name": name})
        return project, token

    async def list_projects(self) -> list[Project]:
        """List all projects, most recently written first."""
        with self._get_connection() as conn:
            cursor = conn.execute("SELECT * FROM projects ORDER BY updated_at DESC")
            return [self._row_to_project(row) for row in cursor.fetchall()]

    async def get_project(self, project_id: str) -> Project:
        """Get a project by ID.

        Raises:
            ProjectNotFoundError: If the project does not exist
        """
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM projects WHERE id = ?", (project_id,)).fetchone()
        if row is None:
            raise ProjectNotFoundError(project_id)
        return self._row_to_project(row)

    async def delete_project(self, project_id: str) -> None:
        """Delete a project and everything scoped to it, sessions included.

        Raises:
            ProjectNotFoundError: If the project does not exist
        """
        with self._transaction("delete_project") as conn:
            cursor = conn.execute("DELETE FROM projects WHERE id = ?", (project_id,))
            if cursor.rowcount == 0:
                raise ProjectNotFoundError(project_id)

        logger.info("Deleted project", extra={"project_id": project_id})

    async def create_session(self, project_id: str) -> str:
        """Mint a new session token for an existing project.

        Raises:
            ProjectNotFoundError: If the project does not exist
        """
        token = secrets.token_urlsafe(32)
        with self._transaction("create_session") as conn:
            exists = conn.execute("SELECT 1 FROM projects WHERE id = ?", (project_id,)).fetchone()
            if exists is None:
                raise ProjectNotFoundError(project_id)
            conn.execute(
                "INSERT INTO sessions (token, project_id, created_at) VALUES (?, ?, ?)",
                (token, project_id, _now_ms()),
            )
        return token

    async def resolve_session(self, token: str) -> Project:
        """Resolve a session token to its project.

        Raises:
            ForbiddenError: If the token is unknown
        """
        with self._get_connection() as conn:
            row = conn.execute(
                """
                SELECT p.* FROM sessions s
                JOIN projects p ON p.id = s.project_id
                WHERE s.token = ?
                """,
                (token,),
            ).fetchone()
        if row is None:
            raise ForbiddenError("Invalid session token")
        return self._row_to_project(row)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_nodes(self, project_id: str) -> list[Node]:
        with self._get_connection() as conn:
            cursor = conn.execute(
                "SELECT * FROM nodes WHERE project_id = ? ORDER BY updated_at, id",
                (project_id,),
            )
            return [self._row_to_node(row) for row in cursor.fetchall()]

    async def get_edges(self, project_id: str) -> list[Edge]:
        with self._get_connection() as conn:
            cursor = conn.execute(
                "SELECT * FROM edges WHERE project_id = ? ORDER BY updated_at, id",
                (project_id,),
            )
            return [self._row_to_edge(row) for row in cursor.fetchall()]

    async def get_graph(self, project_id: str) -> GraphSnapshot:
        """Read all nodes and edges of a project plus the current watermark.

        All three reads happen in one transaction.
        """
        with self._read("get_graph") as conn:
            timestamp = self._read_watermark(conn, project_id)
            nodes = conn.execute(
                "SELECT * FROM nodes WHERE project_id = ? ORDER BY updated_at, id",
                (project_id,),
            ).fetchall()
            edges = conn.execute(
                "SELECT * FROM edges WHERE project_id = ? ORDER BY updated_at, id",
                (project_id,),
            ).fetchall()

        return GraphSnapshot(
            nodes=[self._row_to_node(r) for r in nodes],
            edges=[self._row_to_edge(r) for r in edges],
            timestamp=timestamp,
        )

    async def get_changes_since(self, timestamp: int, project_id: str) -> ChangeSet:
        """Get rows written after a watermark.

        Deleted rows are not reported: there are no tombstones.

        Args:
            timestamp: Previous watermark (exclusive lower bound)
            project_id: Project identifier

        Returns:
            ChangeSet whose ``timestamp`` is the watermark at read time
        """
        with self._read("get_changes_since") as conn:
            watermark = self._read_watermark(conn, project_id)
            nodes = conn.execute(
                """
                SELECT * FROM nodes
                WHERE project_id = ? AND updated_at > ?
                ORDER BY updated_at, id
                """,
                (project_id, timestamp),
            ).fetchall()
            edges = conn.execute(
                """
                SELECT * FROM edges
                WHERE project_id = ? AND updated_at > ?
                ORDER BY updated_at, id
                """,
                (project_id, timestamp),
            ).fetchall()

        return ChangeSet(
            since=timestamp,
            timestamp=watermark,
            nodes=[self._row_to_node(r) for r in nodes],
            edges=[self._row_to_edge(r) for r in edges],
        )

    async def get_watermark(self, project_id: str) -> int:
        """Get the project's current watermark.

        Raises:
            ProjectNotFoundError: If the project does not exist
        """
        with self._get_connection() as conn:
            return self._read_watermark(conn, project_id)

    async def get_stats(self, project_id: str) -> dict[str, int]:
        """Get row counts for a project."""
        with self._get_connection() as conn:
            stats = {}
            for table in ("nodes", "edges", "sessions"):
                cursor = conn.execute(
                    f"SELECT COUNT(*) FROM {table} WHERE project_id = ?", (project_id,)
                )
                stats[table] = cursor.fetchone()[0]
            return stats

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def upsert_node(self, node: Mapping[str, Any], project_id: str) -> Node:
        """Insert or replace a node keyed by (id, project_id).

        Args:
            node: Mapping with id, label, x, y and optional description, icon
            project_id: Project identifier

        Returns:
            The stored node, stamped with the new watermark
        """
        with self._transaction("upsert_node") as conn:
            stamp = self._bump_watermark(conn, project_id)
            written = self._write_node(conn, node, project_id, stamp)

        logger.debug(
            "Upserted node",
            extra={"project_id": project_id, "node_id": written.id, "updated_at": stamp},
        )
        return written

    async def upsert_edge(self, edge: Mapping[str, Any], project_id: str) -> Edge:
        """Insert or replace an edge keyed by (id, project_id).

        Raises:
            NodeNotFoundError: If source or target is not a node of the project
        """
        with self._transaction("upsert_edge") as conn:
            stamp = self._bump_watermark(conn, project_id)
            written = self._write_edge(conn, edge, project_id, stamp)

        logger.debug(
            "Upserted edge",
            extra={
                "project_id": project_id,
                "edge_id": written.id,
                "source": written.source,
                "target": written.target,
            },
        )
        return written

    async def delete_node(self, node_id: str, project_id: str) -> DeleteResult:
        """Delete a node and every edge that references it.

        Raises:
            NodeNotFoundError: If the node does not exist
        """
        with self._transaction("delete_node") as conn:
            exists = conn.execute(
                "SELECT 1 FROM nodes WHERE project_id = ? AND id = ?",
                (project_id, node_id),
            ).fetchone()
            if exists is None:
                raise NodeNotFoundError(node_id)

            self._bump_watermark(conn, project_id)
            edges = conn.execute(
                "DELETE FROM edges WHERE project_id = ? AND (source = ? OR target = ?)",
                (project_id, node_id, node_id),
            )
            edges_deleted = edges.rowcount
            nodes = conn.execute(
                "DELETE FROM nodes WHERE project_id = ? AND id = ?",
                (project_id, node_id),
            )
            result = DeleteResult(nodes_deleted=nodes.rowcount, edges_deleted=edges_deleted)

        logger.debug(
            "Deleted node",
            extra={
                "project_id": project_id,
                "node_id": node_id,
                "edges_deleted": result.edges_deleted,
            },
        )
        return result

    async def delete_edge(self, edge_id: str, project_id: str) -> int:
        """Delete an edge.

        Raises:
            EdgeNotFoundError: If the edge does not exist
        """
        with self._transaction("delete_edge") as conn:
            exists = conn.execute(
                "SELECT 1 FROM edges WHERE project_id = ? AND id = ?",
                (project_id, edge_id),
            ).fetchone()
            if exists is None:
                raise EdgeNotFoundError(edge_id)

            self._bump_watermark(conn, project_id)
            cursor = conn.execute(
                "DELETE FROM edges WHERE project_id = ? AND id = ?",
                (project_id, edge_id),
            )
            return cursor.rowcount

    async def bulk_upsert_nodes(self, nodes: Iterable[Mapping[str, Any]], project_id: str) -> int:
        """Write a batch of nodes all-or-nothing with one watermark bump.

        Returns:
            Number of nodes written
        """
        with self._transaction("bulk_upsert_nodes") as conn:
            stamp = self._bump_watermark(conn, project_id)
            count = 0
            for node in nodes:
                self._write_node(conn, node, project_id, stamp)
                count += 1
        return count

    async def bulk_upsert_edges(self, edges: Iterable[Mapping[str, Any]], project_id: str) -> int:
        """Write a batch of edges all-or-nothing with one watermark bump.

        Raises:
            NodeNotFoundError: If any edge references a missing node (nothing is written)
        """
        with self._transaction("bulk_upsert_edges") as conn:
            stamp = self._bump_watermark(conn, project_id)
            count = 0
            for edge in edges:
                self._write_edge(conn, edge, project_id, stamp)
                count += 1
        return count

    async def clear_project(self, project_id: str) -> int:
        """Delete every node and edge of a project.

        Returns:
            The new watermark
        """
        with self._transaction("clear_project") as conn:
            stamp = self._bump_watermark(conn, project_id)
            conn.execute("DELETE FROM edges WHERE project_id = ?", (project_id,))
            conn.execute("DELETE FROM nodes WHERE project_id = ?", (project_id,))

        logger.info("Cleared project", extra={"project_id": project_id, "watermark": stamp})
        return stamp

    async def import_into_project(
        self,
        nodes: Iterable[Mapping[str, Any]],
        edges: Iterable[Mapping[str, Any]],
        project_id: str,
    ) -> ImportResult:
        """Replace a project's graph with the supplied nodes and edges.

        Clear and write happen in one transaction with one watermark bump, so
        readers see either the old graph or the new one.

        Raises:
            NodeNotFoundError: If an edge references a node not in the import
        """
        with self._transaction("import_into_project") as conn:
            stamp = self._bump_watermark(conn, project_id)
            conn.execute("DELETE FROM edges WHERE project_id = ?", (project_id,))
            conn.execute("DELETE FROM nodes WHERE project_id = ?", (project_id,))
            node_count = edge_count = 0
            for node in nodes:
                self._write_node(conn, node, project_id, stamp)
                node_count += 1
            for edge in edges:
                self._write_edge(conn, edge, project_id, stamp)
                edge_count += 1

        logger.info(
            "Imported graph",
            extra={"project_id": project_id, "nodes": node_count, "edges": edge_count},
        )
        return ImportResult(node_count=node_count, edge_count=edge_count)
