"""
SQLite-backed node/edge store for the knowledge graph.

Holds two tables, ``nodes`` and ``edges``, with edges referencing node ids
through enforced foreign keys.  Each public method runs in its own
transaction; bulk inserts run as a single transaction.
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
import time
import uuid
from contextlib import contextmanager
from typing import Any, Iterable, Optional

from .errors import MalformedInputError, ReferentialIntegrityError
from .models import (
    DeleteResult, Edge, EdgeCreate, EdgeQuery, Node, NodeCreate, NodeQuery,
)

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS nodes (
    id              TEXT PRIMARY KEY,
    type            TEXT NOT NULL,
    label           TEXT NOT NULL,
    properties      TEXT NOT NULL DEFAULT '{}',
    embedding       TEXT DEFAULT NULL,
    embedding_model TEXT DEFAULT NULL,
    created_at      REAL NOT NULL,
    updated_at      REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS edges (
    id          TEXT PRIMARY KEY,
    source_id   TEXT NOT NULL REFERENCES nodes(id),
    target_id   TEXT NOT NULL REFERENCES nodes(id),
    type        TEXT NOT NULL,
    properties  TEXT NOT NULL DEFAULT '{}',
    weight      REAL DEFAULT NULL,
    created_at  REAL NOT NULL,
    updated_at  REAL NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_nodes_type   ON nodes(type);
CREATE INDEX IF NOT EXISTS idx_nodes_label  ON nodes(label);
CREATE INDEX IF NOT EXISTS idx_edges_source ON edges(source_id);
CREATE INDEX IF NOT EXISTS idx_edges_target ON edges(target_id);
CREATE INDEX IF NOT EXISTS idx_edges_type   ON edges(type);
"""

# Applied to databases created before embeddings were stored per node.
_MIGRATIONS = [
    "ALTER TABLE nodes ADD COLUMN embedding TEXT DEFAULT NULL",
    "ALTER TABLE nodes ADD COLUMN embedding_model TEXT DEFAULT NULL",
]

_NODE_COLUMNS = "id, type, label, properties, created_at, updated_at"
_EDGE_COLUMNS = (
    "id, source_id, target_id, type, properties, weight, created_at, updated_at"
)

# Distinguishes "leave weight alone" from "clear weight" in update_edge.
_UNSET: Any = object()


def _new_id() -> str:
    return str(uuid.uuid4())


def _dump_props(properties: Optional[dict]) -> str:
    return json.dumps(properties or {})


def _load_props(raw: Optional[str]) -> dict:
    if not raw:
        return {}
    return json.loads(raw)


def _row_to_node(row: sqlite3.Row) -> Node:
    return Node(
        id=row["id"],
        type=row["type"],
        label=row["label"],
        properties=_load_props(row["properties"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_edge(row: sqlite3.Row) -> Edge:
    return Edge(
        id=row["id"],
        source_id=row["source_id"],
        target_id=row["target_id"],
        type=row["type"],
        properties=_load_props(row["properties"]),
        weight=row["weight"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _page_clause(limit: Optional[int], offset: Optional[int]) -> tuple[str, list]:
    """Build a LIMIT/OFFSET suffix; SQLite needs LIMIT -1 for offset-only."""
    if limit is None and not offset:
        return "", []
    return " LIMIT ? OFFSET ?", [-1 if limit is None else limit, offset or 0]


class GraphStore:
    """
    Durable storage of typed nodes and directed, typed, weighted edges.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file, or ``":memory:"``.  Parent
        directories are created when missing.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path
        if db_path != ":memory:":
            os.makedirs(os.path.dirname(os.path.abspath(db_path)), exist_ok=True)
        self._conn: sqlite3.Connection | None = None
        self._init_db()
        logger.debug("[GraphStore] Opened %s", db_path)

    @property
    def db_path(self) -> str:
        return self._db_path

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _get_conn(self) -> sqlite3.Connection:
        """Lazily open the single connection used by this store."""
        if self._conn is None:
            conn = sqlite3.connect(self._db_path, timeout=10, check_same_thread=False)
            if self._db_path != ":memory:":
                conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA foreign_keys=ON")
            conn.row_factory = sqlite3.Row
            self._conn = conn
        return self._conn

    @contextmanager
    def _connect(self):
        """Yield the connection inside a transaction; commit or roll back."""
        conn = self._get_conn()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise

    def _init_db(self) -> None:
        """Create tables and run any pending schema migrations."""
        with self._connect() as conn:
            conn.executescript(_SCHEMA)
            columns = {
                row["name"] for row in conn.execute("PRAGMA table_info(nodes)")
            }
            for stmt in _MIGRATIONS:
                column = stmt.split("ADD COLUMN ", 1)[1].split()[0]
                if column not in columns:
                    conn.execute(stmt)

    @staticmethod
    def _check_endpoints(conn: sqlite3.Connection, pairs: Iterable[tuple[str, str]]) -> None:
        """Raise ReferentialIntegrityError for the first pair with a missing node."""
        pairs = list(pairs)
        wanted = {nid for pair in pairs for nid in pair}
        if not wanted:
            return
        placeholders = ",".join("?" for _ in wanted)
        found = {
            row["id"]
            for row in conn.execute(
                f"SELECT id FROM nodes WHERE id IN ({placeholders})", list(wanted)
            )
        }
        for source_id, target_id in pairs:
            if source_id not in found or target_id not in found:
                raise ReferentialIntegrityError(source_id, target_id)

    # ------------------------------------------------------------------
    # Node operations
    # ------------------------------------------------------------------

    def create_node(
        self,
        type: str,
        label: str,
        properties: Optional[dict[str, Any]] = None,
    ) -> Node:
        """Insert a new node with a fresh id and return it."""
        data = NodeCreate(type=type, label=label, properties=properties)
        data.validate()
        return self.bulk_create_nodes([data])[0]

    def bulk_create_nodes(self, items: list[NodeCreate]) -> list[Node]:
        """
        Insert every item as a new node in one transaction.

        Each item gets a fresh id; ids supplied by callers are not accepted.
        """
        for item in items:
            item.validate()
        now = time.time()
        created = [
            Node(
                id=_new_id(),
                type=item.type,
                label=item.label,
                properties=dict(item.properties or {}),
                created_at=now,
                updated_at=now,
            )
            for item in items
        ]
        with self._connect() as conn:
            conn.executemany(
                f"INSERT INTO nodes ({_NODE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?)",
                [
                    (n.id, n.type, n.label, _dump_props(n.properties),
                     n.created_at, n.updated_at)
                    for n in created
                ],
            )
        logger.debug("[GraphStore] Created %d node(s)", len(created))
        return created

    def get_node(self, node_id: str) -> Optional[Node]:
        """Return the node with *node_id*, or None if it does not exist."""
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_NODE_COLUMNS} FROM nodes WHERE id = ?", (node_id,)
            ).fetchone()
        return _row_to_node(row) if row is not None else None

    def get_nodes(self, node_ids: Iterable[str]) -> dict[str, Node]:
        """Return the existing nodes among *node_ids*, keyed by id."""
        ids = list(dict.fromkeys(node_ids))
        if not ids:
            return {}
        placeholders = ",".join("?" for _ in ids)
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {_NODE_COLUMNS} FROM nodes WHERE id IN ({placeholders})", ids
            ).fetchall()
        return {row["id"]: _row_to_node(row) for row in rows}

    def query_nodes(self, query: Optional[NodeQuery] = None) -> list[Node]:
        """
        Return nodes matching *query*, newest first.

        ``type`` is an exact match; ``label`` is a case-sensitive substring
        match.  ``limit``/``offset`` apply after filtering and ordering.
        """
        query = query or NodeQuery()
        if not isinstance(query, NodeQuery):
            raise MalformedInputError("query must be a NodeQuery")
        query.validate()
        conditions: list[str] = []
        params: list[Any] = []
        if query.type is not None:
            conditions.append("type = ?")
            params.append(query.type)
        if query.label is not None:
            conditions.append("instr(label, ?) > 0")
            params.append(query.label)
        sql = f"SELECT {_NODE_COLUMNS} FROM nodes"
        if conditions:
            sql += " WHERE " + " AND ".join(conditions)
        sql += " ORDER BY created_at DESC, rowid DESC"
        page_sql, page_params = _page_clause(query.limit, query.offset)
        with self._connect() as conn:
            rows = conn.execute(sql + page_sql, params + page_params).fetchall()
        return [_row_to_node(r) for r in rows]

    def search_nodes(
        self,
        query: str,
        limit: Optional[int] = None,
        types: Optional[list[str]] = None,
    ) -> list[Node]:
        """
        Case-insensitive label search, optionally restricted to *types*.
        """
        if not isinstance(query, str):
            raise MalformedInputError("query must be a string")
        if types is not None and (
            not isinstance(types, (list, tuple))
            or not all(isinstance(t, str) for t in types)
        ):
            raise MalformedInputError("types must be a list of strings")
        NodeQuery(limit=limit).validate()
        sql = f"SELECT {_NODE_COLUMNS} FROM nodes WHERE instr(lower(label), lower(?)) > 0"
        params: list[Any] = [query]
        if types:
            sql += f" AND type IN ({','.join('?' for _ in types)})"
            params.extend(types)
        sql += " ORDER BY created_at DESC, rowid DESC"
        page_sql, page_params = _page_clause(limit, None)
        with self._connect() as conn:
            rows = conn.execute(sql + page_sql, params + page_params).fetchall()
        return [_row_to_node(r) for r in rows]

    def update_node(
        self,
        node_id: str,
        label: Optional[str] = None,
        properties: Optional[dict[str, Any]] = None,
    ) -> Optional[Node]:
        """
        Change the label and/or properties of a node.

        The node type cannot be changed here.  Returns the updated node,
        or None if *node_id* does not exist.
        """
        NodeCreate(type="", label=label or "", properties=properties).validate()
        existing = self.get_node(node_id)
        if existing is None:
            return None
        return self.replace_node(
            node_id,
            type=existing.type,
            label=existing.label if label is None else label,
            properties=existing.properties if properties is None else properties,
        )

    def replace_node(
        self,
        node_id: str,
        type: str,
        label: str,
        properties: Optional[dict[str, Any]],
    ) -> Optional[Node]:
        """
        Overwrite type, label and properties of an existing node wholesale.

        Used by the merge engine's ``update`` strategy.
        """
        NodeCreate(type=type, label=label, properties=properties).validate()
        now = time.time()
        with self._connect() as conn:
            cur = conn.execute(
                "UPDATE nodes SET type = ?, label = ?, properties = ?, updated_at = ? "
                "WHERE id = ?",
                (type, label, _dump_props(properties), now, node_id),
            )
            if cur.rowcount == 0:
                return None
        return self.get_node(node_id)

    def delete_node(self, node_id: str) -> Optional[DeleteResult]:
        """
        Delete a node and every edge where it is source or target.

        Returns the number of removed edges, or None if the node does not
        exist.
        """
        with self._connect() as conn:
            row = conn.execute("SELECT 1 FROM nodes WHERE id = ?", (node_id,)).fetchone()
            if row is None:
                return None
            cur = conn.execute(
                "DELETE FROM edges WHERE source_id = ? OR target_id = ?",
                (node_id, node_id),
            )
            deleted_edges = cur.rowcount
            conn.execute("DELETE FROM nodes WHERE id = ?", (node_id,))
        logger.debug("[GraphStore] Deleted node %s and %d edge(s)", node_id, deleted_edges)
        return DeleteResult(deleted_edges=deleted_edges)

    # ------------------------------------------------------------------
    # Edge operations
    # ------------------------------------------------------------------

    def create_edge(
        self,
        source_id: str,
        target_id: str,
        type: str,
        properties: Optional[dict[str, Any]] = None,
        weight: Optional[float] = None,
    ) -> Edge:
        """
        Insert a new edge.

        Raises
        ------
        ReferentialIntegrityError
            If either endpoint does not exist.
        """
        data = EdgeCreate(
            source_id=source_id, target_id=target_id, type=type,
            properties=properties, weight=weight,
        )
        return self.bulk_create_edges([data])[0]

    def bulk_create_edges(self, items: list[EdgeCreate]) -> list[Edge]:
        """
        Insert every item as a new edge in one transaction.

        A missing endpoint in any item fails the whole batch.
        """
        for item in items:
            item.validate()
        now = time.time()
        created = [
            Edge(
                id=_new_id(),
                source_id=item.source_id,
                target_id=item.target_id,
                type=item.type,
                properties=dict(item.properties or {}),
                weight=None if item.weight is None else float(item.weight),
                created_at=now,
                updated_at=now,
            )
            for item in items
        ]
        with self._connect() as conn:
            self._check_endpoints(conn, [(e.source_id, e.target_id) for e in created])
            try:
                conn.executemany(
                    f"INSERT INTO edges ({_EDGE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    [
                        (e.id, e.source_id, e.target_id, e.type,
                         _dump_props(e.properties), e.weight, e.created_at, e.updated_at)
                        for e in created
                    ],
                )
            except sqlite3.IntegrityError as exc:
                first = created[0]
                raise ReferentialIntegrityError(first.source_id, first.target_id) from exc
        logger.debug("[GraphStore] Created %d edge(s)", len(created))
        return created

    def get_edge(self, edge_id: str) -> Optional[Edge]:
        """Return the edge with *edge_id*, or None if it does not exist."""
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_EDGE_COLUMNS} FROM edges WHERE id = ?", (edge_id,)
            ).fetchone()
        return _row_to_edge(row) if row is not None else None

    def query_edges(self, query: Optional[EdgeQuery] = None) -> list[Edge]:
        """Return edges matching every given field of *query*, newest first."""
        query = query or EdgeQuery()
        if not isinstance(query, EdgeQuery):
            raise MalformedInputError("query must be an EdgeQuery")
        query.validate()
        conditions: list[str] = []
        params: list[Any] = []
        for column in ("source_id", "target_id", "type"):
            value = getattr(query, column)
            if value is not None:
                conditions.append(f"{column} = ?")
                params.append(value)
        sql = f"SELECT {_EDGE_COLUMNS} FROM edges"
        if conditions:
            sql += " WHERE " + " AND ".join(conditions)
        sql += " ORDER BY created_at DESC, rowid DESC"
        page_sql, page_params = _page_clause(query.limit, query.offset)
        with self._connect() as conn:
            rows = conn.execute(sql + page_sql, params + page_params).fetchall()
        return [_row_to_edge(r) for r in rows]

    def edges_in(self, node_id: str) -> list[Edge]:
        """Edges whose target is *node_id*, in insertion order."""
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {_EDGE_COLUMNS} FROM edges WHERE target_id = ? ORDER BY rowid",
                (node_id,),
            ).fetchall()
        return [_row_to_edge(r) for r in rows]

    def edges_out(self, node_id: str) -> list[Edge]:
        """Edges whose source is *node_id*, in insertion order."""
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {_EDGE_COLUMNS} FROM edges WHERE source_id = ? ORDER BY rowid",
                (node_id,),
            ).fetchall()
        return [_row_to_edge(r) for r in rows]

    def update_edge(
        self,
        edge_id: str,
        type: Optional[str] = None,
        properties: Optional[dict[str, Any]] = None,
        weight: Any = _UNSET,
    ) -> Optional[Edge]:
        """
        Change the type, properties and/or weight of an edge.

        Pass ``weight=None`` to clear the weight; omit it to keep the
        current one.  Returns None if *edge_id* does not exist.
        """
        EdgeCreate(
            source_id="", target_id="", type=type or "", properties=properties,
            weight=None if weight is _UNSET else weight,
        ).validate()
        existing = self.get_edge(edge_id)
        if existing is None:
            return None
        new_type = existing.type if type is None else type
        new_props = existing.properties if properties is None else properties
        new_weight = existing.weight if weight is _UNSET else weight
        with self._connect() as conn:
            conn.execute(
                "UPDATE edges SET type = ?, properties = ?, weight = ?, updated_at = ? "
                "WHERE id = ?",
                (new_type, _dump_props(new_props),
                 None if new_weight is None else float(new_weight),
                 time.time(), edge_id),
            )
        return self.get_edge(edge_id)

    def delete_edge(self, edge_id: str) -> Optional[Edge]:
        """Delete an edge and return it, or None if it does not exist."""
        edge = self.get_edge(edge_id)
        if edge is None:
            return None
        with self._connect() as conn:
            conn.execute("DELETE FROM edges WHERE id = ?", (edge_id,))
        return edge

    # ------------------------------------------------------------------
    # Embeddings
    # ------------------------------------------------------------------

    def set_node_embedding(self, node_id: str, vector: list[float], model: str) -> bool:
        """
        Store *vector* as the embedding of *node_id*, tagged with *model*.

        Does not touch ``updated_at``: embeddings are derived data.
        Returns False if the node does not exist.
        """
        with self._connect() as conn:
            cur = conn.execute(
                "UPDATE nodes SET embedding = ?, embedding_model = ? WHERE id = ?",
                (json.dumps([float(v) for v in vector]), model, node_id),
            )
        return cur.rowcount > 0

    def get_node_embedding(self, node_id: str) -> Optional[tuple[list[float], str]]:
        """Return ``(vector, model)`` for *node_id*, or None if absent."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT embedding, embedding_model FROM nodes WHERE id = ?", (node_id,)
            ).fetchone()
        if row is None or row["embedding"] is None:
            return None
        return json.loads(row["embedding"]), row["embedding_model"]

    def nodes_with_embeddings(
        self,
        model: Optional[str] = None,
        node_types: Optional[list[str]] = None,
    ) -> list[tuple[Node, list[float]]]:
        """Return ``(node, vector)`` for nodes with a cached embedding."""
        sql = f"SELECT {_NODE_COLUMNS}, embedding FROM nodes WHERE embedding IS NOT NULL"
        params: list[Any] = []
        if model is not None:
            sql += " AND embedding_model = ?"
            params.append(model)
        if node_types:
            sql += f" AND type IN ({','.join('?' for _ in node_types)})"
            params.extend(node_types)
        sql += " ORDER BY created_at DESC, rowid DESC"
        with self._connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [(_row_to_node(r), json.loads(r["embedding"])) for r in rows]

    def nodes_missing_embeddings(self) -> list[Node]:
        """Return nodes that have no cached embedding yet."""
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {_NODE_COLUMNS} FROM nodes WHERE embedding IS NULL "
                "ORDER BY created_at, rowid"
            ).fetchall()
        return [_row_to_node(r) for r in rows]

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def counts(self) -> tuple[int, int]:
        """Return ``(node_count, edge_count)``."""
        with self._connect() as conn:
            nodes = conn.execute("SELECT COUNT(*) FROM nodes").fetchone()[0]
            edges = conn.execute("SELECT COUNT(*) FROM edges").fetchone()[0]
        return nodes, edges

    def clear(self) -> None:
        """Delete all edges and nodes."""
        with self._connect() as conn:
            conn.execute("DELETE FROM edges")
            conn.execute("DELETE FROM nodes")

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            try:
                self._conn.close()
            except sqlite3.Error as exc:
                logger.warning("[GraphStore] Error while closing %s: %s", self._db_path, exc)
            self._conn = None
