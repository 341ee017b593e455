"""SQLite node store for StudyMap."""

import sqlite3
import json
import os
import uuid
from contextlib import contextmanager
from pathlib import Path
from datetime import datetime
from typing import Optional, List, Any, Iterable
from dataclasses import dataclass, field, asdict

from loguru import logger

from studymap.errors import (
    MapNotFoundError,
    NodeLimitError,
    NodeNotFoundError,
    StructuralConflictError,
)
from studymap.hierarchy import TreeIndex, find_cycle_members, iter_subtree, would_create_cycle
from studymap.validation import validate_content, validate_title

DEFAULT_NODE_LIMIT = 250

_KEEP = object()


def get_data_dir() -> Path:
    """Get the application data directory."""
    override = os.environ.get("STUDYMAP_DATA_DIR")
    data_dir = Path(override).expanduser() if override else Path.home() / ".local" / "share" / "studymap"
    data_dir.mkdir(parents=True, exist_ok=True)
    (data_dir / "exports").mkdir(exist_ok=True)
    return data_dir


def get_db_path() -> Path:
    """Get the database file path."""
    return get_data_dir() / "studymap.db"


def new_id() -> str:
    return uuid.uuid4().hex


@dataclass
class MapSettings:
    """Layout and limit settings for a specific map."""
    horizontal_spacing: float = 300.0
    vertical_spacing: float = 140.0
    node_limit: int = DEFAULT_NODE_LIMIT

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, data: Optional[str]) -> "MapSettings":
        if not data:
            return cls()
        try:
            d = json.loads(data)
            # Filter to only known fields to handle schema evolution
            known = {f.name for f in cls.__dataclass_fields__.values()}
            return cls(**{k: v for k, v in d.items() if k in known})
        except (json.JSONDecodeError, TypeError, AttributeError):
            return cls()


@dataclass
class MindMap:
    """Represents a mind map."""
    id: str = ""
    title: str = "Untitled Map"
    created_at: str = ""
    modified_at: str = ""
    settings: MapSettings = field(default_factory=MapSettings)


@dataclass
class Node:
    """Represents a node in the mind map."""
    id: str = ""
    map_id: str = ""
    parent_id: Optional[str] = None
    title: str = "New Topic"
    content: Optional[str] = None
    order_index: int = 0
    created_at: str = ""
    modified_at: str = ""


@dataclass
class IntegrityReport:
    """Structural problems found in a stored map."""
    map_id: str
    node_count: int = 0
    dangling: List[str] = field(default_factory=list)
    cyclic: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.dangling and not self.cyclic


def _row_to_node(row: sqlite3.Row) -> Node:
    return Node(
        id=row["id"],
        map_id=row["map_id"],
        parent_id=row["parent_id"],
        title=row["title"],
        content=row["content"],
        order_index=row["order_index"],
        created_at=row["created_at"],
        modified_at=row["modified_at"],
    )


def _row_to_map(row: sqlite3.Row) -> MindMap:
    return MindMap(
        id=row["id"],
        title=row["title"],
        created_at=row["created_at"],
        modified_at=row["modified_at"],
        settings=MapSettings.from_json(row["settings"]),
    )


class Database:
    """Authoritative store for maps and nodes.

    Each viewing session should hold its own Database instance; structural
    writes serialize on SQLite's write lock.
    """

    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = db_path or get_db_path()
        self._conn: Optional[sqlite3.Connection] = None
        self._init_db()

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(str(self.db_path))
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys = ON")
            self._conn.execute("PRAGMA journal_mode = WAL")
        return self._conn

    def _init_db(self):
        """Initialize the database schema."""
        cursor = self.conn.cursor()

        cursor.executescript("""
            CREATE TABLE IF NOT EXISTS maps (
                id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                modified_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                settings JSON
            );

            CREATE TABLE IF NOT EXISTS nodes (
                id TEXT PRIMARY KEY,
                map_id TEXT NOT NULL,
                parent_id TEXT,
                title TEXT NOT NULL,
                content TEXT,
                order_index INTEGER DEFAULT 0,
                created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                modified_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                FOREIGN KEY (map_id) REFERENCES maps(id) ON DELETE CASCADE,
                FOREIGN KEY (parent_id) REFERENCES nodes(id) ON DELETE CASCADE
            );

            CREATE TABLE IF NOT EXISTS settings (
                key TEXT PRIMARY KEY,
                value JSON
            );

            CREATE INDEX IF NOT EXISTS idx_nodes_map_id ON nodes(map_id);
            CREATE INDEX IF NOT EXISTS idx_nodes_parent_id ON nodes(parent_id);
        """)

        self.conn.commit()

    def close(self):
        """Close the database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    @contextmanager
    def _write_transaction(self):
        """Run a block under SQLite's write lock, committing on success.

        BEGIN IMMEDIATE takes the lock before the first read, so reads made
        inside the block see the state the write will be applied to.
        """
        cursor = self.conn.cursor()
        cursor.execute("BEGIN IMMEDIATE")
        try:
            yield cursor
        except BaseException:
            self.conn.rollback()
            raise
        self.conn.commit()

    def _check_capacity(self, cursor: sqlite3.Cursor, map_id: str, adding: int):
        """Raise unless `adding` more nodes fit under the map's node limit."""
        row = cursor.execute("SELECT settings FROM maps WHERE id = ?", (map_id,)).fetchone()
        if not row:
            raise MapNotFoundError(map_id)
        settings = MapSettings.from_json(row["settings"])

        count = cursor.execute(
            "SELECT COUNT(*) FROM nodes WHERE map_id = ?", (map_id,)
        ).fetchone()[0]
        if count + adding > settings.node_limit:
            raise NodeLimitError(map_id, settings.node_limit, count)

    def _check_parent(self, cursor: sqlite3.Cursor, map_id: str,
                      node_id: Optional[str], parent_id: Optional[str]):
        """Raise unless parent_id is None or names a node of the same map."""
        if parent_id is None:
            return
        parent = cursor.execute("SELECT map_id FROM nodes WHERE id = ?", (parent_id,)).fetchone()
        if not parent:
            raise StructuralConflictError(
                node_id, parent_id, "missing_parent", f"Parent node does not exist: {parent_id}"
            )
        if parent["map_id"] != map_id:
            raise StructuralConflictError(
                node_id, parent_id, "foreign_parent",
                f"Parent node {parent_id} belongs to another mind map"
            )

    # ==================== Map Operations ====================

    def create_map(self, title: str = "Untitled Map", root_title: Optional[str] = None) -> MindMap:
        """Create a new mind map, optionally with a root node."""
        now = datetime.now().isoformat()
        # App-level preference applied at map creation time.
        settings = MapSettings(
            node_limit=int(self.get_setting("default_node_limit", DEFAULT_NODE_LIMIT))
        )
        mind_map = MindMap(id=new_id(), title=title, created_at=now, modified_at=now, settings=settings)

        self.conn.execute(
            "INSERT INTO maps (id, title, created_at, modified_at, settings) VALUES (?, ?, ?, ?, ?)",
            (mind_map.id, title, now, now, settings.to_json())
        )
        self.conn.commit()
        logger.debug("Created map {} ({})", mind_map.id, title)

        if root_title is not None:
            self.create_node(mind_map.id, root_title)
        return mind_map

    def get_map(self, map_id: str) -> Optional[MindMap]:
        """Get a mind map by ID."""
        row = self.conn.execute("SELECT * FROM maps WHERE id = ?", (map_id,)).fetchone()
        return _row_to_map(row) if row else None

    def require_map(self, map_id: str) -> MindMap:
        mind_map = self.get_map(map_id)
        if mind_map is None:
            raise MapNotFoundError(map_id)
        return mind_map

    def get_all_maps(self) -> List[MindMap]:
        """Get all mind maps, most recently modified first."""
        rows = self.conn.execute("SELECT * FROM maps ORDER BY modified_at DESC").fetchall()
        return [_row_to_map(row) for row in rows]

    def update_map(self, mind_map: MindMap):
        """Update a mind map's title and settings."""
        now = datetime.now().isoformat()
        self.conn.execute(
            "UPDATE maps SET title = ?, modified_at = ?, settings = ? WHERE id = ?",
            (mind_map.title, now, mind_map.settings.to_json(), mind_map.id)
        )
        self.conn.commit()

    def delete_map(self, map_id: str):
        """Delete a mind map and all its nodes."""
        self.conn.execute("DELETE FROM maps WHERE id = ?", (map_id,))
        self.conn.commit()

    # ==================== Node Operations ====================

    def list_nodes(self, map_id: str, limit: Optional[int] = None) -> List[Node]:
        """Get all nodes for a map in creation order."""
        rows = self.conn.execute(
            "SELECT * FROM nodes WHERE map_id = ? ORDER BY order_index, created_at",
            (map_id,)
        ).fetchall()
        nodes = [_row_to_node(row) for row in rows]
        if limit is not None:
            nodes = nodes[:limit]
        return nodes

    def count_nodes(self, map_id: str) -> int:
        row = self.conn.execute("SELECT COUNT(*) FROM nodes WHERE map_id = ?", (map_id,)).fetchone()
        return int(row[0])

    def get_node(self, node_id: str) -> Optional[Node]:
        """Get a node by ID."""
        row = self.conn.execute("SELECT * FROM nodes WHERE id = ?", (node_id,)).fetchone()
        return _row_to_node(row) if row else None

    def require_node(self, node_id: str) -> Node:
        node = self.get_node(node_id)
        if node is None:
            raise NodeNotFoundError(node_id)
        return node

    def get_children(self, node_id: str) -> List[Node]:
        """Get child nodes of a node."""
        rows = self.conn.execute(
            "SELECT * FROM nodes WHERE parent_id = ? ORDER BY order_index",
            (node_id,)
        ).fetchall()
        return [_row_to_node(row) for row in rows]

    def create_node(self, map_id: str, title: str, content: Optional[str] = None,
                    parent_id: Optional[str] = None) -> Node:
        """Create a new node at the end of the map's creation order."""
        title = validate_title(title)
        content = validate_content(content)
        now = datetime.now().isoformat()

        with self._write_transaction() as cursor:
            self._check_capacity(cursor, map_id, 1)
            self._check_parent(cursor, map_id, None, parent_id)

            order_index = cursor.execute(
                "SELECT COALESCE(MAX(order_index), -1) + 1 FROM nodes WHERE map_id = ?",
                (map_id,)
            ).fetchone()[0]

            node = Node(
                id=new_id(),
                map_id=map_id,
                parent_id=parent_id,
                title=title,
                content=content,
                order_index=order_index,
                created_at=now,
                modified_at=now,
            )
            cursor.execute(
                """INSERT INTO nodes (id, map_id, parent_id, title, content, order_index, created_at, modified_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (node.id, map_id, parent_id, title, content, order_index, now, now)
            )
            cursor.execute("UPDATE maps SET modified_at = ? WHERE id = ?", (now, map_id))

        return node

    def update_node(self, node_id: str, title: Any = _KEEP, content: Any = _KEEP) -> Node:
        """Update a node's title and/or content.

        Text edits cannot change structure, so no cycle check is made here.
        """
        if title is not _KEEP:
            title = validate_title(title)
        if content is not _KEEP:
            content = validate_content(content)
        now = datetime.now().isoformat()

        with self._write_transaction() as cursor:
            row = cursor.execute("SELECT * FROM nodes WHERE id = ?", (node_id,)).fetchone()
            if not row:
                raise NodeNotFoundError(node_id)
            node = _row_to_node(row)
            if title is not _KEEP:
                node.title = title
            if content is not _KEEP:
                node.content = content
            node.modified_at = now

            cursor.execute(
                "UPDATE nodes SET title = ?, content = ?, modified_at = ? WHERE id = ?",
                (node.title, node.content, now, node_id)
            )
            if cursor.rowcount == 0:
                raise NodeNotFoundError(node_id)
            cursor.execute("UPDATE maps SET modified_at = ? WHERE id = ?", (now, node.map_id))

        return node

    def set_parent(self, node_id: str, new_parent_id: Optional[str]) -> Node:
        """Move a node under a new parent, or detach it to a root.

        The ancestry of the new parent is re-read inside the write
        transaction, never taken from a caller's snapshot.
        """
        now = datetime.now().isoformat()

        with self._write_transaction() as cursor:
            row = cursor.execute("SELECT * FROM nodes WHERE id = ?", (node_id,)).fetchone()
            if not row:
                raise NodeNotFoundError(node_id)

            if new_parent_id is not None:
                self._check_parent(cursor, row["map_id"], node_id, new_parent_id)

                def parent_of(current_id: str) -> Optional[str]:
                    r = cursor.execute(
                        "SELECT parent_id FROM nodes WHERE id = ?", (current_id,)
                    ).fetchone()
                    return r["parent_id"] if r else None

                if would_create_cycle(node_id, new_parent_id, parent_of):
                    logger.warning("Rejected move of {} under {}: cycle", node_id, new_parent_id)
                    raise StructuralConflictError(
                        node_id, new_parent_id, "cycle",
                        "Cannot create circular reference"
                    )

            cursor.execute(
                "UPDATE nodes SET parent_id = ?, modified_at = ? WHERE id = ?",
                (new_parent_id, now, node_id)
            )
            cursor.execute("UPDATE maps SET modified_at = ? WHERE id = ?", (now, row["map_id"]))

        logger.info("Moved node {} under {}", node_id, new_parent_id)
        node = _row_to_node(row)
        node.parent_id = new_parent_id
        node.modified_at = now
        return node

    def delete_node(self, node_id: str) -> List[Node]:
        """Delete a node and all its descendants.

        Returns the removed subtree, parents before children, so it can be
        restored later.
        """
        with self._write_transaction() as cursor:
            rows = cursor.execute(
                """WITH RECURSIVE subtree(id) AS (
                       SELECT id FROM nodes WHERE id = ?
                       UNION
                       SELECT n.id FROM nodes n JOIN subtree s ON n.parent_id = s.id
                   )
                   SELECT nodes.* FROM nodes JOIN subtree ON nodes.id = subtree.id
                   ORDER BY nodes.order_index""",
                (node_id,)
            ).fetchall()
            if not rows:
                raise NodeNotFoundError(node_id)

            removed = list(iter_subtree(TreeIndex([_row_to_node(row) for row in rows]), node_id))
            cursor.execute("DELETE FROM nodes WHERE id = ?", (node_id,))
            cursor.execute(
                "UPDATE maps SET modified_at = ? WHERE id = ?",
                (datetime.now().isoformat(), removed[0].map_id)
            )

        logger.info("Deleted node {} with {} descendant(s)", node_id, len(removed) - 1)
        return removed

    def restore_subtree(self, nodes: Iterable[Node]):
        """Re-insert previously deleted nodes (for undo), parents first.

        The subtree root's parent is checked like a new node's parent, and
        the whole subtree must fit under the map's node limit.
        """
        nodes = list(nodes)
        if not nodes:
            return
        root = nodes[0]
        now = datetime.now().isoformat()
        with self._write_transaction() as cursor:
            self._check_capacity(cursor, root.map_id, len(nodes))
            self._check_parent(cursor, root.map_id, root.id, root.parent_id)
            for node in nodes:
                cursor.execute(
                    """INSERT INTO nodes (id, map_id, parent_id, title, content, order_index, created_at, modified_at)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                    (node.id, node.map_id, node.parent_id, node.title, node.content,
                     node.order_index, node.created_at or now, now)
                )
                cursor.execute("UPDATE maps SET modified_at = ? WHERE id = ?", (now, node.map_id))

    # ==================== Integrity ====================

    def check_integrity(self, map_id: str) -> IntegrityReport:
        """Report dangling parent references and stored cycles for a map."""
        self.require_map(map_id)
        nodes = self.list_nodes(map_id)
        tree = TreeIndex(nodes)
        return IntegrityReport(
            map_id=map_id,
            node_count=len(nodes),
            dangling=[n.id for n in tree.dangling()],
            cyclic=sorted(find_cycle_members(tree)),
        )

    # ==================== Settings Operations ====================

    def get_setting(self, key: str, default: Any = None) -> Any:
        """Get an application setting."""
        row = self.conn.execute("SELECT value FROM settings WHERE key = ?", (key,)).fetchone()

        if not row:
            return default

        try:
            return json.loads(row["value"])
        except json.JSONDecodeError:
            return default

    def set_setting(self, key: str, value: Any):
        """Set an application setting."""
        self.conn.execute(
            "INSERT OR REPLACE INTO settings (key, value) VALUES (?, ?)",
            (key, json.dumps(value))
        )
        self.conn.commit()
