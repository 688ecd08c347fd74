"""
SQLite persistence store for AI Memory MCP
Copyright 2025 Jurden Bruce
"""

import sqlite3
import json
import logging
import threading
import traceback
import uuid
from typing import List, Dict, Any, Optional, Tuple, Callable, Iterable
from datetime import datetime
from pathlib import Path

from ..errors import NotFoundError, StorageError, ValidationError
from ..models import (
    DEFAULT_MEMORY_TYPE,
    DEFAULT_PROJECT,
    DEFAULT_STRENGTH,
    Memory,
    MemoryFilter,
    MemoryRelationship,
    RelationshipType,
    SessionContext,
    is_valid_strength,
)
from ..utils import register_sqlite_adapters

logger = logging.getLogger("ai-memory.sqlite")

# Filter field -> column, per table. Filters are compiled only through these.
MEMORY_FILTER_COLUMNS = {
    "id": "id",
    "owner": "user_id",
    "project": "project",
    "type": "memory_type",
}
RELATIONSHIP_FILTER_COLUMNS = {
    "id": "id",
    "from_id": "from_memory_id",
    "to_id": "to_memory_id",
}

# SQLite caps bound variables per statement
MAX_IN_PARAMS = 500

SCHEMA = """
    CREATE TABLE IF NOT EXISTS memories (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        content TEXT NOT NULL,
        embedding_id TEXT,
        project TEXT NOT NULL DEFAULT 'default',
        memory_type TEXT NOT NULL DEFAULT 'general',
        metadata TEXT NOT NULL DEFAULT '{}',
        created_at TIMESTAMP NOT NULL,
        updated_at TIMESTAMP NOT NULL,
        accessed_at TIMESTAMP NOT NULL
    );

    CREATE TABLE IF NOT EXISTS memory_relationships (
        id TEXT PRIMARY KEY,
        from_memory_id TEXT NOT NULL,
        to_memory_id TEXT NOT NULL,
        relationship_type TEXT NOT NULL,
        strength REAL NOT NULL DEFAULT 0.5,
        created_at TIMESTAMP NOT NULL,
        FOREIGN KEY (from_memory_id) REFERENCES memories(id),
        FOREIGN KEY (to_memory_id) REFERENCES memories(id)
    );

    CREATE TABLE IF NOT EXISTS user_sessions (
        user_id TEXT PRIMARY KEY,
        current_project TEXT NOT NULL DEFAULT 'default',
        last_active TIMESTAMP NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_memories_user_project ON memories(user_id, project);
    CREATE INDEX IF NOT EXISTS idx_memories_type ON memories(memory_type);
    CREATE INDEX IF NOT EXISTS idx_memories_created ON memories(created_at DESC);
    CREATE INDEX IF NOT EXISTS idx_relationships_from ON memory_relationships(from_memory_id);
"""

# (column, statement) pairs applied when the column is absent
MIGRATIONS = [
    ("embedding_id", "ALTER TABLE memories ADD COLUMN embedding_id TEXT"),
]


def compile_filter(conditions: Dict[str, Any], columns: Dict[str, str]) -> Tuple[str, List[Any]]:
    """Compile field -> value equality conditions into a WHERE clause.

    A list or tuple value becomes an IN clause. Returns the clause (empty
    when there are no conditions) and the bound values, one per placeholder.
    """
    clauses = []
    params: List[Any] = []
    for field_name, value in conditions.items():
        if field_name not in columns:
            raise ValueError(f"Unknown filter field: {field_name}")
        column = columns[field_name]
        if isinstance(value, (list, tuple)):
            if not value:
                clauses.append("0")
                continue
            clauses.append(f"{column} IN ({', '.join('?' * len(value))})")
            params.extend(value)
        else:
            clauses.append(f"{column} = ?")
            params.append(value)

    if not clauses:
        return "", params
    return "WHERE " + " AND ".join(clauses), params


def compile_insert(table: str, values: Dict[str, Any]) -> Tuple[str, List[Any]]:
    """INSERT statement with one placeholder per bound value"""
    columns = ", ".join(values)
    placeholders = ", ".join("?" * len(values))
    return f"INSERT INTO {table} ({columns}) VALUES ({placeholders})", list(values.values())


def _chunks(items: List[Any], size: int) -> Iterable[List[Any]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


class SQLiteStore:
    """Durable storage for memories, relationships and sessions"""

    def __init__(self, db_path, error_log: List[Dict[str, Any]],
                 db_lock: Optional[threading.RLock] = None,
                 clock: Callable[[], datetime] = datetime.now):
        self.db_path = db_path
        self.conn: Optional[sqlite3.Connection] = None
        self._lock = db_lock or threading.RLock()
        self.error_log = error_log
        self.clock = clock

    def _log_error(self, operation: str, error: Exception):
        """Log detailed error information"""
        error_entry = {
            "timestamp": datetime.now().isoformat(),
            "operation": operation,
            "error_type": type(error).__name__,
            "error_msg": str(error),
            "traceback": traceback.format_exc(),
        }
        self.error_log.append(error_entry)
        if len(self.error_log) > 100:
            del self.error_log[:-100]

    def initialize(self):
        """Open the connection and create the schema"""
        register_sqlite_adapters()
        try:
            if str(self.db_path) != ":memory:":
                Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
            self.conn = sqlite3.connect(
                str(self.db_path),
                check_same_thread=False,
                timeout=30.0,
                detect_types=sqlite3.PARSE_DECLTYPES,
            )
            self.conn.row_factory = sqlite3.Row
            with self._lock:
                self.conn.execute("PRAGMA foreign_keys = ON")
                self.conn.executescript(SCHEMA)
                self.conn.commit()
                self._migrate()
            logger.info(f"SQLite initialized at {self.db_path}")
        except sqlite3.Error as e:
            logger.error(f"SQLite initialization failed: {e}")
            self._log_error("sqlite_init", e)
            self.conn = None
            raise StorageError(f"SQLite initialization failed: {e}") from e

    def _migrate(self):
        """Add columns missing from databases created by older versions"""
        cursor = self.conn.cursor()
        try:
            cursor.execute("PRAGMA table_info(memories)")
            columns = {row[1] for row in cursor.fetchall()}
            for col_name, sql in MIGRATIONS:
                if col_name not in columns:
                    logger.info(f"Migrating: adding {col_name} column")
                    cursor.execute(sql)
            self.conn.commit()
        except sqlite3.Error as e:
            logger.warning(f"Migration error (non-fatal): {e}")
            self._log_error("sqlite_migrate", e)
            self.conn.rollback()

    def is_available(self) -> bool:
        return self.conn is not None

    def _require_conn(self) -> sqlite3.Connection:
        if not self.conn:
            raise StorageError("Database not available")
        return self.conn

    # ===== MEMORIES =====

    def create_memory(
        self,
        owner: str,
        content: str,
        project: Optional[str] = None,
        memory_type: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        memory_id: Optional[str] = None,
    ) -> Memory:
        """Persist a new memory record and return it"""
        if not isinstance(content, str) or not content.strip():
            raise ValidationError("Memory content must not be empty")
        if metadata is None:
            metadata = {}
        if not isinstance(metadata, dict):
            raise ValidationError("Memory metadata must be a mapping")
        try:
            metadata_json = json.dumps(metadata)
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Memory metadata is not JSON-serializable: {e}") from e

        now = self.clock()
        memory = Memory(
            id=memory_id or str(uuid.uuid4()),
            owner=owner,
            content=content,
            project=project or DEFAULT_PROJECT,
            memory_type=memory_type or DEFAULT_MEMORY_TYPE,
            metadata=metadata,
            created_at=now,
            updated_at=now,
            accessed_at=now,
        )
        memory.embedding_id = memory.id

        sql, params = compile_insert("memories", {
            "id": memory.id,
            "user_id": memory.owner,
            "content": memory.content,
            "embedding_id": memory.embedding_id,
            "project": memory.project,
            "memory_type": memory.memory_type,
            "metadata": metadata_json,
            "created_at": memory.created_at,
            "updated_at": memory.updated_at,
            "accessed_at": memory.accessed_at,
        })

        conn = self._require_conn()
        try:
            with self._lock:
                conn.execute(sql, params)
                conn.commit()
        except sqlite3.Error as e:
            logger.error(f"SQLite store failed for {memory.id}: {e}")
            self._log_error("create_memory", e)
            with self._lock:
                conn.rollback()
            raise StorageError(f"Failed to store memory: {e}") from e

        logger.debug(f"Stored memory {memory.id}")
        return memory

    def get_memory(self, memory_id: str, owner: Optional[str] = None) -> Optional[Memory]:
        """Retrieve memory by ID, optionally scoped to an owner"""
        conditions = {"id": memory_id}
        if owner is not None:
            conditions["owner"] = owner
        rows = self._select_memories(conditions)
        return Memory.from_row(rows[0]) if rows else None

    def get_memories_by_ids(self, ids: List[str], owner: Optional[str] = None,
                            preserve_order: bool = True) -> List[Memory]:
        """Fetch matching records; ids that do not resolve are omitted"""
        if not ids:
            return []

        unique_ids = list(dict.fromkeys(ids))
        found: Dict[str, Memory] = {}
        for chunk in _chunks(unique_ids, MAX_IN_PARAMS):
            conditions: Dict[str, Any] = {"id": chunk}
            if owner is not None:
                conditions["owner"] = owner
            for row in self._select_memories(conditions):
                found[row["id"]] = Memory.from_row(row)

        if preserve_order:
            return [found[memory_id] for memory_id in unique_ids if memory_id in found]
        return list(found.values())

    def list_memories(self, memory_filter: MemoryFilter, limit: Optional[int] = None) -> List[Memory]:
        """Structured listing, newest first"""
        rows = self._select_memories(memory_filter.conditions(), limit=limit)
        return [Memory.from_row(row) for row in rows]

    def touch_accessed(self, ids: List[str]):
        """Refresh accessed_at for the given memories"""
        if not ids:
            return
        conn = self._require_conn()
        now = self.clock()
        try:
            with self._lock:
                for chunk in _chunks(list(ids), MAX_IN_PARAMS):
                    where, params = compile_filter({"id": chunk}, MEMORY_FILTER_COLUMNS)
                    conn.execute(f"UPDATE memories SET accessed_at = ? {where}", [now] + params)
                conn.commit()
        except sqlite3.Error as e:
            logger.error(f"Access update failed: {e}")
            self._log_error("touch_accessed", e)
            with self._lock:
                conn.rollback()
            raise StorageError(f"Failed to update access time: {e}") from e

    def _select_memories(self, conditions: Dict[str, Any], limit: Optional[int] = None) -> List[sqlite3.Row]:
        conn = self._require_conn()
        where, params = compile_filter(conditions, MEMORY_FILTER_COLUMNS)
        sql = f"SELECT * FROM memories {where} ORDER BY created_at DESC, id"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        try:
            with self._lock:
                return conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            logger.error(f"Memory query failed: {e}")
            self._log_error("select_memories", e)
            raise StorageError(f"Failed to read memories: {e}") from e

    # ===== RELATIONSHIPS =====

    def create_relationship(
        self,
        from_id: str,
        to_id: str,
        relationship_type: str,
        strength: float = DEFAULT_STRENGTH,
        owner: Optional[str] = None,
    ) -> MemoryRelationship:
        """Create a directed relationship between two existing memories"""
        if relationship_type not in RelationshipType.values():
            raise ValidationError(
                f"Unknown relationship type '{relationship_type}'. "
                f"Expected one of: {', '.join(RelationshipType.values())}"
            )
        if not is_valid_strength(strength):
            raise ValidationError(f"Relationship strength must be between 0.0 and 1.0, got {strength!r}")

        missing = [memory_id for memory_id in (from_id, to_id)
                   if self.get_memory(memory_id, owner=owner) is None]
        if missing:
            raise NotFoundError(f"Memory not found: {', '.join(dict.fromkeys(missing))}")

        relationship = MemoryRelationship(
            id=str(uuid.uuid4()),
            from_memory_id=from_id,
            to_memory_id=to_id,
            relationship_type=str(RelationshipType(relationship_type).value),
            strength=float(strength),
            created_at=self.clock(),
        )
        sql, params = compile_insert("memory_relationships", {
            "id": relationship.id,
            "from_memory_id": relationship.from_memory_id,
            "to_memory_id": relationship.to_memory_id,
            "relationship_type": relationship.relationship_type,
            "strength": relationship.strength,
            "created_at": relationship.created_at,
        })

        conn = self._require_conn()
        try:
            with self._lock:
                conn.execute(sql, params)
                conn.commit()
        except sqlite3.Error as e:
            logger.error(f"Relationship insert failed {from_id} -> {to_id}: {e}")
            self._log_error("create_relationship", e)
            with self._lock:
                conn.rollback()
            raise StorageError(f"Failed to store relationship: {e}") from e

        return relationship

    def get_relationships_from(self, memory_id: str) -> List[MemoryRelationship]:
        return self.get_relationships_for([memory_id]).get(memory_id, [])

    def get_relationships_for(self, memory_ids: List[str]) -> Dict[str, List[MemoryRelationship]]:
        """Outgoing relationships grouped by source memory id"""
        grouped: Dict[str, List[MemoryRelationship]] = {}
        if not memory_ids:
            return grouped

        conn = self._require_conn()
        try:
            with self._lock:
                for chunk in _chunks(list(dict.fromkeys(memory_ids)), MAX_IN_PARAMS):
                    where, params = compile_filter({"from_id": chunk}, RELATIONSHIP_FILTER_COLUMNS)
                    rows = conn.execute(
                        f"SELECT * FROM memory_relationships {where} ORDER BY created_at, rowid",
                        params,
                    ).fetchall()
                    for row in rows:
                        relationship = MemoryRelationship.from_row(row)
                        grouped.setdefault(relationship.from_memory_id, []).append(relationship)
        except sqlite3.Error as e:
            logger.error(f"Relationship query failed: {e}")
            self._log_error("get_relationships", e)
            raise StorageError(f"Failed to read relationships: {e}") from e
        return grouped

    # ===== SESSIONS =====

    def upsert_session(self, owner: str, project: str) -> SessionContext:
        """Overwrite the single session row for owner"""
        session = SessionContext(owner=owner, current_project=project, last_active=self.clock())
        conn = self._require_conn()
        try:
            with self._lock:
                conn.execute("""
                    INSERT INTO user_sessions (user_id, current_project, last_active)
                    VALUES (?, ?, ?)
                    ON CONFLICT(user_id) DO UPDATE SET
                        current_project = excluded.current_project,
                        last_active = excluded.last_active
                """, (session.owner, session.current_project, session.last_active))
                conn.commit()
        except sqlite3.Error as e:
            logger.error(f"Session upsert failed for {owner}: {e}")
            self._log_error("upsert_session", e)
            with self._lock:
                conn.rollback()
            raise StorageError(f"Failed to switch project: {e}") from e
        return session

    def get_session(self, owner: str) -> SessionContext:
        conn = self._require_conn()
        try:
            with self._lock:
                row = conn.execute(
                    "SELECT user_id, current_project, last_active FROM user_sessions WHERE user_id = ?",
                    (owner,),
                ).fetchone()
        except sqlite3.Error as e:
            self._log_error("get_session", e)
            raise StorageError(f"Failed to read session: {e}") from e

        if not row:
            return SessionContext(owner=owner)
        return SessionContext(owner=row["user_id"], current_project=row["current_project"],
                              last_active=row["last_active"])

    # ===== STATISTICS =====

    def aggregate_stats(self, owner: str, project: Optional[str] = None) -> Dict[str, Any]:
        """Totals plus per-day counts for the 7 most recent active days"""
        where, params = compile_filter(MemoryFilter(owner=owner, project=project).conditions(),
                                       MEMORY_FILTER_COLUMNS)
        conn = self._require_conn()
        try:
            with self._lock:
                totals = conn.execute(f"""
                    SELECT
                        COUNT(*) AS total_memories,
                        COUNT(DISTINCT memory_type) AS unique_types,
                        COUNT(DISTINCT project) AS projects,
                        AVG(LENGTH(content)) AS avg_content_length
                    FROM memories {where}
                """, params).fetchone()

                daily = conn.execute(f"""
                    SELECT DATE(created_at) AS day, COUNT(*) AS count
                    FROM memories {where}
                    GROUP BY day
                    ORDER BY day DESC
                    LIMIT 7
                """, params).fetchall()
        except sqlite3.Error as e:
            logger.error(f"Stats query failed: {e}")
            self._log_error("aggregate_stats", e)
            raise StorageError(f"Failed to compute statistics: {e}") from e

        return {
            "total_memories": totals["total_memories"],
            "unique_type_count": totals["unique_types"],
            "unique_project_count": totals["projects"],
            "avg_content_length": float(totals["avg_content_length"] or 0.0),
            "daily_counts": [{"date": row["day"], "count": row["count"]} for row in daily],
        }

    def close(self):
        """Close database connection"""
        if self.conn:
            try:
                with self._lock:
                    self.conn.close()
                logger.info("SQLite connection closed")
            except sqlite3.Error as e:
                logger.error(f"Error closing SQLite: {e}")
            finally:
                self.conn = None
