# Copyright 2024 Heinrich Krupp
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
SQLite record store.

Durable memory rows with soft delete, plus the dedicated ``sessions`` and
``scoring_factors`` tables.  Async operations via aiosqlite; each call opens
its own connection so concurrent requests never share a cursor.
"""

import json
import logging
import os
import time
from typing import Any

import aiosqlite

from ..config import SYSTEM_NAMESPACE_PREFIX
from ..errors import SessionConflictError
from ..models.memory import MemoryRecord, ScoringFactor
from .base import RecordStore, StoredSession

logger = logging.getLogger(__name__)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS memories (
        id TEXT PRIMARY KEY,
        namespace TEXT NOT NULL,
        content TEXT NOT NULL,
        created_at REAL NOT NULL,
        updated_at REAL,
        deleted_at REAL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_memories_namespace ON memories(namespace)",
    "CREATE INDEX IF NOT EXISTS idx_memories_deleted_at ON memories(deleted_at)",
    """
    CREATE TABLE IF NOT EXISTS scoring_factors (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        memory_id TEXT NOT NULL,
        factor TEXT NOT NULL,
        value REAL NOT NULL,
        recorded_at REAL NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_scoring_factors_memory ON scoring_factors(memory_id)",
    """
    CREATE TABLE IF NOT EXISTS sessions (
        session_id TEXT PRIMARY KEY,
        data TEXT NOT NULL,
        version INTEGER NOT NULL,
        last_activity_time REAL NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_sessions_activity ON sessions(last_activity_time)",
)

_RECORD_COLUMNS = "id, namespace, content, created_at, updated_at, deleted_at"


def _row_to_record(row: Any) -> MemoryRecord:
    return MemoryRecord(
        id=row[0],
        namespace=row[1],
        content=row[2],
        created_at=row[3],
        updated_at=row[4],
        deleted_at=row[5],
    )


class SQLiteRecordStore(RecordStore):
    """Async SQLite record store."""

    def __init__(self, db_path: str):
        """
        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path

    async def initialize(self) -> None:
        """Create tables and indexes if missing. Runs unconditionally on every start."""
        directory = os.path.dirname(self.db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        async with aiosqlite.connect(self.db_path) as db:
            for statement in _SCHEMA:
                await db.execute(statement)
            await db.commit()

        logger.info(f"Record store schema ensured at {self.db_path}")

    # ------------------------------------------------------------------
    # Memory records
    # ------------------------------------------------------------------

    async def insert(self, record: MemoryRecord) -> None:
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                f"INSERT INTO memories ({_RECORD_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?)",
                (
                    record.id,
                    record.namespace,
                    record.content,
                    record.created_at,
                    record.updated_at,
                    record.deleted_at,
                ),
            )
            await db.commit()

    async def get(self, memory_id: str, namespace: str | None = None) -> MemoryRecord | None:
        query = f"SELECT {_RECORD_COLUMNS} FROM memories WHERE id = ? AND deleted_at IS NULL"
        params: tuple = (memory_id,)
        if namespace is not None:
            query += " AND namespace = ?"
            params = (memory_id, namespace)

        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(query, params)
            row = await cursor.fetchone()
        return _row_to_record(row) if row else None

    async def update_content(self, memory_id: str, namespace: str, content: str) -> int:
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                """
                UPDATE memories SET content = ?, updated_at = ?
                WHERE id = ? AND namespace = ? AND deleted_at IS NULL
                """,
                (content, time.time(), memory_id, namespace),
            )
            await db.commit()
            return cursor.rowcount

    async def soft_delete(self, memory_id: str, namespace: str) -> int:
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                "UPDATE memories SET deleted_at = ? WHERE id = ? AND namespace = ? AND deleted_at IS NULL",
                (time.time(), memory_id, namespace),
            )
            await db.commit()
            return cursor.rowcount

    async def soft_delete_many(self, memory_ids: list[str], namespace: str) -> int:
        if not memory_ids:
            return 0
        placeholders = ", ".join("?" for _ in memory_ids)
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                f"""
                UPDATE memories SET deleted_at = ?
                WHERE namespace = ? AND deleted_at IS NULL AND id IN ({placeholders})
                """,
                (time.time(), namespace, *memory_ids),
            )
            await db.commit()
            return cursor.rowcount

    async def soft_delete_namespace(self, namespace: str) -> int:
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                "UPDATE memories SET deleted_at = ? WHERE namespace = ? AND deleted_at IS NULL",
                (time.time(), namespace),
            )
            await db.commit()
            return cursor.rowcount

    async def active_ids(self, namespace: str) -> list[str]:
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                "SELECT id FROM memories WHERE namespace = ? AND deleted_at IS NULL ORDER BY rowid",
                (namespace,),
            )
            return [row[0] for row in await cursor.fetchall()]

    async def filter_active(self, memory_ids: list[str]) -> set[str]:
        if not memory_ids:
            return set()
        placeholders = ", ".join("?" for _ in memory_ids)
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                f"SELECT id FROM memories WHERE deleted_at IS NULL AND id IN ({placeholders})",
                tuple(memory_ids),
            )
            return {row[0] for row in await cursor.fetchall()}

    async def distinct_namespaces(self, include_reserved: bool = False) -> list[str]:
        query = "SELECT namespace FROM memories WHERE deleted_at IS NULL"
        params: tuple = ()
        if not include_reserved:
            query += " AND substr(namespace, 1, ?) != ?"
            params = (len(SYSTEM_NAMESPACE_PREFIX), SYSTEM_NAMESPACE_PREFIX)
        query += " GROUP BY namespace ORDER BY MIN(rowid)"

        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(query, params)
            return [row[0] for row in await cursor.fetchall()]

    async def list_active(self, namespace: str, limit: int, offset: int = 0) -> list[MemoryRecord]:
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                f"""
                SELECT {_RECORD_COLUMNS} FROM memories
                WHERE namespace = ? AND deleted_at IS NULL
                ORDER BY created_at DESC, rowid DESC
                LIMIT ? OFFSET ?
                """,
                (namespace, limit, offset),
            )
            return [_row_to_record(row) for row in await cursor.fetchall()]

    async def count_active(self, namespace: str) -> int:
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                "SELECT COUNT(*) FROM memories WHERE namespace = ? AND deleted_at IS NULL",
                (namespace,),
            )
            row = await cursor.fetchone()
            return row[0] if row else 0

    # ------------------------------------------------------------------
    # Scoring factors
    # ------------------------------------------------------------------

    async def insert_scoring_factors(self, factors: list[ScoringFactor]) -> int:
        if not factors:
            return 0
        async with aiosqlite.connect(self.db_path) as db:
            await db.executemany(
                "INSERT INTO scoring_factors (memory_id, factor, value, recorded_at) VALUES (?, ?, ?, ?)",
                [(f.memory_id, f.factor, f.value, f.recorded_at) for f in factors],
            )
            await db.commit()
        return len(factors)

    async def get_scoring_factors(self, memory_id: str) -> list[ScoringFactor]:
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                """
                SELECT memory_id, factor, value, recorded_at FROM scoring_factors
                WHERE memory_id = ? ORDER BY recorded_at
                """,
                (memory_id,),
            )
            return [
                ScoringFactor(memory_id=row[0], factor=row[1], value=row[2], recorded_at=row[3])
                for row in await cursor.fetchall()
            ]

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def load_session(self, session_id: str) -> StoredSession | None:
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                "SELECT session_id, data, version, last_activity_time FROM sessions WHERE session_id = ?",
                (session_id,),
            )
            row = await cursor.fetchone()
        if row is None:
            return None
        return StoredSession(session_id=row[0], data=json.loads(row[1]), version=row[2], last_activity_time=row[3])

    async def _current_session_version(self, db: aiosqlite.Connection, session_id: str) -> int:
        cursor = await db.execute("SELECT version FROM sessions WHERE session_id = ?", (session_id,))
        row = await cursor.fetchone()
        return row[0] if row else 0

    async def save_session(
        self,
        session_id: str,
        data: dict[str, Any],
        last_activity_time: float,
        expected_version: int,
    ) -> int:
        payload = json.dumps(data)
        async with aiosqlite.connect(self.db_path) as db:
            if expected_version == 0:
                try:
                    await db.execute(
                        "INSERT INTO sessions (session_id, data, version, last_activity_time) VALUES (?, ?, 1, ?)",
                        (session_id, payload, last_activity_time),
                    )
                except aiosqlite.IntegrityError as e:
                    actual = await self._current_session_version(db, session_id)
                    raise SessionConflictError(session_id, expected_version, actual) from e
            else:
                cursor = await db.execute(
                    """
                    UPDATE sessions SET data = ?, version = version + 1, last_activity_time = ?
                    WHERE session_id = ? AND version = ?
                    """,
                    (payload, last_activity_time, session_id, expected_version),
                )
                if cursor.rowcount == 0:
                    actual = await self._current_session_version(db, session_id)
                    raise SessionConflictError(session_id, expected_version, actual)
            await db.commit()
        return expected_version + 1

    async def purge_sessions(self, inactive_before: float) -> int:
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute("DELETE FROM sessions WHERE last_activity_time < ?", (inactive_before,))
            await db.commit()
            purged = cursor.rowcount
        if purged:
            logger.info(f"Purged {purged} expired session(s)")
        return purged
