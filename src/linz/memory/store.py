"""SQLite record store for short-term records, facts and summaries."""

import json
import logging
import sqlite3
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from ..errors import StorageError
from .models import (
    ConsolidationSummary,
    LongTermFact,
    RecordKind,
    ShortTermRecord,
)

logger = logging.getLogger(__name__)

# Keeps "IN (...)" lists under SQLite's bound-parameter limit.
_ID_CHUNK = 500

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS conversations (
        id              INTEGER PRIMARY KEY AUTOINCREMENT,
        family_id       INTEGER NOT NULL,
        user_id         TEXT,
        content         TEXT NOT NULL,
        created_at      TEXT NOT NULL,
        updated_at      TEXT NOT NULL,
        consolidated_at TEXT
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_conversations_pending
        ON conversations(consolidated_at, created_at)
    """,
    """
    CREATE TABLE IF NOT EXISTS memories (
        id          INTEGER PRIMARY KEY AUTOINCREMENT,
        family_id   INTEGER NOT NULL,
        user_id     TEXT,
        namespace   TEXT,
        key         TEXT NOT NULL,
        value       TEXT NOT NULL,
        created_at  TEXT NOT NULL,
        updated_at  TEXT NOT NULL
    )
    """,
    """
    CREATE UNIQUE INDEX IF NOT EXISTS idx_memories_identity
        ON memories(family_id, user_id IS NULL, ifnull(user_id, ''), key)
    """,
    """
    CREATE TABLE IF NOT EXISTS facts (
        id                INTEGER PRIMARY KEY AUTOINCREMENT,
        family_id         INTEGER NOT NULL,
        user_id           TEXT,
        key               TEXT NOT NULL,
        value             TEXT NOT NULL,
        confidence        REAL NOT NULL,
        source            TEXT NOT NULL,
        last_confirmed_at TEXT,
        created_at        TEXT NOT NULL,
        updated_at        TEXT NOT NULL
    )
    """,
    """
    CREATE UNIQUE INDEX IF NOT EXISTS idx_facts_identity
        ON facts(family_id, user_id IS NULL, ifnull(user_id, ''), key)
    """,
    """
    CREATE TABLE IF NOT EXISTS summaries (
        id          INTEGER PRIMARY KEY AUTOINCREMENT,
        run_id      TEXT NOT NULL,
        family_id   INTEGER NOT NULL,
        user_id     TEXT,
        summary     TEXT NOT NULL,
        tags        TEXT NOT NULL,
        occurred_at TEXT NOT NULL,
        created_at  TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_summaries_family ON summaries(family_id)",
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_db_time(value: datetime) -> str:
    """Serialize a datetime as a fixed-width UTC ISO string.

    Naive datetimes are taken to be UTC. The fixed format keeps string
    comparison in SQL consistent with time ordering.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_db_time(value: str | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromisoformat(value)


class RecordStore:
    """Persistent storage for the consolidation pipeline using SQLite.

    Write methods commit on their own unless they run inside
    ``transaction()``, in which case they join it and the whole block
    commits or rolls back together.
    """

    def __init__(self, db_path: Path | str) -> None:
        """Initialize the store with a database path.

        Args:
            db_path: Path to the SQLite database file, or ``":memory:"``.
        """
        self.db_path = db_path
        self._conn: sqlite3.Connection | None = None
        self._tx_depth = 0

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create the database connection."""
        if self._conn is None:
            try:
                if str(self.db_path) != ":memory:":
                    Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
                # Autocommit mode; transactions are opened explicitly.
                self._conn = sqlite3.connect(self.db_path, isolation_level=None)
            except (sqlite3.Error, OSError) as e:
                raise StorageError(f"Cannot open record store at {self.db_path}: {e}") from e
            self._conn.row_factory = sqlite3.Row
        return self._conn

    def _execute(self, sql: str, params: Iterable[Any] = ()) -> sqlite3.Cursor:
        try:
            return self._get_connection().execute(sql, tuple(params))
        except sqlite3.Error as e:
            raise StorageError(f"Record store query failed: {e}") from e

    def init_db(self) -> None:
        """Create the tables if they don't exist."""
        with self.transaction():
            for statement in _SCHEMA:
                self._execute(statement)

    @property
    def in_transaction(self) -> bool:
        return self._tx_depth > 0

    @contextmanager
    def transaction(self) -> Iterator["RecordStore"]:
        """Run a block of store calls as one atomic unit.

        ``BEGIN IMMEDIATE`` takes the database write lock up front, so two
        overlapping job runs cannot interleave writes for the same batch.
        Nested calls join the outermost transaction.
        """
        if self._tx_depth:
            self._tx_depth += 1
            try:
                yield self
            finally:
                self._tx_depth -= 1
            return

        self._execute("BEGIN IMMEDIATE")
        self._tx_depth = 1
        try:
            yield self
        except BaseException:
            self._tx_depth = 0
            self._rollback()
            raise
        self._tx_depth = 0
        try:
            self._get_connection().execute("COMMIT")
        except sqlite3.Error as e:
            self._rollback()
            raise StorageError(f"Commit failed: {e}") from e

    def _rollback(self) -> None:
        conn = self._get_connection()
        if conn.in_transaction:
            try:
                conn.execute("ROLLBACK")
            except sqlite3.Error:
                logger.exception("Rollback failed on %s", self.db_path)

    # Short-term records

    def add_conversation(
        self,
        family_id: int,
        user_id: str | None,
        content: str | dict[str, Any] | list[Any],
        created_at: datetime | None = None,
    ) -> ShortTermRecord:
        """Append a short-term conversation record.

        Args:
            family_id: Owning family.
            user_id: Speaker, or None for family-wide entries.
            content: Raw text, or structured entries stored as JSON.
            created_at: Creation time; defaults to now.

        Returns:
            The stored record in PENDING state.
        """
        if not isinstance(content, str):
            content = json.dumps(content, ensure_ascii=False)
        created = created_at or utcnow()
        stamp = to_db_time(created)
        with self.transaction():
            cursor = self._execute(
                """
                INSERT INTO conversations (family_id, user_id, content, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (family_id, user_id, content, stamp, stamp),
            )
        return ShortTermRecord(
            id=cursor.lastrowid,
            family_id=family_id,
            user_id=user_id,
            content=content,
            created_at=from_db_time(stamp),
        )

    def get_conversation(self, record_id: int) -> ShortTermRecord | None:
        cursor = self._execute("SELECT * FROM conversations WHERE id = ?", (record_id,))
        row = cursor.fetchone()
        return self._row_to_conversation(row) if row else None

    def find_unconsolidated(self, since: datetime, limit: int) -> list[ShortTermRecord]:
        """Get pending conversation records created at or after ``since``.

        Args:
            since: Start of the lookback window.
            limit: Maximum number of records, oldest first.

        Returns:
            Records ordered by creation time.
        """
        cursor = self._execute(
            """
            SELECT * FROM conversations
            WHERE consolidated_at IS NULL AND created_at >= ?
            ORDER BY created_at ASC, id ASC
            LIMIT ?
            """,
            (to_db_time(since), limit),
        )
        return [self._row_to_conversation(row) for row in cursor.fetchall()]

    def count_pending(self, ids: list[int]) -> int:
        """Count how many of the given conversation records are still pending."""
        pending = 0
        for start in range(0, len(ids), _ID_CHUNK):
            chunk = ids[start:start + _ID_CHUNK]
            placeholders = ", ".join("?" for _ in chunk)
            cursor = self._execute(
                f"SELECT count(*) FROM conversations "
                f"WHERE consolidated_at IS NULL AND id IN ({placeholders})",
                chunk,
            )
            pending += cursor.fetchone()[0]
        return pending

    def mark_consolidated(self, ids: list[int], now: datetime) -> int:
        """Move pending conversation records to CONSOLIDATED.

        Records that are already consolidated keep their original
        timestamp.

        Returns:
            Number of records that changed state.
        """
        if not ids:
            return 0
        stamp = to_db_time(now)
        changed = 0
        with self.transaction():
            for start in range(0, len(ids), _ID_CHUNK):
                chunk = ids[start:start + _ID_CHUNK]
                placeholders = ", ".join("?" for _ in chunk)
                cursor = self._execute(
                    f"""
                    UPDATE conversations
                    SET consolidated_at = ?, updated_at = ?
                    WHERE consolidated_at IS NULL AND id IN ({placeholders})
                    """,
                    (stamp, stamp, *chunk),
                )
                changed += cursor.rowcount
        return changed

    def delete_consolidated_before(self, cutoff: datetime) -> int:
        """Delete consolidated conversation records created at or before ``cutoff``.

        Returns:
            Number of records deleted.
        """
        with self.transaction():
            cursor = self._execute(
                """
                DELETE FROM conversations
                WHERE consolidated_at IS NOT NULL AND created_at <= ?
                """,
                (to_db_time(cutoff),),
            )
        return cursor.rowcount

    # Standing memory records

    def upsert_memory(
        self,
        family_id: int,
        user_id: str | None,
        key: str,
        value: Any,
        namespace: str | None = None,
        now: datetime | None = None,
    ) -> ShortTermRecord:
        """Create or replace a standing memory note keyed by (family, user, key)."""
        if not isinstance(value, str):
            value = json.dumps(value, ensure_ascii=False)
        stamp = to_db_time(now or utcnow())
        with self.transaction():
            cursor = self._execute(
                """
                UPDATE memories
                SET value = ?, namespace = coalesce(?, namespace), updated_at = ?
                WHERE family_id = ? AND user_id IS ? AND key = ?
                """,
                (value, namespace, stamp, family_id, user_id, key),
            )
            if cursor.rowcount == 0:
                self._execute(
                    """
                    INSERT INTO memories
                        (family_id, user_id, namespace, key, value, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (family_id, user_id, namespace, key, value, stamp, stamp),
                )
            row = self._execute(
                "SELECT * FROM memories WHERE family_id = ? AND user_id IS ? AND key = ?",
                (family_id, user_id, key),
            ).fetchone()
        return self._row_to_memory(row)

    def find_all_memory_records(self) -> list[ShortTermRecord]:
        """Get every standing memory record, oldest first."""
        cursor = self._execute("SELECT * FROM memories ORDER BY created_at ASC, id ASC")
        return [self._row_to_memory(row) for row in cursor.fetchall()]

    # Long-term facts

    def find_facts(self, family_id: int, user_id: str | None) -> list[LongTermFact]:
        """Get the facts of one (family, user) pair; None selects family-wide facts."""
        cursor = self._execute(
            "SELECT * FROM facts WHERE family_id = ? AND user_id IS ? ORDER BY key",
            (family_id, user_id),
        )
        return [self._row_to_fact(row) for row in cursor.fetchall()]

    def list_facts(self, family_id: int) -> list[LongTermFact]:
        """Get all facts of a family regardless of user."""
        cursor = self._execute(
            "SELECT * FROM facts WHERE family_id = ? ORDER BY user_id, key",
            (family_id,),
        )
        return [self._row_to_fact(row) for row in cursor.fetchall()]

    def get_fact(self, family_id: int, user_id: str | None, key: str) -> LongTermFact | None:
        cursor = self._execute(
            "SELECT * FROM facts WHERE family_id = ? AND user_id IS ? AND key = ?",
            (family_id, user_id, key),
        )
        row = cursor.fetchone()
        return self._row_to_fact(row) if row else None

    def upsert_fact(
        self,
        family_id: int,
        user_id: str | None,
        key: str,
        value: Any,
        confidence: float,
        source: str,
        now: datetime,
    ) -> bool:
        """Create or overwrite the fact at (family_id, user_id, key).

        An existing fact keeps its id, source and created_at; its value,
        confidence and last-confirmed time are replaced.

        Returns:
            True if a new fact was created, False if one was updated.
        """
        encoded = json.dumps(value, ensure_ascii=False)
        stamp = to_db_time(now)
        with self.transaction():
            cursor = self._execute(
                """
                UPDATE facts
                SET value = ?, confidence = ?, last_confirmed_at = ?, updated_at = ?
                WHERE family_id = ? AND user_id IS ? AND key = ?
                """,
                (encoded, confidence, stamp, stamp, family_id, user_id, key),
            )
            if cursor.rowcount:
                return False
            self._execute(
                """
                INSERT INTO facts
                    (family_id, user_id, key, value, confidence, source,
                     last_confirmed_at, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (family_id, user_id, key, encoded, confidence, source, stamp, stamp, stamp),
            )
        return True

    def create_fact_if_absent(
        self,
        family_id: int,
        user_id: str | None,
        key: str,
        value: Any,
        confidence: float,
        source: str,
    ) -> bool:
        """Insert a fact unless one already exists for its key.

        Returns:
            True if the fact was created.
        """
        encoded = json.dumps(value, ensure_ascii=False)
        stamp = to_db_time(utcnow())
        with self.transaction():
            cursor = self._execute(
                """
                INSERT INTO facts
                    (family_id, user_id, key, value, confidence, source, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT DO NOTHING
                """,
                (family_id, user_id, key, encoded, confidence, source, stamp, stamp),
            )
        return cursor.rowcount > 0

    # Summaries

    def insert_summary(self, summary: ConsolidationSummary) -> int:
        """Append a consolidation summary row.

        Returns:
            The id of the new row.
        """
        with self.transaction():
            cursor = self._execute(
                """
                INSERT INTO summaries
                    (run_id, family_id, user_id, summary, tags, occurred_at, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    summary.run_id,
                    summary.family_id,
                    summary.user_id,
                    summary.summary,
                    json.dumps(list(summary.tags)),
                    to_db_time(summary.occurred_at),
                    to_db_time(summary.created_at or utcnow()),
                ),
            )
        return cursor.lastrowid

    def get_summaries(self, family_id: int, run_id: str | None = None) -> list[ConsolidationSummary]:
        """Get summaries for a family, optionally limited to one run."""
        if run_id is None:
            cursor = self._execute(
                "SELECT * FROM summaries WHERE family_id = ? ORDER BY occurred_at, id",
                (family_id,),
            )
        else:
            cursor = self._execute(
                "SELECT * FROM summaries WHERE family_id = ? AND run_id = ? ORDER BY occurred_at, id",
                (family_id, run_id),
            )
        return [self._row_to_summary(row) for row in cursor.fetchall()]

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def _row_to_conversation(self, row: sqlite3.Row) -> ShortTermRecord:
        return ShortTermRecord(
            id=row["id"],
            family_id=row["family_id"],
            user_id=row["user_id"],
            content=row["content"],
            created_at=from_db_time(row["created_at"]),
            kind=RecordKind.CONVERSATION,
            consolidated_at=from_db_time(row["consolidated_at"]),
        )

    def _row_to_memory(self, row: sqlite3.Row) -> ShortTermRecord:
        return ShortTermRecord(
            id=row["id"],
            family_id=row["family_id"],
            user_id=row["user_id"],
            content=row["value"],
            created_at=from_db_time(row["created_at"]),
            kind=RecordKind.MEMORY,
            key=row["key"],
        )

    def _row_to_fact(self, row: sqlite3.Row) -> LongTermFact:
        return LongTermFact(
            id=row["id"],
            family_id=row["family_id"],
            user_id=row["user_id"],
            key=row["key"],
            value=json.loads(row["value"]),
            confidence=row["confidence"],
            source=row["source"],
            last_confirmed_at=from_db_time(row["last_confirmed_at"]),
            created_at=from_db_time(row["created_at"]),
        )

    def _row_to_summary(self, row: sqlite3.Row) -> ConsolidationSummary:
        return ConsolidationSummary(
            id=row["id"],
            run_id=row["run_id"],
            family_id=row["family_id"],
            user_id=row["user_id"],
            summary=row["summary"],
            tags=tuple(json.loads(row["tags"])),
            occurred_at=from_db_time(row["occurred_at"]),
            created_at=from_db_time(row["created_at"]),
        )
