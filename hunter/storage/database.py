"""SQLite database for the join correlation table, decisions and review queue."""

import asyncio
import json
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

import aiosqlite

from ..logging_config import get_logger
from ..models.records import CorrectionRecord, FinalRecord, ManualReviewEntry

logger = get_logger(__name__)

# Columns a compare-and-set may touch on join_entries
_JOIN_MUTABLE_COLUMNS = {
    "analysis_json",
    "verification_json",
    "qc_json",
    "state",
    "partial",
}


def _ts(value: datetime) -> str:
    return value.isoformat(timespec="microseconds")


def _loads(value: str | None) -> dict | None:
    return json.loads(value) if value else None


@dataclass
class JoinEntry:
    """One row of the correlation table."""

    key: str
    state: str
    analysis: dict | None
    verification: dict | None
    qc: dict | None
    partial: bool
    version: int
    fan_out_started_at: datetime
    updated_at: datetime


@dataclass
class StoredDecision:
    """A persisted FinalRecord plus its delivery flag."""

    record: FinalRecord
    routed: bool


def _row_to_join_entry(row) -> JoinEntry:
    return JoinEntry(
        key=row["key"],
        state=row["state"],
        analysis=_loads(row["analysis_json"]),
        verification=_loads(row["verification_json"]),
        qc=_loads(row["qc_json"]),
        partial=bool(row["partial"]),
        version=row["version"],
        fan_out_started_at=datetime.fromisoformat(row["fan_out_started_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


def _row_to_review_entry(row) -> ManualReviewEntry:
    data = json.loads(row["record_json"])
    data["id"] = row["id"]
    data["queuedAt"] = row["queued_at"]
    return ManualReviewEntry.model_validate(data)


class _ConnectionPool:
    """Fixed-size pool of WAL-mode aiosqlite connections.

    Every stage handler shares it; writers on different connections
    serialize on SQLite's write lock (bounded by busy_timeout).
    """

    def __init__(self, db_path: Path, size: int = 5, busy_timeout_ms: int = 5000):
        self._db_path = db_path
        self._size = size
        self._busy_timeout_ms = busy_timeout_ms
        self._idle: asyncio.Queue[aiosqlite.Connection] = asyncio.Queue(maxsize=size)
        self._all: list[aiosqlite.Connection] = []
        self._initialized = False

    async def init(self):
        try:
            for _ in range(self._size):
                conn = await aiosqlite.connect(self._db_path)
                self._all.append(conn)
                conn.row_factory = aiosqlite.Row
                # busy_timeout first so the WAL switch can wait for a concurrent opener.
                # Cursors are closed here: an open PRAGMA statement blocks the
                # WAL switch on the next connection.
                async with conn.execute(f"PRAGMA busy_timeout={self._busy_timeout_ms}"):
                    pass
                async with conn.execute("PRAGMA journal_mode=WAL") as cursor:
                    await cursor.fetchone()
                await self._idle.put(conn)
        except Exception as e:
            logger.error("DB pool init failed for %s: %s", self._db_path, e, exc_info=True)
            await self.close()
            raise
        self._initialized = True

    @asynccontextmanager
    async def acquire(self):
        conn = await self._idle.get()
        try:
            yield conn
        finally:
            await self._idle.put(conn)

    async def close(self):
        """Close every connection, including ones still checked out."""
        self._initialized = False
        for conn in self._all:
            await conn.close()
        self._all.clear()
        while not self._idle.empty():
            self._idle.get_nowait()


class PipelineDatabase:
    """SQLite store shared by every stage handler.

    All correlation-table writes are conditional: inserts use
    INSERT OR IGNORE and updates compare the row version, so concurrent
    deliveries can never both believe they completed a join.
    """

    def __init__(self, db_path: str | Path = "hunter.db", pool_size: int = 5):
        self.db_path = Path(db_path)
        self.pool_size = pool_size
        self._pool: _ConnectionPool | None = None

    async def connect(self) -> None:
        """Connect to the database and create tables if needed."""
        if self._pool is not None and self._pool._initialized:
            return  # Already connected
        logger.info("Database connecting: %s", self.db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._pool = _ConnectionPool(self.db_path, size=self.pool_size)
        await self._pool.init()
        try:
            async with self._pool.acquire() as conn:
                await self._create_tables(conn)
        except Exception:
            await self.close()
            raise

    async def close(self) -> None:
        """Close all database connections."""
        if self._pool:
            await self._pool.close()
            self._pool = None

    def _check_pool(self) -> _ConnectionPool:
        """Get the active connection pool.

        Raises RuntimeError if not connected.
        """
        if self._pool is None or not self._pool._initialized:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._pool

    async def _create_tables(self, conn: aiosqlite.Connection) -> None:
        """Create database tables if they don't exist."""
        await conn.executescript("""
            CREATE TABLE IF NOT EXISTS join_entries (
                key TEXT PRIMARY KEY,
                state TEXT NOT NULL,
                analysis_json TEXT,
                verification_json TEXT,
                qc_json TEXT,
                partial INTEGER DEFAULT 0,
                version INTEGER NOT NULL DEFAULT 0,
                fan_out_started_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS final_records (
                key TEXT PRIMARY KEY,
                decision TEXT NOT NULL,
                partial INTEGER DEFAULT 0,
                record_json TEXT NOT NULL,
                routed INTEGER DEFAULT 0,
                decided_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS manual_review (
                id TEXT PRIMARY KEY,
                pipeline_key TEXT NOT NULL UNIQUE,
                record_json TEXT NOT NULL,
                queued_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS corrections (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                entry_id TEXT NOT NULL,
                pipeline_key TEXT NOT NULL,
                record_json TEXT NOT NULL,
                corrected_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_join_state ON join_entries(state);
            CREATE INDEX IF NOT EXISTS idx_final_decision ON final_records(decision);
            CREATE INDEX IF NOT EXISTS idx_review_queued ON manual_review(queued_at);
            CREATE INDEX IF NOT EXISTS idx_corrections_entry ON corrections(entry_id);
        """)
        await conn.commit()

    # Correlation table
    async def insert_join_entry(
        self,
        key: str,
        state: str,
        analysis: dict,
        now: datetime,
    ) -> bool:
        """Insert a correlation entry unless one already exists.

        Returns:
            True if this call created the entry
        """
        pool = self._check_pool()
        async with pool.acquire() as conn:
            try:
                cursor = await conn.execute(
                    """
                    INSERT OR IGNORE INTO join_entries (
                        key, state, analysis_json, version, fan_out_started_at, updated_at
                    ) VALUES (?, ?, ?, 0, ?, ?)
                    """,
                    (key, state, json.dumps(analysis), _ts(now), _ts(now)),
                )
                await conn.commit()
                return cursor.rowcount == 1
            except Exception as e:
                await conn.rollback()
                logger.error("DB error in insert_join_entry: %s", e, exc_info=True)
                raise

    async def get_join_entry(self, key: str) -> JoinEntry | None:
        """Get a correlation entry by identity key."""
        pool = self._check_pool()
        async with pool.acquire() as conn:
            cursor = await conn.execute(
                "SELECT * FROM join_entries WHERE key = ?", (key,)
            )
            row = await cursor.fetchone()
        return _row_to_join_entry(row) if row else None

    async def compare_and_set_join_entry(
        self,
        key: str,
        expected_version: int,
        changes: dict[str, Any],
        now: datetime,
    ) -> bool:
        """Apply changes only if the row is still at expected_version.

        JSON columns (``*_json``) accept dicts or None.

        Returns:
            True if the update won, False if another writer got there first
        """
        unknown = set(changes) - _JOIN_MUTABLE_COLUMNS
        if unknown:
            raise ValueError(f"Not updatable on join_entries: {sorted(unknown)}")

        fields = []
        params: list = []
        for column, value in changes.items():
            fields.append(f"{column} = ?")
            if column.endswith("_json"):
                params.append(json.dumps(value) if value is not None else None)
            elif column == "partial":
                params.append(1 if value else 0)
            else:
                params.append(value)
        fields.extend(["version = version + 1", "updated_at = ?"])
        params.extend([_ts(now), key, expected_version])

        pool = self._check_pool()
        async with pool.acquire() as conn:
            try:
                cursor = await conn.execute(
                    f"UPDATE join_entries SET {', '.join(fields)} WHERE key = ? AND version = ?",
                    tuple(params),
                )
                await conn.commit()
                return cursor.rowcount == 1
            except Exception as e:
                await conn.rollback()
                logger.error("DB error in compare_and_set_join_entry: %s", e, exc_info=True)
                raise

    async def list_join_entries(
        self,
        states: list[str],
        started_before: datetime | None = None,
        updated_before: datetime | None = None,
    ) -> list[JoinEntry]:
        """List correlation entries in the given states, oldest first."""
        placeholders = ", ".join("?" for _ in states)
        query = f"SELECT * FROM join_entries WHERE state IN ({placeholders})"
        params: list = list(states)
        if started_before is not None:
            query += " AND fan_out_started_at < ?"
            params.append(_ts(started_before))
        if updated_before is not None:
            query += " AND updated_at < ?"
            params.append(_ts(updated_before))
        query += " ORDER BY fan_out_started_at ASC"

        pool = self._check_pool()
        async with pool.acquire() as conn:
            cursor = await conn.execute(query, tuple(params))
            rows = await cursor.fetchall()
        return [_row_to_join_entry(row) for row in rows]

    async def purge_join_entries(self, states: list[str], updated_before: datetime) -> int:
        """Delete terminal correlation entries older than the dedup window."""
        placeholders = ", ".join("?" for _ in states)
        pool = self._check_pool()
        async with pool.acquire() as conn:
            try:
                cursor = await conn.execute(
                    f"DELETE FROM join_entries WHERE state IN ({placeholders}) AND updated_at < ?",
                    (*states, _ts(updated_before)),
                )
                await conn.commit()
                return cursor.rowcount
            except Exception as e:
                await conn.rollback()
                logger.error("DB error in purge_join_entries: %s", e, exc_info=True)
                raise

    # Decisions
    async def insert_final_record(self, record: FinalRecord) -> bool:
        """Persist a FinalRecord keyed by identity key, first writer wins."""
        pool = self._check_pool()
        async with pool.acquire() as conn:
            try:
                cursor = await conn.execute(
                    """
                    INSERT OR IGNORE INTO final_records (
                        key, decision, partial, record_json, routed, decided_at
                    ) VALUES (?, ?, ?, ?, 0, ?)
                    """,
                    (
                        record.key,
                        record.decision.value,
                        1 if record.partial else 0,
                        json.dumps(record.to_wire()),
                        _ts(record.decided_at),
                    ),
                )
                await conn.commit()
                return cursor.rowcount == 1
            except Exception as e:
                await conn.rollback()
                logger.error("DB error in insert_final_record: %s", e, exc_info=True)
                raise

    async def get_final_record(self, key: str) -> StoredDecision | None:
        """Get the decision recorded for an identity key."""
        pool = self._check_pool()
        async with pool.acquire() as conn:
            cursor = await conn.execute(
                "SELECT * FROM final_records WHERE key = ?", (key,)
            )
            row = await cursor.fetchone()
        if not row:
            return None
        return StoredDecision(
            record=FinalRecord.model_validate(json.loads(row["record_json"])),
            routed=bool(row["routed"]),
        )

    async def mark_final_routed(self, key: str) -> None:
        """Flag a decision as delivered downstream."""
        pool = self._check_pool()
        async with pool.acquire() as conn:
            try:
                await conn.execute(
                    "UPDATE final_records SET routed = 1 WHERE key = ?", (key,)
                )
                await conn.commit()
            except Exception as e:
                await conn.rollback()
                logger.error("DB error in mark_final_routed: %s", e, exc_info=True)
                raise

    # Manual review queue
    async def upsert_review_entry(
        self,
        entry_id: str,
        record: FinalRecord,
        now: datetime,
    ) -> ManualReviewEntry:
        """Queue a FinalRecord for review, once per identity key.

        entry_id is only used when the key is not queued yet; the stored
        entry (with its original id) is returned either way.
        """
        pool = self._check_pool()
        async with pool.acquire() as conn:
            try:
                await conn.execute(
                    """
                    INSERT OR IGNORE INTO manual_review (id, pipeline_key, record_json, queued_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (entry_id, record.key, json.dumps(record.to_wire()), _ts(now)),
                )
                await conn.commit()
            except Exception as e:
                await conn.rollback()
                logger.error("DB error in upsert_review_entry: %s", e, exc_info=True)
                raise
            cursor = await conn.execute(
                "SELECT * FROM manual_review WHERE pipeline_key = ?", (record.key,)
            )
            row = await cursor.fetchone()
        return _row_to_review_entry(row)

    async def list_review_entries(self) -> list[ManualReviewEntry]:
        """All pending review entries, oldest first."""
        pool = self._check_pool()
        async with pool.acquire() as conn:
            cursor = await conn.execute(
                "SELECT * FROM manual_review ORDER BY queued_at ASC, id ASC"
            )
            rows = await cursor.fetchall()
        return [_row_to_review_entry(row) for row in rows]

    async def get_review_entry(self, entry_id: str) -> ManualReviewEntry | None:
        """Get a review entry by its id."""
        pool = self._check_pool()
        async with pool.acquire() as conn:
            cursor = await conn.execute(
                "SELECT * FROM manual_review WHERE id = ?", (entry_id,)
            )
            row = await cursor.fetchone()
        return _row_to_review_entry(row) if row else None

    async def delete_review_entry(self, entry_id: str) -> bool:
        """Remove a review entry. Returns False if it was already gone."""
        pool = self._check_pool()
        async with pool.acquire() as conn:
            try:
                cursor = await conn.execute(
                    "DELETE FROM manual_review WHERE id = ?", (entry_id,)
                )
                await conn.commit()
                return cursor.rowcount == 1
            except Exception as e:
                await conn.rollback()
                logger.error("DB error in delete_review_entry: %s", e, exc_info=True)
                raise

    # Corrections (append-only)
    async def append_correction(self, correction: CorrectionRecord, pipeline_key: str) -> int:
        """Append a correction to the labelled dataset."""
        pool = self._check_pool()
        async with pool.acquire() as conn:
            try:
                cursor = await conn.execute(
                    """
                    INSERT INTO corrections (entry_id, pipeline_key, record_json, corrected_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (
                        correction.entry_id,
                        pipeline_key,
                        json.dumps(correction.to_wire()),
                        _ts(correction.corrected_at),
                    ),
                )
                await conn.commit()
                return cursor.lastrowid
            except Exception as e:
                await conn.rollback()
                logger.error("DB error in append_correction: %s", e, exc_info=True)
                raise

    async def list_corrections(self) -> list[CorrectionRecord]:
        """The labelled dataset, in submission order."""
        pool = self._check_pool()
        async with pool.acquire() as conn:
            cursor = await conn.execute("SELECT * FROM corrections ORDER BY id ASC")
            rows = await cursor.fetchall()
        return [CorrectionRecord.model_validate(json.loads(row["record_json"])) for row in rows]

    async def get_pipeline_stats(self) -> dict:
        """Aggregate counts for the CLI and API."""
        pool = self._check_pool()
        async with pool.acquire() as conn:
            cursor = await conn.execute(
                "SELECT state, COUNT(*) AS count FROM join_entries GROUP BY state"
            )
            join_states = {row["state"]: row["count"] for row in await cursor.fetchall()}

            cursor = await conn.execute(
                "SELECT decision, COUNT(*) AS count FROM final_records GROUP BY decision"
            )
            decisions = {row["decision"]: row["count"] for row in await cursor.fetchall()}

            cursor = await conn.execute(
                "SELECT COUNT(*) AS count FROM final_records WHERE partial = 1"
            )
            partial = (await cursor.fetchone())["count"]

            cursor = await conn.execute("SELECT COUNT(*) AS count FROM manual_review")
            pending_reviews = (await cursor.fetchone())["count"]

            cursor = await conn.execute("SELECT COUNT(*) AS count FROM corrections")
            corrections = (await cursor.fetchone())["count"]

        return {
            "join_states": join_states,
            "decisions": decisions,
            "partial_decisions": partial,
            "pending_reviews": pending_reviews,
            "corrections": corrections,
        }
