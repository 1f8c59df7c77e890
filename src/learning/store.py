"""Local Store: durable SQLite repositories for sessions, patterns, preferences and the offline queue."""

import json
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator

import structlog

from db import wal_session
from errors import PersistenceError
from shared_types import OperationType, PreferenceType, RefinementMode, SessionType

from .models import (
    MIN_ACTIVE_CONFIDENCE,
    MIN_ACTIVE_OCCURRENCES,
    LearnedPattern,
    LearningSession,
    OfflineOperation,
    UserPreference,
    clamp,
)

logger = structlog.get_logger()

_SCHEMA = """
CREATE TABLE IF NOT EXISTS sessions (
    id TEXT PRIMARY KEY,
    timestamp TIMESTAMP NOT NULL,
    original_text TEXT NOT NULL,
    ai_refined_text TEXT NOT NULL,
    user_final_text TEXT NOT NULL,
    mode TEXT NOT NULL,
    text_length INTEGER NOT NULL CHECK(text_length > 0),
    session_type TEXT NOT NULL CHECK(session_type IN ('edit_review','ab_test')),
    was_skipped INTEGER NOT NULL DEFAULT 0,
    synced INTEGER NOT NULL DEFAULT 0
);
CREATE INDEX IF NOT EXISTS idx_sessions_timestamp ON sessions(timestamp DESC);

CREATE TABLE IF NOT EXISTS patterns (
    id TEXT PRIMARY KEY,
    original_phrase TEXT NOT NULL,
    corrected_phrase TEXT NOT NULL,
    occurrence_count INTEGER NOT NULL DEFAULT 1,
    first_seen TIMESTAMP NOT NULL,
    last_seen TIMESTAMP NOT NULL,
    mode TEXT,
    confidence REAL NOT NULL CHECK(confidence >= 0 AND confidence <= 1),
    UNIQUE(original_phrase, corrected_phrase)
);
CREATE INDEX IF NOT EXISTS idx_patterns_confidence
    ON patterns(confidence DESC, occurrence_count DESC);

CREATE TABLE IF NOT EXISTS preferences (
    id TEXT PRIMARY KEY,
    preference_type TEXT NOT NULL UNIQUE,
    value REAL NOT NULL CHECK(value >= -1 AND value <= 1),
    sample_count INTEGER NOT NULL DEFAULT 0,
    last_updated TIMESTAMP NOT NULL
);

CREATE TABLE IF NOT EXISTS offline_queue (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT NOT NULL UNIQUE,
    op_type TEXT NOT NULL,
    payload TEXT NOT NULL,
    created_at TIMESTAMP NOT NULL,
    last_attempt TIMESTAMP,
    attempt_count INTEGER NOT NULL DEFAULT 0
);
"""


def _ts(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse_ts(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class _Repository:
    def __init__(self, store: "LocalStore"):
        self._store = store


class SessionRepository(_Repository):
    """Append-only learning session history."""

    def add(self, session: LearningSession) -> LearningSession:
        with self._store.writer() as conn:
            conn.execute(
                """INSERT OR IGNORE INTO sessions
                   (id, timestamp, original_text, ai_refined_text, user_final_text,
                    mode, text_length, session_type, was_skipped, synced)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    session.id,
                    _ts(session.timestamp),
                    session.original_text,
                    session.ai_refined_text,
                    session.user_final_text,
                    session.mode.value,
                    session.text_length,
                    session.session_type.value,
                    int(session.was_skipped),
                    int(session.synced),
                ),
            )
        return session

    def get(self, session_id: str) -> LearningSession | None:
        with self._store.reader() as conn:
            row = conn.execute("SELECT * FROM sessions WHERE id = ?", (session_id,)).fetchone()
        return self._row_to_session(row) if row else None

    def list_all(self, limit: int | None = None) -> list[LearningSession]:
        sql = "SELECT * FROM sessions ORDER BY timestamp ASC"
        params: tuple = ()
        if limit:
            sql += " LIMIT ?"
            params = (limit,)
        with self._store.reader() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [self._row_to_session(r) for r in rows]

    def count(self) -> int:
        with self._store.reader() as conn:
            return conn.execute("SELECT COUNT(*) FROM sessions").fetchone()[0]

    def mark_synced(self, session_id: str) -> None:
        with self._store.writer() as conn:
            conn.execute("UPDATE sessions SET synced = 1 WHERE id = ?", (session_id,))

    def stats(self) -> dict:
        with self._store.reader() as conn:
            by_type = {
                r["session_type"]: r["cnt"]
                for r in conn.execute(
                    "SELECT session_type, COUNT(*) AS cnt FROM sessions GROUP BY session_type"
                ).fetchall()
            }
            by_mode = {
                r["mode"]: r["cnt"]
                for r in conn.execute(
                    "SELECT mode, COUNT(*) AS cnt FROM sessions GROUP BY mode"
                ).fetchall()
            }
            skipped = conn.execute(
                "SELECT COUNT(*) FROM sessions WHERE was_skipped = 1"
            ).fetchone()[0]
            unsynced = conn.execute(
                "SELECT COUNT(*) FROM sessions WHERE synced = 0"
            ).fetchone()[0]
        return {
            "total": sum(by_type.values()),
            "by_type": by_type,
            "by_mode": by_mode,
            "skipped": skipped,
            "unsynced": unsynced,
        }

    @staticmethod
    def _row_to_session(row: sqlite3.Row) -> LearningSession:
        return LearningSession(
            id=row["id"],
            timestamp=_parse_ts(row["timestamp"]),
            original_text=row["original_text"],
            ai_refined_text=row["ai_refined_text"],
            user_final_text=row["user_final_text"],
            mode=RefinementMode(row["mode"]),
            text_length=row["text_length"],
            session_type=SessionType(row["session_type"]),
            was_skipped=bool(row["was_skipped"]),
            synced=bool(row["synced"]),
        )


class PatternRepository(_Repository):
    """Learned (original -> corrected) phrase patterns, unique per phrase pair."""

    def reinforce(
        self,
        original_phrase: str,
        corrected_phrase: str,
        mode: RefinementMode | None,
        initial_confidence: float = 0.3,
        step: float = 0.1,
        now: datetime | None = None,
    ) -> LearnedPattern:
        """Increment an existing pattern or insert a fresh one, atomically."""
        now = now or datetime.now()
        with self._store.writer() as conn:
            row = conn.execute(
                "SELECT * FROM patterns WHERE original_phrase = ? AND corrected_phrase = ?",
                (original_phrase, corrected_phrase),
            ).fetchone()
            if row:
                pattern = self._row_to_pattern(row)
                pattern.occurrence_count += 1
                pattern.confidence = min(1.0, pattern.confidence + step)
                pattern.last_seen = now
                pattern.mode = mode or pattern.mode
                conn.execute(
                    """UPDATE patterns
                       SET occurrence_count = ?, confidence = ?, last_seen = ?, mode = ?
                       WHERE id = ?""",
                    (
                        pattern.occurrence_count,
                        pattern.confidence,
                        _ts(now),
                        pattern.mode.value if pattern.mode else None,
                        pattern.id,
                    ),
                )
            else:
                pattern = LearnedPattern(
                    original_phrase=original_phrase,
                    corrected_phrase=corrected_phrase,
                    occurrence_count=1,
                    confidence=clamp(initial_confidence, 0.0, 1.0),
                    mode=mode,
                    first_seen=now,
                    last_seen=now,
                )
                self._insert(conn, pattern)
        return pattern

    def merge(self, incoming: LearnedPattern) -> LearnedPattern:
        """Upsert a replica (remote pull or snapshot import) using the merge rule."""
        with self._store.writer() as conn:
            row = conn.execute(
                "SELECT * FROM patterns WHERE original_phrase = ? AND corrected_phrase = ?",
                incoming.key,
            ).fetchone()
            if not row:
                self._insert(conn, incoming)
                return incoming
            merged = self._row_to_pattern(row).merged_with(incoming)
            conn.execute(
                """UPDATE patterns
                   SET occurrence_count = ?, confidence = ?, first_seen = ?,
                       last_seen = ?, mode = ?
                   WHERE id = ?""",
                (
                    merged.occurrence_count,
                    merged.confidence,
                    _ts(merged.first_seen),
                    _ts(merged.last_seen),
                    merged.mode.value if merged.mode else None,
                    merged.id,
                ),
            )
        return merged

    def get(self, pattern_id: str) -> LearnedPattern | None:
        with self._store.reader() as conn:
            row = conn.execute("SELECT * FROM patterns WHERE id = ?", (pattern_id,)).fetchone()
        return self._row_to_pattern(row) if row else None

    def find(self, original_phrase: str, corrected_phrase: str) -> LearnedPattern | None:
        with self._store.reader() as conn:
            row = conn.execute(
                "SELECT * FROM patterns WHERE original_phrase = ? AND corrected_phrase = ?",
                (original_phrase, corrected_phrase),
            ).fetchone()
        return self._row_to_pattern(row) if row else None

    def list_all(self) -> list[LearnedPattern]:
        with self._store.reader() as conn:
            rows = conn.execute(
                "SELECT * FROM patterns ORDER BY confidence DESC, occurrence_count DESC"
            ).fetchall()
        return [self._row_to_pattern(r) for r in rows]

    def list_active(
        self,
        min_occurrences: int = MIN_ACTIVE_OCCURRENCES,
        min_confidence: float = MIN_ACTIVE_CONFIDENCE,
    ) -> list[LearnedPattern]:
        with self._store.reader() as conn:
            rows = conn.execute(
                """SELECT * FROM patterns
                   WHERE occurrence_count >= ? AND confidence > ?
                   ORDER BY confidence DESC, occurrence_count DESC""",
                (min_occurrences, min_confidence),
            ).fetchall()
        return [self._row_to_pattern(r) for r in rows]

    def delete(self, pattern_id: str) -> LearnedPattern | None:
        with self._store.writer() as conn:
            row = conn.execute("SELECT * FROM patterns WHERE id = ?", (pattern_id,)).fetchone()
            if not row:
                return None
            conn.execute("DELETE FROM patterns WHERE id = ?", (pattern_id,))
        return self._row_to_pattern(row)

    def count(self) -> tuple[int, int]:
        """Return (total, active)."""
        with self._store.reader() as conn:
            total = conn.execute("SELECT COUNT(*) FROM patterns").fetchone()[0]
            active = conn.execute(
                "SELECT COUNT(*) FROM patterns WHERE occurrence_count >= ? AND confidence > ?",
                (MIN_ACTIVE_OCCURRENCES, MIN_ACTIVE_CONFIDENCE),
            ).fetchone()[0]
        return total, active

    @staticmethod
    def _insert(conn: sqlite3.Connection, pattern: LearnedPattern) -> None:
        conn.execute(
            """INSERT INTO patterns
               (id, original_phrase, corrected_phrase, occurrence_count,
                first_seen, last_seen, mode, confidence)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                pattern.id,
                pattern.original_phrase,
                pattern.corrected_phrase,
                pattern.occurrence_count,
                _ts(pattern.first_seen),
                _ts(pattern.last_seen),
                pattern.mode.value if pattern.mode else None,
                pattern.confidence,
            ),
        )

    @staticmethod
    def _row_to_pattern(row: sqlite3.Row) -> LearnedPattern:
        return LearnedPattern(
            id=row["id"],
            original_phrase=row["original_phrase"],
            corrected_phrase=row["corrected_phrase"],
            occurrence_count=row["occurrence_count"],
            first_seen=_parse_ts(row["first_seen"]),
            last_seen=_parse_ts(row["last_seen"]),
            mode=RefinementMode(row["mode"]) if row["mode"] else None,
            confidence=row["confidence"],
        )


class PreferenceRepository(_Repository):
    """One smoothed scalar per preference type."""

    def adjust(
        self, preference_type: PreferenceType, delta: float, now: datetime | None = None
    ) -> UserPreference:
        """value = clamp(value + delta), sample_count += 1, in one locked step."""
        now = now or datetime.now()
        with self._store.writer() as conn:
            row = conn.execute(
                "SELECT * FROM preferences WHERE preference_type = ?",
                (preference_type.value,),
            ).fetchone()
            if row:
                pref = self._row_to_preference(row)
                pref.value = clamp(pref.value + delta)
                pref.sample_count += 1
                pref.last_updated = now
            else:
                pref = UserPreference(
                    preference_type=preference_type,
                    value=clamp(delta),
                    sample_count=1,
                    last_updated=now,
                )
            self._write(conn, pref, exists=row is not None)
        return pref

    def merge(self, incoming: UserPreference) -> UserPreference:
        with self._store.writer() as conn:
            row = conn.execute(
                "SELECT * FROM preferences WHERE preference_type = ?",
                (incoming.preference_type.value,),
            ).fetchone()
            merged = self._row_to_preference(row).merged_with(incoming) if row else incoming
            self._write(conn, merged, exists=row is not None)
        return merged

    def get(self, preference_type: PreferenceType) -> UserPreference | None:
        with self._store.reader() as conn:
            row = conn.execute(
                "SELECT * FROM preferences WHERE preference_type = ?",
                (preference_type.value,),
            ).fetchone()
        return self._row_to_preference(row) if row else None

    def values(self) -> dict[PreferenceType, float]:
        """Current value per type; one small read for the apply path."""
        with self._store.reader() as conn:
            rows = conn.execute("SELECT preference_type, value FROM preferences").fetchall()
        return {PreferenceType(r["preference_type"]): r["value"] for r in rows}

    def list_all(self) -> list[UserPreference]:
        with self._store.reader() as conn:
            rows = conn.execute(
                "SELECT * FROM preferences ORDER BY preference_type"
            ).fetchall()
        return [self._row_to_preference(r) for r in rows]

    @staticmethod
    def _write(conn: sqlite3.Connection, pref: UserPreference, exists: bool) -> None:
        if exists:
            conn.execute(
                """UPDATE preferences SET value = ?, sample_count = ?, last_updated = ?
                   WHERE preference_type = ?""",
                (
                    clamp(pref.value),
                    pref.sample_count,
                    _ts(pref.last_updated),
                    pref.preference_type.value,
                ),
            )
        else:
            conn.execute(
                """INSERT INTO preferences (id, preference_type, value, sample_count, last_updated)
                   VALUES (?, ?, ?, ?, ?)""",
                (
                    pref.id,
                    pref.preference_type.value,
                    clamp(pref.value),
                    pref.sample_count,
                    _ts(pref.last_updated),
                ),
            )

    @staticmethod
    def _row_to_preference(row: sqlite3.Row) -> UserPreference:
        return UserPreference(
            id=row["id"],
            preference_type=PreferenceType(row["preference_type"]),
            value=row["value"],
            sample_count=row["sample_count"],
            last_updated=_parse_ts(row["last_updated"]),
        )


class OfflineQueueRepository(_Repository):
    """FIFO of pending remote writes."""

    def enqueue(self, operation: OfflineOperation) -> OfflineOperation:
        with self._store.writer() as conn:
            conn.execute(
                """INSERT INTO offline_queue
                   (id, op_type, payload, created_at, last_attempt, attempt_count)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (
                    operation.id,
                    operation.op_type.value,
                    json.dumps(operation.payload, default=str),
                    _ts(operation.created_at),
                    _ts(operation.last_attempt),
                    operation.attempt_count,
                ),
            )
        logger.debug("queue.enqueued", op_id=operation.id, op_type=operation.op_type.value)
        return operation

    def peek(self, limit: int | None = None) -> list[OfflineOperation]:
        sql = "SELECT * FROM offline_queue ORDER BY seq ASC"
        params: tuple = ()
        if limit:
            sql += " LIMIT ?"
            params = (limit,)
        with self._store.reader() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [self._row_to_operation(r) for r in rows]

    def remove(self, operation_id: str) -> bool:
        with self._store.writer() as conn:
            cur = conn.execute("DELETE FROM offline_queue WHERE id = ?", (operation_id,))
            return cur.rowcount > 0

    def record_failure(self, operation_id: str, now: datetime | None = None) -> int:
        """Bump attempt_count; returns the new count (0 if the row is gone)."""
        now = now or datetime.now()
        with self._store.writer() as conn:
            conn.execute(
                """UPDATE offline_queue
                   SET attempt_count = attempt_count + 1, last_attempt = ?
                   WHERE id = ?""",
                (_ts(now), operation_id),
            )
            row = conn.execute(
                "SELECT attempt_count FROM offline_queue WHERE id = ?", (operation_id,)
            ).fetchone()
        return row[0] if row else 0

    def count(self) -> int:
        with self._store.reader() as conn:
            return conn.execute("SELECT COUNT(*) FROM offline_queue").fetchone()[0]

    def clear(self) -> int:
        with self._store.writer() as conn:
            return conn.execute("DELETE FROM offline_queue").rowcount

    @staticmethod
    def _row_to_operation(row: sqlite3.Row) -> OfflineOperation:
        return OfflineOperation(
            id=row["id"],
            op_type=OperationType(row["op_type"]),
            payload=json.loads(row["payload"]),
            created_at=_parse_ts(row["created_at"]),
            last_attempt=_parse_ts(row["last_attempt"]),
            attempt_count=row["attempt_count"],
        )


class LocalStore:
    """On-device source of truth. All writes share one lock and commit before returning."""

    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path).expanduser()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self.sessions = SessionRepository(self)
        self.patterns = PatternRepository(self)
        self.preferences = PreferenceRepository(self)
        self.queue = OfflineQueueRepository(self)
        self._init_db()

    def _init_db(self):
        with self.writer() as conn:
            conn.executescript(_SCHEMA)

    @contextmanager
    def writer(self) -> Iterator[sqlite3.Connection]:
        """Serialized write transaction."""
        with self._lock:
            try:
                with wal_session(self.db_path) as conn:
                    yield conn
            except sqlite3.Error as e:
                logger.error("store.write_failed", db=str(self.db_path), error=str(e))
                raise PersistenceError(f"Local store write failed: {e}") from e

    @contextmanager
    def reader(self) -> Iterator[sqlite3.Connection]:
        """Read-only connection; does not wait on the writer lock."""
        try:
            with wal_session(self.db_path) as conn:
                yield conn
        except sqlite3.Error as e:
            logger.error("store.read_failed", db=str(self.db_path), error=str(e))
            raise PersistenceError(f"Local store read failed: {e}") from e

    # Facade over the repositories

    def save_session(self, session: LearningSession) -> LearningSession:
        return self.sessions.add(session)

    def upsert_pattern(
        self,
        original_phrase: str,
        corrected_phrase: str,
        mode: RefinementMode | None = None,
        initial_confidence: float = 0.3,
        step: float = 0.1,
    ) -> LearnedPattern:
        return self.patterns.reinforce(
            original_phrase, corrected_phrase, mode, initial_confidence, step
        )

    def merge_pattern(self, pattern: LearnedPattern) -> LearnedPattern:
        return self.patterns.merge(pattern)

    def list_active_patterns(self) -> list[LearnedPattern]:
        return self.patterns.list_active()

    def delete_pattern(self, pattern_id: str) -> LearnedPattern | None:
        return self.patterns.delete(pattern_id)

    def upsert_preference(self, preference_type: PreferenceType, delta: float) -> UserPreference:
        return self.preferences.adjust(preference_type, delta)

    def merge_preference(self, preference: UserPreference) -> UserPreference:
        return self.preferences.merge(preference)

    def enqueue_offline_operation(self, operation: OfflineOperation) -> OfflineOperation:
        return self.queue.enqueue(operation)

    def dequeue_offline_operation(self, operation_id: str) -> bool:
        return self.queue.remove(operation_id)

    def peek_queue(self, limit: int | None = None) -> list[OfflineOperation]:
        return self.queue.peek(limit)

    def reset_all(self) -> dict:
        """Delete every row in every table. Returns counts removed."""
        with self.writer() as conn:
            counts = {
                table: conn.execute(f"DELETE FROM {table}").rowcount
                for table in ("sessions", "patterns", "preferences", "offline_queue")
            }
        logger.info("store.reset", **counts)
        return counts

    def get_stats(self) -> dict:
        total_patterns, active_patterns = self.patterns.count()
        return {
            "sessions": self.sessions.stats(),
            "patterns": {"total": total_patterns, "active": active_patterns},
            "preferences": {p.value: v for p, v in self.preferences.values().items()},
            "queue_pending": self.queue.count(),
        }


__all__ = [
    "LocalStore",
    "SessionRepository",
    "PatternRepository",
    "PreferenceRepository",
    "OfflineQueueRepository",
]
