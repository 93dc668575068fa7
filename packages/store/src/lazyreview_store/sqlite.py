"""SQLiteActionQueue — the durable offline queue.

Why SQLite:
- Ships with Python, no extra dependencies.
- Every statement commits atomically, and with synchronous=FULL a commit is
  on disk before the call returns, which is exactly the durability contract
  the queue needs.
- The file is a real database, so a damaged or foreign file is detectable at
  open time instead of being mistaken for an empty queue.

Schema:
  meta            — key/value rows; holds schema_version so a fresh profile
                    can be told apart from a corrupted one.
  queued_actions  — one row per pending action. ``seq`` breaks ties between
                    actions enqueued within the same timestamp.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from datetime import datetime, timezone
from pathlib import Path

from lazyreview_store.base import ActionQueue
from lazyreview_store.errors import QueueCorruptedError, QueueStorageError
from lazyreview_store.models import PAYLOAD_TYPES, ActionKind, ActionStatus, QueuedAction, QueuedActionInput

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

# Seconds to wait on a database locked by another process before failing.
_BUSY_TIMEOUT = 5.0

_SCHEMA = """
CREATE TABLE IF NOT EXISTS meta (
    key    TEXT PRIMARY KEY,
    value  TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS queued_actions (
    seq              INTEGER PRIMARY KEY AUTOINCREMENT,
    id               TEXT NOT NULL UNIQUE,
    provider_type    TEXT NOT NULL,
    owner            TEXT NOT NULL,
    repo             TEXT NOT NULL,
    pr_number        INTEGER NOT NULL,
    kind             TEXT NOT NULL,
    payload_json     TEXT NOT NULL,
    enqueued_at      TEXT NOT NULL,
    status           TEXT NOT NULL DEFAULT 'pending',
    last_error       TEXT,
    attempts         INTEGER NOT NULL DEFAULT 0,
    last_attempt_at  TEXT
);
CREATE INDEX IF NOT EXISTS idx_queued_actions_order ON queued_actions (enqueued_at, seq);
CREATE INDEX IF NOT EXISTS idx_queued_actions_pr ON queued_actions (owner, repo, pr_number);
"""

_REQUIRED_TABLES = {"meta", "queued_actions"}


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


class SQLiteActionQueue(ActionQueue):
    """Offline queue stored in a local SQLite file, one per user profile.

    Opening the queue distinguishes a fresh profile (no file, or an empty
    file) from an existing one. Existing files must pass an integrity check
    and carry the LazyReview schema; anything else raises
    QueueCorruptedError and the file is left as it is.

    Single-process use per profile is assumed. SQLite's own locking keeps
    each statement atomic if two processes do collide.
    """

    def __init__(self, db_path: str | Path):
        self._path = Path(db_path)
        fresh = not self._path.exists() or self._path.stat().st_size == 0

        try:
            if fresh:
                self._path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(self._path), timeout=_BUSY_TIMEOUT)
        except (OSError, sqlite3.Error) as e:
            raise QueueStorageError(f"Could not open queue database {self._path}: {e}") from e

        self._conn.row_factory = sqlite3.Row
        try:
            self._conn.execute("PRAGMA synchronous=FULL")
            if fresh:
                self._initialize()
            else:
                self._verify()
        except QueueCorruptedError:
            self._conn.close()
            raise
        except sqlite3.OperationalError as e:
            self._conn.close()
            raise QueueStorageError(f"Could not open queue database {self._path}: {e}") from e
        except sqlite3.DatabaseError as e:
            self._conn.close()
            raise QueueCorruptedError(f"{self._path} is not a readable queue database: {e}") from e

    # ------------------------------------------------------------------ #
    # Profile checks                                                       #
    # ------------------------------------------------------------------ #

    def _initialize(self) -> None:
        logger.debug("Initialising fresh queue database at %s", self._path)
        with self._conn:
            self._conn.executescript(_SCHEMA)
            self._conn.execute(
                "INSERT OR REPLACE INTO meta (key, value) VALUES ('schema_version', ?)",
                (str(SCHEMA_VERSION),),
            )

    def _verify(self) -> None:
        result = self._conn.execute("PRAGMA quick_check").fetchone()
        if result is None or result[0] != "ok":
            raise QueueCorruptedError(f"{self._path} failed its integrity check: {result[0] if result else 'no result'}")

        tables = {r[0] for r in self._conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
        missing = _REQUIRED_TABLES - tables
        if missing:
            raise QueueCorruptedError(
                f"{self._path} is not a LazyReview queue database (missing tables: {', '.join(sorted(missing))})"
            )

        row = self._conn.execute("SELECT value FROM meta WHERE key='schema_version'").fetchone()
        try:
            version = int(row["value"]) if row else None
        except ValueError:
            version = None
        if version is None:
            raise QueueCorruptedError(f"{self._path} has no valid schema_version")
        if version > SCHEMA_VERSION:
            raise QueueCorruptedError(
                f"{self._path} was written by a newer LazyReview (schema {version} > {SCHEMA_VERSION})"
            )

    # ------------------------------------------------------------------ #
    # Queue operations                                                     #
    # ------------------------------------------------------------------ #

    def enqueue(self, action: QueuedActionInput) -> QueuedAction:
        record = QueuedAction(
            id=uuid.uuid4().hex,
            provider_type=action.provider_type,
            owner=action.owner,
            repo=action.repo,
            pr_number=action.pr_number,
            kind=action.kind,
            payload=action.payload,
            enqueued_at=_utcnow(),
        )
        self._write(
            """
            INSERT INTO queued_actions
              (id, provider_type, owner, repo, pr_number, kind, payload_json, enqueued_at, status)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.id,
                record.provider_type,
                record.owner,
                record.repo,
                record.pr_number,
                record.kind.value,
                json.dumps(record.payload.to_dict()),
                record.enqueued_at,
                record.status.value,
            ),
        )
        logger.debug("Enqueued %s for %s (%s)", record.kind.value, record.target, record.id)
        return record

    def list_actions(
        self,
        owner: str | None = None,
        repo: str | None = None,
        pr_number: int | None = None,
        provider_type: str | None = None,
    ) -> list[QueuedAction]:
        clauses = []
        params: list = []
        for column, value in (
            ("provider_type", provider_type),
            ("owner", owner),
            ("repo", repo),
            ("pr_number", pr_number),
        ):
            if value is not None:
                clauses.append(f"{column}=?")
                params.append(value)

        sql = "SELECT * FROM queued_actions"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY enqueued_at, seq"

        rows = self._read(sql, params)
        return [self._row_to_action(r) for r in rows]

    def get(self, action_id: str) -> QueuedAction | None:
        rows = self._read("SELECT * FROM queued_actions WHERE id=?", (action_id,))
        return self._row_to_action(rows[0]) if rows else None

    def remove(self, action_id: str) -> None:
        self._write("DELETE FROM queued_actions WHERE id=?", (action_id,))

    def mark_failed(self, action_id: str, error: str) -> None:
        self._write(
            """
            UPDATE queued_actions
               SET status=?, last_error=?, attempts=attempts + 1, last_attempt_at=?
             WHERE id=?
            """,
            (ActionStatus.FAILED.value, error, _utcnow(), action_id),
        )

    def count(self, status: ActionStatus | None = None) -> int:
        if status is None:
            rows = self._read("SELECT COUNT(*) FROM queued_actions", ())
        else:
            rows = self._read("SELECT COUNT(*) FROM queued_actions WHERE status=?", (ActionStatus(status).value,))
        return rows[0][0]

    def clear(self, status: ActionStatus | None = None) -> int:
        if status is None:
            cursor = self._write("DELETE FROM queued_actions", ())
        else:
            cursor = self._write("DELETE FROM queued_actions WHERE status=?", (ActionStatus(status).value,))
        return cursor.rowcount

    def close(self) -> None:
        self._conn.close()

    # ------------------------------------------------------------------ #
    # Helpers                                                              #
    # ------------------------------------------------------------------ #

    def _write(self, sql: str, params) -> sqlite3.Cursor:
        try:
            with self._conn:
                return self._conn.execute(sql, params)
        except sqlite3.Error as e:
            raise QueueStorageError(f"Queue write failed: {e}") from e

    def _read(self, sql: str, params) -> list[sqlite3.Row]:
        try:
            return self._conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise QueueStorageError(f"Queue read failed: {e}") from e

    @staticmethod
    def _row_to_action(row: sqlite3.Row) -> QueuedAction:
        try:
            kind = ActionKind(row["kind"])
            payload = PAYLOAD_TYPES[kind].from_dict(json.loads(row["payload_json"]))
            status = ActionStatus(row["status"])
        except (ValueError, TypeError, AttributeError, KeyError) as e:
            raise QueueCorruptedError(f"Queued action {row['id']} cannot be decoded: {e}") from e

        return QueuedAction(
            id=row["id"],
            provider_type=row["provider_type"],
            owner=row["owner"],
            repo=row["repo"],
            pr_number=row["pr_number"],
            kind=kind,
            payload=payload,
            enqueued_at=row["enqueued_at"],
            status=status,
            last_error=row["last_error"],
            attempts=row["attempts"],
            last_attempt_at=row["last_attempt_at"],
        )
