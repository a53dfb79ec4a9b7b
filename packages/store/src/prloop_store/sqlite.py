"""SQLiteStore: local file-based attempt journal.

Schema:
  attempts  one row per fix attempt or merge, indexed on (repo, pr_number).
"""

from __future__ import annotations

import logging
import sqlite3
import threading

from prloop_store.base import BaseStore
from prloop_store.models import AttemptRecord

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS attempts (
    id           INTEGER PRIMARY KEY AUTOINCREMENT,
    repo         TEXT NOT NULL,
    pr_number    INTEGER NOT NULL,
    kind         TEXT NOT NULL,
    success      INTEGER NOT NULL,
    issue_count  INTEGER DEFAULT 0,
    fix_count    INTEGER DEFAULT 0,
    error        TEXT,
    recorded_at  TEXT
);
CREATE INDEX IF NOT EXISTS idx_attempts_repo ON attempts (repo);
CREATE INDEX IF NOT EXISTS idx_attempts_pr   ON attempts (repo, pr_number);
"""


class SQLiteStore(BaseStore):
    """Stores the attempt journal in a SQLite database file.

    Defaults to `.prloop.db` in the working directory; configure with
    `store_path` in .prloop.yml. Events may finish on worker threads, so the
    connection is shared across threads behind a lock.
    """

    def __init__(self, db_path: str = ".prloop.db"):
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.executescript(_SCHEMA)
        self._conn.commit()

    def save(self, record: AttemptRecord) -> None:
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO attempts
                  (repo, pr_number, kind, success, issue_count, fix_count, error, recorded_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.repo,
                    record.pr_number,
                    record.kind,
                    int(record.success),
                    record.issue_count,
                    record.fix_count,
                    record.error,
                    record.recorded_at,
                ),
            )
            self._conn.commit()
        logger.debug("Journaled %s attempt for %s#%s", record.kind, record.repo, record.pr_number)

    def list_attempts(self, repo: str, pr_number: int | None = None) -> list[AttemptRecord]:
        with self._lock:
            if pr_number is not None:
                rows = self._conn.execute(
                    "SELECT * FROM attempts WHERE repo=? AND pr_number=? ORDER BY recorded_at, id",
                    (repo, pr_number),
                ).fetchall()
            else:
                rows = self._conn.execute(
                    "SELECT * FROM attempts WHERE repo=? ORDER BY recorded_at, id",
                    (repo,),
                ).fetchall()
        return [self._row_to_record(r) for r in rows]

    def close(self) -> None:
        self._conn.close()

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> AttemptRecord:
        return AttemptRecord(
            repo=row["repo"],
            pr_number=row["pr_number"],
            kind=row["kind"],
            success=bool(row["success"]),
            recorded_at=row["recorded_at"] or "",
            issue_count=row["issue_count"] or 0,
            fix_count=row["fix_count"] or 0,
            error=row["error"],
        )
