#!/usr/bin/env python3
"""
db_logger.py - SQLite run log for setops.

Each setops invocation opens one session and writes tagged log entries to it
through a dedicated writer thread and queue, so logging never blocks the
set operations.

Schema:
    log_entries(id, session_id, timestamp, tag, message, operation)
    sessions(id, started_at, argv)

Auto-purges entries older than RETAIN_DAYS (default 30).
"""

import sqlite3
import threading
import queue
import uuid
from datetime import datetime, timedelta
from pathlib import Path

RETAIN_DAYS = 30
DB_NAME     = "setops.db"
TAGS        = ("info", "ok", "warn", "err")


class DBLogger:
    def __init__(self, db_path: str, argv: str = ""):
        path = Path(db_path).expanduser()
        if path.is_dir():
            path = path / DB_NAME
        self._db_path      = str(path)
        self._queue        = queue.Queue()
        self._session      = str(uuid.uuid4())[:8]
        self._stop_evt     = threading.Event()
        self.write_errors  = 0

        self._init_db()
        self._start_session(argv)
        self._purge_old()

        self._writer = threading.Thread(target=self._writer_loop, daemon=True)
        self._writer.start()

    # ── Setup ─────────────────────────────────────────────────────────────────

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, timeout=10)
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _init_db(self):
        with self._connect() as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS sessions (
                    id           TEXT PRIMARY KEY,
                    started_at   TEXT NOT NULL,
                    argv         TEXT
                );
                CREATE TABLE IF NOT EXISTS log_entries (
                    id             INTEGER PRIMARY KEY AUTOINCREMENT,
                    session_id     TEXT NOT NULL,
                    timestamp      TEXT NOT NULL,
                    tag            TEXT NOT NULL,
                    message        TEXT NOT NULL,
                    operation      TEXT
                );
                CREATE INDEX IF NOT EXISTS idx_log_ts
                    ON log_entries(timestamp);
                CREATE INDEX IF NOT EXISTS idx_log_session
                    ON log_entries(session_id);
                CREATE INDEX IF NOT EXISTS idx_log_tag
                    ON log_entries(tag);
            """)

    def _start_session(self, argv: str):
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO sessions(id, started_at, argv) VALUES(?,?,?)",
                (self._session, datetime.now().isoformat(), argv)
            )

    def _purge_old(self):
        cutoff = (datetime.now() - timedelta(days=RETAIN_DAYS)).isoformat()
        with self._connect() as conn:
            conn.execute(
                "DELETE FROM log_entries WHERE timestamp < ?", (cutoff,)
            )
            conn.execute(
                "DELETE FROM sessions WHERE started_at < ? "
                "AND id NOT IN (SELECT DISTINCT session_id FROM log_entries)",
                (cutoff,)
            )

    # ── Writer thread ─────────────────────────────────────────────────────────

    def _writer_loop(self):
        conn = self._connect()
        while not self._stop_evt.is_set() or not self._queue.empty():
            try:
                item = self._queue.get(timeout=0.2)
            except queue.Empty:
                continue
            if item is None:
                self._queue.task_done()
                break
            try:
                conn.execute(
                    "INSERT INTO log_entries"
                    "(session_id, timestamp, tag, message, operation)"
                    " VALUES(?,?,?,?,?)",
                    item
                )
                conn.commit()
            except sqlite3.Error:
                self.write_errors += 1
            finally:
                self._queue.task_done()
        conn.close()

    # ── Public API ────────────────────────────────────────────────────────────

    def log(self, message: str, tag: str = "info", operation: str = ""):
        self._queue.put((
            self._session,
            datetime.now().isoformat(),
            tag,
            message,
            operation,
        ))

    def get_entries(self, session_id: str = None, tag: str = None,
                    limit: int = 500) -> list:
        """
        Fetch log entries, oldest first. Returns list of dicts:
            {id, session_id, timestamp, tag, message, operation}
        """
        return get_entries(self._db_path, session_id=session_id, tag=tag, limit=limit)

    def get_sessions(self, limit: int = 50) -> list:
        return get_sessions(self._db_path, limit=limit)

    @property
    def session_id(self) -> str:
        return self._session

    @property
    def db_path(self) -> str:
        return self._db_path

    def stop(self):
        """Flush queued entries and stop the writer thread."""
        self._stop_evt.set()
        self._queue.put(None)
        self._writer.join(timeout=3)


# ─── Read side (no writer thread needed) ──────────────────────────────────────

def _read(db_path: str, sql: str, params) -> list:
    conn = sqlite3.connect(db_path, timeout=10)
    try:
        conn.row_factory = sqlite3.Row
        return [dict(r) for r in conn.execute(sql, params).fetchall()]
    finally:
        conn.close()


def get_entries(db_path: str, session_id: str = None, tag: str = None,
                limit: int = 500) -> list:
    clauses = []
    params  = []
    if session_id:
        clauses.append("session_id = ?")
        params.append(session_id)
    if tag:
        clauses.append("tag = ?")
        params.append(tag)
    where = ("WHERE " + " AND ".join(clauses)) if clauses else ""
    sql = (
        f"SELECT id, session_id, timestamp, tag, message, operation "
        f"FROM log_entries {where} "
        f"ORDER BY id DESC LIMIT ?"
    )
    params.append(limit)
    return list(reversed(_read(db_path, sql, params)))


def get_sessions(db_path: str, limit: int = 50) -> list:
    return _read(
        db_path,
        "SELECT id, started_at, argv FROM sessions "
        "ORDER BY started_at DESC LIMIT ?",
        (limit,)
    )


def clear_session(db_path: str, session_id: str) -> int:
    """Delete a session and its entries. Returns the number of entries removed."""
    conn = sqlite3.connect(db_path, timeout=10)
    try:
        with conn:
            removed = conn.execute(
                "DELETE FROM log_entries WHERE session_id = ?", (session_id,)
            ).rowcount
            conn.execute("DELETE FROM sessions WHERE id = ?", (session_id,))
        return removed
    finally:
        conn.close()
