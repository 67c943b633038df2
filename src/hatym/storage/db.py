# src/hatym/storage/db.py
from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class SQLiteDB:
    """
    Opens connections to the hatym database.

    Each request, sweep pass or client call gets its own connection. FastAPI
    may open a request connection on one pool thread and use it on another,
    so the same-thread check is off; a connection is still never used by two
    threads at once.

    WAL journaling lets dashboards read page lists while claims are written.
    """
    db_path: Path
    timeout_s: float = 5.0

    def connect(self) -> sqlite3.Connection:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(
            str(self.db_path),
            timeout=self.timeout_s,
            isolation_level=None,  # autocommit; the repo issues BEGIN/COMMIT itself
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        self._apply_pragmas(conn)
        return conn

    def _apply_pragmas(self, conn: sqlite3.Connection) -> None:
        busy_ms = int(self.timeout_s * 1000)
        cur = conn.cursor()
        cur.execute("PRAGMA journal_mode=WAL;")
        cur.execute("PRAGMA foreign_keys=ON;")
        # A second writer waits up to busy_ms for BEGIN IMMEDIATE
        cur.execute(f"PRAGMA busy_timeout={busy_ms};")
        cur.execute("PRAGMA synchronous=NORMAL;")
        cur.close()


def begin_immediate(conn: sqlite3.Connection) -> None:
    """
    Takes the write lock up front. Claims, completions, reclaims and session
    creation all run inside one of these, so they never interleave.
    """
    conn.execute("BEGIN IMMEDIATE;")


def begin_deferred(conn: sqlite3.Connection) -> None:
    """Read snapshot spanning several SELECTs."""
    conn.execute("BEGIN;")


def commit(conn: sqlite3.Connection) -> None:
    conn.execute("COMMIT;")


def rollback(conn: sqlite3.Connection) -> None:
    # BEGIN itself may have failed (busy), leaving nothing to roll back
    if conn.in_transaction:
        conn.execute("ROLLBACK;")
