#!/usr/bin/env python3
from __future__ import annotations

import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_ROOT = REPO_ROOT / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

from hatym.config import load_settings
from hatym.logging import configure_logging, get_logger
from hatym.storage import AssignmentRepo, SQLiteDB, apply_migrations


def main() -> int:
    settings = load_settings()
    configure_logging(settings.log_level)
    log = get_logger(__name__)

    settings.db_path.parent.mkdir(parents=True, exist_ok=True)

    db = SQLiteDB(settings.db_path)
    conn = db.connect()
    try:
        apply_migrations(conn, REPO_ROOT / "migrations")
        sessions, total = AssignmentRepo(conn).list_sessions(limit=1)
    finally:
        conn.close()

    log.info("DB initialized at %s (%d session(s))", settings.db_path, total)
    if sessions:
        log.info("Latest session: %s", sessions[0].id)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
