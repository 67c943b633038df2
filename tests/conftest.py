# tests/conftest.py
import importlib
import itertools
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

import pytest
from fastapi.testclient import TestClient

from hatym.storage import AssignmentRepo, SQLiteDB, apply_migrations

_counter = itertools.count(1)

MINUTE_MS = 60_000
T0 = 1_700_000_000_000

DEFAULT_ENV = {
    "HATYM_ASSIGNMENT_TTL_MINUTES": "30",
    "HATYM_MAX_PAGES_PER_USER": "1",
    # Keep the background sweeper out of the way; tests sweep explicitly.
    "HATYM_SWEEP_INTERVAL_MS": "600000",
    "HATYM_LOG_LEVEL": "warning",
}


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start_ms: int = T0) -> None:
        self.now = start_ms

    def __call__(self) -> int:
        return self.now

    def advance(self, *, minutes: float = 0, ms: int = 0) -> int:
        self.now += int(minutes * MINUTE_MS) + ms
        return self.now


def _apply_env(monkeypatch: pytest.MonkeyPatch, db_path: Path, overrides: Optional[dict[str, str]] = None) -> None:
    monkeypatch.setenv("HATYM_DB_PATH", str(db_path))
    for k, v in DEFAULT_ENV.items():
        monkeypatch.setenv(k, v)
    if overrides:
        for k, v in overrides.items():
            monkeypatch.setenv(k, v)


@contextmanager
def _client_ctx(monkeypatch: pytest.MonkeyPatch, tmp_path: Path, *, overrides: Optional[dict[str, str]] = None,
                db_path: Optional[Path] = None) -> Iterator[TestClient]:
    if db_path is None:
        n = next(_counter)
        db_path = tmp_path / f"hatym_{n}.db"

    _apply_env(monkeypatch, db_path, overrides)

    # Import after env is set; reload to avoid cross-test state
    app_mod = importlib.import_module("hatym.api.app")
    importlib.reload(app_mod)

    with TestClient(app_mod.app) as client:
        yield client


@pytest.fixture()
def client(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[TestClient]:
    """
    Default integration test client.
    Uses DEFAULT_ENV and a fresh sqlite db per test.
    """
    with _client_ctx(monkeypatch, tmp_path) as c:
        yield c


@pytest.fixture()
def client_factory(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    """
    Factory for tests that need custom settings or a pre-populated DB.

    Usage:
      with client_factory(overrides={"HATYM_MAX_PAGES_PER_USER": "3"}) as client:
          ...
    """

    def _make(*, overrides: Optional[dict[str, str]] = None, db_path: Optional[Path] = None):
        return _client_ctx(monkeypatch, tmp_path, overrides=overrides, db_path=db_path)

    return _make


@pytest.fixture()
def db(tmp_path: Path) -> SQLiteDB:
    """A migrated, empty database."""
    database = SQLiteDB(tmp_path / "hatym.db")
    conn = database.connect()
    try:
        apply_migrations(conn)
    finally:
        conn.close()
    return database


@pytest.fixture()
def conn(db: SQLiteDB) -> Iterator[sqlite3.Connection]:
    c = db.connect()
    try:
        yield c
    finally:
        c.close()


@pytest.fixture()
def repo(conn: sqlite3.Connection) -> AssignmentRepo:
    return AssignmentRepo(conn)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def session_id(repo: AssignmentRepo, clock: FakeClock) -> str:
    return repo.create_session(now_ms=clock())
