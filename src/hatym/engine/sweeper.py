# src/hatym/engine/sweeper.py
from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Optional

from hatym.clock import Clock, now_ms
from hatym.logging import get_logger
from hatym.storage import AssignmentRepo, SQLiteDB

_LOG = get_logger(__name__)


def run_sweep(db: SQLiteDB, session_id: str, *, ttl_ms: int, clock: Clock = now_ms) -> int:
    """
    Reclaims the lapsed leases of one session. Returns pages released.
    """
    conn = db.connect()
    try:
        return AssignmentRepo(conn).release_expired(session_id, ttl_ms=ttl_ms, now_ms=clock())
    finally:
        conn.close()


def sweep_active_sessions(db: SQLiteDB, *, ttl_ms: int, clock: Clock = now_ms) -> int:
    """
    Reclaims lapsed leases in every active session. Returns pages released.
    """
    conn = db.connect()
    try:
        repo = AssignmentRepo(conn)
        released = 0
        for session_id in repo.list_active_session_ids():
            released += repo.release_expired(session_id, ttl_ms=ttl_ms, now_ms=clock())
        if released:
            _LOG.info("Sweep released %d expired lease(s).", released)
        return released
    finally:
        conn.close()


@dataclass(frozen=True)
class SweeperConfig:
    ttl_ms: int = 30 * 60_000
    interval_ms: int = 60_000

    @property
    def interval_s(self) -> float:
        return self.interval_ms / 1000.0


class ExpirySweeper:
    """
    Background loop reclaiming lapsed leases on a fixed interval.

    It only talks to the store, never to the change stream, so abandoned
    pages come back even when no dashboard is connected.
    """

    def __init__(self, db: SQLiteDB, cfg: SweeperConfig, *, clock: Clock = now_ms) -> None:
        if cfg.ttl_ms <= 0:
            raise ValueError("ttl_ms must be > 0")
        if cfg.interval_ms <= 0:
            raise ValueError("interval_ms must be > 0")

        self._db = db
        self._cfg = cfg
        self._clock = clock

        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return bool(self._thread and self._thread.is_alive())

    def start(self) -> None:
        """
        Starts the sweeper thread. Safe to call more than once.
        """
        if self.running:
            return

        _LOG.info(
            "Starting expiry sweeper: ttl_ms=%d interval_ms=%d",
            self._cfg.ttl_ms,
            self._cfg.interval_ms,
        )
        self._stop.clear()
        self._thread = threading.Thread(target=self._run_loop, name="hatym-sweeper", daemon=True)
        self._thread.start()

    def stop(self, *, timeout_s: float = 5.0) -> None:
        _LOG.info("Stopping expiry sweeper...")
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=timeout_s)
        _LOG.info("Expiry sweeper stopped.")

    def sweep_once(self) -> int:
        return sweep_active_sessions(self._db, ttl_ms=self._cfg.ttl_ms, clock=self._clock)

    def _run_loop(self) -> None:
        # First pass right away, then every interval until stopped.
        while True:
            try:
                self.sweep_once()
            except Exception:
                _LOG.exception("Expiry sweep failed (continuing).")

            if self._stop.wait(timeout=self._cfg.interval_s):
                return
