# tests/test_expiry.py
import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from conftest import MINUTE_MS, T0, FakeClock
from hatym.domain.errors import NotFoundError, ValidationError
from hatym.domain.states import CompleteStatus, UnitStatus
from hatym.engine.sweeper import ExpirySweeper, SweeperConfig, run_sweep, sweep_active_sessions
from hatym.storage import AssignmentRepo

TTL_MS = 30 * MINUTE_MS


def _wait_until(fn, timeout_s: float = 5.0, poll_s: float = 0.02) -> bool:
    deadline = time.monotonic() + timeout_s
    while time.monotonic() < deadline:
        if fn():
            return True
        time.sleep(poll_s)
    return False


def _claim(repo, session_id, who, now):
    return repo.claim_next_page(session_id, who, ttl_ms=TTL_MS, max_per_user=1, now_ms=now)[0]


def test_reclaim_only_strictly_older_than_ttl(repo, session_id, clock):
    assigned_at = clock()
    _claim(repo, session_id, "A", assigned_at)

    assert repo.release_expired(session_id, ttl_ms=TTL_MS, now_ms=assigned_at + TTL_MS) == 0
    assert repo.get_unit(session_id, 1).status == UnitStatus.ASSIGNED

    assert repo.release_expired(session_id, ttl_ms=TTL_MS, now_ms=assigned_at + TTL_MS + 1) == 1
    unit = repo.get_unit(session_id, 1)
    assert unit.status == UnitStatus.AVAILABLE
    assert unit.holder is None
    assert unit.assigned_at is None


def test_pages_completed_before_expiry_stay_completed(repo, session_id, clock):
    row = _claim(repo, session_id, "A", clock())
    clock.advance(minutes=29)
    assert repo.complete_page(session_id, 1, "A", row.lease_token, now_ms=clock()).status == CompleteStatus.COMPLETED

    clock.advance(minutes=60)
    assert repo.release_expired(session_id, ttl_ms=TTL_MS, now_ms=clock()) == 0
    assert repo.get_unit(session_id, 1).status == UnitStatus.COMPLETED


def test_completion_after_reclaim_is_rejected(repo, session_id, clock):
    row = _claim(repo, session_id, "A", clock())
    clock.advance(minutes=45)
    assert repo.release_expired(session_id, ttl_ms=TTL_MS, now_ms=clock()) == 1

    result = repo.complete_page(session_id, 1, "A", row.lease_token, now_ms=clock())
    assert result.status == CompleteStatus.REJECTED
    assert repo.get_unit(session_id, 1).status == UnitStatus.AVAILABLE


def test_late_completion_before_any_sweep_still_counts(repo, session_id, clock):
    row = _claim(repo, session_id, "A", clock())
    clock.advance(minutes=45)
    # Lapsed but not reclaimed yet: whoever commits first wins
    assert repo.complete_page(session_id, 1, "A", row.lease_token, now_ms=clock()).status == CompleteStatus.COMPLETED
    assert repo.release_expired(session_id, ttl_ms=TTL_MS, now_ms=clock()) == 0


def test_release_expired_validates_input(repo, session_id, clock):
    with pytest.raises(ValidationError):
        repo.release_expired(session_id, ttl_ms=0, now_ms=clock())
    with pytest.raises(NotFoundError):
        repo.release_expired("missing", ttl_ms=TTL_MS, now_ms=clock())


def test_reclaim_is_recorded_in_change_log(repo, session_id, clock):
    _claim(repo, session_id, "A", clock())
    clock.advance(minutes=31)
    repo.release_expired(session_id, ttl_ms=TTL_MS, now_ms=clock())

    changes, cursor = repo.list_changes(session_id)
    assert [(c.page_number, c.status, c.holder) for c in changes] == [
        (1, UnitStatus.ASSIGNED, "A"),
        (1, UnitStatus.AVAILABLE, None),
    ]
    assert cursor == changes[-1].seq


def test_run_sweep_and_sweep_active_sessions(db, repo, clock):
    old = repo.create_session(now_ms=clock())
    _claim(repo, old, "A", clock())
    current = repo.create_session(now_ms=clock())
    _claim(repo, current, "A", clock())
    _claim(repo, current, "B", clock())

    later = FakeClock(clock() + 31 * MINUTE_MS)
    # Only the active session is swept in the background
    assert sweep_active_sessions(db, ttl_ms=TTL_MS, clock=later) == 2
    assert repo.get_unit(old, 1).status == UnitStatus.ASSIGNED

    assert run_sweep(db, current, ttl_ms=TTL_MS, clock=later) == 0
    # Superseded sessions stay exactly as they were
    assert run_sweep(db, old, ttl_ms=TTL_MS, clock=later) == 0
    assert repo.get_unit(old, 1).status == UnitStatus.ASSIGNED


def test_background_sweeper_reclaims_without_any_dashboard(db, repo, session_id, clock):
    _claim(repo, session_id, "A", clock())

    sweeper = ExpirySweeper(
        db,
        SweeperConfig(ttl_ms=TTL_MS, interval_ms=20),
        clock=lambda: clock() + 31 * MINUTE_MS,
    )
    sweeper.start()
    try:
        assert sweeper.running
        ok = _wait_until(lambda: repo.get_unit(session_id, 1).status == UnitStatus.AVAILABLE)
        assert ok, "sweeper did not reclaim the lapsed lease"
    finally:
        sweeper.stop(timeout_s=2.0)
    assert not sweeper.running


def test_sweeper_rejects_bad_config(db):
    with pytest.raises(ValueError):
        ExpirySweeper(db, SweeperConfig(ttl_ms=0))
    with pytest.raises(ValueError):
        ExpirySweeper(db, SweeperConfig(interval_ms=0))


def test_completion_racing_a_reclaim_has_one_winner(db):
    later = T0 + 45 * MINUTE_MS
    outcomes = set()

    for _ in range(20):
        conn = db.connect()
        try:
            repo = AssignmentRepo(conn)
            session_id = repo.create_session(now_ms=T0)
            row = _claim(repo, session_id, "A", T0)
            barrier = threading.Barrier(2)

            def complete():
                c = db.connect()
                try:
                    barrier.wait()
                    return AssignmentRepo(c).complete_page(session_id, 1, "A", row.lease_token, now_ms=later)
                finally:
                    c.close()

            def release():
                c = db.connect()
                try:
                    barrier.wait()
                    return AssignmentRepo(c).release_expired(session_id, ttl_ms=TTL_MS, now_ms=later)
                finally:
                    c.close()

            with ThreadPoolExecutor(max_workers=2) as pool:
                completed = pool.submit(complete)
                released = pool.submit(release)
                result, count = completed.result(), released.result()

            unit = repo.get_unit(session_id, 1)
            if result.status == CompleteStatus.COMPLETED:
                assert count == 0
                assert unit.status == UnitStatus.COMPLETED
                assert unit.holder == "A"
                assert repo.completed_count(session_id) == 1
            else:
                assert count == 1
                assert unit.status == UnitStatus.AVAILABLE
                assert unit.holder is None and unit.assigned_at is None
                assert repo.completed_count(session_id) == 0
            outcomes.add(result.status)

            changes, _ = repo.list_changes(session_id)
            assert [c.status for c in changes] == [UnitStatus.ASSIGNED, unit.status]
        finally:
            conn.close()

    assert outcomes <= {CompleteStatus.COMPLETED, CompleteStatus.REJECTED}
