# src/hatym/storage/repo.py
from __future__ import annotations

import secrets
import sqlite3
import uuid
from dataclasses import dataclass
from typing import Optional

from hatym.domain.errors import ConflictError, NotFoundError, ValidationError
from hatym.domain.models import ClaimRow, CompleteResult, SessionView, UnitChange, UnitView
from hatym.domain.states import TOTAL_PAGES, ClaimStatus, CompleteStatus, UnitStatus
from hatym.logging import get_logger

from .db import begin_deferred, begin_immediate, commit, rollback

_LOG = get_logger(__name__)

_SESSION_COLUMNS = """
    s.id, s.created_at, s.is_active,
    (SELECT COUNT(*) FROM units u
      WHERE u.session_id = s.id AND u.status = 'completed') AS completed_count
"""

_UNIT_COLUMNS = "page_number, status, holder, assigned_at, completed_at, lease_token"


def new_lease_token() -> str:
    return secrets.token_urlsafe(32)


@dataclass
class AssignmentRepo:
    """
    Repository encapsulating all SQL access to sessions and their pages.

    Important invariants:
    - Every write runs inside BEGIN IMMEDIATE, so conflicting claims,
      completions and reclaims are serialized and all-or-nothing.
    - Each state transition is guarded by its expected pre-state in the
      UPDATE's WHERE clause; a transition that lost a race updates 0 rows.
    - Pages are handed out strictly in ascending page_number order.
    - Completed pages are terminal (also enforced by a trigger).
    - Only the active session takes claims and completions; superseded
      sessions are read-only history (ConflictError).
    """
    conn: sqlite3.Connection

    # -------------------------
    # Read operations
    # -------------------------

    def get_session(self, session_id: str) -> SessionView:
        row = self.conn.execute(
            f"SELECT {_SESSION_COLUMNS} FROM sessions s WHERE s.id = ?;",
            (session_id,),
        ).fetchone()
        if not row:
            raise NotFoundError(f"Session not found: {session_id}", details={"session_id": session_id})
        return _session_view(row)

    def get_active_session(self) -> SessionView:
        row = self.conn.execute(
            f"""
            SELECT {_SESSION_COLUMNS}
            FROM sessions s
            WHERE s.is_active = 1
            ORDER BY s.created_at DESC, s.rowid DESC
            LIMIT 1;
            """
        ).fetchone()
        if not row:
            raise NotFoundError("No active session")
        return _session_view(row)

    def list_sessions(self, limit: int = 50, offset: int = 0) -> tuple[list[SessionView], int]:
        total = self.conn.execute("SELECT COUNT(*) AS c FROM sessions;").fetchone()["c"]
        rows = self.conn.execute(
            f"""
            SELECT {_SESSION_COLUMNS}
            FROM sessions s
            ORDER BY s.created_at DESC, s.rowid DESC
            LIMIT ? OFFSET ?;
            """,
            (limit, offset),
        ).fetchall()
        return [_session_view(r) for r in rows], int(total)

    def list_active_session_ids(self) -> list[str]:
        rows = self.conn.execute("SELECT id FROM sessions WHERE is_active = 1 ORDER BY created_at ASC;").fetchall()
        return [r["id"] for r in rows]

    def completed_count(self, session_id: str) -> int:
        self._require_session(session_id)
        return self._completed_count(session_id)

    def list_units(self, session_id: str) -> tuple[list[UnitView], int]:
        """
        Returns every page of the session (tokens stripped) plus the change
        cursor the list is consistent with.

        Both reads run in one transaction so a dashboard can resume the
        change stream from exactly this snapshot.
        """
        begin_deferred(self.conn)
        try:
            self._require_session(session_id)
            rows = self.conn.execute(
                f"""
                SELECT {_UNIT_COLUMNS}
                FROM units
                WHERE session_id = ?
                ORDER BY page_number ASC;
                """,
                (session_id,),
            ).fetchall()
            cursor = self._change_cursor(session_id)
            commit(self.conn)
        except Exception:
            rollback(self.conn)
            raise
        return [_unit_view(r, reveal_token=False) for r in rows], cursor

    def get_unit(self, session_id: str, page_number: int, participant_id: Optional[str] = None) -> UnitView:
        """
        Live state of one page. The lease token is only included when
        participant_id is the current holder of an assigned page.
        """
        _check_page_number(page_number)
        self._require_session(session_id)
        row = self.conn.execute(
            f"SELECT {_UNIT_COLUMNS} FROM units WHERE session_id = ? AND page_number = ?;",
            (session_id, page_number),
        ).fetchone()
        if not row:
            raise NotFoundError(
                f"Page {page_number} not found in session {session_id}",
                details={"session_id": session_id, "page_number": page_number},
            )
        reveal = (
            participant_id is not None
            and row["holder"] == participant_id
            and row["status"] == UnitStatus.ASSIGNED.value
        )
        return _unit_view(row, reveal_token=reveal)

    def list_participant_units(self, session_id: str, participant_id: str) -> list[UnitView]:
        """
        Assigned and completed pages held by a participant, with the tokens
        of the open leases.
        """
        self._require_session(session_id)
        rows = self.conn.execute(
            f"""
            SELECT {_UNIT_COLUMNS}
            FROM units
            WHERE session_id = ?
              AND holder = ?
              AND status IN (?, ?)
            ORDER BY page_number ASC;
            """,
            (session_id, participant_id, UnitStatus.ASSIGNED.value, UnitStatus.COMPLETED.value),
        ).fetchall()
        return [_unit_view(r, reveal_token=True) for r in rows]

    def list_changes(self, session_id: str, after_seq: int = 0, limit: int = 500) -> tuple[list[UnitChange], int]:
        """
        Returns page changes with seq > after_seq, oldest first, and the
        cursor to pass next time (after_seq itself when nothing is new).
        """
        self._require_session(session_id)
        rows = self.conn.execute(
            """
            SELECT seq, page_number, status, holder, assigned_at, completed_at, changed_at
            FROM unit_changes
            WHERE session_id = ?
              AND seq > ?
            ORDER BY seq ASC
            LIMIT ?;
            """,
            (session_id, after_seq, limit),
        ).fetchall()
        changes = [
            UnitChange(
                seq=r["seq"],
                page_number=r["page_number"],
                status=UnitStatus(r["status"]),
                holder=r["holder"],
                assigned_at=r["assigned_at"],
                completed_at=r["completed_at"],
                changed_at=r["changed_at"],
            )
            for r in rows
        ]
        cursor = changes[-1].seq if changes else after_seq
        return changes, cursor

    # -------------------------
    # Write operations
    # -------------------------

    def create_session(self, now_ms: int) -> str:
        """
        Creates a session with all TOTAL_PAGES pages available and makes it
        the active one. Earlier sessions are only flagged inactive; their
        pages are left untouched.
        """
        session_id = uuid.uuid4().hex
        try:
            begin_immediate(self.conn)

            self.conn.execute("UPDATE sessions SET is_active = 0 WHERE is_active = 1;")
            self.conn.execute(
                "INSERT INTO sessions(id, created_at, is_active) VALUES (?, ?, 1);",
                (session_id, now_ms),
            )
            self.conn.execute(
                """
                WITH RECURSIVE pages(n) AS (
                  SELECT 1
                  UNION ALL
                  SELECT n + 1 FROM pages WHERE n < ?
                )
                INSERT INTO units(session_id, page_number, status, updated_at)
                SELECT ?, n, ?, ? FROM pages;
                """,
                (TOTAL_PAGES, session_id, UnitStatus.AVAILABLE.value, now_ms),
            )

            commit(self.conn)
        except Exception:
            rollback(self.conn)
            raise

        _LOG.info("Created session %s with %d pages", session_id, TOTAL_PAGES)
        return session_id

    def claim_next_page(
        self,
        session_id: str,
        participant_id: str,
        *,
        ttl_ms: int,
        max_per_user: int,
        now_ms: int,
        limit: Optional[int] = None,
    ) -> list[ClaimRow]:
        """
        Resumes the participant's open leases and claims new pages up to the
        per-participant cap, atomically.

        Behavior:
        - Lapsed leases in the session are reclaimed first.
        - Open leases already held are returned as-is (same page, same token).
        - held = assigned + completed pages of the participant. At or over
          max_per_user no page is claimed; without open leases the answer is a
          single LIMIT_REACHED row.
        - New pages are the lowest available page numbers.
        - `limit` caps the open leases the participant holds after this call
          (single-page mode passes 1).
        - Nothing open and nothing claimable gives a single FINISHED row.

        Result: assigned rows by page number, then the participant's completed
        pages (no token).
        """
        if ttl_ms <= 0:
            raise ValidationError("ttl must be > 0", details={"ttl_ms": ttl_ms})
        if max_per_user <= 0:
            raise ValidationError("max_per_user must be > 0", details={"max_per_user": max_per_user})
        if limit is not None and limit <= 0:
            raise ValidationError("limit must be > 0", details={"limit": limit})

        try:
            begin_immediate(self.conn)
            self._require_active_session(session_id)

            self._release_expired(session_id, ttl_ms, now_ms)

            held_rows = self.conn.execute(
                """
                SELECT page_number, status, lease_token
                FROM units
                WHERE session_id = ?
                  AND holder = ?
                  AND status IN (?, ?)
                ORDER BY page_number ASC;
                """,
                (session_id, participant_id, UnitStatus.ASSIGNED.value, UnitStatus.COMPLETED.value),
            ).fetchall()
            resumed = [(r["page_number"], r["lease_token"]) for r in held_rows if r["status"] == UnitStatus.ASSIGNED.value]
            completed = [r["page_number"] for r in held_rows if r["status"] == UnitStatus.COMPLETED.value]
            held = len(held_rows)

            if held >= max_per_user and not resumed:
                commit(self.conn)
                _LOG.info(
                    "Participant %s reached the limit (%d) in session %s",
                    participant_id,
                    max_per_user,
                    session_id,
                )
                return [ClaimRow(status=ClaimStatus.LIMIT_REACHED)]

            want = max(0, max_per_user - held)
            if limit is not None:
                want = min(want, max(0, limit - len(resumed)))

            claimed = self._claim_available(session_id, participant_id, want, now_ms) if want else []

            commit(self.conn)
        except Exception:
            rollback(self.conn)
            raise

        if not resumed and not claimed:
            _LOG.info("Session %s has no pages left for participant %s", session_id, participant_id)
            return [ClaimRow(status=ClaimStatus.FINISHED)]

        if claimed:
            _LOG.info(
                "Claimed page(s) %s for participant %s in session %s",
                [page for page, _ in claimed],
                participant_id,
                session_id,
            )

        assigned = sorted(resumed + claimed)
        rows = [ClaimRow(page_number=page, lease_token=token, status=ClaimStatus.ASSIGNED) for page, token in assigned]
        rows.extend(ClaimRow(page_number=page, status=ClaimStatus.COMPLETED) for page in completed)
        return rows

    def complete_page(
        self,
        session_id: str,
        page_number: int,
        participant_id: str,
        lease_token: str,
        *,
        now_ms: int,
    ) -> CompleteResult:
        """
        Marks a page COMPLETED if, and only if, it is assigned to
        participant_id under exactly lease_token.

        Anything else (not assigned, other holder, stale token) is REJECTED
        without any change. The current completed count is reported either way.
        """
        _check_page_number(page_number)

        try:
            begin_immediate(self.conn)
            self._require_active_session(session_id)

            updated = self.conn.execute(
                """
                UPDATE units
                SET status = ?,
                    completed_at = ?,
                    lease_token = NULL,
                    updated_at = ?
                WHERE session_id = ?
                  AND page_number = ?
                  AND status = ?
                  AND holder = ?
                  AND lease_token = ?;
                """,
                (
                    UnitStatus.COMPLETED.value,
                    now_ms,
                    now_ms,
                    session_id,
                    page_number,
                    UnitStatus.ASSIGNED.value,
                    participant_id,
                    lease_token,
                ),
            ).rowcount

            completed_count = self._completed_count(session_id)
            commit(self.conn)
        except Exception:
            rollback(self.conn)
            raise

        finished = completed_count >= TOTAL_PAGES
        if updated == 0:
            _LOG.info(
                "Rejected completion of page %d in session %s by participant %s",
                page_number,
                session_id,
                participant_id,
            )
            return CompleteResult(status=CompleteStatus.REJECTED, completed_count=completed_count, finished=finished)

        _LOG.info(
            "Page %d completed in session %s (%d/%d)",
            page_number,
            session_id,
            completed_count,
            TOTAL_PAGES,
        )
        if finished:
            _LOG.info("Session %s finished", session_id)
        return CompleteResult(status=CompleteStatus.COMPLETED, completed_count=completed_count, finished=finished)

    def release_expired(self, session_id: str, ttl_ms: int, now_ms: int) -> int:
        """
        Returns every ASSIGNED page whose assigned_at is strictly older than
        ttl_ms to AVAILABLE. Returns the number of pages reclaimed.

        Superseded sessions are history and are left as they are (0).
        """
        if ttl_ms <= 0:
            raise ValidationError("ttl must be > 0", details={"ttl_ms": ttl_ms})

        try:
            begin_immediate(self.conn)
            if self._require_session(session_id):
                released = self._release_expired(session_id, ttl_ms, now_ms)
            else:
                released = 0
            commit(self.conn)
        except Exception:
            rollback(self.conn)
            raise
        return released

    # -------------------------
    # Helpers
    # -------------------------

    def _require_session(self, session_id: str) -> bool:
        """Raises NotFoundError for unknown ids; returns whether the session is active."""
        row = self.conn.execute("SELECT is_active FROM sessions WHERE id = ?;", (session_id,)).fetchone()
        if not row:
            raise NotFoundError(f"Session not found: {session_id}", details={"session_id": session_id})
        return bool(row["is_active"])

    def _require_active_session(self, session_id: str) -> None:
        if not self._require_session(session_id):
            raise ConflictError(
                f"Session {session_id} has been superseded by a newer session",
                details={"session_id": session_id},
            )

    def _completed_count(self, session_id: str) -> int:
        row = self.conn.execute(
            "SELECT COUNT(*) AS c FROM units WHERE session_id = ? AND status = ?;",
            (session_id, UnitStatus.COMPLETED.value),
        ).fetchone()
        return int(row["c"])

    def _change_cursor(self, session_id: str) -> int:
        row = self.conn.execute(
            "SELECT COALESCE(MAX(seq), 0) AS c FROM unit_changes WHERE session_id = ?;",
            (session_id,),
        ).fetchone()
        return int(row["c"])

    def _release_expired(self, session_id: str, ttl_ms: int, now_ms: int) -> int:
        # Caller holds the write transaction.
        released = self.conn.execute(
            """
            UPDATE units
            SET status = ?,
                holder = NULL,
                assigned_at = NULL,
                lease_token = NULL,
                updated_at = ?
            WHERE session_id = ?
              AND status = ?
              AND assigned_at < ?;
            """,
            (
                UnitStatus.AVAILABLE.value,
                now_ms,
                session_id,
                UnitStatus.ASSIGNED.value,
                now_ms - ttl_ms,
            ),
        ).rowcount
        if released:
            _LOG.info("Reclaimed %d expired lease(s) in session %s", released, session_id)
        return int(released)

    def _claim_available(self, session_id: str, participant_id: str, want: int, now_ms: int) -> list[tuple[int, str]]:
        # Caller holds the write transaction.
        rows = self.conn.execute(
            """
            SELECT page_number
            FROM units
            WHERE session_id = ?
              AND status = ?
            ORDER BY page_number ASC
            LIMIT ?;
            """,
            (session_id, UnitStatus.AVAILABLE.value, want),
        ).fetchall()

        claimed: list[tuple[int, str]] = []
        for row in rows:
            token = new_lease_token()
            # Compare-and-swap on status
            updated = self.conn.execute(
                """
                UPDATE units
                SET status = ?,
                    holder = ?,
                    assigned_at = ?,
                    lease_token = ?,
                    updated_at = ?
                WHERE session_id = ?
                  AND page_number = ?
                  AND status = ?;
                """,
                (
                    UnitStatus.ASSIGNED.value,
                    participant_id,
                    now_ms,
                    token,
                    now_ms,
                    session_id,
                    row["page_number"],
                    UnitStatus.AVAILABLE.value,
                ),
            ).rowcount
            if updated == 1:
                claimed.append((int(row["page_number"]), token))
        return claimed


def _check_page_number(page_number: int) -> None:
    if not (1 <= page_number <= TOTAL_PAGES):
        raise ValidationError(
            f"page_number must be between 1 and {TOTAL_PAGES}",
            details={"page_number": page_number},
        )


def _session_view(row: sqlite3.Row) -> SessionView:
    completed = int(row["completed_count"])
    return SessionView(
        id=row["id"],
        created_at=row["created_at"],
        is_active=bool(row["is_active"]),
        completed_count=completed,
        total_pages=TOTAL_PAGES,
        finished=completed >= TOTAL_PAGES,
    )


def _unit_view(row: sqlite3.Row, *, reveal_token: bool) -> UnitView:
    return UnitView(
        page_number=row["page_number"],
        status=UnitStatus(row["status"]),
        holder=row["holder"],
        assigned_at=row["assigned_at"],
        completed_at=row["completed_at"],
        lease_token=row["lease_token"] if reveal_token else None,
    )
