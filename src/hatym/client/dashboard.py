# src/hatym/client/dashboard.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

from hatym.domain.models import UnitChange, UnitView
from hatym.domain.states import TOTAL_PAGES, UnitStatus
from hatym.logging import get_logger

from .store import StoreClient

_LOG = get_logger(__name__)


@dataclass(frozen=True)
class ProgressCounts:
    available_count: int = 0
    assigned_count: int = 0
    completed_count: int = 0


class DashboardProjection:
    """
    Local mirror of every page of one session.

    Fed from two independent inputs: full loads (load) and the change
    stream (apply). Changes are matched by page number; those at or below
    the current cursor, for unknown pages, or arriving before the first load
    are ignored.
    """

    def __init__(self) -> None:
        self._pages: dict[int, UnitView] = {}
        self._cursor = 0
        self._loaded = False

    @property
    def cursor(self) -> int:
        return self._cursor

    @property
    def loaded(self) -> bool:
        return self._loaded

    @property
    def pages(self) -> list[UnitView]:
        return [self._pages[n] for n in sorted(self._pages)]

    def load(self, units: Iterable[UnitView], cursor: int) -> None:
        self._pages = {u.page_number: u for u in units}
        self._cursor = cursor
        self._loaded = True

    def apply(self, change: UnitChange) -> bool:
        if not self._loaded or change.seq <= self._cursor:
            return False
        self._cursor = change.seq

        current = self._pages.get(change.page_number)
        if current is None:
            return False
        self._pages[change.page_number] = current.model_copy(
            update={
                "status": change.status,
                "holder": change.holder,
                "assigned_at": change.assigned_at,
                "completed_at": change.completed_at,
            }
        )
        return True

    def apply_all(self, changes: Iterable[UnitChange]) -> int:
        return sum(1 for change in changes if self.apply(change))

    def counts(self) -> ProgressCounts:
        available = assigned = completed = 0
        for page in self._pages.values():
            if page.status == UnitStatus.AVAILABLE:
                available += 1
            elif page.status == UnitStatus.ASSIGNED:
                assigned += 1
            elif page.status == UnitStatus.COMPLETED:
                completed += 1
        return ProgressCounts(available_count=available, assigned_count=assigned, completed_count=completed)

    @property
    def completion_ratio(self) -> float:
        return min(1.0, self.counts().completed_count / TOTAL_PAGES)

    @property
    def is_complete(self) -> bool:
        # An empty mirror (session not loaded or not seeded yet) is never complete.
        return bool(self._pages) and self.counts().completed_count >= TOTAL_PAGES


class Dashboard:
    """
    Aggregate view of one session.

    refresh() sweeps lapsed leases and reloads every page; pump() catches up
    on the change stream. refresh() alone keeps the view correct, pump() only
    makes it fresher between refreshes.
    """

    def __init__(
        self,
        store: StoreClient,
        session_id: str,
        *,
        ttl_minutes: int,
        projection: Optional[DashboardProjection] = None,
    ) -> None:
        self._store = store
        self._session_id = session_id
        self._ttl_minutes = ttl_minutes
        self._projection = projection or DashboardProjection()

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def projection(self) -> DashboardProjection:
        return self._projection

    def refresh(self) -> ProgressCounts:
        released = self._store.release_expired(self._session_id, ttl_minutes=self._ttl_minutes)
        if released:
            _LOG.info("Dashboard sweep released %d page(s) in session %s", released, self._session_id)
        units, cursor = self._store.list_units(self._session_id)
        self._projection.load(units, cursor)
        return self._projection.counts()

    def pump(self, *, batch_size: int = 500) -> int:
        """
        Applies every change newer than the projection's cursor. Returns the
        number of pages updated. Does nothing before the first refresh().
        """
        if not self._projection.loaded:
            return 0
        applied = 0
        while True:
            changes, _ = self._store.list_changes(self._session_id, after=self._projection.cursor, limit=batch_size)
            applied += self._projection.apply_all(changes)
            if len(changes) < batch_size:
                return applied

    def start_new_session(self) -> str:
        """
        Creates a fresh session and switches this dashboard to it. The
        previous session is left exactly as it was.
        """
        previous = self._session_id
        self._session_id = self._store.create_session()
        self._projection = DashboardProjection()
        _LOG.info("Dashboard moved from session %s to new session %s", previous, self._session_id)
        self.refresh()
        return self._session_id
