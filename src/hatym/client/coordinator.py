# src/hatym/client/coordinator.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Optional

from hatym.domain.errors import CapabilityRejectedError
from hatym.domain.models import ClaimRow, CompleteResult
from hatym.domain.states import ClaimStatus, CompleteStatus, UnitStatus
from hatym.logging import get_logger

from .device import DeviceStorage
from .store import StoreClient

_LOG = get_logger(__name__)


class ClaimMode(StrEnum):
    SINGLE = "single"  # lease exactly one page and deep-link to it
    MULTI = "multi"    # lease up to the per-participant cap and list them


class ClaimState(StrEnum):
    ASSIGNED = "assigned"
    LIMIT_REACHED = "limit_reached"
    FINISHED = "finished"


@dataclass(frozen=True)
class HeldPage:
    page_number: int
    status: UnitStatus
    lease_token: Optional[str] = None


@dataclass(frozen=True)
class ClaimOutcome:
    session_id: str
    state: ClaimState
    pages: list[HeldPage] = field(default_factory=list)

    @property
    def primary_page(self) -> Optional[int]:
        """First open page; what single-page mode links to."""
        for page in self.pages:
            if page.status == UnitStatus.ASSIGNED:
                return page.page_number
        return None


class ClaimCoordinator:
    """
    Participant-side claim flow for one device.

    - enter(): claims (or resumes) pages and caches their lease tokens
    - complete(): re-checks the live page, then completes it with the token
    - held_pages(): what this participant holds right now

    Nothing is retried automatically: store failures propagate as
    StoreUnavailableError and stale leases as CapabilityRejectedError.
    """

    def __init__(
        self,
        store: StoreClient,
        device: DeviceStorage,
        *,
        ttl_minutes: int,
        max_pages_per_user: int,
    ) -> None:
        if ttl_minutes <= 0:
            raise ValueError("ttl_minutes must be > 0")
        if max_pages_per_user <= 0:
            raise ValueError("max_pages_per_user must be > 0")
        self._store = store
        self._device = device
        self._ttl_minutes = ttl_minutes
        self._max_pages = max_pages_per_user
        self._participant_id = device.participant_id()

    @property
    def participant_id(self) -> str:
        return self._participant_id

    def enter(self, session_id: str, mode: ClaimMode = ClaimMode.SINGLE) -> ClaimOutcome:
        rows = self._store.claim_next_page(
            session_id,
            self._participant_id,
            ttl_minutes=self._ttl_minutes,
            max_per_user=self._max_pages,
            limit=1 if mode == ClaimMode.SINGLE else None,
        )

        first = rows[0] if rows else None
        if first is None or first.status == ClaimStatus.FINISHED:
            return ClaimOutcome(session_id=session_id, state=ClaimState.FINISHED)
        if first.status == ClaimStatus.LIMIT_REACHED:
            return ClaimOutcome(session_id=session_id, state=ClaimState.LIMIT_REACHED)

        pages = [self._remember(session_id, row) for row in rows if row.page_number is not None]
        if mode == ClaimMode.SINGLE:
            pages = [p for p in pages if p.status == UnitStatus.ASSIGNED]

        if not any(p.status == UnitStatus.ASSIGNED for p in pages):
            return ClaimOutcome(session_id=session_id, state=ClaimState.FINISHED, pages=pages)
        return ClaimOutcome(session_id=session_id, state=ClaimState.ASSIGNED, pages=pages)

    def cached_token(self, session_id: str, page_number: int) -> Optional[str]:
        return self._device.get_claim_token(session_id, page_number)

    def held_pages(self, session_id: str) -> list[HeldPage]:
        held: list[HeldPage] = []
        for unit in self._store.list_participant_units(session_id, self._participant_id):
            if unit.status == UnitStatus.ASSIGNED and unit.lease_token:
                self._device.store_claim_token(session_id, unit.page_number, unit.lease_token)
            held.append(HeldPage(page_number=unit.page_number, status=unit.status, lease_token=unit.lease_token))
        return held

    def complete(self, session_id: str, page_number: int) -> CompleteResult:
        """
        Completes a held page.

        Needs the lease token this device cached when it claimed the page;
        without one, CapabilityRejectedError is raised before the store is
        asked. The live page is checked next. A cached token that no longer
        matches the server's is replaced; a page no longer held by this
        participant drops the cached token and raises CapabilityRejectedError.
        """
        cached = self._device.get_claim_token(session_id, page_number)
        if cached is None:
            self._device.clear_claim_token(session_id, page_number)
            raise CapabilityRejectedError(
                f"No lease for page {page_number} on this device; claim again",
                details={"session_id": session_id, "page_number": page_number},
            )

        live = self._store.get_unit(session_id, page_number, participant_id=self._participant_id)

        if live.status != UnitStatus.ASSIGNED or live.holder != self._participant_id or not live.lease_token:
            self._device.clear_claim_token(session_id, page_number)
            _LOG.info("Page %d of session %s is no longer assigned to this device", page_number, session_id)
            raise CapabilityRejectedError(
                f"Page {page_number} is not assigned to you; claim again",
                details={"session_id": session_id, "page_number": page_number, "status": live.status.value},
            )

        token = live.lease_token
        if cached != token:
            _LOG.info("Refreshing cached lease token for page %d of session %s", page_number, session_id)
            self._device.store_claim_token(session_id, page_number, token)

        result = self._store.complete_page(session_id, page_number, self._participant_id, token)
        self._device.clear_claim_token(session_id, page_number)

        if result.status != CompleteStatus.COMPLETED:
            raise CapabilityRejectedError(
                f"Page {page_number} could not be completed; claim again",
                details={"session_id": session_id, "page_number": page_number},
            )
        return result

    def _remember(self, session_id: str, row: ClaimRow) -> HeldPage:
        if row.status == ClaimStatus.ASSIGNED and row.lease_token:
            self._device.store_claim_token(session_id, row.page_number, row.lease_token)
            return HeldPage(page_number=row.page_number, status=UnitStatus.ASSIGNED, lease_token=row.lease_token)
        return HeldPage(page_number=row.page_number, status=UnitStatus.COMPLETED)
