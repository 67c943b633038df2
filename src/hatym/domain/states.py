# src/hatym/domain/states.py
from __future__ import annotations

from enum import StrEnum

TOTAL_PAGES = 604


class UnitStatus(StrEnum):
    """
    States stored in the units table.

    Semantics:
      - AVAILABLE: free to claim; no holder, no lease
      - ASSIGNED: leased to a holder until completion or expiry reclaim
      - COMPLETED: terminal; the holder is kept for audit, the lease is gone
    """

    AVAILABLE = "available"
    ASSIGNED = "assigned"
    COMPLETED = "completed"


class ClaimStatus(StrEnum):
    """
    Row status returned by a claim.

    LIMIT_REACHED and FINISHED are single-row answers carrying no page.
    """

    ASSIGNED = "assigned"
    COMPLETED = "completed"
    LIMIT_REACHED = "limit_reached"
    FINISHED = "finished"


class CompleteStatus(StrEnum):
    COMPLETED = "completed"
    REJECTED = "rejected"
