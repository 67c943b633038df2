# src/hatym/client/__init__.py
"""
Participant and dashboard side of hatym.

- device: per-device participant id + cached lease tokens
- store: StoreClient protocol, LocalStore (SQLite) and HttpStore (httpx)
- coordinator: claim / complete flow for one device
- dashboard: live aggregate projection of a session
"""

from .coordinator import ClaimCoordinator, ClaimMode, ClaimOutcome, ClaimState, HeldPage
from .dashboard import Dashboard, DashboardProjection, ProgressCounts
from .device import DeviceStorage
from .store import HttpStore, LocalStore, StoreClient

__all__ = [
    "ClaimCoordinator",
    "ClaimMode",
    "ClaimOutcome",
    "ClaimState",
    "HeldPage",
    "Dashboard",
    "DashboardProjection",
    "ProgressCounts",
    "DeviceStorage",
    "HttpStore",
    "LocalStore",
    "StoreClient",
]
