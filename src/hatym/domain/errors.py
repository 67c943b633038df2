# src/hatym/domain/errors.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional


@dataclass
class HatymError(Exception):
    """
    Base domain error.

    The API layer maps these to HTTP responses; the participant-side store
    clients map HTTP responses back to them.
    """
    message: str
    code: str = "HATYM_ERROR"
    details: Optional[dict[str, Any]] = None

    def __str__(self) -> str:
        return self.message


@dataclass
class ValidationError(HatymError):
    code: str = "VALIDATION_ERROR"


@dataclass
class NotFoundError(HatymError):
    code: str = "NOT_FOUND"


@dataclass
class ConflictError(HatymError):
    """Claim or completion against a session that is no longer active."""
    code: str = "CONFLICT"


@dataclass
class StoreUnavailableError(HatymError):
    """Transport or store failure. Surfaced as-is; callers retry manually."""
    code: str = "STORE_UNAVAILABLE"


@dataclass
class CapabilityRejectedError(HatymError):
    """The lease token is stale or the page is no longer held by this participant."""
    code: str = "CAPABILITY_REJECTED"
