"""
Domain layer for hatym.

- states: page/claim/complete status enums and TOTAL_PAGES
- models: Pydantic models for API input/output
- errors: domain-level exceptions
"""

from .states import TOTAL_PAGES, ClaimStatus, CompleteStatus, UnitStatus
from .models import (
    ChangeListResponse,
    ClaimRequest,
    ClaimResponse,
    ClaimRow,
    CompleteRequest,
    CompleteResult,
    ErrorResponse,
    ReleaseExpiredRequest,
    ReleaseExpiredResponse,
    SessionCreateResponse,
    SessionListResponse,
    SessionView,
    UnitChange,
    UnitListResponse,
    UnitView,
)
from .errors import (
    HatymError,
    ValidationError,
    NotFoundError,
    ConflictError,
    StoreUnavailableError,
    CapabilityRejectedError,
)

__all__ = [
    "TOTAL_PAGES",
    "UnitStatus",
    "ClaimStatus",
    "CompleteStatus",
    "SessionCreateResponse",
    "SessionView",
    "SessionListResponse",
    "ClaimRequest",
    "ClaimRow",
    "ClaimResponse",
    "CompleteRequest",
    "CompleteResult",
    "ReleaseExpiredRequest",
    "ReleaseExpiredResponse",
    "UnitView",
    "UnitListResponse",
    "UnitChange",
    "ChangeListResponse",
    "ErrorResponse",
    "HatymError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "StoreUnavailableError",
    "CapabilityRejectedError",
]
