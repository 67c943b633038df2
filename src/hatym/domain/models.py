from __future__ import annotations

from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .states import TOTAL_PAGES, ClaimStatus, CompleteStatus, UnitStatus


ParticipantId = Annotated[str, Field(min_length=1, max_length=256)]
PageNumber = Annotated[int, Field(ge=1, le=TOTAL_PAGES)]
TtlMinutes = Annotated[int, Field(gt=0, le=7 * 24 * 60)]  # up to a week


class SessionCreateResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    session_id: str


class SessionView(BaseModel):
    """
    API output model for a session with its derived progress.
    """
    model_config = ConfigDict(extra="forbid")

    id: str
    created_at: int
    is_active: bool
    completed_count: int
    total_pages: int = TOTAL_PAGES
    finished: bool


class SessionListResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    sessions: list[SessionView]
    total: int


class ClaimRequest(BaseModel):
    """
    API input model for claiming pages.

    ttl_minutes and max_per_user fall back to the deployment settings.
    limit bounds how many new pages one call may lease (single-page mode sends 1).
    """
    model_config = ConfigDict(extra="forbid")

    participant_id: ParticipantId
    ttl_minutes: Optional[TtlMinutes] = None
    max_per_user: Optional[Annotated[int, Field(ge=1, le=TOTAL_PAGES)]] = None
    limit: Optional[Annotated[int, Field(ge=1, le=TOTAL_PAGES)]] = None

    @field_validator("participant_id")
    @classmethod
    def _strip_participant(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("participant_id must not be blank")
        return value


class ClaimRow(BaseModel):
    model_config = ConfigDict(extra="forbid")

    page_number: Optional[int] = None
    lease_token: Optional[str] = None
    status: ClaimStatus


class ClaimResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    session_id: str
    rows: list[ClaimRow]


class CompleteRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    participant_id: ParticipantId
    lease_token: Annotated[str, Field(min_length=1, max_length=256)]


class CompleteResult(BaseModel):
    model_config = ConfigDict(extra="forbid")

    status: CompleteStatus
    completed_count: int
    finished: bool


class ReleaseExpiredRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    ttl_minutes: Optional[TtlMinutes] = None


class ReleaseExpiredResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    released: int


class UnitView(BaseModel):
    """
    API output model for a single page of a session.

    lease_token is only ever filled in for the participant holding the lease.
    """
    model_config = ConfigDict(extra="forbid")

    page_number: int
    status: UnitStatus
    holder: Optional[str] = None
    assigned_at: Optional[int] = None
    completed_at: Optional[int] = None
    lease_token: Optional[str] = None


class UnitListResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    session_id: str
    pages: list[UnitView]
    # Last change sequence visible when the list was read
    cursor: int


class UnitChange(BaseModel):
    model_config = ConfigDict(extra="forbid")

    seq: int
    page_number: int
    status: UnitStatus
    holder: Optional[str] = None
    assigned_at: Optional[int] = None
    completed_at: Optional[int] = None
    changed_at: int


class ChangeListResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    session_id: str
    changes: list[UnitChange]
    cursor: int


class ErrorResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    error: str
    code: str
    details: dict = Field(default_factory=dict)
