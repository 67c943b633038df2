# src/hatym/api/routes.py
from __future__ import annotations

from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Path, Query
from fastapi.responses import JSONResponse

from hatym.clock import now_ms
from hatym.config import Settings
from hatym.domain.errors import ConflictError, HatymError, NotFoundError, ValidationError
from hatym.domain.models import (
    ChangeListResponse,
    ClaimRequest,
    ClaimResponse,
    CompleteRequest,
    CompleteResult,
    ErrorResponse,
    ReleaseExpiredRequest,
    ReleaseExpiredResponse,
    SessionCreateResponse,
    SessionListResponse,
    SessionView,
    UnitListResponse,
    UnitView,
)
from hatym.domain.states import TOTAL_PAGES
from hatym.logging import get_logger
from hatym.storage import AssignmentRepo

from .deps import get_repo, get_settings

_LOG = get_logger(__name__)
router = APIRouter()

_HTTP_STATUS = {
    ValidationError: 400,
    NotFoundError: 404,
    ConflictError: 409,
}


def error_response(err: HatymError, http_status: Optional[int] = None) -> JSONResponse:
    if http_status is None:
        http_status = _HTTP_STATUS.get(type(err), 400)
    payload = ErrorResponse(
        error=err.message,
        code=err.code,
        details=err.details or {},
    ).model_dump()
    return JSONResponse(status_code=http_status, content=payload)


def _ttl_ms(ttl_minutes: Optional[int], settings: Settings) -> int:
    minutes = ttl_minutes if ttl_minutes is not None else settings.assignment_ttl_minutes
    return minutes * 60_000


PageNumberPath = Annotated[int, Path(ge=1, le=TOTAL_PAGES)]


@router.get("/healthz")
def healthz() -> dict:
    return {"ok": True}


@router.post("/sessions", response_model=SessionCreateResponse, status_code=201)
def create_session(repo: AssignmentRepo = Depends(get_repo)):
    """
    Start a new session: a fresh set of available pages.

    Earlier sessions are kept as they are and only stop being the active one.
    """
    session_id = repo.create_session(now_ms=now_ms())
    return SessionCreateResponse(session_id=session_id)


@router.get("/sessions", response_model=SessionListResponse)
def list_sessions(
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    repo: AssignmentRepo = Depends(get_repo),
):
    sessions, total = repo.list_sessions(limit=limit, offset=offset)
    return SessionListResponse(sessions=sessions, total=total)


@router.get("/sessions/active", response_model=SessionView)
def get_active_session(repo: AssignmentRepo = Depends(get_repo)):
    try:
        return repo.get_active_session()
    except HatymError as e:
        return error_response(e)


@router.get("/sessions/{session_id}", response_model=SessionView)
def get_session(session_id: str, repo: AssignmentRepo = Depends(get_repo)):
    try:
        return repo.get_session(session_id)
    except HatymError as e:
        return error_response(e)


@router.post("/sessions/{session_id}/claim", response_model=ClaimResponse)
def claim_next_page(
    session_id: str,
    payload: ClaimRequest,
    repo: AssignmentRepo = Depends(get_repo),
    settings: Settings = Depends(get_settings),
):
    """
    Claim (or resume) pages for a participant.

    Rows carry status assigned / completed, or a single limit_reached /
    finished row when nothing can be handed out.
    """
    max_per_user = payload.max_per_user if payload.max_per_user is not None else settings.max_pages_per_user
    try:
        rows = repo.claim_next_page(
            session_id,
            payload.participant_id,
            ttl_ms=_ttl_ms(payload.ttl_minutes, settings),
            max_per_user=max_per_user,
            now_ms=now_ms(),
            limit=payload.limit,
        )
        return ClaimResponse(session_id=session_id, rows=rows)
    except HatymError as e:
        return error_response(e)


@router.post("/sessions/{session_id}/pages/{page_number}/complete", response_model=CompleteResult)
def complete_page(
    session_id: str,
    page_number: PageNumberPath,
    payload: CompleteRequest,
    repo: AssignmentRepo = Depends(get_repo),
):
    """
    Complete a page with its lease token.

    A stale or foreign token is not an HTTP error: the result says
    status=rejected and nothing changes.
    """
    try:
        return repo.complete_page(
            session_id,
            page_number,
            payload.participant_id,
            payload.lease_token,
            now_ms=now_ms(),
        )
    except HatymError as e:
        return error_response(e)


@router.post("/sessions/{session_id}/release-expired", response_model=ReleaseExpiredResponse)
def release_expired(
    session_id: str,
    payload: Optional[ReleaseExpiredRequest] = None,
    repo: AssignmentRepo = Depends(get_repo),
    settings: Settings = Depends(get_settings),
):
    ttl_minutes = payload.ttl_minutes if payload is not None else None
    try:
        released = repo.release_expired(session_id, ttl_ms=_ttl_ms(ttl_minutes, settings), now_ms=now_ms())
        return ReleaseExpiredResponse(released=released)
    except HatymError as e:
        return error_response(e)


@router.get("/sessions/{session_id}/pages", response_model=UnitListResponse)
def list_pages(session_id: str, repo: AssignmentRepo = Depends(get_repo)):
    try:
        pages, cursor = repo.list_units(session_id)
        return UnitListResponse(session_id=session_id, pages=pages, cursor=cursor)
    except HatymError as e:
        return error_response(e)


@router.get("/sessions/{session_id}/pages/{page_number}", response_model=UnitView)
def get_page(
    session_id: str,
    page_number: PageNumberPath,
    participant_id: Optional[str] = Query(default=None, min_length=1, max_length=256),
    repo: AssignmentRepo = Depends(get_repo),
):
    try:
        return repo.get_unit(session_id, page_number, participant_id=participant_id)
    except HatymError as e:
        return error_response(e)


@router.get("/sessions/{session_id}/participants/{participant_id}/pages", response_model=list[UnitView])
def list_participant_pages(
    session_id: str,
    participant_id: str,
    repo: AssignmentRepo = Depends(get_repo),
):
    try:
        return repo.list_participant_units(session_id, participant_id)
    except HatymError as e:
        return error_response(e)


@router.get("/sessions/{session_id}/changes", response_model=ChangeListResponse)
def list_changes(
    session_id: str,
    after: int = Query(default=0, ge=0),
    limit: int = Query(default=500, ge=1, le=TOTAL_PAGES * 3),
    repo: AssignmentRepo = Depends(get_repo),
):
    try:
        changes, cursor = repo.list_changes(session_id, after_seq=after, limit=limit)
        return ChangeListResponse(session_id=session_id, changes=changes, cursor=cursor)
    except HatymError as e:
        return error_response(e)
