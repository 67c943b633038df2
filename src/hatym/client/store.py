# src/hatym/client/store.py
from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from typing import Any, Iterator, Optional, Protocol

import httpx

from hatym.clock import Clock, now_ms
from hatym.domain.errors import (
    ConflictError,
    HatymError,
    NotFoundError,
    StoreUnavailableError,
    ValidationError,
)
from hatym.domain.models import (
    ChangeListResponse,
    ClaimResponse,
    ClaimRow,
    CompleteResult,
    ReleaseExpiredResponse,
    SessionCreateResponse,
    UnitChange,
    UnitListResponse,
    UnitView,
)
from hatym.logging import get_logger
from hatym.storage import AssignmentRepo, SQLiteDB

_LOG = get_logger(__name__)


class StoreClient(Protocol):
    """
    The store operations participant devices and dashboards rely on.
    """

    def create_session(self) -> str: ...

    def claim_next_page(
        self,
        session_id: str,
        participant_id: str,
        *,
        ttl_minutes: int,
        max_per_user: int,
        limit: Optional[int] = None,
    ) -> list[ClaimRow]: ...

    def complete_page(
        self,
        session_id: str,
        page_number: int,
        participant_id: str,
        lease_token: str,
    ) -> CompleteResult: ...

    def release_expired(self, session_id: str, *, ttl_minutes: int) -> int: ...

    def get_unit(self, session_id: str, page_number: int, participant_id: Optional[str] = None) -> UnitView: ...

    def list_participant_units(self, session_id: str, participant_id: str) -> list[UnitView]: ...

    def list_units(self, session_id: str) -> tuple[list[UnitView], int]: ...

    def list_changes(self, session_id: str, after: int = 0, limit: int = 500) -> tuple[list[UnitChange], int]: ...


class LocalStore:
    """
    StoreClient backed directly by the SQLite database.

    Each call uses its own connection, so one instance can be shared by
    threads. The clock is injectable so lease expiry can be tested without
    waiting.
    """

    def __init__(self, db: SQLiteDB, *, clock: Clock = now_ms) -> None:
        self._db = db
        self._clock = clock

    @contextmanager
    def _repo(self) -> Iterator[AssignmentRepo]:
        try:
            conn = self._db.connect()
        except sqlite3.Error as e:
            raise StoreUnavailableError(f"Store unavailable: {e}") from e
        try:
            yield AssignmentRepo(conn)
        except sqlite3.OperationalError as e:
            raise StoreUnavailableError(f"Store unavailable: {e}") from e
        finally:
            conn.close()

    def create_session(self) -> str:
        with self._repo() as repo:
            return repo.create_session(now_ms=self._clock())

    def claim_next_page(
        self,
        session_id: str,
        participant_id: str,
        *,
        ttl_minutes: int,
        max_per_user: int,
        limit: Optional[int] = None,
    ) -> list[ClaimRow]:
        with self._repo() as repo:
            return repo.claim_next_page(
                session_id,
                participant_id,
                ttl_ms=ttl_minutes * 60_000,
                max_per_user=max_per_user,
                now_ms=self._clock(),
                limit=limit,
            )

    def complete_page(
        self,
        session_id: str,
        page_number: int,
        participant_id: str,
        lease_token: str,
    ) -> CompleteResult:
        with self._repo() as repo:
            return repo.complete_page(session_id, page_number, participant_id, lease_token, now_ms=self._clock())

    def release_expired(self, session_id: str, *, ttl_minutes: int) -> int:
        with self._repo() as repo:
            return repo.release_expired(session_id, ttl_ms=ttl_minutes * 60_000, now_ms=self._clock())

    def get_unit(self, session_id: str, page_number: int, participant_id: Optional[str] = None) -> UnitView:
        with self._repo() as repo:
            return repo.get_unit(session_id, page_number, participant_id=participant_id)

    def list_participant_units(self, session_id: str, participant_id: str) -> list[UnitView]:
        with self._repo() as repo:
            return repo.list_participant_units(session_id, participant_id)

    def list_units(self, session_id: str) -> tuple[list[UnitView], int]:
        with self._repo() as repo:
            return repo.list_units(session_id)

    def list_changes(self, session_id: str, after: int = 0, limit: int = 500) -> tuple[list[UnitChange], int]:
        with self._repo() as repo:
            return repo.list_changes(session_id, after_seq=after, limit=limit)


_ERRORS_BY_CODE: dict[str, type[HatymError]] = {
    "VALIDATION_ERROR": ValidationError,
    "NOT_FOUND": NotFoundError,
    "CONFLICT": ConflictError,
    "STORE_UNAVAILABLE": StoreUnavailableError,
}


class HttpStore:
    """
    StoreClient talking to the hatym API over HTTP.

    Requests are never retried here: a transport failure or a 5xx becomes
    StoreUnavailableError and the caller decides.
    """

    def __init__(self, client: httpx.Client) -> None:
        self._client = client

    @classmethod
    def from_url(cls, base_url: str, *, timeout_s: float = 10.0) -> "HttpStore":
        return cls(httpx.Client(base_url=base_url, timeout=timeout_s))

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "HttpStore":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def _request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[dict[str, Any]] = None,
        params: Optional[dict[str, Any]] = None,
    ) -> Any:
        try:
            resp = self._client.request(method, path, json=json, params=params)
        except httpx.TransportError as e:
            _LOG.warning("%s %s failed: %s", method, path, e)
            raise StoreUnavailableError(f"Store unreachable: {e}") from e

        if resp.status_code >= 500:
            raise StoreUnavailableError(
                _error_message(resp),
                details={"status_code": resp.status_code},
            )
        if resp.status_code == 422:
            raise ValidationError(
                "Request rejected by the store",
                details={"errors": _error_body(resp).get("detail", [])},
            )
        if resp.status_code >= 400:
            body = _error_body(resp)
            err_cls = _ERRORS_BY_CODE.get(body.get("code", ""), HatymError)
            raise err_cls(_error_message(resp), details=body.get("details") or None)
        return resp.json()

    def create_session(self) -> str:
        data = self._request("POST", "/sessions")
        return SessionCreateResponse.model_validate(data).session_id

    def claim_next_page(
        self,
        session_id: str,
        participant_id: str,
        *,
        ttl_minutes: int,
        max_per_user: int,
        limit: Optional[int] = None,
    ) -> list[ClaimRow]:
        payload: dict[str, Any] = {
            "participant_id": participant_id,
            "ttl_minutes": ttl_minutes,
            "max_per_user": max_per_user,
        }
        if limit is not None:
            payload["limit"] = limit
        data = self._request("POST", f"/sessions/{session_id}/claim", json=payload)
        return ClaimResponse.model_validate(data).rows

    def complete_page(
        self,
        session_id: str,
        page_number: int,
        participant_id: str,
        lease_token: str,
    ) -> CompleteResult:
        data = self._request(
            "POST",
            f"/sessions/{session_id}/pages/{page_number}/complete",
            json={"participant_id": participant_id, "lease_token": lease_token},
        )
        return CompleteResult.model_validate(data)

    def release_expired(self, session_id: str, *, ttl_minutes: int) -> int:
        data = self._request("POST", f"/sessions/{session_id}/release-expired", json={"ttl_minutes": ttl_minutes})
        return ReleaseExpiredResponse.model_validate(data).released

    def get_unit(self, session_id: str, page_number: int, participant_id: Optional[str] = None) -> UnitView:
        params = {"participant_id": participant_id} if participant_id else None
        data = self._request("GET", f"/sessions/{session_id}/pages/{page_number}", params=params)
        return UnitView.model_validate(data)

    def list_participant_units(self, session_id: str, participant_id: str) -> list[UnitView]:
        data = self._request("GET", f"/sessions/{session_id}/participants/{participant_id}/pages")
        return [UnitView.model_validate(item) for item in data]

    def list_units(self, session_id: str) -> tuple[list[UnitView], int]:
        data = UnitListResponse.model_validate(self._request("GET", f"/sessions/{session_id}/pages"))
        return data.pages, data.cursor

    def list_changes(self, session_id: str, after: int = 0, limit: int = 500) -> tuple[list[UnitChange], int]:
        data = ChangeListResponse.model_validate(
            self._request("GET", f"/sessions/{session_id}/changes", params={"after": after, "limit": limit})
        )
        return data.changes, data.cursor


def _error_body(resp: httpx.Response) -> dict[str, Any]:
    try:
        body = resp.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _error_message(resp: httpx.Response) -> str:
    body = _error_body(resp)
    message = body.get("error")
    if isinstance(message, str) and message:
        return message
    return f"Store returned HTTP {resp.status_code}"
