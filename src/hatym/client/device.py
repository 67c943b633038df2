# src/hatym/client/device.py
from __future__ import annotations

import json
import os
import threading
import uuid
from pathlib import Path
from typing import Any, Optional

from hatym.logging import get_logger

_LOG = get_logger(__name__)

USER_ID_KEY = "hatym_user_id"
CLAIM_PREFIX = "hatym_claim"


def claim_key(session_id: str, page_number: int) -> str:
    return f"{CLAIM_PREFIX}:{session_id}:{page_number}"


class DeviceStorage:
    """
    Per-device state kept in a small JSON file.

    Holds the anonymous participant id (generated once, kept for the life of
    the file) and the lease tokens of pages this device claimed, keyed by
    session and page number.
    """

    def __init__(self, path: Path) -> None:
        self._path = path
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def participant_id(self) -> str:
        with self._lock:
            data = self._load()
            user_id = data.get(USER_ID_KEY)
            if not user_id:
                user_id = str(uuid.uuid4())
                data[USER_ID_KEY] = user_id
                self._save(data)
                _LOG.info("Generated participant id for this device")
            return user_id

    def get_claim_token(self, session_id: str, page_number: int) -> Optional[str]:
        with self._lock:
            return self._load().get(claim_key(session_id, page_number))

    def store_claim_token(self, session_id: str, page_number: int, token: str) -> None:
        with self._lock:
            data = self._load()
            data[claim_key(session_id, page_number)] = token
            self._save(data)

    def clear_claim_token(self, session_id: str, page_number: int) -> None:
        with self._lock:
            data = self._load()
            if data.pop(claim_key(session_id, page_number), None) is not None:
                self._save(data)

    def _load(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        raw = self._path.read_text(encoding="utf-8")
        if not raw.strip():
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValueError(f"Device state file is not valid JSON: {self._path}") from e
        if not isinstance(data, dict):
            raise ValueError(f"Device state file must hold a JSON object: {self._path}")
        return data

    def _save(self, data: dict[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_text(json.dumps(data, indent=2, sort_keys=True), encoding="utf-8")
        os.replace(tmp, self._path)
