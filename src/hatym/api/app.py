# src/hatym/api/app.py
from __future__ import annotations

import sqlite3
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from hatym.config import load_settings
from hatym.domain.errors import StoreUnavailableError
from hatym.engine.sweeper import ExpirySweeper, SweeperConfig
from hatym.logging import configure_logging, get_logger
from hatym.storage import SQLiteDB, apply_migrations

from .routes import error_response, router

_LOG = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Responsible for:
    - loading settings
    - configuring logging
    - running DB migrations
    - starting the expiry sweeper, and stopping it on shutdown
    """
    settings = load_settings()
    configure_logging(settings.log_level)

    db = SQLiteDB(settings.db_path)

    conn = db.connect()
    try:
        apply_migrations(conn)
    finally:
        conn.close()

    app.state.settings = settings
    app.state.db = db

    sweeper = ExpirySweeper(
        db,
        SweeperConfig(ttl_ms=settings.assignment_ttl_ms, interval_ms=settings.sweep_interval_ms),
    )
    sweeper.start()
    app.state.sweeper = sweeper

    _LOG.info(
        "Startup complete: ttl=%dmin max_pages_per_user=%d",
        settings.assignment_ttl_minutes,
        settings.max_pages_per_user,
    )

    try:
        yield
    finally:
        sweeper_obj = getattr(app.state, "sweeper", None)
        if sweeper_obj is not None:
            sweeper_obj.stop(timeout_s=5.0)
        _LOG.info("Shutdown complete.")


async def store_error_handler(_req: Request, exc: sqlite3.OperationalError) -> JSONResponse:
    # Locked / unreachable database: the caller decides whether to retry.
    _LOG.error("Store operation failed: %s", exc)
    return error_response(StoreUnavailableError(str(exc)), 503)


app = FastAPI(
    title="Hatym",
    version="0.1.0",
    lifespan=lifespan,
)
app.add_exception_handler(sqlite3.OperationalError, store_error_handler)
app.include_router(router)
