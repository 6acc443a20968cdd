"""
Disc HTTP API.

`create_app()` wires the routers, the session middleware and the error handlers
around an injected `Storage` + `SessionStore`. Without injection both are built from
the Postgres environment (see `disc.storage.config`).
"""

from __future__ import annotations

import logging
import os
import time
from typing import Any, Dict, Optional, Tuple

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from disc import __version__
from disc.api.admin import router as admin_router
from disc.api.auth import router as auth_router
from disc.api.catalog import router as catalog_router
from disc.auth.config import load_auth_config
from disc.auth.session import SessionStore, commit_session, restore_session, session_cookie_name
from disc.core.errors import DiscError
from disc.storage.base import Storage

logger = logging.getLogger(__name__)


def _stores_from_env() -> Tuple[Optional[Storage], Optional[SessionStore]]:
    """Build Postgres-backed stores, or (None, None) if the database is not configured."""
    from disc.storage.config import build_postgres_dsn, load_database_config

    dsn = build_postgres_dsn(load_database_config())
    if not dsn:
        logger.warning("Postgres not configured (set POSTGRES_DSN or POSTGRES_* env vars)")
        return None, None

    from disc.auth.session import PostgresSessionStore
    from disc.storage.postgres import PostgresStorage

    return PostgresStorage(dsn), PostgresSessionStore(dsn)


def _validation_errors(exc: RequestValidationError) -> list:
    out = []
    for err in exc.errors():
        loc = [str(p) for p in (err.get("loc") or ())]
        if loc and loc[0] == "body":
            loc = loc[1:]
        # A JSON decode error carries the byte offset in `loc`, not a field name.
        if err.get("type") == "json_invalid":
            loc = []
        out.append({"field": ".".join(loc) or "body", "message": str(err.get("msg") or "Invalid value")})
    return out


def create_app(*, storage: Optional[Storage] = None, sessions: Optional[SessionStore] = None) -> FastAPI:
    from_env = storage is None and sessions is None
    if from_env:
        storage, sessions = _stores_from_env()

    app = FastAPI(title="Disc API", version=__version__)
    app.state.storage = storage
    app.state.sessions = sessions

    app.include_router(auth_router)
    app.include_router(catalog_router)
    app.include_router(admin_router)

    @app.exception_handler(DiscError)
    async def _disc_error(request: Request, exc: DiscError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s %s - %d %s", request.method, request.url.path, exc.status_code, exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_body())

    @app.exception_handler(RequestValidationError)
    async def _request_validation_error(_request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={"message": "Validation failed", "errors": _validation_errors(exc)},
        )

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"message": str(exc.detail)},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def _unhandled_error(_request: Request, _exc: Exception) -> JSONResponse:
        # The traceback is logged by session_middleware.
        return JSONResponse(status_code=500, content={"message": "Internal server error"})

    @app.on_event("startup")
    def _startup_maybe_migrate_db() -> None:
        """
        Optional dev behavior: auto-apply DB migrations when DB_AUTO_MIGRATE=1.

        This should never prevent the server from starting; failures are logged.
        """
        if not from_env or app.state.storage is None:
            return
        try:
            from disc.storage.migrate import maybe_auto_migrate

            did_attempt, msg = maybe_auto_migrate()
            if did_attempt:
                logger.info("DB migrations: %s", msg)
        except Exception as e:
            logger.warning("DB migrations: startup auto-migrate failed: %s", str(e))

    @app.on_event("startup")
    def _startup_initialize_admin_user() -> None:
        """
        Initialize admin user on first startup if configured.
        This should never prevent the server from starting; failures are logged.
        """
        cfg = load_auth_config()
        if not (cfg.admin_initial_username and cfg.admin_initial_password):
            return
        if app.state.storage is None:
            logger.warning("Cannot initialize admin user: database not configured")
            return
        try:
            from disc.auth.local import initialize_admin_user

            initialize_admin_user(app.state.storage, cfg.admin_initial_username, cfg.admin_initial_password)
            logger.info("Admin user initialization check completed")
        except Exception as e:
            logger.warning("Admin user initialization failed: %s", str(e))

    @app.middleware("http")
    async def session_middleware(request: Request, call_next):
        """Restore the session before routing; persist it once the handler has run."""
        start_time = time.time()
        logger.debug("%s %s", request.method, request.url.path)
        cfg = load_auth_config()
        store = request.app.state.sessions
        try:
            session = await run_in_threadpool(
                restore_session, cfg, store, request.cookies.get(session_cookie_name(cfg))
            )
            request.state.session = session

            response = await call_next(request)

            await run_in_threadpool(commit_session, cfg, store, session, response)
            process_time = time.time() - start_time
            logger.debug("%s %s - %d (%.3fs)", request.method, request.url.path, response.status_code, process_time)
            return response
        except Exception as e:
            process_time = time.time() - start_time
            logger.exception("%s %s - ERROR after %.3fs: %s", request.method, request.url.path, process_time, str(e))
            raise

    @app.get("/healthz")
    def healthz() -> Dict[str, Any]:
        return {"ok": True}

    return app


app = create_app()


def run(host: str = "0.0.0.0", port: int = 5000) -> None:
    import uvicorn

    log_level = os.getenv("LOG_LEVEL", "info").upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger.setLevel(getattr(logging, log_level, logging.INFO))

    # Map Python logging levels to uvicorn log levels
    uvicorn_log_level = (
        log_level.lower() if log_level.lower() in ["critical", "error", "warning", "info", "debug", "trace"] else "info"
    )

    logger.info("Starting Disc API on %s:%d (log_level=%s)", host, port, log_level)
    uvicorn.run(app, host=host, port=port, log_level=uvicorn_log_level)
