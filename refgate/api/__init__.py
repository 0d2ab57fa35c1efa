"""refgate REST API — FastAPI application factory."""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from refgate.api.deps import (
    dispose_engine,
    get_session_factory,
    init_session_factory,
    shutdown_engines,
)
from refgate.api.errors import register_error_handlers
from refgate.api.middleware.request_id import RequestIDMiddleware
from refgate.api.routers import auto_merge, branch_protection, pushes, statuses, tag_protection
from refgate.core.logging import setup_logging

log = structlog.get_logger("refgate.api")

API_PREFIX = "/api/v1"

# (router module, mount point, openapi tag)
_ROUTERS = (
    (statuses, "/repos", "statuses"),
    (tag_protection, "/repos", "tag-protection"),
    (branch_protection, "/repos", "branch-protection"),
    (pushes, "/repos", "pushes"),
    (auto_merge, "/pulls", "auto-merge"),
)


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    init_session_factory()
    log.info("api.started")
    yield
    await shutdown_engines()
    await dispose_engine()
    log.info("api.stopped")


async def health() -> JSONResponse:
    """Liveness: the process is serving requests."""
    return JSONResponse({"status": "ok"})


async def ready() -> JSONResponse:
    """Readiness: the database answers a trivial query."""
    try:
        async with get_session_factory()() as session:
            await session.execute(text("SELECT 1"))
    except (RuntimeError, SQLAlchemyError, OSError) as exc:
        log.warning("api.not_ready", error=str(exc))
        return JSONResponse({"status": "unavailable"}, status_code=503)
    return JSONResponse({"status": "ok"})


def create_app() -> FastAPI:
    setup_logging()

    app = FastAPI(
        title="refgate",
        summary="Commit status aggregation, tag protection and auto-merge gating",
        docs_url=f"{API_PREFIX}/docs",
        openapi_url=f"{API_PREFIX}/openapi.json",
        lifespan=_lifespan,
    )
    register_error_handlers(app)

    # Browser access is opt-in.
    origins = [
        o.strip() for o in os.environ.get("REFGATE_CORS_ORIGINS", "").split(",") if o.strip()
    ]
    if origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_methods=["*"],
            allow_headers=["*"],
        )
    app.add_middleware(RequestIDMiddleware)

    app.add_api_route("/health", health, methods=["GET"], tags=["ops"])
    app.add_api_route("/ready", ready, methods=["GET"], tags=["ops"])
    for module, mount, tag in _ROUTERS:
        app.include_router(module.router, prefix=f"{API_PREFIX}{mount}", tags=[tag])

    return app
