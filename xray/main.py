"""Analytics X-Ray FastAPI application factory + lifespan lifecycle.

This module implements:
  - create_app() — testable application factory
  - lifespan — @asynccontextmanager startup/shutdown sequence
  - /health and / routes — liveness + service discovery
  - app = create_app() — module-level instance for uvicorn

Startup sequence:
  1. load_config()              → app.state.config
  2. create_storage_backend()   → app.state.storage
  3. DomainStore.hydrate()      → app.state.store
  4. TabDomainTracker()         → app.state.tracker
  5. storage change watcher     → asyncio task (file-backed storage only)
  6. app.state.ready = True

Shutdown sequence (reverse):
  app.state.ready = False → cancel watcher → close tracker →
  flush store → close storage backend
"""

from __future__ import annotations

import asyncio
import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.routing import APIRouter

from xray.allowlist.store import DomainStore
from xray.config import Config, load_config
from xray.panel.api import router as panel_router
from xray.panel.middleware import PanelAccessMiddleware
from xray.storage.factory import create_storage_backend
from xray.storage.protocol import StorageBackend
from xray.tracking import TabDomainTracker
from xray.utils.logger import configure_logging, get_logger

# ─── Logging Setup ────────────────────────────────────────────────────────────
# Configure logging at module import time (before any other imports that may log).
DEBUG = os.getenv("DEBUG", "false").lower() == "true"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO" if not DEBUG else "DEBUG")
JSON_LOGS = os.getenv("JSON_LOGS", "true").lower() == "true"

configure_logging(log_level=LOG_LEVEL, json_output=JSON_LOGS)
logger = get_logger(__name__)


# ─── Routers ──────────────────────────────────────────────────────────────────

root_router = APIRouter(tags=["root"])


@root_router.get("/")
async def root() -> dict[str, str]:
    """Root endpoint — service identity / discovery."""
    return {
        "service": "Analytics X-Ray",
        "panel": "/panel/api",
        "health": "/health",
    }


@root_router.get("/health")
async def health(request: Request) -> JSONResponse:
    """Liveness + readiness. 503 until startup completes."""
    ready = getattr(request.app.state, "ready", False)
    return JSONResponse(
        status_code=200 if ready else 503,
        content={"status": "ok" if ready else "starting"},
    )


# ─── Lifespan ─────────────────────────────────────────────────────────────────


async def _cancel(task: "asyncio.Task[None] | None") -> None:
    if task is None or task.done():
        return
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan — startup and shutdown sequence."""
    logger.info("Analytics X-Ray starting up...")

    # ── Step 1: Load configuration ────────────────────────────────────────────
    # load_config() raises SystemExit on parse error or missing version field.
    config: Config = load_config()
    app.state.config = config

    # ── Step 2: Storage backend ───────────────────────────────────────────────
    # RuntimeError on an incompatible SQLite schema propagates → startup refused.
    storage: StorageBackend = await create_storage_backend(config)
    app.state.storage = storage

    # ── Step 3: Allowlist store ───────────────────────────────────────────────
    # Corrupt or missing stored state → empty allowlist, never a startup failure.
    store = DomainStore(storage, storage_key=config.storage.key)
    loaded = await store.hydrate()
    app.state.store = store
    logger.info("Allowlist ready", count=loaded, key=config.storage.key)

    # ── Step 4: Tab tracker ───────────────────────────────────────────────────
    tracker = TabDomainTracker(store)
    app.state.tracker = tracker

    # ── Step 5: Storage change watcher ────────────────────────────────────────
    watcher_task: asyncio.Task[None] | None = None
    if config.watch_storage and storage.path:
        watcher_task = asyncio.create_task(store.start_watcher())
    else:
        logger.debug("Storage change watcher disabled", backend=type(storage).__name__)

    # ── Step 6: Mark as ready ─────────────────────────────────────────────────
    app.state.ready = True
    logger.info("Analytics X-Ray ready", host=config.panel.host, port=config.panel.port)

    yield

    # ── Shutdown (reverse order) ──────────────────────────────────────────────
    logger.info("Analytics X-Ray shutting down...")
    app.state.ready = False

    await _cancel(watcher_task)
    tracker.close()

    try:
        await store.flush()
    except Exception as exc:  # noqa: BLE001
        logger.warning("Allowlist flush error (non-fatal)", error=str(exc))

    await storage.close()
    logger.info("Analytics X-Ray shutdown complete")


# ─── Application Factory ──────────────────────────────────────────────────────


def create_app() -> FastAPI:
    """Create and configure the Analytics X-Ray FastAPI application.

    Call this function directly in unit tests to get an isolated app instance
    and populate app.state by hand instead of running the lifespan.
    """
    application = FastAPI(
        title="Analytics X-Ray Panel",
        description="Allowlist and tab tracking backend for the Analytics X-Ray capture panel",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs" if DEBUG else None,
        redoc_url="/redoc" if DEBUG else None,
        openapi_url="/openapi.json" if DEBUG else None,
    )

    # Initialize ready flag before lifespan; panel routes return 503 until startup completes.
    application.state.ready = False

    application.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:7717",
            "http://127.0.0.1:7717",
        ],
        allow_origin_regex=r"^(chrome|moz)-extension://.*$",
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    # Registered LAST so it runs FIRST, before body reads or handlers.
    application.add_middleware(PanelAccessMiddleware)

    application.include_router(root_router)
    application.include_router(panel_router, prefix="/panel/api")

    @application.exception_handler(HTTPException)
    async def http_exception_handler(
        request: Request, exc: HTTPException
    ) -> JSONResponse:
        logger.warning(
            "HTTP exception",
            status_code=exc.status_code,
            detail=exc.detail,
            path=str(request.url.path),
        )
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

    @application.exception_handler(Exception)
    async def unhandled_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        logger.error(
            "Unhandled exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=str(request.url.path),
        )
        return JSONResponse(
            status_code=500, content={"error": "Internal server error"}
        )

    return application


# ─── Module-Level App (for uvicorn) ───────────────────────────────────────────

app = create_app()
