"""
FastAPI application factory for the graphledger gateway.

This module creates the FastAPI app with:
- CORS configuration for the browser frontend
- Graph store and restore engine lifecycle management
- Actor resolution middleware (X-User-Id header, client IP)
- Uniform ``{success: false, error}`` error bodies
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import replace

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .._version import __version__
from ..config import AppConfig
from ..context import Actor, actor_scope, client_ip_from_headers
from ..errors import GraphLedgerError
from ..restore import RestoreEngine
from ..store import GraphStore
from .config import Settings
from .routes import router

logger = logging.getLogger(__name__)

_ERROR_STATUS = {"NOT_FOUND": 404, "CONFLICT": 409, "DANGLING_EDGE": 400}


def _open_store(settings: Settings) -> GraphStore:
    config = AppConfig.from_env()
    if settings.db_path:
        config = replace(config, storage=replace(config.storage, db_path=settings.db_path))
    config.log_config()
    return GraphStore.from_config(config)


def _attach(app: FastAPI, store: GraphStore) -> None:
    app.state.store = store
    app.state.restorer = RestoreEngine(store)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Open the graph store unless one was supplied to ``create_app``."""
    owned = getattr(app.state, "store", None) is None
    if owned:
        _attach(app, _open_store(app.state.settings))

    yield

    if owned:
        app.state.store.close()


def create_app(store: GraphStore | None = None, settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        store: Graph store to serve; opened from the environment on startup
            when omitted
        settings: Gateway settings; loaded from the environment when omitted
    """
    settings = settings or Settings()

    app = FastAPI(
        title="graphledger",
        description="Audit-logged graph store with point-in-time restore.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.store = None
    if store is not None:
        _attach(app, store)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def bind_actor(request: Request, call_next):
        peer = request.client.host if request.client else None
        actor = Actor(
            user_id=request.headers.get(settings.user_header) or None,
            ip_address=client_ip_from_headers(request.headers, peer),
        )
        request.state.actor = actor
        with actor_scope(actor):
            return await call_next(request)

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code, content={"success": False, "error": exc.detail}
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        fields = sorted({".".join(str(p) for p in err["loc"][1:]) for err in exc.errors()})
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": f"Invalid or missing fields: {', '.join(fields)}"},
        )

    @app.exception_handler(GraphLedgerError)
    async def graphledger_error(request: Request, exc: GraphLedgerError):
        logger.warning(
            "Unhandled graphledger error", extra={"code": exc.code, "path": request.url.path}
        )
        return JSONResponse(
            status_code=_ERROR_STATUS.get(exc.code, 500),
            content={"success": False, "error": exc.message, "code": exc.code},
        )

    app.include_router(router)

    @app.get("/health")
    async def health():
        return {"status": "healthy", "service": "graphledger", "version": __version__}

    return app
