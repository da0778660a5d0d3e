"""
ticket_manager.api.app

FastAPI app factory for the ticket manager service.

Responsibilities:
- Build the FastAPI application and register routers/middleware.
- Compose the store, cache and orchestrator once per process and dispose them on shutdown.
- Run the startup routine in the background so probes answer while migrations run.
- Map the error taxonomy onto HTTP status codes.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from ticket_manager import __version__
from ticket_manager.api.routers.health import router as health_router
from ticket_manager.api.routers.tickets import router as tickets_router
from ticket_manager.cache import CacheKeyBuilder, InMemoryCacheStore
from ticket_manager.db.providers import create_ticket_store
from ticket_manager.errors import InvalidArgument, NotFound, NotReady, PersistenceError
from ticket_manager.observability.logging import configure_logging, get_logger
from ticket_manager.observability.middleware import RequestContextMiddleware
from ticket_manager.services.startup import Readiness, run_startup
from ticket_manager.services.ticket_manager import TicketManager
from ticket_manager.settings import Settings

log = get_logger(__name__)

RETRY_AFTER_SECONDS = 5


def create_app(*, settings: Settings) -> FastAPI:
    # Configure structured logging once at process startup (before app serves requests).
    configure_logging(service_name=settings.service_name, level=settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        log.info("startup", env=settings.env)
        store = create_ticket_store(settings)
        readiness = Readiness()
        app.state.store = store
        app.state.readiness = readiness
        app.state.ticket_manager = TicketManager(
            store=store,
            cache=InMemoryCacheStore(default_ttl=settings.cache_ttl_seconds),
            readiness=readiness,
            keys=CacheKeyBuilder(settings.cache_namespace),
        )

        cancel = asyncio.Event()
        task = asyncio.create_task(
            run_startup(
                store,
                readiness,
                apply_migrations=settings.apply_migrations_automatically,
                cancel=cancel,
            )
        )
        task.add_done_callback(_log_startup_outcome)
        app.state.startup_task = task
        try:
            yield
        finally:
            cancel.set()
            if not task.done():
                task.cancel()
            # Outcome already reported by `_log_startup_outcome`.
            await asyncio.gather(task, return_exceptions=True)
            await store.dispose()
            log.info("shutdown")

    app = FastAPI(
        title="Ticket Manager",
        version=__version__,
        docs_url="/docs",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    app.add_middleware(RequestContextMiddleware)
    app.include_router(health_router, tags=["health"])
    app.include_router(tickets_router)
    _register_error_handlers(app)

    return app


def _log_startup_outcome(task: asyncio.Task[None]) -> None:
    if task.cancelled():
        log.info("startup_cancelled")
        return
    exc = task.exception()
    if exc is not None:
        log.error("startup_failed", error=str(exc), exc_info=exc)


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(InvalidArgument)
    async def _invalid_argument(_: Request, exc: InvalidArgument) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(ValidationError)
    async def _invalid_model(_: Request, exc: ValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={
                "detail": jsonable_encoder(
                    exc.errors(include_url=False, include_context=False, include_input=False)
                )
            },
        )

    @app.exception_handler(RequestValidationError)
    async def _invalid_request(_: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})

    @app.exception_handler(NotFound)
    async def _not_found(_: Request, exc: NotFound) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(PersistenceError)
    async def _persistence(_: Request, exc: PersistenceError) -> JSONResponse:
        log.error("persistence_error", error=str(exc))
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(NotReady)
    async def _not_ready(_: Request, exc: NotReady) -> JSONResponse:
        return JSONResponse(
            status_code=503,
            content={"detail": str(exc)},
            headers={"Retry-After": str(RETRY_AFTER_SECONDS)},
        )


# --- Module Notes -----------------------------------------------------------
# App composition stays here; ticket semantics live in `services.ticket_manager` and
# `db.store`.
