"""
ticket_manager.api.routers.health

Health and readiness endpoints.

Responsibilities:
- Provide liveness probe (`/healthz`).
- Provide readiness probe (`/readyz`): startup gate open and DB reachable.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from ticket_manager.api.deps import readiness_from_app, store_from_app
from ticket_manager.db.store import TicketStore
from ticket_manager.errors import NotReady
from ticket_manager.services.startup import Readiness

router = APIRouter()


@router.get("/healthz")
async def healthz() -> dict[str, str]:
    # Liveness: process is up and serving HTTP.
    return {"status": "ok"}


@router.get("/readyz")
async def readyz(
    readiness: Readiness = Depends(readiness_from_app),
    store: TicketStore = Depends(store_from_app),
) -> dict[str, str]:
    if not readiness.is_ready:
        raise NotReady(f"Ticket manager is {readiness.state}.")
    if not await store.is_context_created():
        raise NotReady("Database is unreachable.")
    return {"status": "ready"}
