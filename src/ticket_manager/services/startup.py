"""
ticket_manager.services.startup

Startup gate for the ticket manager.

Responsibilities:
- Hold the one-way `STARTING -> READY` lifecycle state.
- Run the startup routine: optional migrations, connectivity probe, then open the gate.
"""

from __future__ import annotations

import asyncio
import enum

from ticket_manager.db.store import TicketStore
from ticket_manager.errors import PersistenceError
from ticket_manager.observability.logging import get_logger

log = get_logger(__name__)


class LifecycleState(enum.StrEnum):
    starting = "STARTING"
    ready = "READY"


class Readiness:
    def __init__(self) -> None:
        self._ready = asyncio.Event()

    @property
    def state(self) -> LifecycleState:
        return LifecycleState.ready if self._ready.is_set() else LifecycleState.starting

    @property
    def is_ready(self) -> bool:
        return self._ready.is_set()

    def mark_ready(self) -> None:
        self._ready.set()

    async def wait(self) -> None:
        await self._ready.wait()


async def run_startup(
    store: TicketStore,
    readiness: Readiness,
    *,
    apply_migrations: bool,
    cancel: asyncio.Event | None = None,
) -> None:
    """
    Bring the store to a usable state and open the gate.

    Failures propagate and leave the gate closed; the caller decides how to report them.
    """

    if apply_migrations:
        applied = await store.apply_migrations(cancel)
        log.info("startup_migrations_done", applied=applied)

    if not await store.is_context_created():
        raise PersistenceError("Database is unreachable; ticket manager stays in STARTING.")

    readiness.mark_ready()
    log.info("ticket_manager_ready", dialect=str(store.dialect.name))
