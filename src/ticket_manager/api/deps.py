"""
ticket_manager.api.deps

FastAPI dependency wiring for the API layer.

Responsibilities:
- Encapsulate app.state access (orchestrator, store, readiness gate).
"""

from __future__ import annotations

from fastapi import Request

from ticket_manager.db.store import TicketStore
from ticket_manager.services.startup import Readiness
from ticket_manager.services.ticket_manager import TicketManager


def ticket_manager_from_app(request: Request) -> TicketManager:
    # Created in the lifespan of `ticket_manager.api.app.create_app`.
    return request.app.state.ticket_manager  # type: ignore[attr-defined]


def store_from_app(request: Request) -> TicketStore:
    return request.app.state.store  # type: ignore[attr-defined]


def readiness_from_app(request: Request) -> Readiness:
    return request.app.state.readiness  # type: ignore[attr-defined]
