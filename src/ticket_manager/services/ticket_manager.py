"""
ticket_manager.services.ticket_manager

Cache-aside orchestrator in front of the ticket store.

Responsibilities:
- Refuse every operation until the startup gate is open.
- Read-through caching of single tickets and of the full ticket list.
- Keep cached entries consistent with writes (append, replace, evict).
- Delegate everything else to the store unchanged.

Notes:
- The list entry is maintained with get-mutate-set; two concurrent writers can lose one
  update until the entry is next evicted.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from datetime import datetime
from typing import TypeVar

from pydantic import TypeAdapter, ValidationError
from sqlalchemy import ColumnElement

from ticket_manager.cache import CacheKeyBuilder, CacheStore
from ticket_manager.db.models import TicketStatus
from ticket_manager.db.store import TicketStore
from ticket_manager.errors import CacheError, NotReady
from ticket_manager.observability.logging import get_logger
from ticket_manager.schemas import (
    AttachmentContent,
    AttachmentRead,
    AttachmentUpload,
    TicketCreate,
    TicketRead,
    TicketUpdate,
)
from ticket_manager.services.startup import Readiness

log = get_logger(__name__)

T = TypeVar("T")

_TICKET = TypeAdapter(TicketRead)
_TICKETS = TypeAdapter(list[TicketRead])


class TicketManager:
    def __init__(
        self,
        *,
        store: TicketStore,
        cache: CacheStore,
        readiness: Readiness,
        keys: CacheKeyBuilder,
    ) -> None:
        self._store = store
        self._cache = cache
        self._readiness = readiness
        self._keys = keys

    @property
    def is_ready(self) -> bool:
        return self._readiness.is_ready

    # --- cached operations ----------------------------------------------------

    async def get_ticket_by_id(self, ticket_id: int) -> TicketRead | None:
        self._ensure_ready()
        key = self._keys.ticket(ticket_id)

        cached = await self._cache_get(key, _TICKET)
        if cached is not None:
            return cached

        ticket = await self._store.get_ticket_by_id(ticket_id)
        if ticket is not None:
            await self._cache_set(key, _TICKET, ticket)
        return ticket

    async def get_tickets(self) -> list[TicketRead]:
        self._ensure_ready()
        key = self._keys.tickets()

        cached = await self._cache_get(key, _TICKETS)
        if cached is not None:
            return cached

        tickets = await self._store.get_tickets()
        await self._cache_set(key, _TICKETS, tickets)
        return tickets

    async def create_ticket(self, draft: TicketCreate | None) -> TicketRead:
        self._ensure_ready()
        ticket = await self._store.create_ticket(draft)

        key = self._keys.tickets()
        cached = await self._cache_get(key, _TICKETS)
        if cached is not None:
            await self._cache_set(key, _TICKETS, [*cached, ticket])
        return ticket

    async def delete_ticket(self, ticket_id: int) -> TicketRead:
        self._ensure_ready()
        deleted = await self._store.delete_ticket(ticket_id)
        await self._forget(ticket_id)
        return deleted

    async def update_ticket(self, ticket_id: int, patch: TicketUpdate | None) -> TicketRead:
        self._ensure_ready()
        ticket = await self._store.update_ticket(ticket_id, patch)
        await self._refresh(ticket)
        return ticket

    # --- writes that touch cached tickets ---------------------------------------

    async def update_ticket_status(self, ticket_id: int, status: TicketStatus | str) -> TicketRead:
        self._ensure_ready()
        ticket = await self._store.update_ticket_status(ticket_id, status)
        await self._refresh(ticket)
        return ticket

    async def upload_ticket_attachments(
        self,
        ticket_id: int,
        uploads: Iterable[AttachmentUpload] | None,
        remove_previous: bool = False,
    ) -> TicketRead:
        self._ensure_ready()
        ticket = await self._store.upload_ticket_attachments(ticket_id, uploads, remove_previous)
        await self._refresh(ticket)
        return ticket

    async def remove_ticket_attachment(self, attachment: AttachmentRead | None) -> None:
        self._ensure_ready()
        await self._store.remove_ticket_attachment(attachment)
        if attachment is not None:
            await self._cache_delete(self._keys.ticket(attachment.ticket_id))
            await self._cache_delete(self._keys.tickets())

    # --- pass-through -----------------------------------------------------------

    async def get_ticket_attachment(self, attachment_id: int) -> AttachmentRead | None:
        self._ensure_ready()
        return await self._store.get_ticket_attachment(attachment_id)

    async def download_attachment(self, ticket_id: int, attachment_id: int) -> AttachmentContent:
        self._ensure_ready()
        return await self._store.download_attachment(ticket_id, attachment_id)

    async def get_number_of_tickets(self) -> int:
        self._ensure_ready()
        return await self._store.get_number_of_tickets()

    async def get_number_of_tickets_by_status(self, status: TicketStatus | str) -> int:
        self._ensure_ready()
        return await self._store.get_number_of_tickets_by_status(status)

    async def get_filtered_number_of_tickets(self, criterion: ColumnElement[bool]) -> int:
        self._ensure_ready()
        return await self._store.get_filtered_number_of_tickets(criterion)

    async def get_filtered_tickets(
        self,
        predicate: Callable[[TicketRead], bool],
        include_attachments: bool = True,
    ) -> list[TicketRead]:
        self._ensure_ready()
        return await self._store.get_filtered_tickets(predicate, include_attachments)

    async def get_tickets_by_date_range(self, start: datetime, end: datetime) -> list[TicketRead]:
        self._ensure_ready()
        return await self._store.get_tickets_by_date_range(start, end)

    # --- helpers ----------------------------------------------------------------

    def _ensure_ready(self) -> None:
        if not self._readiness.is_ready:
            raise NotReady("Ticket manager is still starting up.")

    async def _refresh(self, ticket: TicketRead) -> None:
        await self._cache_delete(self._keys.ticket(ticket.id))

        key = self._keys.tickets()
        cached = await self._cache_get(key, _TICKETS)
        if cached is not None:
            updated = [ticket if t.id == ticket.id else t for t in cached]
            await self._cache_set(key, _TICKETS, updated)

    async def _forget(self, ticket_id: int) -> None:
        await self._cache_delete(self._keys.ticket(ticket_id))

        key = self._keys.tickets()
        cached = await self._cache_get(key, _TICKETS)
        if cached is None:
            await self._cache_delete(key)
        else:
            await self._cache_set(key, _TICKETS, [t for t in cached if t.id != ticket_id])

    async def _cache_get(self, key: str, adapter: TypeAdapter[T]) -> T | None:
        try:
            raw = await self._cache.get(key)
            return None if raw is None else adapter.validate_json(raw)
        except (CacheError, ValidationError) as e:
            log.warning("cache_read_failed", key=key, error=str(e))
            return None

    async def _cache_set(self, key: str, adapter: TypeAdapter[T], value: T) -> None:
        try:
            await self._cache.set(key, adapter.dump_json(value).decode("utf-8"))
        except CacheError as e:
            log.warning("cache_write_failed", key=key, error=str(e))

    async def _cache_delete(self, key: str) -> None:
        try:
            await self._cache.delete(key)
        except CacheError as e:
            log.warning("cache_evict_failed", key=key, error=str(e))
