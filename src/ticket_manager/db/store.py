"""
ticket_manager.db.store

Engine-agnostic ticket store (the persistence provider).

Responsibilities:
- CRUD for tickets and attachments, one short-lived session per operation.
- Keep attachment rows and stored files in step (write on create/update,
  delete on ticket delete or attachment removal).
- Read-only query helpers (counts, filters, promise-date ranges).
- Startup migrations and connectivity probing via the engine's capability record.

Notes:
- Files are written before the enclosing transaction commits and are not removed
  if the commit fails.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Protocol

from sqlalchemy import ColumnElement, Select, delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession
from sqlalchemy.orm import selectinload

from ticket_manager.db.dialects import EngineDialect
from ticket_manager.db.migrator import MigrationRunner
from ticket_manager.db.models import Attachment, Ticket, TicketStatus, utcnow
from ticket_manager.db.session import can_connect, create_sessionmaker
from ticket_manager.errors import InvalidArgument, NotFound, PersistenceError
from ticket_manager.observability.logging import get_logger
from ticket_manager.schemas import (
    AttachmentContent,
    AttachmentRead,
    AttachmentUpload,
    TicketCreate,
    TicketRead,
    TicketUpdate,
)
from ticket_manager.storage import AttachmentStorage

log = get_logger(__name__)

# Attachments may only be added or replaced while a ticket is still being worked on.
_ATTACHABLE_STATUSES = frozenset({TicketStatus.open, TicketStatus.in_progress})


class _StoredFile(Protocol):
    url: str


class TicketStore:
    def __init__(
        self,
        *,
        engine: AsyncEngine,
        dialect: EngineDialect,
        storage: AttachmentStorage,
        migrations: MigrationRunner | None = None,
    ) -> None:
        self._engine = engine
        self._sessions = create_sessionmaker(engine)
        self._dialect = dialect
        self._storage = storage
        self._migrations = migrations or MigrationRunner(dialect=dialect)

    @property
    def dialect(self) -> EngineDialect:
        return self._dialect

    @property
    def storage(self) -> AttachmentStorage:
        return self._storage

    # --- lifecycle ------------------------------------------------------------

    async def apply_migrations(self, cancel: asyncio.Event | None = None) -> list[str]:
        engine = self._dialect.open_migration_engine(self._engine.url)
        try:
            return await self._migrations.apply(engine, cancel)
        finally:
            await engine.dispose()

    async def is_context_created(self) -> bool:
        return await can_connect(self._engine)

    async def dispose(self) -> None:
        await self._engine.dispose()

    # --- tickets --------------------------------------------------------------

    async def create_ticket(self, draft: TicketCreate | None) -> TicketRead:
        if draft is None:
            raise InvalidArgument("Ticket draft is required.")

        async with self._sessions() as session:
            try:
                attachments = self._store_uploads(draft.attachments)
                # Assigned, not appended: a collection that was only read on a new object
                # is not marked loaded and would lazy load after commit.
                ticket = Ticket(
                    title=draft.title,
                    description=draft.description,
                    assignee=draft.assignee,
                    status=draft.status,
                    priority=draft.priority,
                    promise_date=utcnow(),
                    attachments=attachments,
                )
                session.add(ticket)
                await session.commit()
            except (SQLAlchemyError, OSError) as e:
                await session.rollback()
                log.error("ticket_create_failed", error=str(e))
                raise PersistenceError(f"Failed to add ticket: {e}") from e

            log.info("ticket_created", ticket_id=ticket.id, attachments=len(attachments))
            return _snapshot(ticket, attachments=attachments)

    async def delete_ticket(self, ticket_id: int) -> TicketRead:
        _require_positive(ticket_id, "Ticket")

        async with self._sessions() as session:
            ticket = await self._get_for_write(session, ticket_id)
            snapshot = _snapshot(ticket)

            self._remove_files(ticket.attachments)
            try:
                # Attachment rows go with the ticket (delete-orphan cascade).
                await session.delete(ticket)
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                log.error("ticket_delete_failed", ticket_id=ticket_id, error=str(e))
                raise PersistenceError(f"Failed to delete ticket {ticket_id}: {e}") from e

        log.info("ticket_deleted", ticket_id=ticket_id, attachments=len(snapshot.attachments))
        return snapshot

    async def get_ticket_by_id(
        self, ticket_id: int, include_attachments: bool = True
    ) -> TicketRead | None:
        _require_positive(ticket_id, "Ticket")

        with _read_errors("retrieving ticket"):
            async with self._sessions() as session:
                ticket = await self._load(session, ticket_id, include_attachments)
                return None if ticket is None else _snapshot(ticket, include_attachments)

    async def get_tickets(self, include_attachments: bool = True) -> list[TicketRead]:
        return await self._query(select(Ticket), include_attachments)

    async def update_ticket(self, ticket_id: int, patch: TicketUpdate | None) -> TicketRead:
        _require_positive(ticket_id, "Ticket")
        if patch is None:
            raise InvalidArgument("Ticket update is required.")

        async with self._sessions() as session:
            ticket = await self._get_for_write(session, ticket_id)
            try:
                for field in ("title", "description", "assignee"):
                    value = getattr(patch, field)
                    if value is not None and value.strip():
                        setattr(ticket, field, value.strip())
                if patch.status is not None:
                    ticket.status = patch.status
                if patch.priority is not None:
                    ticket.priority = patch.priority
                ticket.promise_date = utcnow()

                ticket.attachments.extend(self._store_uploads(patch.attachments))
                await session.commit()
            except (SQLAlchemyError, OSError) as e:
                await session.rollback()
                log.error("ticket_update_failed", ticket_id=ticket_id, error=str(e))
                raise PersistenceError(f"Failed to update ticket {ticket_id}: {e}") from e

            log.info("ticket_updated", ticket_id=ticket_id, added_attachments=len(patch.attachments))
            return _snapshot(ticket)

    async def update_ticket_status(self, ticket_id: int, status: TicketStatus | str) -> TicketRead:
        _require_positive(ticket_id, "Ticket")
        new_status = _coerce_status(status)

        async with self._sessions() as session:
            ticket = await self._get_for_write(session, ticket_id)
            try:
                ticket.status = new_status
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                log.error("ticket_status_update_failed", ticket_id=ticket_id, error=str(e))
                raise PersistenceError(f"Failed to update status of ticket {ticket_id}: {e}") from e

            log.info("ticket_status_updated", ticket_id=ticket_id, status=new_status.value)
            return _snapshot(ticket)

    # --- attachments ----------------------------------------------------------

    async def upload_ticket_attachments(
        self,
        ticket_id: int,
        uploads: Iterable[AttachmentUpload] | None,
        remove_previous: bool = False,
    ) -> TicketRead:
        _require_positive(ticket_id, "Ticket")
        uploads = list(uploads or [])
        if not uploads:
            raise InvalidArgument("No ticket attachment provided.")

        async with self._sessions() as session:
            ticket = await self._get_for_write(session, ticket_id)
            if ticket.status not in _ATTACHABLE_STATUSES:
                raise InvalidArgument(
                    f"Attachments of ticket {ticket_id} can only change while it is Open or InProgress."
                )

            try:
                if remove_previous:
                    previous = list(ticket.attachments)
                    self._remove_files(previous)
                    for attachment in previous:
                        ticket.attachments.remove(attachment)
                ticket.attachments.extend(self._store_uploads(uploads))
                await session.commit()
            except (SQLAlchemyError, OSError) as e:
                await session.rollback()
                log.error("attachment_upload_failed", ticket_id=ticket_id, error=str(e))
                raise PersistenceError(f"Failed to upload attachments for ticket {ticket_id}: {e}") from e

            log.info(
                "attachments_uploaded",
                ticket_id=ticket_id,
                added=len(uploads),
                replaced=remove_previous,
            )
            return _snapshot(ticket)

    async def get_ticket_attachment(self, attachment_id: int) -> AttachmentRead | None:
        _require_positive(attachment_id, "Attachment")

        with _read_errors("retrieving ticket attachment"):
            async with self._sessions() as session:
                attachment = await session.get(Attachment, attachment_id)
                return None if attachment is None else AttachmentRead.model_validate(attachment)

    async def remove_ticket_attachment(self, attachment: AttachmentRead | None) -> None:
        if attachment is None:
            raise InvalidArgument("Attachment is required.")

        async with self._sessions() as session:
            try:
                result = await session.execute(delete(Attachment).where(Attachment.id == attachment.id))
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                log.error("attachment_delete_failed", attachment_id=attachment.id, error=str(e))
                raise PersistenceError(f"Failed to delete attachment {attachment.id}: {e}") from e

        if result.rowcount == 0:
            raise NotFound(f"Attachment with ID {attachment.id} not found.")
        self._remove_files([attachment])
        log.info("attachment_removed", attachment_id=attachment.id, ticket_id=attachment.ticket_id)

    async def download_attachment(self, ticket_id: int, attachment_id: int) -> AttachmentContent:
        _require_positive(ticket_id, "Ticket")
        attachment = await self.get_ticket_attachment(attachment_id)
        if attachment is None or attachment.ticket_id != ticket_id:
            raise NotFound(f"Attachment {attachment_id} not found for ticket {ticket_id}.")

        try:
            content = self._storage.read(attachment.url)
        except FileNotFoundError as e:
            raise NotFound(f"File for attachment {attachment_id} not found on server.") from e
        return AttachmentContent(attachment=attachment, content=content)

    # --- queries --------------------------------------------------------------

    async def get_number_of_tickets(self) -> int:
        return await self._count()

    async def get_number_of_tickets_by_status(self, status: TicketStatus | str) -> int:
        return await self._count(Ticket.status == _coerce_status(status))

    async def get_filtered_number_of_tickets(self, criterion: ColumnElement[bool]) -> int:
        # Counted by the database; `criterion` is a SQL expression over `Ticket` columns.
        return await self._count(criterion)

    async def get_filtered_tickets(
        self,
        predicate: Callable[[TicketRead], bool],
        include_attachments: bool = True,
    ) -> list[TicketRead]:
        # Arbitrary Python predicates cannot be translated to SQL: loads the full set.
        tickets = await self.get_tickets(include_attachments)
        return [t for t in tickets if predicate(t)]

    async def get_tickets_by_date_range(self, start: datetime, end: datetime) -> list[TicketRead]:
        start, end = _as_utc(start), _as_utc(end)
        if start > end:
            raise InvalidArgument("Start date must not be after end date.")
        stmt = select(Ticket).where(Ticket.promise_date >= start, Ticket.promise_date <= end)
        return await self._query(stmt, include_attachments=True)

    # --- helpers --------------------------------------------------------------

    async def _load(
        self, session: AsyncSession, ticket_id: int, include_attachments: bool = True
    ) -> Ticket | None:
        stmt = select(Ticket).where(Ticket.id == ticket_id)
        if include_attachments:
            stmt = stmt.options(selectinload(Ticket.attachments))
        return (await session.execute(stmt)).scalar_one_or_none()

    async def _get_for_write(self, session: AsyncSession, ticket_id: int) -> Ticket:
        with _read_errors("loading ticket"):
            ticket = await self._load(session, ticket_id)
        if ticket is None:
            raise NotFound(f"Ticket with ID {ticket_id} not found.")
        return ticket

    async def _query(self, stmt: Select[tuple[Ticket]], include_attachments: bool) -> list[TicketRead]:
        stmt = stmt.order_by(Ticket.id)
        if include_attachments:
            stmt = stmt.options(selectinload(Ticket.attachments))
        with _read_errors("retrieving tickets"):
            async with self._sessions() as session:
                rows = (await session.execute(stmt)).scalars().all()
                return [_snapshot(t, include_attachments) for t in rows]

    async def _count(self, *criteria: ColumnElement[bool]) -> int:
        stmt = select(func.count()).select_from(Ticket).where(*criteria)
        with _read_errors("counting tickets"):
            async with self._sessions() as session:
                return int((await session.execute(stmt)).scalar_one())

    def _store_uploads(self, uploads: Iterable[AttachmentUpload]) -> list[Attachment]:
        stored: list[Attachment] = []
        for upload in uploads:
            url = self._storage.write(upload.file_name, upload.content)
            stored.append(
                Attachment(
                    name=upload.file_name,
                    content_type=upload.content_type,
                    size=upload.size,
                    url=url,
                )
            )
        return stored

    def _remove_files(self, attachments: Iterable[_StoredFile]) -> None:
        # Best-effort: a file that cannot be removed must not block the row change.
        for attachment in attachments:
            try:
                self._storage.delete(attachment.url)
            except OSError as e:
                log.warning("attachment_file_delete_failed", url=attachment.url, error=str(e))


@contextmanager
def _read_errors(action: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as e:
        log.error("ticket_store_read_failed", action=action, error=str(e))
        raise PersistenceError(f"An error occurred while {action}: {e}") from e


def _snapshot(
    ticket: Ticket,
    include_attachments: bool = True,
    attachments: Iterable[Attachment] | None = None,
) -> TicketRead:
    # Only touch `attachments` when it was eagerly loaded; async sessions cannot lazy load.
    if attachments is None:
        attachments = ticket.attachments if include_attachments else []
    return TicketRead(
        id=ticket.id,
        title=ticket.title,
        description=ticket.description,
        assignee=ticket.assignee,
        status=ticket.status,
        priority=ticket.priority,
        promise_date=ticket.promise_date,
        attachments=[AttachmentRead.model_validate(a) for a in attachments],
    )


def _require_positive(value: int, what: str) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise InvalidArgument(f"{what} ID must be greater than zero.")


def _coerce_status(status: TicketStatus | str) -> TicketStatus:
    try:
        return TicketStatus(status)
    except ValueError as e:
        raise InvalidArgument(f"Unknown ticket status: {status!r}") from e


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


# --- Module Notes -----------------------------------------------------------
# Every upload gets its own stored file, so attachments that share a name never share bytes:
# deleting or replacing one leaves the others readable.
