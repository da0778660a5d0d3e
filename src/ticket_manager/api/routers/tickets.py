"""
ticket_manager.api.routers.tickets

Ticket and attachment endpoints.

Responsibilities:
- Parse multipart forms (ticket fields + uploaded files) and JSON bodies.
- Delegate to `TicketManager`; errors are mapped to HTTP by the app's exception handlers.
"""

from __future__ import annotations

from datetime import datetime
from urllib.parse import quote

from fastapi import APIRouter, Depends, File, Form, Query, Response, UploadFile, status
from pydantic import BaseModel

from ticket_manager.api.deps import ticket_manager_from_app
from ticket_manager.db.models import TicketPriority, TicketStatus
from ticket_manager.errors import NotFound
from ticket_manager.schemas import (
    AttachmentRead,
    AttachmentUpload,
    TicketCreate,
    TicketRead,
    TicketUpdate,
)
from ticket_manager.services.ticket_manager import TicketManager

router = APIRouter(prefix="/api/tickets", tags=["tickets"])


class StatusChangeRequest(BaseModel):
    status: TicketStatus


class TicketCountResponse(BaseModel):
    count: int


async def _read_uploads(files: list[UploadFile] | None) -> list[AttachmentUpload]:
    uploads: list[AttachmentUpload] = []
    for file in files or []:
        uploads.append(
            AttachmentUpload(
                file_name=file.filename or "",
                content_type=file.content_type or "application/octet-stream",
                content=await file.read(),
            )
        )
    return uploads


# Static paths are registered before `/{ticket_id}` so they are not parsed as ids.


@router.get("/search", response_model=list[TicketRead])
async def search_tickets(
    status_: TicketStatus | None = Query(None, alias="status"),
    priority: TicketPriority | None = None,
    assignee: str | None = None,
    manager: TicketManager = Depends(ticket_manager_from_app),
) -> list[TicketRead]:
    def matches(ticket: TicketRead) -> bool:
        return (
            (status_ is None or ticket.status == status_)
            and (priority is None or ticket.priority == priority)
            and (assignee is None or ticket.assignee.casefold() == assignee.strip().casefold())
        )

    return await manager.get_filtered_tickets(matches)


@router.get("/count", response_model=TicketCountResponse)
async def count_tickets(
    status_: TicketStatus | None = Query(None, alias="status"),
    manager: TicketManager = Depends(ticket_manager_from_app),
) -> TicketCountResponse:
    if status_ is None:
        return TicketCountResponse(count=await manager.get_number_of_tickets())
    return TicketCountResponse(count=await manager.get_number_of_tickets_by_status(status_))


@router.get("/range", response_model=list[TicketRead])
async def tickets_by_promise_date(
    start: datetime,
    end: datetime,
    manager: TicketManager = Depends(ticket_manager_from_app),
) -> list[TicketRead]:
    return await manager.get_tickets_by_date_range(start, end)


@router.get("/attachments/{attachment_id}", response_model=AttachmentRead)
async def get_attachment(
    attachment_id: int,
    manager: TicketManager = Depends(ticket_manager_from_app),
) -> AttachmentRead:
    attachment = await manager.get_ticket_attachment(attachment_id)
    if attachment is None:
        raise NotFound(f"Attachment with ID {attachment_id} not found.")
    return attachment


@router.delete(
    "/attachments/{attachment_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
)
async def delete_attachment(
    attachment_id: int,
    manager: TicketManager = Depends(ticket_manager_from_app),
) -> Response:
    attachment = await manager.get_ticket_attachment(attachment_id)
    if attachment is None:
        raise NotFound(f"Attachment with ID {attachment_id} not found.")
    await manager.remove_ticket_attachment(attachment)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("", response_model=TicketRead, status_code=status.HTTP_201_CREATED)
async def create_ticket(
    title: str = Form(...),
    description: str = Form(...),
    assignee: str = Form(...),
    status_: TicketStatus = Form(TicketStatus.open, alias="status"),
    priority: TicketPriority = Form(TicketPriority.medium),
    attachments: list[UploadFile] | None = File(default=None),
    manager: TicketManager = Depends(ticket_manager_from_app),
) -> TicketRead:
    draft = TicketCreate(
        title=title,
        description=description,
        assignee=assignee,
        status=status_,
        priority=priority,
        attachments=await _read_uploads(attachments),
    )
    return await manager.create_ticket(draft)


@router.get("", response_model=list[TicketRead])
async def list_tickets(manager: TicketManager = Depends(ticket_manager_from_app)) -> list[TicketRead]:
    return await manager.get_tickets()


@router.get("/{ticket_id}", response_model=TicketRead)
async def get_ticket(
    ticket_id: int,
    manager: TicketManager = Depends(ticket_manager_from_app),
) -> TicketRead:
    ticket = await manager.get_ticket_by_id(ticket_id)
    if ticket is None:
        raise NotFound(f"Ticket with ID {ticket_id} not found.")
    return ticket


@router.put("/{ticket_id}", response_model=TicketRead)
async def update_ticket(
    ticket_id: int,
    title: str | None = Form(None),
    description: str | None = Form(None),
    assignee: str | None = Form(None),
    status_: TicketStatus | None = Form(None, alias="status"),
    priority: TicketPriority | None = Form(None),
    attachments: list[UploadFile] | None = File(default=None),
    manager: TicketManager = Depends(ticket_manager_from_app),
) -> TicketRead:
    patch = TicketUpdate(
        title=title,
        description=description,
        assignee=assignee,
        status=status_,
        priority=priority,
        attachments=await _read_uploads(attachments),
    )
    return await manager.update_ticket(ticket_id, patch)


@router.patch("/{ticket_id}/status", response_model=TicketRead)
async def update_ticket_status(
    ticket_id: int,
    body: StatusChangeRequest,
    manager: TicketManager = Depends(ticket_manager_from_app),
) -> TicketRead:
    return await manager.update_ticket_status(ticket_id, body.status)


@router.delete("/{ticket_id}", status_code=status.HTTP_204_NO_CONTENT, response_class=Response)
async def delete_ticket(
    ticket_id: int,
    manager: TicketManager = Depends(ticket_manager_from_app),
) -> Response:
    await manager.delete_ticket(ticket_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{ticket_id}/attachments", response_model=TicketRead)
async def upload_attachments(
    ticket_id: int,
    attachments: list[UploadFile] = File(...),
    remove_previous: bool = Form(False),
    manager: TicketManager = Depends(ticket_manager_from_app),
) -> TicketRead:
    uploads = await _read_uploads(attachments)
    return await manager.upload_ticket_attachments(ticket_id, uploads, remove_previous)


@router.get("/{ticket_id}/attachments/{attachment_id}/content")
async def download_attachment(
    ticket_id: int,
    attachment_id: int,
    manager: TicketManager = Depends(ticket_manager_from_app),
) -> Response:
    downloaded = await manager.download_attachment(ticket_id, attachment_id)
    return Response(
        content=downloaded.content,
        media_type=downloaded.attachment.content_type,
        headers={"Content-Disposition": _content_disposition(downloaded.attachment.name)},
    )


def _content_disposition(file_name: str) -> str:
    # Header values are latin-1 on the wire; other names travel as RFC 5987 `filename*`.
    quoted = quote(file_name)
    if quoted == file_name:
        return f'attachment; filename="{file_name}"'
    fallback = "".join(
        c if c.isascii() and c.isprintable() and c not in '"\\' else "_" for c in file_name
    )
    return f"attachment; filename=\"{fallback}\"; filename*=utf-8''{quoted}"
