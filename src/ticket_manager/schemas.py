"""
ticket_manager.schemas

Pydantic models crossing the persistence boundary.

Responsibilities:
- Write inputs: ticket drafts, partial updates, attachment uploads.
- Read snapshots returned by the store and cached by the orchestrator.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, field_validator

from ticket_manager.db.models import TicketPriority, TicketStatus

NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class AttachmentUpload(BaseModel):
    file_name: NonEmptyStr
    content_type: str = "application/octet-stream"
    content: bytes = b""

    @property
    def size(self) -> int:
        return len(self.content)


class TicketCreate(BaseModel):
    title: NonEmptyStr
    description: NonEmptyStr
    assignee: NonEmptyStr
    status: TicketStatus = TicketStatus.open
    priority: TicketPriority = TicketPriority.medium
    attachments: list[AttachmentUpload] = Field(default_factory=list)


class TicketUpdate(BaseModel):
    """
    Partial update: `None` or blank strings leave the stored value unchanged.
    Attachments are appended; existing ones are kept.
    """

    title: str | None = None
    description: str | None = None
    assignee: str | None = None
    status: TicketStatus | None = None
    priority: TicketPriority | None = None
    attachments: list[AttachmentUpload] = Field(default_factory=list)


class AttachmentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: int
    ticket_id: int
    name: str
    content_type: str
    size: int
    url: str


class TicketRead(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    title: str
    description: str
    assignee: str
    status: TicketStatus
    priority: TicketPriority
    promise_date: datetime
    attachments: list[AttachmentRead] = Field(default_factory=list)

    @field_validator("promise_date")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        # Some engines (SQLite, MySQL DATETIME) hand back naive values; they are stored as UTC.
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


class AttachmentContent(BaseModel):
    attachment: AttachmentRead
    content: bytes


# --- Module Notes -----------------------------------------------------------
# Snapshots are frozen: a write replaces the cached copy with a whole new snapshot instead of
# mutating the old one.
