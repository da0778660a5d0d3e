"""
ticket_manager.db.models

Persistence schema for tickets and their attachments.

Responsibilities:
- Define the Ticket and Attachment ORM models and their ownership relationship.
- Define the closed status/priority enums (stored as their textual names).
"""

from __future__ import annotations

import enum
from datetime import UTC, datetime

from sqlalchemy import BigInteger, DateTime, Enum, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ticket_manager.db.base import Base


def utcnow() -> datetime:
    return datetime.now(tz=UTC)


class TicketStatus(enum.StrEnum):
    open = "Open"
    in_progress = "InProgress"
    resolved = "Resolved"
    closed = "Closed"


class TicketPriority(enum.StrEnum):
    critical = "Critical"
    high = "High"
    medium = "Medium"
    low = "Low"


def _enum_column(enum_cls: type[enum.Enum]) -> Enum:
    # VARCHAR + the textual values keeps the column portable across engines.
    return Enum(
        enum_cls,
        native_enum=False,
        length=16,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )


class Ticket(Base):
    __tablename__ = "tickets"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(256), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    assignee: Mapped[str] = mapped_column(String(256), nullable=False)

    status: Mapped[TicketStatus] = mapped_column(
        _enum_column(TicketStatus), nullable=False, default=TicketStatus.open
    )
    priority: Mapped[TicketPriority] = mapped_column(
        _enum_column(TicketPriority), nullable=False, default=TicketPriority.medium
    )
    promise_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    attachments: Mapped[list[Attachment]] = relationship(
        back_populates="ticket",
        cascade="all, delete-orphan",
        order_by="Attachment.id",
    )


class Attachment(Base):
    __tablename__ = "attachments"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    ticket_id: Mapped[int] = mapped_column(
        ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True
    )

    name: Mapped[str] = mapped_column(String(256), nullable=False)
    content_type: Mapped[str] = mapped_column(String(128), nullable=False)
    size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    url: Mapped[str] = mapped_column(String(1024), nullable=False)

    ticket: Mapped[Ticket] = relationship(back_populates="attachments")


# --- Module Notes -----------------------------------------------------------
# Keep these definitions aligned with the migration scripts under
# `db/migrations/versions`; the ORM never creates tables itself.
