"""
ticket_manager.db.base

SQLAlchemy declarative base.

Responsibilities:
- Provide a shared DeclarativeBase for all ORM models.
"""

from __future__ import annotations

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


# --- Module Notes -----------------------------------------------------------
# The migration history table is not on `Base.metadata`; it is owned
# by `db.migrator` so schema migrations never touch it.
