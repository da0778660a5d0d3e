"""
ticket_manager.db.session

Async SQLAlchemy engine + session factory helpers.

Responsibilities:
- Create the async engine for a configured database URL.
- Create the async sessionmaker with safe defaults.
- Probe connectivity for startup and readiness checks.
"""

from __future__ import annotations

from sqlalchemy import text
from sqlalchemy.engine import URL
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from ticket_manager.observability.logging import get_logger

log = get_logger(__name__)


def create_engine(database_url: str | URL) -> AsyncEngine:
    # pool_pre_ping helps detect stale connections in long-lived processes.
    return create_async_engine(database_url, pool_pre_ping=True)


def create_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # expire_on_commit=False keeps snapshots buildable after commit without lazy loads.
    return async_sessionmaker(
        bind=engine,
        expire_on_commit=False,
        autoflush=False,
    )


async def can_connect(engine: AsyncEngine) -> bool:
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as e:
        log.warning("database_unreachable", url=engine.url.render_as_string(), error=str(e))
        return False
    return True


# --- Module Notes -----------------------------------------------------------
# Every store operation opens its own session from this factory; no connection is
# held across operations.
