"""
ticket_manager.db.migrator

Startup migration runner with concurrent-migration conflict recovery.

Responsibilities:
- Load the ordered alembic revisions shipped in `db/migrations/versions`.
- Track applied revisions in a history table (one row per migration id).
- Apply pending revisions, each together with its history row.
- Recover from a concurrent-migration race ("table already exists") by recording
  the pending revisions as applied instead of re-running DDL.
"""

from __future__ import annotations

import asyncio
from functools import cached_property
from pathlib import Path

from alembic.operations import Operations
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from sqlalchemy import Column, MetaData, String, Table, select, text
from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from ticket_manager import __version__
from ticket_manager.db.dialects import HISTORY_TABLE, EngineDialect
from ticket_manager.db.migrations import SCRIPT_LOCATION
from ticket_manager.db.session import can_connect
from ticket_manager.errors import MigrationConflict, PersistenceError
from ticket_manager.observability.logging import get_logger

log = get_logger(__name__)

history_metadata = MetaData()

migrations_history = Table(
    HISTORY_TABLE,
    history_metadata,
    Column("migration_id", String(150), primary_key=True),
    Column("product_version", String(32), nullable=False),
)


class MigrationScripts:
    def __init__(self, location: Path = SCRIPT_LOCATION) -> None:
        self._scripts = ScriptDirectory(str(location))

    @cached_property
    def revisions(self) -> list[str]:
        # walk_revisions() yields head -> base; migrations apply base -> head.
        return [s.revision for s in reversed(list(self._scripts.walk_revisions()))]

    def upgrade(self, connection: Connection, revision: str) -> None:
        script = self._scripts.get_revision(revision)
        context = MigrationContext.configure(connection)
        # Installs the `alembic.op` proxy used inside revision files.
        with Operations.context(context):
            script.module.upgrade()


class MigrationRunner:
    def __init__(
        self,
        *,
        dialect: EngineDialect,
        scripts: MigrationScripts | None = None,
        product_version: str = __version__,
    ) -> None:
        self._dialect = dialect
        self._scripts = scripts or MigrationScripts()
        self._product_version = product_version

    async def apply(self, engine: AsyncEngine, cancel: asyncio.Event | None = None) -> list[str]:
        """
        Bring the schema to head. Returns the revisions applied or recorded by this call.

        The cancel signal is checked between steps, never mid-statement.
        """

        if not await can_connect(engine):
            raise PersistenceError("Database doesn't exist or is unreachable. Create and configure it first.")
        _raise_if_cancelled(cancel)

        try:
            return await self._apply_pending(engine, cancel)
        except MigrationConflict as conflict:
            log.warning("migration_conflict", dialect=str(self._dialect.name), error=str(conflict))
            return await self._resolve_conflict(engine)

    async def applied_revisions(self, engine: AsyncEngine) -> set[str]:
        async with engine.connect() as conn:
            rows = await conn.execute(select(migrations_history.c.migration_id))
            return set(rows.scalars())

    async def _apply_pending(self, engine: AsyncEngine, cancel: asyncio.Event | None) -> list[str]:
        try:
            async with engine.begin() as conn:
                await conn.run_sync(history_metadata.create_all)

            applied = await self.applied_revisions(engine)
            pending = [r for r in self._scripts.revisions if r not in applied]
            log.info("migrations_checked", applied=sorted(applied), pending=pending)

            for revision in pending:
                _raise_if_cancelled(cancel)
                # Schema change and its history row commit together.
                async with engine.begin() as conn:
                    await conn.run_sync(self._scripts.upgrade, revision)
                    await self._mark_applied(conn, revision)
                log.info("migration_applied", migration_id=revision)
            return pending
        except Exception as e:
            if self._dialect.is_duplicate_table_error(e):
                raise MigrationConflict(str(e)) from e
            raise PersistenceError(f"Migration failed: {e}") from e

    async def _resolve_conflict(self, engine: AsyncEngine) -> list[str]:
        try:
            applied = await self.applied_revisions(engine)
            revisions = self._scripts.revisions
            pending = [r for r in revisions if r not in applied]

            if not pending:
                # The competing instance finished first; nothing left to record.
                log.info("migration_conflict_resolved", marked=[])
                return []
            if revisions[-1] not in pending:
                raise PersistenceError("Could not resolve conflict: no valid latest migration found.")

            async with engine.begin() as conn:
                for revision in pending:
                    await self._mark_applied(conn, revision)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to resolve migration conflict: {e}") from e

        log.info("migration_conflict_resolved", marked=pending)
        return pending

    async def _mark_applied(self, conn: AsyncConnection, revision: str) -> None:
        await conn.execute(
            text(self._dialect.mark_applied_sql),
            {"migration_id": revision, "product_version": self._product_version},
        )


def _raise_if_cancelled(cancel: asyncio.Event | None) -> None:
    if cancel is not None and cancel.is_set():
        raise asyncio.CancelledError("startup migration cancelled")


# --- Module Notes -----------------------------------------------------------
# Revision files use the regular alembic format, so `alembic revision` can still be used
# to author them; they are applied here rather than through `alembic upgrade` because the
# history is tracked per migration id.
