"""
ticket_manager.db.dialects

Engine capability records for the supported SQL engines.

Responsibilities:
- Describe the only engine-specific surface of the ticket store:
  - how to open a migration-capable engine
  - the "record migration as applied, ignore duplicates" statement
  - how to recognize the engine's "table already exists" error
- Provide one record per supported engine (PostgreSQL, MySQL, SQL Server).
"""

from __future__ import annotations

import enum
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.engine import URL
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import NullPool

HISTORY_TABLE = "ticket_migrations_history"


class DbEngine(enum.StrEnum):
    postgresql = "postgresql"
    mysql = "mysql"
    sqlserver = "sqlserver"


@dataclass(frozen=True, slots=True)
class EngineDialect:
    name: str
    # Bound parameters: :migration_id, :product_version
    mark_applied_sql: str
    is_duplicate_table_error: Callable[[BaseException], bool]
    migration_engine_options: Mapping[str, Any] = field(default_factory=dict)

    def open_migration_engine(self, url: str | URL) -> AsyncEngine:
        # Migrations run once at startup; a NullPool engine leaves nothing pooled behind.
        return create_async_engine(url, poolclass=NullPool, **self.migration_engine_options)


def driver_error(exc: BaseException) -> BaseException:
    """
    Unwrap a SQLAlchemy `DBAPIError` to the driver-level exception.
    Async drivers are adapted once more; their native error is the `__cause__`.
    """

    orig = getattr(exc, "orig", None)
    return orig if orig is not None else exc


def _error_code(err: BaseException) -> Any:
    args = getattr(err, "args", ())
    return args[0] if args else None


def _is_postgres_duplicate_table(exc: BaseException) -> bool:
    err = driver_error(exc)
    for candidate in (err, err.__cause__):
        if candidate is None:
            continue
        sqlstate = getattr(candidate, "sqlstate", None) or getattr(candidate, "pgcode", None)
        if sqlstate is not None:
            return sqlstate == "42P07"
    return False


def _is_mysql_duplicate_table(exc: BaseException) -> bool:
    # ER_TABLE_EXISTS_ERROR
    return _error_code(driver_error(exc)) == 1050


def _is_sqlserver_duplicate_table(exc: BaseException) -> bool:
    # pyodbc reports SQLSTATE first; the native error number 2714 is embedded in the message.
    err = driver_error(exc)
    return _error_code(err) == "42S01" or "(2714)" in str(err)


POSTGRESQL = EngineDialect(
    name=DbEngine.postgresql,
    mark_applied_sql=(
        f"INSERT INTO {HISTORY_TABLE} (migration_id, product_version) "
        "VALUES (:migration_id, :product_version) "
        "ON CONFLICT (migration_id) DO NOTHING"
    ),
    is_duplicate_table_error=_is_postgres_duplicate_table,
    migration_engine_options={
        "connect_args": {"server_settings": {"application_name": "ticket-manager-migrations"}}
    },
)

MYSQL = EngineDialect(
    name=DbEngine.mysql,
    mark_applied_sql=(
        f"INSERT IGNORE INTO {HISTORY_TABLE} (migration_id, product_version) "
        "VALUES (:migration_id, :product_version)"
    ),
    is_duplicate_table_error=_is_mysql_duplicate_table,
)

SQLSERVER = EngineDialect(
    name=DbEngine.sqlserver,
    mark_applied_sql=(
        f"IF NOT EXISTS (SELECT 1 FROM {HISTORY_TABLE} WHERE migration_id = :migration_id) "
        f"INSERT INTO {HISTORY_TABLE} (migration_id, product_version) "
        "VALUES (:migration_id, :product_version)"
    ),
    is_duplicate_table_error=_is_sqlserver_duplicate_table,
)

DIALECTS: Mapping[DbEngine, EngineDialect] = {
    DbEngine.postgresql: POSTGRESQL,
    DbEngine.mysql: MYSQL,
    DbEngine.sqlserver: SQLSERVER,
}


# --- Module Notes -----------------------------------------------------------
# All CRUD logic is shared (see `db.store.TicketStore`); adding an engine means adding
# one record here and one member to `DbEngine`.
