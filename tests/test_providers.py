"""
tests.test_providers

Engine capability records and the persistence facade.

Responsibilities:
- Each engine recognizes its own "table already exists" error and nothing else.
- The facade resolves engine names once and refuses unknown engines before connecting.
"""

from __future__ import annotations

import pytest
from sqlalchemy.exc import ProgrammingError
from sqlalchemy.pool import NullPool

from ticket_manager.db import providers
from ticket_manager.db.dialects import (
    DIALECTS,
    HISTORY_TABLE,
    MYSQL,
    POSTGRESQL,
    SQLSERVER,
    DbEngine,
)
from ticket_manager.errors import UnsupportedConfiguration
from ticket_manager.storage import AttachmentStorage


class _PgError(Exception):
    def __init__(self, sqlstate: str) -> None:
        super().__init__(f"sqlstate {sqlstate}")
        self.sqlstate = sqlstate


def _wrapped(orig: BaseException) -> ProgrammingError:
    return ProgrammingError("CREATE TABLE tickets (...)", {}, orig)


def test_postgresql_detects_duplicate_table() -> None:
    assert POSTGRESQL.is_duplicate_table_error(_wrapped(_PgError("42P07")))
    assert not POSTGRESQL.is_duplicate_table_error(_wrapped(_PgError("42P01")))


def test_postgresql_reads_the_native_error_behind_the_adapter() -> None:
    adapted = Exception("<class 'asyncpg.exceptions.DuplicateTableError'>")
    adapted.__cause__ = _PgError("42P07")

    assert POSTGRESQL.is_duplicate_table_error(_wrapped(adapted))


def test_mysql_detects_duplicate_table() -> None:
    assert MYSQL.is_duplicate_table_error(_wrapped(Exception(1050, "Table 'tickets' already exists")))
    assert not MYSQL.is_duplicate_table_error(_wrapped(Exception(1146, "Table 'x' doesn't exist")))


def test_sqlserver_detects_duplicate_table() -> None:
    message = "There is already an object named 'tickets' in the database. (2714)"

    assert SQLSERVER.is_duplicate_table_error(_wrapped(Exception("42S01", message)))
    assert SQLSERVER.is_duplicate_table_error(_wrapped(Exception("HY000", message)))
    missing = Exception("42S02", "Invalid object name 'tickets'. (208)")
    assert not SQLSERVER.is_duplicate_table_error(_wrapped(missing))


def test_each_engine_records_history_idempotently() -> None:
    assert "ON CONFLICT (migration_id) DO NOTHING" in POSTGRESQL.mark_applied_sql
    assert MYSQL.mark_applied_sql.startswith("INSERT IGNORE")
    assert SQLSERVER.mark_applied_sql.startswith("IF NOT EXISTS")
    for dialect in DIALECTS.values():
        assert HISTORY_TABLE in dialect.mark_applied_sql
        assert ":migration_id" in dialect.mark_applied_sql


@pytest.mark.asyncio
async def test_migration_engine_does_not_pool(sqlite_dialect) -> None:
    engine = sqlite_dialect.open_migration_engine("sqlite+aiosqlite://")
    try:
        assert isinstance(engine.sync_engine.pool, NullPool)
    finally:
        await engine.dispose()


@pytest.mark.parametrize(
    ("name", "expected"),
    [
        ("postgresql", POSTGRESQL),
        ("PostgreSQL", POSTGRESQL),
        (" mysql ", MYSQL),
        ("SQLServer", SQLSERVER),
    ],
)
def test_select_dialect(name: str, expected) -> None:
    assert providers.select_dialect(name) is expected


def test_every_engine_has_a_record() -> None:
    assert set(DIALECTS) == set(DbEngine)


def test_unsupported_engine_fails_before_connecting(settings, monkeypatch) -> None:
    def fail(*_args, **_kwargs):
        raise AssertionError("no engine may be created for an unsupported configuration")

    monkeypatch.setattr(providers, "create_engine", fail)

    with pytest.raises(UnsupportedConfiguration):
        providers.create_ticket_store(settings.model_copy(update={"db_engine": "oracle"}))


@pytest.mark.asyncio
async def test_facade_builds_one_store_for_the_configured_engine(settings, tmp_path) -> None:
    storage = AttachmentStorage(tmp_path / "files")

    store = providers.create_ticket_store(settings.model_copy(update={"db_engine": "MySQL"}), storage)
    try:
        assert store.dialect is MYSQL
        assert store.storage is storage
    finally:
        await store.dispose()
